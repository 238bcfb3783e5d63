"""RQ worker process for queued site audits.

Run with ``python worker.py``. Before taking jobs the worker fails audits a
previous worker left half-finished, so they do not sit in ``running`` forever.
"""

import asyncio
import logging

from rq import Worker

from config import settings, validate_settings
from services.audit_queue import get_audit_queue, get_redis_connection, recover_stalled_audits

logger = logging.getLogger(__name__)


def build_worker(connection=None) -> Worker:
    connection = connection or get_redis_connection()
    return Worker([get_audit_queue(connection)], connection=connection)


def recover_before_start() -> int:
    try:
        recovered = asyncio.run(recover_stalled_audits(settings.STALLED_AUDIT_MINUTES))
    except Exception:
        logger.exception("Stalled audit recovery failed; starting worker anyway")
        return 0
    if recovered:
        print(f"♻️ Recovered {recovered} stalled audits before taking jobs.")
    return recovered


def main():
    logging.basicConfig(level=logging.INFO)
    validate_settings()
    recover_before_start()
    worker = build_worker()
    print(f"🛠️ Audit worker listening on {', '.join(worker.queue_names())}")
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
