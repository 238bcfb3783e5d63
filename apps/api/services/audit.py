import asyncio
import logging
from typing import Any, Dict, List, Optional

from services.fetcher import TargetFetcher
from services.modules.base import AuditContext
from services.modules.registry import ModuleRegistry, default_registry
from services.modules.types import ModuleResult
from services.notifications import NotificationEngine
from services.persistence import AuditNotFoundError, AuditStore, SqlAuditStore
from services.progress import ProgressTracker
from services.records import AuditRecord, AuditRequest
from services.scoring import ScoringWeights, overall_score

logger = logging.getLogger(__name__)


class AuditOrchestrator:
    """Runs the enabled modules of one audit in registry order and finalizes it.

    Module failures are contained by each module's ``analyze``; anything that
    escapes here (a store that cannot be written) fails the whole audit.
    """

    def __init__(
        self,
        store: Optional[AuditStore] = None,
        registry: Optional[ModuleRegistry] = None,
        notifier: Optional[NotificationEngine] = None,
        fetcher: Optional[TargetFetcher] = None,
        weights: Optional[ScoringWeights] = None,
    ):
        self.store = store or SqlAuditStore()
        self.registry = registry or default_registry
        self.notifier = notifier or NotificationEngine(self.store)
        self.fetcher = fetcher
        self.weights = weights or ScoringWeights()

    async def start_audit(self, request: AuditRequest) -> AuditRecord:
        return await self.store.create_audit(request, status="queued")

    async def run_audit(self, request: AuditRequest, audit_id: Optional[str] = None) -> AuditRecord:
        if audit_id is None:
            audit_id = (await self.start_audit(request)).id

        modules = self.registry.ordered(request.modules)
        tracker = ProgressTracker(self.store, audit_id, len(modules))
        logger.info("Starting audit %s for %s with %s module(s)", audit_id, request.target, len(modules))

        try:
            if not await self.store.mark_running(audit_id, tracker.started_at):
                logger.warning("Audit %s is no longer queued; skipping duplicate run", audit_id)
                return await self._current_record(audit_id, request)
            context = AuditContext(request, self.fetcher)
            results: List[ModuleResult] = []
            for step, module in enumerate(modules, start=1):
                await tracker.update_progress(module.module_id.value, step, module.progress_message)
                result = await module.analyze(context)
                await self.store.append_module_result(audit_id, result, position=step)
                results.append(result)
                if result.failed:
                    logger.warning("Audit %s: %s module failed", audit_id, module.module_id.value)

            score = overall_score(results, self.weights)
            await self.store.set_overall_score(audit_id, score)
            await tracker.complete(True)
        except Exception as exc:
            logger.exception("Audit %s failed", audit_id)
            try:
                await tracker.fail(exc)
            except Exception:
                logger.exception("Could not record failure of audit %s", audit_id)
            return await self._failed_record(audit_id, request, exc)

        try:
            record = await self.store.get_audit(audit_id)
        except Exception:
            logger.exception("Could not reload completed audit %s", audit_id)
            record = AuditRecord(
                id=audit_id,
                target=request.target,
                user_id=request.user_id,
                status="completed",
                overall_score=score,
                progress=100,
                status_message=tracker.message,
                enabled_modules=list(request.modules),
                module_results=results,
                started_at=tracker.started_at,
            )
        await self._notify(record)
        logger.info("Audit %s completed with score %s", audit_id, record.overall_score)
        return record

    async def _notify(self, record: AuditRecord) -> None:
        try:
            previous = await self.store.previous_completed_audit(record)
        except Exception:
            logger.exception("Could not load previous audit for %s", record.target)
            previous = None
        try:
            await self.notifier.process_completed_audit(record, previous)
        except Exception:
            logger.exception("Notification processing failed for audit %s", record.id)

    async def _current_record(self, audit_id: str, request: AuditRequest) -> AuditRecord:
        try:
            return await self.store.get_audit(audit_id)
        except Exception:
            logger.exception("Could not reload audit %s", audit_id)
        return AuditRecord(
            id=audit_id,
            target=request.target,
            user_id=request.user_id,
            status="running",
            enabled_modules=list(request.modules),
        )

    async def _failed_record(self, audit_id: str, request: AuditRequest, exc: BaseException) -> AuditRecord:
        try:
            return await self.store.get_audit(audit_id)
        except Exception:
            logger.exception("Could not reload failed audit %s", audit_id)
        return AuditRecord(
            id=audit_id,
            target=request.target,
            user_id=request.user_id,
            status="failed",
            enabled_modules=list(request.modules),
            error_message=str(exc) or exc.__class__.__name__,
        )

    async def get_progress(self, audit_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        record = await self.store.get_audit(audit_id, user_id)
        return {
            "status": record.status,
            "percent": record.progress,
            "message": record.status_message,
            "category": record.current_category,
        }


def get_orchestrator() -> AuditOrchestrator:
    return AuditOrchestrator()


async def process_site_audit(audit_id: str, orchestrator: Optional[AuditOrchestrator] = None):
    """
    Background task to run a queued site audit.
    """
    orchestrator = orchestrator or get_orchestrator()
    try:
        record = await orchestrator.store.get_audit(audit_id)
        request = await orchestrator.store.get_request(audit_id)
    except AuditNotFoundError:
        logger.error("Audit record %s not found; aborting background task", audit_id)
        return None
    if record.status != "queued":
        # Re-delivered queue jobs land here once the first run has claimed the audit.
        logger.info("Audit %s is already %s; nothing to run", audit_id, record.status)
        return record
    return await orchestrator.run_audit(request, audit_id=audit_id)


def process_site_audit_job(audit_id: str) -> None:
    """RQ worker entrypoint for site audits."""
    asyncio.run(process_site_audit(audit_id))
