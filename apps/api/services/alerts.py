"""
Out-of-band alert delivery.

The notification engine decides *when* to alert; transports here decide *how*.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from cryptography.hazmat.primitives import hashes, hmac

from config import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Audit-Signature"
EVENT_HEADER = "X-Audit-Event"

# Alert priority -> webhook event name.
PRIORITY_EVENTS = {
    "critical": "critical_issue_detected",
    "urgent": "score_drop_detected",
    "high": "audit_alert",
}


class AlertDeliveryError(RuntimeError):
    """The transport accepted an alert but could not deliver it."""


class AlertTransport(ABC):
    @abstractmethod
    async def send(
        self,
        priority: str,
        subject: str,
        message: str,
        audit_ref: Dict[str, Any],
    ) -> None:
        raise NotImplementedError


class LoggingAlertTransport(AlertTransport):
    """Default transport when no webhook is configured."""

    async def send(self, priority: str, subject: str, message: str, audit_ref: Dict[str, Any]) -> None:
        logger.warning(
            "ALERT [%s] %s (audit=%s target=%s): %s",
            priority,
            subject,
            audit_ref.get("audit_id"),
            audit_ref.get("target"),
            message,
        )


def sign_payload(body: bytes, secret: str) -> str:
    """
    Compute the webhook signature for a request body.

    Args:
        body: Exact bytes that will be POSTed
        secret: Shared webhook secret

    Returns:
        ``sha256=<hex digest>`` header value
    """
    mac = hmac.HMAC(secret.encode(), hashes.SHA256())
    mac.update(body)
    return f"sha256={mac.finalize().hex()}"


class WebhookAlertTransport(AlertTransport):
    """POSTs ``{event, data, timestamp}`` JSON signed with HMAC-SHA256."""

    def __init__(
        self,
        url: str,
        secret: str,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.secret = secret
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def build_payload(self, priority: str, subject: str, message: str, audit_ref: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "event": PRIORITY_EVENTS.get(priority, "audit_alert"),
            "data": {
                **audit_ref,
                "priority": priority,
                "subject": subject,
                "message": message,
                "details_url": f"{settings.APP_URL.rstrip('/')}/audits/{audit_ref.get('audit_id', '')}",
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def send(self, priority: str, subject: str, message: str, audit_ref: Dict[str, Any]) -> None:
        payload = self.build_payload(priority, subject, message, audit_ref)
        body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: payload["event"],
            SIGNATURE_HEADER: sign_payload(body, self.secret),
        }
        client_kwargs: Dict[str, Any] = {"timeout": self.timeout_seconds}
        if self.transport is not None:
            client_kwargs["transport"] = self.transport
        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                response = await client.post(self.url, content=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AlertDeliveryError(f"Webhook delivery to {self.url} failed: {exc}") from exc
        logger.info("Delivered %s alert for audit %s", priority, audit_ref.get("audit_id"))


def get_alert_transport() -> AlertTransport:
    if settings.ALERT_WEBHOOK_URL:
        return WebhookAlertTransport(
            settings.ALERT_WEBHOOK_URL,
            settings.ALERT_WEBHOOK_SECRET,
            settings.ALERT_WEBHOOK_TIMEOUT_SECONDS,
        )
    return LoggingAlertTransport()
