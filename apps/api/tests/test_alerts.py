import json

import httpx
import pytest
from unittest.mock import patch

from services.alerts import (
    AlertDeliveryError,
    LoggingAlertTransport,
    WebhookAlertTransport,
    get_alert_transport,
    sign_payload,
)

SECRET = "0123456789abcdef0123"
AUDIT_REF = {"audit_id": "a1", "target": "https://shop.example.com", "user_id": "u1"}


def test_sign_payload_matches_known_hmac_sha256():
    # RFC 4231 test case 2.
    signature = sign_payload(b"what do ya want for nothing?", "Jefe")
    assert signature == "sha256=5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"


@pytest.mark.asyncio
async def test_webhook_posts_signed_event():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(204)

    transport = WebhookAlertTransport(
        "https://hooks.example.com/audit", SECRET, transport=httpx.MockTransport(handler)
    )
    await transport.send("critical", "[CRITICAL] Security issues", "body text", AUDIT_REF)

    request = captured["request"]
    body = request.content
    payload = json.loads(body)
    assert request.headers["X-Audit-Event"] == "critical_issue_detected"
    assert request.headers["X-Audit-Signature"] == sign_payload(body, SECRET)
    assert payload["event"] == "critical_issue_detected"
    assert payload["data"]["audit_id"] == "a1"
    assert payload["data"]["subject"] == "[CRITICAL] Security issues"
    assert payload["data"]["details_url"].endswith("/audits/a1")
    assert "timestamp" in payload


@pytest.mark.asyncio
async def test_webhook_maps_priorities_to_events():
    events = []

    def handler(request: httpx.Request) -> httpx.Response:
        events.append(request.headers["X-Audit-Event"])
        return httpx.Response(200)

    transport = WebhookAlertTransport("https://hooks.example.com/audit", SECRET, transport=httpx.MockTransport(handler))
    for priority in ("urgent", "high", "low"):
        await transport.send(priority, "subject", "message", AUDIT_REF)

    assert events == ["score_drop_detected", "audit_alert", "audit_alert"]


@pytest.mark.asyncio
async def test_webhook_error_status_raises_delivery_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    transport = WebhookAlertTransport("https://hooks.example.com/audit", SECRET, transport=httpx.MockTransport(handler))
    with pytest.raises(AlertDeliveryError):
        await transport.send("critical", "subject", "message", AUDIT_REF)


@pytest.mark.asyncio
async def test_logging_transport_logs_warning(caplog):
    with caplog.at_level("WARNING", logger="services.alerts"):
        await LoggingAlertTransport().send("urgent", "Score drop", "dropped", AUDIT_REF)

    assert "Score drop" in caplog.text
    assert "a1" in caplog.text


def test_get_alert_transport_follows_settings():
    with patch("services.alerts.settings.ALERT_WEBHOOK_URL", ""):
        assert isinstance(get_alert_transport(), LoggingAlertTransport)
    with patch("services.alerts.settings.ALERT_WEBHOOK_URL", "https://hooks.example.com/audit"), \
         patch("services.alerts.settings.ALERT_WEBHOOK_SECRET", SECRET):
        transport = get_alert_transport()
        assert isinstance(transport, WebhookAlertTransport)
        assert transport.secret == SECRET
