from datetime import datetime, timedelta, timezone

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from main import app
from services.audit import AuditOrchestrator
from services.fetcher import TargetFetcher
from services.modules.types import ChatbotDetails, Issue, ModuleId, ModuleResult
from services.notifications import NotificationEngine
from services.records import AuditRequest

SITE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Garden Supplies for Every Season | Example Shop</title>
  <meta name="description" content="Hoses, reels and tools for small gardens, shipped the next day from our warehouse.">
  <script async src="https://www.googletagmanager.com/gtag/js?id=G-123"></script>
</head>
<body>
  <nav><a href="/">Home</a> <a href="/shop">Shop</a></nav>
  <main>
    <h1>Garden supplies</h1>
    <p>We sell hoses, reels and hand tools for small gardens. Every order ships the next working day.</p>
    <h2>Hoses</h2>
    <p>Rubber hoses last longer than vinyl ones and are easy to store on a reel.</p>
    <img src="/hose.jpg" alt="Green rubber hose on a reel">
  </main>
</body>
</html>
"""


def _site_transport():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, html=SITE_HTML, headers={"Server": "nginx"})

    return httpx.MockTransport(handler)


def _orchestrator(store):
    alerts = MagicMock()
    alerts.send = AsyncMock()
    return AuditOrchestrator(
        store=store,
        notifier=NotificationEngine(store, alerts),
        fetcher=TargetFetcher(transport=_site_transport()),
    )


@pytest.mark.asyncio
async def test_start_audit_runs_all_modules(api_client):
    client, store = api_client

    with patch("services.audit.get_orchestrator", return_value=_orchestrator(store)):
        response = await client.post("/audits", json={"target": "http://shop.example.com", "user_id": "owner-1"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "queued"
    audit_id = payload["audit_id"]

    detail = await client.get(f"/audits/{audit_id}", params={"user_id": "owner-1"})
    assert detail.status_code == 200
    body = detail.json()
    assert body["status"] == "completed"
    assert body["progress"] == 100
    assert 0 <= body["overall_score"] <= 100
    assert [item["module"] for item in body["module_results"]] == [
        "seo",
        "performance",
        "accessibility",
        "security",
        "mobile",
        "content",
        "cross_browser",
        "analytics",
        "chatbot",
    ]
    assert not any(item["status"] == "failed" for item in body["module_results"])

    progress = await client.get(f"/audits/{audit_id}/progress", params={"user_id": "owner-1"})
    assert progress.json() == {
        "status": "completed",
        "percent": 100,
        "message": "Audit completed successfully",
        "category": None,
    }


@pytest.mark.asyncio
async def test_start_audit_with_selected_modules(api_client):
    client, store = api_client

    with patch("services.audit.get_orchestrator", return_value=_orchestrator(store)):
        response = await client.post(
            "/audits",
            json={
                "target": "http://shop.example.com",
                "user_id": "owner-1",
                "modules": ["chatbot", "seo"],
                "options": {"seo": {"primary_keyword": "garden"}},
            },
        )

    record = await store.get_audit(response.json()["audit_id"])
    assert [result.module for result in record.module_results] == [ModuleId.SEO, ModuleId.CHATBOT]
    assert record.enabled_modules == [ModuleId.CHATBOT, ModuleId.SEO]


@pytest.mark.asyncio
async def test_unreachable_site_fails_every_module_but_completes(api_client):
    client, store = api_client

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    orchestrator = _orchestrator(store)
    orchestrator.fetcher = TargetFetcher(transport=httpx.MockTransport(refuse))
    with patch("services.audit.get_orchestrator", return_value=orchestrator):
        response = await client.post(
            "/audits",
            json={"target": "http://down.example.com", "user_id": "owner-1", "modules": ["seo", "mobile"]},
        )

    record = await store.get_audit(response.json()["audit_id"])
    assert record.status == "completed"
    assert record.overall_score == 0
    assert all(result.failed for result in record.module_results)


@pytest.mark.asyncio
async def test_start_audit_rejects_invalid_target(api_client):
    client, _ = api_client

    response = await client.post("/audits", json={"target": "ftp://example.com", "user_id": "owner-1"})

    assert response.status_code == 422
    assert "http" in response.json()["detail"]


@pytest.mark.asyncio
async def test_start_audit_rejects_unknown_module(api_client):
    client, _ = api_client

    response = await client.post(
        "/audits", json={"target": "https://example.com", "user_id": "owner-1", "modules": ["seo", "ranking"]}
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_audit_is_hidden_from_other_users(api_client):
    client, store = api_client

    with patch("services.audit.get_orchestrator", return_value=_orchestrator(store)):
        response = await client.post(
            "/audits", json={"target": "http://shop.example.com", "user_id": "owner-1", "modules": ["seo"]}
        )
    audit_id = response.json()["audit_id"]

    other = await client.get(f"/audits/{audit_id}", params={"user_id": "intruder"})
    missing = await client.get("/audits/not-a-real-id/progress", params={"user_id": "owner-1"})

    assert other.status_code == 404
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_list_audits_returns_summaries(api_client):
    client, store = api_client

    with patch("services.audit.get_orchestrator", return_value=_orchestrator(store)):
        for _ in range(2):
            await client.post(
                "/audits", json={"target": "http://shop.example.com", "user_id": "owner-1", "modules": ["seo"]}
            )

    response = await client.get("/audits", params={"user_id": "owner-1"})

    assert response.status_code == 200
    items = response.json()
    assert len(items) == 2
    assert {item["status"] for item in items} == {"completed"}
    assert all(item["target"] == "http://shop.example.com" for item in items)


@pytest.mark.asyncio
async def test_queue_dispatch_skips_background_task(api_client):
    client, _ = api_client

    with patch("routers.audit.settings.USE_AUDIT_QUEUE", True), \
         patch("routers.audit.enqueue_audit_job") as enqueue, \
         patch("routers.audit.process_site_audit", new_callable=AsyncMock) as background:
        response = await client.post(
            "/audits", json={"target": "https://shop.example.com", "user_id": "owner-1", "modules": ["seo"]}
        )

    assert response.status_code == 200
    enqueue.assert_called_once_with(response.json()["audit_id"])
    background.assert_not_awaited()


@pytest.mark.asyncio
async def test_queue_outage_falls_back_to_background_task(api_client):
    client, _ = api_client

    with patch("routers.audit.settings.USE_AUDIT_QUEUE", True), \
         patch("routers.audit.enqueue_audit_job", side_effect=ConnectionError("redis down")), \
         patch("routers.audit.process_site_audit", new_callable=AsyncMock) as background:
        response = await client.post(
            "/audits", json={"target": "https://shop.example.com", "user_id": "owner-1", "modules": ["seo"]}
        )

    assert response.status_code == 200
    background.assert_awaited_once_with(response.json()["audit_id"])


async def _completed_audit(store, scores, finished_at, target="https://shop.example.com", user_id="owner-1"):
    request = AuditRequest(target=target, user_id=user_id, modules=tuple(scores))
    record = await store.create_audit(request)
    await store.mark_running(record.id, finished_at - timedelta(seconds=5))
    for position, (module, score) in enumerate(scores.items(), start=1):
        issues = [Issue(description="Security vulnerability: outdated library")] if score < 50 else []
        result = ModuleResult(module=module, score=score, issues=issues, details=ChatbotDetails())
        await store.append_module_result(record.id, result, position=position)
    overall = round(sum(scores.values()) / len(scores))
    await store.set_overall_score(record.id, overall)
    await store.finish_audit(
        record.id,
        status="completed",
        progress=100,
        message="Audit completed successfully",
        completed_at=finished_at,
        duration_seconds=5.0,
    )
    return record.id


@pytest.mark.asyncio
async def test_audit_quota_is_enforced_per_user(api_client):
    client, store = api_client
    app.state.disable_rate_limits = False
    payload = {"target": "https://shop.example.com", "user_id": "owner-1", "modules": ["seo"]}

    with patch("routers.rate_limit._redis_client", side_effect=ConnectionError("redis down")), \
         patch("routers.rate_limit.settings.AUDIT_RATE_LIMIT_PER_MINUTE", 2), \
         patch("routers.audit._dispatch") as dispatch:
        responses = [await client.post("/audits", json=payload) for _ in range(3)]
        other_user = await client.post("/audits", json={**payload, "user_id": "owner-2"})

    assert [response.status_code for response in responses] == [200, 200, 429]
    assert responses[2].headers["retry-after"] == "60"
    assert other_user.status_code == 200
    assert dispatch.call_count == 3
    assert len(await store.list_audits("owner-1")) == 2


@pytest.mark.asyncio
async def test_audit_summary_counts_issues_by_severity(api_client):
    client, store = api_client
    audit_id = await _completed_audit(
        store, {ModuleId.SEO: 40, ModuleId.CHATBOT: 90}, datetime.now(timezone.utc)
    )

    response = await client.get(f"/audits/{audit_id}/summary", params={"user_id": "owner-1"})
    hidden = await client.get(f"/audits/{audit_id}/summary", params={"user_id": "intruder"})

    assert response.status_code == 200
    summary = response.json()
    assert summary["module_scores"] == {"seo": 40, "chatbot": 90}
    assert summary["issue_counts"] == {"critical": 1, "major": 0, "minor": 0}
    assert summary["total_issues"] == 1
    assert summary["failed_modules"] == []
    assert hidden.status_code == 404


@pytest.mark.asyncio
async def test_compare_with_previous_and_explicit_audit(api_client):
    client, store = api_client
    now = datetime.now(timezone.utc)
    older = await _completed_audit(store, {ModuleId.SEO: 80, ModuleId.CHATBOT: 60}, now - timedelta(days=9))
    latest = await _completed_audit(store, {ModuleId.SEO: 60, ModuleId.CHATBOT: 90}, now)

    previous = await client.get(f"/audits/{latest}/compare", params={"user_id": "owner-1"})
    explicit = await client.get(
        f"/audits/{latest}/compare", params={"user_id": "owner-1", "compare_with_id": older}
    )
    first = await client.get(f"/audits/{older}/compare", params={"user_id": "owner-1"})

    assert previous.status_code == 200
    comparison = previous.json()
    assert comparison["previous_audit_id"] == older
    assert comparison["overall"] == {"current": 75, "previous": 70, "change": 5, "percent_change": 7.14}
    assert [item["scores"]["change"] for item in comparison["modules"]] == [-20, 30]
    assert comparison["improvement_areas"] == ["chatbot: +30 points"]
    assert comparison["decline_areas"] == ["seo: -20 points"]
    assert comparison["time_gap"] == "1 week"
    assert explicit.json()["previous_audit_id"] == older
    assert first.status_code == 404


@pytest.mark.asyncio
async def test_trends_for_site(api_client):
    client, store = api_client
    now = datetime.now(timezone.utc)
    await _completed_audit(store, {ModuleId.SEO: 50, ModuleId.CHATBOT: 90}, now - timedelta(days=3))
    await _completed_audit(store, {ModuleId.SEO: 70, ModuleId.CHATBOT: 80}, now)

    response = await client.get(
        "/audits/trends", params={"user_id": "owner-1", "target": "https://shop.example.com"}
    )
    empty = await client.get(
        "/audits/trends", params={"user_id": "owner-1", "target": "https://other.example.com"}
    )

    assert response.status_code == 200
    trends = response.json()
    assert [point["score"] for point in trends["overall"]] == [70, 75]
    assert [point["score"] for point in trends["modules"]["seo"]] == [50, 70]
    assert trends["most_improved"] == "seo"
    assert trends["least_improved"] == "chatbot"
    assert empty.status_code == 404
