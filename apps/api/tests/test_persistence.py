from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import patch

from services.audit_queue import STALLED_AUDIT_MESSAGE, recover_stalled_audits
from services.modules.types import (
    AccessibilityDetails,
    AccessibilityViolation,
    ChatbotDetails,
    FailedDetails,
    Issue,
    ModuleId,
    ModuleResult,
    WcagCompliance,
)
from services.persistence import AuditNotFoundError
from services.records import AlertPreferences, AuditRecord, AuditRequest, NotificationDraft


def _request(target="https://example.com", user_id="owner-1", modules=(ModuleId.ACCESSIBILITY, ModuleId.SEO)):
    return AuditRequest(target=target, user_id=user_id, modules=modules, options={"seo": {"primary_keyword": "shoes"}})


def _accessibility_result(score=72):
    return ModuleResult(
        module=ModuleId.ACCESSIBILITY,
        score=score,
        details=AccessibilityDetails(
            violations=[AccessibilityViolation(id="label", impact="critical", description="Form elements must have labels", nodes=3)],
            passes=["image-alt"],
            summary={"total_violations": 1},
            wcag_compliance=WcagCompliance(a=93, aa=100, aaa=100),
        ),
        duration_ms=12,
    )


async def _complete(store, request, score, finished_at):
    record = await store.create_audit(request)
    await store.mark_running(record.id, finished_at - timedelta(seconds=5))
    await store.append_module_result(record.id, _accessibility_result(score), position=1)
    await store.set_overall_score(record.id, score)
    await store.finish_audit(
        record.id,
        status="completed",
        progress=100,
        message="Audit completed successfully",
        completed_at=finished_at,
        duration_seconds=5.0,
    )
    return await store.get_audit(record.id)


@pytest.mark.asyncio
async def test_create_and_reload_request(sql_store):
    record = await sql_store.create_audit(_request())

    assert record.status == "queued"
    assert record.progress == 0
    assert record.enabled_modules == [ModuleId.ACCESSIBILITY, ModuleId.SEO]

    request = await sql_store.get_request(record.id)
    assert request.target == "https://example.com"
    assert request.modules == (ModuleId.ACCESSIBILITY, ModuleId.SEO)
    assert request.options == {"seo": {"primary_keyword": "shoes"}}


@pytest.mark.asyncio
async def test_module_results_round_trip_with_typed_details(sql_store):
    now = datetime.now(timezone.utc)
    record = await _complete(sql_store, _request(), 72, now)

    assert record.status == "completed"
    assert record.progress == 100
    assert record.overall_score == 72
    result = record.result_for(ModuleId.ACCESSIBILITY)
    assert isinstance(result.details, AccessibilityDetails)
    assert result.details.violations[0].nodes == 3
    assert result == _accessibility_result(72)

    restored = AuditRecord.model_validate_json(record.model_dump_json())
    assert restored == record


@pytest.mark.asyncio
async def test_failed_module_result_is_stored(sql_store):
    record = await sql_store.create_audit(_request())
    failed = ModuleResult(
        module=ModuleId.SEO,
        score=0,
        details=FailedDetails(error_type="FetchError", error="unreachable"),
        status="failed",
    )
    await sql_store.append_module_result(record.id, failed, position=2)

    reloaded = await sql_store.get_audit(record.id)
    assert reloaded.module_results[0].failed
    assert reloaded.module_results[0].details.error == "unreachable"


@pytest.mark.asyncio
async def test_progress_updates_and_failed_finish(sql_store):
    record = await sql_store.create_audit(_request())
    await sql_store.mark_running(record.id, datetime.now(timezone.utc))
    await sql_store.update_progress(record.id, 50, "Analyzing SEO...", "seo")

    running = await sql_store.get_audit(record.id)
    assert running.status == "running"
    assert running.progress == 50
    assert running.current_category == "seo"

    await sql_store.set_overall_score(record.id, 40)
    await sql_store.finish_audit(
        record.id,
        status="failed",
        progress=50,
        message="Error: boom",
        completed_at=datetime.now(timezone.utc),
        duration_seconds=1.0,
        error_message="boom",
    )
    failed = await sql_store.get_audit(record.id)
    assert failed.status == "failed"
    assert failed.overall_score is None
    assert failed.error_message == "boom"
    assert failed.current_category is None


@pytest.mark.asyncio
async def test_unknown_audit_raises_not_found(sql_store):
    with pytest.raises(AuditNotFoundError):
        await sql_store.get_audit("missing")
    with pytest.raises(AuditNotFoundError):
        await sql_store.update_progress("missing", 10, "x", None)


@pytest.mark.asyncio
async def test_get_audit_is_scoped_to_owner(sql_store):
    record = await sql_store.create_audit(_request())
    with pytest.raises(AuditNotFoundError):
        await sql_store.get_audit(record.id, user_id="someone-else")


@pytest.mark.asyncio
async def test_previous_completed_audit_same_target_and_user(sql_store):
    base = datetime.now(timezone.utc) - timedelta(hours=3)
    first = await _complete(sql_store, _request(), 90, base)
    await _complete(sql_store, _request(user_id="other-user"), 10, base + timedelta(hours=1))
    await _complete(sql_store, _request(target="https://other.example.com"), 20, base + timedelta(hours=1))
    latest = await _complete(sql_store, _request(), 60, base + timedelta(hours=2))

    previous = await sql_store.previous_completed_audit(latest)

    assert previous is not None
    assert previous.id == first.id
    assert previous.overall_score == 90
    assert await sql_store.previous_completed_audit(first) is None

    history = await sql_store.recent_completed_audits("https://example.com", "owner-1")
    assert [item.id for item in history] == [latest.id, first.id]


@pytest.mark.asyncio
async def test_list_audits_for_user(sql_store):
    await sql_store.create_audit(_request())
    await sql_store.create_audit(_request(user_id="other-user"))

    audits = await sql_store.list_audits("owner-1")
    assert len(audits) == 1
    assert audits[0].user_id == "owner-1"


@pytest.mark.asyncio
async def test_notification_lifecycle(sql_store):
    record = await sql_store.create_audit(_request())
    drafts = [
        NotificationDraft(
            user_id="owner-1",
            audit_id=record.id,
            target=record.target,
            type=kind,
            priority=priority,
            title=kind,
            message=f"{kind} message",
            data={"score": 50},
        )
        for kind, priority in (("score_alert", "high"), ("score_drop", "high"), ("critical_issue", "urgent"))
    ]
    stored = [await sql_store.create_notification(draft) for draft in drafts]

    items, total, unread = await sql_store.list_notifications("owner-1")
    assert (total, unread) == (3, 3)
    assert {item.type for item in items} == {"score_alert", "score_drop", "critical_issue"}

    urgent, total, _ = await sql_store.list_notifications("owner-1", priority="urgent")
    assert total == 1
    assert urgent[0].data == {"score": 50}

    assert await sql_store.mark_notifications_read("owner-1", [stored[0].id]) == 1
    assert await sql_store.mark_notifications_read("owner-1", [stored[0].id]) == 0
    unread_items, total, unread = await sql_store.list_notifications("owner-1", read=False)
    assert (total, unread) == (2, 2)
    read_back = await sql_store.get_notification("owner-1", stored[0].id)
    assert read_back.read is True
    assert read_back.read_at is not None
    assert stored[1].read_at is None
    assert await sql_store.get_notification("other-user", stored[0].id) is None

    assert await sql_store.mark_notifications_read("owner-1") == 2
    assert await sql_store.delete_notifications("owner-1", [stored[1].id]) == 1
    assert await sql_store.delete_notifications("owner-1") == 2
    _, total, unread = await sql_store.list_notifications("owner-1")
    assert (total, unread) == (0, 0)


@pytest.mark.asyncio
async def test_preferences_default_and_save(sql_store):
    defaults = await sql_store.get_preferences("owner-1")
    assert defaults == AlertPreferences(min_score_threshold=70, min_score_drop=5, realtime_alerts=True)

    saved = AlertPreferences(min_score_threshold=80, min_score_drop=3, realtime_alerts=False)
    await sql_store.save_preferences("owner-1", saved)
    assert await sql_store.get_preferences("owner-1") == saved

    await sql_store.save_preferences("owner-1", AlertPreferences(min_score_threshold=60))
    assert (await sql_store.get_preferences("owner-1")).min_score_threshold == 60


@pytest.mark.asyncio
async def test_recover_stalled_audits_fails_old_in_progress_audits(sql_store):
    stale = await sql_store.create_audit(_request())
    fresh = await sql_store.create_audit(_request())
    await sql_store._update_audit(stale.id, created_at=datetime.now(timezone.utc) - timedelta(hours=5))

    with patch("database.async_session_maker", sql_store._session_maker):
        recovered = await recover_stalled_audits(max_age_minutes=120)

    assert recovered == 1
    failed = await sql_store.get_audit(stale.id)
    assert failed.status == "failed"
    assert failed.error_message == STALLED_AUDIT_MESSAGE
    assert (await sql_store.get_audit(fresh.id)).status == "queued"


@pytest.mark.asyncio
async def test_finished_audit_is_immutable(sql_store):
    record = await _complete(sql_store, _request(), 72, datetime.now(timezone.utc))

    assert await sql_store.mark_running(record.id, datetime.now(timezone.utc)) is False
    await sql_store.update_progress(record.id, 10, "Analyzing SEO...", "seo")
    await sql_store.set_overall_score(record.id, 5)
    await sql_store.finish_audit(
        record.id,
        status="failed",
        progress=10,
        message="Error: late",
        completed_at=datetime.now(timezone.utc),
        duration_seconds=1.0,
        error_message="late",
    )

    reloaded = await sql_store.get_audit(record.id)
    assert reloaded.status == "completed"
    assert reloaded.progress == 100
    assert reloaded.overall_score == 72
    assert reloaded.error_message is None
    with pytest.raises(AuditNotFoundError):
        await sql_store.mark_running("missing", datetime.now(timezone.utc))


@pytest.mark.asyncio
async def test_inferred_severity_is_stored_and_counted(sql_store):
    record = await sql_store.create_audit(_request(modules=(ModuleId.CHATBOT,)))
    result = ModuleResult(
        module=ModuleId.CHATBOT,
        score=40,
        issues=[
            Issue(description="Security vulnerability: broken TLS", category="Chatbot"),
            Issue(description="Widget loads late", severity="major", category="Chatbot"),
            Issue(description="No chatbot integration detected", category="Chatbot"),
        ],
        details=ChatbotDetails(),
    )
    await sql_store.append_module_result(record.id, result, position=1)

    payload = (await sql_store.get_audit(record.id)).model_dump(mode="json")

    issues = payload["module_results"][0]["issues"]
    assert [issue["severity"] for issue in issues] == ["critical", "major", "minor"]
    assert payload["issue_counts"] == {"critical": 1, "major": 1, "minor": 1}


@pytest.mark.asyncio
async def test_notifications_scoped_by_audit(sql_store):
    first = await sql_store.create_audit(_request())
    second = await sql_store.create_audit(_request())
    for audit in (first, second, second):
        await sql_store.create_notification(
            NotificationDraft(
                user_id="owner-1",
                audit_id=audit.id,
                target=audit.target,
                type="score_alert",
                priority="high",
                title="Low score",
                message="Score below threshold",
            )
        )

    items, total, _ = await sql_store.list_notifications("owner-1", audit_id=second.id)
    assert total == 2
    assert {item.audit_id for item in items} == {second.id}

    assert await sql_store.mark_notifications_read("owner-1", audit_id=first.id) == 1
    _, _, unread = await sql_store.list_notifications("owner-1")
    assert unread == 2

    assert await sql_store.delete_notifications("owner-1", audit_id=second.id) == 2
    remaining, total, _ = await sql_store.list_notifications("owner-1")
    assert total == 1
    assert remaining[0].audit_id == first.id
