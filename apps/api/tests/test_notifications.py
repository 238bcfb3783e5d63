import pytest
from unittest.mock import AsyncMock, MagicMock

from services.modules.types import (
    AccessibilityDetails,
    AccessibilityViolation,
    CheckReport,
    ChatbotDetails,
    CoreWebVitals,
    MobileDetails,
    ModuleId,
    ModuleResult,
    PerformanceDetails,
    SecurityDetails,
    SslReport,
    ViewportReport,
    VitalMetric,
    Vulnerability,
    WcagCompliance,
)
from services.notifications import (
    NotificationEngine,
    NotificationThresholds,
    evaluate_audit,
    extract_critical_issues,
    performance_degradation,
)
from services.records import AlertPreferences, AuditRecord, NotificationRecord

DEFAULTS = NotificationThresholds()


def _quiet(module: ModuleId, score: int) -> ModuleResult:
    return ModuleResult(module=module, score=score, details=ChatbotDetails())


def _record(audit_id: str, score: int, results=None, target: str = "https://shop.example.com") -> AuditRecord:
    return AuditRecord(
        id=audit_id,
        target=target,
        user_id="u1",
        status="completed",
        overall_score=score,
        progress=100,
        module_results=list(results or []),
    )


def _critical_accessibility(score: int = 60) -> ModuleResult:
    return ModuleResult(
        module=ModuleId.ACCESSIBILITY,
        score=score,
        details=AccessibilityDetails(
            violations=[AccessibilityViolation(id="image-alt", impact="critical", description="Images must have alternate text")],
            wcag_compliance=WcagCompliance(a=97, aa=100, aaa=100),
        ),
    )


def _performance(score: int, lcp_score: int = 100) -> ModuleResult:
    return ModuleResult(
        module=ModuleId.PERFORMANCE,
        score=score,
        details=PerformanceDetails(core_web_vitals=CoreWebVitals(lcp=VitalMetric(value=1.0, unit="ms", score=lcp_score))),
    )


def _types(outcome):
    return [draft.type for draft in outcome.notifications]


def test_score_drop_of_twenty_is_one_high_notification():
    outcome = evaluate_audit(_record("a2", 60), _record("a1", 80), DEFAULTS)

    drops = [draft for draft in outcome.notifications if draft.type == "score_drop"]
    assert len(drops) == 1
    assert drops[0].priority == "high"
    assert drops[0].data["drop"] == 20
    assert [alert.priority for alert in outcome.alerts] == ["urgent"]


def test_drop_below_threshold_is_not_reported():
    thresholds = NotificationThresholds(min_score_drop=10)
    outcome = evaluate_audit(_record("a2", 72), _record("a1", 80), thresholds)

    assert "score_drop" not in _types(outcome)
    assert outcome.alerts == []


def test_drop_between_minimum_and_urgent_has_no_external_alert():
    outcome = evaluate_audit(_record("a2", 74), _record("a1", 80), DEFAULTS)

    assert _types(outcome) == ["score_drop"]
    assert outcome.alerts == []


def test_low_score_and_drop_are_the_only_two_notifications():
    outcome = evaluate_audit(_record("a2", 50), _record("a1", 85), DEFAULTS)

    assert _types(outcome) == ["score_alert", "score_drop"]
    low = outcome.notifications[0]
    assert low.priority == "high"
    assert "70" in low.message
    assert outcome.notifications[1].priority in ("high", "urgent")


def test_low_score_message_uses_configured_threshold():
    outcome = evaluate_audit(_record("a1", 50), None, NotificationThresholds(min_score_threshold=65))

    assert _types(outcome) == ["score_alert"]
    assert "65" in outcome.notifications[0].message


def test_category_drop_names_the_module():
    previous = _record("a1", 80, [_quiet(ModuleId.SEO, 90), _quiet(ModuleId.MOBILE, 70)])
    current = _record("a2", 80, [_quiet(ModuleId.SEO, 80), _quiet(ModuleId.MOBILE, 69), _quiet(ModuleId.CHATBOT, 0)])

    outcome = evaluate_audit(current, previous, DEFAULTS)

    assert _types(outcome) == ["category_drop"]
    draft = outcome.notifications[0]
    assert draft.priority == "medium"
    assert draft.title == "SEO score dropped by 10 points"
    assert draft.data["module"] == "seo"


def test_no_previous_audit_means_no_drop_rules():
    outcome = evaluate_audit(_record("a1", 90, [_quiet(ModuleId.SEO, 90)]), None, DEFAULTS)

    assert outcome.notifications == []
    assert outcome.alerts == []


def test_single_critical_accessibility_violation_is_critical():
    record = _record("a1", 90, [_critical_accessibility()])
    outcome = evaluate_audit(record, None, DEFAULTS)

    assert _types(outcome) == ["critical_issue"]
    assert outcome.notifications[0].priority == "urgent"
    assert outcome.notifications[0].message == "Critical issues found: 1 critical accessibility violations"
    assert [alert.priority for alert in outcome.alerts] == ["critical"]


def test_critical_issue_preview_is_truncated_to_three():
    security = ModuleResult(
        module=ModuleId.SECURITY,
        score=20,
        details=SecurityDetails(
            ssl=SslReport(https=False, issues=["Site is not using HTTPS"], score=0),
            headers=CheckReport(score=0),
            csp=CheckReport(score=0),
            mixed_content=CheckReport(score=0),
            vulnerabilities=[
                Vulnerability(type="insecure-form", severity="high", description="Form submitting data over unencrypted HTTP"),
                Vulnerability(type="missing-xss-protection", severity="medium", description="Missing X-XSS-Protection header"),
            ],
        ),
    )
    mobile = ModuleResult(
        module=ModuleId.MOBILE,
        score=40,
        details=MobileDetails(viewport=ViewportReport(present=False, issues=["Missing viewport meta tag"], score=0)),
    )
    record = _record("a1", 90, [security, mobile, _performance(60, lcp_score=20)])

    issues = extract_critical_issues(record)
    outcome = evaluate_audit(record, None, DEFAULTS)

    assert len(issues) == 5
    assert "Poor Largest Contentful Paint (LCP) performance" in issues
    assert "Missing or improper viewport configuration" in issues
    critical = outcome.notifications[0]
    assert critical.title == "5 critical issues detected"
    assert critical.message.endswith("...")
    assert critical.message.count(", ") == 2
    assert len(outcome.alerts) == 1


def test_performance_degradation_against_history_mean():
    history = [
        _record("a4", 70, [_performance(60)]),
        _record("a3", 80, [_performance(80)]),
        _record("a2", 80, [_performance(80)]),
        _record("a1", 80, [_performance(80)]),
    ]
    assert performance_degradation(history, DEFAULTS) == 25.0


def test_performance_degradation_needs_enough_history():
    history = [_record("a2", 70, [_performance(40)]), _record("a1", 80, [_performance(80)])]
    assert performance_degradation(history, DEFAULTS) is None


def test_small_performance_dip_is_ignored():
    history = [
        _record("a3", 80, [_performance(76)]),
        _record("a2", 80, [_performance(80)]),
        _record("a1", 80, [_performance(80)]),
    ]
    assert performance_degradation(history, DEFAULTS) is None


def _store(history=None):
    store = MagicMock()
    counter = {"n": 0}

    async def _create(draft):
        counter["n"] += 1
        return NotificationRecord(id=f"n{counter['n']}", **draft.model_dump())

    store.create_notification = AsyncMock(side_effect=_create)
    store.recent_completed_audits = AsyncMock(return_value=history or [])
    store.get_preferences = AsyncMock()
    return store


@pytest.mark.asyncio
async def test_engine_invokes_transport_once_for_critical_violation():
    store = _store()
    transport = MagicMock()
    transport.send = AsyncMock()
    engine = NotificationEngine(store, transport)

    stored = await engine.process_completed_audit(_record("a1", 90, [_critical_accessibility()]), None, DEFAULTS)

    assert [item.type for item in stored] == ["critical_issue"]
    transport.send.assert_awaited_once()
    priority, subject, _, audit_ref = transport.send.await_args.args
    assert priority == "critical"
    assert "shop.example.com" in subject
    assert audit_ref["audit_id"] == "a1"


@pytest.mark.asyncio
async def test_engine_respects_realtime_alerts_off():
    store = _store()
    transport = MagicMock()
    transport.send = AsyncMock()
    engine = NotificationEngine(store, transport)
    thresholds = NotificationThresholds(realtime_alerts=False)

    stored = await engine.process_completed_audit(_record("a1", 90, [_critical_accessibility()]), None, thresholds)

    assert len(stored) == 1
    transport.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_engine_survives_storage_and_transport_failures():
    store = _store()
    store.create_notification = AsyncMock(side_effect=RuntimeError("db down"))
    transport = MagicMock()
    transport.send = AsyncMock(side_effect=RuntimeError("webhook down"))
    engine = NotificationEngine(store, transport)

    stored = await engine.process_completed_audit(
        _record("a2", 40, [_critical_accessibility()]), _record("a1", 90), DEFAULTS
    )

    assert stored == []
    assert transport.send.await_count == 2


@pytest.mark.asyncio
async def test_engine_adds_degradation_notification_from_history():
    current = _record("a4", 75, [_performance(60)])
    history = [
        current,
        _record("a3", 80, [_performance(80)]),
        _record("a2", 80, [_performance(80)]),
    ]
    store = _store(history)
    transport = MagicMock()
    transport.send = AsyncMock()
    engine = NotificationEngine(store, transport)

    stored = await engine.process_completed_audit(current, None, NotificationThresholds(min_score_threshold=0))

    assert [item.type for item in stored] == ["performance_degradation"]
    assert stored[0].data["degradation_percent"] == 25.0
    store.recent_completed_audits.assert_awaited_once_with("https://shop.example.com", "u1", limit=5)
    assert transport.send.await_args.args[0] == "high"


@pytest.mark.asyncio
async def test_engine_loads_thresholds_from_preferences():
    store = _store()
    store.get_preferences = AsyncMock(return_value=AlertPreferences(min_score_threshold=95, min_score_drop=5))
    engine = NotificationEngine(store, MagicMock(send=AsyncMock()))

    stored = await engine.process_completed_audit(_record("a1", 90), None)

    assert [item.type for item in stored] == ["score_alert"]
    store.get_preferences.assert_awaited_once_with("u1")
