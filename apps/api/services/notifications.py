"""Post-audit diff engine: decides which notifications and alerts an audit produces."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from urllib.parse import urlparse

import numpy as np

from config import settings
from services.alerts import AlertTransport, get_alert_transport
from services.modules.types import (
    AccessibilityDetails,
    MobileDetails,
    ModuleId,
    PerformanceDetails,
    SecurityDetails,
)
from services.records import AlertPreferences, AuditRecord, NotificationDraft, NotificationRecord

logger = logging.getLogger(__name__)

MODULE_LABELS = {
    ModuleId.SEO: "SEO",
    ModuleId.PERFORMANCE: "Performance",
    ModuleId.ACCESSIBILITY: "Accessibility",
    ModuleId.SECURITY: "Security",
    ModuleId.MOBILE: "Mobile",
    ModuleId.CONTENT: "Content",
    ModuleId.CROSS_BROWSER: "Cross-browser",
    ModuleId.ANALYTICS: "Analytics",
    ModuleId.CHATBOT: "Chatbot",
}
POOR_VITAL_SCORE = 50
VITAL_LABELS = (
    ("lcp", "Poor Largest Contentful Paint (LCP) performance"),
    ("fid", "Poor First Input Delay (FID) performance"),
    ("cls", "Poor Cumulative Layout Shift (CLS) performance"),
)
CRITICAL_PREVIEW = 3


@dataclass(frozen=True)
class NotificationThresholds:
    min_score_threshold: int = 70
    min_score_drop: int = 5
    urgent_score_drop: int = 10
    degradation_percent: float = 10.0
    history_size: int = 5
    min_history: int = 3
    realtime_alerts: bool = True

    @classmethod
    def from_preferences(cls, preferences: AlertPreferences) -> "NotificationThresholds":
        return cls(
            min_score_threshold=preferences.min_score_threshold,
            min_score_drop=preferences.min_score_drop,
            urgent_score_drop=settings.URGENT_SCORE_DROP,
            degradation_percent=settings.PERFORMANCE_DEGRADATION_PERCENT,
            realtime_alerts=preferences.realtime_alerts,
        )


@dataclass(frozen=True)
class AlertDecision:
    priority: str
    subject: str
    message: str


@dataclass
class DiffOutcome:
    notifications: List[NotificationDraft] = field(default_factory=list)
    alerts: List[AlertDecision] = field(default_factory=list)


def site_name(target: str) -> str:
    return urlparse(target).netloc or target


def extract_critical_issues(record: AuditRecord) -> List[str]:
    """Critical signals read from the typed module payloads of a completed audit."""
    issues: List[str] = []
    for result in record.module_results:
        details = result.details
        if isinstance(details, SecurityDetails):
            if details.ssl.issues:
                issues.append("SSL/TLS configuration issues")
            issues.extend(f"Vulnerability: {item.description}" for item in details.vulnerabilities)
        elif isinstance(details, PerformanceDetails):
            vitals = details.core_web_vitals
            for key, text in VITAL_LABELS:
                metric = getattr(vitals, key)
                if metric is not None and metric.score < POOR_VITAL_SCORE:
                    issues.append(text)
        elif isinstance(details, AccessibilityDetails):
            critical = sum(1 for violation in details.violations if violation.impact == "critical")
            if critical:
                issues.append(f"{critical} critical accessibility violations")
        elif isinstance(details, MobileDetails):
            if details.viewport.issues:
                issues.append("Missing or improper viewport configuration")
    return issues


def evaluate_audit(
    current: AuditRecord,
    previous: Optional[AuditRecord],
    thresholds: NotificationThresholds,
) -> DiffOutcome:
    """Apply every threshold rule independently; pure, no I/O."""
    outcome = DiffOutcome()
    score = current.overall_score or 0
    name = site_name(current.target)

    def draft(type_: str, priority: str, title: str, message: str, **data) -> NotificationDraft:
        return NotificationDraft(
            user_id=current.user_id,
            audit_id=current.id,
            target=current.target,
            type=type_,
            priority=priority,
            title=title,
            message=message,
            data=data,
        )

    if score < thresholds.min_score_threshold:
        outcome.notifications.append(
            draft(
                "score_alert",
                "high",
                f"Low overall score: {score}",
                f"Your website's overall audit score is below the threshold of {thresholds.min_score_threshold}",
                score=score,
                threshold=thresholds.min_score_threshold,
            )
        )

    if previous is not None and previous.overall_score is not None:
        drop = previous.overall_score - score
        if drop >= thresholds.min_score_drop:
            outcome.notifications.append(
                draft(
                    "score_drop",
                    "high",
                    f"Score dropped by {drop} points",
                    f"Your website's overall score dropped from {previous.overall_score} to {score}",
                    previous_score=previous.overall_score,
                    score=score,
                    drop=drop,
                )
            )
            if drop >= thresholds.urgent_score_drop:
                outcome.alerts.append(
                    AlertDecision(
                        "urgent",
                        f"[URGENT] Significant score drop for {name}",
                        f"Your website {name} ({current.target}) has experienced a significant drop in "
                        f"overall score from {previous.overall_score} to {score} ({drop} points).",
                    )
                )

        previous_scores = previous.scores_by_module()
        for result in current.module_results:
            before = previous_scores.get(result.module.value)
            if before is None:
                continue
            category_drop = before - result.score
            if category_drop >= thresholds.min_score_drop:
                label = MODULE_LABELS.get(result.module, result.module.value)
                outcome.notifications.append(
                    draft(
                        "category_drop",
                        "medium",
                        f"{label} score dropped by {category_drop} points",
                        f"Your website's {label} score dropped from {before} to {result.score}",
                        module=result.module.value,
                        previous_score=before,
                        score=result.score,
                    )
                )

    critical = extract_critical_issues(current)
    if critical:
        preview = ", ".join(critical[:CRITICAL_PREVIEW])
        more = "..." if len(critical) > CRITICAL_PREVIEW else ""
        outcome.notifications.append(
            draft(
                "critical_issue",
                "urgent",
                f"{len(critical)} critical issues detected",
                f"Critical issues found: {preview}{more}",
                issues=critical,
            )
        )
        bullet_list = "\n- ".join(critical)
        outcome.alerts.append(
            AlertDecision(
                "critical",
                f"[CRITICAL] Security issues detected on {name}",
                f"Your website {name} ({current.target}) has {len(critical)} critical issues that "
                f"require immediate attention:\n\n- {bullet_list}",
            )
        )
    return outcome


def performance_degradation(history: Sequence[AuditRecord], thresholds: NotificationThresholds) -> Optional[float]:
    """Percent the newest performance score sits below the mean of the older ones.

    ``history`` is newest first. Returns None when there is not enough history,
    the newest audit has no performance result, or the drop is under threshold.
    """
    scores = []
    for record in history[: thresholds.history_size]:
        result = record.result_for(ModuleId.PERFORMANCE)
        if result is None:
            continue
        scores.append(result.score)
    if len(scores) < thresholds.min_history or history[0].result_for(ModuleId.PERFORMANCE) is None:
        return None

    baseline = float(np.mean(scores[1:]))
    if baseline <= 0:
        return None
    degradation = (baseline - scores[0]) / baseline * 100
    if degradation < thresholds.degradation_percent:
        return None
    return round(degradation, 1)


class NotificationEngine:
    """Persists diff-engine decisions and hands alerts to the transport.

    ``process_completed_audit`` never raises: each notification and alert is
    attempted on its own and failures are logged and skipped.
    """

    def __init__(self, store, transport: Optional[AlertTransport] = None):
        self.store = store
        self.transport = transport or get_alert_transport()

    async def _thresholds(self, user_id: str) -> NotificationThresholds:
        try:
            preferences = await self.store.get_preferences(user_id)
        except Exception:
            logger.exception("Could not load alert preferences for %s; using defaults", user_id)
            preferences = AlertPreferences(
                min_score_threshold=settings.DEFAULT_MIN_SCORE_THRESHOLD,
                min_score_drop=settings.DEFAULT_MIN_SCORE_DROP,
            )
        return NotificationThresholds.from_preferences(preferences)

    async def process_completed_audit(
        self,
        current: AuditRecord,
        previous: Optional[AuditRecord],
        thresholds: Optional[NotificationThresholds] = None,
    ) -> List[NotificationRecord]:
        stored: List[NotificationRecord] = []
        try:
            thresholds = thresholds or await self._thresholds(current.user_id)
            outcome = evaluate_audit(current, previous, thresholds)
            await self._add_degradation(current, thresholds, outcome)
        except Exception:
            logger.exception("Notification evaluation failed for audit %s", current.id)
            return stored

        for draft in outcome.notifications:
            try:
                stored.append(await self.store.create_notification(draft))
            except Exception:
                logger.exception("Could not store %s notification for audit %s", draft.type, current.id)

        if thresholds.realtime_alerts:
            for alert in outcome.alerts:
                await self._deliver(current, alert)
        logger.info(
            "Audit %s produced %s notification(s) and %s alert(s)",
            current.id,
            len(stored),
            len(outcome.alerts) if thresholds.realtime_alerts else 0,
        )
        return stored

    async def _add_degradation(
        self,
        current: AuditRecord,
        thresholds: NotificationThresholds,
        outcome: DiffOutcome,
    ) -> None:
        if current.result_for(ModuleId.PERFORMANCE) is None:
            return
        try:
            history = await self.store.recent_completed_audits(
                current.target, current.user_id, limit=thresholds.history_size
            )
        except Exception:
            logger.exception("Could not load audit history for %s", current.target)
            return
        if not history or history[0].id != current.id:
            history = [current] + [record for record in history if record.id != current.id]
        degradation = performance_degradation(history, thresholds)
        if degradation is None:
            return
        name = site_name(current.target)
        outcome.notifications.append(
            NotificationDraft(
                user_id=current.user_id,
                audit_id=current.id,
                target=current.target,
                type="performance_degradation",
                priority="high",
                title="Performance degradation detected",
                message=(
                    f"Your website's performance score has dropped by {degradation}% "
                    "compared to the average of previous audits."
                ),
                data={"degradation_percent": degradation},
            )
        )
        outcome.alerts.append(
            AlertDecision(
                "high",
                f"[ALERT] Performance degradation detected for {name}",
                f"Your website's performance score has dropped by {degradation}% compared to the "
                "average of previous audits.",
            )
        )

    async def _deliver(self, current: AuditRecord, alert: AlertDecision) -> None:
        audit_ref = {"audit_id": current.id, "target": current.target, "user_id": current.user_id}
        try:
            await self.transport.send(alert.priority, alert.subject, alert.message, audit_ref)
        except Exception:
            logger.exception("Alert delivery failed for audit %s (%s)", current.id, alert.priority)


async def list_notifications(store, user_id: str, **filters):
    items, total, unread = await store.list_notifications(user_id, **filters)
    return {"notifications": items, "total": total, "unread": unread}
