"""Audit-over-audit comparison, score trends and per-audit summaries."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Literal, Optional, Sequence

from pydantic import BaseModel

from services.modules.types import ModuleId
from services.records import AuditRecord

logger = logging.getLogger(__name__)

# A module moving by more than this many points counts as improved or declined.
AREA_CHANGE_POINTS = 5
TREND_HISTORY_LIMIT = 100

TrendPeriod = Literal["last30days", "last3months", "lastYear"]
TREND_PERIOD_DAYS: Dict[str, int] = {"last30days": 30, "last3months": 91, "lastYear": 365}


class NoAuditHistoryError(LookupError):
    """No completed audits exist for the requested comparison or trend."""


class ScoreComparison(BaseModel):
    current: int
    previous: int
    change: int
    percent_change: float


class ModuleComparison(BaseModel):
    module: ModuleId
    scores: ScoreComparison


class AuditComparison(BaseModel):
    current_audit_id: str
    previous_audit_id: str
    target: str
    overall: ScoreComparison
    modules: List[ModuleComparison] = []
    improvement_areas: List[str] = []
    decline_areas: List[str] = []
    time_gap: Optional[str] = None


class TrendPoint(BaseModel):
    date: str
    score: int


class TrendAnalysis(BaseModel):
    target: str
    period: TrendPeriod
    overall: List[TrendPoint] = []
    modules: Dict[str, List[TrendPoint]] = {}
    most_improved: Optional[str] = None
    least_improved: Optional[str] = None


class AuditSummary(BaseModel):
    audit_id: str
    target: str
    status: str
    overall_score: Optional[int] = None
    module_scores: Dict[str, int] = {}
    issue_counts: Dict[str, int] = {}
    total_issues: int = 0
    failed_modules: List[ModuleId] = []
    completed_at: Optional[datetime] = None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _reference_time(record: AuditRecord) -> Optional[datetime]:
    return _as_utc(record.completed_at or record.created_at)


def compare_scores(current: int, previous: int) -> ScoreComparison:
    change = current - previous
    percent_change = 0.0 if previous == 0 else round(change / previous * 100, 2)
    return ScoreComparison(current=current, previous=previous, change=change, percent_change=percent_change)


def describe_time_gap(current: datetime, previous: datetime) -> str:
    days = int((current - previous).total_seconds() // 86400)
    if days < 1:
        return "Less than a day"
    if days == 1:
        return "1 day"
    if days < 7:
        return f"{days} days"
    if days < 14:
        return "1 week"
    if days < 30:
        return f"{days // 7} weeks"
    if days < 60:
        return "1 month"
    if days < 365:
        return f"{days // 30} months"
    if days < 730:
        return "1 year"
    return f"{days // 365} years"


def compare_audits(current: AuditRecord, previous: AuditRecord) -> AuditComparison:
    """Score deltas between two audits of the same site.

    Only modules present in both audits are compared; they are listed in
    registry order as stored on the current audit.
    """
    previous_scores = previous.scores_by_module()
    modules: List[ModuleComparison] = []
    improved: List[str] = []
    declined: List[str] = []
    for result in current.module_results:
        if result.module.value not in previous_scores:
            continue
        scores = compare_scores(result.score, previous_scores[result.module.value])
        modules.append(ModuleComparison(module=result.module, scores=scores))
        if scores.change > AREA_CHANGE_POINTS:
            improved.append(f"{result.module.value}: +{scores.change} points")
        elif scores.change < -AREA_CHANGE_POINTS:
            declined.append(f"{result.module.value}: {scores.change} points")

    current_time, previous_time = _reference_time(current), _reference_time(previous)
    time_gap = None
    if current_time is not None and previous_time is not None:
        time_gap = describe_time_gap(current_time, previous_time)

    return AuditComparison(
        current_audit_id=current.id,
        previous_audit_id=previous.id,
        target=current.target,
        overall=compare_scores(current.overall_score or 0, previous.overall_score or 0),
        modules=modules,
        improvement_areas=improved,
        decline_areas=declined,
        time_gap=time_gap,
    )


async def compare_with_previous(store, record: AuditRecord) -> AuditComparison:
    previous = await store.previous_completed_audit(record)
    if previous is None:
        raise NoAuditHistoryError(f"No previous audit of {record.target} to compare with")
    return compare_audits(record, previous)


async def compare_latest_audits(store, target: str, user_id: str) -> Optional[AuditComparison]:
    """Compare the two most recent completed audits of a site, if there are two."""
    audits = await store.recent_completed_audits(target, user_id, limit=2)
    if len(audits) < 2:
        return None
    return compare_audits(audits[0], audits[1])


def analyze_trends(
    target: str,
    history: Sequence[AuditRecord],
    period: TrendPeriod = "last30days",
    now: Optional[datetime] = None,
) -> TrendAnalysis:
    start = (now or datetime.now(timezone.utc)) - timedelta(days=TREND_PERIOD_DAYS[period])
    audits = sorted(
        (record for record in history if (_reference_time(record) or start) >= start),
        key=lambda record: _reference_time(record) or start,
    )
    if not audits:
        raise NoAuditHistoryError(f"No completed audits of {target} in {period}")

    overall: List[TrendPoint] = []
    modules: Dict[str, List[TrendPoint]] = {module.value: [] for module in ModuleId}
    for record in audits:
        day = (_reference_time(record) or start).date().isoformat()
        overall.append(TrendPoint(date=day, score=record.overall_score or 0))
        for result in record.module_results:
            modules[result.module.value].append(TrendPoint(date=day, score=result.score))
    modules = {module: points for module, points in modules.items() if points}

    improvements = {
        module: (points[-1].score - points[0].score if len(points) >= 2 else 0)
        for module, points in modules.items()
    }
    most_improved = max(improvements, key=improvements.get) if improvements else None
    least_improved = min(improvements, key=improvements.get) if improvements else None

    return TrendAnalysis(
        target=target,
        period=period,
        overall=overall,
        modules=modules,
        most_improved=most_improved,
        least_improved=least_improved,
    )


async def load_trends(
    store,
    target: str,
    user_id: str,
    period: TrendPeriod = "last30days",
    now: Optional[datetime] = None,
) -> TrendAnalysis:
    history = await store.recent_completed_audits(target, user_id, limit=TREND_HISTORY_LIMIT)
    logger.debug("Loaded %s completed audit(s) of %s for trend analysis", len(history), target)
    return analyze_trends(target, history, period, now)


def summarize_audit(record: AuditRecord) -> AuditSummary:
    counts = record.issue_counts
    return AuditSummary(
        audit_id=record.id,
        target=record.target,
        status=record.status,
        overall_score=record.overall_score,
        module_scores=record.scores_by_module(),
        issue_counts=counts,
        total_issues=sum(counts.values()),
        failed_modules=[result.module for result in record.module_results if result.failed],
        completed_at=record.completed_at,
    )
