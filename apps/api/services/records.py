"""Serializable audit request and record shapes."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from services.modules.types import ModuleId, ModuleResult

AuditStatus = Literal["queued", "running", "completed", "failed"]
TERMINAL_STATUSES = ("completed", "failed")
IN_PROGRESS_STATUSES = ("queued", "running")

ALL_MODULES: Tuple[ModuleId, ...] = tuple(ModuleId)
SEVERITY_LEVELS = ("critical", "major", "minor")


class AuditRequest(BaseModel):
    """What to audit and for whom; frozen once the pipeline starts."""

    model_config = ConfigDict(frozen=True)

    target: str
    user_id: str
    modules: Tuple[ModuleId, ...] = ALL_MODULES
    options: Dict[str, Any] = {}

    @field_validator("target")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        value = (value or "").strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("target must be an absolute http(s) URL")
        return value

    @field_validator("modules")
    @classmethod
    def _dedupe_modules(cls, value: Tuple[ModuleId, ...]) -> Tuple[ModuleId, ...]:
        if not value:
            raise ValueError("at least one module must be enabled")
        return tuple(dict.fromkeys(value))


class AuditRecord(BaseModel):
    """Point-in-time view of one audit and its module results."""

    id: str
    target: str
    user_id: str
    status: AuditStatus
    overall_score: Optional[int] = Field(default=None, ge=0, le=100)
    progress: int = Field(default=0, ge=0, le=100)
    status_message: Optional[str] = None
    current_category: Optional[str] = None
    enabled_modules: List[ModuleId] = []
    module_results: List[ModuleResult] = []
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def result_for(self, module: ModuleId) -> Optional[ModuleResult]:
        for result in self.module_results:
            if result.module == module:
                return result
        return None

    def scores_by_module(self) -> Dict[str, int]:
        return {result.module.value: result.score for result in self.module_results}

    @computed_field
    @property
    def issue_counts(self) -> Dict[str, int]:
        """Issues per severity across every module result."""
        counts = {severity: 0 for severity in SEVERITY_LEVELS}
        for result in self.module_results:
            for issue in result.issues:
                counts[issue.severity] += 1
        return counts


NotificationType = Literal[
    "score_alert",
    "score_drop",
    "category_drop",
    "critical_issue",
    "performance_degradation",
]
NotificationPriority = Literal["low", "medium", "high", "urgent", "critical"]


class NotificationDraft(BaseModel):
    """A notification decided by the diff engine, not yet stored."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    audit_id: str
    target: str
    type: NotificationType
    priority: NotificationPriority
    title: str
    message: str
    data: Dict[str, Any] = {}


class NotificationRecord(NotificationDraft):
    id: str
    read: bool = False
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AlertPreferences(BaseModel):
    min_score_threshold: int = Field(default=70, ge=0, le=100)
    min_score_drop: int = Field(default=5, ge=1, le=100)
    realtime_alerts: bool = True
