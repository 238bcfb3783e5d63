"""Persistence facade for audits, module results, notifications and preferences."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter
from sqlalchemy import delete, func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

import database
from config import settings
from models.alert_preferences import AlertPreference
from models.audit import Audit
from models.module_result import AuditModuleResult
from models.notification import Notification
from models.user import User
from services.modules.types import Issue, ModuleDetails, ModuleId, ModuleResult
from services.records import (
    IN_PROGRESS_STATUSES,
    AlertPreferences,
    AuditRecord,
    AuditRequest,
    NotificationDraft,
    NotificationRecord,
)

logger = logging.getLogger(__name__)

_details_adapter = TypeAdapter(ModuleDetails)


class AuditNotFoundError(LookupError):
    def __init__(self, audit_id: str):
        super().__init__(f"Audit {audit_id} not found")
        self.audit_id = audit_id


class PersistenceError(RuntimeError):
    """The store could not read or write; aborts the audit that hit it."""


class AuditStore(ABC):
    @abstractmethod
    async def create_audit(self, request: AuditRequest, status: str = "queued") -> AuditRecord: ...

    @abstractmethod
    async def get_audit(self, audit_id: str, user_id: Optional[str] = None) -> AuditRecord: ...

    @abstractmethod
    async def get_request(self, audit_id: str) -> AuditRequest: ...

    @abstractmethod
    async def list_audits(self, user_id: str, limit: int = 50, offset: int = 0) -> List[AuditRecord]: ...

    @abstractmethod
    async def mark_running(self, audit_id: str, started_at: datetime) -> bool: ...

    @abstractmethod
    async def update_progress(self, audit_id: str, percent: int, message: str, category: Optional[str]) -> None: ...

    @abstractmethod
    async def append_module_result(self, audit_id: str, result: ModuleResult, position: int = 0) -> None: ...

    @abstractmethod
    async def set_overall_score(self, audit_id: str, score: int) -> None: ...

    @abstractmethod
    async def finish_audit(
        self,
        audit_id: str,
        *,
        status: str,
        progress: int,
        message: str,
        completed_at: datetime,
        duration_seconds: float,
        error_message: Optional[str] = None,
    ) -> None: ...

    @abstractmethod
    async def previous_completed_audit(self, record: AuditRecord) -> Optional[AuditRecord]: ...

    @abstractmethod
    async def recent_completed_audits(self, target: str, user_id: str, limit: int = 5) -> List[AuditRecord]: ...

    @abstractmethod
    async def create_notification(self, draft: NotificationDraft) -> NotificationRecord: ...

    @abstractmethod
    async def list_notifications(
        self,
        user_id: str,
        *,
        target: Optional[str] = None,
        audit_id: Optional[str] = None,
        read: Optional[bool] = None,
        type: Optional[str] = None,
        priority: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[NotificationRecord], int, int]: ...

    @abstractmethod
    async def get_notification(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]: ...

    @abstractmethod
    async def mark_notifications_read(
        self, user_id: str, ids: Optional[Sequence[str]] = None, audit_id: Optional[str] = None
    ) -> int: ...

    @abstractmethod
    async def delete_notifications(
        self, user_id: str, ids: Optional[Sequence[str]] = None, audit_id: Optional[str] = None
    ) -> int: ...

    @abstractmethod
    async def get_preferences(self, user_id: str) -> AlertPreferences: ...

    @abstractmethod
    async def save_preferences(self, user_id: str, preferences: AlertPreferences) -> AlertPreferences: ...


def module_result_to_row(audit_id: str, result: ModuleResult, position: int) -> AuditModuleResult:
    return AuditModuleResult(
        audit_id=audit_id,
        module=result.module.value,
        position=position,
        status=result.status,
        score=result.score,
        issues_json=[issue.model_dump(mode="json") for issue in result.issues],
        details_json=result.details.model_dump(mode="json"),
        duration_ms=result.duration_ms,
    )


def module_result_from_row(row: AuditModuleResult) -> ModuleResult:
    return ModuleResult(
        module=ModuleId(row.module),
        score=row.score,
        issues=[Issue.model_validate(item) for item in row.issues_json or []],
        details=_details_adapter.validate_python(row.details_json),
        status=row.status,
        duration_ms=row.duration_ms or 0,
    )


def audit_to_record(audit: Audit, results: Optional[Iterable[AuditModuleResult]] = None) -> AuditRecord:
    rows = list(results if results is not None else audit.module_results)
    return AuditRecord(
        id=audit.id,
        target=audit.target,
        user_id=audit.user_id,
        status=audit.status,
        overall_score=audit.overall_score,
        progress=int(audit.progress or 0),
        status_message=audit.status_message,
        current_category=audit.current_category,
        enabled_modules=[ModuleId(value) for value in audit.enabled_modules or []],
        module_results=[module_result_from_row(row) for row in sorted(rows, key=lambda row: row.position)],
        error_message=audit.error_message,
        created_at=audit.created_at,
        started_at=audit.started_at,
        completed_at=audit.completed_at,
        duration_seconds=audit.duration_seconds,
    )


def notification_to_record(row: Notification) -> NotificationRecord:
    return NotificationRecord(
        id=row.id,
        user_id=row.user_id,
        audit_id=row.audit_id or "",
        target=row.target,
        type=row.type,
        priority=row.priority,
        title=row.title,
        message=row.message,
        data=row.data_json or {},
        read=bool(row.read),
        read_at=row.read_at,
        created_at=row.created_at,
    )


async def ensure_user(db: AsyncSession, user_id: str) -> User:
    user_result = await db.execute(select(User).where(User.id == user_id))
    user = user_result.scalar_one_or_none()
    if not user:
        user = User(id=user_id, email=f"{user_id}@local.invalid")
        db.add(user)
        await db.flush()
    return user


class SqlAuditStore(AuditStore):
    """AuditStore over the SQLAlchemy async session factory.

    Every call runs in its own session; driver errors surface as
    ``PersistenceError`` so the orchestrator can tell them from module bugs.
    """

    def __init__(self, session_maker=None):
        self._session_maker = session_maker

    def _session(self) -> AsyncSession:
        maker = self._session_maker or database.async_session_maker
        return maker()

    async def _load_audit(self, db: AsyncSession, audit_id: str, user_id: Optional[str] = None) -> Audit:
        query = select(Audit).options(selectinload(Audit.module_results)).where(Audit.id == audit_id)
        if user_id is not None:
            query = query.where(Audit.user_id == user_id)
        audit = (await db.execute(query)).scalar_one_or_none()
        if audit is None:
            raise AuditNotFoundError(audit_id)
        return audit

    async def _update_audit(self, audit_id: str, *conditions: Any, **values: Any) -> int:
        """Apply ``values`` where ``conditions`` hold; returns the rows changed.

        An audit that does not exist raises ``AuditNotFoundError``; one that
        exists but fails ``conditions`` is left alone and yields 0.
        """
        try:
            async with self._session() as db:
                result = await db.execute(
                    update(Audit).where(Audit.id == audit_id, *conditions).values(**values)
                )
                await db.commit()
                changed = int(result.rowcount or 0)
                exists = changed > 0 or (
                    await db.scalar(select(Audit.id).where(Audit.id == audit_id))
                ) is not None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not update audit {audit_id}: {exc}") from exc
        if not exists:
            raise AuditNotFoundError(audit_id)
        return changed

    async def create_audit(self, request: AuditRequest, status: str = "queued") -> AuditRecord:
        try:
            async with self._session() as db:
                await ensure_user(db, request.user_id)
                audit = Audit(
                    user_id=request.user_id,
                    target=request.target,
                    status=status,
                    progress=0,
                    status_message="Audit queued",
                    enabled_modules=[module.value for module in request.modules],
                    options=dict(request.options),
                )
                db.add(audit)
                await db.commit()
                await db.refresh(audit)
                return audit_to_record(audit, results=[])
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not create audit for {request.target}: {exc}") from exc

    async def get_audit(self, audit_id: str, user_id: Optional[str] = None) -> AuditRecord:
        try:
            async with self._session() as db:
                return audit_to_record(await self._load_audit(db, audit_id, user_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load audit {audit_id}: {exc}") from exc

    async def get_request(self, audit_id: str) -> AuditRequest:
        try:
            async with self._session() as db:
                audit = (await db.execute(select(Audit).where(Audit.id == audit_id))).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load audit {audit_id}: {exc}") from exc
        if audit is None:
            raise AuditNotFoundError(audit_id)
        return AuditRequest(
            target=audit.target,
            user_id=audit.user_id,
            modules=tuple(ModuleId(value) for value in audit.enabled_modules or []),
            options=audit.options or {},
        )

    async def list_audits(self, user_id: str, limit: int = 50, offset: int = 0) -> List[AuditRecord]:
        try:
            async with self._session() as db:
                result = await db.execute(
                    select(Audit)
                    .options(selectinload(Audit.module_results))
                    .where(Audit.user_id == user_id)
                    .order_by(Audit.created_at.desc())
                    .offset(offset)
                    .limit(limit)
                )
                return [audit_to_record(audit) for audit in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not list audits for {user_id}: {exc}") from exc

    async def mark_running(self, audit_id: str, started_at: datetime) -> bool:
        """Claim a queued audit; False when another run already took it."""
        claimed = await self._update_audit(
            audit_id,
            Audit.status == "queued",
            status="running",
            progress=0,
            started_at=started_at,
            status_message="Audit started",
            error_message=None,
        )
        return claimed > 0

    async def update_progress(self, audit_id: str, percent: int, message: str, category: Optional[str]) -> None:
        await self._update_audit(
            audit_id,
            Audit.status == "running",
            progress=percent,
            status_message=message,
            current_category=category,
        )

    async def append_module_result(self, audit_id: str, result: ModuleResult, position: int = 0) -> None:
        try:
            async with self._session() as db:
                db.add(module_result_to_row(audit_id, result, position))
                await db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not store {result.module.value} result for audit {audit_id}: {exc}"
            ) from exc

    async def set_overall_score(self, audit_id: str, score: int) -> None:
        await self._update_audit(audit_id, Audit.status == "running", overall_score=score)

    async def finish_audit(
        self,
        audit_id: str,
        *,
        status: str,
        progress: int,
        message: str,
        completed_at: datetime,
        duration_seconds: float,
        error_message: Optional[str] = None,
    ) -> None:
        values: Dict[str, Any] = {
            "status": status,
            "progress": progress,
            "status_message": message,
            "completed_at": completed_at,
            "duration_seconds": duration_seconds,
            "current_category": None,
        }
        if error_message is not None:
            values["error_message"] = error_message
        if status == "failed":
            values["overall_score"] = None
        # Terminal records are immutable; a late or duplicate finish is a no-op.
        finished = await self._update_audit(audit_id, Audit.status.in_(IN_PROGRESS_STATUSES), **values)
        if not finished:
            logger.warning("Audit %s already has a final status; leaving it unchanged", audit_id)

    async def previous_completed_audit(self, record: AuditRecord) -> Optional[AuditRecord]:
        try:
            async with self._session() as db:
                query = (
                    select(Audit)
                    .options(selectinload(Audit.module_results))
                    .where(
                        Audit.target == record.target,
                        Audit.user_id == record.user_id,
                        Audit.status == "completed",
                        Audit.id != record.id,
                    )
                    .order_by(Audit.completed_at.desc(), Audit.created_at.desc())
                    .limit(1)
                )
                if record.completed_at is not None:
                    query = query.where(Audit.completed_at <= record.completed_at)
                audit = (await db.execute(query)).scalar_one_or_none()
                return audit_to_record(audit) if audit else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load previous audit for {record.target}: {exc}") from exc

    async def recent_completed_audits(self, target: str, user_id: str, limit: int = 5) -> List[AuditRecord]:
        try:
            async with self._session() as db:
                result = await db.execute(
                    select(Audit)
                    .options(selectinload(Audit.module_results))
                    .where(Audit.target == target, Audit.user_id == user_id, Audit.status == "completed")
                    .order_by(Audit.completed_at.desc(), Audit.created_at.desc())
                    .limit(limit)
                )
                return [audit_to_record(audit) for audit in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load audit history for {target}: {exc}") from exc

    async def create_notification(self, draft: NotificationDraft) -> NotificationRecord:
        try:
            async with self._session() as db:
                await ensure_user(db, draft.user_id)
                row = Notification(
                    user_id=draft.user_id,
                    audit_id=draft.audit_id or None,
                    target=draft.target,
                    type=draft.type,
                    priority=draft.priority,
                    title=draft.title,
                    message=draft.message,
                    data_json=dict(draft.data),
                    read=False,
                )
                db.add(row)
                await db.commit()
                await db.refresh(row)
                return notification_to_record(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not store {draft.type} notification: {exc}") from exc

    async def list_notifications(
        self,
        user_id: str,
        *,
        target: Optional[str] = None,
        audit_id: Optional[str] = None,
        read: Optional[bool] = None,
        type: Optional[str] = None,
        priority: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[NotificationRecord], int, int]:
        filters = [Notification.user_id == user_id]
        if target is not None:
            filters.append(Notification.target == target)
        if audit_id is not None:
            filters.append(Notification.audit_id == audit_id)
        if read is not None:
            filters.append(Notification.read == read)
        if type is not None:
            filters.append(Notification.type == type)
        if priority is not None:
            filters.append(Notification.priority == priority)
        try:
            async with self._session() as db:
                rows = await db.execute(
                    select(Notification)
                    .where(*filters)
                    .order_by(Notification.created_at.desc(), Notification.id)
                    .offset(offset)
                    .limit(limit)
                )
                total = await db.scalar(select(func.count()).select_from(Notification).where(*filters))
                unread = await db.scalar(
                    select(func.count())
                    .select_from(Notification)
                    .where(Notification.user_id == user_id, Notification.read.is_(False))
                )
                return [notification_to_record(row) for row in rows.scalars().all()], int(total or 0), int(unread or 0)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not list notifications for {user_id}: {exc}") from exc

    async def get_notification(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        try:
            async with self._session() as db:
                row = (
                    await db.execute(
                        select(Notification).where(
                            Notification.id == notification_id, Notification.user_id == user_id
                        )
                    )
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load notification {notification_id}: {exc}") from exc
        return notification_to_record(row) if row else None

    async def mark_notifications_read(
        self, user_id: str, ids: Optional[Sequence[str]] = None, audit_id: Optional[str] = None
    ) -> int:
        statement = update(Notification).where(Notification.user_id == user_id, Notification.read.is_(False))
        if ids is not None:
            statement = statement.where(Notification.id.in_(list(ids)))
        if audit_id is not None:
            statement = statement.where(Notification.audit_id == audit_id)
        try:
            async with self._session() as db:
                result = await db.execute(statement.values(read=True, read_at=datetime.now(timezone.utc)))
                await db.commit()
                return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not mark notifications read for {user_id}: {exc}") from exc

    async def delete_notifications(
        self, user_id: str, ids: Optional[Sequence[str]] = None, audit_id: Optional[str] = None
    ) -> int:
        statement = delete(Notification).where(Notification.user_id == user_id)
        if ids is not None:
            statement = statement.where(Notification.id.in_(list(ids)))
        if audit_id is not None:
            statement = statement.where(Notification.audit_id == audit_id)
        try:
            async with self._session() as db:
                result = await db.execute(statement)
                await db.commit()
                return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not delete notifications for {user_id}: {exc}") from exc

    async def get_preferences(self, user_id: str) -> AlertPreferences:
        try:
            async with self._session() as db:
                row = (
                    await db.execute(select(AlertPreference).where(AlertPreference.user_id == user_id))
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load alert preferences for {user_id}: {exc}") from exc
        if row is None:
            return AlertPreferences(
                min_score_threshold=settings.DEFAULT_MIN_SCORE_THRESHOLD,
                min_score_drop=settings.DEFAULT_MIN_SCORE_DROP,
            )
        return AlertPreferences(
            min_score_threshold=row.min_score_threshold,
            min_score_drop=row.min_score_drop,
            realtime_alerts=bool(row.realtime_alerts),
        )

    async def save_preferences(self, user_id: str, preferences: AlertPreferences) -> AlertPreferences:
        try:
            async with self._session() as db:
                await ensure_user(db, user_id)
                row = (
                    await db.execute(select(AlertPreference).where(AlertPreference.user_id == user_id))
                ).scalar_one_or_none()
                if row is None:
                    row = AlertPreference(user_id=user_id)
                    db.add(row)
                row.min_score_threshold = preferences.min_score_threshold
                row.min_score_drop = preferences.min_score_drop
                row.realtime_alerts = preferences.realtime_alerts
                await db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not save alert preferences for {user_id}: {exc}") from exc
        return preferences
