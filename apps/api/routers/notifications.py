"""
Notification center: list, mark read, delete, and alert preferences.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from routers.audit import get_audit_store
from services.notifications import list_notifications
from services.persistence import AuditStore
from services.records import AlertPreferences, NotificationPriority, NotificationType

router = APIRouter()


class MarkReadRequest(BaseModel):
    user_id: str
    ids: List[str]


@router.get("")
async def get_notifications(
    user_id: str = Query(...),
    target: Optional[str] = Query(default=None),
    audit_id: Optional[str] = Query(default=None),
    read: Optional[bool] = Query(default=None),
    type: Optional[NotificationType] = Query(default=None),
    priority: Optional[NotificationPriority] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    store: AuditStore = Depends(get_audit_store),
):
    """Paged notifications with total and unread counts."""
    page = await list_notifications(
        store,
        user_id,
        target=target,
        audit_id=audit_id,
        read=read,
        type=type,
        priority=priority,
        limit=limit,
        offset=offset,
    )
    return {
        "notifications": [item.model_dump(mode="json") for item in page["notifications"]],
        "total": page["total"],
        "unread": page["unread"],
    }


@router.get("/preferences", response_model=AlertPreferences)
async def get_preferences(
    user_id: str = Query(...),
    store: AuditStore = Depends(get_audit_store),
):
    return await store.get_preferences(user_id)


@router.put("/preferences", response_model=AlertPreferences)
async def update_preferences(
    preferences: AlertPreferences,
    user_id: str = Query(...),
    store: AuditStore = Depends(get_audit_store),
):
    return await store.save_preferences(user_id, preferences)


@router.post("/read")
async def mark_many_read(
    request: MarkReadRequest,
    store: AuditStore = Depends(get_audit_store),
):
    updated = await store.mark_notifications_read(request.user_id, request.ids)
    return {"updated": updated}


@router.post("/read-all")
async def mark_all_read(
    user_id: str = Query(...),
    audit_id: Optional[str] = Query(default=None),
    store: AuditStore = Depends(get_audit_store),
):
    """Mark every unread notification read, or only those of one audit."""
    updated = await store.mark_notifications_read(user_id, audit_id=audit_id)
    return {"updated": updated}


@router.post("/{notification_id}/read")
async def mark_one_read(
    notification_id: str,
    user_id: str = Query(...),
    store: AuditStore = Depends(get_audit_store),
):
    if await store.get_notification(user_id, notification_id) is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    updated = await store.mark_notifications_read(user_id, [notification_id])
    return {"updated": updated}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user_id: str = Query(...),
    store: AuditStore = Depends(get_audit_store),
):
    deleted = await store.delete_notifications(user_id, [notification_id])
    if not deleted:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"deleted": deleted}


@router.delete("")
async def delete_all_notifications(
    user_id: str = Query(...),
    audit_id: Optional[str] = Query(default=None),
    store: AuditStore = Depends(get_audit_store),
):
    deleted = await store.delete_notifications(user_id, audit_id=audit_id)
    return {"deleted": deleted}
