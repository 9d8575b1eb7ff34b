"""Notification router - in-app notification inbox"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...auth import CurrentUser, get_current_user
from ...database import get_db
from ...errors import NotFoundError
from .repository import NotificationRepository

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    data: Optional[dict] = None
    isRead: bool
    createdAt: Optional[datetime] = None


def _to_response(notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        type=notification.type,
        title=notification.title,
        message=notification.message,
        data=notification.data,
        isRead=notification.is_read,
        createdAt=notification.created_at,
    )


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = Query(50, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Get the caller's notifications, newest first"""
    notifications = NotificationRepository.list_for_user(
        db, current_user.sub, unread_only=unread_only, limit=limit
    )
    return {
        "data": [_to_response(n) for n in notifications],
        "unreadCount": NotificationRepository.count_unread(db, current_user.sub),
    }


@router.post("/read-all")
async def mark_all_notifications_read(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Mark every notification of the caller as read"""
    updated = NotificationRepository.mark_all_read(db, current_user.sub)
    return {"message": "Notifications marked as read", "updated": updated}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = NotificationRepository.get_for_user(db, notification_id, current_user.sub)
    if not notification:
        raise NotFoundError("Notification not found")
    return _to_response(NotificationRepository.mark_read(db, notification))
