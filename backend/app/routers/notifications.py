from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.security import get_current_user
from app.db.session import get_db
from app.models.notification import Notification
from app.models.user import User
from app.schemas.notification import NotificationPublic, NotificationsResponse
from app.services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


def _public(n: Notification) -> NotificationPublic:
    return NotificationPublic(
        id=str(n.id),
        title=n.title,
        content=n.content,
        type=n.type.value,
        is_read=bool(n.is_read),
        created_at=n.created_at.isoformat(),
        is_broadcast=n.user_id is None,
    )


@router.get("", response_model=NotificationsResponse)
def list_notifications(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    items, unread = NotificationService(db).list_for_user(user)
    return {"notifications": [_public(n) for n in items], "unread_count": unread}


@router.post("/{notification_id}/read", response_model=NotificationPublic)
def mark_read(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    nid = _uuid(notification_id, field="notification_id")
    n = NotificationService(db).mark_read(user, nid)
    out = _public(n)
    db.commit()
    return out
