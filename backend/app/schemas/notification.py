from __future__ import annotations

from pydantic import BaseModel


class NotificationPublic(BaseModel):
    id: str
    title: str
    content: str
    type: str
    is_read: bool
    created_at: str
    is_broadcast: bool


class NotificationsResponse(BaseModel):
    notifications: list[NotificationPublic]
    unread_count: int
