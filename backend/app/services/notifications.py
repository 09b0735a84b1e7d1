from __future__ import annotations

import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.core.errors import InvalidInput, NotFound
from app.models.module import Module
from app.models.notification import Notification, NotificationType
from app.models.user import User

LIST_LIMIT = 50


def _visible_to(user: User):
    return or_(Notification.user_id == user.id, Notification.user_id.is_(None))


class NotificationService:
    def __init__(self, db: Session):
        self.db = db

    def list_for_user(self, user: User) -> tuple[list[Notification], int]:
        """Own and broadcast notifications, newest first, plus the unread count."""

        items = list(
            self.db.scalars(
                select(Notification)
                .where(_visible_to(user))
                .order_by(Notification.created_at.desc())
                .limit(LIST_LIMIT)
            ).all()
        )
        unread = int(
            self.db.scalar(
                select(func.count(Notification.id)).where(_visible_to(user), Notification.is_read == False)  # noqa: E712
            )
            or 0
        )
        return items, unread

    def mark_read(self, user: User, notification_id: uuid.UUID) -> Notification:
        n = self.db.scalar(select(Notification).where(Notification.id == notification_id, _visible_to(user)))
        if n is None:
            raise NotFound("notification_not_found", "notification not found")
        # Broadcast rows carry a single flag shared by all recipients.
        n.is_read = True
        self.db.flush()
        return n

    def broadcast(
        self,
        *,
        title: str,
        content: str,
        type: NotificationType = NotificationType.info,
        user_id: uuid.UUID | None = None,
    ) -> Notification:
        title = str(title or "").strip()
        content = str(content or "").strip()
        if not title or not content:
            raise InvalidInput("invalid_notification", "title and content are required")

        if user_id is not None and self.db.get(User, user_id) is None:
            raise NotFound("user_not_found", "user not found")

        n = Notification(user_id=user_id, title=title, content=content, type=type, is_read=False)
        self.db.add(n)
        self.db.flush()
        return n

    def module_completed(self, user: User, module: Module) -> Notification:
        n = Notification(
            user_id=user.id,
            title="Module completed",
            content=f'Congratulations, you completed "{module.title}". The next module is now unlocked.',
            type=NotificationType.success,
            is_read=False,
        )
        self.db.add(n)
        self.db.flush()
        return n
