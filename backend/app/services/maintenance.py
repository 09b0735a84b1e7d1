from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db import session as session_module
from app.models.notification import Notification
from app.models.security_audit import SecurityAuditEvent

log = logging.getLogger(__name__)


def purge_stale_records(db: Session, *, now: datetime | None = None) -> dict[str, int]:
    """Delete read notifications and audit events past their retention window.

    Unread notifications are never purged. Progress, quiz results and
    certificates are permanent records and are not touched here.
    """

    now = now or datetime.utcnow()
    notif_cutoff = now - timedelta(days=max(1, int(settings.read_notification_retention_days)))
    audit_cutoff = now - timedelta(days=max(1, int(settings.security_audit_retention_days)))

    notifications = db.execute(
        delete(Notification).where(Notification.is_read == True, Notification.created_at < notif_cutoff)  # noqa: E712
    ).rowcount
    audit_events = db.execute(delete(SecurityAuditEvent).where(SecurityAuditEvent.created_at < audit_cutoff)).rowcount
    return {"notifications": int(notifications or 0), "security_audit_events": int(audit_events or 0)}


def purge_stale_records_job() -> dict[str, int]:
    """rq job wrapper: own session, one commit."""

    with session_module.SessionLocal() as db:
        counts = purge_stale_records(db)
        db.commit()
    log.info(
        "maintenance purge done notifications=%s security_audit_events=%s",
        counts["notifications"],
        counts["security_audit_events"],
    )
    return counts
