from datetime import datetime, timedelta

from sqlalchemy import select

from app.models.notification import Notification, NotificationType
from app.models.security_audit import SecurityAuditEvent
from app.services.maintenance import purge_stale_records, purge_stale_records_job

NOW = datetime(2026, 6, 1, 12, 0, 0)


def _notification(db, user, *, title, is_read, age_days):
    db.add(
        Notification(
            user_id=user.id if user else None,
            title=title,
            content="x",
            type=NotificationType.info,
            is_read=is_read,
            created_at=NOW - timedelta(days=age_days),
        )
    )


def test_purge_keeps_unread_and_recent_rows(db, learner):
    _notification(db, learner, title="old read", is_read=True, age_days=120)
    _notification(db, learner, title="old unread", is_read=False, age_days=120)
    _notification(db, learner, title="recent read", is_read=True, age_days=5)
    _notification(db, None, title="old broadcast read", is_read=True, age_days=200)
    db.add(SecurityAuditEvent(event_type="auth_login_success", created_at=NOW - timedelta(days=400)))
    db.add(SecurityAuditEvent(event_type="auth_login_success", created_at=NOW - timedelta(days=10)))
    db.commit()

    counts = purge_stale_records(db, now=NOW)
    db.commit()

    assert counts == {"notifications": 2, "security_audit_events": 1}
    left = sorted(db.scalars(select(Notification.title)).all())
    assert left == ["old unread", "recent read"]
    assert len(db.scalars(select(SecurityAuditEvent)).all()) == 1


def test_purge_job_runs_in_its_own_session():
    assert purge_stale_records_job() == {"notifications": 0, "security_audit_events": 0}
