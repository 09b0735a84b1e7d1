from __future__ import annotations

import json

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.rate_limit import client_ip
from app.models.security_audit import SecurityAuditEvent

_MAX_USER_AGENT = 300
_MAX_META = 4000


def _user_agent(request: Request) -> str | None:
    ua = str(request.headers.get("user-agent") or "").strip()
    return ua[:_MAX_USER_AGENT] or None


def _encode_meta(meta: dict | None) -> str | None:
    if not meta:
        return None
    raw = json.dumps(meta, ensure_ascii=False, default=str)
    if len(raw) > _MAX_META:
        # Keep the column parseable for the admin activity view.
        raw = json.dumps({"truncated": True, "keys": sorted(str(k) for k in meta)}, ensure_ascii=False)
    return raw


def audit_log(
    *,
    db: Session,
    request: Request,
    event_type: str,
    actor_user_id=None,
    target_user_id=None,
    meta: dict | None = None,
) -> SecurityAuditEvent:
    """Stage an audit row in the caller's transaction; it commits with the change it describes."""

    rid = str(getattr(request.state, "request_id", "") or "").strip() or None
    event = SecurityAuditEvent(
        actor_user_id=actor_user_id,
        target_user_id=target_user_id,
        event_type=str(event_type),
        meta=_encode_meta(meta),
        request_id=rid,
        ip=client_ip(request),
        user_agent=_user_agent(request),
    )
    db.add(event)
    return event
