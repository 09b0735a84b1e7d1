from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.errors import AccessDenied, NotFound
from app.core.rate_limit import rate_limit
from app.core.security import get_verified_user
from app.db.session import get_db
from app.models.module import Content
from app.models.user import User
from app.schemas.module import ContentDetailResponse
from app.schemas.progress import ContentProgressRequest, ContentProgressResponse
from app.services.email import enqueue_module_completed_email
from app.services.modules import ModuleService
from app.services.progress import ProgressAggregator
from app.services.unlock import UnlockResolver

router = APIRouter(prefix="/content", tags=["content"])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


def _progress_message(*, is_completed: bool, chapter_completed: bool, module_completed: bool) -> str:
    if module_completed:
        return "Module completed, the next module is unlocked"
    if chapter_completed:
        return "Chapter completed"
    if is_completed:
        return "Content completed"
    return "Progress saved"


@router.get("/{content_id}", response_model=ContentDetailResponse)
def get_content(content_id: str, db: Session = Depends(get_db), user: User = Depends(get_verified_user)):
    cid = _uuid(content_id, field="content_id")
    return ModuleService(db).content_detail(user, cid)


@router.post("/{content_id}/progress", response_model=ContentProgressResponse)
def record_progress(
    content_id: str,
    body: ContentProgressRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_verified_user),
    _: object = rate_limit(key_prefix="content_progress", limit=120, window_seconds=60),
):
    cid = _uuid(content_id, field="content_id")
    content = db.get(Content, cid)
    if content is None or not content.is_active:
        raise NotFound("content_not_found", "content not found")
    if not UnlockResolver(db).is_content_unlocked(user, content):
        raise AccessDenied("content_locked", "complete the previous chapter first")

    res = ProgressAggregator(db).record_content_progress(user, cid, body.watch_time)
    cp = res.progress
    payload = ContentProgressResponse(
        content_id=str(cid),
        watch_time=float(cp.watch_time),
        is_completed=bool(cp.is_completed),
        completed_at=cp.completed_at.isoformat() if cp.completed_at else None,
        progress_percent=res.progress_percent,
        chapter_completed=res.outcome.chapter_completed,
        module_completed=res.outcome.module_completed,
        message=_progress_message(
            is_completed=bool(cp.is_completed),
            chapter_completed=res.outcome.chapter_completed,
            module_completed=res.outcome.module_completed,
        ),
    )
    completed_titles = [m.title for m in res.outcome.completed_modules]
    email, name = user.email, user.first_name
    db.commit()

    for title in completed_titles:
        enqueue_module_completed_email(email=email, name=name, module_title=title)
    return payload
