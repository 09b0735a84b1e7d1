from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import Conflict, InvalidInput, NotFound
from app.core.rate_limit import rate_limit
from app.core.security import require_roles
from app.core.security_audit_log import audit_log
from app.db.session import get_db
from app.models.certificate import Certificate
from app.models.module import Chapter, Content, ContentType, Module
from app.models.notification import NotificationType
from app.models.progress import ChapterProgress, ContentProgress, ModuleProgress
from app.models.quiz import Quiz, QuizResult
from app.models.security_audit import SecurityAuditEvent
from app.models.user import User, UserRole
from app.schemas.admin import (
    ChapterCreateRequest,
    ChapterUpdateRequest,
    ContentCreateRequest,
    ContentUpdateRequest,
    CreatedResponse,
    ModuleCreateRequest,
    ModuleUpdateRequest,
    NotificationCreateRequest,
    QuizCreateRequest,
    QuizUpdateRequest,
    UserActivityResponse,
    UserAdminPublic,
    UserUpdateRequest,
)
from app.schemas.analytics import AnalyticsResponse, DashboardStatsResponse
from app.services.analytics import AdminAnalytics
from app.services.notifications import NotificationService
from app.services.quizzes import parse_passing_score, parse_questions

router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_roles(UserRole.admin)


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


def _commit_or_conflict(db: Session, *, error_code: str, message: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise Conflict(error_code, message) from e


def _next_order(db: Session, column, *where) -> int:
    current = db.scalar(select(func.max(column)).where(*where))
    return int(current or 0) + 1


def _purge_chapters(db: Session, chapter_ids: list[uuid.UUID]) -> None:
    """Delete chapters and everything hanging off them, children first."""

    if not chapter_ids:
        return
    content_ids = list(db.scalars(select(Content.id).where(Content.chapter_id.in_(chapter_ids))).all())
    quiz_ids = list(db.scalars(select(Quiz.id).where(Quiz.chapter_id.in_(chapter_ids))).all())
    if content_ids:
        db.execute(delete(ContentProgress).where(ContentProgress.content_id.in_(content_ids)))
        db.execute(delete(Content).where(Content.id.in_(content_ids)))
    if quiz_ids:
        db.execute(delete(QuizResult).where(QuizResult.quiz_id.in_(quiz_ids)))
        db.execute(delete(Quiz).where(Quiz.id.in_(quiz_ids)))
    db.execute(delete(ChapterProgress).where(ChapterProgress.chapter_id.in_(chapter_ids)))
    db.execute(delete(Chapter).where(Chapter.id.in_(chapter_ids)))


def _module_out(m: Module, chapter_count: int) -> dict:
    return {
        "id": str(m.id),
        "title": m.title,
        "description": m.description,
        "thumbnail": m.thumbnail,
        "order": int(m.order),
        "is_active": bool(m.is_active),
        "chapter_count": int(chapter_count),
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


def _quiz_out(q: Quiz, *, with_answers: bool) -> dict:
    questions = list(q.questions or [])
    if not with_answers:
        questions = [{k: v for k, v in item.items() if k not in {"correct_answer", "explanation"}} for item in questions]
    return {
        "id": str(q.id),
        "chapter_id": str(q.chapter_id),
        "title": q.title,
        "passing_score": int(q.passing_score),
        "question_count": len(q.questions or []),
        "questions": questions,
        "created_at": q.created_at.isoformat() if q.created_at else None,
    }


# -- modules ----------------------------------------------------------------


@router.get("/modules")
def list_modules(db: Session = Depends(get_db), _: User = Depends(admin_only)):
    counts = dict(db.execute(select(Chapter.module_id, func.count(Chapter.id)).group_by(Chapter.module_id)).all())
    modules = db.scalars(select(Module).order_by(Module.order)).all()
    return {"items": [_module_out(m, counts.get(m.id, 0)) for m in modules]}


@router.post("/modules", response_model=CreatedResponse)
def create_module(
    request: Request,
    body: ModuleCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    m = Module(
        title=body.title.strip(),
        description=body.description,
        thumbnail=body.thumbnail,
        order=_next_order(db, Module.order),
        is_active=body.is_active,
    )
    db.add(m)
    db.flush()
    audit_log(
        db=db,
        request=request,
        event_type="admin_create_module",
        actor_user_id=current.id,
        meta={"module_id": str(m.id), "title": m.title, "order": m.order},
    )
    out = {"id": str(m.id)}
    _commit_or_conflict(db, error_code="order_conflict", message="another module already uses this order")
    return out


@router.patch("/modules/{module_id}")
def update_module(
    request: Request,
    module_id: str,
    body: ModuleUpdateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    mid = _uuid(module_id, field="module_id")
    m = db.get(Module, mid)
    if m is None:
        raise NotFound("module_not_found", "module not found")

    changes = body.model_dump(exclude_unset=True)
    for key, value in changes.items():
        if key == "title" and value is not None:
            value = value.strip()
        setattr(m, key, value)
    audit_log(
        db=db,
        request=request,
        event_type="admin_update_module",
        actor_user_id=current.id,
        meta={"module_id": str(m.id), "changes": changes},
    )
    _commit_or_conflict(db, error_code="order_conflict", message="another module already uses this order")
    return {"ok": True}


@router.delete("/modules/{module_id}")
def delete_module(
    request: Request,
    module_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    mid = _uuid(module_id, field="module_id")
    m = db.get(Module, mid)
    if m is None:
        raise NotFound("module_not_found", "module not found")

    _purge_chapters(db, list(db.scalars(select(Chapter.id).where(Chapter.module_id == m.id)).all()))
    db.execute(delete(ModuleProgress).where(ModuleProgress.module_id == m.id))
    db.execute(delete(Certificate).where(Certificate.module_id == m.id))
    title = m.title
    db.delete(m)
    audit_log(
        db=db,
        request=request,
        event_type="admin_delete_module",
        actor_user_id=current.id,
        meta={"module_id": str(mid), "title": title},
    )
    db.commit()
    return {"ok": True}


# -- chapters ---------------------------------------------------------------


@router.get("/chapters")
def list_chapters(
    module_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: User = Depends(admin_only),
):
    stmt = select(Chapter).order_by(Chapter.module_id, Chapter.order)
    if module_id:
        stmt = stmt.where(Chapter.module_id == _uuid(module_id, field="module_id"))
    chapters = db.scalars(stmt).all()

    chapter_ids = [c.id for c in chapters]
    with_content = set()
    with_quiz = set()
    if chapter_ids:
        with_content = set(db.scalars(select(Content.chapter_id).where(Content.chapter_id.in_(chapter_ids))).all())
        with_quiz = set(db.scalars(select(Quiz.chapter_id).where(Quiz.chapter_id.in_(chapter_ids))).all())

    return {
        "items": [
            {
                "id": str(c.id),
                "module_id": str(c.module_id),
                "title": c.title,
                "description": c.description,
                "order": int(c.order),
                "is_active": bool(c.is_active),
                "has_content": c.id in with_content,
                "has_quiz": c.id in with_quiz,
            }
            for c in chapters
        ]
    }


@router.post("/chapters", response_model=CreatedResponse)
def create_chapter(
    request: Request,
    body: ChapterCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    mid = _uuid(body.module_id, field="module_id")
    if db.get(Module, mid) is None:
        raise NotFound("module_not_found", "module not found")

    c = Chapter(
        module_id=mid,
        title=body.title.strip(),
        description=body.description,
        order=_next_order(db, Chapter.order, Chapter.module_id == mid),
        is_active=body.is_active,
    )
    db.add(c)
    db.flush()
    audit_log(
        db=db,
        request=request,
        event_type="admin_create_chapter",
        actor_user_id=current.id,
        meta={"chapter_id": str(c.id), "module_id": str(mid), "order": c.order},
    )
    out = {"id": str(c.id)}
    _commit_or_conflict(db, error_code="order_conflict", message="another chapter already uses this order")
    return out


@router.patch("/chapters/{chapter_id}")
def update_chapter(
    request: Request,
    chapter_id: str,
    body: ChapterUpdateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    cid = _uuid(chapter_id, field="chapter_id")
    c = db.get(Chapter, cid)
    if c is None:
        raise NotFound("chapter_not_found", "chapter not found")

    changes = body.model_dump(exclude_unset=True)
    for key, value in changes.items():
        if key == "title" and value is not None:
            value = value.strip()
        setattr(c, key, value)
    audit_log(
        db=db,
        request=request,
        event_type="admin_update_chapter",
        actor_user_id=current.id,
        meta={"chapter_id": str(c.id), "changes": changes},
    )
    _commit_or_conflict(db, error_code="order_conflict", message="another chapter already uses this order")
    return {"ok": True}


@router.delete("/chapters/{chapter_id}")
def delete_chapter(
    request: Request,
    chapter_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    cid = _uuid(chapter_id, field="chapter_id")
    if db.get(Chapter, cid) is None:
        raise NotFound("chapter_not_found", "chapter not found")

    _purge_chapters(db, [cid])
    audit_log(
        db=db,
        request=request,
        event_type="admin_delete_chapter",
        actor_user_id=current.id,
        meta={"chapter_id": str(cid)},
    )
    db.commit()
    return {"ok": True}


# -- contents ---------------------------------------------------------------


@router.get("/contents")
def list_contents(
    chapter_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: User = Depends(admin_only),
):
    stmt = select(Content).order_by(Content.chapter_id, Content.order)
    if chapter_id:
        stmt = stmt.where(Content.chapter_id == _uuid(chapter_id, field="chapter_id"))
    return {
        "items": [
            {
                "id": str(c.id),
                "chapter_id": str(c.chapter_id),
                "title": c.title,
                "description": c.description,
                "type": c.type.value,
                "url": c.url,
                "duration": int(c.duration),
                "order": int(c.order),
                "is_active": bool(c.is_active),
            }
            for c in db.scalars(stmt).all()
        ]
    }


@router.post("/contents", response_model=CreatedResponse)
def create_content(
    request: Request,
    body: ContentCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    chid = _uuid(body.chapter_id, field="chapter_id")
    if db.get(Chapter, chid) is None:
        raise NotFound("chapter_not_found", "chapter not found")

    # One content item per chapter.
    if db.scalar(select(Content.id).where(Content.chapter_id == chid).limit(1)) is not None:
        raise Conflict("content_already_exists", "this chapter already has its content")

    c = Content(
        chapter_id=chid,
        title=body.title.strip(),
        description=body.description,
        type=ContentType(body.type),
        url=body.url.strip(),
        duration=int(body.duration),
        order=1,
        is_active=body.is_active,
    )
    db.add(c)
    db.flush()
    audit_log(
        db=db,
        request=request,
        event_type="admin_create_content",
        actor_user_id=current.id,
        meta={"content_id": str(c.id), "chapter_id": str(chid), "duration": c.duration},
    )
    out = {"id": str(c.id)}
    db.commit()
    return out


@router.patch("/contents/{content_id}")
def update_content(
    request: Request,
    content_id: str,
    body: ContentUpdateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    cid = _uuid(content_id, field="content_id")
    c = db.get(Content, cid)
    if c is None:
        raise NotFound("content_not_found", "content not found")

    changes = body.model_dump(exclude_unset=True)
    for key, value in changes.items():
        if key == "type" and value is not None:
            value = ContentType(value)
        elif key in {"title", "url"} and value is not None:
            value = value.strip()
        setattr(c, key, value)
    audit_log(
        db=db,
        request=request,
        event_type="admin_update_content",
        actor_user_id=current.id,
        meta={"content_id": str(c.id), "changes": changes},
    )
    db.commit()
    return {"ok": True}


@router.delete("/contents/{content_id}")
def delete_content(
    request: Request,
    content_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    cid = _uuid(content_id, field="content_id")
    if db.get(Content, cid) is None:
        raise NotFound("content_not_found", "content not found")

    db.execute(delete(ContentProgress).where(ContentProgress.content_id == cid))
    db.execute(delete(Content).where(Content.id == cid))
    audit_log(
        db=db,
        request=request,
        event_type="admin_delete_content",
        actor_user_id=current.id,
        meta={"content_id": str(cid)},
    )
    db.commit()
    return {"ok": True}


# -- quizzes ----------------------------------------------------------------


@router.get("/quizzes")
def list_quizzes(
    chapter_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    _: User = Depends(admin_only),
):
    stmt = select(Quiz).order_by(Quiz.created_at.desc())
    if chapter_id:
        stmt = stmt.where(Quiz.chapter_id == _uuid(chapter_id, field="chapter_id"))
    return {"items": [_quiz_out(q, with_answers=False) for q in db.scalars(stmt).all()]}


@router.get("/quizzes/{quiz_id}")
def get_quiz(quiz_id: str, db: Session = Depends(get_db), _: User = Depends(admin_only)):
    q = db.get(Quiz, _uuid(quiz_id, field="quiz_id"))
    if q is None:
        raise NotFound("quiz_not_found", "quiz not found")
    return _quiz_out(q, with_answers=True)


@router.post("/quizzes", response_model=CreatedResponse)
def create_quiz(
    request: Request,
    body: QuizCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    chid = _uuid(body.chapter_id, field="chapter_id")
    title = str(body.title or "").strip()
    if not title:
        raise InvalidInput("invalid_quiz", "title is required")
    passing_score = parse_passing_score(body.passing_score)
    questions = parse_questions(body.questions)

    if db.get(Chapter, chid) is None:
        raise NotFound("chapter_not_found", "chapter not found")
    if db.scalar(select(Quiz.id).where(Quiz.chapter_id == chid)) is not None:
        raise Conflict("quiz_already_exists", "this chapter already has a quiz")

    q = Quiz(chapter_id=chid, title=title, passing_score=passing_score, questions=questions)
    db.add(q)
    db.flush()
    audit_log(
        db=db,
        request=request,
        event_type="admin_create_quiz",
        actor_user_id=current.id,
        meta={"quiz_id": str(q.id), "chapter_id": str(chid), "questions": len(questions)},
    )
    out = {"id": str(q.id)}
    _commit_or_conflict(db, error_code="quiz_already_exists", message="this chapter already has a quiz")
    return out


@router.patch("/quizzes/{quiz_id}")
def update_quiz(
    request: Request,
    quiz_id: str,
    body: QuizUpdateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    q = db.get(Quiz, _uuid(quiz_id, field="quiz_id"))
    if q is None:
        raise NotFound("quiz_not_found", "quiz not found")

    changed: list[str] = []
    if body.title is not None:
        title = body.title.strip()
        if not title:
            raise InvalidInput("invalid_quiz", "title is required")
        q.title = title
        changed.append("title")
    if body.passing_score is not None:
        q.passing_score = parse_passing_score(body.passing_score)
        changed.append("passing_score")
    if body.questions is not None:
        # Existing results keep the score they were graded with.
        q.questions = parse_questions(body.questions)
        changed.append("questions")

    audit_log(
        db=db,
        request=request,
        event_type="admin_update_quiz",
        actor_user_id=current.id,
        meta={"quiz_id": str(q.id), "fields": changed},
    )
    db.commit()
    return {"ok": True}


@router.delete("/quizzes/{quiz_id}")
def delete_quiz(
    request: Request,
    quiz_id: str,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    qid = _uuid(quiz_id, field="quiz_id")
    if db.get(Quiz, qid) is None:
        raise NotFound("quiz_not_found", "quiz not found")

    db.execute(delete(QuizResult).where(QuizResult.quiz_id == qid))
    db.execute(delete(Quiz).where(Quiz.id == qid))
    audit_log(
        db=db,
        request=request,
        event_type="admin_delete_quiz",
        actor_user_id=current.id,
        meta={"quiz_id": str(qid)},
    )
    db.commit()
    return {"ok": True}


# -- users ------------------------------------------------------------------


def _user_public(u: User, completed_modules: int) -> dict:
    return {
        "id": str(u.id),
        "email": u.email,
        "first_name": u.first_name,
        "last_name": u.last_name,
        "role": u.role.value,
        "email_verified": u.is_email_verified,
        "created_at": u.created_at.isoformat(),
        "completed_modules": completed_modules,
    }


@router.get("/users", response_model=list[UserAdminPublic])
def list_users(db: Session = Depends(get_db), _: User = Depends(admin_only)):
    completed = dict(
        db.execute(
            select(ModuleProgress.user_id, func.count(ModuleProgress.id))
            .where(ModuleProgress.is_completed == True)  # noqa: E712
            .group_by(ModuleProgress.user_id)
        ).all()
    )
    users = db.scalars(select(User).order_by(User.created_at.desc())).all()
    return [_user_public(u, int(completed.get(u.id, 0))) for u in users]


@router.patch("/users/{user_id}")
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    uid = _uuid(user_id, field="user_id")
    u = db.get(User, uid)
    if u is None:
        raise NotFound("user_not_found", "user not found")

    if body.role is not None:
        if u.role == UserRole.admin and body.role != UserRole.admin:
            admins = int(db.scalar(select(func.count(User.id)).where(User.role == UserRole.admin)) or 0)
            if admins <= 1:
                raise HTTPException(status_code=400, detail="cannot demote last admin")
        u.role = body.role

    if body.email_verified is not None:
        if body.email_verified and u.email_verified_at is None:
            u.email_verified_at = datetime.now(timezone.utc)
        elif not body.email_verified:
            u.email_verified_at = None

    audit_log(
        db=db,
        request=request,
        event_type="admin_update_user",
        actor_user_id=current.id,
        target_user_id=u.id,
        meta={
            "role": body.role.value if body.role is not None else None,
            "email_verified": body.email_verified,
        },
    )
    db.commit()
    return {"ok": True}


@router.get("/users/{user_id}/activity", response_model=UserActivityResponse)
def user_activity(
    user_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(admin_only),
):
    uid = _uuid(user_id, field="user_id")
    u = db.get(User, uid)
    if u is None:
        raise NotFound("user_not_found", "user not found")

    completed = int(
        db.scalar(
            select(func.count(ModuleProgress.id)).where(
                ModuleProgress.user_id == uid,
                ModuleProgress.is_completed == True,  # noqa: E712
            )
        )
        or 0
    )
    certificates = db.scalars(
        select(Certificate.type).where(Certificate.user_id == uid).order_by(Certificate.issued_at)
    ).all()

    attempts = db.execute(
        select(QuizResult, Quiz.chapter_id, Chapter.title, Module.title)
        .join(Quiz, Quiz.id == QuizResult.quiz_id)
        .join(Chapter, Chapter.id == Quiz.chapter_id)
        .join(Module, Module.id == Chapter.module_id)
        .where(QuizResult.user_id == uid)
        .order_by(QuizResult.created_at.desc())
        .limit(limit)
    ).all()

    events = db.scalars(
        select(SecurityAuditEvent)
        .where(or_(SecurityAuditEvent.target_user_id == uid, SecurityAuditEvent.actor_user_id == uid))
        .order_by(SecurityAuditEvent.created_at.desc())
        .limit(limit)
    ).all()

    return {
        "user": _user_public(u, completed),
        "certificates": [t.value for t in certificates],
        "quiz_attempts": [
            {
                "quiz_id": str(r.quiz_id),
                "chapter_id": str(chapter_id),
                "chapter_title": chapter_title,
                "module_title": module_title,
                "score": int(r.score),
                "passed": bool(r.passed),
                "completed_at": r.created_at.isoformat(),
            }
            for r, chapter_id, chapter_title, module_title in attempts
        ],
        "security_events": [
            {
                "event_type": e.event_type,
                "created_at": e.created_at.isoformat(),
                "ip": e.ip,
                "user_agent": e.user_agent,
                "meta": json.loads(e.meta) if e.meta else None,
            }
            for e in events
        ],
    }


# -- notifications ----------------------------------------------------------


@router.post("/notifications", response_model=CreatedResponse)
def create_notification(
    request: Request,
    body: NotificationCreateRequest,
    db: Session = Depends(get_db),
    current: User = Depends(admin_only),
    _: object = rate_limit(key_prefix="admin_write", limit=120, window_seconds=60),
):
    target = _uuid(body.user_id, field="user_id") if body.user_id else None
    n = NotificationService(db).broadcast(
        title=body.title,
        content=body.content,
        type=NotificationType(body.type),
        user_id=target,
    )
    audit_log(
        db=db,
        request=request,
        event_type="admin_create_notification",
        actor_user_id=current.id,
        target_user_id=target,
        meta={"notification_id": str(n.id), "broadcast": target is None},
    )
    out = {"id": str(n.id)}
    db.commit()
    return out


# -- analytics --------------------------------------------------------------


@router.get("/dashboard-stats", response_model=DashboardStatsResponse)
def dashboard_stats(db: Session = Depends(get_db), _: User = Depends(admin_only)):
    return AdminAnalytics(db).dashboard()


@router.get("/analytics", response_model=AnalyticsResponse)
def analytics(db: Session = Depends(get_db), _: User = Depends(admin_only)):
    return AdminAnalytics(db).analytics()
