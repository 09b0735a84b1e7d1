from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.security import get_current_user
from app.core.security_audit_log import audit_log
from app.db.session import get_db
from app.models.certificate import Certificate
from app.models.module import Chapter, Content, Module
from app.models.progress import ChapterProgress, ContentProgress, ModuleProgress
from app.models.quiz import Quiz, QuizResult
from app.models.user import User
from app.schemas.me import MyProfileResponse, ProfileUpdateRequest
from app.services.progress import round_half_up

router = APIRouter(prefix="/me", tags=["me"])

RECENT_PER_KIND = 5
RECENT_TOTAL = 10


def _count(db: Session, stmt) -> int:
    return int(db.scalar(stmt) or 0)


def _iso(dt) -> str | None:
    return dt.isoformat() if dt else None


def _recent_activity(db: Session, user: User) -> list[dict]:
    items: list[dict] = []

    for row, m in db.execute(
        select(ModuleProgress, Module)
        .join(Module, Module.id == ModuleProgress.module_id)
        .where(ModuleProgress.user_id == user.id, ModuleProgress.is_completed == True)  # noqa: E712
        .order_by(ModuleProgress.completed_at.desc())
        .limit(RECENT_PER_KIND)
    ).all():
        items.append(
            {
                "kind": "module_completed",
                "created_at": _iso(row.completed_at),
                "title": f"Module {m.order}: {m.title}",
                "module_id": str(m.id),
            }
        )

    for row, ch in db.execute(
        select(ChapterProgress, Chapter)
        .join(Chapter, Chapter.id == ChapterProgress.chapter_id)
        .where(ChapterProgress.user_id == user.id, ChapterProgress.is_completed == True)  # noqa: E712
        .order_by(ChapterProgress.completed_at.desc())
        .limit(RECENT_PER_KIND)
    ).all():
        items.append(
            {
                "kind": "chapter_completed",
                "created_at": _iso(row.completed_at),
                "title": f"Chapter {ch.order}: {ch.title}",
                "module_id": str(ch.module_id),
                "chapter_id": str(ch.id),
            }
        )

    for row, c in db.execute(
        select(ContentProgress, Content)
        .join(Content, Content.id == ContentProgress.content_id)
        .where(ContentProgress.user_id == user.id, ContentProgress.is_completed == True)  # noqa: E712
        .order_by(ContentProgress.completed_at.desc())
        .limit(RECENT_PER_KIND)
    ).all():
        items.append(
            {
                "kind": "content_completed",
                "created_at": _iso(row.completed_at),
                "title": c.title,
                "chapter_id": str(c.chapter_id),
            }
        )

    for r, q in db.execute(
        select(QuizResult, Quiz)
        .join(Quiz, Quiz.id == QuizResult.quiz_id)
        .where(QuizResult.user_id == user.id, QuizResult.passed == True)  # noqa: E712
        .order_by(QuizResult.created_at.desc())
        .limit(RECENT_PER_KIND)
    ).all():
        items.append(
            {
                "kind": "quiz_passed",
                "created_at": _iso(r.created_at),
                "title": q.title,
                "score": int(r.score),
                "passed": True,
                "chapter_id": str(q.chapter_id),
            }
        )

    items = [i for i in items if i.get("created_at")]
    items.sort(key=lambda i: i["created_at"], reverse=True)
    return items[:RECENT_TOTAL]


def _profile(db: Session, user: User) -> dict:
    scores = list(db.scalars(select(QuizResult.score).where(QuizResult.user_id == user.id)).all())
    recent = _recent_activity(db, user)

    stats = {
        "total_modules": _count(db, select(func.count(Module.id)).where(Module.is_active == True)),  # noqa: E712
        "completed_modules": _count(
            db,
            select(func.count(ModuleProgress.id)).where(
                ModuleProgress.user_id == user.id, ModuleProgress.is_completed == True  # noqa: E712
            ),
        ),
        "total_chapters": _count(db, select(func.count(Chapter.id)).where(Chapter.is_active == True)),  # noqa: E712
        "completed_chapters": _count(
            db,
            select(func.count(ChapterProgress.id)).where(
                ChapterProgress.user_id == user.id, ChapterProgress.is_completed == True  # noqa: E712
            ),
        ),
        "total_contents": _count(db, select(func.count(Content.id)).where(Content.is_active == True)),  # noqa: E712
        "completed_contents": _count(
            db,
            select(func.count(ContentProgress.id)).where(
                ContentProgress.user_id == user.id, ContentProgress.is_completed == True  # noqa: E712
            ),
        ),
        "total_watch_time": float(
            db.scalar(select(func.sum(ContentProgress.watch_time)).where(ContentProgress.user_id == user.id)) or 0.0
        ),
        "average_score": round_half_up(sum(scores) / len(scores)) if scores else 0,
        "certificates": _count(db, select(func.count(Certificate.id)).where(Certificate.user_id == user.id)),
        "last_activity": recent[0]["created_at"] if recent else None,
    }

    return {
        "id": str(user.id),
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role.value,
        "phone": user.phone,
        "country": user.country,
        "city": user.city,
        "email_verified": user.is_email_verified,
        "created_at": user.created_at.isoformat(),
        "stats": stats,
        "recent_activity": recent,
    }


@router.get("/profile", response_model=MyProfileResponse)
def my_profile(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _profile(db, user)


@router.put("/profile", response_model=MyProfileResponse)
def update_profile(
    request: Request,
    body: ProfileUpdateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    user.first_name = body.first_name.strip()
    user.last_name = body.last_name.strip()
    user.phone = (body.phone or "").strip() or None
    user.country = (body.country or "").strip() or None
    user.city = (body.city or "").strip() or None
    db.add(user)
    audit_log(db=db, request=request, event_type="profile_updated", actor_user_id=user.id, target_user_id=user.id)
    db.commit()
    return _profile(db, user)
