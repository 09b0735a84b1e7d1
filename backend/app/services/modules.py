from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.errors import AccessDenied, NotFound
from app.models.module import Content, Module
from app.models.progress import ContentProgress, ModuleProgress
from app.models.quiz import QuizResult
from app.models.user import User
from app.schemas.module import (
    CatalogResponse,
    ChapterState,
    ContentDetailResponse,
    ContentNavigation,
    ContentState,
    ModuleState,
    NavigationItem,
    QuizBrief,
    UserStats,
)
from app.schemas.progress import ChapterStatus, ModuleProgressResponse
from app.services.progress import ProgressAggregator, round_half_up
from app.services.unlock import ChapterSnapshot, ModuleSnapshot, UnlockResolver


def _chapter_state(ch: ChapterSnapshot) -> ChapterState:
    return ChapterState(
        id=str(ch.chapter.id),
        title=ch.chapter.title,
        description=ch.chapter.description,
        order=int(ch.chapter.order),
        is_unlocked=ch.is_unlocked,
        is_completed=ch.is_completed,
        all_contents_completed=ch.all_contents_completed,
        quiz_passed=ch.quiz_passed,
        contents=[
            ContentState(
                id=str(c.content.id),
                title=c.content.title,
                type=c.content.type.value,
                duration=int(c.content.duration),
                order=int(c.content.order),
                is_unlocked=c.is_unlocked,
                is_completed=c.is_completed,
                progress_percent=c.progress_percent,
                watch_time=c.watch_time,
            )
            for c in ch.contents
        ],
        quiz=(
            QuizBrief(
                id=str(ch.quiz.id),
                title=ch.quiz.title,
                passing_score=int(ch.quiz.passing_score),
                is_passed=ch.quiz_passed,
            )
            if ch.quiz is not None
            else None
        ),
    )


def _module_state(m: ModuleSnapshot) -> ModuleState:
    return ModuleState(
        id=str(m.module.id),
        title=m.module.title,
        description=m.module.description,
        thumbnail=m.module.thumbnail,
        order=int(m.module.order),
        is_unlocked=m.is_unlocked,
        is_completed=m.is_completed,
        progress_percent=m.progress_percent,
        chapters=[_chapter_state(ch) for ch in m.chapters],
    )


def _locked_reason(m: ModuleSnapshot, ch: ChapterSnapshot) -> str | None:
    if ch.is_unlocked:
        return None
    if not m.is_unlocked:
        return "complete the previous module first"
    return "complete the previous chapter first"


class ModuleService:
    """Read side of the catalog: everything here is derived from UnlockResolver snapshots."""

    def __init__(self, db: Session):
        self.db = db
        self.resolver = UnlockResolver(db)

    def user_stats(self, user: User, total_modules: int) -> UserStats:
        completed = int(
            self.db.scalar(
                select(func.count(ModuleProgress.id)).where(
                    ModuleProgress.user_id == user.id,
                    ModuleProgress.is_completed == True,  # noqa: E712
                )
            )
            or 0
        )
        watch = float(
            self.db.scalar(select(func.sum(ContentProgress.watch_time)).where(ContentProgress.user_id == user.id)) or 0.0
        )
        avg = self.db.scalar(
            select(func.avg(QuizResult.score)).where(QuizResult.user_id == user.id, QuizResult.passed == True)  # noqa: E712
        )
        return UserStats(
            total_modules=int(total_modules),
            completed_modules=completed,
            total_watch_time=watch,
            average_score=round_half_up(float(avg)) if avg is not None else 0,
        )

    def catalog(self, user: User | None) -> CatalogResponse:
        snapshots = self.resolver.catalog(user)
        return CatalogResponse(
            modules=[_module_state(m) for m in snapshots],
            user_stats=self.user_stats(user, len(snapshots)) if user is not None else None,
        )

    def _module_snapshot(self, user: User, module_id: uuid.UUID) -> ModuleSnapshot:
        found = self.resolver.catalog(user, module_ids=[module_id])
        if not found:
            raise NotFound("module_not_found", "module not found")
        return found[0]

    def module_detail(self, user: User, module_id: uuid.UUID) -> ModuleState:
        snap = self._module_snapshot(user, module_id)
        if not snap.is_unlocked:
            raise AccessDenied("module_locked", "complete the previous module first")
        return _module_state(snap)

    def module_progress(self, user: User, module_id: uuid.UUID) -> ModuleProgressResponse:
        snap = self._module_snapshot(user, module_id)
        summary = ProgressAggregator(self.db).module_summary(user, snap.module)
        return ModuleProgressResponse(
            module_id=str(snap.module.id),
            title=snap.module.title,
            is_unlocked=snap.is_unlocked,
            is_completed=summary["is_completed"],
            total_chapters=len(snap.chapters),
            completed_chapters=sum(1 for ch in snap.chapters if ch.is_completed),
            progress_percent=snap.progress_percent,
            completed_at=summary["completed_at"],
            chapters=[
                ChapterStatus(
                    chapter_id=str(ch.chapter.id),
                    title=ch.chapter.title,
                    order=int(ch.chapter.order),
                    is_unlocked=ch.is_unlocked,
                    is_completed=ch.is_completed,
                    all_contents_completed=ch.all_contents_completed,
                    has_quiz=ch.quiz is not None,
                    quiz_passed=ch.quiz_passed,
                    locked_reason=_locked_reason(snap, ch),
                )
                for ch in snap.chapters
            ],
        )

    def content_detail(self, user: User, content_id: uuid.UUID) -> ContentDetailResponse:
        content = self.db.get(Content, content_id)
        if content is None or not content.is_active:
            raise NotFound("content_not_found", "content not found")

        # Flatten the ordered catalog so navigation can cross chapter and module boundaries.
        flat = []
        for m in self.resolver.catalog(user):
            for ch in m.chapters:
                for c in ch.contents:
                    flat.append((m, ch, c))

        idx = next((i for i, (_, _, c) in enumerate(flat) if c.content.id == content.id), None)
        if idx is None:
            # Active content under an inactive chapter or module.
            raise NotFound("content_not_found", "content not found")

        module_snap, chapter_snap, snap = flat[idx]
        if not snap.is_unlocked:
            raise AccessDenied("content_locked", "complete the previous chapter first")

        def _nav(i: int) -> NavigationItem | None:
            if i < 0 or i >= len(flat):
                return None
            c = flat[i][2]
            return NavigationItem(id=str(c.content.id), title=c.content.title, type=c.content.type.value, unlocked=c.is_unlocked)

        return ContentDetailResponse(
            id=str(content.id),
            title=content.title,
            description=content.description,
            type=content.type.value,
            url=content.url,
            duration=int(content.duration),
            chapter_id=str(chapter_snap.chapter.id),
            chapter_title=chapter_snap.chapter.title,
            module_id=str(module_snap.module.id),
            module_title=module_snap.module.title,
            quiz_id=str(chapter_snap.quiz.id) if chapter_snap.quiz is not None else None,
            watch_time=snap.watch_time,
            is_completed=snap.is_completed,
            progress_percent=snap.progress_percent,
            all_contents_completed=chapter_snap.all_contents_completed,
            navigation=ContentNavigation(previous=_nav(idx - 1), next=_nav(idx + 1)),
        )
