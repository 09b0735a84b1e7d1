from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import Conflict, InvalidInput, NotFound
from app.models.module import Chapter, Content, Module
from app.models.progress import ChapterProgress, ContentProgress, ModuleProgress
from app.models.quiz import Quiz, QuizResult
from app.models.user import User
from app.services.notifications import NotificationService

log = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; 12.5 must become 13 here.
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def progress_percent(done: float, total: float) -> int:
    if not total or total <= 0:
        return 0
    return max(0, min(100, round_half_up(float(done) / float(total) * 100)))


@dataclass
class CascadeOutcome:
    """What changed further up the tree during one progress write."""

    chapter_completed: bool = False
    module_completed: bool = False
    completed_modules: list[Module] = field(default_factory=list)


@dataclass
class ContentProgressResult:
    progress: ContentProgress
    progress_percent: int
    outcome: CascadeOutcome


class ProgressAggregator:
    """Writes learner progress and rolls completion up content -> chapter -> module.

    Only this class creates or completes ChapterProgress / ModuleProgress rows.
    It flushes but never commits: the caller commits once so the whole cascade
    lands in one transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def _flush_or_conflict(self) -> None:
        try:
            self.db.flush()
        except IntegrityError:
            # A concurrent request inserted the same (user, node) row first.
            self.db.rollback()
            raise Conflict("progress_conflict", "progress was updated concurrently, retry the request")

    def _validate_watch_time(self, watch_time) -> float:
        if isinstance(watch_time, bool) or not isinstance(watch_time, (int, float)):
            raise InvalidInput("invalid_watch_time", "watch_time must be a number")
        value = float(watch_time)
        if math.isnan(value) or math.isinf(value) or value < 0:
            raise InvalidInput("invalid_watch_time", "watch_time must be a non-negative number")
        return value

    def record_content_progress(self, user: User, content_id: uuid.UUID, watch_time) -> ContentProgressResult:
        value = self._validate_watch_time(watch_time)

        content = self.db.get(Content, content_id)
        if content is None or not content.is_active:
            raise NotFound("content_not_found", "content not found")

        duration = max(0, int(content.duration or 0))
        value = min(value, float(duration))

        cp = self.db.scalar(
            select(ContentProgress)
            .where(ContentProgress.user_id == user.id, ContentProgress.content_id == content.id)
            .with_for_update()
        )
        if cp is None:
            cp = ContentProgress(user_id=user.id, content_id=content.id, watch_time=0.0, is_completed=False)
            self.db.add(cp)

        now = datetime.now(timezone.utc)
        # Max-wins: an older sample arriving late never lowers watch time.
        cp.watch_time = max(float(cp.watch_time or 0.0), value)
        cp.updated_at = now
        if not cp.is_completed and duration > 0 and cp.watch_time >= duration:
            cp.is_completed = True
            cp.completed_at = now
        self._flush_or_conflict()

        outcome = CascadeOutcome()
        if cp.is_completed:
            outcome = self.cascade_from_chapter(user, content.chapter_id)

        return ContentProgressResult(
            progress=cp,
            progress_percent=progress_percent(cp.watch_time, duration),
            outcome=outcome,
        )

    def is_chapter_validated(self, user: User, chapter: Chapter) -> bool:
        content_ids = list(
            self.db.scalars(
                select(Content.id).where(Content.chapter_id == chapter.id, Content.is_active == True)  # noqa: E712
            ).all()
        )
        if not content_ids:
            return False

        done = int(
            self.db.scalar(
                select(func.count(ContentProgress.id)).where(
                    ContentProgress.user_id == user.id,
                    ContentProgress.content_id.in_(content_ids),
                    ContentProgress.is_completed == True,  # noqa: E712
                )
            )
            or 0
        )
        if done < len(content_ids):
            return False

        quiz_id = self.db.scalar(select(Quiz.id).where(Quiz.chapter_id == chapter.id))
        if quiz_id is None:
            return True
        passed = self.db.scalar(
            select(QuizResult.id)
            .where(QuizResult.quiz_id == quiz_id, QuizResult.user_id == user.id, QuizResult.passed == True)  # noqa: E712
            .limit(1)
        )
        return passed is not None

    def reevaluate_chapter(self, user: User, chapter: Chapter) -> tuple[bool, bool]:
        """Returns (validated, newly_validated). A completed row is never reopened."""

        row = self.db.scalar(
            select(ChapterProgress).where(ChapterProgress.user_id == user.id, ChapterProgress.chapter_id == chapter.id)
        )
        if row is not None and row.is_completed:
            return True, False

        if not self.is_chapter_validated(user, chapter):
            return False, False

        if row is None:
            row = ChapterProgress(user_id=user.id, chapter_id=chapter.id)
            self.db.add(row)
        row.is_completed = True
        row.completed_at = datetime.now(timezone.utc)
        self._flush_or_conflict()
        return True, True

    def reevaluate_module(self, user: User, module: Module) -> bool:
        """Returns True only on the first completion of the module."""

        row = self.db.scalar(
            select(ModuleProgress).where(ModuleProgress.user_id == user.id, ModuleProgress.module_id == module.id)
        )
        if row is not None and row.is_completed:
            return False

        chapter_ids = list(
            self.db.scalars(
                select(Chapter.id).where(Chapter.module_id == module.id, Chapter.is_active == True)  # noqa: E712
            ).all()
        )
        if not chapter_ids:
            return False

        validated = int(
            self.db.scalar(
                select(func.count(ChapterProgress.id)).where(
                    ChapterProgress.user_id == user.id,
                    ChapterProgress.chapter_id.in_(chapter_ids),
                    ChapterProgress.is_completed == True,  # noqa: E712
                )
            )
            or 0
        )
        if validated < len(chapter_ids):
            return False

        if row is None:
            row = ModuleProgress(user_id=user.id, module_id=module.id)
            self.db.add(row)
        row.is_completed = True
        row.completed_at = datetime.now(timezone.utc)
        self._flush_or_conflict()

        NotificationService(self.db).module_completed(user, module)
        log.info("module completed user_id=%s module_id=%s", user.id, module.id)
        return True

    def cascade_from_chapter(self, user: User, chapter_id: uuid.UUID) -> CascadeOutcome:
        outcome = CascadeOutcome()
        chapter = self.db.get(Chapter, chapter_id)
        if chapter is None or not chapter.is_active:
            return outcome

        validated, newly = self.reevaluate_chapter(user, chapter)
        outcome.chapter_completed = newly
        if not validated:
            return outcome

        module = self.db.get(Module, chapter.module_id)
        if module is None or not module.is_active:
            return outcome
        if self.reevaluate_module(user, module):
            outcome.module_completed = True
            outcome.completed_modules.append(module)
        return outcome

    def module_summary(self, user: User, module: Module) -> dict:
        row = self.db.scalar(
            select(ModuleProgress).where(ModuleProgress.user_id == user.id, ModuleProgress.module_id == module.id)
        )
        return {
            "is_completed": bool(row is not None and row.is_completed),
            "completed_at": row.completed_at.isoformat() if row is not None and row.completed_at else None,
        }
