from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.errors import EmailNotVerified
from app.models.module import Chapter, Content, Module
from app.models.progress import ChapterProgress, ContentProgress, ModuleProgress
from app.models.quiz import Quiz, QuizResult
from app.models.user import User
from app.services.progress import progress_percent


def as_uuid(value) -> uuid.UUID | None:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


@dataclass
class ContentSnapshot:
    content: Content
    is_unlocked: bool
    is_completed: bool
    watch_time: float
    progress_percent: int


@dataclass
class ChapterSnapshot:
    chapter: Chapter
    quiz: Quiz | None
    is_unlocked: bool
    is_completed: bool
    all_contents_completed: bool
    quiz_passed: bool
    contents: list[ContentSnapshot] = field(default_factory=list)


@dataclass
class ModuleSnapshot:
    module: Module
    is_unlocked: bool
    is_completed: bool
    progress_percent: int
    chapters: list[ChapterSnapshot] = field(default_factory=list)


@dataclass
class ProgressFacts:
    """Everything the unlock rules read for one learner, loaded in bulk."""

    completed_module_ids: set[uuid.UUID] = field(default_factory=set)
    completed_chapter_ids: set[uuid.UUID] = field(default_factory=set)
    content_progress: dict[uuid.UUID, ContentProgress] = field(default_factory=dict)
    passed_quiz_ids: set[uuid.UUID] = field(default_factory=set)


def _all_completed(previous_ids: Iterable[uuid.UUID], completed_ids: set[uuid.UUID]) -> bool:
    return all(pid in completed_ids for pid in previous_ids)


def resolve_catalog(
    modules: list[Module],
    chapters_by_module: dict[uuid.UUID, list[Chapter]],
    contents_by_chapter: dict[uuid.UUID, list[Content]],
    quiz_by_chapter: dict[uuid.UUID, Quiz],
    facts: ProgressFacts,
    *,
    learner: bool,
) -> list[ModuleSnapshot]:
    """Apply the linear gating rules to an ordered catalog.

    `modules`, and each list in the two maps, must already be filtered to
    active rows and sorted by `order`. A node is unlocked only when every
    active predecessor at its level is completed; the first chapter of a
    module additionally needs the module to be unlocked. With `learner=False`
    (anonymous visitor) nothing is unlocked.
    """

    out: list[ModuleSnapshot] = []
    module_ids = [m.id for m in modules]
    for mi, module in enumerate(modules):
        module_unlocked = learner and _all_completed(module_ids[:mi], facts.completed_module_ids)

        chapters = chapters_by_module.get(module.id, [])
        chapter_ids = [c.id for c in chapters]
        chapter_items: list[ChapterSnapshot] = []
        for ci, chapter in enumerate(chapters):
            chapter_unlocked = module_unlocked and _all_completed(chapter_ids[:ci], facts.completed_chapter_ids)

            contents = contents_by_chapter.get(chapter.id, [])
            content_items: list[ContentSnapshot] = []
            for content in contents:
                cp = facts.content_progress.get(content.id)
                watch_time = float(cp.watch_time) if cp is not None else 0.0
                content_items.append(
                    ContentSnapshot(
                        content=content,
                        is_unlocked=chapter_unlocked,
                        is_completed=bool(cp is not None and cp.is_completed),
                        watch_time=watch_time,
                        progress_percent=progress_percent(watch_time, content.duration),
                    )
                )

            quiz = quiz_by_chapter.get(chapter.id)
            all_contents_completed = bool(content_items) and all(c.is_completed for c in content_items)
            quiz_passed = quiz.id in facts.passed_quiz_ids if quiz is not None else True
            chapter_items.append(
                ChapterSnapshot(
                    chapter=chapter,
                    quiz=quiz,
                    is_unlocked=chapter_unlocked,
                    is_completed=chapter.id in facts.completed_chapter_ids,
                    all_contents_completed=all_contents_completed,
                    quiz_passed=quiz_passed,
                    contents=content_items,
                )
            )

        completed_chapters = sum(1 for c in chapter_items if c.is_completed)
        out.append(
            ModuleSnapshot(
                module=module,
                is_unlocked=module_unlocked,
                is_completed=module.id in facts.completed_module_ids,
                progress_percent=progress_percent(completed_chapters, len(chapter_items)),
                chapters=chapter_items,
            )
        )
    return out


class UnlockResolver:
    """Answers "may this learner open this node?" from persisted progress rows.

    Nothing here is cached: every call re-reads ModuleProgress / ChapterProgress,
    so the answer can never drift from what the aggregator wrote.
    """

    def __init__(self, db: Session):
        self.db = db

    def _is_learner(self, user: User | None) -> bool:
        if user is None:
            return False
        if not user.is_email_verified:
            raise EmailNotVerified()
        return True

    def active_module_ids(self) -> list[uuid.UUID]:
        return list(
            self.db.scalars(select(Module.id).where(Module.is_active == True).order_by(Module.order)).all()  # noqa: E712
        )

    def active_chapter_ids(self, module_id: uuid.UUID) -> list[uuid.UUID]:
        return list(
            self.db.scalars(
                select(Chapter.id)
                .where(Chapter.module_id == module_id, Chapter.is_active == True)  # noqa: E712
                .order_by(Chapter.order)
            ).all()
        )

    def _count_completed_modules(self, user_id: uuid.UUID, module_ids: list[uuid.UUID]) -> int:
        if not module_ids:
            return 0
        return int(
            self.db.scalar(
                select(func.count(ModuleProgress.id)).where(
                    ModuleProgress.user_id == user_id,
                    ModuleProgress.module_id.in_(module_ids),
                    ModuleProgress.is_completed == True,  # noqa: E712
                )
            )
            or 0
        )

    def _count_completed_chapters(self, user_id: uuid.UUID, chapter_ids: list[uuid.UUID]) -> int:
        if not chapter_ids:
            return 0
        return int(
            self.db.scalar(
                select(func.count(ChapterProgress.id)).where(
                    ChapterProgress.user_id == user_id,
                    ChapterProgress.chapter_id.in_(chapter_ids),
                    ChapterProgress.is_completed == True,  # noqa: E712
                )
            )
            or 0
        )

    def is_module_unlocked(self, user: User | None, module_id) -> bool:
        if not self._is_learner(user):
            return False
        mid = as_uuid(module_id)
        ordered = self.active_module_ids()
        if mid is None or mid not in ordered:
            return False

        previous = ordered[: ordered.index(mid)]
        if not previous:
            return True  # first active module is always open
        return self._count_completed_modules(user.id, previous) == len(previous)

    def is_chapter_unlocked(self, user: User | None, chapter_id) -> bool:
        if not self._is_learner(user):
            return False
        cid = as_uuid(chapter_id)
        chapter = self.db.get(Chapter, cid) if cid is not None else None
        if chapter is None or not chapter.is_active:
            return False

        if not self.is_module_unlocked(user, chapter.module_id):
            return False

        ordered = self.active_chapter_ids(chapter.module_id)
        previous = ordered[: ordered.index(chapter.id)]
        if not previous:
            return True
        return self._count_completed_chapters(user.id, previous) == len(previous)

    def is_content_unlocked(self, user: User | None, content: Content | None) -> bool:
        # One content per chapter: the content shares its chapter's gate.
        if content is None or not content.is_active:
            return False
        return self.is_chapter_unlocked(user, content.chapter_id)

    def load_facts(self, user: User) -> ProgressFacts:
        facts = ProgressFacts()
        facts.completed_module_ids = set(
            self.db.scalars(
                select(ModuleProgress.module_id).where(
                    ModuleProgress.user_id == user.id,
                    ModuleProgress.is_completed == True,  # noqa: E712
                )
            ).all()
        )
        facts.completed_chapter_ids = set(
            self.db.scalars(
                select(ChapterProgress.chapter_id).where(
                    ChapterProgress.user_id == user.id,
                    ChapterProgress.is_completed == True,  # noqa: E712
                )
            ).all()
        )
        facts.content_progress = {
            cp.content_id: cp
            for cp in self.db.scalars(select(ContentProgress).where(ContentProgress.user_id == user.id)).all()
        }
        facts.passed_quiz_ids = set(
            self.db.scalars(
                select(QuizResult.quiz_id)
                .where(QuizResult.user_id == user.id, QuizResult.passed == True)  # noqa: E712
                .group_by(QuizResult.quiz_id)
            ).all()
        )
        return facts

    def catalog(self, user: User | None, *, module_ids: list[uuid.UUID] | None = None) -> list[ModuleSnapshot]:
        """Batch form of the three predicates for the whole active catalog.

        Uses a fixed number of queries regardless of catalog size. `module_ids`
        narrows the returned snapshots; gating is still computed over the full
        ordered catalog so a module's position is unaffected by the filter.
        """

        learner = self._is_learner(user)

        modules = list(
            self.db.scalars(select(Module).where(Module.is_active == True).order_by(Module.order)).all()  # noqa: E712
        )
        if not modules:
            return []
        all_ids = [m.id for m in modules]

        chapters_by_module: dict[uuid.UUID, list[Chapter]] = {}
        for ch in self.db.scalars(
            select(Chapter)
            .where(Chapter.module_id.in_(all_ids), Chapter.is_active == True)  # noqa: E712
            .order_by(Chapter.module_id, Chapter.order)
        ).all():
            chapters_by_module.setdefault(ch.module_id, []).append(ch)

        chapter_ids = [c.id for chs in chapters_by_module.values() for c in chs]
        contents_by_chapter: dict[uuid.UUID, list[Content]] = {}
        quiz_by_chapter: dict[uuid.UUID, Quiz] = {}
        if chapter_ids:
            for ct in self.db.scalars(
                select(Content)
                .where(Content.chapter_id.in_(chapter_ids), Content.is_active == True)  # noqa: E712
                .order_by(Content.chapter_id, Content.order)
            ).all():
                contents_by_chapter.setdefault(ct.chapter_id, []).append(ct)
            for q in self.db.scalars(select(Quiz).where(Quiz.chapter_id.in_(chapter_ids))).all():
                quiz_by_chapter[q.chapter_id] = q

        facts = self.load_facts(user) if learner else ProgressFacts()
        snapshots = resolve_catalog(
            modules,
            chapters_by_module,
            contents_by_chapter,
            quiz_by_chapter,
            facts,
            learner=learner,
        )
        if module_ids is not None:
            wanted = set(module_ids)
            snapshots = [s for s in snapshots if s.module.id in wanted]
        return snapshots
