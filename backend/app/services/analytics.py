from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.module import Chapter, Content, Module
from app.models.progress import ChapterProgress, ContentProgress, ModuleProgress
from app.models.quiz import Quiz, QuizResult
from app.models.user import User
from app.schemas.analytics import (
    AnalyticsResponse,
    DashboardStatsResponse,
    ModuleProgressRow,
    RecentActivityItem,
)
from app.services.progress import round_half_up

# Rows taken from each activity source, and the length of the merged feed.
RECENT_PER_SOURCE = 5
RECENT_TOTAL = 15
TOP_COUNTRIES = 10


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; every timestamp here is stored in UTC.
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _module_label(m: Module) -> str:
    return f"Module {int(m.order)}: {m.title}"


class AdminAnalytics:
    def __init__(self, db: Session):
        self.db = db

    def _count(self, column, *where) -> int:
        return int(self.db.scalar(select(func.count(column)).where(*where)) or 0)

    def dashboard(self, *, now: datetime | None = None) -> DashboardStatsResponse:
        now = now or datetime.now(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        total_users = self._count(User.id)
        verified_users = self._count(User.id, User.email_verified_at.is_not(None))
        avg = self.db.scalar(select(func.avg(QuizResult.score)))

        return DashboardStatsResponse(
            total_users=total_users,
            verified_users=verified_users,
            unverified_users=total_users - verified_users,
            active_users=int(self.db.scalar(select(func.count(func.distinct(ModuleProgress.user_id)))) or 0),
            total_modules=self._count(Module.id),
            active_modules=self._count(Module.id, Module.is_active == True),  # noqa: E712
            total_chapters=self._count(Chapter.id, Chapter.is_active == True),  # noqa: E712
            total_contents=self._count(Content.id, Content.is_active == True),  # noqa: E712
            total_quizzes=self._count(Quiz.id),
            completed_modules=self._count(ModuleProgress.id, ModuleProgress.is_completed == True),  # noqa: E712
            completed_chapters=self._count(ChapterProgress.id, ChapterProgress.is_completed == True),  # noqa: E712
            completed_contents=self._count(ContentProgress.id, ContentProgress.is_completed == True),  # noqa: E712
            average_score=round_half_up(float(avg)) if avg is not None else 0,
            registrations_this_month=self._count(User.id, User.created_at >= month_start),
            completions_this_month=self._count(
                ModuleProgress.id,
                ModuleProgress.is_completed == True,  # noqa: E712
                ModuleProgress.completed_at >= month_start,
            ),
            recent_activity=self.recent_activity(month_start),
        )

    def recent_activity(self, month_start: datetime) -> list[RecentActivityItem]:
        items: list[tuple[datetime, RecentActivityItem]] = []

        for u in self.db.scalars(select(User).order_by(User.created_at.desc()).limit(RECENT_PER_SOURCE)).all():
            items.append(
                (
                    _aware(u.created_at),
                    RecentActivityItem(
                        id=f"reg-{u.id}", type="registration", user=u.full_name, date=_aware(u.created_at).isoformat()
                    ),
                )
            )

        for u in self.db.scalars(
            select(User)
            .where(User.email_verified_at.is_not(None), User.email_verified_at >= month_start)
            .order_by(User.email_verified_at.desc())
            .limit(RECENT_PER_SOURCE)
        ).all():
            at = _aware(u.email_verified_at)
            items.append(
                (at, RecentActivityItem(id=f"verify-{u.id}", type="email_verified", user=u.full_name, date=at.isoformat()))
            )

        for mp, u, m in self.db.execute(
            select(ModuleProgress, User, Module)
            .select_from(ModuleProgress)
            .join(User, User.id == ModuleProgress.user_id)
            .join(Module, Module.id == ModuleProgress.module_id)
            .where(ModuleProgress.is_completed == True, ModuleProgress.completed_at.is_not(None))  # noqa: E712
            .order_by(ModuleProgress.completed_at.desc())
            .limit(RECENT_PER_SOURCE)
        ).all():
            at = _aware(mp.completed_at)
            items.append(
                (
                    at,
                    RecentActivityItem(
                        id=f"comp-{mp.id}",
                        type="module_completed",
                        user=u.full_name,
                        module=_module_label(m),
                        date=at.isoformat(),
                    ),
                )
            )

        for r, u, m in self.db.execute(
            select(QuizResult, User, Module)
            .select_from(QuizResult)
            .join(User, User.id == QuizResult.user_id)
            .join(Quiz, Quiz.id == QuizResult.quiz_id)
            .join(Chapter, Chapter.id == Quiz.chapter_id)
            .join(Module, Module.id == Chapter.module_id)
            .where(QuizResult.passed == True)  # noqa: E712
            .order_by(QuizResult.created_at.desc())
            .limit(RECENT_PER_SOURCE)
        ).all():
            at = _aware(r.created_at)
            items.append(
                (
                    at,
                    RecentActivityItem(
                        id=f"quiz-{r.id}", type="quiz_passed", user=u.full_name, module=_module_label(m), date=at.isoformat()
                    ),
                )
            )

        items.sort(key=lambda pair: pair[0], reverse=True)
        return [item for _, item in items[:RECENT_TOTAL]]

    def users_by_country(self) -> dict[str, int]:
        rows = self.db.execute(
            select(User.country, func.count(User.id))
            .where(User.country.is_not(None))
            .group_by(User.country)
            .order_by(func.count(User.id).desc(), User.country)
            .limit(TOP_COUNTRIES)
        ).all()
        return {str(country): int(n) for country, n in rows}

    def module_progress(self) -> list[ModuleProgressRow]:
        # Anyone with watch progress on one of the module's contents has started it.
        started = dict(
            self.db.execute(
                select(Chapter.module_id, func.count(func.distinct(ContentProgress.user_id)))
                .select_from(ContentProgress)
                .join(Content, Content.id == ContentProgress.content_id)
                .join(Chapter, Chapter.id == Content.chapter_id)
                .group_by(Chapter.module_id)
            ).all()
        )
        completed = dict(
            self.db.execute(
                select(ModuleProgress.module_id, func.count(ModuleProgress.id))
                .where(ModuleProgress.is_completed == True)  # noqa: E712
                .group_by(ModuleProgress.module_id)
            ).all()
        )
        modules = self.db.scalars(select(Module).where(Module.is_active == True).order_by(Module.order)).all()  # noqa: E712
        return [
            ModuleProgressRow(
                module_id=str(m.id),
                title=m.title,
                order=int(m.order),
                started_users=int(started.get(m.id, 0)),
                completed_users=int(completed.get(m.id, 0)),
            )
            for m in modules
        ]

    def analytics(self) -> AnalyticsResponse:
        return AnalyticsResponse(
            stats=self.dashboard(),
            users_by_country=self.users_by_country(),
            module_progress=self.module_progress(),
        )
