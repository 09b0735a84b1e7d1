from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class RecentActivityItem(BaseModel):
    id: str
    type: Literal["registration", "email_verified", "module_completed", "quiz_passed"]
    user: str
    module: str | None = None
    date: str


class DashboardStatsResponse(BaseModel):
    total_users: int
    verified_users: int
    unverified_users: int
    active_users: int
    total_modules: int
    active_modules: int
    total_chapters: int
    total_contents: int
    total_quizzes: int
    completed_modules: int
    completed_chapters: int
    completed_contents: int
    average_score: int
    registrations_this_month: int
    completions_this_month: int
    recent_activity: list[RecentActivityItem]


class ModuleProgressRow(BaseModel):
    module_id: str
    title: str
    order: int
    started_users: int
    completed_users: int


class AnalyticsResponse(BaseModel):
    stats: DashboardStatsResponse
    users_by_country: dict[str, int]
    module_progress: list[ModuleProgressRow]
