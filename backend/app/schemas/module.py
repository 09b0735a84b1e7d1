from __future__ import annotations

from pydantic import BaseModel


class ContentState(BaseModel):
    id: str
    title: str
    type: str
    duration: int
    order: int
    is_unlocked: bool
    is_completed: bool
    progress_percent: int
    watch_time: float


class QuizBrief(BaseModel):
    id: str
    title: str
    passing_score: int
    is_passed: bool


class ChapterState(BaseModel):
    id: str
    title: str
    description: str | None
    order: int
    is_unlocked: bool
    is_completed: bool
    all_contents_completed: bool
    quiz_passed: bool
    contents: list[ContentState]
    quiz: QuizBrief | None = None


class ModuleState(BaseModel):
    id: str
    title: str
    description: str | None
    thumbnail: str | None
    order: int
    is_unlocked: bool
    is_completed: bool
    progress_percent: int
    chapters: list[ChapterState]


class UserStats(BaseModel):
    total_modules: int
    completed_modules: int
    total_watch_time: float
    average_score: int


class CatalogResponse(BaseModel):
    modules: list[ModuleState]
    user_stats: UserStats | None = None


class NavigationItem(BaseModel):
    id: str
    title: str
    type: str
    unlocked: bool


class ContentNavigation(BaseModel):
    previous: NavigationItem | None = None
    next: NavigationItem | None = None


class ContentDetailResponse(BaseModel):
    id: str
    title: str
    description: str | None
    type: str
    url: str
    duration: int
    chapter_id: str
    chapter_title: str
    module_id: str
    module_title: str
    quiz_id: str | None
    watch_time: float
    is_completed: bool
    progress_percent: int
    all_contents_completed: bool
    navigation: ContentNavigation
