from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ContentProgressRequest(BaseModel):
    # Seconds watched; range and type are checked by ProgressAggregator.
    watch_time: Any = None


class ContentProgressResponse(BaseModel):
    content_id: str
    watch_time: float
    is_completed: bool
    completed_at: str | None
    progress_percent: int
    chapter_completed: bool = False
    module_completed: bool = False
    message: str


class ChapterStatus(BaseModel):
    chapter_id: str
    title: str
    order: int
    is_unlocked: bool
    is_completed: bool
    all_contents_completed: bool
    has_quiz: bool
    quiz_passed: bool
    locked_reason: str | None = None


class ModuleProgressResponse(BaseModel):
    module_id: str
    title: str
    is_unlocked: bool
    is_completed: bool
    total_chapters: int
    completed_chapters: int
    progress_percent: int
    completed_at: str | None = None
    chapters: list[ChapterStatus]
