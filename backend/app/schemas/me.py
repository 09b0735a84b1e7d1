from __future__ import annotations

from pydantic import BaseModel, Field


class MyStats(BaseModel):
    total_modules: int
    completed_modules: int
    total_chapters: int
    completed_chapters: int
    total_contents: int
    completed_contents: int
    total_watch_time: float
    average_score: int
    certificates: int
    last_activity: str | None = None


class RecentActivityItem(BaseModel):
    kind: str
    created_at: str
    title: str
    score: int | None = None
    passed: bool | None = None
    module_id: str | None = None
    chapter_id: str | None = None


class MyProfileResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    phone: str | None = None
    country: str | None = None
    city: str | None = None
    email_verified: bool
    created_at: str
    stats: MyStats
    recent_activity: list[RecentActivityItem]


class ProfileUpdateRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=200)
    last_name: str = Field(min_length=1, max_length=200)
    phone: str | None = Field(default=None, max_length=32)
    country: str | None = Field(default=None, max_length=100)
    city: str | None = Field(default=None, max_length=100)
