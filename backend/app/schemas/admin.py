from __future__ import annotations

from typing import Any, ClassVar, Literal

from pydantic import BaseModel, Field, model_validator

from app.models.user import UserRole


class _PartialUpdate(BaseModel):
    """PATCH body: omitted fields stay as they are, but columns listed in
    `non_nullable` cannot be cleared with an explicit null."""

    non_nullable: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def _no_null_for_required(self):
        cleared = sorted(f for f in self.model_fields_set & self.non_nullable if getattr(self, f) is None)
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


class ModuleCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    description: str | None = None
    thumbnail: str | None = None
    is_active: bool = True


class ModuleUpdateRequest(_PartialUpdate):
    non_nullable: ClassVar[frozenset[str]] = frozenset({"title", "order", "is_active"})

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = None
    thumbnail: str | None = None
    order: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class ChapterCreateRequest(BaseModel):
    module_id: str
    title: str = Field(min_length=1, max_length=300)
    description: str | None = None
    is_active: bool = True


class ChapterUpdateRequest(_PartialUpdate):
    non_nullable: ClassVar[frozenset[str]] = frozenset({"title", "order", "is_active"})

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = None
    order: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class ContentCreateRequest(BaseModel):
    chapter_id: str
    title: str = Field(min_length=1, max_length=300)
    description: str | None = None
    type: Literal["VIDEO", "AUDIO"]
    url: str = Field(min_length=1, max_length=2000)
    duration: int = Field(gt=0)
    is_active: bool = True


class ContentUpdateRequest(_PartialUpdate):
    non_nullable: ClassVar[frozenset[str]] = frozenset({"title", "type", "url", "duration", "is_active"})

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = None
    type: Literal["VIDEO", "AUDIO"] | None = None
    url: str | None = Field(default=None, min_length=1, max_length=2000)
    duration: int | None = Field(default=None, gt=0)
    is_active: bool | None = None


class QuizCreateRequest(BaseModel):
    chapter_id: str
    title: str
    passing_score: Any = 70
    # Validated by app.services.quizzes.parse_questions; kept loose here so
    # that errors name the offending question.
    questions: Any = None


class QuizUpdateRequest(BaseModel):
    title: str | None = None
    passing_score: Any = None
    questions: Any = None


class CreatedResponse(BaseModel):
    id: str


class UserAdminPublic(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    email_verified: bool
    created_at: str
    completed_modules: int


class SecurityEventPublic(BaseModel):
    event_type: str
    created_at: str
    ip: str | None = None
    user_agent: str | None = None
    meta: dict[str, Any] | None = None


class QuizAttemptPublic(BaseModel):
    quiz_id: str
    chapter_id: str
    chapter_title: str
    module_title: str
    score: int
    passed: bool
    completed_at: str


class UserActivityResponse(BaseModel):
    user: UserAdminPublic
    certificates: list[str]
    quiz_attempts: list[QuizAttemptPublic]
    security_events: list[SecurityEventPublic]


class UserUpdateRequest(BaseModel):
    role: UserRole | None = None
    email_verified: bool | None = None


class NotificationCreateRequest(BaseModel):
    title: str
    content: str
    type: Literal["INFO", "WARNING", "SUCCESS", "ANNOUNCEMENT"] = "INFO"
    user_id: str | None = None
