from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, StrictBool, StrictInt, field_validator


class MultipleChoiceQuestion(BaseModel):
    id: str
    question: str
    type: Literal["multiple_choice"] = "multiple_choice"
    options: list[str]
    correct_answer: StrictInt
    explanation: str | None = None

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("question text must not be empty")
        return v.strip()

    @field_validator("options")
    @classmethod
    def _four_options(cls, v: list[str]) -> list[str]:
        if len(v) != 4:
            raise ValueError("multiple_choice questions need exactly 4 options")
        cleaned = [str(o or "").strip() for o in v]
        if any(not o for o in cleaned):
            raise ValueError("options must not be empty")
        return cleaned

    @field_validator("correct_answer")
    @classmethod
    def _index_in_range(cls, v: int) -> int:
        if v < 0 or v > 3:
            raise ValueError("correct_answer must be an option index between 0 and 3")
        return v


class TrueFalseQuestion(BaseModel):
    id: str
    question: str
    type: Literal["true_false"] = "true_false"
    correct_answer: StrictBool
    explanation: str | None = None

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("question text must not be empty")
        return v.strip()


Question = Annotated[Union[MultipleChoiceQuestion, TrueFalseQuestion], Field(discriminator="type")]


class QuestionPublic(BaseModel):
    id: str
    question: str
    type: str
    options: list[str] | None = None


class QuestionReview(QuestionPublic):
    correct_answer: int | bool
    explanation: str | None = None


class ModuleInfo(BaseModel):
    id: str
    title: str
    order: int


class ChapterInfo(BaseModel):
    id: str
    title: str


class AttemptSummary(BaseModel):
    score: int
    passed: bool
    attempted_at: str


class QuizView(BaseModel):
    review_mode: Literal[False] = False
    id: str
    chapter_id: str
    title: str
    passing_score: int
    total_questions: int
    time_limit_minutes: int
    questions: list[QuestionPublic]
    module_info: ModuleInfo
    chapter_info: ChapterInfo
    previous_attempt: AttemptSummary | None = None
    can_retry: bool = True


class QuizReview(BaseModel):
    review_mode: Literal[True] = True
    already_completed: bool = True
    id: str
    chapter_id: str
    title: str
    passing_score: int
    questions: list[QuestionReview]
    result: AttemptSummary
    module_info: ModuleInfo
    chapter_info: ChapterInfo


class QuizSubmitRequest(BaseModel):
    # Shape is checked against the quiz in QuizService so that malformed
    # payloads get the same error envelope as other invalid input.
    answers: Any = None


class QuestionResult(BaseModel):
    question_id: str
    user_answer: int | bool | None
    correct_answer: int | bool
    is_correct: bool
    explanation: str | None = None


class QuizSubmitResponse(BaseModel):
    quiz_id: str
    result_id: str
    score: int
    passed: bool
    passing_score: int
    correct_answers: int
    total_questions: int
    results: list[QuestionResult]
    chapter_completed: bool = False
    module_completed: bool = False
    message: str


class QuizResultItem(BaseModel):
    id: str
    score: int
    passed: bool
    created_at: str


class QuizResultsResponse(BaseModel):
    quiz_id: str
    items: list[QuizResultItem]
