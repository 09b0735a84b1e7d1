from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.errors import AccessDenied, ContentNotFinished, InvalidInput, NotFound
from app.models.module import Chapter, Content, Module
from app.models.progress import ContentProgress
from app.models.quiz import Quiz, QuizResult
from app.models.user import User
from app.schemas.quiz import (
    AttemptSummary,
    ChapterInfo,
    ModuleInfo,
    Question,
    QuestionPublic,
    QuestionResult,
    QuestionReview,
    QuizResultItem,
    QuizReview,
    QuizSubmitResponse,
    QuizView,
)
from app.services.progress import ProgressAggregator, round_half_up
from app.services.unlock import UnlockResolver

_questions_adapter = TypeAdapter(list[Question])


def estimate_minutes(question_count: int) -> int:
    return max(10, math.ceil(1.5 * int(question_count)))


def _format_errors(e: ValidationError) -> list[dict]:
    out = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append({"loc": loc, "msg": str(err.get("msg") or "")})
    return out


def parse_questions(raw: Any) -> list[dict]:
    """Validate an admin-supplied question list and assign ids q1..qN."""

    if not isinstance(raw, list) or not raw:
        raise InvalidInput("invalid_quiz", "questions must be a non-empty list")

    prepared = []
    for i, q in enumerate(raw, start=1):
        if not isinstance(q, dict):
            raise InvalidInput("invalid_quiz", f"question {i} must be an object")
        prepared.append({**q, "id": f"q{i}"})

    try:
        questions = _questions_adapter.validate_python(prepared)
    except ValidationError as e:
        raise InvalidInput("invalid_quiz", "invalid question structure", details={"errors": _format_errors(e)}) from e
    return [q.model_dump() for q in questions]


def parse_passing_score(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0 or raw > 100:
        raise InvalidInput("invalid_quiz", "passing_score must be an integer between 0 and 100")
    return int(raw)


def load_questions(quiz: Quiz) -> list:
    return _questions_adapter.validate_python(quiz.questions or [])


@dataclass
class GradeResult:
    score: int
    passed: bool
    correct: int
    total: int
    answers: dict[str, Any]
    results: list[QuestionResult] = field(default_factory=list)


def _answer_matches_type(question, value: Any) -> bool:
    # bool is a subclass of int: True must never be accepted as option index 1.
    if question.type == "true_false":
        return isinstance(value, bool)
    return isinstance(value, int) and not isinstance(value, bool)


def grade(questions: list, answers: Any, passing_score: int) -> GradeResult:
    """Pure grading: exact comparison per question, unanswered counts as wrong."""

    if not isinstance(answers, dict):
        raise InvalidInput("invalid_answers", "answers must be an object keyed by question id")

    by_id = {q.id: q for q in questions}
    unknown = sorted(str(k) for k in answers if k not in by_id)
    if unknown:
        raise InvalidInput("invalid_answers", "unknown question ids", details={"question_ids": unknown})

    normalized: dict[str, Any] = {}
    for qid, value in answers.items():
        if value is None:
            continue
        if not _answer_matches_type(by_id[qid], value):
            raise InvalidInput(
                "invalid_answers",
                f"answer for {qid} has the wrong type",
                details={"question_id": qid},
            )
        normalized[qid] = value

    results: list[QuestionResult] = []
    correct = 0
    for q in questions:
        user_answer = normalized.get(q.id)
        ok = user_answer is not None and user_answer == q.correct_answer
        if ok:
            correct += 1
        results.append(
            QuestionResult(
                question_id=q.id,
                user_answer=user_answer,
                correct_answer=q.correct_answer,
                is_correct=ok,
                explanation=q.explanation,
            )
        )

    total = len(questions)
    score = round_half_up(100 * correct / total) if total else 0
    return GradeResult(
        score=score,
        passed=score >= int(passing_score),
        correct=correct,
        total=total,
        answers=normalized,
        results=results,
    )


@dataclass
class QuizSubmission:
    response: QuizSubmitResponse
    completed_modules: list[Module] = field(default_factory=list)


def _summary(result: QuizResult) -> AttemptSummary:
    return AttemptSummary(score=int(result.score), passed=bool(result.passed), attempted_at=result.created_at.isoformat())


class QuizService:
    def __init__(self, db: Session):
        self.db = db

    def _gate(self, user: User, chapter: Chapter | None) -> tuple[Chapter, Module, Quiz]:
        """Checks shared by the read and submit paths; raises on the first failure."""

        if chapter is None or not chapter.is_active:
            raise NotFound("chapter_not_found", "chapter not found")
        module = self.db.get(Module, chapter.module_id)
        if module is None or not module.is_active:
            raise NotFound("module_not_found", "module not found")

        quiz = self.db.scalar(select(Quiz).where(Quiz.chapter_id == chapter.id))
        if quiz is None:
            raise NotFound("quiz_not_found", "this chapter has no quiz")

        if not UnlockResolver(self.db).is_chapter_unlocked(user, chapter.id):
            raise AccessDenied("chapter_locked", "complete the previous chapters first")

        content_ids = list(
            self.db.scalars(
                select(Content.id).where(Content.chapter_id == chapter.id, Content.is_active == True)  # noqa: E712
            ).all()
        )
        if not content_ids:
            raise NotFound("content_not_found", "this chapter has no content")

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
            raise ContentNotFinished(len(content_ids) - done)
        return chapter, module, quiz

    def _latest_result(self, user: User, quiz: Quiz, *, passed_only: bool) -> QuizResult | None:
        stmt = select(QuizResult).where(QuizResult.quiz_id == quiz.id, QuizResult.user_id == user.id)
        if passed_only:
            stmt = stmt.where(QuizResult.passed == True)  # noqa: E712
        return self.db.scalar(stmt.order_by(QuizResult.created_at.desc()).limit(1))

    def get_quiz_for_attempt(self, user: User, chapter_id: uuid.UUID) -> QuizView | QuizReview:
        chapter, module, quiz = self._gate(user, self.db.get(Chapter, chapter_id))
        questions = load_questions(quiz)
        module_info = ModuleInfo(id=str(module.id), title=module.title, order=int(module.order))
        chapter_info = ChapterInfo(id=str(chapter.id), title=chapter.title)

        passed = self._latest_result(user, quiz, passed_only=True)
        if passed is not None:
            return QuizReview(
                id=str(quiz.id),
                chapter_id=str(chapter.id),
                title=quiz.title,
                passing_score=int(quiz.passing_score),
                questions=[
                    QuestionReview(
                        id=q.id,
                        question=q.question,
                        type=q.type,
                        options=getattr(q, "options", None),
                        correct_answer=q.correct_answer,
                        explanation=q.explanation,
                    )
                    for q in questions
                ],
                result=_summary(passed),
                module_info=module_info,
                chapter_info=chapter_info,
            )

        previous = self._latest_result(user, quiz, passed_only=False)
        return QuizView(
            id=str(quiz.id),
            chapter_id=str(chapter.id),
            title=quiz.title,
            passing_score=int(quiz.passing_score),
            total_questions=len(questions),
            time_limit_minutes=estimate_minutes(len(questions)),
            questions=[
                QuestionPublic(id=q.id, question=q.question, type=q.type, options=getattr(q, "options", None))
                for q in questions
            ],
            module_info=module_info,
            chapter_info=chapter_info,
            previous_attempt=_summary(previous) if previous is not None else None,
        )

    def submit_quiz(self, user: User, quiz_id: uuid.UUID, answers: Any) -> QuizSubmission:
        quiz = self.db.get(Quiz, quiz_id)
        if quiz is None:
            raise NotFound("quiz_not_found", "quiz not found")

        chapter, _module, quiz = self._gate(user, self.db.get(Chapter, quiz.chapter_id))
        graded = grade(load_questions(quiz), answers, int(quiz.passing_score))

        result = QuizResult(
            quiz_id=quiz.id,
            user_id=user.id,
            score=graded.score,
            passed=graded.passed,
            answers=graded.answers,
        )
        self.db.add(result)
        self.db.flush()

        completed_modules: list[Module] = []
        chapter_completed = False
        module_completed = False
        if graded.passed:
            outcome = ProgressAggregator(self.db).cascade_from_chapter(user, chapter.id)
            chapter_completed = outcome.chapter_completed
            module_completed = outcome.module_completed
            completed_modules = outcome.completed_modules

        if graded.passed:
            message = "Quiz passed"
        else:
            message = f"Score {graded.score}% is below the {int(quiz.passing_score)}% needed. Review the content and try again."

        return QuizSubmission(
            response=QuizSubmitResponse(
                quiz_id=str(quiz.id),
                result_id=str(result.id),
                score=graded.score,
                passed=graded.passed,
                passing_score=int(quiz.passing_score),
                correct_answers=graded.correct,
                total_questions=graded.total,
                results=graded.results,
                chapter_completed=chapter_completed,
                module_completed=module_completed,
                message=message,
            ),
            completed_modules=completed_modules,
        )

    def list_results(self, user: User, quiz_id: uuid.UUID) -> list[QuizResultItem]:
        if self.db.get(Quiz, quiz_id) is None:
            raise NotFound("quiz_not_found", "quiz not found")
        rows = self.db.scalars(
            select(QuizResult)
            .where(QuizResult.quiz_id == quiz_id, QuizResult.user_id == user.id)
            .order_by(QuizResult.created_at.desc())
        ).all()
        return [
            QuizResultItem(id=str(r.id), score=int(r.score), passed=bool(r.passed), created_at=r.created_at.isoformat())
            for r in rows
        ]
