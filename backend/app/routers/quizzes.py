from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.rate_limit import rate_limit
from app.core.security import get_verified_user
from app.db.session import get_db
from app.models.user import User
from app.schemas.quiz import QuizResultsResponse, QuizReview, QuizSubmitRequest, QuizSubmitResponse, QuizView
from app.services.email import enqueue_module_completed_email
from app.services.quizzes import QuizService

router = APIRouter(tags=["quizzes"])


def _uuid(value: str, *, field: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"invalid {field}") from e


@router.get("/chapters/{chapter_id}/quiz", response_model=QuizView | QuizReview)
def get_chapter_quiz(chapter_id: str, db: Session = Depends(get_db), user: User = Depends(get_verified_user)):
    cid = _uuid(chapter_id, field="chapter_id")
    return QuizService(db).get_quiz_for_attempt(user, cid)


@router.post("/quizzes/{quiz_id}/submit", response_model=QuizSubmitResponse)
def submit_quiz(
    quiz_id: str,
    body: QuizSubmitRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_verified_user),
    _: object = rate_limit(key_prefix="quiz_submit", limit=30, window_seconds=60),
):
    qid = _uuid(quiz_id, field="quiz_id")
    submission = QuizService(db).submit_quiz(user, qid, body.answers)
    completed_titles = [m.title for m in submission.completed_modules]
    email, name = user.email, user.first_name
    db.commit()

    for title in completed_titles:
        enqueue_module_completed_email(email=email, name=name, module_title=title)
    return submission.response


@router.get("/quizzes/{quiz_id}/results", response_model=QuizResultsResponse)
def my_results(quiz_id: str, db: Session = Depends(get_db), user: User = Depends(get_verified_user)):
    qid = _uuid(quiz_id, field="quiz_id")
    items = QuizService(db).list_results(user, qid)
    return {"quiz_id": str(qid), "items": items}
