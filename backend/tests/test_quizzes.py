import pytest
from sqlalchemy import func, select

from app.core.errors import InvalidInput
from app.models.notification import Notification, NotificationType
from app.models.progress import ChapterProgress, ModuleProgress
from app.models.quiz import Quiz, QuizResult
from app.services.quizzes import estimate_minutes, grade, load_questions, parse_passing_score, parse_questions

QUESTIONS = [
    {"question": "Pick a", "type": "multiple_choice", "options": ["a", "b", "c", "d"], "correct_answer": 0},
    {"question": "Pick b", "type": "multiple_choice", "options": ["a", "b", "c", "d"], "correct_answer": 1},
    {"question": "Sky is blue", "type": "true_false", "correct_answer": True, "explanation": "It is."},
    {"question": "Pick c", "type": "multiple_choice", "options": ["a", "b", "c", "d"], "correct_answer": 2},
]


def _questions():
    return load_questions(Quiz(title="t", passing_score=70, questions=parse_questions(QUESTIONS)))


def _finish_content(client, headers, content_id):
    r = client.post(f"/content/{content_id}/progress", headers=headers, json={"watch_time": 600})
    assert r.status_code == 200


def test_parse_questions_assigns_sequential_ids():
    parsed = parse_questions(QUESTIONS)
    assert [q["id"] for q in parsed] == ["q1", "q2", "q3", "q4"]
    assert parsed[2]["correct_answer"] is True


@pytest.mark.parametrize(
    "bad",
    [
        [],
        "nope",
        [{"question": "x", "type": "multiple_choice", "options": ["a", "b", "c"], "correct_answer": 0}],
        [{"question": "x", "type": "multiple_choice", "options": ["a", "b", "c", "d"], "correct_answer": 4}],
        [{"question": "x", "type": "multiple_choice", "options": ["a", "b", "c", "d"], "correct_answer": True}],
        [{"question": "x", "type": "true_false", "correct_answer": 1}],
        [{"question": "  ", "type": "true_false", "correct_answer": False}],
        [{"question": "x", "type": "essay"}],
    ],
)
def test_parse_questions_rejects_malformed_input(bad):
    with pytest.raises(InvalidInput) as e:
        parse_questions(bad)
    assert e.value.error_code == "invalid_quiz"


def test_passing_score_bounds():
    assert parse_passing_score(0) == 0
    assert parse_passing_score(100) == 100
    for bad in (-1, 101, "70", True, 70.5):
        with pytest.raises(InvalidInput):
            parse_passing_score(bad)


def test_estimate_minutes_has_a_floor():
    assert estimate_minutes(4) == 10
    assert estimate_minutes(10) == 15
    assert estimate_minutes(11) == 17


def test_three_of_four_scores_75_and_passes():
    res = grade(_questions(), {"q1": 0, "q2": 1, "q3": True, "q4": 0}, 70)
    assert res.score == 75
    assert res.passed is True
    assert res.correct == 3
    assert res.total == 4
    assert [r.is_correct for r in res.results] == [True, True, True, False]


def test_grading_is_deterministic():
    answers = {"q1": 3, "q3": False}
    first = grade(_questions(), answers, 70)
    second = grade(_questions(), answers, 70)
    assert (first.score, first.passed, first.correct) == (second.score, second.passed, second.correct)
    assert first.score == 0


def test_null_answer_counts_as_unanswered():
    res = grade(_questions(), {"q1": None, "q2": 1, "q3": True, "q4": 2}, 70)
    assert res.score == 75
    assert "q1" not in res.answers
    assert res.results[0].user_answer is None


def test_bool_is_never_an_option_index():
    with pytest.raises(InvalidInput) as e:
        grade(_questions(), {"q2": True}, 70)
    assert e.value.error_code == "invalid_answers"

    with pytest.raises(InvalidInput):
        grade(_questions(), {"q3": 1}, 70)


def test_unknown_question_ids_and_non_object_answers_are_rejected():
    with pytest.raises(InvalidInput) as e:
        grade(_questions(), {"q9": 0}, 70)
    assert e.value.details == {"question_ids": ["q9"]}

    for bad in ([0, 1], "q1", None):
        with pytest.raises(InvalidInput):
            grade(_questions(), bad, 70)


def test_quiz_requires_finished_content(client, make_catalog, auth_headers, all_correct):
    chapter = make_catalog([[True]])[0]["chapters"][0]

    r = client.get(f"/chapters/{chapter['chapter']}/quiz", headers=auth_headers)
    assert r.status_code == 403
    assert r.json()["error_code"] == "content_not_finished"
    assert r.json()["details"] == {"remaining": 1}

    r = client.post(f"/quizzes/{chapter['quiz']}/submit", headers=auth_headers, json={"answers": all_correct})
    assert r.status_code == 403
    assert r.json()["error_code"] == "content_not_finished"


def test_quiz_in_locked_chapter_is_refused(client, make_catalog, auth_headers, all_correct):
    cat = make_catalog([[True, True]])
    second = cat[0]["chapters"][1]

    r = client.get(f"/chapters/{second['chapter']}/quiz", headers=auth_headers)
    assert r.status_code == 403
    assert r.json()["error_code"] == "chapter_locked"

    r = client.post(f"/quizzes/{second['quiz']}/submit", headers=auth_headers, json={"answers": all_correct})
    assert r.status_code == 403
    assert r.json()["error_code"] == "chapter_locked"


def test_pass_completes_chapter_and_module_then_switches_to_review(client, make_catalog, auth_headers, all_correct):
    cat = make_catalog([[True], [False]])
    chapter = cat[0]["chapters"][0]
    _finish_content(client, auth_headers, chapter["content"])

    r = client.get(f"/chapters/{chapter['chapter']}/quiz", headers=auth_headers)
    assert r.status_code == 200
    view = r.json()
    assert view["review_mode"] is False
    assert view["total_questions"] == 4
    assert view["time_limit_minutes"] == 10
    assert all("correct_answer" not in q for q in view["questions"])

    answers = dict(all_correct, q4=0)
    r = client.post(f"/quizzes/{chapter['quiz']}/submit", headers=auth_headers, json={"answers": answers})
    assert r.status_code == 200
    body = r.json()
    assert body["score"] == 75
    assert body["passed"] is True
    assert body["correct_answers"] == 3
    assert body["chapter_completed"] is True
    assert body["module_completed"] is True

    r = client.get(f"/chapters/{chapter['chapter']}/quiz", headers=auth_headers)
    review = r.json()
    assert review["review_mode"] is True
    assert review["result"]["score"] == 75
    assert review["questions"][2]["correct_answer"] is True
    assert review["questions"][2]["explanation"] is None

    r = client.get(f"/modules/{cat[1]['module']}", headers=auth_headers)
    assert r.status_code == 200


def test_failed_attempt_keeps_quiz_open(client, make_catalog, auth_headers):
    chapter = make_catalog([[True]])[0]["chapters"][0]
    _finish_content(client, auth_headers, chapter["content"])

    r = client.post(f"/quizzes/{chapter['quiz']}/submit", headers=auth_headers, json={"answers": {"q1": 0}})
    assert r.status_code == 200
    assert r.json()["score"] == 25
    assert r.json()["passed"] is False
    assert r.json()["message"] == "Score 25% is below the 70% needed. Review the content and try again."
    assert r.json()["chapter_completed"] is False

    r = client.get(f"/chapters/{chapter['chapter']}/quiz", headers=auth_headers)
    view = r.json()
    assert view["review_mode"] is False
    assert view["previous_attempt"]["score"] == 25
    assert view["can_retry"] is True

    r = client.get(f"/quizzes/{chapter['quiz']}/results", headers=auth_headers)
    assert r.status_code == 200
    assert [i["score"] for i in r.json()["items"]] == [25]


def test_malformed_answers_get_the_error_envelope(client, make_catalog, auth_headers):
    chapter = make_catalog([[True]])[0]["chapters"][0]
    _finish_content(client, auth_headers, chapter["content"])

    r = client.post(f"/quizzes/{chapter['quiz']}/submit", headers=auth_headers, json={"answers": ["a"]})
    assert r.status_code == 400
    body = r.json()
    assert body["ok"] is False
    assert body["error_code"] == "invalid_answers"
    assert body["request_id"]

    r = client.post(f"/quizzes/{chapter['quiz']}/submit", headers=auth_headers, json={"answers": {"q1": True}})
    assert r.status_code == 400
    assert r.json()["error_code"] == "invalid_answers"


def test_passing_twice_records_both_attempts_but_completes_once(client, db, make_catalog, learner, auth_headers, all_correct):
    cat = make_catalog([[True], [False]])
    chapter = cat[0]["chapters"][0]
    _finish_content(client, auth_headers, chapter["content"])

    first = client.post(f"/quizzes/{chapter['quiz']}/submit", headers=auth_headers, json={"answers": all_correct})
    second = client.post(f"/quizzes/{chapter['quiz']}/submit", headers=auth_headers, json={"answers": all_correct})
    assert first.status_code == second.status_code == 200
    assert (first.json()["chapter_completed"], first.json()["module_completed"]) == (True, True)
    assert (second.json()["chapter_completed"], second.json()["module_completed"]) == (False, False)

    db.expire_all()
    results = db.scalars(select(QuizResult).where(QuizResult.user_id == learner.id)).all()
    assert sorted((r.score, r.passed) for r in results) == [(100, True), (100, True)]

    def _count(model, *where):
        return db.scalar(select(func.count()).select_from(model).where(model.user_id == learner.id, *where))

    assert _count(ChapterProgress, ChapterProgress.is_completed == True) == 1  # noqa: E712
    assert _count(ModuleProgress, ModuleProgress.is_completed == True) == 1  # noqa: E712
    assert _count(Notification, Notification.type == NotificationType.success) == 1
