from sqlalchemy import func, select

from app.models.notification import Notification, NotificationType
from app.models.progress import ChapterProgress, ModuleProgress
from app.services.progress import progress_percent, round_half_up


def _ping(client, headers, content_id, watch_time):
    return client.post(f"/content/{content_id}/progress", headers=headers, json={"watch_time": watch_time})


def test_rounding_is_half_up_and_percent_is_capped():
    assert round_half_up(12.5) == 13
    assert round_half_up(2.5) == 3
    assert round_half_up(2.4) == 2
    assert progress_percent(1, 8) == 13
    assert progress_percent(700, 600) == 100
    assert progress_percent(5, 0) == 0


def test_watch_time_is_max_wins_and_clamped(client, make_catalog, auth_headers):
    content_id = make_catalog([[True]])[0]["chapters"][0]["content"]

    r = _ping(client, auth_headers, content_id, 300)
    assert r.status_code == 200
    assert r.json()["watch_time"] == 300
    assert r.json()["progress_percent"] == 50
    assert r.json()["is_completed"] is False

    # An older sample arriving late does not lower the stored value.
    r = _ping(client, auth_headers, content_id, 100)
    assert r.json()["watch_time"] == 300

    r = _ping(client, auth_headers, content_id, 900)
    body = r.json()
    assert body["watch_time"] == 600
    assert body["progress_percent"] == 100
    assert body["is_completed"] is True
    assert body["completed_at"] is not None


def test_completion_is_monotonic(client, make_catalog, auth_headers):
    content_id = make_catalog([[True]])[0]["chapters"][0]["content"]

    first = _ping(client, auth_headers, content_id, 600).json()
    again = _ping(client, auth_headers, content_id, 10).json()

    assert again["is_completed"] is True
    assert again["watch_time"] == 600
    assert first["completed_at"] is not None
    assert again["completed_at"] is not None


def test_chapter_with_quiz_waits_for_the_quiz(client, db, make_catalog, auth_headers, learner):
    chapter = make_catalog([[True]])[0]["chapters"][0]

    r = _ping(client, auth_headers, chapter["content"], 600)
    assert r.status_code == 200
    assert r.json()["chapter_completed"] is False
    assert r.json()["module_completed"] is False

    row = db.scalar(
        select(ChapterProgress).where(ChapterProgress.user_id == learner.id, ChapterProgress.chapter_id == chapter["chapter"])
    )
    assert row is None or row.is_completed is False


def test_module_completion_notifies_once(client, db, make_catalog, auth_headers, learner, enqueued):
    cat = make_catalog([[False, False], [False]])
    first, second = cat[0]["chapters"]

    r = _ping(client, auth_headers, first["content"], 600)
    assert r.json()["chapter_completed"] is True
    assert r.json()["module_completed"] is False

    r = _ping(client, auth_headers, second["content"], 600)
    assert r.json()["chapter_completed"] is True
    assert r.json()["module_completed"] is True
    assert "next module" in r.json()["message"]

    # Replaying the final sample changes nothing upstream.
    r = _ping(client, auth_headers, second["content"], 600)
    assert r.json()["chapter_completed"] is False
    assert r.json()["module_completed"] is False

    db.expire_all()
    completed = db.scalar(
        select(func.count(ModuleProgress.id)).where(ModuleProgress.user_id == learner.id, ModuleProgress.is_completed == True)  # noqa: E712
    )
    assert completed == 1
    notes = db.scalars(
        select(Notification).where(Notification.user_id == learner.id, Notification.type == NotificationType.success)
    ).all()
    assert len(notes) == 1
    assert [j["func"] for j in enqueued] == ["send_email_job"]
    assert enqueued[0]["kwargs"]["to"] == learner.email


def test_invalid_watch_time_is_rejected(client, make_catalog, auth_headers):
    content_id = make_catalog([[False]])[0]["chapters"][0]["content"]

    for bad in (-5, "abc", True, None):
        r = _ping(client, auth_headers, content_id, bad)
        assert r.status_code == 400, bad
        assert r.json()["error_code"] == "invalid_watch_time"


def test_progress_on_locked_content_is_refused(client, make_catalog, auth_headers):
    cat = make_catalog([[False, False]])
    locked = cat[0]["chapters"][1]["content"]

    r = _ping(client, auth_headers, locked, 600)
    assert r.status_code == 403
    assert r.json()["error_code"] == "content_locked"


def test_module_progress_report(client, make_catalog, auth_headers):
    cat = make_catalog([[False, True]])
    module_id = cat[0]["module"]
    first = cat[0]["chapters"][0]

    _ping(client, auth_headers, first["content"], 600)

    r = client.get(f"/progress/modules/{module_id}", headers=auth_headers)
    assert r.status_code == 200
    body = r.json()
    assert body["total_chapters"] == 2
    assert body["completed_chapters"] == 1
    assert body["progress_percent"] == 50
    assert body["is_completed"] is False
    assert [c["is_unlocked"] for c in body["chapters"]] == [True, True]
    assert body["chapters"][1]["has_quiz"] is True
    assert body["chapters"][1]["locked_reason"] is None


def test_content_detail_navigation_crosses_chapters(client, make_catalog, auth_headers):
    cat = make_catalog([[False, False]])
    first, second = cat[0]["chapters"]

    r = client.get(f"/content/{first['content']}", headers=auth_headers)
    assert r.status_code == 200
    nav = r.json()["navigation"]
    assert nav["previous"] is None
    assert nav["next"]["id"] == str(second["content"])
    assert nav["next"]["unlocked"] is False

    r = client.get(f"/content/{second['content']}", headers=auth_headers)
    assert r.status_code == 403
    assert r.json()["error_code"] == "content_locked"


def test_completed_chapter_stays_completed_when_a_quiz_is_added(client, make_catalog, auth_headers, admin_headers):
    cat = make_catalog([[False, False]])
    module_id = cat[0]["module"]
    first = cat[0]["chapters"][0]
    assert _ping(client, auth_headers, first["content"], 600).json()["chapter_completed"] is True

    r = client.post(
        "/admin/quizzes",
        headers=admin_headers,
        json={
            "chapter_id": str(first["chapter"]),
            "title": "Late quiz",
            "questions": [{"question": "Water is wet", "type": "true_false", "correct_answer": True}],
        },
    )
    assert r.status_code == 200

    body = client.get(f"/progress/modules/{module_id}", headers=auth_headers).json()
    assert [c["is_completed"] for c in body["chapters"]] == [True, False]
    assert [c["is_unlocked"] for c in body["chapters"]] == [True, True]
    assert body["chapters"][0]["quiz_passed"] is False
    assert body["completed_chapters"] == 1
    assert body["progress_percent"] == 50

    listed = {m["id"]: m for m in client.get("/modules", headers=auth_headers).json()["modules"]}
    assert listed[str(module_id)]["progress_percent"] == 50
