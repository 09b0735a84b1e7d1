import random
import uuid
from datetime import datetime, timezone

import pytest

from app.core.errors import EmailNotVerified
from app.models.progress import ChapterProgress, ModuleProgress
from app.services.unlock import UnlockResolver


def _complete_chapter_rows(db, user, chapter_ids):
    now = datetime.now(timezone.utc)
    for cid in chapter_ids:
        db.add(ChapterProgress(user_id=user.id, chapter_id=cid, is_completed=True, completed_at=now))


def _complete_module_rows(db, user, module_ids):
    now = datetime.now(timezone.utc)
    for mid in module_ids:
        db.add(ModuleProgress(user_id=user.id, module_id=mid, is_completed=True, completed_at=now))


def test_anonymous_visitor_sees_everything_locked(client, make_catalog):
    make_catalog([[False, True], [False]])

    r = client.get("/modules")
    assert r.status_code == 200
    body = r.json()
    assert body["user_stats"] is None
    assert len(body["modules"]) == 2
    for m in body["modules"]:
        assert m["is_unlocked"] is False
        for ch in m["chapters"]:
            assert ch["is_unlocked"] is False
            assert all(c["is_unlocked"] is False for c in ch["contents"])


def test_new_learner_gets_first_module_and_first_chapter_only(client, make_catalog, auth_headers):
    make_catalog([[False, False], [False]])

    r = client.get("/modules", headers=auth_headers)
    assert r.status_code == 200
    first, second = r.json()["modules"]

    assert first["is_unlocked"] is True
    assert [ch["is_unlocked"] for ch in first["chapters"]] == [True, False]
    assert second["is_unlocked"] is False
    assert second["chapters"][0]["is_unlocked"] is False
    assert r.json()["user_stats"]["total_modules"] == 2


def test_unverified_learner_is_refused(client, make_catalog, make_user, headers):
    cat = make_catalog([[False]])
    h = headers(make_user(verified=False))

    r = client.get("/modules", headers=h)
    assert r.status_code == 403
    assert r.json()["error_code"] == "email_not_verified"

    r = client.get(f"/modules/{cat[0]['module']}", headers=h)
    assert r.status_code == 403
    assert r.json()["error_code"] == "email_not_verified"


def test_completing_module_a_unlocks_module_b(client, make_catalog, auth_headers):
    cat = make_catalog([[False], [False]])
    module_a, module_b = cat

    r = client.get(f"/modules/{module_b['module']}", headers=auth_headers)
    assert r.status_code == 403
    assert r.json()["error_code"] == "module_locked"

    content_a = module_a["chapters"][0]["content"]
    r = client.post(f"/content/{content_a}/progress", headers=auth_headers, json={"watch_time": 600})
    assert r.status_code == 200
    assert r.json()["module_completed"] is True

    r = client.get(f"/modules/{module_b['module']}", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["is_unlocked"] is True
    assert r.json()["chapters"][0]["is_unlocked"] is True


def test_inactive_module_is_skipped_in_the_chain(db, make_catalog, learner):
    cat = make_catalog([[False], [False], [False]], inactive_modules=frozenset({1}))
    _complete_module_rows(db, learner, [cat[0]["module"]])
    db.commit()

    resolver = UnlockResolver(db)
    assert resolver.is_module_unlocked(learner, cat[2]["module"]) is True
    assert resolver.is_module_unlocked(learner, cat[1]["module"]) is False
    assert [s.module.id for s in resolver.catalog(learner)] == [cat[0]["module"], cat[2]["module"]]


def test_unknown_or_malformed_ids_are_locked(db, make_catalog, learner):
    make_catalog([[False]])
    resolver = UnlockResolver(db)

    assert resolver.is_module_unlocked(learner, uuid.uuid4()) is False
    assert resolver.is_module_unlocked(learner, "not-a-uuid") is False
    assert resolver.is_chapter_unlocked(learner, uuid.uuid4()) is False
    assert resolver.is_chapter_unlocked(learner, None) is False
    assert resolver.is_content_unlocked(learner, None) is False


def test_anonymous_predicates_are_false_and_unverified_raise(db, make_catalog, make_user):
    cat = make_catalog([[False]])
    resolver = UnlockResolver(db)

    assert resolver.is_module_unlocked(None, cat[0]["module"]) is False
    with pytest.raises(EmailNotVerified):
        resolver.is_module_unlocked(make_user(verified=False), cat[0]["module"])


@pytest.mark.parametrize("seed", range(8))
def test_random_progress_keeps_gating_linear(db, make_catalog, learner, seed):
    rng = random.Random(seed)
    cat = make_catalog([[rng.random() < 0.5 for _ in range(3)] for _ in range(3)])

    # Arbitrary completion rows, including states the API itself would never produce.
    for m in cat:
        if rng.random() < 0.5:
            _complete_module_rows(db, learner, [m["module"]])
        _complete_chapter_rows(db, learner, [ch["chapter"] for ch in m["chapters"] if rng.random() < 0.5])
    db.commit()

    resolver = UnlockResolver(db)
    snapshots = resolver.catalog(learner)
    assert [s.module.id for s in snapshots] == [m["module"] for m in cat]

    for mi, snap in enumerate(snapshots):
        expected_module = all(s.is_completed for s in snapshots[:mi])
        assert snap.is_unlocked is expected_module
        assert resolver.is_module_unlocked(learner, snap.module.id) is snap.is_unlocked
        if mi > 0 and snap.is_unlocked:
            assert snapshots[mi - 1].is_completed

        completed_chapters = {
            ch["chapter"]
            for ch in cat[mi]["chapters"]
            if db.query(ChapterProgress)
            .filter_by(user_id=learner.id, chapter_id=ch["chapter"], is_completed=True)
            .first()
            is not None
        }
        for ci, ch in enumerate(snap.chapters):
            previous = [c.chapter.id for c in snap.chapters[:ci]]
            expected = snap.is_unlocked and all(pid in completed_chapters for pid in previous)
            assert ch.is_unlocked is expected
            assert resolver.is_chapter_unlocked(learner, ch.chapter.id) is ch.is_unlocked
            for c in ch.contents:
                assert c.is_unlocked is ch.is_unlocked
                assert resolver.is_content_unlocked(learner, c.content) is c.is_unlocked
