"""
HTTP 계층 스모크 테스트 (FastAPI TestClient, 백그라운드 스레드 없이).
"""

from fastapi.testclient import TestClient

from api.app import create_app
from api.context import AppContext, AttemptRegistry
from api.session import CookieSessions
from training_center_cbt.services.quiz_attempt import QuizAttempt
from training_center_cbt.services.store import (
    InMemoryQuizRepository,
    InMemorySessionStore,
    SessionStoreError,
)

from conftest import FakeClock, identify, make_quiz

MOBILE = {"practice": False, "desktop": False}


def _event(client, quiz_id, **payload):
    return client.post(f"/api/quizzes/{quiz_id}/attempt/events", json=payload)


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "live_attempts": 0}


def test_requires_identity(client):
    assert client.get("/api/quizzes").status_code == 401
    assert client.post("/api/quizzes/timed/attempt", json=MOBILE).status_code == 401


def test_identify_rejects_unknown_role(client):
    r = client.post("/api/identify", json={"user_id": "u", "role": "root"})
    assert r.status_code == 422


def test_quiz_list_with_status_and_courses(client):
    identify(client)
    body = client.get("/api/quizzes").json()

    ids = {q["id"]: q for q in body["quizzes"]}
    assert set(ids) == {"timed", "untimed"}
    assert ids["timed"]["status"] == "Not Started"
    assert ids["timed"]["question_count"] == 3
    assert sorted(body["by_course"]["unassigned"]) == ["timed", "untimed"]


def test_unknown_quiz_is_404(client):
    identify(client)
    assert client.get("/api/quizzes/nope/start-info").status_code == 404
    assert client.post("/api/quizzes/nope/attempt", json=MOBILE).status_code == 404
    assert client.get("/api/quizzes/timed/attempt").status_code == 404


def test_full_attempt_flow(client, results):
    identify(client)

    info = client.get("/api/quizzes/timed/start-info").json()
    assert info["has_in_progress"] is False

    snap = client.post("/api/quizzes/timed/attempt", json=MOBILE).json()
    assert snap["mode"] == "normal"
    assert snap["time_left"] == 600
    assert snap["question"]["id"] == "q1"
    assert "answer" not in snap["question"]

    assert _event(client, "timed", type="answer", value="443").status_code == 200
    snap = _event(client, "timed", type="navigate", direction="next").json()
    assert snap["current_index"] == 1
    _event(client, "timed", type="answer", value="SSH")
    _event(client, "timed", type="answer", value="SFTP")

    info = client.get("/api/quizzes/timed/start-info").json()
    assert info["has_in_progress"] is True
    assert info["time_left"] <= 600

    snap = _event(client, "timed", type="submit", confirmed=True).json()
    assert snap["finalized"] is True
    assert snap["result"]["score"] == 2
    assert snap["redirect"] == "/quiz/timed/results?practice=false"

    body = client.get("/api/quizzes/timed/results").json()
    assert body["status"] == "Completed"
    assert len(body["results"]) == 1

    dash = client.get("/api/dashboard").json()
    assert dash["attempts_count"] == 1
    assert dash["latest_attempt"]["quiz_id"] == "timed"

    assert client.get("/api/quizzes/timed/start-info").json()["has_in_progress"] is False


def test_bad_events_are_422(client):
    identify(client)
    client.post("/api/quizzes/timed/attempt", json=MOBILE)

    assert _event(client, "timed", type="teleport").status_code == 422
    assert _event(client, "timed", type="navigate").status_code == 422
    assert _event(client, "timed", type="answer", value="8080").status_code == 422
    assert _event(client, "timed", type="submit").status_code == 422


def test_switch_lock_reported_in_snapshot(client, sessions):
    identify(client)
    client.post("/api/quizzes/timed/attempt", json=MOBILE)
    _event(client, "timed", type="answer", value="443")

    snap = _event(client, "timed", type="visibility", hidden=True).json()

    assert snap["guard"]["state"] == "timed_lock"
    assert snap["guard"]["remaining_lock_seconds"] > 0
    # 잠금 진입 시 즉시 저장
    assert sessions.get("timed", "student-1").answers_by_question_id == {"q1": "443"}


def test_desktop_attempt_starts_locked(client):
    identify(client)
    snap = client.post("/api/quizzes/timed/attempt").json()
    assert snap["guard"]["state"] == "indefinite_lock"

    snap = _event(client, "timed", type="fullscreen", is_fullscreen=True).json()
    assert snap["guard"]["state"] == "active"


def test_exit_removes_live_attempt(client, ctx):
    identify(client)
    client.post("/api/quizzes/timed/attempt", json=MOBILE)

    snap = _event(client, "timed", type="exit").json()

    assert snap["redirect"] == "/dashboard"
    assert ctx.attempts.get("timed", "student-1") is None
    assert client.get("/api/quizzes/timed/start-info").json()["has_in_progress"] is True


def test_restart_discards_progress(client, sessions):
    identify(client)
    client.post("/api/quizzes/timed/attempt", json=MOBILE)
    _event(client, "timed", type="answer", value="443")
    _event(client, "timed", type="blur")
    old = sessions.get("timed", "student-1")

    body = client.post("/api/quizzes/timed/restart").json()

    assert body["session"]["started_at"] > old.started_at
    assert sessions.get("timed", "student-1").answers_by_question_id == {}
    assert client.post("/api/quizzes/untimed/restart").json() == {"ok": True, "session": None}


def test_practice_results_kept_apart(client):
    identify(client)
    client.post("/api/quizzes/timed/attempt", json={"practice": True, "desktop": True})
    snap = _event(client, "timed", type="submit", confirmed=True).json()
    assert snap["redirect"] == "/quiz/timed/results?practice=true"

    body = client.get("/api/quizzes/timed/results").json()
    assert body["results"] == []
    assert len(body["practice_attempts"]) == 1
    assert client.get("/api/dashboard").json()["attempts_count"] == 0


def test_admin_views(client, results):
    identify(client)
    client.post("/api/quizzes/timed/attempt", json=MOBILE)
    _event(client, "timed", type="answer", value="443")
    _event(client, "timed", type="submit", confirmed=True)

    assert client.get("/api/admin/quizzes/timed/analytics").status_code == 403
    assert client.post("/api/quizzes/timed/restart").status_code == 200

    identify(client, "instructor", role="admin")
    info = client.get("/api/quizzes/timed/start-info").json()
    assert info["redirect"] == "/dashboard/quizzes/timed/edit"
    assert client.post("/api/quizzes/timed/restart").status_code == 403

    body = client.get("/api/admin/quizzes/timed/analytics").json()
    assert body["attempts"] == 1
    assert body["average_score"] == 33
    assert body["question_stats"][0]["correct_percentage"] == 100


def test_admin_preview_saves_nothing(client, sessions, results):
    identify(client, "instructor", role="admin")
    snap = client.post("/api/quizzes/timed/attempt").json()
    assert snap["mode"] == "preview"

    snap = _event(client, "timed", type="submit", confirmed=True).json()
    assert snap["redirect"] == "/dashboard/quizzes"
    assert sessions.get("timed", "instructor") is None
    assert results.get_record("timed", "instructor") is None


def test_parse_pasted_endpoint(client):
    identify(client, "instructor", role="admin")
    r = client.post("/api/admin/parse-pasted", json={"text": "Q?\nA) one\nB) two *"})
    assert r.status_code == 200
    assert r.json()["options"][1]["correct"] is True

    r = client.post("/api/admin/parse-pasted", json={"text": "no options here"})
    assert r.status_code == 422


def test_set_api_key_validation(client):
    identify(client, "instructor", role="admin")
    assert client.post("/api/admin/set-api-key", json={"api_key": "abc"}).status_code == 400
    assert client.post("/api/admin/set-api-key", json={"api_key": "sk-test"}).status_code == 200


def test_admin_saves_reviewed_draft(client):
    identify(client, "instructor", role="admin")
    draft = make_quiz("draft-42", time_limit=5).model_dump()
    draft["title"] = "Ports (reviewed)"

    r = client.post("/api/admin/quizzes", json=draft)
    assert r.status_code == 200
    assert r.json()["replaced"] is False
    assert r.json()["quiz"]["question_count"] == 3

    ids = {q["id"]: q for q in client.get("/api/quizzes").json()["quizzes"]}
    assert ids["draft-42"]["title"] == "Ports (reviewed)"
    assert ids["draft-42"]["time_limit"] == 5

    assert client.post("/api/admin/quizzes", json=draft).json()["replaced"] is True


def test_saving_drafts_needs_admin_and_questions(client):
    draft = make_quiz("draft-1").model_dump()
    identify(client)
    assert client.post("/api/admin/quizzes", json=draft).status_code == 403

    identify(client, "instructor", role="admin")
    draft["questions"] = []
    assert client.post("/api/admin/quizzes", json=draft).status_code == 422
    assert client.post("/api/admin/quizzes", json={"id": "x"}).status_code == 422


def test_logout_forgets_identity(client):
    identify(client)
    assert client.get("/api/quizzes").status_code == 200

    client.post("/api/logout")
    assert client.get("/api/quizzes").status_code == 401


def test_generate_quiz_without_key_is_rejected(client):
    identify(client, "instructor", role="admin")
    r = client.post(
        "/api/admin/generate-quiz",
        data={"topic": "Ports", "num_questions": "3"},
        files={"file": ("notes.pdf", b"%PDF-1.4", "application/pdf")},
    )
    assert r.status_code == 400


def test_load_failure_is_503():
    class BrokenStore(InMemorySessionStore):
        def get(self, quiz_id, user_id):
            raise SessionStoreError("offline")

    ctx = AppContext(
        quizzes=InMemoryQuizRepository([make_quiz("timed")]),
        sessions=BrokenStore(),
    )
    with TestClient(create_app(ctx, start_background=False)) as client:
        identify(client)
        r = client.post("/api/quizzes/timed/attempt", json=MOBILE)
        assert r.status_code == 503
        assert r.json()["detail"] == "Could not load the quiz."

        r = client.get("/api/quizzes/timed/start-info")
        assert r.status_code == 503
        assert r.json()["detail"] == "Could not load the quiz."


def test_registry_tick_all_auto_submits_and_prunes(sessions, results, clock, timers):
    registry = AttemptRegistry()
    attempt = QuizAttempt(
        make_quiz(time_limit=1), "u1", "student", sessions, results,
        desktop=False, clock=clock, timer_factory=timers,
    ).load()
    registry.put(attempt)

    assert registry.tick_all() == 0
    clock.advance(60)
    assert registry.tick_all() == 1
    assert registry.tick_all() == 0
    assert len(results.get_record("quiz-1", "u1").results) == 1

    assert registry.prune() == 1
    assert len(registry) == 0


def test_registry_replacing_attempt_drops_its_pending_save(sessions, results, clock, timers):
    registry = AttemptRegistry()

    def load():
        return QuizAttempt(
            make_quiz(), "u1", "student", sessions, results,
            desktop=False, clock=clock, timer_factory=timers,
        ).load()

    first = load()
    registry.put(first)
    first.autosave.queue({"q1": "80"}, 0)

    registry.put(load())

    assert first.autosave.has_pending is False
    timers.fire_pending()
    assert sessions.get("quiz-1", "u1").answers_by_question_id == {}


def test_cookie_sessions_expire_after_idle_ttl():
    clock = FakeClock()
    cookies = CookieSessions(ttl=60, clock=clock)
    sid = cookies.create()
    cookies.sign_in(sid, "u1", "student")
    cookies.set_api_key(sid, "sk-test")

    clock.advance(50)
    assert cookies.identity(sid) == ("u1", "student")
    clock.advance(50)
    assert cookies.touch(sid) is True

    cookies.sign_out(sid)
    assert cookies.identity(sid) == (None, None)
    assert cookies.api_key(sid) == ""

    idle = cookies.create()
    clock.advance(61)
    assert cookies.purge_expired() == 2
    assert len(cookies) == 0
    assert cookies.touch(idle) is False
    assert cookies.identity("never-issued") == (None, None)
