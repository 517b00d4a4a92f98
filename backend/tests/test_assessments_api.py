import pytest
from fastapi.testclient import TestClient

from conftest import manual_timer
from portal.main import create_app
from portal.services.result_persistence import ResultPersistenceAdapter
from portal.services.session_controller import SessionController, SessionRegistry


@pytest.fixture()
def registry(make_provider):
    def factory(user_id: str) -> SessionController:
        return SessionController(
            user_id=user_id,
            provider=make_provider(),
            persistence=ResultPersistenceAdapter(),
            timer_factory=manual_timer,
        )

    return SessionRegistry(factory)


@pytest.fixture()
def client(registry):
    app = create_app(registry=registry)
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def headers(user_id):
    return {"X-User-ID": user_id}


def test_requests_without_user_header_are_rejected(client):
    r = client.get("/assessments/state")
    assert r.status_code == 401
    body = r.json()
    assert body["ok"] is False
    assert body["error_code"] == "unauthorized"
    assert body["request_id"] == r.headers["X-Request-ID"]


def test_topic_exam_flow(client, registry, headers, user_id):
    r = client.get("/assessments/state", headers=headers)
    assert r.status_code == 200
    assert r.json()["stage"] == "menu"

    r = client.post("/assessments/mode", json={"mode": "topic"}, headers=headers)
    assert r.json()["stage"] == "setup"

    r = client.post("/assessments/setup", json={"level": 200, "topic": "Bonds"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["topic"] == "Bonds"

    r = client.post("/assessments/start", headers=headers)
    assert r.status_code == 200
    state = r.json()
    assert state["stage"] == "exam"
    assert len(state["questions"]) == 20
    assert state["remaining"] == "20:00"
    assert all("correct_index" not in q for q in state["questions"])

    questions = registry.get(user_id).session.questions
    for i, q in enumerate(questions[:15]):
        r = client.post("/assessments/answers", json={"question_index": i, "option_index": q.correct_index}, headers=headers)
        assert r.status_code == 200
    assert len(r.json()["answers"]) == 15

    r = client.post("/assessments/answers", json={"question_index": 14, "option_index": None}, headers=headers)
    assert len(r.json()["answers"]) == 14

    r = client.post("/assessments/navigate", json={"question_index": 5}, headers=headers)
    assert r.json()["current_index"] == 5

    r = client.post("/assessments/submit", headers=headers)
    assert r.status_code == 200
    state = r.json()
    assert state["stage"] == "result"
    assert state["outcome"]["score"] == 70
    assert state["outcome"]["points_awarded"] == 2

    r = client.post("/assessments/review", headers=headers)
    assert r.status_code == 200
    review = r.json()
    assert len(review["items"]) == 20
    assert review["items"][0]["is_correct"] is True
    assert review["items"][19]["chosen_index"] is None

    r = client.get("/assessments/state", headers=headers)
    assert r.json()["stage"] == "review"

    r = client.post("/assessments/menu", headers=headers)
    assert r.json()["stage"] == "menu"
    assert r.json()["questions"] == []


def test_invalid_transition_maps_to_409(client, headers):
    r = client.post("/assessments/submit", headers=headers)
    assert r.status_code == 409
    body = r.json()
    assert body["ok"] is False
    assert body["error_code"] == "invalid_transition"


def test_bad_setup_maps_to_422(client, headers):
    client.post("/assessments/mode", json={"mode": "topic"}, headers=headers)

    r = client.post("/assessments/setup", json={"level": 150, "topic": "Bonds"}, headers=headers)
    assert r.status_code == 422
    assert r.json()["error_code"] == "invalid_setup"

    r = client.post("/assessments/setup", json={"level": 100}, headers=headers)
    assert r.status_code == 422
    assert r.json()["error_code"] == "invalid_setup"


def test_out_of_range_answer_maps_to_422(client, headers):
    client.post("/assessments/mode", json={"mode": "mock"}, headers=headers)
    client.post("/assessments/setup", json={"level": 300}, headers=headers)
    client.post("/assessments/start", headers=headers)

    r = client.post("/assessments/answers", json={"question_index": 30, "option_index": 0}, headers=headers)
    assert r.status_code == 422
    assert r.json()["error_code"] == "answer_rejected"


def test_game_answers_are_scored_immediately(client, registry, headers, user_id):
    client.post("/assessments/mode", json={"mode": "game"}, headers=headers)
    client.post("/assessments/setup", json={"level": 100}, headers=headers)
    r = client.post("/assessments/start", headers=headers)
    assert r.json()["game"]["lives"] == 3
    assert r.json()["remaining"] == "0:30"

    q0 = registry.get(user_id).session.questions[0]
    wrong = (q0.correct_index + 1) % len(q0.options)

    r = client.post("/assessments/game/answer", json={"option_index": wrong}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["accepted"] is True
    assert body["correct"] is False
    assert body["state"]["game"]["lives"] == 2
    assert body["state"]["game"]["feedback"] == "wrong"
    assert body["state"]["game"]["revealed_correct_index"] == q0.correct_index

    r = client.post("/assessments/game/answer", json={"option_index": q0.correct_index}, headers=headers)
    assert r.json()["accepted"] is False
    assert r.json()["state"]["game"]["score"] == 0


def test_users_get_separate_sessions(client, headers):
    client.post("/assessments/mode", json={"mode": "mock"}, headers=headers)
    r = client.get("/assessments/state", headers={"X-User-ID": "someone-else"})
    assert r.json()["stage"] == "menu"


def test_menu_releases_the_users_controller(client, registry, headers, user_id):
    client.post("/assessments/mode", json={"mode": "mock"}, headers=headers)
    assert registry.get(user_id) is not None

    r = client.post("/assessments/menu", headers=headers)
    assert r.status_code == 200
    assert r.json()["stage"] == "menu"
    assert registry.get(user_id) is None
    assert len(registry) == 0


def test_state_polls_from_many_users_do_not_accumulate(client, registry):
    for i in range(25):
        r = client.get("/assessments/state", headers={"X-User-ID": f"visitor-{i}"})
        assert r.status_code == 200
    assert len(registry) == 1
