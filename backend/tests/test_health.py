from fastapi.testclient import TestClient

from portal.main import create_app


def test_health_ok():
    app = create_app()
    client = TestClient(app)

    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"


def test_health_live():
    app = create_app()
    client = TestClient(app)

    r = client.get("/health/live")
    assert r.status_code == 200
    assert r.json().get("status") == "live"


def test_health_ready_checks_db_redis_and_bank():
    app = create_app()
    client = TestClient(app)

    r = client.get("/health/ready")
    assert r.status_code == 200
    assert r.json().get("status") == "ready"
