import uuid

from birdlens.config import Settings

settings = Settings()
HEADERS = {"X-API-Key": settings.api_key, "X-API-Ver": "v1"}


def test_create_user(client):
    username = f"new-{uuid.uuid4().hex[:8]}"
    resp = client.post(
        "/v1/users", headers=HEADERS, json={"username": username, "email": "a@b.c"}
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["username"] == username
    assert data["subscription_plan"] == "free"
    assert data["daily_identifications_count"] == 0

    me = client.get("/v1/users/me", headers={**HEADERS, "X-User-ID": str(data["id"])})
    assert me.status_code == 200
    assert me.json()["effective_plan"] == "free"


def test_duplicate_username_conflict(client, make_user):
    user = make_user()
    resp = client.post("/v1/users", headers=HEADERS, json={"username": user.username})
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "CONFLICT"


def test_empty_username_is_bad_request(client):
    resp = client.post("/v1/users", headers=HEADERS, json={"username": ""})
    assert resp.status_code == 400
