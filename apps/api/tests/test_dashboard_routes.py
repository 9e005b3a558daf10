import pytest
from sqlalchemy.future import select

from config import settings
from models.activity_log import ActivityLog
from models.external_api_settings import ExternalApiSettings
from services.crypto import decrypt_secret

from conftest import MEMBER_HEADER, MEMBER_ID, OTHER_HEADER, OTHER_ID, OWNER_HEADER, OWNER_ID, TEST_PASSWORD


@pytest.mark.asyncio
async def test_login_sets_cookie_and_logs_activity(api_client, session_maker):
    response = await api_client.post("/auth/login", json={"username": "member", "password": TEST_PASSWORD})

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["id"] == MEMBER_ID
    assert body["user"]["credits"] == "5.00"
    assert body["session_token"]
    assert settings.SESSION_COOKIE_NAME in response.cookies

    me = await api_client.get("/auth/me", headers={"Authorization": f"Bearer {body['session_token']}"})
    assert me.status_code == 200
    assert me.json()["username"] == "member"

    async with session_maker() as session:
        entries = (await session.execute(select(ActivityLog).where(ActivityLog.action == "login"))).scalars().all()
    assert [entry.user_id for entry in entries] == [MEMBER_ID]


@pytest.mark.asyncio
async def test_session_cookie_authenticates_requests(api_client):
    login = await api_client.post("/auth/login", json={"username": "member", "password": TEST_PASSWORD})
    token = login.json()["session_token"]

    api_client.cookies.set(settings.SESSION_COOKIE_NAME, token)
    response = await api_client.get("/auth/me")
    assert response.status_code == 200
    assert response.json()["id"] == MEMBER_ID


@pytest.mark.asyncio
async def test_login_rejects_bad_password_and_suspended_users(api_client):
    wrong = await api_client.post("/auth/login", json={"username": "member", "password": "nope-nope"})
    assert wrong.status_code == 401
    assert wrong.json()["error"]["code"] == "unauthenticated"

    suspend = await api_client.patch(f"/users/{MEMBER_ID}/status", json={"is_active": False}, headers=OWNER_HEADER)
    assert suspend.status_code == 200
    assert suspend.json()["is_active"] is False

    suspended = await api_client.post("/auth/login", json={"username": "member", "password": TEST_PASSWORD})
    assert suspended.status_code == 403

    existing_session = await api_client.get("/auth/me", headers=MEMBER_HEADER)
    assert existing_session.status_code == 403


@pytest.mark.asyncio
async def test_requests_without_session_are_unauthenticated(api_client):
    response = await api_client.get("/uids/user/" + MEMBER_ID)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_user_management_is_owner_only(api_client):
    listed = await api_client.get("/users", headers=MEMBER_HEADER)
    assert listed.status_code == 403

    created = await api_client.post("/users", json={"username": "x", "password": "pw"}, headers=MEMBER_HEADER)
    assert created.status_code == 403


@pytest.mark.asyncio
async def test_owner_creates_user_with_validation(api_client):
    short_name = await api_client.post("/users", json={"username": "ab", "password": "secret1"}, headers=OWNER_HEADER)
    assert short_name.status_code == 400

    short_password = await api_client.post(
        "/users",
        json={"username": "newbie", "password": "12345"},
        headers=OWNER_HEADER,
    )
    assert short_password.status_code == 400

    bad_credits = await api_client.post(
        "/users",
        json={"username": "newbie", "password": "secret1", "credits": "1.234"},
        headers=OWNER_HEADER,
    )
    assert bad_credits.status_code == 400

    created = await api_client.post(
        "/users",
        json={"username": "newbie", "password": "secret1", "credits": "12.50"},
        headers=OWNER_HEADER,
    )
    assert created.status_code == 201
    assert created.json()["credits"] == "12.50"
    assert created.json()["is_owner"] is False

    duplicate = await api_client.post(
        "/users",
        json={"username": "newbie", "password": "secret1"},
        headers=OWNER_HEADER,
    )
    assert duplicate.status_code == 409

    listed = await api_client.get("/users", headers=OWNER_HEADER)
    assert "newbie" in {user["username"] for user in listed.json()}


@pytest.mark.asyncio
async def test_credit_adjustments(api_client, session_maker):
    added = await api_client.patch(
        f"/users/{MEMBER_ID}/credits",
        json={"amount": "2.50", "operation": "add"},
        headers=OWNER_HEADER,
    )
    assert added.status_code == 200
    assert added.json() == {"success": True, "new_credits": "7.50"}

    deducted = await api_client.patch(
        f"/users/{MEMBER_ID}/credits",
        json={"amount": 0.5, "operation": "deduct"},
        headers=OWNER_HEADER,
    )
    assert deducted.json()["new_credits"] == "7.00"

    overdraw = await api_client.patch(
        f"/users/{MEMBER_ID}/credits",
        json={"amount": "100", "operation": "deduct"},
        headers=OWNER_HEADER,
    )
    assert overdraw.status_code == 402

    invalid = await api_client.patch(
        f"/users/{MEMBER_ID}/credits",
        json={"amount": "1", "operation": "steal"},
        headers=OWNER_HEADER,
    )
    assert invalid.status_code == 400

    async with session_maker() as session:
        result = await session.execute(
            select(ActivityLog.action).where(ActivityLog.action.in_(["credit_add", "credit_deduct"]))
        )
        actions = sorted(result.scalars().all())
    assert actions == ["credit_add", "credit_deduct"]


@pytest.mark.asyncio
async def test_delete_user_cascades_but_protects_owners(api_client, session_maker):
    created = await api_client.post(
        "/uids",
        json={"user_id": OTHER_ID, "uid_value": "OTHER123", "duration": 24},
        headers=OWNER_HEADER,
    )
    assert created.status_code == 201

    owner_delete = await api_client.delete(f"/users/{OWNER_ID}", headers=OWNER_HEADER)
    assert owner_delete.status_code == 403

    removed = await api_client.delete(f"/users/{OTHER_ID}", headers=OWNER_HEADER)
    assert removed.status_code == 200

    missing = await api_client.get(f"/uids/user/{OTHER_ID}", headers=OWNER_HEADER)
    assert missing.json() == []
    again = await api_client.delete(f"/users/{OTHER_ID}", headers=OWNER_HEADER)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_uid_routes_round_trip(api_client, bypass_provider):
    created = await api_client.post(
        "/uids",
        json={"user_id": MEMBER_ID, "uid_value": "ABC123", "duration": 72, "cost": "0.01"},
        headers=MEMBER_HEADER,
    )
    assert created.status_code == 201
    body = created.json()
    assert body["new_credits"] == "3.70"
    uid_id = body["uid"]["id"]

    listed = await api_client.get(f"/uids/user/{MEMBER_ID}", headers=MEMBER_HEADER)
    assert [item["uid_value"] for item in listed.json()] == ["ABC123"]

    renamed = await api_client.patch(
        f"/uids/{uid_id}/value",
        json={"new_uid_value": "XYZ999"},
        headers=MEMBER_HEADER,
    )
    assert renamed.status_code == 200
    assert renamed.json()["new_value"] == "XYZ999"

    status = await api_client.patch(f"/uids/{uid_id}", json={"status": "expired"}, headers=MEMBER_HEADER)
    assert status.status_code == 200
    assert status.json()["uid"]["status"] == "expired"

    deleted = await api_client.delete(f"/uids/{uid_id}", headers=MEMBER_HEADER)
    assert deleted.status_code == 200
    assert bypass_provider.actions() == ["add_uid_api", "remove_uid_api", "add_uid_free_api", "remove_uid_api"]

    gone = await api_client.delete(f"/uids/{uid_id}", headers=MEMBER_HEADER)
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_uid_routes_enforce_ownership_and_pricing(api_client):
    foreign = await api_client.post(
        "/uids",
        json={"user_id": OTHER_ID, "uid_value": "ABC123", "duration": 24},
        headers=MEMBER_HEADER,
    )
    assert foreign.status_code == 403

    bad_duration = await api_client.post(
        "/uids",
        json={"user_id": MEMBER_ID, "uid_value": "ABC123", "duration": 48},
        headers=MEMBER_HEADER,
    )
    assert bad_duration.status_code == 400
    assert bad_duration.json()["error"]["allowed_durations"] == [24, 72, 168, 336, 720]

    too_expensive = await api_client.post(
        "/uids",
        json={"user_id": MEMBER_ID, "uid_value": "ABC123", "duration": 720},
        headers=MEMBER_HEADER,
    )
    assert too_expensive.status_code == 402

    all_uids = await api_client.get("/uids/all", headers=MEMBER_HEADER)
    assert all_uids.status_code == 403


@pytest.mark.asyncio
async def test_provider_failure_is_reported_with_remote_details(api_client, bypass_provider):
    bypass_provider.fail("add_uid_api", 422, {"error": "Invalid UID", "code": "BAD_UID"})

    response = await api_client.post(
        "/uids",
        json={"user_id": MEMBER_ID, "uid_value": "ABC123", "duration": 24},
        headers=MEMBER_HEADER,
    )

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "external_service_error"
    assert error["message"] == "Invalid UID"
    assert error["remote_code"] == "BAD_UID"
    assert error["http_status"] == 422


@pytest.mark.asyncio
async def test_settings_are_encrypted_and_masked(api_client, session_maker):
    empty = await api_client.get("/settings", headers=OWNER_HEADER)
    assert empty.json()["api_key_configured"] is False

    saved = await api_client.post(
        "/settings",
        json={"base_url": "https://bypass.example/api", "api_key": "remote-secret-1234"},
        headers=OWNER_HEADER,
    )
    assert saved.status_code == 200
    assert saved.json()["settings"]["api_key"].endswith("1234")
    assert "remote-secret" not in saved.json()["settings"]["api_key"]

    kept = await api_client.post(
        "/settings",
        json={"base_url": "https://bypass.example/v2"},
        headers=OWNER_HEADER,
    )
    assert kept.status_code == 200

    async with session_maker() as session:
        row = (await session.execute(select(ExternalApiSettings))).scalar_one()
    assert row.base_url == "https://bypass.example/v2"
    assert row.api_key_encrypted != "remote-secret-1234"
    assert decrypt_secret(row.api_key_encrypted) == "remote-secret-1234"

    invalid = await api_client.post(
        "/settings",
        json={"base_url": "ftp://bypass.example", "api_key": "x"},
        headers=OWNER_HEADER,
    )
    assert invalid.status_code == 400

    forbidden = await api_client.get("/settings", headers=MEMBER_HEADER)
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_activity_visibility(api_client):
    await api_client.post(
        "/uids",
        json={"user_id": MEMBER_ID, "uid_value": "ABC123", "duration": 24},
        headers=MEMBER_HEADER,
    )
    await api_client.patch(
        f"/users/{OTHER_ID}/credits",
        json={"amount": "1", "operation": "add"},
        headers=OWNER_HEADER,
    )

    mine = await api_client.get("/activity", headers=MEMBER_HEADER)
    assert {entry["user_id"] for entry in mine.json()} == {MEMBER_ID}
    assert mine.json()[0]["username"] == "member"

    everything = await api_client.get("/activity", headers=OWNER_HEADER)
    assert {entry["action"] for entry in everything.json()} == {"create_uid", "credit_add"}

    per_user = await api_client.get(f"/activity/user/{MEMBER_ID}", headers=OWNER_HEADER)
    assert [entry["action"] for entry in per_user.json()] == ["create_uid"]

    blocked = await api_client.get(f"/activity/user/{OWNER_ID}", headers=MEMBER_HEADER)
    assert blocked.status_code == 403


@pytest.mark.asyncio
async def test_health_probes(api_client):
    live = await api_client.get("/health/live")
    assert live.json() == {"alive": True}


@pytest.mark.asyncio
async def test_external_list_pairs_provider_listing_with_own_uids(api_client, bypass_provider):
    bypass_provider.remote_uids = [{"uid": "REMOTE99", "status": "active", "remaining_hours": 12}]
    await api_client.post(
        "/uids",
        json={"user_id": MEMBER_ID, "uid_value": "ABC123", "duration": 24},
        headers=MEMBER_HEADER,
    )
    await api_client.post(
        "/uids",
        json={"user_id": OTHER_ID, "uid_value": "OTHER1", "duration": 24},
        headers=OTHER_HEADER,
    )

    response = await api_client.get("/uids/external/list", headers=MEMBER_HEADER)

    assert response.status_code == 200
    body = response.json()
    assert body["external"]["data"] == [{"uid": "REMOTE99", "status": "active", "remaining_hours": 12}]
    assert [item["uid_value"] for item in body["local"]] == ["ABC123"]

    bypass_provider.fail("list_uids_api", 503, {"error": "Provider down"})
    failed = await api_client.get("/uids/external/list", headers=MEMBER_HEADER)
    assert failed.status_code == 502
    assert failed.json()["error"]["message"] == "Provider down"
