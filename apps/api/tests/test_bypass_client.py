import asyncio
import json
import time

import httpx
import pytest

from errors import ExternalServiceError, ExternalTimeoutError, PartialRenameError
from services.bypass_client import BypassClient, BypassClientFactory, ExternalApiConfig, remote_plan_id

from conftest import StaticSettingsProvider


def _client(handler) -> BypassClient:
    return BypassClient(
        "https://bypass.test/api",
        "remote-key",
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


def test_remote_plan_id_rounds_hours_up_to_days():
    assert remote_plan_id(24) == 1
    assert remote_plan_id(72) == 3
    assert remote_plan_id(168) == 7
    assert remote_plan_id(25) == 2


@pytest.mark.asyncio
async def test_create_uid_posts_action_with_api_key_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["action"] = request.url.params.get("action")
        seen["api_key"] = request.headers.get("x-api-key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "data": {"uid": "ABC123"}})

    result = await _client(handler).create_uid("ABC123", 72, "PK")

    assert result["success"] is True
    assert seen == {
        "method": "POST",
        "action": "add_uid_api",
        "api_key": "remote-key",
        "body": {"uid": "ABC123", "plan_id": 3, "region": "PK"},
    }


@pytest.mark.asyncio
async def test_list_uids_sends_query_parameters():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"success": True, "data": []})

    await _client(handler).list_uids(page=2, per_page=50)

    assert seen["method"] == "GET"
    assert seen["params"] == {"action": "list_uids_api", "page": "2", "per_page": "50"}


@pytest.mark.asyncio
async def test_http_error_status_surfaces_remote_message_and_code():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"error": "UID already exists", "code": "UID_EXISTS"})

    with pytest.raises(ExternalServiceError) as exc_info:
        await _client(handler).create_uid_free("ABC123")

    exc = exc_info.value
    assert exc.message == "UID already exists"
    assert exc.kind == "rejected"
    assert exc.remote_code == "UID_EXISTS"
    assert exc.http_status == 409


@pytest.mark.asyncio
async def test_error_field_in_ok_response_is_a_rejection():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": "Insufficient provider balance"})

    with pytest.raises(ExternalServiceError) as exc_info:
        await _client(handler).delete_uid("ABC123")

    assert exc_info.value.kind == "rejected"
    assert exc_info.value.http_status == 200


@pytest.mark.asyncio
async def test_non_json_body_is_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad gateway</html>")

    with pytest.raises(ExternalServiceError) as exc_info:
        await _client(handler).delete_uid("ABC123")

    assert exc_info.value.kind == "malformed"
    assert exc_info.value.http_status == 502


@pytest.mark.asyncio
async def test_timeout_raises_external_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ExternalTimeoutError) as exc_info:
        await _client(handler).renew_uid("ABC123", 7)

    assert exc_info.value.kind == "timeout"
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_transport_failure_is_reported_as_transport_kind():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalServiceError) as exc_info:
        await _client(handler).delete_uid("ABC123")

    assert exc_info.value.kind == "transport"


@pytest.mark.asyncio
async def test_update_uid_deletes_then_creates_free():
    actions = []

    def handler(request: httpx.Request) -> httpx.Response:
        actions.append((request.url.params.get("action"), json.loads(request.content)["uid"]))
        return httpx.Response(200, json={"success": True})

    await _client(handler).update_uid("ABC123", "XYZ999")

    assert actions == [("remove_uid_api", "ABC123"), ("add_uid_free_api", "XYZ999")]


@pytest.mark.asyncio
async def test_update_uid_first_phase_failure_is_not_partial():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "UID not found"})

    with pytest.raises(ExternalServiceError) as exc_info:
        await _client(handler).update_uid("ABC123", "XYZ999")

    assert not isinstance(exc_info.value, PartialRenameError)


@pytest.mark.asyncio
async def test_update_uid_second_phase_failure_is_partial_rename():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("action") == "remove_uid_api":
            return httpx.Response(200, json={"success": True})
        return httpx.Response(400, json={"error": "UID blocked", "code": "BLOCKED"})

    with pytest.raises(PartialRenameError) as exc_info:
        await _client(handler).update_uid("ABC123", "XYZ999")

    exc = exc_info.value
    assert exc.old_uid == "ABC123"
    assert exc.new_uid == "XYZ999"
    assert exc.details["old_uid_removed"] is True
    assert exc.remote_code == "BLOCKED"


@pytest.mark.asyncio
async def test_factory_rejects_missing_configuration():
    factory = BypassClientFactory(StaticSettingsProvider(None))
    with pytest.raises(ExternalServiceError) as exc_info:
        await factory.create()
    assert exc_info.value.kind == "unconfigured"

    partial = BypassClientFactory(StaticSettingsProvider(ExternalApiConfig(base_url="https://bypass.test", api_key="")))
    with pytest.raises(ExternalServiceError):
        await partial.create()


@pytest.mark.asyncio
async def test_slow_body_is_cut_off_at_the_overall_deadline():
    async def trickle():
        for byte in b'{"success": true, "data": {"uid": "ABC123"}}':
            await asyncio.sleep(0.1)
            yield bytes([byte])

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Type": "application/json"}, content=trickle())

    client = BypassClient(
        "https://bypass.test/api",
        "remote-key",
        timeout_seconds=0.5,
        transport=httpx.MockTransport(handler),
    )
    started = time.monotonic()
    with pytest.raises(ExternalTimeoutError) as exc_info:
        await client.delete_uid("ABC123")

    assert time.monotonic() - started < 2
    assert exc_info.value.status_code == 504


@pytest.mark.asyncio
async def test_player_name_lookup_hits_player_endpoint():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["region"] = request.url.params.get("region")
        seen["api_key"] = request.headers.get("x-api-key")
        return httpx.Response(200, json={"playerName": "Sniper"})

    name = await _client(handler).get_player_name("ABC123", "BD")

    assert name == "Sniper"
    assert seen == {"path": "/api/api/player/ABC123", "region": "BD", "api_key": "remote-key"}


@pytest.mark.asyncio
async def test_player_name_lookup_failures_yield_none():
    def not_found(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "Player not found"})

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def garbage(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="not json")

    assert await _client(not_found).get_player_name("ABC123") is None
    assert await _client(refused).get_player_name("ABC123") is None
    assert await _client(garbage).get_player_name("ABC123") is None
