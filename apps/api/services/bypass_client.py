"""Client for the external UID bypass provider."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from config import settings
from errors import ExternalServiceError, ExternalTimeoutError, PartialRenameError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExternalApiConfig:
    base_url: str
    api_key: str

    @property
    def is_complete(self) -> bool:
        return bool(self.base_url and self.api_key)


class SettingsProvider(Protocol):
    async def load(self) -> Optional[ExternalApiConfig]:
        ...


def remote_plan_id(duration_hours: int) -> int:
    """Provider plans are keyed by whole days."""
    return int(math.ceil(int(duration_hours) / 24))


class BypassClient:
    """Thin typed wrapper over the provider's `?action=` JSON API.

    The client never retries; every method either returns the decoded body
    or raises an `ExternalServiceError` subclass.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout_seconds = float(timeout_seconds)
        self._transport = transport

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {"X-API-Key": self.api_key, "Content-Type": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def _send_with_deadline(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        # httpx timeouts apply per connect/read step; the deadline covers the whole exchange.
        return await asyncio.wait_for(self._send(method, url, **kwargs), self.timeout_seconds)

    async def _request(self, action: str, params: Dict[str, Any], method: str = "POST") -> Dict[str, Any]:
        query: Dict[str, Any] = {"action": action}
        body: Optional[Dict[str, Any]] = None
        if method == "GET":
            query.update({key: value for key, value in params.items() if value is not None})
        elif params:
            body = params

        started = time.monotonic()
        try:
            response = await self._send_with_deadline(method, self.base_url, params=query, json=body)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.error("Bypass API %s timed out after %.1fs", action, self.timeout_seconds)
            raise ExternalTimeoutError(f"Request timeout after {self.timeout_seconds:g}s") from exc
        except httpx.HTTPError as exc:
            logger.error("Bypass API %s request failed: %s", action, exc)
            raise ExternalServiceError(f"Request failed: {exc}", kind="transport") from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info("Bypass API %s %s -> %s (%sms)", method, action, response.status_code, elapsed_ms)

        try:
            data = response.json()
        except ValueError as exc:
            logger.warning("Bypass API %s returned a non-JSON body (status %s)", action, response.status_code)
            raise ExternalServiceError(
                f"Malformed response from bypass API (HTTP {response.status_code})",
                kind="malformed",
                http_status=response.status_code,
            ) from exc

        if response.is_error:
            message = data.get("error") if isinstance(data, dict) else None
            raise ExternalServiceError(
                str(message or f"HTTP error: {response.reason_phrase or response.status_code}"),
                kind="rejected",
                remote_code=data.get("code") if isinstance(data, dict) else None,
                http_status=response.status_code,
            )
        if not isinstance(data, dict):
            raise ExternalServiceError(
                "Malformed response from bypass API: expected a JSON object",
                kind="malformed",
                http_status=response.status_code,
            )
        if data.get("error"):
            raise ExternalServiceError(
                str(data["error"]),
                kind="rejected",
                remote_code=data.get("code"),
                http_status=response.status_code,
            )
        return data

    async def create_uid(self, uid: str, duration_hours: int, region: Optional[str] = None) -> Dict[str, Any]:
        return await self._request(
            "add_uid_api",
            {
                "uid": uid,
                "plan_id": remote_plan_id(duration_hours),
                "region": region or settings.EXTERNAL_API_DEFAULT_REGION,
            },
        )

    async def create_uid_free(self, uid: str, region: Optional[str] = None) -> Dict[str, Any]:
        return await self._request(
            "add_uid_free_api",
            {"uid": uid, "region": region or settings.EXTERNAL_API_DEFAULT_REGION},
        )

    async def delete_uid(self, uid: str) -> Dict[str, Any]:
        return await self._request("remove_uid_api", {"uid": uid})

    async def list_uids(self, page: int = 1, per_page: int = 100, status: Optional[str] = None) -> Dict[str, Any]:
        return await self._request(
            "list_uids_api",
            {"page": page, "per_page": per_page, "status": status},
            method="GET",
        )

    async def renew_uid(self, uid: str, days: int) -> Dict[str, Any]:
        return await self._request("renew_uid_api", {"uid": uid, "days": days})

    async def get_player_name(self, uid: str, region: Optional[str] = None) -> Optional[str]:
        """Best-effort nickname lookup; any failure yields None."""
        url = f"{self.base_url.rstrip('/')}/api/player/{uid}"
        try:
            response = await self._send_with_deadline(
                "GET", url, params={"region": region or settings.EXTERNAL_API_DEFAULT_REGION}
            )
            if response.is_error:
                return None
            data = response.json()
        except (asyncio.TimeoutError, httpx.HTTPError, ValueError) as exc:
            logger.warning("Player name lookup for %s failed: %s", uid, exc)
            return None
        if not isinstance(data, dict):
            return None
        name = data.get("playerName") or data.get("name")
        return str(name) if name else None

    async def update_uid(self, old_uid: str, new_uid: str, region: Optional[str] = None) -> Dict[str, Any]:
        """Rename as delete-then-free-create; the provider has no atomic rename.

        A failure in the first step leaves the provider untouched and is
        re-raised as is. A failure in the second step means the old UID is
        already gone, which is reported as `PartialRenameError`.
        """
        await self.delete_uid(old_uid)
        try:
            return await self.create_uid_free(new_uid, region)
        except ExternalServiceError as exc:
            logger.error(
                "Rename %s -> %s: old UID removed but free create failed (%s)",
                old_uid,
                new_uid,
                exc.message,
            )
            raise PartialRenameError(
                f"Old UID {old_uid} was removed but creating {new_uid} failed: {exc.message}",
                old_uid=old_uid,
                new_uid=new_uid,
                cause=exc,
            ) from exc


class BypassClientFactory:
    """Builds a client from configuration loaded fresh on every call."""

    def __init__(
        self,
        provider: SettingsProvider,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self.timeout_seconds = (
            float(timeout_seconds) if timeout_seconds is not None else float(settings.EXTERNAL_API_TIMEOUT_SECONDS)
        )
        self.transport = transport

    async def create(self) -> BypassClient:
        config = await self.provider.load()
        if not config or not config.is_complete:
            raise ExternalServiceError(
                "API settings not configured. Please configure them in Settings.",
                kind="unconfigured",
            )
        return BypassClient(config.base_url, config.api_key, self.timeout_seconds, transport=self.transport)
