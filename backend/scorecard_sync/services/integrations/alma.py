"""ALMA scorecard integration - session login and DHIS2 payload upload."""

import json
import logging
from typing import Any

import httpx

from scorecard_sync.core.config import settings
from scorecard_sync.core.errors import ExternalFailure

logger = logging.getLogger(__name__)


class AlmaService:
    """ALMA API client. Every upload opens its own cookie session."""

    def __init__(
        self,
        base_url: str | None = None,
        backend: str | None = None,
        username: str | None = None,
        password: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url if base_url is not None else settings.alma_url
        self._credentials = {
            "backend": backend if backend is not None else settings.alma_backend,
            "username": username if username is not None else settings.alma_username,
            "password": password if password is not None else settings.alma_password,
        }
        self._transport = transport

    def client(self) -> httpx.AsyncClient:
        if not self._base_url:
            raise ExternalFailure("ALMA URL not configured. Set SCORECARD_SYNC_ALMA_URL.")
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=settings.http_timeout,
            transport=self._transport,
        )

    async def _login(self, client: httpx.AsyncClient) -> str:
        """Open a session and return the cookie header to send with uploads."""
        resp = await client.post("session", json=self._credentials)
        resp.raise_for_status()
        cookies = resp.headers.get_list("set-cookie")
        if not cookies:
            raise ExternalFailure("ALMA login returned no session cookie")
        return ",".join(cookies)

    async def upload(
        self, client: httpx.AsyncClient, scorecard: int, data: Any, name: str
    ) -> None:
        try:
            cookie = await self._login(client)
            payload = json.dumps({"dataValues": [data]}).encode()
            logger.info(f"Uploading data for {name} to ALMA")
            resp = await client.put(
                f"scorecard/{scorecard}/upload/dhis",
                files={"file": ("temp.json", payload, "application/json")},
                headers={"cookie": cookie},
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalFailure(f"ALMA upload for {name} failed: {e}") from e
