"""DHIS2 API integration - organisation units and analytics."""

import logging
from typing import Any

import httpx

from scorecard_sync.core.config import settings
from scorecard_sync.core.errors import ExternalFailure

logger = logging.getLogger(__name__)


class DHIS2Service:
    """DHIS2 Web API client using basic auth."""

    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        password: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url if base_url is not None else settings.dhis2_url
        self._auth = (
            username if username is not None else settings.dhis2_username,
            password if password is not None else settings.dhis2_password,
        )
        self._transport = transport

    def client(self) -> httpx.AsyncClient:
        if not self._base_url:
            raise ExternalFailure("DHIS2 URL not configured. Set SCORECARD_SYNC_DHIS2_URL.")
        return httpx.AsyncClient(
            base_url=self._base_url,
            auth=self._auth,
            timeout=settings.http_timeout,
            transport=self._transport,
        )

    async def _get(self, client: httpx.AsyncClient, path: str, params: Any = None) -> Any:
        try:
            resp = await client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalFailure(f"DHIS2 request to {path} failed: {e}") from e

    async def get_organisation_units(
        self, client: httpx.AsyncClient, ou: str, include_children: bool
    ) -> list[dict[str, Any]]:
        """The unit ``ou`` alone, or with all of its descendants."""
        if include_children:
            data = await self._get(
                client,
                f"organisationUnits/{ou}.json",
                params={"fields": "id,name", "includeDescendants": "true", "paging": "false"},
            )
            # A unit without descendants comes back as a bare object
            if data and data.get("id"):
                return [data]
            return list(data.get("organisationUnits", []))

        data = await self._get(
            client, f"organisationUnits/{ou}.json", params={"fields": "id,name,level"}
        )
        return [data]

    async def get_analytics(
        self, client: httpx.AsyncClient, indicator_group: str, pe: str, ou: str
    ) -> dict[str, Any]:
        params = [
            ("dimension", f"dx:{indicator_group}"),
            ("dimension", f"pe:{pe}"),
            ("dimension", f"ou:{ou}"),
        ]
        return await self._get(client, "analytics.json", params=params)
