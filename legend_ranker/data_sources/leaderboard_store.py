"""Persistent leaderboard store client.

Realtime-database style JSON store: every list lives at ``<base>/<path>.json``,
``GET`` returns an array, an object whose values are the rows, or ``null``;
``PUT`` replaces the whole list.
"""

from __future__ import annotations

from typing import Any

import httpx

from legend_ranker.config import Endpoints, Keys, setting
from legend_ranker.exceptions import StoreError
from legend_ranker.utils.logger import setup_logger

logger = setup_logger("leaderboard_store")


def _rows(data: Any) -> list[dict]:
    if isinstance(data, list):
        return [row for row in data if isinstance(row, dict)]
    if isinstance(data, dict):
        return [row for row in data.values() if isinstance(row, dict)]
    return []


class LeaderboardStore:
    """Read and full-replace JSON lists in the remote store."""

    def __init__(
        self,
        base_url: str | None = None,
        auth_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url if base_url is not None else Endpoints.STORE).rstrip("/")
        self.auth_token = auth_token if auth_token is not None else Keys.STORE_AUTH
        self._client = client or httpx.AsyncClient(timeout=setting("store", "timeout_seconds", 30))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}.json"

    def _params(self) -> dict:
        return {"auth": self.auth_token} if self.auth_token else {}

    async def read_list(self, path: str) -> list[dict]:
        """Current rows of list ``path``; an absent list reads as ``[]``.

        Raises:
            StoreError: transport failure or unexpected HTTP status.
        """
        try:
            resp = await self._client.get(self._url(path), params=self._params())
        except httpx.HTTPError as exc:
            raise StoreError(path, f"read failed: {exc}") from exc
        if resp.status_code == 404:
            return []
        if resp.status_code >= 400:
            raise StoreError(path, f"read failed: HTTP {resp.status_code}")
        try:
            return _rows(resp.json())
        except ValueError as exc:
            raise StoreError(path, "read failed: invalid JSON") from exc

    async def write_list(self, path: str, rows: list[dict]) -> None:
        """Replace list ``path`` with ``rows``.

        Raises:
            StoreError: the write did not succeed.
        """
        try:
            resp = await self._client.put(self._url(path), params=self._params(), json=rows)
        except httpx.HTTPError as exc:
            raise StoreError(path, f"write failed: {exc}") from exc
        if resp.status_code >= 400:
            raise StoreError(path, f"write failed: HTTP {resp.status_code}")
        logger.debug("Wrote %d rows to %s", len(rows), path)

    async def list_sectors(self) -> list[str]:
        """Sector slugs that currently have a leaderboard; ``[]`` on failure."""
        try:
            resp = await self._client.get(self._url("sectors"), params={**self._params(), "shallow": "true"})
            if resp.status_code >= 400:
                return []
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Sector listing failed: %s", exc)
            return []
        return sorted(data) if isinstance(data, dict) else []
