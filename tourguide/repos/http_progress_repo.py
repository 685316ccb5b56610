"""HTTP implementation of ProgressRepo.

Talks to the guide progress API:

  GET    /guide-progress            -> {pageId: entry, ...}
  PATCH  /guide-progress/{pageId}   <- {"completed"?: bool, "skipped"?: bool}
  DELETE /guide-progress[/{pageId}]

Any transport error or non-2xx response becomes a ProgressApiError; the
caller (ProgressStore) decides what to do with it.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from tourguide.core.config import SETTINGS, Settings
from tourguide.models.progress import ProgressEntry, ProgressEntryWire, ProgressPatch
from tourguide.repos.progress_repo import ProgressApiError

logger = logging.getLogger(__name__)

_RESOURCE = "/guide-progress"


class HttpProgressRepo:
    """Satisfies the ProgressRepo Protocol over the guide progress API."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings = SETTINGS) -> HttpProgressRepo:
        headers = {"Content-Type": "application/json"}
        if settings.guide_api_token:
            headers["Authorization"] = f"Bearer {settings.guide_api_token}"
        client = httpx.AsyncClient(
            base_url=settings.guide_api_url,
            headers=headers,
            timeout=settings.guide_api_timeout,
        )
        return cls(client)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_all(self) -> dict[str, ProgressEntry]:
        resp = await self._send("load", "GET", _RESOURCE)
        try:
            body = resp.json()
        except ValueError as e:
            raise ProgressApiError("load", "response is not JSON") from e

        # Some deployments wrap the map: {"guideProgress": {...}}
        if isinstance(body, dict) and isinstance(body.get("guideProgress"), dict):
            body = body["guideProgress"]
        if not isinstance(body, dict):
            raise ProgressApiError("load", "expected a JSON object keyed by pageId")

        try:
            return {
                page_id: ProgressEntryWire.model_validate(raw).to_entry()
                for page_id, raw in body.items()
            }
        except ValidationError as e:
            raise ProgressApiError("load", f"malformed progress entry: {e}") from e

    async def patch(
        self, page_id: str, *, completed: bool | None, skipped: bool | None
    ) -> None:
        payload = ProgressPatch(completed=completed, skipped=skipped)
        await self._send(
            "update",
            "PATCH",
            _page_path(page_id),
            json=payload.model_dump(exclude_none=True),
        )

    async def delete(self, page_id: str | None = None) -> None:
        path = _RESOURCE if page_id is None else _page_path(page_id)
        await self._send("reset", "DELETE", path)

    async def _send(
        self, operation: str, method: str, path: str, **kwargs
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ProgressApiError(operation, f"transport error: {e}") from e

        logger.debug(
            "%s %s -> %d",
            method,
            path,
            resp.status_code,
            extra={"operation": operation, "status_code": resp.status_code},
        )
        if resp.is_success:
            return resp

        raise ProgressApiError(
            operation,
            f"{method} {path} returned {resp.status_code}: {_error_message(resp)}",
            status_code=resp.status_code,
        )


def _page_path(page_id: str) -> str:
    return f"{_RESOURCE}/{quote(page_id, safe='')}"


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body)
    return str(body)
