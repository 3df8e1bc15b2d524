"""fetch_url skill: HTTP GET restricted to an explicit domain allow-list."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any
from urllib.parse import urlparse

import httpx

from aide.skills.base import (
    ExecutionFailedError,
    ForbiddenError,
    InvalidInputError,
    PermissionLevel,
    Skill,
    SkillContext,
    require_str,
)

logger = logging.getLogger(__name__)

_FETCH_TIMEOUT = 10.0  # seconds
_MAX_BODY_CHARS = 100_000


class FetchUrlSkill(Skill):
    name = "fetch_url"
    description = "Fetch a web page with HTTP GET. Only allow-listed domains can be reached."
    input_schema = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "http(s) URL to fetch"},
        },
        "required": ["url"],
    }
    permission_level = PermissionLevel.NETWORK

    def __init__(
        self,
        allowed_domains: Sequence[str],
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.allowed_domains = frozenset(d.lower() for d in allowed_domains)
        # Redirects are not followed: the target host would bypass the allow-list
        self._http = http_client or httpx.AsyncClient(timeout=_FETCH_TIMEOUT, follow_redirects=False)

    def _validate(self, url: str) -> str:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise InvalidInputError(f"unsupported URL scheme '{parsed.scheme}'")
        host = (parsed.hostname or "").lower()
        if not host:
            raise InvalidInputError(f"URL has no host: {url}")
        if host not in self.allowed_domains:
            raise ForbiddenError(f"domain '{host}' is not in allowed_domains")
        return host

    async def execute(self, arguments: dict[str, Any], context: SkillContext) -> dict[str, Any]:
        url = require_str(arguments, "url")
        host = self._validate(url)
        try:
            response = await self._http.get(url, timeout=_FETCH_TIMEOUT)
        except httpx.TimeoutException as e:
            raise ExecutionFailedError(f"request to {host} timed out") from e
        except httpx.HTTPError as e:
            raise ExecutionFailedError(f"request to {host} failed: {e}") from e

        body = response.text
        if len(body) > _MAX_BODY_CHARS:
            body = body[:_MAX_BODY_CHARS] + "\n... [truncated]"
        logger.info("fetch_url %s -> %d", url, response.status_code)
        return {"status": response.status_code, "body": body}

    async def close(self) -> None:
        await self._http.aclose()
