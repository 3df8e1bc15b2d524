"""Tests for the domain-restricted fetch_url skill."""

import httpx
import pytest

from aide.skills import (
    ExecutionFailedError,
    FetchUrlSkill,
    ForbiddenError,
    InvalidInputError,
    PermissionLevel,
    SkillContext,
)

CTX = SkillContext(conversation_id="c1")


def _skill(handler, domains=("example.com",)) -> FetchUrlSkill:
    return FetchUrlSkill(list(domains), http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="<html>hi</html>")


class TestFetchUrl:
    def test_is_network(self):
        assert FetchUrlSkill([]).permission_level == PermissionLevel.NETWORK

    @pytest.mark.asyncio
    async def test_allowed_domain(self):
        result = await _skill(_ok).execute({"url": "https://example.com/page"}, CTX)
        assert result == {"status": 200, "body": "<html>hi</html>"}

    @pytest.mark.asyncio
    async def test_domain_match_is_case_insensitive(self):
        result = await _skill(_ok, domains=["Example.COM"]).execute({"url": "https://EXAMPLE.com/"}, CTX)
        assert result["status"] == 200

    @pytest.mark.asyncio
    async def test_other_domain_forbidden(self):
        with pytest.raises(ForbiddenError):
            await _skill(_ok).execute({"url": "https://evil.com/"}, CTX)

    @pytest.mark.asyncio
    async def test_subdomain_not_implied(self):
        with pytest.raises(ForbiddenError):
            await _skill(_ok).execute({"url": "https://api.example.com/"}, CTX)

    @pytest.mark.asyncio
    async def test_non_http_scheme(self):
        with pytest.raises(InvalidInputError):
            await _skill(_ok).execute({"url": "file:///etc/passwd"}, CTX)

    @pytest.mark.asyncio
    async def test_error_status_returned_not_raised(self):
        skill = _skill(lambda r: httpx.Response(404, text="missing"))
        assert await skill.execute({"url": "http://example.com/x"}, CTX) == {"status": 404, "body": "missing"}

    @pytest.mark.asyncio
    async def test_long_body_truncated(self):
        skill = _skill(lambda r: httpx.Response(200, text="a" * 200_000))
        result = await skill.execute({"url": "http://example.com/"}, CTX)
        assert result["body"].endswith("[truncated]")
        assert len(result["body"]) < 200_000

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExecutionFailedError):
            await _skill(handler).execute({"url": "http://example.com/"}, CTX)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ExecutionFailedError, match="timed out"):
            await _skill(handler).execute({"url": "http://example.com/"}, CTX)
