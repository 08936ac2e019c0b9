"""Tests for the Gamma market metadata resolver."""

import json
from decimal import Decimal

import httpx
import pytest

from polymarket_fresh_cluster.ingestor.gamma import MarketMetadataResolver
from polymarket_fresh_cluster.ingestor.models import MarketInfo

BASE_URL = "https://gamma.example"
TOKEN = "1111"


def market_row(question: str | None = "Will it rain tomorrow?") -> dict:
    return {
        "id": "1",
        "question": question,
        "slug": "rain",
        "conditionId": "0xcond",
        "clobTokenIds": json.dumps([TOKEN, "2222"]),
        "outcomes": json.dumps(["Yes", "No"]),
        "outcomePrices": json.dumps(["0.4", "0.6"]),
    }


def make_resolver(handler) -> tuple[MarketMetadataResolver, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    resolver = MarketMetadataResolver(
        base_url=BASE_URL,
        client=client,
        max_retries=3,
        retry_base_delay=0,
    )
    return resolver, client


class TestResolve:
    @pytest.mark.asyncio
    async def test_resolves_and_caches(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[market_row()])

        resolver, client = make_resolver(handler)
        async with client:
            first = await resolver.resolve(TOKEN)
            second = await resolver.resolve(TOKEN)

        assert first == second
        assert first is not None
        assert first.outcome == "Yes"
        assert first.price == Decimal("0.4")
        assert len(requests) == 1
        assert requests[0].url.path == "/markets"
        assert requests[0].url.params["clob_token_ids"] == TOKEN
        assert resolver.cache_size == 1

    @pytest.mark.asyncio
    async def test_empty_result_is_none_and_not_cached(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json=[])

        resolver, client = make_resolver(handler)
        async with client:
            assert await resolver.resolve(TOKEN) is None
            assert await resolver.resolve(TOKEN) is None

        assert calls == 2
        assert resolver.cached(TOKEN) is None

    @pytest.mark.asyncio
    async def test_non_list_body_is_none(self) -> None:
        resolver, client = make_resolver(lambda request: httpx.Response(200, json={"error": "x"}))
        async with client:
            assert await resolver.resolve(TOKEN) is None

    @pytest.mark.asyncio
    async def test_invalid_json_is_none(self) -> None:
        resolver, client = make_resolver(lambda request: httpx.Response(200, text="<html>"))
        async with client:
            assert await resolver.resolve(TOKEN) is None

    @pytest.mark.asyncio
    async def test_retries_server_errors(self) -> None:
        responses = iter(
            [httpx.Response(503), httpx.Response(429), httpx.Response(200, json=[market_row()])]
        )
        resolver, client = make_resolver(lambda request: next(responses))
        async with client:
            info = await resolver.resolve(TOKEN)

        assert info is not None
        assert info.question == "Will it rain tomorrow?"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("refused", request=request)

        resolver, client = make_resolver(handler)
        async with client:
            assert await resolver.resolve(TOKEN) is None

        assert calls == 3

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(404)

        resolver, client = make_resolver(handler)
        async with client:
            assert await resolver.resolve(TOKEN) is None

        assert calls == 1


class TestShouldFilter:
    def test_delegates_to_content_policy(self) -> None:
        resolver = MarketMetadataResolver(base_url=BASE_URL, client=httpx.AsyncClient())

        assert resolver.should_filter(MarketInfo(question="Bitcoin up or down?", outcome="Up")) is True
        assert resolver.should_filter(MarketInfo(question="Will it rain tomorrow?", outcome="Yes")) is False
        assert resolver.should_filter(None) is False
