import json

import httpx
import pytest

from crypto_observability_mcp.errors import FetchError
from crypto_observability_mcp.hashing import sha256
from crypto_observability_mcp.http_client import HttpClient


def make_client(handler, default_ttl_ms=10_000):
    transport = httpx.MockTransport(handler)
    return HttpClient(default_ttl_ms, client=httpx.AsyncClient(transport=transport))


class Upstream:
    """Counts requests and answers with a fixed status and body."""

    def __init__(self, status=200, body=None, content=None):
        self.calls = []
        self.status = status
        self.body = body
        self.content = content

    def __call__(self, request):
        self.calls.append(request)
        if self.content is not None:
            return httpx.Response(self.status, content=self.content)
        return httpx.Response(self.status, json=self.body)


@pytest.mark.asyncio
async def test_second_call_within_ttl_is_served_from_cache():
    upstream = Upstream(body={"value": 1})
    client = make_client(upstream)

    first = await client.fetch_json("https://cache.test")
    second = await client.fetch_json("https://cache.test")

    assert len(upstream.calls) == 1
    assert first.value == second.value == {"value": 1}
    assert first.quality_flags == []


@pytest.mark.asyncio
async def test_stale_entry_is_refetched(clock):
    upstream = Upstream(body={"value": 1})
    client = make_client(upstream)

    await client.fetch_json("https://cache.test", ttl_ms=1_000)
    clock.advance(999)
    await client.fetch_json("https://cache.test", ttl_ms=1_000)
    assert len(upstream.calls) == 1

    clock.advance(1)
    refreshed = await client.fetch_json("https://cache.test", ttl_ms=1_000)
    assert len(upstream.calls) == 2
    assert refreshed.ts_ms == clock.now_ms


@pytest.mark.asyncio
async def test_cache_key_folds_equivalent_requests():
    upstream = Upstream(body={"price": "1"})
    client = make_client(upstream)

    await client.fetch_json("https://x.test/p?a=1&b=2", cache_key="price-BTC")
    await client.fetch_json("https://x.test/p?b=2&a=1", cache_key="price-BTC")

    assert len(upstream.calls) == 1


@pytest.mark.asyncio
async def test_success_is_hashed_and_tagged_with_source(clock):
    upstream = Upstream(content=b'{"price": "50000"}')
    client = make_client(upstream)

    result = await client.fetch_json("https://x.test", source="binance_rest", ttl_ms=500)

    assert result.value == {"price": "50000"}
    assert result.hash == sha256(b'{"price": "50000"}')
    assert result.source == "binance_rest"
    assert result.ts_ms == clock.now_ms
    assert result.ttl_ms == 500


@pytest.mark.asyncio
async def test_optional_http_failure_degrades_and_is_cached():
    upstream = Upstream(status=503, body={"error": "down"})
    client = make_client(upstream)

    result = await client.fetch_json("https://down.test", optional=True, source="gdelt")
    again = await client.fetch_json("https://down.test", optional=True, source="gdelt")

    assert result.value is None
    assert result.quality_flags == ["optional_source_unavailable:gdelt"]
    assert again is result
    assert len(upstream.calls) == 1


@pytest.mark.asyncio
async def test_optional_transport_error_degrades():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    result = await client.fetch_json("https://rpc.test", optional=True, source="rpc")

    assert result.value is None
    assert result.quality_flags == ["optional_source_error:rpc"]


@pytest.mark.asyncio
async def test_optional_invalid_json_degrades():
    client = make_client(Upstream(content=b"<html>not json</html>"))
    result = await client.fetch_json("https://html.test", optional=True, source="dune")

    assert result.value is None
    assert result.quality_flags == ["optional_source_error:dune"]


@pytest.mark.asyncio
async def test_optional_malformed_url_degrades_without_request():
    upstream = Upstream(body={"value": 1})
    client = make_client(upstream)
    result = await client.fetch_json("https://host:notaport/q", optional=True, source="dune")

    assert upstream.calls == []
    assert result.value is None
    assert result.quality_flags == ["optional_source_error:dune"]


@pytest.mark.asyncio
async def test_mandatory_malformed_url_raises_fetch_error():
    client = make_client(Upstream(body={}))

    with pytest.raises(FetchError) as excinfo:
        await client.fetch_json("https://host:notaport/q")
    assert excinfo.value.url == "https://host:notaport/q"
    assert isinstance(excinfo.value.__cause__, httpx.InvalidURL)


@pytest.mark.asyncio
async def test_mandatory_http_failure_raises():
    upstream = Upstream(status=500, body={})
    client = make_client(upstream)

    with pytest.raises(FetchError) as excinfo:
        await client.fetch_json("https://down.test")
    assert excinfo.value.status_code == 500
    assert excinfo.value.url == "https://down.test"

    # failures of mandatory sources are not cached
    with pytest.raises(FetchError):
        await client.fetch_json("https://down.test")
    assert len(upstream.calls) == 2


@pytest.mark.asyncio
async def test_mandatory_transport_error_is_chained():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(FetchError) as excinfo:
        await client.fetch_json("https://rpc.test")
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_post_with_json_body():
    upstream = Upstream(body={"result": "0x1"})
    client = make_client(upstream)

    await client.fetch_json(
        "https://rpc.test",
        method="POST",
        headers={"Content-Type": "application/json"},
        json_body={"jsonrpc": "2.0", "method": "eth_blockNumber"},
    )

    request = upstream.calls[0]
    assert request.method == "POST"
    assert json.loads(request.content) == {"jsonrpc": "2.0", "method": "eth_blockNumber"}


@pytest.mark.asyncio
async def test_json_null_body_is_flagged():
    client = make_client(Upstream(content=b"null"))
    result = await client.fetch_json("https://null.test", source="dune")
    assert result.value is None
    assert result.quality_flags == ["empty_response:dune"]
