"""Tests for the LI.FI API client."""

import httpx
import pytest

from crosschain_portfolio.core.models import ChainType
from crosschain_portfolio.errors import CatalogFetchError, LiFiAPIError
from crosschain_portfolio.integrations.lifi import LiFiClient

TOKENS_RESPONSE = {
    "tokens": {
        "1": [
            {
                "address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
                "symbol": "USDC",
                "decimals": 6,
                "chainId": 1,
                "name": "USD Coin",
                "coinKey": "USDC",
                "logoURI": "https://example.com/usdc.png",
                "priceUSD": "0.9999",
            },
            {"address": "0xNoLogo", "symbol": "NOLOGO", "decimals": 18, "chainId": 1, "name": "No Logo"},
            {"address": "", "symbol": "BROKEN", "decimals": 18, "chainId": 1},
        ],
        "10": [],
    }
}

CHAINS_RESPONSE = {
    "chains": [
        {"id": 1, "key": "eth", "chainType": "EVM", "name": "Ethereum", "logoURI": "https://example.com/eth.png"},
        {"id": 10, "key": "opt", "chainType": "EVM", "name": "Optimism"},
        {"key": "broken"},
    ]
}


def make_client(handler, **kwargs) -> LiFiClient:
    """Client backed by a mock transport."""
    return LiFiClient("https://li.quest/v1/", transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_get_tokens_for_chains():
    """Test token lists are parsed with defaults and invalid entries dropped."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=TOKENS_RESPONSE)

    async with make_client(handler, api_key="secret") as client:
        tokens = await client.get_tokens_for_chains([1, 10])

    assert requests[0].url.path == "/v1/tokens"
    assert requests[0].url.params["chains"] == "1,10"
    assert requests[0].headers["x-lifi-api-key"] == "secret"
    assert set(tokens) == {1, 10}
    assert [token.symbol for token in tokens[1]] == ["USDC", "NOLOGO"]
    assert tokens[1][0].price_usd == "0.9999"
    assert tokens[1][1].coin_key == "NOLOGO"
    assert tokens[1][1].price_usd == "0"
    assert tokens[10] == []


@pytest.mark.asyncio
async def test_get_tokens_for_chain_types_requires_logo():
    """Test the ecosystem listing can drop tokens without logos."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["chainTypes"] == "EVM,SVM"
        return httpx.Response(200, json=TOKENS_RESPONSE)

    async with make_client(handler) as client:
        tokens = await client.get_tokens_for_chain_types([ChainType.EVM, ChainType.SVM], require_logo=True)

    assert [token.symbol for token in tokens[1]] == ["USDC"]


@pytest.mark.asyncio
async def test_list_chains_cached():
    """Test chain listings are parsed and served from cache."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.params["chainTypes"])
        return httpx.Response(200, json=CHAINS_RESPONSE)

    async with make_client(handler) as client:
        chains = await client.list_chains(ChainType.EVM)
        again = await client.list_chains(ChainType.EVM)

    assert [chain.id for chain in chains] == [1, 10]
    assert chains[0].logo_uri == "https://example.com/eth.png"
    assert again == chains
    assert calls == ["EVM"]


@pytest.mark.asyncio
async def test_http_error_raises_catalog_error():
    """Test failed responses surface as catalog errors."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"message": "unavailable"})

    async with make_client(handler) as client:
        with pytest.raises(LiFiAPIError, match="503"):
            await client.get_tokens_for_chains([1])


@pytest.mark.asyncio
async def test_missing_token_map():
    """Test a response without a token map is rejected."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"message": "nothing here"})

    async with make_client(handler) as client:
        with pytest.raises(CatalogFetchError, match="Invalid token data"):
            await client.get_tokens_for_chains([1])


@pytest.mark.asyncio
async def test_connection_error():
    """Test transport failures are wrapped."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        with pytest.raises(LiFiAPIError, match="HTTP request failed"):
            await client.list_chains(ChainType.EVM)


@pytest.mark.asyncio
async def test_empty_chain_list_skips_request():
    """Test no request is made for an empty chain list."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("unexpected request")

    async with make_client(handler) as client:
        assert await client.get_tokens_for_chains([]) == {}
