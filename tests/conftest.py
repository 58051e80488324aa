"""Pytest configuration and shared fakes for crosschain-portfolio tests."""

from collections.abc import Mapping, Sequence

import pytest

from crosschain_portfolio.core.consolidator import TokenCatalog
from crosschain_portfolio.core.models import Chain, ChainType, TokenAmount, TokenDescriptor
from crosschain_portfolio.errors import BalanceFetchError

USDC_CHAIN_1 = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
USDC_CHAIN_10 = "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"
WETH_CHAIN_1 = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
NATIVE = "0x0000000000000000000000000000000000000000"
WALLET = "0x1111111111111111111111111111111111111111"


def make_descriptor(symbol: str, chain_id: int, address: str, decimals: int = 18, price: str | None = "1.00"):
    """Build a token descriptor with sensible defaults."""
    return TokenDescriptor(
        address=address,
        decimals=decimals,
        symbol=symbol,
        chain_id=chain_id,
        coin_key=symbol,
        name=symbol,
        price_usd=price,
    )


@pytest.fixture
def tokens_map() -> dict[int, list[TokenDescriptor]]:
    """USDC on chains 1 and 10, WETH and ETH on chain 1."""
    return {
        1: [
            make_descriptor("USDC", 1, USDC_CHAIN_1, decimals=6),
            make_descriptor("WETH", 1, WETH_CHAIN_1, price="2000"),
            make_descriptor("ETH", 1, NATIVE, price="2000"),
        ],
        10: [make_descriptor("USDC", 10, USDC_CHAIN_10, decimals=6)],
    }


@pytest.fixture
def catalog(tokens_map) -> TokenCatalog:
    """Catalog consolidated by symbol."""
    return TokenCatalog.from_tokens_map(tokens_map)


class FakeBalanceProvider:
    """
    Balance provider returning fixed raw amounts.

    ``failures`` maps a chain id to a list of exceptions raised by
    successive calls for that chain before it starts succeeding. When
    ``holder`` is set, every other wallet holds nothing.
    """

    def __init__(self, amounts: Mapping[tuple[int, str], int] | None = None, failures=None, holder=None) -> None:
        self.holder = holder
        self.amounts = {(chain_id, address.lower()): amount for (chain_id, address), amount in (amounts or {}).items()}
        self.failures = {chain_id: list(errors) for chain_id, errors in (failures or {}).items()}
        self.calls: list[tuple[str, dict[int, list[str]]]] = []

    async def get_balances(
        self,
        wallet_address: str,
        tokens_by_chain: Mapping[int, Sequence[TokenDescriptor]],
    ) -> dict[int, list[TokenAmount]]:
        self.calls.append(
            (wallet_address, {chain_id: [token.address for token in tokens] for chain_id, tokens in tokens_by_chain.items()})
        )
        for chain_id in tokens_by_chain:
            pending = self.failures.get(chain_id)
            if pending:
                raise pending.pop(0)

        if self.holder is not None and wallet_address != self.holder:
            amounts = {}
        else:
            amounts = self.amounts
        return {
            chain_id: [
                TokenAmount(**token.model_dump(), amount=amounts.get((chain_id, token.address.lower()), 0))
                for token in tokens
            ]
            for chain_id, tokens in tokens_by_chain.items()
        }


class FakeTokenProvider:
    """Token metadata provider serving a fixed token map."""

    def __init__(self, tokens_map, error: Exception | None = None) -> None:
        self.tokens_map = tokens_map
        self.error = error
        self.calls: list[list[int]] = []

    async def get_tokens_for_chains(self, chain_ids):
        self.calls.append(list(chain_ids))
        if self.error is not None:
            raise self.error
        return {chain_id: tokens for chain_id, tokens in self.tokens_map.items() if chain_id in chain_ids}


class FakeChainRegistry:
    """Chain registry serving fixed chain lists."""

    def __init__(self, chains: dict[ChainType, list[int]]) -> None:
        self.chains = chains

    async def list_chains(self, ecosystem):
        return [
            Chain(id=chain_id, chain_type=ecosystem, name=f"chain-{chain_id}")
            for chain_id in self.chains.get(ecosystem, [])
        ]


class RecordingSleep:
    """Awaitable sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Sleep that returns immediately."""
    return RecordingSleep()


def rate_limited(chain_id: int = 42161) -> BalanceFetchError:
    """HTTP 429 failure as raised by the HTTP balance providers."""
    return BalanceFetchError("HTTP 429 from rpc", status_code=429, chain_id=chain_id)
