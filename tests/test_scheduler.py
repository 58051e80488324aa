"""Tests for batch planning and concurrent fetching."""

import pytest
from conftest import WALLET, FakeBalanceProvider, make_descriptor, rate_limited

from crosschain_portfolio.core.consolidator import TokenCatalog
from crosschain_portfolio.core.models import ChainType, ConnectedAccount
from crosschain_portfolio.core.scheduler import (
    BalanceFetchScheduler,
    connected_ecosystems,
    wallet_addresses_by_ecosystem,
)
from crosschain_portfolio.errors import UnsupportedChainError


def make_catalog(chain_id: int, count: int) -> TokenCatalog:
    """Catalog with ``count`` distinct tokens on one chain."""
    return TokenCatalog.from_tokens_map(
        {chain_id: [make_descriptor(f"T{i}", chain_id, f"0x{i:040x}") for i in range(count)]}
    )


def test_connected_ecosystems_and_wallets():
    """Test disconnected and address-less accounts are ignored."""
    accounts = [
        ConnectedAccount(address="0xaaa", chain_type=ChainType.EVM),
        ConnectedAccount(address="0xaaa", chain_type=ChainType.EVM),
        ConnectedAccount(address="sol1", chain_type=ChainType.SVM, is_connected=False),
        ConnectedAccount(address=None, chain_type=ChainType.UTXO),
    ]

    assert connected_ecosystems(accounts) == [ChainType.EVM, ChainType.UTXO]
    wallets = wallet_addresses_by_ecosystem(accounts)
    assert wallets[ChainType.EVM] == ["0xaaa"]
    assert wallets[ChainType.SVM] == []
    assert wallets[ChainType.UTXO] == []


def test_plan_partitions_tokens():
    """Test every token lands in exactly one batch of at most batch_size."""
    catalog = make_catalog(1, 25)
    scheduler = BalanceFetchScheduler(FakeBalanceProvider(), batch_size=10)

    plan = scheduler.plan(
        [ConnectedAccount(address=WALLET, chain_type=ChainType.EVM)],
        {ChainType.EVM: [1]},
        catalog,
    )

    assert [unit.size for unit in plan.units] == [10, 10, 5]
    assert [unit.index for unit in plan.units] == [0, 1, 2]
    assert plan.total == 25
    addresses = [token.address for unit in plan.units for token in unit.tokens]
    assert len(addresses) == len(set(addresses)) == 25


def test_plan_covers_every_wallet_and_chain(tokens_map):
    """Test units exist per (wallet, chain) with a shared token partition."""
    catalog = TokenCatalog.from_tokens_map(tokens_map)
    scheduler = BalanceFetchScheduler(FakeBalanceProvider(), batch_size=2)
    accounts = [
        ConnectedAccount(address="0xaaa", chain_type=ChainType.EVM),
        ConnectedAccount(address="0xbbb", chain_type=ChainType.EVM),
    ]

    plan = scheduler.plan(accounts, {ChainType.EVM: [1, 10]}, catalog)

    # Chain 1 has 3 listings (2 batches), chain 10 has 1 (1 batch)
    assert len(plan.units) == 6
    assert plan.total == 8
    assert {(unit.wallet, unit.chain_id) for unit in plan.units} == {
        ("0xaaa", 1),
        ("0xaaa", 10),
        ("0xbbb", 1),
        ("0xbbb", 10),
    }


def test_plan_skips_ecosystems_without_chains(tokens_map):
    """Test an ecosystem with no chains schedules nothing."""
    scheduler = BalanceFetchScheduler(FakeBalanceProvider())

    plan = scheduler.plan(
        [ConnectedAccount(address="sol", chain_type=ChainType.SVM)],
        {ChainType.EVM: [1]},
        TokenCatalog.from_tokens_map(tokens_map),
    )

    assert plan.units == []
    assert plan.total == 0


def test_batch_size_validated():
    """Test non-positive batch sizes are rejected."""
    with pytest.raises(ValueError):
        BalanceFetchScheduler(FakeBalanceProvider(), batch_size=0)


@pytest.mark.asyncio
async def test_batches_are_staggered(recording_sleep):
    """Test later batches wait index * fetch_delay before their first attempt."""
    catalog = make_catalog(1, 7)
    scheduler = BalanceFetchScheduler(FakeBalanceProvider(), batch_size=3, fetch_delay=0.5, sleep=recording_sleep)
    plan = scheduler.plan([ConnectedAccount(address=WALLET, chain_type=ChainType.EVM)], {ChainType.EVM: [1]}, catalog)

    outcomes = await scheduler.run(plan, lambda outcome: None)

    assert all(outcome.succeeded for outcome in outcomes)
    assert sorted(recording_sleep.delays) == [0.5, 1.0]


@pytest.mark.asyncio
async def test_rate_limited_batch_reports_once(recording_sleep):
    """Test a batch failing twice with 429 reports a single successful outcome."""
    catalog = make_catalog(42161, 3)
    amounts = {(42161, f"0x{0:040x}"): 5 * 10**18}
    provider = FakeBalanceProvider(amounts, failures={42161: [rate_limited(), rate_limited()]})
    scheduler = BalanceFetchScheduler(provider, batch_size=10, fetch_delay=0.5, sleep=recording_sleep)
    plan = scheduler.plan(
        [ConnectedAccount(address=WALLET, chain_type=ChainType.EVM)], {ChainType.EVM: [42161]}, catalog
    )
    reported = []

    await scheduler.run(plan, reported.append)

    assert len(provider.calls) == 3
    assert len(reported) == 1
    assert reported[0].succeeded
    assert reported[0].attempts == 3
    assert reported[0].balances[42161][0].amount == 5 * 10**18
    assert recording_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhausted_batch_reports_failure(recording_sleep):
    """Test a batch that never succeeds is abandoned after max_retries + 1 attempts."""
    catalog = make_catalog(1, 2)
    provider = FakeBalanceProvider(failures={1: [RuntimeError("connection reset")] * 10})
    scheduler = BalanceFetchScheduler(provider, max_retries=2, sleep=recording_sleep)
    plan = scheduler.plan([ConnectedAccount(address=WALLET, chain_type=ChainType.EVM)], {ChainType.EVM: [1]}, catalog)
    reported = []

    await scheduler.run(plan, reported.append)

    assert len(provider.calls) == 3
    assert len(reported) == 1
    assert not reported[0].succeeded
    assert reported[0].attempts == 3
    assert "connection reset" in str(reported[0].error)


@pytest.mark.asyncio
async def test_unsupported_chain_not_retried(recording_sleep):
    """Test unsupported chains fail on the first attempt."""
    catalog = make_catalog(5, 1)
    provider = FakeBalanceProvider(failures={5: [UnsupportedChainError("no provider", chain_id=5)]})
    scheduler = BalanceFetchScheduler(provider, sleep=recording_sleep)
    plan = scheduler.plan([ConnectedAccount(address=WALLET, chain_type=ChainType.EVM)], {ChainType.EVM: [5]}, catalog)

    outcomes = await scheduler.run(plan, lambda outcome: None)

    assert outcomes[0].attempts == 1
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_max_concurrency(recording_sleep):
    """Test a concurrency cap still completes every batch."""
    catalog = make_catalog(1, 9)
    scheduler = BalanceFetchScheduler(FakeBalanceProvider(), batch_size=2, max_concurrency=1, sleep=recording_sleep)
    plan = scheduler.plan([ConnectedAccount(address=WALLET, chain_type=ChainType.EVM)], {ChainType.EVM: [1]}, catalog)

    outcomes = await scheduler.run(plan, lambda outcome: None)

    assert len(outcomes) == 5
    assert all(outcome.succeeded for outcome in outcomes)
