"""Balance fetch scheduling: partition work into batches and drive concurrent, retrying calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol

from crosschain_portfolio.core.consolidator import TokenCatalog
from crosschain_portfolio.core.models import ChainType, ConnectedAccount, TokenAmount, TokenDescriptor
from crosschain_portfolio.rpc.retry import RetryExhaustedError, RetryPolicy

logger = logging.getLogger(__name__)


class BalanceProvider(Protocol):
    """Interface for fetching on-chain balances of a wallet."""

    async def get_balances(
        self,
        wallet_address: str,
        tokens_by_chain: Mapping[int, Sequence[TokenDescriptor]],
    ) -> dict[int, list[TokenAmount]]:
        """
        Fetch balances of the given tokens.

        Parameters
        ----------
        wallet_address : str
            Wallet to query
        tokens_by_chain : Mapping[int, Sequence[TokenDescriptor]]
            Tokens to query, grouped by chain id

        Returns
        -------
        dict[int, list[TokenAmount]]
            Token amounts grouped by chain id

        """
        ...


@dataclass(frozen=True)
class BatchUnit:
    """
    One (ecosystem, wallet, chain, batch) unit of fetch work.

    Attributes
    ----------
    ecosystem : ChainType
        Ecosystem of the wallet
    wallet : str
        Wallet address
    chain_id : int
        Chain the batch targets
    index : int
        Position of the batch within its (wallet, chain) sequence
    tokens : tuple[TokenDescriptor, ...]
        Tokens queried together

    """

    ecosystem: ChainType
    wallet: str
    chain_id: int
    index: int
    tokens: tuple[TokenDescriptor, ...]

    @property
    def size(self) -> int:
        """Number of tokens in the batch."""
        return len(self.tokens)

    def describe(self) -> str:
        """Short label for log messages."""
        return f"batch {self.index} on chain {self.chain_id} for {self.wallet}"


@dataclass
class BatchOutcome:
    """
    Terminal outcome of a batch.

    Attributes
    ----------
    unit : BatchUnit
        The batch
    balances : dict[int, list[TokenAmount]] | None
        Resolved balances, None when the batch was abandoned
    attempts : int
        Attempts made
    error : BaseException | None
        Last failure of an abandoned batch

    """

    unit: BatchUnit
    balances: dict[int, list[TokenAmount]] | None = None
    attempts: int = 0
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        """Whether balances were resolved."""
        return self.balances is not None


@dataclass
class FetchPlan:
    """All batch units of one fetch cycle with their fixed token total."""

    units: list[BatchUnit] = field(default_factory=list)

    @property
    def total(self) -> int:
        """Sum of token counts across all batches."""
        return sum(unit.size for unit in self.units)


BatchCallback = Callable[[BatchOutcome], None]


def connected_ecosystems(accounts: Iterable[ConnectedAccount]) -> list[ChainType]:
    """Unique ecosystems of connected accounts, in first-seen order."""
    ecosystems: list[ChainType] = []
    for account in accounts:
        if account.is_connected and account.chain_type not in ecosystems:
            ecosystems.append(account.chain_type)
    return ecosystems


def wallet_addresses_by_ecosystem(accounts: Iterable[ConnectedAccount]) -> dict[ChainType, list[str]]:
    """
    Group connected wallet addresses by ecosystem.

    Disconnected accounts and accounts without an address are ignored;
    duplicates within an ecosystem are collapsed.
    """
    addresses: dict[ChainType, list[str]] = {chain_type: [] for chain_type in ChainType}
    for account in accounts:
        if not account.is_connected or not account.address:
            continue
        wallets = addresses[account.chain_type]
        if account.address not in wallets:
            wallets.append(account.address)
    return addresses


class BalanceFetchScheduler:
    """
    Partitions balance fetch work and runs it concurrently with retries.

    The scheduler keeps no aggregate state: every batch's terminal outcome
    is handed to a callback exactly once.

    Parameters
    ----------
    provider : BalanceProvider
        Balance provider used for every batch
    batch_size : int
        Tokens per batch
    fetch_delay : float
        Inter-batch delay in seconds; also the base backoff delay
    max_retries : int
        Retries per batch after the first attempt
    max_concurrency : int | None
        Optional cap on in-flight provider calls
    retry_policy : RetryPolicy | None
        Overrides the policy built from ``max_retries`` and ``fetch_delay``
    sleep : Callable[[float], Awaitable[None]]
        Awaitable sleep, injectable for tests

    """

    def __init__(
        self,
        provider: BalanceProvider,
        batch_size: int = 10,
        fetch_delay: float = 0.5,
        max_retries: int = 3,
        max_concurrency: int | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            msg = f"batch_size must be >= 1, got {batch_size}"
            raise ValueError(msg)
        self.provider = provider
        self.batch_size = batch_size
        self.fetch_delay = fetch_delay
        self.sleep = sleep
        self.retry_policy = retry_policy or RetryPolicy(max_retries=max_retries, base_delay=fetch_delay, sleep=sleep)
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    def plan(
        self,
        accounts: Iterable[ConnectedAccount],
        chains_by_ecosystem: Mapping[ChainType, Sequence[int]],
        catalog: TokenCatalog,
    ) -> FetchPlan:
        """
        Partition fetch work into batch units.

        Parameters
        ----------
        accounts : Iterable[ConnectedAccount]
            Wallet accounts; only connected ones are scheduled
        chains_by_ecosystem : Mapping[ChainType, Sequence[int]]
            Chain ids to query for each ecosystem
        catalog : TokenCatalog
            Canonical tokens to query

        Returns
        -------
        FetchPlan
            Units for every (ecosystem, wallet, chain, batch)

        """
        accounts = list(accounts)
        wallets = wallet_addresses_by_ecosystem(accounts)
        tokens_by_chain: dict[int, list[TokenDescriptor]] = {}
        plan = FetchPlan()

        for ecosystem in connected_ecosystems(accounts):
            chain_ids = chains_by_ecosystem.get(ecosystem, [])
            if not wallets[ecosystem] or not chain_ids:
                continue

            for wallet in wallets[ecosystem]:
                for chain_id in chain_ids:
                    if chain_id not in tokens_by_chain:
                        tokens_by_chain[chain_id] = catalog.tokens_for_chain(chain_id)
                    chain_tokens = tokens_by_chain[chain_id]

                    for index, start in enumerate(range(0, len(chain_tokens), self.batch_size)):
                        plan.units.append(
                            BatchUnit(
                                ecosystem=ecosystem,
                                wallet=wallet,
                                chain_id=chain_id,
                                index=index,
                                tokens=tuple(chain_tokens[start : start + self.batch_size]),
                            )
                        )

        logger.debug("Planned %d batches covering %d tokens", len(plan.units), plan.total)
        return plan

    async def run(self, plan: FetchPlan, on_outcome: BatchCallback) -> list[BatchOutcome]:
        """
        Dispatch every unit concurrently and wait for all of them.

        Parameters
        ----------
        plan : FetchPlan
            Units to execute
        on_outcome : BatchCallback
            Called once per unit with its terminal outcome

        Returns
        -------
        list[BatchOutcome]
            Outcomes in plan order

        """
        tasks = [self._run_unit(unit, on_outcome) for unit in plan.units]
        return list(await asyncio.gather(*tasks))

    async def fetch_batch(self, unit: BatchUnit) -> dict[int, list[TokenAmount]]:
        """Make one provider call for a unit."""
        if self._semaphore is None:
            return await self.provider.get_balances(unit.wallet, {unit.chain_id: list(unit.tokens)})
        async with self._semaphore:
            return await self.provider.get_balances(unit.wallet, {unit.chain_id: list(unit.tokens)})

    async def _run_unit(self, unit: BatchUnit, on_outcome: BatchCallback) -> BatchOutcome:
        # Stagger batches of one (wallet, chain) sequence by the inter-batch delay
        if unit.index and self.fetch_delay:
            await self.sleep(unit.index * self.fetch_delay)

        try:
            balances, attempts = await self.retry_policy.run(lambda: self.fetch_batch(unit), unit.describe())
            outcome = BatchOutcome(unit=unit, balances=balances, attempts=attempts)
        except RetryExhaustedError as e:
            logger.warning(
                "Abandoning %s after %d attempts: %s",
                unit.describe(),
                e.attempts,
                e.last_exception,
            )
            outcome = BatchOutcome(unit=unit, attempts=e.attempts, error=e.last_exception)

        on_outcome(outcome)
        return outcome
