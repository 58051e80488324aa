"""Epoch-tagged orchestration of catalog loading, balance fetching and aggregation."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from typing import Protocol

from pydantic import BaseModel, Field

from crosschain_portfolio.core.aggregator import BalanceAggregator, BalanceView
from crosschain_portfolio.core.consolidator import DedupKey, TokenCatalog
from crosschain_portfolio.core.models import (
    BatchWarning,
    Chain,
    ChainType,
    ConnectedAccount,
    PortfolioSnapshot,
    TokenDescriptor,
    TokenWithBalance,
)
from crosschain_portfolio.core.progress import ProgressTracker
from crosschain_portfolio.core.scheduler import (
    BalanceFetchScheduler,
    BalanceProvider,
    BatchOutcome,
    connected_ecosystems,
)
from crosschain_portfolio.errors import CatalogFetchError
from crosschain_portfolio.rpc.cache import TTLCache

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[PortfolioSnapshot], None]


class FetchConfig(BaseModel):
    """
    Tuning of one balance fetch cycle.

    Attributes
    ----------
    batch_size : int
        Tokens per balance request
    fetch_delay : float
        Inter-batch delay and base backoff, in seconds
    max_retries : int
        Retries per batch after the first attempt
    max_concurrency : int | None
        Cap on in-flight balance requests (None = unbounded)
    dedup_key : DedupKey
        Token consolidation policy
    view : BalanceView
        Keep all catalog tokens or only holdings
    catalog_ttl : float
        Seconds a consolidated catalog stays cached

    """

    batch_size: int = Field(default=10, ge=1)
    fetch_delay: float = Field(default=0.5, ge=0)
    max_retries: int = Field(default=3, ge=0)
    max_concurrency: int | None = Field(default=None, ge=1)
    dedup_key: DedupKey = DedupKey.SYMBOL
    view: BalanceView = BalanceView.CATALOG
    catalog_ttl: float = Field(default=3600, gt=0)


class TokenMetadataProvider(Protocol):
    """Interface for fetching raw per-chain token lists."""

    async def get_tokens_for_chains(self, chain_ids: Sequence[int]) -> dict[int, list[TokenDescriptor]]:
        """Fetch token descriptors grouped by chain id."""
        ...


class ChainRegistry(Protocol):
    """Interface for listing the chains of an ecosystem."""

    async def list_chains(self, ecosystem: ChainType) -> list[Chain]:
        """List chains belonging to ``ecosystem``."""
        ...


def accounts_key(accounts: Iterable[ConnectedAccount]) -> frozenset[tuple[ChainType, str]]:
    """Identity of the connected wallet set."""
    return frozenset(
        (account.chain_type, account.address) for account in accounts if account.is_connected and account.address
    )


class PortfolioPipeline:
    """
    Runs fetch cycles and publishes progressively complete snapshots.

    Every cycle gets a new, monotonically increasing epoch. Completion
    handlers capture the epoch they were dispatched in and drop their
    results once a newer epoch has started, so a superseded cycle can never
    touch the current collection or progress.

    Parameters
    ----------
    token_provider : TokenMetadataProvider
        Source of raw token lists
    balance_provider : BalanceProvider
        Source of on-chain balances
    chain_registry : ChainRegistry
        Source of chains per ecosystem
    config : FetchConfig | None
        Fetch tuning. Uses defaults if None.
    cache : TTLCache | None
        Catalog cache. A cache with ``config.catalog_ttl`` is created if None.
    sleep : Callable[[float], Awaitable[None]]
        Awaitable sleep used for throttling and backoff

    """

    def __init__(
        self,
        token_provider: TokenMetadataProvider,
        balance_provider: BalanceProvider,
        chain_registry: ChainRegistry,
        config: FetchConfig | None = None,
        cache: TTLCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.token_provider = token_provider
        self.balance_provider = balance_provider
        self.chain_registry = chain_registry
        self.config = config or FetchConfig()
        self.cache = cache or TTLCache(default_ttl=self.config.catalog_ttl)
        self.sleep = sleep
        self.tracker = ProgressTracker()

        self._epoch = 0
        self._accounts_key: frozenset[tuple[ChainType, str]] | None = None
        self._tokens: list[TokenWithBalance] = []
        self._completed_tokens: list[TokenWithBalance] = []
        self._has_collection = False
        self._warnings: list[BatchWarning] = []
        self._error: str | None = None
        self._is_loading = False
        self._task: asyncio.Task | None = None
        self._listeners: list[SnapshotListener] = []

    @property
    def epoch(self) -> int:
        """Current epoch."""
        return self._epoch

    @property
    def task(self) -> asyncio.Task | None:
        """Task running the current epoch, if started with ``start``."""
        return self._task

    @property
    def snapshot(self) -> PortfolioSnapshot:
        """State of the current epoch."""
        return PortfolioSnapshot(
            epoch=self._epoch,
            tokens=list(self._tokens),
            progress=self.tracker.state,
            warnings=list(self._warnings),
            error=self._error,
            is_loading=self._is_loading,
            previous_tokens=[] if self._has_collection else list(self._completed_tokens),
        )

    def is_current(self, epoch: int) -> bool:
        """Whether ``epoch`` is still the active epoch."""
        return epoch == self._epoch

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a listener called with every published snapshot.

        Returns
        -------
        Callable[[], None]
            Function removing the listener

        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _catalog_key(self, ecosystems: Sequence[ChainType]) -> str:
        return TTLCache.make_key("catalog", sorted(ecosystems), self.config.dedup_key)

    async def load_catalog(
        self,
        ecosystems: Sequence[ChainType],
    ) -> tuple[TokenCatalog, dict[ChainType, list[int]]]:
        """
        Build (or reuse) the consolidated catalog for connected ecosystems.

        Parameters
        ----------
        ecosystems : Sequence[ChainType]
            Ecosystems with connected wallets

        Returns
        -------
        tuple[TokenCatalog, dict[ChainType, list[int]]]
            Catalog and the chain ids to query per ecosystem

        Raises
        ------
        CatalogFetchError
            If chains or token metadata cannot be fetched

        """
        if not ecosystems:
            return TokenCatalog([]), {}

        key = self._catalog_key(ecosystems)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        supports_chain = getattr(self.balance_provider, "supports_chain", None)
        try:
            chains_by_ecosystem: dict[ChainType, list[int]] = {}
            for ecosystem in ecosystems:
                chains = await self.chain_registry.list_chains(ecosystem)
                chains_by_ecosystem[ecosystem] = [
                    chain.id for chain in chains if supports_chain is None or supports_chain(chain.id)
                ]

            chain_ids = [chain_id for ids in chains_by_ecosystem.values() for chain_id in ids]
            tokens_map = await self.token_provider.get_tokens_for_chains(chain_ids) if chain_ids else {}
        except CatalogFetchError:
            raise
        except Exception as e:
            msg = f"Failed to fetch token catalog: {e}"
            raise CatalogFetchError(msg) from e

        catalog = TokenCatalog.from_tokens_map(tokens_map, self.config.dedup_key)
        logger.info("Consolidated %d tokens across %d chains", len(catalog), len(catalog.chain_ids))

        self.cache.set(key, (catalog, chains_by_ecosystem))
        return catalog, chains_by_ecosystem

    def needs_refresh(self, accounts: Iterable[ConnectedAccount]) -> bool:
        """
        Whether a new epoch is due.

        True when the connected wallet set changed or the cached catalog for
        the connected ecosystems expired.
        """
        accounts = list(accounts)
        if accounts_key(accounts) != self._accounts_key:
            return True
        ecosystems = connected_ecosystems(accounts)
        return bool(ecosystems) and self.cache.get(self._catalog_key(ecosystems)) is None

    def _begin_epoch(self, accounts: list[ConnectedAccount]) -> int:
        self._epoch += 1
        self._accounts_key = accounts_key(accounts)
        self._tokens = []
        self._has_collection = False
        self._warnings = []
        self._error = None
        self._is_loading = True
        self.tracker.reset(self._epoch)
        logger.debug("Starting epoch %d for %d accounts", self._epoch, len(self._accounts_key))
        self._publish()
        return self._epoch

    async def run(self, accounts: Iterable[ConnectedAccount]) -> PortfolioSnapshot:
        """
        Run one fetch cycle to completion in a new epoch.

        Parameters
        ----------
        accounts : Iterable[ConnectedAccount]
            Wallet accounts to fetch balances for

        Returns
        -------
        PortfolioSnapshot
            Final snapshot of the epoch; empty if it was superseded

        Raises
        ------
        CatalogFetchError
            If the catalog cannot be built

        """
        accounts = list(accounts)
        epoch = self._begin_epoch(accounts)
        return await self._run_epoch(epoch, accounts)

    def start(self, accounts: Iterable[ConnectedAccount]) -> asyncio.Task:
        """
        Start a fetch cycle in the background, superseding any running one.

        Returns
        -------
        asyncio.Task
            Task resolving to the epoch's final snapshot

        """
        accounts = list(accounts)
        epoch = self._begin_epoch(accounts)
        task = asyncio.create_task(self._run_epoch(epoch, accounts))
        task.add_done_callback(self._on_task_done)
        self._task = task
        return task

    def sync(self, accounts: Iterable[ConnectedAccount]) -> asyncio.Task | None:
        """
        Start a new epoch only if the wallet set or catalog changed.

        Returns
        -------
        asyncio.Task | None
            Task of the active epoch, None if nothing was ever started

        """
        accounts = list(accounts)
        if self.needs_refresh(accounts):
            return self.start(accounts)
        return self._task

    async def stream(self, accounts: Iterable[ConnectedAccount]) -> AsyncIterator[PortfolioSnapshot]:
        """
        Start a fetch cycle and yield its snapshots as batches resolve.

        Yields
        ------
        PortfolioSnapshot
            Snapshots of the started epoch, ending with the final one

        Raises
        ------
        CatalogFetchError
            After yielding the error snapshot, if the catalog failed

        """
        queue: asyncio.Queue[PortfolioSnapshot | None] = asyncio.Queue()
        task = self.start(accounts)
        epoch = self._epoch

        def forward(snapshot: PortfolioSnapshot) -> None:
            if snapshot.epoch == epoch:
                queue.put_nowait(snapshot)

        queue.put_nowait(self.snapshot)
        unsubscribe = self.subscribe(forward)
        task.add_done_callback(lambda _: queue.put_nowait(None))

        try:
            while True:
                snapshot = await queue.get()
                if snapshot is None:
                    break
                yield snapshot
        finally:
            unsubscribe()

        if not task.cancelled() and task.exception() is not None:
            raise task.exception()

    async def _run_epoch(self, epoch: int, accounts: list[ConnectedAccount]) -> PortfolioSnapshot:
        try:
            catalog, chains_by_ecosystem = await self.load_catalog(connected_ecosystems(accounts))
        except CatalogFetchError as e:
            if self.is_current(epoch):
                logger.error("Fetch cycle %d aborted: %s", epoch, e)
                self._error = str(e)
                self._is_loading = False
                self._publish()
            raise

        if not self.is_current(epoch):
            logger.debug("Epoch %d superseded before scheduling", epoch)
            return PortfolioSnapshot(epoch=epoch)

        aggregator = BalanceAggregator(catalog, self.config.view)
        scheduler = BalanceFetchScheduler(
            self.balance_provider,
            batch_size=self.config.batch_size,
            fetch_delay=self.config.fetch_delay,
            max_retries=self.config.max_retries,
            max_concurrency=self.config.max_concurrency,
            sleep=self.sleep,
        )
        plan = scheduler.plan(accounts, chains_by_ecosystem, catalog)

        # From here on the epoch publishes its own collection
        self._tokens = aggregator.snapshot()
        self._has_collection = True
        self.tracker.begin(epoch, plan.total)
        self._publish()

        def on_outcome(outcome: BatchOutcome) -> None:
            if not self.is_current(epoch):
                logger.debug("Discarding %s from stale epoch %d", outcome.unit.describe(), epoch)
                return

            if outcome.succeeded:
                aggregator.apply(outcome.balances)
                self._tokens = aggregator.snapshot()
            else:
                self._warnings.append(
                    BatchWarning(
                        epoch=epoch,
                        chain_id=outcome.unit.chain_id,
                        wallet=outcome.unit.wallet,
                        token_count=outcome.unit.size,
                        attempts=outcome.attempts,
                        message=str(outcome.error),
                    )
                )
            self.tracker.advance(epoch, outcome.unit.size)
            self._publish()

        await scheduler.run(plan, on_outcome)

        if not self.is_current(epoch):
            return PortfolioSnapshot(epoch=epoch)

        self._is_loading = False
        self._completed_tokens = self._tokens
        self._publish()
        logger.info(
            "Epoch %d complete: %d tokens, %d abandoned batches",
            epoch,
            len(self._tokens),
            len(self._warnings),
        )
        return self.snapshot

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot
        for listener in list(self._listeners):
            listener(snapshot)

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        # Errors are already published as the snapshot's error state
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Background fetch cycle failed: %s", task.exception())
