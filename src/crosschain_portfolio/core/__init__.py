"""Core functionality including models, consolidation, aggregation, scheduling and the fetch pipeline."""

from crosschain_portfolio.core.aggregator import BalanceAggregator, BalanceView, group_tokens_by_symbol
from crosschain_portfolio.core.consolidator import DedupKey, TokenCatalog, consolidate_tokens
from crosschain_portfolio.core.models import (
    BatchWarning,
    Chain,
    ChainType,
    ConnectedAccount,
    ConsolidatedToken,
    NetworkEntry,
    PortfolioSnapshot,
    ProgressState,
    ProgressStatus,
    TokenAmount,
    TokenBalance,
    TokenDescriptor,
    TokenWithBalance,
)
from crosschain_portfolio.core.pipeline import FetchConfig, PortfolioPipeline
from crosschain_portfolio.core.progress import ProgressTracker
from crosschain_portfolio.core.scheduler import BalanceFetchScheduler, BalanceProvider, BatchUnit, FetchPlan

__all__ = [
    "BalanceAggregator",
    "BalanceFetchScheduler",
    "BalanceProvider",
    "BalanceView",
    "BatchUnit",
    "BatchWarning",
    "Chain",
    "ChainType",
    "ConnectedAccount",
    "ConsolidatedToken",
    "DedupKey",
    "FetchConfig",
    "FetchPlan",
    "NetworkEntry",
    "PortfolioPipeline",
    "PortfolioSnapshot",
    "ProgressState",
    "ProgressStatus",
    "ProgressTracker",
    "TokenAmount",
    "TokenBalance",
    "TokenCatalog",
    "TokenDescriptor",
    "TokenWithBalance",
    "consolidate_tokens",
    "group_tokens_by_symbol",
]
