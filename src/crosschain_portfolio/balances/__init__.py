"""On-chain balance providers for EVM, Solana and Bitcoin."""

from crosschain_portfolio.balances.base import BalanceProvider, BalanceRouter, HTTPBalanceProvider
from crosschain_portfolio.balances.evm import EVMBalanceProvider
from crosschain_portfolio.balances.solana import SolanaBalanceProvider
from crosschain_portfolio.balances.utxo import BitcoinBalanceProvider


def default_router(timeout: float = 15.0) -> BalanceRouter:
    """Router over every bundled provider using the configured public endpoints."""
    return BalanceRouter(
        [
            EVMBalanceProvider(timeout=timeout),
            SolanaBalanceProvider(timeout=timeout),
            BitcoinBalanceProvider(timeout=timeout),
        ]
    )


__all__ = [
    "BalanceProvider",
    "BalanceRouter",
    "BitcoinBalanceProvider",
    "EVMBalanceProvider",
    "HTTPBalanceProvider",
    "SolanaBalanceProvider",
    "default_router",
]
