"""Solana balance provider for SOL and SPL tokens."""

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from crosschain_portfolio.balances.base import HTTPBalanceProvider, with_amount
from crosschain_portfolio.core.models import TokenAmount, TokenDescriptor
from crosschain_portfolio.data.loader import get_endpoints_by_type
from crosschain_portfolio.errors import BalanceFetchError
from crosschain_portfolio.rpc.cache import TTLCache

SOLANA_CHAIN_ID = 1151111081099710
NATIVE_SOL_ADDRESS = "11111111111111111111111111111111"

TOKEN_PROGRAM_IDS = (
    "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
    "TokenzQdBNbLqP5VEhdkAS6EPFLC1PEnBqCXEjPxAxg8",
)


class SolanaBalanceProvider(HTTPBalanceProvider):
    """
    Fetches SOL and SPL token balances over Solana JSON-RPC.

    Native SOL comes from ``getBalance``; SPL balances are summed per mint
    over every token account the wallet owns under both token programs.
    Tokens the wallet holds no account for resolve to zero.

    Token accounts depend only on the wallet, so one lookup per (chain,
    wallet) is shared by every batch within ``token_cache_ttl`` seconds.
    Concurrent batches await the same in-flight lookup; a failed lookup is
    dropped so the next attempt refetches.

    Parameters
    ----------
    endpoints : Mapping[int, Sequence[str]] | None
        RPC URLs keyed by chain ID; defaults to the bundled chain config
    timeout : float
        Request timeout in seconds
    transport : httpx.AsyncBaseTransport | None
        Custom transport, mainly for tests
    token_cache_ttl : float
        Seconds a wallet's token accounts are reused across batches

    """

    def __init__(
        self,
        endpoints: Mapping[int, Sequence[str]] | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
        token_cache_ttl: float = 30.0,
    ) -> None:
        super().__init__(endpoints if endpoints is not None else get_endpoints_by_type("SVM"), timeout, transport)
        self.token_cache = TTLCache(default_ttl=token_cache_ttl)

    async def _rpc(self, chain_id: int, method: str, params: list[Any]) -> Any:
        response = await self._request(
            chain_id,
            "POST",
            payload={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        if not isinstance(response, dict):
            msg = f"Unexpected {method} response on chain {chain_id}"
            raise BalanceFetchError(msg, chain_id=chain_id)
        if response.get("error"):
            error = response["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            msg = f"{method} failed on chain {chain_id}: {message}"
            raise BalanceFetchError(msg, chain_id=chain_id)
        return response.get("result")

    async def get_native_balance(self, chain_id: int, wallet_address: str) -> int:
        """Lamports held by the wallet."""
        result = await self._rpc(chain_id, "getBalance", [wallet_address])
        return int((result or {}).get("value") or 0)

    async def get_token_balances(self, chain_id: int, wallet_address: str) -> dict[str, int]:
        """
        Raw SPL token balances of the wallet.

        Returns
        -------
        dict[str, int]
            Raw amounts keyed by mint address

        """
        key = TTLCache.make_key("token-accounts", chain_id, wallet_address)
        pending = self.token_cache.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch_token_balances(chain_id, wallet_address))
            self.token_cache.set(key, pending)

        try:
            return dict(await asyncio.shield(pending))
        except Exception:
            if self.token_cache.get(key) is pending:
                self.token_cache.invalidate(key)
            raise

    async def _fetch_token_balances(self, chain_id: int, wallet_address: str) -> dict[str, int]:
        balances: dict[str, int] = {}
        for program_id in TOKEN_PROGRAM_IDS:
            result = await self._rpc(
                chain_id,
                "getTokenAccountsByOwner",
                [wallet_address, {"programId": program_id}, {"encoding": "jsonParsed"}],
            )
            for account in (result or {}).get("value") or []:
                info = account.get("account", {}).get("data", {}).get("parsed", {}).get("info", {})
                mint = info.get("mint")
                amount = info.get("tokenAmount", {}).get("amount")
                if mint and amount is not None:
                    balances[mint] = balances.get(mint, 0) + int(amount)
        return balances

    async def get_balances(
        self,
        wallet_address: str,
        tokens_by_chain: Mapping[int, Sequence[TokenDescriptor]],
    ) -> dict[int, list[TokenAmount]]:
        """Fetch balances of the given tokens."""
        result: dict[int, list[TokenAmount]] = {}
        for chain_id, tokens in tokens_by_chain.items():
            native = None
            if any(token.address == NATIVE_SOL_ADDRESS for token in tokens):
                native = await self.get_native_balance(chain_id, wallet_address)
            spl: dict[str, int] = {}
            if any(token.address != NATIVE_SOL_ADDRESS for token in tokens):
                spl = await self.get_token_balances(chain_id, wallet_address)

            result[chain_id] = [
                with_amount(token, native if token.address == NATIVE_SOL_ADDRESS else spl.get(token.address, 0))
                for token in tokens
            ]
        return result
