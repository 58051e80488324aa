"""Bitcoin balance provider backed by an Esplora REST API."""

from collections.abc import Mapping, Sequence

import httpx

from crosschain_portfolio.balances.base import HTTPBalanceProvider, with_amount
from crosschain_portfolio.core.models import TokenAmount, TokenDescriptor
from crosschain_portfolio.data.loader import get_endpoints_by_type
from crosschain_portfolio.errors import BalanceFetchError

BITCOIN_CHAIN_ID = 20000000000001
NATIVE_BTC_ADDRESS = "bitcoin"


class BitcoinBalanceProvider(HTTPBalanceProvider):
    """
    Fetches confirmed BTC balances from Esplora (``GET /address/{address}``).

    Only the native coin is supported; any other token on the chain
    resolves to an unknown amount.

    Parameters
    ----------
    endpoints : Mapping[int, Sequence[str]] | None
        API base URLs keyed by chain ID; defaults to the bundled chain config
    timeout : float
        Request timeout in seconds
    transport : httpx.AsyncBaseTransport | None
        Custom transport, mainly for tests

    """

    def __init__(
        self,
        endpoints: Mapping[int, Sequence[str]] | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(endpoints if endpoints is not None else get_endpoints_by_type("UTXO"), timeout, transport)

    async def get_confirmed_balance(self, chain_id: int, wallet_address: str) -> int:
        """
        Confirmed balance in satoshis.

        Raises
        ------
        BalanceFetchError
            If the request fails or the response lacks chain stats

        """
        data = await self._request(chain_id, "GET", f"/address/{wallet_address}")
        stats = data.get("chain_stats") if isinstance(data, dict) else None
        if not stats:
            msg = f"Missing chain stats for {wallet_address}"
            raise BalanceFetchError(msg, chain_id=chain_id)
        return int(stats.get("funded_txo_sum", 0)) - int(stats.get("spent_txo_sum", 0))

    async def get_balances(
        self,
        wallet_address: str,
        tokens_by_chain: Mapping[int, Sequence[TokenDescriptor]],
    ) -> dict[int, list[TokenAmount]]:
        """Fetch balances of the given tokens."""
        result: dict[int, list[TokenAmount]] = {}
        for chain_id, tokens in tokens_by_chain.items():
            native = None
            if any(token.address == NATIVE_BTC_ADDRESS for token in tokens):
                native = await self.get_confirmed_balance(chain_id, wallet_address)
            result[chain_id] = [
                with_amount(token, native if token.address == NATIVE_BTC_ADDRESS else None) for token in tokens
            ]
        return result
