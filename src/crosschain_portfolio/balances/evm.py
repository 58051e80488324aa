"""EVM balance provider using batched JSON-RPC requests."""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from crosschain_portfolio.balances.base import HTTPBalanceProvider, with_amount
from crosschain_portfolio.core.models import TokenAmount, TokenDescriptor
from crosschain_portfolio.data.loader import get_endpoints_by_type
from crosschain_portfolio.errors import BalanceFetchError

logger = logging.getLogger(__name__)

# balanceOf(address)
BALANCE_OF_SELECTOR = "0x70a08231"

NATIVE_TOKEN_ADDRESSES = frozenset(
    {
        "0x0000000000000000000000000000000000000000",
        "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
    }
)


def is_native_token(address: str) -> bool:
    """Check whether an address is a placeholder for the chain's native coin."""
    return address.lower() in NATIVE_TOKEN_ADDRESSES


def encode_balance_of(wallet_address: str) -> str:
    """
    Encode ``balanceOf(wallet)`` call data.

    Parameters
    ----------
    wallet_address : str
        0x-prefixed wallet address

    Returns
    -------
    str
        Hex call data

    """
    return BALANCE_OF_SELECTOR + wallet_address.lower().removeprefix("0x").rjust(64, "0")


def decode_quantity(value: Any) -> int | None:
    """Decode a hex quantity; empty results (``0x``) decode to None."""
    if not isinstance(value, str) or value in ("0x", ""):
        return None
    return int(value, 16)


class EVMBalanceProvider(HTTPBalanceProvider):
    """
    Fetches native and ERC-20 balances over JSON-RPC.

    Every chain's tokens are queried with a single JSON-RPC batch:
    ``eth_getBalance`` for the native coin and ``eth_call`` to
    ``balanceOf`` for ERC-20 tokens.

    Parameters
    ----------
    endpoints : Mapping[int, Sequence[str]] | None
        RPC URLs keyed by chain ID; defaults to the bundled chain config
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
        super().__init__(endpoints if endpoints is not None else get_endpoints_by_type("EVM"), timeout, transport)

    @staticmethod
    def build_batch(wallet_address: str, tokens: Sequence[TokenDescriptor]) -> list[dict[str, Any]]:
        """Build a JSON-RPC batch with one request per token, ids matching token positions."""
        requests = []
        for i, token in enumerate(tokens):
            if is_native_token(token.address):
                method, params = "eth_getBalance", [wallet_address, "latest"]
            else:
                call = {"to": token.address, "data": encode_balance_of(wallet_address)}
                method, params = "eth_call", [call, "latest"]
            requests.append({"jsonrpc": "2.0", "id": i, "method": method, "params": params})
        return requests

    async def get_balances(
        self,
        wallet_address: str,
        tokens_by_chain: Mapping[int, Sequence[TokenDescriptor]],
    ) -> dict[int, list[TokenAmount]]:
        """
        Fetch balances of the given tokens.

        Raises
        ------
        UnsupportedChainError
            If a chain has no configured RPC endpoint
        BalanceFetchError
            If the RPC call fails or a request errors for a reason other
            than a reverted call

        """
        result: dict[int, list[TokenAmount]] = {}
        for chain_id, tokens in tokens_by_chain.items():
            if not tokens:
                result[chain_id] = []
                continue
            response = await self._request(chain_id, "POST", payload=self.build_batch(wallet_address, tokens))
            result[chain_id] = self._parse_batch(chain_id, tokens, response)
        return result

    @staticmethod
    def _parse_batch(chain_id: int, tokens: Sequence[TokenDescriptor], response: Any) -> list[TokenAmount]:
        if isinstance(response, dict) and "error" in response:
            error = response["error"] or {}
            msg = f"RPC error on chain {chain_id}: {error.get('message', error)}"
            raise BalanceFetchError(msg, chain_id=chain_id)
        if not isinstance(response, list):
            msg = f"Unexpected RPC batch response on chain {chain_id}"
            raise BalanceFetchError(msg, chain_id=chain_id)

        by_id = {item.get("id"): item for item in response if isinstance(item, dict)}
        amounts = []
        for i, token in enumerate(tokens):
            item = by_id.get(i)
            if item is None:
                msg = f"Missing RPC result for {token.symbol} on chain {chain_id}"
                raise BalanceFetchError(msg, chain_id=chain_id)

            error = item.get("error")
            if error:
                message = str(error.get("message", error)) if isinstance(error, dict) else str(error)
                if "revert" not in message.lower():
                    msg = f"RPC error on chain {chain_id}: {message}"
                    raise BalanceFetchError(msg, chain_id=chain_id)
                # Not an ERC-20 contract on this chain
                logger.debug("balanceOf reverted for %s on chain %d", token.address, chain_id)
                amounts.append(with_amount(token, None))
                continue

            amounts.append(with_amount(token, decode_quantity(item.get("result"))))
        return amounts
