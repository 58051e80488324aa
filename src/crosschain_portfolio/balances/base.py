"""Shared HTTP plumbing for balance providers and a per-chain router."""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from crosschain_portfolio.core.models import TokenAmount, TokenDescriptor
from crosschain_portfolio.core.scheduler import BalanceProvider
from crosschain_portfolio.errors import BalanceFetchError, UnsupportedChainError
from crosschain_portfolio.rpc.retry import FailureKind, classify_failure

logger = logging.getLogger(__name__)

__all__ = ["BalanceProvider", "BalanceRouter", "HTTPBalanceProvider", "with_amount"]


def with_amount(token: TokenDescriptor, amount: int | None) -> TokenAmount:
    """Attach a raw on-chain amount to a token descriptor."""
    return TokenAmount(**{**token.model_dump(), "amount": amount})


class HTTPBalanceProvider:
    """
    Base class for providers talking to per-chain HTTP endpoints.

    Endpoints of a chain are tried in order; the first successful response
    wins and the last failure is raised when all of them fail.

    Parameters
    ----------
    endpoints : Mapping[int, Sequence[str]]
        Endpoint URLs keyed by chain ID
    timeout : float
        Request timeout in seconds
    transport : httpx.AsyncBaseTransport | None
        Custom transport, mainly for tests

    """

    def __init__(
        self,
        endpoints: Mapping[int, Sequence[str]],
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoints = {chain_id: [url.rstrip("/") for url in urls] for chain_id, urls in endpoints.items() if urls}
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def supports_chain(self, chain_id: int) -> bool:
        """Whether any endpoint is configured for the chain."""
        return chain_id in self.endpoints

    async def _request(self, chain_id: int, method: str, path: str = "", payload: Any = None) -> Any:
        """
        Send a request to the chain's endpoints until one succeeds.

        Parameters
        ----------
        chain_id : int
            Target chain
        method : str
            HTTP method
        path : str
            Path appended to the endpoint URL
        payload : Any
            JSON body, if any

        Returns
        -------
        Any
            Decoded JSON response

        Raises
        ------
        UnsupportedChainError
            If no endpoint is configured for the chain
        BalanceFetchError
            If every endpoint failed. A rate-limit failure from any endpoint
            is raised in preference to later ones, so the caller backs off.

        """
        urls = self.endpoints.get(chain_id)
        if not urls:
            msg = f"No endpoint configured for chain {chain_id}"
            raise UnsupportedChainError(msg, chain_id=chain_id)

        errors: list[BalanceFetchError] = []
        for url in urls:
            try:
                response = await self.client.request(method, f"{url}{path}", json=payload)
                response.raise_for_status()
                return response.json()
            except httpx.TimeoutException as e:
                error = BalanceFetchError(f"Request timeout: {e}", chain_id=chain_id)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                error = BalanceFetchError(f"HTTP {status} from {url}", status_code=status, chain_id=chain_id)
            except httpx.HTTPError as e:
                error = BalanceFetchError(f"HTTP request failed: {e}", chain_id=chain_id)
            except ValueError as e:
                error = BalanceFetchError(f"Invalid JSON from {url}: {e}", chain_id=chain_id)
            logger.debug("Endpoint %s failed for chain %d: %s", url, chain_id, error)
            errors.append(error)

        rate_limited = [error for error in errors if classify_failure(error) is FailureKind.RATE_LIMIT]
        raise (rate_limited or errors)[-1]

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()


class BalanceRouter:
    """
    Dispatches balance requests to the provider serving each chain.

    Parameters
    ----------
    providers : Sequence[Any]
        Providers exposing ``supports_chain`` and ``get_balances``; the
        first provider supporting a chain serves it

    """

    def __init__(self, providers: Sequence[Any]) -> None:
        self.providers = list(providers)

    def provider_for(self, chain_id: int) -> Any | None:
        """Find the provider serving a chain."""
        for provider in self.providers:
            if provider.supports_chain(chain_id):
                return provider
        return None

    def supports_chain(self, chain_id: int) -> bool:
        """Whether any provider serves the chain."""
        return self.provider_for(chain_id) is not None

    async def get_balances(
        self,
        wallet_address: str,
        tokens_by_chain: Mapping[int, Sequence[TokenDescriptor]],
    ) -> dict[int, list[TokenAmount]]:
        """
        Fetch balances across providers.

        Parameters
        ----------
        wallet_address : str
            Wallet to query
        tokens_by_chain : Mapping[int, Sequence[TokenDescriptor]]
            Tokens to query, grouped by chain id

        Returns
        -------
        dict[int, list[TokenAmount]]
            Merged token amounts grouped by chain id

        Raises
        ------
        UnsupportedChainError
            If a requested chain has no provider

        """
        routed: dict[int, tuple[Any, dict[int, Sequence[TokenDescriptor]]]] = {}
        for chain_id, tokens in tokens_by_chain.items():
            provider = self.provider_for(chain_id)
            if provider is None:
                msg = f"No balance provider for chain {chain_id}"
                raise UnsupportedChainError(msg, chain_id=chain_id)
            routed.setdefault(id(provider), (provider, {}))[1][chain_id] = tokens

        results = await asyncio.gather(
            *(provider.get_balances(wallet_address, chains) for provider, chains in routed.values())
        )

        merged: dict[int, list[TokenAmount]] = {}
        for result in results:
            merged.update(result)
        return merged

    async def close(self) -> None:
        """Close every provider that holds resources."""
        for provider in self.providers:
            close = getattr(provider, "close", None)
            if close is not None:
                await close()
