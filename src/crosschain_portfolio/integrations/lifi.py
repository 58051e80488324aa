"""LI.FI REST API client for token metadata and chain listings."""

import logging
from collections.abc import Iterable, Sequence
from typing import Any

import httpx
from pydantic import ValidationError

from crosschain_portfolio.core.models import Chain, ChainType, TokenDescriptor
from crosschain_portfolio.errors import LiFiAPIError
from crosschain_portfolio.rpc.cache import TTLCache

logger = logging.getLogger(__name__)


class LiFiClient:
    """
    Client for the LI.FI API.

    Serves as both the token metadata provider and the chain registry of
    the pipeline. Chain listings are cached since they rarely change.

    Parameters
    ----------
    base_url : str
        API base URL (e.g., ``https://li.quest/v1``)
    api_key : str | None
        Optional API key sent as ``x-lifi-api-key``
    timeout : float
        Request timeout in seconds
    cache : TTLCache | None
        Cache for chain listings
    transport : httpx.AsyncBaseTransport | None
        Custom transport, mainly for tests

    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        cache: TTLCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cache = cache or TTLCache(default_ttl=300)
        headers = {"x-lifi-api-key": api_key} if api_key else {}
        self.client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    async def _get(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        """
        Perform a GET request and decode the JSON body.

        Raises
        ------
        LiFiAPIError
            If the request fails or returns a non-object body

        """
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            msg = f"Request timeout: {e}"
            raise LiFiAPIError(msg) from e
        except httpx.HTTPStatusError as e:
            msg = f"Failed to fetch {path}: {e.response.status_code}"
            raise LiFiAPIError(msg) from e
        except httpx.HTTPError as e:
            msg = f"HTTP request failed: {e}"
            raise LiFiAPIError(msg) from e
        except ValueError as e:
            msg = f"Invalid JSON from {path}: {e}"
            raise LiFiAPIError(msg) from e

        if not isinstance(data, dict):
            msg = f"Unexpected response from {path}"
            raise LiFiAPIError(msg)
        return data

    async def list_chains(self, ecosystem: ChainType) -> list[Chain]:
        """
        List chains of an ecosystem.

        Parameters
        ----------
        ecosystem : ChainType
            Ecosystem to list

        Returns
        -------
        list[Chain]
            Chains in API order

        Raises
        ------
        LiFiAPIError
            If the API request fails

        """
        key = TTLCache.make_key("chains", ecosystem)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        data = await self._get("/chains", {"chainTypes": str(ecosystem)})
        chains = []
        for raw in data.get("chains") or []:
            try:
                chains.append(Chain.model_validate(raw))
            except ValidationError as e:
                logger.debug("Skipping malformed chain entry: %s", e)

        self.cache.set(key, chains)
        return chains

    async def get_tokens_for_chains(self, chain_ids: Sequence[int]) -> dict[int, list[TokenDescriptor]]:
        """
        Fetch token lists for specific chains.

        Parameters
        ----------
        chain_ids : Sequence[int]
            Chains to fetch tokens for

        Returns
        -------
        dict[int, list[TokenDescriptor]]
            Token descriptors grouped by chain id

        Raises
        ------
        LiFiAPIError
            If the API request fails or returns no token map

        """
        if not chain_ids:
            return {}
        data = await self._get("/tokens", {"chains": ",".join(str(chain_id) for chain_id in chain_ids)})
        return self._parse_tokens(data)

    async def get_tokens_for_chain_types(
        self,
        chain_types: Iterable[ChainType],
        require_logo: bool = False,
    ) -> dict[int, list[TokenDescriptor]]:
        """
        Fetch token lists for whole ecosystems.

        Parameters
        ----------
        chain_types : Iterable[ChainType]
            Ecosystems to fetch tokens for
        require_logo : bool
            Drop tokens without a logo URL

        Returns
        -------
        dict[int, list[TokenDescriptor]]
            Token descriptors grouped by chain id

        """
        chain_types = [str(chain_type) for chain_type in chain_types]
        if not chain_types:
            return {}
        data = await self._get("/tokens", {"chainTypes": ",".join(chain_types)})
        return self._parse_tokens(data, require_logo=require_logo)

    @staticmethod
    def _parse_tokens(data: dict[str, Any], require_logo: bool = False) -> dict[int, list[TokenDescriptor]]:
        """
        Convert a ``/tokens`` response into descriptors.

        Tokens without an address or symbol are dropped; a missing coin key
        falls back to the symbol and a missing price to "0".

        Raises
        ------
        LiFiAPIError
            If the response has no token map

        """
        raw_tokens = data.get("tokens")
        if not isinstance(raw_tokens, dict):
            msg = "Invalid token data received from API"
            raise LiFiAPIError(msg)

        result: dict[int, list[TokenDescriptor]] = {}
        for raw_chain_id, chain_tokens in raw_tokens.items():
            try:
                chain_id = int(raw_chain_id)
            except ValueError:
                continue

            descriptors = []
            for token in chain_tokens or []:
                if not isinstance(token, dict) or not token.get("address") or not token.get("symbol"):
                    continue
                if require_logo and not token.get("logoURI"):
                    continue
                try:
                    descriptors.append(
                        TokenDescriptor(
                            address=token["address"],
                            decimals=token.get("decimals", 18),
                            symbol=token["symbol"],
                            chain_id=chain_id,
                            coin_key=token.get("coinKey") or token["symbol"],
                            name=token.get("name") or "",
                            logo_uri=token.get("logoURI") or "",
                            price_usd=token.get("priceUSD") or "0",
                        )
                    )
                except ValidationError as e:
                    logger.debug("Skipping malformed token on chain %d: %s", chain_id, e)
            result[chain_id] = descriptors

        return result

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "LiFiClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Async context manager exit."""
        await self.close()
