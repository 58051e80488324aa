"""Token catalog consolidation across chains."""

import logging
from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from crosschain_portfolio.core.models import ConsolidatedToken, NetworkEntry, TokenDescriptor

logger = logging.getLogger(__name__)


class DedupKey(StrEnum):
    """
    Policy deciding which listings collapse into one consolidated token.

    SYMBOL merges every listing sharing a symbol across all chains.
    SYMBOL_AND_CHAIN keeps one consolidated token per symbol and chain.
    """

    SYMBOL = "symbol"
    SYMBOL_AND_CHAIN = "symbol_and_chain"


def make_token_key(symbol: str, chain_id: int, policy: DedupKey = DedupKey.SYMBOL) -> str:
    """
    Build the dedup key for a listing.

    Parameters
    ----------
    symbol : str
        Token symbol
    chain_id : int
        Chain of the listing
    policy : DedupKey
        Dedup policy

    Returns
    -------
    str
        ``symbol`` or ``symbol-chainId``

    """
    if policy is DedupKey.SYMBOL_AND_CHAIN:
        return f"{symbol}-{chain_id}"
    return symbol


def _parse_chain_id(raw: Any) -> int | None:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _coerce_descriptor(raw: Any, chain_id: int) -> TokenDescriptor | None:
    if isinstance(raw, TokenDescriptor):
        return raw
    if not isinstance(raw, Mapping):
        return None
    if not raw.get("symbol") or not raw.get("address"):
        return None
    data = {**raw, "chainId": chain_id}
    data.pop("chain_id", None)
    try:
        return TokenDescriptor.model_validate(data)
    except ValidationError as e:
        logger.debug("Skipping invalid token on chain %s: %s", chain_id, e)
        return None


def consolidate_tokens(
    tokens_map: Mapping[Any, Iterable[Any]] | None,
    policy: DedupKey = DedupKey.SYMBOL,
) -> list[ConsolidatedToken]:
    """
    Merge per-chain token lists into canonical cross-chain tokens.

    The first listing seen for a key provides the representative metadata;
    later listings only contribute network entries. Listings without a
    symbol or address are skipped.

    Parameters
    ----------
    tokens_map : Mapping[Any, Iterable[Any]] | None
        Chain id (int or numeric string) to token descriptors or raw dicts
    policy : DedupKey
        Dedup policy

    Returns
    -------
    list[ConsolidatedToken]
        Consolidated tokens in first-seen order

    """
    if not isinstance(tokens_map, Mapping):
        return []

    tokens_by_key: dict[str, ConsolidatedToken] = {}
    seen_networks: dict[str, set[tuple[int, str]]] = {}

    for raw_chain_id, chain_tokens in tokens_map.items():
        chain_id = _parse_chain_id(raw_chain_id)
        if chain_id is None or not isinstance(chain_tokens, Iterable) or isinstance(chain_tokens, str | bytes):
            continue

        for raw_token in chain_tokens:
            token = _coerce_descriptor(raw_token, chain_id)
            if token is None or not token.symbol or not token.address:
                continue

            key = make_token_key(token.symbol, chain_id, policy)
            network = (chain_id, token.address)
            existing = tokens_by_key.get(key)

            if existing is not None:
                if network not in seen_networks[key]:
                    seen_networks[key].add(network)
                    existing.networks.append(NetworkEntry(chain_id=chain_id, address=token.address))
                continue

            tokens_by_key[key] = ConsolidatedToken(
                id=key,
                sort_key=token.symbol.lower(),
                symbol=token.symbol,
                name=token.name,
                decimals=token.decimals,
                coin_key=token.coin_key,
                logo_uri=token.logo_uri,
                price_usd=token.price_usd,
                networks=[NetworkEntry(chain_id=chain_id, address=token.address)],
            )
            seen_networks[key] = {network}

    return list(tokens_by_key.values())


class TokenCatalog:
    """
    Indexed, immutable view over a consolidated token list.

    Parameters
    ----------
    tokens : Iterable[ConsolidatedToken]
        Consolidated tokens in catalog order

    """

    def __init__(self, tokens: Iterable[ConsolidatedToken]) -> None:
        self.tokens: list[ConsolidatedToken] = list(tokens)
        self._by_id: dict[str, ConsolidatedToken] = {}
        self._by_symbol: dict[str, list[str]] = {}
        self._by_chain: dict[int, list[str]] = {}
        self._by_network: dict[tuple[int, str], str] = {}

        for token in self.tokens:
            self._by_id[token.id] = token
            self._by_symbol.setdefault(token.sort_key, []).append(token.id)
            for network in token.networks:
                chain_ids = self._by_chain.setdefault(network.chain_id, [])
                if not chain_ids or chain_ids[-1] != token.id:
                    chain_ids.append(token.id)
                # First token in catalog order wins an address
                self._by_network.setdefault((network.chain_id, network.address.lower()), token.id)

    @classmethod
    def from_tokens_map(
        cls,
        tokens_map: Mapping[Any, Iterable[Any]] | None,
        policy: DedupKey = DedupKey.SYMBOL,
    ) -> "TokenCatalog":
        """Consolidate a raw per-chain token map and index the result."""
        return cls(consolidate_tokens(tokens_map, policy))

    def __len__(self) -> int:
        return len(self.tokens)

    def __iter__(self):
        return iter(self.tokens)

    @property
    def chain_ids(self) -> list[int]:
        """Chains with at least one token, in first-seen order."""
        return list(self._by_chain)

    def get(self, token_id: str) -> ConsolidatedToken | None:
        """Get a token by its id."""
        return self._by_id.get(token_id)

    def by_symbol(self, symbol: str) -> list[ConsolidatedToken]:
        """Get tokens by case-insensitive symbol."""
        return [self._by_id[token_id] for token_id in self._by_symbol.get(symbol.lower(), [])]

    def by_chain(self, chain_id: int) -> list[ConsolidatedToken]:
        """Get tokens present on a chain."""
        return [self._by_id[token_id] for token_id in self._by_chain.get(chain_id, [])]

    def match(self, chain_id: int, address: str) -> ConsolidatedToken | None:
        """
        Find the token listed at ``address`` on ``chain_id``.

        Address comparison is case-insensitive.
        """
        token_id = self._by_network.get((chain_id, address.lower()))
        return self._by_id[token_id] if token_id is not None else None

    def filter(self, symbol: str | None = None, chain_id: int | None = None) -> list[ConsolidatedToken]:
        """Filter tokens by symbol and/or chain, preserving catalog order."""
        tokens = self.tokens
        if symbol:
            ids = set(self._by_symbol.get(symbol.lower(), []))
            tokens = [token for token in tokens if token.id in ids]
        if chain_id is not None:
            ids = set(self._by_chain.get(chain_id, []))
            tokens = [token for token in tokens if token.id in ids]
        return tokens

    def tokens_for_chain(self, chain_id: int) -> list[TokenDescriptor]:
        """
        Build chain-specific descriptors for every listing on a chain.

        A token listed at several addresses on the same chain yields one
        descriptor per address.

        Parameters
        ----------
        chain_id : int
            Chain to prepare tokens for

        Returns
        -------
        list[TokenDescriptor]
            Descriptors ready to hand to a balance provider

        """
        descriptors = []
        for token in self.by_chain(chain_id):
            for network in token.networks:
                if network.chain_id != chain_id:
                    continue
                descriptors.append(
                    TokenDescriptor(
                        address=network.address,
                        chain_id=chain_id,
                        decimals=token.decimals,
                        symbol=token.symbol,
                        name=token.name,
                        logo_uri=token.logo_uri,
                        price_usd=token.price_usd,
                        coin_key=token.coin_key,
                    )
                )
        return descriptors

    def tokens_by_chain(self) -> dict[int, list[TokenDescriptor]]:
        """Group the whole catalog into chain-specific descriptors."""
        return {chain_id: self.tokens_for_chain(chain_id) for chain_id in self._by_chain}
