"""Balance aggregation: merge resolved batches into USD-valued, symbol-grouped tokens."""

import logging
from collections.abc import Iterable, Mapping, Sequence
from enum import StrEnum

from crosschain_portfolio.core.consolidator import TokenCatalog
from crosschain_portfolio.core.formatting import add_decimal_strings, format_units
from crosschain_portfolio.core.models import ConsolidatedToken, TokenAmount, TokenBalance, TokenWithBalance

logger = logging.getLogger(__name__)


class BalanceView(StrEnum):
    """
    Which tokens an emitted collection contains.

    CATALOG keeps every catalog token, with or without balances.
    HOLDINGS keeps only tokens holding at least one balance.
    """

    CATALOG = "catalog"
    HOLDINGS = "holdings"


def parse_price(price_usd: str | None) -> float:
    """Parse a USD price string, treating missing or malformed values as 0."""
    if not price_usd:
        return 0.0
    try:
        return float(price_usd)
    except ValueError:
        return 0.0


def build_balance(chain_id: int, amount: int, decimals: int, price_usd: str | None) -> TokenBalance:
    """
    Value a base-unit amount.

    Parameters
    ----------
    chain_id : int
        Chain holding the balance
    amount : int
        Amount in base units
    decimals : int
        Token decimals
    price_usd : str | None
        USD price string

    Returns
    -------
    TokenBalance
        Balance with formatted amount and USD value

    """
    formatted = format_units(amount, decimals)
    return TokenBalance(
        chain_id=chain_id,
        amount=str(amount),
        formatted_amount=formatted,
        value_usd=float(formatted) * parse_price(price_usd),
    )


def add_balance(balances: dict[int, TokenBalance], balance: TokenBalance) -> None:
    """
    Add a balance into a per-chain map.

    An existing entry for the same chain is summed into rather than
    overwritten; ``balance`` itself is never aliased into the map.
    """
    existing = balances.get(balance.chain_id)
    if existing is None:
        balances[balance.chain_id] = balance.model_copy()
        return

    balances[balance.chain_id] = TokenBalance(
        chain_id=balance.chain_id,
        amount=str(int(existing.amount) + int(balance.amount)),
        formatted_amount=add_decimal_strings(existing.formatted_amount, balance.formatted_amount),
        value_usd=existing.value_usd + balance.value_usd,
    )


def enrich_tokens(tokens: Iterable[ConsolidatedToken]) -> list[TokenWithBalance]:
    """Create empty balance holders for consolidated tokens."""
    return [
        TokenWithBalance(
            **token.model_dump(),
            balances={},
            total_value_usd=0.0,
            network_count=len(token.networks),
        )
        for token in tokens
    ]


def group_tokens_by_symbol(tokens: Iterable[TokenWithBalance]) -> list[TokenWithBalance]:
    """
    Fold tokens sharing a symbol into one entry.

    Balances are unioned with per-chain addition, totals summed and network
    lists unioned. The input is not mutated, and grouping an already
    grouped collection reproduces it.

    Parameters
    ----------
    tokens : Iterable[TokenWithBalance]
        Tokens to group

    Returns
    -------
    list[TokenWithBalance]
        One token per symbol, in first-seen order

    """
    grouped: dict[str, TokenWithBalance] = {}

    for token in tokens:
        current = grouped.get(token.symbol)
        if current is None:
            grouped[token.symbol] = token.model_copy(deep=True)
            continue

        for balance in token.balances.values():
            add_balance(current.balances, balance)
        current.total_value_usd += token.total_value_usd

        known = {(network.chain_id, network.address) for network in current.networks}
        for network in token.networks:
            if (network.chain_id, network.address) not in known:
                known.add((network.chain_id, network.address))
                current.networks.append(network.model_copy())
        current.network_count = len(current.networks)

    return list(grouped.values())


def sort_tokens_by_value(
    tokens: Iterable[TokenWithBalance],
    previous_order: Sequence[str] | None = None,
) -> list[TokenWithBalance]:
    """
    Sort tokens by descending USD value with a stable sort.

    Parameters
    ----------
    tokens : Iterable[TokenWithBalance]
        Tokens to sort
    previous_order : Sequence[str] | None
        Symbols in the order last emitted; ties keep this order

    Returns
    -------
    list[TokenWithBalance]
        Sorted tokens

    """
    ordered = list(tokens)
    if previous_order:
        rank = {symbol: index for index, symbol in enumerate(previous_order)}
        ordered.sort(key=lambda token: rank.get(token.symbol, len(rank)))
    return sorted(ordered, key=lambda token: token.total_value_usd, reverse=True)


def value_by_chain(tokens: Iterable[TokenWithBalance]) -> dict[int, float]:
    """Break down USD value by chain id."""
    by_chain: dict[int, float] = {}
    for token in tokens:
        for chain_id, balance in token.balances.items():
            by_chain[chain_id] = by_chain.get(chain_id, 0.0) + balance.value_usd
    return by_chain


class BalanceAggregator:
    """
    Running per-token balance collection for one fetch epoch.

    A new aggregator is created for every epoch. ``apply`` performs the
    whole read-merge-write synchronously, so handlers sharing one
    aggregator on the event loop never see a half-merged collection.

    Grouped entries are cached per symbol. ``apply`` marks the symbols it
    touched and ``snapshot`` regroups only those, so the per-batch cost
    follows the batch rather than the catalog.

    Parameters
    ----------
    catalog : TokenCatalog
        Canonical tokens balances are matched against
    view : BalanceView
        Whether emitted collections keep tokens without balances

    """

    def __init__(self, catalog: TokenCatalog, view: BalanceView = BalanceView.CATALOG) -> None:
        self.catalog = catalog
        self.view = view
        self._tokens: dict[str, TokenWithBalance] = {token.id: token for token in enrich_tokens(catalog)}
        self._symbols: dict[str, list[str]] = {}
        for token in self._tokens.values():
            self._symbols.setdefault(token.symbol, []).append(token.id)
        self._grouped: dict[str, TokenWithBalance] = {}
        self._dirty: set[str] = set(self._symbols)
        self._order: list[str] = []

    def apply(self, balances: Mapping[int, Iterable[TokenAmount]]) -> int:
        """
        Merge one resolved batch into the running collection.

        Parameters
        ----------
        balances : Mapping[int, Iterable[TokenAmount]]
            Chain id to token amounts returned by a balance provider

        Returns
        -------
        int
            Number of balance entries merged

        """
        merged = 0

        for raw_chain_id, amounts in balances.items():
            chain_id = int(raw_chain_id)
            for entry in amounts:
                if not entry.amount:
                    continue

                match = self.catalog.match(chain_id, entry.address)
                if match is None:
                    logger.debug("No catalog token at %s on chain %d", entry.address, chain_id)
                    continue

                token = self._tokens[match.id]
                balance = build_balance(chain_id, entry.amount, entry.decimals, entry.price_usd or match.price_usd)
                add_balance(token.balances, balance)
                token.total_value_usd += balance.value_usd
                self._dirty.add(token.symbol)
                merged += 1

        return merged

    def _regroup(self) -> None:
        for symbol in self._dirty:
            members = (self._tokens[token_id] for token_id in self._symbols[symbol])
            self._grouped[symbol] = group_tokens_by_symbol(members)[0]
        self._dirty.clear()

    def snapshot(self) -> list[TokenWithBalance]:
        """
        Group, filter and sort the running collection.

        Returns
        -------
        list[TokenWithBalance]
            Grouped copies detached from the running collection. Entries
            of symbols untouched since the last call are reused.

        """
        self._regroup()
        grouped = (self._grouped[symbol] for symbol in self._symbols)
        if self.view is BalanceView.HOLDINGS:
            grouped = (token for token in grouped if token.balances)

        tokens = sort_tokens_by_value(grouped, self._order)
        self._order = [token.symbol for token in tokens]
        return tokens
