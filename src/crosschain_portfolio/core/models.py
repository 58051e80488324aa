"""Data models for tokens, balances, progress and portfolio snapshots."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ChainType(StrEnum):
    """Blockchain ecosystem, using LI.FI's chain type identifiers."""

    EVM = "EVM"
    SVM = "SVM"
    UTXO = "UTXO"
    MVM = "MVM"


class ProgressStatus(StrEnum):
    """Lifecycle state of a fetch cycle."""

    IDLE = "idle"
    FETCHING = "fetching"
    COMPLETE = "complete"


class TokenDescriptor(BaseModel):
    """
    One chain-specific token listing.

    Attributes
    ----------
    address : str
        Token contract address (or native placeholder) on ``chain_id``
    decimals : int
        Number of decimal places
    symbol : str
        Token symbol (e.g., 'USDC')
    chain_id : int
        Chain the listing belongs to
    coin_key : str
        Provider's cross-chain coin identifier
    name : str
        Full token name
    logo_uri : str
        Logo URL
    price_usd : str | None
        USD price as a decimal string, None when unknown

    """

    model_config = ConfigDict(populate_by_name=True)

    address: str
    decimals: int = 18
    symbol: str
    chain_id: int = Field(alias="chainId")
    coin_key: str = Field(default="", alias="coinKey")
    name: str = ""
    logo_uri: str = Field(default="", alias="logoURI")
    price_usd: str | None = Field(default=None, alias="priceUSD")


class TokenAmount(TokenDescriptor):
    """Token listing with a resolved balance in base units."""

    amount: int | None = None


class NetworkEntry(BaseModel):
    """One chain presence of a consolidated token."""

    chain_id: int
    address: str


class ConsolidatedToken(BaseModel):
    """
    Canonical cross-chain asset identity.

    Attributes
    ----------
    id : str
        Dedup key the token was consolidated under
    sort_key : str
        Lower-cased symbol for alphabetical ordering
    networks : list[NetworkEntry]
        One entry per (chain, address) where the token exists

    """

    id: str
    sort_key: str
    symbol: str
    name: str = ""
    decimals: int = 18
    coin_key: str = ""
    logo_uri: str = ""
    price_usd: str | None = None
    networks: list[NetworkEntry] = Field(default_factory=list)


class TokenBalance(BaseModel):
    """
    Balance of a token on one chain.

    Attributes
    ----------
    chain_id : int
        Chain holding the balance
    amount : str
        Base-unit integer kept as a string to avoid precision loss
    formatted_amount : str
        Decimal string of ``amount / 10**decimals``
    value_usd : float
        USD value of the balance

    """

    chain_id: int
    amount: str
    formatted_amount: str
    value_usd: float = 0.0


class TokenWithBalance(ConsolidatedToken):
    """Consolidated token enriched with per-chain balances and a USD total."""

    balances: dict[int, TokenBalance] = Field(default_factory=dict)
    total_value_usd: float = 0.0
    network_count: int = 0


class ProgressState(BaseModel):
    """
    Progress of one fetch epoch.

    Attributes
    ----------
    epoch : int
        Fetch cycle the state belongs to
    status : ProgressStatus
        Idle, fetching or complete
    processed : int
        Tokens whose batches reached a terminal outcome
    total : int
        Tokens scheduled for the epoch
    percentage : int
        Rounded completion percentage

    """

    epoch: int = 0
    status: ProgressStatus = ProgressStatus.IDLE
    processed: int = 0
    total: int = 0
    percentage: int = 0


class Chain(BaseModel):
    """Blockchain network as listed by the chain registry."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    chain_type: ChainType = Field(alias="chainType")
    name: str
    logo_uri: str = Field(default="", alias="logoURI")
    key: str = ""


class ConnectedAccount(BaseModel):
    """Wallet account reported by the connection layer."""

    model_config = ConfigDict(populate_by_name=True)

    address: str | None = None
    chain_type: ChainType = Field(alias="chainType")
    is_connected: bool = Field(default=True, alias="isConnected")


class BatchWarning(BaseModel):
    """Non-fatal record of a batch abandoned after exhausting its retries."""

    epoch: int
    chain_id: int
    wallet: str
    token_count: int
    attempts: int
    message: str


class PortfolioSnapshot(BaseModel):
    """
    Incremental view handed to consumers.

    Attributes
    ----------
    epoch : int
        Fetch cycle the snapshot belongs to
    tokens : list[TokenWithBalance]
        Grouped tokens sorted by descending USD value
    progress : ProgressState
        Progress of the epoch
    warnings : list[BatchWarning]
        Batches abandoned so far
    error : str | None
        Fatal error message, if the cycle aborted
    is_loading : bool
        Whether batches are still in flight
    previous_tokens : list[TokenWithBalance]
        Tokens of the last completed epoch, set while this epoch has no
        collection of its own yet (catalog loading or failed)

    """

    epoch: int
    tokens: list[TokenWithBalance] = Field(default_factory=list)
    progress: ProgressState = Field(default_factory=ProgressState)
    warnings: list[BatchWarning] = Field(default_factory=list)
    error: str | None = None
    is_loading: bool = False
    previous_tokens: list[TokenWithBalance] = Field(default_factory=list)

    @property
    def total_value_usd(self) -> float:
        """Sum of USD value across all tokens in the snapshot."""
        return sum(token.total_value_usd for token in self.tokens)
