"""Exception hierarchy for catalog, balance and configuration failures."""


class PortfolioError(Exception):
    """Base exception for all portfolio pipeline errors."""


class ConfigurationError(PortfolioError):
    """Raised at startup when required settings are missing or invalid."""


class CatalogFetchError(PortfolioError):
    """Raised when token metadata or chain data cannot be fetched; fatal for a fetch cycle."""


class LiFiAPIError(CatalogFetchError):
    """Exception raised for LI.FI API errors."""


class BalanceFetchError(PortfolioError):
    """
    Exception raised when a balance provider call fails.

    Parameters
    ----------
    message : str
        Error description
    status_code : int | None
        HTTP status code of the failed response, if any
    chain_id : int | None
        Chain the failed request targeted

    """

    def __init__(self, message: str, status_code: int | None = None, chain_id: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.chain_id = chain_id


class UnsupportedChainError(BalanceFetchError):
    """Raised when no balance provider can serve a chain."""
