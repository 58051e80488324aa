"""Configuration loading from environment variables."""

import os
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from crosschain_portfolio.core.pipeline import FetchConfig
from crosschain_portfolio.errors import ConfigurationError

DEFAULT_API_URL = "https://li.quest/v1"

ENV_API_URL = "LIFI_API_URL"
ENV_API_KEY = "LIFI_API_KEY"
ENV_BATCH_SIZE = "PORTFOLIO_BATCH_SIZE"
ENV_FETCH_DELAY = "PORTFOLIO_FETCH_DELAY"
ENV_MAX_RETRIES = "PORTFOLIO_MAX_RETRIES"


class Settings(BaseModel):
    """
    Application settings.

    Attributes
    ----------
    api_url : str
        LI.FI API base URL
    api_key : str | None
        Optional LI.FI API key
    request_timeout : float
        HTTP timeout in seconds
    fetch : FetchConfig
        Fetch cycle tuning

    """

    api_url: str
    api_key: str | None = None
    request_timeout: float = Field(default=30.0, gt=0)
    fetch: FetchConfig = Field(default_factory=FetchConfig)


def load_settings(env: Mapping[str, str] | None = None, **overrides: Any) -> Settings:
    """
    Build settings from environment variables and explicit overrides.

    Parameters
    ----------
    env : Mapping[str, str] | None
        Environment to read. Uses ``os.environ`` if None.
    **overrides : Any
        ``api_url``, ``api_key``, ``request_timeout`` or any ``FetchConfig``
        field; None values are ignored

    Returns
    -------
    Settings
        Validated settings

    Raises
    ------
    ConfigurationError
        If the API URL is missing or a value is invalid

    """
    env = os.environ if env is None else env
    overrides = {key: value for key, value in overrides.items() if value is not None}

    api_url = overrides.pop("api_url", None) or env.get(ENV_API_URL)
    if not api_url:
        msg = f"Missing {ENV_API_URL} environment variable."
        raise ConfigurationError(msg)

    fetch: dict[str, Any] = {}
    for env_name, field_name in (
        (ENV_BATCH_SIZE, "batch_size"),
        (ENV_FETCH_DELAY, "fetch_delay"),
        (ENV_MAX_RETRIES, "max_retries"),
    ):
        if env.get(env_name):
            fetch[field_name] = env[env_name]
    for field_name in FetchConfig.model_fields:
        if field_name in overrides:
            fetch[field_name] = overrides.pop(field_name)

    try:
        return Settings(
            api_url=api_url.rstrip("/"),
            api_key=overrides.pop("api_key", None) or env.get(ENV_API_KEY) or None,
            fetch=FetchConfig(**fetch),
            **overrides,
        )
    except ValidationError as e:
        msg = f"Invalid configuration: {e}"
        raise ConfigurationError(msg) from e
