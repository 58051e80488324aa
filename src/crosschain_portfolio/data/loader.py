"""Chain endpoint configuration loader."""

from functools import cache
from pathlib import Path
from typing import Any

import yaml


@cache
def load_chains() -> dict[str, Any]:
    """
    Load chain configuration from chains.yaml.

    Returns
    -------
    dict[str, Any]
        Chain configuration keyed by chain name

    """
    path = Path(__file__).parent / "chains.yaml"
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)["chains"]


def get_chain_config(chain: str) -> dict[str, Any]:
    """
    Get configuration for a specific chain.

    Parameters
    ----------
    chain : str
        Chain name (e.g., 'ethereum', 'solana')

    Returns
    -------
    dict[str, Any]
        Chain configuration including endpoints

    Raises
    ------
    KeyError
        If chain is not found in configuration

    """
    return load_chains()[chain]


def get_chain_name(chain_id: int) -> str:
    """
    Get chain name for a numeric chain ID.

    Raises
    ------
    KeyError
        If no configured chain has this ID

    """
    for name, config in load_chains().items():
        if config["chain_id"] == chain_id:
            return name
    msg = f"Unknown chain id {chain_id}"
    raise KeyError(msg)


def get_rpc_endpoints(chain_id: int) -> list[str]:
    """
    Get RPC or REST endpoints for a chain.

    Parameters
    ----------
    chain_id : int
        Chain ID

    Returns
    -------
    list[str]
        Endpoint URLs in preference order, empty if the chain is unknown

    """
    try:
        config = get_chain_config(get_chain_name(chain_id))
    except KeyError:
        return []
    return list(config.get("rpc_endpoints") or config.get("api_endpoints") or [])


def get_endpoints_by_type(chain_type: str) -> dict[int, list[str]]:
    """
    Get endpoints of every configured chain of one ecosystem.

    Parameters
    ----------
    chain_type : str
        Ecosystem name ('EVM', 'SVM' or 'UTXO')

    Returns
    -------
    dict[int, list[str]]
        Endpoint URLs keyed by chain ID

    """
    return {
        config["chain_id"]: list(config.get("rpc_endpoints") or config.get("api_endpoints") or [])
        for config in load_chains().values()
        if config["chain_type"] == chain_type
    }
