"""Chain endpoint configuration."""

from crosschain_portfolio.data.loader import (
    get_chain_config,
    get_chain_name,
    get_endpoints_by_type,
    get_rpc_endpoints,
    load_chains,
)

__all__ = [
    "get_chain_config",
    "get_chain_name",
    "get_endpoints_by_type",
    "get_rpc_endpoints",
    "load_chains",
]
