"""API module - JSON-RPC client and head-change feed."""

from .chain_notify import HeadChangeFeed
from .rpc_client import RpcClient, RpcError, RpcTransportError, Target, endpoint_to_url

__all__ = ["HeadChangeFeed", "RpcClient", "RpcError", "RpcTransportError", "Target", "endpoint_to_url"]
