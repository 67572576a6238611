"""
Upstream transports. Both channels share the BaseChannel contract.
"""

from knowledge_broker.channels.base import BaseChannel, RawResponse
from knowledge_broker.channels.http import HttpChannel
from knowledge_broker.channels.rpc import RpcChannel

__all__ = [
    "BaseChannel",
    "RawResponse",
    "HttpChannel",
    "RpcChannel",
]
