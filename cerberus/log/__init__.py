"""
Event log connection abstraction for Cerberus.

This module provides a pluggable backend interface supporting:
- KurrentDB / EventStoreDB (production)
- In-memory (for testing)

Invariants:
    - Reads yield records in position order for the requested direction
    - append() is all-or-nothing per call
    - Links whose target is gone are surfaced as dangling records

How to change safely:
    - New backends must implement the LogConnection protocol
    - Keep link resolution semantics identical across backends
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import (
    AccessDeniedError,
    ConsumerStrategy,
    EventData,
    LinkPointer,
    LogConnection,
    LogConnectionError,
    LogError,
    LogSerializationError,
    MalformedLinkError,
    ProjectionInfo,
    Record,
    ResolvedRecord,
    StreamDeletedError,
    StreamNotFoundError,
    SubscriptionExistsError,
    SubscriptionInfo,
    SubscriptionNotFoundError,
    SubscriptionSettings,
)
from .kurrentdb import KurrentDBLogConnection
from .memory import InMemoryLogConnection

if TYPE_CHECKING:
    from ..config import LogEndpoint


def create_connection(endpoint: "LogEndpoint") -> LogConnection:
    """Factory function to create a log connection from an endpoint.

    Args:
        endpoint: Host, port, credentials and backend kind

    Returns:
        Appropriate LogConnection implementation (not yet connected)

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import LogBackend

    if endpoint.backend == LogBackend.KURRENTDB:
        return KurrentDBLogConnection(endpoint)
    elif endpoint.backend == LogBackend.MEMORY:
        return InMemoryLogConnection(name=str(endpoint))
    else:
        raise ValueError(f"Unsupported log backend: {endpoint.backend}")


__all__ = [
    # Protocol and types
    "LogConnection",
    "Record",
    "ResolvedRecord",
    "EventData",
    "LinkPointer",
    "LogError",
    "LogConnectionError",
    "LogSerializationError",
    "MalformedLinkError",
    "StreamNotFoundError",
    "StreamDeletedError",
    "AccessDeniedError",
    "SubscriptionExistsError",
    "SubscriptionNotFoundError",
    # Administration
    "ConsumerStrategy",
    "SubscriptionSettings",
    "SubscriptionInfo",
    "ProjectionInfo",
    # Factory
    "create_connection",
    # Implementations
    "KurrentDBLogConnection",
    "InMemoryLogConnection",
]
