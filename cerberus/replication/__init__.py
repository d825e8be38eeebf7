"""
Cross-cluster replication engine.

Copies events from a source log to a destination log:
- selection: which index stream to read and how much of it
- reader: lazy, link-resolving reads of the source
- strategies: how index entries map to destination appends
- writer: bounded, order-preserving batched appends
- session: one run tying the above together

Invariants:
    - Per destination stream, append order equals read order
    - The first error aborts the run; nothing is retried or resumed
"""

from .reader import SourceReader
from .selection import (
    ByCategory,
    ByEventType,
    ByStream,
    Limit,
    Selection,
    Top,
    resolve,
    resolve_limit,
    resolve_selection,
)
from .session import ReplicationSession, ReplicationStats, replicate
from .strategies import (
    CategoryStrategy,
    ReplicationStrategy,
    StreamStrategy,
    TypeStrategy,
    strategy_for,
)
from .writer import BatchWriter

__all__ = [
    # Selection
    "ByStream",
    "ByEventType",
    "ByCategory",
    "Selection",
    "Top",
    "Limit",
    "resolve",
    "resolve_selection",
    "resolve_limit",
    # Pipeline
    "SourceReader",
    "BatchWriter",
    "ReplicationStrategy",
    "StreamStrategy",
    "TypeStrategy",
    "CategoryStrategy",
    "strategy_for",
    # Session
    "ReplicationSession",
    "ReplicationStats",
    "replicate",
]
