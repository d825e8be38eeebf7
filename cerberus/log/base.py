"""
Base protocol and types for event log connections.

This module defines the LogConnection protocol that all backends must
implement, along with the record model shared by readers and writers.

Invariants:
    - Positions are unique and increasing within a stream
    - Records are immutable once written
    - append() is all-or-nothing: either every event of the call becomes
      visible, in submitted order, or none does
    - A link that cannot be resolved is surfaced, never dropped

How to change safely:
    - Protocol changes require updating all implementations
    - Keep Record frozen; readers hand the same instance to several consumers
"""

from __future__ import annotations

import json
import logging
import uuid
from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

logger = logging.getLogger(__name__)

LINK_EVENT_TYPE = "$>"
STREAM_REFERENCE_EVENT_TYPE = "$@"
JSON_CONTENT_TYPE = "application/json"
BINARY_CONTENT_TYPE = "application/octet-stream"


class LogError(Exception):
    """Base exception for event log operations."""
    pass


class LogConnectionError(LogError):
    """Connection to the log service failed."""
    pass


class StreamNotFoundError(LogError):
    """The requested stream does not exist."""

    def __init__(self, stream_id: str) -> None:
        super().__init__(f"Stream {stream_id} does not exist")
        self.stream_id = stream_id


class StreamDeletedError(LogError):
    """The requested stream was deleted."""

    def __init__(self, stream_id: str) -> None:
        super().__init__(f"Stream {stream_id} is deleted")
        self.stream_id = stream_id


class AccessDeniedError(LogError):
    """The log service refused the operation for the current credentials."""
    pass


class LogSerializationError(LogError):
    """A record payload could not be decoded."""
    pass


class MalformedLinkError(LogSerializationError):
    """A link payload is not of the form <position>@<stream>."""
    pass


class SubscriptionExistsError(LogError):
    """A persistent subscription already exists for this stream and group."""

    def __init__(self, stream_id: str, group_name: str) -> None:
        super().__init__(f"Subscription {group_name} on stream {stream_id} already exists")
        self.stream_id = stream_id
        self.group_name = group_name


class SubscriptionNotFoundError(LogError):
    """No persistent subscription exists for this stream and group."""

    def __init__(self, stream_id: str, group_name: str) -> None:
        super().__init__(f"Subscription {group_name} on stream {stream_id} does not exist")
        self.stream_id = stream_id
        self.group_name = group_name


@dataclass(frozen=True)
class LinkPointer:
    """Target of a link record.

    Link records carry "<position>@<stream_id>" instead of a payload.

    Attributes:
        position: Position of the target record in its stream
        stream_id: Stream holding the target record
    """
    position: int
    stream_id: str

    @classmethod
    def parse(cls, payload: bytes) -> LinkPointer:
        """Parse a link payload.

        Raises:
            MalformedLinkError: If the payload is not "<position>@<stream>"
        """
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedLinkError(f"Link payload is not valid UTF-8: {e}") from e

        raw_position, sep, stream_id = text.partition("@")
        if not sep or not stream_id:
            raise MalformedLinkError(f"Link payload {text!r} is not <position>@<stream>")

        try:
            position = int(raw_position)
        except ValueError:
            raise MalformedLinkError(f"Link payload {text!r} has a non-numeric position")

        if position < 0:
            raise MalformedLinkError(f"Link payload {text!r} has a negative position")

        return cls(position=position, stream_id=stream_id)

    def encode(self) -> bytes:
        return str(self).encode("utf-8")

    def __str__(self) -> str:
        return f"{self.position}@{self.stream_id}"


@dataclass(frozen=True)
class EventData:
    """An event ready to be appended.

    Attributes:
        type: Event type
        data: Payload bytes
        id: Event id, kept across replication
        is_json: Whether data is a JSON document
        metadata: Metadata bytes
    """
    type: str
    data: bytes
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    is_json: bool = True
    metadata: bytes = b""

    @classmethod
    def json(cls, type: str, body: Any, id: Optional[uuid.UUID] = None) -> EventData:
        """Build a JSON event from a Python value."""
        return cls(
            type=type,
            data=json.dumps(body).encode("utf-8"),
            id=id or uuid.uuid4(),
            is_json=True,
        )

    @property
    def content_type(self) -> str:
        return JSON_CONTENT_TYPE if self.is_json else BINARY_CONTENT_TYPE


@dataclass(frozen=True)
class Record:
    """One entry of a stream.

    Attributes:
        stream_id: Stream the record belongs to
        position: Position within the stream (assigned at append time)
        type: Event type
        id: Event id
        is_json: Whether data is a JSON document
        data: Payload bytes
        metadata: Metadata bytes
    """
    stream_id: str
    position: int
    type: str
    id: uuid.UUID
    is_json: bool
    data: bytes
    metadata: bytes = b""

    @property
    def is_link(self) -> bool:
        return self.type == LINK_EVENT_TYPE

    @property
    def is_stream_reference(self) -> bool:
        return self.type == STREAM_REFERENCE_EVENT_TYPE

    def link_pointer(self) -> LinkPointer:
        """Decode the pointer carried by a link record.

        Raises:
            MalformedLinkError: If this is not a well-formed link
        """
        if not self.is_link:
            raise MalformedLinkError(
                f"Record {self.position}@{self.stream_id} of type {self.type} is not a link"
            )
        return LinkPointer.parse(self.data)

    def data_json(self) -> Any:
        """Parse data as JSON.

        Raises:
            LogSerializationError: If data is not valid JSON
        """
        try:
            return json.loads(self.data.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise LogSerializationError(f"Failed to parse record data as JSON: {e}")

    def to_event_data(self) -> EventData:
        """Write-side copy of this record, keeping type, id and payload."""
        return EventData(
            type=self.type,
            data=self.data,
            id=self.id,
            is_json=self.is_json,
            metadata=self.metadata,
        )

    def __str__(self) -> str:
        return f"Record({self.position}@{self.stream_id}, type={self.type})"


@dataclass(frozen=True)
class ResolvedRecord:
    """A record as yielded by a read, after link resolution.

    Attributes:
        event: The resolved record, or None when the link target is gone
        link: The link record that was followed, if any

    A record with a link but no event is dangling: it points at a deleted
    or inaccessible stream.
    """
    event: Optional[Record]
    link: Optional[Record] = None

    def __post_init__(self) -> None:
        if self.event is None and self.link is None:
            raise ValueError("ResolvedRecord needs an event or a link")

    @property
    def is_dangling(self) -> bool:
        return self.event is None

    @property
    def original(self) -> Record:
        """The record stored in the stream that was read."""
        return self.link if self.link is not None else self.event


class ConsumerStrategy(Enum):
    """How a persistent subscription hands events to its consumers."""

    DISPATCH_TO_SINGLE = "DispatchToSingle"
    ROUND_ROBIN = "RoundRobin"
    PINNED = "Pinned"


@dataclass(frozen=True)
class SubscriptionSettings:
    """Settings of a persistent subscription.

    Durations are in milliseconds. start_from None means the end of the
    stream.
    """
    resolve_links: bool = False
    extra_stats: bool = False
    start_from: Optional[int] = None
    message_timeout_ms: int = 30_000
    max_retry_count: int = 10
    live_buffer_size: int = 500
    read_batch_size: int = 20
    history_buffer_size: int = 500
    checkpoint_after_ms: int = 2_000
    min_checkpoint_count: int = 10
    max_checkpoint_count: int = 1_000
    max_subscriber_count: int = 0
    consumer_strategy: ConsumerStrategy = ConsumerStrategy.ROUND_ROBIN


@dataclass(frozen=True)
class SubscriptionInfo:
    """Summary of a persistent subscription as reported by the node.

    Positions are -1 when nothing was processed or known yet.
    """
    stream_id: str
    group_name: str
    status: str
    connection_count: int = 0
    last_processed_position: int = -1
    last_known_position: int = -1
    average_items_per_second: float = 0.0

    @property
    def behind(self) -> int:
        """Events known but not processed yet."""
        return self.last_known_position - self.last_processed_position


@dataclass(frozen=True)
class ProjectionInfo:
    """State of a user projection.

    Attributes:
        name: Projection name
        status: Node-reported status (Running, Stopped, Faulted...)
        reason: Why the projection faulted, when it did
    """
    name: str
    status: str
    reason: Optional[str] = None

    @property
    def is_faulted(self) -> bool:
        return self.status.startswith("Faulted")


@runtime_checkable
class LogConnection(Protocol):
    """Protocol for event log backends.

    One instance is owned by one replication session; it is never shared
    between concurrently running strategies.

    Example:
        >>> conn = KurrentDBLogConnection(endpoint)
        >>> await conn.connect()
        >>> async for resolved in conn.read_stream("orders-1"):
        ...     print(resolved.event)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the log service.

        Raises:
            LogConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
        ...

    @abstractmethod
    def read_stream(
        self,
        stream_id: str,
        *,
        backwards: bool = False,
        limit: Optional[int] = None,
        resolve_links: bool = False,
    ) -> AsyncIterator[ResolvedRecord]:
        """Read a stream.

        Args:
            stream_id: Stream to read
            backwards: Read from the end towards the beginning
            limit: Maximum number of records to yield
            resolve_links: Follow link records to their targets

        Yields:
            ResolvedRecord objects in read order

        Raises:
            StreamNotFoundError: If the stream does not exist
            StreamDeletedError: If the stream was deleted
            LogError: For other failures
        """
        ...

    @abstractmethod
    async def append(self, stream_id: str, events: Sequence[EventData]) -> int:
        """Append events to a stream in one atomic call.

        Args:
            stream_id: Destination stream
            events: Events in the order they must appear

        Returns:
            Position the next appended event will receive

        Raises:
            LogConnectionError: If not connected
            LogError: For other write failures
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the log service."""
        ...

    @abstractmethod
    async def create_subscription(
        self,
        stream_id: str,
        group_name: str,
        settings: SubscriptionSettings,
    ) -> None:
        """Create a persistent subscription.

        Raises:
            SubscriptionExistsError: If the group already exists on the stream
            StreamDeletedError: If the stream was deleted
            AccessDeniedError: If the credentials do not allow it
        """
        ...

    @abstractmethod
    async def update_subscription(
        self,
        stream_id: str,
        group_name: str,
        settings: SubscriptionSettings,
    ) -> None:
        """Replace the settings of a persistent subscription.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist
        """
        ...

    @abstractmethod
    async def delete_subscription(self, stream_id: str, group_name: str) -> None:
        """Delete a persistent subscription.

        Raises:
            SubscriptionNotFoundError: If the subscription does not exist
        """
        ...

    @abstractmethod
    async def list_subscriptions(self) -> List[SubscriptionInfo]:
        """Every persistent subscription of the node."""
        ...

    @abstractmethod
    async def create_projection(
        self,
        name: str,
        script: str,
        *,
        emit: bool = False,
        enabled: bool = True,
    ) -> None:
        """Create a continuous projection running script.

        Raises:
            LogError: If the node refuses the projection
        """
        ...

    @abstractmethod
    async def get_projection(self, name: str) -> ProjectionInfo:
        """Current state of a projection.

        Raises:
            LogError: If the projection does not exist
        """
        ...
