"""
In-memory event log implementation for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without a running log service

Invariants:
    - All data is lost on process exit
    - Provides the same ordering and atomicity guarantees as real backends
    - Link records are resolved the way the log service resolves them

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with LogConnection protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Sequence, Set, Tuple

from .base import (
    AccessDeniedError,
    EventData,
    LinkPointer,
    LogConnectionError,
    LogError,
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

logger = logging.getLogger(__name__)


@dataclass
class InMemoryStream:
    """In-memory stream storage."""
    records: List[Record] = field(default_factory=list)
    deleted: bool = False

    @property
    def next_position(self) -> int:
        return len(self.records)


class InMemoryLogConnection:
    """In-memory implementation of LogConnection for testing.

    Streams are created on first append. Deleting a stream keeps its
    name reserved so reads fail and links pointing into it dangle.

    Thread safety:
        Uses an asyncio lock around appends. Safe to use from
        multiple coroutines.

    Example:
        >>> log = InMemoryLogConnection()
        >>> await log.connect()
        >>> await log.append("orders-1", [EventData.json("OrderPlaced", {"id": 1})])
        >>> async for resolved in log.read_stream("orders-1"):
        ...     print(resolved.event)
    """

    def __init__(self, name: str = "memory") -> None:
        """Initialize in-memory log.

        Args:
            name: Label used in log messages
        """
        self.name = name
        self._streams: Dict[str, InMemoryStream] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._append_calls: List[tuple[str, int]] = []
        self._denied: Set[str] = set()
        self._fail_next: Optional[Exception] = None
        self._subscriptions: Dict[Tuple[str, str], SubscriptionSettings] = {}
        self._projections: Dict[str, ProjectionInfo] = {}
        self._projection_fault: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryLogConnection connected", extra={"log": self.name})

    async def close(self) -> None:
        """Close the connection. Data is kept so tests can inspect it."""
        self._connected = False
        logger.debug("InMemoryLogConnection closed", extra={"log": self.name})

    async def append(self, stream_id: str, events: Sequence[EventData]) -> int:
        """Append events atomically.

        Args:
            stream_id: Destination stream
            events: Events to append, in order

        Returns:
            Next position of the stream
        """
        self._check_connected()
        self._raise_injected()

        async with self._lock:
            stream = self._streams.setdefault(stream_id, InMemoryStream())
            if stream.deleted:
                raise StreamDeletedError(stream_id)

            staged = [
                Record(
                    stream_id=stream_id,
                    position=stream.next_position + offset,
                    type=event.type,
                    id=event.id,
                    is_json=event.is_json,
                    data=event.data,
                    metadata=event.metadata,
                )
                for offset, event in enumerate(events)
            ]
            stream.records.extend(staged)
            self._append_calls.append((stream_id, len(staged)))

        logger.debug(
            "Events appended to in-memory log",
            extra={"log": self.name, "stream": stream_id, "count": len(staged)},
        )

        return stream.next_position

    async def read_stream(
        self,
        stream_id: str,
        *,
        backwards: bool = False,
        limit: Optional[int] = None,
        resolve_links: bool = False,
    ) -> AsyncIterator[ResolvedRecord]:
        """Read a stream from the beginning, or from the end when backwards.

        Yields:
            ResolvedRecord for each record
        """
        self._check_connected()
        self._raise_injected()

        stream = self._open(stream_id)
        records = list(reversed(stream.records)) if backwards else list(stream.records)
        if limit is not None:
            records = records[:limit]

        for record in records:
            # Yield control like a network read would
            await asyncio.sleep(0)
            self._raise_injected()

            if resolve_links and record.is_link:
                yield ResolvedRecord(event=self._resolve(record), link=record)
            else:
                yield ResolvedRecord(event=record)

    def _open(self, stream_id: str) -> InMemoryStream:
        self._check_allowed(stream_id)

        stream = self._streams.get(stream_id)
        if stream is None:
            raise StreamNotFoundError(stream_id)
        if stream.deleted:
            raise StreamDeletedError(stream_id)
        return stream

    def _resolve(self, link: Record) -> Optional[Record]:
        """Follow a link; None when its target is gone.

        Raises:
            MalformedLinkError: If the link payload is not <position>@<stream>
        """
        pointer = link.link_pointer()

        target = self._streams.get(pointer.stream_id)
        if target is None or target.deleted or pointer.stream_id in self._denied:
            return None
        if pointer.position >= len(target.records):
            return None
        return target.records[pointer.position]

    def _check_connected(self) -> None:
        if not self._connected:
            raise LogConnectionError("Not connected")

    def _raise_injected(self) -> None:
        if self._fail_next is not None:
            error, self._fail_next = self._fail_next, None
            raise error

    # Administration

    async def create_subscription(
        self,
        stream_id: str,
        group_name: str,
        settings: SubscriptionSettings,
    ) -> None:
        """Create a persistent subscription on a live or future stream."""
        self._check_connected()
        self._raise_injected()
        self._check_allowed(stream_id)

        stream = self._streams.get(stream_id)
        if stream is not None and stream.deleted:
            raise StreamDeletedError(stream_id)
        if (stream_id, group_name) in self._subscriptions:
            raise SubscriptionExistsError(stream_id, group_name)

        self._subscriptions[(stream_id, group_name)] = settings
        logger.debug(
            "Subscription created in in-memory log",
            extra={"log": self.name, "stream": stream_id, "group": group_name},
        )

    async def update_subscription(
        self,
        stream_id: str,
        group_name: str,
        settings: SubscriptionSettings,
    ) -> None:
        """Replace the settings of an existing subscription."""
        self._check_connected()
        self._raise_injected()
        self._check_allowed(stream_id)

        if (stream_id, group_name) not in self._subscriptions:
            raise SubscriptionNotFoundError(stream_id, group_name)
        self._subscriptions[(stream_id, group_name)] = settings

    async def delete_subscription(self, stream_id: str, group_name: str) -> None:
        """Delete an existing subscription."""
        self._check_connected()
        self._raise_injected()
        self._check_allowed(stream_id)

        if self._subscriptions.pop((stream_id, group_name), None) is None:
            raise SubscriptionNotFoundError(stream_id, group_name)

    async def list_subscriptions(self) -> List[SubscriptionInfo]:
        """Subscriptions ordered by stream then group.

        Nothing consumes from an in-memory subscription, so every one is
        live with no connection and nothing processed.
        """
        self._check_connected()
        self._raise_injected()

        return [
            SubscriptionInfo(
                stream_id=stream_id,
                group_name=group_name,
                status="Live",
                last_known_position=self.get_record_count(stream_id) - 1,
            )
            for stream_id, group_name in sorted(self._subscriptions)
        ]

    async def create_projection(
        self,
        name: str,
        script: str,
        *,
        emit: bool = False,
        enabled: bool = True,
    ) -> None:
        """Register a projection. The script is stored, never run."""
        self._check_connected()
        self._raise_injected()

        if name in self._projections:
            raise LogError(f"Projection {name} already exists")

        if self._projection_fault is not None:
            info = ProjectionInfo(name=name, status="Faulted", reason=self._projection_fault)
            self._projection_fault = None
        else:
            info = ProjectionInfo(name=name, status="Running" if enabled else "Stopped")
        self._projections[name] = info

    async def get_projection(self, name: str) -> ProjectionInfo:
        """State of a registered projection."""
        self._check_connected()

        info = self._projections.get(name)
        if info is None:
            raise LogError(f"Projection {name} does not exist")
        return info

    def _check_allowed(self, stream_id: str) -> None:
        if stream_id in self._denied:
            raise AccessDeniedError(f"Access denied to stream {stream_id}")

    # Testing helpers

    async def append_link(self, stream_id: str, target: Record) -> int:
        """Append a link record pointing at target (testing helper)."""
        pointer = LinkPointer(position=target.position, stream_id=target.stream_id)
        return await self.append(
            stream_id,
            [EventData(type="$>", data=pointer.encode(), is_json=False)],
        )

    async def append_stream_reference(self, stream_id: str, member: str) -> int:
        """Append a "$@" record naming member (testing helper)."""
        return await self.append(
            stream_id,
            [EventData(type="$@", data=member.encode("utf-8"), is_json=False)],
        )

    def delete_stream(self, stream_id: str) -> None:
        """Delete a stream (testing helper)."""
        stream = self._streams.setdefault(stream_id, InMemoryStream())
        stream.records.clear()
        stream.deleted = True

    def deny(self, stream_id: str) -> None:
        """Refuse every read of stream_id (testing helper)."""
        self._denied.add(stream_id)

    def inject_failure(self, exception: Optional[Exception] = None) -> None:
        """Make the next read step or append raise (testing helper)."""
        self._fail_next = exception or LogError("Injected failure")

    def get_records(self, stream_id: str) -> List[Record]:
        """All records of a stream, in order (testing helper)."""
        stream = self._streams.get(stream_id)
        return list(stream.records) if stream else []

    def get_record_count(self, stream_id: str) -> int:
        """Record count of a stream (testing helper)."""
        return len(self.get_records(stream_id))

    def stream_names(self) -> List[str]:
        """Names of live streams (testing helper)."""
        return sorted(name for name, s in self._streams.items() if not s.deleted)

    @property
    def append_calls(self) -> List[tuple[str, int]]:
        """(stream, batch size) for every append call (testing helper)."""
        return list(self._append_calls)

    def fault_next_projection(self, reason: str) -> None:
        """Make the next created projection report Faulted (testing helper)."""
        self._projection_fault = reason

    def get_subscription(self, stream_id: str, group_name: str) -> Optional[SubscriptionSettings]:
        """Settings of a subscription, if it exists (testing helper)."""
        return self._subscriptions.get((stream_id, group_name))
