"""
Batch writer for replication.

Accumulates records bound for the destination log and appends them in
bounded batches.

Invariants:
    - Records of one destination stream are appended in the order they
      were added, across batch boundaries
    - Each append call holds records for a single stream, at most
      batch_size of them
    - A failed append propagates; nothing is retried and the buffer is
      discarded with the session
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Set

from ..config import DEFAULT_BATCH_SIZE
from ..log import EventData, LogConnection, Record

logger = logging.getLogger(__name__)


class BatchWriter:
    """Buffered appender over one destination connection.

    Only one destination stream is buffered at a time: adding a record for
    another stream flushes the current buffer first.

    Attributes:
        connection: Destination log connection (not owned: never closed here)
        batch_size: Maximum records per append call
        append_calls: Append calls issued so far
        records_written: Records committed so far
        streams_written: Streams that received at least one append

    Example:
        >>> writer = BatchWriter(destination)
        >>> for record in records:
        ...     await writer.add(record.stream_id, record)
        >>> await writer.drain()
    """

    def __init__(self, connection: LogConnection, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be greater than 0")

        self.connection = connection
        self.batch_size = batch_size
        self.append_calls = 0
        self.records_written = 0
        self.streams_written: Set[str] = set()
        self._stream: Optional[str] = None
        self._buffer: List[EventData] = []

    @property
    def pending(self) -> int:
        """Records buffered and not yet appended."""
        return len(self._buffer)

    async def flush(self, stream_id: str, records: Sequence[Record]) -> None:
        """Append records to stream_id in one call, bypassing the buffer."""
        await self._append(stream_id, [record.to_event_data() for record in records])

    async def add(self, stream_id: str, record: Record) -> None:
        """Buffer record for stream_id, appending when the batch is full."""
        if self._stream is not None and self._stream != stream_id:
            await self.drain()

        self._stream = stream_id
        self._buffer.append(record.to_event_data())

        if len(self._buffer) >= self.batch_size:
            await self.drain()

    async def drain(self) -> None:
        """Append whatever is buffered."""
        if self._stream is None or not self._buffer:
            return

        batch, self._buffer = self._buffer, []
        await self._append(self._stream, batch)

    async def _append(self, stream_id: str, events: List[EventData]) -> None:
        if not events:
            return

        await self.connection.append(stream_id, events)
        self.append_calls += 1
        self.records_written += len(events)
        self.streams_written.add(stream_id)

        logger.debug(
            "Batch appended",
            extra={"stream": stream_id, "count": len(events)},
        )
