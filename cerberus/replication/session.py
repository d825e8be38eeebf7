"""
Replication session: one run of the replication engine.

A session ties a selection and a limit to a source and a destination
connection, runs the matching strategy, and reports what it did.

Invariants:
    - One source and one destination connection per session, passed in
      explicitly and never closed by the session
    - The first failure aborts the run; records already appended stay
    - Nothing is persisted: a rerun starts over and may append duplicates
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Set

from ..config import ReplicationConfig
from ..errors import DevFault, UserFault
from ..log import LogConnection, LogError, LogSerializationError, ResolvedRecord
from .reader import SourceReader
from .selection import Limit, Selection
from .strategies import strategy_for
from .writer import BatchWriter

logger = logging.getLogger(__name__)


@dataclass
class ReplicationStats:
    """Summary of a replication run.

    Attributes:
        records_read: Entries read from the source, index and member streams
        records_written: Records appended to the destination
        append_calls: Append calls issued to the destination
        streams_copied: Distinct destination streams written to
        links_skipped: Dangling links skipped
        duration_ms: Wall-clock duration
    """

    records_read: int = 0
    records_written: int = 0
    append_calls: int = 0
    streams_copied: int = 0
    links_skipped: int = 0
    duration_ms: int = 0


class ReplicationSession:
    """One replication run.

    Attributes:
        selection: What to copy
        limit: None for the full history, Top(n) for the tail of the index
        reader: Reader over the source connection
        writer: Batch writer over the destination connection
        copied_streams: Streams fully copied during this run, written to or not

    Example:
        >>> session = ReplicationSession(source, destination, ByStream("orders-1"))
        >>> stats = await session.run()
        >>> print(f"{stats.records_written} records copied")
    """

    def __init__(
        self,
        source: LogConnection,
        destination: LogConnection,
        selection: Selection,
        limit: Limit = None,
        config: Optional[ReplicationConfig] = None,
    ) -> None:
        config = config or ReplicationConfig()

        self.selection = selection
        self.limit = limit
        self.skip_copied_streams = config.skip_copied_streams
        self.reader = SourceReader(source)
        self.writer = BatchWriter(destination, batch_size=config.batch_size)
        self.copied_streams: Set[str] = set()
        self.links_skipped = 0

    def mark_copied(self, stream_id: str) -> None:
        self.copied_streams.add(stream_id)

    def skip_link(self, resolved: ResolvedRecord) -> None:
        """Count a dangling link and move on.

        Raises:
            MalformedLinkError: If the link does not point anywhere at all
        """
        link = resolved.original
        pointer = link.link_pointer()
        self.links_skipped += 1
        logger.warning(
            f"Skipping link {link.position}@{link.stream_id} to {pointer}: "
            "its target stream is deleted or inaccessible"
        )

    async def run(self) -> ReplicationStats:
        """Run the strategy matching the selection.

        Returns:
            ReplicationStats for the run

        Raises:
            UserFault: On any log error (unreachable node, access denied...)
            DevFault: On a payload that cannot be decoded
        """
        strategy = strategy_for(self.selection)
        index_stream = self.selection.index_stream
        start_time = time.time()

        logger.info(
            f"Replicating {strategy.description}",
            extra={
                "index_stream": index_stream,
                "limit": self.limit.count if self.limit else None,
            },
        )

        records = self.reader.read(index_stream, self.limit)

        try:
            await strategy.replicate(records, self)
        except LogSerializationError as e:
            raise DevFault(f"Error occurred when exporting {strategy.description}: {e}") from e
        except LogError as e:
            raise UserFault(f"Error occurred when exporting {strategy.description}: {e}") from e
        finally:
            await records.aclose()

        stats = self.stats(start_time)
        logger.info(
            "Replication completed",
            extra={
                "records_written": stats.records_written,
                "append_calls": stats.append_calls,
                "streams_copied": stats.streams_copied,
                "links_skipped": stats.links_skipped,
                "duration_ms": stats.duration_ms,
            },
        )
        return stats

    def stats(self, start_time: Optional[float] = None) -> ReplicationStats:
        """Current counters."""
        return ReplicationStats(
            records_read=self.reader.records_read,
            records_written=self.writer.records_written,
            append_calls=self.writer.append_calls,
            streams_copied=len(self.writer.streams_written),
            links_skipped=self.links_skipped,
            duration_ms=int((time.time() - start_time) * 1000) if start_time else 0,
        )


async def replicate(
    source: LogConnection,
    destination: LogConnection,
    selection: Selection,
    limit: Limit = None,
    config: Optional[ReplicationConfig] = None,
) -> ReplicationStats:
    """Run one replication session over already connected connections."""
    session = ReplicationSession(source, destination, selection, limit, config)
    return await session.run()
