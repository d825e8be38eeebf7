"""
Source reader for replication.

Exposes an index stream of the source log as a lazy sequence of
ResolvedRecord, in ascending position order, with link resolution on.

Invariants:
    - Full history is read from the beginning
    - Top(n) reads at most n entries from the end, then yields them in
      ascending order
    - A missing or deleted stream reads as empty
    - Dangling links are yielded, not raised
    - Each sequence is consumed at most once; call read() again to restart
"""

from __future__ import annotations

import logging
from contextlib import aclosing
from typing import AsyncIterator

from ..log import LogConnection, ResolvedRecord, StreamDeletedError, StreamNotFoundError
from .selection import Limit

logger = logging.getLogger(__name__)


class SourceReader:
    """Lazy reader over one source connection.

    Attributes:
        connection: Source log connection (not owned: never closed here)
        records_read: Entries yielded so far across all reads
        dangling_links: Dangling links yielded so far
    """

    def __init__(self, connection: LogConnection) -> None:
        self.connection = connection
        self.records_read = 0
        self.dangling_links = 0

    async def read(
        self,
        stream_id: str,
        limit: Limit = None,
        resolve_links: bool = True,
    ) -> AsyncIterator[ResolvedRecord]:
        """Read stream_id.

        Args:
            stream_id: Stream to read
            limit: None for the full history, Top(n) for the n most recent
            resolve_links: Follow link records to the events they point at

        Yields:
            ResolvedRecord in ascending position order
        """
        if limit is None:
            try:
                async with aclosing(
                    self.connection.read_stream(stream_id, resolve_links=resolve_links)
                ) as source:
                    async for resolved in source:
                        yield self._count(resolved)
            except (StreamNotFoundError, StreamDeletedError) as e:
                logger.warning(f"Nothing to read: {e}")
            return

        # The tail is bounded by limit.count, so buffering it is fine.
        tail = []
        try:
            async with aclosing(
                self.connection.read_stream(
                    stream_id,
                    backwards=True,
                    limit=limit.count,
                    resolve_links=resolve_links,
                )
            ) as source:
                async for resolved in source:
                    tail.append(resolved)
                    if len(tail) >= limit.count:
                        break
        except (StreamNotFoundError, StreamDeletedError) as e:
            logger.warning(f"Nothing to read: {e}")
            return

        for resolved in reversed(tail):
            yield self._count(resolved)

    def _count(self, resolved: ResolvedRecord) -> ResolvedRecord:
        self.records_read += 1
        if resolved.is_dangling:
            self.dangling_links += 1
            logger.debug(f"Dangling link {resolved.original}")
        return resolved
