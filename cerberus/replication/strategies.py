"""
Replication strategies.

Each selection variant has one strategy deciding how entries read from the
index stream turn into appends on the destination:

- StreamStrategy: the index stream is the content. Batched appends to a
  destination stream of the same name.
- TypeStrategy: "$et-<type>" links resolve to events of unrelated streams.
  One append per event, to the event's own stream.
- CategoryStrategy: "$category-<category>" entries name member streams.
  Each member stream is read in full and copied in batches.

Invariants:
    - Destination order per stream equals source read order
    - Dangling links are skipped and counted, never followed
    - Any other log error propagates and aborts the run
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AsyncIterator, Dict, Protocol, Type

from ..log import LogSerializationError, Record, ResolvedRecord
from .selection import ByCategory, ByEventType, ByStream, Selection

if TYPE_CHECKING:
    from .session import ReplicationSession

logger = logging.getLogger(__name__)


class ReplicationStrategy(Protocol):
    """Turns index entries into destination appends."""

    description: str

    async def replicate(
        self,
        records: AsyncIterator[ResolvedRecord],
        session: ReplicationSession,
    ) -> None:
        ...


class StreamStrategy:
    """Copy one stream, in batches, to the stream of the same name."""

    description = "from a stream"

    async def replicate(
        self,
        records: AsyncIterator[ResolvedRecord],
        session: ReplicationSession,
    ) -> None:
        if not isinstance(session.selection, ByStream):
            raise ValueError(f"Stream strategy cannot copy {session.selection!r}")
        target = session.selection.name
        logger.info(f"Copy stream {target} ...")

        async for resolved in records:
            if resolved.is_dangling:
                session.skip_link(resolved)
                continue
            await session.writer.add(target, resolved.event)

        await session.writer.drain()
        session.mark_copied(target)


class TypeStrategy:
    """Copy each event of a type to its own origin stream, one at a time.

    Consecutive entries of a type index usually belong to unrelated streams,
    so no batching is attempted.
    """

    description = "by event's type"

    async def replicate(
        self,
        records: AsyncIterator[ResolvedRecord],
        session: ReplicationSession,
    ) -> None:
        async for resolved in records:
            if resolved.is_dangling:
                session.skip_link(resolved)
                continue

            record = resolved.event
            logger.info(
                f"Copy event {record.id} of type {record.type} to stream {record.stream_id}"
            )
            await session.writer.flush(record.stream_id, [record])


class CategoryStrategy:
    """Copy every member stream named by a category index."""

    description = "by category"

    async def replicate(
        self,
        records: AsyncIterator[ResolvedRecord],
        session: ReplicationSession,
    ) -> None:
        async for resolved in records:
            if resolved.is_dangling:
                session.skip_link(resolved)
                continue

            member = member_stream_name(resolved)

            if session.skip_copied_streams and member in session.copied_streams:
                logger.debug(f"Stream {member} already copied, skipping")
                continue

            await self._copy_member(member, session)

    async def _copy_member(self, member: str, session: ReplicationSession) -> None:
        logger.info(f"Copy stream {member} ...")

        async for inner in session.reader.read(member, resolve_links=False):
            await session.writer.add(member, inner.original)
        await session.writer.drain()

        session.mark_copied(member)


def member_stream_name(resolved: ResolvedRecord) -> str:
    """Name of the member stream a category index entry refers to.

    Entries are "$@" stream references carrying the bare name, or links.
    A followed link names the stream of the event it resolved to; an
    unfollowed one carries "<position>@<stream>".

    Raises:
        LogSerializationError: If the payload does not name a stream
    """
    if resolved.link is not None and resolved.event is not None:
        return resolved.event.stream_id

    record = resolved.original
    if record.is_link:
        return record.link_pointer().stream_id

    try:
        name = record.data.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise LogSerializationError(
            f"Category entry {record.position}@{record.stream_id} is not a stream name: {e}"
        ) from e

    if not name:
        raise LogSerializationError(
            f"Category entry {record.position}@{record.stream_id} has an empty stream name"
        )
    return name


STRATEGIES: Dict[type, Type[ReplicationStrategy]] = {
    ByStream: StreamStrategy,
    ByEventType: TypeStrategy,
    ByCategory: CategoryStrategy,
}


def strategy_for(selection: Selection) -> ReplicationStrategy:
    """Strategy matching a selection variant."""
    try:
        return STRATEGIES[type(selection)]()
    except KeyError:
        raise ValueError(f"Unsupported selection: {selection!r}")
