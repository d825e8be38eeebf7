"""
Read-only inspection commands: check and list.

- check: verify a node answers reads
- list events: print the events of a stream, or of a persistent
  subscription's parked/checkpoint stream
- list streams: print the streams known to the node, or of one category
- list subscriptions: print the persistent subscriptions of the node

Invariants:
    - These commands never write
    - --recent shows the 50 most recent entries, oldest first
"""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import Iterator, List, Optional

from ..config import RECENT_COUNT, LogEndpoint
from ..errors import CerberusError, DevFault, UserFault
from ..log import (
    AccessDeniedError,
    LogConnection,
    LogError,
    LogSerializationError,
    Record,
    ResolvedRecord,
    StreamNotFoundError,
    SubscriptionInfo,
    create_connection,
)
from ..replication import SourceReader, Top
from ..replication.strategies import member_stream_name
from .export import ConnectionFactory, open_connection

logger = logging.getLogger(__name__)

SEPARATOR = "-" * 62
ALL_STREAMS = "$streams"
CATEGORY_EVENTS_PREFIX = "$ce-"


def events_stream_name(
    stream: str,
    group_id: Optional[str] = None,
    checkpoint: bool = False,
) -> str:
    """Stream to read for `list events`.

    With a group id, the persistent subscription's parked messages
    (or its checkpoint stream) are listed instead of the stream itself.
    """
    if group_id is None:
        return stream
    suffix = "checkpoint" if checkpoint else "parked"
    return f"$persistentsubscription-{stream}::{group_id}-{suffix}"


def streams_index_name(category: Optional[str] = None) -> str:
    """Stream to read for `list streams`."""
    if category:
        return f"{CATEGORY_EVENTS_PREFIX}{category}"
    return ALL_STREAMS


def render_event(resolved: ResolvedRecord) -> Iterator[str]:
    """Lines printed for one event."""
    yield SEPARATOR

    if resolved.is_dangling:
        yield f"Link: {resolved.original.data.decode('utf-8', errors='replace')} [DELETED]"
        return

    record: Record = resolved.event
    yield f"Number: {record.position}"
    yield f"Stream: {record.stream_id}"
    yield f"Type: {record.type}"
    yield f"Id: {record.id}"

    if not record.is_json:
        yield "Payload: <raw bytes we don't know how to deal with>"
        return

    yield "Payload: "
    try:
        yield json.dumps(record.data_json(), indent=2)
    except LogSerializationError as e:
        yield f"<Payload was supposed to be JSON: {e}>"


def render_stream_entry(number: int, resolved: ResolvedRecord) -> str:
    """Line printed for one entry of a streams index."""
    if resolved.is_dangling:
        return f"{number}: [DELETED] {resolved.original.link_pointer().stream_id}"
    return f"{number}: {member_stream_name(resolved)}"


def render_subscription(subscription: SubscriptionInfo) -> Iterator[str]:
    """Lines printed for one persistent subscription."""
    yield SEPARATOR
    yield f"Stream: {subscription.stream_id}"
    yield f"Group: {subscription.group_name}"
    yield f"Status: {subscription.status}"
    yield f"Connections : {subscription.connection_count}"
    yield (
        f"Processed / Known: {subscription.last_processed_position} / "
        f"{subscription.last_known_position} ({subscription.behind})"
    )
    yield f"Processing speed : {subscription.average_items_per_second} msgs/sec"


class InspectTool:
    """Read-only commands over one node.

    Example:
        >>> tool = InspectTool(LogEndpoint(host="localhost"))
        >>> for line in await tool.list_streams(category="orders"):
        ...     print(line)
    """

    def __init__(
        self,
        endpoint: LogEndpoint,
        connection_factory: ConnectionFactory = create_connection,
    ) -> None:
        self.endpoint = endpoint
        self.connection_factory = connection_factory

    async def check(self) -> str:
        """Verify the node answers a read of at most one entry.

        Raises:
            UserFault: If the node cannot be reached
        """
        failure = (
            f"Failed to connect to node {self.endpoint.host}:{self.endpoint.port} "
            "through its public TCP port."
        )

        try:
            connection = await open_connection(self.endpoint, self.connection_factory)
        except CerberusError as e:
            raise UserFault(failure, details={"reason": e.message}) from e

        try:
            async with aclosing(connection.read_stream(ALL_STREAMS, limit=1)) as entries:
                async for _ in entries:
                    break
        except (StreamNotFoundError, AccessDeniedError):
            # The node answered.
            pass
        except LogError as e:
            raise UserFault(failure, details={"reason": str(e)}) from e
        finally:
            await connection.close()

        return (
            f"Successfully connected to node {self.endpoint.host}:{self.endpoint.port} "
            "through its public TCP port."
        )

    async def list_events(
        self,
        stream: str,
        group_id: Optional[str] = None,
        checkpoint: bool = False,
        recent: bool = False,
    ) -> List[str]:
        """Lines describing every event of a stream."""
        stream_id = events_stream_name(stream, group_id, checkpoint)
        lines: List[str] = []

        async def collect(connection: LogConnection) -> None:
            async for resolved in self._read(connection, stream_id, recent):
                lines.extend(render_event(resolved))

        await self._with_connection(stream_id, collect)
        return lines

    async def list_streams(
        self,
        category: Optional[str] = None,
        recent: bool = False,
    ) -> List[str]:
        """Lines naming every stream of the node, or of a category."""
        stream_id = streams_index_name(category)
        lines: List[str] = []

        async def collect(connection: LogConnection) -> None:
            async for resolved in self._read(connection, stream_id, recent):
                lines.append(render_stream_entry(len(lines) + 1, resolved))

        await self._with_connection(stream_id, collect)

        if not lines:
            lines.append("You have no user-defined streams yet")
        return lines

    async def list_subscriptions(self) -> List[str]:
        """Lines describing every persistent subscription of the node."""
        connection = await open_connection(self.endpoint, self.connection_factory)
        try:
            subscriptions = await connection.list_subscriptions()
        except LogError as e:
            raise UserFault(f"Failed to list persistent subscriptions: {e}") from e
        finally:
            await connection.close()

        lines: List[str] = []
        for subscription in subscriptions:
            lines.extend(render_subscription(subscription))
        if not lines:
            lines.append("You have no persistent subscriptions yet")
        return lines

    def _read(self, connection: LogConnection, stream_id: str, recent: bool):
        limit = Top(RECENT_COUNT) if recent else None
        return SourceReader(connection).read(stream_id, limit)

    async def _with_connection(self, stream_id: str, action) -> None:
        connection = await open_connection(self.endpoint, self.connection_factory)
        try:
            await action(connection)
        except AccessDeniedError as e:
            raise UserFault(
                f"Action denied: You can't list [{stream_id}] stream with your current "
                "user credentials. It is also possible you haven't enabled or started "
                "system projections."
            ) from e
        except LogSerializationError as e:
            raise DevFault(f"Failed to decode an entry of [{stream_id}]: {e}") from e
        except LogError as e:
            raise UserFault(f"Error occurred when reading [{stream_id}]: {e}") from e
        finally:
            await connection.close()
