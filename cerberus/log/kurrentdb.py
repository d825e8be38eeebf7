"""
KurrentDB / EventStoreDB log connection.

This module provides the production backend, built on the asyncio client
of kurrentdbclient. It works with:
- KurrentDB
- EventStoreDB 20.x and later (gRPC interface)

Invariants:
    - Appends use StreamState.ANY: replication never asserts a version
    - Event ids, types, content types and metadata are passed through as is
    - A link the server could not resolve is surfaced as a dangling record
    - Client exceptions never leak; they are wrapped in LogError subclasses

How to change safely:
    - Test against a real node before deploying
    - Keep read semantics aligned with InMemoryLogConnection
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any, List, Optional
from urllib.parse import quote

from .base import (
    JSON_CONTENT_TYPE,
    LINK_EVENT_TYPE,
    AccessDeniedError,
    EventData,
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

# Try to import kurrentdbclient, provide helpful message if not installed
try:
    from kurrentdbclient import AsyncKurrentDBClient, NewEvent, RecordedEvent, StreamState
    from kurrentdbclient.exceptions import NotFoundError

    KURRENTDB_AVAILABLE = True
except ImportError:
    KURRENTDB_AVAILABLE = False
    AsyncKurrentDBClient = None


def build_uri(endpoint: Any) -> str:
    """Connection string for a LogEndpoint.

    Example:
        >>> build_uri(LogEndpoint(host="db", port=2113, login="admin", password="changeit"))
        'kurrentdb://admin:changeit@db:2113?Tls=false'
    """
    credentials = ""
    if endpoint.login:
        credentials = f"{quote(endpoint.login, safe='')}:{quote(endpoint.password or '', safe='')}@"
    tls = "true" if endpoint.tls else "false"
    return f"kurrentdb://{credentials}{endpoint.host}:{endpoint.port}?Tls={tls}"


def _to_record(recorded: RecordedEvent) -> Record:
    return Record(
        stream_id=recorded.stream_name,
        position=recorded.stream_position,
        type=recorded.type,
        id=recorded.id,
        is_json=recorded.content_type == JSON_CONTENT_TYPE,
        data=recorded.data,
        metadata=recorded.metadata or b"",
    )


def _wrap(error: Exception, action: str) -> LogError:
    if isinstance(error, LogError):
        return error
    text = str(error)
    if "denied" in text.lower() or type(error).__name__.startswith("AccessDenied"):
        return AccessDeniedError(f"{action}: {text}")
    return LogError(f"{action}: {text}")


def _is_error(error: Exception, name: str) -> bool:
    """Whether error is the kurrentdbclient exception called name (or a subclass)."""
    return any(cls.__name__ == name for cls in type(error).__mro__)


def resolved_record(recorded: RecordedEvent, resolve_links: bool) -> ResolvedRecord:
    """Map a read result to a ResolvedRecord.

    A followed link arrives as the target event with the link attached. A
    link the server could not follow arrives as the link itself.
    """
    record = _to_record(recorded)
    link = getattr(recorded, "link", None)

    if link is not None:
        return ResolvedRecord(event=record, link=_to_record(link))
    if resolve_links and record.type == LINK_EVENT_TYPE:
        return ResolvedRecord(event=None, link=record)
    return ResolvedRecord(event=record)


def _position(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


def _to_subscription_info(info: Any) -> SubscriptionInfo:
    return SubscriptionInfo(
        stream_id=info.event_source,
        group_name=info.group_name,
        status=info.status,
        connection_count=len(getattr(info, "connections", None) or []),
        last_processed_position=_position(getattr(info, "last_checkpointed_event_position", None)),
        last_known_position=_position(getattr(info, "last_known_event_position", None)),
        average_items_per_second=float(getattr(info, "average_per_second", 0) or 0),
    )


def _subscription_options(settings: SubscriptionSettings) -> dict[str, Any]:
    """Keyword arguments of the client's create/update subscription calls."""
    options: dict[str, Any] = {
        "resolve_links": settings.resolve_links,
        "consumer_strategy": settings.consumer_strategy.value,
        "message_timeout": settings.message_timeout_ms / 1000,
        "max_retry_count": settings.max_retry_count,
        "min_checkpoint_count": settings.min_checkpoint_count,
        "max_checkpoint_count": settings.max_checkpoint_count,
        "checkpoint_after": settings.checkpoint_after_ms / 1000,
        "max_subscriber_count": settings.max_subscriber_count,
        "live_buffer_size": settings.live_buffer_size,
        "read_batch_size": settings.read_batch_size,
        "history_buffer_size": settings.history_buffer_size,
        "extra_statistics": settings.extra_stats,
    }
    if settings.start_from is None:
        options["from_end"] = True
    else:
        options["stream_position"] = settings.start_from
    return options


class KurrentDBLogConnection:
    """KurrentDB implementation of LogConnection protocol.

    Attributes:
        endpoint: LogEndpoint with host, port and credentials

    Example:
        >>> conn = KurrentDBLogConnection(LogEndpoint(host="localhost"))
        >>> await conn.connect()
        >>> await conn.append("orders-1", [EventData.json("OrderPlaced", {})])
    """

    def __init__(self, endpoint: Any) -> None:
        """Initialize the connection.

        Args:
            endpoint: LogEndpoint instance

        Raises:
            ImportError: If kurrentdbclient is not installed
        """
        if not KURRENTDB_AVAILABLE:
            raise ImportError(
                "kurrentdbclient is required for the KurrentDB backend. "
                "Install with: pip install kurrentdbclient"
            )

        self.endpoint = endpoint
        self._client: Optional[AsyncKurrentDBClient] = None

    @property
    def is_connected(self) -> bool:
        """Whether the client is connected."""
        return self._client is not None

    async def connect(self) -> None:
        """Connect to the node.

        Raises:
            LogConnectionError: If connection fails
        """
        if self._client is not None:
            return

        try:
            client = AsyncKurrentDBClient(uri=build_uri(self.endpoint))
            await client.connect()
        except Exception as e:
            raise LogConnectionError(
                f"Failed to connect to [{self.endpoint.host}:{self.endpoint.port}]: {e}"
            ) from e

        self._client = client
        logger.info(
            "Connected to KurrentDB",
            extra={"host": self.endpoint.host, "port": self.endpoint.port},
        )

    async def close(self) -> None:
        """Close the client."""
        if self._client is None:
            return

        try:
            await self._client.close()
        except Exception as e:
            logger.warning(f"Error closing KurrentDB client: {e}")
        self._client = None

    async def read_stream(
        self,
        stream_id: str,
        *,
        backwards: bool = False,
        limit: Optional[int] = None,
        resolve_links: bool = False,
    ) -> AsyncIterator[ResolvedRecord]:
        """Read a stream through the gRPC client.

        Yields:
            ResolvedRecord for each record

        Raises:
            StreamNotFoundError: If the stream does not exist
            StreamDeletedError: If the stream was deleted
            LogError: For other failures
        """
        client = self._require_client()
        kwargs: dict[str, Any] = {
            "stream_name": stream_id,
            "backwards": backwards,
            "resolve_links": resolve_links,
        }
        if limit is not None:
            kwargs["limit"] = limit

        try:
            response = await client.read_stream(**kwargs)
            async for recorded in response:
                yield resolved_record(recorded, resolve_links)
        except NotFoundError as e:
            raise StreamNotFoundError(stream_id) from e
        except LogError:
            raise
        except Exception as e:
            if _is_error(e, "StreamIsDeletedError"):
                raise StreamDeletedError(stream_id) from e
            raise _wrap(e, f"Failed to read stream {stream_id}") from e

    async def append(self, stream_id: str, events: Sequence[EventData]) -> int:
        """Append events in one call.

        Returns:
            Commit position reported by the server
        """
        client = self._require_client()
        new_events = [
            NewEvent(
                type=event.type,
                data=event.data,
                metadata=event.metadata,
                content_type=event.content_type,
                id=event.id,
            )
            for event in events
        ]

        try:
            return await client.append_to_stream(
                stream_name=stream_id,
                current_version=StreamState.ANY,
                events=new_events,
            )
        except Exception as e:
            raise _wrap(e, f"Failed to append to stream {stream_id}") from e

    async def create_subscription(
        self,
        stream_id: str,
        group_name: str,
        settings: SubscriptionSettings,
    ) -> None:
        """Create a persistent subscription to a stream."""
        client = self._require_client()
        try:
            await client.create_subscription_to_stream(
                group_name=group_name,
                stream_name=stream_id,
                **_subscription_options(settings),
            )
        except Exception as e:
            if _is_error(e, "AlreadyExistsError"):
                raise SubscriptionExistsError(stream_id, group_name) from e
            if _is_error(e, "StreamIsDeletedError"):
                raise StreamDeletedError(stream_id) from e
            raise _wrap(e, f"Failed to create subscription {group_name} on {stream_id}") from e

        logger.info(
            "Persistent subscription created",
            extra={"stream": stream_id, "group": group_name},
        )

    async def update_subscription(
        self,
        stream_id: str,
        group_name: str,
        settings: SubscriptionSettings,
    ) -> None:
        """Replace the settings of a persistent subscription."""
        client = self._require_client()
        try:
            await client.update_subscription_to_stream(
                group_name=group_name,
                stream_name=stream_id,
                **_subscription_options(settings),
            )
        except Exception as e:
            if _is_error(e, "NotFoundError"):
                raise SubscriptionNotFoundError(stream_id, group_name) from e
            raise _wrap(e, f"Failed to update subscription {group_name} on {stream_id}") from e

    async def delete_subscription(self, stream_id: str, group_name: str) -> None:
        """Delete a persistent subscription."""
        client = self._require_client()
        try:
            await client.delete_subscription(group_name=group_name, stream_name=stream_id)
        except Exception as e:
            if _is_error(e, "NotFoundError"):
                raise SubscriptionNotFoundError(stream_id, group_name) from e
            raise _wrap(e, f"Failed to delete subscription {group_name} on {stream_id}") from e

    async def list_subscriptions(self) -> List[SubscriptionInfo]:
        """Every persistent subscription of the node."""
        client = self._require_client()
        try:
            infos = await client.list_subscriptions()
        except Exception as e:
            raise _wrap(e, "Failed to list persistent subscriptions") from e
        return [_to_subscription_info(info) for info in infos]

    async def create_projection(
        self,
        name: str,
        script: str,
        *,
        emit: bool = False,
        enabled: bool = True,
    ) -> None:
        """Create a continuous projection, disabled afterwards unless enabled."""
        client = self._require_client()
        try:
            await client.create_projection(name=name, query=script, emit_enabled=emit)
            if not enabled:
                await client.disable_projection(name=name)
        except Exception as e:
            raise _wrap(e, f"Failed to create projection {name}") from e

    async def get_projection(self, name: str) -> ProjectionInfo:
        """Current state of a projection."""
        client = self._require_client()
        try:
            statistics = await client.get_projection_statistics(name=name)
        except Exception as e:
            raise _wrap(e, f"Failed to read projection {name}") from e
        return ProjectionInfo(
            name=name,
            status=statistics.status,
            reason=getattr(statistics, "state_reason", None) or None,
        )

    def _require_client(self) -> AsyncKurrentDBClient:
        if self._client is None:
            raise LogConnectionError("Not connected")
        return self._client
