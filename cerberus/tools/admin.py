"""
Administration commands: persistent subscriptions and projections.

Usage:
    cerberus create subscription --stream orders-1 --group-id billing
    cerberus update subscription --stream orders-1 --group-id billing --resolve-link
    cerberus delete subscription --stream orders-1 --group-id billing
    cerberus create projection counter.js --name counter --enabled

Invariants:
    - Settings are parsed and validated before any connection is opened
    - update replaces every setting; unspecified ones fall back to defaults
    - The connection is closed whatever the outcome

How to change safely:
    - Keep flag names stable, scripts depend on them
    - New log failures must map to a UserFault naming stream and group
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from ..config import LogEndpoint
from ..errors import UserFault
from ..log import (
    AccessDeniedError,
    ConsumerStrategy,
    LogConnection,
    LogError,
    StreamDeletedError,
    SubscriptionExistsError,
    SubscriptionNotFoundError,
    SubscriptionSettings,
    create_connection,
)
from .export import ConnectionFactory, open_connection

logger = logging.getLogger(__name__)

# Settings field -> command line flag
NUMERIC_SETTINGS: Dict[str, str] = {
    "start_from": "--start-from",
    "message_timeout_ms": "--message-timeout",
    "max_retry_count": "--max-retry-count",
    "live_buffer_size": "--live-buffer-size",
    "read_batch_size": "--read-batch-size",
    "history_buffer_size": "--history-buffer-size",
    "checkpoint_after_ms": "--checkpoint-after",
    "min_checkpoint_count": "--min-checkpoint-count",
    "max_checkpoint_count": "--max-checkpoint-count",
    "max_subscriber_count": "--max-subs-count",
}

CONSUMER_STRATEGIES: Dict[str, ConsumerStrategy] = {
    "dispatch-to-single": ConsumerStrategy.DISPATCH_TO_SINGLE,
    "round-robin": ConsumerStrategy.ROUND_ROBIN,
    "pinned": ConsumerStrategy.PINNED,
}


def subscription_settings(
    resolve_links: bool = False,
    extra_stats: bool = False,
    consumer_strategy: Optional[str] = None,
    **numbers: Optional[str],
) -> SubscriptionSettings:
    """Build settings from raw flag values.

    Args:
        resolve_links: Resolve links for consumers
        extra_stats: Collect extra statistics
        consumer_strategy: One of CONSUMER_STRATEGIES
        **numbers: Raw values keyed by NUMERIC_SETTINGS field, None when absent

    Raises:
        UserFault: If a value does not parse
    """
    changes: Dict[str, object] = {
        "resolve_links": resolve_links,
        "extra_stats": extra_stats,
    }

    for name, raw in numbers.items():
        if name not in NUMERIC_SETTINGS:
            raise ValueError(f"Unknown subscription setting: {name}")
        if raw is None:
            continue
        try:
            changes[name] = int(raw)
        except ValueError as e:
            raise UserFault(
                f"Failed to parse {NUMERIC_SETTINGS[name]} number parameter: {e}"
            ) from e

    if consumer_strategy is not None:
        strategy = CONSUMER_STRATEGIES.get(consumer_strategy)
        if strategy is None:
            raise UserFault(f"Unknown --consumer-strategy value: [{consumer_strategy}]")
        changes["consumer_strategy"] = strategy

    return SubscriptionSettings(**changes)


class AdminTool:
    """Write-side administration over one node.

    Example:
        >>> tool = AdminTool(LogEndpoint(host="localhost"))
        >>> print(await tool.create_subscription("orders-1", "billing", SubscriptionSettings()))
        Persistent subscription created.
    """

    def __init__(
        self,
        endpoint: LogEndpoint,
        connection_factory: ConnectionFactory = create_connection,
    ) -> None:
        self.endpoint = endpoint
        self.connection_factory = connection_factory

    async def create_subscription(
        self,
        stream: str,
        group_id: str,
        settings: SubscriptionSettings,
    ) -> str:
        await self._subscription_action(
            "create",
            stream,
            group_id,
            lambda connection: connection.create_subscription(stream, group_id, settings),
        )
        return "Persistent subscription created."

    async def update_subscription(
        self,
        stream: str,
        group_id: str,
        settings: SubscriptionSettings,
    ) -> str:
        await self._subscription_action(
            "update",
            stream,
            group_id,
            lambda connection: connection.update_subscription(stream, group_id, settings),
        )
        return "Persistent subscription updated."

    async def delete_subscription(self, stream: str, group_id: str) -> str:
        await self._subscription_action(
            "delete",
            stream,
            group_id,
            lambda connection: connection.delete_subscription(stream, group_id),
        )
        return "Persistent subscription deleted."

    async def create_projection(
        self,
        script_path: str,
        name: str,
        enabled: bool = False,
        emit: bool = False,
    ) -> str:
        """Create a continuous projection from a script file.

        Raises:
            UserFault: Unreadable script, refused or faulted projection
        """
        try:
            script = Path(script_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise UserFault(
                f"There was an issue with the script's filepath you submitted: {e}"
            ) from e

        connection = await open_connection(self.endpoint, self.connection_factory)
        try:
            await connection.create_projection(name, script, emit=emit, enabled=enabled)
            info = await connection.get_projection(name)
        except LogError as e:
            raise UserFault(f"Failed to create projection [{name}]: {e}") from e
        finally:
            await connection.close()

        if info.is_faulted:
            reason = info.reason or "<unavailable faulted reason>"
            raise UserFault(f"Unsuccessful projection [{name}] creation:\n>> {reason}")

        logger.info("Projection created", extra={"projection": name, "status": info.status})
        return f"Projection [{name}] created"

    async def _subscription_action(
        self,
        verb: str,
        stream: str,
        group_id: str,
        action: Callable[[LogConnection], Awaitable[None]],
    ) -> None:
        connection = await open_connection(self.endpoint, self.connection_factory)
        try:
            await action(connection)
        except AccessDeniedError as e:
            raise UserFault(
                f"Your current credentials doesn't allow you to {verb} "
                f"a persistent subscription on [{stream}] stream."
            ) from e
        except SubscriptionExistsError as e:
            raise UserFault(
                f"A persistent subscription already exists for the stream [{stream}] "
                f"with the group [{group_id}]"
            ) from e
        except SubscriptionNotFoundError as e:
            raise UserFault(
                f"You can't {verb} a persistent subscription on stream [{stream}] "
                f"with group id [{group_id}] because it doesn't exist"
            ) from e
        except StreamDeletedError as e:
            raise UserFault(
                f"You can't {verb} a persistent subscription on [{stream}] stream "
                "because that stream got deleted"
            ) from e
        except LogError as e:
            raise UserFault(
                f"Can't {verb} a persistent subscription on [{stream}] stream because: {e}."
            ) from e
        finally:
            await connection.close()

        logger.info(
            f"Persistent subscription {verb}d",
            extra={"stream": stream, "group": group_id},
        )
