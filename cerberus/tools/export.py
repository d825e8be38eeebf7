"""
Export tool: copy events from one node to another.

The source is chosen with exactly one of --from-stream, --from-type or
--from-category, optionally limited to the most recent entries with
--recent (50) or --top N.

Usage:
    cerberus --host src export --from-category orders --to-host dst

Invariants:
    - Selection and limit are validated before any connection is opened
    - Both connections are closed whatever the outcome
    - A rerun starts over; the destination may receive duplicates

How to change safely:
    - Keep flag names stable, scripts depend on them
    - Route new failure modes through UserFault or DevFault
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..config import LogEndpoint, ReplicationConfig
from ..errors import UserFault
from ..log import LogConnection, LogError, create_connection
from ..replication import ReplicationStats, replicate, resolve

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[LogEndpoint], LogConnection]


@dataclass
class ExportConfig:
    """Configuration for an export.

    Attributes:
        source: Node to read from
        destination: Node to write to
        from_stream: Copy this stream
        from_type: Copy every event of this type
        from_category: Copy every stream of this category
        recent: Only the 50 most recent index entries
        top: Only the N most recent index entries (raw flag value)
        replication: Engine settings
    """

    source: LogEndpoint
    destination: LogEndpoint
    from_stream: Optional[str] = None
    from_type: Optional[str] = None
    from_category: Optional[str] = None
    recent: bool = False
    top: Optional[str] = None
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)


async def open_connection(
    endpoint: LogEndpoint,
    connection_factory: ConnectionFactory = create_connection,
) -> LogConnection:
    """Create and connect a log connection.

    Raises:
        UserFault: If the node cannot be reached
    """
    connection = connection_factory(endpoint)
    try:
        await connection.connect()
    except LogError as e:
        raise UserFault(f"Failed to connect to [{endpoint}]: {e}") from e
    return connection


class ExportTool:
    """Tool running one export.

    Example:
        >>> tool = ExportTool(config)
        >>> stats = await tool.export()
        >>> print(f"Copied {stats.records_written} records")
    """

    def __init__(
        self,
        config: ExportConfig,
        connection_factory: ConnectionFactory = create_connection,
    ) -> None:
        """Initialize the export tool.

        Args:
            config: Export configuration
            connection_factory: Builds a connection for an endpoint
        """
        self.config = config
        self.connection_factory = connection_factory

    async def export(self) -> ReplicationStats:
        """Run the export.

        Returns:
            ReplicationStats of the run

        Raises:
            UserFault: Invalid input, unreachable node or log failure
            DevFault: Unexpected payload
        """
        config = self.config
        selection, index_stream, limit = resolve(
            from_stream=config.from_stream,
            from_type=config.from_type,
            from_category=config.from_category,
            recent=config.recent,
            top=config.top,
        )

        logger.info(
            f"Exporting {index_stream} from [{config.source}] to [{config.destination}]"
        )

        source = await open_connection(config.source, self.connection_factory)
        try:
            destination = await open_connection(config.destination, self.connection_factory)
            try:
                return await replicate(
                    source,
                    destination,
                    selection,
                    limit,
                    config.replication,
                )
            finally:
                await destination.close()
        finally:
            await source.close()
