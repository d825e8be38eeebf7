"""
Command line entry point for Cerberus.

Usage:
    cerberus [--host H] [--tcp-port P] [--login L --password W] check
    cerberus list events --stream NAME [--group-id G [--checkpoint]] [--recent]
    cerberus list streams [--category C] [--recent]
    cerberus list subscriptions
    cerberus (create|update) subscription --stream S --group-id G [settings...]
    cerberus delete subscription --stream S --group-id G
    cerberus create projection SCRIPT --name N [--enabled] [--emit]
    cerberus export (--from-stream S | --from-type T | --from-category C)
                    --to-host H [--to-tcp-port P] [--recent | --top N]

Global flags override the CERBERUS_* environment variables. Exit code is 0
on success and 1 on failure, with the failure written to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .. import __version__
from ..config import DEFAULT_TCP_PORT, CerberusConfig, parse_port
from ..errors import CerberusError, DevFault, UserFault
from ..log import create_connection
from ..logging_setup import setup_logging
from .admin import NUMERIC_SETTINGS, AdminTool, subscription_settings
from .export import ConnectionFactory, ExportConfig, ExportTool
from .inspect import InspectTool

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for all commands."""
    parser = argparse.ArgumentParser(
        prog="cerberus",
        description="An EventStore administration tool",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--host", help="Database host [default: localhost]")
    parser.add_argument("--tcp-port", help=f"Database TCP port [default: {DEFAULT_TCP_PORT}]")
    parser.add_argument("--login", help="User login")
    parser.add_argument("--password", help="User password")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("check", help="Check if a database node is reachable")

    list_parser = commands.add_parser("list", help="List database entities")
    entities = list_parser.add_subparsers(dest="entity", required=True)

    events = entities.add_parser("events", help="List the events of a stream")
    events.add_argument("--stream", required=True, help="A stream's name")
    events.add_argument("--group-id", help="Persistent subscription's group id")
    events.add_argument(
        "--checkpoint",
        action="store_true",
        help="With --group-id, list the checkpoint stream instead of parked messages",
    )
    events.add_argument("--recent", action="store_true", help="Only the 50 most recent events")

    streams = entities.add_parser("streams", help="List streams")
    streams.add_argument("--category", help="Only streams of this category")
    streams.add_argument("--recent", action="store_true", help="Only the 50 most recent streams")

    entities.add_parser("subscriptions", help="List persistent subscriptions")

    create = commands.add_parser("create", help="Create database entities")
    create_entities = create.add_subparsers(dest="entity", required=True)
    create_subscription = create_entities.add_parser(
        "subscription", help="Create a persistent subscription"
    )
    _add_subscription_arguments(create_subscription, with_settings=True)

    projection = create_entities.add_parser("projection", help="Create a continuous projection")
    projection.add_argument("script", metavar="SCRIPT", help="Path of the projection script")
    projection.add_argument("--name", required=True, help="Projection name")
    projection.add_argument("--enabled", action="store_true", help="Start the projection")
    projection.add_argument("--emit", action="store_true", help="Allow the projection to emit events")

    update = commands.add_parser("update", help="Update database entities")
    update_entities = update.add_subparsers(dest="entity", required=True)
    update_subscription = update_entities.add_parser(
        "subscription", help="Replace a persistent subscription's settings"
    )
    _add_subscription_arguments(update_subscription, with_settings=True)

    delete = commands.add_parser("delete", help="Delete database entities")
    delete_entities = delete.add_subparsers(dest="entity", required=True)
    delete_subscription = delete_entities.add_parser(
        "subscription", help="Delete a persistent subscription"
    )
    _add_subscription_arguments(delete_subscription, with_settings=False)

    export = commands.add_parser("export", help="Copy events to another node")
    export.add_argument("--from-stream", help="Copy this stream")
    export.add_argument("--from-type", help="Copy every event of this type")
    export.add_argument("--from-category", help="Copy every stream of this category")
    export.add_argument("--to-host", required=True, help="Destination host")
    export.add_argument(
        "--to-tcp-port",
        default=str(DEFAULT_TCP_PORT),
        help=f"Destination TCP port [default: {DEFAULT_TCP_PORT}]",
    )
    export.add_argument("--to-login", help="Destination login [default: --login]")
    export.add_argument("--to-password", help="Destination password [default: --password]")
    # --recent and --top exclude each other; checked by resolve_limit.
    export.add_argument("--recent", action="store_true", help="Only the 50 most recent entries")
    export.add_argument("--top", help="Only the N most recent entries (N > 0)")

    return parser


def _add_subscription_arguments(parser: argparse.ArgumentParser, with_settings: bool) -> None:
    parser.add_argument("--stream", required=True, help="A stream's name")
    parser.add_argument("--group-id", required=True, help="Persistent subscription's group id")
    if not with_settings:
        return

    parser.add_argument("--resolve-link", action="store_true", help="Resolve links for consumers")
    parser.add_argument("--extra-stats", action="store_true", help="Collect extra statistics")
    for field_name, flag in NUMERIC_SETTINGS.items():
        parser.add_argument(flag, dest=field_name, metavar="N")
    parser.add_argument(
        "--consumer-strategy",
        help="dispatch-to-single, round-robin or pinned [default: round-robin]",
    )


def load_config(args: argparse.Namespace) -> CerberusConfig:
    """Environment configuration overridden by global flags.

    Raises:
        UserFault: If a setting is invalid
    """
    try:
        config = CerberusConfig.from_env()
        port = parse_port(args.tcp_port, "--tcp-port") if args.tcp_port else None
        config.source = config.source.with_overrides(
            host=args.host,
            port=port,
            login=args.login,
            password=args.password,
        )
        config.validate()
    except ValueError as e:
        raise UserFault(str(e)) from e
    return config


async def run_command(
    args: argparse.Namespace,
    config: CerberusConfig,
    connection_factory: ConnectionFactory = create_connection,
) -> None:
    """Dispatch one parsed command."""
    if args.command == "check":
        print(await InspectTool(config.source, connection_factory).check())

    elif args.command == "list":
        tool = InspectTool(config.source, connection_factory)
        if args.entity == "events":
            lines = await tool.list_events(
                args.stream,
                group_id=args.group_id,
                checkpoint=args.checkpoint,
                recent=args.recent,
            )
        elif args.entity == "subscriptions":
            lines = await tool.list_subscriptions()
        else:
            lines = await tool.list_streams(category=args.category, recent=args.recent)
        for line in lines:
            print(line)

    elif args.command == "export":
        try:
            to_port = parse_port(args.to_tcp_port, "--to-tcp-port")
            destination = config.source.with_overrides(
                host=args.to_host,
                port=to_port,
                login=args.to_login,
                password=args.to_password,
            )
            destination.validate()
        except ValueError as e:
            raise UserFault(f"Failed to parse destination endpoint: {e}") from e

        tool = ExportTool(
            ExportConfig(
                source=config.source,
                destination=destination,
                from_stream=args.from_stream,
                from_type=args.from_type,
                from_category=args.from_category,
                recent=args.recent,
                top=args.top,
                replication=config.replication,
            ),
            connection_factory,
        )
        stats = await tool.export()
        logger.info(
            f"Export done: {stats.records_written} records in {stats.append_calls} appends "
            f"to {stats.streams_copied} streams ({stats.links_skipped} links skipped) "
            f"in {stats.duration_ms}ms"
        )

    elif args.command in ("create", "update", "delete") and args.entity == "subscription":
        tool = AdminTool(config.source, connection_factory)
        if args.command == "delete":
            print(await tool.delete_subscription(args.stream, args.group_id))
            return

        settings = subscription_settings(
            resolve_links=args.resolve_link,
            extra_stats=args.extra_stats,
            consumer_strategy=args.consumer_strategy,
            **{name: getattr(args, name) for name in NUMERIC_SETTINGS},
        )
        if args.command == "create":
            print(await tool.create_subscription(args.stream, args.group_id, settings))
        else:
            print(await tool.update_subscription(args.stream, args.group_id, settings))

    elif args.command == "create" and args.entity == "projection":
        tool = AdminTool(config.source, connection_factory)
        print(
            await tool.create_projection(
                args.script,
                name=args.name,
                enabled=args.enabled,
                emit=args.emit,
            )
        )

    else:
        raise UserFault(f"Command [{args.command}] is not supported yet")


def run(
    argv: Optional[List[str]] = None,
    connection_factory: ConnectionFactory = create_connection,
) -> int:
    """Parse argv, run the command and return the exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
        setup_logging(config.observability, verbose=args.verbose)
        config.log_config()
        asyncio.run(run_command(args, config, connection_factory))
    except CerberusError as e:
        print(e.render(), file=sys.stderr)
        return 1
    except Exception as e:
        logger.debug("Unexpected failure", exc_info=True)
        print(DevFault(f"{type(e).__name__}: {e}").render(), file=sys.stderr)
        return 1

    return 0


def main() -> None:
    """CLI entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
