#!/usr/bin/env python3
"""
Command-line interface for the event backbone services.

Usage:
    uv run python cli.py [command] [options]

Commands:
    run         Run one service's backbone (publisher and consumers)
    api         Start the notification service HTTP API
    topology    Print the exchange / routing key / queue table
    publish     Publish one event through the exchange that owns it
    test        Run the test suite

Examples:
    uv run python cli.py run product-service
    uv run python cli.py publish user.registered '{"user_id": "...", "username": "ann", "email": "ann@example.com"}'
    uv run python cli.py topology
"""

import argparse
import asyncio
import json
import logging
import subprocess
import sys

from backbone.config import Settings, configure_logging
from backbone.dedup import DedupStoreError
from backbone.events import payload_type
from backbone.publisher import Publisher
from backbone.runtime import BrokerConnectionError, connect
from backbone.topology import TOPOLOGY, TopologyError, exchange_for
from services.wiring import SERVICE_NAMES, ServiceHost

logger = logging.getLogger("cli")


def run_service(name: str) -> None:
    """Run a service until interrupted. Startup failures exit non-zero."""
    try:
        settings = Settings.from_env(name)
    except ValueError as e:
        configure_logging()
        logger.error(f"{name} has invalid settings: {e}")
        sys.exit(1)

    configure_logging(settings.log_level)
    host = ServiceHost(name, settings)

    try:
        asyncio.run(host.serve())
    except KeyboardInterrupt:
        logger.info(f"{name} interrupted, shutting down")
    except (BrokerConnectionError, TopologyError, DedupStoreError, asyncio.TimeoutError) as e:
        logger.error(f"{name} failed to start: {str(e) or type(e).__name__}")
        sys.exit(1)


def print_topology() -> None:
    """Print the routing table."""
    print(f"{'EXCHANGE':<18} {'ROUTING KEY':<22} QUEUE")
    for binding in TOPOLOGY:
        print(f"{binding.exchange:<18} {binding.routing_key:<22} {binding.queue}")


async def _publish_once(settings: Settings, event: str, data: dict) -> bool:
    connection = await connect(settings.broker)
    try:
        channel = await connection.channel(publisher_confirms=False)
        publisher = await Publisher.declare(channel, exchange_for(event))
        result = await publisher.publish(event, payload_type(event).model_validate(data))
    finally:
        await connection.close()
    print(result)
    return result.ok


def publish_event(event: str, raw_data: str) -> None:
    """Validate and publish one event, exiting non-zero on failure."""
    if exchange_for(event) is None or payload_type(event) is None:
        print(f"Unknown event: {event}")
        sys.exit(1)

    try:
        data = json.loads(raw_data)
    except json.JSONDecodeError as e:
        print(f"Invalid JSON data: {e}")
        sys.exit(1)

    settings = Settings.from_env("cli")
    configure_logging(settings.log_level)
    try:
        ok = asyncio.run(_publish_once(settings, event, data))
    except (BrokerConnectionError, TopologyError, ValueError) as e:
        print(f"Publish failed: {e}")
        sys.exit(1)
    if not ok:
        sys.exit(1)


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = ["uv", "run", "pytest"] + args
    subprocess.run(cmd)


def run_api(host: str, port: int) -> None:
    """Start the notification service API."""
    cmd = [
        "uv", "run", "uvicorn", "api.main:app_from_env", "--factory",
        f"--host={host}", f"--port={port}",
    ]
    print(f"Starting notification API at http://{host}:{port}")
    subprocess.run(cmd)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Event backbone services CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run notification-service
  %(prog)s topology
  %(prog)s publish order.cancelled '{"order_id": "o-1", "user_id": "..."}'
  %(prog)s api --port 8004
  %(prog)s test -v
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run a service's backbone")
    run_parser.add_argument("service", choices=SERVICE_NAMES, help="Which service to run")

    subparsers.add_parser("topology", help="Print the routing table")

    publish_parser = subparsers.add_parser("publish", help="Publish one event")
    publish_parser.add_argument("event", help="Event name, e.g. order.created")
    publish_parser.add_argument("data", help="Event data as a JSON object")

    api_parser = subparsers.add_parser("api", help="Start the notification API")
    api_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    api_parser.add_argument("--port", type=int, default=8004, help="Port to bind to")

    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    args = parser.parse_args()

    if args.command == "run":
        run_service(args.service)
    elif args.command == "topology":
        print_topology()
    elif args.command == "publish":
        publish_event(args.event, args.data)
    elif args.command == "api":
        run_api(args.host, args.port)
    elif args.command == "test":
        run_tests(args.pytest_args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
