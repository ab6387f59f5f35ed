#!/usr/bin/env python3
"""
CLI entry point for the application operator

Usage:
    python -m appoperator.cli.operator_manager --help
    python -m appoperator.cli.operator_manager run
    python -m appoperator.cli.operator_manager run --store memory --port 9090
    python -m appoperator.cli.operator_manager check
"""

import argparse
import asyncio
import logging
import sys

import uvicorn

from appoperator.app import create_app
from appoperator.config import settings, setup_logging
from appoperator.exceptions import BootstrapError
from appoperator.operator import Operator
from appoperator.store import create_resource_store

logger = logging.getLogger(__name__)


async def check_resource_type(store_type: str):
    """Verify the watched resource type is registered"""
    store = create_resource_store(store_type)
    try:
        await Operator.create(store)
    finally:
        await store.close()
    print(f"{settings.resource_plural}.{settings.resource_group}/{settings.resource_version} is installed")


async def run_operator(store_type: str, host: str, port: int):
    """Run the controller and the HTTP server until either one exits"""
    store = create_resource_store(store_type)
    try:
        operator = await Operator.create(store)
    except BootstrapError:
        await store.close()
        raise

    server = uvicorn.Server(
        uvicorn.Config(create_app(operator), host=host, port=port, log_level=settings.log_level.lower())
    )
    controller_task = asyncio.create_task(operator.run(), name="controller")
    server_task = asyncio.create_task(server.serve(), name="http")

    done, _ = await asyncio.wait({controller_task, server_task}, return_when=asyncio.FIRST_COMPLETED)
    if controller_task in done:
        logger.warning("controller exited")
        server.should_exit = True
    else:
        logger.info("http server exited")
        operator.shutdown()

    results = await asyncio.gather(controller_task, server_task, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            raise result


def main():
    parser = argparse.ArgumentParser(description="Application Operator CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the controller and its HTTP server")
    run_parser.add_argument("--store", choices=["kubernetes", "memory"], default=settings.store_type)
    run_parser.add_argument("--host", default=settings.http_host)
    run_parser.add_argument("--port", type=int, default=settings.http_port)

    check_parser = subparsers.add_parser("check", help="Check that the Application resource type is installed")
    check_parser.add_argument("--store", choices=["kubernetes", "memory"], default=settings.store_type)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    setup_logging()

    try:
        if args.command == "run":
            asyncio.run(run_operator(args.store, args.host, args.port))
        elif args.command == "check":
            asyncio.run(check_resource_type(args.store))
        else:
            print(f"Unknown command: {args.command}")
            return 1
    except BootstrapError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")

    return 0


if __name__ == "__main__":
    sys.exit(main())
