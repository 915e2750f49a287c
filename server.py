"""
Perfex CRM Tool Server

Serves the CRM tool set over MCP (stdio) or a FastAPI REST façade. Both
transports share one ConnectionManager and one Dispatcher.

Usage:
    python server.py                                  # MCP over stdio (default)
    python server.py --transport http --port 8000     # REST façade
    python server.py --client-id demo                 # select tenant database

Exit codes:
    0  clean shutdown
    1  configuration error or database unreachable at startup
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

from src.perfex.config import Settings
from src.perfex.db.client import ConnectionManager
from src.perfex.exceptions import ConfigurationError, ConnectivityError
from src.perfex.tools import Dispatcher, build_registry

logger = logging.getLogger("perfex.server")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Perfex CRM Tool Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--client-id",
        type=str,
        default=None,
        help="Tenant to serve (default: CLIENT_ID or 'default')",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to for HTTP transport (default: HTTP_HOST or 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for HTTP transport (default: HTTP_PORT or 8000)",
    )
    return parser


def configure_logging(level: str) -> None:
    # stdout carries the MCP protocol
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


async def serve(
    settings: Settings,
    transport: str = "stdio",
    host: Optional[str] = None,
    port: Optional[int] = None,
    db: Optional[ConnectionManager] = None,
) -> int:
    """Check the database, then run the selected transport until it stops.

    Returns:
        Process exit code
    """
    db = db or ConnectionManager(settings.connection, client_id=settings.client.id)
    dispatcher = Dispatcher(build_registry(settings.client.id), db)

    try:
        if not await db.test_connection():
            raise ConnectivityError(
                f"Database {settings.connection.database} is unreachable",
                details={"client_id": settings.client.id},
            )
    except ConnectivityError as e:
        logger.error(f"Startup aborted: {e}")
        await db.close()
        return 1

    logger.info(
        f"Serving {len(dispatcher.list_tools())} tools for client "
        f"{settings.client.id} ({settings.client.name}) over {transport}"
    )

    try:
        if transport == "http":
            import uvicorn

            from src.perfex.transport.rest import create_app

            config = uvicorn.Config(
                create_app(dispatcher, db),
                host=host or settings.http_host,
                port=port or settings.http_port,
                log_level=settings.log_level.lower(),
            )
            await uvicorn.Server(config).serve()
        else:
            from src.perfex.transport.rpc import run_stdio

            await run_stdio(dispatcher)
    finally:
        await db.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()

    try:
        settings = Settings.from_env(args.client_id)
    except ConfigurationError as e:
        configure_logging("INFO")
        logger.error(f"Configuration error: {e}")
        return 1

    configure_logging(settings.log_level)
    try:
        return asyncio.run(serve(settings, args.transport, args.host, args.port))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0


if __name__ == "__main__":
    sys.exit(main())
