"""CLI command for the workspace API server."""

from __future__ import annotations

import os
from argparse import Namespace, _SubParsersAction

import structlog
import uvicorn

from ..config import RuntimeConfig

__all__ = ["register", "run"]

logger = structlog.get_logger(__name__)

APP_FACTORY = "dayflow_tools.workspace.api:app_factory"


def run(args: Namespace, runtime: RuntimeConfig) -> None:
    """Start the workspace API server."""
    host = args.host or "127.0.0.1"
    port = args.port or 8082
    log_level = runtime.log_level.lower()

    logger.info(
        "server.starting",
        host=host,
        port=port,
        reload=args.reload,
        docs=f"http://{host}:{port}/docs",
    )

    if args.reload:
        # The reloader imports the app in a child process, which only sees the environment.
        os.environ["DAYFLOW_DB_URL"] = runtime.settings.database_url
        os.environ["DAYFLOW_LOCK_TIMEOUT_SECONDS"] = str(runtime.settings.lock_timeout_seconds)
        uvicorn.run(
            APP_FACTORY, factory=True, host=host, port=port, reload=True, log_level=log_level
        )
        return

    from dayflow_tools.workspace.api import create_app

    uvicorn.run(create_app(runtime.settings), host=host, port=port, log_level=log_level)


def register(subparsers: _SubParsersAction) -> None:
    """Register the serve command."""
    parser = subparsers.add_parser(
        "serve",
        help="Start the workspace API server",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8082,
        help="Port to bind (default: 8082)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development (settings are passed via the environment)",
    )
    parser.set_defaults(handler=run)
