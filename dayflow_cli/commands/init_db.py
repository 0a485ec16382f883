"""Create the workspace tables."""

from __future__ import annotations

from argparse import Namespace, _SubParsersAction

import structlog

from dayflow_tools.workspace.service import WorkspaceDatabase, init_engine

from ..config import RuntimeConfig

__all__ = ["register", "run"]

logger = structlog.get_logger(__name__)


def run(args: Namespace, runtime: RuntimeConfig) -> None:
    engine = init_engine(runtime.settings)
    WorkspaceDatabase(engine).create_all()
    logger.info("database.initialized", url=engine.url.render_as_string(hide_password=True))


def register(subparsers: _SubParsersAction) -> None:
    parser = subparsers.add_parser("init-db", help="Create workspace tables if missing")
    parser.set_defaults(handler=run)
