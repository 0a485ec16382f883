"""Command-line tools for the Dayflow workspace core."""

from .runner import build_parser, configure_logging, main

__all__ = ["build_parser", "configure_logging", "main"]
