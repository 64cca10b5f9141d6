"""mcpbridge CLI."""

from mcpbridge.cli.commands import build_parser, main, run

__all__ = ["build_parser", "main", "run"]
