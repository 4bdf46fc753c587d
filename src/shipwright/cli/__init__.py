"""shipwright CLI."""

from shipwright.cli.main import main

__all__ = ["main"]
