"""Logging setup shared by the library and the CLI."""

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console()

_configured = False


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Route the ``chaindelve`` logger through rich on the shared console."""
    global _configured
    logger = logging.getLogger("chaindelve")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not _configured:
        handler = RichHandler(console=console, show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False
        _configured = True
    return logger
