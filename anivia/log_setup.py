"""Logging setup shared by the CLI commands."""

import logging
from typing import Union

from rich.console import Console
from rich.logging import RichHandler

console = Console()


def setup_logging(level: Union[str, int] = "INFO") -> logging.Logger:
    """Route the package logger through rich and set its level."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger("anivia")
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    # SDK chatter stays quiet unless we are debugging
    for noisy in ("botocore", "boto3", "urllib3", "notion_client", "httpx"):
        logging.getLogger(noisy).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    return logger
