import logging
from logging import Logger

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER_NAME = "repo_setup"


def get_logger(name: str) -> Logger:
    """Get a logger nested under the package logger."""

    if name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(name=name)

    return logging.getLogger(name=f"{ROOT_LOGGER_NAME}.{name}")


def configure_logging(level: int | str = logging.WARNING, console: Console | None = None) -> None:
    """Send package logs to stderr through a rich handler."""

    logger = logging.getLogger(name=ROOT_LOGGER_NAME)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(console=console or Console(stderr=True), rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
