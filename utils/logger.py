"""
Logger Configuration
Rich console logging on stderr; stdout stays reserved for --json summaries
"""
import logging

from rich.console import Console
from rich.logging import RichHandler


console = Console(stderr=True)

LOG_FORMAT_SIMPLE = "%(message)s"

ROOT_LOGGER_NAME = "sherlock"
MODULE_PACKAGES = ("sources", "pipeline", "orchestrator")


def setup_logger(name: str = ROOT_LOGGER_NAME, level: int = logging.INFO) -> logging.Logger:
    """
    Attach the rich stderr handler to ``name`` once.

    Args:
        name: logger name
        level: log level

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # avoid stacking handlers on repeated setup
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE))
    console_handler.setLevel(level)
    logger.addHandler(console_handler)
    return logger


def configure_module_loggers(level: int = logging.INFO) -> None:
    """Route the sources, pipeline and orchestrator loggers through the root handler."""
    handler_owner = setup_logger(ROOT_LOGGER_NAME, level=level)
    for package in MODULE_PACKAGES:
        module_logger = logging.getLogger(package)
        module_logger.setLevel(level)
        for handler in handler_owner.handlers:
            if handler not in module_logger.handlers:
                module_logger.addHandler(handler)
