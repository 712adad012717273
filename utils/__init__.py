"""
Utils Module
Logging and error types shared by every stage
"""
from .logger import setup_logger, configure_module_loggers
from .exceptions import (
    SherlockError,
    ConfigurationError,
    ConnectorError,
    SubmissionError,
    StateStoreError,
    TaskStoreError,
)

__all__ = [
    "setup_logger",
    "configure_module_loggers",
    "SherlockError",
    "ConfigurationError",
    "ConnectorError",
    "SubmissionError",
    "StateStoreError",
    "TaskStoreError",
]
