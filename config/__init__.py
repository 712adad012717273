"""
Configuration Management Module
Environment-driven settings for the Sherlock pipeline
"""
from .settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
