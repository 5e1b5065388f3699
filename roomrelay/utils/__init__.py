"""Utilities module."""

from roomrelay.utils.config import RelayConfig, Settings, load_config, save_config, settings
from roomrelay.utils.logger import get_logger, setup_logging

__all__ = [
    "RelayConfig",
    "Settings",
    "load_config",
    "save_config",
    "settings",
    "get_logger",
    "setup_logging",
]
