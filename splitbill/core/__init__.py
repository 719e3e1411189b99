"""
Core module initialization.
Exports configuration and logging utilities.
"""

from splitbill.core.config import (
    get_settings,
    Settings,
    EnvironmentMode,
    setup_logging,
    get_logger,
)

__all__ = ["get_settings", "Settings", "EnvironmentMode", "setup_logging", "get_logger"]
