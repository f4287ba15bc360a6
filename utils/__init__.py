"""
Shared utility modules for the water scheduler
"""

from .logging_config import (
    setup_logging, setup_file_logging, configure_module_logging,
    DEFAULT_LOG_FORMAT
)
from .config_base import ConfigBase, ConfigSchema, ConfigValidationError

__all__ = [
    'setup_logging', 'setup_file_logging', 'configure_module_logging',
    'DEFAULT_LOG_FORMAT',
    'ConfigBase', 'ConfigSchema', 'ConfigValidationError',
]
