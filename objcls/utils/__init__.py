"""
Utility modules for object classification.

Provides:
- Configuration management
- Logging utilities
- JSON helpers
- Result and object-file schemas (requires pydantic)
"""

from .config import (
    DEFAULT_CONFIG,
    DEFAULT_PATHS,
    ConfigValidationError,
    load_config,
    save_config,
    validate_config,
    get_image_format,
)

from .logging import (
    get_logger,
    setup_logging,
    log_parameters,
    ProcessingTimer,
)

from .json_utils import (
    NumpyEncoder,
    sanitize_for_json,
    atomic_json_dump,
)

__all__ = [
    'DEFAULT_CONFIG',
    'DEFAULT_PATHS',
    'ConfigValidationError',
    'load_config',
    'save_config',
    'validate_config',
    'get_image_format',
    'get_logger',
    'setup_logging',
    'log_parameters',
    'ProcessingTimer',
    'NumpyEncoder',
    'sanitize_for_json',
    'atomic_json_dump',
]
