"""
Configuration for object classification runs.

All values are supplied externally: the model store, the classification
script, the Python environment that runs it, and the run-time knobs that
bound batch size and external parallelism.

Usage:
    from objcls.utils.config import load_config, validate_config

    config = load_config('/path/to/objcls.json')
    validate_config(config, raise_on_error=True)

Environment Variables:
    OBJCLS_MODEL_DIR: Directory holding one <model>.pt file per model
    OBJCLS_SCRIPT_DIR: Directory holding classification.py
    OBJCLS_ENV_PATH: Python executable, virtualenv directory or conda env name
    OBJCLS_ENV_TYPE: One of 'exe', 'venv', 'conda'
"""

import copy
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, TypedDict, Union

from objcls.utils.json_utils import NumpyEncoder
from objcls.utils.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# CONFIGURATION TYPE DEFINITIONS
# =============================================================================

class ClassificationConfig(TypedDict, total=False):
    """
    Run configuration.

    Attributes:
        model_dir: Directory of trained model files.
        model_extension: Model file extension (default '.pt').
        script_dir: Directory containing the classification script.
        script_name: Classification script file name.
        environment_path: Python executable, virtualenv dir or conda env name.
        environment_type: 'exe', 'venv' or 'conda'.
        image_format: Patch file format ('png', 'tif', ...). A leading dot is ignored.
        normalization_sample_size: Objects sampled for stain normalization. Range 1-100000.
        max_parallel: Max concurrent external invocations, 0 = unlimited. Range 0-64.
        batch_size: Batch size passed to the model. Range 1-4096.
        include_probability: Write per-class probability measurements.
        tile_size: Tile side in pixels for tiled runs. Range 256-65536.
        tile_workers: Threads running tile batches. Range 1-64.
        patch_workers: Threads extracting patches. Range 1-64.
        fail_on_patch_error: Abort a batch when any patch cannot be written.
    """
    model_dir: str
    model_extension: str
    script_dir: str
    script_name: str
    environment_path: str
    environment_type: str
    image_format: str
    normalization_sample_size: int
    max_parallel: int
    batch_size: int
    include_probability: bool
    tile_size: int
    tile_workers: int
    patch_workers: int
    fail_on_patch_error: bool


ENVIRONMENT_TYPES = ("exe", "venv", "conda")

_VALIDATION_RULES: Dict[str, Dict[str, Any]] = {
    "normalization_sample_size": {"min": 1, "max": 100000, "type": int},
    "max_parallel": {"min": 0, "max": 64, "type": int},
    "batch_size": {"min": 1, "max": 4096, "type": int},
    "tile_size": {"min": 256, "max": 65536, "type": int},
    "tile_workers": {"min": 1, "max": 64, "type": int},
    "patch_workers": {"min": 1, "max": 64, "type": int},
}

DEFAULT_PATHS = {
    "model_dir": os.getenv("OBJCLS_MODEL_DIR", str(Path.home() / "objcls" / "models")),
    "script_dir": os.getenv("OBJCLS_SCRIPT_DIR", str(Path.home() / "objcls" / "scripts")),
    "environment_path": os.getenv("OBJCLS_ENV_PATH", sys.executable),
    "environment_type": os.getenv("OBJCLS_ENV_TYPE", "exe"),
}

DEFAULT_CONFIG: Dict[str, Any] = {
    # External collaborators
    "model_dir": DEFAULT_PATHS["model_dir"],
    "model_extension": ".pt",
    "script_dir": DEFAULT_PATHS["script_dir"],
    "script_name": "classification.py",
    "environment_path": DEFAULT_PATHS["environment_path"],
    "environment_type": DEFAULT_PATHS["environment_type"],

    # Patch dataset
    "image_format": "png",
    "patch_workers": 8,
    "fail_on_patch_error": False,

    # Normalization
    "normalization_sample_size": 1000,

    # Inference
    "max_parallel": 0,
    "batch_size": 128,
    "include_probability": True,

    # Tiled runs
    "tile_size": 2048,
    "tile_workers": 4,
}


def get_image_format(config: Dict[str, Any]) -> str:
    """
    Get the patch file format without a leading dot.

    Args:
        config: Configuration dictionary

    Returns:
        Format string, e.g. 'png'
    """
    fmt = str(config.get("image_format", DEFAULT_CONFIG["image_format"])).strip()
    return fmt[1:] if fmt.startswith('.') else fmt


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Recursively merge override into base in place, deep-copying leaves."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    **overrides: Any,
) -> Dict[str, Any]:
    """
    Load configuration, merged over DEFAULT_CONFIG.

    A missing or unreadable file falls back to defaults with a warning.

    Args:
        config_path: Path to a JSON config file, or None for defaults only
        **overrides: Keys applied last (e.g. from the command line); None values are ignored

    Returns:
        Merged configuration dict
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path is not None:
        config_path = Path(config_path)
        if config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    _deep_merge(config, json.load(f))
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Could not load config from {config_path}: {e}")
        else:
            logger.warning(f"Config file not found: {config_path}, using defaults")

    _deep_merge(config, {k: v for k, v in overrides.items() if v is not None})
    return config


def save_config(config: Dict[str, Any], config_path: Union[str, Path]) -> Path:
    """
    Save configuration as JSON.

    Args:
        config: Configuration dict
        config_path: Target file

    Returns:
        Path to the saved file
    """
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        json.dump(config, f, cls=NumpyEncoder, indent=2)
    return config_path


# =============================================================================
# CONFIGURATION VALIDATION
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


def _validate_range(
    value: Any,
    key: str,
    min_val: Union[int, float],
    max_val: Union[int, float],
    expected_type: Union[type, Tuple[type, ...]],
) -> List[str]:
    """
    Validate that a value has the expected type and lies in [min_val, max_val].

    Returns:
        List of error messages (empty if valid)
    """
    # bool is an int subclass but never a valid count
    if isinstance(value, bool) or not isinstance(value, expected_type):
        name = expected_type.__name__ if isinstance(expected_type, type) else "/".join(
            t.__name__ for t in expected_type)
        return [f"{key}: expected {name}, got {type(value).__name__}"]
    if value < min_val or value > max_val:
        return [f"{key}: value {value} out of range [{min_val}, {max_val}]"]
    return []


def validate_config(
    config: Optional[Dict[str, Any]] = None,
    raise_on_error: bool = False,
) -> Dict[str, Union[bool, List[str]]]:
    """
    Validate a configuration dict against expected types and ranges.

    Args:
        config: Configuration to check. If None, validates DEFAULT_CONFIG.
        raise_on_error: Raise ConfigValidationError on the first error instead
            of only reporting it.

    Returns:
        Dict with 'valid' (bool), 'errors' and 'warnings' (lists of strings)

    Raises:
        ConfigValidationError: If raise_on_error=True and validation fails

    Example:
        >>> validate_config({"batch_size": 0})['errors']
        ['batch_size: value 0 out of range [1, 4096]']
    """
    if config is None:
        config = DEFAULT_CONFIG

    errors: List[str] = []
    warnings: List[str] = []

    for key, rule in _VALIDATION_RULES.items():
        if key in config:
            errors.extend(_validate_range(config[key], key, rule["min"], rule["max"], rule["type"]))

    env_type = config.get("environment_type")
    if env_type is not None and env_type not in ENVIRONMENT_TYPES:
        errors.append(f"environment_type: '{env_type}' not in {list(ENVIRONMENT_TYPES)}")

    for key in ("include_probability", "fail_on_patch_error"):
        if key in config and not isinstance(config[key], bool):
            errors.append(f"{key}: expected bool, got {type(config[key]).__name__}")

    if "image_format" in config and not get_image_format(config):
        errors.append("image_format: must not be empty")

    ext = config.get("model_extension")
    if ext is not None and not str(ext).startswith('.'):
        errors.append(f"model_extension: '{ext}' must start with '.'")

    model_dir = config.get("model_dir")
    if model_dir and not Path(model_dir).is_dir():
        warnings.append(f"model_dir does not exist: {model_dir}")

    script_dir = config.get("script_dir")
    if script_dir and not (Path(script_dir) / config.get("script_name", "classification.py")).is_file():
        warnings.append(f"classification script not found in {script_dir}")

    result = {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
    }

    if raise_on_error and errors:
        raise ConfigValidationError(f"Configuration validation failed: {errors[0]}")

    return result


def get_config_summary(config: Dict[str, Any]) -> str:
    """Render the run-relevant configuration keys as a multi-line string."""
    keys = [
        "model_dir", "script_dir", "environment_type", "environment_path",
        "image_format", "batch_size", "max_parallel", "normalization_sample_size",
        "include_probability", "tile_size", "tile_workers",
    ]
    return "\n".join(f"  {key}: {config.get(key)}" for key in keys)
