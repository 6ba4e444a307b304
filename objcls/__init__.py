"""
Object classification package for patch-based external-model inference.

Provides selection, patch extraction, external inference and result
write-back for detected objects (cells) inside a region of a whole-slide image.

Usage:
    from objcls.processing import ObjectClassifier
    from objcls.inference import FileProtocolBackend, EnvironmentRunner
    from objcls.io import ArrayImageSource, EphemeralWorkspace
    from objcls.utils import get_logger, setup_logging, load_config
"""

# Version
__version__ = "0.1.0"

# Individual modules should be imported explicitly:
#   from objcls.processing.pipeline import ObjectClassifier
#   from objcls.utils.logging import get_logger

__all__ = [
    "errors",
    "objects",
    "io",
    "inference",
    "processing",
    "utils",
    "cli",
]
