"""
Inference backends for object classification.

Provides:
- InferenceBackend interface, ModelDescriptor and InferenceResult records
- FileProtocolBackend: runs the classification script as a subprocess
- EnvironmentRunner: launches the script in an exe/venv/conda environment
- ModelRepository: resolves model names to model files
- Strict result document parsing
"""

from .backend import (
    InferenceBackend,
    InferenceResult,
    ModelDescriptor,
)

from .runner import EnvironmentRunner

from .results import (
    load_result_document,
    check_success,
    parse_param_result,
    parse_estimate_result,
    parse_eval_result,
)

from .file_protocol import (
    FileProtocolBackend,
    Mode,
    build_param_args,
    build_estimate_args,
    build_eval_args,
    format_normalizer_w,
)

from .repository import ModelRepository

__all__ = [
    'InferenceBackend',
    'InferenceResult',
    'ModelDescriptor',
    'EnvironmentRunner',
    'load_result_document',
    'check_success',
    'parse_param_result',
    'parse_estimate_result',
    'parse_eval_result',
    'FileProtocolBackend',
    'Mode',
    'build_param_args',
    'build_estimate_args',
    'build_eval_args',
    'format_normalizer_w',
    'ModelRepository',
]
