"""
Strict parsing of the result documents written by the classification script.

Every document must carry a boolean ``success``. Mode-specific fields are
validated with the pydantic models in objcls.utils.schemas; any violation is
reported as MalformedResult, and ``success: false`` as ExternalInvocationFailed.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Type, TypeVar, Union

import numpy as np
from pydantic import ValidationError

from objcls.errors import ExternalInvocationFailed, MalformedResult
from objcls.inference.backend import InferenceResult, ModelDescriptor
from objcls.utils.schemas import (
    EstimateResultDocument,
    EvalResultDocument,
    ParamResultDocument,
    ResultDocument,
)

DocT = TypeVar('DocT', bound=ResultDocument)


def load_result_document(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a result document.

    Raises:
        MalformedResult: If the file is missing, empty, not JSON, or not a JSON object
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise MalformedResult(f"Result file {path} could not be read: {e}") from e
    if not text.strip():
        raise MalformedResult(f"Result file {path} is empty")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedResult(f"Result file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResult(f"Result document must be a JSON object, got {type(data).__name__}")
    return data


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get('loc', ())) or "<document>"
    return f"{loc}: {err.get('msg')}"


def check_success(data: Dict[str, Any], mode: str, output: Optional[Sequence[str]] = None) -> None:
    """
    Check the mandatory ``success`` flag.

    Raises:
        MalformedResult: If success is missing or not a boolean
        ExternalInvocationFailed: If success is false
    """
    try:
        doc = ResultDocument.model_validate(data)
    except ValidationError as e:
        raise MalformedResult(f"{mode} result: {_first_error(e)}") from e
    if not doc.success:
        raise ExternalInvocationFailed(f"{mode} returned success=false", output=output)


def _parse(schema: Type[DocT], data: Dict[str, Any], mode: str, output: Optional[Sequence[str]]) -> DocT:
    check_success(data, mode, output)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise MalformedResult(f"{mode} result: {_first_error(e)}") from e


def parse_param_result(
    data: Dict[str, Any],
    model_name: str,
    output: Optional[Sequence[str]] = None,
) -> ModelDescriptor:
    """Parse a ``param`` document into a ModelDescriptor."""
    doc = _parse(ParamResultDocument, data, "param", output)
    return ModelDescriptor(
        name=model_name,
        feature_size_px=doc.image_size,
        pixel_size_um=doc.pixel_size,
        normalized=doc.normalized,
        labels=tuple(doc.labels),
    )


def parse_estimate_result(data: Dict[str, Any], output: Optional[Sequence[str]] = None) -> np.ndarray:
    """Parse an ``estimate_w`` document into a float64 normalization vector."""
    doc = _parse(EstimateResultDocument, data, "estimate_w", output)
    w = np.asarray(doc.W, dtype=np.float64)
    if not np.all(np.isfinite(w)):
        raise MalformedResult("estimate_w result: W contains non-finite values")
    return w


def parse_eval_result(data: Dict[str, Any], output: Optional[Sequence[str]] = None) -> InferenceResult:
    """Parse an ``eval`` document. Length checks against the request happen in the reconciler."""
    doc = _parse(EvalResultDocument, data, "eval", output)
    return InferenceResult(
        success=True,
        predicted=list(doc.predicted),
        probability=[list(row) for row in doc.probability],
        output=list(output or []),
    )
