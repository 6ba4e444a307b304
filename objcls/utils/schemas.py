"""
Schemas for the JSON documents exchanged with the classification script and
for the object files read and written by the CLI.

Uses Pydantic for validation with clear error messages.

Usage:
    from objcls.utils.schemas import ResultDocument, EvalResultDocument

    doc = ResultDocument.model_validate(raw)
    if doc.success:
        result = EvalResultDocument.model_validate(raw)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator


# =============================================================================
# Result documents written by the classification script
# =============================================================================

class ResultDocument(BaseModel):
    """Fields every result document carries, whatever the mode."""
    model_config = ConfigDict(extra="allow")

    success: StrictBool


class ParamResultDocument(ResultDocument):
    """Result of ``param`` mode: the model's input geometry and labels."""
    pixel_size: float = Field(..., gt=0)
    normalized: StrictBool
    image_size: int = Field(..., gt=0)
    label_list: str

    @field_validator('label_list')
    @classmethod
    def validate_label_list(cls, v: str) -> str:
        """Label list is semicolon-delimited and must name at least one class."""
        if not any(label.strip() for label in v.split(';')):
            raise ValueError("label_list must contain at least one label")
        return v

    @property
    def labels(self) -> List[str]:
        return split_label_list(self.label_list)


def split_label_list(label_list: str) -> List[str]:
    """
    Split a semicolon-delimited label list.

    Position is the class id, so interior blank labels are kept. Only
    trailing blanks (e.g. from a final ';') are dropped.
    """
    labels = [label.strip() for label in label_list.split(';')]
    while labels and not labels[-1]:
        labels.pop()
    return labels


class EstimateResultDocument(ResultDocument):
    """Result of ``estimate_w`` mode: the stain normalization vector."""
    W: List[float] = Field(..., min_length=1)


class EvalResultDocument(ResultDocument):
    """Result of ``eval`` mode: one prediction and probability row per patch."""
    predicted: List[int]
    probability: List[List[float]]


# =============================================================================
# Object files
# =============================================================================

class ObjectRecord(BaseModel):
    """One object in an objects file. The ROI is stored as WKT."""
    model_config = ConfigDict(extra="allow")

    id: str
    roi: str
    parent_id: Optional[str] = None
    is_annotation: bool = False
    classification: Optional[str] = None
    measurements: Dict[str, Optional[float]] = Field(default_factory=dict)


class ObjectFile(BaseModel):
    """Schema for objects JSON files: a flat object list plus the current selection."""
    model_config = ConfigDict(extra="allow")

    image_path: Optional[str] = None
    pixel_size_um: Optional[float] = None
    selected: List[str] = Field(default_factory=list)
    objects: List[ObjectRecord] = Field(default_factory=list)


def validate_json_file(
    file_path: Union[str, Path],
    schema: type[BaseModel],
    raise_on_error: bool = True,
) -> Optional[BaseModel]:
    """
    Validate a JSON file against a schema.

    Args:
        file_path: Path to JSON file
        schema: Pydantic model class to validate against
        raise_on_error: If True, re-raise file and validation errors

    Returns:
        Validated model instance, or None if validation fails and raise_on_error=False
    """
    file_path = Path(file_path)
    try:
        with open(file_path, 'r') as f:
            data: Any = json.load(f)
        return schema.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError):
        if raise_on_error:
            raise
        return None
