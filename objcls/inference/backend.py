"""
Inference backend interface and the records it exchanges with the pipeline.

A backend answers three questions about a trained model:
1. describe(): what input geometry and labels does the model expect?
2. estimate_normalization(): what stain normalization vector fits this image?
3. classify(): what class (and class probabilities) does each patch get?

The pipeline only talks to this interface, so the subprocess adapter
(FileProtocolBackend) can be swapped for an in-process or remote backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np


@dataclass(frozen=True)
class ModelDescriptor:
    """
    Immutable description of a trained model, loaded once per run.

    Attributes:
        name: Model name (file stem in the model repository)
        feature_size_px: Side of the square input patch at the model's native resolution
        pixel_size_um: Pixel size the model was trained at (microns/pixel)
        normalized: Whether the model needs a stain normalization vector
        labels: Class labels, index = class id
    """
    name: str
    feature_size_px: int
    pixel_size_um: float
    normalized: bool
    labels: Tuple[str, ...]

    def __post_init__(self):
        if self.feature_size_px <= 0:
            raise ValueError(f"feature_size_px must be positive, got {self.feature_size_px}")
        if self.pixel_size_um <= 0:
            raise ValueError(f"pixel_size_um must be positive, got {self.pixel_size_um}")
        if not self.labels:
            raise ValueError("A model needs at least one class label")
        object.__setattr__(self, 'labels', tuple(self.labels))

    @property
    def num_classes(self) -> int:
        return len(self.labels)


@dataclass
class InferenceResult:
    """
    Parsed ``eval`` result.

    predicted[i] and probability[i] belong to the i-th submitted patch.
    """
    success: bool
    predicted: List[int] = field(default_factory=list)
    probability: List[List[float]] = field(default_factory=list)
    output: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.predicted)


class InferenceBackend(ABC):
    """
    Abstract inference backend, one operation per invocation mode.

    Implementations raise objcls.errors exceptions:
    ExternalInvocationFailed for process/backend failures and MalformedResult
    for schema violations.
    """

    @abstractmethod
    def describe(self, model_file: Union[str, Path]) -> ModelDescriptor:
        """Load the model's descriptor (``param`` mode)."""
        pass

    @abstractmethod
    def estimate_normalization(self, image_dir: Union[str, Path]) -> np.ndarray:
        """Estimate a normalization vector from a directory of sample patches (``estimate_w`` mode)."""
        pass

    @abstractmethod
    def classify(
        self,
        model_file: Union[str, Path],
        image_dir: Union[str, Path],
        image_format: str,
        batch_size: int,
        normalizer_w: Optional[Sequence[float]] = None,
    ) -> InferenceResult:
        """Classify every patch in image_dir (``eval`` mode)."""
        pass
