"""
Stain normalization estimate for models that require one.

A fixed-size random sample of the objects under the selected annotations is
written out at the model's native patch size and passed to the backend's
``estimate_w`` mode. The resulting vector is computed once per
(image, model) pair and reused for every classification batch.
"""

import random
import threading
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from objcls.errors import InsufficientSamples, PatchExtractionError
from objcls.inference.backend import InferenceBackend, ModelDescriptor
from objcls.io.image_source import ImageSource
from objcls.io.workspace import EphemeralWorkspace
from objcls.objects import DetectableObject
from objcls.processing.concurrency import ConcurrencyGate
from objcls.processing.patches import build_patch_dataset
from objcls.utils.logging import ProcessingTimer, get_logger

logger = get_logger(__name__)

CacheKey = Tuple[str, str]


class NormalizationCache:
    """
    Write-once cache of normalization vectors keyed by (image path, model name).

    get_or_compute() runs the computation at most once per key even when
    called from several threads; concurrent callers for the same key wait for
    the first one.
    """

    def __init__(self):
        self._values: Dict[Hashable, np.ndarray] = {}
        self._key_locks: Dict[Hashable, threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[np.ndarray]:
        with self._lock:
            return self._values.get(key)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def get_or_compute(self, key: CacheKey, compute: Callable[[], np.ndarray]) -> np.ndarray:
        with self._lock:
            if key in self._values:
                return self._values[key]
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            with self._lock:
                if key in self._values:
                    return self._values[key]
            value = np.asarray(compute(), dtype=np.float64)
            value.setflags(write=False)
            with self._lock:
                self._values[key] = value
            return value

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._key_locks.clear()


def collect_samples(annotations: Sequence[DetectableObject]) -> List[DetectableObject]:
    """All non-annotation descendants of the annotations, each object once."""
    seen = set()
    samples = []
    for annotation in annotations:
        for obj in annotation.descendants():
            if obj.is_annotation or id(obj) in seen:
                continue
            seen.add(id(obj))
            samples.append(obj)
    return samples


class NormalizationEstimator:
    """
    Drives one ``estimate_w`` invocation on a random object sample.

    Attributes:
        backend: Inference backend
        sample_size: Number of objects to sample
        image_format: Patch file format
        patch_workers: Patch extraction threads
        gate: Gate shared with classification invocations
        rng: random.Random used for shuffling (seed it for reproducible samples)
    """

    def __init__(
        self,
        backend: InferenceBackend,
        sample_size: int,
        image_format: str = "png",
        patch_workers: int = 8,
        gate: Optional[ConcurrencyGate] = None,
        rng: Optional[random.Random] = None,
    ):
        self.backend = backend
        self.sample_size = sample_size
        self.image_format = image_format
        self.patch_workers = patch_workers
        self.gate = gate or ConcurrencyGate(None)
        self.rng = rng or random.Random()

    def sample(self, annotations: Sequence[DetectableObject]) -> List[DetectableObject]:
        """
        Draw the object sample.

        Raises:
            InsufficientSamples: If no annotation is given or fewer than
                sample_size objects are available
        """
        annotations = [a for a in annotations if a.is_annotation]
        if not annotations:
            raise InsufficientSamples("Stain normalization requires at least one selected annotation")

        candidates = collect_samples(annotations)
        if len(candidates) < self.sample_size:
            raise InsufficientSamples(
                f"Stain estimation needs {self.sample_size} objects, only {len(candidates)} available"
            )
        self.rng.shuffle(candidates)
        return candidates[:self.sample_size]

    def estimate(
        self,
        source: ImageSource,
        annotations: Sequence[DetectableObject],
        descriptor: ModelDescriptor,
    ) -> np.ndarray:
        """
        Estimate the normalization vector for one image and model.

        Patches are taken at the model's native feature size, unscaled.

        Returns:
            Normalization vector (float64)

        Raises:
            InsufficientSamples: If too few objects are available
            PatchExtractionError: If no sampled patch could be written
        """
        samples = self.sample(annotations)

        with ProcessingTimer(logger, f"stain estimation for {descriptor.name} on {source.path}"):
            with EphemeralWorkspace("estimate_w") as ws:
                dataset = build_patch_dataset(
                    source, samples, ws.image_dir,
                    patch_size=descriptor.feature_size_px,
                    image_format=self.image_format,
                    naming="id",
                    max_workers=self.patch_workers,
                )
                if dataset.n_written == 0:
                    raise PatchExtractionError(
                        f"None of the {len(samples)} sampled patches could be written", dataset.failed,
                    )
                if dataset.failed:
                    logger.warning(f"Estimating from {dataset.n_written} of {len(samples)} sampled patches")
                with self.gate:
                    w = self.backend.estimate_normalization(ws.image_dir)

        logger.info(f"Normalization vector ({len(w)} values): {np.array2string(np.asarray(w), precision=4)}")
        return w
