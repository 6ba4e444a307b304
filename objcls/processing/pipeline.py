"""
Classification pipeline: region -> objects -> patches -> inference -> objects.

Usage:
    from objcls.inference import FileProtocolBackend, ModelRepository
    from objcls.processing.pipeline import ObjectClassifier
    from objcls.utils.config import load_config

    config = load_config('objcls.json')
    classifier = ObjectClassifier(
        FileProtocolBackend.from_config(config),
        ModelRepository.from_config(config),
        config,
    )
    summary = classifier.run(image, hierarchy, model_name='tumorClf')

A RunContext holds everything that is fixed for one run (model descriptor,
rescaled patch size, normalization vector, candidate objects). Region batches
built from the same context are independent of each other and may run
concurrently; the shared ConcurrencyGate bounds how many of them are inside
the external process at any time.
"""

import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from shapely.ops import unary_union
from tqdm import tqdm

from objcls.errors import (
    InsufficientSamples,
    InvalidArgument,
    ObjectClassificationError,
    PatchExtractionError,
)
from objcls.inference.backend import InferenceBackend, ModelDescriptor
from objcls.inference.repository import ModelRepository
from objcls.io.image_source import ImageSource
from objcls.io.workspace import EphemeralWorkspace
from objcls.objects import DetectableObject, ObjectHierarchy
from objcls.processing.concurrency import ConcurrencyGate
from objcls.processing.coordinates import Region, compute_feature_size
from objcls.processing.normalization import NormalizationCache, NormalizationEstimator
from objcls.processing.patches import build_patch_dataset
from objcls.processing.reconcile import reconcile
from objcls.processing.selection import select_objects_in_region
from objcls.utils.config import DEFAULT_CONFIG, get_image_format
from objcls.utils.logging import ProcessingTimer, get_logger, log_parameters

logger = get_logger(__name__)

STATUS_COMPLETED = "completed"
STATUS_EMPTY = "empty"
STATUS_FAILED = "failed"


@dataclass
class RunContext:
    """
    Per-run state shared by every region batch of the run.

    Attributes:
        image: Image the patches are read from
        hierarchy: Object graph being classified
        descriptor: Model descriptor from the param invocation
        model_file: Path of the model file
        feature_size_px: Patch side in image pixels
        candidates: Objects eligible for classification, in canonical order
        normalizer_w: Normalization vector, or None if the model needs none
    """
    image: ImageSource
    hierarchy: ObjectHierarchy
    descriptor: ModelDescriptor
    model_file: Path
    feature_size_px: int
    candidates: List[DetectableObject]
    normalizer_w: Optional[np.ndarray] = None

    @property
    def model_name(self) -> str:
        return self.descriptor.name


@dataclass
class BatchResult:
    """Outcome of classifying one region."""
    region: Region
    status: str
    n_selected: int = 0
    n_classified: int = 0
    n_failed_patches: int = 0
    error: Optional[str] = None
    duration: Optional[float] = None


@dataclass
class TiledRunSummary:
    """Per-tile outcomes of a run, in row-major tile order."""
    model_name: str
    batches: List[BatchResult] = field(default_factory=list)

    @property
    def n_classified(self) -> int:
        return sum(b.n_classified for b in self.batches)

    @property
    def failed(self) -> List[BatchResult]:
        return [b for b in self.batches if b.status == STATUS_FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model_name,
            "n_tiles": len(self.batches),
            "n_classified": self.n_classified,
            "n_failed_tiles": len(self.failed),
            "errors": {b.region.tag: b.error for b in self.failed},
        }


def selection_bounds(annotations: Sequence[DetectableObject], downsample: float = 1.0) -> Region:
    """
    Region covering the union of the given annotations.

    Raises:
        InvalidArgument: If no annotation is given
    """
    if not annotations:
        raise InvalidArgument("No annotation selected: select at least one annotation or pass a region")
    return Region.from_geometry(unary_union([a.roi for a in annotations]), downsample=downsample)


class ObjectClassifier:
    """
    Runs a model over the objects of a hierarchy.

    One classifier can serve several runs; all of them share its
    ConcurrencyGate and NormalizationCache.

    Attributes:
        backend: Inference backend
        repository: Model repository
        config: Merged configuration
        gate: Bounds concurrent backend invocations (max_parallel)
        normalization_cache: Normalization vectors by (image path, model name)
    """

    def __init__(
        self,
        backend: InferenceBackend,
        repository: ModelRepository,
        config: Optional[Dict[str, Any]] = None,
        normalization_cache: Optional[NormalizationCache] = None,
        gate: Optional[ConcurrencyGate] = None,
    ):
        self.backend = backend
        self.repository = repository
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.image_format = get_image_format(self.config)
        self.gate = gate or ConcurrencyGate(self.config.get("max_parallel"))
        self.normalization_cache = normalization_cache or NormalizationCache()

    # -------------------------------------------------------------------------
    # Run setup
    # -------------------------------------------------------------------------

    def load_model(self, model_name: Optional[str] = None):
        """Resolve a model and load its descriptor (one param invocation)."""
        name = model_name if model_name is not None else self.repository.default_model()
        model_file = self.repository.model_path(name)
        with self.gate:
            descriptor = self.backend.describe(model_file)
        return model_file, descriptor

    def prepare(
        self,
        image: ImageSource,
        hierarchy: ObjectHierarchy,
        model_name: Optional[str] = None,
        objects: Optional[Sequence[DetectableObject]] = None,
        rng: Optional[random.Random] = None,
    ) -> RunContext:
        """
        Build the run context.

        Args:
            image: Image to classify objects on
            hierarchy: Object graph
            model_name: Model to use (default: the first model in the repository)
            objects: Candidate objects (default: children of the selected objects)
            rng: Random source for normalization sampling

        Raises:
            MissingCalibration: If the image has no pixel size
            InvalidArgument: For an unknown model or an empty repository
            InsufficientSamples: If there is no candidate object, or the model
                is normalized and too few objects are available for the estimate
        """
        image_pixel_size = image.require_pixel_size()

        if objects is None:
            objects = hierarchy.objects_in_selection()
        candidates = [o for o in objects if not o.is_annotation]
        if not candidates:
            raise InsufficientSamples("No objects to classify under the selected annotations")

        model_file, descriptor = self.load_model(model_name)
        feature_size = compute_feature_size(
            descriptor.feature_size_px, descriptor.pixel_size_um, image_pixel_size,
        )

        normalizer_w = None
        if descriptor.normalized:
            estimator = NormalizationEstimator(
                self.backend,
                sample_size=self.config["normalization_sample_size"],
                image_format=self.image_format,
                patch_workers=self.config["patch_workers"],
                gate=self.gate,
                rng=rng,
            )
            normalizer_w = self.normalization_cache.get_or_compute(
                (image.path, descriptor.name),
                lambda: estimator.estimate(image, hierarchy.selected_annotations(), descriptor),
            )

        logger.info(
            f"Prepared {descriptor.name} on {image.path}: {len(candidates)} candidate objects, "
            f"patch {feature_size}px"
        )
        return RunContext(
            image=image,
            hierarchy=hierarchy,
            descriptor=descriptor,
            model_file=model_file,
            feature_size_px=feature_size,
            candidates=candidates,
            normalizer_w=normalizer_w,
        )

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def classify_region(self, context: RunContext, region: Region) -> BatchResult:
        """
        Classify the candidate objects whose centroid lies in region.

        The dataset directory and the result file are removed before this
        returns, whatever the outcome. Objects are only modified once the
        whole result has been validated.

        Raises:
            ObjectClassificationError: Any failure of this batch (logged at ERROR)
        """
        selected = select_objects_in_region(context.candidates, region)
        if not selected:
            logger.debug(f"No objects in region {region}")
            return BatchResult(region, STATUS_EMPTY)

        desc = context.descriptor
        with ProcessingTimer(logger, f"{desc.name} on {len(selected)} objects at {region.tag}") as timer:
            with EphemeralWorkspace("classification", tag=region.tag) as ws:
                dataset = build_patch_dataset(
                    context.image, selected, ws.image_dir,
                    patch_size=context.feature_size_px,
                    image_format=self.image_format,
                    naming="index",
                    max_workers=self.config["patch_workers"],
                    downsample=region.downsample,
                )
                if dataset.failed and (self.config["fail_on_patch_error"] or dataset.n_written == 0):
                    raise PatchExtractionError(
                        f"{len(dataset.failed)}/{dataset.n_requested} patches could not be written",
                        dataset.failed,
                    )
                written = [i for i, name in enumerate(dataset.file_names) if name is not None]

                with self.gate:
                    result = self.backend.classify(
                        context.model_file,
                        ws.image_dir,
                        self.image_format,
                        self.config["batch_size"],
                        context.normalizer_w,
                    )

            n = reconcile(
                selected, result, desc,
                include_probability=self.config["include_probability"],
                indices=None if dataset.complete else written,
            )

        return BatchResult(
            region,
            STATUS_COMPLETED,
            n_selected=len(selected),
            n_classified=n,
            n_failed_patches=len(dataset.failed),
            duration=timer.duration,
        )

    def _classify_tile(self, context: RunContext, region: Region) -> BatchResult:
        try:
            return self.classify_region(context, region)
        except (ObjectClassificationError, OSError) as e:
            return BatchResult(region, STATUS_FAILED, error=f"{type(e).__name__}: {e}")

    def classify_tiles(
        self,
        context: RunContext,
        region: Region,
        tile_size: Optional[int] = None,
        max_workers: Optional[int] = None,
        show_progress: bool = False,
    ) -> TiledRunSummary:
        """
        Classify a region tile by tile.

        Tiles run concurrently and independently: a failed tile is recorded in
        the summary and does not undo the tiles that completed.
        """
        tile_size = tile_size or self.config["tile_size"]
        max_workers = max_workers or self.config["tile_workers"]
        tiles = list(region.tiles(tile_size))
        logger.info(f"Classifying {region} in {len(tiles)} tiles of {tile_size}px ({max_workers} workers)")

        summary = TiledRunSummary(context.model_name)
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            results = executor.map(lambda t: self._classify_tile(context, t), tiles)
            summary.batches = list(tqdm(results, total=len(tiles), desc="Tiles", disable=not show_progress))

        for batch in summary.failed:
            logger.error(f"Tile {batch.region.tag} failed: {batch.error}")
        return summary

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def run(
        self,
        image: ImageSource,
        hierarchy: ObjectHierarchy,
        model_name: Optional[str] = None,
        region: Optional[Region] = None,
        tiled: bool = False,
        rng: Optional[random.Random] = None,
        show_progress: bool = False,
    ) -> TiledRunSummary:
        """
        Classify the objects under the selected annotations.

        Args:
            image: Image source
            hierarchy: Object graph with the annotations selected
            model_name: Model name (default: first model in the repository)
            region: Region to classify (default: bounds of the selected annotations)
            tiled: Split the region into tiles of config['tile_size']
            rng: Random source for normalization sampling
            show_progress: Show tqdm progress bars

        Returns:
            TiledRunSummary (a single batch for untiled runs)

        Raises:
            ObjectClassificationError: Setup failures, and batch failures of
                untiled runs
        """
        log_parameters(logger, {
            "image": image.path,
            "model": model_name or "(default)",
            "region": region or "(selection bounds)",
            "tiled": tiled,
            "max_parallel": self.config["max_parallel"],
            "image_format": self.image_format,
        }, title="Object classification")

        if region is None:
            region = selection_bounds(hierarchy.selected_annotations())
        context = self.prepare(image, hierarchy, model_name, rng=rng)

        if tiled:
            return self.classify_tiles(context, region, show_progress=show_progress)

        summary = TiledRunSummary(context.model_name)
        summary.batches.append(self.classify_region(context, region))
        return summary
