"""
Object classification processing stages.

Provides:
- Region geometry and patch sizing (coordinates)
- Spatial object selection
- Patch dataset building
- Stain normalization estimate and cache
- Concurrency gate for external invocations
- Result validation and write-back
- ObjectClassifier pipeline
"""

from .coordinates import (
    Region,
    round_half_up,
    centroid_to_pixel,
    compute_feature_size,
    patch_origin,
    extract_patch_bounds,
)

from .selection import (
    object_in_region,
    select_objects_in_region,
)

from .concurrency import ConcurrencyGate

from .patches import (
    PatchDataset,
    build_patch_dataset,
    extract_patch,
    to_rgb_uint8,
)

from .normalization import (
    NormalizationCache,
    NormalizationEstimator,
)

from .reconcile import (
    ObjectUpdate,
    classification_name,
    probability_measurement_name,
    validate_eval_result,
    compute_updates,
    apply_updates,
    reconcile,
)

from .pipeline import (
    BatchResult,
    ObjectClassifier,
    RunContext,
    TiledRunSummary,
    selection_bounds,
)

__all__ = [
    'Region',
    'round_half_up',
    'centroid_to_pixel',
    'compute_feature_size',
    'patch_origin',
    'extract_patch_bounds',
    'object_in_region',
    'select_objects_in_region',
    'ConcurrencyGate',
    'PatchDataset',
    'build_patch_dataset',
    'extract_patch',
    'to_rgb_uint8',
    'NormalizationCache',
    'NormalizationEstimator',
    'ObjectUpdate',
    'classification_name',
    'probability_measurement_name',
    'validate_eval_result',
    'compute_updates',
    'apply_updates',
    'reconcile',
    'BatchResult',
    'ObjectClassifier',
    'RunContext',
    'TiledRunSummary',
    'selection_bounds',
]
