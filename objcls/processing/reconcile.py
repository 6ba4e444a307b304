"""
Validate an ``eval`` result and write it back onto the submitted objects.

Result index i belongs to the i-th object of the submitted sequence, never
to a file-name order. Validation runs to completion before the first object
is touched, so a rejected result leaves every object unchanged.

Naming:
    classification:  objcls:<model>:<label>
    measurement:     objcls:<model>:prob:<label>
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from objcls.errors import MalformedResult, ResultSizeMismatch
from objcls.inference.backend import InferenceResult, ModelDescriptor
from objcls.objects import DetectableObject
from objcls.utils.logging import get_logger

logger = get_logger(__name__)

NAMESPACE = "objcls"


def classification_name(model_name: str, label: str) -> str:
    return f"{NAMESPACE}:{model_name}:{label}"


def probability_measurement_name(model_name: str, label: str) -> str:
    return f"{NAMESPACE}:{model_name}:prob:{label}"


def validate_eval_result(result: InferenceResult, n_objects: int, n_classes: int) -> None:
    """
    Check an eval result against the submitted batch.

    Raises:
        ResultSizeMismatch: If predicted/probability lengths differ from
            n_objects, or a probability row does not have n_classes entries
        MalformedResult: If a predicted index is not a valid class index
    """
    if len(result.predicted) != n_objects:
        raise ResultSizeMismatch("Predicted class count does not match submitted objects",
                                 n_objects, len(result.predicted))
    if len(result.probability) != n_objects:
        raise ResultSizeMismatch("Probability row count does not match submitted objects",
                                 n_objects, len(result.probability))
    for i, row in enumerate(result.probability):
        if len(row) != n_classes:
            raise ResultSizeMismatch(f"Probability row {i} does not match the model's class count",
                                     n_classes, len(row))
    for i, index in enumerate(result.predicted):
        if not 0 <= index < n_classes:
            raise MalformedResult(
                f"Predicted class index {index} for object {i} is outside [0, {n_classes})"
            )


@dataclass
class ObjectUpdate:
    """Label and measurements to commit to one object."""
    obj: DetectableObject
    classification: str
    measurements: List[Tuple[str, float]] = field(default_factory=list)


def compute_updates(
    objects: Sequence[DetectableObject],
    result: InferenceResult,
    descriptor: ModelDescriptor,
    include_probability: bool = True,
) -> List[ObjectUpdate]:
    """
    Map a validated result onto the objects, without mutating anything.
    """
    validate_eval_result(result, len(objects), descriptor.num_classes)

    prob_names = [probability_measurement_name(descriptor.name, label) for label in descriptor.labels]
    updates = []
    for obj, index, row in zip(objects, result.predicted, result.probability):
        update = ObjectUpdate(obj, classification_name(descriptor.name, descriptor.labels[index]))
        if include_probability:
            update.measurements = [(name, float(p)) for name, p in zip(prob_names, row)]
        updates.append(update)
    return updates


def apply_updates(updates: Sequence[ObjectUpdate]) -> int:
    """
    Commit computed updates.

    Each object's writes happen under its measurement list lock, and the list
    is closed afterwards.

    Returns:
        Number of objects updated
    """
    for update in updates:
        measurements = update.obj.measurements
        with measurements.lock:
            update.obj.classification = update.classification
            for name, value in update.measurements:
                measurements.set(name, value)
            measurements.close()
    return len(updates)


def reconcile(
    objects: Sequence[DetectableObject],
    result: InferenceResult,
    descriptor: ModelDescriptor,
    include_probability: bool = True,
    indices: Optional[Sequence[int]] = None,
) -> int:
    """
    Validate and commit an eval result.

    Args:
        objects: Submitted objects, in dataset order
        result: Parsed eval result
        descriptor: Model the result came from
        include_probability: Also write per-class probability measurements
        indices: If only a subset of objects was written to the dataset,
            the positions (into objects) of the patches the result covers

    Returns:
        Number of objects updated
    """
    targets = list(objects) if indices is None else [objects[i] for i in indices]
    updates = compute_updates(targets, result, descriptor, include_probability)
    n = apply_updates(updates)
    logger.debug(f"Committed {n} classifications from {descriptor.name}")
    return n
