"""
Object graph: annotations, detected objects and their measurement lists.

The hierarchy is owned by the caller. Classification runs mutate an object's
classification and measurements but never add or remove objects.

Usage:
    from objcls.objects import DetectableObject, ObjectHierarchy, load_hierarchy

    hierarchy = load_hierarchy('/path/to/objects.json')
    annotations = hierarchy.selected_annotations()
    cells = hierarchy.get_objects(lambda o: o.parent in annotations)
"""

from __future__ import annotations

import threading
import uuid
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Union

from shapely import wkt
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry

from objcls.utils.json_utils import atomic_json_dump
from objcls.utils.logging import get_logger
from objcls.utils.schemas import ObjectFile, ObjectRecord, validate_json_file

logger = get_logger(__name__)


class MeasurementList:
    """
    Ordered mapping from measurement name to value.

    Writes are serialized by an internal lock. ``close()`` marks the end of a
    batch of writes; a later ``set()`` reopens the list.
    """

    def __init__(self, values: Optional[Dict[str, float]] = None):
        self._values: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.RLock()
        self._closed = False
        if values:
            for name, value in values.items():
                self._values[name] = value

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def closed(self) -> bool:
        return self._closed

    def set(self, name: str, value: float) -> None:
        with self._lock:
            self._closed = False
            self._values[name] = float(value)

    def get(self, name: str, default: Optional[float] = None) -> Optional[float]:
        with self._lock:
            return self._values.get(name, default)

    def remove(self, name: str) -> None:
        with self._lock:
            self._values.pop(name, None)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._values)

    def as_dict(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._values)

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def __repr__(self) -> str:
        return f"MeasurementList({len(self)} values, closed={self._closed})"


class DetectableObject:
    """
    A detected object (or an annotation) with a region of interest.

    Attributes:
        id: Stable unique identifier
        roi: Shapely geometry in full-resolution image pixel coordinates
        classification: Current class label, or None
        measurements: Per-object MeasurementList
        parent: Parent object, or None for roots
        children: Child objects in insertion order
        is_annotation: True for user annotations that own detections
    """

    def __init__(
        self,
        roi: BaseGeometry,
        id: Optional[str] = None,
        classification: Optional[str] = None,
        measurements: Optional[Dict[str, float]] = None,
        is_annotation: bool = False,
    ):
        if roi is None or roi.is_empty:
            raise ValueError("DetectableObject requires a non-empty ROI")
        self.id = id or str(uuid.uuid4())
        self.roi = roi
        self.classification = classification
        self.measurements = MeasurementList(measurements)
        self.is_annotation = is_annotation
        self.parent: Optional[DetectableObject] = None
        self.children: List[DetectableObject] = []

    @classmethod
    def from_point(cls, x: float, y: float, radius: float = 4.0, **kwargs) -> "DetectableObject":
        """Create an object with a circular ROI around (x, y)."""
        return cls(Point(x, y).buffer(radius), **kwargs)

    @property
    def centroid(self):
        """(x, y) centroid of the ROI."""
        c = self.roi.centroid
        return (c.x, c.y)

    def add_child(self, child: "DetectableObject") -> "DetectableObject":
        if child.parent is not None:
            child.parent.children.remove(child)
        child.parent = self
        self.children.append(child)
        return child

    def descendants(self) -> Iterator["DetectableObject"]:
        """Depth-first iteration over all descendants in insertion order."""
        for child in self.children:
            yield child
            yield from child.descendants()

    def __repr__(self) -> str:
        kind = "Annotation" if self.is_annotation else "Detection"
        cx, cy = self.centroid
        return f"{kind}(id={self.id!r}, centroid=({cx:.1f}, {cy:.1f}), class={self.classification!r})"


class ObjectHierarchy:
    """
    Container for root objects plus a selection model.

    ``get_objects`` returns objects in one canonical depth-first order, which
    the classification pipeline relies on for stable object ordering.
    """

    def __init__(self, roots: Optional[Iterable[DetectableObject]] = None):
        self.roots: List[DetectableObject] = list(roots or [])
        self._selected: List[DetectableObject] = []
        self._lock = threading.Lock()

    def add_object(self, obj: DetectableObject, parent: Optional[DetectableObject] = None) -> DetectableObject:
        if parent is None:
            self.roots.append(obj)
        else:
            parent.add_child(obj)
        return obj

    def iter_objects(self) -> Iterator[DetectableObject]:
        for root in self.roots:
            yield root
            yield from root.descendants()

    def get_objects(self, predicate: Optional[Callable[[DetectableObject], bool]] = None) -> List[DetectableObject]:
        return [o for o in self.iter_objects() if predicate is None or predicate(o)]

    def find(self, object_id: str) -> Optional[DetectableObject]:
        for obj in self.iter_objects():
            if obj.id == object_id:
                return obj
        return None

    # -- selection --------------------------------------------------------

    def select(self, objects: Iterable[DetectableObject]) -> None:
        with self._lock:
            self._selected = list(objects)

    def selected_objects(self) -> List[DetectableObject]:
        with self._lock:
            return list(self._selected)

    def selected_annotations(self) -> List[DetectableObject]:
        return [o for o in self.selected_objects() if o.is_annotation]

    def objects_in_selection(self) -> List[DetectableObject]:
        """Objects whose parent is currently selected, in canonical order."""
        selected = {id(o) for o in self.selected_objects()}
        return self.get_objects(lambda o: o.parent is not None and id(o.parent) in selected)

    def __len__(self) -> int:
        return sum(1 for _ in self.iter_objects())


# =============================================================================
# JSON persistence
# =============================================================================

def hierarchy_from_records(records: Iterable[ObjectRecord], selected_ids: Iterable[str] = ()) -> ObjectHierarchy:
    """
    Build a hierarchy from flat object records.

    Records may appear in any order; parents are linked after all objects
    exist. A record naming an unknown parent becomes a root.
    """
    records = list(records)
    by_id: Dict[str, DetectableObject] = {}
    for record in records:
        if record.id in by_id:
            raise ValueError(f"Duplicate object id: {record.id}")
        by_id[record.id] = DetectableObject(
            roi=wkt.loads(record.roi),
            id=record.id,
            classification=record.classification,
            measurements={k: v for k, v in record.measurements.items() if v is not None},
            is_annotation=record.is_annotation,
        )

    hierarchy = ObjectHierarchy()
    for record in records:
        obj = by_id[record.id]
        parent = by_id.get(record.parent_id) if record.parent_id else None
        if record.parent_id and parent is None:
            logger.warning(f"Object {record.id} references unknown parent {record.parent_id}; treating as root")
        hierarchy.add_object(obj, parent)

    hierarchy.select(by_id[i] for i in selected_ids if i in by_id)
    return hierarchy


def hierarchy_to_records(hierarchy: ObjectHierarchy) -> List[ObjectRecord]:
    return [
        ObjectRecord(
            id=obj.id,
            roi=obj.roi.wkt,
            parent_id=obj.parent.id if obj.parent is not None else None,
            is_annotation=obj.is_annotation,
            classification=obj.classification,
            measurements=obj.measurements.as_dict(),
        )
        for obj in hierarchy.iter_objects()
    ]


def load_hierarchy(file_path: Union[str, Path]) -> ObjectHierarchy:
    """Load an objects JSON file (see ObjectFile) into a hierarchy."""
    object_file = validate_json_file(file_path, ObjectFile)
    hierarchy = hierarchy_from_records(object_file.objects, object_file.selected)
    logger.info(f"Loaded {len(object_file.objects)} objects from {file_path} "
                f"({len(hierarchy.selected_objects())} selected)")
    return hierarchy


def save_hierarchy(
    hierarchy: ObjectHierarchy,
    file_path: Union[str, Path],
    image_path: Optional[str] = None,
    pixel_size_um: Optional[float] = None,
) -> Path:
    """Write a hierarchy to an objects JSON file atomically."""
    object_file = ObjectFile(
        image_path=image_path,
        pixel_size_um=pixel_size_um,
        selected=[o.id for o in hierarchy.selected_objects()],
        objects=hierarchy_to_records(hierarchy),
    )
    return atomic_json_dump(object_file.model_dump(), file_path)
