"""
Select the objects whose rounded centroid falls inside a region.

The membership test runs on a thread pool for large collections, but the
returned list always keeps the order of the input collection. Result index i
of an inference call maps back to the i-th selected object, so this ordering
is part of the pipeline's correctness.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from objcls.errors import InvalidArgument
from objcls.objects import DetectableObject
from objcls.processing.coordinates import Region, centroid_to_pixel
from objcls.utils.logging import get_logger

logger = get_logger(__name__)

# Below this many objects a thread pool costs more than it saves
PARALLEL_THRESHOLD = 4096


def object_in_region(obj: DetectableObject, region: Region) -> bool:
    """Point test of the object's rounded centroid against the region."""
    x, y = centroid_to_pixel(*obj.centroid)
    return region.contains(x, y, 0, 0)


def _membership(objects: Sequence[DetectableObject], region: Region) -> List[bool]:
    return [object_in_region(o, region) for o in objects]


def select_objects_in_region(
    objects: Sequence[DetectableObject],
    region: Optional[Region],
    max_workers: Optional[int] = None,
    parallel_threshold: int = PARALLEL_THRESHOLD,
) -> List[DetectableObject]:
    """
    Return the objects inside region, in input order.

    Args:
        objects: Candidate objects in canonical order
        region: Target region
        max_workers: Threads for the membership test (None = executor default)
        parallel_threshold: Minimum collection size before using threads

    Returns:
        Ordered subset of objects

    Raises:
        InvalidArgument: If region is None
    """
    if region is None:
        raise InvalidArgument("Object classification requires a region")

    objects = list(objects)
    if len(objects) < parallel_threshold or max_workers == 1:
        inside = _membership(objects, region)
    else:
        workers = max_workers or 4
        chunk = -(-len(objects) // workers)
        chunks = [objects[i:i + chunk] for i in range(0, len(objects), chunk)]
        inside = []
        with ThreadPoolExecutor(max_workers=workers) as executor:
            # map() yields in submission order, so chunk order is preserved
            for flags in executor.map(_membership, chunks, [region] * len(chunks)):
                inside.extend(flags)

    selected = [o for o, keep in zip(objects, inside) if keep]
    logger.debug(f"Region {region.tag} ({region.width}x{region.height}): "
                 f"{len(selected)}/{len(objects)} objects inside")
    return selected
