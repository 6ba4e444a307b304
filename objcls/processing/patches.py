"""
Build on-disk patch datasets for the classification script.

For every object a square window centred on its centroid is read from the
image source, converted to 3-channel 8-bit RGB and written to the dataset
directory. File names are either the object's position in the request
(classification) or its id (normalization sampling).

Patch extraction runs on a thread pool. A patch that cannot be read or
written is logged and recorded in PatchDataset.failed; the rest of the batch
carries on.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import cv2
import numpy as np
from PIL import Image
from tqdm import tqdm

from objcls.errors import InvalidArgument
from objcls.io.image_source import ImageSource
from objcls.objects import DetectableObject
from objcls.processing.coordinates import extract_patch_bounds
from objcls.utils.logging import get_logger

logger = get_logger(__name__)

NAMING_MODES = ("index", "id")


@dataclass
class PatchDataset:
    """
    A directory of patches for one invocation.

    Attributes:
        directory: Dataset directory
        image_format: File extension without dot
        patch_size: Patch side in image pixels (before downsampling)
        file_names: Per requested object, the written file name or None if it failed
        failed: Request index -> error message for patches that were not written
    """
    directory: Path
    image_format: str
    patch_size: int
    file_names: List[Optional[str]] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def n_requested(self) -> int:
        return len(self.file_names)

    @property
    def n_written(self) -> int:
        return self.n_requested - len(self.failed)

    @property
    def complete(self) -> bool:
        return not self.failed


def resolve_pil_format(image_format: str) -> str:
    """
    Map a file extension to a Pillow format name.

    Raises:
        InvalidArgument: If Pillow cannot write that extension
    """
    ext = image_format.strip().lower()
    ext = ext if ext.startswith('.') else f".{ext}"
    pil_format = Image.registered_extensions().get(ext)
    if pil_format is None or pil_format not in Image.SAVE:
        raise InvalidArgument(f"Unsupported patch image format: {image_format}")
    return pil_format


def to_rgb_uint8(patch: np.ndarray) -> np.ndarray:
    """
    Convert raw pixels to a contiguous (H, W, 3) uint8 RGB array.

    - Grayscale is replicated into three channels
    - A fourth (alpha) channel and any extra channels are dropped
    - Two-channel data gets an empty third channel
    - Integer types wider than 8 bits are scaled by their type range,
      float data in [0, 1] is scaled to [0, 255], other floats are clipped
    """
    arr = np.asarray(patch)
    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    if arr.ndim not in (2, 3):
        raise ValueError(f"Cannot convert array of shape {arr.shape} to RGB")

    if arr.dtype == np.uint8:
        pass
    elif arr.dtype == np.bool_:
        arr = arr.astype(np.uint8) * 255
    elif np.issubdtype(arr.dtype, np.integer):
        scale = 255.0 / np.iinfo(arr.dtype).max
        arr = np.clip(arr.astype(np.float32) * scale, 0, 255).round().astype(np.uint8)
    else:
        arr = arr.astype(np.float32)
        finite = arr[np.isfinite(arr)]
        if finite.size and finite.max() <= 1.0:
            arr = arr * 255.0
        arr = np.clip(np.nan_to_num(arr), 0, 255).round().astype(np.uint8)

    if arr.ndim == 2:
        return cv2.cvtColor(np.ascontiguousarray(arr), cv2.COLOR_GRAY2RGB)
    channels = arr.shape[2]
    if channels == 2:
        arr = np.concatenate([arr, np.zeros(arr.shape[:2] + (1,), dtype=np.uint8)], axis=2)
    return np.ascontiguousarray(arr[:, :, :3])


def patch_file_name(index: int, obj: DetectableObject, naming: str, image_format: str) -> str:
    stem = str(index) if naming == "index" else str(obj.id)
    return f"{stem}.{image_format}"


def extract_patch(
    source: ImageSource,
    obj: DetectableObject,
    patch_size: int,
    downsample: float = 1.0,
) -> np.ndarray:
    """Read the RGB patch centred on an object's centroid."""
    cx, cy = obj.centroid
    x1, y1, x2, y2 = extract_patch_bounds(cx, cy, patch_size)
    raw = source.read_region(x1, y1, x2 - x1, y2 - y1, downsample)
    return to_rgb_uint8(raw)


def build_patch_dataset(
    source: ImageSource,
    objects: Sequence[DetectableObject],
    directory: Union[str, Path],
    patch_size: int,
    image_format: str = "png",
    naming: str = "index",
    max_workers: int = 8,
    downsample: float = 1.0,
    show_progress: bool = False,
) -> PatchDataset:
    """
    Extract and write one patch per object.

    Args:
        source: Image to read from
        objects: Objects in request order
        directory: Existing, empty dataset directory
        patch_size: Patch side in full-resolution pixels
        image_format: File extension (without dot) understood by Pillow
        naming: 'index' (position in objects) or 'id' (object id)
        max_workers: Extraction threads
        downsample: Read resolution factor
        show_progress: Show a tqdm progress bar

    Returns:
        PatchDataset describing what was written

    Raises:
        InvalidArgument: For an unknown naming mode, image format or patch size
    """
    if naming not in NAMING_MODES:
        raise InvalidArgument(f"naming must be one of {NAMING_MODES}, got '{naming}'")
    if patch_size <= 0:
        raise InvalidArgument(f"patch_size must be positive, got {patch_size}")
    pil_format = resolve_pil_format(image_format)

    directory = Path(directory)
    dataset = PatchDataset(
        directory=directory,
        image_format=image_format,
        patch_size=patch_size,
        file_names=[None] * len(objects),
    )

    def _write(index: int, obj: DetectableObject) -> str:
        rgb = extract_patch(source, obj, patch_size, downsample)
        name = patch_file_name(index, obj, naming, image_format)
        Image.fromarray(rgb).save(directory / name, format=pil_format)
        return name

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {executor.submit(_write, i, obj): i for i, obj in enumerate(objects)}
        for future in tqdm(as_completed(futures), total=len(futures),
                           desc="Extracting patches", disable=not show_progress):
            i = futures[future]
            try:
                dataset.file_names[i] = future.result()
            except Exception as e:
                dataset.failed[i] = str(e)
                logger.warning(f"Failed to write patch {i} (object {objects[i].id}): {e}")

    if dataset.failed:
        logger.warning(f"{len(dataset.failed)}/{len(objects)} patches could not be written to {directory}")
    else:
        logger.debug(f"Wrote {len(objects)} patches ({patch_size}px, {image_format}) to {directory}")
    return dataset
