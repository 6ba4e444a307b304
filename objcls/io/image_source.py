"""
Read-only image sources addressed by a path plus a pixel rectangle.

The pipeline only needs two things from an image: its averaged physical pixel
size and the raw pixels of a rectangle at full or reduced resolution.

Usage:
    from objcls.io.image_source import open_image_source

    source = open_image_source('/path/to/slide_region.tif', pixel_size_um=0.25)
    patch = source.read_region(1000, 2000, 128, 128)
"""

import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image

from objcls.errors import MissingCalibration
from objcls.utils.logging import get_logger

logger = get_logger(__name__)

MICRONS_PER_INCH = 25400.0


class ImageSource(ABC):
    """
    Abstract read-only image.

    Coordinates are full-resolution pixels with the origin at the top-left.
    """

    @property
    @abstractmethod
    def path(self) -> str:
        """Identifier of the image (file path or name)."""
        pass

    @property
    @abstractmethod
    def pixel_size_um(self) -> Optional[float]:
        """Averaged pixel size in microns, or None when unknown."""
        pass

    @property
    @abstractmethod
    def dimensions(self) -> Tuple[int, int]:
        """(width, height) in full-resolution pixels."""
        pass

    @abstractmethod
    def read_region(
        self,
        x: int,
        y: int,
        width: int,
        height: int,
        downsample: float = 1.0,
    ) -> np.ndarray:
        """
        Read a rectangle of pixels.

        Args:
            x: Left edge in full-resolution pixels (may be negative)
            y: Top edge in full-resolution pixels (may be negative)
            width: Rectangle width in full-resolution pixels
            height: Rectangle height in full-resolution pixels
            downsample: Resolution reduction factor (1.0 = full resolution)

        Returns:
            (H, W) or (H, W, C) array
        """
        pass

    def require_pixel_size(self) -> float:
        """
        Return the pixel size, refusing to guess when it is unknown.

        Raises:
            MissingCalibration: If the image has no usable pixel size
        """
        pixel_size = self.pixel_size_um
        if pixel_size is None or not np.isfinite(pixel_size) or pixel_size <= 0:
            raise MissingCalibration(
                f"No pixel size information for {self.path}; set the image calibration before classifying"
            )
        return float(pixel_size)


class ArrayImageSource(ImageSource):
    """
    Image backed by an in-memory numpy array.

    Regions extending past the image bounds are zero-padded so the returned
    array always has the requested size. Without a path the source is named
    "<memory-<uuid>>", unique per instance.
    """

    def __init__(
        self,
        data: np.ndarray,
        path: Optional[str] = None,
        pixel_size_um: Optional[float] = None,
    ):
        if data.ndim not in (2, 3):
            raise ValueError(f"Expected (H, W) or (H, W, C) array, got shape {data.shape}")
        self._data = data
        self._path = path if path is not None else f"<memory-{uuid.uuid4().hex}>"
        self._pixel_size_um = pixel_size_um

    @property
    def path(self) -> str:
        return self._path

    @property
    def pixel_size_um(self) -> Optional[float]:
        return self._pixel_size_um

    @property
    def dimensions(self) -> Tuple[int, int]:
        return (self._data.shape[1], self._data.shape[0])

    @property
    def data(self) -> np.ndarray:
        return self._data

    def read_region(self, x, y, width, height, downsample=1.0):
        if width <= 0 or height <= 0:
            raise ValueError(f"Region size must be positive, got {width}x{height}")
        if downsample <= 0:
            raise ValueError(f"downsample must be positive, got {downsample}")

        img_w, img_h = self.dimensions
        out = np.zeros((height, width) + self._data.shape[2:], dtype=self._data.dtype)

        # Intersection of the request with the image, in image coordinates
        x1, y1 = max(0, x), max(0, y)
        x2, y2 = min(img_w, x + width), min(img_h, y + height)
        if x2 > x1 and y2 > y1:
            out[y1 - y:y2 - y, x1 - x:x2 - x] = self._data[y1:y2, x1:x2]

        if downsample != 1.0:
            target_w = max(1, int(round(width / downsample)))
            target_h = max(1, int(round(height / downsample)))
            out = cv2.resize(out, (target_w, target_h), interpolation=cv2.INTER_AREA)

        return out

    def __repr__(self) -> str:
        w, h = self.dimensions
        return f"ArrayImageSource(path={self._path!r}, size={w}x{h}, pixel_size_um={self._pixel_size_um})"


def pixel_size_from_dpi(dpi) -> Optional[float]:
    """Average (x, y) DPI into microns per pixel, or None when absent or non-physical."""
    if not dpi:
        return None
    values = [float(v) for v in (dpi if isinstance(dpi, (tuple, list)) else (dpi, dpi))]
    if any(v <= 1.0 for v in values):
        # A DPI of 1 marks an uncalibrated file
        return None
    return float(np.mean([MICRONS_PER_INCH / v for v in values]))


def open_image_source(
    path: Union[str, Path],
    pixel_size_um: Optional[float] = None,
) -> ArrayImageSource:
    """
    Load an image file into an ArrayImageSource.

    ``.npy`` files are loaded with numpy; everything else goes through Pillow.
    When pixel_size_um is not given, it is derived from the file's DPI tag
    if one is present.

    Args:
        path: Image file
        pixel_size_um: Explicit calibration, overrides file metadata

    Returns:
        ArrayImageSource
    """
    path = Path(path)
    if path.suffix.lower() == '.npy':
        data = np.load(path)
        file_pixel_size = None
    else:
        # Region exports of whole-slide images easily exceed Pillow's bomb check
        Image.MAX_IMAGE_PIXELS = None
        with Image.open(path) as img:
            file_pixel_size = pixel_size_from_dpi(img.info.get('dpi'))
            data = np.asarray(img)

    if pixel_size_um is None:
        pixel_size_um = file_pixel_size
    if pixel_size_um is None:
        logger.warning(f"No pixel size for {path}; classification will refuse to run without one")

    logger.info(f"Opened {path.name}: shape={data.shape}, dtype={data.dtype}, pixel_size_um={pixel_size_um}")
    return ArrayImageSource(data, path=str(path), pixel_size_um=pixel_size_um)
