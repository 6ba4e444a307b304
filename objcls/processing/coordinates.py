"""
Coordinate handling for region selection and patch extraction.

Convention: all coordinates are [x, y] (horizontal, vertical) in
full-resolution image pixels.

Coordinate System:
    - Origin: Top-left corner (0, 0)
    - X-axis: Horizontal, increases to the right (columns)
    - Y-axis: Vertical, increases downward (rows)

Rounding:
    Centroids and patch origins are rounded half-up, i.e. floor(v + 0.5),
    so 10.5 -> 11 and 10.49 -> 10.

Regions are half-open rectangles: a point (px, py) is inside when
x <= px < x + width and y <= py < y + height. Adjacent tiles therefore never
both contain the same point.
"""

import math
from dataclasses import dataclass
from typing import Iterator, Tuple

from objcls.errors import InvalidArgument, MissingCalibration


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves rounding up."""
    return int(math.floor(value + 0.5))


def centroid_to_pixel(cx: float, cy: float) -> Tuple[int, int]:
    """Round a centroid to the integer pixel it is reported at."""
    return (round_half_up(cx), round_half_up(cy))


@dataclass(frozen=True)
class Region:
    """
    Rectangular image region in full-resolution pixels.

    Attributes:
        x: Left edge
        y: Top edge
        width: Width (> 0)
        height: Height (> 0)
        downsample: Resolution the region is read at (1.0 = full resolution)
    """
    x: int
    y: int
    width: int
    height: int
    downsample: float = 1.0

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidArgument(f"Region must have positive size, got {self.width}x{self.height}")
        if self.downsample <= 0:
            raise InvalidArgument(f"Region downsample must be positive, got {self.downsample}")

    @classmethod
    def from_bounds(cls, min_x: float, min_y: float, max_x: float, max_y: float,
                    downsample: float = 1.0) -> "Region":
        """Smallest integer region covering the given bounds."""
        x0, y0 = int(math.floor(min_x)), int(math.floor(min_y))
        x1, y1 = int(math.ceil(max_x)), int(math.ceil(max_y))
        return cls(x0, y0, max(1, x1 - x0), max(1, y1 - y0), downsample)

    @classmethod
    def from_geometry(cls, geometry, downsample: float = 1.0) -> "Region":
        """Bounding region of a shapely geometry."""
        if geometry is None or geometry.is_empty:
            raise InvalidArgument("Cannot build a region from an empty geometry")
        return cls.from_bounds(*geometry.bounds, downsample=downsample)

    @property
    def max_x(self) -> int:
        return self.x + self.width

    @property
    def max_y(self) -> int:
        return self.y + self.height

    @property
    def tag(self) -> str:
        """Short string identifying the region origin, used in workspace names."""
        return f"{self.x}_{self.y}"

    def contains(self, px: int, py: int, width: int = 0, height: int = 0) -> bool:
        """
        Whether the rectangle (px, py, width, height) lies inside this region.

        With width = height = 0 this is a point test.
        """
        if px < self.x or py < self.y:
            return False
        x_ok = px + width <= self.max_x if width > 0 else px < self.max_x
        y_ok = py + height <= self.max_y if height > 0 else py < self.max_y
        return x_ok and y_ok

    def tiles(self, tile_size: int) -> Iterator["Region"]:
        """
        Split into row-major tiles of at most tile_size x tile_size.

        Edge tiles are clipped to the region.
        """
        if tile_size <= 0:
            raise InvalidArgument(f"tile_size must be positive, got {tile_size}")
        for ty in range(self.y, self.max_y, tile_size):
            for tx in range(self.x, self.max_x, tile_size):
                yield Region(
                    tx, ty,
                    min(tile_size, self.max_x - tx),
                    min(tile_size, self.max_y - ty),
                    self.downsample,
                )


def compute_feature_size(
    model_feature_size_px: int,
    model_pixel_size_um: float,
    image_pixel_size_um: float,
) -> int:
    """
    Rescale a model's native patch size to the image's resolution.

    A model trained on 64 px patches at 0.5 um/px needs 128 px patches from an
    image scanned at 0.25 um/px, so the patch covers the same tissue area.

    Args:
        model_feature_size_px: Model input side length in pixels
        model_pixel_size_um: Model training resolution (um/px)
        image_pixel_size_um: Image resolution (um/px)

    Returns:
        Patch side length in image pixels (at least 1)

    Raises:
        MissingCalibration: If the image pixel size is unknown or non-positive
    """
    if image_pixel_size_um is None or not math.isfinite(image_pixel_size_um) or image_pixel_size_um <= 0:
        raise MissingCalibration(f"Invalid image pixel size: {image_pixel_size_um}")
    size = round_half_up(model_feature_size_px * model_pixel_size_um / image_pixel_size_um)
    return max(1, size)


def patch_origin(cx: float, cy: float, patch_size: int) -> Tuple[int, int]:
    """
    Top-left corner of a patch_size x patch_size window centred on (cx, cy).

    Args:
        cx: Centre X
        cy: Centre Y
        patch_size: Window side length

    Returns:
        (x0, y0)
    """
    half = patch_size / 2.0
    return (round_half_up(cx - half), round_half_up(cy - half))


def extract_patch_bounds(cx: float, cy: float, patch_size: int) -> Tuple[int, int, int, int]:
    """
    Patch window as (x1, y1, x2, y2), not clipped to the image.

    Out-of-image parts are padded by the image source, so every patch has
    exactly patch_size x patch_size pixels.
    """
    x0, y0 = patch_origin(cx, cy, patch_size)
    return (x0, y0, x0 + patch_size, y0 + patch_size)
