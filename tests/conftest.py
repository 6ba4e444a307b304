"""
Pytest fixtures for objcls tests.

Provides sample images with cells, object hierarchies, an in-process fake
inference backend, and a model directory plus config for subprocess round
trips through tests/fixtures/fake_classification.py.
"""

import json
import sys
import threading
import time
from pathlib import Path

import numpy as np
import pytest
from PIL import Image
from shapely.geometry import box

sys.path.insert(0, str(Path(__file__).parent.parent))

from objcls.inference.backend import InferenceBackend, InferenceResult, ModelDescriptor
from objcls.io.image_source import ArrayImageSource
from objcls.objects import DetectableObject, ObjectHierarchy

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_SCRIPT = FIXTURES_DIR / "fake_classification.py"

# (x, y, red value) per cell; red / 100 is the class the fake models predict
CELL_LAYOUT = [
    (100, 100, 0),
    (200, 120, 100),
    (300, 300, 200),
    (420, 180, 100),
    (150, 400, 0),
    (380, 420, 200),
]


def draw_cells(shape=(512, 512), layout=CELL_LAYOUT, radius=10):
    """RGB uint8 image with one filled disk per cell, red channel set per cell."""
    image = np.zeros(shape + (3,), dtype=np.uint8)
    yy, xx = np.ogrid[:shape[0], :shape[1]]
    for x, y, red in layout:
        disk = (xx - x) ** 2 + (yy - y) ** 2 <= radius ** 2
        image[disk] = [red, 40, 40]
    return image


def build_hierarchy(layout=CELL_LAYOUT, annotation_bounds=(0, 0, 512, 512), select=True):
    """One annotation with one child cell per layout entry."""
    annotation = DetectableObject(box(*annotation_bounds), id="annotation-1", is_annotation=True)
    hierarchy = ObjectHierarchy([annotation])
    for i, (x, y, _) in enumerate(layout):
        hierarchy.add_object(DetectableObject.from_point(x, y, radius=8, id=f"cell-{i}"), annotation)
    if select:
        hierarchy.select([annotation])
    return hierarchy


class FakeBackend(InferenceBackend):
    """
    In-process InferenceBackend.

    classify() predicts from the red value at the centre of each patch, like
    the fake script, unless a fixed result is set. Tracks how many calls are
    inside the backend at once.
    """

    def __init__(self, descriptor, result=None, w=(1.0, 0.5, 0.25), delay=0.0, error=None):
        self.descriptor = descriptor
        self.result = result
        self.w = np.asarray(w, dtype=np.float64)
        self.delay = delay
        self.error = error
        self.calls = []
        self.seen_dirs = []
        self.seen_files = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def _enter(self, name, **kwargs):
        with self._lock:
            self.calls.append((name, kwargs))
            self.active += 1
            self.peak = max(self.peak, self.active)
        if self.delay:
            time.sleep(self.delay)

    def _exit(self):
        with self._lock:
            self.active -= 1

    def describe(self, model_file):
        self._enter("describe", model_file=model_file)
        self._exit()
        return self.descriptor

    def estimate_normalization(self, image_dir):
        self._enter("estimate_normalization", image_dir=image_dir)
        try:
            self.seen_dirs.append(Path(image_dir))
            self.seen_files.append(sorted(p.name for p in Path(image_dir).iterdir()))
            return self.w
        finally:
            self._exit()

    def classify(self, model_file, image_dir, image_format, batch_size, normalizer_w=None):
        self._enter("classify", model_file=model_file, image_format=image_format,
                    batch_size=batch_size, normalizer_w=normalizer_w)
        try:
            image_dir = Path(image_dir)
            self.seen_dirs.append(image_dir)
            files = sorted(image_dir.iterdir(), key=lambda p: int(p.stem))
            self.seen_files.append([p.name for p in files])
            if self.error is not None:
                raise self.error
            if self.result is not None:
                return self.result
            n = self.descriptor.num_classes
            predicted, probability = [], []
            for p in files:
                with Image.open(p) as img:
                    red = np.asarray(img)[img.height // 2, img.width // 2, 0]
                cls = min(n - 1, int(round(red / 100.0)))
                row = [0.0] * n
                row[cls] = 1.0
                predicted.append(cls)
                probability.append(row)
            return InferenceResult(True, predicted, probability)
        finally:
            self._exit()


@pytest.fixture
def cell_image():
    """512x512 RGB image with the CELL_LAYOUT disks, 0.25 um/px."""
    return ArrayImageSource(draw_cells(), path="cells.png", pixel_size_um=0.25)


@pytest.fixture
def hierarchy():
    """Hierarchy with one selected annotation covering the image and six cells."""
    return build_hierarchy()


@pytest.fixture
def three_class_descriptor():
    return ModelDescriptor("cellType", 16, 0.5, False, ("Tumor", "Stroma", "Immune"))


@pytest.fixture
def fake_backend(three_class_descriptor):
    return FakeBackend(three_class_descriptor)


@pytest.fixture
def model_dir(tmp_path):
    """Model directory with JSON 'model files' understood by the fake script."""
    directory = tmp_path / "models"
    directory.mkdir()
    models = {
        "cellType": {"pixel_size": 0.5, "image_size": 16, "normalized": False,
                     "label_list": "Tumor;Stroma;Immune"},
        "normalizedType": {"pixel_size": 0.5, "image_size": 16, "normalized": True,
                           "label_list": "Tumor;Stroma;Immune"},
        "failing": {"pixel_size": 0.5, "image_size": 16, "normalized": False,
                    "label_list": "Tumor;Stroma", "fail": True},
        "crashing": {"pixel_size": 0.5, "image_size": 16, "normalized": False,
                     "label_list": "Tumor;Stroma", "exit_code": 3},
        "truncating": {"pixel_size": 0.5, "image_size": 16, "normalized": False,
                       "label_list": "Tumor;Stroma;Immune", "drop_last": True},
        "silent": {"pixel_size": 0.5, "image_size": 16, "normalized": False,
                   "label_list": "Tumor;Stroma", "write_nothing": True},
    }
    for name, content in models.items():
        (directory / f"{name}.pt").write_text(json.dumps(content))
    return directory


@pytest.fixture
def invocation_log(tmp_path, monkeypatch):
    """File the fake script appends one JSON line per invocation to."""
    path = tmp_path / "invocations.jsonl"
    monkeypatch.setenv("FAKE_CLASSIFICATION_LOG", str(path))

    def read():
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]

    return read


@pytest.fixture
def script_config(model_dir, tmp_path):
    """Config running the fake script with the current interpreter."""
    return {
        "model_dir": str(model_dir),
        "model_extension": ".pt",
        "script_dir": str(FIXTURES_DIR),
        "script_name": FAKE_SCRIPT.name,
        "environment_path": sys.executable,
        "environment_type": "exe",
        "image_format": "png",
        "patch_workers": 2,
        "normalization_sample_size": 4,
        "max_parallel": 2,
        "batch_size": 8,
        "tile_size": 256,
        "tile_workers": 2,
    }
