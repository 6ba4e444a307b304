"""JSON helpers: numpy-safe encoding, NaN/Inf sanitization and atomic writes.

Used for the object files written by the CLI (probability measurements are
numpy floats) and for the fake result documents in the test suite.
"""

import json
import math
import os
import tempfile
from pathlib import Path
from typing import Any, Union

import numpy as np


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that understands numpy scalars and arrays.

    Usage::

        json.dump(data, f, cls=NumpyEncoder)
    """

    def default(self, obj):
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return _finite_or_none(float(obj))
        if isinstance(obj, np.ndarray):
            return sanitize_for_json(obj.tolist())
        return super().default(obj)


def _finite_or_none(value: float):
    return None if (math.isnan(value) or math.isinf(value)) else value


def sanitize_for_json(obj: Any) -> Any:
    """Recursively convert numpy types and replace NaN/Inf with None.

    ``json.dump`` happily writes Python ``float('nan')`` as the non-standard
    ``NaN`` token, so nested structures are walked explicitly.
    """
    if isinstance(obj, dict):
        return {k: sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return sanitize_for_json(obj.tolist())
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        return _finite_or_none(float(obj))
    return obj


def atomic_json_dump(data: Any, filepath: Union[str, Path], cls=NumpyEncoder, sanitize: bool = True) -> Path:
    """Write JSON through a temp file and ``os.replace`` so readers never see a partial file.

    Args:
        data: Python object to serialize.
        filepath: Target path.
        cls: JSON encoder class (default: NumpyEncoder).
        sanitize: Run sanitize_for_json() first (default: True).

    Returns:
        The target path.
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if sanitize:
        data = sanitize_for_json(data)

    fd, tmp_path = tempfile.mkstemp(dir=filepath.parent, suffix='.tmp')
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, cls=cls, indent=2)
        os.replace(tmp_path, filepath)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
    return filepath
