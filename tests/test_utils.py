"""
Unit tests for objcls utility modules.

Tests the following modules:
- objcls/utils/config.py - Configuration loading and validation
- objcls/utils/json_utils.py - NumPy-aware JSON writing
- objcls/utils/logging.py - Logger setup and timers
- objcls/utils/schemas.py - Result document schemas

Run with: pytest tests/test_utils.py -v
"""

import json
import logging
import sys
from pathlib import Path
from unittest import TestCase
from unittest.mock import MagicMock

import numpy as np
import pytest

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


# =============================================================================
# CONFIG MODULE TESTS
# =============================================================================

class TestLoadConfig(TestCase):
    """Tests for load_config() and save_config()."""

    def test_defaults_without_file(self):
        from objcls.utils.config import DEFAULT_CONFIG, load_config

        config = load_config()

        self.assertEqual(config, DEFAULT_CONFIG)
        self.assertIsNot(config, DEFAULT_CONFIG)

    def test_file_overrides_defaults(self):
        from objcls.utils.config import load_config
        import tempfile

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "objcls.json"
            path.write_text(json.dumps({"batch_size": 32, "image_format": "tif"}))

            config = load_config(path)

        self.assertEqual(config["batch_size"], 32)
        self.assertEqual(config["image_format"], "tif")
        self.assertEqual(config["model_extension"], ".pt")

    def test_keyword_overrides_win_and_none_is_ignored(self):
        from objcls.utils.config import load_config

        config = load_config(None, max_parallel=3, model_dir=None)

        self.assertEqual(config["max_parallel"], 3)
        self.assertIsNotNone(config["model_dir"])

    def test_missing_file_falls_back(self):
        from objcls.utils.config import DEFAULT_CONFIG, load_config

        config = load_config("/nonexistent/objcls.json")

        self.assertEqual(config["batch_size"], DEFAULT_CONFIG["batch_size"])

    def test_save_and_reload(self):
        from objcls.utils.config import load_config, save_config
        import tempfile

        with tempfile.TemporaryDirectory() as tmp:
            path = save_config({"tile_size": 1024}, Path(tmp) / "sub" / "c.json")
            self.assertTrue(path.exists())
            self.assertEqual(load_config(path)["tile_size"], 1024)


class TestGetImageFormat(TestCase):

    def test_strips_dot(self):
        from objcls.utils.config import get_image_format

        self.assertEqual(get_image_format({"image_format": ".tif"}), "tif")
        self.assertEqual(get_image_format({"image_format": "png"}), "png")

    def test_default(self):
        from objcls.utils.config import get_image_format

        self.assertEqual(get_image_format({}), "png")


class TestValidateConfig(TestCase):
    """Tests for validate_config()."""

    def test_defaults_are_valid(self):
        from objcls.utils.config import validate_config

        result = validate_config()

        self.assertTrue(result["valid"], result["errors"])

    def test_out_of_range(self):
        from objcls.utils.config import validate_config

        result = validate_config({"batch_size": 0, "max_parallel": -1})

        self.assertFalse(result["valid"])
        self.assertEqual(len(result["errors"]), 2)

    def test_wrong_types(self):
        from objcls.utils.config import validate_config

        result = validate_config({"tile_workers": "4", "batch_size": True, "include_probability": 1})

        self.assertEqual(len(result["errors"]), 3)

    def test_environment_type(self):
        from objcls.utils.config import validate_config

        result = validate_config({"environment_type": "docker"})

        self.assertFalse(result["valid"])
        self.assertIn("environment_type", result["errors"][0])

    def test_extension_and_format(self):
        from objcls.utils.config import validate_config

        result = validate_config({"model_extension": "pt", "image_format": "."})

        self.assertEqual(len(result["errors"]), 2)

    def test_missing_paths_are_warnings(self):
        from objcls.utils.config import validate_config

        result = validate_config({"model_dir": "/nonexistent/models", "script_dir": "/nonexistent"})

        self.assertTrue(result["valid"])
        self.assertEqual(len(result["warnings"]), 2)

    def test_raise_on_error(self):
        from objcls.utils.config import ConfigValidationError, validate_config

        with self.assertRaises(ConfigValidationError):
            validate_config({"tile_size": 10}, raise_on_error=True)


# =============================================================================
# JSON UTILS TESTS
# =============================================================================

class TestJsonUtils:

    def test_numpy_encoder(self):
        from objcls.utils.json_utils import NumpyEncoder

        text = json.dumps({"a": np.int64(3), "b": np.float32(0.5), "c": np.arange(3)}, cls=NumpyEncoder)

        assert json.loads(text) == {"a": 3, "b": 0.5, "c": [0, 1, 2]}

    def test_sanitize_replaces_non_finite(self):
        from objcls.utils.json_utils import sanitize_for_json

        data = sanitize_for_json({"x": [float("nan"), np.float64(np.inf), 1.5], "flag": np.bool_(True)})

        assert data == {"x": [None, None, 1.5], "flag": True}

    def test_atomic_dump(self, tmp_path):
        from objcls.utils.json_utils import atomic_json_dump

        target = tmp_path / "out" / "objects.json"
        atomic_json_dump({"w": np.array([1.0, np.nan])}, target)

        assert json.loads(target.read_text()) == {"w": [1.0, None]}
        assert [p.name for p in target.parent.iterdir()] == ["objects.json"]


# =============================================================================
# LOGGING TESTS
# =============================================================================

class TestLogging:

    def test_get_logger_is_cached(self):
        from objcls.utils.logging import get_logger

        assert get_logger("objcls.test") is get_logger("objcls.test")

    def test_setup_logging_writes_file(self, tmp_path):
        from objcls.utils.logging import get_logger, setup_logging

        setup_logging(level="DEBUG", log_dir=tmp_path, console=False)
        get_logger("objcls.test").debug("hello file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_files = list(tmp_path.glob("objcls_*.log"))
        assert len(log_files) == 1
        assert "hello file" in log_files[0].read_text()

        setup_logging(level="INFO", console=False)

    def test_colored_formatter_leaves_record_untouched(self):
        from objcls.utils.logging import ColoredFormatter

        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "msg", None, None)
        formatted = ColoredFormatter("%(levelname)s %(message)s").format(record)

        assert "\033[33m" in formatted
        assert record.levelname == "WARNING"

    def test_processing_timer(self):
        from objcls.utils.logging import ProcessingTimer

        logger = MagicMock()
        with ProcessingTimer(logger, "work") as timer:
            pass

        assert timer.duration is not None
        assert logger.info.call_count == 2

    def test_processing_timer_logs_failure(self):
        from objcls.utils.logging import ProcessingTimer

        logger = MagicMock()
        with pytest.raises(RuntimeError):
            with ProcessingTimer(logger, "work"):
                raise RuntimeError("bad")

        assert "bad" in logger.error.call_args[0][0]

    def test_log_parameters(self):
        from objcls.utils.logging import log_parameters

        logger = MagicMock()
        log_parameters(logger, {"model": "tumorClf", "tiled": True}, title="Run")

        messages = [c[0][0] for c in logger.info.call_args_list]
        assert "Run" in messages
        assert any("tumorClf" in m for m in messages)


# =============================================================================
# SCHEMA TESTS
# =============================================================================

class TestSchemas:

    def test_split_label_list(self):
        from objcls.utils.schemas import split_label_list

        assert split_label_list("benign; malignant;;") == ["benign", "malignant"]
        assert split_label_list("a;;b") == ["a", "", "b"]

    def test_extra_fields_allowed(self):
        from objcls.utils.schemas import EvalResultDocument

        doc = EvalResultDocument.model_validate(
            {"success": True, "predicted": [0], "probability": [[1.0]], "elapsed": 3.2})

        assert doc.predicted == [0]

    def test_validate_json_file(self, tmp_path):
        from pydantic import ValidationError
        from objcls.utils.schemas import ObjectFile, validate_json_file

        good = tmp_path / "good.json"
        good.write_text(json.dumps({"objects": [{"id": "a", "roi": "POINT (1 2)"}]}))
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"objects": [{"id": "a"}]}))

        assert validate_json_file(good, ObjectFile).objects[0].id == "a"
        assert validate_json_file(bad, ObjectFile, raise_on_error=False) is None
        with pytest.raises(ValidationError):
            validate_json_file(bad, ObjectFile)
