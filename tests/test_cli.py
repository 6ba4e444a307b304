"""
Tests for the objcls command line interface (objcls/cli.py).
"""

import json

import pytest
from PIL import Image

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import CELL_LAYOUT, build_hierarchy, draw_cells
from objcls.cli import build_parser, main
from objcls.objects import load_hierarchy, save_hierarchy


def script_args(script_config):
    return [
        "--model-dir", script_config["model_dir"],
        "--script-dir", script_config["script_dir"],
        "--script-name", script_config["script_name"],
        "--env-path", script_config["environment_path"],
        "--env-type", "exe",
    ]


@pytest.fixture
def config_file(script_config, tmp_path):
    path = tmp_path / "objcls.json"
    path.write_text(json.dumps(script_config))
    return path


@pytest.fixture
def objects_file(tmp_path):
    image_path = tmp_path / "cells.png"
    Image.fromarray(draw_cells()).save(image_path)
    path = tmp_path / "objects.json"
    save_hierarchy(build_hierarchy(), path, image_path=str(image_path), pixel_size_um=0.25)
    return path


class TestParser:

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_region_parsing(self):
        args = build_parser().parse_args(["classify", "--objects", "o.json", "--region", "1", "2", "3", "4"])

        assert args.region == [1, 2, 3, 4]
        assert args.tiled is False


class TestCommands:

    def test_models(self, script_config, capsys):
        code = main(["models"] + script_args(script_config))

        assert code == 0
        # Log records share stdout; they are the lines with " | " separators
        listed = [line for line in capsys.readouterr().out.splitlines() if " | " not in line]
        assert "cellType" in listed
        assert listed == sorted(listed)

    def test_models_missing_directory(self, tmp_path):
        assert main(["models", "--model-dir", str(tmp_path / "absent")]) == 1

    def test_describe(self, script_config, capsys):
        code = main(["describe", "cellType"] + script_args(script_config))

        assert code == 0
        out = capsys.readouterr().out
        descriptor = json.loads(out[out.index("{"):out.rindex("}") + 1])
        assert descriptor["feature_size_px"] == 16
        assert descriptor["labels"] == ["Tumor", "Stroma", "Immune"]

    def test_describe_failing_model(self, script_config, capsys):
        assert main(["describe", "failing"] + script_args(script_config)) == 1
        assert "ExternalInvocationFailed: param returned success=false" in capsys.readouterr().out

    def test_script_name_option(self):
        args = build_parser().parse_args(["models", "--script-name", "fake.py"])

        assert args.script_name == "fake.py"

    def test_classify(self, config_file, objects_file, tmp_path):
        output = tmp_path / "classified.json"

        code = main(["classify", "--config", str(config_file), "--objects", str(objects_file),
                     "--model", "cellType", "--output", str(output)])

        assert code == 0
        hierarchy = load_hierarchy(output)
        labels = [o.classification for o in hierarchy.objects_in_selection()]
        names = ("Tumor", "Stroma", "Immune")
        assert labels == [f"objcls:cellType:{names[red // 100]}" for _, _, red in CELL_LAYOUT]
        # Input file untouched
        assert all(o.classification is None for o in load_hierarchy(objects_file).iter_objects())

    def test_classify_tiled_in_place(self, config_file, objects_file):
        code = main(["classify", "--config", str(config_file), "--objects", str(objects_file),
                     "--model", "cellType", "--tiled", "--region", "0", "0", "256", "256"])

        assert code == 0
        cells = load_hierarchy(objects_file).objects_in_selection()
        assert [c.classification is not None for c in cells] == [True, True, False, False, False, False]

    def test_classify_script_failure(self, config_file, objects_file):
        code = main(["classify", "--config", str(config_file), "--objects", str(objects_file),
                     "--model", "truncating"])

        assert code == 1

    def test_classify_invalid_config(self, config_file, objects_file):
        code = main(["classify", "--config", str(config_file), "--objects", str(objects_file),
                     "--max-parallel", "-3"])

        assert code == 1

    def test_validate_config(self, config_file):
        assert main(["validate-config", "--config", str(config_file)]) == 0

    def test_validate_config_errors(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"batch_size": 0}))

        assert main(["validate-config", "--config", str(path)]) == 1
