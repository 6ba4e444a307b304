"""
Stand-in for the external classification script used by subprocess tests.

The "model file" is a JSON document:

    {
        "pixel_size": 0.5, "image_size": 64, "normalized": false,
        "label_list": "Tumor;Stroma;Immune",
        "fail": false,          # write success: false
        "exit_code": 0,         # exit with this status after writing the result
        "drop_last": false,     # return one prediction fewer than images
        "write_nothing": false  # leave the result file untouched
    }

eval predicts from the red value at the patch centre: class = round(red / 100),
clipped to the label range. Every invocation appends its argv and the image
file names it saw to the file named by FAKE_CLASSIFICATION_LOG, if set.
"""

import argparse
import json
import os
import sys
from pathlib import Path

from PIL import Image


def _log(entry):
    log_path = os.environ.get("FAKE_CLASSIFICATION_LOG")
    if log_path:
        with open(log_path, "a") as f:
            f.write(json.dumps(entry) + "\n")


def _images(image_path, image_format=None):
    files = [p for p in Path(image_path).iterdir() if p.is_file()]
    if image_format:
        files = [p for p in files if p.suffix.lower() == f".{image_format.lower()}"]
    # Patches are named by request index
    return sorted(files, key=lambda p: int(p.stem) if p.stem.isdigit() else p.stem)


def _write(result_path, data, model):
    if model.get("write_nothing"):
        return
    if model.get("fail"):
        data = {"success": False}
    with open(result_path, "w") as f:
        json.dump(data, f)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("mode", choices=["param", "estimate_w", "eval"])
    parser.add_argument("result")
    parser.add_argument("--model_file")
    parser.add_argument("--image_path")
    parser.add_argument("--image_format")
    parser.add_argument("--batch_size", type=int)
    parser.add_argument("--normalizer_w")
    args = parser.parse_args()

    model = {}
    if args.model_file:
        with open(args.model_file) as f:
            model = json.load(f)

    print(f"fake classification: {args.mode}")
    entry = {"argv": sys.argv[1:], "mode": args.mode}

    if args.mode == "param":
        _write(args.result, {
            "success": True,
            "pixel_size": model["pixel_size"],
            "normalized": model["normalized"],
            "image_size": model["image_size"],
            "label_list": model["label_list"],
        }, model)

    elif args.mode == "estimate_w":
        images = _images(args.image_path)
        entry["images"] = [p.name for p in images]
        _write(args.result, {"success": True, "W": [float(len(images)), 0.5, 0.25]}, model)

    else:
        labels = model["label_list"].split(";")
        images = _images(args.image_path, args.image_format)
        entry["images"] = [p.name for p in images]
        entry["normalizer_w"] = args.normalizer_w
        predicted, probability = [], []
        for p in images:
            with Image.open(p) as img:
                rgb = img.convert("RGB")
                red = rgb.getpixel((rgb.width // 2, rgb.height // 2))[0]
            cls = min(len(labels) - 1, int(round(red / 100.0)))
            row = [0.1 / (len(labels) - 1) if len(labels) > 1 else 0.0] * len(labels)
            row[cls] = 0.9 if len(labels) > 1 else 1.0
            predicted.append(cls)
            probability.append(row)
        if model.get("drop_last") and predicted:
            predicted, probability = predicted[:-1], probability[:-1]
        _write(args.result, {"success": True, "predicted": predicted, "probability": probability}, model)

    _log(entry)
    if model.get("exit_code"):
        print("fake classification: exiting with error", file=sys.stderr)
        sys.exit(model["exit_code"])


if __name__ == "__main__":
    main()
