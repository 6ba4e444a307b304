#!/usr/bin/env python3
"""
Command line interface for object classification.

Usage:
    objcls models --model-dir ./models
    objcls describe tumorClf --config objcls.json
    objcls classify --objects objects.json --image region.tif \
        --model tumorClf --max-parallel 2 --output objects_classified.json
    objcls validate-config --config objcls.json

Objects files hold the object hierarchy with ROIs as WKT (see
objcls.utils.schemas.ObjectFile). ``classify`` classifies the children of the
selected annotations and writes the updated hierarchy back.
"""

import argparse
import json
import random
import sys
from pathlib import Path
from typing import List, Optional

from objcls import __version__
from objcls.errors import ObjectClassificationError
from objcls.inference.file_protocol import FileProtocolBackend
from objcls.inference.repository import ModelRepository
from objcls.io.image_source import open_image_source
from objcls.objects import hierarchy_from_records, save_hierarchy
from objcls.processing.coordinates import Region
from objcls.processing.pipeline import ObjectClassifier
from objcls.utils.config import (
    ConfigValidationError,
    get_config_summary,
    load_config,
    validate_config,
)
from objcls.utils.logging import get_logger, setup_logging
from objcls.utils.schemas import ObjectFile, validate_json_file

logger = get_logger(__name__)


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--config', default=None,
                        help='JSON config file (merged over defaults)')
    parser.add_argument('--model-dir', default=None,
                        help='Directory with <name>.pt model files')
    parser.add_argument('--script-dir', default=None,
                        help='Directory containing the classification script')
    parser.add_argument('--script-name', default=None,
                        help='Classification script file name (default: classification.py)')
    parser.add_argument('--env-path', default=None,
                        help='Python executable, virtualenv directory or conda env')
    parser.add_argument('--env-type', default=None, choices=['exe', 'venv', 'conda'],
                        help='How to interpret --env-path')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--log-dir', default=None,
                        help='Also write a timestamped log file here')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='objcls',
        description='Classify detected objects with an external patch classifier')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('models', help='List available models')
    _add_common_args(p)

    p = sub.add_parser('describe', help='Print a model descriptor')
    _add_common_args(p)
    p.add_argument('model', help='Model name')

    p = sub.add_parser('classify', help='Classify objects under the selected annotations')
    _add_common_args(p)
    p.add_argument('--objects', required=True,
                   help='Objects JSON file')
    p.add_argument('--image', default=None,
                   help='Image file (default: image_path from the objects file)')
    p.add_argument('--pixel-size', type=float, default=None,
                   help='Image pixel size in microns (default: objects file, then image metadata)')
    p.add_argument('--model', default=None,
                   help='Model name (default: first model in the model directory)')
    p.add_argument('--region', type=int, nargs=4, default=None, metavar=('X', 'Y', 'W', 'H'),
                   help='Region to classify (default: bounds of the selected annotations)')
    p.add_argument('--tiled', action='store_true',
                   help='Split the region into tiles and run them concurrently')
    p.add_argument('--max-parallel', type=int, default=None,
                   help='Maximum concurrent script invocations (0 = unlimited)')
    p.add_argument('--image-format', default=None,
                   help='Patch file format (e.g. png, tif)')
    p.add_argument('--seed', type=int, default=None,
                   help='Seed for stain normalization sampling')
    p.add_argument('--output', default=None,
                   help='Output objects file (default: overwrite --objects)')

    p = sub.add_parser('validate-config', help='Check a configuration file')
    _add_common_args(p)

    return parser


def _load_config(args: argparse.Namespace) -> dict:
    return load_config(
        args.config,
        model_dir=args.model_dir,
        script_dir=args.script_dir,
        script_name=args.script_name,
        environment_path=args.env_path,
        environment_type=args.env_type,
        max_parallel=getattr(args, 'max_parallel', None),
        image_format=getattr(args, 'image_format', None),
    )


def cmd_models(config: dict) -> int:
    repository = ModelRepository.from_config(config)
    for name in repository.list_models():
        print(name)
    return 0


def cmd_describe(config: dict, model_name: str) -> int:
    repository = ModelRepository.from_config(config)
    backend = FileProtocolBackend.from_config(config)
    descriptor = backend.describe(repository.model_path(model_name))
    print(json.dumps({
        "name": descriptor.name,
        "feature_size_px": descriptor.feature_size_px,
        "pixel_size_um": descriptor.pixel_size_um,
        "normalized": descriptor.normalized,
        "labels": list(descriptor.labels),
    }, indent=2))
    return 0


def cmd_classify(config: dict, args: argparse.Namespace) -> int:
    objects_path = Path(args.objects)
    object_file = validate_json_file(objects_path, ObjectFile)
    hierarchy = hierarchy_from_records(object_file.objects, object_file.selected)

    image_path = args.image or object_file.image_path
    if image_path is None:
        logger.error("No image given and the objects file names none")
        return 1
    pixel_size = args.pixel_size if args.pixel_size is not None else object_file.pixel_size_um
    image = open_image_source(image_path, pixel_size_um=pixel_size)

    region = Region(*args.region) if args.region else None
    rng = random.Random(args.seed) if args.seed is not None else None

    classifier = ObjectClassifier(
        FileProtocolBackend.from_config(config),
        ModelRepository.from_config(config),
        config,
    )
    summary = classifier.run(image, hierarchy, model_name=args.model, region=region,
                             tiled=args.tiled, rng=rng, show_progress=args.tiled)

    out_path = Path(args.output) if args.output else objects_path
    save_hierarchy(hierarchy, out_path, image_path=str(image_path), pixel_size_um=image.pixel_size_um)
    logger.info(f"Classified {summary.n_classified} objects, saved to {out_path}")
    if not summary.ok:
        logger.error(f"{len(summary.failed)} of {len(summary.batches)} tiles failed")
        return 1
    return 0


def cmd_validate_config(config: dict) -> int:
    result = validate_config(config)
    logger.info("Configuration:\n" + get_config_summary(config))
    for warning in result["warnings"]:
        logger.warning(warning)
    for error in result["errors"]:
        logger.error(error)
    return 0 if result["valid"] else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(level=args.log_level, log_dir=args.log_dir)

    config = _load_config(args)
    try:
        if args.command == 'models':
            return cmd_models(config)
        if args.command == 'describe':
            return cmd_describe(config, args.model)
        if args.command == 'classify':
            validate_config(config, raise_on_error=True)
            return cmd_classify(config, args)
        return cmd_validate_config(config)
    except (ObjectClassificationError, ConfigValidationError, OSError, ValueError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
