"""
File-protocol adapter that runs the classification script as a subprocess.

Contract, per invocation:

    <python> -W ignore <script> param      <result.json> --model_file <model>
    <python> -W ignore <script> estimate_w <result.json> --image_path <dir>
    <python> -W ignore <script> eval       <result.json> --model_file <model>
             --image_path <dir> --image_format <fmt> --batch_size <n>
             [--normalizer_w "<w0 w1 ...>"]

The script writes exactly one JSON document to <result.json> before exiting.
The result file is created fresh for each invocation and removed afterwards.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from objcls.inference.backend import InferenceBackend, InferenceResult, ModelDescriptor
from objcls.inference.results import (
    load_result_document,
    parse_estimate_result,
    parse_eval_result,
    parse_param_result,
)
from objcls.inference.runner import EnvironmentRunner
from objcls.io.workspace import EphemeralWorkspace
from objcls.utils.logging import get_logger

logger = get_logger(__name__)

INTERPRETER_ARGS = ["-W", "ignore"]


class Mode(str, Enum):
    PARAM = "param"
    ESTIMATE_W = "estimate_w"
    EVAL = "eval"


def format_normalizer_w(w: Sequence[float]) -> str:
    """Space-separated normalization vector, full float precision."""
    return " ".join(repr(float(v)) for v in w)


def build_param_args(script_path: Union[str, Path], result_path: Union[str, Path],
                     model_file: Union[str, Path]) -> List[str]:
    return INTERPRETER_ARGS + [
        str(script_path), Mode.PARAM.value, str(result_path),
        "--model_file", str(model_file),
    ]


def build_estimate_args(script_path: Union[str, Path], result_path: Union[str, Path],
                        image_dir: Union[str, Path]) -> List[str]:
    return INTERPRETER_ARGS + [
        str(script_path), Mode.ESTIMATE_W.value, str(result_path),
        "--image_path", str(image_dir),
    ]


def build_eval_args(
    script_path: Union[str, Path],
    result_path: Union[str, Path],
    model_file: Union[str, Path],
    image_dir: Union[str, Path],
    image_format: str,
    batch_size: int,
    normalizer_w: Optional[Sequence[float]] = None,
) -> List[str]:
    """
    Build the ``eval`` argument list.

    ``--normalizer_w`` is only passed when a vector is given.
    """
    args = INTERPRETER_ARGS + [
        str(script_path), Mode.EVAL.value, str(result_path),
        "--model_file", str(model_file),
        "--image_path", str(image_dir),
        "--image_format", image_format,
        "--batch_size", str(int(batch_size)),
    ]
    if normalizer_w is not None:
        args += ["--normalizer_w", format_normalizer_w(normalizer_w)]
    return args


class FileProtocolBackend(InferenceBackend):
    """
    InferenceBackend backed by an external script and JSON result files.

    Attributes:
        runner: EnvironmentRunner that launches the interpreter
        script_path: Path to the classification script
        workspace_dir: Parent directory for result files (system temp dir if None)
    """

    def __init__(
        self,
        runner: EnvironmentRunner,
        script_path: Union[str, Path],
        workspace_dir: Optional[Union[str, Path]] = None,
    ):
        self.runner = runner
        self.script_path = Path(script_path)
        self.workspace_dir = workspace_dir

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "FileProtocolBackend":
        runner = EnvironmentRunner(
            environment_path=config["environment_path"],
            environment_type=config.get("environment_type", "exe"),
            name=Path(config.get("script_name", "classification.py")).stem,
        )
        script_path = Path(config["script_dir"]) / config.get("script_name", "classification.py")
        return cls(runner, script_path)

    def _invoke(self, mode: Mode, build) -> Tuple[Dict[str, Any], List[str]]:
        """
        Run one invocation with a fresh result file.

        Args:
            mode: Invocation mode (names the result file)
            build: Callable mapping the result path to the argument list

        Returns:
            (raw result document, captured output lines)
        """
        with EphemeralWorkspace(mode.value, base_dir=self.workspace_dir, with_image_dir=False) as ws:
            result_path = ws.new_result_file()
            output = self.runner.run(build(result_path))
            return load_result_document(result_path), output

    def describe(self, model_file) -> ModelDescriptor:
        model_file = Path(model_file)
        data, output = self._invoke(
            Mode.PARAM, lambda rp: build_param_args(self.script_path, rp, model_file)
        )
        descriptor = parse_param_result(data, model_name=model_file.stem, output=output)
        logger.info(
            f"Model {descriptor.name}: {descriptor.feature_size_px}px @ {descriptor.pixel_size_um} um/px, "
            f"normalized={descriptor.normalized}, labels={list(descriptor.labels)}"
        )
        return descriptor

    def estimate_normalization(self, image_dir):
        data, output = self._invoke(
            Mode.ESTIMATE_W, lambda rp: build_estimate_args(self.script_path, rp, image_dir)
        )
        return parse_estimate_result(data, output=output)

    def classify(self, model_file, image_dir, image_format, batch_size, normalizer_w=None) -> InferenceResult:
        data, output = self._invoke(
            Mode.EVAL,
            lambda rp: build_eval_args(
                self.script_path, rp, model_file, image_dir, image_format, batch_size, normalizer_w,
            ),
        )
        return parse_eval_result(data, output=output)

    def __repr__(self) -> str:
        return f"FileProtocolBackend(script={self.script_path}, runner={self.runner!r})"
