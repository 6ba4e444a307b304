"""
Launch the classification script inside a configured Python environment.

Three environment types are supported:
- exe:   environment_path is a Python executable
- venv:  environment_path is a virtualenv directory
- conda: environment_path is a conda environment name (or prefix path)

Output (stdout and stderr merged) is captured line by line and forwarded to
the log as it arrives.
"""

import os
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Union

from objcls.errors import ExternalInvocationFailed, InvalidArgument
from objcls.utils.config import ENVIRONMENT_TYPES
from objcls.utils.logging import get_logger

logger = get_logger(__name__)


class EnvironmentRunner:
    """
    Runs ``<python> <arguments...>`` in one environment.

    Attributes:
        environment_path: Executable, virtualenv directory or conda env name
        environment_type: One of ENVIRONMENT_TYPES
        name: Label used as the log prefix for process output
    """

    def __init__(
        self,
        environment_path: Union[str, Path],
        environment_type: str = "exe",
        name: str = "classification",
        conda_executable: str = "conda",
    ):
        if environment_type not in ENVIRONMENT_TYPES:
            raise InvalidArgument(
                f"Unknown environment type '{environment_type}', expected one of {list(ENVIRONMENT_TYPES)}"
            )
        self.environment_path = str(environment_path)
        self.environment_type = environment_type
        self.name = name
        self.conda_executable = conda_executable

    def python_command(self) -> List[str]:
        """Command prefix that starts the environment's Python interpreter."""
        if self.environment_type == "exe":
            return [self.environment_path]
        if self.environment_type == "venv":
            venv = Path(self.environment_path)
            if os.name == "nt":
                return [str(venv / "Scripts" / "python.exe")]
            return [str(venv / "bin" / "python")]
        # conda: a value containing a path separator is a prefix, otherwise a name
        flag = "-p" if os.sep in self.environment_path else "-n"
        return [self.conda_executable, "run", "--no-capture-output", flag, self.environment_path, "python"]

    def run(self, arguments: Sequence[str], cwd: Optional[Union[str, Path]] = None) -> List[str]:
        """
        Run the interpreter with arguments and wait for it to exit.

        Args:
            arguments: Arguments after the interpreter (e.g. ['-W', 'ignore', script, ...])
            cwd: Working directory for the process

        Returns:
            Captured output lines

        Raises:
            ExternalInvocationFailed: If the process cannot be started or exits non-zero
        """
        command = self.python_command() + [str(a) for a in arguments]
        logger.debug(f"[{self.name}] Running: {' '.join(command)}")

        lines: List[str] = []
        try:
            proc = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                bufsize=1,
                cwd=str(cwd) if cwd is not None else None,
            )
        except OSError as e:
            raise ExternalInvocationFailed(
                f"Could not launch {command[0]}: {e}", output=[str(e)]
            ) from e

        with proc:
            for line in proc.stdout:
                line = line.rstrip("\r\n")
                lines.append(line)
                logger.info(f"[{self.name}] {line}")
            returncode = proc.wait()

        if returncode != 0:
            raise ExternalInvocationFailed(
                f"{self.name} process failed", output=lines, returncode=returncode
            )
        return lines

    def __repr__(self) -> str:
        return f"EnvironmentRunner(type={self.environment_type!r}, path={self.environment_path!r})"
