"""
Ephemeral on-disk workspaces for external inference invocations.

Each invocation gets a freshly named patch directory and its own result
files. Everything is removed when the workspace context exits, whatever the
outcome. Paths still registered at interpreter exit (e.g. after an unhandled
crash in a worker thread) are removed by an atexit hook.

Usage:
    from objcls.io.workspace import EphemeralWorkspace

    with EphemeralWorkspace("classification", tag="1024_2048") as ws:
        build_dataset(ws.image_dir, ...)
        result_path = ws.new_result_file()
        run_external(..., result_path)
    # ws.image_dir and result_path no longer exist here
"""

import atexit
import itertools
import os
import shutil
import tempfile
import threading
import uuid
from pathlib import Path
from typing import List, Optional, Set, Union

from objcls.utils.logging import get_logger

logger = get_logger(__name__)

PREFIX = "objcls"

# Paths created and not yet removed, for crash cleanup
_path_registry: Set[str] = set()
_registry_lock = threading.Lock()
_sequence = itertools.count()


def _register(path: Path) -> None:
    with _registry_lock:
        _path_registry.add(str(path))


def _unregister(path: Path) -> None:
    with _registry_lock:
        _path_registry.discard(str(path))


def remove_path(path: Union[str, Path]) -> bool:
    """
    Remove a file or directory tree and drop it from the crash registry.

    Returns:
        True if nothing remains at path afterwards
    """
    path = Path(path)
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")
        return False
    _unregister(path)
    return True


def _cleanup_registered_paths_on_exit() -> None:
    """Emergency removal of workspaces left behind at interpreter exit."""
    with _registry_lock:
        paths = list(_path_registry)
    for p in paths:
        remove_path(p)


atexit.register(_cleanup_registered_paths_on_exit)


def registered_paths() -> List[str]:
    """Paths created by live workspaces (diagnostics and tests)."""
    with _registry_lock:
        return sorted(_path_registry)


def unique_token(tag: Optional[str] = None) -> str:
    """uuid hex plus a process-wide sequence number, plus an optional caller tag."""
    token = f"{uuid.uuid4().hex}{next(_sequence)}"
    return f"{token}-{tag}" if tag else token


class EphemeralWorkspace:
    """
    Context manager owning one invocation's patch directory and result files.

    Attributes:
        purpose: Short name used in path prefixes ('classification', 'estimate_w', ...)
        token: Unique token embedded in every path this workspace creates
        image_dir: Patch directory (created on entry unless with_image_dir=False)
    """

    def __init__(
        self,
        purpose: str,
        tag: Optional[str] = None,
        base_dir: Optional[Union[str, Path]] = None,
        with_image_dir: bool = True,
    ):
        self.purpose = purpose
        self.token = unique_token(tag)
        self.base_dir = str(base_dir) if base_dir is not None else None
        self.with_image_dir = with_image_dir
        self.image_dir: Optional[Path] = None
        self._created: List[Path] = []

    def __enter__(self) -> "EphemeralWorkspace":
        if self.with_image_dir:
            self.image_dir = Path(tempfile.mkdtemp(
                prefix=f"{PREFIX}-{self.purpose}_imageset-{self.token}-", dir=self.base_dir,
            ))
            self._track(self.image_dir)
        return self

    def new_result_file(self, suffix: str = ".json") -> Path:
        """
        Create an empty, uniquely named result file owned by this workspace.

        The external process overwrites it; an untouched file reads as empty.
        """
        fd, name = tempfile.mkstemp(
            prefix=f"{PREFIX}-{self.purpose}_result-{self.token}-", suffix=suffix, dir=self.base_dir,
        )
        os.close(fd)
        path = Path(name)
        self._track(path)
        return path

    def _track(self, path: Path) -> None:
        self._created.append(path)
        _register(path)

    @property
    def paths(self) -> List[Path]:
        return list(self._created)

    def cleanup(self) -> None:
        """Remove every path this workspace created. Safe to call twice."""
        for path in reversed(self._created):
            remove_path(path)
        self._created.clear()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
        return False

    def __repr__(self) -> str:
        return f"EphemeralWorkspace(purpose={self.purpose!r}, image_dir={self.image_dir})"
