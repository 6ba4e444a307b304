"""
Model repository: a directory with one trained model file per model name.

The set of valid model names is the set of file stems with the configured
extension (default '.pt').
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from objcls.errors import InvalidArgument
from objcls.utils.logging import get_logger

logger = get_logger(__name__)


class ModelRepository:
    """
    Lists and resolves model files.

    Attributes:
        model_dir: Directory holding the model files
        extension: Model file extension including the dot
    """

    def __init__(self, model_dir: Union[str, Path], extension: str = ".pt"):
        self.model_dir = Path(model_dir)
        self.extension = extension if extension.startswith('.') else f".{extension}"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ModelRepository":
        return cls(config["model_dir"], config.get("model_extension", ".pt"))

    def list_models(self) -> List[str]:
        """
        Model names available in the repository, sorted.

        Raises:
            InvalidArgument: If the model directory does not exist
        """
        if not self.model_dir.is_dir():
            raise InvalidArgument(f"Model directory does not exist: {self.model_dir}")
        return sorted(
            p.name[:-len(self.extension)]
            for p in self.model_dir.iterdir()
            if p.is_file() and p.name.endswith(self.extension)
        )

    def model_path(self, name: str) -> Path:
        """
        Resolve a model name to its file.

        Raises:
            InvalidArgument: If no such model exists
        """
        path = self.model_dir / f"{name}{self.extension}"
        if not path.is_file():
            raise InvalidArgument(f"Model '{name}' not found in {self.model_dir}")
        return path

    def default_model(self, preferred: Optional[str] = None) -> str:
        """
        Pick a model: the preferred one if it exists, otherwise the first available.

        Raises:
            InvalidArgument: If the repository holds no models
        """
        names = self.list_models()
        if not names:
            raise InvalidArgument(f"No model exists in the model directory {self.model_dir}")
        if preferred is not None:
            if preferred in names:
                return preferred
            logger.warning(f"Preferred model '{preferred}' not found, using '{names[0]}'")
        return names[0]

    def __repr__(self) -> str:
        return f"ModelRepository({self.model_dir}, extension={self.extension!r})"
