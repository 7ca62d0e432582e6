"""
Resolution of logical model names to local artifact paths.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

import torch

from ..exceptions import ModelLoadError

logger = logging.getLogger(__name__)


class ModelStore:
    """
    Maps logical model names (``'emotion'``, ``'gaze'``, ...) to artifacts.

    Artifacts live in one directory; the mapping comes from the ``models``
    section of the configuration.
    """

    def __init__(self, directory: str = 'models', artifacts: Optional[Dict[str, str]] = None):
        self.directory = Path(directory)
        self.artifacts = dict(artifacts or {})

    def resolve(self, name: str, suffix: str = '') -> Path:
        """
        Resolve a logical name to an existing file.

        Raises:
            ModelLoadError: If the name is unknown or the file is missing
        """
        filename = self.artifacts.get(name)
        if not filename:
            raise ModelLoadError(f"No artifact configured for model '{name}'")

        path = self.directory / f"{filename}{suffix}"
        if not path.exists():
            raise ModelLoadError(f"Artifact for model '{name}' not found at {path}")
        return path

    def load_checkpoint(self, name: str, device: torch.device) -> dict:
        """Load a torch checkpoint holding a ``model_state_dict`` entry."""
        path = self.resolve(name)
        try:
            checkpoint = torch.load(path, map_location=device)
        except Exception as e:
            raise ModelLoadError(f"Could not read checkpoint {path}: {e}") from e

        if not isinstance(checkpoint, dict) or 'model_state_dict' not in checkpoint:
            raise ModelLoadError(f"Checkpoint {path} has no model_state_dict")
        logger.info(f"Loaded checkpoint for '{name}' from {path}")
        return checkpoint


def create_model_store(config: Dict) -> ModelStore:
    """Create a model store from the ``models`` configuration section."""
    models_config = config.get('models', {})
    return ModelStore(
        directory=models_config.get('directory', 'models'),
        artifacts=models_config.get('artifacts', {})
    )


def resolve_device(device: str = 'auto') -> torch.device:
    if device == 'auto':
        return torch.device('cuda' if torch.cuda.is_available() else 'cpu')
    return torch.device(device)
