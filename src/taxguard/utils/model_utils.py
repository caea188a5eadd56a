"""
Model Utilities

Model persistence and versioning for trained tax abuse detectors.
"""

import hashlib
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import joblib

logger = logging.getLogger(__name__)

ARTIFACT_VERSION = '1.0.0'


class ModelRegistry:
    """File-based model registry with a ``registry.json`` index."""

    def __init__(self, registry_path: Union[str, Path] = "./model_registry"):
        """Initialize model registry."""
        self.registry_path = Path(registry_path)
        self.registry_path.mkdir(parents=True, exist_ok=True)
        self.metadata_file = self.registry_path / "registry.json"
        self.metadata = self._load_metadata()

    def _load_metadata(self) -> Dict:
        """Load registry metadata."""
        if self.metadata_file.exists():
            with open(self.metadata_file, 'r') as f:
                return json.load(f)
        return {"models": {}}

    def _save_metadata(self):
        """Save registry metadata."""
        with open(self.metadata_file, 'w') as f:
            json.dump(self.metadata, f, indent=2, default=str)

    def register_model(self,
                       model: Any,
                       name: str,
                       version: str,
                       metrics: Dict[str, float],
                       description: str = "") -> str:
        """Store a model version and make it the current one. Returns its hash."""
        model_path = self.registry_path / f"{name}_v{version}.joblib"
        joblib.dump(model, model_path)
        model_hash = file_sha256(model_path)[:16]

        entry = self.metadata["models"].setdefault(name, {"current_version": version, "versions": {}})
        entry["current_version"] = version
        entry["versions"][version] = {
            "path": str(model_path),
            "hash": model_hash,
            "metrics": metrics,
            "description": description,
            "created_at": datetime.now().isoformat(),
        }

        self._save_metadata()
        logger.info(f"Registered model {name} version {version}")
        return model_hash

    def load_model(self, name: str, version: Optional[str] = None) -> Any:
        """Load model from registry."""
        if name not in self.metadata["models"]:
            raise ValueError(f"Model {name} not found in registry")

        if version is None:
            version = self.metadata["models"][name]["current_version"]

        versions = self.metadata["models"][name]["versions"]
        if version not in versions:
            raise ValueError(f"Model {name} has no version {version}")

        model_path = Path(versions[version]["path"])
        if not model_path.exists():
            raise FileNotFoundError(f"Model file not found: {model_path}")

        return joblib.load(model_path)

    def list_models(self) -> Dict[str, Dict]:
        """List all registered models."""
        return self.metadata["models"]


def file_sha256(path: Union[str, Path]) -> str:
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            digest.update(chunk)
    return digest.hexdigest()


def save_model_with_metadata(model: Any,
                             filepath: Union[str, Path],
                             metadata: Dict[str, Any]):
    """Save model with metadata."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    model_data = {
        'model': model,
        'metadata': {
            'model_type': type(model).__name__,
            **metadata,
            'saved_at': datetime.now().isoformat(),
            'artifact_version': ARTIFACT_VERSION,
        }
    }

    joblib.dump(model_data, filepath)
    logger.info(f"Model saved with metadata to {filepath}")


def load_model_with_metadata(filepath: Union[str, Path]) -> Tuple[Any, Dict[str, Any]]:
    """Load model with metadata."""
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Model file not found: {filepath}")

    model_data = joblib.load(filepath)
    if not isinstance(model_data, dict) or 'model' not in model_data:
        raise ValueError(f"{filepath} is not a taxguard model artifact")
    return model_data['model'], model_data.get('metadata', {})
