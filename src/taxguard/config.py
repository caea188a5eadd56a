"""
Detector Configuration

Defaults, overridden by an optional JSON file and then by environment
variables.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

ENV_VARS = {
    'model_path': 'TAXGUARD_MODEL_PATH',
    'model_type': 'TAXGUARD_MODEL_TYPE',
    'registry_dir': 'TAXGUARD_REGISTRY_DIR',
    'log_level': 'TAXGUARD_LOG_LEVEL',
    'max_source_bytes': 'TAXGUARD_MAX_SOURCE_BYTES',
    'etherscan_api_key': 'ETHERSCAN_API_KEY',
    'etherscan_api_url': 'ETHERSCAN_API_URL',
}


@dataclass
class DetectorConfig:
    """Runtime settings shared by the CLI, training pipeline and model server."""
    model_path: Optional[str] = None
    model_type: str = 'random_forest'
    registry_dir: Optional[str] = None
    log_level: str = 'INFO'
    max_source_bytes: int = 2_000_000
    etherscan_api_key: Optional[str] = None
    etherscan_api_url: str = 'https://api.etherscan.io/api'
    fail_above: int = 61

    def __post_init__(self):
        self.max_source_bytes = int(self.max_source_bytes)
        self.fail_above = int(self.fail_above)
        if self.max_source_bytes <= 0:
            raise ValueError("max_source_bytes must be positive")
        if not 0 <= self.fail_above <= 101:
            raise ValueError("fail_above must be between 0 and 101")
        self.log_level = str(self.log_level).upper()

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DetectorConfig':
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {unknown}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'DetectorConfig':
        path = Path(path)
        with open(path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path}: config must be a JSON object")
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, base: Optional['DetectorConfig'] = None) -> 'DetectorConfig':
        values = base.to_dict() if base is not None else {}
        for field_name, env_var in ENV_VARS.items():
            value = os.getenv(env_var)
            if value:
                values[field_name] = value
        return cls(**values)


def load_config(path: Optional[Union[str, Path]] = None) -> DetectorConfig:
    """Load config from ``path`` (or ``TAXGUARD_CONFIG``) then apply the environment."""
    path = path or os.getenv('TAXGUARD_CONFIG')
    base = DetectorConfig.from_file(path) if path else None
    return DetectorConfig.from_env(base)
