import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from burst_stack_backend.validate import validate_config

DEFAULT_CONFIG: Dict[str, Any] = {
    'alignment': {
        'tile_size': 16,
        'search_radius': 2,
        'search_bound': 64,
        'min_tile_size': 8,
    },
    'merge': {
        'robustness': 1.0,
        'kernel_size': 5,
    },
    'reference': {
        'policy': 'auto',
        'index': None,
        'small_burst_max': 5,
        'large_burst_index': 6,
    },
    'data': {
        'mosaic_period': 2,
        'decoder': 'rawpy',
    },
    'runtime': {
        'max_workers': 4,
        'memory_threshold_percent': 95.0,
    },
    'logging': {
        'level': 'INFO',
        'log_dir': None,
    },
}


class ConfigurationManager:
    """
    Manages configuration loading, validation, and defaults
    """
    @classmethod
    def load_config(
        cls,
        config_path: Path,
        schema_path: Optional[Path] = None
    ) -> Dict[str, Any]:
        """
        Load and validate configuration from file

        Args:
            config_path: Path to YAML configuration file
            schema_path: Optional path to JSON schema (default: bundled schema)

        Returns:
            Validated configuration dictionary, missing keys filled with defaults
        """
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}

        cls.validate_config(config, schema_path)
        return cls.with_defaults(config)

    @classmethod
    def validate_config(
        cls,
        config: Dict[str, Any],
        schema_path: Optional[Path] = None
    ) -> bool:
        """
        Validate configuration against the JSON schema and cross-field rules

        Returns:
            True if valid, raises ValueError otherwise
        """
        result = validate_config(config, str(schema_path) if schema_path else None)
        if not result['valid']:
            details = "; ".join(f"{e['path']}: {e['message']}" for e in result['errors'])
            raise ValueError(f"Configuration validation failed: {details}")
        return True

    @classmethod
    def with_defaults(cls, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        merged = copy.deepcopy(DEFAULT_CONFIG)
        if config:
            cls._deep_update(merged, config)
        return merged

    @classmethod
    def generate_default_config(
        cls,
        output_path: Path,
        base_config: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Generate a default configuration file

        Args:
            output_path: Path to save the configuration
            base_config: Optional overrides applied on top of the defaults

        Returns:
            Generated configuration dictionary
        """
        default_config = cls.with_defaults(base_config)

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)

        return default_config

    @staticmethod
    def _deep_update(base_dict: Dict, update_dict: Dict) -> Dict:
        """
        Recursively update nested dictionaries

        Args:
            base_dict: Base dictionary to update
            update_dict: Dictionary with updates

        Returns:
            Updated dictionary
        """
        for key, value in update_dict.items():
            if isinstance(value, dict):
                base_dict[key] = base_dict.get(key) or {}
                base_dict[key] = ConfigurationManager._deep_update(base_dict[key], value)
            else:
                base_dict[key] = value
        return base_dict


@dataclass
class MergeConfig:
    """Typed view of the configuration consumed by the merge pipeline."""
    tile_size: int = 16
    search_radius: int = 2
    search_bound: int = 64
    min_tile_size: int = 8
    robustness: float = 1.0
    kernel_size: int = 5
    reference_policy: str = 'auto'
    reference_index: Optional[int] = None
    small_burst_max: int = 5
    large_burst_index: int = 6
    mosaic_period: int = 2
    decoder: str = 'rawpy'
    max_workers: int = 4
    memory_threshold_percent: float = 95.0

    @classmethod
    def from_dict(cls, cfg: Optional[Dict[str, Any]] = None) -> "MergeConfig":
        c = ConfigurationManager.with_defaults(cfg)
        alignment = c['alignment']
        merge = c['merge']
        reference = c['reference']
        data = c['data']
        runtime = c['runtime']
        return cls(
            tile_size=int(alignment['tile_size']),
            search_radius=int(alignment['search_radius']),
            search_bound=int(alignment['search_bound']),
            min_tile_size=int(alignment['min_tile_size']),
            robustness=float(merge['robustness']),
            kernel_size=int(merge['kernel_size']),
            reference_policy=str(reference['policy']),
            reference_index=None if reference['index'] is None else int(reference['index']),
            small_burst_max=int(reference['small_burst_max']),
            large_burst_index=int(reference['large_burst_index']),
            mosaic_period=int(data['mosaic_period']),
            decoder=str(data['decoder']),
            max_workers=int(runtime['max_workers']),
            memory_threshold_percent=float(runtime['memory_threshold_percent']),
        )

    def __post_init__(self):
        if not 0.0 <= self.robustness <= 1.0:
            raise ValueError(f"robustness must be in [0, 1], got {self.robustness}")
        if self.reference_policy not in ('auto', 'fixed'):
            raise ValueError(f"unknown reference policy: {self.reference_policy}")
        if self.reference_policy == 'fixed' and self.reference_index is None:
            raise ValueError("reference policy 'fixed' requires reference_index")
        if self.min_tile_size < 2 or self.min_tile_size % 2:
            raise ValueError(f"alignment.min_tile_size must be an even number >= 2, got {self.min_tile_size}")
        if self.tile_size != 0 and (self.tile_size % 2 or self.tile_size < self.min_tile_size):
            raise ValueError(
                f"alignment.tile_size must be 0 (auto) or an even number >= {self.min_tile_size}, "
                f"got {self.tile_size}"
            )
