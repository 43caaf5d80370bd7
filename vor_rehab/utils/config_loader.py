"""
Configuration loader utility
"""

import yaml
from typing import Dict, Any
from pathlib import Path


def load_config(config_path: str = 'config/config.yaml') -> Dict[str, Any]:
    """
    Load configuration from YAML file

    Args:
        config_path: Path to configuration file

    Returns:
        Dictionary with configuration values (empty dict for an empty file)
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, 'r') as f:
        config = yaml.safe_load(f)

    return config or {}


def get_section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a config section as a dict, tolerating missing or null sections."""
    section = config.get(name) if config else None
    return dict(section) if isinstance(section, dict) else {}
