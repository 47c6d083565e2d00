"""Configuration loading and validation for plyra-governor."""

from plyra_governor.config.defaults import DEFAULT_CONFIG
from plyra_governor.config.loader import load_config, load_config_from_dict
from plyra_governor.config.schema import GovernorConfig

__all__ = [
    "DEFAULT_CONFIG",
    "GovernorConfig",
    "load_config",
    "load_config_from_dict",
]
