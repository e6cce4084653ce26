"""Configuration loading utilities for skillscore."""

import copy
import dataclasses
import os
from typing import Any, Dict, Optional, Type, TypeVar
import logging

import yaml

LOG = logging.getLogger(__name__)

ConfigType = Dict[str, Any]

_MISSING = object()

PolicyT = TypeVar("PolicyT")


def load_configs(*path_configs: str) -> ConfigType:
    """Load and merge YAML configuration files.

    Args:
        *path_configs: Paths to YAML configuration files

    Returns:
        Merged configuration dictionary

    Raises:
        TypeError: If a config file doesn't contain a dict
        ValueError: If no configs are loaded
    """
    def merge(orig_conf: Any, new_conf: Any):
        """Recursively merge configuration dictionaries."""
        if isinstance(orig_conf, dict) and isinstance(new_conf, dict):
            result = copy.deepcopy(orig_conf)
            for k, v in new_conf.items():
                if k in orig_conf:
                    result[k] = merge(orig_conf[k], v)
                else:
                    result[k] = v
            return result
        else:
            return copy.deepcopy(new_conf)

    result = {}
    for path in list(path_configs):
        LOG.info("loading config from %s", path)
        if os.path.isfile(path):
            with open(path, "r") as f:
                c = yaml.safe_load(f)
                if not isinstance(c, dict):
                    raise TypeError(f"YAML config file {path} must be a dict")
                result = merge(result, c)
        else:
            LOG.warning("Skipping missing config file %s", repr(path))
    if not result:
        raise ValueError("No configs loaded")
    return result


def _config_dir() -> str:
    # libs -> skillscore -> project root
    current_dir = os.path.dirname(os.path.abspath(__file__))
    project_root = os.path.dirname(os.path.dirname(current_dir))
    return os.path.join(project_root, "config")


def load_default_configs(*extra_paths: str) -> ConfigType:
    """Load default and local configuration files.

    Looks for config files in the following order:
    1. config/default.yaml (base configuration)
    2. config/local.yaml (local overrides, not committed to git)
    3. any extra paths, in the order given

    Returns:
        Merged configuration
    """
    config_dir = _config_dir()
    default_config_path = os.path.join(config_dir, "default.yaml")
    local_config_path = os.path.join(config_dir, "local.yaml")

    return load_configs(default_config_path, local_config_path, *extra_paths)


def get_config(key: str, config: Optional[ConfigType] = None, default: Any = _MISSING) -> Any:
    """Get a configuration value by dot-separated key.

    Args:
        key: Dot-separated path to config value (e.g., "scoring.ensemble.judgment_weight")
        config: Configuration dict (if None, loads default configs)
        default: Value returned when the key is absent

    Returns:
        Configuration value

    Raises:
        KeyError: If key not found in configuration and no default was given
    """
    if config is None:
        config = load_default_configs()

    keys = key.split('.')
    value = config
    for i, k in enumerate(keys):
        if not isinstance(value, dict):
            if default is not _MISSING:
                return default
            raise KeyError(f"Cannot access {k} in non-dict value at {'.'.join(keys[:i])}")
        if k not in value:
            if default is not _MISSING:
                return default
            raise KeyError(f"Key {key} not found in configuration")
        value = value[k]
    return value


def policy_from_config(policy_cls: Type[PolicyT], configs: Optional[ConfigType], key: str) -> PolicyT:
    """Overlay the config section at ``key`` onto a frozen dataclass policy.

    Keys that are not fields of the policy are ignored (with a debug log) so
    that config files can carry settings for newer versions.
    """
    section = get_config(key, configs or {}, default=None) or {}
    if not isinstance(section, dict):
        raise TypeError(f"Config section {key} must be a dict")

    overrides: Dict[str, Any] = {}
    for field in dataclasses.fields(policy_cls):
        if field.name not in section:
            continue
        value = section[field.name]
        nested_cls = field.type if dataclasses.is_dataclass(field.type) else None
        if nested_cls is None and isinstance(field.default_factory, type) \
                and dataclasses.is_dataclass(field.default_factory):
            nested_cls = field.default_factory
        if nested_cls is not None and isinstance(value, dict):
            value = policy_from_config(nested_cls, {"section": value}, "section")
        overrides[field.name] = value

    for unknown in set(section) - set(overrides):
        LOG.debug("Ignoring unknown key %s.%s", key, unknown)

    return policy_cls(**overrides)
