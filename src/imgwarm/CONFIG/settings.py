"""
Loads WarmerOptions from a YAML file, the environment and explicit overrides.

Precedence, lowest first: config file, .env file, process environment,
explicit overrides (CLI flags).
"""
import os
import logging
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values, find_dotenv
from pydantic import ValidationError

from ..MODELS.warmer_options import WarmerOptions
from ..WARMER.errors import ConfigError
from .platform import detect_default_platform

logger = logging.getLogger(__name__)

ENV_PREFIX = "IMGWARM_"

# environment variable suffix -> (section, field)
ENV_FIELDS = {
    "CACHE_DIR": ("cache", "cache_dir"),
    "CACHE_TTL": ("cache", "cache_ttl"),
    "REGISTRY_USERNAME": ("registry", "username"),
    "REGISTRY_PASSWORD": ("registry", "password"),
}


def deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merges update into base in place, recursing into nested mappings.
    """
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Reads a YAML mapping of WarmerOptions fields.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def env_settings(env_file: Optional[str] = None,
                 environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Collects IMGWARM_* settings from a .env file and the environment.
    """
    path = env_file if env_file is not None else find_dotenv(usecwd=True)
    values: Dict[str, Optional[str]] = {}
    if path:
        values.update(dotenv_values(path))
    values.update(os.environ if environ is None else environ)

    settings: Dict[str, Any] = {}
    for suffix, (section, name) in ENV_FIELDS.items():
        value = values.get(ENV_PREFIX + suffix)
        if value:
            settings.setdefault(section, {})[name] = value
    return settings


def load_options(config_path: Optional[str] = None,
                 env_file: Optional[str] = None,
                 overrides: Optional[Dict[str, Any]] = None,
                 default_platform: Optional[str] = None,
                 environ: Optional[Dict[str, str]] = None) -> WarmerOptions:
    """
    Builds the options for one warming run.

    :param default_platform: Host platform; detected here if not given.
    :raises ConfigError: If any source holds invalid settings.
    """
    data: Dict[str, Any] = {}
    if config_path:
        deep_merge(data, load_config_file(config_path))
    deep_merge(data, env_settings(env_file, environ))
    deep_merge(data, overrides or {})
    data.setdefault("default_platform", default_platform or detect_default_platform())

    try:
        options = WarmerOptions.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid warmer configuration: {e}") from e

    logger.debug("Cache dir %s, ttl %s, platform %s",
                 options.cache.cache_dir, options.cache.cache_ttl, options.platform)
    return options
