"""Configuration loading for the repository manager.

Sources, highest priority first: ``DEPOT_*`` environment variables (a
``.env`` file feeds them), the TOML file with the selected profile merged in,
then the defaults in :mod:`depot.config.schema`.

A profile is a ``[profiles.<name>]`` table shaped like the file itself::

    [storage]
    location = "/srv/depot/repository"

    [profiles.server.storage]
    persist_scheduling = true

String values may reference the environment as ``${VAR}`` or
``${VAR:-default}``.
"""

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from depot.config.schema import AppConfig
from depot.observability.logging import get_logger

logger = get_logger(__name__)

_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")

DEFAULT_CONFIG_PATHS = (
    Path("depot.toml"),
    Path("~/.depot/config.toml"),
    Path("/etc/depot/config.toml"),
)


def _expand(value: str) -> str:
    def lookup(match: re.Match) -> str:
        name, sep, default = match.group(1).partition(":-")
        resolved = os.getenv(name.strip())
        if resolved is not None:
            return resolved
        if sep:
            return default
        logger.warning("env_var_not_found", var_name=name.strip())
        return match.group(0)

    return _ENV_REFERENCE.sub(lookup, value)


def _substitute_env_vars(obj: Any) -> Any:
    """Expand ``${VAR}`` references in every string of a parsed TOML tree."""
    if isinstance(obj, dict):
        return {key: _substitute_env_vars(value) for key, value in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    if isinstance(obj, str):
        return _expand(obj)
    return obj


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: Optional[Path] = None,
    profile: Optional[str] = None,
    env_file: Optional[Path] = None,
) -> AppConfig:
    """Load and validate the application configuration.

    Args:
        config_path: TOML file; missing files fall back to defaults
        profile: Name of a ``[profiles.*]`` table merged over the file
        env_file: ``.env`` file loaded into the environment first

    Returns:
        Validated configuration
    """
    if env_file and env_file.exists():
        load_dotenv(env_file)
        logger.info("loaded_env_file", path=str(env_file))

    data: dict[str, Any] = {}
    if config_path and config_path.exists():
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
        logger.info("loaded_config_file", path=str(config_path))

        profiles = data.pop("profiles", {})
        if profile:
            if profile in profiles:
                data = _merge(data, profiles[profile])
                logger.info("applied_profile", profile=profile)
            else:
                logger.warning("profile_not_found", profile=profile, available=sorted(profiles))
        data = _substitute_env_vars(data)

    config = AppConfig(**data)
    logger.info(
        "config_loaded",
        store_type=config.storage.store_type,
        storage_location=str(config.storage.location),
        persist_scheduling=config.storage.persist_scheduling,
        http_context=config.publication.http_context,
        remote_repositories=config.transfer.remote_repositories,
    )
    return config


def get_default_config_path() -> Path:
    """Return the first existing default config file, else ``./depot.toml``."""
    for candidate in DEFAULT_CONFIG_PATHS:
        path = candidate.expanduser()
        if path.exists():
            return path
    return Path.cwd() / DEFAULT_CONFIG_PATHS[0]
