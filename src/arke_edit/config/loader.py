"""Configuration loader with YAML and environment variable support.

This module reads client configuration from ~/.config/arke-edit/config.yaml
and allows environment variable overrides using the ARKE_EDIT_* prefix.

Environment variables:
- ARKE_EDIT_IPFS_WRAPPER_URL: Override ipfs_wrapper_url
- ARKE_EDIT_REPROCESS_API_URL: Override reprocess_api_url
- ARKE_EDIT_AUTH_TOKEN: Override auth_token
"""

import os
import stat
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

from arke_edit.models.config import ClientConfig
from arke_edit.utils.logging import get_logger


logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "arke-edit" / "config.yaml"

_ENV_OVERRIDES = {
    "ARKE_EDIT_IPFS_WRAPPER_URL": "ipfs_wrapper_url",
    "ARKE_EDIT_REPROCESS_API_URL": "reprocess_api_url",
    "ARKE_EDIT_AUTH_TOKEN": "auth_token",
}


def load_config(
    config_path: Optional[Path] = None,
    status_url_transform: Optional[Callable[[str], str]] = None,
) -> ClientConfig:
    """Load client configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to config file. If None, uses ~/.config/arke-edit/config.yaml
        status_url_transform: Optional status URL rewrite hook (not expressible in YAML)

    Returns:
        Validated ClientConfig

    Raises:
        FileNotFoundError: If there is no config file and no ARKE_EDIT_* variables
        PermissionError: If a config file holding an auth token is group/world accessible
        ValueError: If the configuration is invalid

    Example config.yaml:
        ipfs_wrapper_url: https://api.arke.institute
        reprocess_api_url: https://reprocess-api.arke.institute
        auth_token: YOUR_TOKEN_HERE
        retry:
          max_retries: 5
          initial_delay: 2.0
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    if config_path.exists():
        with config_path.open() as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        if data.get("auth_token"):
            _check_permissions(config_path)
    else:
        data = {}

    data = _apply_env_overrides(data)

    if not data:
        raise FileNotFoundError(
            f"Configuration file not found at {config_path} and no ARKE_EDIT_* environment variables set.\n"
            "Either create a config file or set environment variables."
        )

    if status_url_transform is not None:
        data["status_url_transform"] = status_url_transform

    config = ClientConfig(**data)
    logger.debug(
        "config_loaded",
        path=str(config_path),
        ipfs_wrapper_url=config.ipfs_base,
        reprocess_api_url=config.reprocess_base,
        has_auth_token=config.auth_token is not None,
    )
    return config


def _check_permissions(path: Path) -> None:
    mode = os.stat(path).st_mode
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        raise PermissionError(
            f"Config file has overly permissive permissions: {oct(mode)}\n"
            f"Run: chmod 600 {path}"
        )


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply ARKE_EDIT_* environment variable overrides to configuration data."""
    for env_var, key in _ENV_OVERRIDES.items():
        if value := os.getenv(env_var):
            data[key] = value
    return data
