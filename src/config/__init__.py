"""
Application configuration.

``load_config`` reads ``config/samvaad.yaml`` (or ``$SAMVAAD_CONFIG``), expands
environment references and validates the result into ``AppConfig``. When no
file exists the defaults are used, with provider credentials taken from the
environment.
"""

from __future__ import annotations

import os
from typing import Optional

from ..logging_config import get_logger
from .loaders import load_env_file, load_yaml_with_env_expansion, resolve_config_path
from .models import (
    AppConfig,
    ConnectivityConfig,
    ConversationConfig,
    LoggingConfig,
    ProviderConfig,
    RetryConfig,
    ServerConfig,
)

logger = get_logger(__name__)

__all__ = [
    "AppConfig",
    "ConnectivityConfig",
    "ConversationConfig",
    "LoggingConfig",
    "ProviderConfig",
    "RetryConfig",
    "ServerConfig",
    "load_config",
]

_PROVIDER_ENV_KEYS = {
    "api_key": "BHASHINI_API_KEY",
    "user_id": "BHASHINI_USER_ID",
    "base_url": "BHASHINI_BASE_URL",
}


def load_config(path: Optional[str] = None, *, load_env: bool = True) -> AppConfig:
    if load_env:
        load_env_file()

    config_path = resolve_config_path(path)
    if os.path.exists(config_path):
        data = load_yaml_with_env_expansion(config_path)
        logger.debug("Loaded configuration file", path=config_path)
    else:
        if path:
            raise FileNotFoundError(f"Configuration file not found at: {config_path}")
        logger.info("No configuration file; using defaults", path=config_path)
        data = {}

    provider = dict(data.get("provider") or {})
    for key, env_name in _PROVIDER_ENV_KEYS.items():
        if not provider.get(key) and os.environ.get(env_name):
            provider[key] = os.environ[env_name]
    data["provider"] = provider

    return AppConfig.model_validate(data)
