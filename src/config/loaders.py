"""
Configuration file loading.

Handles:
- Resolving the config path (``SAMVAAD_CONFIG`` or the bundled default)
- Reading YAML with shell-style environment expansion
- Loading ``.env`` before expansion so local secrets are visible
"""

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv


# Repository root (parent of src/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.resolve()

DEFAULT_CONFIG_PATH = "config/samvaad.yaml"
CONFIG_ENV_VAR = "SAMVAAD_CONFIG"

# ${VAR}, ${VAR:-default}, ${VAR:=default}
_ENV_REF = re.compile(r'\$\{([^}:]+)(:-|:=)?([^}]*)?\}')


def expand_env_refs(text: str) -> str:
    """
    Substitute environment references in *text*.

    ``${VAR:-default}`` and ``${VAR:=default}`` both fall back to ``default``
    when VAR is unset or empty. A bare ``${VAR}`` with VAR unset is left as-is
    so that YAML parsing surfaces it instead of silently becoming empty.
    """
    def _sub(match):
        name, operator, fallback = match.group(1), match.group(2), match.group(3) or ""
        value = os.environ.get(name)
        if operator:
            return fallback if not value else value
        return value if value is not None else match.group(0)

    return os.path.expandvars(_ENV_REF.sub(_sub, text))


def resolve_config_path(path: Optional[str] = None) -> str:
    """
    Pick the configuration file path.

    Precedence: explicit *path*, then ``$SAMVAAD_CONFIG``, then the default.
    Relative paths are anchored at the project root.
    """
    chosen = path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    if not os.path.isabs(chosen):
        return str(PROJECT_ROOT / chosen)
    return chosen


def load_env_file(env_path: Optional[str] = None) -> None:
    """Load ``.env`` without overriding variables already set in the process."""
    load_dotenv(env_path or PROJECT_ROOT / ".env", override=False)


def load_yaml_with_env_expansion(path: str) -> dict:
    """
    Read *path*, expand environment references and parse it as YAML.

    Returns an empty dict for an empty document.

    Raises:
        FileNotFoundError: If the file does not exist
        yaml.YAMLError: If the expanded text is not valid YAML
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found at: {path}")

    try:
        data = yaml.safe_load(expand_env_refs(raw))
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing YAML configuration {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"Top-level YAML in {path} must be a mapping")
    return data
