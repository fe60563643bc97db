"""
Runtime configuration.

Values come from an optional YAML file (path in VOLITION_CONFIG) and are
overridden by environment variables.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any

import yaml

logger = logging.getLogger("config")

DEFAULT_STATE_FILE = "data/volition_state.json"
DEFAULT_LLM_BASE_URL = "https://api.deepseek.com"
DEFAULT_LLM_MODEL = "deepseek-chat"
DEFAULT_LLM_TIMEOUT = 60.0

# setting name -> environment variable
ENV_KEYS = {
    "state_file": "VOLITION_STATE_FILE",
    "llm_api_key": "DEEPSEEK_API_KEY",
    "llm_base_url": "VOLITION_LLM_BASE_URL",
    "llm_model": "VOLITION_LLM_MODEL",
    "llm_timeout": "VOLITION_LLM_TIMEOUT",
    "log_level": "VOLITION_LOG_LEVEL",
}


@dataclass
class Settings:
    state_file: Path = Path(DEFAULT_STATE_FILE)
    llm_api_key: Optional[str] = None
    llm_base_url: str = DEFAULT_LLM_BASE_URL
    llm_model: str = DEFAULT_LLM_MODEL
    llm_timeout: float = DEFAULT_LLM_TIMEOUT
    log_level: str = "INFO"


def read_yaml_file(path: Path) -> Dict[str, Any]:
    """Read a YAML mapping; a missing file is an empty mapping."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def load_settings(config_path: Optional[Path] = None) -> Settings:
    path = config_path or (Path(os.environ["VOLITION_CONFIG"]) if os.getenv("VOLITION_CONFIG") else None)
    values: Dict[str, Any] = read_yaml_file(path) if path else {}

    for name, env_var in ENV_KEYS.items():
        env_value = os.getenv(env_var)
        if env_value:
            values[name] = env_value

    unknown = set(values) - set(ENV_KEYS)
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {sorted(unknown)}")

    settings = Settings()
    if values.get("state_file"):
        settings.state_file = Path(values["state_file"])
    settings.llm_api_key = values.get("llm_api_key") or None
    settings.llm_base_url = values.get("llm_base_url") or DEFAULT_LLM_BASE_URL
    settings.llm_model = values.get("llm_model") or DEFAULT_LLM_MODEL
    settings.log_level = str(values.get("log_level") or "INFO").upper()

    timeout = values.get("llm_timeout", DEFAULT_LLM_TIMEOUT)
    try:
        settings.llm_timeout = float(timeout)
    except (TypeError, ValueError):
        raise ValueError(f"llm_timeout must be a number, got {timeout!r}")
    if settings.llm_timeout <= 0:
        raise ValueError("llm_timeout must be positive")

    return settings
