"""
Configuration Management Module

Settings for the hybrid phenotype matcher come from config.yaml at the
project root (or the file named by PHENOMATCH_CONFIG). Values in the file
are merged over built-in defaults, so a partial file only needs the keys
it changes. The merged result is cached in a module-level singleton.

Usage:
    from phenomatch.config import get_config, get_matching_config
    config = get_config()
    top_n = get_matching_config()["top_n"]
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlsplit


CONFIG_ENV_VAR = "PHENOMATCH_CONFIG"

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "embedding": {
        "base_url": "http://127.0.0.1:5001",
        "timeout_sec": 30.0,
        "dimensions": 512,
        "health_check": False,
        "health_timeout_sec": 5.0,
    },
    "measurement": {
        "base_url": "http://127.0.0.1:5002",
        "timeout_sec": 25.0,
        "min_landmarks": 1,
    },
    "vision": {
        "base_url": None,
        "provider": "gpt5",
        "timeout_sec": 30.0,
    },
    "traits": {
        "base_url": None,
        "model": "gpt-4o",
        "api_key_env": "OPENAI_API_KEY",
        "timeout_sec": 30.0,
        "max_tokens": 800,
    },
    "narrative": {
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o-mini",
        "api_key_env": "OPENAI_API_KEY",
        "timeout_sec": 30.0,
        "max_tokens": 1500,
    },
    "matching": {
        "embedding_weight": 0.70,
        "measurement_weight": 0.30,
        "high_threshold": 0.80,
        "medium_threshold": 0.65,
        "top_n": 10,
        "secondary_count": 4,
        "candidate_pool_factor": 2,
        "use_archetype_ratios": False,
    },
    "pipeline": {
        "optional_signal_timeout_sec": 35.0,
    },
    "storage": {
        "db_path": "storage/phenomatch.sqlite",
    },
    "api": {
        "base_url": "http://localhost:8000",
        "allow_private_image_hosts": False,
    },
}

_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Directory holding config.yaml, searched upwards from this package.

    Raises:
        FileNotFoundError: If no parent directory contains config.yaml.
    """
    for directory in Path(__file__).resolve().parents:
        if (directory / "config.yaml").exists():
            return directory

    raise FileNotFoundError(
        "config.yaml not found above the phenomatch package; "
        f"set {CONFIG_ENV_VAR} to point at a configuration file."
    )


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Read one YAML configuration file.

    Args:
        config_path: File to read. Defaults to $PHENOMATCH_CONFIG, then
            config.yaml in the project root.

    Returns:
        The file's contents as a dict (empty for an empty file), without defaults.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR) or get_project_root() / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is not None and not isinstance(data, dict):
        raise ValueError(f"{config_path} must contain a mapping of sections")
    return data or {}


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Defaults merged with the configuration file, loaded once.

    Args:
        reload: Re-read the file (tests, or after editing config.yaml).
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = _merge(DEFAULTS, load_config())

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    One top-level section of the merged configuration.

    Raises:
        KeyError: If the section is neither in the file nor in the defaults.
    """
    config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {sorted(config)}"
        )

    return config[section_name] or {}


def get_embedding_config() -> Dict[str, Any]:
    return get_section("embedding")


def get_measurement_config() -> Dict[str, Any]:
    return get_section("measurement")


def get_vision_config() -> Dict[str, Any]:
    return get_section("vision")


def get_traits_config() -> Dict[str, Any]:
    return get_section("traits")


def get_narrative_config() -> Dict[str, Any]:
    return get_section("narrative")


def get_matching_config() -> Dict[str, Any]:
    """Fusion weights, tier thresholds and ranking limits."""
    return get_section("matching")


def get_pipeline_config() -> Dict[str, Any]:
    """Shared deadline for the optional signals."""
    return get_section("pipeline")


def get_storage_config() -> Dict[str, Any]:
    return get_section("storage")


def get_api_config() -> Dict[str, Any]:
    return get_section("api")


def get_pipeline_settings() -> Dict[str, Dict[str, Any]]:
    """The sections a HybridAnalysisPipeline is built from, keyed by section name."""
    return {
        "embedding": get_embedding_config(),
        "measurement": get_measurement_config(),
        "vision": get_vision_config(),
        "traits": get_traits_config(),
        "narrative": get_narrative_config(),
        "matching": get_matching_config(),
        "pipeline": get_pipeline_config(),
    }


def get_server_config() -> Dict[str, Any]:
    """
    Host and port for running the API, taken from api.base_url.

    "localhost" (or no host) binds to all interfaces; a missing or
    invalid port falls back to 8000.
    """
    parts = urlsplit(get_api_config().get("base_url") or "http://localhost:8000")

    host = parts.hostname
    if host in (None, "localhost"):
        host = "0.0.0.0"

    try:
        port = parts.port or 8000
    except ValueError:
        port = 8000

    return {"host": host, "port": port}
