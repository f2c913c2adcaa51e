# core/config_loader.py
from __future__ import annotations
import logging
import os
import threading
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

from config.settings import get_settings

logger = logging.getLogger(__name__)

_config_lock = threading.Lock()
_config_cache: Optional[Dict[str, Any]] = None


def _credential_present(env_key: str) -> bool:
    if os.getenv(env_key):
        return True
    return bool(getattr(get_settings(), env_key.lower(), None))


def _validate_api_keys(cfg: Dict[str, Any]) -> None:
    for name, pdata in (cfg.get("providers") or {}).items():
        env_key = pdata.get("api_key_env")
        if env_key and not _credential_present(env_key):
            logger.warning("Missing API key for provider '%s' (env %s); its models will fail per request", name, env_key)
        else:
            logger.info("Provider '%s' configured (env %s)", name, env_key)


def load_config(path: Optional[str] = None, *, force_reload: bool = False) -> Dict[str, Any]:
    """
    Load and cache the provider catalogue (models.yaml).
    """
    global _config_cache
    with _config_lock:
        if _config_cache is None or force_reload or path is not None:
            models_yaml = Path(path or get_settings().models_config_path)
            logger.debug("Loading provider catalogue from %s (force_reload=%s)", models_yaml, force_reload)
            if not models_yaml.is_file():
                raise FileNotFoundError(f"models.yaml not found at path: {models_yaml}")
            with models_yaml.open("r") as f:
                data = yaml.safe_load(f) or {}

            if not isinstance(data, dict):
                raise ValueError("models.yaml must parse to a mapping")

            _validate_api_keys(data)
            _config_cache = data
        return _config_cache


def providers_index(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Public view of the catalogue: model ids, their provider, and credential status."""
    providers = cfg.get("providers") or {}

    out: Dict[str, Any] = {"models": []}
    for key, pdata in providers.items():
        env_key = pdata.get("api_key_env")
        for model in pdata.get("models") or []:
            out["models"].append({
                "id": model,
                "provider": key,
                "wire": pdata.get("wire") or pdata.get("type"),
                "configured": (not env_key) or _credential_present(env_key),
            })

    out["models"].sort(key=lambda m: m["id"])
    return out
