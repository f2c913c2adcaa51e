# providers/registry.py

from __future__ import annotations
from typing import Any, Dict, Tuple

from core.exceptions import UnsupportedModelError
from providers.base import Provider

# ---------------- ModelRegistry ----------------

class ModelRegistry:
    def __init__(self, cfg: Dict[str, Any]):
        self.providers: Dict[str, Provider] = {}
        for pname, p in (cfg.get("providers") or {}).items():
            self.providers[pname] = Provider(
                name=pname,
                type=p["type"],
                base_url=p["base_url"].rstrip("/"),
                api_key_env=(p.get("api_key_env") or None),
                headers=(p.get("headers") or {}),
                models=(p.get("models") or []),
                wire=(p.get("wire") or p["type"]),
                defaults=(p.get("defaults") or {}),
            )

        # exact and case-insensitive maps for chat models
        self.model_map: Dict[str, Tuple[Provider, str]] = {}
        self._lc_model_map: Dict[str, Tuple[Provider, str]] = {}
        for prov in self.providers.values():
            for m in prov.models:
                self.model_map[m] = (prov, m)
                self._lc_model_map[m.lower()] = (prov, m)

    # --------- helpers the rest of the app can use ---------

    def resolve(self, model: str) -> Tuple[Provider, str]:
        """Return (provider, canonical model name) for a chat model id."""
        if model in self.model_map:
            return self.model_map[model]
        try:
            return self._lc_model_map[(model or "").lower()]
        except KeyError:
            raise UnsupportedModelError(model)

    def get_provider_for_model(self, model: str) -> Provider:
        return self.resolve(model)[0]

    def __contains__(self, model: str) -> bool:
        return model in self.model_map or (model or "").lower() in self._lc_model_map
