"""Response parameter defaults for generation providers."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class ResponseParameterStore:
    """Maintain provider specific response parameter defaults."""

    _DEFAULTS: Mapping[str, dict[str, Any]] = {
        "openai": {"temperature": 0.3, "max_tokens": 1024},
        "anthropic": {"temperature": 0.2, "max_tokens": 1024},
        "sandbox": {"temperature": 0.0, "max_tokens": 512},
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, Any]] | None = None):
        self._defaults: dict[str, dict[str, Any]] = {
            provider: dict(params) for provider, params in self._DEFAULTS.items()
        }
        if overrides:
            for provider, params in overrides.items():
                merged = self._defaults.setdefault(provider.lower(), {})
                merged.update(params)

    def defaults_for_provider(self, provider: str) -> dict[str, Any]:
        return dict(self._defaults.get(provider.lower(), {"temperature": 0.5, "max_tokens": 1024}))

    def merge(self, provider: str, *overrides: Mapping[str, Any] | None) -> dict[str, Any]:
        """Merge overrides on top of provider defaults; ``None`` values are ignored."""

        params = self.defaults_for_provider(provider)
        for override in overrides:
            if override:
                params.update({k: v for k, v in override.items() if v is not None})
        return params
