"""Versioned prompt bundles for the support agent."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

FALLBACK_SYSTEM_PROMPT = "You are a helpful assistant."

_BUILTIN_SYSTEM = (
    "You are a customer support agent for an online store. Help visitors with "
    "orders, shipments, returns, product questions and general support. Be "
    "accurate and never invent order data: use the available tools to look "
    "things up or act, and hand off to a human when you cannot help."
)
_BUILTIN_DEVELOPER = (
    "Always answer with a single JSON object that follows the response format. "
    "Classify the visitor's intent, extract any contact or order details they "
    "share, and only request tools that are listed as available. Set "
    "should_escalate when the visitor asks for a human or is clearly upset."
)
_BUILTIN_BRAND_TONE = "Friendly, concise and professional. Match the visitor's language."


@dataclass(frozen=True)
class PromptBundle:
    version: str
    system: str
    developer: str = ""
    brand_tone: str = ""


BUILTIN_BUNDLE = PromptBundle(
    version="v1",
    system=_BUILTIN_SYSTEM,
    developer=_BUILTIN_DEVELOPER,
    brand_tone=_BUILTIN_BRAND_TONE,
)


class PromptBundleStore:
    """Resolve prompt bundles by version.

    When ``prompts_dir`` contains ``versions.json`` every approved version
    listed there is loaded from its markdown files. Otherwise a built-in
    bundle is registered as ``v1``.
    """

    def __init__(self, prompts_dir: str | Path | None = None) -> None:
        self._dir = Path(prompts_dir) if prompts_dir else None
        self._bundles: dict[str, PromptBundle] = {}
        self._default_version = "v1"
        self.reload()

    @property
    def default_version(self) -> str:
        return self._default_version

    def versions(self) -> list[str]:
        return sorted(self._bundles)

    def reload(self) -> None:
        self._bundles.clear()
        if self._dir is None:
            self._bundles[BUILTIN_BUNDLE.version] = BUILTIN_BUNDLE
            self._default_version = BUILTIN_BUNDLE.version
            return

        versions_path = self._dir / "versions.json"
        if not versions_path.exists():
            logger.warning("%s not found; using the built-in prompt bundle", versions_path)
            self._bundles[BUILTIN_BUNDLE.version] = BUILTIN_BUNDLE
            self._default_version = BUILTIN_BUNDLE.version
            return

        manifest = json.loads(versions_path.read_text(encoding="utf-8"))
        self._default_version = manifest.get("default", "v1")
        for version, meta in (manifest.get("versions") or {}).items():
            if not meta.get("approved"):
                logger.warning("Prompt version %s is not approved; skipping", version)
                continue
            self._bundles[version] = PromptBundle(
                version=version,
                system=self._read(meta.get("system")),
                developer=self._read(meta.get("developer")),
                brand_tone=self._read(meta.get("brand_tone")),
            )
            logger.info("Loaded prompt bundle %s", version)

    def _read(self, filename: str | None) -> str:
        if not filename or self._dir is None:
            return ""
        path = self._dir / filename
        if not path.exists():
            logger.warning("Prompt file %s not found", path)
            return ""
        return path.read_text(encoding="utf-8").strip()

    def get(self, version: str | None = None) -> PromptBundle:
        wanted = version or self._default_version
        bundle = self._bundles.get(wanted)
        if bundle is not None:
            return bundle
        logger.warning("Prompt version %s not found; using default %s", wanted, self._default_version)
        return self._bundles.get(self._default_version) or PromptBundle(
            version="fallback", system=FALLBACK_SYSTEM_PROMPT
        )
