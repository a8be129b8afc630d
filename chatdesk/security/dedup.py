"""Ingress de-duplication for at-least-once webhook deliveries."""

from __future__ import annotations

import hashlib
import json
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

DEFAULT_TTL_SECONDS = 3600.0
DEFAULT_MAX_ENTRIES = 50_000


def payload_fingerprint(payload: Any) -> str:
    """Stable digest of a JSON-compatible payload (key order independent)."""

    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class IngressDeduplicator:
    """Remember recently seen message fingerprints.

    Entries expire after ``ttl_seconds``. When ``max_entries`` is reached the
    oldest entry is evicted first.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._seen: OrderedDict[str, float] = OrderedDict()

    def is_new(self, fingerprint: str) -> bool:
        """Return ``True`` the first time ``fingerprint`` is seen within the TTL."""

        now = self._clock()
        seen_at = self._seen.get(fingerprint)
        if seen_at is not None and now - seen_at < self._ttl:
            return False
        self._seen.pop(fingerprint, None)
        while len(self._seen) >= self._max_entries:
            self._seen.popitem(last=False)
        self._seen[fingerprint] = now
        return True

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, seen_at in self._seen.items() if now - seen_at >= self._ttl]
        for key in expired:
            del self._seen[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._seen)
