"""Abuse protection: ingress de-duplication and rate limiting."""

from .dedup import IngressDeduplicator, payload_fingerprint
from .rate_limit import RateLimitDecision, RateLimiter, WindowRateLimiter

__all__ = [
    "IngressDeduplicator",
    "RateLimitDecision",
    "RateLimiter",
    "WindowRateLimiter",
    "payload_fingerprint",
]
