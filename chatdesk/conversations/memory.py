"""Structured memory merge helpers."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .models import StructuredMemory
from .schemas import UserProfile

_PROFILE_FIELDS = ("name", "email", "phone", "company", "intent")
_PRODUCT_INTEREST_KEYS = ("product_interest", "productInterest")


def merge_structured_memory(
    existing: StructuredMemory, extracted: Mapping[str, Any] | None
) -> StructuredMemory:
    """Return a new memory with ``extracted`` fields layered on ``existing``.

    Known profile fields overwrite when a non-empty string is supplied,
    product interests are unioned in first-seen order and anything else lands
    in ``custom_fields``.
    """

    merged = StructuredMemory.from_dict(existing.to_dict())
    if not extracted:
        return merged

    for key in _PROFILE_FIELDS:
        value = extracted.get(key)
        if isinstance(value, str) and value.strip():
            setattr(merged, key, value.strip())

    for key in _PRODUCT_INTEREST_KEYS:
        interests = extracted.get(key)
        if isinstance(interests, str):
            interests = [interests]
        if isinstance(interests, (list, tuple)):
            for item in interests:
                label = str(item)
                if label not in merged.product_interest:
                    merged.product_interest.append(label)

    for key, value in extracted.items():
        if key in _PROFILE_FIELDS or key in _PRODUCT_INTEREST_KEYS:
            continue
        merged.custom_fields[key] = value
    return merged


def merge_user_profile(memory: StructuredMemory, profile: UserProfile) -> None:
    """Copy channel-provided identity fields into ``memory`` in place."""

    if profile.name:
        memory.name = profile.name
    if profile.email:
        memory.email = profile.email
    if profile.phone:
        memory.phone = profile.phone
