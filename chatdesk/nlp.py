"""Lightweight NLP used when the model omits sentiment or language.

Also derives the urgency level and risk flags that drive automatic
escalation from plain keyword matches on the visitor's message.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from langdetect import DetectorFactory, LangDetectException, detect

# langdetect is randomized unless seeded
DetectorFactory.seed = 0

URGENCY_LEVELS = ("low", "medium", "high", "critical")

_POSITIVE = {"great", "good", "awesome", "love", "thanks", "thank you", "helpful", "perfect"}
_NEGATIVE = {
    "bad",
    "terrible",
    "angry",
    "hate",
    "upset",
    "awful",
    "worst",
    "useless",
    "ridiculous",
    "frustrated",
    "disappointed",
}

_LEGAL_KEYWORDS = (
    "consumer court",
    "consumer forum",
    "legal action",
    "legal notice",
    "lawyer",
    "attorney",
    "lawsuit",
    "police",
)
_HIGH_URGENCY_KEYWORDS = (
    "urgent",
    "asap",
    "emergency",
    "immediately",
    "right now",
    "fed up",
    "pathetic",
    "scam",
    "fraud",
)
_MEDIUM_URGENCY_KEYWORDS = (
    "angry",
    "frustrated",
    "disappointed",
    "still not",
    "no update",
    "how long",
    "when will",
)
_SOCIAL_MEDIA_KEYWORDS = (
    "twitter",
    "facebook",
    "instagram",
    "youtube",
    "social media",
    "google review",
    "trustpilot",
    "post online",
    "go viral",
)
_POLICY_EXCEPTION_KEYWORDS = (
    "make an exception",
    "special case",
    "outside policy",
    "past deadline",
    "past the deadline",
    "expired warranty",
)


def _mentions(lowered: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in lowered for keyword in keywords)


@dataclass
class NlpPipeline:
    """Deterministic keyword based analysis."""

    def sentiment(self, text: str) -> Dict[str, Any]:
        """Signed score in ``[-1, 1]``: negative values mean negative sentiment."""

        lowered = (text or "").lower()
        positives = sum(1 for token in _POSITIVE if token in lowered)
        negatives = sum(1 for token in _NEGATIVE if token in lowered)
        if not positives and not negatives:
            return {"label": "neutral", "score": 0.0}
        # a single keyword is weak evidence; three or more saturate the score
        score = (positives - negatives) / max(positives + negatives, 3)
        if score > 0:
            label = "positive"
        elif score < 0:
            label = "negative"
        else:
            label = "neutral"
        return {"label": label, "score": score}

    def urgency(self, text: str) -> str:
        """One of :data:`URGENCY_LEVELS`; legal threats are ``critical``."""

        lowered = (text or "").lower()
        if _mentions(lowered, _LEGAL_KEYWORDS):
            return "critical"
        if _mentions(lowered, _HIGH_URGENCY_KEYWORDS):
            return "high"
        if _mentions(lowered, _MEDIUM_URGENCY_KEYWORDS):
            return "medium"
        return "low"

    def risk_flags(self, text: str) -> List[str]:
        lowered = (text or "").lower()
        flags = []
        if _mentions(lowered, _LEGAL_KEYWORDS):
            flags.append("legal_threat")
        if _mentions(lowered, _SOCIAL_MEDIA_KEYWORDS):
            flags.append("social_media_threat")
        if _mentions(lowered, _POLICY_EXCEPTION_KEYWORDS):
            flags.append("policy_exception_requested")
        return flags

    def language(self, text: str) -> Optional[str]:
        try:
            return detect(text) if text and text.strip() else None
        except LangDetectException:
            return None
