"""Lightweight transcript language detection."""

from __future__ import annotations

import re
from typing import Dict

DEFAULT_LANGUAGE = "en"

FUNCTION_WORDS: Dict[str, tuple] = {
    "it": (
        "è", "che", "di", "sono", "con", "per", "una", "abbiamo", "quindi", "però",
        "anche", "della", "nell", "sulla", "questa", "quello", "molto", "tutto",
        "più", "quando", "dove", "come", "perché", "allora", "cioè",
    ),
    "en": (
        "the", "and", "that", "have", "for", "not", "with", "you", "this", "but",
        "his", "from", "they", "know", "want", "been", "good", "much", "some",
        "time", "very", "when", "come", "here", "just", "like", "long", "make",
        "many", "over", "such", "take", "than", "only", "well", "year",
    ),
    "es": (
        "que", "de", "no", "la", "el", "en", "un", "ser", "se", "te", "lo", "le",
        "da", "su", "por", "son", "con", "para", "al", "una", "del", "las", "los",
        "como", "pero", "sus", "ese", "hasta",
    ),
    "fr": (
        "le", "de", "et", "un", "il", "être", "en", "avoir", "que", "pour", "dans",
        "ce", "son", "une", "sur", "avec", "ne", "se", "pas", "tout", "plus", "par",
        "grand", "celui", "me", "bien", "où", "sans", "aux",
    ),
}

DIACRITICS = {
    "it": re.compile(r"[àèéìòù]"),
    "es": re.compile(r"[ñáéíóúü]"),
    "fr": re.compile(r"[àâäéèêëïîôöùûüÿç]"),
}
DIACRITIC_BONUS = 3

LANGUAGE_NAMES = {
    "it": "Italian (italiano)",
    "en": "English",
    "es": "Spanish (español)",
    "fr": "French (français)",
}


def language_scores(text: str) -> Dict[str, int]:
    lowered = (text or "").lower()
    words = re.findall(r"\w+", lowered)
    counts: Dict[str, int] = {}
    for word in words:
        counts[word] = counts.get(word, 0) + 1

    scores = {}
    for lang, vocabulary in FUNCTION_WORDS.items():
        scores[lang] = sum(counts.get(word, 0) for word in set(vocabulary))
        pattern = DIACRITICS.get(lang)
        if pattern and pattern.search(lowered):
            scores[lang] += DIACRITIC_BONUS
    return scores


def detect_language(text: str) -> str:
    """Best-scoring language code; ``en`` when nothing scores."""
    scores = language_scores(text)
    best = max(scores.values())
    if best == 0:
        return DEFAULT_LANGUAGE
    return next(lang for lang, score in scores.items() if score == best)


def effective_language(configured: str, transcript: str) -> str:
    configured = (configured or "auto").strip()
    if configured == "auto":
        return detect_language(transcript)
    return configured
