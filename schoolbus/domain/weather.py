"""
Weather condition normalisation.

Providers report free-text conditions ("Light rain showers", "Partly
cloudy", ...).  Trips store a small fixed vocabulary so that clients can
pick an icon and the alerting rule can compare conditions.

Codes: ``clear``, ``clouds``, ``rain``, ``thunderstorm``, ``snow``, ``mist``.
"""

from __future__ import annotations

# Order matters: "thunder showers" is a thunderstorm, not rain.
_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("thunderstorm", ("thunder", "storm")),
    ("snow", ("snow", "flurries", "sleet")),
    ("rain", ("rain", "shower", "drizzle")),
    ("mist", ("fog", "mist", "haze")),
    ("clouds", ("cloud", "overcast")),
    ("clear", ("sun", "clear", "fair")),
]

ICONS = {
    "clear": "01d",
    "clouds": "03d",
    "rain": "09d",
    "thunderstorm": "11d",
    "snow": "13d",
    "mist": "50d",
}

DEFAULT_CONDITION = "clear"


def normalize_condition(raw: str | None) -> str:
    """Map provider text to one of the condition codes.  Unknown -> clear."""
    text = (raw or "").lower()
    for code, words in _KEYWORDS:
        if any(w in text for w in words):
            return code
    return DEFAULT_CONDITION


def icon_for(condition: str) -> str:
    return ICONS.get(condition, ICONS[DEFAULT_CONDITION])
