"""Output language resolution."""

from __future__ import annotations

import re

DETECTION_SAMPLE_CHARS = 100
SCRIPT_SHARE_THRESHOLD = 0.3

LANGUAGE_NAMES = {
    "zh": "中文",
    "en": "English",
    "ja": "日本語",
    "ko": "한국어",
    "fr": "Français",
    "de": "Deutsch",
    "es": "Español",
    "ru": "Русский",
}

# Checked in order; Japanese kana wins over shared CJK ideographs only if
# ideographs stay under the threshold.
_SCRIPT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("zh", re.compile(r"[一-龥]")),
    ("ja", re.compile(r"[぀-ゟ゠-ヿ]")),
    ("ko", re.compile(r"[㄰-㆏가-힯]")),
    ("ru", re.compile(r"[Ѐ-ӿ]")),
)


def detect_language(content: str) -> str:
    """Guess the language code from the leading characters of content."""

    sample = content[:DETECTION_SAMPLE_CHARS]
    if not sample:
        return "en"
    total = len(sample)
    for code, pattern in _SCRIPT_PATTERNS:
        if len(pattern.findall(sample)) / total > SCRIPT_SHARE_THRESHOLD:
            return code
    return "en"


def resolve_language(configured: str, content: str) -> str:
    if configured == "auto":
        return detect_language(content)
    return configured


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, "English")
