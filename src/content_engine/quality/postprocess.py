"""Normalize raw model replies into stored artifacts.

Every function returns an empty string when the reply is unusable.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from content_engine.errors import ValidationError
from content_engine.text.segmenter import SENTENCE_TERMINALS

logger = logging.getLogger(__name__)

MAX_TAG_CHARS = 20
ELLIPSIS = "..."
_TAG_SEPARATORS_RE = re.compile(r"[,，、;；\n]")
_WHITESPACE_RE = re.compile(r"\s+")
_LABEL_STRIP_CHARS = " \t\"'`“”‘’「」《》[]()*#.:。：-"


@dataclass(slots=True, frozen=True)
class PostprocessOptions:
    """Per-type limits applied to replies."""

    max_length: int = 100
    max_tags: int = 5
    seo_length: int = 200
    categories: tuple[str, ...] = ()
    default_category: str = ""


@dataclass(slots=True, frozen=True)
class SeoMetadata:
    description: str
    keywords: tuple[str, ...]

    def to_json(self) -> str:
        return json.dumps(
            {"description": self.description, "keywords": list(self.keywords)},
            ensure_ascii=False,
        )


def postprocess(artifact_type: str, raw: str, options: PostprocessOptions) -> str:
    if artifact_type == "summary":
        return postprocess_summary(raw, options.max_length)
    if artifact_type == "tags":
        return ",".join(split_tags(raw, options.max_tags))
    if artifact_type == "category":
        return match_category(raw, options.categories, options.default_category)
    if artifact_type == "seo":
        metadata = parse_seo(raw, options.seo_length)
        return metadata.to_json() if metadata is not None else ""
    raise ValidationError(f"Unsupported artifact type: {artifact_type!r}")


def postprocess_summary(text: str, max_length: int) -> str:
    """Collapse whitespace and keep the summary within max_length."""

    collapsed = _WHITESPACE_RE.sub(" ", text).strip()
    if len(collapsed) <= max_length:
        return collapsed
    window = collapsed[:max_length]
    cut = max((window.rfind(char) for char in SENTENCE_TERMINALS), default=-1)
    if cut > 0:
        return window[: cut + 1]
    return window.rstrip() + ELLIPSIS


def truncate_with_ellipsis(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + ELLIPSIS


def split_tags(text: str, max_tags: int) -> list[str]:
    """Split a comma-separated reply into unique tags of at most 20 characters."""

    tags: list[str] = []
    seen: set[str] = set()
    for part in _TAG_SEPARATORS_RE.split(text):
        tag = part.strip().strip("#\"'`").strip()
        if not tag or len(tag) > MAX_TAG_CHARS:
            continue
        key = tag.casefold()
        if key in seen:
            continue
        seen.add(key)
        tags.append(tag)
    return tags[:max_tags]


def clean_label(text: str) -> str:
    first_line = next((line for line in text.strip().splitlines() if line.strip()), "")
    return first_line.strip(_LABEL_STRIP_CHARS)


def match_category(reply: str, categories: tuple[str, ...], default_category: str = "") -> str:
    """Resolve a suggested label against the known category list."""

    suggested = clean_label(reply)
    if not categories:
        return suggested
    if suggested:
        folded = suggested.casefold()
        for category in categories:
            if category.casefold() == folded:
                return category
        for category in categories:
            name = category.casefold()
            if name in folded or folded in name:
                return category
    if default_category in categories:
        logger.info("No category matched %r, using default %r", suggested, default_category)
        return default_category
    logger.info("No category matched %r, using first category %r", suggested, categories[0])
    return categories[0]


def parse_seo(text: str, seo_length: int) -> SeoMetadata | None:
    """Parse a JSON ``{description, keywords}`` reply."""

    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    description = data.get("description")
    keywords = data.get("keywords")
    if not isinstance(description, str) or not description.strip():
        return None
    if isinstance(keywords, str):
        keyword_list = [item.strip() for item in _TAG_SEPARATORS_RE.split(keywords)]
    elif isinstance(keywords, list):
        keyword_list = [str(item).strip() for item in keywords]
    else:
        return None
    unique: list[str] = []
    for keyword in keyword_list:
        if keyword and keyword not in unique:
            unique.append(keyword)
    return SeoMetadata(
        description=_WHITESPACE_RE.sub(" ", description).strip()[:seo_length],
        keywords=tuple(unique),
    )


def merge_segment_results(
    artifact_type: str,
    results: list[str],
    options: PostprocessOptions,
) -> str:
    """Combine per-segment artifacts into one document-level artifact."""

    usable = [result for result in results if result]
    if not usable:
        return ""
    if artifact_type == "summary":
        return truncate_with_ellipsis(" ".join(usable), options.max_length)
    if artifact_type == "tags":
        return ",".join(split_tags(",".join(usable), options.max_tags))
    return usable[0]
