"""Heuristic quality scores in [0, 1] for generated artifacts."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass

from content_engine.quality.postprocess import (
    PostprocessOptions,
    clean_label,
    parse_seo,
    postprocess,
    split_tags,
)
from content_engine.text.segmenter import is_complete_sentence, split_sentences

SALIENT_TERM_COUNT = 10
_LATIN_WORD_RE = re.compile(r"[^\W\d_]{4,}")
_CJK_RUN_RE = re.compile(r"[一-龥぀-ヿ가-힯]+")
_STOPWORDS = frozenset(
    {
        "that",
        "this",
        "with",
        "from",
        "have",
        "were",
        "been",
        "they",
        "their",
        "which",
        "there",
        "about",
        "would",
        "could",
        "these",
        "those",
        "into",
        "also",
        "than",
        "then",
        "when",
        "what",
        "will",
        "more",
        "some",
        "such",
    },
)


@dataclass(slots=True, frozen=True)
class ScoredArtifact:
    """Post-processed artifact with its quality score."""

    content: str
    score: float


class QualityScorer:
    """Post-process a raw reply and score it against its source."""

    def __init__(self, options: PostprocessOptions) -> None:
        self.options = options

    def evaluate(self, artifact_type: str, raw: str, source: str) -> ScoredArtifact:
        content = postprocess(artifact_type, raw, self.options)
        if not content:
            return ScoredArtifact(content="", score=0.0)
        return ScoredArtifact(
            content=content,
            score=score_artifact(artifact_type, raw, content, source, self.options),
        )


def score_artifact(
    artifact_type: str,
    raw: str,
    content: str,
    source: str,
    options: PostprocessOptions,
) -> float:
    if artifact_type == "summary":
        return score_summary(content, source, options.max_length)
    if artifact_type == "tags":
        return score_tags(content, source, options.max_tags)
    if artifact_type == "category":
        return score_category(raw, content, options.categories)
    if artifact_type == "seo":
        return score_seo(content, source, options.seo_length)
    return 0.0


def score_summary(summary: str, source: str, max_length: int) -> float:
    if not summary:
        return 0.0
    return _clamp(
        0.3 * _length_fit(len(summary), max_length)
        + 0.2 * (1.0 if is_complete_sentence(summary) else 0.0)
        + 0.3 * _coverage(summary, source)
        + 0.2 * _non_repetition(summary),
    )


def score_tags(tags_text: str, source: str, max_tags: int) -> float:
    tags = split_tags(tags_text, max_tags)
    if not tags:
        return 0.0
    count_fit = min(len(tags), max_tags) / max_tags
    folded = [tag.casefold() for tag in tags]
    nested = sum(
        1
        for index, tag in enumerate(folded)
        if any(tag != other and tag in other for other in folded[:index] + folded[index + 1 :])
    )
    diversity = 1.0 - nested / len(tags)
    source_folded = source.casefold()
    relevance = sum(1 for tag in folded if tag in source_folded) / len(tags)
    return _clamp(0.3 * count_fit + 0.3 * diversity + 0.4 * relevance)


def score_category(raw: str, category: str, categories: tuple[str, ...]) -> float:
    if not category:
        return 0.0
    if categories:
        membership = 1.0 if category in categories else 0.0
    else:
        membership = 1.0
    label = clean_label(raw)
    single_line = len([line for line in raw.strip().splitlines() if line.strip()]) == 1
    clean = 1.0 if single_line and label.casefold() == category.casefold() else 0.0
    return _clamp(0.7 * membership + 0.3 * clean)


def score_seo(seo_json: str, source: str, seo_length: int) -> float:
    metadata = parse_seo(seo_json, seo_length)
    if metadata is None:
        return 0.0
    structure = 1.0 if metadata.keywords else 0.5
    description_fit = _length_fit(len(metadata.description), seo_length)
    keyword_count_fit = 1.0 if 3 <= len(metadata.keywords) <= 10 else 0.5  # noqa: PLR2004
    if metadata.keywords:
        source_folded = source.casefold()
        relevance = sum(
            1 for keyword in metadata.keywords if keyword.casefold() in source_folded
        ) / len(metadata.keywords)
    else:
        relevance = 0.0
    keywords = 0.5 * keyword_count_fit + 0.5 * relevance
    return _clamp(0.4 * structure + 0.3 * description_fit + 0.3 * keywords)


def salient_terms(text: str, limit: int = SALIENT_TERM_COUNT) -> list[str]:
    """Most frequent content words (Latin) and character bigrams (CJK)."""

    counts: Counter[str] = Counter()
    for word in _LATIN_WORD_RE.findall(text.casefold()):
        if word not in _STOPWORDS:
            counts[word] += 1
    for run in _CJK_RUN_RE.findall(text):
        for index in range(len(run) - 1):
            counts[run[index : index + 2]] += 1
    return [term for term, _ in counts.most_common(limit)]


def _length_fit(length: int, max_length: int) -> float:
    if max_length <= 0 or length <= 0:
        return 0.0
    if length > max_length:
        return max_length / length
    half = max_length / 2
    if length >= half:
        return 1.0
    return length / half


def _coverage(summary: str, source: str) -> float:
    terms = salient_terms(source)
    if not terms:
        return 1.0
    folded = summary.casefold()
    return sum(1 for term in terms if term in folded) / len(terms)


def _non_repetition(summary: str) -> float:
    sentences = [sentence.casefold() for sentence in split_sentences(summary)]
    if not sentences:
        return 0.0
    return len(set(sentences)) / len(sentences)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
