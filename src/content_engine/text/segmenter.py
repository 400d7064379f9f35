"""Split oversized content into bounded, optionally overlapping segments.

All lengths are measured in characters. Segment boundaries are located as
offsets into the source so segment bodies are exact source substrings
(stripped), which keeps the original paragraph order and wording intact.

Methods:

- ``semantic``: pack whole paragraphs; oversized paragraphs fall back to
  sentences, then whitespace windows, then hard cuts.
- ``hybrid``: pack sentences, but prefer flushing at a paragraph end when one
  lies in the second half of the buffer.
- ``smart``: pack sentences regardless of paragraphs; overlap snaps to whole
  trailing sentences.
- ``default``: fixed windows cut at the last whitespace.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from content_engine.errors import ValidationError

SENTENCE_TERMINALS = ".!?…。！？"
_PARAGRAPH_BREAK_RE = re.compile(r"\n[ \t\r\f\v]*\n\s*")
_SENTENCE_END_RE = re.compile(r"[.!?…]+[\"'”’»)\]]*(?=\s)|[。！？]+[”’」』）]*")


class SegmentMethod(str, Enum):
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    SMART = "smart"
    DEFAULT = "default"


@dataclass(slots=True, frozen=True)
class SegmentationStrategy:
    """Bounds and splitting method for one segmentation call."""

    max_length: int = 3000
    min_length: int = 50
    overlap: int = 0
    method: SegmentMethod = SegmentMethod.SEMANTIC

    def __post_init__(self) -> None:
        if self.max_length <= 0:
            raise ValidationError(f"max_length must be > 0, got {self.max_length}")
        if not 0 <= self.min_length <= self.max_length:
            raise ValidationError(
                f"min_length must be within [0, {self.max_length}], got {self.min_length}",
            )
        if not 0 <= self.overlap < self.max_length:
            raise ValidationError(
                f"overlap must be within [0, {self.max_length}), got {self.overlap}",
            )
        if not isinstance(self.method, SegmentMethod):
            object.__setattr__(self, "method", SegmentMethod(self.method))


@dataclass(slots=True, frozen=True)
class Segment:
    """One chunk of a source document.

    ``overlap`` is the number of leading characters of ``text`` repeated from
    the previous segment; ``body`` is the part that belongs to this segment.
    """

    index: int
    text: str
    overlap: int = 0

    @property
    def body(self) -> str:
        return self.text[self.overlap :]

    def __len__(self) -> int:
        return len(self.text)


@dataclass(slots=True, frozen=True)
class _Span:
    start: int
    end: int
    paragraph_end: bool = False


def segment(content: str, strategy: SegmentationStrategy | None = None) -> list[Segment]:
    """Split content into segments according to the strategy."""

    strategy = strategy or SegmentationStrategy()
    if not content or not content.strip():
        return []

    stripped = content.strip()
    if len(stripped) <= strategy.max_length:
        return [Segment(index=0, text=stripped)]

    spans = _split(content, strategy)
    spans = _merge_undersized(content, spans, strategy)
    bodies = [content[span.start : span.end].strip() for span in spans]
    bodies = [body for body in bodies if body]
    return _apply_overlap(bodies, strategy)


def split_sentences(text: str) -> list[str]:
    """Split text into trimmed sentences, keeping terminal punctuation."""

    return [text[span.start : span.end].strip() for span in _sentence_spans(text, 0, len(text))]


def is_complete_sentence(text: str) -> bool:
    stripped = text.rstrip().rstrip("\"'”’»)]」』）")
    return bool(stripped) and stripped[-1] in SENTENCE_TERMINALS


def _split(text: str, strategy: SegmentationStrategy) -> list[_Span]:
    max_length = strategy.max_length
    method = strategy.method
    if method == SegmentMethod.DEFAULT:
        return _window_spans(text, 0, len(text), max_length)

    paragraphs = _paragraph_spans(text)
    if method == SegmentMethod.SEMANTIC:
        units: list[_Span] = []
        for paragraph in paragraphs:
            pieces = _fit(text, paragraph, max_length)
            units.extend(pieces[:-1])
            units.append(_Span(pieces[-1].start, pieces[-1].end, paragraph_end=True))
        return _pack(text, units, max_length)

    units = []
    for paragraph in paragraphs:
        sentences: list[_Span] = []
        for sentence in _sentence_spans(text, paragraph.start, paragraph.end):
            sentences.extend(_fit(text, sentence, max_length))
        if not sentences:
            continue
        units.extend(sentences[:-1])
        units.append(_Span(sentences[-1].start, sentences[-1].end, paragraph_end=True))

    if method == SegmentMethod.HYBRID:
        return _pack_preferring_paragraphs(text, units, max_length)
    return _pack(text, units, max_length)


def _paragraph_spans(text: str) -> list[_Span]:
    spans: list[_Span] = []
    start = 0
    for match in _PARAGRAPH_BREAK_RE.finditer(text):
        if text[start : match.start()].strip():
            spans.append(_Span(start, match.start(), paragraph_end=True))
        start = match.end()
    if text[start:].strip():
        spans.append(_Span(start, len(text), paragraph_end=True))
    return spans


def _sentence_spans(text: str, start: int, end: int) -> list[_Span]:
    spans: list[_Span] = []
    cursor = start
    for match in _SENTENCE_END_RE.finditer(text, start, end):
        if text[cursor : match.end()].strip():
            spans.append(_Span(cursor, match.end()))
        cursor = match.end()
    if text[cursor:end].strip():
        spans.append(_Span(cursor, end))
    return spans


def _window_spans(text: str, start: int, end: int, max_length: int) -> list[_Span]:
    spans: list[_Span] = []
    cursor = start
    while cursor < end:
        while cursor < end and text[cursor].isspace():
            cursor += 1
        if cursor >= end:
            break
        limit = min(cursor + max_length, end)
        if limit < end:
            cut = _last_whitespace(text, cursor, limit)
            if cut is not None and cut > cursor:
                limit = cut
        spans.append(_Span(cursor, limit))
        cursor = limit
    return spans


def _last_whitespace(text: str, start: int, end: int) -> int | None:
    for position in range(end, start, -1):
        if text[position - 1].isspace():
            return position - 1
    return None


def _fit(text: str, span: _Span, max_length: int) -> list[_Span]:
    """Break one span into pieces no longer than max_length."""

    if _length(text, span.start, span.end) <= max_length:
        return [span]
    sentences = _sentence_spans(text, span.start, span.end)
    if len(sentences) <= 1:
        return _window_spans(text, span.start, span.end, max_length)
    pieces: list[_Span] = []
    for sentence in sentences:
        if _length(text, sentence.start, sentence.end) <= max_length:
            pieces.append(sentence)
        else:
            pieces.extend(_window_spans(text, sentence.start, sentence.end, max_length))
    return _pack(text, pieces, max_length)


def _pack(text: str, units: list[_Span], max_length: int) -> list[_Span]:
    chunks: list[_Span] = []
    current: _Span | None = None
    for unit in units:
        if current is None:
            current = unit
        elif _length(text, current.start, unit.end) <= max_length:
            current = _Span(current.start, unit.end, unit.paragraph_end)
        else:
            chunks.append(current)
            current = unit
    if current is not None:
        chunks.append(current)
    return chunks


def _pack_preferring_paragraphs(text: str, units: list[_Span], max_length: int) -> list[_Span]:
    chunks: list[_Span] = []
    buffer: list[_Span] = []
    for unit in units:
        if not buffer or _length(text, buffer[0].start, unit.end) <= max_length:
            buffer.append(unit)
            continue
        split_at = _paragraph_flush_point(text, buffer, max_length)
        chunks.append(_Span(buffer[0].start, buffer[split_at].end, paragraph_end=True))
        buffer = buffer[split_at + 1 :]
        if buffer and _length(text, buffer[0].start, unit.end) > max_length:
            chunks.append(_Span(buffer[0].start, buffer[-1].end))
            buffer = []
        buffer.append(unit)
    if buffer:
        chunks.append(_Span(buffer[0].start, buffer[-1].end))
    return chunks


def _paragraph_flush_point(text: str, buffer: list[_Span], max_length: int) -> int:
    last = len(buffer) - 1
    for position in range(last - 1, -1, -1):
        unit = buffer[position]
        if unit.paragraph_end and _length(text, buffer[0].start, unit.end) >= max_length // 2:
            return position
    return last


def _merge_undersized(
    text: str,
    spans: list[_Span],
    strategy: SegmentationStrategy,
) -> list[_Span]:
    """Fold segments below min_length into a neighbour when the result still fits."""

    result: list[_Span] = []
    for span in spans:
        if result:
            previous = result[-1]
            undersized = (
                _length(text, previous.start, previous.end) < strategy.min_length
                or _length(text, span.start, span.end) < strategy.min_length
            )
            if undersized and _length(text, previous.start, span.end) <= strategy.max_length:
                result[-1] = _Span(previous.start, span.end, span.paragraph_end)
                continue
        result.append(span)
    return result


def _apply_overlap(bodies: list[str], strategy: SegmentationStrategy) -> list[Segment]:
    segments: list[Segment] = []
    for index, body in enumerate(bodies):
        prefix = ""
        if index > 0 and strategy.overlap > 0:
            prefix = _overlap_prefix(
                bodies[index - 1],
                strategy.overlap,
                sentences=strategy.method == SegmentMethod.SMART,
            )
        segments.append(Segment(index=index, text=prefix + body, overlap=len(prefix)))
    return segments


def _overlap_prefix(previous: str, overlap: int, *, sentences: bool) -> str:
    budget = overlap - 1
    if budget <= 0:
        return ""
    if sentences:
        tail = ""
        for sentence in reversed(split_sentences(previous)):
            candidate = f"{sentence} {tail}".strip() if tail else sentence
            if len(candidate) > budget:
                break
            tail = candidate
        if tail:
            return tail + " "

    tail = previous[-budget:]
    if len(previous) > budget:
        boundary = next((i for i, char in enumerate(tail) if char.isspace()), None)
        if boundary is not None and tail[boundary:].strip():
            tail = tail[boundary:]
    tail = tail.strip()
    return f"{tail} " if tail else ""


def _length(text: str, start: int, end: int) -> int:
    return len(text[start:end].strip())
