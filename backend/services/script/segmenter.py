"""SceneSegmenter — splits free-form script text into ordered scene fragments.

Strategies run in strict priority order and the first one that yields at
least two fragments wins:

1. Explicit scene markers ("Scene 1:", "SCENE TWO —") or timestamp ranges
   ("0:00–0:15").
2. Structured input: a JSON list of scenes or ``{"scenes": [...]}``.
3. Paragraph breaks, merging short paragraphs into the preceding one.
4. Sentence accumulation into chunks of roughly ``chunk_target_words``.

The last strategy always returns at least one fragment, so segmentation
never fails. The result is then clamped to ``[min_fragments, max_fragments]``;
fragments past the maximum are reported on the ``Segmentation`` so callers
can tell the user part of the script was left out.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from backend.services.script.types import Fragment

logger = logging.getLogger("scenecast.script.segmenter")

_NUMBER_WORDS = (
    "one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve"
)
SCENE_MARKER_RE = re.compile(
    rf"\bscene\s*(?:\d{{1,2}}|{_NUMBER_WORDS})\s*[:.\-–—]",
    re.IGNORECASE,
)
TIMESTAMP_RE = re.compile(
    r"[\[(]?\d{1,2}:\d{2}\s*[-–—]\s*\d{1,2}:\d{2}[)\]]?"
)
_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
_DIRECTION_RE = re.compile(r"^\s*\[([^\]]+)\]\s*")

_DIALOGUE_MARKERS = (
    re.compile(r"[\"“”].+[\"“”]"),
    re.compile(r"\b(says?|speaks?|asks?|tells?|explains?|narrat)", re.IGNORECASE),
    re.compile(r"\b(voiceover|v\.?o\.?|narrator|host|speaker|avatar)\b", re.IGNORECASE),
    re.compile(r"\b(hey|hello|hi|welcome)\b.*\b(i'm|we're|let me|today)\b", re.IGNORECASE),
)
_VISUAL_MARKERS = (
    re.compile(r"\b(b-?roll|footage|cinematic|aerial|drone|montage|timelapse|slow[- ]?mo)\b", re.IGNORECASE),
    re.compile(r"\b(wide shot|close[- ]?up|pan|zoom|tracking shot|establishing shot|camera)\b", re.IGNORECASE),
    re.compile(r"\b(visual|overlay|transition|cut to|fade|dissolve|show|shows|showing)\b", re.IGNORECASE),
)

_LABEL_RULES: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("CTA", re.compile(r"\b(call to action|cta|sign up|get started|visit|learn more|subscribe)\b", re.IGNORECASE)),
    ("Problem", re.compile(r"\b(problem|challenge|pain point|struggle|frustrat)", re.IGNORECASE)),
    ("Solution", re.compile(r"\b(solution|answer|fix|resolve|introduc|platform|product)", re.IGNORECASE)),
    ("Benefits", re.compile(r"\b(benefit|result|outcome|transform|roi|impact)", re.IGNORECASE)),
    ("Testimonial", re.compile(r"\b(testimonial|customer|client|review|said|says)\b", re.IGNORECASE)),
)

PLACEHOLDER_TEXT = "..."


def word_count(text: str) -> int:
    return len(text.split())


def has_dialogue(text: str) -> bool:
    return any(p.search(text) for p in _DIALOGUE_MARKERS)


def has_visual_direction(text: str) -> bool:
    return any(p.search(text) for p in _VISUAL_MARKERS)


def extract_direction(text: str) -> Tuple[str, str]:
    """Split a leading ``[bracketed cue]`` off the text.

    Returns ``(direction, clean_text)``; direction is empty when absent.
    """
    match = _DIRECTION_RE.match(text)
    if not match:
        return "", text.strip()
    return match.group(1).strip(), text[match.end():].strip()


def label_fragment(index: int, text: str) -> str:
    """Name a fragment by its narrative role (Hook, Problem, CTA, ...)."""
    prefix = f"Scene {index}"
    if index == 1 and word_count(text) < 30:
        return f"{prefix}: Hook"
    for name, pattern in _LABEL_RULES:
        if pattern.search(text):
            return f"{prefix}: {name}"
    return prefix


@dataclass
class Segmentation:
    """Outcome of one segmentation pass."""
    fragments: List[Fragment]
    strategy: str
    dropped: List[Fragment] = field(default_factory=list)

    @property
    def dropped_words(self) -> int:
        return sum(f.word_count for f in self.dropped)


class SceneSegmenter:
    """Deterministic script → fragment splitter.

    Usage::

        seg = SceneSegmenter(min_fragments=1, max_fragments=12)
        fragments = seg.segment("Scene 1: Hook. Scene 2: Demo.")
    """

    def __init__(
        self,
        min_fragments: int = 1,
        max_fragments: int = 12,
        min_paragraph_words: int = 20,
        chunk_target_words: int = 50,
        chunk_max_sentences: int = 3,
    ):
        if min_fragments < 1 or max_fragments < min_fragments:
            raise ValueError(
                f"Invalid fragment window [{min_fragments}, {max_fragments}]"
            )
        self.min_fragments = min_fragments
        self.max_fragments = max_fragments
        self.min_paragraph_words = min_paragraph_words
        self.chunk_target_words = chunk_target_words
        self.chunk_max_sentences = chunk_max_sentences

    # ── public ────────────────────────────────────────────────────────────────

    def segment(self, text: str) -> List[Fragment]:
        """Split ``text`` into fragments clamped to the configured window."""
        return self.split(text).fragments

    def split(self, text: str) -> Segmentation:
        """Like ``segment``, but also reports fragments cut by the maximum."""
        trimmed = (text or "").strip()
        parts: List[Tuple[str, Optional[str]]] = []
        strategy = "empty"

        if trimmed:
            for strategy, splitter in (
                ("markers", self._split_markers),
                ("structured", self._split_structured),
                ("paragraphs", self._split_paragraphs),
            ):
                parts = splitter(trimmed)
                if len(parts) >= 2:
                    break
            else:
                strategy = "sentences"
                parts = self._split_sentences(trimmed)

        fragments = [self._build_fragment(i, body, label) for i, (body, label) in enumerate(parts, 1)]
        clamped = self._clamp(fragments)
        dropped = fragments[self.max_fragments:]
        logger.debug(
            "Segmented script: strategy=%s raw=%d final=%d",
            strategy, len(fragments), len(clamped),
        )
        if dropped:
            logger.warning(
                "Script produced %d fragments, keeping the first %d (%d words dropped)",
                len(fragments), self.max_fragments, sum(f.word_count for f in dropped),
            )
        return Segmentation(fragments=clamped, strategy=strategy, dropped=dropped)

    # ── strategies ────────────────────────────────────────────────────────────

    def _split_markers(self, text: str) -> List[Tuple[str, Optional[str]]]:
        for pattern in (SCENE_MARKER_RE, TIMESTAMP_RE):
            pieces = pattern.split(text)
            if len(pieces) < 3:
                continue
            # pieces[0] is any preamble before the first marker
            preamble, bodies = pieces[0].strip(), [p.strip() for p in pieces[1:]]
            if preamble:
                bodies[0] = f"{preamble} {bodies[0]}".strip()
            bodies = [b for b in bodies if b]
            if len(bodies) >= 2:
                return [(b, None) for b in bodies]
        return []

    @staticmethod
    def _split_structured(text: str) -> List[Tuple[str, Optional[str]]]:
        if text[0] not in "[{":
            return []
        try:
            data: Any = json.loads(text)
        except ValueError:
            return []
        items = data.get("scenes") if isinstance(data, dict) else data
        if not isinstance(items, list):
            return []

        parts: List[Tuple[str, Optional[str]]] = []
        for item in items:
            if isinstance(item, str):
                body, label = item, None
            elif isinstance(item, dict):
                body = next(
                    (str(item[k]) for k in ("description", "text", "prompt", "script") if item.get(k)),
                    "",
                )
                raw_label = item.get("label") or item.get("title")
                label = str(raw_label) if raw_label else None
            else:
                continue
            if body.strip():
                parts.append((body.strip(), label))
        return parts

    def _split_paragraphs(self, text: str) -> List[Tuple[str, Optional[str]]]:
        paragraphs = [p.strip() for p in _PARAGRAPH_RE.split(text) if p.strip()]
        merged: List[str] = []
        for para in paragraphs:
            if merged and word_count(para) < self.min_paragraph_words:
                merged[-1] = f"{merged[-1]}\n\n{para}"
            else:
                merged.append(para)
        return [(p, None) for p in merged]

    def _split_sentences(self, text: str) -> List[Tuple[str, Optional[str]]]:
        sentences = [s for s in _SENTENCE_RE.split(text) if s.strip()]
        chunks: List[str] = []
        current: List[str] = []
        words = 0
        for sentence in sentences:
            current.append(sentence.strip())
            words += word_count(sentence)
            if words >= self.chunk_target_words or len(current) >= self.chunk_max_sentences:
                chunks.append(" ".join(current))
                current, words = [], 0
        if current:
            chunks.append(" ".join(current))
        return [(c, None) for c in chunks] or [(text, None)]

    # ── internal ──────────────────────────────────────────────────────────────

    @staticmethod
    def _build_fragment(index: int, body: str, label: Optional[str]) -> Fragment:
        direction, clean = extract_direction(body)
        clean = clean or body.strip()
        visual = has_visual_direction(clean) or bool(direction)
        return Fragment(
            index=index,
            text=clean,
            word_count=word_count(clean),
            has_dialogue=has_dialogue(clean),
            has_visual_direction=visual,
            label=label or label_fragment(index, clean),
            direction=direction,
        )

    def _clamp(self, fragments: List[Fragment]) -> List[Fragment]:
        clamped = fragments[: self.max_fragments]
        while len(clamped) < self.min_fragments:
            n = len(clamped) + 1
            clamped.append(Fragment(
                index=n,
                text=PLACEHOLDER_TEXT,
                word_count=0,
                has_dialogue=False,
                has_visual_direction=False,
                label=f"Scene {n}",
                placeholder=True,
            ))
        return clamped
