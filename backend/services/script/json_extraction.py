"""Defensive JSON extraction for untrusted generative-model output.

Each strategy takes raw text and returns a ``ParseResult``; strategies are
tried in order and the first success wins. The repair round-trip is just
one more strategy appended to the list by the caller.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

logger = logging.getLogger("scenecast.script.json_extraction")

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


@dataclass(frozen=True)
class ParseResult:
    """Outcome of one parse attempt: a value with its strategy, or an error."""
    value: Any = None
    strategy: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.strategy is not None

    @classmethod
    def success(cls, value: Any, strategy: str) -> "ParseResult":
        return cls(value=value, strategy=strategy)

    @classmethod
    def failure(cls, error: str) -> "ParseResult":
        return cls(error=error)


ParseStrategy = Callable[[str], ParseResult]


def _loads(text: str, strategy: str) -> ParseResult:
    try:
        return ParseResult.success(json.loads(text), strategy)
    except ValueError as exc:
        return ParseResult.failure(f"{strategy}: {exc}")


def parse_direct(text: str) -> ParseResult:
    """The whole response is a JSON document."""
    return _loads(text.strip(), "direct")


def parse_brace_span(text: str) -> ParseResult:
    """JSON between the first ``{`` and the last ``}``."""
    first, last = text.find("{"), text.rfind("}")
    if first == -1 or last <= first:
        return ParseResult.failure("brace_span: no object delimiters")
    return _loads(text[first:last + 1], "brace_span")


def parse_fenced(text: str) -> ParseResult:
    """JSON inside a markdown code fence."""
    match = _FENCE_RE.search(text)
    if not match or not match.group(1).strip():
        return ParseResult.failure("fenced: no code fence")
    return _loads(match.group(1).strip(), "fenced")


EXTRACTION_STRATEGIES: Sequence[ParseStrategy] = (parse_direct, parse_brace_span, parse_fenced)


def extract_json(text: str, strategies: Sequence[ParseStrategy] = EXTRACTION_STRATEGIES) -> ParseResult:
    """Run ``strategies`` in order; return the first success or the last failure."""
    if not text or not text.strip():
        return ParseResult.failure("empty response")
    errors = []
    for strategy in strategies:
        result = strategy(text)
        if result.ok:
            logger.debug("Parsed model output with strategy=%s", result.strategy)
            return result
        errors.append(result.error)
    return ParseResult.failure("; ".join(e for e in errors if e))


class RepairStrategy:
    """Ask the model to fix its own malformed output, then extract once more.

    Args:
        repair: Callable sending a repair prompt and returning the raw reply.
        char_limit: Maximum characters of the broken output to send back.
    """

    name = "repair"

    def __init__(self, repair: Callable[[str], str], char_limit: int = 2000):
        self._repair = repair
        self._char_limit = char_limit

    def __call__(self, text: str) -> ParseResult:
        logger.info("JSON extraction failed, attempting repair round-trip")
        try:
            fixed = self._repair(build_repair_prompt(text, self._char_limit))
        except Exception as exc:
            logger.warning("Repair call failed: %s", exc)
            return ParseResult.failure(f"repair: {exc}")
        result = extract_json(fixed or "")
        if not result.ok:
            return ParseResult.failure(f"repair: {result.error}")
        return ParseResult.success(result.value, f"repair+{result.strategy}")


def build_repair_prompt(broken: str, char_limit: int = 2000) -> str:
    return (
        "The following JSON is malformed. Fix it and return ONLY the corrected "
        f"JSON, nothing else:\n\n{broken[:char_limit]}"
    )
