"""ScriptAnalyzer — deterministic, always-available script analysis.

Composes the Scene Segmenter, the Duration/Cost Estimator and the Provider
Scorer. Scenes are placed in order against a running budget ledger, so
later scenes see what earlier scenes spent (first-come allocation).
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from backend.services.script.segmenter import SceneSegmenter, word_count
from backend.services.script.types import EXCERPT_MAX_CHARS, Fragment, Scene, ScriptAnalysis
from backend.services.video.backends.registry import FALLBACK_PROVIDER, ProviderRegistry
from backend.services.video.budget import BudgetLedger
from backend.services.video.cost_estimator import (
    MAX_DURATION_SEC,
    WORDS_PER_SECOND,
    estimate_duration,
)
from backend.services.video.model_router import Candidate, ModelRouter

logger = logging.getLogger("scenecast.script.analyzer")

_BUDGET_FALLBACK_REASON = "Budget exhausted, free storyboard preview instead"


def make_excerpt(text: str, limit: int = EXCERPT_MAX_CHARS) -> str:
    """Single-line excerpt of at most ``limit`` characters."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3].rstrip() + "..."


def build_warnings(
    scenes: List[Scene],
    total_words: int,
    platform: str,
    budget_fallbacks: int = 0,
    dropped_fragments: int = 0,
    dropped_words: int = 0,
) -> List[str]:
    """User-facing advisories for an analysed script."""
    warnings: List[str] = []
    total_duration = sum(s.duration for s in scenes)
    estimated_runtime = math.ceil(total_words / WORDS_PER_SECOND) if total_words else 0

    if len(scenes) == 1 and estimated_runtime > MAX_DURATION_SEC:
        warnings.append(
            f"Your script runs ~{estimated_runtime}s but max single render is "
            f"{MAX_DURATION_SEC}s. I recommend splitting into "
            f"{math.ceil(estimated_runtime / 12)} scenes."
        )
    if dropped_fragments:
        warnings.append(
            f"Only the first {len(scenes)} scenes were planned; the last {dropped_fragments} "
            f"section(s) ({dropped_words} words) were left out. Shorten the script or split it "
            f"into several videos."
        )
    if budget_fallbacks:
        warnings.append(
            f"{budget_fallbacks} scene(s) fell back to the free storyboard "
            f"because the remaining budget ran out."
        )
    if total_words < 5 and len(scenes) == 1:
        warnings.append("Script is very short. Consider adding more detail for a richer video.")
    if (platform or "").lower() == "tiktok" and total_duration > 60:
        warnings.append("TikTok performs best with videos under 60 seconds.")
    return warnings


class ScriptAnalyzer:
    """Deterministic analysis: no external calls, never fails.

    Usage::

        analyzer = ScriptAnalyzer(ModelRouter(registry))
        analysis = analyzer.analyze(script, "tiktok", ["sora"], remaining_budget=5.0)
    """

    def __init__(self, router: ModelRouter, segmenter: Optional[SceneSegmenter] = None):
        self._router = router
        self._segmenter = segmenter or SceneSegmenter()

    @classmethod
    def from_config(cls, registry: ProviderRegistry, config) -> "ScriptAnalyzer":
        segmenter = SceneSegmenter(
            min_fragments=int(config.get("analysis.min_scenes", 1)),
            max_fragments=int(config.get("analysis.max_scenes", 12)),
            min_paragraph_words=int(config.get("analysis.min_paragraph_words", 20)),
            chunk_target_words=int(config.get("analysis.chunk_target_words", 50)),
            chunk_max_sentences=int(config.get("analysis.chunk_max_sentences", 3)),
        )
        return cls(ModelRouter.from_config(registry, config), segmenter)

    @property
    def router(self) -> ModelRouter:
        return self._router

    @property
    def segmenter(self) -> SceneSegmenter:
        return self._segmenter

    # ── public ────────────────────────────────────────────────────────────────

    def segment(self, script: str) -> List[Fragment]:
        return self._segmenter.segment(script)

    def analyze(
        self,
        script: str,
        platform: str = "general",
        connected_providers: Iterable[str] = (),
        remaining_budget: Optional[float] = None,
    ) -> ScriptAnalysis:
        """Segment, time, price and place every scene of ``script``."""
        connected = list(connected_providers)
        segmentation = self._segmenter.split(script)
        fragments = segmentation.fragments
        ledger = BudgetLedger(remaining_budget)

        scenes: List[Scene] = []
        budget_fallbacks = 0
        for fragment in fragments:
            candidate, downgraded = self._place(fragment, platform, connected, ledger)
            budget_fallbacks += downgraded
            ledger.charge(candidate.cost)
            scenes.append(self.scene_from(fragment, candidate))

        total_words = word_count(script or "")
        analysis = ScriptAnalysis(
            scenes=scenes,
            total_words=total_words,
            platform=platform,
            warnings=build_warnings(
                scenes, total_words, platform, budget_fallbacks,
                dropped_fragments=len(segmentation.dropped),
                dropped_words=segmentation.dropped_words,
            ),
        )
        logger.info(
            "Analyzed script: scenes=%d duration=%ds cost=$%.2f platform=%s",
            len(scenes), analysis.total_duration, analysis.total_cost, platform,
        )
        for warning in analysis.warnings:
            logger.info("Analysis warning: %s", warning)
        return analysis

    @staticmethod
    def scene_from(fragment: Fragment, candidate: Candidate) -> Scene:
        return Scene(
            number=fragment.index,
            label=fragment.label,
            excerpt=make_excerpt(fragment.text),
            text=fragment.text,
            duration=candidate.duration,
            has_dialogue=fragment.has_dialogue,
            has_visual_direction=fragment.has_visual_direction,
            provider=candidate.provider,
            model=candidate.model,
            aspect_ratio=candidate.aspect_ratio,
            cost=candidate.cost,
            reason=candidate.reason,
            visual_direction=fragment.direction or None,
        )

    # ── internal ──────────────────────────────────────────────────────────────

    def _place(
        self,
        fragment: Fragment,
        platform: str,
        connected: List[str],
        ledger: BudgetLedger,
    ) -> Tuple[Candidate, bool]:
        """Pick a candidate; returns (candidate, downgraded_for_budget)."""
        if fragment.placeholder:
            return self._router.fallback_candidate(estimate_duration(fragment.word_count), platform), False

        ranked = self._router.score(fragment, platform, connected, ledger.remaining)
        best = ranked[0]
        downgraded = best.provider == FALLBACK_PROVIDER and any(not c.affordable for c in ranked)
        if downgraded:
            best = replace(best, reason=_BUDGET_FALLBACK_REASON)
        return best, downgraded
