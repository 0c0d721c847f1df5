"""GenerativeAnalyzer — optional creative-director pass over a script.

Sends the script to an LLM, treats the reply as untrusted input (ordered
extraction strategies, one repair round-trip, strict schema validation),
re-prices the result against the caller's budget and cross-checks its
scene count against the deterministic baseline. Any failure returns None
so the caller keeps the deterministic analysis.
"""
from __future__ import annotations

import logging
import os
from typing import Iterable, List, Optional

from pydantic import ValidationError

from backend.services.script.analyzer import ScriptAnalyzer, build_warnings, make_excerpt
from backend.services.script.cache import AnalysisCache
from backend.services.script.json_extraction import (
    EXTRACTION_STRATEGIES,
    RepairStrategy,
    extract_json,
)
from backend.services.script.schema import MAX_SCENES, MIN_SCENES, GeneratedAnalysis
from backend.services.script.segmenter import word_count
from backend.services.script.types import Scene, ScriptAnalysis, SuggestedRewrite
from backend.services.video.backends.registry import FALLBACK_PROVIDER
from backend.services.video.budget import BudgetLedger
from backend.services.video.cost_estimator import SUPPORTED_DURATIONS, snap_duration
from backend.services.video.model_router import platform_preferences

logger = logging.getLogger("scenecast.script.generative_analyzer")

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai":    "gpt-4o",
}
_ENV_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai":    "OPENAI_API_KEY",
}

_DIVERGENCE_WARNING = (
    "The creative pass split the script differently from its structure; "
    "kept the detected scenes and attached the creative notes to them."
)


class GenerativeAnalyzer:
    """LLM-backed script analysis with deterministic fallback.

    Usage::

        gen = GenerativeAnalyzer(baseline, AnalysisCache())
        analysis = gen.enrich(script, "youtube", ["sora"], remaining_budget=10.0)
        if analysis is None:
            analysis = baseline.analyze(script, "youtube", ["sora"], 10.0)
    """

    def __init__(
        self,
        baseline: ScriptAnalyzer,
        cache: AnalysisCache,
        api_key: Optional[str] = None,
        llm_provider: str = "anthropic",
        model: Optional[str] = None,
        max_tokens: int = 2048,
        script_char_limit: int = 3000,
        repair_char_limit: int = 2000,
        divergence_threshold: int = 3,
        timeout: float = 60.0,
    ):
        if llm_provider not in DEFAULT_MODELS:
            raise ValueError(f"Unsupported LLM provider: {llm_provider!r}")
        self._baseline = baseline
        self._cache = cache
        self._api_key = api_key
        self.llm_provider = llm_provider
        self.model = model or DEFAULT_MODELS[llm_provider]
        self.max_tokens = max_tokens
        self.script_char_limit = script_char_limit
        self.repair_char_limit = repair_char_limit
        self.divergence_threshold = divergence_threshold
        self.timeout = timeout

    @classmethod
    def from_config(cls, baseline: ScriptAnalyzer, cache: AnalysisCache, config) -> "GenerativeAnalyzer":
        provider = config.get("llm.primary_provider", "anthropic")
        return cls(
            baseline,
            cache,
            llm_provider=provider,
            model=config.get(f"llm.{provider}_model"),
            max_tokens=int(config.get("llm.max_tokens", 2048)),
            script_char_limit=int(config.get("llm.script_char_limit", 3000)),
            repair_char_limit=int(config.get("llm.repair_char_limit", 2000)),
            divergence_threshold=int(config.get("generative.divergence_threshold", 3)),
            timeout=float(config.get("llm.timeout", 60)),
        )

    # ── public ────────────────────────────────────────────────────────────────

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key or os.getenv(_ENV_KEYS[self.llm_provider])

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def enrich(
        self,
        script: str,
        platform: str = "general",
        connected_providers: Iterable[str] = (),
        remaining_budget: Optional[float] = None,
    ) -> Optional[ScriptAnalysis]:
        """Return an enriched analysis, or None when enrichment is unavailable."""
        if not self.is_configured():
            logger.info("No %s credential, enrichment unavailable", self.llm_provider)
            return None

        connected = sorted(set(connected_providers))
        key = self._cache.key(script, platform, connected)
        payload = self._cache.get_or_create(
            key, lambda: self._generate(script, platform, connected, remaining_budget),
        )
        if payload is None:
            return None
        # cached payloads are unpriced; every caller is priced against its own budget
        analysis = self.post_process(payload, script, platform, connected, remaining_budget)
        return self.cross_check(analysis, script, platform, connected, remaining_budget)

    def build_prompt(
        self,
        script: str,
        platform: str,
        connected_providers: List[str],
        remaining_budget: Optional[float],
    ) -> str:
        providers = ", ".join(connected_providers) if connected_providers else "template (free only)"
        budget = "unlimited" if remaining_budget is None else f"${remaining_budget:.2f}"
        durations = ", ".join(str(d) for d in SUPPORTED_DURATIONS)
        return f"""You are a marketing video creative director. Analyze this script for {platform} video production.

CONNECTED PROVIDERS: {providers}
BUDGET REMAINING: {budget}

SCRIPT:
\"\"\"
{script[:self.script_char_limit]}
\"\"\"

Return a JSON object (no markdown, no code fences, just raw JSON) with this exact structure:
{{
  "scenes": [
    {{
      "sceneNumber": 1,
      "label": "Scene 1: Hook",
      "scriptExcerpt": "First 60 chars of scene text...",
      "estimatedDuration": 5,
      "recommendedProvider": "sora",
      "visualDirection": "Close-up product shot with dramatic lighting, slow zoom out",
      "creativeFeedback": "Strong hook: the contrast between problem and promise grabs attention.",
      "strengthRating": "strong",
      "hasDialogue": false,
      "hasBRoll": true
    }}
  ],
  "overallFeedback": "Specific, actionable assessment of the script as a whole.",
  "narrativeArc": "hook → problem → solution → proof → CTA",
  "suggestedRewrites": [
    {{
      "sceneNumber": 2,
      "original": "Our product is great",
      "rewrite": "Watch how 12,000 marketers cut their production time in half",
      "reason": "Specific numbers build credibility"
    }}
  ]
}}

RULES:
- {MIN_SCENES}-{MAX_SCENES} scenes. Combine short sections.
- estimatedDuration must be one of: {durations} seconds.
- recommendedProvider must be one of the CONNECTED PROVIDERS or "template".
- For talking-head/dialogue scenes, prefer "heygen" if connected.
- For cinematic B-roll, prefer "sora" or "runway".
- strengthRating is one of "strong", "adequate", "needs-work".
- Only suggest rewrites for "needs-work" or "adequate" scenes.
- Keep scriptExcerpt under 80 characters.
- Return ONLY the JSON object. No explanation before or after."""

    # ── pipeline ──────────────────────────────────────────────────────────────

    def _generate(
        self,
        script: str,
        platform: str,
        connected: List[str],
        remaining_budget: Optional[float],
    ) -> Optional[GeneratedAnalysis]:
        """Call the model and return its validated, unpriced payload."""
        prompt = self.build_prompt(script, platform, connected, remaining_budget)
        logger.info("Requesting generative analysis from %s (%s)", self.llm_provider, self.model)
        try:
            raw = self._call_llm(prompt)
        except Exception as exc:
            logger.warning("LLM call failed (%s), enrichment unavailable", exc)
            return None

        strategies = (*EXTRACTION_STRATEGIES, RepairStrategy(self._call_llm, self.repair_char_limit))
        parsed = extract_json(raw, strategies)
        if not parsed.ok:
            logger.warning("Could not extract JSON from model output: %s", parsed.error)
            return None

        try:
            payload = GeneratedAnalysis.model_validate(parsed.value)
        except ValidationError as exc:
            logger.warning(
                "Model output failed validation (%d errors): %s",
                exc.error_count(), "; ".join(
                    f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()[:5]
                ),
            )
            return None
        return payload

    def post_process(
        self,
        payload: GeneratedAnalysis,
        script: str,
        platform: str,
        connected: List[str],
        remaining_budget: Optional[float],
    ) -> ScriptAnalysis:
        """Snap, validate providers, re-price against a running ledger."""
        router = self._baseline.router
        registry = router.registry
        estimator = router.estimator
        _, aspect_ratio = platform_preferences(platform)
        allowed = {p for p in connected if p in registry} | {FALLBACK_PROVIDER}
        ledger = BudgetLedger(remaining_budget)

        scenes: List[Scene] = []
        budget_fallbacks = 0
        for number, item in enumerate(payload.scenes[:MAX_SCENES], 1):
            snapped = snap_duration(item.estimated_duration)
            provider = item.recommended_provider.strip().lower()
            if provider not in allowed:
                logger.debug("Scene %d: provider %r not connected, using template", number, provider)
                provider = FALLBACK_PROVIDER
            model = _pick_model(provider, snapped)
            duration = estimator.fit_duration(provider, model, snapped)
            cost = estimator.estimate_cost(provider, model, duration)
            if not ledger.can_afford(cost):
                budget_fallbacks += 1
                provider, model = FALLBACK_PROVIDER, None
                duration = estimator.fit_duration(provider, model, snapped)
                cost = 0.0
            ledger.charge(cost)

            supported = registry.get(provider).spec().supported_aspect_ratios
            scenes.append(Scene(
                number=number,
                label=item.label,
                excerpt=make_excerpt(item.script_excerpt),
                text=item.script_excerpt,
                duration=duration,
                has_dialogue=item.has_dialogue,
                has_visual_direction=item.has_b_roll,
                provider=provider,
                model=model,
                aspect_ratio=aspect_ratio if aspect_ratio in supported else supported[0],
                cost=cost,
                reason=item.creative_feedback,
                visual_direction=item.visual_direction,
                strength_rating=item.strength_rating,
                creative_feedback=item.creative_feedback,
            ))

        total_words = word_count(script)
        return ScriptAnalysis(
            scenes=scenes,
            total_words=total_words,
            platform=platform,
            warnings=build_warnings(scenes, total_words, platform, budget_fallbacks),
            overall_feedback=payload.overall_feedback,
            narrative_arc=payload.narrative_arc,
            suggested_rewrites=_rewrites(payload, len(scenes)),
            generated=True,
        )

    def cross_check(
        self,
        analysis: ScriptAnalysis,
        script: str,
        platform: str,
        connected: List[str],
        remaining_budget: Optional[float],
    ) -> ScriptAnalysis:
        """Prefer deterministic scene boundaries when the counts diverge too far."""
        expected = len(self._baseline.segment(script))
        if abs(len(analysis.scenes) - expected) <= self.divergence_threshold:
            return analysis

        logger.warning(
            "Generative scene count %d diverges from deterministic %d, keeping deterministic structure",
            len(analysis.scenes), expected,
        )
        baseline = self._baseline.analyze(script, platform, connected, remaining_budget)
        for scene, generated in zip(baseline.scenes, analysis.scenes):
            scene.visual_direction = generated.visual_direction
            scene.strength_rating = generated.strength_rating
            scene.creative_feedback = generated.creative_feedback
        baseline.overall_feedback = analysis.overall_feedback
        baseline.narrative_arc = analysis.narrative_arc
        baseline.suggested_rewrites = [
            r for r in analysis.suggested_rewrites if r.scene_number <= len(baseline.scenes)
        ]
        baseline.warnings.append(_DIVERGENCE_WARNING)
        baseline.generated = True
        return baseline

    # ── internal: LLM call ────────────────────────────────────────────────────

    def _call_llm(self, prompt: str) -> str:
        """Send one prompt, return the raw reply text. Overridable for testing."""
        if self.llm_provider == "anthropic":
            return self._call_anthropic(prompt)
        return self._call_openai(prompt)

    def _call_anthropic(self, prompt: str) -> str:
        import anthropic
        client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout)
        message = client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )

    def _call_openai(self, prompt: str) -> str:
        import openai
        client = openai.OpenAI(api_key=self.api_key, timeout=self.timeout)
        resp = client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
        )
        return resp.choices[0].message.content or ""


def _pick_model(provider: str, duration: int) -> Optional[str]:
    """Sora runs long shots on the pro model; other providers use their default."""
    if provider == "sora":
        return "sora-2-pro" if duration > 12 else "sora-2"
    return None


def _rewrites(payload: GeneratedAnalysis, scene_count: int) -> List[SuggestedRewrite]:
    return [
        SuggestedRewrite(
            scene_number=r.scene_number,
            original=r.original,
            rewrite=r.rewrite,
            reason=r.reason,
        )
        for r in payload.suggested_rewrites
        if r.scene_number <= scene_count
    ]
