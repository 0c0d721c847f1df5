"""ModelRouter — scores and picks a rendering provider for each scene fragment."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from backend.services.script.types import Fragment
from backend.services.video.backends.registry import FALLBACK_PROVIDER, ProviderRegistry
from backend.services.video.cost_estimator import CostEstimator, estimate_duration

logger = logging.getLogger("scenecast.video.model_router")

DEFAULT_BUDGET_PENALTY = 1000

# platform → (quality tier, default aspect ratio)
PLATFORM_PREFERENCES: Dict[str, Tuple[str, str]] = {
    "youtube":   ("high", "16:9"),
    "linkedin":  ("high", "16:9"),
    "tiktok":    ("standard", "9:16"),
    "instagram": ("standard", "9:16"),
    "general":   ("standard", "16:9"),
}

# Keyed "provider" or "provider:model"; dict order is the declaration order.
DEFAULT_RULES: Dict[str, Dict[str, Any]] = {
    "heygen": {
        "base": 80,
        "requires_dialogue": True,
        "reason": "AI avatar for dialogue, builds authenticity",
    },
    "sora:sora-2-pro": {
        "base": 75,
        "visual": 90,
        "min_duration": 10,
        "high_quality_only": True,
        "reason": "Cinematic quality with synced audio, ideal for long scenes",
    },
    "sora:sora-2": {
        "base": 65,
        "visual": 70,
        "reason": "AI video with synced audio by OpenAI",
    },
    "runway:gen4.5": {
        "base": 55,
        "visual": 75,
        "reason": "High visual fidelity from Runway Gen-4.5",
    },
    "template": {
        "base": 10,
        "reason": "Free storyboard preview, no API key needed",
    },
}


def platform_preferences(platform: str) -> Tuple[str, str]:
    """(quality tier, aspect ratio) for ``platform``; unknown platforms get "general"."""
    return PLATFORM_PREFERENCES.get((platform or "").lower(), PLATFORM_PREFERENCES["general"])


@dataclass(frozen=True)
class Candidate:
    """One scored provider option for a fragment."""
    provider: str
    model: Optional[str]
    score: int
    duration: int
    cost: float
    aspect_ratio: str
    reason: str
    affordable: bool = True


class ModelRouter:
    """Multi-criteria provider scorer.

    Selection logic:
    1. Build candidates in rule declaration order for connected providers,
       plus the always-available template fallback
    2. Drop candidates whose gates fail (dialogue-only, minimum duration,
       high-quality platforms only)
    3. Score: ``visual`` weight when the fragment carries visual direction,
       else ``base``
    4. Subtract ``budget_penalty`` from candidates costing more than the
       remaining budget
    5. Stable sort by descending score; ties keep declaration order

    Scoring never mutates anything. Budget decrements happen in the caller.

    Usage::

        router = ModelRouter(registry)
        best = router.select(fragment, "youtube", ["sora"], remaining_budget=5.0)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        rules: Optional[Mapping[str, Mapping[str, Any]]] = None,
        budget_penalty: int = DEFAULT_BUDGET_PENALTY,
    ):
        self._registry = registry
        self._estimator = CostEstimator(registry)
        self._rules = self._parse_rules(rules or DEFAULT_RULES)
        self.budget_penalty = budget_penalty

    @classmethod
    def from_config(cls, registry: ProviderRegistry, config) -> "ModelRouter":
        return cls(
            registry,
            rules=config.get("scoring.rules") or DEFAULT_RULES,
            budget_penalty=int(config.get("scoring.budget_penalty", DEFAULT_BUDGET_PENALTY)),
        )

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def estimator(self) -> CostEstimator:
        return self._estimator

    # ── public ────────────────────────────────────────────────────────────────

    def score(
        self,
        fragment: Fragment,
        platform: str,
        connected_providers: Iterable[str],
        remaining_budget: Optional[float] = None,
    ) -> List[Candidate]:
        """Return all eligible candidates, best first.

        Args:
            fragment: The scene fragment to place.
            platform: Target platform ("youtube", "tiktok", ...).
            connected_providers: Providers the caller holds credentials for.
            remaining_budget: USD still available; None for unlimited.
        """
        quality, aspect_ratio = platform_preferences(platform)
        connected = set(connected_providers) | {FALLBACK_PROVIDER}
        budget = None if remaining_budget is None else max(0.0, remaining_budget)
        estimated = estimate_duration(fragment.word_count)

        candidates: List[Candidate] = []
        for provider, model, rule in self._rules:
            if provider not in connected or provider not in self._registry:
                continue
            if rule.get("requires_dialogue") and not fragment.has_dialogue:
                continue
            if "min_duration" in rule and estimated <= rule["min_duration"]:
                continue
            if rule.get("high_quality_only") and quality != "high":
                continue

            score = int(rule.get("visual", rule["base"]) if fragment.has_visual_direction else rule["base"])
            duration = self._estimator.fit_duration(provider, model, estimated)
            cost = self._estimator.estimate_cost(provider, model, duration)
            affordable = budget is None or cost <= budget
            if not affordable:
                score -= self.budget_penalty
            candidates.append(Candidate(
                provider=provider,
                model=model,
                score=score,
                duration=duration,
                cost=cost,
                aspect_ratio=self._fit_aspect_ratio(provider, aspect_ratio),
                reason=str(rule.get("reason", "")),
                affordable=affordable,
            ))

        # sorted() is stable, so equal scores keep declaration order
        return sorted(candidates, key=lambda c: -c.score)

    def select(
        self,
        fragment: Fragment,
        platform: str,
        connected_providers: Iterable[str],
        remaining_budget: Optional[float] = None,
    ) -> Candidate:
        """Return the top-ranked candidate (the template fallback at worst)."""
        ranked = self.score(fragment, platform, connected_providers, remaining_budget)
        best = ranked[0]
        logger.debug(
            "Scene %d → %s%s (score=%d, %ds, $%.2f)",
            fragment.index, best.provider, f":{best.model}" if best.model else "",
            best.score, best.duration, best.cost,
        )
        return best

    def fallback_candidate(self, duration: int, platform: str) -> Candidate:
        """Zero-cost template candidate for ``duration`` seconds."""
        _, aspect_ratio = platform_preferences(platform)
        rule = next((r for p, _, r in self._rules if p == FALLBACK_PROVIDER), {"base": 10})
        return Candidate(
            provider=FALLBACK_PROVIDER,
            model=None,
            score=int(rule.get("base", 10)),
            duration=self._estimator.fit_duration(FALLBACK_PROVIDER, None, duration),
            cost=0.0,
            aspect_ratio=self._fit_aspect_ratio(FALLBACK_PROVIDER, aspect_ratio),
            reason=str(rule.get("reason", "")),
        )

    # ── internal ──────────────────────────────────────────────────────────────

    def _fit_aspect_ratio(self, provider: str, wanted: str) -> str:
        supported = self._registry.get(provider).spec().supported_aspect_ratios
        return wanted if wanted in supported else supported[0]

    @staticmethod
    def _parse_rules(
        rules: Mapping[str, Mapping[str, Any]],
    ) -> List[Tuple[str, Optional[str], Dict[str, Any]]]:
        parsed: List[Tuple[str, Optional[str], Dict[str, Any]]] = []
        for key, rule in rules.items():
            if "base" not in rule:
                raise ValueError(f"Scoring rule '{key}' has no base score")
            provider, _, model = key.partition(":")
            merged = dict(DEFAULT_RULES.get(key, {}))
            merged.update(rule)
            parsed.append((provider, model or None, merged))
        if not any(p == FALLBACK_PROVIDER for p, _, _ in parsed):
            parsed.append((FALLBACK_PROVIDER, None, dict(DEFAULT_RULES[FALLBACK_PROVIDER])))
        return parsed
