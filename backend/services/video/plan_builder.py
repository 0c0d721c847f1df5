"""RenderPlanBuilder — commits an analysis to a concrete, provider-bound plan."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from backend.services.script.types import Scene, ScriptAnalysis
from backend.services.video.backends.registry import ProviderRegistry
from backend.services.video.cost_estimator import CostEstimator
from backend.services.video.types import PlannedScene, RenderPlan

logger = logging.getLogger("scenecast.video.plan_builder")


@dataclass(frozen=True)
class SceneEdit:
    """User override for one scene; ``None`` fields keep the analysed value."""
    scene_number: int
    provider: Optional[str] = None
    model: Optional[str] = None
    duration: Optional[int] = None
    aspect_ratio: Optional[str] = None
    prompt: Optional[str] = None


class RenderPlanBuilder:
    """Pure ScriptAnalysis (+ edits) → RenderPlan transformation.

    For every scene the builder:
    1. Applies the user's edit, if any
    2. Clamps the duration into the provider/model's supported set
    3. Falls back to the provider's first aspect ratio if the requested one
       is unsupported
    4. Recomputes the cost from the provider's rate

    Usage::

        builder = RenderPlanBuilder(registry)
        plan = builder.build(analysis, [SceneEdit(2, provider="template")])
    """

    def __init__(self, registry: ProviderRegistry):
        self._registry = registry
        self._estimator = CostEstimator(registry)

    def build(
        self,
        analysis: ScriptAnalysis,
        edits: Optional[Iterable[SceneEdit]] = None,
    ) -> RenderPlan:
        """Build the plan.

        Raises:
            ValueError: An edit targets a scene number not in the analysis,
                or a model the provider does not offer.
            UnknownProviderError: A scene or edit names an unregistered provider.
        """
        by_number = self._index_edits(analysis, edits or ())
        planned: List[PlannedScene] = [
            self._plan_scene(scene, by_number.get(scene.number))
            for scene in analysis.scenes
        ]
        plan = RenderPlan(scenes=tuple(planned), platform=analysis.platform)
        logger.info(
            "Built render plan: scenes=%d duration=%ds cost=$%.2f stitching=%s",
            len(plan.scenes), plan.total_duration, plan.total_cost, plan.requires_stitching,
        )
        return plan

    # ── internal ──────────────────────────────────────────────────────────────

    @staticmethod
    def _index_edits(analysis: ScriptAnalysis, edits: Iterable[SceneEdit]) -> Dict[int, SceneEdit]:
        numbers = {s.number for s in analysis.scenes}
        by_number: Dict[int, SceneEdit] = {}
        for edit in edits:
            if edit.scene_number not in numbers:
                raise ValueError(
                    f"Edit targets scene {edit.scene_number}, analysis has scenes {sorted(numbers)}"
                )
            by_number[edit.scene_number] = edit
        return by_number

    def _plan_scene(self, scene: Scene, edit: Optional[SceneEdit]) -> PlannedScene:
        provider_name = scene.provider
        model = scene.model
        duration = scene.duration
        aspect_ratio = scene.aspect_ratio
        prompt: Optional[str] = None

        if edit is not None:
            if edit.provider is not None and edit.provider != provider_name:
                provider_name = edit.provider
                model = None                # models are provider-specific
            if edit.model is not None:
                model = edit.model
            if edit.duration is not None:
                duration = edit.duration
            if edit.aspect_ratio is not None:
                aspect_ratio = edit.aspect_ratio
            if edit.prompt is not None:
                prompt = edit.prompt

        spec = self._registry.get(provider_name).spec()
        model_spec = spec.model(model)
        if prompt is None:
            prompt = compose_prompt(scene, spec.category)
        duration = self._estimator.fit_duration(provider_name, model, duration)
        if aspect_ratio not in spec.supported_aspect_ratios:
            logger.debug(
                "Scene %d: %s does not support %s, using %s",
                scene.number, provider_name, aspect_ratio, spec.supported_aspect_ratios[0],
            )
            aspect_ratio = spec.supported_aspect_ratios[0]

        return PlannedScene(
            number=scene.number,
            label=scene.label,
            provider=provider_name,
            model=model_spec.model_id if len(spec.models) > 1 else model,
            duration=duration,
            aspect_ratio=aspect_ratio,
            prompt=prompt,
            cost=self._estimator.estimate_cost(provider_name, model, duration),
        )


def compose_prompt(scene: Scene, category: str) -> str:
    """Render prompt for a scene.

    Cinematic providers get the visual direction ahead of the script text;
    avatar and storyboard providers read the text as-is.
    """
    if scene.visual_direction and category == "cinematic":
        return f"{scene.visual_direction}\n\n{scene.text}"
    return scene.text
