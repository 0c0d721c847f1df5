"""Strict pydantic schema for the generative analysis payload."""
from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

MIN_SCENES = 1
MAX_SCENES = 8


class _Strict(BaseModel):
    model_config = ConfigDict(strict=True, populate_by_name=True)


class GeneratedScene(_Strict):
    scene_number: int = Field(alias="sceneNumber", ge=1, le=MAX_SCENES)
    label: str = Field(min_length=1, max_length=100)
    script_excerpt: str = Field(alias="scriptExcerpt", min_length=1, max_length=300)
    estimated_duration: float = Field(alias="estimatedDuration", ge=3, le=25)
    recommended_provider: str = Field(alias="recommendedProvider", min_length=1)
    visual_direction: str = Field(alias="visualDirection", min_length=1, max_length=500)
    creative_feedback: str = Field(alias="creativeFeedback", min_length=1, max_length=500)
    strength_rating: Literal["strong", "adequate", "needs-work"] = Field(alias="strengthRating")
    has_dialogue: bool = Field(alias="hasDialogue")
    has_b_roll: bool = Field(alias="hasBRoll")


class GeneratedRewrite(_Strict):
    scene_number: int = Field(alias="sceneNumber", ge=1)
    original: str = Field(min_length=1)
    rewrite: str = Field(min_length=1)
    reason: str = Field(min_length=1)


class GeneratedAnalysis(_Strict):
    """Top-level model reply. Any violation fails the whole payload."""
    scenes: List[GeneratedScene] = Field(min_length=MIN_SCENES, max_length=MAX_SCENES)
    overall_feedback: str = Field(alias="overallFeedback", min_length=1, max_length=1000)
    narrative_arc: str = Field(alias="narrativeArc", min_length=1, max_length=300)
    suggested_rewrites: List[GeneratedRewrite] = Field(alias="suggestedRewrites", default_factory=list)
