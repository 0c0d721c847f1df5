"""Data types for the SceneCast script planning engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

EXCERPT_MAX_CHARS = 80

STRENGTH_RATINGS = ("strong", "adequate", "needs-work")


@dataclass(frozen=True)
class Fragment:
    """One contiguous segment of a script, before any provider is chosen."""
    index: int                 # 1-based position
    text: str
    word_count: int
    has_dialogue: bool
    has_visual_direction: bool
    label: str                 # "Scene 1: Hook" | "Scene 3: CTA" | "Scene 2"
    direction: str = ""        # bracketed cue, e.g. "Wide shot of city"
    placeholder: bool = False  # padding added to reach the minimum count


@dataclass
class Scene:
    """One analysed scene, bound to a recommended provider."""
    number: int
    label: str
    excerpt: str               # display only, <= EXCERPT_MAX_CHARS
    text: str                  # full fragment text, used as the render prompt
    duration: int              # seconds, inside the provider's supported set
    has_dialogue: bool
    has_visual_direction: bool
    provider: str
    aspect_ratio: str
    cost: float
    model: Optional[str] = None
    reason: str = ""
    # Generative enrichment only
    visual_direction: Optional[str] = None
    strength_rating: Optional[str] = None   # one of STRENGTH_RATINGS
    creative_feedback: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number":               self.number,
            "label":                self.label,
            "excerpt":              self.excerpt,
            "duration":             self.duration,
            "has_dialogue":         self.has_dialogue,
            "has_visual_direction": self.has_visual_direction,
            "provider":             self.provider,
            "model":                self.model,
            "aspect_ratio":         self.aspect_ratio,
            "cost":                 self.cost,
            "reason":               self.reason,
            "visual_direction":     self.visual_direction,
            "strength_rating":      self.strength_rating,
            "creative_feedback":    self.creative_feedback,
        }


@dataclass(frozen=True)
class SuggestedRewrite:
    scene_number: int
    original: str
    rewrite: str
    reason: str


@dataclass
class ScriptAnalysis:
    """Full analysis of one script.

    Aggregate duration and cost are always derived from ``scenes`` so they
    can never drift from the scenes they summarise.
    """
    scenes: List[Scene]
    total_words: int
    platform: str
    warnings: List[str] = field(default_factory=list)
    overall_feedback: Optional[str] = None
    narrative_arc: Optional[str] = None
    suggested_rewrites: List[SuggestedRewrite] = field(default_factory=list)
    generated: bool = False    # True when the generative pass produced it

    @property
    def total_duration(self) -> int:
        return sum(s.duration for s in self.scenes)

    @property
    def total_cost(self) -> float:
        return round(sum(s.cost for s in self.scenes), 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenes":           [s.to_dict() for s in self.scenes],
            "total_words":      self.total_words,
            "total_duration":   self.total_duration,
            "total_cost":       self.total_cost,
            "warnings":         list(self.warnings),
            "platform":         self.platform,
            "overall_feedback": self.overall_feedback,
            "narrative_arc":    self.narrative_arc,
            "suggested_rewrites": [
                {
                    "scene_number": r.scene_number,
                    "original":     r.original,
                    "rewrite":      r.rewrite,
                    "reason":       r.reason,
                }
                for r in self.suggested_rewrites
            ],
            "generated":        self.generated,
        }
