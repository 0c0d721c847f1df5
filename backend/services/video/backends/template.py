"""Template backend — zero-cost storyboard generator, completes synchronously."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from backend.services.script.segmenter import SceneSegmenter
from backend.services.video.backends.base import ModelSpec, ProviderSpec, VideoProvider
from backend.services.video.cost_estimator import SUPPORTED_DURATIONS
from backend.services.video.types import JobStatus, PollResult, SubmitResult

logger = logging.getLogger("scenecast.video.template")

_MIN_FRAMES = 3
_MAX_FRAMES = 12

# Dark palette cycled across storyboard cards
_FRAME_COLORS = (
    "#1e293b", "#312e81", "#1e1b4b", "#172554", "#0c4a6e", "#134e4a",
    "#3f3f46", "#581c87", "#7c2d12", "#991b1b", "#065f46", "#713f12",
)

_SPEC = ProviderSpec(
    name="template",
    display_name="Template (No Cost)",
    category="storyboard",
    supported_aspect_ratios=("16:9", "9:16", "1:1"),
    max_prompt_length=10_000,
    models=(ModelSpec("storyboard", SUPPORTED_DURATIONS, 0.0),),
    default_model="storyboard",
)


class TemplateBackend(VideoProvider):
    """Storyboard fallback, always available.

    Best for: environments with no paid credential; keeps the render flow
    exercisable end to end.
    Cost: free. Output: a frame list in ``SubmitResult.metadata["frames"]``,
    not a real video.
    """

    def __init__(self):
        self._segmenter = SceneSegmenter(min_fragments=_MIN_FRAMES, max_fragments=_MAX_FRAMES)

    def name(self) -> str:
        return "template"

    def spec(self) -> ProviderSpec:
        return _SPEC

    def is_available(self) -> bool:
        return True

    def storyboard(self, prompt: str) -> List[Dict[str, Any]]:
        """Break ``prompt`` into storyboard frames."""
        return [
            {
                "scene_number":     frag.index,
                "text":             frag.text,
                "direction":        frag.direction or f"Scene {frag.index}",
                "background_color": _FRAME_COLORS[(frag.index - 1) % len(_FRAME_COLORS)],
            }
            for frag in self._segmenter.segment(prompt)
        ]

    def submit(
        self,
        prompt: str,
        duration: int,
        aspect_ratio: str,
        credential: Optional[str] = None,
        model: Optional[str] = None,
    ) -> SubmitResult:
        job_id = f"template-{uuid.uuid4().hex[:12]}"
        frames = self.storyboard(self.truncate_prompt(prompt))
        logger.info(
            "Template storyboard %s: %d frames, %ds @ %s", job_id, len(frames), duration, aspect_ratio,
        )
        return SubmitResult(
            job_id=job_id,
            status=JobStatus.COMPLETED,
            metadata={"frames": frames},
        )

    def poll(self, job_id: str, credential: Optional[str] = None) -> PollResult:
        return PollResult(status=JobStatus.COMPLETED, progress=100)
