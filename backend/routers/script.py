"""Script router — analysis and render planning."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from backend.services.script.analyzer import ScriptAnalyzer
from backend.services.script.cache import AnalysisCache
from backend.services.script.generative_analyzer import GenerativeAnalyzer
from backend.services.script.types import ScriptAnalysis
from backend.services.shared.config import get_config
from backend.services.video.backends.base import UnknownProviderError
from backend.services.video.backends.registry import ProviderRegistry, default_registry
from backend.services.video.plan_builder import RenderPlanBuilder, SceneEdit

logger = logging.getLogger("scenecast.routers.script")
router = APIRouter()

_registry: Optional[ProviderRegistry] = None
_analyzer: Optional[ScriptAnalyzer] = None
_generative: Optional[GenerativeAnalyzer] = None


def _get_registry() -> ProviderRegistry:
    global _registry
    if _registry is None:
        _registry = default_registry(get_config().get("providers"))
    return _registry


def _get_analyzer() -> ScriptAnalyzer:
    global _analyzer
    if _analyzer is None:
        _analyzer = ScriptAnalyzer.from_config(_get_registry(), get_config())
    return _analyzer


def _get_generative() -> GenerativeAnalyzer:
    global _generative
    if _generative is None:
        config = get_config()
        cache = AnalysisCache(
            ttl_sec=float(config.get("cache.ttl_sec", 600)),
            max_entries=int(config.get("cache.max_entries", 50)),
        )
        _generative = GenerativeAnalyzer.from_config(_get_analyzer(), cache, config)
    return _generative


# ── Request models ────────────────────────────────────────────────────────────


class AnalyzeRequest(BaseModel):
    script: str
    platform: str = "general"
    connected_providers: List[str] = []
    remaining_budget: Optional[float] = Field(default=None, ge=0)
    use_generative: bool = True


class SceneEditModel(BaseModel):
    scene_number: int = Field(ge=1)
    provider: Optional[str] = None
    model: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=1)
    aspect_ratio: Optional[str] = None
    prompt: Optional[str] = None


class PlanRequest(AnalyzeRequest):
    edits: List[SceneEditModel] = []


# ── Helpers ───────────────────────────────────────────────────────────────────


def _analyze(request: AnalyzeRequest) -> ScriptAnalysis:
    """Generative analysis when requested and available, else deterministic."""
    args = (
        request.script,
        request.platform,
        request.connected_providers,
        request.remaining_budget,
    )
    if request.use_generative:
        enriched = _get_generative().enrich(*args)
        if enriched is not None:
            return enriched
        logger.info("Using deterministic analysis")
    return _get_analyzer().analyze(*args)


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.post("/analyze")
def analyze_script(request: AnalyzeRequest) -> Dict[str, Any]:
    """Break a script into priced, provider-assigned scenes."""
    return _analyze(request).to_dict()


@router.post("/plan")
def plan_render(request: PlanRequest) -> Dict[str, Any]:
    """Analyze a script and commit it to a render plan, applying scene edits."""
    analysis = _analyze(request)
    edits = [SceneEdit(**e.model_dump()) for e in request.edits]
    try:
        plan = RenderPlanBuilder(_get_registry()).build(analysis, edits)
    except UnknownProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc.args[0]) if exc.args else "Unknown provider",
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    return {
        "analysis": analysis.to_dict(),
        "plan":     plan.to_dict(),
    }
