"""Render router — background render runs, status polling and cancellation."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, status
from pydantic import BaseModel, Field

from backend.services.shared.config import get_config
from backend.services.shared.run_store import RunStatus, RunStore
from backend.services.video.backends.base import UnknownProviderError
from backend.services.video.backends.registry import ProviderRegistry, default_registry
from backend.services.video.cost_estimator import CostEstimator
from backend.services.video.job_driver import RenderJobDriver
from backend.services.video.types import PlannedScene, RenderPlan

logger = logging.getLogger("scenecast.routers.render")
router = APIRouter()

# ── Paths / singletons ────────────────────────────────────────────────────────
_PROJECT_DIR = Path(__file__).parent.parent.parent
_registry: Optional[ProviderRegistry] = None
_run_store: Optional[RunStore] = None
_cancel_events: Dict[str, threading.Event] = {}


def _get_registry() -> ProviderRegistry:
    global _registry
    if _registry is None:
        _registry = default_registry(get_config().get("providers"))
    return _registry


def _get_run_store() -> RunStore:
    global _run_store
    if _run_store is None:
        db_path = get_config().get("render.runs_db", "backend/data/render_runs.db")
        path = Path(db_path)
        _run_store = RunStore(db_path=str(path if path.is_absolute() else _PROJECT_DIR / path))
    return _run_store


# ── Request models ────────────────────────────────────────────────────────────


class PlannedSceneModel(BaseModel):
    number: int = Field(ge=1)
    provider: str
    duration: int = Field(ge=1)
    aspect_ratio: str
    prompt: str = Field(min_length=1)
    model: Optional[str] = None
    label: str = ""


class RenderRequest(BaseModel):
    scenes: List[PlannedSceneModel] = Field(min_length=1)
    platform: str = "general"
    credentials: Dict[str, str] = {}


# ── Background worker ─────────────────────────────────────────────────────────


def _run_render(run_id: str, plan: RenderPlan, credentials: Dict[str, str]) -> None:
    """Background worker: drive every scene of the plan to an end state."""
    store = _get_run_store()
    cancel = _cancel_events.setdefault(run_id, threading.Event())
    try:
        store.mark_running(run_id)
        driver = RenderJobDriver.from_config(_get_registry(), get_config(), credentials)
        report = driver.run(plan, cancel, on_update=lambda job: store.update_scene(run_id, job))
        final = RunStatus.CANCELLED if cancel.is_set() else RunStatus(report.status)
        store.finish_run(run_id, final)
    except Exception as exc:
        logger.exception("Render run %s crashed", run_id)
        store.finish_run(run_id, RunStatus.FAILED, error=str(exc))
    finally:
        _cancel_events.pop(run_id, None)


def _to_plan(request: RenderRequest) -> RenderPlan:
    """Re-commit submitted scenes: duration clamped, cost recomputed."""
    registry = _get_registry()
    estimator = CostEstimator(registry)
    numbers = [s.number for s in request.scenes]
    if len(set(numbers)) != len(numbers):
        raise ValueError(f"Duplicate scene numbers in plan: {numbers}")

    scenes = []
    for s in sorted(request.scenes, key=lambda s: s.number):
        spec = registry.get(s.provider).spec()
        spec.model(s.model)
        duration = estimator.fit_duration(s.provider, s.model, s.duration)
        ratio = s.aspect_ratio if s.aspect_ratio in spec.supported_aspect_ratios else spec.supported_aspect_ratios[0]
        scenes.append(PlannedScene(
            number=s.number,
            label=s.label,
            provider=s.provider,
            model=s.model,
            duration=duration,
            aspect_ratio=ratio,
            prompt=s.prompt,
            cost=estimator.estimate_cost(s.provider, s.model, duration),
        ))
    return RenderPlan(scenes=tuple(scenes), platform=request.platform)


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def start_render(request: RenderRequest, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    """Start a background render run for a committed plan."""
    try:
        plan = _to_plan(request)
    except UnknownProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc.args[0]) if exc.args else "Unknown provider",
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))

    run_id = _get_run_store().create_run(plan)
    _cancel_events[run_id] = threading.Event()
    background_tasks.add_task(_run_render, run_id, plan, dict(request.credentials))
    return {
        "run_id":     run_id,
        "status":     RunStatus.PENDING.value,
        "total_cost": plan.total_cost,
        "scenes":     len(plan.scenes),
    }


@router.get("/{run_id}")
async def get_render(run_id: str) -> Dict[str, Any]:
    """Current run state with the latest job state of every scene.

    Run status values: ``pending`` | ``running`` | ``completed`` | ``partial``
    | ``failed`` | ``cancelled``. Scene status values: ``queued`` |
    ``processing`` | ``completed`` | ``failed`` | ``unknown`` (abandoned after
    submission) | ``cancelled`` (never submitted).
    """
    state = _get_run_store().get_run(run_id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Render run {run_id!r} not found.",
        )
    return state.to_dict()


@router.delete("/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_render(run_id: str) -> None:
    """Stop polling a run. Jobs already accepted by a provider keep running."""
    store = _get_run_store()
    state = store.get_run(run_id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Render run {run_id!r} not found.",
        )
    event = _cancel_events.get(run_id)
    if event is not None:
        event.set()
    elif state.status in (RunStatus.PENDING, RunStatus.RUNNING):
        # no live worker (e.g. after a restart)
        store.finish_run(run_id, RunStatus.CANCELLED)
