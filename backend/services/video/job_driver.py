"""RenderJobDriver — submits a render plan and polls every scene to an end state.

Each scene runs in its own worker: submit (retrying transient failures),
then poll with bounded exponential backoff until the job is terminal, the
per-scene timeout elapses, or the caller cancels. Timeouts and
cancellation abandon polling only; the external job keeps running and the
scene is reported as "unknown", never "failed". Scenes cancelled before
they reach a vendor are reported as "cancelled".
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Optional

from backend.services.video.backends.base import (
    ProviderError,
    ProviderSubmissionError,
    TransientProviderError,
    VideoProvider,
)
from backend.services.video.backends.registry import ProviderRegistry
from backend.services.video.types import (
    JobStatus,
    PlannedScene,
    RenderJob,
    RenderPlan,
    RenderReport,
    SceneResult,
)

logger = logging.getLogger("scenecast.video.job_driver")

UpdateCallback = Callable[[RenderJob], None]


class RenderJobDriver:
    """Drives every scene of a RenderPlan through its provider.

    Usage::

        driver = RenderJobDriver(registry, credentials={"sora": key})
        report = driver.run(plan)
        report.status        # "completed" | "partial" | "failed"

    Args:
        registry: Provider lookup.
        credentials: Provider name → API key. Missing keys fall back to
            the provider's environment variable.
        poll_interval: First wait between polls, seconds.
        max_poll_interval: Upper bound for the backoff, seconds.
        backoff_factor: Interval multiplier after each poll.
        scene_timeout: Seconds after submission before polling is abandoned.
        max_retries: Transient failures tolerated per submit and per poll streak.
        retry_delay: First wait before retrying a transient submit failure.
        max_workers: Scenes driven concurrently.
        sleep: Injectable sleep for tests; by default waits on the cancel event.
        clock: Monotonic clock used for timeouts.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        credentials: Optional[Dict[str, str]] = None,
        poll_interval: float = 10.0,
        max_poll_interval: float = 30.0,
        backoff_factor: float = 1.5,
        scene_timeout: float = 900.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        max_workers: int = 4,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._registry = registry
        self._credentials = dict(credentials or {})
        self.poll_interval = poll_interval
        self.max_poll_interval = max(max_poll_interval, poll_interval)
        self.backoff_factor = max(1.0, backoff_factor)
        self.scene_timeout = scene_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_workers = max(1, max_workers)
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        registry: ProviderRegistry,
        config,
        credentials: Optional[Dict[str, str]] = None,
    ) -> "RenderJobDriver":
        return cls(
            registry,
            credentials=credentials,
            poll_interval=float(config.get("render.poll_interval_sec", 10)),
            max_poll_interval=float(config.get("render.max_poll_interval_sec", 30)),
            backoff_factor=float(config.get("render.backoff_factor", 1.5)),
            scene_timeout=float(config.get("render.scene_timeout_sec", 900)),
            max_retries=int(config.get("render.max_retries", 3)),
            retry_delay=float(config.get("render.retry_delay_sec", 2)),
            max_workers=int(config.get("render.max_workers", 4)),
        )

    # ── public ────────────────────────────────────────────────────────────────

    def run(
        self,
        plan: RenderPlan,
        cancel_event: Optional[threading.Event] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> RenderReport:
        """Drive all scenes and return the aggregate report.

        A failing scene never aborts its siblings. Every provider referenced
        by the plan is resolved up front, so an unregistered name raises
        ``UnknownProviderError`` before anything is submitted.
        """
        cancel = cancel_event or threading.Event()
        providers = {s.number: self._registry.get(s.provider) for s in plan.scenes}
        for scene in plan.scenes:
            plan.jobs[scene.number] = RenderJob(scene_number=scene.number, provider=scene.provider)

        logger.info(
            "Render run started: scenes=%d cost=$%.2f", len(plan.scenes), plan.total_cost,
        )
        with ThreadPoolExecutor(max_workers=min(self.max_workers, max(1, len(plan.scenes)))) as pool:
            futures = [
                pool.submit(
                    self._drive_scene, scene, providers[scene.number],
                    plan.jobs[scene.number], cancel, on_update,
                )
                for scene in plan.scenes
            ]
            for future in futures:
                future.result()

        report = RenderReport(
            results=[SceneResult.from_job(plan.jobs[s.number]) for s in plan.scenes],
            requires_stitching=plan.requires_stitching,
        )
        logger.info(
            "Render run finished: status=%s completed=%d failed=%d unknown=%d cancelled=%d",
            report.status, len(report.completed), len(report.failed), len(report.unknown),
            len(report.cancelled),
        )
        return report

    # ── per-scene state machine ───────────────────────────────────────────────

    def _drive_scene(
        self,
        scene: PlannedScene,
        provider: VideoProvider,
        job: RenderJob,
        cancel: threading.Event,
        on_update: Optional[UpdateCallback],
    ) -> None:
        try:
            if self._submit(scene, provider, job, cancel, on_update):
                self._poll_until_done(scene, provider, job, cancel, on_update)
        except Exception as exc:
            logger.exception("Scene %d: unexpected driver error", scene.number)
            job.advance(JobStatus.FAILED, error_message=f"Unexpected error: {exc}")
            self._notify(on_update, job)

    def _submit(
        self,
        scene: PlannedScene,
        provider: VideoProvider,
        job: RenderJob,
        cancel: threading.Event,
        on_update: Optional[UpdateCallback],
    ) -> bool:
        """Submit with retries. Returns True when the job needs polling."""
        credential = self._credentials.get(scene.provider)
        attempt = 0
        while True:
            if cancel.is_set():
                self._abandon(job, "cancelled before submission", on_update)
                return False
            try:
                result = provider.submit(
                    scene.prompt, scene.duration, scene.aspect_ratio, credential, scene.model,
                )
                break
            except TransientProviderError as exc:
                attempt += 1
                if attempt > self.max_retries:
                    logger.error("Scene %d: submit failed after %d attempts: %s", scene.number, attempt, exc)
                    job.advance(JobStatus.FAILED, error_message=str(exc))
                    self._notify(on_update, job)
                    return False
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Scene %d: transient submit error (%s), retry %d/%d in %.1fs",
                    scene.number, exc, attempt, self.max_retries, delay,
                )
                self._wait(delay, cancel)
            except ProviderSubmissionError as exc:
                logger.error("Scene %d: %s rejected submission: %s", scene.number, scene.provider, exc)
                job.advance(JobStatus.FAILED, error_message=str(exc))
                self._notify(on_update, job)
                return False
            except ProviderError as exc:
                logger.error("Scene %d: provider error on submit: %s", scene.number, exc)
                job.advance(JobStatus.FAILED, error_message=str(exc))
                self._notify(on_update, job)
                return False

        job.job_id = result.job_id
        job.metadata.update(result.metadata)
        job.advance(result.status, output_ref=result.output_ref)
        logger.info(
            "Scene %d submitted to %s: job=%s status=%s",
            scene.number, scene.provider, job.job_id, job.status.value,
        )
        self._notify(on_update, job)
        return not job.is_terminal

    def _poll_until_done(
        self,
        scene: PlannedScene,
        provider: VideoProvider,
        job: RenderJob,
        cancel: threading.Event,
        on_update: Optional[UpdateCallback],
    ) -> None:
        credential = self._credentials.get(scene.provider)
        deadline = self._clock() + self.scene_timeout
        interval = self.poll_interval
        transient_streak = 0

        while not job.is_terminal:
            remaining = deadline - self._clock()
            if remaining <= 0:
                self._abandon(job, f"timed out after {self.scene_timeout:.0f}s", on_update)
                return
            if self._wait(min(interval, remaining), cancel):
                self._abandon(job, "polling cancelled", on_update)
                return

            try:
                result = provider.poll(job.job_id, credential)
            except TransientProviderError as exc:
                transient_streak += 1
                if transient_streak > self.max_retries:
                    self._abandon(job, f"poll retries exhausted: {exc}", on_update)
                    return
                logger.warning(
                    "Scene %d: transient poll error (%s), retry %d/%d",
                    scene.number, exc, transient_streak, self.max_retries,
                )
                interval = min(interval * self.backoff_factor, self.max_poll_interval)
                continue

            transient_streak = 0
            logger.debug(
                "Scene %d poll: status=%s progress=%s", scene.number, result.status.value, result.progress,
            )
            if job.apply_poll(result):
                self._notify(on_update, job)
            interval = min(interval * self.backoff_factor, self.max_poll_interval)

        if job.status == JobStatus.COMPLETED:
            logger.info("Scene %d completed: %s", scene.number, job.output_ref)
        else:
            logger.warning("Scene %d failed: %s", scene.number, job.error_message)

    # ── helpers ───────────────────────────────────────────────────────────────

    def _wait(self, seconds: float, cancel: threading.Event) -> bool:
        """Sleep ``seconds``; return True if cancellation was requested."""
        if self._sleep is not None:
            self._sleep(seconds)
            return cancel.is_set()
        return cancel.wait(seconds)

    def _abandon(self, job: RenderJob, reason: str, on_update: Optional[UpdateCallback]) -> None:
        job.abandoned = True
        job.metadata["abandon_reason"] = reason
        if job.submitted:
            logger.warning(
                "Scene %d: %s, external job %s left running (status unknown)",
                job.scene_number, reason, job.job_id,
            )
        else:
            logger.info("Scene %d: %s, nothing was sent to %s", job.scene_number, reason, job.provider)
        self._notify(on_update, job)

    @staticmethod
    def _notify(on_update: Optional[UpdateCallback], job: RenderJob) -> None:
        if on_update is None:
            return
        try:
            on_update(job)
        except Exception:
            logger.exception("Render update callback failed for scene %d", job.scene_number)
