"""Runway backend — cinematic text-to-video via the Runway developer API."""
from __future__ import annotations

import logging
import os
from typing import Dict, Optional

from backend.services.video.backends.base import (
    ModelSpec,
    ProviderSpec,
    ProviderSubmissionError,
    VideoProvider,
)
from backend.services.video.cost_estimator import clamp_to_supported
from backend.services.video.types import JobStatus, PollResult, SubmitResult

logger = logging.getLogger("scenecast.video.runway")

DEFAULT_API_BASE = "https://api.dev.runwayml.com/v1"
DEFAULT_API_VERSION = "2024-11-06"
_ENV_KEY = "RUNWAY_API_KEY"

_RATIOS: Dict[str, str] = {
    "16:9": "1280:720",
    "9:16": "720:1280",
    "1:1":  "1080:1080",
}
_DEFAULT_RATIO = "1280:720"

_SPEC = ProviderSpec(
    name="runway",
    display_name="Runway Gen-4.5 (Cinematic)",
    category="cinematic",
    supported_aspect_ratios=tuple(_RATIOS),
    max_prompt_length=1000,
    models=(ModelSpec("gen4.5", (5, 10), 0.34),),
    default_model="gen4.5",
    env_key=_ENV_KEY,
)

_QUEUED = {"PENDING", "THROTTLED"}
_FAILED = {"FAILED", "CANCELLED"}


class RunwayBackend(VideoProvider):
    """Runway text-to-video backend.

    Best for: short stylised visual shots (5 or 10 s).
    Cost: $0.34/s.
    Requires: RUNWAY_API_KEY (or an explicit credential).
    """

    def __init__(self, api_base: Optional[str] = None, api_version: Optional[str] = None):
        self._api_base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self._api_version = api_version or DEFAULT_API_VERSION

    def name(self) -> str:
        return "runway"

    def spec(self) -> ProviderSpec:
        return _SPEC

    def submit(
        self,
        prompt: str,
        duration: int,
        aspect_ratio: str,
        credential: Optional[str],
        model: Optional[str] = None,
    ) -> SubmitResult:
        key = self.require_credential(credential)
        model_spec = self.spec().model(model)
        if aspect_ratio not in _RATIOS:
            logger.warning("Unknown Runway aspect ratio %r, using %s", aspect_ratio, _DEFAULT_RATIO)
        body = {
            "model":      model_spec.model_id,
            "promptText": self.truncate_prompt(prompt),
            "ratio":      _RATIOS.get(aspect_ratio, _DEFAULT_RATIO),
            "duration":   clamp_to_supported(duration, model_spec.supported_durations),
        }
        logger.info(
            "Runway submit: model=%s ratio=%s duration=%d",
            body["model"], body["ratio"], body["duration"],
        )
        resp = self._request(
            "POST", f"{self._api_base}/text_to_video",
            headers=self._headers(key), json=body,
        )
        self._check_submit_response(resp)
        data = resp.json()
        task_id = data.get("id") or data.get("taskId")
        if not task_id:
            raise ProviderSubmissionError("Runway accepted the request but returned no task id")
        return SubmitResult(job_id=task_id, status=JobStatus.QUEUED, metadata={"model": body["model"]})

    def poll(self, job_id: str, credential: Optional[str]) -> PollResult:
        key = credential or os.getenv(_ENV_KEY)
        if not key:
            return PollResult(status=JobStatus.FAILED, error_message="Runway API key not available for polling")

        resp = self._request("GET", f"{self._api_base}/tasks/{job_id}", headers=self._headers(key))
        if not resp.ok:
            return self._poll_failure(resp)

        data = resp.json()
        status = data.get("status", "")
        logger.debug("Runway poll %s: status=%s progress=%s", job_id, status, data.get("progress"))

        if status in _QUEUED:
            return PollResult(status=JobStatus.QUEUED, progress=0)
        if status == "SUCCEEDED":
            output = data.get("output")
            return PollResult(
                status=JobStatus.COMPLETED,
                progress=100,
                output_ref=output[0] if isinstance(output, list) and output else output,
                thumbnail_ref=data.get("thumbnail"),
            )
        if status in _FAILED:
            message = data.get("error") or data.get("failure") or f"Runway task {status.lower()}"
            return PollResult(status=JobStatus.FAILED, error_message=str(message))
        return PollResult(status=JobStatus.PROCESSING, progress=_percent(data.get("progress")))

    def _headers(self, key: str) -> Dict[str, str]:
        return {
            "Authorization":    f"Bearer {key}",
            "Content-Type":     "application/json",
            "X-Runway-Version": self._api_version,
        }


def _percent(progress: Optional[float]) -> Optional[int]:
    """Runway reports progress as a 0–1 fraction."""
    if progress is None:
        return None
    return int(progress * 100) if progress <= 1 else int(progress)
