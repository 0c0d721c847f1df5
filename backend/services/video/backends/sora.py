"""OpenAI Sora backend — cinematic text-to-video via the OpenAI videos API."""
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

logger = logging.getLogger("scenecast.video.sora")

DEFAULT_API_BASE = "https://api.openai.com/v1"
_ENV_KEY = "OPENAI_API_KEY"

_SIZES: Dict[str, str] = {
    "16:9": "1280x720",
    "9:16": "720x1280",
    "1:1":  "1024x1024",
    "21:9": "1792x1024",
}
_DEFAULT_SIZE = "1280x720"

_SPEC = ProviderSpec(
    name="sora",
    display_name="OpenAI Sora 2",
    category="cinematic",
    supported_aspect_ratios=tuple(_SIZES),
    max_prompt_length=5000,
    models=(
        ModelSpec("sora-2", (4, 8, 12), 0.10),
        ModelSpec("sora-2-pro", (10, 15, 25), 0.30),
    ),
    default_model="sora-2",
    env_key=_ENV_KEY,
    requires_authenticated_download=True,
)


class SoraBackend(VideoProvider):
    """OpenAI Sora 2 backend.

    Best for: cinematic B-roll; sora-2-pro for longer, higher-fidelity shots.
    Cost: $0.10/s (sora-2) or $0.30/s (sora-2-pro).
    Requires: OPENAI_API_KEY (or an explicit credential).
    Completed videos stream from ``/videos/{id}/content`` and need the same
    bearer token, see ``download_output``.
    """

    def __init__(self, api_base: Optional[str] = None):
        self._api_base = (api_base or DEFAULT_API_BASE).rstrip("/")

    def name(self) -> str:
        return "sora"

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
        seconds = clamp_to_supported(duration, model_spec.supported_durations)
        size = _SIZES.get(aspect_ratio, _DEFAULT_SIZE)
        body = {
            "model":   model_spec.model_id,
            "prompt":  self.truncate_prompt(prompt),
            "size":    size,
            "seconds": str(seconds),
        }
        logger.info("Sora submit: model=%s size=%s seconds=%d", model_spec.model_id, size, seconds)
        resp = self._request(
            "POST", f"{self._api_base}/videos",
            headers=self._headers(key), json=body,
        )
        self._check_submit_response(resp)
        video_id = resp.json().get("id")
        if not video_id:
            raise ProviderSubmissionError("Sora accepted the request but returned no video id")
        return SubmitResult(
            job_id=video_id,
            status=JobStatus.QUEUED,
            metadata={"model": model_spec.model_id, "size": size, "seconds": str(seconds)},
        )

    def poll(self, job_id: str, credential: Optional[str]) -> PollResult:
        key = credential or os.getenv(_ENV_KEY)
        if not key:
            return PollResult(status=JobStatus.FAILED, error_message="OpenAI API key not available for polling")

        resp = self._request("GET", f"{self._api_base}/videos/{job_id}", headers=self._headers(key))
        if not resp.ok:
            return self._poll_failure(resp)

        data = resp.json()
        status = data.get("status", "")
        logger.debug("Sora poll %s: status=%s progress=%s", job_id, status, data.get("progress"))

        if status == "queued":
            return PollResult(status=JobStatus.QUEUED, progress=0)
        if status == "completed":
            return PollResult(
                status=JobStatus.COMPLETED,
                progress=100,
                output_ref=self.content_url(job_id),
                requires_authenticated_download=True,
            )
        if status == "failed":
            message = (data.get("error") or {}).get("message") or "Sora generation failed"
            return PollResult(status=JobStatus.FAILED, error_message=message)
        # "in_progress" and anything unrecognised
        return PollResult(status=JobStatus.PROCESSING, progress=data.get("progress"))

    def content_url(self, job_id: str) -> str:
        return f"{self._api_base}/videos/{job_id}/content"

    def download_output(self, job_id: str, dest_path: str, credential: Optional[str] = None) -> str:
        """Stream a completed video to ``dest_path`` using the bearer token.

        Raises:
            ProviderSubmissionError: No credential available.
            TransientProviderError: Retryable upstream failure.
            ProviderError: Any other non-2xx response.
        """
        key = self.require_credential(credential)
        resp = self._request(
            "GET", self.content_url(job_id), timeout=300.0,
            headers=self._headers(key), stream=True,
        )
        self._check_submit_response(resp)
        with open(dest_path, "wb") as fh:
            for chunk in resp.iter_content(chunk_size=1 << 16):
                if chunk:
                    fh.write(chunk)
        logger.info("Sora output %s saved to %s", job_id, dest_path)
        return dest_path

    @staticmethod
    def _headers(key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {key}", "Content-Type": "application/json"}
