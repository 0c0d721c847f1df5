"""HeyGen backend — talking-head avatar videos driven by narration text."""
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
from backend.services.video.cost_estimator import SUPPORTED_DURATIONS
from backend.services.video.types import JobStatus, PollResult, SubmitResult

logger = logging.getLogger("scenecast.video.heygen")

DEFAULT_API_BASE = "https://api.heygen.com"
_ENV_KEY = "HEYGEN_API_KEY"

# ~0.5 credits per 30 s at $0.99/credit
_COST_PER_SECOND = 0.017

_DIMENSIONS: Dict[str, Dict[str, int]] = {
    "16:9": {"width": 1920, "height": 1080},
    "9:16": {"width": 720, "height": 1280},
    "1:1":  {"width": 1080, "height": 1080},
}

DEFAULT_AVATAR_ID = "Daisy-inskirt-20220818"
DEFAULT_VOICE_ID = "en-US-JennyNeural"

_SPEC = ProviderSpec(
    name="heygen",
    display_name="HeyGen (Avatar)",
    category="avatar",
    supported_aspect_ratios=tuple(_DIMENSIONS),
    max_prompt_length=5000,
    models=(ModelSpec("avatar", SUPPORTED_DURATIONS, _COST_PER_SECOND),),
    default_model="avatar",
    env_key=_ENV_KEY,
)


class HeyGenBackend(VideoProvider):
    """HeyGen avatar backend.

    Best for: dialogue and direct-to-camera narration.
    Cost: ~$0.017/s.
    Requires: HEYGEN_API_KEY (or an explicit credential).
    The prompt is spoken verbatim by the avatar; the rendered length follows
    the narration, so any bucket duration is accepted.
    """

    def __init__(
        self,
        api_base: Optional[str] = None,
        avatar_id: str = DEFAULT_AVATAR_ID,
        voice_id: str = DEFAULT_VOICE_ID,
    ):
        self._api_base = (api_base or DEFAULT_API_BASE).rstrip("/")
        self._avatar_id = avatar_id
        self._voice_id = voice_id

    def name(self) -> str:
        return "heygen"

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
        body = {
            "video_inputs": [
                {
                    "character": {
                        "type":         "avatar",
                        "avatar_id":    self._avatar_id,
                        "avatar_style": "normal",
                    },
                    "voice": {
                        "type":       "text",
                        "input_text": self.truncate_prompt(prompt),
                        "voice_id":   self._voice_id,
                    },
                }
            ],
            "dimension": _DIMENSIONS.get(aspect_ratio, _DIMENSIONS["16:9"]),
        }
        logger.info("HeyGen submit: duration=%ds ratio=%s chars=%d", duration, aspect_ratio, len(prompt))
        resp = self._request(
            "POST", f"{self._api_base}/v2/video/generate",
            headers=self._headers(key), json=body,
        )
        self._check_submit_response(resp)
        video_id = (resp.json().get("data") or {}).get("video_id")
        if not video_id:
            raise ProviderSubmissionError("HeyGen accepted the request but returned no video id")
        return SubmitResult(job_id=video_id, status=JobStatus.QUEUED)

    def poll(self, job_id: str, credential: Optional[str]) -> PollResult:
        key = credential or os.getenv(_ENV_KEY)
        if not key:
            return PollResult(status=JobStatus.FAILED, error_message="HeyGen API key not available for polling")

        resp = self._request(
            "GET", f"{self._api_base}/v1/video_status.get",
            headers=self._headers(key), params={"video_id": job_id},
        )
        if not resp.ok:
            return self._poll_failure(resp)

        data = resp.json().get("data") or {}
        status = data.get("status")
        logger.debug("HeyGen poll %s: status=%s", job_id, status)

        if status == "completed":
            return PollResult(
                status=JobStatus.COMPLETED,
                progress=100,
                output_ref=data.get("video_url"),
                thumbnail_ref=data.get("thumbnail_url"),
            )
        if status == "failed":
            return PollResult(status=JobStatus.FAILED, error_message=str(data.get("error") or "HeyGen render failed"))
        if status == "processing":
            return PollResult(status=JobStatus.PROCESSING)
        return PollResult(status=JobStatus.QUEUED, progress=0)

    @staticmethod
    def _headers(key: str) -> Dict[str, str]:
        return {"X-Api-Key": key, "Content-Type": "application/json"}
