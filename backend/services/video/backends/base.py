"""Abstract VideoProvider interface — every rendering backend implements this."""
from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import requests

from backend.services.video.cost_estimator import round_currency
from backend.services.video.types import JobStatus, PollResult, SubmitResult

logger = logging.getLogger("scenecast.video.backends")


# ── errors ────────────────────────────────────────────────────────────────────


class ProviderError(RuntimeError):
    """Base class for failures reported by a rendering backend."""


class TransientProviderError(ProviderError):
    """Upstream failure not caused by the request (5xx, 429, network).

    The Render Job Driver retries these according to its retry policy.
    """


class ProviderSubmissionError(ProviderError):
    """The backend rejected a submission (bad credential, quota, bad input)."""


class UnknownProviderError(KeyError):
    """Raised when a provider name is not in the registry."""


# ── provider description ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class ModelSpec:
    """One model/quality variant offered by a provider."""
    model_id: str
    supported_durations: Tuple[int, ...]
    cost_per_second: float


@dataclass(frozen=True)
class ProviderSpec:
    """Static capabilities and pricing of one provider."""
    name: str
    display_name: str
    category: str                         # "avatar" | "cinematic" | "storyboard"
    supported_aspect_ratios: Tuple[str, ...]
    max_prompt_length: int
    models: Tuple[ModelSpec, ...]
    default_model: str
    env_key: str = ""                     # "" when no credential is needed
    requires_authenticated_download: bool = False

    @property
    def requires_credential(self) -> bool:
        return bool(self.env_key)

    def model(self, model_id: Optional[str] = None) -> ModelSpec:
        """Return the spec for ``model_id`` (default model when None).

        Raises:
            ValueError: If the provider has no such model.
        """
        wanted = model_id or self.default_model
        for m in self.models:
            if m.model_id == wanted:
                return m
        raise ValueError(
            f"Provider '{self.name}' has no model '{wanted}'. "
            f"Available: {[m.model_id for m in self.models]}"
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "name":                self.name,
            "display_name":        self.display_name,
            "category":            self.category,
            "aspect_ratios":       list(self.supported_aspect_ratios),
            "max_prompt_length":   self.max_prompt_length,
            "default_model":       self.default_model,
            "requires_credential": self.requires_credential,
            "models": [
                {
                    "id":              m.model_id,
                    "durations":       list(m.supported_durations),
                    "cost_per_second": m.cost_per_second,
                }
                for m in self.models
            ],
        }


# ── interface ─────────────────────────────────────────────────────────────────


class VideoProvider(ABC):
    """Abstract base for all rendering backends.

    Each backend wraps one vendor API (or the local storyboard generator)
    behind the same submit/poll/estimate-cost contract so the Render Job
    Driver never needs to know which vendor it is talking to.

    Backends are responsible for:
    - Declaring durations, aspect ratios, prompt limits and pricing (``spec``)
    - Truncating prompts above their limit
    - Mapping vendor statuses onto ``queued/processing/completed/failed``
    - Classifying HTTP failures as transient or terminal
    """

    @abstractmethod
    def name(self) -> str:
        """Short identifier for this backend (e.g. "sora")."""

    @abstractmethod
    def spec(self) -> ProviderSpec:
        """Static capabilities and pricing."""

    @abstractmethod
    def submit(
        self,
        prompt: str,
        duration: int,
        aspect_ratio: str,
        credential: Optional[str],
        model: Optional[str] = None,
    ) -> SubmitResult:
        """Start a render job.

        Raises:
            ProviderSubmissionError: The backend rejected the request.
            TransientProviderError: Retryable upstream failure.
        """

    @abstractmethod
    def poll(self, job_id: str, credential: Optional[str]) -> PollResult:
        """Return the current state of a previously submitted job.

        Raises:
            TransientProviderError: Retryable upstream failure.
        """

    # ── shared behaviour ──────────────────────────────────────────────────────

    def is_available(self) -> bool:
        """True when no credential is needed or its env var is set."""
        env_key = self.spec().env_key
        return not env_key or bool(os.getenv(env_key))

    def estimate_cost(self, duration: int, model: Optional[str] = None) -> float:
        """USD cost of ``duration`` seconds on ``model`` (rounded to cents)."""
        return round_currency(self.spec().model(model).cost_per_second * duration)

    def truncate_prompt(self, prompt: str) -> str:
        limit = self.spec().max_prompt_length
        if len(prompt) <= limit:
            return prompt
        logger.warning(
            "Truncating %s prompt from %d to %d chars", self.name(), len(prompt), limit,
        )
        return prompt[:limit]

    def require_credential(self, credential: Optional[str]) -> str:
        key = credential or (os.getenv(self.spec().env_key) if self.spec().env_key else None)
        if not key:
            raise ProviderSubmissionError(
                f"{self.spec().display_name} credential not configured. "
                f"Connect the provider or set {self.spec().env_key}."
            )
        return key

    # ── HTTP helpers ──────────────────────────────────────────────────────────

    def _request(self, method: str, url: str, timeout: float = 30.0, **kwargs) -> requests.Response:
        """Issue one HTTP request, turning network failures into transient errors."""
        try:
            return getattr(requests, method.lower())(url, timeout=timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientProviderError(f"{self.name()} network error: {exc}") from exc

    def _check_submit_response(self, resp: requests.Response) -> None:
        if resp.ok:
            return
        body = resp.text[:200]
        logger.error("%s submit failed: status=%d body=%s", self.name(), resp.status_code, body)
        if _is_transient(resp.status_code):
            raise TransientProviderError(f"{self.name()} submit error ({resp.status_code}): {body}")
        raise ProviderSubmissionError(f"{self.name()} submit error ({resp.status_code}): {body}")

    def _poll_failure(self, resp: requests.Response) -> PollResult:
        """Classify a non-2xx poll response (transient raises, terminal fails)."""
        body = resp.text[:200]
        logger.error("%s poll failed: status=%d body=%s", self.name(), resp.status_code, body)
        if _is_transient(resp.status_code):
            raise TransientProviderError(f"{self.name()} poll error ({resp.status_code}): {body}")
        return PollResult(
            status=JobStatus.FAILED,
            error_message=f"{self.name()} poll error ({resp.status_code}): {body}",
        )


def _is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500
