"""Shared test fixtures for SceneCast."""
import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest
import yaml

from backend.services.video.backends.base import (
    ModelSpec,
    ProviderSpec,
    VideoProvider,
)
from backend.services.video.backends.registry import ProviderRegistry, default_registry
from backend.services.video.types import JobStatus, PollResult, SubmitResult


@pytest.fixture(scope="session")
def project_root() -> Path:
    return Path(__file__).parent.parent.parent


@pytest.fixture
def tmp_dir() -> Generator[Path, None, None]:
    d = Path(tempfile.mkdtemp())
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def sample_settings(tmp_dir: Path) -> Path:
    """Write a minimal settings.yaml to a temp dir and return its path."""
    settings = {
        "logging": {"level": "DEBUG", "file": str(tmp_dir / "test.log")},
        "llm": {
            "primary_provider": "anthropic",
            "anthropic_model": "claude-sonnet-4-20250514",
            "openai_model": "gpt-4o",
            "max_tokens": 1024,
            "script_char_limit": 3000,
            "repair_char_limit": 2000,
            "timeout": 30,
        },
        "analysis": {"min_scenes": 1, "max_scenes": 12},
        "generative": {"divergence_threshold": 3},
        "cache": {"ttl_sec": 600, "max_entries": 50},
        "scoring": {
            "budget_penalty": 1000,
            "rules": {
                "sora:sora-2": {"base": 65, "visual": 70},
                "template": {"base": 10},
            },
        },
        "render": {
            "poll_interval_sec": 1,
            "max_poll_interval_sec": 2,
            "scene_timeout_sec": 60,
            "max_retries": 2,
            "runs_db": str(tmp_dir / "runs.db"),
        },
        "providers": {"sora": {"api_base": "https://sora.test/v1"}},
    }
    cfg_path = tmp_dir / "settings.yaml"
    cfg_path.write_text(yaml.dump(settings))
    return cfg_path


# ─────────────────────────────────────────────────────────────────────────────
# Provider fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def registry() -> ProviderRegistry:
    """The standard heygen / sora / runway / template registry."""
    return default_registry()


@pytest.fixture
def no_provider_env(monkeypatch):
    """Clear every provider and LLM credential from the environment."""
    for key in (
        "OPENAI_API_KEY", "RUNWAY_API_KEY", "HEYGEN_API_KEY", "ANTHROPIC_API_KEY",
    ):
        monkeypatch.delenv(key, raising=False)


class ScriptedProvider(VideoProvider):
    """In-memory provider whose submit/poll outcomes are scripted per test.

    ``submit_outcomes`` and ``poll_outcomes`` are consumed in order; an item
    that is an Exception instance is raised instead of returned. When a
    list runs dry, the last item repeats.
    """

    def __init__(
        self,
        name: str = "fake",
        submit_outcomes: Optional[List] = None,
        poll_outcomes: Optional[List] = None,
        durations=(4, 8, 12),
        cost_per_second: float = 0.10,
    ):
        self._name = name
        self._spec = ProviderSpec(
            name=name,
            display_name=name.title(),
            category="cinematic",
            supported_aspect_ratios=("16:9", "9:16"),
            max_prompt_length=500,
            models=(ModelSpec("v1", tuple(durations), cost_per_second),),
            default_model="v1",
        )
        self.submit_outcomes = list(submit_outcomes or [SubmitResult(job_id=f"{name}-job")])
        self.poll_outcomes = list(poll_outcomes or [PollResult(status=JobStatus.COMPLETED)])
        self.submit_calls: List[Dict] = []
        self.poll_calls: List[str] = []

    def name(self) -> str:
        return self._name

    def spec(self) -> ProviderSpec:
        return self._spec

    def submit(self, prompt, duration, aspect_ratio, credential, model=None):
        self.submit_calls.append({
            "prompt": prompt, "duration": duration, "aspect_ratio": aspect_ratio,
            "credential": credential, "model": model,
        })
        return self._next(self.submit_outcomes)

    def poll(self, job_id, credential):
        self.poll_calls.append(job_id)
        return self._next(self.poll_outcomes)

    @staticmethod
    def _next(outcomes: List):
        item = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider instances."""
    return ScriptedProvider


def _mock_response(status_code: int = 200, json_data=None, text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.json.return_value = json_data if json_data is not None else {}
    resp.text = text
    return resp


@pytest.fixture
def mock_response():
    """Factory for requests.Response stand-ins with ``ok``, ``status_code``, ``json()`` and ``text``."""
    return _mock_response


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI TestClient
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def api_client():
    """Session-scoped FastAPI TestClient for integration tests.

    Prefer the module-scoped ``client`` fixture in individual test
    modules; use this when a single client should persist across the
    whole test run.
    """
    from fastapi.testclient import TestClient
    from backend.main import app
    with TestClient(app) as c:
        yield c
