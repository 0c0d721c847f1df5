"""Tests for RenderJobDriver — submission, polling, timeouts and cancellation.

Providers are scripted in-memory fakes; time is a fake clock advanced by
the injected sleep, so no test actually waits.
"""
import threading

import pytest

from backend.services.video.backends.base import (
    ProviderError,
    ProviderSubmissionError,
    TransientProviderError,
    UnknownProviderError,
)
from backend.services.video.backends.registry import ProviderRegistry
from backend.services.video.backends.template import TemplateBackend
from backend.services.video.job_driver import RenderJobDriver
from backend.services.video.types import (
    JobStatus,
    PlannedScene,
    PollResult,
    RenderJob,
    RenderPlan,
    SubmitResult,
)

PROCESSING = PollResult(status=JobStatus.PROCESSING, progress=50)
COMPLETED = PollResult(status=JobStatus.COMPLETED, output_ref="https://cdn.test/out.mp4")
FAILED = PollResult(status=JobStatus.FAILED, error_message="render crashed")


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _make_scene(number: int, provider: str = "fake", duration: int = 8) -> PlannedScene:
    return PlannedScene(
        number=number,
        provider=provider,
        duration=duration,
        aspect_ratio="16:9",
        prompt=f"Prompt {number}",
        cost=0.0,
    )


def _make_plan(*scenes: PlannedScene) -> RenderPlan:
    return RenderPlan(scenes=scenes)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_driver(clock):
    def _make(*providers, **kwargs):
        registry = ProviderRegistry([*providers, TemplateBackend()])
        options = dict(
            poll_interval=10, max_poll_interval=30, backoff_factor=1.5,
            scene_timeout=900, max_retries=3, retry_delay=2, max_workers=1,
            sleep=clock.sleep, clock=clock,
        )
        options.update(kwargs)
        return RenderJobDriver(registry, **options)
    return _make


class TestRunOutcomes:
    def test_mixed_outcome_is_partial(self, make_driver, scripted_provider):
        fake = scripted_provider(poll_outcomes=[PROCESSING, PROCESSING, FAILED])
        plan = _make_plan(_make_scene(1, provider="template"), _make_scene(2))
        report = make_driver(fake).run(plan)

        assert report.status == "partial"
        assert report.result_for(1).status == "completed"
        assert report.result_for(2).status == "failed"
        assert report.result_for(2).error_message == "render crashed"
        assert len(fake.poll_calls) == 3
        assert report.requires_stitching

    def test_all_completed(self, make_driver, scripted_provider):
        fake = scripted_provider(poll_outcomes=[PROCESSING, COMPLETED])
        plan = _make_plan(_make_scene(1), _make_scene(2))
        report = make_driver(fake).run(plan)

        assert report.status == "completed"
        assert all(r.output_ref == "https://cdn.test/out.mp4" for r in report.results)
        assert all(plan.jobs[n].progress == 100 for n in (1, 2))

    def test_all_failed(self, make_driver, scripted_provider):
        fake = scripted_provider(poll_outcomes=[FAILED])
        report = make_driver(fake).run(_make_plan(_make_scene(1), _make_scene(2)))
        assert report.status == "failed"
        assert len(report.failed) == 2

    def test_template_plan_needs_no_polling(self, make_driver):
        plan = _make_plan(_make_scene(1, provider="template"))
        report = make_driver().run(plan)
        assert report.status == "completed"
        assert "frames" in report.result_for(1).metadata
        assert not report.requires_stitching

    def test_jobs_recorded_on_plan(self, make_driver, scripted_provider):
        plan = _make_plan(_make_scene(1))
        make_driver(scripted_provider()).run(plan)
        assert plan.jobs[1].job_id == "fake-job"
        assert plan.jobs[1].status == JobStatus.COMPLETED

    def test_unknown_provider_rejected_before_submission(self, make_driver, scripted_provider):
        fake = scripted_provider()
        plan = _make_plan(_make_scene(1), _make_scene(2, provider="pika"))
        with pytest.raises(UnknownProviderError):
            make_driver(fake).run(plan)
        assert fake.submit_calls == []

    def test_credentials_passed_to_provider(self, make_driver, scripted_provider):
        fake = scripted_provider()
        make_driver(fake, credentials={"fake": "secret"}).run(_make_plan(_make_scene(1)))
        assert fake.submit_calls[0]["credential"] == "secret"


class TestSubmission:
    def test_transient_errors_retried_with_backoff(self, make_driver, scripted_provider, clock):
        fake = scripted_provider(submit_outcomes=[
            TransientProviderError("503"),
            TransientProviderError("503"),
            SubmitResult(job_id="ok"),
        ])
        report = make_driver(fake).run(_make_plan(_make_scene(1)))
        assert report.status == "completed"
        assert len(fake.submit_calls) == 3
        assert clock.sleeps[:2] == [2, 4]

    def test_transient_retries_exhausted(self, make_driver, scripted_provider):
        fake = scripted_provider(submit_outcomes=[TransientProviderError("429")])
        report = make_driver(fake, max_retries=2).run(_make_plan(_make_scene(1)))
        assert report.result_for(1).status == "failed"
        assert len(fake.submit_calls) == 3
        assert fake.poll_calls == []

    def test_rejection_not_retried(self, make_driver, scripted_provider):
        fake = scripted_provider(submit_outcomes=[ProviderSubmissionError("invalid key")])
        report = make_driver(fake).run(_make_plan(_make_scene(1)))
        assert report.result_for(1).status == "failed"
        assert report.result_for(1).error_message == "invalid key"
        assert len(fake.submit_calls) == 1

    def test_generic_provider_error_fails_scene(self, make_driver, scripted_provider):
        fake = scripted_provider(submit_outcomes=[ProviderError("boom")])
        report = make_driver(fake).run(_make_plan(_make_scene(1)))
        assert report.result_for(1).status == "failed"

    def test_unexpected_error_isolated_to_scene(self, make_driver, scripted_provider):
        fake = scripted_provider(submit_outcomes=[ValueError("bug")])
        plan = _make_plan(_make_scene(1), _make_scene(2, provider="template"))
        report = make_driver(fake).run(plan)
        assert report.result_for(1).status == "failed"
        assert "Unexpected error" in report.result_for(1).error_message
        assert report.result_for(2).status == "completed"
        assert report.status == "partial"


class TestPolling:
    def test_interval_backs_off_to_maximum(self, make_driver, scripted_provider, clock):
        fake = scripted_provider(poll_outcomes=[PROCESSING] * 4 + [COMPLETED])
        make_driver(fake).run(_make_plan(_make_scene(1)))
        assert clock.sleeps == [10, 15, 22.5, 30, 30]

    def test_timeout_abandons_as_unknown(self, make_driver, scripted_provider):
        fake = scripted_provider(poll_outcomes=[PROCESSING])
        plan = _make_plan(_make_scene(1))
        report = make_driver(fake, scene_timeout=30).run(plan)

        result = report.result_for(1)
        assert result.status == "unknown"
        assert "timed out" in result.metadata["abandon_reason"]
        assert plan.jobs[1].status == JobStatus.PROCESSING
        assert len(fake.poll_calls) == 3

    def test_transient_poll_errors_tolerated(self, make_driver, scripted_provider):
        fake = scripted_provider(poll_outcomes=[
            TransientProviderError("502"), TransientProviderError("502"), COMPLETED,
        ])
        report = make_driver(fake).run(_make_plan(_make_scene(1)))
        assert report.status == "completed"

    def test_transient_poll_errors_exhausted(self, make_driver, scripted_provider):
        fake = scripted_provider(poll_outcomes=[TransientProviderError("502")])
        report = make_driver(fake, max_retries=2).run(_make_plan(_make_scene(1)))
        assert report.result_for(1).status == "unknown"
        assert len(fake.poll_calls) == 3

    def test_status_never_regresses(self, make_driver, scripted_provider):
        fake = scripted_provider(poll_outcomes=[
            PROCESSING, PollResult(status=JobStatus.QUEUED), COMPLETED,
        ])
        seen = []
        make_driver(fake).run(
            _make_plan(_make_scene(1)), on_update=lambda job: seen.append(job.status),
        )
        assert seen == [JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.COMPLETED]


class TestCancellation:
    def test_cancel_before_submission(self, make_driver, scripted_provider):
        fake = scripted_provider()
        cancel = threading.Event()
        cancel.set()
        report = make_driver(fake).run(_make_plan(_make_scene(1), _make_scene(2)), cancel)

        assert fake.submit_calls == []
        assert [r.status for r in report.results] == ["cancelled", "cancelled"]
        assert report.unknown == []
        assert len(report.cancelled) == 2
        assert report.result_for(1).metadata["abandon_reason"] == "cancelled before submission"

    def test_cancel_during_submit_retry_is_cancelled(self, make_driver, scripted_provider, clock):
        cancel = threading.Event()
        fake = scripted_provider(submit_outcomes=[TransientProviderError("503")])

        def sleep(seconds):
            clock.sleep(seconds)
            cancel.set()

        report = make_driver(fake, sleep=sleep).run(_make_plan(_make_scene(1)), cancel)
        assert len(fake.submit_calls) == 1
        assert report.result_for(1).status == "cancelled"
        assert report.result_for(1).job_id == ""

    def test_cancel_during_polling(self, make_driver, scripted_provider, clock):
        cancel = threading.Event()
        fake = scripted_provider(poll_outcomes=[PROCESSING])

        def sleep(seconds):
            clock.sleep(seconds)
            if len(fake.poll_calls) >= 2:
                cancel.set()

        report = make_driver(fake, sleep=sleep).run(_make_plan(_make_scene(1)), cancel)
        result = report.result_for(1)
        assert result.status == "unknown"
        assert result.job_id == "fake-job"
        assert result.metadata["abandon_reason"] == "polling cancelled"
        assert len(fake.poll_calls) == 2


class TestUpdates:
    def test_callback_receives_every_transition(self, make_driver, scripted_provider):
        fake = scripted_provider(poll_outcomes=[PROCESSING, COMPLETED])
        updates = []
        make_driver(fake).run(
            _make_plan(_make_scene(1)), on_update=lambda job: updates.append(job.to_dict()["status"]),
        )
        assert updates == ["queued", "processing", "completed"]

    def test_failing_callback_does_not_break_run(self, make_driver, scripted_provider):
        def explode(job):
            raise RuntimeError("store offline")

        report = make_driver(scripted_provider()).run(_make_plan(_make_scene(1)), on_update=explode)
        assert report.status == "completed"


class TestRenderJob:
    def test_terminal_is_final(self):
        job = RenderJob(scene_number=1, provider="fake")
        assert job.advance(JobStatus.FAILED, error_message="x")
        assert not job.advance(JobStatus.COMPLETED)
        assert job.status == JobStatus.FAILED

    def test_progress_clamped(self):
        job = RenderJob(scene_number=1, provider="fake")
        job.advance(JobStatus.PROCESSING, progress=150)
        assert job.progress == 100

    def test_abandoned_reports_unknown(self):
        job = RenderJob(
            scene_number=1, provider="fake", job_id="j1", status=JobStatus.PROCESSING, abandoned=True,
        )
        assert job.reported_status == "unknown"

    def test_abandoned_before_submission_reports_cancelled(self):
        job = RenderJob(scene_number=1, provider="fake", abandoned=True)
        assert not job.submitted
        assert job.reported_status == "cancelled"
        assert job.to_dict()["status"] == "cancelled"


class TestFromConfig:
    def test_reads_render_section(self, sample_settings):
        from backend.services.shared.config import Config
        registry = ProviderRegistry([TemplateBackend()])
        driver = RenderJobDriver.from_config(registry, Config(str(sample_settings)))
        assert driver.poll_interval == 1
        assert driver.max_poll_interval == 2
        assert driver.scene_timeout == 60
        assert driver.max_retries == 2
