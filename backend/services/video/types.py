"""Data types for the SceneCast render planning and execution engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class JobStatus(str, Enum):
    """Provider-agnostic lifecycle of one render job."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Higher rank = later in the lifecycle; a transition may never lower the rank.
_STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


@dataclass
class SubmitResult:
    """Returned by VideoProvider.submit()."""
    job_id: str
    status: JobStatus = JobStatus.QUEUED
    output_ref: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PollResult:
    """Returned by VideoProvider.poll()."""
    status: JobStatus
    progress: Optional[int] = None
    output_ref: Optional[str] = None
    thumbnail_ref: Optional[str] = None
    requires_authenticated_download: bool = False
    error_message: Optional[str] = None


@dataclass(frozen=True)
class PlannedScene:
    """One committed scene of a render plan."""
    number: int
    provider: str
    duration: int
    aspect_ratio: str
    prompt: str
    cost: float
    model: Optional[str] = None
    label: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number":       self.number,
            "label":        self.label,
            "provider":     self.provider,
            "model":        self.model,
            "duration":     self.duration,
            "aspect_ratio": self.aspect_ratio,
            "prompt":       self.prompt,
            "cost":         self.cost,
        }


@dataclass
class RenderJob:
    """Runtime state of one scene on one provider.

    Status only moves forward: queued → processing → completed | failed.
    Once terminal, further updates are ignored.
    """
    scene_number: int
    provider: str
    job_id: str = ""
    status: JobStatus = JobStatus.QUEUED
    progress: Optional[int] = None
    output_ref: Optional[str] = None
    requires_authenticated_download: bool = False
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    abandoned: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def submitted(self) -> bool:
        return bool(self.job_id)

    @property
    def reported_status(self) -> str:
        """Status as surfaced to callers.

        Abandoned jobs are "unknown" when the vendor accepted them (it may
        still be rendering) and "cancelled" when they were never submitted.
        """
        if self.abandoned and not self.is_terminal:
            return "unknown" if self.submitted else "cancelled"
        return self.status.value

    def advance(
        self,
        status: JobStatus,
        progress: Optional[int] = None,
        output_ref: Optional[str] = None,
        requires_authenticated_download: bool = False,
        error_message: Optional[str] = None,
    ) -> bool:
        """Apply a status update if it does not regress. Returns True if applied."""
        if self.is_terminal or _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            return False
        self.status = status
        if progress is not None:
            self.progress = max(0, min(100, int(progress)))
        if output_ref:
            self.output_ref = output_ref
        if requires_authenticated_download:
            self.requires_authenticated_download = True
        if error_message:
            self.error_message = error_message
        if status == JobStatus.COMPLETED:
            self.progress = 100
        return True

    def apply_poll(self, result: PollResult) -> bool:
        return self.advance(
            result.status,
            progress=result.progress,
            output_ref=result.output_ref,
            requires_authenticated_download=result.requires_authenticated_download,
            error_message=result.error_message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scene_number":   self.scene_number,
            "provider":       self.provider,
            "job_id":         self.job_id,
            "status":         self.reported_status,
            "progress":       self.progress,
            "output_ref":     self.output_ref,
            "requires_authenticated_download": self.requires_authenticated_download,
            "error_message":  self.error_message,
            "metadata":       self.metadata,
        }


@dataclass
class RenderPlan:
    """Ordered, provider-assigned scenes ready for submission.

    ``scenes`` is fixed at construction; only ``jobs`` changes afterwards,
    and only the Render Job Driver writes to it.
    """
    scenes: Tuple[PlannedScene, ...]
    platform: str = "general"
    jobs: Dict[int, RenderJob] = field(default_factory=dict)

    def __post_init__(self):
        self.scenes = tuple(self.scenes)

    @property
    def requires_stitching(self) -> bool:
        return len(self.scenes) > 1

    @property
    def total_cost(self) -> float:
        return round(sum(s.cost for s in self.scenes), 2)

    @property
    def total_duration(self) -> int:
        return sum(s.duration for s in self.scenes)

    def scene(self, number: int) -> PlannedScene:
        for s in self.scenes:
            if s.number == number:
                return s
        raise ValueError(f"Render plan has no scene {number}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform":           self.platform,
            "scenes":             [s.to_dict() for s in self.scenes],
            "total_cost":         self.total_cost,
            "total_duration":     self.total_duration,
            "requires_stitching": self.requires_stitching,
            "jobs":               {n: j.to_dict() for n, j in sorted(self.jobs.items())},
        }


@dataclass
class SceneResult:
    """Terminal (or abandoned) outcome of one scene."""
    scene_number: int
    provider: str
    status: str                         # "completed" | "failed" | "unknown" | "cancelled"
    job_id: str = ""
    output_ref: Optional[str] = None
    requires_authenticated_download: bool = False
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_job(cls, job: RenderJob) -> "SceneResult":
        return cls(
            scene_number=job.scene_number,
            provider=job.provider,
            status=job.reported_status if (job.is_terminal or job.abandoned) else "unknown",
            job_id=job.job_id,
            output_ref=job.output_ref,
            requires_authenticated_download=job.requires_authenticated_download,
            error_message=job.error_message,
            metadata=dict(job.metadata),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scene_number":  self.scene_number,
            "provider":      self.provider,
            "status":        self.status,
            "job_id":        self.job_id,
            "output_ref":    self.output_ref,
            "requires_authenticated_download": self.requires_authenticated_download,
            "error_message": self.error_message,
        }


@dataclass
class RenderReport:
    """Aggregate outcome of one Render Job Driver run."""
    results: List[SceneResult]
    requires_stitching: bool = False

    @property
    def status(self) -> str:
        """"completed" when every scene completed, "failed" when every scene
        failed, otherwise "partial"."""
        statuses = {r.status for r in self.results}
        if not statuses or statuses == {"completed"}:
            return "completed"
        if statuses == {"failed"}:
            return "failed"
        return "partial"

    @property
    def completed(self) -> List[SceneResult]:
        return [r for r in self.results if r.status == "completed"]

    @property
    def failed(self) -> List[SceneResult]:
        return [r for r in self.results if r.status == "failed"]

    @property
    def unknown(self) -> List[SceneResult]:
        return [r for r in self.results if r.status == "unknown"]

    @property
    def cancelled(self) -> List[SceneResult]:
        return [r for r in self.results if r.status == "cancelled"]

    def result_for(self, scene_number: int) -> SceneResult:
        for r in self.results:
            if r.scene_number == scene_number:
                return r
        raise KeyError(scene_number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status":             self.status,
            "requires_stitching": self.requires_stitching,
            "results":            [r.to_dict() for r in self.results],
        }
