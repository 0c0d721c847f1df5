"""Persistent SQLite-backed store for background render runs.

Each run holds the committed plan and the latest job state of every
scene, so render progress survives server restarts.
"""
from __future__ import annotations

import json
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from backend.services.video.types import RenderJob, RenderPlan


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunState:
    run_id: str
    status: RunStatus
    plan: Dict[str, Any]
    jobs: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    error: str = ""
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id":     self.run_id,
            "status":     self.status.value,
            "plan":       self.plan,
            "jobs":       [self.jobs[n] for n in sorted(self.jobs)],
            "error":      self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class RunStore:
    """SQLite-backed render run store.

    Creates the database and tables on first use. Each operation opens its
    own connection, so driver worker threads and request handlers can share
    one store.
    """

    _CREATE_RUNS = """
    CREATE TABLE IF NOT EXISTS render_runs (
        run_id     TEXT PRIMARY KEY,
        status     TEXT NOT NULL DEFAULT 'pending',
        plan       TEXT NOT NULL DEFAULT '{}',
        error      TEXT NOT NULL DEFAULT '',
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL
    )
    """
    _CREATE_JOBS = """
    CREATE TABLE IF NOT EXISTS render_jobs (
        run_id       TEXT NOT NULL,
        scene_number INTEGER NOT NULL,
        job          TEXT NOT NULL DEFAULT '{}',
        updated_at   REAL NOT NULL,
        PRIMARY KEY (run_id, scene_number)
    )
    """

    def __init__(self, db_path: str = "backend/data/render_runs.db"):
        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    # ── private ──────────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(self._CREATE_RUNS)
            conn.execute(self._CREATE_JOBS)

    # ── public ───────────────────────────────────────────────────────────────

    def create_run(self, plan: RenderPlan) -> str:
        """Persist a new pending run for ``plan`` and return its ID."""
        run_id = str(uuid.uuid4())
        now = time.time()
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO render_runs (run_id, status, plan, created_at, updated_at)
                   VALUES (?, 'pending', ?, ?, ?)""",
                (run_id, json.dumps(plan.to_dict()), now, now),
            )
            conn.executemany(
                """INSERT INTO render_jobs (run_id, scene_number, job, updated_at)
                   VALUES (?, ?, ?, ?)""",
                [
                    (run_id, s.number, json.dumps(RenderJob(s.number, s.provider).to_dict()), now)
                    for s in plan.scenes
                ],
            )
        return run_id

    def mark_running(self, run_id: str) -> None:
        self._set_status(run_id, RunStatus.RUNNING)

    def update_scene(self, run_id: str, job: RenderJob) -> None:
        """Record the latest state of one scene's job."""
        now = time.time()
        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO render_jobs (run_id, scene_number, job, updated_at)
                   VALUES (?, ?, ?, ?)""",
                (run_id, job.scene_number, json.dumps(job.to_dict()), now),
            )
            conn.execute(
                "UPDATE render_runs SET updated_at=? WHERE run_id=?", (now, run_id),
            )

    def finish_run(self, run_id: str, status: RunStatus, error: str = "") -> None:
        """Set the terminal run status."""
        self._set_status(run_id, status, error)

    def get_run(self, run_id: str) -> Optional[RunState]:
        """Return current run state, or None if not found."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM render_runs WHERE run_id=?", (run_id,)
            ).fetchone()
            if row is None:
                return None
            job_rows = conn.execute(
                "SELECT scene_number, job FROM render_jobs WHERE run_id=? ORDER BY scene_number",
                (run_id,),
            ).fetchall()
        return RunState(
            run_id=row["run_id"],
            status=RunStatus(row["status"]),
            plan=json.loads(row["plan"]),
            jobs={r["scene_number"]: json.loads(r["job"]) for r in job_rows},
            error=row["error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def list_active(self) -> List[str]:
        """IDs of runs that are pending or running."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id FROM render_runs WHERE status IN ('pending', 'running') ORDER BY created_at"
            ).fetchall()
        return [r["run_id"] for r in rows]

    def _set_status(self, run_id: str, status: RunStatus, error: str = "") -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE render_runs SET status=?, error=?, updated_at=? WHERE run_id=?",
                (status.value, error, time.time(), run_id),
            )
