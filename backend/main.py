"""SceneCast — FastAPI application entry point.

All routers are mounted here. No dead-code routers allowed — if a router
module exists, it must be mounted in this file.
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.routers import render, script, system
from backend.services.shared.config import get_config
from backend.services.shared.logging import setup_logging

_config = get_config()
setup_logging(level=_config.get("logging.level", "INFO"), log_file=_config.get("logging.file"))

app = FastAPI(
    title="SceneCast",
    version="1.0.0",
    description="Script-to-render planning and multi-provider video generation.",
)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ───────────────────────────────────────────────────────────────────
# Critical: every imported router must be mounted. No orphan routers.
app.include_router(script.router, prefix="/api/script", tags=["Script"])
app.include_router(render.router, prefix="/api/render", tags=["Render"])
app.include_router(system.router, prefix="/api/system", tags=["System"])
