"""System router — health and provider inventory."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter

from backend.services.shared.config import get_config
from backend.services.video.backends.registry import ProviderRegistry, default_registry

logger = logging.getLogger("scenecast.routers.system")
router = APIRouter()

_registry: Optional[ProviderRegistry] = None


def _get_registry() -> ProviderRegistry:
    global _registry
    if _registry is None:
        _registry = default_registry(get_config().get("providers"))
    return _registry


@router.get("/health")
async def health_check() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": "1.0.0"}


@router.get("/providers")
async def list_providers() -> Dict[str, Any]:
    """Registered providers with capabilities, pricing and credential status."""
    providers: List[Dict[str, Any]] = []
    for provider in _get_registry().providers():
        entry = provider.spec().to_dict()
        entry["available"] = provider.is_available()
        providers.append(entry)
    return {"providers": providers, "total": len(providers)}
