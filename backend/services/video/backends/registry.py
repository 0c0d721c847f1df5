"""ProviderRegistry — the closed set of rendering backends SceneCast can use."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from backend.services.video.backends.base import UnknownProviderError, VideoProvider
from backend.services.video.backends.heygen import HeyGenBackend
from backend.services.video.backends.runway import RunwayBackend
from backend.services.video.backends.sora import SoraBackend
from backend.services.video.backends.template import TemplateBackend

logger = logging.getLogger("scenecast.video.registry")

FALLBACK_PROVIDER = "template"


class ProviderRegistry:
    """Explicitly registered backends in declaration order.

    Declaration order is the tie-break order used by the Provider Scorer.
    Lookups of unknown names raise ``UnknownProviderError``.

    Usage::

        registry = ProviderRegistry([SoraBackend(), TemplateBackend()])
        registry.get("sora").estimate_cost(8)
    """

    def __init__(self, providers: Iterable[VideoProvider]):
        self._providers: Dict[str, VideoProvider] = {}
        for provider in providers:
            name = provider.name()
            if name in self._providers:
                raise ValueError(f"Provider '{name}' registered twice")
            self._providers[name] = provider
        if FALLBACK_PROVIDER not in self._providers:
            raise ValueError(f"Registry must include the '{FALLBACK_PROVIDER}' fallback provider")

    def get(self, name: str) -> VideoProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise UnknownProviderError(
                f"Unknown provider '{name}'. Registered: {self.names()}"
            ) from None

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def names(self) -> List[str]:
        return list(self._providers)

    def providers(self) -> List[VideoProvider]:
        return list(self._providers.values())

    def available(self) -> List[str]:
        """Names of providers whose credential is present in the environment."""
        return [p.name() for p in self._providers.values() if p.is_available()]

    @property
    def fallback(self) -> VideoProvider:
        return self._providers[FALLBACK_PROVIDER]


def default_registry(provider_config: Optional[Dict[str, Dict[str, str]]] = None) -> ProviderRegistry:
    """Build the standard registry (heygen, sora, runway, template).

    Args:
        provider_config: Optional ``providers`` section of settings.yaml,
            used for API base URLs and versions.
    """
    cfg = provider_config or {}
    sora = cfg.get("sora", {})
    runway = cfg.get("runway", {})
    heygen = cfg.get("heygen", {})
    return ProviderRegistry([
        HeyGenBackend(api_base=heygen.get("api_base")),
        SoraBackend(api_base=sora.get("api_base")),
        RunwayBackend(api_base=runway.get("api_base"), api_version=runway.get("api_version")),
        TemplateBackend(),
    ])
