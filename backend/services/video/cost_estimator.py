"""Duration & cost estimation — word counts to duration buckets, buckets to USD."""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from backend.services.video.backends.registry import ProviderRegistry

logger = logging.getLogger("scenecast.video.cost_estimator")

WORDS_PER_SECOND = 2.5          # ~150 wpm narration pace
MIN_DURATION_SEC = 3
MAX_DURATION_SEC = 25
SUPPORTED_DURATIONS = (4, 5, 6, 8, 10, 12, 15, 25)


def round_currency(amount: float) -> float:
    """Round a USD amount to cents, half-up (0.005 → 0.01)."""
    return float(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def snap_duration(seconds: float, supported: Sequence[int] = SUPPORTED_DURATIONS) -> int:
    """Snap to the nearest supported value; ties go to the smaller one."""
    return min(sorted(supported), key=lambda d: abs(d - seconds))


def estimate_duration(word_count: int) -> int:
    """Estimated narration length for ``word_count`` words, snapped to a bucket.

    Total and monotonically non-decreasing over non-negative word counts.
    """
    raw = max(MIN_DURATION_SEC, max(0, word_count) / WORDS_PER_SECOND)
    return snap_duration(min(raw, MAX_DURATION_SEC))


def clamp_to_supported(duration: int, supported: Sequence[int]) -> int:
    """Smallest supported value ≥ ``duration``, else the largest supported value."""
    ordered = sorted(supported)
    if not ordered:
        raise ValueError("Supported duration set is empty")
    for value in ordered:
        if value >= duration:
            return value
    return ordered[-1]


class CostEstimator:
    """Prices scenes against the provider registry's rate table.

    Usage::

        est = CostEstimator(default_registry())
        est.estimate_cost("sora", "sora-2", 8)   # 0.8
    """

    def __init__(self, registry: "ProviderRegistry"):
        self._registry = registry

    def rate(self, provider: str, model: Optional[str] = None) -> float:
        """Per-second USD rate. Raises UnknownProviderError for unknown providers."""
        return self._registry.get(provider).spec().model(model).cost_per_second

    def estimate_cost(self, provider: str, model: Optional[str], duration: int) -> float:
        """``rate × duration`` rounded half-up to cents."""
        return round_currency(self.rate(provider, model) * duration)

    def fit_duration(self, provider: str, model: Optional[str], duration: int) -> int:
        """Clamp ``duration`` into the provider/model's supported set."""
        supported = self._registry.get(provider).spec().model(model).supported_durations
        return clamp_to_supported(duration, supported)
