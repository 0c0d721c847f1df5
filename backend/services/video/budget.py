"""BudgetLedger — running spend remainder for one planning pass."""
from __future__ import annotations

import logging
from typing import Optional

from backend.services.video.cost_estimator import round_currency

logger = logging.getLogger("scenecast.video.budget")


class BudgetLedger:
    """Running remainder, decremented as paid scenes are assigned.

    ``None`` means unlimited: ``remaining`` stays ``None`` and every cost is
    affordable. Otherwise the remainder is floored at 0 and never negative.
    Not a ledger of record; build a fresh one per planning pass.
    """

    def __init__(self, initial: Optional[float]):
        self.initial = None if initial is None else max(0.0, round_currency(initial))
        self._remaining = self.initial
        self.spent = 0.0

    @property
    def remaining(self) -> Optional[float]:
        return self._remaining

    @property
    def unlimited(self) -> bool:
        return self._remaining is None

    def can_afford(self, cost: float) -> bool:
        return self._remaining is None or cost <= self._remaining

    def charge(self, cost: float) -> Optional[float]:
        """Deduct ``cost`` and return the new remainder."""
        if cost <= 0:
            return self._remaining
        self.spent = round_currency(self.spent + cost)
        if self._remaining is not None:
            self._remaining = max(0.0, round_currency(self._remaining - cost))
            logger.debug("Budget charge %.2f → remaining %.2f", cost, self._remaining)
        return self._remaining
