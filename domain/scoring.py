"""Adaptive success-rate scoring shared by patterns and rules.

Only stdlib and domain imports allowed.
"""

from __future__ import annotations

import threading

from domain.models import OutcomeRecord, utcnow
from domain.settings import SMOOTHING_ALPHA

LOCK_STRIPES = 64


def smoothed_rate(rate, success, alpha=SMOOTHING_ALPHA):
    """Exponential moving average step: rate * (1 - alpha) + outcome * alpha."""
    updated = rate * (1.0 - alpha) + (1.0 if success else 0.0) * alpha
    return min(1.0, max(0.0, updated))


def _check_alpha(alpha):
    if not 0.0 < alpha <= 1.0:
        raise ValueError("alpha must be within (0, 1]")
    return alpha


class AdaptiveScorer:
    """Records confirmed outcomes on anything carrying usage/success tallies.

    Works on Pattern and Rule alike. Updates to the same entity are
    serialized so the rate and both counters always move together. Entities
    share a fixed set of striped locks, so memory stays bounded however many
    entities are scored.
    """

    def __init__(self, alpha: float = SMOOTHING_ALPHA, clock=utcnow, stripes: int = LOCK_STRIPES) -> None:
        self.alpha = _check_alpha(alpha)
        self._clock = clock
        self._locks = tuple(threading.Lock() for _ in range(stripes))

    def _lock_for(self, entity) -> threading.Lock:
        return self._locks[hash((type(entity).__name__, entity.id)) % len(self._locks)]

    def record_outcome(self, entity, success: bool, alpha: float | None = None) -> OutcomeRecord:
        """Apply one outcome; *alpha* overrides the scorer's default for this call."""
        alpha = self.alpha if alpha is None else _check_alpha(alpha)
        with self._lock_for(entity):
            previous = entity.success_rate
            entity.usage_count += 1
            if success:
                entity.success_count += 1
            entity.success_rate = smoothed_rate(previous, success, alpha)
            entity.last_modified = self._clock()
            if hasattr(entity, "last_used"):
                entity.last_used = entity.last_modified
            return OutcomeRecord(
                entity_id=entity.id,
                success=success,
                previous_rate=previous,
                new_rate=entity.success_rate,
                usage_count=entity.usage_count,
                success_count=entity.success_count,
            )
