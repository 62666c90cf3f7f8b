"""Engine tuning knobs — pure Python, zero external dependencies."""

from __future__ import annotations

from dataclasses import dataclass

from domain.models import SelectionMode

SMOOTHING_ALPHA = 0.1
ACCEPTANCE_THRESHOLD = 0.5


@dataclass(frozen=True)
class EngineSettings:
    """Immutable settings handed to the engine at construction time."""

    acceptance_threshold: float = ACCEPTANCE_THRESHOLD
    smoothing_alpha: float = SMOOTHING_ALPHA
    match_timeout_ms: float = 250.0
    multiple_match_penalty: float = 0.8
    type_mismatch_penalty: float = 0.5
    min_extraction_confidence: float = 0.5
    selection_mode: SelectionMode = SelectionMode.BEST_ONLY
    top_rules: int = 5

    def __post_init__(self):
        if not 0.0 <= self.acceptance_threshold <= 1.0:
            raise ValueError("acceptance_threshold must be within [0, 1]")
        if not 0.0 < self.smoothing_alpha <= 1.0:
            raise ValueError("smoothing_alpha must be within (0, 1]")
        if self.match_timeout_ms <= 0:
            raise ValueError("match_timeout_ms must be positive")
