"""Domain errors — pure Python, zero external dependencies.

A pattern or condition that simply does not match is not an error: it is a
negative ExtractionResult / ConditionResult. Only the classes below are
raised.
"""

from __future__ import annotations


class RuleEngineError(Exception):
    """Base class for every error raised by the domain."""


class CompileError(RuleEngineError):
    """Malformed pattern or rule, rejected before activation."""

    def __init__(self, message: str, entity_id: str | None = None) -> None:
        super().__init__(message)
        self.entity_id = entity_id


class MissingDependency(RuleEngineError):
    """An action's source field is absent and no default is set."""

    def __init__(self, action_id: str, field_names: list[str]) -> None:
        super().__init__(
            f"Action {action_id}: missing source field(s) {', '.join(field_names)}"
        )
        self.action_id = action_id
        self.field_names = field_names


class CycleDetected(RuleEngineError):
    """Actions of one rule depend on each other's outputs in a loop."""

    def __init__(self, action_ids: list[str], rule_id: str | None = None) -> None:
        super().__init__(
            f"Action dependency cycle between {', '.join(action_ids)}"
        )
        self.action_ids = action_ids
        self.rule_id = rule_id


class TimeoutExceeded(RuleEngineError):
    """Regular-expression matching ran past its time budget."""

    def __init__(self, pattern: str, budget_ms: float) -> None:
        super().__init__(f"Matching {pattern!r} exceeded {budget_ms:.0f} ms")
        self.pattern = pattern
        self.budget_ms = budget_ms


class RepositoryUnavailable(RuleEngineError):
    """Infrastructure failure behind a repository port."""


class HandlerFailed(RuleEngineError):
    """A registered custom handler raised while running."""

    def __init__(self, key: str, entity_id: str | None, cause: Exception) -> None:
        super().__init__(f"Handler {key!r} failed on {entity_id}: {cause}")
        self.key = key
        self.entity_id = entity_id
