"""Registry of custom extension handlers.

Custom conditions, actions and transformations are looked up by string key.
Keys are resolved when a rule is compiled; an unregistered key is a hard
error, never a silent no-op.
"""

from __future__ import annotations

from typing import Callable

from domain.errors import CompileError

# (condition, context) -> bool | (bool, confidence)
ConditionHandler = Callable
# (action, values: dict[str, str]) -> str | None
ActionHandler = Callable
# (value: str, **params) -> str
TransformationHandler = Callable


class HandlerRegistry:
    """Maps string keys to statically registered handlers."""

    def __init__(self) -> None:
        self._conditions: dict[str, ConditionHandler] = {}
        self._actions: dict[str, ActionHandler] = {}
        self._transformations: dict[str, TransformationHandler] = {}

    # ── Registration ───────────────────────────────────────────────────

    def register_condition(self, key: str, handler: ConditionHandler) -> None:
        self._conditions[key] = handler

    def register_action(self, key: str, handler: ActionHandler) -> None:
        self._actions[key] = handler

    def register_transformation(self, key: str, handler: TransformationHandler) -> None:
        self._transformations[key] = handler

    # ── Lookup ─────────────────────────────────────────────────────────

    def condition(self, key: str | None) -> ConditionHandler | None:
        return self._conditions.get(key) if key else None

    def action(self, key: str | None) -> ActionHandler | None:
        return self._actions.get(key) if key else None

    def transformation(self, key: str | None) -> TransformationHandler | None:
        return self._transformations.get(key) if key else None

    def require_condition(self, key: str | None, entity_id: str | None = None) -> ConditionHandler:
        handler = self.condition(key)
        if handler is None:
            raise CompileError(f"Unregistered custom condition {key!r}", entity_id=entity_id)
        return handler

    def require_action(self, key: str | None, entity_id: str | None = None) -> ActionHandler:
        handler = self.action(key)
        if handler is None:
            raise CompileError(f"Unregistered custom action {key!r}", entity_id=entity_id)
        return handler
