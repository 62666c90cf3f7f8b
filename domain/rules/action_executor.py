"""Action execution: turns a rule's actions into field mappings.

For kinds other than MapField/TransformField the action's ``transformation``
object carries that kind's parameters:

    CombineFields   {"separator": " "}
    SplitField      {"separator": " ", "index": 0}
    CalculateField  {"operation": "sum", "decimals": 2}
    ConditionalMap  {"condition": {...}, "value": "...", "else_value": "..."}
    Custom          {"handler": "registered-key", ...}

Any of them may add a ``"transform"`` key holding a step chain that runs on
the produced value.
"""

from __future__ import annotations

import heapq
import json
import logging
from decimal import Decimal, DivisionByZero, InvalidOperation

from domain.errors import CompileError, CycleDetected, HandlerFailed, MissingDependency
from domain.models import (
    Action,
    ActionBatchResult,
    ActionFailure,
    ActionType,
    Condition,
    ConditionType,
    DocumentContext,
    ExtractedField,
    FieldMapping,
    LogicalOperator,
    Operator,
)
from domain.normalization import format_decimal, parse_number
from domain.rules.condition_evaluator import ConditionEvaluator
from domain.rules.registry import HandlerRegistry
from domain.rules.transformations import TransformationRegistry, parse_steps

logger = logging.getLogger(__name__)

CALCULATIONS = ("sum", "difference", "product", "ratio", "average")
_PARAMETERISED = frozenset({
    ActionType.COMBINE_FIELDS,
    ActionType.SPLIT_FIELD,
    ActionType.CALCULATE_FIELD,
    ActionType.CONDITIONAL_MAP,
    ActionType.CUSTOM,
})


def action_params(action: Action) -> dict:
    """Parameter object of a parameterised action kind."""
    if action.action_type not in _PARAMETERISED or not action.transformation:
        return {}
    spec = action.transformation
    if isinstance(spec, str):
        if not spec.strip().startswith("{"):
            return {}
        try:
            spec = json.loads(spec)
        except ValueError as exc:
            raise CompileError(f"Action parameters are not valid JSON: {exc}", entity_id=action.id) from exc
    return dict(spec) if isinstance(spec, dict) else {}


def step_chain(action: Action):
    """Transformation steps applied to the value an action produces."""
    if action.action_type in _PARAMETERISED:
        return action_params(action).get("transform")
    return action.transformation


def condition_from_dict(data: dict, action_id: str | None = None) -> Condition:
    """Build the nested condition of a ConditionalMap action."""
    try:
        return Condition(
            condition_type=ConditionType(data.get("condition_type", ConditionType.FIELD_VALUE.value)),
            field_name=data.get("field_name", ""),
            operator=Operator(data.get("operator", Operator.EQUALS.value)),
            value=str(data.get("value", "")),
            is_case_sensitive=bool(data.get("is_case_sensitive", False)),
            logical_operator=LogicalOperator(data["logical_operator"]) if data.get("logical_operator") else None,
            handler=data.get("handler"),
            id=data.get("id") or f"{action_id}:condition",
        )
    except ValueError as exc:
        raise CompileError(f"Invalid conditional-map condition: {exc}", entity_id=action_id) from exc


_FIELD_CONDITIONS = frozenset({
    ConditionType.FIELD_EXISTS.value,
    ConditionType.FIELD_VALUE.value,
    ConditionType.FIELD_RANGE.value,
})


def action_inputs(action: Action) -> list[str]:
    """Field names an action reads, including a ConditionalMap's tested field."""
    inputs = list(action.source_fields)
    if action.action_type is ActionType.CONDITIONAL_MAP:
        data = action_params(action).get("condition")
        if not isinstance(data, dict):
            return inputs
        kind = data.get("condition_type", ConditionType.FIELD_VALUE.value)
        if kind in _FIELD_CONDITIONS and data.get("field_name"):
            inputs.append(str(data["field_name"]).strip())
    return inputs


def dependency_order(actions: list[Action], rule_id: str | None = None) -> list[Action]:
    """Stable topological order: producers before consumers.

    Among actions that are ready at the same time, lower display order runs
    first. Raises CycleDetected when no valid order exists.
    """
    producers: dict[str, list[int]] = {}
    for index, action in enumerate(actions):
        producers.setdefault(action.published_name, []).append(index)

    dependents: dict[int, set[int]] = {i: set() for i in range(len(actions))}
    indegree = [0] * len(actions)
    for index, action in enumerate(actions):
        needed = set()
        for source in action_inputs(action):
            needed.update(p for p in producers.get(source, ()) if p != index)
        for producer in needed:
            dependents[producer].add(index)
            indegree[index] += 1

    ready = [(a.display_order, i) for i, a in enumerate(actions) if indegree[i] == 0]
    heapq.heapify(ready)
    ordered = []
    while ready:
        _, index = heapq.heappop(ready)
        ordered.append(actions[index])
        for child in dependents[index]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, (actions[child].display_order, child))

    if len(ordered) != len(actions):
        stuck = sorted(actions[i].id for i in range(len(actions)) if indegree[i] > 0)
        raise CycleDetected(stuck, rule_id=rule_id)
    return ordered


def _lookup(values, name):
    if name in values:
        return values[name]
    folded = name.casefold()
    for key, value in values.items():
        if key.casefold() == folded:
            return value
    return None


def _blank(value):
    return value is None or not str(value).strip()


class ActionExecutor:
    """Runs one rule's action list against the extracted fields."""

    def __init__(self, condition_evaluator: ConditionEvaluator | None = None,
                 transformations: TransformationRegistry | None = None,
                 registry: HandlerRegistry | None = None) -> None:
        self.registry = registry or HandlerRegistry()
        self.condition_evaluator = condition_evaluator or ConditionEvaluator(self.registry)
        self.transformations = transformations or TransformationRegistry(self.registry)

    def apply(self, actions: list[Action], extracted_fields: list[ExtractedField],
              context: DocumentContext | None = None, rule_id: str | None = None) -> ActionBatchResult:
        """Execute *actions*; raises CycleDetected before anything runs."""
        ordered = dependency_order(actions, rule_id)
        batch = ActionBatchResult(rule_id=rule_id)
        values = {f.field_name: f.value for f in extracted_fields if f.value is not None}
        base_context = context or DocumentContext()
        by_target: dict[str, FieldMapping] = {}

        for action in ordered:
            try:
                value = self._run(action, values, base_context, batch)
            except (MissingDependency, HandlerFailed) as exc:
                hard = action.is_required
                batch.failures.append(ActionFailure(action.id, str(exc), hard=hard))
                logger.debug("Action %s failed (%s): %s", action.id, "hard" if hard else "soft", exc)
                continue
            if value is None:
                batch.skipped.append(action.id)
                continue

            chain = step_chain(action)
            if chain:
                value, warnings = self.transformations.apply(value, chain)
                batch.warnings.extend(warnings)

            values[action.published_name] = value
            # Last writer wins per target location.
            by_target[action.target_location] = FieldMapping(
                field_name=action.published_name,
                target_location=action.target_location,
                location_type=action.target_location_type,
                value=value,
                description=action.description or "",
                format_instructions=_describe(chain),
                is_required=action.is_required,
                display_order=action.display_order,
                rule_id=rule_id,
                action_id=action.id,
            )

        batch.mappings = sorted(by_target.values(), key=lambda m: (m.display_order, m.target_location))
        batch.values = values
        return batch

    # ── Kinds ──────────────────────────────────────────────────────────

    def _run(self, action, values, context, batch):
        kind = action.action_type
        if kind in (ActionType.MAP_FIELD, ActionType.TRANSFORM_FIELD):
            return self._map(action, values)
        if kind is ActionType.COMBINE_FIELDS:
            return self._combine(action, values)
        if kind is ActionType.SPLIT_FIELD:
            return self._split(action, values)
        if kind is ActionType.CALCULATE_FIELD:
            return self._calculate(action, values)
        if kind is ActionType.CONDITIONAL_MAP:
            return self._conditional(action, values, context)
        return self._custom(action, values)

    def _sources(self, action, values):
        found = {name: _lookup(values, name) for name in action.source_fields}
        missing = [name for name, value in found.items() if _blank(value)]
        return found, missing

    def _map(self, action, values):
        found, missing = self._sources(action, values)
        if missing or not found:
            if not _blank(action.default_value):
                return action.default_value
            raise MissingDependency(action.id, missing or [action.source_field_name])
        return next(iter(found.values()))

    def _combine(self, action, values):
        found, missing = self._sources(action, values)
        if missing:
            if not _blank(action.default_value):
                return action.default_value
            raise MissingDependency(action.id, missing)
        separator = action_params(action).get("separator", " ")
        return separator.join(str(v).strip() for v in found.values())

    def _split(self, action, values):
        source = self._map(action, values)
        params = action_params(action)
        separator = params.get("separator")
        parts = source.split(separator) if separator else source.split()
        index = int(params.get("index", 0))
        try:
            return parts[index].strip()
        except IndexError:
            if not _blank(action.default_value):
                return action.default_value
            raise MissingDependency(action.id, [f"{action.source_field_name}[{index}]"]) from None

    def _calculate(self, action, values):
        found, missing = self._sources(action, values)
        numbers = [parse_number(v) for v in found.values() if not _blank(v)]
        if missing or not numbers or any(n is None for n in numbers):
            if not _blank(action.default_value):
                return action.default_value
            bad = missing or [name for name, v in found.items() if parse_number(v) is None]
            raise MissingDependency(action.id, bad or [action.source_field_name])

        params = action_params(action)
        operation = params.get("operation", "sum").lower()
        try:
            if operation == "sum":
                result = sum(numbers, Decimal(0))
            elif operation == "difference":
                result = numbers[0] - sum(numbers[1:], Decimal(0))
            elif operation == "product":
                result = Decimal(1)
                for n in numbers:
                    result *= n
            elif operation == "ratio":
                result = numbers[0]
                for n in numbers[1:]:
                    result /= n
            elif operation == "average":
                result = sum(numbers, Decimal(0)) / len(numbers)
            else:
                raise CompileError(f"Unknown calculation {operation!r}", entity_id=action.id)
            return format_decimal(result, params.get("decimals"))
        except (DivisionByZero, InvalidOperation):
            raise MissingDependency(action.id, ["non-zero divisor"]) from None

    def _conditional(self, action, values, context):
        params = action_params(action)
        condition = condition_from_dict(params.get("condition") or {}, action.id)
        enriched = context.with_fields([ExtractedField(k, v) for k, v in values.items()])
        outcome = self.condition_evaluator.evaluate(condition, enriched)
        if outcome.is_true:
            if "value" in params:
                return str(params["value"])
            return self._map(action, values)
        if "else_value" in params:
            return str(params["else_value"])
        return None

    def _custom(self, action, values):
        key = action_params(action).get("handler")
        handler = self.registry.require_action(key, entity_id=action.id)
        try:
            return handler(action, dict(values))
        except Exception as exc:
            logger.exception("Custom action handler %r failed on action %s", key, action.id)
            raise HandlerFailed(key, action.id, exc) from exc


def _describe(chain):
    if not chain:
        return None
    return " > ".join(name for name, _ in parse_steps(chain))
