"""Rule compilation: validate a Rule and freeze it into a CompiledRule.

Everything that can be checked without a document is checked here, so a
malformed rule is rejected before it is ever activated.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass

import regex

from domain.errors import CompileError, CycleDetected
from domain.extraction.pattern_matcher import compile_expression
from domain.models import Action, ActionType, Condition, ConditionType, Operator, Rule
from domain.rules.action_executor import (
    CALCULATIONS,
    action_params,
    condition_from_dict,
    dependency_order,
    step_chain,
)
from domain.rules.condition_tree import ConditionGroup, build_condition_tree
from domain.rules.registry import HandlerRegistry
from domain.rules.transformations import TransformationRegistry


@dataclass(frozen=True)
class CompiledRule:
    """Immutable, validated view of a rule used during evaluation."""

    rule: Rule
    tree: ConditionGroup
    actions: tuple[Action, ...]

    @property
    def id(self) -> str:
        return self.rule.id

    @property
    def name(self) -> str:
        return self.rule.name

    @property
    def priority(self) -> int:
        return self.rule.priority

    @property
    def success_rate(self) -> float:
        return self.rule.success_rate

    @property
    def is_active(self) -> bool:
        return self.rule.is_active


def validate_condition(condition: Condition, registry: HandlerRegistry) -> None:
    if condition.condition_type is ConditionType.CUSTOM or condition.operator is Operator.CUSTOM:
        registry.require_condition(condition.handler, entity_id=condition.id)
    if condition.operator is Operator.MATCHES:
        compile_expression(condition.value, regex.IGNORECASE | regex.MULTILINE, entity_id=condition.id)
    if condition.weight < 0:
        raise CompileError(f"Condition weight must not be negative ({condition.weight})", entity_id=condition.id)


def validate_action(action: Action, registry: HandlerRegistry,
                    transformations: TransformationRegistry) -> None:
    params = action_params(action)
    transformations.validate(step_chain(action), entity_id=action.id)
    if action.action_type is ActionType.CUSTOM:
        registry.require_action(params.get("handler"), entity_id=action.id)
    elif action.action_type is ActionType.CALCULATE_FIELD:
        operation = str(params.get("operation", "sum")).lower()
        if operation not in CALCULATIONS:
            raise CompileError(f"Unknown calculation {operation!r}", entity_id=action.id)
        if params.get("decimals") is not None:
            try:
                int(params["decimals"])
            except (TypeError, ValueError) as exc:
                raise CompileError(f"Calculation decimals {params['decimals']!r} is not an integer",
                                   entity_id=action.id) from exc
    elif action.action_type is ActionType.CONDITIONAL_MAP:
        if not params.get("condition"):
            raise CompileError("Conditional map without a condition", entity_id=action.id)
        validate_condition(condition_from_dict(params["condition"], action.id), registry)
    if not action.target_location:
        raise CompileError("Action without a target location", entity_id=action.id)


def compile_rule(rule: Rule, registry: HandlerRegistry | None = None,
                 transformations: TransformationRegistry | None = None) -> CompiledRule:
    """Validate *rule* and return a snapshot detached from the original."""
    registry = registry or HandlerRegistry()
    transformations = transformations or TransformationRegistry(registry)
    snapshot = copy.deepcopy(rule)

    for condition in snapshot.conditions:
        validate_condition(condition, registry)
    tree = build_condition_tree(snapshot.conditions)

    for action in snapshot.actions:
        validate_action(action, registry, transformations)
    try:
        ordered = dependency_order(snapshot.actions, snapshot.id)
    except CycleDetected as exc:
        raise CompileError(str(exc), entity_id=snapshot.id) from exc

    return CompiledRule(rule=snapshot, tree=tree, actions=tuple(ordered))
