"""Condition trees: built once from flat condition rows, walked per document.

Conditions are stored flat, tagged with group_id / parent_id /
nesting_level. ``build_condition_tree`` turns them into an explicit tree of
ConditionLeaf and ConditionGroup nodes; ``ConditionTreeEvaluator`` scores a
tree against a document context.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from domain.errors import CompileError
from domain.models import (
    Condition,
    ConditionResult,
    DocumentContext,
    LogicalOperator,
    RuleEvaluation,
)
from domain.rules.condition_evaluator import ConditionEvaluator
from domain.settings import ACCEPTANCE_THRESHOLD

logger = logging.getLogger(__name__)


# ── Tree nodes ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ConditionLeaf:
    condition: Condition

    @property
    def operator(self) -> LogicalOperator:
        """How this node combines with the next sibling."""
        return self.condition.logical_operator or LogicalOperator.AND

    @property
    def is_required(self) -> bool:
        return self.condition.is_required


@dataclass(frozen=True)
class ConditionGroup:
    group_id: str | None
    children: tuple
    nesting_level: int = 0

    @property
    def operator(self) -> LogicalOperator:
        return self.children[-1].operator if self.children else LogicalOperator.AND

    @property
    def is_required(self) -> bool:
        return any(child.is_required for child in self.children)

    def leaves(self) -> list[Condition]:
        """All conditions under this node, in evaluation order."""
        found = []
        for child in self.children:
            if isinstance(child, ConditionLeaf):
                found.append(child.condition)
            else:
                found.extend(child.leaves())
        return found


# ── Construction ────────────────────────────────────────────────────────


def _resolve_parents(conditions):
    """Map each group id to its parent group id (None = root)."""
    by_id = {c.id: c for c in conditions}
    group_ids = {c.group_id for c in conditions if c.group_id}

    def resolve(parent_id, owner):
        if parent_id in group_ids:
            return parent_id
        if parent_id in by_id:
            return by_id[parent_id].group_id
        raise CompileError(f"Condition {owner.id} references unknown parent {parent_id!r}",
                           entity_id=owner.id)

    parents: dict[str, str | None] = {}
    for gid in sorted(group_ids):
        declared = {
            resolve(c.parent_id, c)
            for c in conditions
            if c.group_id == gid and c.parent_id is not None
        }
        if len(declared) > 1:
            raise CompileError(f"Group {gid!r} members disagree on their parent: {sorted(map(str, declared))}")
        parent = declared.pop() if declared else None
        if parent == gid:
            raise CompileError(f"Group {gid!r} is its own parent")
        parents[gid] = parent

    loose_parents = {
        c.id: resolve(c.parent_id, c)
        for c in conditions
        if not c.group_id and c.parent_id is not None
    }
    return parents, loose_parents


def _check_acyclic(parents):
    for start in parents:
        seen = {start}
        current = parents[start]
        while current is not None:
            if current in seen:
                raise CompileError(f"Condition groups form a cycle through {current!r}")
            seen.add(current)
            current = parents.get(current)


def build_condition_tree(conditions: list[Condition]) -> ConditionGroup:
    """Build the explicit tree for a rule's conditions.

    Inside every node, plain conditions come first in display order,
    followed by child groups in group-id order.
    """
    parents, loose_parents = _resolve_parents(conditions)
    _check_acyclic(parents)

    levels = {
        gid: max(c.nesting_level for c in conditions if c.group_id == gid)
        for gid in parents
    }
    for gid, parent in parents.items():
        if parent is not None and levels[gid] > 0 and levels[gid] <= levels[parent]:
            raise CompileError(
                f"Group {gid!r} at nesting level {levels[gid]} is not deeper than its parent {parent!r}"
            )

    def owner(condition):
        return condition.group_id or loose_parents.get(condition.id)

    def leaves_of(gid):
        members = [c for c in conditions if owner(c) == gid]
        return sorted(members, key=lambda c: (c.display_order, c.id))

    def build(gid):
        children = [ConditionLeaf(c) for c in leaves_of(gid)]
        for child_gid in sorted(g for g, p in parents.items() if p == gid):
            children.append(build(child_gid))
        return ConditionGroup(
            group_id=gid,
            children=tuple(children),
            nesting_level=levels.get(gid, 0),
        )

    return build(None)


# ── Evaluation ──────────────────────────────────────────────────────────


def _combine(left, operator, right):
    if operator is LogicalOperator.OR:
        return left or right
    if operator is LogicalOperator.XOR:
        return left != right
    return left and right


def _fold(node, results, failed_required_groups):
    """Left-to-right boolean fold of a node; records failing required groups."""
    if isinstance(node, ConditionLeaf):
        return results[node.condition.id].is_true
    value = None
    previous_operator = None
    for child in node.children:
        child_value = _fold(child, results, failed_required_groups)
        value = child_value if value is None else _combine(value, previous_operator, child_value)
        previous_operator = child.operator
    value = bool(value)
    if not value and node.group_id is not None and node.is_required:
        failed_required_groups.append(node.group_id)
    return value


class ConditionTreeEvaluator:
    """Combines per-condition results into one rule-level decision."""

    def __init__(self, condition_evaluator: ConditionEvaluator | None = None,
                 threshold: float = ACCEPTANCE_THRESHOLD, clock=time.perf_counter) -> None:
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.threshold = threshold
        self._clock = clock

    def evaluate(self, rule_id: str, tree: ConditionGroup, context: DocumentContext,
                 rule_name: str = "") -> RuleEvaluation:
        started = self._clock()
        conditions = tree.leaves()
        if not conditions:
            return RuleEvaluation(
                rule_id=rule_id,
                should_apply=False,
                match_score=0.0,
                confidence=0.0,
                tree_result=False,
                explanation="Rule has no conditions - cannot evaluate",
            )

        # Every condition is evaluated, even after the outcome is known,
        # so the result stays complete for diagnostics.
        results: dict[str, ConditionResult] = {
            c.id: self.condition_evaluator.evaluate(c, context) for c in conditions
        }
        ordered = tuple(results[c.id] for c in conditions)

        failed_groups: list[str] = []
        tree_result = _fold(tree, results, failed_groups)

        required = [r for r in ordered if r.is_required]
        optional = [r for r in ordered if not r.is_required]
        required_passed = sum(1 for r in required if r.is_true)
        optional_passed = sum(1 for r in optional if r.is_true)

        total_weight = sum(r.weight for r in ordered)
        score = (
            sum(r.weight * r.confidence for r in ordered) / total_weight
            if total_weight > 0 else 0.0
        )
        unevaluated = sum(1 for r in optional if not r.evaluated)
        confidence = score * (1.0 - unevaluated / len(optional)) if optional else score

        should_apply = (
            tree_result
            and required_passed == len(required)
            and not failed_groups
            and score >= self.threshold
        )
        lines = [
            f"Rule '{rule_name or rule_id}' evaluation:",
            f"- Required conditions: {required_passed}/{len(required)} passed",
        ]
        if optional:
            lines.append(f"- Optional conditions: {optional_passed}/{len(optional)} passed")
        if failed_groups:
            lines.append(f"- Required groups failed: {', '.join(failed_groups)}")
        lines.extend([
            f"- Condition tree: {'TRUE' if tree_result else 'FALSE'}",
            f"- Overall match score: {score:.1%}",
            f"- Confidence: {confidence:.1%}",
            f"- Decision: {'APPLY RULE' if should_apply else 'DO NOT APPLY'}",
        ])
        elapsed_ms = (self._clock() - started) * 1000.0
        logger.debug("Rule %s apply=%s score=%.3f in %.2fms", rule_id, should_apply, score, elapsed_ms)
        return RuleEvaluation(
            rule_id=rule_id,
            should_apply=should_apply,
            match_score=score,
            confidence=confidence,
            tree_result=tree_result,
            condition_results=ordered,
            required_passed=required_passed,
            required_total=len(required),
            optional_passed=optional_passed,
            optional_total=len(optional),
            explanation="\n".join(lines),
            execution_ms=elapsed_ms,
        )
