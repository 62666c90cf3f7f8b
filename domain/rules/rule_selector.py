"""Rule selection: which compiled rules apply to a document, in what order."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from domain.models import DocumentContext, RuleEvaluation, SelectionMode
from domain.rules.compiler import CompiledRule
from domain.rules.condition_tree import ConditionTreeEvaluator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleMatch:
    rule: CompiledRule
    evaluation: RuleEvaluation


def rank_key(match: RuleMatch):
    """Priority desc, success rate desc, match score desc, rule id asc."""
    return (
        -match.rule.priority,
        -match.rule.success_rate,
        -match.evaluation.match_score,
        match.rule.id,
    )


class RuleSelector:
    """Evaluates every active rule and ranks the ones that apply."""

    def __init__(self, tree_evaluator: ConditionTreeEvaluator | None = None) -> None:
        self.tree_evaluator = tree_evaluator or ConditionTreeEvaluator()

    def evaluate(self, rule: CompiledRule, context: DocumentContext) -> RuleEvaluation:
        return self.tree_evaluator.evaluate(rule.id, rule.tree, context, rule_name=rule.name)

    def select(self, rules: list[CompiledRule], context: DocumentContext,
               mode: SelectionMode = SelectionMode.BEST_ONLY) -> list[RuleMatch]:
        matches = []
        for rule in rules:
            if not rule.is_active:
                continue
            evaluation = self.evaluate(rule, context)
            if evaluation.should_apply:
                matches.append(RuleMatch(rule, evaluation))
        matches.sort(key=rank_key)
        logger.debug("%d of %d rules apply (mode=%s)", len(matches), len(rules), mode.value)
        if mode is SelectionMode.BEST_ONLY:
            return matches[:1]
        return matches
