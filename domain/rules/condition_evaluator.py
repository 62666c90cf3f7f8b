"""Single-condition evaluation against a document context.

Pure with respect to its inputs: the evaluator keeps no per-call state, so
one instance can serve many documents concurrently.
"""

from __future__ import annotations

import logging
import time

import regex
from rapidfuzz.distance import Levenshtein

from domain.errors import TimeoutExceeded
from domain.extraction.pattern_matcher import DEFAULT_BUDGET_MS, search_with_budget
from domain.models import (
    NUMERIC_OPERATORS,
    Condition,
    ConditionResult,
    ConditionType,
    DocumentContext,
    Operator,
)
from domain.normalization import parse_number
from domain.rules.registry import HandlerRegistry

logger = logging.getLogger(__name__)

# Partial credit given to a failed comparison, scaled by string similarity.
CONTAINS_CREDIT = 0.5
AFFIX_CREDIT = 0.7
FAILED_REGEX_CREDIT = 0.1

_CONTEXT_ATTRIBUTES = {
    ConditionType.DOCUMENT_SUPPLIER: "supplier",
    ConditionType.DOCUMENT_TYPE: "document_type",
    ConditionType.TEMPLATE_PATTERN: "template_pattern",
    ConditionType.TEMPLATE_CATEGORY: "template_category",
}


def similarity(actual, expected):
    """Normalized Levenshtein similarity in [0, 1], case-insensitive."""
    if not actual and not expected:
        return 1.0
    if not actual or not expected:
        return 0.0
    return Levenshtein.normalized_similarity(actual.lower(), expected.lower())


def resolve_actual(condition: Condition, context: DocumentContext) -> str | None:
    """Value of the context that *condition* inspects, or None when absent."""
    attribute = _CONTEXT_ATTRIBUTES.get(condition.condition_type)
    if attribute is not None:
        return getattr(context, attribute)
    if condition.condition_type is ConditionType.FIELD_EXISTS:
        return "true" if context.has_field(condition.field_name) else "false"
    if condition.condition_type in (ConditionType.FIELD_VALUE, ConditionType.FIELD_RANGE):
        return context.field_value(condition.field_name)
    return None


class ConditionEvaluator:
    """Evaluates one condition and explains the outcome."""

    def __init__(self, registry: HandlerRegistry | None = None,
                 budget_ms: float = DEFAULT_BUDGET_MS, clock=time.perf_counter) -> None:
        self.registry = registry or HandlerRegistry()
        self.budget_ms = budget_ms
        self._clock = clock

    def evaluate(self, condition: Condition, context: DocumentContext) -> ConditionResult:
        started = self._clock()
        if condition.condition_type is ConditionType.CUSTOM or condition.operator is Operator.CUSTOM:
            actual = None
            is_true, confidence, evaluated, note = self._evaluate_custom(condition, context)
        else:
            actual = resolve_actual(condition, context)
            is_true, confidence, evaluated, note = self._compare(condition, actual)
        elapsed_ms = (self._clock() - started) * 1000.0

        status = "PASS" if is_true else "FAIL"
        kind = "required" if condition.is_required else "optional"
        explanation = (
            f"{status} ({kind}) '{condition.field_name}' {condition.operator.value} "
            f"'{condition.value}' (actual: {actual!r}, confidence: {confidence:.0%})"
        )
        if note:
            explanation = f"{explanation}: {note}"
        return ConditionResult(
            condition_id=condition.id,
            is_true=is_true,
            confidence=confidence,
            weight=condition.weight,
            is_required=condition.is_required,
            evaluated=evaluated,
            actual_value=actual,
            expected_value=condition.value,
            operator=condition.operator.value,
            explanation=explanation,
            execution_ms=elapsed_ms,
        )

    # ── Operators ──────────────────────────────────────────────────────

    def _compare(self, condition, actual):
        """Return (is_true, confidence, evaluated, note)."""
        op = condition.operator
        if op is Operator.IS_EMPTY:
            ok = actual is None or not actual.strip()
            return ok, 1.0 if ok else 0.0, True, None
        if op is Operator.IS_NOT_EMPTY:
            ok = actual is not None and bool(actual.strip())
            return ok, 1.0 if ok else 0.0, actual is not None, None
        if actual is None:
            return False, 0.0, False, f"field '{condition.field_name}' not found in document"

        if op in NUMERIC_OPERATORS:
            return self._compare_numbers(op, actual, condition.value)
        if op is Operator.MATCHES:
            return self._matches(actual, condition.value)

        expected = condition.value
        a, e = (actual, expected) if condition.is_case_sensitive else (actual.casefold(), expected.casefold())
        if op is Operator.EQUALS:
            ok = a == e
            return ok, 1.0 if ok else similarity(actual, expected), True, None
        if op is Operator.NOT_EQUALS:
            ok = a != e
            return ok, 1.0 if ok else 0.0, True, None
        if op is Operator.CONTAINS:
            ok = e in a
            return ok, 1.0 if ok else similarity(actual, expected) * CONTAINS_CREDIT, True, None
        if op is Operator.STARTS_WITH:
            ok = a.startswith(e)
            head = actual[: len(expected)]
            return ok, 1.0 if ok else similarity(head, expected) * AFFIX_CREDIT, True, None
        if op is Operator.ENDS_WITH:
            ok = a.endswith(e)
            tail = actual[-len(expected):] if expected else ""
            return ok, 1.0 if ok else similarity(tail, expected) * AFFIX_CREDIT, True, None
        return False, 0.0, False, f"unsupported operator {op.value}"

    @staticmethod
    def _compare_numbers(op, actual, expected):
        left, right = parse_number(actual), parse_number(expected)
        if left is None or right is None:
            return False, 0.0, False, "value is not numeric"
        if op is Operator.GREATER_THAN:
            ok = left > right
        elif op is Operator.LESS_THAN:
            ok = left < right
        elif op is Operator.GREATER_THAN_OR_EQUAL:
            ok = left >= right
        else:
            ok = left <= right
        return ok, 1.0 if ok else 0.0, True, None

    def _matches(self, actual, source):
        try:
            expression = regex.compile(source, regex.IGNORECASE | regex.MULTILINE)
        except regex.error as exc:
            return False, 0.0, False, f"invalid expression: {exc}"
        try:
            ok = search_with_budget(expression, actual, self.budget_ms) is not None
        except TimeoutExceeded as exc:
            logger.warning("Condition expression timed out: %s", exc)
            return False, 0.0, False, str(exc)
        return ok, 1.0 if ok else FAILED_REGEX_CREDIT, True, None

    def _evaluate_custom(self, condition, context):
        handler = self.registry.condition(condition.handler)
        if handler is None:
            return False, 0.0, False, f"custom condition {condition.handler!r} is not registered"
        try:
            outcome = handler(condition, context)
            if isinstance(outcome, tuple):
                ok, confidence = outcome
            else:
                ok, confidence = bool(outcome), 1.0 if outcome else 0.0
            confidence = float(confidence)
        except Exception as exc:
            logger.exception("Custom condition %r failed on condition %s", condition.handler, condition.id)
            return False, 0.0, False, f"custom condition {condition.handler!r} raised {type(exc).__name__}: {exc}"
        return bool(ok), max(0.0, min(1.0, confidence)), True, None
