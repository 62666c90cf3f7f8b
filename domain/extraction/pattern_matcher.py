"""Pattern compilation and confidence-scored extraction.

Matching goes through the ``regex`` package because it accepts a per-call
``timeout``; a user-taught expression with catastrophic backtracking turns
into a logged miss instead of a hung worker.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import regex

from domain.errors import CompileError, TimeoutExceeded
from domain.models import ExtractionResult, FieldType, Pattern
from domain.normalization import parse_number

logger = logging.getLogger(__name__)

DEFAULT_BUDGET_MS = 250.0
MULTIPLE_MATCH_PENALTY = 0.8
TYPE_MISMATCH_PENALTY = 0.5

_NUMERIC_TYPES = frozenset({FieldType.NUMBER, FieldType.CURRENCY, FieldType.PERCENTAGE})


@dataclass(frozen=True)
class CompiledPattern:
    """Immutable snapshot of a Pattern plus its compiled expression."""

    pattern_id: str
    supplier: str
    field_name: str
    source: str
    expression: regex.Pattern
    field_type: FieldType
    prior: float
    priority: int


def compile_expression(source, flags=0, entity_id=None):
    """Compile *source* or raise CompileError."""
    if not source or not source.strip():
        raise CompileError("Empty regular expression", entity_id=entity_id)
    try:
        return regex.compile(source, flags)
    except regex.error as exc:
        raise CompileError(f"Invalid regular expression {source!r}: {exc}", entity_id=entity_id) from exc


def compile_pattern(pattern: Pattern) -> CompiledPattern:
    """Validate and compile a pattern eagerly; malformed input fails fast."""
    expression = compile_expression(pattern.regex_pattern, regex.MULTILINE, entity_id=pattern.id)
    return CompiledPattern(
        pattern_id=pattern.id,
        supplier=pattern.supplier,
        field_name=pattern.field_name,
        source=pattern.regex_pattern,
        expression=expression,
        field_type=pattern.field_type,
        prior=pattern.success_rate,
        priority=pattern.priority,
    )


def search_with_budget(expression, text, budget_ms=DEFAULT_BUDGET_MS, pos=0):
    """Run ``expression.search`` with a time budget; raises TimeoutExceeded."""
    try:
        return expression.search(text, pos, timeout=budget_ms / 1000.0)
    except TimeoutError as exc:
        raise TimeoutExceeded(expression.pattern, budget_ms) from exc


def _captured_value(match):
    if "value" in match.re.groupindex:
        value = match.group("value")
    elif match.re.groups:
        value = match.group(1)
    else:
        value = match.group(0)
    return value.strip() if value else None


def _remaining_ms(compiled, deadline, budget_ms):
    left = (deadline - time.monotonic()) * 1000.0
    if left <= 0:
        raise TimeoutExceeded(compiled.source, budget_ms)
    return left


def _next_distinct_candidate(compiled, text, match, deadline, budget_ms):
    """Look for a second match whose value differs from the first.

    Shares the extraction's deadline; scanning past it is a timeout.
    """
    first_value = _captured_value(match)
    pos = match.end() if match.end() > match.start() else match.end() + 1
    while pos <= len(text):
        left = _remaining_ms(compiled, deadline, budget_ms)
        other = search_with_budget(compiled.expression, text, left, pos=pos)
        if other is None:
            return False
        value = _captured_value(other)
        if value and value != first_value:
            return True
        pos = other.end() if other.end() > other.start() else other.end() + 1
    return False


def extract(
    compiled: CompiledPattern,
    text: str,
    budget_ms: float = DEFAULT_BUDGET_MS,
    multiple_match_penalty: float = MULTIPLE_MATCH_PENALTY,
    type_mismatch_penalty: float = TYPE_MISMATCH_PENALTY,
) -> ExtractionResult:
    """Apply a compiled pattern to *text*.

    Deterministic and side-effect free: the pattern's stored success rate is
    only read (as the confidence prior), never written. *budget_ms* bounds
    the whole attempt, candidate scan included.
    """
    if not text:
        return ExtractionResult(
            success=False,
            pattern_id=compiled.pattern_id,
            field_name=compiled.field_name,
            explanation="Empty text",
        )
    deadline = time.monotonic() + budget_ms / 1000.0
    try:
        match = search_with_budget(compiled.expression, text, budget_ms)
        if match is None or not _captured_value(match):
            return ExtractionResult(
                success=False,
                pattern_id=compiled.pattern_id,
                field_name=compiled.field_name,
                explanation="No match",
            )
        value = _captured_value(match)
        several = _next_distinct_candidate(compiled, text, match, deadline, budget_ms)
    except TimeoutExceeded as exc:
        logger.warning("Pattern %s (%s.%s) timed out: %s",
                       compiled.pattern_id, compiled.supplier, compiled.field_name, exc)
        return ExtractionResult(
            success=False,
            pattern_id=compiled.pattern_id,
            field_name=compiled.field_name,
            timed_out=True,
            explanation=str(exc),
        )

    confidence = compiled.prior
    notes = [f"prior {compiled.prior:.2f}"]
    if several:
        confidence *= multiple_match_penalty
        notes.append("several distinct candidates, first kept")
    if compiled.field_type in _NUMERIC_TYPES and parse_number(value) is None:
        confidence *= type_mismatch_penalty
        notes.append(f"value is not a {compiled.field_type.value}")
    return ExtractionResult(
        success=True,
        value=value,
        confidence=max(0.0, min(1.0, confidence)),
        pattern_id=compiled.pattern_id,
        field_name=compiled.field_name,
        candidates=2 if several else 1,
        explanation="; ".join(notes),
    )
