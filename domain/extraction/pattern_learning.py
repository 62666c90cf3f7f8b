"""Pattern learning service — teaches, applies and maintains extraction patterns.

Only stdlib, ``regex``, ``jsonschema`` and domain imports allowed.
Persistence goes through the PatternRepository port.
"""

from __future__ import annotations

import json
import logging
from collections import Counter

import jsonschema
import regex

from domain.errors import CompileError
from domain.extraction.pattern_matcher import compile_pattern, extract
from domain.models import (
    ExtractedField,
    FieldType,
    Pattern,
    PatternImportResult,
    PatternLearningResult,
    PatternLearningStatistics,
    PatternLearningType,
    PatternMatchExample,
    PatternMergeStrategy,
    PatternRecommendation,
    PatternTestResult,
    new_id,
    utcnow,
)
from domain.normalization import parse_date, parse_number
from domain.ports import PatternRepository
from domain.serialization import dumps, pattern_from_dict
from domain.settings import EngineSettings

logger = logging.getLogger(__name__)

APPROVE_AT = 0.8
REVIEW_AT = 0.5

_LABEL_TRIM = " \t:#-=|"
_CURRENCY_SYMBOLS = "$€£¥"


# ── Pattern derivation ──────────────────────────────────────────────────


def value_shape(value):
    """Regex fragment matching strings shaped like *value*.

    Digit runs keep their length when the value is all digits (account
    numbers); otherwise runs of digits, letters and whitespace generalize.
    """
    all_digits = value.isdigit()
    parts = []
    for run in regex.finditer(r"\d+|[^\W\d_]+|\s+|.", value):
        text = run.group(0)
        if text.isdigit():
            parts.append(rf"\d{{{len(text)}}}" if all_digits else r"\d+")
        elif text.isspace():
            parts.append(r"\s+")
        elif text.isalpha():
            parts.append(r"[^\W\d_]+")
        else:
            parts.append(regex.escape(text))
    return "".join(parts)


def label_expression(label):
    """Regex fragment for the words preceding a value on its line."""
    words = label.split()
    return r"\s*".join(regex.escape(w) for w in words)


def infer_field_type(value):
    stripped = value.strip()
    if stripped.isdigit() and len(stripped) >= 6:
        return FieldType.ACCOUNT_NUMBER
    if stripped.endswith("%") and parse_number(stripped) is not None:
        return FieldType.PERCENTAGE
    if parse_number(stripped) is not None:
        if stripped[:1] in _CURRENCY_SYMBOLS or regex.search(r"\.\d{2}$", stripped):
            return FieldType.CURRENCY
        return FieldType.NUMBER
    if parse_date(stripped) is not None:
        return FieldType.DATE
    if regex.fullmatch(r"[^@\s]+@[^@\s]+\.\w+", stripped):
        return FieldType.EMAIL
    return FieldType.TEXT


def derive_expression(text, value):
    """Build ``label :? (value-shape)`` from where *value* sits in *text*.

    Returns None when the value does not occur in the text.
    """
    position = text.find(value)
    if position < 0:
        position = text.lower().find(value.lower())
    if position < 0:
        return None
    line_start = text.rfind("\n", 0, position) + 1
    label = text[line_start:position].strip(_LABEL_TRIM)
    shape = f"({value_shape(value)})"
    if not label:
        return shape
    return rf"{label_expression(label)}\s*[:#\-=]?\s*{shape}"


def same_value(left, right):
    if left is None or right is None:
        return False
    if left.strip().casefold() == right.strip().casefold():
        return True
    a, b = parse_number(left), parse_number(right)
    return a is not None and a == b


def recommend(success_rate):
    if success_rate >= APPROVE_AT:
        return PatternRecommendation.APPROVE, "Pattern matched consistently"
    if success_rate >= REVIEW_AT:
        return PatternRecommendation.REVIEW, "Pattern matched most samples; review the misses"
    if success_rate > 0:
        return PatternRecommendation.IMPROVE, "Pattern matched only a few samples"
    return PatternRecommendation.REJECT, "Pattern matched none of the samples"


# ── Service ─────────────────────────────────────────────────────────────


class PatternLearningService:
    """Applies stored patterns to text and learns new ones from examples."""

    def __init__(self, repository: PatternRepository, settings: EngineSettings | None = None) -> None:
        self.repository = repository
        self.settings = settings or EngineSettings()

    def _extract(self, pattern, text):
        return extract(
            compile_pattern(pattern),
            text,
            budget_ms=self.settings.match_timeout_ms,
            multiple_match_penalty=self.settings.multiple_match_penalty,
            type_mismatch_penalty=self.settings.type_mismatch_penalty,
        )

    def _candidates(self, supplier, field_name):
        patterns = [p for p in self.repository.list_active(supplier) if p.field_name == field_name]
        return sorted(patterns, key=lambda p: (-p.priority, -p.success_rate, p.id))

    # ── Lifecycle ──────────────────────────────────────────────────────

    def add_pattern(self, pattern: Pattern) -> Pattern:
        """Compile, then persist. A malformed pattern never reaches storage."""
        compile_pattern(pattern)
        saved = self.repository.save(pattern)
        logger.info("Pattern %s added for %s", saved.id, saved)
        return saved

    def deactivate_pattern(self, pattern_id: str) -> bool:
        pattern = self.repository.get(pattern_id)
        if pattern is None:
            return False
        pattern.is_active = False
        pattern.last_modified = utcnow()
        self.repository.save(pattern)
        logger.info("Pattern %s deactivated", pattern_id)
        return True

    def patterns_for_supplier(self, supplier: str) -> list[Pattern]:
        return [p for p in self.repository.list_all() if p.supplier == supplier]

    def patterns_for_field(self, field_name: str) -> list[Pattern]:
        return self.repository.list_by_field(field_name)

    def accuracy(self, supplier: str, field_name: str) -> float:
        """Mean success rate of the active patterns for one supplier field."""
        patterns = self._candidates(supplier, field_name)
        if not patterns:
            return 0.0
        return sum(p.success_rate for p in patterns) / len(patterns)

    # ── Extraction ─────────────────────────────────────────────────────

    def extract_fields(self, text: str, supplier: str, field_names: list[str] | None = None,
                       record: bool = False) -> list[ExtractedField]:
        """Extract every requested field with the supplier's best pattern.

        Patterns are tried in priority then success-rate order; the first
        result at or above the minimum confidence wins. With *record*, the
        patterns tried get their outcome committed.
        """
        patterns = self.repository.list_active(supplier)
        wanted = field_names or sorted({p.field_name for p in patterns})
        extracted = []
        for field_name in wanted:
            tried = []
            winner = None
            for pattern in self._candidates(supplier, field_name):
                result = self._extract(pattern, text)
                if result.success and result.confidence >= self.settings.min_extraction_confidence:
                    winner = (pattern, result)
                    break
                tried.append(pattern)
            if record:
                for pattern in tried:
                    self.repository.record_outcome(pattern.id, False, self.settings.smoothing_alpha)
                if winner:
                    self.repository.record_outcome(winner[0].id, True, self.settings.smoothing_alpha)
            if winner is None:
                logger.debug("No pattern extracted %s for %s", field_name, supplier)
                continue
            pattern, result = winner
            extracted.append(ExtractedField(
                field_name=field_name,
                value=result.value,
                confidence=result.confidence,
                source="pattern",
                field_type=pattern.field_type,
                pattern_id=pattern.id,
            ))
        return extracted

    # ── Learning ───────────────────────────────────────────────────────

    def learn_from_example(self, supplier: str, field_name: str, text: str, value: str,
                           field_type: FieldType | None = None) -> PatternLearningResult:
        """Teach where *value* sits in *text*.

        An existing pattern that already extracts the value is reinforced;
        otherwise a new, higher-priority pattern is derived and stored.
        """
        previous = self.accuracy(supplier, field_name)
        existing = self._candidates(supplier, field_name)
        for pattern in existing:
            result = self._extract(pattern, text)
            if result.success and same_value(result.value, value):
                self.repository.record_outcome(pattern.id, True, self.settings.smoothing_alpha)
                return PatternLearningResult(
                    success=True,
                    learning_type=PatternLearningType.PATTERN_REINFORCED,
                    pattern=self.repository.get(pattern.id),
                    previous_accuracy=previous,
                    new_accuracy=self.accuracy(supplier, field_name),
                    explanation=f"Existing pattern {pattern.id} already extracts {value!r}",
                )

        expression = derive_expression(text, value)
        if expression is None:
            return PatternLearningResult(
                success=False,
                previous_accuracy=previous,
                new_accuracy=previous,
                explanation=f"Value {value!r} does not occur in the text",
                requires_review=True,
            )

        pattern = Pattern(
            supplier=supplier,
            field_name=field_name,
            regex_pattern=expression,
            field_type=field_type or infer_field_type(value),
            priority=max((p.priority for p in existing), default=0) + 1,
            description=f"Learned from example {value!r}",
            example_match=value,
        )
        warnings = []
        check = self._extract(pattern, text)
        if not (check.success and same_value(check.value, value)):
            warnings.append(f"Derived pattern extracts {check.value!r} instead of {value!r}")
        self.add_pattern(pattern)
        logger.info("Learned pattern %s for %s: %s", pattern.id, pattern, expression)
        return PatternLearningResult(
            success=True,
            learning_type=PatternLearningType.NEW_PATTERN,
            pattern=pattern,
            previous_accuracy=previous,
            new_accuracy=self.accuracy(supplier, field_name),
            explanation=f"New pattern {expression!r}",
            warnings=tuple(warnings),
            requires_review=bool(warnings),
        )

    def learn_from_correction(self, supplier: str, field_name: str, text: str,
                              original_value: str | None, correct_value: str) -> PatternLearningResult:
        """Penalize patterns that produced *original_value*, then learn *correct_value*."""
        previous = self.accuracy(supplier, field_name)
        penalized = []
        for pattern in self._candidates(supplier, field_name):
            result = self._extract(pattern, text)
            if result.success and same_value(result.value, original_value):
                self.repository.record_outcome(pattern.id, False, self.settings.smoothing_alpha)
                penalized.append(pattern.id)

        learned = self.learn_from_example(supplier, field_name, text, correct_value)
        logger.info("Correction for %s.%s: %d pattern(s) penalized", supplier, field_name, len(penalized))
        learning_type = learned.learning_type
        if learning_type is PatternLearningType.NEW_PATTERN:
            learning_type = PatternLearningType.PATTERN_CORRECTED
        return PatternLearningResult(
            success=learned.success,
            learning_type=learning_type,
            pattern=learned.pattern,
            previous_accuracy=previous,
            new_accuracy=self.accuracy(supplier, field_name),
            explanation=f"{learned.explanation}; penalized {len(penalized)} pattern(s)",
            warnings=learned.warnings,
            requires_review=learned.requires_review,
        )

    def learn_from_success(self, supplier: str, field_name: str, text: str,
                           extracted_value: str, pattern_id: str) -> PatternLearningResult:
        """Record a user confirmation for the pattern that produced a value."""
        pattern = self.repository.get(pattern_id)
        if pattern is None:
            return PatternLearningResult(success=False, explanation=f"Unknown pattern {pattern_id}")
        outcome = self.repository.record_outcome(pattern_id, True, self.settings.smoothing_alpha)
        return PatternLearningResult(
            success=True,
            learning_type=PatternLearningType.PATTERN_REINFORCED,
            pattern=self.repository.get(pattern_id),
            previous_accuracy=outcome.previous_rate if outcome else pattern.success_rate,
            new_accuracy=outcome.new_rate if outcome else pattern.success_rate,
            explanation=f"Confirmed {extracted_value!r} for {supplier}.{field_name}",
        )

    # ── Evaluation ─────────────────────────────────────────────────────

    def test_pattern(self, pattern: Pattern, texts: list[str]) -> PatternTestResult:
        """Dry-run *pattern* over sample texts; nothing is recorded."""
        try:
            compiled = compile_pattern(pattern)
        except CompileError as exc:
            return PatternTestResult(
                total_tests=len(texts),
                successful_matches=0,
                average_confidence=0.0,
                recommendation=PatternRecommendation.REJECT,
                recommendation_reason=str(exc),
            )

        hits, misses = [], []
        for text in texts:
            result = extract(compiled, text, budget_ms=self.settings.match_timeout_ms)
            example = PatternMatchExample(
                source_text=text,
                matched=result.success,
                extracted_value=result.value,
                confidence=result.confidence,
                error_message=None if result.success else result.explanation,
            )
            (hits if result.success else misses).append(example)

        rate = len(hits) / len(texts) if texts else 0.0
        recommendation, reason = recommend(rate)
        return PatternTestResult(
            total_tests=len(texts),
            successful_matches=len(hits),
            average_confidence=sum(e.confidence for e in hits) / len(hits) if hits else 0.0,
            recommendation=recommendation,
            recommendation_reason=reason,
            success_examples=tuple(hits),
            failure_examples=tuple(misses),
        )

    def statistics(self) -> PatternLearningStatistics:
        patterns = self.repository.list_all()
        active = [p for p in patterns if p.is_active]
        return PatternLearningStatistics(
            total_patterns=len(patterns),
            active_patterns=len(active),
            suppliers_with_patterns=len({p.supplier for p in active}),
            average_accuracy=sum(p.success_rate for p in active) / len(active) if active else 0.0,
            patterns_by_supplier=dict(Counter(p.supplier for p in active)),
            patterns_by_field=dict(Counter(p.field_name for p in active)),
        )

    # ── Import / export ────────────────────────────────────────────────

    def export_patterns(self, supplier: str | None = None) -> str:
        patterns = [p for p in self.repository.list_all() if supplier is None or p.supplier == supplier]
        return dumps(sorted(patterns, key=lambda p: (p.supplier, p.field_name, p.id)))

    def _find_existing(self, pattern):
        found = self.repository.get(pattern.id)
        if found is not None:
            return found
        for candidate in self.repository.list_all():
            if (candidate.supplier, candidate.field_name, candidate.regex_pattern) == (
                pattern.supplier, pattern.field_name, pattern.regex_pattern
            ):
                return candidate
        return None

    def import_patterns(self, patterns_json: str,
                        strategy: PatternMergeStrategy = PatternMergeStrategy.SKIP_EXISTING) -> PatternImportResult:
        """Import exported patterns, resolving conflicts with *strategy*."""
        outcome = PatternImportResult()
        try:
            records = json.loads(patterns_json)
        except ValueError as exc:
            outcome.errors.append(f"Invalid JSON: {exc}")
            outcome.failed_patterns = 1
            return outcome

        if not isinstance(records, list):
            outcome.errors.append("Invalid document: expected a list of patterns")
            outcome.failed_patterns = 1
            return outcome

        outcome.total_patterns = len(records)
        for index, record in enumerate(records):
            label = record.get("id") if isinstance(record, dict) and record.get("id") else f"#{index}"
            try:
                incoming = pattern_from_dict(record)
                compile_pattern(incoming)
            except jsonschema.ValidationError as exc:
                outcome.failed_patterns += 1
                outcome.errors.append(f"{label}: {exc.message}")
                continue
            except (CompileError, ValueError) as exc:
                outcome.failed_patterns += 1
                outcome.errors.append(f"{label}: {exc}")
                continue

            existing = self._find_existing(incoming)
            if existing is not None:
                if strategy is PatternMergeStrategy.SKIP_EXISTING or (
                    strategy is PatternMergeStrategy.MERGE_BY_ACCURACY
                    and incoming.success_rate <= existing.success_rate
                ):
                    outcome.skipped_patterns += 1
                    outcome.messages.append(f"Skipped {incoming} (already present)")
                    continue
                if strategy is PatternMergeStrategy.CREATE_NEW_VERSION:
                    incoming.id = new_id()
                    incoming.created_at = utcnow()
                else:
                    incoming.id = existing.id

            self.repository.save(incoming)
            outcome.imported_patterns += 1
            outcome.messages.append(f"Imported {incoming}")
        logger.info("Imported %d/%d patterns (%s)", outcome.imported_patterns,
                    outcome.total_patterns, strategy.value)
        return outcome
