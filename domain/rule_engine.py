"""Rule engine service — evaluates, selects and applies mapping rules.

A pass has two stages. Evaluation and selection are pure, over an
immutable snapshot of the compiled rules. Commit runs the selected rules'
actions and records outcomes; it is the only stage that writes.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime

from domain.analytics.statistics import rank_rules_by_success
from domain.errors import CompileError
from domain.models import (
    Action,
    ActionBatchResult,
    ActionType,
    Condition,
    ConditionType,
    DocumentContext,
    ExtractedField,
    FieldMapping,
    LogicalOperator,
    Operator,
    OutcomeRecord,
    Rule,
    RuleEngineStatistics,
    RuleEvaluation,
    RuleUsageStatistic,
    SelectionMode,
    utcnow,
)
from domain.ports import CachePort, RuleRepository
from domain.rules.action_executor import ActionExecutor
from domain.rules.compiler import CompiledRule, compile_rule
from domain.rules.condition_evaluator import ConditionEvaluator
from domain.rules.condition_tree import ConditionTreeEvaluator
from domain.rules.registry import HandlerRegistry
from domain.rules.rule_selector import RuleMatch, RuleSelector
from domain.rules.transformations import TransformationRegistry
from domain.settings import EngineSettings

logger = logging.getLogger(__name__)

CACHE_PREFIX = "rules:"


def merge_mappings(mapping_lists) -> list[FieldMapping]:
    """Merge per-rule mappings in rank order; later rules overwrite a shared target."""
    merged: dict[str, FieldMapping] = {}
    for mappings in mapping_lists:
        for mapping in mappings:
            merged[mapping.target_location] = mapping
    return sorted(merged.values(), key=lambda m: (m.display_order, m.target_location))


@dataclass
class ApplyResult:
    """Outcome of one apply_rules pass."""

    mappings: list[FieldMapping] = field(default_factory=list)
    matches: list[RuleMatch] = field(default_factory=list)
    batches: list[ActionBatchResult] = field(default_factory=list)
    outcomes: list[OutcomeRecord] = field(default_factory=list)
    template_id: str | None = None
    needs_review: bool = False
    warnings: list[str] = field(default_factory=list)
    execution_ms: float = 0.0

    @property
    def applied_rule_ids(self) -> list[str]:
        return [m.rule.id for m in self.matches]


@dataclass(frozen=True)
class RuleTestResult:
    """Preview of a rule against one document; nothing is committed."""

    evaluation: RuleEvaluation
    batch: ActionBatchResult | None = None

    @property
    def mappings(self) -> list[FieldMapping]:
        return list(self.batch.mappings) if self.batch else []


def _statistics_from_dict(data: dict) -> RuleEngineStatistics:
    """Rebuild statistics from their cached (possibly JSON-decoded) form."""
    top = []
    for row in data.get("top_rules", []):
        last_used = row.get("last_used")
        if isinstance(last_used, str):
            last_used = datetime.fromisoformat(last_used)
        top.append(RuleUsageStatistic(**{**row, "last_used": last_used}))
    return RuleEngineStatistics(
        total_active_rules=data["total_active_rules"],
        total_rule_applications=data["total_rule_applications"],
        overall_success_rate=data["overall_success_rate"],
        average_execution_ms=data["average_execution_ms"],
        top_rules=tuple(top),
    )


class RuleEngine:
    """Facade over rule storage, selection, action execution and scoring."""

    def __init__(self, repository: RuleRepository, cache: CachePort | None = None,
                 settings: EngineSettings | None = None, registry: HandlerRegistry | None = None,
                 clock=time.perf_counter) -> None:
        self.repository = repository
        self.cache = cache
        self.settings = settings or EngineSettings()
        self.registry = registry or HandlerRegistry()
        self.transformations = TransformationRegistry(self.registry)
        condition_evaluator = ConditionEvaluator(self.registry, budget_ms=self.settings.match_timeout_ms)
        self.selector = RuleSelector(
            ConditionTreeEvaluator(condition_evaluator, threshold=self.settings.acceptance_threshold)
        )
        self.executor = ActionExecutor(condition_evaluator, self.transformations, self.registry)
        self._clock = clock
        self._timing_lock = threading.Lock()
        self._evaluation_ms = 0.0
        self._evaluations = 0

    # ── Snapshot ───────────────────────────────────────────────────────

    def compile(self, rule: Rule) -> CompiledRule:
        return compile_rule(rule, self.registry, self.transformations)

    def snapshot(self) -> list[CompiledRule]:
        """Compile every active rule into an immutable view (copy-on-read)."""
        compiled = []
        for rule in self.repository.list_active():
            try:
                compiled.append(self.compile(rule))
            except CompileError:
                logger.exception("Stored rule %s (%s) no longer compiles; skipped", rule.id, rule.name)
        return compiled

    def _track(self, evaluations):
        with self._timing_lock:
            for evaluation in evaluations:
                self._evaluation_ms += evaluation.execution_ms
                self._evaluations += 1

    # ── Evaluation ─────────────────────────────────────────────────────

    def evaluate_rule(self, rule: Rule | CompiledRule, context: DocumentContext) -> RuleEvaluation:
        compiled = rule if isinstance(rule, CompiledRule) else self.compile(rule)
        evaluation = self.selector.evaluate(compiled, context)
        self._track([evaluation])
        return evaluation

    def find_matching_rules(self, context: DocumentContext,
                            mode: SelectionMode | None = None) -> list[RuleMatch]:
        matches = self.selector.select(self.snapshot(), context, mode or self.settings.selection_mode)
        self._track(m.evaluation for m in matches)
        return matches

    def apply_rules(self, context: DocumentContext, extracted_fields: list[ExtractedField],
                    template_id: str | None = None, mode: SelectionMode | None = None,
                    deadline_ms: float | None = None) -> ApplyResult:
        """Select the applicable rules and commit their actions.

        Raises CycleDetected if a rule's actions loop; nothing is committed
        in that case. When *deadline_ms* elapses the pass is abandoned
        before commit and flagged for review.
        """
        started = self._clock()
        result = ApplyResult(template_id=template_id)

        def elapsed():
            return (self._clock() - started) * 1000.0

        enriched = context.with_fields(extracted_fields)
        matches = self.selector.select(self.snapshot(), enriched, mode or self.settings.selection_mode)
        self._track(m.evaluation for m in matches)
        if deadline_ms is not None and elapsed() > deadline_ms:
            return self._abandon(result, elapsed(), "deadline exceeded during rule selection")

        batches = []
        for match in matches:
            batches.append(self.executor.apply(list(match.rule.actions), extracted_fields,
                                               enriched, rule_id=match.rule.id))
            if deadline_ms is not None and elapsed() > deadline_ms:
                return self._abandon(result, elapsed(), "deadline exceeded during action execution")

        for batch in batches:
            result.warnings.extend(batch.warnings)
            outcome = self.repository.record_outcome(batch.rule_id, batch.succeeded,
                                                     self.settings.smoothing_alpha)
            if outcome is not None:
                result.outcomes.append(outcome)
            if not batch.succeeded:
                result.needs_review = True
        if self.cache is not None and batches:
            self.cache.invalidate(CACHE_PREFIX)

        result.matches = matches
        result.batches = batches
        result.mappings = merge_mappings(batch.mappings for batch in batches)
        result.execution_ms = elapsed()
        if not matches:
            result.warnings.append("No applicable rule")
        logger.info("Applied %d rule(s) to template %s: %d mapping(s) in %.1fms",
                    len(matches), template_id, len(result.mappings), result.execution_ms)
        return result

    @staticmethod
    def _abandon(result, elapsed_ms, reason):
        logger.warning("Rule pass abandoned: %s (%.1fms)", reason, elapsed_ms)
        result.needs_review = True
        result.warnings.append(reason)
        result.execution_ms = elapsed_ms
        return result

    def test_rule(self, rule: Rule, context: DocumentContext,
                  extracted_fields: list[ExtractedField] | None = None) -> RuleTestResult:
        """Evaluate *rule* and preview its mappings without recording anything."""
        fields = extracted_fields or []
        compiled = self.compile(rule)
        enriched = context.with_fields(fields)
        evaluation = self.selector.evaluate(compiled, enriched)
        if not evaluation.should_apply:
            return RuleTestResult(evaluation=evaluation)
        batch = self.executor.apply(list(compiled.actions), fields, enriched, rule_id=compiled.id)
        return RuleTestResult(evaluation=evaluation, batch=batch)

    # ── Authoring ──────────────────────────────────────────────────────

    def save_rule(self, rule: Rule) -> Rule:
        """Compile, then persist. Malformed rules are rejected before storage."""
        self.compile(rule)
        rule.last_modified = utcnow()
        saved = self.repository.save(rule)
        self._invalidate()
        logger.info("Rule %s (%s) saved", saved.id, saved.name)
        return saved

    def create_rule_from_mappings(self, name: str, description: str, context: DocumentContext,
                                  mappings: list[FieldMapping], priority: int = 100) -> Rule:
        """Capture a user's manual mappings as a rule keyed on the document context."""
        conditions = []
        for condition_type, value in (
            (ConditionType.DOCUMENT_SUPPLIER, context.supplier),
            (ConditionType.DOCUMENT_TYPE, context.document_type),
            (ConditionType.TEMPLATE_PATTERN, context.template_pattern),
        ):
            if value:
                conditions.append(Condition(
                    condition_type=condition_type,
                    field_name=condition_type.value,
                    operator=Operator.EQUALS,
                    value=value,
                    logical_operator=LogicalOperator.AND,
                    display_order=len(conditions),
                ))
        actions = [
            Action(
                action_type=ActionType.MAP_FIELD,
                source_field_name=m.field_name,
                target_location=m.target_location,
                target_location_type=m.location_type,
                is_required=m.is_required,
                display_order=m.display_order if m.display_order else index,
                description=m.description or None,
            )
            for index, m in enumerate(mappings)
        ]
        rule = Rule(name=name, description=description, priority=priority,
                    conditions=conditions, actions=actions)
        return self.save_rule(rule)

    def _update(self, rule_id, change, message):
        rule = self.repository.get(rule_id)
        if rule is None:
            return False
        change(rule)
        rule.last_modified = utcnow()
        self.repository.save(rule)
        self._invalidate()
        logger.info("Rule %s %s", rule_id, message)
        return True

    def activate_rule(self, rule_id: str) -> bool:
        return self._update(rule_id, lambda r: setattr(r, "is_active", True), "activated")

    def deactivate_rule(self, rule_id: str) -> bool:
        return self._update(rule_id, lambda r: setattr(r, "is_active", False), "deactivated")

    def toggle_rule(self, rule_id: str) -> bool:
        return self._update(rule_id, lambda r: setattr(r, "is_active", not r.is_active), "toggled")

    def update_rule_priority(self, rule_id: str, priority: int) -> bool:
        return self._update(rule_id, lambda r: setattr(r, "priority", priority), f"priority set to {priority}")

    def delete_rule(self, rule_id: str) -> bool:
        deleted = self.repository.delete(rule_id)
        if deleted:
            self._invalidate()
            logger.info("Rule %s deleted", rule_id)
        return deleted

    # ── Outcomes & statistics ──────────────────────────────────────────

    def record_rule_outcome(self, rule_id: str, success: bool) -> OutcomeRecord | None:
        record = self.repository.record_outcome(rule_id, success, self.settings.smoothing_alpha)
        self._invalidate()
        return record

    def _invalidate(self):
        if self.cache is not None:
            self.cache.invalidate(CACHE_PREFIX)

    def statistics(self, top_n: int | None = None) -> RuleEngineStatistics:
        top_n = top_n or self.settings.top_rules
        key = f"{CACHE_PREFIX}statistics:{top_n}"
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return _statistics_from_dict(cached)

        rules = self.repository.list_all()
        active = [r for r in rules if r.is_active]
        applications = sum(r.usage_count for r in rules)
        successes = sum(r.success_count for r in rules)
        with self._timing_lock:
            average_ms = self._evaluation_ms / self._evaluations if self._evaluations else 0.0
        stats = RuleEngineStatistics(
            total_active_rules=len(active),
            total_rule_applications=applications,
            overall_success_rate=successes / applications if applications else 0.0,
            average_execution_ms=average_ms,
            top_rules=tuple(rank_rules_by_success(rules, limit=top_n)),
        )
        if self.cache is not None:
            self.cache.set(key, asdict(stats))
        return stats
