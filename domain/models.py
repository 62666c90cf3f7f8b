"""Domain models — pure Python, zero external dependencies.

Only stdlib imports allowed: dataclasses, datetime, enum, uuid.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FieldType(Enum):
    """Semantic type a pattern is expected to extract."""

    TEXT = "text"
    NUMBER = "number"
    CURRENCY = "currency"
    DATE = "date"
    PHONE_NUMBER = "phone_number"
    EMAIL = "email"
    ACCOUNT_NUMBER = "account_number"
    ADDRESS = "address"
    PERCENTAGE = "percentage"
    URL = "url"
    TAX_ID = "tax_id"
    BOOLEAN = "boolean"


class ConditionType(Enum):
    """What part of the document context a condition inspects."""

    DOCUMENT_SUPPLIER = "DocumentSupplier"
    DOCUMENT_TYPE = "DocumentType"
    TEMPLATE_PATTERN = "TemplatePattern"
    TEMPLATE_CATEGORY = "TemplateCategory"
    FIELD_EXISTS = "FieldExists"
    FIELD_VALUE = "FieldValue"
    FIELD_RANGE = "FieldRange"
    CUSTOM = "Custom"


class Operator(Enum):
    """Comparison operator applied by a condition."""

    EQUALS = "Equals"
    NOT_EQUALS = "NotEquals"
    CONTAINS = "Contains"
    STARTS_WITH = "StartsWith"
    ENDS_WITH = "EndsWith"
    GREATER_THAN = "GreaterThan"
    LESS_THAN = "LessThan"
    GREATER_THAN_OR_EQUAL = "GreaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "LessThanOrEqual"
    MATCHES = "Matches"
    IS_EMPTY = "IsEmpty"
    IS_NOT_EMPTY = "IsNotEmpty"
    CUSTOM = "Custom"


NUMERIC_OPERATORS = frozenset({
    Operator.GREATER_THAN,
    Operator.LESS_THAN,
    Operator.GREATER_THAN_OR_EQUAL,
    Operator.LESS_THAN_OR_EQUAL,
})


class LogicalOperator(Enum):
    """How a condition (or group) combines with the next one."""

    AND = "AND"
    OR = "OR"
    XOR = "XOR"


class ActionType(Enum):
    """Kind of mapping instruction."""

    MAP_FIELD = "MapField"
    TRANSFORM_FIELD = "TransformField"
    COMBINE_FIELDS = "CombineFields"
    SPLIT_FIELD = "SplitField"
    CALCULATE_FIELD = "CalculateField"
    CONDITIONAL_MAP = "ConditionalMap"
    CUSTOM = "Custom"


class LocationType(Enum):
    """Kind of destination location inside a template."""

    EXCEL_CELL = "ExcelCell"
    PDF_FIELD = "PdfField"
    NAMED_RANGE = "NamedRange"
    JSON_PATH = "JsonPath"
    PLACEHOLDER = "Placeholder"


class SelectionMode(Enum):
    """How many applicable rules the selector hands to the executor."""

    BEST_ONLY = "best_only"
    ALL_APPLICABLE = "all_applicable"


class PatternRecommendation(Enum):
    APPROVE = "approve"
    REVIEW = "review"
    IMPROVE = "improve"
    REJECT = "reject"


class PatternLearningType(Enum):
    NEW_PATTERN = "new_pattern"
    PATTERN_REINFORCED = "pattern_reinforced"
    PATTERN_CORRECTED = "pattern_corrected"


class PatternMergeStrategy(Enum):
    """Conflict policy when importing patterns that already exist."""

    SKIP_EXISTING = "skip_existing"
    OVERWRITE_EXISTING = "overwrite_existing"
    MERGE_BY_ACCURACY = "merge_by_accuracy"
    CREATE_NEW_VERSION = "create_new_version"


# ── Entities ────────────────────────────────────────────────────────────


@dataclass
class Pattern:
    """A learned regular expression extracting one field for one supplier."""

    supplier: str
    field_name: str
    regex_pattern: str
    field_type: FieldType = FieldType.TEXT
    priority: int = 0
    usage_count: int = 0
    success_count: int = 0
    success_rate: float = 1.0
    description: str = ""
    example_match: str | None = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    last_modified: datetime | None = None
    last_used: datetime | None = None
    id: str = field(default_factory=new_id)

    @property
    def failure_count(self) -> int:
        return self.usage_count - self.success_count

    def __str__(self) -> str:
        return f"{self.supplier}.{self.field_name}"


@dataclass
class Condition:
    """One boolean test contributing to a rule's applicability."""

    condition_type: ConditionType
    field_name: str
    operator: Operator
    value: str = ""
    is_case_sensitive: bool = False
    logical_operator: LogicalOperator | None = None
    display_order: int = 0
    group_id: str | None = None
    nesting_level: int = 0
    parent_id: str | None = None
    weight: float = 1.0
    is_required: bool = True
    handler: str | None = None
    description: str | None = None
    id: str = field(default_factory=new_id)


@dataclass
class Action:
    """One mapping instruction producing a field → location binding."""

    action_type: ActionType
    source_field_name: str
    target_location: str
    target_location_type: LocationType = LocationType.EXCEL_CELL
    transformation: dict | list | str | None = None
    default_value: str | None = None
    is_required: bool = False
    display_order: int = 0
    output_field: str | None = None
    description: str | None = None
    id: str = field(default_factory=new_id)

    @property
    def source_fields(self) -> list[str]:
        """Source names; multi-source kinds list them comma-separated."""
        return [s.strip() for s in self.source_field_name.split(",") if s.strip()]

    @property
    def published_name(self) -> str:
        return self.output_field or self.target_location


@dataclass
class Rule:
    """A named, prioritized set of conditions and actions.

    The rule owns its conditions and actions by value; they carry no
    reference back to the rule.
    """

    name: str
    description: str = ""
    priority: int = 100
    is_active: bool = True
    conditions: list[Condition] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    usage_count: int = 0
    success_count: int = 0
    success_rate: float = 1.0
    created_at: datetime = field(default_factory=utcnow)
    last_modified: datetime | None = None
    id: str = field(default_factory=new_id)

    @property
    def failure_count(self) -> int:
        return self.usage_count - self.success_count


# ── Inputs from collaborators ───────────────────────────────────────────


@dataclass(frozen=True)
class ExtractedField:
    """A field value produced by the extraction subsystem."""

    field_name: str
    value: str | None
    confidence: float = 1.0
    source: str = "external"
    field_type: FieldType = FieldType.TEXT
    pattern_id: str | None = None


@dataclass(frozen=True)
class DocumentContext:
    """Read-only description of the document being mapped."""

    supplier: str | None = None
    document_type: str | None = None
    template_pattern: str | None = None
    template_category: str | None = None
    available_fields: frozenset[str] = frozenset()
    field_values: dict[str, str] = field(default_factory=dict)
    metadata: dict = field(default_factory=dict)

    def with_fields(self, fields: list[ExtractedField]) -> DocumentContext:
        """Return a copy whose field names/values include *fields*."""
        values = dict(self.field_values)
        for f in fields:
            if f.value is not None:
                values[f.field_name] = f.value
        return DocumentContext(
            supplier=self.supplier,
            document_type=self.document_type,
            template_pattern=self.template_pattern,
            template_category=self.template_category,
            available_fields=frozenset(self.available_fields) | {f.field_name for f in fields},
            field_values=values,
            metadata=dict(self.metadata),
        )

    def field_value(self, name: str) -> str | None:
        """Exact lookup first, then case-insensitive."""
        if name in self.field_values:
            return self.field_values[name]
        folded = name.casefold()
        for key, value in self.field_values.items():
            if key.casefold() == folded:
                return value
        return None

    def has_field(self, name: str) -> bool:
        folded = name.casefold()
        return any(f.casefold() == folded for f in self.available_fields) or (
            self.field_value(name) is not None
        )


# ── Result Value Objects ────────────────────────────────────────────────


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of applying one pattern to one text."""

    success: bool
    value: str | None = None
    confidence: float = 0.0
    pattern_id: str | None = None
    field_name: str | None = None
    candidates: int = 0
    timed_out: bool = False
    explanation: str = ""


@dataclass(frozen=True)
class ConditionResult:
    """Outcome of evaluating one condition."""

    condition_id: str
    is_true: bool
    confidence: float
    weight: float
    is_required: bool
    evaluated: bool = True
    actual_value: str | None = None
    expected_value: str | None = None
    operator: str | None = None
    explanation: str = ""
    execution_ms: float = 0.0


@dataclass(frozen=True)
class RuleEvaluation:
    """Aggregate outcome of evaluating one rule; used for audit, never stored."""

    rule_id: str
    should_apply: bool
    match_score: float
    confidence: float
    tree_result: bool
    condition_results: tuple[ConditionResult, ...] = ()
    required_passed: int = 0
    required_total: int = 0
    optional_passed: int = 0
    optional_total: int = 0
    explanation: str = ""
    execution_ms: float = 0.0

    def scores(self) -> tuple:
        """Everything except wall-clock timings, for reproducibility checks."""
        return (
            self.rule_id,
            self.should_apply,
            self.match_score,
            self.confidence,
            self.tree_result,
            tuple(
                (r.condition_id, r.is_true, r.confidence, r.weight, r.is_required, r.evaluated)
                for r in self.condition_results
            ),
            self.required_passed,
            self.required_total,
            self.optional_passed,
            self.optional_total,
        )


@dataclass(frozen=True)
class FieldMapping:
    """A concrete binding of a field value to a template location."""

    field_name: str
    target_location: str
    location_type: LocationType = LocationType.EXCEL_CELL
    value: str | None = None
    description: str = ""
    format_instructions: str | None = None
    is_required: bool = False
    display_order: int = 0
    rule_id: str | None = None
    action_id: str | None = None


@dataclass(frozen=True)
class ActionFailure:
    """A per-action problem; hard failures mark the batch as failed."""

    action_id: str
    reason: str
    hard: bool = False


@dataclass
class ActionBatchResult:
    """Everything one rule's action list produced."""

    rule_id: str | None = None
    mappings: list[FieldMapping] = field(default_factory=list)
    failures: list[ActionFailure] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    values: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return not any(f.hard for f in self.failures)


@dataclass(frozen=True)
class OutcomeRecord:
    """Before/after view of one adaptive-score update."""

    entity_id: str
    success: bool
    previous_rate: float
    new_rate: float
    usage_count: int
    success_count: int


@dataclass(frozen=True)
class RuleUsageStatistic:
    rule_id: str
    rule_name: str
    usage_count: int
    success_rate: float
    last_used: datetime | None = None


@dataclass(frozen=True)
class RuleEngineStatistics:
    """Aggregate figures for operational dashboards."""

    total_active_rules: int = 0
    total_rule_applications: int = 0
    overall_success_rate: float = 0.0
    average_execution_ms: float = 0.0
    top_rules: tuple[RuleUsageStatistic, ...] = ()


@dataclass(frozen=True)
class PatternLearningStatistics:
    total_patterns: int = 0
    active_patterns: int = 0
    suppliers_with_patterns: int = 0
    average_accuracy: float = 0.0
    patterns_by_supplier: dict[str, int] = field(default_factory=dict)
    patterns_by_field: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class PatternMatchExample:
    source_text: str
    matched: bool
    extracted_value: str | None = None
    confidence: float = 0.0
    error_message: str | None = None


@dataclass(frozen=True)
class PatternTestResult:
    """How a candidate pattern performs on a set of sample texts."""

    total_tests: int
    successful_matches: int
    average_confidence: float
    recommendation: PatternRecommendation
    recommendation_reason: str = ""
    success_examples: tuple[PatternMatchExample, ...] = ()
    failure_examples: tuple[PatternMatchExample, ...] = ()

    @property
    def success_rate(self) -> float:
        return self.successful_matches / self.total_tests if self.total_tests else 0.0


@dataclass(frozen=True)
class PatternLearningResult:
    success: bool
    learning_type: PatternLearningType | None = None
    pattern: Pattern | None = None
    previous_accuracy: float = 0.0
    new_accuracy: float = 0.0
    explanation: str = ""
    warnings: tuple[str, ...] = ()
    requires_review: bool = False

    @property
    def accuracy_improvement(self) -> float:
        return self.new_accuracy - self.previous_accuracy


@dataclass
class PatternImportResult:
    total_patterns: int = 0
    imported_patterns: int = 0
    skipped_patterns: int = 0
    failed_patterns: int = 0
    messages: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_patterns == 0
