"""Tests for domain models — pure Python, no external dependencies."""

from enum import Enum

import pytest

from domain.models import (
    Action,
    ActionBatchResult,
    ActionFailure,
    ActionType,
    ConditionType,
    DocumentContext,
    ExtractedField,
    Operator,
    Pattern,
    PatternImportResult,
    PatternLearningResult,
    PatternRecommendation,
    PatternTestResult,
    Rule,
)


class TestEnums:
    def test_condition_types(self):
        assert issubclass(ConditionType, Enum)
        assert ConditionType("DocumentSupplier") is ConditionType.DOCUMENT_SUPPLIER

    def test_operators(self):
        expected = {
            "Equals", "NotEquals", "Contains", "StartsWith", "EndsWith",
            "GreaterThan", "LessThan", "GreaterThanOrEqual", "LessThanOrEqual",
            "Matches", "IsEmpty", "IsNotEmpty", "Custom",
        }
        assert {m.value for m in Operator} == expected

    def test_action_types_lookup_by_name(self):
        assert ActionType["CALCULATE_FIELD"] is ActionType.CALCULATE_FIELD


class TestPattern:
    def test_defaults(self):
        pattern = Pattern("ConEd", "AccountNumber", r"(\d+)")
        assert pattern.success_rate == 1.0
        assert pattern.usage_count == 0
        assert pattern.is_active
        assert pattern.created_at.tzinfo is not None
        assert str(pattern) == "ConEd.AccountNumber"

    def test_failure_count(self):
        assert Pattern("S", "F", "x", usage_count=5, success_count=3).failure_count == 2

    def test_ids_unique(self):
        assert Pattern("S", "F", "x").id != Pattern("S", "F", "x").id


class TestRuleAndAction:
    def test_rule_defaults(self):
        rule = Rule(name="r")
        assert rule.priority == 100
        assert rule.conditions == []
        assert rule.actions == []
        assert rule.failure_count == 0

    def test_source_fields_split_on_commas(self):
        action = Action(ActionType.COMBINE_FIELDS, "First, Last ,", "A1")
        assert action.source_fields == ["First", "Last"]

    def test_published_name(self):
        assert Action(ActionType.MAP_FIELD, "A", "B2").published_name == "B2"
        assert Action(ActionType.MAP_FIELD, "A", "B2", output_field="Clean").published_name == "Clean"


class TestDocumentContext:
    def test_is_frozen(self):
        context = DocumentContext(supplier="ConEd")
        with pytest.raises(AttributeError):
            context.supplier = "Verizon"

    def test_field_value_case_insensitive(self):
        context = DocumentContext(field_values={"AccountNumber": "1"})
        assert context.field_value("accountnumber") == "1"
        assert context.field_value("Missing") is None

    def test_with_fields_returns_copy(self):
        context = DocumentContext(supplier="ConEd", field_values={"A": "1"})
        enriched = context.with_fields([ExtractedField("B", "2"), ExtractedField("C", None)])
        assert enriched.field_values == {"A": "1", "B": "2"}
        assert enriched.has_field("c")
        assert context.field_values == {"A": "1"}
        assert enriched.supplier == "ConEd"


class TestResults:
    def test_batch_succeeds_with_only_soft_failures(self):
        batch = ActionBatchResult(failures=[ActionFailure("a", "missing")])
        assert batch.succeeded
        batch.failures.append(ActionFailure("b", "missing", hard=True))
        assert not batch.succeeded

    def test_pattern_test_result_rate(self):
        result = PatternTestResult(5, 4, 0.9, PatternRecommendation.APPROVE)
        assert result.success_rate == pytest.approx(0.8)
        assert PatternTestResult(0, 0, 0.0, PatternRecommendation.REJECT).success_rate == 0.0

    def test_learning_result_improvement(self):
        result = PatternLearningResult(True, previous_accuracy=0.5, new_accuracy=0.55)
        assert result.accuracy_improvement == pytest.approx(0.05)

    def test_import_result_success(self):
        outcome = PatternImportResult(total_patterns=2, imported_patterns=2)
        assert outcome.success
        outcome.failed_patterns = 1
        assert not outcome.success
