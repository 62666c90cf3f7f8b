"""Tests for domain.extraction.pattern_matcher — compilation and scored extraction."""

import time

import pytest

from domain.errors import CompileError
from domain.extraction.pattern_matcher import (
    CompiledPattern,
    compile_pattern,
    extract,
)
from domain.models import FieldType, Pattern

CONED_TEXT = (
    "CONSOLIDATED EDISON COMPANY\nAccount Number: 1234567890\nService Address: 123 Main St\n"
    "Total Amount Due: $245.67\nDue Date: February 15, 2024"
)


def _pattern(regex_pattern, **kwargs):
    return Pattern(supplier="ConEd", field_name="Field", regex_pattern=regex_pattern, **kwargs)


class TestCompilePattern:
    def test_valid_pattern_compiles(self):
        compiled = compile_pattern(_pattern(r"Account:?\s*(\d+)"))
        assert compiled.field_name == "Field"
        assert compiled.prior == 1.0

    def test_malformed_pattern_rejected(self):
        with pytest.raises(CompileError):
            compile_pattern(_pattern(r"Account (\d+"))

    def test_empty_pattern_rejected(self):
        with pytest.raises(CompileError):
            compile_pattern(_pattern("   "))

    def test_error_carries_pattern_id(self):
        pattern = _pattern("[")
        with pytest.raises(CompileError) as excinfo:
            compile_pattern(pattern)
        assert excinfo.value.entity_id == pattern.id


class TestExtract:
    def test_account_number(self):
        pattern = _pattern(r"Account\s*(?:Number|#)?:?\s*(\d{10})", success_rate=0.94)
        result = extract(compile_pattern(pattern), "Account Number: 1234567890")
        assert result.success
        assert result.value == "1234567890"
        assert result.confidence == pytest.approx(0.94)

    def test_total_amount_from_bill(self):
        pattern = _pattern(r"Total\s*(?:Amount\s*)?Due:?\s*\$?(\d+\.\d{2})", field_type=FieldType.CURRENCY)
        result = extract(compile_pattern(pattern), CONED_TEXT)
        assert result.value == "245.67"

    def test_named_value_group_preferred(self):
        pattern = _pattern(r"(Due Date):\s*(?P<value>\w+ \d+, \d{4})")
        result = extract(compile_pattern(pattern), CONED_TEXT)
        assert result.value == "February 15, 2024"

    def test_whole_match_without_groups(self):
        result = extract(compile_pattern(_pattern(r"\d{10}")), CONED_TEXT)
        assert result.value == "1234567890"

    def test_value_is_stripped(self):
        result = extract(compile_pattern(_pattern(r"Address:(.*)")), CONED_TEXT)
        assert result.value == "123 Main St"

    def test_miss(self):
        result = extract(compile_pattern(_pattern(r"Invoice #(\d+)")), CONED_TEXT)
        assert not result.success
        assert result.confidence == 0.0
        assert result.value is None

    def test_empty_text_is_miss(self):
        result = extract(compile_pattern(_pattern(r"(\d+)")), "")
        assert not result.success

    def test_multiple_distinct_candidates_penalized(self):
        pattern = _pattern(r"Total:\s*(\d+\.\d{2})")
        result = extract(compile_pattern(pattern), "Total: 10.00\nTotal: 20.00")
        assert result.value == "10.00"
        assert result.candidates == 2
        assert result.confidence == pytest.approx(0.8)

    def test_repeated_identical_value_not_penalized(self):
        pattern = _pattern(r"Total:\s*(\d+\.\d{2})")
        result = extract(compile_pattern(pattern), "Total: 10.00\nTotal: 10.00")
        assert result.candidates == 1
        assert result.confidence == pytest.approx(1.0)

    def test_numeric_type_mismatch_penalized(self):
        pattern = _pattern(r"Amount:\s*(\w+)", field_type=FieldType.NUMBER, success_rate=0.9)
        result = extract(compile_pattern(pattern), "Amount: pending")
        assert result.success
        assert result.confidence == pytest.approx(0.45)

    def test_penalties_compound(self):
        pattern = _pattern(r"Amount:\s*(\w+)", field_type=FieldType.CURRENCY)
        result = extract(compile_pattern(pattern), "Amount: pending\nAmount: unknown")
        assert result.confidence == pytest.approx(0.8 * 0.5)

    def test_deterministic_and_non_mutating(self):
        pattern = _pattern(r"Account\s*(?:Number|#)?:?\s*(\d{10})", success_rate=0.7,
                           usage_count=3, success_count=2)
        compiled = compile_pattern(pattern)
        first = extract(compiled, CONED_TEXT)
        second = extract(compiled, CONED_TEXT)
        assert first == second
        assert pattern.success_rate == 0.7
        assert pattern.usage_count == 3
        assert pattern.success_count == 2


class TestTimeBudget:
    def test_timeout_is_a_miss(self, caplog):
        class SlowExpression:
            pattern = "(a+)+$"

            def search(self, text, pos=0, timeout=None):
                raise TimeoutError("regex timed out")

        compiled = CompiledPattern(
            pattern_id="p1", supplier="S", field_name="F", source="(a+)+$",
            expression=SlowExpression(), field_type=FieldType.TEXT, prior=1.0, priority=0,
        )
        with caplog.at_level("WARNING"):
            result = extract(compiled, "a" * 40 + "b", budget_ms=1)
        assert not result.success
        assert result.timed_out
        assert result.confidence == 0.0
        assert "timed out" in caplog.text

    def test_catastrophic_expression_times_out(self, caplog):
        compiled = compile_pattern(_pattern(r"(x+x+)+y"))
        with caplog.at_level("WARNING"):
            result = extract(compiled, "x" * 5000, budget_ms=20)
        assert not result.success
        assert result.timed_out
        assert "timed out" in caplog.text

    def test_budget_covers_the_candidate_scan(self):
        compiled = compile_pattern(_pattern(r"ID:(\d)"))
        started = time.monotonic()
        result = extract(compiled, "ID:7 " * 300000, budget_ms=50)
        elapsed_ms = (time.monotonic() - started) * 1000.0
        assert result.timed_out
        assert not result.success
        assert elapsed_ms < 1000

    def test_generous_budget_still_scans_repeats(self):
        compiled = compile_pattern(_pattern(r"ID:(\d)"))
        result = extract(compiled, "ID:7 " * 100 + "ID:8", budget_ms=5000)
        assert result.success
        assert result.candidates == 2
