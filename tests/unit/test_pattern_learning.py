"""Tests for domain.extraction.pattern_learning — extraction, learning, import/export."""

import json

import pytest
import regex

from adapters.outbound.memory_repos import InMemoryPatternRepository
from domain.errors import CompileError
from domain.extraction.pattern_learning import (
    PatternLearningService,
    derive_expression,
    infer_field_type,
    value_shape,
)
from domain.models import (
    FieldType,
    Pattern,
    PatternLearningType,
    PatternMergeStrategy,
    PatternRecommendation,
)

CONED_TEXT = (
    "CONSOLIDATED EDISON COMPANY\nAccount Number: 1234567890\nService Address: 123 Main St\n"
    "Total Amount Due: $245.67\nDue Date: February 15, 2024"
)


@pytest.fixture
def coned_patterns():
    return [
        Pattern("ConEd", "AccountNumber", r"Account\s*(?:Number|#)?:?\s*(\d{10})",
                field_type=FieldType.ACCOUNT_NUMBER, success_rate=0.94),
        Pattern("ConEd", "TotalAmount", r"Total\s*(?:Amount\s*)?Due:?\s*\$?(\d+\.\d{2})",
                field_type=FieldType.CURRENCY, success_rate=0.89),
        Pattern("ConEd", "DueDate", r"Due Date:\s*(\w+ \d+, \d{4})",
                field_type=FieldType.DATE, success_rate=0.97),
    ]


@pytest.fixture
def repository(coned_patterns):
    return InMemoryPatternRepository(coned_patterns)


@pytest.fixture
def service(repository):
    return PatternLearningService(repository)


class TestDerivation:
    def test_all_digit_value_keeps_length(self):
        assert value_shape("1234567890") == r"\d{10}"

    def test_mixed_value_generalizes_runs(self):
        shape = value_shape("INV-2024-001")
        assert regex.fullmatch(shape, "INV-2024-001")
        assert regex.fullmatch(shape, "PO-7-12345")
        assert not regex.fullmatch(shape, "2024001")

    def test_expression_includes_label(self):
        expression = derive_expression(CONED_TEXT, "1234567890")
        assert expression == r"Account\s*Number\s*[:#\-=]?\s*(\d{10})"

    def test_value_without_label(self):
        assert derive_expression("1234567890", "1234567890") == r"(\d{10})"

    def test_absent_value(self):
        assert derive_expression(CONED_TEXT, "nowhere") is None

    @pytest.mark.parametrize("value, expected", [
        ("1234567890", FieldType.ACCOUNT_NUMBER),
        ("$245.67", FieldType.CURRENCY),
        ("12.5%", FieldType.PERCENTAGE),
        ("42", FieldType.NUMBER),
        ("February 15, 2024", FieldType.DATE),
        ("billing@coned.com", FieldType.EMAIL),
        ("123 Main St", FieldType.TEXT),
    ])
    def test_infer_field_type(self, value, expected):
        assert infer_field_type(value) is expected


class TestExtractFields:
    def test_coned_bill(self, service):
        fields = {f.field_name: f for f in service.extract_fields(CONED_TEXT, "ConEd")}
        assert fields["AccountNumber"].value == "1234567890"
        assert fields["AccountNumber"].confidence == pytest.approx(0.94)
        assert fields["TotalAmount"].value == "245.67"
        assert fields["DueDate"].value == "February 15, 2024"
        assert all(f.source == "pattern" for f in fields.values())

    def test_requested_fields_only(self, service):
        fields = service.extract_fields(CONED_TEXT, "ConEd", ["TotalAmount"])
        assert [f.field_name for f in fields] == ["TotalAmount"]

    def test_other_supplier_patterns_ignored(self, service):
        assert service.extract_fields(CONED_TEXT, "Verizon") == []

    def test_below_minimum_confidence_skipped(self):
        repository = InMemoryPatternRepository([
            Pattern("ConEd", "AccountNumber", r"Account Number:\s*(\d+)", success_rate=0.4),
        ])
        assert PatternLearningService(repository).extract_fields(CONED_TEXT, "ConEd") == []

    def test_priority_beats_success_rate(self):
        repository = InMemoryPatternRepository([
            Pattern("ConEd", "AccountNumber", r"Account Number:\s*(\d{4})", priority=2, success_rate=0.6),
            Pattern("ConEd", "AccountNumber", r"Account Number:\s*(\d{10})", priority=1, success_rate=0.99),
        ])
        [field] = PatternLearningService(repository).extract_fields(CONED_TEXT, "ConEd")
        assert field.value == "1234"

    def test_record_commits_outcomes(self):
        miss = Pattern("ConEd", "AccountNumber", r"Invoice #(\d+)", priority=2)
        hit = Pattern("ConEd", "AccountNumber", r"Account Number:\s*(\d{10})", priority=1)
        repository = InMemoryPatternRepository([miss, hit])
        PatternLearningService(repository).extract_fields(CONED_TEXT, "ConEd", record=True)
        assert repository.get(miss.id).usage_count == 1
        assert repository.get(miss.id).success_count == 0
        assert repository.get(miss.id).success_rate == pytest.approx(0.9)
        assert repository.get(hit.id).success_count == 1

    def test_extraction_without_record_is_pure(self, service, repository, coned_patterns):
        service.extract_fields(CONED_TEXT, "ConEd")
        assert repository.get(coned_patterns[0].id).usage_count == 0

    def test_deactivated_pattern_not_used(self, service, coned_patterns):
        assert service.deactivate_pattern(coned_patterns[0].id)
        fields = service.extract_fields(CONED_TEXT, "ConEd")
        assert "AccountNumber" not in {f.field_name for f in fields}

    def test_deactivate_unknown(self, service):
        assert not service.deactivate_pattern("missing")


class TestLearning:
    INVOICE = "ACME SUPPLIES\nInvoice Number: INV-2024-001\nTotal: 99.00"

    def test_new_pattern_from_example(self, repository):
        service = PatternLearningService(repository)
        result = service.learn_from_example("Acme", "InvoiceNumber", self.INVOICE, "INV-2024-001")
        assert result.success
        assert result.learning_type is PatternLearningType.NEW_PATTERN
        assert not result.requires_review
        assert result.pattern.priority == 1
        assert result.pattern.field_type is FieldType.TEXT
        [field] = service.extract_fields(self.INVOICE, "Acme")
        assert field.value == "INV-2024-001"

    def test_existing_pattern_reinforced(self, repository):
        service = PatternLearningService(repository)
        first = service.learn_from_example("Acme", "InvoiceNumber", self.INVOICE, "INV-2024-001")
        second = service.learn_from_example("Acme", "InvoiceNumber", self.INVOICE, "INV-2024-001")
        assert second.learning_type is PatternLearningType.PATTERN_REINFORCED
        assert second.pattern.id == first.pattern.id
        assert second.pattern.usage_count == 1
        assert len(service.patterns_for_supplier("Acme")) == 1

    def test_value_not_in_text(self, service):
        result = service.learn_from_example("Acme", "InvoiceNumber", self.INVOICE, "XYZ-1")
        assert not result.success
        assert result.requires_review
        assert service.patterns_for_supplier("Acme") == []

    def test_malformed_pattern_never_stored(self, service):
        with pytest.raises(CompileError):
            service.add_pattern(Pattern("Acme", "Total", r"Total:\s*(\d+"))
        assert service.patterns_for_supplier("Acme") == []

    def test_correction_penalizes_and_learns(self):
        text = "Previous Balance: $100.00\nTotal Amount Due: $245.67"
        wrong = Pattern("ConEd", "TotalAmount", r"\$(\d+\.\d{2})", success_rate=0.9, priority=3)
        repository = InMemoryPatternRepository([wrong])
        service = PatternLearningService(repository)

        result = service.learn_from_correction("ConEd", "TotalAmount", text, "100.00", "245.67")

        assert result.success
        assert result.learning_type is PatternLearningType.PATTERN_CORRECTED
        assert result.pattern.priority == 4
        assert repository.get(wrong.id).success_rate == pytest.approx(0.81)
        [field] = service.extract_fields(text, "ConEd")
        assert field.value == "245.67"
        assert field.pattern_id == result.pattern.id

    def test_learn_from_success(self, service, coned_patterns):
        pattern = coned_patterns[1]
        result = service.learn_from_success("ConEd", "TotalAmount", CONED_TEXT, "245.67", pattern.id)
        assert result.success
        assert result.previous_accuracy == pytest.approx(0.89)
        assert result.new_accuracy == pytest.approx(0.901)
        assert result.accuracy_improvement > 0

    def test_learn_from_success_unknown_pattern(self, service):
        assert not service.learn_from_success("ConEd", "X", "", "", "missing").success


class TestPatternTesting:
    TEXTS = [f"Account Number: {n:010d}" for n in range(4)] + ["no account here"]

    def test_approve(self, service):
        pattern = Pattern("ConEd", "AccountNumber", r"Account Number:\s*(\d{10})")
        result = service.test_pattern(pattern, self.TEXTS)
        assert result.total_tests == 5
        assert result.successful_matches == 4
        assert result.success_rate == pytest.approx(0.8)
        assert result.recommendation is PatternRecommendation.APPROVE
        assert len(result.failure_examples) == 1
        assert result.failure_examples[0].error_message == "No match"

    def test_review(self, service):
        pattern = Pattern("ConEd", "AccountNumber", r"Account Number:\s*(000000000[0-2])")
        assert service.test_pattern(pattern, self.TEXTS).recommendation is PatternRecommendation.REVIEW

    def test_improve(self, service):
        pattern = Pattern("ConEd", "AccountNumber", r"Account Number:\s*(0000000000)")
        assert service.test_pattern(pattern, self.TEXTS).recommendation is PatternRecommendation.IMPROVE

    def test_reject_no_match(self, service):
        pattern = Pattern("ConEd", "AccountNumber", r"Invoice (\d+)")
        assert service.test_pattern(pattern, self.TEXTS).recommendation is PatternRecommendation.REJECT

    def test_reject_malformed(self, service):
        result = service.test_pattern(Pattern("ConEd", "AccountNumber", r"(\d+"), self.TEXTS)
        assert result.recommendation is PatternRecommendation.REJECT
        assert "Invalid regular expression" in result.recommendation_reason


class TestStatistics:
    def test_statistics(self, service, coned_patterns):
        service.add_pattern(Pattern("Verizon", "AccountNumber", r"Account:\s*(\d+)", success_rate=0.8))
        service.deactivate_pattern(coned_patterns[2].id)
        stats = service.statistics()
        assert stats.total_patterns == 4
        assert stats.active_patterns == 3
        assert stats.suppliers_with_patterns == 2
        assert stats.patterns_by_supplier == {"ConEd": 2, "Verizon": 1}
        assert stats.patterns_by_field["AccountNumber"] == 2
        assert stats.average_accuracy == pytest.approx((0.94 + 0.89 + 0.8) / 3)

    def test_accuracy(self, service):
        assert service.accuracy("ConEd", "TotalAmount") == pytest.approx(0.89)
        assert service.accuracy("ConEd", "Nothing") == 0.0


class TestImportExport:
    def test_export_then_import_into_empty_store(self, service):
        exported = service.export_patterns()
        target = PatternLearningService(InMemoryPatternRepository())
        result = target.import_patterns(exported)
        assert result.success
        assert result.imported_patterns == 3
        assert {p.id for p in target.patterns_for_supplier("ConEd")} == {
            p.id for p in service.patterns_for_supplier("ConEd")
        }

    def test_export_filtered_by_supplier(self, service):
        service.add_pattern(Pattern("Verizon", "AccountNumber", r"Account:\s*(\d+)"))
        records = json.loads(service.export_patterns("Verizon"))
        assert [r["supplier"] for r in records] == ["Verizon"]

    def test_skip_existing(self, service):
        result = service.import_patterns(service.export_patterns(), PatternMergeStrategy.SKIP_EXISTING)
        assert result.skipped_patterns == 3
        assert result.imported_patterns == 0

    def test_merge_by_accuracy_keeps_better(self, service, repository, coned_patterns):
        records = json.loads(service.export_patterns())
        for record in records:
            record["success_rate"] = 0.99 if record["field_name"] == "TotalAmount" else 0.1
        result = service.import_patterns(json.dumps(records), PatternMergeStrategy.MERGE_BY_ACCURACY)
        assert result.imported_patterns == 1
        assert result.skipped_patterns == 2
        assert repository.get(coned_patterns[1].id).success_rate == pytest.approx(0.99)
        assert repository.get(coned_patterns[0].id).success_rate == pytest.approx(0.94)

    def test_existing_found_by_content(self, service, repository):
        records = json.loads(service.export_patterns())
        for record in records:
            record["id"] = f"other-{record['field_name']}"
        result = service.import_patterns(json.dumps(records), PatternMergeStrategy.OVERWRITE_EXISTING)
        assert result.imported_patterns == 3
        assert len(repository.list_all()) == 3

    def test_create_new_version(self, service, repository):
        result = service.import_patterns(service.export_patterns(), PatternMergeStrategy.CREATE_NEW_VERSION)
        assert result.imported_patterns == 3
        assert len(repository.list_all()) == 6

    def test_invalid_json(self, service):
        result = service.import_patterns("not json")
        assert not result.success
        assert result.errors

    def test_malformed_record_counted_as_failure(self, service):
        records = [{"supplier": "Acme", "field_name": "Total", "regex_pattern": r"(\d+"}]
        result = service.import_patterns(json.dumps(records))
        assert result.failed_patterns == 1
        assert result.imported_patterns == 0
        assert service.patterns_for_supplier("Acme") == []

    def test_document_must_be_a_list(self, service):
        result = service.import_patterns('{"supplier": "A"}')
        assert result.failed_patterns == 1
        assert result.errors == ["Invalid document: expected a list of patterns"]

    def test_non_object_record_reported(self, service):
        result = service.import_patterns("[1]")
        assert result.failed_patterns == 1
        assert result.errors[0].startswith("#0: ")

    def test_schema_errors_reported_per_record(self, service):
        records = [
            {"supplier": "Acme", "field_name": "Total"},
            {"id": "p-2", "supplier": "Acme", "field_name": "Total", "regex_pattern": r"(\d+)",
             "success_rate": 3},
            {"supplier": "Acme", "field_name": "Total", "regex_pattern": r"Total:\s*(\d+)"},
        ]
        result = service.import_patterns(json.dumps(records))
        assert result.total_patterns == 3
        assert result.failed_patterns == 2
        assert result.imported_patterns == 1
        assert "regex_pattern" in result.errors[0]
        assert result.errors[0].startswith("#0: ")
        assert result.errors[1].startswith("p-2: ")
