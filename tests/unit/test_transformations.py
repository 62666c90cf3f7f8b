"""Tests for domain.rules.transformations — step parsing and built-in transformations."""

import pytest

from domain.errors import CompileError
from domain.rules.registry import HandlerRegistry
from domain.rules import transformations
from domain.rules.transformations import TransformationRegistry, parse_steps


class TestParseSteps:
    def test_bare_name(self):
        assert parse_steps("ToUpperCase") == [("ToUpperCase", {})]

    def test_single_object(self):
        assert parse_steps({"type": "AddPrefix", "prefix": "#"}) == [("AddPrefix", {"prefix": "#"})]

    def test_list_chain(self):
        steps = parse_steps([{"type": "TrimWhitespace"}, "ToLowerCase"])
        assert [name for name, _ in steps] == ["TrimWhitespace", "ToLowerCase"]

    def test_json_string(self):
        steps = parse_steps('[{"type": "AddSuffix", "suffix": " USD"}]')
        assert steps == [("AddSuffix", {"suffix": " USD"})]

    def test_empty(self):
        assert parse_steps(None) == []
        assert parse_steps("") == []

    def test_invalid_json_rejected(self):
        with pytest.raises(CompileError):
            parse_steps('{"type": ')

    def test_step_without_type_rejected(self):
        with pytest.raises(CompileError):
            parse_steps({"prefix": "#"})


class TestBuiltins:
    @pytest.fixture
    def registry(self):
        return TransformationRegistry()

    @pytest.mark.parametrize("spec, value, expected", [
        ({"type": "FormatCurrency", "symbol": "RM"}, "245.671", "RM 245.67"),
        ({"type": "FormatCurrency"}, "$1234.5", "1,234.50"),
        ({"type": "FormatDate"}, "2024-02-15", "15/02/2024"),
        ({"type": "FormatDate", "format": "%Y-%m-%d"}, "February 15, 2024", "2024-02-15"),
        ({"type": "ConvertCurrency", "rate": 4.5}, "100", "450.00"),
        ("ToUpperCase", "coned", "CONED"),
        ("ToLowerCase", "ConEd", "coned"),
        ("TitleCase", "main street north", "Main Street North"),
        ({"type": "AddPrefix", "prefix": "ACC-"}, "123", "ACC-123"),
        ({"type": "AddSuffix", "suffix": " kWh"}, "540", "540 kWh"),
        ("RemoveSpaces", " 12 34 56 ", "123456"),
        ("TrimWhitespace", "  x  ", "x"),
        ({"type": "ReplaceText", "find": "-", "replace": ""}, "123-456", "123456"),
        ({"type": "RegexReplace", "pattern": r"\D", "replacement": ""}, "(212) 555-0100", "2125550100"),
    ])
    def test_builtin(self, registry, spec, value, expected):
        result, warnings = registry.apply(value, spec)
        assert result == expected
        assert warnings == []

    def test_unparseable_currency_passes_through(self, registry):
        assert registry.apply("pending", {"type": "FormatCurrency"})[0] == "pending"

    def test_chain_runs_in_order(self, registry):
        spec = [{"type": "TrimWhitespace"}, {"type": "AddPrefix", "prefix": "<"}, {"type": "AddSuffix", "suffix": ">"}]
        assert registry.apply("  v ", spec)[0] == "<v>"

    def test_unknown_name_passes_value_with_warning(self, registry, caplog):
        with caplog.at_level("WARNING"):
            value, warnings = registry.apply("abc", "Reverse")
        assert value == "abc"
        assert warnings == ["Unknown transformation 'Reverse'"]
        assert "Reverse" in caplog.text

    def test_custom_registered_transformation(self):
        handlers = HandlerRegistry()
        handlers.register_transformation("Reverse", lambda value, **_: value[::-1])
        registry = TransformationRegistry(handlers)
        assert registry.apply("abc", "Reverse") == ("cba", [])


class TestStepFailures:
    def test_regex_replace_timeout_keeps_value(self, monkeypatch, caplog):
        monkeypatch.setattr(transformations, "REGEX_TIMEOUT_S", 0.01)
        value = "x" * 5000
        with caplog.at_level("WARNING"):
            result, warnings = TransformationRegistry().apply(
                value, {"type": "RegexReplace", "pattern": "(x+x+)+y", "replacement": ""})
        assert result == value
        assert warnings == ["Transformation 'RegexReplace' timed out"]
        assert "timed out" in caplog.text

    def test_bad_decimals_at_run_time_keeps_value(self):
        result, warnings = TransformationRegistry().apply("245.67", {"type": "FormatCurrency", "decimals": "x"})
        assert result == "245.67"
        assert warnings[0].startswith("Transformation 'FormatCurrency' failed")

    def test_later_steps_still_run(self, monkeypatch):
        monkeypatch.setattr(transformations, "REGEX_TIMEOUT_S", 0.01)
        spec = [{"type": "RegexReplace", "pattern": "(x+x+)+y"}, {"type": "AddPrefix", "prefix": "#"}]
        result, warnings = TransformationRegistry().apply("x" * 5000, spec)
        assert result == "#" + "x" * 5000
        assert len(warnings) == 1


class TestValidate:
    def test_bad_regex_rejected(self):
        with pytest.raises(CompileError):
            TransformationRegistry().validate({"type": "RegexReplace", "pattern": "("})

    def test_bad_rate_rejected(self):
        with pytest.raises(CompileError):
            TransformationRegistry().validate({"type": "ConvertCurrency", "rate": "lots"})

    @pytest.mark.parametrize("name", ["FormatCurrency", "ConvertCurrency"])
    def test_bad_decimals_rejected(self, name):
        with pytest.raises(CompileError):
            TransformationRegistry().validate({"type": name, "decimals": "two"})

    def test_integer_decimals_accepted(self):
        TransformationRegistry().validate({"type": "FormatCurrency", "decimals": "0"})
