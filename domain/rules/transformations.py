"""Value transformations applied by TransformField actions.

A transformation spec is one of:
    - a step object:       {"type": "FormatCurrency", "symbol": "RM"}
    - a list of steps:     [{"type": "TrimWhitespace"}, {"type": "ToUpperCase"}]
    - a bare step name:    "ToUpperCase"
    - any of the above JSON-encoded in a string.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation

import regex

from domain.errors import CompileError
from domain.normalization import format_decimal, parse_date, parse_number
from domain.rules.registry import HandlerRegistry

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "%d/%m/%Y"
REGEX_TIMEOUT_S = 0.25


def parse_steps(spec, entity_id=None) -> list[tuple[str, dict]]:
    """Normalize a transformation spec into ``[(name, params), ...]``."""
    if spec is None or spec == "":
        return []
    if isinstance(spec, str):
        text = spec.strip()
        if text[:1] in "{[":
            try:
                spec = json.loads(text)
            except ValueError as exc:
                raise CompileError(f"Transformation is not valid JSON: {exc}", entity_id=entity_id) from exc
        else:
            return [(text, {})]
    if isinstance(spec, dict):
        spec = [spec]
    if not isinstance(spec, list):
        raise CompileError(f"Unsupported transformation spec {spec!r}", entity_id=entity_id)

    steps = []
    for item in spec:
        if isinstance(item, str):
            steps.append((item, {}))
            continue
        if not isinstance(item, dict):
            raise CompileError(f"Unsupported transformation step {item!r}", entity_id=entity_id)
        params = dict(item)
        name = params.pop("type", None) or params.pop("name", None)
        if not name:
            raise CompileError("Transformation step without a type", entity_id=entity_id)
        steps.append((name, params))
    return steps


# ── Built-in steps ──────────────────────────────────────────────────────


def _format_currency(value, symbol="", decimals=2, **_):
    amount = parse_number(value)
    if amount is None:
        return value
    quantum = Decimal(1).scaleb(-int(decimals))
    rendered = f"{amount.quantize(quantum):,f}"
    return f"{symbol} {rendered}".strip()


def _format_date(value, format=DEFAULT_DATE_FORMAT, **_):
    parsed = parse_date(value)
    if parsed is None:
        return value
    return parsed.strftime(format)


def _convert_currency(value, rate=1, decimals=2, **_):
    amount = parse_number(value)
    if amount is None:
        return value
    return format_decimal(amount * Decimal(str(rate)), decimals)


def _title_case(value, **_):
    return " ".join(word.capitalize() for word in value.split(" "))


def _regex_replace(value, pattern="", replacement="", **_):
    return regex.sub(pattern, replacement, value, timeout=REGEX_TIMEOUT_S)


BUILTIN_TRANSFORMATIONS = {
    "FormatCurrency": _format_currency,
    "FormatDate": _format_date,
    "ConvertCurrency": _convert_currency,
    "ToUpperCase": lambda value, **_: value.upper(),
    "ToLowerCase": lambda value, **_: value.lower(),
    "TitleCase": _title_case,
    "AddPrefix": lambda value, prefix="", **_: f"{prefix}{value}",
    "AddSuffix": lambda value, suffix="", **_: f"{value}{suffix}",
    "RemoveSpaces": lambda value, **_: "".join(value.split()),
    "TrimWhitespace": lambda value, **_: value.strip(),
    "ReplaceText": lambda value, find="", replace="", **_: value.replace(find, replace) if find else value,
    "RegexReplace": _regex_replace,
}


class TransformationRegistry:
    """Resolves step names to built-ins or registered custom handlers."""

    def __init__(self, handlers: HandlerRegistry | None = None) -> None:
        self.handlers = handlers or HandlerRegistry()
        self.transformations = dict(BUILTIN_TRANSFORMATIONS)

    def get(self, name: str):
        return self.transformations.get(name) or self.handlers.transformation(name)

    def validate(self, spec, entity_id=None) -> None:
        """Reject specs that could never run: bad JSON, bad regex, bad rate."""
        for name, params in parse_steps(spec, entity_id):
            if name == "RegexReplace":
                try:
                    regex.compile(params.get("pattern", ""))
                except regex.error as exc:
                    raise CompileError(f"RegexReplace pattern is invalid: {exc}", entity_id=entity_id) from exc
            elif name == "ConvertCurrency":
                try:
                    Decimal(str(params.get("rate", 1)))
                except InvalidOperation as exc:
                    raise CompileError(f"ConvertCurrency rate {params.get('rate')!r} is not a number",
                                       entity_id=entity_id) from exc
            if name in ("FormatCurrency", "ConvertCurrency") and "decimals" in params:
                try:
                    int(params["decimals"])
                except (TypeError, ValueError) as exc:
                    raise CompileError(f"{name} decimals {params['decimals']!r} is not an integer",
                                       entity_id=entity_id) from exc

    def apply(self, value: str, spec) -> tuple[str, list[str]]:
        """Run every step of *spec* over *value*; return (value, warnings).

        A step that is unknown or fails on the value leaves it untouched
        and adds a warning. A regex timeout counts as a failure.
        """
        warnings = []
        for name, params in parse_steps(spec):
            step = self.get(name)
            if step is None:
                logger.warning("Unknown transformation %r, value passed through", name)
                warnings.append(f"Unknown transformation '{name}'")
                continue
            try:
                value = step(value, **params)
            except TimeoutError:
                logger.warning("Transformation %r timed out, value passed through", name)
                warnings.append(f"Transformation '{name}' timed out")
            except (ValueError, ArithmeticError) as exc:
                logger.warning("Transformation %r failed (%s), value passed through", name, exc)
                warnings.append(f"Transformation '{name}' failed: {exc}")
        return value, warnings
