"""JSON round-trip for patterns and rules.

Imported pattern documents are checked against ``PATTERN_EXPORT_SCHEMA``
with ``jsonschema`` before any record becomes a Pattern.
"""

from __future__ import annotations

import json
from datetime import datetime

import jsonschema

from domain.models import (
    Action,
    ActionType,
    Condition,
    ConditionType,
    FieldType,
    LocationType,
    LogicalOperator,
    Operator,
    Pattern,
    Rule,
)


def _dt(value):
    return value.isoformat() if value else None


def _parse_dt(value):
    return datetime.fromisoformat(value) if value else None


# ── Patterns ────────────────────────────────────────────────────────────

_OPTIONAL_TEXT = {"type": ["string", "null"]}

PATTERN_SCHEMA = {
    "type": "object",
    "required": ["supplier", "field_name", "regex_pattern"],
    "properties": {
        "id": _OPTIONAL_TEXT,
        "supplier": {"type": "string", "minLength": 1},
        "field_name": {"type": "string", "minLength": 1},
        "regex_pattern": {"type": "string", "minLength": 1},
        "field_type": {"enum": [t.value for t in FieldType]},
        "priority": {"type": "integer"},
        "usage_count": {"type": "integer", "minimum": 0},
        "success_count": {"type": "integer", "minimum": 0},
        "success_rate": {"type": "number", "minimum": 0, "maximum": 1},
        "description": _OPTIONAL_TEXT,
        "example_match": _OPTIONAL_TEXT,
        "is_active": {"type": "boolean"},
        "created_at": _OPTIONAL_TEXT,
        "last_modified": _OPTIONAL_TEXT,
        "last_used": _OPTIONAL_TEXT,
    },
}

PATTERN_EXPORT_SCHEMA = {"type": "array", "items": PATTERN_SCHEMA}


def pattern_to_dict(pattern: Pattern) -> dict:
    return {
        "id": pattern.id,
        "supplier": pattern.supplier,
        "field_name": pattern.field_name,
        "regex_pattern": pattern.regex_pattern,
        "field_type": pattern.field_type.value,
        "priority": pattern.priority,
        "usage_count": pattern.usage_count,
        "success_count": pattern.success_count,
        "success_rate": pattern.success_rate,
        "description": pattern.description,
        "example_match": pattern.example_match,
        "is_active": pattern.is_active,
        "created_at": _dt(pattern.created_at),
        "last_modified": _dt(pattern.last_modified),
        "last_used": _dt(pattern.last_used),
    }


def pattern_from_dict(data: dict) -> Pattern:
    """Build a Pattern from one exported record; raises ValidationError."""
    jsonschema.validate(data, PATTERN_SCHEMA)
    pattern = Pattern(
        supplier=data["supplier"],
        field_name=data["field_name"],
        regex_pattern=data["regex_pattern"],
        field_type=FieldType(data.get("field_type", FieldType.TEXT.value)),
        priority=int(data.get("priority", 0)),
        usage_count=int(data.get("usage_count", 0)),
        success_count=int(data.get("success_count", 0)),
        success_rate=float(data.get("success_rate", 1.0)),
        description=data.get("description") or "",
        example_match=data.get("example_match"),
        is_active=bool(data.get("is_active", True)),
        last_modified=_parse_dt(data.get("last_modified")),
        last_used=_parse_dt(data.get("last_used")),
    )
    if data.get("id"):
        pattern.id = data["id"]
    if data.get("created_at"):
        pattern.created_at = _parse_dt(data["created_at"])
    return pattern


# ── Rules ───────────────────────────────────────────────────────────────


def condition_to_dict(condition: Condition) -> dict:
    return {
        "id": condition.id,
        "condition_type": condition.condition_type.value,
        "field_name": condition.field_name,
        "operator": condition.operator.value,
        "value": condition.value,
        "is_case_sensitive": condition.is_case_sensitive,
        "logical_operator": condition.logical_operator.value if condition.logical_operator else None,
        "display_order": condition.display_order,
        "group_id": condition.group_id,
        "nesting_level": condition.nesting_level,
        "parent_id": condition.parent_id,
        "weight": condition.weight,
        "is_required": condition.is_required,
        "handler": condition.handler,
        "description": condition.description,
    }


def condition_from_dict(data: dict) -> Condition:
    return Condition(
        id=data["id"],
        condition_type=ConditionType(data["condition_type"]),
        field_name=data.get("field_name", ""),
        operator=Operator(data["operator"]),
        value=data.get("value", ""),
        is_case_sensitive=bool(data.get("is_case_sensitive", False)),
        logical_operator=LogicalOperator(data["logical_operator"]) if data.get("logical_operator") else None,
        display_order=int(data.get("display_order", 0)),
        group_id=data.get("group_id"),
        nesting_level=int(data.get("nesting_level", 0)),
        parent_id=data.get("parent_id"),
        weight=float(data.get("weight", 1.0)),
        is_required=bool(data.get("is_required", True)),
        handler=data.get("handler"),
        description=data.get("description"),
    )


def action_to_dict(action: Action) -> dict:
    return {
        "id": action.id,
        "action_type": action.action_type.value,
        "source_field_name": action.source_field_name,
        "target_location": action.target_location,
        "target_location_type": action.target_location_type.value,
        "transformation": action.transformation,
        "default_value": action.default_value,
        "is_required": action.is_required,
        "display_order": action.display_order,
        "output_field": action.output_field,
        "description": action.description,
    }


def action_from_dict(data: dict) -> Action:
    return Action(
        id=data["id"],
        action_type=ActionType(data["action_type"]),
        source_field_name=data.get("source_field_name", ""),
        target_location=data["target_location"],
        target_location_type=LocationType(data.get("target_location_type", LocationType.EXCEL_CELL.value)),
        transformation=data.get("transformation"),
        default_value=data.get("default_value"),
        is_required=bool(data.get("is_required", False)),
        display_order=int(data.get("display_order", 0)),
        output_field=data.get("output_field"),
        description=data.get("description"),
    )


def rule_to_dict(rule: Rule) -> dict:
    return {
        "id": rule.id,
        "name": rule.name,
        "description": rule.description,
        "priority": rule.priority,
        "is_active": rule.is_active,
        "usage_count": rule.usage_count,
        "success_count": rule.success_count,
        "success_rate": rule.success_rate,
        "created_at": _dt(rule.created_at),
        "last_modified": _dt(rule.last_modified),
        "conditions": [condition_to_dict(c) for c in rule.conditions],
        "actions": [action_to_dict(a) for a in rule.actions],
    }


def rule_from_dict(data: dict) -> Rule:
    rule = Rule(
        id=data["id"],
        name=data["name"],
        description=data.get("description", ""),
        priority=int(data.get("priority", 100)),
        is_active=bool(data.get("is_active", True)),
        conditions=[condition_from_dict(c) for c in data.get("conditions", [])],
        actions=[action_from_dict(a) for a in data.get("actions", [])],
        usage_count=int(data.get("usage_count", 0)),
        success_count=int(data.get("success_count", 0)),
        success_rate=float(data.get("success_rate", 1.0)),
        last_modified=_parse_dt(data.get("last_modified")),
    )
    if data.get("created_at"):
        rule.created_at = _parse_dt(data["created_at"])
    return rule


def dumps(items, indent=2) -> str:
    """Serialize a list of patterns and/or rules to JSON."""
    payload = [
        pattern_to_dict(item) if isinstance(item, Pattern) else rule_to_dict(item)
        for item in items
    ]
    return json.dumps(payload, indent=indent)


def loads_patterns(text: str) -> list[Pattern]:
    records = json.loads(text)
    jsonschema.validate(records, PATTERN_EXPORT_SCHEMA)
    return [pattern_from_dict(d) for d in records]


def loads_rules(text: str) -> list[Rule]:
    return [rule_from_dict(d) for d in json.loads(text)]
