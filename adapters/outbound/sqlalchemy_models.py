from datetime import datetime, timezone
from sqlalchemy import (
    JSON, Boolean, Column, Integer, String, Float, DateTime, Text, ForeignKey, Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


def _now():
    return datetime.now(timezone.utc)


class Pattern(Base):
    __tablename__ = "patterns"

    id = Column(String(36), primary_key=True)
    supplier = Column(String, nullable=False)
    field_name = Column(String, nullable=False)
    regex_pattern = Column(Text, nullable=False)
    field_type = Column(String, default="text")
    priority = Column(Integer, default=0)
    usage_count = Column(Integer, default=0, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    success_rate = Column(Float, default=1.0, nullable=False)
    description = Column(Text, default="")
    example_match = Column(Text)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=_now)
    last_modified = Column(DateTime)
    last_used = Column(DateTime)

    __table_args__ = (
        Index("idx_patterns_supplier_field", "supplier", "field_name"),
    )


class Rule(Base):
    __tablename__ = "rules"

    id = Column(String(36), primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    priority = Column(Integer, default=100)
    is_active = Column(Boolean, default=True)
    usage_count = Column(Integer, default=0, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    success_rate = Column(Float, default=1.0, nullable=False)
    created_at = Column(DateTime, default=_now)
    last_modified = Column(DateTime)

    conditions = relationship(
        "RuleCondition", back_populates="rule", cascade="all, delete-orphan",
        order_by="RuleCondition.position",
    )
    actions = relationship(
        "RuleAction", back_populates="rule", cascade="all, delete-orphan",
        order_by="RuleAction.position",
    )

    __table_args__ = (
        Index("idx_rules_active_priority", "is_active", "priority"),
    )


class RuleCondition(Base):
    __tablename__ = "rule_conditions"

    id = Column(String(36), primary_key=True)
    rule_id = Column(String(36), ForeignKey("rules.id"), nullable=False)
    position = Column(Integer, default=0)
    condition_type = Column(String, nullable=False)
    field_name = Column(String, default="")
    operator = Column(String, nullable=False)
    value = Column(Text, default="")
    is_case_sensitive = Column(Boolean, default=False)
    logical_operator = Column(String)
    display_order = Column(Integer, default=0)
    group_id = Column(String)
    nesting_level = Column(Integer, default=0)
    parent_id = Column(String)
    weight = Column(Float, default=1.0)
    is_required = Column(Boolean, default=True)
    handler = Column(String)
    description = Column(Text)

    rule = relationship("Rule", back_populates="conditions")

    __table_args__ = (
        Index("idx_rule_conditions_rule", "rule_id"),
    )


class RuleAction(Base):
    __tablename__ = "rule_actions"

    id = Column(String(36), primary_key=True)
    rule_id = Column(String(36), ForeignKey("rules.id"), nullable=False)
    position = Column(Integer, default=0)
    action_type = Column(String, nullable=False)
    source_field_name = Column(String, default="")
    target_location = Column(String, nullable=False)
    target_location_type = Column(String, default="ExcelCell")
    transformation = Column(JSON)
    default_value = Column(Text)
    is_required = Column(Boolean, default=False)
    display_order = Column(Integer, default=0)
    output_field = Column(String)
    description = Column(Text)

    rule = relationship("Rule", back_populates="actions")

    __table_args__ = (
        Index("idx_rule_actions_rule", "rule_id"),
    )
