"""SQLAlchemy implementations of domain repository ports.

Each adapter translates between ORM models (sqlalchemy_models) and
pure domain models (domain.models), keeping the domain layer free
of any infrastructure dependency.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adapters.outbound.sqlalchemy_models import (
    Pattern as OrmPattern,
    Rule as OrmRule,
    RuleAction as OrmRuleAction,
    RuleCondition as OrmRuleCondition,
)
from domain.errors import RepositoryUnavailable
from domain.models import (
    Action as DomainAction,
    ActionType,
    Condition as DomainCondition,
    ConditionType,
    FieldType,
    LocationType,
    LogicalOperator,
    Operator,
    OutcomeRecord,
    Pattern as DomainPattern,
    Rule as DomainRule,
)
from domain.ports import PatternRepository, RuleRepository
from domain.scoring import smoothed_rate

logger = logging.getLogger(__name__)

CAS_RETRIES = 5


def _cas_record_outcome(session, orm_class, entity_id, success, alpha, stamp_last_used=False):
    """Compare-and-swap outcome update, retried when another writer wins.

    The UPDATE only applies while usage_count still holds the value read,
    so concurrent writers never lose an increment.
    """
    for _ in range(CAS_RETRIES):
        row = session.execute(
            select(orm_class.usage_count, orm_class.success_count, orm_class.success_rate)
            .where(orm_class.id == entity_id)
        ).one_or_none()
        if row is None:
            return None
        new_rate = smoothed_rate(row.success_rate, success, alpha)
        now = datetime.now(timezone.utc)
        values = {
            "usage_count": row.usage_count + 1,
            "success_count": row.success_count + (1 if success else 0),
            "success_rate": new_rate,
            "last_modified": now,
        }
        if stamp_last_used:
            values["last_used"] = now
        result = session.execute(
            update(orm_class)
            .where(orm_class.id == entity_id)
            .where(orm_class.usage_count == row.usage_count)
            .values(**values)
        )
        if result.rowcount == 1:
            session.flush()
            return OutcomeRecord(
                entity_id=entity_id,
                success=success,
                previous_rate=row.success_rate,
                new_rate=new_rate,
                usage_count=values["usage_count"],
                success_count=values["success_count"],
            )
        logger.debug("Outcome update for %s lost a race, retrying", entity_id)
    raise RepositoryUnavailable(f"Could not record outcome for {entity_id} after {CAS_RETRIES} attempts")


class SqlAlchemyPatternRepository(PatternRepository):
    """SQLAlchemy adapter for the PatternRepository port."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ── Queries ────────────────────────────────────────────────────────

    def get(self, pattern_id: str) -> DomainPattern | None:
        try:
            orm = self._session.get(OrmPattern, pattern_id)
        except SQLAlchemyError as exc:
            raise RepositoryUnavailable(str(exc)) from exc
        return self._to_domain(orm) if orm is not None else None

    def _list(self, stmt):
        stmt = stmt.order_by(OrmPattern.supplier, OrmPattern.field_name,
                             OrmPattern.priority.desc(), OrmPattern.id)
        try:
            return [self._to_domain(orm) for orm in self._session.scalars(stmt)]
        except SQLAlchemyError as exc:
            raise RepositoryUnavailable(str(exc)) from exc

    def list_all(self) -> list[DomainPattern]:
        return self._list(select(OrmPattern))

    def list_active(self, supplier: str | None = None) -> list[DomainPattern]:
        stmt = select(OrmPattern).where(OrmPattern.is_active.is_(True))
        if supplier is not None:
            stmt = stmt.where(OrmPattern.supplier == supplier)
        return self._list(stmt)

    def list_by_field(self, field_name: str) -> list[DomainPattern]:
        return self._list(select(OrmPattern).where(OrmPattern.field_name == field_name))

    # ── Commands ───────────────────────────────────────────────────────

    def save(self, pattern: DomainPattern) -> DomainPattern:
        """Insert or update a pattern, keyed by its id."""
        try:
            orm = self._session.get(OrmPattern, pattern.id)
            if orm is None:
                orm = OrmPattern(id=pattern.id)
                self._session.add(orm)
            orm.supplier = pattern.supplier
            orm.field_name = pattern.field_name
            orm.regex_pattern = pattern.regex_pattern
            orm.field_type = pattern.field_type.value
            orm.priority = pattern.priority
            orm.usage_count = pattern.usage_count
            orm.success_count = pattern.success_count
            orm.success_rate = pattern.success_rate
            orm.description = pattern.description
            orm.example_match = pattern.example_match
            orm.is_active = pattern.is_active
            orm.created_at = pattern.created_at
            orm.last_modified = pattern.last_modified
            orm.last_used = pattern.last_used
            self._session.flush()
        except SQLAlchemyError as exc:
            raise RepositoryUnavailable(str(exc)) from exc
        return pattern

    def record_outcome(self, pattern_id: str, success: bool, alpha: float) -> OutcomeRecord | None:
        try:
            return _cas_record_outcome(self._session, OrmPattern, pattern_id, success, alpha,
                                       stamp_last_used=True)
        except SQLAlchemyError as exc:
            raise RepositoryUnavailable(str(exc)) from exc

    # ── Internal helpers ───────────────────────────────────────────────

    @staticmethod
    def _to_domain(orm: OrmPattern) -> DomainPattern:
        """Convert an ORM Pattern row to a domain Pattern."""
        valid_types = {t.value for t in FieldType}
        return DomainPattern(
            id=orm.id,
            supplier=orm.supplier,
            field_name=orm.field_name,
            regex_pattern=orm.regex_pattern,
            field_type=FieldType(orm.field_type) if orm.field_type in valid_types else FieldType.TEXT,
            priority=orm.priority or 0,
            usage_count=orm.usage_count or 0,
            success_count=orm.success_count or 0,
            success_rate=orm.success_rate if orm.success_rate is not None else 1.0,
            description=orm.description or "",
            example_match=orm.example_match,
            is_active=bool(orm.is_active),
            created_at=orm.created_at,
            last_modified=orm.last_modified,
            last_used=orm.last_used,
        )


class SqlAlchemyRuleRepository(RuleRepository):
    """SQLAlchemy adapter for the RuleRepository port."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ── Queries ────────────────────────────────────────────────────────

    def get(self, rule_id: str) -> DomainRule | None:
        try:
            orm = self._session.get(OrmRule, rule_id)
        except SQLAlchemyError as exc:
            raise RepositoryUnavailable(str(exc)) from exc
        return self._to_domain(orm) if orm is not None else None

    def _list(self, stmt):
        stmt = stmt.order_by(OrmRule.priority.desc(), OrmRule.id)
        try:
            return [self._to_domain(orm) for orm in self._session.scalars(stmt)]
        except SQLAlchemyError as exc:
            raise RepositoryUnavailable(str(exc)) from exc

    def list_all(self) -> list[DomainRule]:
        return self._list(select(OrmRule))

    def list_active(self) -> list[DomainRule]:
        return self._list(select(OrmRule).where(OrmRule.is_active.is_(True)))

    # ── Commands ───────────────────────────────────────────────────────

    def save(self, rule: DomainRule) -> DomainRule:
        """Insert or update a rule together with its conditions and actions.

        Children are matched by id; those no longer on the rule are removed
        through the delete-orphan cascade.
        """
        try:
            orm = self._session.get(OrmRule, rule.id)
            if orm is None:
                orm = OrmRule(id=rule.id)
                self._session.add(orm)
            orm.name = rule.name
            orm.description = rule.description
            orm.priority = rule.priority
            orm.is_active = rule.is_active
            orm.usage_count = rule.usage_count
            orm.success_count = rule.success_count
            orm.success_rate = rule.success_rate
            orm.created_at = rule.created_at
            orm.last_modified = rule.last_modified

            existing = {c.id: c for c in orm.conditions}
            orm.conditions = [
                self._condition_to_orm(existing.get(c.id) or OrmRuleCondition(id=c.id), c, position)
                for position, c in enumerate(rule.conditions)
            ]
            existing = {a.id: a for a in orm.actions}
            orm.actions = [
                self._action_to_orm(existing.get(a.id) or OrmRuleAction(id=a.id), a, position)
                for position, a in enumerate(rule.actions)
            ]
            self._session.flush()
        except SQLAlchemyError as exc:
            raise RepositoryUnavailable(str(exc)) from exc
        return rule

    def delete(self, rule_id: str) -> bool:
        try:
            orm = self._session.get(OrmRule, rule_id)
            if orm is None:
                return False
            self._session.delete(orm)
            self._session.flush()
        except SQLAlchemyError as exc:
            raise RepositoryUnavailable(str(exc)) from exc
        return True

    def record_outcome(self, rule_id: str, success: bool, alpha: float) -> OutcomeRecord | None:
        try:
            return _cas_record_outcome(self._session, OrmRule, rule_id, success, alpha)
        except SQLAlchemyError as exc:
            raise RepositoryUnavailable(str(exc)) from exc

    # ── Internal helpers ───────────────────────────────────────────────

    @staticmethod
    def _condition_to_orm(orm: OrmRuleCondition, c: DomainCondition, position: int) -> OrmRuleCondition:
        orm.position = position
        orm.condition_type = c.condition_type.value
        orm.field_name = c.field_name
        orm.operator = c.operator.value
        orm.value = c.value
        orm.is_case_sensitive = c.is_case_sensitive
        orm.logical_operator = c.logical_operator.value if c.logical_operator else None
        orm.display_order = c.display_order
        orm.group_id = c.group_id
        orm.nesting_level = c.nesting_level
        orm.parent_id = c.parent_id
        orm.weight = c.weight
        orm.is_required = c.is_required
        orm.handler = c.handler
        orm.description = c.description
        return orm

    @staticmethod
    def _action_to_orm(orm: OrmRuleAction, a: DomainAction, position: int) -> OrmRuleAction:
        orm.position = position
        orm.action_type = a.action_type.value
        orm.source_field_name = a.source_field_name
        orm.target_location = a.target_location
        orm.target_location_type = a.target_location_type.value
        orm.transformation = a.transformation
        orm.default_value = a.default_value
        orm.is_required = a.is_required
        orm.display_order = a.display_order
        orm.output_field = a.output_field
        orm.description = a.description
        return orm

    @staticmethod
    def _to_domain(orm: OrmRule) -> DomainRule:
        """Convert an ORM Rule (with children) to a domain Rule."""
        conditions = [
            DomainCondition(
                id=c.id,
                condition_type=ConditionType(c.condition_type),
                field_name=c.field_name or "",
                operator=Operator(c.operator),
                value=c.value or "",
                is_case_sensitive=bool(c.is_case_sensitive),
                logical_operator=LogicalOperator(c.logical_operator) if c.logical_operator else None,
                display_order=c.display_order or 0,
                group_id=c.group_id,
                nesting_level=c.nesting_level or 0,
                parent_id=c.parent_id,
                weight=c.weight if c.weight is not None else 1.0,
                is_required=bool(c.is_required),
                handler=c.handler,
                description=c.description,
            )
            for c in orm.conditions
        ]
        actions = [
            DomainAction(
                id=a.id,
                action_type=ActionType(a.action_type),
                source_field_name=a.source_field_name or "",
                target_location=a.target_location,
                target_location_type=LocationType(a.target_location_type or LocationType.EXCEL_CELL.value),
                transformation=a.transformation,
                default_value=a.default_value,
                is_required=bool(a.is_required),
                display_order=a.display_order or 0,
                output_field=a.output_field,
                description=a.description,
            )
            for a in orm.actions
        ]
        return DomainRule(
            id=orm.id,
            name=orm.name,
            description=orm.description or "",
            priority=orm.priority if orm.priority is not None else 100,
            is_active=bool(orm.is_active),
            conditions=conditions,
            actions=actions,
            usage_count=orm.usage_count or 0,
            success_count=orm.success_count or 0,
            success_rate=orm.success_rate if orm.success_rate is not None else 1.0,
            created_at=orm.created_at,
            last_modified=orm.last_modified,
        )
