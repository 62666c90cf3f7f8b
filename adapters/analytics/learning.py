"""Learning analytics -- facade over domain/analytics/statistics.py.

This module returns pandas DataFrames ready for reporting.
Domain-pure equivalents: domain.analytics.statistics (weighted_success_rate,
rank_rules_by_success, field_coverage, weakest_patterns).
"""

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from adapters.outbound.sqlalchemy_models import Pattern, Rule
from adapters.outbound.sqlalchemy_repos import SqlAlchemyPatternRepository, SqlAlchemyRuleRepository
from domain.analytics.statistics import (
    field_coverage,
    rank_rules_by_success,
    weakest_patterns,
    weighted_success_rate,
)

PATTERN_COLUMNS = [
    "id", "supplier", "field_name", "field_type", "priority",
    "usage_count", "success_count", "success_rate", "is_active",
]


def patterns_overview(session: Session) -> pd.DataFrame:
    """One row per stored pattern, most reliable first within a supplier."""
    rows = session.execute(
        select(
            Pattern.id, Pattern.supplier, Pattern.field_name, Pattern.field_type,
            Pattern.priority, Pattern.usage_count, Pattern.success_count,
            Pattern.success_rate, Pattern.is_active,
        )
    ).all()
    df = pd.DataFrame(rows, columns=PATTERN_COLUMNS)
    if df.empty:
        return df
    df["failure_count"] = df["usage_count"] - df["success_count"]
    return df.sort_values(["supplier", "field_name", "success_rate"],
                          ascending=[True, True, False]).reset_index(drop=True)


def supplier_accuracy(session: Session) -> pd.DataFrame:
    """Per supplier: pattern count, fields covered, usage-weighted success rate."""
    patterns = SqlAlchemyPatternRepository(session).list_active()
    if not patterns:
        return pd.DataFrame(columns=["supplier", "patterns", "fields", "weighted_success_rate"])
    coverage = field_coverage(patterns)
    rows = []
    for supplier in sorted(coverage):
        own = [p for p in patterns if p.supplier == supplier]
        rows.append({
            "supplier": supplier,
            "patterns": len(own),
            "fields": coverage[supplier],
            "weighted_success_rate": weighted_success_rate(
                [(p.success_rate, p.usage_count) for p in own]
            ),
        })
    return pd.DataFrame(rows)


def rule_leaderboard(session: Session, limit: int = 5) -> pd.DataFrame:
    """Top rules by success rate (rules never applied are left out)."""
    ranked = rank_rules_by_success(SqlAlchemyRuleRepository(session).list_all(), limit=limit)
    return pd.DataFrame(
        [(r.rule_id, r.rule_name, r.usage_count, r.success_rate) for r in ranked],
        columns=["rule_id", "rule_name", "usage_count", "success_rate"],
    )


def weak_patterns(session: Session, threshold: float = 0.5) -> pd.DataFrame:
    """Active patterns that keep failing; candidates for relearning."""
    weak = weakest_patterns(SqlAlchemyPatternRepository(session).list_all(), threshold=threshold)
    return pd.DataFrame(
        [(p.id, p.supplier, p.field_name, p.usage_count, p.success_rate) for p in weak],
        columns=["id", "supplier", "field_name", "usage_count", "success_rate"],
    )


def rule_activity(session: Session) -> pd.DataFrame:
    """Active vs inactive rules with their total applications."""
    rows = session.execute(select(Rule.is_active, Rule.usage_count)).all()
    df = pd.DataFrame(rows, columns=["is_active", "usage_count"])
    if df.empty:
        return pd.DataFrame(columns=["is_active", "rules", "applications"])
    return (
        df.groupby("is_active")
        .agg(rules=("usage_count", "size"), applications=("usage_count", "sum"))
        .reset_index()
    )
