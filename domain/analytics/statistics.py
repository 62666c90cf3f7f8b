"""Domain learning analytics — pure functions, zero external dependencies.

Only stdlib and domain.models imports allowed.
"""

from domain.models import RuleUsageStatistic


def weighted_success_rate(items):
    """Usage-weighted mean of (success_rate, usage_count) pairs."""
    total_usage = sum(usage for _, usage in items)
    if total_usage == 0:
        return 0.0
    return sum(rate * usage for rate, usage in items) / total_usage


def rank_rules_by_success(rules, limit=5):
    """Used rules ranked by success rate, then usage, then id."""
    used = [r for r in rules if r.usage_count > 0]
    used.sort(key=lambda r: (-r.success_rate, -r.usage_count, r.id))
    return [
        RuleUsageStatistic(
            rule_id=r.id,
            rule_name=r.name,
            usage_count=r.usage_count,
            success_rate=r.success_rate,
            last_used=r.last_modified,
        )
        for r in used[:limit]
    ]


def field_coverage(patterns):
    """How many distinct fields each supplier has active patterns for."""
    by_supplier = {}
    for pattern in patterns:
        if not pattern.is_active:
            continue
        by_supplier.setdefault(pattern.supplier, set()).add(pattern.field_name)
    return {supplier: len(fields) for supplier, fields in by_supplier.items()}


def weakest_patterns(patterns, threshold=0.5, limit=10):
    """Active, used patterns whose success rate fell below *threshold*."""
    weak = [p for p in patterns if p.is_active and p.usage_count > 0 and p.success_rate < threshold]
    weak.sort(key=lambda p: (p.success_rate, -p.usage_count, p.id))
    return weak[:limit]
