"""In-memory implementations of the repository ports.

Intended for testing and for embedding the engine without a database.
Entities are copied on the way in and out, so callers never share state
with the store.
"""

from __future__ import annotations

import copy
import threading

from domain.models import OutcomeRecord, Pattern, Rule
from domain.ports import PatternRepository, RuleRepository
from domain.scoring import AdaptiveScorer


class InMemoryPatternRepository(PatternRepository):
    def __init__(self, patterns: list[Pattern] | None = None) -> None:
        self._store: dict[str, Pattern] = {}
        self._lock = threading.Lock()
        self._scorer = AdaptiveScorer()
        for pattern in patterns or []:
            self.save(pattern)

    def get(self, pattern_id: str) -> Pattern | None:
        with self._lock:
            found = self._store.get(pattern_id)
            return copy.deepcopy(found) if found else None

    def save(self, pattern: Pattern) -> Pattern:
        with self._lock:
            self._store[pattern.id] = copy.deepcopy(pattern)
        return pattern

    def _select(self, keep):
        with self._lock:
            found = [copy.deepcopy(p) for p in self._store.values() if keep(p)]
        return sorted(found, key=lambda p: (p.supplier, p.field_name, -p.priority, p.id))

    def list_all(self) -> list[Pattern]:
        return self._select(lambda p: True)

    def list_active(self, supplier: str | None = None) -> list[Pattern]:
        return self._select(lambda p: p.is_active and (supplier is None or p.supplier == supplier))

    def list_by_field(self, field_name: str) -> list[Pattern]:
        return self._select(lambda p: p.field_name == field_name)

    def record_outcome(self, pattern_id: str, success: bool, alpha: float) -> OutcomeRecord | None:
        with self._lock:
            stored = self._store.get(pattern_id)
            if stored is None:
                return None
            return self._scorer.record_outcome(stored, success, alpha)


class InMemoryRuleRepository(RuleRepository):
    def __init__(self, rules: list[Rule] | None = None) -> None:
        self._store: dict[str, Rule] = {}
        self._lock = threading.Lock()
        self._scorer = AdaptiveScorer()
        for rule in rules or []:
            self.save(rule)

    def get(self, rule_id: str) -> Rule | None:
        with self._lock:
            found = self._store.get(rule_id)
            return copy.deepcopy(found) if found else None

    def save(self, rule: Rule) -> Rule:
        with self._lock:
            self._store[rule.id] = copy.deepcopy(rule)
        return rule

    def delete(self, rule_id: str) -> bool:
        with self._lock:
            return self._store.pop(rule_id, None) is not None

    def _select(self, keep):
        with self._lock:
            found = [copy.deepcopy(r) for r in self._store.values() if keep(r)]
        return sorted(found, key=lambda r: (-r.priority, r.id))

    def list_all(self) -> list[Rule]:
        return self._select(lambda r: True)

    def list_active(self) -> list[Rule]:
        return self._select(lambda r: r.is_active)

    def record_outcome(self, rule_id: str, success: bool, alpha: float) -> OutcomeRecord | None:
        with self._lock:
            stored = self._store.get(rule_id)
            if stored is None:
                return None
            return self._scorer.record_outcome(stored, success, alpha)
