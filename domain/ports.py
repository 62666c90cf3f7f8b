"""Domain ports — abstract interfaces for repositories and infrastructure.

Only stdlib (abc) and domain.models imports allowed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from domain.models import OutcomeRecord, Pattern, Rule


# ── Repository Ports ──────────────────────────────────────────────────────


class PatternRepository(ABC):
    """Persistence port for learned extraction patterns."""

    @abstractmethod
    def get(self, pattern_id: str) -> Pattern | None: ...

    @abstractmethod
    def save(self, pattern: Pattern) -> Pattern: ...

    @abstractmethod
    def list_all(self) -> list[Pattern]: ...

    @abstractmethod
    def list_active(self, supplier: str | None = None) -> list[Pattern]: ...

    @abstractmethod
    def list_by_field(self, field_name: str) -> list[Pattern]: ...

    @abstractmethod
    def record_outcome(self, pattern_id: str, success: bool, alpha: float) -> OutcomeRecord | None: ...


class RuleRepository(ABC):
    """Persistence port for mapping rules (with their conditions and actions)."""

    @abstractmethod
    def get(self, rule_id: str) -> Rule | None: ...

    @abstractmethod
    def save(self, rule: Rule) -> Rule: ...

    @abstractmethod
    def delete(self, rule_id: str) -> bool: ...

    @abstractmethod
    def list_all(self) -> list[Rule]: ...

    @abstractmethod
    def list_active(self) -> list[Rule]: ...

    @abstractmethod
    def record_outcome(self, rule_id: str, success: bool, alpha: float) -> OutcomeRecord | None: ...


# ── Infrastructure Ports ──────────────────────────────────────────────────


class CachePort(ABC):
    """Port for key-value caching (Redis, in-memory, etc.)."""

    @abstractmethod
    def get(self, key: str) -> object | None: ...

    @abstractmethod
    def set(self, key: str, value: object, ttl: int = 3600) -> None: ...

    @abstractmethod
    def invalidate(self, prefix: str) -> None: ...
