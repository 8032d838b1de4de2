"""Abstract repository interfaces for rule storage.

No SQLAlchemy imports here -- pure abstract contracts.

Concrete implementations are in sqlite.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from tabrules.storage.schema import RuleRow


class RuleRepository(ABC):
    """Abstract interface for rule storage operations."""

    @abstractmethod
    def get(self, rule_id: str) -> RuleRow | None:
        """Get a rule by id. Returns None if not found."""
        ...

    @abstractmethod
    def get_all(self, *, enabled_only: bool = False) -> Sequence[RuleRow]:
        """Get all rules ordered by position (evaluation order)."""
        ...

    @abstractmethod
    def save(self, rule: RuleRow) -> None:
        """Insert or update a rule."""
        ...

    @abstractmethod
    def delete(self, rule_id: str) -> bool:
        """Delete a rule. Returns False if it did not exist."""
        ...

    @abstractmethod
    def delete_all(self) -> int:
        """Delete every rule. Returns the number removed."""
        ...

    @abstractmethod
    def next_position(self) -> int:
        """Position that places a new rule after every existing one."""
        ...
