"""SQLite implementation of the rule repository.

Uses SQLAlchemy 2.0-style queries (select() + session.execute()) and takes
a Session in its constructor. Callers own the transaction.
"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from tabrules.storage.repositories import RuleRepository
from tabrules.storage.schema import RuleRow


class SqliteRuleRepository(RuleRepository):
    """SQLite implementation of rule storage."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, rule_id: str) -> RuleRow | None:
        stmt = select(RuleRow).where(RuleRow.rule_id == rule_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def get_all(self, *, enabled_only: bool = False) -> Sequence[RuleRow]:
        stmt = select(RuleRow)
        if enabled_only:
            stmt = stmt.where(RuleRow.enabled.is_(True))
        stmt = stmt.order_by(RuleRow.position, RuleRow.rule_id)
        return list(self._session.execute(stmt).scalars().all())

    def save(self, rule: RuleRow) -> None:
        self._session.merge(rule)
        self._session.flush()

    def delete(self, rule_id: str) -> bool:
        row = self.get(rule_id)
        if row is None:
            return False
        self._session.delete(row)
        self._session.flush()
        return True

    def delete_all(self) -> int:
        count = self._session.execute(select(func.count()).select_from(RuleRow)).scalar_one()
        self._session.execute(delete(RuleRow))
        self._session.flush()
        return count

    def next_position(self) -> int:
        stmt = select(func.max(RuleRow.position))
        current = self._session.execute(stmt).scalar_one_or_none()
        return 0 if current is None else current + 1
