"""RuleStore -- domain-level rule persistence on top of the repository.

Converts between :class:`~tabrules.models.rule.Rule` values and
``RuleRow`` records, keeps rules in insertion order (which is also the
order the engine evaluates them in) and implements the ``RuleSource``
protocol so it can be handed straight to a :class:`RuleEngine`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterable

from pydantic import ValidationError

from tabrules.exceptions import RuleNotFoundError, RuleValidationError, StorageError
from tabrules.models.rule import Rule, now_ms
from tabrules.storage.engine import create_session_factory, create_storage_engine, init_db
from tabrules.storage.schema import RuleRow
from tabrules.storage.sqlite import SqliteRuleRepository

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sqlalchemy import Engine
    from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_DEFINITION_FIELDS = {"subject", "condition", "action"}


def rule_to_row(rule: Rule, position: int) -> RuleRow:
    return RuleRow(
        rule_id=rule.id,
        position=position,
        name=rule.name,
        enabled=rule.enabled,
        definition_json=rule.model_dump(mode="json", include=_DEFINITION_FIELDS),
        created_at=rule.created_at,
        updated_at=rule.updated_at,
    )


def row_to_rule(row: RuleRow) -> Rule:
    """Rebuild a Rule from its row. Raises RuleValidationError if corrupt."""
    data: dict[str, Any] = dict(row.definition_json or {})
    data.update(
        id=row.rule_id,
        name=row.name,
        enabled=row.enabled,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
    try:
        return Rule.model_validate(data)
    except ValidationError as exc:
        raise RuleValidationError(f"Stored rule {row.rule_id} is invalid: {exc}") from exc


class RuleStore:
    """SQLite-backed rule storage.

    Usage::

        with RuleStore.open("rules.db") as store:
            store.add_rule(rule)
            engine = RuleEngine(store, browser, browser)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        engine: Engine | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._clock = clock or now_ms

    @classmethod
    def open(
        cls,
        path: str = ":memory:",
        *,
        url: str | None = None,
        clock: Callable[[], int] | None = None,
    ) -> RuleStore:
        """Open (and create if needed) a rule database."""
        engine = create_storage_engine(path, url=url)
        init_db(engine)
        return cls(create_session_factory(engine), engine=engine, clock=clock)

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self) -> RuleStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _repository(self) -> Iterator[SqliteRuleRepository]:
        session = self._session_factory()
        try:
            yield SqliteRuleRepository(session)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_rules(self, *, enabled_only: bool = False) -> list[Rule]:
        """All rules in evaluation order. Corrupt rows are logged and skipped."""
        with self._repository() as repo:
            rows = repo.get_all(enabled_only=enabled_only)
            rules = []
            for row in rows:
                try:
                    rules.append(row_to_rule(row))
                except RuleValidationError as exc:
                    logger.warning("Skipping unreadable rule: %s", exc)
            return rules

    def get_rule(self, rule_id: str) -> Rule | None:
        with self._repository() as repo:
            row = repo.get(rule_id)
            return row_to_rule(row) if row is not None else None

    async def get_all_rules(self) -> list[Rule]:
        """RuleSource entry point used by the engine every cycle."""
        try:
            return self.list_rules()
        except Exception as exc:
            raise StorageError(f"Could not read rules: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_rule(self, rule: Rule) -> Rule:
        """Append ``rule`` after every stored rule.

        Missing timestamps are stamped with the current time.
        """
        stamp = self._clock()
        rule = rule.model_copy(
            update={
                "created_at": rule.created_at if rule.created_at is not None else stamp,
                "updated_at": rule.updated_at if rule.updated_at is not None else stamp,
            }
        )
        with self._repository() as repo:
            if repo.get(rule.id) is not None:
                raise StorageError(f"Rule already exists: {rule.id}")
            repo.save(rule_to_row(rule, repo.next_position()))
        logger.debug("Added rule %s (%s)", rule.id, rule.name)
        return rule

    def update_rule(self, rule_id: str, **changes: Any) -> Rule:
        """Apply field changes to a stored rule and bump ``updated_at``.

        ``id`` and ``created_at`` cannot be changed. ``updated_at`` never
        moves backwards even if the clock does.

        Raises:
            RuleNotFoundError: If no rule has ``rule_id``.
            RuleValidationError: If the changes do not form a valid rule.
        """
        changes.pop("id", None)
        changes.pop("created_at", None)
        changes.pop("updated_at", None)

        with self._repository() as repo:
            row = repo.get(rule_id)
            if row is None:
                raise RuleNotFoundError(rule_id)
            current = row_to_rule(row)
            data = current.model_dump()
            data.update(changes)
            previous = current.updated_at or 0
            data["updated_at"] = max(self._clock(), previous)
            try:
                updated = Rule.model_validate(data)
            except ValidationError as exc:
                raise RuleValidationError(str(exc)) from exc
            repo.save(rule_to_row(updated, row.position))
        return updated

    def set_enabled(self, rule_id: str, enabled: bool) -> Rule:
        return self.update_rule(rule_id, enabled=enabled)

    def toggle_rule(self, rule_id: str) -> Rule:
        """Flip the enabled flag of a rule."""
        current = self.get_rule(rule_id)
        if current is None:
            raise RuleNotFoundError(rule_id)
        return self.update_rule(rule_id, enabled=not current.enabled)

    def delete_rule(self, rule_id: str) -> bool:
        with self._repository() as repo:
            return repo.delete(rule_id)

    def replace_all(self, rules: Iterable[Rule]) -> list[Rule]:
        """Replace every stored rule with ``rules``, keeping their order."""
        stamp = self._clock()
        stored: list[Rule] = []
        with self._repository() as repo:
            repo.delete_all()
            for position, rule in enumerate(rules):
                rule = rule.model_copy(
                    update={
                        "created_at": rule.created_at if rule.created_at is not None else stamp,
                        "updated_at": rule.updated_at if rule.updated_at is not None else stamp,
                    }
                )
                repo.save(rule_to_row(rule, position))
                stored.append(rule)
        return stored
