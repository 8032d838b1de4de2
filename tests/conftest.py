"""Shared test fixtures for tabrules.

Provides in-memory SQLite engine, session, repository and rule store
fixtures, a controllable clock, and helpers for building tabs and rules.
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session, sessionmaker

from tabrules.browser.memory import InMemoryBrowser
from tabrules.models.rule import (
    Action,
    ActionMatcher,
    ActionParams,
    ActionType,
    Condition,
    ConditionMatcher,
    ConditionType,
    NumericOperator,
    Rule,
    StringOperator,
    Subject,
    SubjectField,
    SubjectMatcher,
    TimeUnit,
)
from tabrules.models.tab import Tab
from tabrules.storage.engine import create_storage_engine, init_db
from tabrules.storage.sqlite import SqliteRuleRepository
from tabrules.storage.store import RuleStore

# Fixed "now" used across tests: 2024-06-01T00:00:00Z.
NOW = 1_717_200_000_000
MINUTE = 60 * 1000
HOUR = 60 * MINUTE
DAY = 24 * HOUR


class FakeClock:
    """Callable epoch-ms clock that only moves when told to."""

    def __init__(self, start: int = NOW) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    eng = create_storage_engine(":memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    """Session with automatic rollback after each test."""
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    sess = SessionLocal()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def rule_repo(session: Session) -> SqliteRuleRepository:
    return SqliteRuleRepository(session)


@pytest.fixture
def store(clock: FakeClock):
    """In-memory RuleStore driven by the fake clock."""
    s = RuleStore.open(":memory:", clock=clock)
    yield s
    s.close()


@pytest.fixture
def browser() -> InMemoryBrowser:
    return InMemoryBrowser()


# ------------------------------------------------------------------
# Shared test helpers
# ------------------------------------------------------------------


def make_tab(tab_id: int | None = 1, **overrides) -> Tab:
    """Create a Tab with sensible defaults."""
    fields = {
        "id": tab_id,
        "window_id": 1,
        "index": tab_id if tab_id is not None else 0,
        "url": f"https://example.com/{tab_id}",
        "title": f"Tab {tab_id}",
    }
    fields.update(overrides)
    return Tab(**fields)


def url_subject(value: str, operator: StringOperator = StringOperator.CONTAINS) -> Subject:
    return Subject(
        matchers=[SubjectMatcher(field=SubjectField.URL, operator=operator, value=value)]
    )


def age_condition(
    value: int,
    unit: TimeUnit = TimeUnit.HOURS,
    operator: NumericOperator = NumericOperator.GREATER_THAN,
    condition_type: ConditionType = ConditionType.TAB_AGE,
) -> Condition:
    return Condition(
        matchers=[
            ConditionMatcher(type=condition_type, operator=operator, value=value, time_unit=unit)
        ]
    )


def make_action(*types: ActionType, group_name: str | None = None, group_color=None) -> Action:
    params = None
    if group_name is not None or group_color is not None:
        params = ActionParams(group_name=group_name, group_color=group_color)
    return Action(matchers=[ActionMatcher(type=t, params=params) for t in types])


def make_rule(
    rule_id: str = "rule_1",
    *,
    name: str | None = None,
    subject: Subject | None = None,
    condition: Condition | None = None,
    action: Action | None = None,
    enabled: bool = True,
) -> Rule:
    """Create a complete rule; by default it selects every tab unconditionally and closes it."""
    return Rule(
        id=rule_id,
        name=name if name is not None else rule_id,
        enabled=enabled,
        subject=subject if subject is not None else Subject(),
        condition=condition if condition is not None else Condition(),
        action=action if action is not None else make_action(ActionType.CLOSE),
    )


class StaticRuleSource:
    """RuleSource returning a fixed list (or raising a fixed error)."""

    def __init__(self, rules: list[Rule] | None = None, error: Exception | None = None) -> None:
        self.rules = list(rules or [])
        self.error = error
        self.calls = 0

    async def get_all_rules(self) -> list[Rule]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.rules)
