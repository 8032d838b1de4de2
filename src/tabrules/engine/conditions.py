"""Condition evaluation -- decides whether a rule fires for a selected tab.

Age-based conditions read ``Tab.last_accessed`` (attached by the access
tracker). An untracked tab is treated as accessed "now", so its age is zero
and it never satisfies a ``>`` age threshold.

TAB_COUNT_EXCEEDS is a global condition (it counts every open tab, not just
the subject's tabs) but is evaluated per tab like everything else; the result
is the same for every tab in a cycle.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Sequence

from tabrules.engine.subjects import combine_results
from tabrules.models.rule import ConditionType, NumericOperator, TimeUnit, now_ms

if TYPE_CHECKING:
    from tabrules.models.rule import Condition, ConditionMatcher
    from tabrules.models.tab import Tab

logger = logging.getLogger(__name__)

_MS_PER_UNIT: dict[TimeUnit, int] = {
    TimeUnit.MINUTES: 60 * 1000,
    TimeUnit.HOURS: 60 * 60 * 1000,
    TimeUnit.DAYS: 24 * 60 * 60 * 1000,
}


def time_unit_to_ms(value: int, unit: TimeUnit) -> int | None:
    """Convert a threshold to milliseconds. None for an unset unit."""
    factor = _MS_PER_UNIT.get(unit)
    if factor is None:
        return None
    return value * factor


def compare(actual: int, operator: NumericOperator, expected: int) -> bool:
    """Apply a numeric operator. Unset operators compare as False."""
    if operator is NumericOperator.GREATER_THAN:
        return actual > expected
    if operator is NumericOperator.LESS_THAN:
        return actual < expected
    if operator is NumericOperator.EQUALS:
        return actual == expected
    if operator is NumericOperator.GREATER_THAN_OR_EQUALS:
        return actual >= expected
    if operator is NumericOperator.LESS_THAN_OR_EQUALS:
        return actual <= expected
    return False


def tab_age_ms(tab: Tab, now: int) -> int:
    """Milliseconds since the tab was last activated (0 if untracked)."""
    # A zero timestamp means "never stamped", not the epoch.
    last_accessed = tab.last_accessed or now
    return now - last_accessed


def check_tab_age(tab: Tab, matcher: ConditionMatcher, now: int) -> bool:
    threshold = time_unit_to_ms(matcher.value, matcher.time_unit)
    if threshold is None:
        logger.debug("Age condition without a time unit never matches")
        return False
    return compare(tab_age_ms(tab, now), matcher.operator, threshold)


def check_inactive_duration(tab: Tab, matcher: ConditionMatcher, now: int) -> bool:
    # The active tab of a window is never "inactive".
    if tab.active:
        return False
    return check_tab_age(tab, matcher, now)


def is_duplicate(tab: Tab, all_tabs: Sequence[Tab]) -> bool:
    """True if another open tab has exactly the same URL."""
    if not tab.url:
        return False
    return sum(1 for t in all_tabs if t.url == tab.url) > 1


def check_matcher(
    matcher: ConditionMatcher, tab: Tab, all_tabs: Sequence[Tab], now: int
) -> bool:
    """Evaluate a single condition matcher. Unknown types are False."""
    if matcher.type is ConditionType.TAB_AGE:
        return check_tab_age(tab, matcher, now)
    if matcher.type is ConditionType.TAB_INACTIVE_DURATION:
        return check_inactive_duration(tab, matcher, now)
    if matcher.type is ConditionType.TAB_COUNT_EXCEEDS:
        return compare(len(all_tabs), matcher.operator, matcher.value)
    if matcher.type is ConditionType.TAB_DUPLICATE:
        return is_duplicate(tab, all_tabs)
    return False


def evaluate(
    condition: Condition,
    tab: Tab,
    all_tabs: Sequence[Tab],
    *,
    now: int | None = None,
) -> bool:
    """Whether ``condition`` holds for ``tab`` given the whole tab population."""
    if not condition.matchers:
        return True
    at = now_ms() if now is None else now
    results = [check_matcher(m, tab, all_tabs, at) for m in condition.matchers]
    return combine_results(results, condition.join_operator)


class ConditionEvaluator:
    """Evaluates conditions against a bound clock.

    The clock is read once per :meth:`filter` call so every tab in a batch
    is judged against the same instant.
    """

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or now_ms

    def evaluate(self, condition: Condition, tab: Tab, all_tabs: Sequence[Tab]) -> bool:
        return evaluate(condition, tab, all_tabs, now=self._clock())

    def filter(
        self, condition: Condition, tabs: Sequence[Tab], all_tabs: Sequence[Tab]
    ) -> list[Tab]:
        """Tabs from ``tabs`` for which ``condition`` holds, in input order."""
        now = self._clock()
        return [tab for tab in tabs if evaluate(condition, tab, all_tabs, now=now)]
