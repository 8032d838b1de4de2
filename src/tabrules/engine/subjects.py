"""Subject matching -- decides which tabs a rule is concerned with.

Pure functions over tab snapshots. Nothing in here raises on bad input:
an unparsable URL yields an empty field and an invalid regular expression
never matches.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Iterable, Sequence
from urllib.parse import urlparse

from tabrules.models.rule import JoinOperator, StringOperator, SubjectField, SubjectType

if TYPE_CHECKING:
    from tabrules.models.rule import Subject
    from tabrules.models.tab import Tab

logger = logging.getLogger(__name__)


def combine_results(results: Iterable[bool], join_operator: JoinOperator) -> bool:
    """Join matcher results: OR needs any, AND (and UNSPECIFIED) needs all."""
    if join_operator is JoinOperator.OR:
        return any(results)
    return all(results)


def extract_domain(url: str | None) -> str:
    """Hostname of ``url``, or ``""`` when missing or unparsable."""
    if not url:
        return ""
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""


def extract_field(tab: Tab, field: SubjectField) -> str:
    """Value of the tab field a matcher tests. Unknown fields read as ``""``."""
    if field is SubjectField.URL:
        return tab.url or ""
    if field is SubjectField.TITLE:
        return tab.title or ""
    if field is SubjectField.DOMAIN:
        return extract_domain(tab.url)
    return ""


def match_value(value: str, operator: StringOperator, pattern: str) -> bool:
    """Case-insensitive comparison of ``value`` against ``pattern``."""
    if operator is StringOperator.REGEX:
        try:
            return re.search(pattern, value, re.IGNORECASE) is not None
        except re.error as exc:
            logger.debug("Invalid subject regex %r: %s", pattern, exc)
            return False

    lowered = value.lower()
    needle = pattern.lower()
    if operator is StringOperator.CONTAINS:
        return needle in lowered
    if operator is StringOperator.EQUALS:
        return lowered == needle
    if operator is StringOperator.STARTS_WITH:
        return lowered.startswith(needle)
    if operator is StringOperator.ENDS_WITH:
        return lowered.endswith(needle)
    return False


def matches(subject: Subject, tab: Tab) -> bool:
    """Whether ``tab`` is selected by ``subject``."""
    if subject.type is not SubjectType.TABS:
        return False
    if not subject.matchers:
        return True
    results = [
        match_value(extract_field(tab, m.field), m.operator, m.value)
        for m in subject.matchers
    ]
    return combine_results(results, subject.join_operator)


def filter_subjects(subject: Subject, tabs: Sequence[Tab]) -> list[Tab]:
    """Tabs selected by ``subject``, in input order."""
    if subject.type is not SubjectType.TABS:
        return []
    if not subject.matchers:
        return list(tabs)
    return [tab for tab in tabs if matches(subject, tab)]
