"""Rule definitions: subject, condition and action trees.

A rule reads as "for tabs matching SUBJECT, when CONDITION holds, apply
ACTION". Every discriminator is a closed ``str`` enum with an
``UNSPECIFIED`` member; the evaluation code treats UNSPECIFIED (and any
other unhandled member) as a non-match or a no-op, never as an error.
"""

from __future__ import annotations

import enum
import time
import uuid
from typing import Optional

from pydantic import BaseModel, Field

from tabrules.models.tab import GroupColor


class SubjectType(str, enum.Enum):
    """What kind of entity a subject selects. Only tabs exist today."""

    UNSPECIFIED = "unspecified"
    TABS = "tabs"


class SubjectField(str, enum.Enum):
    """Tab field a subject matcher reads."""

    UNSPECIFIED = "unspecified"
    URL = "url"
    TITLE = "title"
    DOMAIN = "domain"

    @property
    def label(self) -> str:
        return _SUBJECT_FIELD_LABELS.get(self, "Unknown")


class StringOperator(str, enum.Enum):
    """Case-insensitive string comparison used by subject matchers."""

    UNSPECIFIED = "unspecified"
    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"

    @property
    def label(self) -> str:
        return _STRING_OPERATOR_LABELS.get(self, "unknown")


class JoinOperator(str, enum.Enum):
    """How a list of matcher results is combined. UNSPECIFIED means AND."""

    UNSPECIFIED = "unspecified"
    AND = "and"
    OR = "or"


class ConditionType(str, enum.Enum):
    """Trigger condition checked for each subject tab."""

    UNSPECIFIED = "unspecified"
    TAB_AGE = "tab_age"
    TAB_INACTIVE_DURATION = "tab_inactive_duration"
    TAB_COUNT_EXCEEDS = "tab_count_exceeds"
    TAB_DUPLICATE = "tab_duplicate"

    @property
    def label(self) -> str:
        return _CONDITION_TYPE_LABELS.get(self, "Unknown")


class NumericOperator(str, enum.Enum):
    """Numeric comparison. Strict: no epsilon, ``>``/``<`` are exclusive."""

    UNSPECIFIED = "unspecified"
    GREATER_THAN = ">"
    LESS_THAN = "<"
    EQUALS = "="
    GREATER_THAN_OR_EQUALS = ">="
    LESS_THAN_OR_EQUALS = "<="

    @property
    def label(self) -> str:
        return "?" if self is NumericOperator.UNSPECIFIED else self.value


class TimeUnit(str, enum.Enum):
    """Unit of the threshold of an age-based condition."""

    UNSPECIFIED = "unspecified"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

    @property
    def label(self) -> str:
        return "" if self is TimeUnit.UNSPECIFIED else self.value


class ActionType(str, enum.Enum):
    """Mutation applied to each qualifying tab."""

    UNSPECIFIED = "unspecified"
    CLOSE = "close"
    MOVE_TO_GROUP = "move_to_group"
    PIN = "pin"
    UNPIN = "unpin"
    DISCARD = "discard"
    MUTE = "mute"
    HIGHLIGHT = "highlight"

    @property
    def label(self) -> str:
        return _ACTION_TYPE_LABELS.get(self, "Unknown")


_SUBJECT_FIELD_LABELS: dict[SubjectField, str] = {
    SubjectField.URL: "URL",
    SubjectField.TITLE: "Title",
    SubjectField.DOMAIN: "Domain",
}

_STRING_OPERATOR_LABELS: dict[StringOperator, str] = {
    StringOperator.CONTAINS: "contains",
    StringOperator.EQUALS: "equals",
    StringOperator.STARTS_WITH: "starts with",
    StringOperator.ENDS_WITH: "ends with",
    StringOperator.REGEX: "matches regex",
}

_CONDITION_TYPE_LABELS: dict[ConditionType, str] = {
    ConditionType.TAB_AGE: "Tab age",
    ConditionType.TAB_INACTIVE_DURATION: "Inactive duration",
    ConditionType.TAB_COUNT_EXCEEDS: "Tab count exceeds",
    ConditionType.TAB_DUPLICATE: "Is duplicate",
}

_ACTION_TYPE_LABELS: dict[ActionType, str] = {
    ActionType.CLOSE: "Close tabs",
    ActionType.MOVE_TO_GROUP: "Move to group",
    ActionType.PIN: "Pin tabs",
    ActionType.UNPIN: "Unpin tabs",
    ActionType.DISCARD: "Discard tabs",
    ActionType.MUTE: "Mute tabs",
    ActionType.HIGHLIGHT: "Highlight tabs",
}


class SubjectMatcher(BaseModel):
    """One string test against a tab field."""

    field: SubjectField = SubjectField.URL
    operator: StringOperator = StringOperator.CONTAINS
    value: str = ""


class Subject(BaseModel):
    """Selects the tabs a rule is concerned with."""

    type: SubjectType = SubjectType.TABS
    matchers: list[SubjectMatcher] = Field(default_factory=list)
    join_operator: JoinOperator = JoinOperator.AND


class ConditionMatcher(BaseModel):
    """One numeric test. ``time_unit`` only matters for age-based types."""

    type: ConditionType = ConditionType.TAB_AGE
    operator: NumericOperator = NumericOperator.GREATER_THAN
    value: int = 0
    time_unit: TimeUnit = TimeUnit.HOURS


class Condition(BaseModel):
    """Decides whether the rule fires for a selected tab."""

    matchers: list[ConditionMatcher] = Field(default_factory=list)
    join_operator: JoinOperator = JoinOperator.AND


class ActionParams(BaseModel):
    """Parameters for MOVE_TO_GROUP. Ignored by every other action."""

    group_name: Optional[str] = None
    group_color: Optional[GroupColor] = None


class ActionMatcher(BaseModel):
    type: ActionType = ActionType.CLOSE
    params: Optional[ActionParams] = None


class Action(BaseModel):
    """Mutations to apply. All matchers run; ``join_operator`` is not used."""

    matchers: list[ActionMatcher] = Field(default_factory=list)
    join_operator: JoinOperator = JoinOperator.AND


class Rule(BaseModel):
    """A user-defined automation rule.

    Rules missing a subject, condition or action are inert: they are
    stored and listed, but the engine skips them.
    """

    id: str
    name: str = ""
    enabled: bool = True
    subject: Optional[Subject] = None
    condition: Optional[Condition] = None
    action: Optional[Action] = None
    created_at: Optional[int] = None  # epoch ms
    updated_at: Optional[int] = None  # epoch ms

    @property
    def is_actionable(self) -> bool:
        """Whether the engine should evaluate this rule at all."""
        return (
            self.subject is not None
            and self.condition is not None
            and self.action is not None
        )


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_rule_id(now: int | None = None) -> str:
    """Return a fresh rule id such as ``rule_1718000000000_3f9a2c1``."""
    stamp = now_ms() if now is None else now
    return f"rule_{stamp}_{uuid.uuid4().hex[:7]}"


def new_rule(
    name: str,
    *,
    subject: Subject | None = None,
    condition: Condition | None = None,
    action: Action | None = None,
    enabled: bool = True,
) -> Rule:
    """Create a rule with a generated id and both timestamps set to now."""
    stamp = now_ms()
    return Rule(
        id=generate_rule_id(stamp),
        name=name,
        enabled=enabled,
        subject=subject,
        condition=condition,
        action=action,
        created_at=stamp,
        updated_at=stamp,
    )


def describe_rule(rule: Rule) -> str:
    """One-line human summary, e.g. ``URL contains "x" -> Close tabs``."""
    parts: list[str] = []

    if rule.subject is not None:
        join = " or " if rule.subject.join_operator is JoinOperator.OR else " and "
        tests = [
            f'{m.field.label} {m.operator.label} "{m.value}"'
            for m in rule.subject.matchers
        ]
        parts.append(join.join(tests) if tests else "all tabs")

    if rule.condition is not None and rule.condition.matchers:
        join = " or " if rule.condition.join_operator is JoinOperator.OR else " and "
        tests = []
        for m in rule.condition.matchers:
            if m.type is ConditionType.TAB_DUPLICATE:
                tests.append(m.type.label)
            elif m.type is ConditionType.TAB_COUNT_EXCEEDS:
                tests.append(f"{m.type.label} {m.operator.label} {m.value}")
            else:
                tests.append(
                    f"{m.type.label} {m.operator.label} {m.value} {m.time_unit.label}".rstrip()
                )
        parts.append("when " + join.join(tests))

    if rule.action is not None:
        labels = []
        for m in rule.action.matchers:
            label = m.type.label
            if m.type is ActionType.MOVE_TO_GROUP and m.params and m.params.group_name:
                label = f'{label} "{m.params.group_name}"'
            labels.append(label)
        parts.append("-> " + ", ".join(labels) if labels else "-> nothing")

    return " ".join(parts) if parts else "(incomplete rule)"
