"""Result records produced by an evaluation cycle.

Provides data classes for per-tab action outcomes, per-rule evaluations
and whole-cycle reports used by the engine, the CLI and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ActionOutcome:
    """Result of applying one action to one tab.

    Immutable: an action is attempted at most once per tab per cycle.
    """

    rule_id: str
    action_type: str
    tab_id: int | None
    outcome: str = "executed"  # "executed", "skipped", "error"
    error: str | None = None


@dataclass(frozen=True)
class RuleEvaluation:
    """What one rule saw and did during a cycle."""

    rule_id: str
    rule_name: str
    matched_tab_ids: tuple[int | None, ...] = ()
    qualifying_tab_ids: tuple[int | None, ...] = ()
    outcomes: tuple[ActionOutcome, ...] = ()
    error: str | None = None

    @property
    def fired(self) -> bool:
        return bool(self.qualifying_tab_ids)

    @property
    def failures(self) -> list[ActionOutcome]:
        return [o for o in self.outcomes if o.outcome == "error"]


@dataclass
class CycleReport:
    """Summary of one evaluation cycle.

    Mutable while the cycle runs; the engine fills in evaluations as rules
    are processed and sets ``finished_at`` at the end.
    """

    started_at: int  # epoch ms
    trigger: str = "manual"  # "start", "timer", "manual"
    finished_at: int | None = None
    rules_evaluated: int = 0
    evaluations: list[RuleEvaluation] = field(default_factory=list)
    error: str | None = None
    skipped: bool = False

    @property
    def outcomes(self) -> list[ActionOutcome]:
        return [o for ev in self.evaluations for o in ev.outcomes]

    @property
    def ok(self) -> bool:
        """True when the cycle ran to completion (action failures allowed)."""
        return self.error is None and not self.skipped
