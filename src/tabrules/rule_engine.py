"""RuleEngine -- owns the evaluation loop.

The engine periodically fetches the stored rules and the open tabs and, for
every enabled rule, runs subject matching -> condition evaluation -> action
execution. It also owns the access tracker that feeds tab activation times
into age-based conditions.

Life-cycle::

    engine = RuleEngine(store, browser, browser)
    await engine.start()      # track tab access, evaluate once, arm the timer
    ...
    report = await engine.run_now()   # manual "run now"
    await engine.stop()       # cancel future firings
    await engine.drain()      # wait for in-flight cycles, release the scheduler

Timer firings come from an APScheduler interval job, so the cadence is not
stretched by cycle duration and a slow cycle can still be running when the
next one is due. By default that next firing is skipped (the job allows one
running instance); ``EngineConfig.allow_overlapping_cycles`` lets cycles
overlap instead. Nothing raised inside a cycle escapes it.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import sys
from typing import TYPE_CHECKING, Callable

from apscheduler.events import EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tabrules.engine.actions import ActionExecutor
from tabrules.engine.conditions import ConditionEvaluator
from tabrules.engine.subjects import filter_subjects
from tabrules.engine.tracker import AccessTracker
from tabrules.models.config import EngineConfig
from tabrules.models.evaluation import CycleReport, RuleEvaluation
from tabrules.models.rule import now_ms

if TYPE_CHECKING:
    from apscheduler.events import JobSubmissionEvent
    from apscheduler.job import Job

    from tabrules.models.rule import Rule
    from tabrules.models.tab import Tab
    from tabrules.protocols import RuleSource, TabEventSource, TabProvider

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "tabrules-cycle"


class EngineState(str, enum.Enum):
    """States the engine can be in during its lifecycle."""

    STOPPED = "stopped"
    RUNNING = "running"


class RuleEngine:
    """Periodic rule evaluator bound to one browser and one rule source.

    Construct one per host process; start and stop are explicit calls.
    Without an event source, activations are never observed: ages are
    measured from when the engine first saw each tab.
    """

    def __init__(
        self,
        rule_source: RuleSource,
        tab_provider: TabProvider,
        event_source: TabEventSource | None = None,
        *,
        config: EngineConfig | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._rule_source = rule_source
        self._provider = tab_provider
        self._event_source = event_source
        self._config = config or EngineConfig()
        self._clock = clock or now_ms
        self._tracker = AccessTracker(
            clock=self._clock,
            backfill_offset_ms=self._config.backfill_offset_ms,
        )
        self._conditions = ConditionEvaluator(self._clock)
        self._executor = ActionExecutor(tab_provider)
        self._scheduler: AsyncIOScheduler | None = None
        self._scheduler_loop: asyncio.AbstractEventLoop | None = None
        self._job: Job | None = None
        self._in_flight: int = 0
        self._idle: asyncio.Event | None = None
        self._last_report: CycleReport | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return EngineState.RUNNING if self._job is not None else EngineState.STOPPED

    @property
    def is_running(self) -> bool:
        return self._job is not None

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def tracker(self) -> AccessTracker:
        return self._tracker

    @property
    def last_report(self) -> CycleReport | None:
        """Report of the most recent cycle that was not skipped."""
        return self._last_report

    # ------------------------------------------------------------------
    # Life-cycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start tracking tab access, evaluate once, then arm the timer.

        Calling start() on a running engine does nothing. If tracking cannot
        be installed the error propagates and no timer is left behind.
        """
        if self._job is not None:
            return

        if self._event_source is None:
            logger.warning(
                "No tab event source: tab activations will not be tracked"
            )
        await self._start_tracking()
        await self._run_cycle("start")

        scheduler = self._ensure_scheduler()
        max_instances = sys.maxsize if self._config.allow_overlapping_cycles else 1
        self._job = scheduler.add_job(
            self._run_timer_cycle,
            IntervalTrigger(seconds=self._config.interval_seconds),
            id=CYCLE_JOB_ID,
            name="tabrules evaluation cycle",
            max_instances=max_instances,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(
            "Rule engine started (interval=%ss)", self._config.interval_seconds
        )

    async def stop(self) -> None:
        """Cancel future timer firings. An in-flight cycle runs to completion."""
        job, self._job = self._job, None
        if job is None:
            return
        job.remove()
        logger.info("Rule engine stopped")

    async def drain(self) -> None:
        """Wait for running cycles, then shut the scheduler down if stopped."""
        if self._idle is not None:
            await self._idle.wait()
        if self._job is None and self._scheduler is not None:
            self._shutdown_scheduler()

    async def __aenter__(self) -> RuleEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
        await self.drain()

    async def run_now(self) -> CycleReport:
        """Run exactly one evaluation cycle outside the timer.

        Never raises: failures are logged and recorded on the report.
        """
        logger.info("Running manual evaluation")
        return await self._run_cycle("manual")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        loop = asyncio.get_running_loop()
        if self._scheduler is not None and self._scheduler_loop is not loop:
            # Left over from an event loop that has since finished.
            self._shutdown_scheduler()
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(event_loop=loop)
            self._scheduler.add_listener(
                self._on_max_instances, EVENT_JOB_MAX_INSTANCES
            )
            self._scheduler.start()
            self._scheduler_loop = loop
            self._idle = asyncio.Event()
            if not self._in_flight:
                self._idle.set()
        return self._scheduler

    def _shutdown_scheduler(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        self._scheduler_loop = None
        self._idle = None
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)

    def _on_max_instances(self, event: JobSubmissionEvent) -> None:
        logger.warning("Skipping timer cycle: previous cycle is still running")

    async def _start_tracking(self) -> None:
        if self._event_source is not None:
            self._tracker.subscribe(self._event_source)
        try:
            tabs = await self._provider.list_tabs()
        except Exception as exc:
            logger.error("Could not backfill tab access times: %s", exc)
            return
        self._tracker.retain(t.id for t in tabs)
        self._tracker.backfill(tabs)

    async def _run_timer_cycle(self) -> None:
        await self._run_cycle("timer")

    async def _run_cycle(self, trigger: str) -> CycleReport:
        report = CycleReport(started_at=self._clock(), trigger=trigger)

        if self._in_flight and not self._config.allow_overlapping_cycles:
            logger.warning(
                "Skipping %s cycle: previous cycle is still running", trigger
            )
            report.skipped = True
            report.finished_at = self._clock()
            return report

        self._in_flight += 1
        if self._idle is not None:
            self._idle.clear()
        try:
            await self._evaluate_all(report)
        except Exception as exc:
            logger.exception("Error evaluating rules")
            report.error = str(exc) or type(exc).__name__
        finally:
            self._in_flight -= 1
            if not self._in_flight and self._idle is not None:
                self._idle.set()
            report.finished_at = self._clock()
            self._last_report = report
        return report

    async def _evaluate_all(self, report: CycleReport) -> None:
        rules = await self._rule_source.get_all_rules()
        enabled = [rule for rule in rules if rule.enabled]
        if not enabled:
            logger.debug("No enabled rules")
            return

        tabs = await self._provider.list_tabs()
        self._tracker.retain(t.id for t in tabs)
        self._tracker.backfill(tabs)
        tabs = self._tracker.attach(tabs)

        # Rules run in storage order against the same snapshot; a tab closed
        # by an earlier rule still shows up for later ones.
        for rule in enabled:
            if not rule.is_actionable:
                logger.debug("Skipping incomplete rule '%s'", rule.name or rule.id)
                continue
            report.rules_evaluated += 1
            report.evaluations.append(await self._evaluate_rule(rule, tabs))

    async def _evaluate_rule(self, rule: Rule, tabs: list[Tab]) -> RuleEvaluation:
        assert rule.subject is not None
        assert rule.condition is not None
        assert rule.action is not None

        matched: list[Tab] = []
        qualifying: list[Tab] = []
        try:
            matched = filter_subjects(rule.subject, tabs)
            if matched:
                qualifying = self._conditions.filter(rule.condition, matched, tabs)
            if not qualifying:
                return RuleEvaluation(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    matched_tab_ids=tuple(t.id for t in matched),
                )

            logger.info("Rule '%s' matched %d tab(s)", rule.name, len(qualifying))
            outcomes = await self._executor.execute(
                rule.action.matchers, qualifying, rule_id=rule.id
            )
        except Exception as exc:
            logger.error(
                "Rule '%s' raised %s: %s", rule.name, type(exc).__name__, exc
            )
            return RuleEvaluation(
                rule_id=rule.id,
                rule_name=rule.name,
                matched_tab_ids=tuple(t.id for t in matched),
                qualifying_tab_ids=tuple(t.id for t in qualifying),
                error=str(exc),
            )

        return RuleEvaluation(
            rule_id=rule.id,
            rule_name=rule.name,
            matched_tab_ids=tuple(t.id for t in matched),
            qualifying_tab_ids=tuple(t.id for t in qualifying),
            outcomes=tuple(outcomes),
        )
