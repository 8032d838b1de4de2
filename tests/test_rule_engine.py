"""Tests for RuleEngine -- cycles, life-cycle, timer and failure handling.

All tests drive the engine with ``asyncio.run`` against an InMemoryBrowser
and a fake clock; timer tests use a tiny interval.
"""

from __future__ import annotations

import asyncio
import sys

import pytest

from tabrules.browser.memory import InMemoryBrowser
from tabrules.exceptions import StorageError
from tabrules.models.config import EngineConfig
from tabrules.models.rule import ActionType, Rule, Subject
from tabrules.protocols import TabEvent
from tabrules.rule_engine import EngineState, RuleEngine
from tests.conftest import (
    HOUR,
    MINUTE,
    NOW,
    StaticRuleSource,
    age_condition,
    make_action,
    make_rule,
    make_tab,
    url_subject,
)


def _youtube_browser() -> InMemoryBrowser:
    return InMemoryBrowser(
        [
            make_tab(1, url="https://www.youtube.com/watch?v=a"),
            make_tab(2, url="https://example.com"),
            make_tab(3, url="https://www.youtube.com/feed", active=True),
        ]
    )


def _youtube_rule() -> Rule:
    """Close YouTube tabs not activated for more than an hour."""
    return make_rule(
        "yt",
        name="Close old YouTube",
        subject=url_subject("youtube"),
        condition=age_condition(1),
        action=make_action(ActionType.CLOSE),
    )


class TestRunNow:
    def test_closes_old_matching_tab_exactly_once(self, clock) -> None:
        browser = _youtube_browser()
        engine = RuleEngine(StaticRuleSource([_youtube_rule()]), browser, browser, clock=clock)
        engine.tracker.record(1, NOW - 2 * HOUR)
        engine.tracker.record(3, NOW - 2 * HOUR)

        report = asyncio.run(engine.run_now())

        assert report.ok
        assert report.trigger == "manual"
        assert report.rules_evaluated == 1
        [evaluation] = report.evaluations
        assert evaluation.matched_tab_ids == (1, 3)
        assert evaluation.qualifying_tab_ids == (1, 3)
        closes = [m for m in browser.mutations if m.operation == "close"]
        assert [m.tab_ids for m in closes] == [(1,), (3,)]
        assert [t.id for t in browser.tabs] == [2]

    def test_freshly_backfilled_tabs_are_not_old(self, clock) -> None:
        browser = _youtube_browser()
        engine = RuleEngine(StaticRuleSource([_youtube_rule()]), browser, browser, clock=clock)

        report = asyncio.run(engine.run_now())

        assert report.evaluations[0].qualifying_tab_ids == ()
        assert browser.mutations == []
        # Backfill stamped every tab it saw.
        assert engine.tracker.get(3) == NOW
        assert engine.tracker.get(1) == NOW - MINUTE

    def test_tabs_age_across_cycles(self, clock) -> None:
        browser = _youtube_browser()
        engine = RuleEngine(StaticRuleSource([_youtube_rule()]), browser, browser, clock=clock)
        asyncio.run(engine.run_now())
        clock.advance(2 * HOUR)
        asyncio.run(engine.run_now())
        assert [t.id for t in browser.tabs] == [2]

    def test_disabled_rule_causes_no_mutations(self, clock) -> None:
        browser = _youtube_browser()
        rule = make_rule("r", enabled=False)
        engine = RuleEngine(StaticRuleSource([rule]), browser, browser, clock=clock)
        report = asyncio.run(engine.run_now())
        assert report.rules_evaluated == 0
        assert browser.mutations == []
        assert len(browser.tabs) == 3

    def test_incomplete_rule_is_skipped(self, clock) -> None:
        browser = _youtube_browser()
        inert = Rule(id="inert", name="no action", subject=Subject())
        engine = RuleEngine(StaticRuleSource([inert]), browser, browser, clock=clock)
        report = asyncio.run(engine.run_now())
        assert report.ok
        assert report.rules_evaluated == 0
        assert browser.mutations == []

    def test_rules_run_in_order_against_one_snapshot(self, clock) -> None:
        browser = InMemoryBrowser([make_tab(1), make_tab(2)])
        close_all = make_rule("close", action=make_action(ActionType.CLOSE))
        pin_all = make_rule("pin", action=make_action(ActionType.PIN))
        engine = RuleEngine(StaticRuleSource([close_all, pin_all]), browser, browser, clock=clock)

        report = asyncio.run(engine.run_now())

        # The second rule still sees the tabs the first one closed.
        pin_eval = report.evaluations[1]
        assert pin_eval.qualifying_tab_ids == (1, 2)
        assert [o.outcome for o in pin_eval.outcomes] == ["error", "error"]
        assert report.ok

    def test_pinning_twice_is_harmless(self, clock) -> None:
        browser = InMemoryBrowser([make_tab(1)])
        rule = make_rule("pin", action=make_action(ActionType.PIN))
        engine = RuleEngine(StaticRuleSource([rule]), browser, browser, clock=clock)
        asyncio.run(engine.run_now())
        report = asyncio.run(engine.run_now())
        assert browser.get_tab(1).pinned is True
        assert report.outcomes[0].outcome == "executed"

    def test_already_closed_tab_fails_alone(self, clock) -> None:
        class StaleBrowser(InMemoryBrowser):
            """Lists a tab that was closed after enumeration."""

            async def list_tabs(self):
                return [*self.tabs, make_tab(99)]

        browser = StaleBrowser([make_tab(1), make_tab(2)])
        engine = RuleEngine(StaticRuleSource([make_rule()]), browser, browser, clock=clock)
        report = asyncio.run(engine.run_now())

        assert report.ok
        assert [(o.tab_id, o.outcome) for o in report.outcomes] == [
            (1, "executed"),
            (2, "executed"),
            (99, "error"),
        ]
        assert browser.tabs == []

    def test_rule_source_failure_is_caught(self, clock) -> None:
        browser = _youtube_browser()
        source = StaticRuleSource(error=StorageError("disk on fire"))
        engine = RuleEngine(source, browser, browser, clock=clock)

        report = asyncio.run(engine.run_now())

        assert not report.ok
        assert report.error == "disk on fire"
        assert browser.mutations == []
        assert engine.last_report is report

    def test_tab_listing_failure_is_caught(self, clock) -> None:
        class BrokenBrowser(InMemoryBrowser):
            async def list_tabs(self):
                raise RuntimeError("no tabs api")

        browser = BrokenBrowser()
        engine = RuleEngine(StaticRuleSource([make_rule()]), browser, browser, clock=clock)
        report = asyncio.run(engine.run_now())
        assert report.error == "no tabs api"

    def test_failing_rule_does_not_stop_later_rules(self, clock, monkeypatch) -> None:
        browser = InMemoryBrowser([make_tab(1)])
        bad = make_rule("bad", name="bad")
        good = make_rule("good", name="good", action=make_action(ActionType.PIN))
        engine = RuleEngine(StaticRuleSource([bad, good]), browser, browser, clock=clock)

        original = engine._executor.execute

        async def explode_for_bad(matchers, tabs, *, rule_id=""):
            if rule_id == "bad":
                raise RuntimeError("boom")
            return await original(matchers, tabs, rule_id=rule_id)

        monkeypatch.setattr(engine._executor, "execute", explode_for_bad)
        report = asyncio.run(engine.run_now())

        assert report.evaluations[0].error == "boom"
        assert report.evaluations[1].error is None
        assert browser.get_tab(1).pinned is True

    def test_closed_tabs_are_forgotten_without_events(self, clock) -> None:
        browser = InMemoryBrowser([make_tab(1)])
        rule = make_rule("pin", action=make_action(ActionType.PIN))
        engine = RuleEngine(StaticRuleSource([rule]), browser, clock=clock)

        async def scenario():
            for _ in range(50):
                tab = browser.open_tab(url="https://example.com/new")
                await engine.run_now()
                await browser.close(tab.id)
            await engine.run_now()

        asyncio.run(scenario())
        assert [t.id for t in browser.tabs] == [1]
        assert len(engine.tracker) == 1
        assert 1 in engine.tracker


class TestLifecycle:
    def test_start_evaluates_and_tracks(self, clock) -> None:
        browser = _youtube_browser()
        engine = RuleEngine(StaticRuleSource([_youtube_rule()]), browser, browser, clock=clock)

        async def scenario():
            await engine.start()
            try:
                assert engine.is_running
                assert engine.state is EngineState.RUNNING
                assert engine.last_report is not None
                assert engine.last_report.trigger == "start"
                assert browser.listener_count(TabEvent.ACTIVATED) == 1
                clock.advance(5 * MINUTE)
                browser.activate(1)
                assert engine.tracker.get(1) == NOW + 5 * MINUTE
            finally:
                await engine.stop()

        asyncio.run(scenario())
        assert engine.state is EngineState.STOPPED

    def test_start_twice_is_noop(self, clock) -> None:
        browser = _youtube_browser()
        source = StaticRuleSource([_youtube_rule()])
        engine = RuleEngine(source, browser, browser, clock=clock)

        async def scenario():
            await engine.start()
            await engine.start()
            await engine.stop()

        asyncio.run(scenario())
        assert source.calls == 1
        assert browser.listener_count(TabEvent.ACTIVATED) == 1

    def test_restart_does_not_duplicate_listeners(self, clock) -> None:
        browser = _youtube_browser()
        engine = RuleEngine(StaticRuleSource([]), browser, browser, clock=clock)

        async def scenario():
            await engine.start()
            await engine.stop()
            await engine.start()
            await engine.stop()

        asyncio.run(scenario())
        assert browser.listener_count(TabEvent.ACTIVATED) == 1
        assert browser.listener_count(TabEvent.REMOVED) == 1

    def test_stop_without_start(self, clock) -> None:
        engine = RuleEngine(StaticRuleSource(), InMemoryBrowser(), clock=clock)
        asyncio.run(engine.stop())
        assert engine.state is EngineState.STOPPED

    def test_timer_fires_repeatedly(self, clock) -> None:
        browser = InMemoryBrowser()
        source = StaticRuleSource([make_rule()])
        engine = RuleEngine(
            source, browser, browser, config=EngineConfig(interval_seconds=0.01), clock=clock
        )

        async def scenario():
            async with engine:
                await asyncio.sleep(0.1)

        asyncio.run(scenario())
        assert source.calls >= 3
        assert engine.last_report is not None

    def test_no_firing_after_stop(self, clock) -> None:
        source = StaticRuleSource([make_rule()])
        engine = RuleEngine(
            source, InMemoryBrowser(), config=EngineConfig(interval_seconds=0.01), clock=clock
        )

        async def scenario():
            await engine.start()
            await engine.stop()
            await engine.drain()
            calls = source.calls
            await asyncio.sleep(0.05)
            return calls

        calls_at_stop = asyncio.run(scenario())
        assert source.calls == calls_at_stop

    def test_timer_survives_failing_cycles(self, clock) -> None:
        source = StaticRuleSource(error=StorageError("disk on fire"))
        engine = RuleEngine(
            source, InMemoryBrowser(), config=EngineConfig(interval_seconds=0.01), clock=clock
        )

        async def scenario():
            async with engine:
                await asyncio.sleep(0.1)
                return engine.is_running

        assert asyncio.run(scenario()) is True
        assert source.calls >= 3
        assert engine.last_report.error == "disk on fire"

    @pytest.mark.parametrize(
        "allow_overlap,expected", [(False, 1), (True, sys.maxsize)]
    )
    def test_timer_job_instances_follow_config(self, clock, allow_overlap, expected) -> None:
        engine = RuleEngine(
            StaticRuleSource(),
            InMemoryBrowser(),
            config=EngineConfig(allow_overlapping_cycles=allow_overlap),
            clock=clock,
        )

        async def scenario():
            async with engine:
                return engine._job.max_instances

        assert asyncio.run(scenario()) == expected

    def test_failed_tracking_leaves_no_timer(self, clock) -> None:
        class BrokenEvents:
            def add_listener(self, event, handler):
                raise RuntimeError("no events api")

            def remove_listener(self, event, handler):
                pass

        source = StaticRuleSource([make_rule()])
        engine = RuleEngine(source, InMemoryBrowser(), BrokenEvents(), clock=clock)

        with pytest.raises(RuntimeError, match="no events api"):
            asyncio.run(engine.start())
        assert not engine.is_running
        assert source.calls == 0

    def test_start_without_event_source_warns(self, clock, caplog) -> None:
        engine = RuleEngine(StaticRuleSource(), InMemoryBrowser(), clock=clock)

        async def scenario():
            async with engine:
                pass

        asyncio.run(scenario())
        assert "tab activations will not be tracked" in caplog.text

    def test_restart_in_new_event_loop(self, clock) -> None:
        source = StaticRuleSource([make_rule()])
        engine = RuleEngine(source, InMemoryBrowser(), clock=clock)

        async def start_and_stop():
            await engine.start()
            await engine.stop()

        asyncio.run(start_and_stop())
        asyncio.run(start_and_stop())
        assert source.calls == 2
        assert engine.state is EngineState.STOPPED


class TestReentrancy:
    def _slow_source(self, gate: asyncio.Event) -> StaticRuleSource:
        class SlowSource(StaticRuleSource):
            async def get_all_rules(self):
                await gate.wait()
                return await super().get_all_rules()

        return SlowSource([make_rule()])

    def test_overlapping_cycle_is_skipped(self, clock) -> None:
        async def scenario():
            gate = asyncio.Event()
            browser = InMemoryBrowser([make_tab(1)])
            engine = RuleEngine(self._slow_source(gate), browser, browser, clock=clock)
            first = asyncio.create_task(engine.run_now())
            await asyncio.sleep(0)
            second = await engine.run_now()
            gate.set()
            return await first, second, browser

        first, second, browser = asyncio.run(scenario())
        assert second.skipped
        assert not second.ok
        assert first.ok
        assert [m.operation for m in browser.mutations] == ["close"]

    def test_overlap_allowed_by_config(self, clock) -> None:
        async def scenario():
            gate = asyncio.Event()
            browser = InMemoryBrowser([make_tab(1)])
            engine = RuleEngine(
                self._slow_source(gate),
                browser,
                browser,
                config=EngineConfig(allow_overlapping_cycles=True),
                clock=clock,
            )
            first = asyncio.create_task(engine.run_now())
            second = asyncio.create_task(engine.run_now())
            await asyncio.sleep(0)
            gate.set()
            return await asyncio.gather(first, second)

        first, second = asyncio.run(scenario())
        assert not first.skipped
        assert not second.skipped


class TestConfig:
    def test_defaults(self) -> None:
        config = EngineConfig()
        assert config.interval_seconds == 60.0
        assert config.backfill_offset_ms == 60_000
        assert config.allow_overlapping_cycles is False

    def test_interval_must_be_positive(self) -> None:
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            EngineConfig(interval_seconds=0)
