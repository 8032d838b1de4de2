"""Access tracker -- remembers when each tab last became active.

Browsers do not expose a reliable "last activated" time, so the engine keeps
its own side map fed by tab-activity events. Tabs seen for the first time
without an activation event are backfilled: the active tab is stamped now,
every other tab one minute in the past so age-based rules can pick up
pre-existing tabs right away. Entries for tabs that are no longer open are
dropped on every cycle, whether or not a removal event arrived.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Iterable

from tabrules.models.config import DEFAULT_BACKFILL_OFFSET_MS
from tabrules.models.rule import now_ms
from tabrules.protocols import TabEvent

if TYPE_CHECKING:
    from tabrules.models.tab import Tab
    from tabrules.protocols import TabEventSource

logger = logging.getLogger(__name__)


class AccessTracker:
    """Maps tab id -> epoch-ms timestamp of its last activation.

    Lives as long as the engine that owns it and is never reset between
    evaluation cycles.
    """

    def __init__(
        self,
        clock: Callable[[], int] | None = None,
        backfill_offset_ms: int = DEFAULT_BACKFILL_OFFSET_MS,
    ) -> None:
        self._clock = clock or now_ms
        self._backfill_offset_ms = backfill_offset_ms
        self._access_times: dict[int, int] = {}
        self._source: TabEventSource | None = None

    # ------------------------------------------------------------------
    # Event hooks
    # ------------------------------------------------------------------

    def on_activated(self, tab_id: int) -> None:
        self._access_times[tab_id] = self._clock()

    def on_removed(self, tab_id: int) -> None:
        self._access_times.pop(tab_id, None)

    def record(self, tab_id: int, timestamp: int) -> None:
        """Set the activation time of ``tab_id`` explicitly (epoch ms)."""
        self._access_times[tab_id] = timestamp

    def subscribe(self, source: TabEventSource) -> None:
        """Install the activation/removal listeners on ``source`` (once)."""
        if self._source is source:
            return
        if self._source is not None:
            self.unsubscribe()
        source.add_listener(TabEvent.ACTIVATED, self.on_activated)
        source.add_listener(TabEvent.REMOVED, self.on_removed)
        self._source = source
        logger.debug("Access tracker subscribed to tab events")

    def unsubscribe(self) -> None:
        if self._source is None:
            return
        self._source.remove_listener(TabEvent.ACTIVATED, self.on_activated)
        self._source.remove_listener(TabEvent.REMOVED, self.on_removed)
        self._source = None

    @property
    def is_subscribed(self) -> bool:
        return self._source is not None

    # ------------------------------------------------------------------
    # Backfill and lookup
    # ------------------------------------------------------------------

    def backfill(self, tabs: Iterable[Tab]) -> int:
        """Stamp every tab that has no entry yet. Returns how many were added."""
        now = self._clock()
        added = 0
        for tab in tabs:
            if tab.id is None or tab.id in self._access_times:
                continue
            self._access_times[tab.id] = (
                now if tab.active else now - self._backfill_offset_ms
            )
            added += 1
        if added:
            logger.debug("Backfilled access times for %d tab(s)", added)
        return added

    def retain(self, tab_ids: Iterable[int | None]) -> int:
        """Forget every tab not in ``tab_ids``. Returns how many were dropped.

        Covers removals that never reached :meth:`on_removed`, either because
        no event source is attached or because an event was missed.
        """
        keep = set(tab_ids)
        stale = [tab_id for tab_id in self._access_times if tab_id not in keep]
        for tab_id in stale:
            del self._access_times[tab_id]
        if stale:
            logger.debug("Dropped access times for %d closed tab(s)", len(stale))
        return len(stale)

    def get(self, tab_id: int | None) -> int | None:
        """Last activation time of ``tab_id``, or None if never observed."""
        if tab_id is None:
            return None
        return self._access_times.get(tab_id)

    def attach(self, tabs: Iterable[Tab]) -> list[Tab]:
        """Return copies of ``tabs`` with ``last_accessed`` filled in."""
        return [
            tab.model_copy(update={"last_accessed": self.get(tab.id)})
            for tab in tabs
        ]

    def __contains__(self, tab_id: object) -> bool:
        return tab_id in self._access_times

    def __len__(self) -> int:
        return len(self._access_times)
