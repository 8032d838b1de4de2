"""In-memory browser -- a self-contained tab provider and event source.

Holds windows' tabs and groups in plain dicts and behaves like the browser
API the engine talks to: mutators raise for unknown ids, closing a tab fires
a REMOVED event, activating one fires ACTIVATED, and groups left empty
disappear. Every successful mutation is appended to :attr:`mutations`.

Used as the host for previewing rules against a saved tab snapshot and as
the browser double in tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from tabrules.exceptions import GroupNotFoundError, TabNotFoundError, TabOperationError
from tabrules.models.tab import TAB_GROUP_ID_NONE, GroupColor, Tab, TabGroup
from tabrules.protocols import TabEvent, TabEventHandler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutationRecord:
    """One state change applied to the in-memory browser."""

    operation: str
    tab_ids: tuple[int, ...] = ()
    details: dict = field(default_factory=dict)


class InMemoryBrowser:
    """Dict-backed implementation of TabProvider and TabEventSource."""

    def __init__(
        self,
        tabs: Iterable[Tab] = (),
        groups: Iterable[TabGroup] = (),
    ) -> None:
        self._tabs: dict[int, Tab] = {}
        self._groups: dict[int, TabGroup] = {g.id: g for g in groups}
        self._listeners: dict[TabEvent, list[TabEventHandler]] = {
            event: [] for event in TabEvent
        }
        self.mutations: list[MutationRecord] = []
        self._next_group_id = max(self._groups, default=0) + 1

        pending = list(tabs)
        self._next_tab_id = max((t.id for t in pending if t.id is not None), default=0) + 1
        for tab in pending:
            if tab.id is None:
                tab = tab.model_copy(update={"id": self._allocate_tab_id()})
            self._tabs[tab.id] = tab  # type: ignore[index]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> InMemoryBrowser:
        """Build a browser from ``{"tabs": [...], "groups": [...]}``.

        Raises pydantic.ValidationError for malformed entries.
        """
        tabs = [Tab.model_validate(t) for t in data.get("tabs", [])]
        groups = [TabGroup.model_validate(g) for g in data.get("groups", [])]
        return cls(tabs, groups)

    def snapshot(self) -> dict[str, Any]:
        """Serializable view of the current tabs and groups."""
        return {
            "tabs": [t.model_dump(mode="json") for t in self.tabs],
            "groups": [g.model_dump(mode="json") for g in self.groups],
        }

    # ------------------------------------------------------------------
    # Host-side helpers
    # ------------------------------------------------------------------

    @property
    def tabs(self) -> list[Tab]:
        return sorted(self._tabs.values(), key=lambda t: (t.window_id, t.index))

    @property
    def groups(self) -> list[TabGroup]:
        return sorted(self._groups.values(), key=lambda g: g.id)

    def get_tab(self, tab_id: int) -> Tab:
        try:
            return self._tabs[tab_id]
        except KeyError:
            raise TabNotFoundError(tab_id) from None

    def get_group(self, group_id: int) -> TabGroup:
        try:
            return self._groups[group_id]
        except KeyError:
            raise GroupNotFoundError(group_id) from None

    def tab_ids_in_group(self, group_id: int) -> list[int]:
        return [t.id for t in self.tabs if t.group_id == group_id]  # type: ignore[misc]

    def open_tab(
        self,
        *,
        window_id: int = 1,
        url: str | None = None,
        title: str | None = None,
        active: bool = False,
        **flags: Any,
    ) -> Tab:
        """Append a new tab to ``window_id`` and return it."""
        index = sum(1 for t in self._tabs.values() if t.window_id == window_id)
        tab = Tab(
            id=self._allocate_tab_id(),
            window_id=window_id,
            index=index,
            url=url,
            title=title,
            **flags,
        )
        self._tabs[tab.id] = tab  # type: ignore[index]
        if active:
            self.activate(tab.id)  # type: ignore[arg-type]
            tab = self._tabs[tab.id]  # type: ignore[index]
        return tab

    def activate(self, tab_id: int) -> None:
        """Make ``tab_id`` the active tab of its window and fire ACTIVATED."""
        tab = self.get_tab(tab_id)
        for other in list(self._tabs.values()):
            if other.window_id == tab.window_id and other.active and other.id != tab_id:
                self._tabs[other.id] = other.model_copy(update={"active": False})  # type: ignore[index]
        self._tabs[tab_id] = tab.model_copy(update={"active": True, "discarded": False})
        self._emit(TabEvent.ACTIVATED, tab_id)

    # ------------------------------------------------------------------
    # TabEventSource
    # ------------------------------------------------------------------

    def add_listener(self, event: TabEvent, handler: TabEventHandler) -> None:
        self._listeners[event].append(handler)

    def remove_listener(self, event: TabEvent, handler: TabEventHandler) -> None:
        try:
            self._listeners[event].remove(handler)
        except ValueError:
            pass

    def listener_count(self, event: TabEvent) -> int:
        return len(self._listeners[event])

    # ------------------------------------------------------------------
    # TabProvider
    # ------------------------------------------------------------------

    async def list_tabs(self) -> list[Tab]:
        return self.tabs

    async def list_groups_in_window(self, window_id: int) -> list[TabGroup]:
        return [g for g in self.groups if g.window_id == window_id]

    async def close(self, tab_id: int) -> None:
        tab = self.get_tab(tab_id)
        del self._tabs[tab_id]
        self._reindex(tab.window_id)
        self._drop_group_if_empty(tab.group_id)
        self._record("close", tab_id)
        self._emit(TabEvent.REMOVED, tab_id)

    async def set_pinned(self, tab_id: int, pinned: bool) -> None:
        self._update(tab_id, pinned=pinned)
        self._record("set_pinned", tab_id, pinned=pinned)

    async def set_muted(self, tab_id: int, muted: bool) -> None:
        self._update(tab_id, muted=muted)
        self._record("set_muted", tab_id, muted=muted)

    async def set_highlighted(self, tab_id: int, highlighted: bool) -> None:
        self._update(tab_id, highlighted=highlighted)
        self._record("set_highlighted", tab_id, highlighted=highlighted)

    async def discard(self, tab_id: int) -> None:
        tab = self.get_tab(tab_id)
        if tab.active:
            raise TabOperationError(f"Cannot discard the active tab: {tab_id}")
        self._update(tab_id, discarded=True)
        self._record("discard", tab_id)

    async def add_to_group(self, tab_id: int, group_id: int) -> None:
        tab = self.get_tab(tab_id)
        group = self.get_group(group_id)
        previous = tab.group_id
        self._update(tab_id, group_id=group.id, window_id=group.window_id)
        if previous != group.id:
            self._drop_group_if_empty(previous)
        self._record("add_to_group", tab_id, group_id=group_id)

    async def create_group_from_tabs(self, tab_ids: list[int]) -> int:
        if not tab_ids:
            raise TabOperationError("Cannot create a group without tabs")
        tabs = [self.get_tab(tab_id) for tab_id in tab_ids]
        group = TabGroup(id=self._next_group_id, window_id=tabs[0].window_id)
        self._next_group_id += 1
        self._groups[group.id] = group
        for tab in tabs:
            previous = tab.group_id
            self._update(tab.id, group_id=group.id, window_id=group.window_id)  # type: ignore[arg-type]
            self._drop_group_if_empty(previous)
        self._record("create_group", *tab_ids, group_id=group.id)
        return group.id

    async def rename_group(
        self,
        group_id: int,
        *,
        title: str | None = None,
        color: GroupColor | None = None,
    ) -> None:
        group = self.get_group(group_id)
        update: dict[str, Any] = {}
        if title is not None:
            update["title"] = title
        if color is not None:
            update["color"] = GroupColor(color)
        self._groups[group_id] = group.model_copy(update=update)
        self._record(
            "rename_group",
            group_id=group_id,
            title=title,
            color=GroupColor(color).value if color is not None else None,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _allocate_tab_id(self) -> int:
        tab_id = self._next_tab_id
        self._next_tab_id += 1
        return tab_id

    def _update(self, tab_id: int, **changes: Any) -> None:
        tab = self.get_tab(tab_id)
        self._tabs[tab_id] = tab.model_copy(update=changes)

    def _reindex(self, window_id: int) -> None:
        in_window = sorted(
            (t for t in self._tabs.values() if t.window_id == window_id),
            key=lambda t: t.index,
        )
        for position, tab in enumerate(in_window):
            if tab.index != position:
                self._tabs[tab.id] = tab.model_copy(update={"index": position})  # type: ignore[index]

    def _drop_group_if_empty(self, group_id: int) -> None:
        if group_id == TAB_GROUP_ID_NONE or group_id not in self._groups:
            return
        if not any(t.group_id == group_id for t in self._tabs.values()):
            del self._groups[group_id]
            logger.debug("Removed empty group %s", group_id)

    def _record(self, operation: str, *tab_ids: int, **details: Any) -> None:
        self.mutations.append(MutationRecord(operation, tuple(tab_ids), details))

    def _emit(self, event: TabEvent, tab_id: int) -> None:
        for handler in list(self._listeners[event]):
            handler(tab_id)
