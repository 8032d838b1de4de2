"""Protocol definitions for tabrules.

Defines the interfaces the rule engine consumes from its host: the tab
provider (data source and side-effect sink), the tab-activity event source
and the rule source. Every provider coroutine may raise; the engine never
assumes success.

No SQLAlchemy imports allowed in this module -- pure domain protocols.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tabrules.models.rule import Rule
    from tabrules.models.tab import GroupColor, Tab, TabGroup


class TabEvent(str, enum.Enum):
    """Tab-activity notifications the access tracker listens to."""

    ACTIVATED = "activated"
    REMOVED = "removed"


TabEventHandler = Callable[[int], None]


@runtime_checkable
class TabProvider(Protocol):
    """Protocol for the browser's tab, window and group API."""

    async def list_tabs(self) -> list[Tab]:
        """Enumerate every open tab across all windows."""
        ...

    async def list_groups_in_window(self, window_id: int) -> list[TabGroup]:
        """List the tab groups of one window."""
        ...

    async def close(self, tab_id: int) -> None:
        ...

    async def set_pinned(self, tab_id: int, pinned: bool) -> None:
        ...

    async def set_muted(self, tab_id: int, muted: bool) -> None:
        ...

    async def set_highlighted(self, tab_id: int, highlighted: bool) -> None:
        ...

    async def discard(self, tab_id: int) -> None:
        """Unload a tab from memory without closing it."""
        ...

    async def add_to_group(self, tab_id: int, group_id: int) -> None:
        ...

    async def create_group_from_tabs(self, tab_ids: list[int]) -> int:
        """Create a new group holding ``tab_ids``; returns the new group id."""
        ...

    async def rename_group(
        self,
        group_id: int,
        *,
        title: str | None = None,
        color: GroupColor | None = None,
    ) -> None:
        ...


@runtime_checkable
class TabEventSource(Protocol):
    """Protocol for subscribing to tab activation and removal events.

    Handlers are called synchronously with the tab id and must not block.
    """

    def add_listener(self, event: TabEvent, handler: TabEventHandler) -> None:
        ...

    def remove_listener(self, event: TabEvent, handler: TabEventHandler) -> None:
        ...


@runtime_checkable
class RuleSource(Protocol):
    """Protocol for the read-only rule storage the engine polls each cycle."""

    async def get_all_rules(self) -> list[Rule]:
        """Return every stored rule (enabled or not) in storage order."""
        ...
