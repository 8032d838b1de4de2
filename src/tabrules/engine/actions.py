"""Action execution -- applies a rule's actions to its qualifying tabs.

Every (action, tab) pair is attempted exactly once. A failure from the
browser is logged and recorded, and the remaining tabs and actions are still
processed. Nothing is retried and nothing already applied is rolled back.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from tabrules.models.evaluation import ActionOutcome
from tabrules.models.rule import ActionType

if TYPE_CHECKING:
    from tabrules.models.rule import ActionMatcher, ActionParams
    from tabrules.models.tab import Tab
    from tabrules.protocols import TabProvider

logger = logging.getLogger(__name__)


class ActionExecutor:
    """Applies action matchers to tabs through a :class:`TabProvider`."""

    def __init__(self, provider: TabProvider) -> None:
        self._provider = provider

    async def execute(
        self,
        action_matchers: Sequence[ActionMatcher],
        tabs: Sequence[Tab],
        *,
        rule_id: str = "",
    ) -> list[ActionOutcome]:
        """Apply each action matcher, in order, to each tab.

        Returns one outcome per (action, tab) pair. Never raises for a
        browser-side failure.
        """
        outcomes: list[ActionOutcome] = []
        for matcher in action_matchers:
            for tab in tabs:
                if tab.id is None:
                    outcomes.append(
                        ActionOutcome(rule_id, matcher.type.value, None, "skipped")
                    )
                    continue
                try:
                    applied = await self._apply(matcher, tab)
                except Exception as exc:
                    logger.error(
                        "Action %s failed on tab %s: %s",
                        matcher.type.value,
                        tab.id,
                        exc,
                    )
                    outcomes.append(
                        ActionOutcome(
                            rule_id, matcher.type.value, tab.id, "error", str(exc)
                        )
                    )
                    continue
                outcomes.append(
                    ActionOutcome(
                        rule_id,
                        matcher.type.value,
                        tab.id,
                        "executed" if applied else "skipped",
                    )
                )
        return outcomes

    async def _apply(self, matcher: ActionMatcher, tab: Tab) -> bool:
        """Dispatch one action. Returns False when the action was a no-op."""
        action_type = matcher.type
        tab_id = tab.id
        assert tab_id is not None

        if action_type is ActionType.CLOSE:
            await self._provider.close(tab_id)
            return True

        if action_type is ActionType.PIN:
            await self._provider.set_pinned(tab_id, True)
            return True

        if action_type is ActionType.UNPIN:
            await self._provider.set_pinned(tab_id, False)
            return True

        if action_type is ActionType.DISCARD:
            # The browser refuses to discard the tab the user is looking at.
            if tab.active:
                logger.debug("Not discarding active tab %s", tab_id)
                return False
            await self._provider.discard(tab_id)
            return True

        if action_type is ActionType.MUTE:
            # Ensure muted; toggling would flip state back on the next cycle.
            await self._provider.set_muted(tab_id, True)
            return True

        if action_type is ActionType.HIGHLIGHT:
            await self._provider.set_highlighted(tab_id, True)
            return True

        if action_type is ActionType.MOVE_TO_GROUP:
            await self._move_to_group(tab, matcher.params)
            return True

        logger.debug("Ignoring unsupported action type %s", action_type.value)
        return False

    async def _move_to_group(self, tab: Tab, params: ActionParams | None) -> None:
        """Add ``tab`` to the same-titled group in its window, or create one.

        Lookup is by exact title within the tab's own window; a group with the
        same title in another window is a different group.
        """
        assert tab.id is not None
        group_name = params.group_name if params else None
        group_color = params.group_color if params else None

        existing = None
        if group_name:
            groups = await self._provider.list_groups_in_window(tab.window_id)
            existing = next((g for g in groups if g.title == group_name), None)

        if existing is not None:
            await self._provider.add_to_group(tab.id, existing.id)
            logger.debug("Added tab %s to group %s", tab.id, existing.id)
            return

        group_id = await self._provider.create_group_from_tabs([tab.id])
        if group_name or group_color:
            await self._provider.rename_group(
                group_id, title=group_name or None, color=group_color
            )
        logger.debug("Created group %s (%r) for tab %s", group_id, group_name, tab.id)
