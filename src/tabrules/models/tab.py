"""Tab and tab group snapshots.

Tabs are rebuilt from the browser on every evaluation cycle. The only
field that does not come from the browser is ``last_accessed``, which the
access tracker attaches before rules are evaluated.
"""

from __future__ import annotations

import enum
from typing import Optional

from pydantic import BaseModel

# Group id the browser reports for a tab that belongs to no group.
TAB_GROUP_ID_NONE = -1


class GroupColor(str, enum.Enum):
    """Colors a tab group can take."""

    GREY = "grey"
    BLUE = "blue"
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"
    PINK = "pink"
    PURPLE = "purple"
    CYAN = "cyan"
    ORANGE = "orange"


class Tab(BaseModel):
    """Read-only snapshot of one open tab."""

    model_config = {"frozen": True}

    id: Optional[int] = None  # None only for tabs the browser has not registered yet
    window_id: int
    group_id: int = TAB_GROUP_ID_NONE
    index: int = 0
    url: Optional[str] = None
    title: Optional[str] = None
    fav_icon_url: Optional[str] = None
    pinned: bool = False
    active: bool = False
    muted: bool = False
    highlighted: bool = False
    incognito: bool = False
    discarded: bool = False
    last_accessed: Optional[int] = None  # epoch ms

    @property
    def is_grouped(self) -> bool:
        return self.group_id != TAB_GROUP_ID_NONE


class TabGroup(BaseModel):
    """Read-only snapshot of a tab group within a window."""

    model_config = {"frozen": True}

    id: int
    window_id: int
    title: Optional[str] = None
    color: GroupColor = GroupColor.GREY
    collapsed: bool = False
