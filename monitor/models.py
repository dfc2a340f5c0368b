"""Domain records passed between the data sources and the polling cycle."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import config


class Group(str, Enum):
    FSM = "fsm"
    ISSAM = "issam"


# Groups are processed in this order every cycle.
ALL_GROUPS: tuple[Group, ...] = (Group.FSM, Group.ISSAM)


@dataclass(frozen=True)
class GroupSettings:
    chat_id: str
    thread_id: int | None = None
    title: str = ""


def group_settings(group: Group | str) -> GroupSettings:
    """Resolve channel routing for a group through config.GROUP_SETTINGS."""
    key = Group(group).value
    raw: dict[str, Any] = (getattr(config, "GROUP_SETTINGS", {}) or {}).get(key) or {}
    thread_id = raw.get("thread_id")
    return GroupSettings(
        chat_id=str(raw.get("chat_id") or "").strip(),
        thread_id=int(thread_id) if thread_id not in (None, "") else None,
        title=str(raw.get("title") or key.upper()),
    )


@dataclass(frozen=True)
class Token:
    id: int
    token_address: str
    symbol: str
    initial_market_cap_usd: float
    first_called_at_utc: datetime


@dataclass(frozen=True)
class MilestoneConfig:
    id: int
    group_name: Group
    milestone_value: float
    milestone_label: str
    is_active: bool = True
    created_by: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class MilestoneNotification:
    token_id: int
    token_address: str
    group_name: Group
    milestone_value: float
    milestone_label: str
    notified_at_utc: datetime
    id: int | None = None
    message_id: str | None = None
