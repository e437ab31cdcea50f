"""
Hearth Kiosk — Data Models.

Two families of state live here: the Google side (linked accounts, the
items aggregated from them) which is only ever a copy of what Google holds,
and the local gamification side (tasks, stats, rewards) which only Hearth
manages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any

XP_PER_LEVEL = 100


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def millis_to_datetime(value: int | float) -> datetime:
    """Google's `expiry_date` is epoch milliseconds."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def datetime_to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def js_weekday(day: date) -> int:
    """Weekday number as stored by the dashboard (0 = Sunday ... 6 = Saturday)."""
    return (day.weekday() + 1) % 7


class Provider(str, Enum):
    CALENDAR = "calendar"
    TASKS = "tasks"
    PHOTOS = "photos"


class RewardStrategy(str, Enum):
    FULL = "full"    # every assignee gets the full amount
    SPLIT = "split"  # the amount is divided evenly among assignees


class Recurrence(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"


class ItemKind(str, Enum):
    EVENT = "event"
    TASK = "task"


@dataclass
class UserProfile:
    """A household member shown on the kiosk."""

    id: str
    name: str
    color: str = "#2196f3"
    avatar: str = ""


@dataclass
class LinkedAccount:
    """One user's connection to one Google provider.

    At most one exists per (user_id, provider); the store enforces it.
    """

    user_id: str
    provider: Provider
    access_token: str
    expires_at: datetime
    refreshable: bool = True

    def is_fresh(self, now: datetime, margin_seconds: int = 60) -> bool:
        return self.expires_at > now + timedelta(seconds=margin_seconds)


@dataclass
class OAuthCredential:
    """Server-side credential. The refresh token never leaves the backend."""

    user_id: str
    refresh_token: str | None
    access_token: str | None = None
    expiry: datetime | None = None
    scopes: list[str] = field(default_factory=list)
    updated_at: str = ""


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    expires_at: datetime


@dataclass
class AggregatedItem:
    """A Google event or task, normalized and tagged with where it came from."""

    id: str
    kind: ItemKind
    source_account_id: str
    source_calendar_id: str
    title: str
    source_name: str = ""
    source_color: str = ""
    start: str | None = None   # ISO date or datetime
    end: str | None = None
    all_day: bool = False
    completed: bool = False
    raw: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "sourceAccountId": self.source_account_id,
            "sourceCalendarId": self.source_calendar_id,
            "sourceName": self.source_name,
            "sourceColor": self.source_color,
            "title": self.title,
            "start": self.start,
            "end": self.end,
            "allDay": self.all_day,
            "completed": self.completed,
            "raw": self.raw,
        }


@dataclass
class LocalTask:
    """A gamified household task that never syncs to Google."""

    id: str
    title: str
    assigned_to: list[str]
    description: str = ""
    due_date: str | None = None
    completed: bool = False
    xp_reward: int = 10
    gold_reward: int = 5
    reward_strategy: RewardStrategy = RewardStrategy.FULL
    recurrence: Recurrence = Recurrence.NONE
    days: list[int] = field(default_factory=list)  # 0 = Sunday
    last_completed_date: str | None = None
    created_at: str = ""
    granted_xp: int | None = None    # per assignee, recorded on completion
    granted_gold: int | None = None
    granted_to: list[str] | None = None  # who was paid

    @property
    def is_recurring(self) -> bool:
        return self.recurrence != Recurrence.NONE

    def is_active_on(self, day: date) -> bool:
        if self.recurrence == Recurrence.WEEKLY:
            weekday = js_weekday(day)
            if self.days:
                return weekday in self.days
            if self.created_at:
                return js_weekday(datetime.fromisoformat(self.created_at).date()) == weekday
        return True

    def needs_reset(self, day: date) -> bool:
        """A recurring task completed on an earlier day starts over."""
        if not self.is_recurring or not self.completed or not self.last_completed_date:
            return False
        return datetime.fromisoformat(self.last_completed_date).date() != day

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "dueDate": self.due_date,
            "assignedTo": list(self.assigned_to),
            "completed": self.completed,
            "xpReward": self.xp_reward,
            "goldReward": self.gold_reward,
            "rewardStrategy": self.reward_strategy.value,
            "recurrence": self.recurrence.value,
            "isRecurring": self.is_recurring,
            "days": list(self.days),
            "lastCompletedDate": self.last_completed_date,
            "createdAt": self.created_at,
        }


@dataclass
class UserStats:
    """Per-user progression. Level is always derived from xp."""

    user_id: str
    xp: int = 0
    gold: int = 0
    streak: int = 0

    @property
    def level(self) -> int:
        return calculate_level(self.xp)

    @property
    def xp_in_level(self) -> int:
        return max(0, self.xp) % XP_PER_LEVEL

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "xp": self.xp,
            "gold": self.gold,
            "streak": self.streak,
            "level": self.level,
            "xpInLevel": self.xp_in_level,
            "xpToNextLevel": XP_PER_LEVEL,
        }


@dataclass
class Reward:
    """Something a child can buy with gold."""

    id: str
    title: str
    cost: int
    icon: str = "🎁"
    description: str = ""
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "cost": self.cost,
            "icon": self.icon,
            "description": self.description,
            "createdAt": self.created_at,
        }


@dataclass
class Redemption:
    """A purchased reward waiting for a parent to hand it over."""

    id: str
    user_id: str
    reward_id: str
    reward_title: str
    cost: int
    redeemed_at: str
    fulfilled: bool = False
    fulfilled_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "rewardId": self.reward_id,
            "rewardTitle": self.reward_title,
            "cost": self.cost,
            "redeemedAt": self.redeemed_at,
            "fulfilled": self.fulfilled,
            "fulfilledAt": self.fulfilled_at,
        }


def calculate_level(xp: int) -> int:
    """0-99 XP is level 1, 100-199 level 2, and so on."""
    return max(0, xp) // XP_PER_LEVEL + 1
