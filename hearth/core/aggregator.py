"""
Hearth Kiosk — Multi-source aggregation.

Pulls events (or tasks) from every linked account and every calendar (or
list) its owner selected, concurrently, and merges them into one list:

- one fetch per (account, selected source) pair, all in flight at once;
- a pair that fails becomes a PartialError, its siblings are unaffected;
- an account with nothing selected is skipped, silently;
- duplicates (same provider id seen through two sources) keep the first
  occurrence, where "first" follows account order then selection order,
  never completion order, so the same inputs give the same output.
"""

from __future__ import annotations

import asyncio
import calendar
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from hearth.data.models import AggregatedItem, ItemKind, LinkedAccount, UserProfile
from hearth.ports.provider_port import HearthError, ItemFetcher, ValidationError

logger = logging.getLogger(__name__)


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year, month = day.year + month_index // 12, month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


@dataclass(frozen=True)
class DateRange:
    """Half-open interval [start, end) in aware datetimes."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None:
            object.__setattr__(self, "start", self.start.replace(tzinfo=timezone.utc))
        if self.end.tzinfo is None:
            object.__setattr__(self, "end", self.end.replace(tzinfo=timezone.utc))
        if self.end <= self.start:
            raise ValidationError("Date range end must be after its start")

    @classmethod
    def from_dates(cls, first: date, last: date) -> DateRange:
        """Whole days, `last` included."""
        return cls(
            datetime.combine(first, time.min, tzinfo=timezone.utc),
            datetime.combine(last + timedelta(days=1), time.min, tzinfo=timezone.utc),
        )

    @classmethod
    def around(cls, today: date, lookback_months: int, lookahead_months: int) -> DateRange:
        return cls.from_dates(
            _add_months(today, -lookback_months), _add_months(today, lookahead_months)
        )

    @property
    def time_min(self) -> str:
        return self.start.isoformat()

    @property
    def time_max(self) -> str:
        return self.end.isoformat()


@dataclass
class PartialError:
    """One (account, source) pair that could not be fetched."""

    account_id: str
    source_id: str
    error: str
    error_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountId": self.account_id,
            "sourceId": self.source_id,
            "error": self.error,
            "type": self.error_type,
        }


@dataclass
class AggregationResult:
    items: list[AggregatedItem] = field(default_factory=list)
    partial_errors: list[PartialError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "partialErrors": [e.to_dict() for e in self.partial_errors],
        }


class MultiSourceAggregator:
    """Fans out one fetcher over every (account, selected source) pair."""

    def __init__(self, fetcher: ItemFetcher, kind: ItemKind) -> None:
        self._fetcher = fetcher
        self.kind = kind

    async def fetch_all(
        self,
        accounts: Sequence[LinkedAccount],
        selections: Mapping[str, Sequence[str]],
        date_range: DateRange,
        profiles: Mapping[str, UserProfile] | None = None,
    ) -> AggregationResult:
        profiles = profiles or {}
        pairs: list[tuple[LinkedAccount, str]] = []
        for account in accounts:
            selected = list(dict.fromkeys(selections.get(account.user_id, [])))
            if not selected:
                logger.debug("User %s has nothing selected to sync, skipping", account.user_id)
                continue
            pairs.extend((account, source_id) for source_id in selected)

        outcomes = await asyncio.gather(
            *(self._fetch_pair(account, source_id, date_range) for account, source_id in pairs)
        )

        result = AggregationResult()
        seen: set[str] = set()
        for (account, source_id), (raw_items, error) in zip(pairs, outcomes):
            if error is not None:
                result.partial_errors.append(error)
                continue
            profile = profiles.get(account.user_id)
            for raw in raw_items:
                item_id = raw.get("id")
                if not item_id or item_id in seen:
                    continue
                seen.add(item_id)
                result.items.append(self._to_item(raw, account, source_id, profile))

        if result.partial_errors:
            logger.warning(
                "Aggregated %d %s(s) with %d failed source(s)",
                len(result.items), self.kind.value, len(result.partial_errors),
            )
        else:
            logger.info("Aggregated %d %s(s) from %d source(s)", len(result.items), self.kind.value, len(pairs))
        return result

    async def _fetch_pair(
        self, account: LinkedAccount, source_id: str, date_range: DateRange
    ) -> tuple[list[dict], PartialError | None]:
        try:
            items = await self._fetcher(
                account, source_id, date_range.time_min, date_range.time_max
            )
        except HearthError as exc:
            logger.warning("Fetching %s for user %s failed: %s", source_id, account.user_id, exc)
            return [], PartialError(account.user_id, source_id, str(exc), type(exc).__name__)
        except Exception as exc:
            logger.exception("Unexpected error fetching %s for user %s", source_id, account.user_id)
            return [], PartialError(account.user_id, source_id, str(exc), type(exc).__name__)
        return items, None

    def _to_item(
        self,
        raw: dict,
        account: LinkedAccount,
        source_id: str,
        profile: UserProfile | None,
    ) -> AggregatedItem:
        return AggregatedItem(
            id=raw["id"],
            kind=self.kind,
            source_account_id=account.user_id,
            source_calendar_id=source_id,
            source_name=profile.name if profile else "",
            source_color=profile.color if profile else "",
            title=raw.get("title", ""),
            start=raw.get("start"),
            end=raw.get("end"),
            all_day=bool(raw.get("allDay", False)),
            completed=bool(raw.get("completed", False)),
            raw=raw,
        )


class RequestSequencer:
    """Monotonic request tokens; only the newest token's result is applied."""

    def __init__(self) -> None:
        self._latest = 0

    def next(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, token: int) -> bool:
        return token == self._latest
