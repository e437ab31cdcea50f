"""
Hearth Kiosk — Optimistic mutations.

The kiosk shows a change the moment it is made and only then asks Google
to make it real. CommandRunner.execute does that in four steps:

1. snapshot the collection and apply the change locally (no await before this);
2. perform the provider call;
3. on success, notify and re-fetch so Google's state replaces our guess;
4. on failure, undo exactly what this command changed, notify, re-raise.

Several commands can be in flight on one collection. Each undo touches only
its own items, so a failing command never brings back another command's
change. If an authoritative refresh replaced the collection while the call
was in flight, step 4 keeps the refreshed state.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar

from hearth.data.models import AggregatedItem
from hearth.ports.notification_port import NotificationPort
from hearth.ports.provider_port import AuthExpired, AuthRequired

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Snapshot:
    items: tuple[AggregatedItem, ...]
    generation: int


@dataclass(eq=False)
class PendingChange:
    """One in-flight command's local edit.

    `before` maps every item id the command touched to its position and a
    copy of the item as it was (None when the command added it).
    """

    generation: int
    before: dict[str, tuple[int, AggregatedItem | None]] = field(default_factory=dict)


class ItemCollection:
    """The kiosk's local copy of aggregated events or tasks."""

    def __init__(self, items: Iterable[AggregatedItem] = ()) -> None:
        self._items: list[AggregatedItem] = list(items)
        self._pending: list[PendingChange] = []
        # Bumped on every authoritative replace()
        self.generation = 0

    @property
    def items(self) -> list[AggregatedItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def get(self, item_id: str) -> AggregatedItem | None:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def add(self, item: AggregatedItem) -> None:
        self._items.append(item)

    def update(self, item_id: str, **changes) -> AggregatedItem | None:
        item = self.get(item_id)
        if item is None:
            return None
        for key, value in changes.items():
            setattr(item, key, value)
        return item

    def remove(self, item_id: str) -> AggregatedItem | None:
        for index, item in enumerate(self._items):
            if item.id == item_id:
                return self._items.pop(index)
        return None

    def snapshot(self) -> Snapshot:
        return Snapshot(items=tuple(copy.deepcopy(self._items)), generation=self.generation)

    def replace(self, items: Iterable[AggregatedItem]) -> None:
        """Install freshly fetched items; they supersede any local guess."""
        self._items = list(items)
        self._pending.clear()
        self.generation += 1

    def to_list(self) -> list[dict]:
        return [item.to_dict() for item in self._items]

    # -- in-flight changes --------------------------------------------------

    def apply(self, edit: Callable[[ItemCollection], object]) -> PendingChange:
        """Run `edit` now and record which items it touched."""
        snapshot = self.snapshot()
        edit(self)

        change = PendingChange(generation=self.generation)
        current = {item.id: item for item in self._items}
        for index, prior in enumerate(snapshot.items):
            if current.get(prior.id) != prior:
                change.before[prior.id] = (index, prior)
        known = {prior.id for prior in snapshot.items}
        for item_id in current:
            if item_id not in known:
                change.before[item_id] = (len(snapshot.items), None)

        self._pending.append(change)
        return change

    def settle(self, change: PendingChange) -> None:
        """Forget a change that Google accepted."""
        self._pending = [c for c in self._pending if c is not change]

    def revert(self, change: PendingChange) -> bool:
        """Undo one change. False if a refresh replaced the collection since.

        An item a later in-flight change also touched is left as it is; the
        later change inherits this one's prior copy, so undoing both still
        ends at the original item.
        """
        position = next((i for i, c in enumerate(self._pending) if c is change), None)
        if position is None or change.generation != self.generation:
            self.settle(change)
            return False
        del self._pending[position]
        later = self._pending[position:]

        reinsert: list[tuple[int, AggregatedItem]] = []
        for item_id, (index, prior) in change.before.items():
            successor = next((c for c in later if item_id in c.before), None)
            if successor is not None:
                successor.before[item_id] = (index, prior)
                continue
            if prior is None:
                self.remove(item_id)
                continue
            for i, item in enumerate(self._items):
                if item.id == item_id:
                    self._items[i] = copy.deepcopy(prior)
                    break
            else:
                reinsert.append((index, prior))

        for index, prior in sorted(reinsert, key=lambda entry: entry[0]):
            self._items.insert(min(index, len(self._items)), copy.deepcopy(prior))
        return True


class CommandRunner:
    """Runs one optimistic mutation against one collection."""

    def __init__(self, notifier: NotificationPort) -> None:
        self._notifier = notifier

    async def execute(
        self,
        collection: ItemCollection,
        apply: Callable[[ItemCollection], None],
        call: Callable[[], Awaitable[T]],
        *,
        success_message: str,
        failure_message: str,
        refresh: Callable[[], Awaitable[object]] | None = None,
        user_id: str | None = None,
    ) -> T:
        """Apply locally, call the provider, then confirm or roll back.

        Raises whatever `call` raised, after the rollback. Auth failures
        prompt the user to reconnect instead of showing a generic error.
        """
        change = collection.apply(apply)

        try:
            result = await call()
        except asyncio.CancelledError:
            self._rollback(collection, change)
            raise
        except Exception as exc:
            self._rollback(collection, change)
            if isinstance(exc, (AuthExpired, AuthRequired)) and user_id is not None:
                await self._notifier.prompt_reconnect(
                    user_id, f"{failure_message}: please reconnect your Google account"
                )
            else:
                await self._notifier.notify(f"{failure_message}: {exc}", level="error")
            logger.error("%s: %s", failure_message, exc)
            raise

        collection.settle(change)
        await self._notifier.notify(success_message, level="success")
        if refresh is not None:
            try:
                await refresh()
            except Exception as exc:
                # The mutation itself succeeded; the next refresh catches up.
                logger.warning("Refresh after '%s' failed: %s", success_message, exc)
        return result

    @staticmethod
    def _rollback(collection: ItemCollection, change: PendingChange) -> None:
        if not collection.revert(change):
            logger.info("Collection refreshed during the call, keeping the refreshed state")
