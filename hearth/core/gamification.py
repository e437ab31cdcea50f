"""
Hearth Kiosk — Gamification.

Completing a local task pays its XP and gold to every assignee (or splits
it between them); reopening it takes back exactly what was paid. Gold buys
rewards from the shop; a parent later marks the redemption fulfilled.

Completion and reopening are compare-and-set transitions in the database,
so a double tap or two kiosks racing can never pay a task twice.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any

from hearth.data.db import LocalTaskDB, RewardDB, StatsDB, now_iso
from hearth.data.models import (
    LocalTask,
    Redemption,
    Reward,
    RewardStrategy,
    UserStats,
)
from hearth.ports.provider_port import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def per_person(amount: int, assignees: list[str], strategy: RewardStrategy) -> int:
    """What each assignee receives. Split rewards are floor-divided."""
    if strategy == RewardStrategy.SPLIT and assignees:
        return amount // len(assignees)
    return amount


@dataclass
class ToggleResult:
    completed: bool
    xp_awarded: int      # per assignee; negative when revoked
    gold_awarded: int
    leveled_up: bool
    task: LocalTask | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed": self.completed,
            "xpAwarded": self.xp_awarded,
            "goldAwarded": self.gold_awarded,
            "leveledUp": self.leveled_up,
            "task": self.task.to_dict() if self.task else None,
        }


class GamificationLedger:
    """Turns task completion changes into stat deltas, exactly once each."""

    def __init__(
        self,
        tasks: LocalTaskDB,
        stats: StatsDB,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._tasks = tasks
        self._stats = stats
        self._today = today

    def _load(self, task_id: str) -> LocalTask:
        task = self._tasks.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        if task.needs_reset(self._today()):
            self._tasks.reset_recurring(task.id)
            task = self._tasks.get_task(task_id)
        return task

    def toggle(self, task_id: str) -> ToggleResult:
        """Flip completion: complete an open task, reopen a completed one."""
        task = self._load(task_id)
        if task.completed:
            return self.uncomplete(task_id)
        return self.complete(task_id)

    def complete(self, task_id: str) -> ToggleResult:
        task = self._load(task_id)
        if task.completed:
            return ToggleResult(True, 0, 0, False, task)

        xp = per_person(task.xp_reward, task.assigned_to, task.reward_strategy)
        gold = per_person(task.gold_reward, task.assigned_to, task.reward_strategy)
        if not self._tasks.mark_completed(task.id, now_iso(), xp, gold, task.assigned_to):
            logger.info("Task %s was completed concurrently, nothing awarded", task.id)
            return ToggleResult(True, 0, 0, False, self._tasks.get_task(task.id))

        leveled_up = False
        for user_id in task.assigned_to:
            before = self._stats.get_stats(user_id).level
            after = self._stats.add_xp(user_id, xp)
            self._stats.add_gold(user_id, gold)
            if xp > 0 and after.level > before:
                leveled_up = True
                logger.info("User %s reached level %d", user_id, after.level)

        logger.info(
            "Task %s completed: +%d XP, +%d gold each for %s", task.id, xp, gold, task.assigned_to
        )
        return ToggleResult(True, xp, gold, leveled_up, self._tasks.get_task(task.id))

    def uncomplete(self, task_id: str) -> ToggleResult:
        """Reopen a task and revoke what its completion paid."""
        task = self._load(task_id)
        if not task.completed:
            return ToggleResult(False, 0, 0, False, task)

        # Rows completed before grants were recorded fall back to the current
        # assignees and reward configuration.
        paid_to = task.granted_to if task.granted_to is not None else task.assigned_to
        xp = task.granted_xp
        if xp is None:
            xp = per_person(task.xp_reward, task.assigned_to, task.reward_strategy)
        gold = task.granted_gold
        if gold is None:
            gold = per_person(task.gold_reward, task.assigned_to, task.reward_strategy)

        if not self._tasks.mark_uncompleted(task.id, task.last_completed_date):
            logger.info("Task %s was reopened concurrently, nothing revoked", task.id)
            return ToggleResult(False, 0, 0, False, self._tasks.get_task(task.id))

        for user_id in paid_to:
            self._stats.add_xp(user_id, -xp)
            self._stats.add_gold(user_id, -gold)

        logger.info(
            "Task %s reopened: -%d XP, -%d gold each for %s", task.id, xp, gold, paid_to
        )
        return ToggleResult(False, -xp, -gold, False, self._tasks.get_task(task.id))


class StatsService:
    """XP / gold adjustments and the redemption workflow."""

    def __init__(self, stats: StatsDB, rewards: RewardDB) -> None:
        self._stats = stats
        self._rewards = rewards

    def get_stats(self, user_id: str) -> UserStats:
        return self._stats.get_stats(user_id)

    def add_xp(self, user_id: str, amount: int) -> tuple[UserStats, bool]:
        """Returns the new totals and whether a level boundary was crossed upward."""
        before = self._stats.get_stats(user_id).level
        stats = self._stats.add_xp(user_id, amount)
        return stats, amount > 0 and stats.level > before

    def add_gold(self, user_id: str, amount: int) -> UserStats:
        return self._stats.add_gold(user_id, amount)

    def redeem(self, user_id: str, reward_id: str) -> tuple[UserStats, Redemption]:
        reward = self._rewards.get_reward(reward_id)
        if reward is None:
            raise NotFoundError(f"Reward {reward_id} not found")
        stats = self._stats.get_stats(user_id)
        if stats.gold < reward.cost:
            raise ValidationError(
                f"Not enough gold: {reward.title} costs {reward.cost}, user has {stats.gold}"
            )
        stats = self._stats.add_gold(user_id, -reward.cost)
        redemption = self._stats.log_redemption(user_id, reward.id, reward.title, reward.cost)
        return stats, redemption

    def redemptions(self, unfulfilled_only: bool = False) -> list[Redemption]:
        return self._stats.list_redemptions(unfulfilled_only=unfulfilled_only)

    def fulfill(self, redemption_id: str) -> None:
        if not self._stats.fulfill_redemption(redemption_id):
            raise NotFoundError(f"Redemption {redemption_id} not found")
        logger.info("Redemption %s fulfilled", redemption_id)


class RewardShop:
    """CRUD over the reward catalogue; missing ids raise NotFoundError."""

    def __init__(self, rewards: RewardDB) -> None:
        self._rewards = rewards

    def list(self) -> list[Reward]:
        return self._rewards.list_rewards()

    def get(self, reward_id: str) -> Reward:
        reward = self._rewards.get_reward(reward_id)
        if reward is None:
            raise NotFoundError(f"Reward {reward_id} not found")
        return reward

    def create(self, title: str = "New Reward", cost: int = 50, icon: str = "🎁", description: str = "") -> Reward:
        return self._rewards.add_reward(title=title, cost=cost, icon=icon, description=description)

    def update(self, reward_id: str, updates: dict) -> Reward:
        reward = self._rewards.update_reward(reward_id, updates)
        if reward is None:
            raise NotFoundError(f"Reward {reward_id} not found")
        return reward

    def delete(self, reward_id: str) -> None:
        if not self._rewards.delete_reward(reward_id):
            raise NotFoundError(f"Reward {reward_id} not found")

    def seed(self) -> int:
        added = self._rewards.seed_defaults()
        if added:
            logger.info("Reward shop seeded with %d default reward(s)", added)
        return added
