"""
Hearth Kiosk — Local Gamification Database.

Local tasks, per-user stats, the reward shop and the redemption log persist
in SQLite. Unlike calendar events and Google tasks (which live at Google),
this is state only Hearth manages.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import date, datetime
from pathlib import Path

from hearth.data.models import (
    LocalTask,
    Recurrence,
    Redemption,
    Reward,
    RewardStrategy,
    UserStats,
)
from hearth.ports.provider_port import ValidationError

logger = logging.getLogger(__name__)

REDEMPTION_HISTORY_LIMIT = 100

DEFAULT_REWARDS = [
    ("30 min Gaming", 50, "🎮"),
    ("Movie Night Pick", 100, "🎬"),
    ("Ice Cream", 30, "🍦"),
    ("Stay Up Late (30 min)", 75, "🌙"),
    ("Pizza Night", 150, "🍕"),
]


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


class SQLiteStore:
    """Shared connection handling for the SQLite-backed stores."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from hearth.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Local tasks
# ---------------------------------------------------------------------------

_UPDATABLE_TASK_FIELDS = {
    "title", "description", "due_date", "assigned_to", "xp_reward",
    "gold_reward", "reward_strategy", "recurrence", "days",
}


def validate_task(task: LocalTask) -> None:
    """Raise ValidationError if a task breaks the model's invariants."""
    if not task.title or not task.title.strip():
        raise ValidationError("Task title is required")
    if not task.assigned_to:
        raise ValidationError("Task must be assigned to at least one user")
    if task.xp_reward < 0 or task.gold_reward < 0:
        raise ValidationError("Rewards must be non-negative")
    if any(d not in range(7) for d in task.days):
        raise ValidationError("Days must be weekday numbers 0-6")


class LocalTaskDB(SQLiteStore):
    """SQLite-backed storage for local gamified tasks."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS local_tasks (
                    id                  TEXT    PRIMARY KEY,
                    title               TEXT    NOT NULL,
                    description         TEXT    NOT NULL DEFAULT '',
                    due_date            TEXT,
                    assigned_to         TEXT    NOT NULL,
                    completed           INTEGER NOT NULL DEFAULT 0,
                    xp_reward           INTEGER NOT NULL DEFAULT 10,
                    gold_reward         INTEGER NOT NULL DEFAULT 5,
                    reward_strategy     TEXT    NOT NULL DEFAULT 'full',
                    recurrence          TEXT    NOT NULL DEFAULT 'none',
                    days                TEXT    NOT NULL DEFAULT '[]',
                    last_completed_date TEXT,
                    created_at          TEXT    NOT NULL
                )
            """)
            # Migrate older DBs: granted amounts were added later
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(local_tasks)").fetchall()
            }
            if "granted_xp" not in existing_cols:
                conn.execute("ALTER TABLE local_tasks ADD COLUMN granted_xp INTEGER")
            if "granted_gold" not in existing_cols:
                conn.execute("ALTER TABLE local_tasks ADD COLUMN granted_gold INTEGER")
            if "granted_to" not in existing_cols:
                conn.execute("ALTER TABLE local_tasks ADD COLUMN granted_to TEXT")
        logger.debug("Local tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> LocalTask:
        return LocalTask(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            due_date=row["due_date"],
            assigned_to=[str(u) for u in json.loads(row["assigned_to"])],
            completed=bool(row["completed"]),
            xp_reward=row["xp_reward"],
            gold_reward=row["gold_reward"],
            reward_strategy=RewardStrategy(row["reward_strategy"]),
            recurrence=Recurrence(row["recurrence"]),
            days=json.loads(row["days"]),
            last_completed_date=row["last_completed_date"],
            created_at=row["created_at"],
            granted_xp=row["granted_xp"],
            granted_gold=row["granted_gold"],
            granted_to=json.loads(row["granted_to"]) if row["granted_to"] else None,
        )

    def add_task(
        self,
        title: str,
        assigned_to: list[str],
        description: str = "",
        due_date: str | None = None,
        xp_reward: int = 10,
        gold_reward: int = 5,
        reward_strategy: RewardStrategy = RewardStrategy.FULL,
        recurrence: Recurrence = Recurrence.NONE,
        days: list[int] | None = None,
    ) -> LocalTask:
        """Insert a new, incomplete task."""
        task = LocalTask(
            id=str(uuid.uuid4()),
            title=title.strip(),
            assigned_to=[str(u) for u in assigned_to],
            description=description,
            due_date=due_date,
            xp_reward=xp_reward,
            gold_reward=gold_reward,
            reward_strategy=RewardStrategy(reward_strategy),
            recurrence=Recurrence(recurrence),
            days=list(days or []),
            created_at=now_iso(),
        )
        validate_task(task)

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO local_tasks
                    (id, title, description, due_date, assigned_to, completed,
                     xp_reward, gold_reward, reward_strategy, recurrence, days,
                     last_completed_date, created_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, NULL, ?)
                """,
                (
                    task.id, task.title, task.description, task.due_date,
                    json.dumps(task.assigned_to), task.xp_reward, task.gold_reward,
                    task.reward_strategy.value, task.recurrence.value,
                    json.dumps(task.days), task.created_at,
                ),
            )
        logger.info("Local task added: %s '%s' for %s", task.id, task.title, task.assigned_to)
        return task

    def get_task(self, task_id: str) -> LocalTask | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM local_tasks WHERE id = ?", (task_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_all(self) -> list[LocalTask]:
        """Every task, for the management screen."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM local_tasks ORDER BY created_at, rowid"
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def list_for_user(self, user_id: str, today: date | None = None) -> list[LocalTask]:
        """Tasks assigned to a user that apply today.

        Recurring tasks completed on an earlier day are reset to incomplete
        as they are listed. The reward they earned stays with the user.
        """
        today = today or date.today()
        tasks = []
        for task in self.list_all():
            if str(user_id) not in task.assigned_to or not task.is_active_on(today):
                continue
            if task.needs_reset(today):
                self.reset_recurring(task.id)
                task.completed = False
                task.granted_xp = None
                task.granted_gold = None
                task.granted_to = None
            tasks.append(task)
        return tasks

    def reset_recurring(self, task_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE local_tasks SET completed = 0, granted_xp = NULL, granted_gold = NULL, "
                "granted_to = NULL "
                "WHERE id = ? AND completed = 1",
                (task_id,),
            )
        logger.info("Recurring task %s reset for a new day", task_id)

    def update_task(self, task_id: str, updates: dict) -> LocalTask | None:
        """Apply field updates. id, created_at and completion state are protected."""
        task = self.get_task(task_id)
        if task is None:
            return None

        for key, value in updates.items():
            if key not in _UPDATABLE_TASK_FIELDS or value is None:
                continue
            if key == "assigned_to":
                value = [str(u) for u in value]
            elif key == "reward_strategy":
                value = RewardStrategy(value)
            elif key == "recurrence":
                value = Recurrence(value)
            setattr(task, key, value)
        validate_task(task)

        with self._connect() as conn:
            conn.execute(
                """
                UPDATE local_tasks SET
                    title = ?, description = ?, due_date = ?, assigned_to = ?,
                    xp_reward = ?, gold_reward = ?, reward_strategy = ?,
                    recurrence = ?, days = ?
                WHERE id = ?
                """,
                (
                    task.title, task.description, task.due_date,
                    json.dumps(task.assigned_to), task.xp_reward, task.gold_reward,
                    task.reward_strategy.value, task.recurrence.value,
                    json.dumps(task.days), task_id,
                ),
            )
        logger.info("Local task %s updated", task_id)
        return task

    def delete_task(self, task_id: str) -> bool:
        """Permanently delete a task."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM local_tasks WHERE id = ?", (task_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Local task %s deleted", task_id)
        return deleted

    def mark_completed(
        self,
        task_id: str,
        completed_at: str,
        granted_xp: int | None,
        granted_gold: int | None,
        granted_to: list[str] | None = None,
    ) -> bool:
        """Flip incomplete -> complete. False if the task was already complete.

        The granted amounts and the users they went to are kept so reopening
        revokes exactly this payment, even if the task is edited meanwhile.
        """
        paid = json.dumps([str(u) for u in granted_to]) if granted_to is not None else None
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE local_tasks
                SET completed = 1, last_completed_date = ?,
                    granted_xp = ?, granted_gold = ?, granted_to = ?
                WHERE id = ? AND completed = 0
                """,
                (completed_at, granted_xp, granted_gold, paid, task_id),
            )
        return cursor.rowcount > 0

    def mark_uncompleted(self, task_id: str, completed_at: str | None) -> bool:
        """Flip complete -> incomplete, but only for the completion we read.

        `completed_at` guards against revoking a newer completion than the
        one whose granted amounts the caller is about to take back.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE local_tasks
                SET completed = 0, last_completed_date = NULL,
                    granted_xp = NULL, granted_gold = NULL, granted_to = NULL
                WHERE id = ? AND completed = 1 AND last_completed_date IS ?
                """,
                (task_id, completed_at),
            )
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# User stats + redemption log
# ---------------------------------------------------------------------------


class StatsDB(SQLiteStore):
    """SQLite-backed XP/gold totals and the reward redemption log."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS user_stats (
                    user_id TEXT    PRIMARY KEY,
                    xp      INTEGER NOT NULL DEFAULT 0,
                    gold    INTEGER NOT NULL DEFAULT 0,
                    streak  INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS redemptions (
                    id           TEXT    PRIMARY KEY,
                    user_id      TEXT    NOT NULL,
                    reward_id    TEXT    NOT NULL,
                    reward_title TEXT    NOT NULL,
                    cost         INTEGER NOT NULL,
                    redeemed_at  TEXT    NOT NULL,
                    fulfilled    INTEGER NOT NULL DEFAULT 0,
                    fulfilled_at TEXT
                )
            """)
        logger.debug("Stats tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_stats(row: sqlite3.Row) -> UserStats:
        return UserStats(
            user_id=row["user_id"], xp=row["xp"], gold=row["gold"], streak=row["streak"],
        )

    @staticmethod
    def _row_to_redemption(row: sqlite3.Row) -> Redemption:
        return Redemption(
            id=row["id"],
            user_id=row["user_id"],
            reward_id=row["reward_id"],
            reward_title=row["reward_title"],
            cost=row["cost"],
            redeemed_at=row["redeemed_at"],
            fulfilled=bool(row["fulfilled"]),
            fulfilled_at=row["fulfilled_at"],
        )

    def get_stats(self, user_id: str) -> UserStats:
        """Stats for a user; a user never seen before starts at zero."""
        with self._connect() as conn:
            conn.execute("INSERT OR IGNORE INTO user_stats (user_id) VALUES (?)", (user_id,))
            row = conn.execute(
                "SELECT * FROM user_stats WHERE user_id = ?", (user_id,)
            ).fetchone()
        return self._row_to_stats(row)

    def _apply(self, column: str, user_id: str, amount: int) -> UserStats:
        with self._connect() as conn:
            conn.execute("INSERT OR IGNORE INTO user_stats (user_id) VALUES (?)", (user_id,))
            conn.execute(
                f"UPDATE user_stats SET {column} = MAX(0, {column} + ?) WHERE user_id = ?",
                (amount, user_id),
            )
            row = conn.execute(
                "SELECT * FROM user_stats WHERE user_id = ?", (user_id,)
            ).fetchone()
        return self._row_to_stats(row)

    def add_xp(self, user_id: str, amount: int) -> UserStats:
        """Add (or remove, if negative) XP. Never drops below zero."""
        stats = self._apply("xp", user_id, amount)
        logger.info("XP %+d for user %s -> %d", amount, user_id, stats.xp)
        return stats

    def add_gold(self, user_id: str, amount: int) -> UserStats:
        """Add (or remove, if negative) gold. Never drops below zero."""
        stats = self._apply("gold", user_id, amount)
        logger.info("Gold %+d for user %s -> %d", amount, user_id, stats.gold)
        return stats

    def log_redemption(
        self, user_id: str, reward_id: str, reward_title: str, cost: int,
    ) -> Redemption:
        """Record a purchase so a parent can fulfil it; keeps the latest 100."""
        entry = Redemption(
            id=str(uuid.uuid4()),
            user_id=user_id,
            reward_id=reward_id,
            reward_title=reward_title,
            cost=cost,
            redeemed_at=now_iso(),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO redemptions
                    (id, user_id, reward_id, reward_title, cost, redeemed_at, fulfilled)
                VALUES (?, ?, ?, ?, ?, ?, 0)
                """,
                (entry.id, user_id, reward_id, reward_title, cost, entry.redeemed_at),
            )
            conn.execute(
                """
                DELETE FROM redemptions WHERE id NOT IN (
                    SELECT id FROM redemptions ORDER BY redeemed_at DESC, rowid DESC LIMIT ?
                )
                """,
                (REDEMPTION_HISTORY_LIMIT,),
            )
        logger.info("User %s redeemed '%s' for %d gold", user_id, reward_title, cost)
        return entry

    def list_redemptions(self, unfulfilled_only: bool = False) -> list[Redemption]:
        """Most recent first."""
        query = "SELECT * FROM redemptions"
        if unfulfilled_only:
            query += " WHERE fulfilled = 0"
        query += " ORDER BY redeemed_at DESC, rowid DESC"
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_redemption(r) for r in rows]

    def fulfill_redemption(self, redemption_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE redemptions SET fulfilled = 1, fulfilled_at = ? WHERE id = ?",
                (now_iso(), redemption_id),
            )
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Reward shop
# ---------------------------------------------------------------------------


class RewardDB(SQLiteStore):
    """SQLite-backed catalogue of rewards that can be bought with gold."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS rewards (
                    id          TEXT    PRIMARY KEY,
                    title       TEXT    NOT NULL,
                    cost        INTEGER NOT NULL,
                    icon        TEXT    NOT NULL DEFAULT '🎁',
                    description TEXT    NOT NULL DEFAULT '',
                    created_at  TEXT    NOT NULL
                )
            """)
        logger.debug("Rewards table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_reward(row: sqlite3.Row) -> Reward:
        return Reward(
            id=row["id"],
            title=row["title"],
            cost=row["cost"],
            icon=row["icon"],
            description=row["description"],
            created_at=row["created_at"],
        )

    def add_reward(
        self, title: str = "New Reward", cost: int = 50, icon: str = "🎁", description: str = "",
    ) -> Reward:
        if cost < 0:
            raise ValidationError("Reward cost must be non-negative")
        reward = Reward(
            id=str(uuid.uuid4()), title=title, cost=cost, icon=icon,
            description=description, created_at=now_iso(),
        )
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO rewards (id, title, cost, icon, description, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (reward.id, title, cost, icon, description, reward.created_at),
            )
        logger.info("Reward added: '%s' (%d gold)", title, cost)
        return reward

    def get_reward(self, reward_id: str) -> Reward | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM rewards WHERE id = ?", (reward_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_reward(row)

    def list_rewards(self) -> list[Reward]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM rewards ORDER BY created_at, rowid").fetchall()
        return [self._row_to_reward(r) for r in rows]

    def update_reward(self, reward_id: str, updates: dict) -> Reward | None:
        reward = self.get_reward(reward_id)
        if reward is None:
            return None
        for key in ("title", "cost", "icon", "description"):
            if updates.get(key) is not None:
                setattr(reward, key, updates[key])
        if reward.cost < 0:
            raise ValidationError("Reward cost must be non-negative")
        with self._connect() as conn:
            conn.execute(
                "UPDATE rewards SET title = ?, cost = ?, icon = ?, description = ? WHERE id = ?",
                (reward.title, reward.cost, reward.icon, reward.description, reward_id),
            )
        return reward

    def delete_reward(self, reward_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM rewards WHERE id = ?", (reward_id,))
        return cursor.rowcount > 0

    def seed_defaults(self) -> int:
        """Fill an empty shop with the default rewards. Returns how many were added."""
        if self.list_rewards():
            return 0
        for title, cost, icon in DEFAULT_REWARDS:
            self.add_reward(title=title, cost=cost, icon=icon)
        return len(DEFAULT_REWARDS)
