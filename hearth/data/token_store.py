"""
Hearth Kiosk — Token storage.

TokenStore keeps the short-lived access token of every linked account, one
row per (user, provider). CredentialStore keeps the long-lived refresh token
the backend received in the OAuth callback; it is never sent to a client.

Pure storage: nothing here talks to the network.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime

from hearth.data.db import SQLiteStore, now_iso
from hearth.data.models import LinkedAccount, OAuthCredential, Provider

logger = logging.getLogger(__name__)


class TokenStore(SQLiteStore):
    """SQLite-backed LinkedAccount records keyed by (user_id, provider)."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS linked_accounts (
                    user_id      TEXT    NOT NULL,
                    provider     TEXT    NOT NULL,
                    access_token TEXT    NOT NULL,
                    expires_at   TEXT    NOT NULL,
                    refreshable  INTEGER NOT NULL DEFAULT 1,
                    PRIMARY KEY (user_id, provider)
                )
            """)
        logger.debug("Linked accounts table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> LinkedAccount:
        return LinkedAccount(
            user_id=row["user_id"],
            provider=Provider(row["provider"]),
            access_token=row["access_token"],
            expires_at=datetime.fromisoformat(row["expires_at"]),
            refreshable=bool(row["refreshable"]),
        )

    def get(self, user_id: str, provider: Provider) -> LinkedAccount | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM linked_accounts WHERE user_id = ? AND provider = ?",
                (user_id, Provider(provider).value),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def save(self, account: LinkedAccount) -> None:
        """Insert or replace the account for its (user, provider) pair."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO linked_accounts (user_id, provider, access_token, expires_at, refreshable)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (user_id, provider) DO UPDATE SET
                    access_token = excluded.access_token,
                    expires_at   = excluded.expires_at,
                    refreshable  = excluded.refreshable
                """,
                (
                    account.user_id,
                    Provider(account.provider).value,
                    account.access_token,
                    account.expires_at.isoformat(),
                    int(account.refreshable),
                ),
            )
        logger.debug("Token saved for user %s (%s)", account.user_id, account.provider.value)

    def delete(self, user_id: str, provider: Provider) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM linked_accounts WHERE user_id = ? AND provider = ?",
                (user_id, Provider(provider).value),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Linked account removed: user %s (%s)", user_id, Provider(provider).value)
        return deleted

    def delete_user(self, user_id: str) -> int:
        """Disconnect every provider of a user."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM linked_accounts WHERE user_id = ?", (user_id,))
        return cursor.rowcount

    def list_accounts(self, provider: Provider | None = None) -> list[LinkedAccount]:
        query = "SELECT * FROM linked_accounts"
        params: list = []
        if provider is not None:
            query += " WHERE provider = ?"
            params.append(Provider(provider).value)
        query += " ORDER BY user_id, provider"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_account(r) for r in rows]


class CredentialStore(SQLiteStore):
    """SQLite-backed server-side OAuth credentials, one per user."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS oauth_credentials (
                    user_id       TEXT PRIMARY KEY,
                    refresh_token TEXT,
                    access_token  TEXT,
                    expiry        TEXT,
                    scopes        TEXT NOT NULL DEFAULT '[]',
                    updated_at    TEXT NOT NULL
                )
            """)
        logger.debug("OAuth credentials table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_credential(row: sqlite3.Row) -> OAuthCredential:
        return OAuthCredential(
            user_id=row["user_id"],
            refresh_token=row["refresh_token"],
            access_token=row["access_token"],
            expiry=datetime.fromisoformat(row["expiry"]) if row["expiry"] else None,
            scopes=json.loads(row["scopes"]),
            updated_at=row["updated_at"],
        )

    def get(self, user_id: str) -> OAuthCredential | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_credentials WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_credential(row)

    def save(self, credential: OAuthCredential) -> OAuthCredential:
        """Store a credential.

        Google only sends a refresh token on first consent; when a new
        credential arrives without one, the previously stored token is kept.
        """
        existing = self.get(credential.user_id)
        if not credential.refresh_token and existing is not None:
            credential.refresh_token = existing.refresh_token
        credential.updated_at = now_iso()

        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO oauth_credentials
                    (user_id, refresh_token, access_token, expiry, scopes, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    credential.user_id,
                    credential.refresh_token,
                    credential.access_token,
                    credential.expiry.isoformat() if credential.expiry else None,
                    json.dumps(credential.scopes),
                    credential.updated_at,
                ),
            )
        logger.info("OAuth credential saved for user %s", credential.user_id)
        return credential

    def delete(self, user_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM oauth_credentials WHERE user_id = ?", (user_id,))
        return cursor.rowcount > 0
