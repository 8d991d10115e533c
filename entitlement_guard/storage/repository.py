"""
Repository pattern for account persistence.

Accounts are loaded and saved as one aggregate. ``update`` is the atomic
read-modify-write every mutating operation goes through: the read, the
caller's mutation and the save run as a single unit per account.
"""

import json
import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol

from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    Account,
    CredentialBundle,
    Feature,
    PlatformConnection,
    Subscription,
    SubscriptionStatus,
    UsageRecord,
    empty_connections,
)
from entitlement_guard.core.errors import AccountNotFound, ConcurrentModification

logger = logging.getLogger(__name__)

Mutation = Callable[[Account], Account]

USAGE_COLUMNS = {
    Feature.AI_CONTENT: "ai_content",
    Feature.SOCIAL_POSTS: "social_posts",
    Feature.EMAIL_CAMPAIGNS: "email_campaigns",
    Feature.REVIEWS_MONITORED: "reviews_monitored",
}


class AccountStore(Protocol):
    """Persistence collaborator for the Account aggregate."""

    def create(self, account: Account) -> Account:
        ...

    def exists(self, account_id: str) -> bool:
        ...

    def load(self, account_id: str) -> Account:
        ...

    def update(self, account_id: str, mutate: Mutation) -> Account:
        """Atomically apply ``mutate`` to the stored account and persist it."""
        ...


def _dump_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _load_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


class SQLiteAccountRepository:
    """SQLite-backed account store.

    Each ``update`` holds a ``BEGIN IMMEDIATE`` write lock for the whole
    read-modify-write, and the save compares the stored version, so
    concurrent writers in other threads or processes queue instead of
    overwriting each other.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def create(self, account: Account) -> Account:
        """Insert a new account with its usage row and one row per platform.

        Raises:
            ValueError: If the account already exists
        """
        created_at = account.created_at or datetime.now(timezone.utc)
        account = replace(account, created_at=created_at, version=0)

        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            if self._exists(conn, account.account_id):
                raise ValueError(f"Account already exists: {account.account_id}")
            conn.execute("""
                INSERT INTO account
                (account_id, plan, status, connected_platforms, version, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                account.account_id,
                account.subscription.plan,
                account.subscription.status.value,
                json.dumps(list(account.connected_platforms)),
                account.version,
                created_at.isoformat(),
            ))
            conn.execute("""
                INSERT INTO account_usage (account_id) VALUES (?)
            """, (account.account_id,))
            self._write_usage(conn, account)
            self._write_connections(conn, account)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.info("Created account %s on plan %s", account.account_id, account.subscription.plan)
        return account

    def exists(self, account_id: str) -> bool:
        conn = get_connection(self.db_path)
        try:
            return self._exists(conn, account_id)
        finally:
            conn.close()

    def load(self, account_id: str) -> Account:
        """Load the account aggregate.

        Raises:
            AccountNotFound: If no account has this identifier
        """
        conn = get_connection(self.db_path)
        try:
            return self._read(conn, account_id)
        finally:
            conn.close()

    def update(self, account_id: str, mutate: Mutation) -> Account:
        """Read, mutate and save an account inside one write transaction.

        Errors from the mutation or the database roll back and propagate
        unmodified.

        Returns:
            The saved account with its new version
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            current = self._read(conn, account_id)
            updated = mutate(current)
            if updated == current:
                conn.commit()
                return current
            saved = self._write(conn, updated, expected_version=current.version)
            conn.commit()
            return saved
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def save(self, account: Account) -> Account:
        """Save an account previously loaded, if nobody saved it since.

        Raises:
            ConcurrentModification: If the stored version moved on
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            saved = self._write(conn, account, expected_version=account.version)
            conn.commit()
            return saved
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def list_account_ids(self) -> List[str]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("SELECT account_id FROM account ORDER BY created_at, account_id")
            return [row[0] for row in cursor.fetchall()]
        finally:
            conn.close()

    def _exists(self, conn, account_id: str) -> bool:
        cursor = conn.execute("SELECT 1 FROM account WHERE account_id = ?", (account_id,))
        return cursor.fetchone() is not None

    def _read(self, conn, account_id: str) -> Account:
        row = conn.execute("""
            SELECT plan, status, connected_platforms, version, created_at
            FROM account WHERE account_id = ?
        """, (account_id,)).fetchone()
        if row is None:
            raise AccountNotFound(account_id)

        usage_row = conn.execute(f"""
            SELECT {", ".join(USAGE_COLUMNS.values())}, last_updated, reset_watermark
            FROM account_usage WHERE account_id = ?
        """, (account_id,)).fetchone()
        counts = {feature.value: usage_row[i] for i, feature in enumerate(USAGE_COLUMNS)}
        usage = UsageRecord(
            counts=counts,
            last_updated=_load_ts(usage_row[len(USAGE_COLUMNS)]),
            reset_watermark=_load_ts(usage_row[len(USAGE_COLUMNS) + 1]),
        )

        connections = empty_connections()
        cursor = conn.execute("""
            SELECT platform, connected, access_token, refresh_token, identifiers, expiry
            FROM platform_connection WHERE account_id = ?
        """, (account_id,))
        for platform, connected, token, refresh, identifiers, expiry in cursor.fetchall():
            credential = None
            if connected:
                credential = CredentialBundle(
                    access_token=token,
                    identifiers=json.loads(identifiers or "{}"),
                    expiry=_load_ts(expiry),
                    refresh_token=refresh,
                )
            connections[platform] = PlatformConnection(
                platform=platform,
                connected=bool(connected),
                credential=credential,
            )

        return Account(
            account_id=account_id,
            subscription=Subscription(plan=row[0], status=SubscriptionStatus(row[1])),
            usage=usage,
            connections=connections,
            connected_platforms=tuple(json.loads(row[2])),
            version=row[3],
            created_at=_load_ts(row[4]),
        )

    def _write(self, conn, account: Account, expected_version: int) -> Account:
        cursor = conn.execute("""
            UPDATE account
            SET plan = ?, status = ?, connected_platforms = ?, version = version + 1
            WHERE account_id = ? AND version = ?
        """, (
            account.subscription.plan,
            account.subscription.status.value,
            json.dumps(list(account.connected_platforms)),
            account.account_id,
            expected_version,
        ))
        if cursor.rowcount != 1:
            if not self._exists(conn, account.account_id):
                raise AccountNotFound(account.account_id)
            raise ConcurrentModification(
                f"Account {account.account_id} changed since version {expected_version}"
            )
        self._write_usage(conn, account)
        self._write_connections(conn, account)
        return replace(account, version=expected_version + 1)

    def _write_usage(self, conn, account: Account) -> None:
        assignments = ", ".join(f"{column} = ?" for column in USAGE_COLUMNS.values())
        conn.execute(f"""
            UPDATE account_usage
            SET {assignments}, last_updated = ?, reset_watermark = ?
            WHERE account_id = ?
        """, (
            *(account.usage.count(feature) for feature in USAGE_COLUMNS),
            _dump_ts(account.usage.last_updated),
            _dump_ts(account.usage.reset_watermark),
            account.account_id,
        ))

    def _write_connections(self, conn, account: Account) -> None:
        for connection in account.connections.values():
            credential = connection.credential
            conn.execute("""
                INSERT OR REPLACE INTO platform_connection
                (account_id, platform, connected, access_token, refresh_token, identifiers, expiry)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                account.account_id,
                connection.platform,
                int(connection.connected),
                credential.access_token if credential else None,
                credential.refresh_token if credential else None,
                json.dumps(dict(credential.identifiers)) if credential else None,
                _dump_ts(credential.expiry) if credential else None,
            ))


class InMemoryAccountStore:
    """Process-local account store with one lock per account."""

    def __init__(self):
        self._accounts: Dict[str, Account] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(account_id, threading.Lock())

    def create(self, account: Account) -> Account:
        with self._lock_for(account.account_id):
            if account.account_id in self._accounts:
                raise ValueError(f"Account already exists: {account.account_id}")
            account = replace(
                account,
                created_at=account.created_at or datetime.now(timezone.utc),
                version=0,
            )
            self._accounts[account.account_id] = account
        return account

    def exists(self, account_id: str) -> bool:
        return account_id in self._accounts

    def load(self, account_id: str) -> Account:
        try:
            return self._accounts[account_id]
        except KeyError:
            raise AccountNotFound(account_id) from None

    def update(self, account_id: str, mutate: Mutation) -> Account:
        with self._lock_for(account_id):
            current = self.load(account_id)
            updated = mutate(current)
            if updated == current:
                return current
            saved = replace(updated, version=current.version + 1)
            self._accounts[account_id] = saved
            return saved


# Repository instances by database path
_repositories: Dict[str, SQLiteAccountRepository] = {}


def get_repository(db_path: str = DEFAULT_DB_PATH) -> SQLiteAccountRepository:
    """Get the repository instance for a database path.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of SQLiteAccountRepository
    """
    if db_path not in _repositories:
        _repositories[db_path] = SQLiteAccountRepository(db_path)
    return _repositories[db_path]


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the account tables if they don't exist.

    Accounts are never hard-deleted; there is no DELETE path.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS account (
                account_id TEXT PRIMARY KEY,
                plan TEXT,
                status TEXT NOT NULL DEFAULT 'active',
                connected_platforms TEXT NOT NULL DEFAULT '[]',
                version INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS account_usage (
                account_id TEXT PRIMARY KEY REFERENCES account(account_id),
                ai_content INTEGER NOT NULL DEFAULT 0,
                social_posts INTEGER NOT NULL DEFAULT 0,
                email_campaigns INTEGER NOT NULL DEFAULT 0,
                reviews_monitored INTEGER NOT NULL DEFAULT 0,
                last_updated TEXT,
                reset_watermark TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS platform_connection (
                account_id TEXT NOT NULL REFERENCES account(account_id),
                platform TEXT NOT NULL,
                connected INTEGER NOT NULL DEFAULT 0,
                access_token TEXT,
                refresh_token TEXT,
                identifiers TEXT,
                expiry TEXT,
                PRIMARY KEY (account_id, platform)
            )
        """)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
