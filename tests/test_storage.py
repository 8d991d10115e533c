"""
Unit tests for storage layer.

Tests schema creation, account round trips and the atomic update path.
"""

import os
import tempfile
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from entitlement_guard.core.errors import AccountNotFound, ConcurrentModification
from entitlement_guard.storage.db import get_connection
from entitlement_guard.storage.models import (
    Account,
    CredentialBundle,
    PlatformConnection,
    Subscription,
    SubscriptionStatus,
    UsageRecord,
)
from entitlement_guard.storage.repository import (
    InMemoryAccountStore,
    SQLiteAccountRepository,
    get_repository,
    initialize_schema,
)

UTC = timezone.utc


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' ORDER BY name
                """)
                tables = [row[0] for row in cursor.fetchall()]
                assert tables == ["account", "account_usage", "platform_connection"]

                cursor = conn.execute("PRAGMA table_info(account_usage)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'account_id', 'ai_content', 'social_posts', 'email_campaigns',
                    'reviews_monitored', 'last_updated', 'reset_watermark'
                ]
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestSQLiteAccountRepository:
    """Test account persistence against a temporary database."""

    def setup_method(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.db")
        initialize_schema(self.db_path)
        self.repo = SQLiteAccountRepository(self.db_path)

    def teardown_method(self):
        self.temp_dir.cleanup()

    def test_create_and_load(self):
        created = self.repo.create(
            Account(account_id="acct_1", subscription=Subscription(plan="scale"))
        )
        loaded = self.repo.load("acct_1")

        assert loaded == created
        assert loaded.version == 0
        assert loaded.subscription.plan == "scale"
        assert loaded.subscription.status is SubscriptionStatus.ACTIVE
        assert loaded.usage.counts == {
            "aiContent": 0, "socialPosts": 0, "emailCampaigns": 0, "reviewsMonitored": 0
        }
        assert loaded.usage.reset_watermark is None
        assert all(not conn.connected for conn in loaded.connections.values())
        assert loaded.created_at.tzinfo is not None

    def test_create_with_string_status(self):
        self.repo.create(
            Account(account_id="acct_1", subscription=Subscription(plan="scale", status="past_due"))
        )
        assert self.repo.load("acct_1").subscription.status is SubscriptionStatus.PAST_DUE

    def test_create_without_plan(self):
        self.repo.create(Account(account_id="acct_1"))
        assert self.repo.load("acct_1").subscription.plan is None

    def test_duplicate_create_rejected(self):
        self.repo.create(Account(account_id="acct_1"))
        with pytest.raises(ValueError, match="already exists"):
            self.repo.create(Account(account_id="acct_1"))

    def test_load_missing_account(self):
        with pytest.raises(AccountNotFound, match="missing"):
            self.repo.load("missing")
        assert not self.repo.exists("missing")

    def test_update_round_trips_usage_and_connections(self):
        self.repo.create(Account(account_id="acct_1", subscription=Subscription(plan="free")))
        watermark = datetime(2024, 3, 1, tzinfo=UTC)
        expiry = datetime(2024, 5, 1, 8, 30, tzinfo=UTC)
        connection = PlatformConnection(
            platform="linkedin",
            connected=True,
            credential=CredentialBundle(
                access_token="tok",
                identifiers={"profile_id": "p-1"},
                expiry=expiry,
                refresh_token="refresh",
            ),
        )

        def _mutate(account):
            usage = UsageRecord(
                counts={"aiContent": 2, "socialPosts": 7, "emailCampaigns": 0, "reviewsMonitored": 1},
                last_updated=datetime(2024, 3, 9, tzinfo=UTC),
                reset_watermark=watermark,
            )
            return replace(account, usage=usage).with_connection(connection)

        saved = self.repo.update("acct_1", _mutate)
        loaded = self.repo.load("acct_1")

        assert saved.version == 1
        assert loaded == saved
        assert loaded.usage.reset_watermark == watermark
        assert loaded.connected_platforms == ("linkedin",)
        credential = loaded.connections["linkedin"].credential
        assert credential.expiry == expiry
        assert credential.identifiers == {"profile_id": "p-1"}
        assert credential.refresh_token == "refresh"

    def test_noop_update_keeps_version(self):
        self.repo.create(Account(account_id="acct_1"))
        self.repo.update("acct_1", lambda account: account)
        assert self.repo.load("acct_1").version == 0

    def test_failed_mutation_rolls_back(self):
        self.repo.create(Account(account_id="acct_1"))

        def _mutate(account):
            raise RuntimeError("mutation failed")

        with pytest.raises(RuntimeError, match="mutation failed"):
            self.repo.update("acct_1", _mutate)
        assert self.repo.load("acct_1").version == 0

    def test_update_missing_account(self):
        with pytest.raises(AccountNotFound):
            self.repo.update("missing", lambda account: account)

    def test_stale_save_rejected(self):
        """A save based on an outdated read is refused, not applied."""
        self.repo.create(Account(account_id="acct_1", subscription=Subscription(plan="free")))
        stale = self.repo.load("acct_1")
        self.repo.update(
            "acct_1",
            lambda account: replace(account, subscription=Subscription(plan="scale"))
        )

        with pytest.raises(ConcurrentModification):
            self.repo.save(replace(stale, subscription=Subscription(plan="enterprise")))
        assert self.repo.load("acct_1").subscription.plan == "scale"

    def test_list_account_ids(self):
        self.repo.create(Account(account_id="b", created_at=datetime(2024, 1, 2, tzinfo=UTC)))
        self.repo.create(Account(account_id="a", created_at=datetime(2024, 1, 1, tzinfo=UTC)))
        assert self.repo.list_account_ids() == ["a", "b"]

    def test_get_repository_cached_per_path(self):
        assert get_repository(self.db_path) is get_repository(self.db_path)


class TestInMemoryAccountStore:
    """Test the process-local store."""

    def test_update_bumps_version(self):
        store = InMemoryAccountStore()
        store.create(Account(account_id="acct_1"))
        saved = store.update(
            "acct_1",
            lambda account: replace(account, subscription=Subscription(plan="scale"))
        )
        assert saved.version == 1
        assert store.load("acct_1") == saved

    def test_missing_account(self):
        store = InMemoryAccountStore()
        with pytest.raises(AccountNotFound):
            store.load("missing")
        with pytest.raises(KeyError):
            store.update("missing", lambda account: account)
