"""
Unit tests for storage layer.

Tests schema creation, key-value operations, record views and repository reads.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from account_dashboard.storage.db import get_connection, initialize_schema
from account_dashboard.storage.models import ApiKeyInfo, UsageBucket
from account_dashboard.storage.repository import (
    ACCOUNT_SCOPE,
    API_KEY_SCOPE,
    UsageRepository,
    format_date,
)
from account_dashboard.storage.store import SqliteKeyValueStore


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "test.db")
        initialize_schema(db_path)
        yield SqliteKeyValueStore(db_path)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify string and hash tables are created."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' ORDER BY name
                """)
                assert [row[0] for row in cursor.fetchall()] == ["kv_hash", "kv_string"]

                cursor = conn.execute("PRAGMA table_info(kv_hash)")
                assert [col[1] for col in cursor.fetchall()] == ["key", "field", "value"]
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class TestKeyValueStore:
    """Test string, hash, scan and pipeline operations."""

    def test_string_values(self, store):
        assert store.get("missing") is None
        store.set("usage:cost:daily:k:2025-01-15", "1.5")
        assert store.get("usage:cost:daily:k:2025-01-15") == "1.5"
        store.set("usage:cost:daily:k:2025-01-15", 2)
        assert store.get("usage:cost:daily:k:2025-01-15") == "2"

    def test_hash_values(self, store):
        """Verify hset merges fields and stores values as strings."""
        store.hset("apikey:k", {"name": "bot", "isActive": "true"})
        store.hset("apikey:k", {"isActive": "false", "requests": 3})
        assert store.hgetall("apikey:k") == {"name": "bot", "isActive": "false", "requests": "3"}
        assert store.hget("apikey:k", "requests") == "3"
        assert store.hget("apikey:k", "missing") is None
        assert store.hgetall("apikey:missing") == {}

    def test_scan_keys(self, store):
        """Verify glob scans cover both tables and return sorted keys."""
        store.hset("apikey:b", {"id": "b"})
        store.hset("apikey:a", {"id": "a"})
        store.set("apikey:c", "string")
        store.hset("account_usage:daily:x:2025-01-15", {"requests": 1})
        assert store.scan_keys("apikey:*") == ["apikey:a", "apikey:b", "apikey:c"]
        assert store.scan_keys("nothing:*") == []

    def test_pipeline_results_in_order(self, store):
        store.hset("h", {"requests": "4"})
        results = store.pipeline([
            ("set", "s", "v"),
            ("get", "s"),
            ("hget", "h", "requests"),
            ("hgetall", "h"),
            ("HGET", "h", "missing"),
        ])
        assert results == [None, "v", "4", {"requests": "4"}, None]
        assert store.pipeline([]) == []

    def test_pipeline_rolls_back_on_error(self, store):
        """Verify a failed pipeline leaves no partial writes."""
        with pytest.raises(ValueError, match="Unsupported store command"):
            store.pipeline([("set", "s", "v"), ("incr", "s")])
        assert store.get("s") is None


class TestModels:
    """Test typed views over stored hashes."""

    def test_usage_bucket_from_hash(self):
        bucket = UsageBucket.from_hash({
            "requests": "7",
            "inputTokens": "100",
            "outputTokens": "50",
            "allTokens": "170",
        })
        assert bucket.requests == 7
        assert bucket.all_tokens == 170
        assert bucket.usage.input_tokens == 100

    def test_usage_bucket_all_tokens_fallback(self):
        """Verify all_tokens falls back to the summed token counts."""
        bucket = UsageBucket.from_hash({"inputTokens": "100", "cacheReadTokens": "20", "requests": "x"})
        assert bucket.all_tokens == 120
        assert bucket.requests == 0

    def test_api_key_info_from_hash(self):
        info = ApiKeyInfo.from_hash("k1", {
            "name": "ci-bot",
            "claudeAccountId": "acct-1",
            "isActive": "true",
            "dailyCostLimit": "12.5",
        })
        assert info.id == "k1"
        assert info.is_active
        assert info.daily_cost_limit == 12.5

    def test_api_key_info_bad_limit(self):
        info = ApiKeyInfo.from_hash("k1", {"dailyCostLimit": "lots"})
        assert info.daily_cost_limit is None
        assert not info.is_active

    def test_belongs_to(self):
        """Verify every attribution rule matches the account."""
        assert ApiKeyInfo.from_hash("k", {"claudeAccountId": "acct-1"}).belongs_to("acct-1")
        assert ApiKeyInfo.from_hash("k", {"claudeAccountId": "group:acct-1"}).belongs_to("acct-1")
        assert ApiKeyInfo.from_hash("k", {"accountId": "acct-1"}).belongs_to("acct-1")
        assert ApiKeyInfo.from_hash("k", {"name": "acct-1 batch"}).belongs_to("acct-1")
        assert not ApiKeyInfo.from_hash("k", {"claudeAccountId": "acct-2"}).belongs_to("acct-1")


class TestRepository:
    """Test repository reads against the store."""

    def test_format_date_uses_utc(self):
        moment = datetime(2025, 1, 15, 23, 30, tzinfo=timezone.utc)
        assert format_date(moment) == "2025-01-15"
        eastern = moment.astimezone(timezone(timedelta(hours=5)))
        assert format_date(eastern) == "2025-01-15"

    def test_api_key_reads(self, store):
        store.hset("apikey:k1", {"name": "bot", "isActive": "true"})
        store.hset("usage:daily:k1:2025-01-15", {"requests": "3", "inputTokens": "30"})
        store.set("usage:cost:daily:k1:2025-01-15", "0.5")
        repo = UsageRepository(store)

        assert repo.get_api_key_info("k1").name == "bot"
        assert repo.get_api_key_info("missing") is None
        assert repo.get_api_key_usage("k1", "2025-01-15").requests == 3
        assert repo.get_api_key_cost("k1", "2025-01-15") == 0.5
        assert repo.get_api_key_cost("k1", "2025-01-16") == 0.0

    def test_account_usage(self, store):
        """Verify account buckets are read with their token aliases."""
        store.hset("account_usage:daily:acct-1:2025-01-15", {
            "requests": "42",
            "totalInputTokens": "1200",
            "outputTokens": "300",
            "ephemeral1hTokens": "50",
            "allTokens": "1550",
        })
        repo = UsageRepository(store)

        bucket = repo.get_account_usage("acct-1", "2025-01-15")
        assert bucket.requests == 42
        assert bucket.all_tokens == 1550
        assert bucket.usage.input_tokens == 1200
        assert bucket.usage.output_tokens == 300
        assert bucket.usage.cache_write_tokens == 50

        empty = repo.get_account_usage("acct-1", "2025-01-16")
        assert empty.requests == 0
        assert empty.all_tokens == 0

    def test_malformed_cost_reads_as_absent(self, store):
        store.set("usage:cost:daily:k1:2025-01-15", "n/a")
        store.hset("account_usage:daily:a:2025-01-15", {"cost": "n/a"})
        repo = UsageRepository(store)
        assert repo.get_api_key_cost("k1", "2025-01-15") == 0.0
        assert repo.get_account_cost_field("a", "2025-01-15") is None

    def test_api_key_cost_field_order(self, store):
        """Verify the first populated cost field wins."""
        store.hset("usage:daily:k1:2025-01-15", {"requests": "1"})
        store.hset("apikey_usage:daily:k1:2025-01-15", {"cost": "0.2"})
        repo = UsageRepository(store)
        assert repo.get_api_key_cost_field("k1", "2025-01-15") == 0.2

        store.hset("usage:daily:k1:2025-01-15", {"cost": "0.1"})
        assert repo.get_api_key_cost_field("k1", "2025-01-15") == 0.1
        assert repo.get_api_key_cost_field("k2", "2025-01-15") is None

    def test_account_api_keys(self, store):
        store.hset("apikey:k1", {"claudeAccountId": "acct-1"})
        store.hset("apikey:k2", {"claudeAccountId": "group:acct-1"})
        store.hset("apikey:k3", {"claudeAccountId": "acct-2"})
        repo = UsageRepository(store)
        assert repo.get_account_api_keys("acct-1") == ["k1", "k2"]
        assert repo.get_account_api_keys("acct-9") == []

    def test_account_model_usage(self, store):
        """Verify model ids are parsed from per-model bucket keys."""
        store.hset("account_usage:model:daily:acct-1:claude-3-opus:2025-01-15", {"inputTokens": "5"})
        store.hset("account_usage:model:daily:acct-1:gpt-4o:2025-01-15", {"inputTokens": "6"})
        store.hset("account_usage:model:daily:acct-1:gpt-4o:2025-01-14", {"inputTokens": "7"})
        store.hset("account_usage:model:daily:acct-2:gpt-4o:2025-01-15", {"inputTokens": "8"})
        repo = UsageRepository(store)

        buckets = repo.get_account_model_usage("acct-1", "2025-01-15")
        assert buckets == {
            "claude-3-opus": {"inputTokens": "5"},
            "gpt-4o": {"inputTokens": "6"},
        }


class TestRequestsPerMinute:
    """Test RPM over hourly buckets."""

    def test_window_within_one_hour(self, store):
        now = datetime(2025, 1, 15, 12, 30, tzinfo=timezone.utc)
        store.hset(f"{API_KEY_SCOPE}:hourly:k1:2025-01-15:12", {"requests": "600"})
        repo = UsageRepository(store)
        # 10 of 60 minutes -> 100 requests over 10 minutes
        assert repo.calculate_rpm(API_KEY_SCOPE, "k1", minutes=10, now=now) == 10

    def test_window_spanning_hours(self, store):
        """Verify each hourly bucket is weighted by its overlap with the window."""
        now = datetime(2025, 1, 15, 12, 5, tzinfo=timezone.utc)
        store.hset(f"{ACCOUNT_SCOPE}:hourly:a1:2025-01-15:12", {"requests": "600"})
        store.hset(f"{ACCOUNT_SCOPE}:hourly:a1:2025-01-15:11", {"requests": "1200"})
        repo = UsageRepository(store)
        # 600 * 6/60 + 1200 * 4/60 = 140 requests over 10 minutes
        assert repo.calculate_rpm(ACCOUNT_SCOPE, "a1", minutes=10, now=now) == 14

    def test_window_spanning_days(self, store):
        now = datetime(2025, 1, 16, 0, 1, tzinfo=timezone.utc)
        store.hset(f"{API_KEY_SCOPE}:hourly:k1:2025-01-15:23", {"requests": "300"})
        repo = UsageRepository(store)
        # 8 minutes of the window fall in 23:xx
        assert repo.calculate_rpm(API_KEY_SCOPE, "k1", minutes=10, now=now) == 4

    def test_no_data(self, store):
        repo = UsageRepository(store)
        assert repo.calculate_rpm(API_KEY_SCOPE, "k1") == 0
        assert repo.calculate_rpm(API_KEY_SCOPE, "k1", minutes=0) == 0

    def test_store_failure_returns_zero(self, store):
        class BrokenStore(SqliteKeyValueStore):
            def pipeline(self, commands):
                raise ConnectionError("store unavailable")

        repo = UsageRepository(BrokenStore(store.db_path))
        assert repo.calculate_rpm(API_KEY_SCOPE, "k1") == 0
