"""
Repository pattern for data access.

Reads API key, account and usage-bucket records from the key-value store.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from .models import ApiKeyInfo, UsageBucket
from .store import KeyValueStore

logger = logging.getLogger(__name__)

API_KEY_SCOPE = "usage"
ACCOUNT_SCOPE = "account_usage"


def format_date(moment: Optional[datetime] = None) -> str:
    """UTC calendar date used in bucket keys (YYYY-MM-DD)."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%d")


def _parse_cost(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring malformed cost value: {value!r}")
        return None


class UsageRepository:
    """Repository for usage and cost records in the key-value store."""

    def __init__(self, store: KeyValueStore):
        """Initialize the repository.

        Args:
            store: Key-value store holding the dashboard records
        """
        self.store = store

    def get_api_key_info(self, key_id: str) -> Optional[ApiKeyInfo]:
        data = self.store.hgetall(f"apikey:{key_id}")
        if not data:
            return None
        return ApiKeyInfo.from_hash(key_id, data)

    def get_api_key_usage(self, key_id: str, date: str) -> UsageBucket:
        """Daily usage counters for an API key."""
        return UsageBucket.from_hash(self.store.hgetall(f"usage:daily:{key_id}:{date}"))

    def get_account_usage(self, account_id: str, date: str) -> UsageBucket:
        """Daily usage counters for an account."""
        return UsageBucket.from_hash(self.store.hgetall(f"account_usage:daily:{account_id}:{date}"))

    def get_api_key_cost(self, key_id: str, date: str) -> float:
        """Recorded daily cost of an API key, 0 when absent or unreadable."""
        try:
            return _parse_cost(self.store.get(f"usage:cost:daily:{key_id}:{date}")) or 0.0
        except Exception as e:
            logger.error(f"Error getting API key cost for {key_id}: {e}")
            return 0.0

    def get_account_cost_field(self, account_id: str, date: str) -> Optional[float]:
        """The ``cost`` field of an account's daily bucket, if recorded."""
        return _parse_cost(self.store.hget(f"account_usage:daily:{account_id}:{date}", "cost"))

    def get_api_key_cost_field(self, key_id: str, date: str) -> Optional[float]:
        """The first ``cost`` field found among the key formats collectors write."""
        cost_keys = [
            f"usage:cost:daily:{key_id}:{date}",
            f"usage:daily:{key_id}:{date}",
            f"apikey_usage:daily:{key_id}:{date}",
        ]
        for cost_key in cost_keys:
            cost = _parse_cost(self.store.hget(cost_key, "cost"))
            if cost is not None:
                return cost
        return None

    def get_account_api_keys(self, account_id: str) -> List[str]:
        """IDs of API keys attributed to an account."""
        related = []
        for key_path in self.store.scan_keys("apikey:*"):
            key_id = key_path[len("apikey:"):]
            info = ApiKeyInfo.from_hash(key_id, self.store.hgetall(key_path))
            if info.belongs_to(account_id):
                related.append(key_id)
        return related

    def get_account_model_usage(self, account_id: str, date: str) -> Dict[str, Dict[str, str]]:
        """Per-model daily usage hashes for an account, keyed by model id."""
        prefix = f"account_usage:model:daily:{account_id}:"
        suffix = f":{date}"
        buckets = {}
        for key in self.store.scan_keys(f"{prefix}*{suffix}"):
            model_id = key[len(prefix):-len(suffix)]
            if model_id:
                buckets[model_id] = self.store.hgetall(key)
        return buckets

    def calculate_rpm(
        self,
        scope: str,
        entity_id: str,
        minutes: int = 10,
        now: Optional[datetime] = None,
    ) -> int:
        """Average requests per minute over the last ``minutes`` minutes.

        Hourly buckets are weighted by how many minutes of the window fall in
        them, assuming requests are spread evenly within an hour.

        Args:
            scope: Key prefix, API_KEY_SCOPE or ACCOUNT_SCOPE
            entity_id: API key or account id
            minutes: Window size
            now: Window end, defaults to the current UTC time
        """
        if minutes <= 0:
            return 0

        now = now or datetime.now(timezone.utc)
        overlap: Dict[str, int] = {}
        for i in range(minutes):
            moment = now - timedelta(minutes=i)
            hourly_key = f"{scope}:hourly:{entity_id}:{format_date(moment)}:{moment.hour:02d}"
            overlap[hourly_key] = overlap.get(hourly_key, 0) + 1

        keys = list(overlap)
        try:
            results = self.store.pipeline([("hget", key, "requests") for key in keys])
        except Exception as e:
            logger.error(f"Error calculating RPM for {entity_id}: {e}")
            return 0

        total = 0.0
        for key, result in zip(keys, results):
            try:
                requests = int(result or 0)
            except ValueError:
                requests = 0
            total += requests * overlap[key] / 60
        return round(total / minutes)
