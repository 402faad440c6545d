"""
Data models for storage layer.

Typed views over the hash records kept in the key-value store.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

from account_dashboard.core.token_counter import UsageRecord


def _parse_int(value: Optional[str]) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class UsageBucket:
    """One daily or hourly usage counter hash for an API key or account."""
    requests: int
    all_tokens: int
    usage: UsageRecord

    @classmethod
    def from_hash(cls, data: Mapping[str, str]) -> "UsageBucket":
        usage = UsageRecord.from_bucket(data)
        all_tokens = _parse_int(data.get("allTokens")) or _parse_int(data.get("tokens"))
        return cls(
            requests=_parse_int(data.get("requests")),
            all_tokens=all_tokens or usage.total_tokens,
            usage=usage,
        )


@dataclass(frozen=True)
class ApiKeyInfo:
    """Issued API key metadata relevant to cost attribution."""
    id: str
    name: str
    claude_account_id: str
    account_id: str
    is_active: bool
    daily_cost_limit: Optional[float] = None

    @classmethod
    def from_hash(cls, key_id: str, data: Mapping[str, str]) -> "ApiKeyInfo":
        limit = data.get("dailyCostLimit")
        try:
            daily_cost_limit = float(limit) if limit else None
        except ValueError:
            daily_cost_limit = None
        return cls(
            id=data.get("id") or key_id,
            name=data.get("name", ""),
            claude_account_id=data.get("claudeAccountId", ""),
            account_id=data.get("accountId", ""),
            is_active=data.get("isActive") == "true",
            daily_cost_limit=daily_cost_limit,
        )

    def belongs_to(self, account_id: str) -> bool:
        """Whether this key is attributed to the given account."""
        return (
            self.claude_account_id == account_id
            or self.claude_account_id == f"group:{account_id}"
            or self.account_id == account_id
            or (bool(self.name) and account_id in self.name)
        )
