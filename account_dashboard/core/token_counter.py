"""
Token counting and usage tracking.

Normalizes raw usage payloads into records the cost calculator can price.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional


def _as_count(value: Any) -> int:
    """Coerce a raw token count to a non-negative int, defaulting to 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError):
        # Decimal text such as "12.0" or "1e3"
        try:
            count = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 0
    return count if count > 0 else 0


@dataclass(frozen=True)
class EphemeralCacheSplit:
    """Cache-creation tokens split by ephemeral tier."""
    ephemeral_5m_tokens: int = 0
    ephemeral_1h_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.ephemeral_5m_tokens + self.ephemeral_1h_tokens


@dataclass(frozen=True)
class UsageRecord:
    """Token usage for one billable event or an aggregated bucket.

    When ``cache_split`` is present it supersedes ``cache_creation_tokens``
    for cost purposes.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    cache_split: Optional[EphemeralCacheSplit] = None

    @property
    def cache_write_tokens(self) -> int:
        """Cache-creation tokens, whichever representation is in effect."""
        if self.cache_split is not None:
            return self.cache_split.total_tokens
        return self.cache_creation_tokens

    @property
    def input_side_tokens(self) -> int:
        """Input plus cache-creation plus cache-read tokens."""
        return self.input_tokens + self.cache_write_tokens + self.cache_read_tokens

    @property
    def total_tokens(self) -> int:
        """All tokens in the record."""
        return self.input_side_tokens + self.output_tokens

    @classmethod
    def from_api_usage(cls, usage: Optional[Mapping[str, Any]]) -> "UsageRecord":
        """Build a record from a provider ``usage`` object.

        Missing or malformed fields default to 0. A ``cache_creation``
        sub-object produces the structured ephemeral split.
        """
        if not usage:
            return cls()

        split = None
        cache_creation = usage.get("cache_creation")
        if isinstance(cache_creation, Mapping):
            split = EphemeralCacheSplit(
                ephemeral_5m_tokens=_as_count(cache_creation.get("ephemeral_5m_input_tokens")),
                ephemeral_1h_tokens=_as_count(cache_creation.get("ephemeral_1h_input_tokens")),
            )

        return cls(
            input_tokens=_as_count(usage.get("input_tokens")),
            output_tokens=_as_count(usage.get("output_tokens")),
            cache_creation_tokens=_as_count(usage.get("cache_creation_input_tokens")),
            cache_read_tokens=_as_count(usage.get("cache_read_input_tokens")),
            cache_split=split,
        )

    @classmethod
    def from_bucket(cls, bucket: Optional[Mapping[str, Any]]) -> "UsageRecord":
        """Build a record from an aggregated store bucket.

        Buckets written by different collectors name the same counter either
        ``inputTokens`` or ``totalInputTokens``; the first non-zero wins.
        Ephemeral counters, when either is non-zero, become the cache split.
        """
        if not bucket:
            return cls()

        def pick(*names: str) -> int:
            for name in names:
                count = _as_count(bucket.get(name))
                if count:
                    return count
            return 0

        ephemeral_5m = pick("ephemeral5mTokens")
        ephemeral_1h = pick("ephemeral1hTokens")
        split = None
        if ephemeral_5m or ephemeral_1h:
            split = EphemeralCacheSplit(
                ephemeral_5m_tokens=ephemeral_5m,
                ephemeral_1h_tokens=ephemeral_1h,
            )

        return cls(
            input_tokens=pick("inputTokens", "totalInputTokens"),
            output_tokens=pick("outputTokens", "totalOutputTokens"),
            cache_creation_tokens=pick("cacheCreateTokens", "totalCacheCreateTokens"),
            cache_read_tokens=pick("cacheReadTokens", "totalCacheReadTokens"),
            cache_split=split,
        )
