"""
Pricing data model and rate lookup.

Converts raw pricing-feed entries into per-token Decimal prices and resolves
model identifiers against a pricing table.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Cache prices derived from the input rate when a feed entry omits them
CACHE_WRITE_MULTIPLIER = Decimal("1.25")
CACHE_READ_MULTIPLIER = Decimal("0.1")

PER_MILLION = Decimal("1000000")
PER_THOUSAND = Decimal("1000")

LONG_CONTEXT_MARKER = "[1m]"
LONG_CONTEXT_THRESHOLD = 200_000

_REGION_PREFIX = re.compile(r"^(us|eu|apac)\.")
_RELAY_VENDOR_MARKERS = (".anthropic.", ".claude")

# Field name per unit, in priority order: per-token, per-million, per-thousand
_PRICE_FIELDS = {
    "input": (
        ("input_cost_per_token", Decimal("1")),
        ("input_cost_per_million_tokens", PER_MILLION),
        ("input_cost_per_1k_tokens", PER_THOUSAND),
    ),
    "output": (
        ("output_cost_per_token", Decimal("1")),
        ("output_cost_per_million_tokens", PER_MILLION),
        ("output_cost_per_1k_tokens", PER_THOUSAND),
    ),
    "cache_write": (
        ("cache_creation_input_token_cost", Decimal("1")),
        ("cache_creation_cost_per_million_tokens", PER_MILLION),
        ("cache_creation_cost_per_1k_tokens", PER_THOUSAND),
    ),
    "cache_read": (
        ("cache_read_input_token_cost", Decimal("1")),
        ("cache_read_cost_per_million_tokens", PER_MILLION),
        ("cache_read_cost_per_1k_tokens", PER_THOUSAND),
    ),
}


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_price_per_token: Decimal
    output_price_per_token: Decimal
    cache_write_price_per_token: Decimal
    cache_read_price_per_token: Decimal
    provider_tag: Optional[str] = None


ZERO_PRICING = ModelPricing(ZERO, ZERO, ZERO, ZERO)


@dataclass(frozen=True)
class LongContextPricing:
    """Flat input/output rates charged once a request crosses the long-context threshold."""
    input_price_per_token: Decimal
    output_price_per_token: Decimal


# Keyed by exact model id including the long-context marker
LONG_CONTEXT_PRICING: Dict[str, LongContextPricing] = {
    "claude-sonnet-4-20250514[1m]": LongContextPricing(
        input_price_per_token=Decimal("0.000006"),  # $6/MTok
        output_price_per_token=Decimal("0.0000225"),  # $22.50/MTok
    ),
}

_OPUS_1H = Decimal("0.00003")  # $30/MTok
_SONNET_1H = Decimal("0.000006")  # $6/MTok
_HAIKU_1H = Decimal("0.0000016")  # $1.6/MTok

# The pricing feed does not carry the 1-hour ephemeral cache tier
EPHEMERAL_1H_PRICING: Dict[str, Decimal] = {
    # Opus
    "claude-opus-4-1": _OPUS_1H,
    "claude-opus-4-1-20250805": _OPUS_1H,
    "claude-opus-4": _OPUS_1H,
    "claude-opus-4-20250514": _OPUS_1H,
    "claude-3-opus": _OPUS_1H,
    "claude-3-opus-latest": _OPUS_1H,
    "claude-3-opus-20240229": _OPUS_1H,
    # Sonnet
    "claude-3-5-sonnet": _SONNET_1H,
    "claude-3-5-sonnet-latest": _SONNET_1H,
    "claude-3-5-sonnet-20241022": _SONNET_1H,
    "claude-3-5-sonnet-20240620": _SONNET_1H,
    "claude-3-sonnet": _SONNET_1H,
    "claude-3-sonnet-20240307": _SONNET_1H,
    "claude-sonnet-3": _SONNET_1H,
    "claude-sonnet-3-5": _SONNET_1H,
    "claude-sonnet-3-7": _SONNET_1H,
    "claude-sonnet-4": _SONNET_1H,
    "claude-sonnet-4-20250514": _SONNET_1H,
    # Haiku
    "claude-3-5-haiku": _HAIKU_1H,
    "claude-3-5-haiku-latest": _HAIKU_1H,
    "claude-3-5-haiku-20241022": _HAIKU_1H,
    "claude-3-haiku": _HAIKU_1H,
    "claude-3-haiku-20240307": _HAIKU_1H,
    "claude-haiku-3": _HAIKU_1H,
    "claude-haiku-3-5": _HAIKU_1H,
}

_EPHEMERAL_1H_FAMILIES: Tuple[Tuple[str, Decimal], ...] = (
    ("opus", _OPUS_1H),
    ("sonnet", _SONNET_1H),
    ("haiku", _HAIKU_1H),
)


def _to_price(value: Any) -> Optional[Decimal]:
    """Parse a raw price value; non-numeric, non-finite or negative values are absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price < 0:
        return None
    return price


def _read_price(raw: Mapping[str, Any], kind: str) -> Optional[Decimal]:
    for field_name, divisor in _PRICE_FIELDS[kind]:
        price = _to_price(raw.get(field_name))
        if price is not None:
            return price / divisor
    return None


def _bills_cache_writes_as_input(model_id: str, provider_tag: Optional[str]) -> bool:
    if provider_tag and provider_tag.lower() == "openai":
        return True
    model_lower = model_id.lower()
    return "gpt" in model_lower or model_lower.startswith("o1")


def parse_model_pricing(model_id: str, raw: Any) -> Optional[ModelPricing]:
    """Convert one raw feed entry into a per-token ModelPricing.

    Args:
        model_id: Table key the entry belongs to
        raw: Raw entry from the pricing feed or cache file

    Returns:
        ModelPricing, or None when the entry is not an object
    """
    if not isinstance(raw, Mapping):
        return None

    provider_tag = raw.get("litellm_provider")
    if not isinstance(provider_tag, str):
        provider_tag = None

    input_price = _read_price(raw, "input") or ZERO
    output_price = _read_price(raw, "output") or ZERO

    cache_write_price = _read_price(raw, "cache_write")
    if not cache_write_price:
        if _bills_cache_writes_as_input(model_id, provider_tag):
            cache_write_price = input_price
        else:
            cache_write_price = input_price * CACHE_WRITE_MULTIPLIER

    cache_read_price = _read_price(raw, "cache_read")
    if not cache_read_price:
        cache_read_price = input_price * CACHE_READ_MULTIPLIER

    return ModelPricing(
        input_price_per_token=input_price,
        output_price_per_token=output_price,
        cache_write_price_per_token=cache_write_price,
        cache_read_price_per_token=cache_read_price,
        provider_tag=provider_tag,
    )


def _normalize(model_id: str) -> str:
    return model_id.lower().replace("-", "").replace("_", "")


class PricingTable:
    """Immutable model id -> ModelPricing mapping with tolerant lookup."""

    def __init__(self, prices: Optional[Mapping[str, ModelPricing]] = None):
        self._prices: Dict[str, ModelPricing] = dict(prices or {})

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "PricingTable":
        """Build a table from a decoded pricing feed, skipping non-object entries."""
        prices = {}
        for model_id, entry in raw.items():
            pricing = parse_model_pricing(model_id, entry)
            if pricing is None:
                logger.debug(f"Skipping malformed pricing entry: {model_id}")
                continue
            prices[model_id] = pricing
        return cls(prices)

    def __len__(self) -> int:
        return len(self._prices)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._prices

    def __iter__(self) -> Iterator[str]:
        return iter(self._prices)

    def get_pricing(self, model_id: str) -> Optional[ModelPricing]:
        """Resolve pricing for a model id.

        Tries an exact match, then the id without a cloud-relay region prefix,
        then a normalized substring match in table order.

        Args:
            model_id: Model identifier as reported in usage data

        Returns:
            ModelPricing, or None when nothing matches
        """
        if not model_id or not self._prices:
            return None

        pricing = self._prices.get(model_id)
        if pricing is not None:
            return pricing

        if any(marker in model_id for marker in _RELAY_VENDOR_MARKERS):
            without_region = _REGION_PREFIX.sub("", model_id, count=1)
            pricing = self._prices.get(without_region)
            if pricing is not None:
                logger.debug(f"Found pricing for {model_id} without region prefix: {without_region}")
                return pricing

        normalized_model = _normalize(model_id)
        if not normalized_model:
            return None
        for key, value in self._prices.items():
            normalized_key = _normalize(key)
            if not normalized_key:
                continue
            if normalized_key in normalized_model or normalized_model in normalized_key:
                logger.debug(f"Found pricing for {model_id} using fuzzy match: {key}")
                return value

        logger.debug(f"No pricing found for model: {model_id}")
        return None


def is_long_context_model(model_id: str) -> bool:
    """Whether the model id carries the long-context marker suffix."""
    return bool(model_id) and LONG_CONTEXT_MARKER in model_id


def get_long_context_pricing(model_id: str) -> Optional[LongContextPricing]:
    """Long-context rates for an exact model id, if any."""
    return LONG_CONTEXT_PRICING.get(model_id)


def get_ephemeral_1h_price(model_id: str) -> Decimal:
    """Per-token price of a 1-hour ephemeral cache write.

    Exact ids win; otherwise the model family decides. Unknown families cost 0.
    """
    if not model_id:
        return ZERO

    price = EPHEMERAL_1H_PRICING.get(model_id)
    if price is not None:
        return price

    model_lower = model_id.lower()
    for family, family_price in _EPHEMERAL_1H_FAMILIES:
        if family in model_lower:
            return family_price

    logger.debug(f"No 1h cache pricing found for model: {model_id}")
    return ZERO
