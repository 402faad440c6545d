"""
Cost calculation for token usage.

Turns a usage record and a model id into an itemized dollar breakdown using
the pricing catalog, long-context rates and ephemeral cache tiers.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from .catalog import PricingCatalog
from .pricing import (
    LONG_CONTEXT_THRESHOLD,
    ZERO,
    ZERO_PRICING,
    ModelPricing,
    is_long_context_model,
)
from .token_counter import UsageRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CostBreakdown:
    """Itemized cost of a usage record.

    ``cache_write_cost`` already includes both ephemeral components, so
    ``total_cost == input_cost + output_cost + cache_write_cost + cache_read_cost``.
    Callers must check ``has_pricing`` before trusting the numbers.
    """
    input_cost: Decimal
    output_cost: Decimal
    cache_write_cost: Decimal
    cache_read_cost: Decimal
    ephemeral_5m_cost: Decimal
    ephemeral_1h_cost: Decimal
    total_cost: Decimal
    has_pricing: bool
    is_long_context_request: bool
    pricing_used: ModelPricing
    ephemeral_1h_price: Decimal = ZERO

    @classmethod
    def unpriced(cls, is_long_context_request: bool = False) -> "CostBreakdown":
        """All-zero breakdown for a model without pricing."""
        return cls(
            input_cost=ZERO,
            output_cost=ZERO,
            cache_write_cost=ZERO,
            cache_read_cost=ZERO,
            ephemeral_5m_cost=ZERO,
            ephemeral_1h_cost=ZERO,
            total_cost=ZERO,
            has_pricing=False,
            is_long_context_request=is_long_context_request,
            pricing_used=ZERO_PRICING,
        )


@dataclass(frozen=True)
class CacheSavings:
    """What cache reads saved compared to billing them as fresh input."""
    normal_cost: Decimal
    cache_cost: Decimal
    savings: Decimal
    savings_percentage: Decimal


UsageInput = Union[UsageRecord, Mapping[str, Any], None]


def _as_record(usage: UsageInput) -> UsageRecord:
    if isinstance(usage, UsageRecord):
        return usage
    return UsageRecord.from_api_usage(usage)


class CostCalculator:
    """Prices usage records against a PricingCatalog.

    Calculations are pure over their inputs and a snapshot of the catalog
    table, so one instance can be shared by any number of tasks.
    """

    def __init__(self, catalog: PricingCatalog):
        self.catalog = catalog

    def calculate_cost(self, usage: UsageInput, model_id: str) -> CostBreakdown:
        """Calculate the itemized cost of a usage record.

        Args:
            usage: UsageRecord, or a raw provider usage mapping
            model_id: Model identifier

        Returns:
            CostBreakdown; ``has_pricing`` is False with all-zero costs when
            the model cannot be priced
        """
        record = _as_record(usage)

        is_long_context_request = False
        long_context = None
        if is_long_context_model(model_id):
            if record.input_side_tokens > LONG_CONTEXT_THRESHOLD:
                is_long_context_request = True
                long_context = self.catalog.get_long_context_pricing(model_id)

        pricing = self.catalog.get_model_pricing(model_id)
        if pricing is None and long_context is None:
            logger.debug(f"No pricing for model {model_id}, cost not computed")
            return CostBreakdown.unpriced(is_long_context_request)

        base = pricing or ZERO_PRICING
        if long_context is not None:
            input_price = long_context.input_price_per_token
            output_price = long_context.output_price_per_token
        else:
            input_price = base.input_price_per_token
            output_price = base.output_price_per_token

        input_cost = record.input_tokens * input_price
        output_cost = record.output_tokens * output_price

        # Long-context rates never apply to cache pricing
        cache_read_cost = record.cache_read_tokens * base.cache_read_price_per_token

        ephemeral_1h_price = self.catalog.get_ephemeral_1h_price(model_id)
        ephemeral_5m_cost = ZERO
        ephemeral_1h_cost = ZERO
        cache_write_cost = ZERO
        if record.cache_split is not None:
            split = record.cache_split
            ephemeral_5m_cost = split.ephemeral_5m_tokens * base.cache_write_price_per_token
            ephemeral_1h_cost = split.ephemeral_1h_tokens * ephemeral_1h_price
            cache_write_cost = ephemeral_5m_cost + ephemeral_1h_cost
        elif record.cache_creation_tokens:
            cache_write_cost = record.cache_creation_tokens * base.cache_write_price_per_token
            ephemeral_5m_cost = cache_write_cost

        return CostBreakdown(
            input_cost=input_cost,
            output_cost=output_cost,
            cache_write_cost=cache_write_cost,
            cache_read_cost=cache_read_cost,
            ephemeral_5m_cost=ephemeral_5m_cost,
            ephemeral_1h_cost=ephemeral_1h_cost,
            total_cost=input_cost + output_cost + cache_write_cost + cache_read_cost,
            has_pricing=True,
            is_long_context_request=is_long_context_request,
            pricing_used=ModelPricing(
                input_price_per_token=input_price,
                output_price_per_token=output_price,
                cache_write_price_per_token=base.cache_write_price_per_token,
                cache_read_price_per_token=base.cache_read_price_per_token,
                provider_tag=base.provider_tag,
            ),
            ephemeral_1h_price=ephemeral_1h_price,
        )

    def calculate_aggregated_cost(
        self,
        bucket: Optional[Mapping[str, Any]],
        model_id: str,
    ) -> CostBreakdown:
        """Calculate cost for an aggregated store bucket (see UsageRecord.from_bucket)."""
        return self.calculate_cost(UsageRecord.from_bucket(bucket), model_id)

    def calculate_cache_savings(self, usage: UsageInput, model_id: str) -> CacheSavings:
        """Compare cache-read billing against billing the same tokens as input."""
        record = _as_record(usage)
        pricing = self.catalog.get_model_pricing(model_id) or ZERO_PRICING

        normal_cost = record.cache_read_tokens * pricing.input_price_per_token
        cache_cost = record.cache_read_tokens * pricing.cache_read_price_per_token
        savings = normal_cost - cache_cost
        if normal_cost > 0:
            savings_percentage = savings / normal_cost * 100
        else:
            savings_percentage = ZERO

        return CacheSavings(
            normal_cost=normal_cost,
            cache_cost=cache_cost,
            savings=savings,
            savings_percentage=savings_percentage,
        )
