"""
Account cost aggregation.

Upstream collectors record account spend inconsistently, so the daily cost of
an account is resolved from several sources in a fixed order and the first
non-zero result wins:

1. the ``cost`` field of the account's own daily usage bucket
2. the sum of the daily costs recorded for the account's API keys
3. recomputation from the account's per-model daily token buckets
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, Tuple

from account_dashboard.storage.repository import UsageRepository
from .calculator import CostCalculator
from .pricing import ZERO

logger = logging.getLogger(__name__)


class CostSource(Enum):
    """Where an account's daily cost came from."""
    ACCOUNT_BUCKET = "account_bucket"
    API_KEYS = "api_keys"
    MODEL_RECOMPUTATION = "model_recomputation"
    NONE = "none"


@dataclass(frozen=True)
class AccountCost:
    """Resolved daily cost of an account."""
    account_id: str
    date: str
    cost: Decimal
    source: CostSource


class AccountCostAggregator:
    """Resolves per-account daily cost with the documented fallback order."""

    def __init__(self, repository: UsageRepository, calculator: CostCalculator):
        self.repository = repository
        self.calculator = calculator

    def calculate_account_daily_cost(self, account_id: str, date: str) -> AccountCost:
        """Resolve an account's daily cost.

        A source that fails to read is logged and counts as 0.

        Args:
            account_id: Account identifier
            date: Bucket date (YYYY-MM-DD)

        Returns:
            AccountCost naming the source that produced the value
        """
        sources: Tuple[Tuple[CostSource, Callable[[str, str], Decimal]], ...] = (
            (CostSource.ACCOUNT_BUCKET, self._cost_from_account_bucket),
            (CostSource.API_KEYS, self._cost_from_api_keys),
            (CostSource.MODEL_RECOMPUTATION, self._cost_from_model_usage),
        )

        for source, resolve in sources:
            try:
                cost = resolve(account_id, date)
            except Exception as e:
                logger.error(
                    f"Error reading {source.value} cost for account {account_id}: {e}"
                )
                continue
            if cost:
                return AccountCost(account_id, date, cost, source)

        return AccountCost(account_id, date, ZERO, CostSource.NONE)

    def _cost_from_account_bucket(self, account_id: str, date: str) -> Decimal:
        return _to_decimal(self.repository.get_account_cost_field(account_id, date))

    def _cost_from_api_keys(self, account_id: str, date: str) -> Decimal:
        total = ZERO
        for key_id in self.repository.get_account_api_keys(account_id):
            total += _to_decimal(self.repository.get_api_key_cost_field(key_id, date))
        return total

    def _cost_from_model_usage(self, account_id: str, date: str) -> Decimal:
        total = ZERO
        model_usage = self.repository.get_account_model_usage(account_id, date)
        for model_id, bucket in model_usage.items():
            breakdown = self.calculator.calculate_aggregated_cost(bucket, model_id)
            if not breakdown.has_pricing:
                logger.debug(f"Skipping unpriced model {model_id} for account {account_id}")
                continue
            total += breakdown.total_cost
        return total


def _to_decimal(value: Optional[float]) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value))
