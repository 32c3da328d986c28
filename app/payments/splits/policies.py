"""
Placeholder policies for payout scheduling.

A split agreement may reserve a share for a role nobody fills yet (a
placeholder). When money is paid out those shares have no recipient, and
the scheduler must decide what happens to them:

    withhold:    Calculate over the full split set with the original
                 percentages, pay resolved recipients their share and keep
                 the placeholder shares back. The kept amount is recorded
                 on the batch as withheld_cents.
    renormalize: Drop placeholders and rescale the resolved recipients'
                 percentages so they sum to 100, distributing the whole
                 net pool.

Usage:
    from payments.splits.policies import PlaceholderPolicy, resolve_payable_shares

    payable = resolve_payable_shares(
        gross_cents=10000,
        currency="usd",
        splits=specs,
        policy=PlaceholderPolicy.WITHHOLD,
    )
    payable.shares          # resolved recipients only
    payable.withheld_cents  # placeholder shares kept back
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import models

from payments.exceptions import NoRecipientsError
from payments.splits.calculator import (
    DEFAULT_PLATFORM_FEE_PERCENT,
    HUNDRED,
    SplitBreakdown,
    SplitShare,
    calculate_split,
    validate_percentages,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from payments.splits.calculator import SplitSpec


class PlaceholderPolicy(models.TextChoices):
    WITHHOLD = "withhold", "Withhold placeholder shares"
    RENORMALIZE = "renormalize", "Renormalize across resolved recipients"


@dataclass(frozen=True)
class PayableShares:
    """Breakdown plus the subset of shares that will actually be paid."""

    breakdown: SplitBreakdown
    shares: tuple[SplitShare, ...]
    withheld_cents: int
    policy: str

    @property
    def total_net_cents(self) -> int:
        return sum(share.net_cents for share in self.shares)


def _renormalized(splits: Sequence[SplitSpec]) -> list[SplitSpec]:
    resolved = [s for s in splits if not s.is_placeholder]
    total = sum((Decimal(str(s.percentage)) for s in resolved), Decimal("0"))
    if total <= 0:
        raise NoRecipientsError(
            "Resolved recipients hold no percentage of the split",
            details={"resolved_count": len(resolved)},
        )
    return [
        replace(s, percentage=Decimal(str(s.percentage)) * HUNDRED / total)
        for s in resolved
    ]


def resolve_payable_shares(
    gross_cents: int,
    currency: str,
    splits: Sequence[SplitSpec],
    policy: str = PlaceholderPolicy.WITHHOLD,
    fee_percent: Decimal | int | str = DEFAULT_PLATFORM_FEE_PERCENT,
) -> PayableShares:
    """
    Apply a placeholder policy and return the shares to pay.

    The full split set is validated first under either policy, so an
    agreement that doesn't sum to 100 is rejected before placeholders are
    considered.

    Raises:
        PercentageModelRequiredError: No split carries a percentage
        SplitSumInvalidError: Percentages don't sum to 100
        NoRecipientsError: Every percentage-bearing split is a placeholder
        ValueError: Unknown policy
    """
    percentage_splits = validate_percentages(splits)
    if all(s.is_placeholder for s in percentage_splits):
        raise NoRecipientsError(
            "No resolved recipients for payout",
            details={"placeholder_count": len(percentage_splits)},
        )

    if policy == PlaceholderPolicy.WITHHOLD:
        breakdown = calculate_split(gross_cents, currency, percentage_splits, fee_percent)
        payable = tuple(s for s in breakdown.shares if not s.is_placeholder)
        withheld = sum(s.net_cents for s in breakdown.shares if s.is_placeholder)
    elif policy == PlaceholderPolicy.RENORMALIZE:
        breakdown = calculate_split(
            gross_cents, currency, _renormalized(percentage_splits), fee_percent
        )
        payable = breakdown.shares
        withheld = 0
    else:
        raise ValueError(f"Unknown placeholder policy: {policy}")

    return PayableShares(
        breakdown=breakdown,
        shares=payable,
        withheld_cents=withheld,
        policy=str(policy),
    )


__all__ = [
    "PayableShares",
    "PlaceholderPolicy",
    "resolve_payable_shares",
]
