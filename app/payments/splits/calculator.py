"""
Deterministic revenue split calculator.

Turns a gross amount and a set of percentage splits into a platform fee and
a per-recipient net breakdown without creating or losing a single minor
currency unit.

Algorithm:
    1. platform_fee = round_half_up(gross * fee_percent / 100)
    2. net_pool = gross - platform_fee
    3. exact share per recipient = net_pool * percentage / 100
    4. every recipient gets floor(exact share)
    5. the residual (net_pool - sum of floors) is handed out one unit at a
       time to the recipients with the largest fractional parts
       (Largest Remainder / Hamilton method). Ties keep input order.

The function is pure: no database, no settings lookups, no logging on the
happy path. The only side effect is a CRITICAL log line right before
SplitConservationError is raised, which never happens for valid input.

Usage:
    from decimal import Decimal
    from payments.splits import SplitSpec, calculate_split

    breakdown = calculate_split(
        gross_cents=10000,
        currency="usd",
        splits=[
            SplitSpec(recipient_id="u1", percentage=Decimal("60")),
            SplitSpec(recipient_id="u2", percentage=Decimal("40")),
        ],
    )
    breakdown.platform_fee_cents         # 500
    [s.net_cents for s in breakdown.shares]  # [5700, 3800]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from payments.exceptions import (
    AmountInvalidError,
    PercentageModelRequiredError,
    SplitConservationError,
    SplitSumInvalidError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_PLATFORM_FEE_PERCENT = Decimal("5")

# Percentages may drift from 100 by at most this much
SUM_TOLERANCE = Decimal("0.01")

HUNDRED = Decimal("100")
ONE = Decimal("1")


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class SplitSpec:
    """
    One entry of a revenue split agreement.

    Attributes:
        recipient_id: Resolvable recipient identity (None for placeholders)
        percentage: Share in [0, 100]; None for fixed-amount entries
        placeholder_label: Name of an unfilled role, e.g. "Mixing engineer"
        fixed_amount_cents: Fixed-amount variant, ignored by the calculator
    """

    recipient_id: str | None = None
    percentage: Decimal | None = None
    placeholder_label: str | None = None
    fixed_amount_cents: int | None = None

    @property
    def is_placeholder(self) -> bool:
        """True when there is nobody to pay yet."""
        return not self.recipient_id


@dataclass(frozen=True)
class SplitShare:
    """
    Calculated share for one split entry.

    gross_share_cents equals net_cents: the platform fee is taken from the
    pool before apportionment, so no per-recipient deduction remains.
    fee_share_cents is the proportional attribution of the pooled fee and
    is informational only.
    """

    recipient_id: str | None
    placeholder_label: str | None
    percentage: Decimal
    exact_share: Decimal
    net_cents: int
    fee_share_cents: int
    gross_share_cents: int
    tax_withheld_cents: int = 0

    @property
    def is_placeholder(self) -> bool:
        return not self.recipient_id


@dataclass(frozen=True)
class SplitBreakdown:
    """Result of calculate_split."""

    gross_cents: int
    currency: str
    fee_percent: Decimal
    platform_fee_cents: int
    net_pool_cents: int
    total_distributed_cents: int
    shares: tuple[SplitShare, ...] = field(default_factory=tuple)
    tax_withheld_cents: int = 0

    def to_dict(self) -> dict:
        """Serialize for API responses and job payloads."""
        return {
            "gross_cents": self.gross_cents,
            "currency": self.currency,
            "fee_percent": str(self.fee_percent),
            "platform_fee_cents": self.platform_fee_cents,
            "net_pool_cents": self.net_pool_cents,
            "tax_withheld_cents": self.tax_withheld_cents,
            "total_distributed_cents": self.total_distributed_cents,
            "breakdown": [
                {
                    "recipient_id": share.recipient_id,
                    "placeholder_label": share.placeholder_label,
                    "percentage": str(share.percentage),
                    "gross_share_cents": share.gross_share_cents,
                    "fee_share_cents": share.fee_share_cents,
                    "tax_withheld_cents": share.tax_withheld_cents,
                    "net_cents": share.net_cents,
                }
                for share in self.shares
            ],
        }


# =============================================================================
# Helpers
# =============================================================================


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value.quantize(ONE, rounding=ROUND_HALF_UP))


def _as_decimal(value) -> Decimal:
    # str() keeps floats like 33.33 from turning into 33.3299999...
    return value if isinstance(value, Decimal) else Decimal(str(value))


def validate_percentages(splits: Sequence[SplitSpec]) -> list[SplitSpec]:
    """
    Return the percentage-bearing splits after checking they sum to 100.

    Raises:
        PercentageModelRequiredError: No split carries a percentage
        SplitSumInvalidError: Percentages are out of range or don't sum to 100
    """
    percentage_splits = [s for s in splits if s.percentage is not None]
    if not percentage_splits:
        raise PercentageModelRequiredError(
            "At least one split must define a percentage",
            details={"split_count": len(splits)},
        )

    for split in percentage_splits:
        pct = _as_decimal(split.percentage)
        if pct < 0 or pct > HUNDRED:
            raise SplitSumInvalidError(
                f"Split percentage {pct} is outside [0, 100]",
                details={"percentage": str(pct)},
            )

    total = sum((_as_decimal(s.percentage) for s in percentage_splits), Decimal("0"))
    if abs(total - HUNDRED) > SUM_TOLERANCE:
        raise SplitSumInvalidError(
            f"Split percentages sum to {total}, expected 100",
            details={"total_percentage": str(total)},
        )
    return percentage_splits


def _apportion(net_pool: int, percentages: list[Decimal]) -> tuple[list[Decimal], list[int]]:
    """
    Largest remainder apportionment of net_pool by percentage.

    Shares are taken against the actual percentage total, which may sit
    anywhere within the ±0.01 tolerance of 100. The exact shares then sum
    to net_pool, so the residual after flooring is in [0, len(percentages)).
    """
    total = sum(percentages, Decimal("0"))
    exact_shares = [Decimal(net_pool) * pct / total for pct in percentages]
    floors = [int(share.to_integral_value(rounding=ROUND_FLOOR)) for share in exact_shares]
    residual = net_pool - sum(floors)

    # sorted() is stable, so equal remainders keep their input order
    by_remainder = sorted(
        range(len(exact_shares)),
        key=lambda i: exact_shares[i] - floors[i],
        reverse=True,
    )
    allocations = list(floors)
    for index in by_remainder[: max(residual, 0)]:
        allocations[index] += 1
    return exact_shares, allocations


# =============================================================================
# Calculator
# =============================================================================


def calculate_split(
    gross_cents: int,
    currency: str,
    splits: Sequence[SplitSpec],
    fee_percent: Decimal | int | str = DEFAULT_PLATFORM_FEE_PERCENT,
) -> SplitBreakdown:
    """
    Calculate the fee and per-recipient net breakdown for a gross amount.

    Args:
        gross_cents: Positive amount in minor units
        currency: ISO 4217 code, carried through unchanged
        splits: Split entries; only percentage-bearing ones participate
        fee_percent: Platform fee rate in percent (5 means 5%)

    Returns:
        SplitBreakdown whose net amounts sum exactly to the net pool

    Raises:
        AmountInvalidError: gross_cents is not a positive integer
        PercentageModelRequiredError: No split carries a percentage
        SplitSumInvalidError: Percentages don't sum to 100 (±0.01)
        SplitConservationError: Apportionment lost or created a unit (defect)
    """
    if isinstance(gross_cents, bool) or not isinstance(gross_cents, int) or gross_cents <= 0:
        raise AmountInvalidError(
            "Gross amount must be a positive integer in minor units",
            details={"gross_cents": gross_cents},
        )

    percentage_splits = validate_percentages(splits)
    fee_rate = _as_decimal(fee_percent)

    platform_fee = round_half_up(Decimal(gross_cents) * fee_rate / HUNDRED)
    net_pool = gross_cents - platform_fee

    percentages = [_as_decimal(s.percentage) for s in percentage_splits]
    exact_shares, allocations = _apportion(net_pool, percentages)

    shares = tuple(
        SplitShare(
            recipient_id=split.recipient_id,
            placeholder_label=split.placeholder_label,
            percentage=pct,
            exact_share=exact,
            net_cents=net,
            fee_share_cents=round_half_up(Decimal(platform_fee) * pct / HUNDRED),
            gross_share_cents=net,
        )
        for split, pct, exact, net in zip(
            percentage_splits, percentages, exact_shares, allocations
        )
    )

    distributed = sum(share.net_cents for share in shares)
    if distributed != net_pool:
        logger.critical(
            "Currency conservation violated in split calculation",
            extra={
                "gross_cents": gross_cents,
                "platform_fee_cents": platform_fee,
                "net_pool_cents": net_pool,
                "distributed_cents": distributed,
                "split_count": len(shares),
            },
        )
        raise SplitConservationError(
            f"Distributed {distributed} but net pool is {net_pool}",
            details={
                "gross_cents": gross_cents,
                "net_pool_cents": net_pool,
                "distributed_cents": distributed,
            },
        )

    return SplitBreakdown(
        gross_cents=gross_cents,
        currency=currency,
        fee_percent=fee_rate,
        platform_fee_cents=platform_fee,
        net_pool_cents=net_pool,
        total_distributed_cents=distributed,
        shares=shares,
    )


__all__ = [
    "DEFAULT_PLATFORM_FEE_PERCENT",
    "SplitBreakdown",
    "SplitShare",
    "SplitSpec",
    "calculate_split",
    "round_half_up",
    "validate_percentages",
]
