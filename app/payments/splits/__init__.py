"""
Revenue split calculation.

    calculate_split: Pure, currency-conserving fee + net breakdown
    resolve_payable_shares: Applies the placeholder policy for payouts
"""

from .calculator import (
    DEFAULT_PLATFORM_FEE_PERCENT,
    SplitBreakdown,
    SplitShare,
    SplitSpec,
    calculate_split,
    round_half_up,
)
from .policies import PayableShares, PlaceholderPolicy, resolve_payable_shares

__all__ = [
    "DEFAULT_PLATFORM_FEE_PERCENT",
    "PayableShares",
    "PlaceholderPolicy",
    "SplitBreakdown",
    "SplitShare",
    "SplitSpec",
    "calculate_split",
    "resolve_payable_shares",
    "round_half_up",
]
