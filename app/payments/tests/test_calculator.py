"""
Tests for the revenue split calculator.

Covers the fee rounding, largest-remainder apportionment, currency
conservation and input validation of calculate_split.
"""

from decimal import Decimal

import pytest

from payments.exceptions import (
    AmountInvalidError,
    PercentageModelRequiredError,
    SplitSumInvalidError,
)
from payments.splits import SplitSpec, calculate_split, round_half_up
from payments.splits.calculator import validate_percentages


def specs(*percentages, placeholders=()):
    return [
        SplitSpec(
            recipient_id=None if index in placeholders else f"user-{index}",
            percentage=Decimal(str(pct)) if pct is not None else None,
            placeholder_label=f"role-{index}" if index in placeholders else None,
        )
        for index, pct in enumerate(percentages)
    ]


# =============================================================================
# Reference Amounts
# =============================================================================


class TestReferenceAmounts:
    def test_even_split_of_small_amount(self):
        breakdown = calculate_split(100, "usd", specs(50, 50))

        assert breakdown.platform_fee_cents == 5
        assert breakdown.net_pool_cents == 95
        assert sorted(s.net_cents for s in breakdown.shares) == [47, 48]
        assert breakdown.total_distributed_cents == 95

    def test_even_split_tie_goes_to_first_entry(self):
        breakdown = calculate_split(100, "usd", specs(50, 50))

        assert [s.net_cents for s in breakdown.shares] == [48, 47]

    def test_sixty_forty(self):
        breakdown = calculate_split(10000, "usd", specs(60, 40))

        assert breakdown.platform_fee_cents == 500
        assert breakdown.net_pool_cents == 9500
        assert [s.net_cents for s in breakdown.shares] == [5700, 3800]

    def test_thirds_assign_residual_by_largest_remainder(self):
        breakdown = calculate_split(33333, "usd", specs("33.33", "33.33", "33.34"))

        assert breakdown.platform_fee_cents == 1667
        assert breakdown.net_pool_cents == 31666
        # Floors are 10554/10554/10557; the 33.34 share has the largest remainder
        assert [s.net_cents for s in breakdown.shares] == [10554, 10554, 10558]
        assert breakdown.total_distributed_cents == 31666


# =============================================================================
# Invariants
# =============================================================================


class TestConservation:
    @pytest.mark.parametrize(
        "gross, percentages",
        [
            (1, (100,)),
            (7, (33.33, 33.33, 33.34)),
            (99, (10, 20, 30, 40)),
            (12345, (12.5, 12.5, 25, 50)),
            (999999, (0.01, 99.99)),
            (101, (1, 1, 98)),
        ],
    )
    def test_fee_plus_shares_equals_gross(self, gross, percentages):
        breakdown = calculate_split(gross, "usd", specs(*percentages))

        assert breakdown.platform_fee_cents + sum(s.net_cents for s in breakdown.shares) == gross

    @pytest.mark.parametrize(
        "gross, percentages",
        [
            # Sums just inside the tolerance, at amounts where the 0.01 gap
            # is worth far more than one unit per recipient
            (1_000_000, ("33.33", "33.33", "33.33")),
            (987_654_321, ("33.33", "33.33", "33.33")),
            (1_000_000, ("33.34", "33.34", "33.33")),
            (987_654_321, ("50.01", "50")),
        ],
    )
    def test_sum_within_tolerance_conserves_large_amounts(self, gross, percentages):
        breakdown = calculate_split(gross, "usd", specs(*percentages))

        assert sum(s.net_cents for s in breakdown.shares) == breakdown.net_pool_cents
        for share in breakdown.shares:
            assert int(share.exact_share) <= share.net_cents <= int(share.exact_share) + 1

    def test_equal_percentages_below_hundred_split_evenly(self):
        breakdown = calculate_split(1_000_000, "usd", specs("33.33", "33.33", "33.33"))

        # 950000 / 3 leaves two residual units; ties go to the earlier entries
        assert [s.net_cents for s in breakdown.shares] == [316667, 316667, 316666]

    @pytest.mark.parametrize("gross", [1, 3, 17, 1001, 33333])
    def test_each_share_within_one_unit_of_exact(self, gross):
        breakdown = calculate_split(gross, "usd", specs("33.33", "33.33", "33.34"))

        for share in breakdown.shares:
            assert share.net_cents >= int(share.exact_share)
            assert share.net_cents - share.exact_share < 1
            assert share.net_cents >= 0

    def test_zero_percent_entry_gets_nothing(self):
        breakdown = calculate_split(10000, "usd", specs(0, 100))

        assert [s.net_cents for s in breakdown.shares] == [0, 9500]

    def test_gross_share_equals_net_share(self):
        breakdown = calculate_split(10000, "usd", specs(60, 40))

        for share in breakdown.shares:
            assert share.gross_share_cents == share.net_cents
            assert share.tax_withheld_cents == 0

    def test_fee_share_is_proportional(self):
        breakdown = calculate_split(10000, "usd", specs(60, 40))

        assert [s.fee_share_cents for s in breakdown.shares] == [300, 200]


class TestFeeRounding:
    def test_half_rounds_up(self):
        # 5% of 10 = 0.5
        assert calculate_split(10, "usd", specs(100)).platform_fee_cents == 1

    def test_below_half_rounds_down(self):
        # 5% of 9 = 0.45
        assert calculate_split(9, "usd", specs(100)).platform_fee_cents == 0

    def test_custom_fee_rate(self):
        breakdown = calculate_split(10000, "usd", specs(100), fee_percent=Decimal("2.5"))

        assert breakdown.platform_fee_cents == 250
        assert breakdown.net_pool_cents == 9750

    def test_zero_fee_rate(self):
        breakdown = calculate_split(10000, "usd", specs(50, 50), fee_percent=0)

        assert breakdown.platform_fee_cents == 0
        assert breakdown.net_pool_cents == 10000

    def test_round_half_up_helper(self):
        assert round_half_up(Decimal("1666.65")) == 1667
        assert round_half_up(Decimal("2.5")) == 3
        assert round_half_up(Decimal("2.49")) == 2


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    @pytest.mark.parametrize("gross", [0, -1, 10.5, "100", True, None])
    def test_rejects_non_positive_or_non_integer_gross(self, gross):
        with pytest.raises(AmountInvalidError):
            calculate_split(gross, "usd", specs(100))

    def test_rejects_sum_outside_tolerance(self):
        with pytest.raises(SplitSumInvalidError) as exc_info:
            calculate_split(10000, "usd", specs(60, 39.9))

        assert exc_info.value.details["total_percentage"] == "99.9"

    def test_accepts_sum_within_tolerance(self):
        breakdown = calculate_split(10000, "usd", specs("33.33", "33.33", "33.33"))

        assert breakdown.total_distributed_cents == 9500

    def test_rejects_percentage_above_hundred(self):
        with pytest.raises(SplitSumInvalidError):
            validate_percentages(specs(150, -50))

    def test_requires_a_percentage_entry(self):
        fixed_only = [SplitSpec(recipient_id="user-1", fixed_amount_cents=500)]

        with pytest.raises(PercentageModelRequiredError):
            calculate_split(10000, "usd", fixed_only)

    def test_fixed_amount_entries_are_ignored(self):
        splits = specs(100) + [SplitSpec(recipient_id="user-9", fixed_amount_cents=500)]

        breakdown = calculate_split(10000, "usd", splits)

        assert len(breakdown.shares) == 1
        assert breakdown.shares[0].net_cents == 9500

    def test_float_percentages_are_read_as_written(self):
        splits = [
            SplitSpec(recipient_id="a", percentage=33.33),
            SplitSpec(recipient_id="b", percentage=33.33),
            SplitSpec(recipient_id="c", percentage=33.34),
        ]

        breakdown = calculate_split(33333, "usd", splits)

        assert [s.percentage for s in breakdown.shares] == [
            Decimal("33.33"),
            Decimal("33.33"),
            Decimal("33.34"),
        ]


class TestSerialization:
    def test_to_dict_carries_breakdown_in_input_order(self):
        data = calculate_split(10000, "eur", specs(60, 40)).to_dict()

        assert data["currency"] == "eur"
        assert data["platform_fee_cents"] == 500
        assert data["total_distributed_cents"] == 9500
        assert [entry["recipient_id"] for entry in data["breakdown"]] == ["user-0", "user-1"]
        assert [entry["net_cents"] for entry in data["breakdown"]] == [5700, 3800]
