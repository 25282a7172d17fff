"""Tests for split policies."""

from decimal import Decimal

import pytest
from pydantic import TypeAdapter

from splitledger.exceptions import InvalidSplitError
from splitledger.models import SplitType, User
from splitledger.splits import (
    AdjustmentSplit,
    EqualSplit,
    ExactAmountSplit,
    PercentageSplit,
    SharesSplit,
    SplitParams,
    calculate_split,
    split_params_for,
)

A = User(user_id="a", name="Alice")
B = User(user_id="b", name="Bob")
C = User(user_id="c", name="Carol")
D = User(user_id="d", name="Dan")


def assert_sums_to(shares: dict[User, Decimal], total: Decimal | str):
    """Shares must add up to the total within a cent."""
    assert abs(sum(shares.values()) - Decimal(total)) <= Decimal("0.01")


class TestEqualSplit:
    """Tests for the equal split policy."""

    def test_four_way_split(self):
        """1200 across four people is 300 each."""
        shares = calculate_split(Decimal("1200.0"), [A, B, C, D], EqualSplit())

        assert shares == {A: 300, B: 300, C: 300, D: 300}

    def test_default_policy_is_equal(self):
        """No params means an equal split."""
        assert calculate_split(60, [A, B]) == {A: 30, B: 30}

    def test_uneven_division_still_sums_to_total(self):
        """100 / 3 doesn't divide evenly but the shares still add up."""
        shares = calculate_split(100, [A, B, C], EqualSplit())

        assert_sums_to(shares, "100")
        assert len(set(shares.values())) == 1

    def test_empty_participants_returns_empty_map(self):
        """Zero participants is not an error at this level."""
        assert calculate_split(50, [], EqualSplit()) == {}

    def test_negative_total_rejected(self):
        """Totals must not be negative."""
        with pytest.raises(InvalidSplitError):
            calculate_split(-10, [A, B], EqualSplit())

    def test_duplicate_participants_rejected(self):
        """The same user can't appear twice."""
        with pytest.raises(InvalidSplitError, match="Duplicate"):
            calculate_split(10, [A, A], EqualSplit())


class TestPercentageSplit:
    """Tests for the percentage split policy."""

    def test_percentages_applied(self):
        """800 split 50/25/25."""
        params = split_params_for(SplitType.PERCENTAGE, {A: 50, B: 25, C: 25})

        shares = calculate_split(Decimal("800.0"), [A, B, C], params)

        assert shares == {A: 400, B: 200, C: 200}

    def test_percentages_must_sum_to_100(self):
        """50/25/20 only adds up to 95."""
        params = split_params_for(SplitType.PERCENTAGE, {A: 50, B: 25, C: 20})

        with pytest.raises(InvalidSplitError, match="100%") as exc_info:
            calculate_split(800, [A, B, C], params)

        assert exc_info.value.split_type == "PERCENTAGE"

    def test_missing_participant_defaults_to_zero(self):
        """A participant without a percentage owes nothing."""
        params = PercentageSplit(percentages={A: Decimal("60"), B: Decimal("40")})

        shares = calculate_split(200, [A, B, C], params)

        assert shares[C] == 0
        assert shares[A] == 120
        assert_sums_to(shares, "200")

    def test_small_rounding_in_percentages_tolerated(self):
        """Thirds written as 33.333 are within the 0.01 tolerance."""
        params = split_params_for(
            SplitType.PERCENTAGE, {A: "33.334", B: "33.333", C: "33.333"}
        )

        shares = calculate_split(300, [A, B, C], params)

        assert_sums_to(shares, "300")


class TestExactAmountSplit:
    """Tests for the exact amount split policy."""

    def test_exact_amounts(self):
        """Each participant owes what was stated."""
        params = split_params_for(SplitType.EXACT_AMOUNT, {A: 10, B: "15.50", C: "4.50"})

        shares = calculate_split(30, [A, B, C], params)

        assert shares == {A: 10, B: Decimal("15.50"), C: Decimal("4.50")}

    def test_missing_amount_fails(self):
        """Every participant needs an explicit amount."""
        params = ExactAmountSplit(amounts={A: Decimal("10")})

        with pytest.raises(InvalidSplitError, match="not specified for user: b"):
            calculate_split(10, [A, B], params)

    def test_negative_amount_fails(self):
        """Amounts can't be negative."""
        params = ExactAmountSplit(amounts={A: Decimal("15"), B: Decimal("-5")})

        with pytest.raises(InvalidSplitError, match="negative"):
            calculate_split(10, [A, B], params)

    def test_sum_mismatch_fails(self):
        """The stated amounts must add up to the total."""
        params = ExactAmountSplit(amounts={A: Decimal("10"), B: Decimal("5")})

        with pytest.raises(InvalidSplitError, match=r"\(15.00\).*\(20.00\)"):
            calculate_split(20, [A, B], params)


class TestSharesSplit:
    """Tests for the weighted shares split policy."""

    def test_weights_applied(self):
        """Weights 2:1:1 split 100 into 50/25/25."""
        params = split_params_for(SplitType.SHARES, {A: 2, B: 1, C: 1})

        shares = calculate_split(100, [A, B, C], params)

        assert shares == {A: 50, B: 25, C: 25}

    def test_absent_participant_owes_nothing(self):
        """A participant with no weight owes 0."""
        params = SharesSplit(shares={A: Decimal("1"), B: Decimal("3")})

        shares = calculate_split(80, [A, B, C], params)

        assert shares == {A: 20, B: 60, C: 0}

    def test_empty_shares_fails(self):
        """The weights map can't be empty."""
        with pytest.raises(InvalidSplitError, match="empty"):
            calculate_split(10, [A, B], SharesSplit(shares={}))

    def test_zero_total_weight_fails(self):
        """All-zero weights can't be divided by."""
        params = SharesSplit(shares={A: Decimal("0"), B: Decimal("0")})

        with pytest.raises(InvalidSplitError, match="zero"):
            calculate_split(10, [A, B], params)


class TestAdjustmentSplit:
    """Tests for the adjustment split policy."""

    def test_adjustment_added_to_equal_part(self):
        """A's extra 10 comes off the top; the remaining 90 is split equally."""
        params = split_params_for(SplitType.ADJUSTMENT, {A: 10})

        shares = calculate_split(100, [A, B, C], params)

        assert shares == {A: 40, B: 30, C: 30}

    def test_negative_adjustment(self):
        """A negative adjustment lowers one share and raises the rest."""
        params = AdjustmentSplit(adjustments={A: Decimal("-6")})

        shares = calculate_split(30, [A, B, C], params)

        assert shares == {A: 6, B: 12, C: 12}

    def test_no_adjustments_is_equal_split(self):
        """Without adjustments it behaves like an equal split."""
        shares = calculate_split(90, [A, B, C], AdjustmentSplit())

        assert shares == {A: 30, B: 30, C: 30}

    def test_adjustments_exceeding_total_fail(self):
        """Adjustments can't add up to more than the total."""
        params = AdjustmentSplit(adjustments={A: Decimal("150")})

        with pytest.raises(InvalidSplitError, match="exceed total"):
            calculate_split(100, [A, B], params)

    def test_negative_resulting_share_fails(self):
        """A share pushed below zero is rejected."""
        params = AdjustmentSplit(adjustments={A: Decimal("-50")})

        with pytest.raises(InvalidSplitError, match="negative"):
            calculate_split(30, [A, B], params)

    def test_adjustment_for_non_participant_fails(self):
        """Adjustments must belong to participants."""
        params = AdjustmentSplit(adjustments={D: Decimal("5")})

        with pytest.raises(InvalidSplitError, match="non-participant"):
            calculate_split(30, [A, B], params)


class TestSplitSumsToTotal:
    """Every policy produces shares that add up to the total."""

    @pytest.mark.parametrize(
        "split_type,details",
        [
            (SplitType.EQUAL, None),
            (SplitType.PERCENTAGE, {A: "12.5", B: "37.5", C: 30, D: 20}),
            (SplitType.EXACT_AMOUNT, {A: "100.01", B: "200", C: "33.33", D: "66.66"}),
            (SplitType.SHARES, {A: 1, B: 2, C: 3, D: 7}),
            (SplitType.ADJUSTMENT, {A: "12.34", C: "-5"}),
        ],
    )
    def test_shares_sum_to_total(self, split_type, details):
        """sum(shares) == total within 0.01."""
        total = Decimal("400.00")

        shares = calculate_split(total, [A, B, C, D], split_params_for(split_type, details))

        assert set(shares) == {A, B, C, D}
        assert_sums_to(shares, total)


class TestSplitParamsFor:
    """Tests for building policies from a tag and raw details."""

    def test_unknown_tag(self):
        """An unknown tag is an invalid split."""
        with pytest.raises(InvalidSplitError, match="Unknown split type"):
            split_params_for("BY_VIBES", {})

    def test_missing_details(self):
        """Policies that need details refuse to build without them."""
        with pytest.raises(InvalidSplitError, match="percentages"):
            split_params_for(SplitType.PERCENTAGE)

    def test_string_tag_accepted(self):
        """Tags can be given as their string value."""
        assert isinstance(split_params_for("EQUAL"), EqualSplit)

    def test_discriminated_union_selects_variant(self):
        """SplitParams validates to the policy named by its type tag."""
        adapter = TypeAdapter(SplitParams)

        params = adapter.validate_python(
            {"type": SplitType.SHARES, "shares": {A: 1, B: 1}}
        )

        assert isinstance(params, SharesSplit)
        assert calculate_split(10, [A, B], params) == {A: 5, B: 5}
