"""Split policies that divide one expense total into per-participant shares.

Each policy is a pydantic model tagged with its SplitType and validates its
own parameters, since every policy needs a differently shaped input. The
closed set of policies is exposed as the discriminated union SplitParams.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import InvalidSplitError
from .models import SplitType, User
from .money import SPLIT_TOLERANCE, ZERO, approx_equal, to_money

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class SplitPolicy(BaseModel, ABC):
    """Base class for split policies."""

    model_config = ConfigDict(frozen=True)

    type: SplitType

    @abstractmethod
    def _compute(self, total: Decimal, participants: list[User]) -> dict[User, Decimal]:
        """Compute shares for an already validated total and participant list."""

    def calculate_split(
        self, total: Decimal | int | float | str, participants: Sequence[User]
    ) -> dict[User, Decimal]:
        """
        Calculate each participant's share of the total.

        Args:
            total: Total expense amount
            participants: Ordered participants (no duplicates)

        Returns:
            Mapping of participant to owed amount, one entry per participant

        Raises:
            InvalidSplitError: If the policy parameters don't fit the expense
        """
        amount = to_money(total)
        if amount < ZERO:
            self._fail(f"Total amount cannot be negative: {amount}")

        ordered = list(participants)
        if len(ordered) != len(set(ordered)):
            self._fail("Duplicate participants found in split")

        shares = self._compute(amount, ordered)
        logger.debug(f"{self.type} split of {amount} across {len(ordered)} participants")
        return shares

    def _fail(self, message: str):
        raise InvalidSplitError(message, split_type=str(self.type))


class EqualSplit(SplitPolicy):
    """Everyone owes the same amount."""

    type: Literal[SplitType.EQUAL] = SplitType.EQUAL

    def _compute(self, total: Decimal, participants: list[User]) -> dict[User, Decimal]:
        # Zero participants is the caller's problem, not a split error
        if not participants:
            return {}
        per_head = total / len(participants)
        return {user: per_head for user in participants}


class PercentageSplit(SplitPolicy):
    """Each participant owes a percentage of the total; missing users owe 0%."""

    type: Literal[SplitType.PERCENTAGE] = SplitType.PERCENTAGE
    percentages: dict[User, Decimal]

    def _compute(self, total: Decimal, participants: list[User]) -> dict[User, Decimal]:
        total_percentage = sum(
            (self.percentages.get(user, ZERO) for user in participants), ZERO
        )
        if not approx_equal(total_percentage, HUNDRED, SPLIT_TOLERANCE):
            self._fail(
                f"Percentages must sum to 100%. Current sum: {total_percentage}"
            )

        for user in participants:
            if self.percentages.get(user, ZERO) < ZERO:
                self._fail(f"Percentage cannot be negative for user: {user.user_id}")

        return {
            user: total * self.percentages.get(user, ZERO) / HUNDRED
            for user in participants
        }


class ExactAmountSplit(SplitPolicy):
    """Each participant owes an explicitly stated amount."""

    type: Literal[SplitType.EXACT_AMOUNT] = SplitType.EXACT_AMOUNT
    amounts: dict[User, Decimal]

    def _compute(self, total: Decimal, participants: list[User]) -> dict[User, Decimal]:
        result: dict[User, Decimal] = {}
        total_specified = ZERO

        for user in participants:
            amount = self.amounts.get(user)
            if amount is None:
                self._fail(f"Exact amount not specified for user: {user.user_id}")
            if amount < ZERO:
                self._fail(f"Amount cannot be negative for user: {user.user_id}")
            result[user] = amount
            total_specified += amount

        if not approx_equal(total_specified, total, SPLIT_TOLERANCE):
            self._fail(
                f"Sum of exact amounts ({total_specified:.2f}) doesn't match "
                f"total amount ({total:.2f})"
            )

        return result


class SharesSplit(SplitPolicy):
    """Participants owe in proportion to their share weights."""

    type: Literal[SplitType.SHARES] = SplitType.SHARES
    shares: dict[User, Decimal]

    def _compute(self, total: Decimal, participants: list[User]) -> dict[User, Decimal]:
        if not self.shares:
            self._fail("Shares map cannot be empty")

        for user, weight in self.shares.items():
            if weight < ZERO:
                self._fail(f"Share weight cannot be negative for user: {user.user_id}")

        # Weights of users outside the participant list don't count
        total_weight = sum((self.shares.get(user, ZERO) for user in participants), ZERO)
        if total_weight == ZERO:
            self._fail("Total shares cannot be zero")

        factor = total / total_weight
        return {user: self.shares.get(user, ZERO) * factor for user in participants}


class AdjustmentSplit(SplitPolicy):
    """
    Equal split of whatever is left after per-user adjustments.

    Each participant owes (total - sum(adjustments)) / n plus their own
    signed adjustment.
    """

    type: Literal[SplitType.ADJUSTMENT] = SplitType.ADJUSTMENT
    adjustments: dict[User, Decimal] = Field(default_factory=dict)

    def _compute(self, total: Decimal, participants: list[User]) -> dict[User, Decimal]:
        members = set(participants)
        for user in self.adjustments:
            if user not in members:
                self._fail(f"Adjustment given for non-participant: {user.user_id}")

        remaining = total - sum(self.adjustments.values(), ZERO)
        if remaining < ZERO:
            self._fail(
                f"Adjustments exceed total: {total - remaining} adjusted "
                f"against a total of {total}"
            )

        if not participants:
            return {}

        per_head = remaining / len(participants)
        result: dict[User, Decimal] = {}
        for user in participants:
            share = per_head + self.adjustments.get(user, ZERO)
            if share < ZERO:
                self._fail(f"Adjusted share is negative for user: {user.user_id}")
            result[user] = share

        return result


SplitParams = Annotated[
    EqualSplit | PercentageSplit | ExactAmountSplit | SharesSplit | AdjustmentSplit,
    Field(discriminator="type"),
]

# Policy class and the name of its per-user parameter map
_POLICIES: dict[SplitType, tuple[type[SplitPolicy], str | None]] = {
    SplitType.EQUAL: (EqualSplit, None),
    SplitType.PERCENTAGE: (PercentageSplit, "percentages"),
    SplitType.EXACT_AMOUNT: (ExactAmountSplit, "amounts"),
    SplitType.SHARES: (SharesSplit, "shares"),
    SplitType.ADJUSTMENT: (AdjustmentSplit, "adjustments"),
}


def parse_split_type(split_type: SplitType | str) -> SplitType:
    """Convert a policy tag, raising InvalidSplitError for unknown tags."""
    try:
        return SplitType(split_type)
    except ValueError as e:
        raise InvalidSplitError(f"Unknown split type: {split_type}") from e


def split_params_for(
    split_type: SplitType | str,
    details: Mapping[User, Decimal | int | float | str] | None = None,
) -> SplitParams:
    """
    Build the policy model for a split type from its per-user details.

    Args:
        split_type: Policy tag
        details: Per-user percentages, amounts, weights or adjustments

    Returns:
        The policy model ready for calculate_split

    Raises:
        InvalidSplitError: If the tag is unknown or required details are missing
    """
    tag = parse_split_type(split_type)

    policy_cls, field_name = _POLICIES[tag]
    if field_name is None:
        return policy_cls()

    if details is None and tag is not SplitType.ADJUSTMENT:
        raise InvalidSplitError(
            f"{tag} split requires '{field_name}' details", split_type=str(tag)
        )

    converted = {user: to_money(value) for user, value in (details or {}).items()}
    return policy_cls(**{field_name: converted})


def calculate_split(
    total: Decimal | int | float | str,
    participants: Sequence[User],
    params: SplitParams | None = None,
) -> dict[User, Decimal]:
    """
    Calculate a split using the given policy (equal when params is None).

    Args:
        total: Total expense amount
        participants: Ordered participants
        params: One of the SplitParams policies

    Returns:
        Mapping of participant to owed amount
    """
    policy = params if params is not None else EqualSplit()
    return policy.calculate_split(total, participants)
