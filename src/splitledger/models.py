"""Pydantic domain models for SplitLedger."""

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ============================================================================
# Users
# ============================================================================


class User(BaseModel):
    """
    Opaque user reference.

    Two references are the same user when their user_id matches; the display
    name is informational only.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.user_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, User):
            return NotImplemented
        return self.user_id == other.user_id

    def __hash__(self) -> int:
        return hash(self.user_id)

    def __str__(self) -> str:
        return self.display_name


# ============================================================================
# Ledger Models
# ============================================================================


class PairwiseBalance(BaseModel):
    """A directed debt: debtor owes creditor amount."""

    id: int | None = None  # assigned by persistent stores
    debtor: User
    creditor: User
    amount: Decimal = Field(gt=0)

    @model_validator(mode="after")
    def _check_distinct_users(self) -> "PairwiseBalance":
        if self.debtor == self.creditor:
            raise ValueError(f"User {self.debtor.user_id} cannot owe themselves")
        return self

    def involves(self, user: User) -> bool:
        """Check whether the user is on either side of this record."""
        return user in (self.debtor, self.creditor)


class SettlementTransaction(BaseModel):
    """A proposed real-world payment from one user to another."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None  # assigned by persistent stores
    from_user: User
    to_user: User
    amount: Decimal
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


BalanceType = Literal["gets_back", "owes", "settled"]


class CounterpartBalance(BaseModel):
    """One user's signed balance with a single counterpart."""

    counterpart: User
    balance: Decimal  # positive = counterpart owes the user
    balance_type: BalanceType


class BalanceSummary(BaseModel):
    """All of a user's pairwise balances plus their overall position."""

    user: User
    counterparts: list[CounterpartBalance] = Field(default_factory=list)
    total: Decimal = Decimal("0")
    balance_type: BalanceType = "settled"


# ============================================================================
# Expense Models
# ============================================================================


class SplitType(StrEnum):
    """Policy tag used to divide an expense among participants."""

    EQUAL = "EQUAL"
    PERCENTAGE = "PERCENTAGE"
    EXACT_AMOUNT = "EXACT_AMOUNT"
    SHARES = "SHARES"
    ADJUSTMENT = "ADJUSTMENT"


class Expense(BaseModel):
    """
    A shared expense and the shares its split policy produced.

    The ledger only reads payer and shares. split_details keeps the raw policy
    parameters keyed by user_id so the expense can be recomputed on edit.
    """

    expense_id: str = Field(default_factory=lambda: uuid4().hex)
    title: str
    description: str | None = None
    amount: Decimal
    payer: User
    participants: list[User]
    shares: dict[User, Decimal]
    split_type: SplitType = SplitType.EQUAL
    split_details: dict[str, Decimal] = Field(default_factory=dict)
    group: str | None = None
    is_settle_up: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
