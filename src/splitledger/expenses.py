"""Expense lifecycle management on top of the balance ledger.

The manager computes shares through a split policy and drives the ledger
exactly once per lifecycle transition: apply on add, reverse then apply on
edit, reverse on delete. Registered observers are called synchronously after
the ledger has been updated.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from .exceptions import ExpenseNotFoundError, InvalidSplitError
from .ledger import BalanceLedger
from .models import Expense, SettlementTransaction, SplitType, User
from .money import to_money
from .splits import calculate_split, parse_split_type, split_params_for
from .store import ExpenseStore

logger = logging.getLogger(__name__)

SplitDetails = Mapping[User, Decimal | int | float | str]


@dataclass(frozen=True)
class ExpenseEvent:
    """Notification sent to observers after an expense transition."""

    kind: Literal["added", "updated", "deleted"]
    expense: Expense
    previous: Expense | None = None


ExpenseObserver = Callable[[ExpenseEvent], None]


class ExpenseManager:
    """Adds, edits and deletes expenses while keeping the ledger in step."""

    def __init__(self, ledger: BalanceLedger, store: ExpenseStore):
        """Initialize the manager."""
        self.ledger = ledger
        self.store = store
        self._observers: list[ExpenseObserver] = []

    def add_observer(self, observer: ExpenseObserver):
        """Register a callback for expense events."""
        self._observers.append(observer)

    def remove_observer(self, observer: ExpenseObserver):
        """Unregister a previously added callback."""
        self._observers.remove(observer)

    def _notify(self, event: ExpenseEvent):
        for observer in list(self._observers):
            observer(event)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def add_expense(
        self,
        title: str,
        amount: Decimal | int | float | str,
        payer: User,
        participants: Sequence[User],
        split_type: SplitType | str = SplitType.EQUAL,
        split_details: SplitDetails | None = None,
        description: str | None = None,
        group: str | None = None,
        is_settle_up: bool = False,
    ) -> Expense:
        """
        Create an expense, split it and apply it to the ledger.

        Args:
            title: Short label
            amount: Total amount paid
            payer: Who paid
            participants: Who shares the cost (may include the payer)
            split_type: Split policy tag
            split_details: Per-user parameters for the policy
            description: Optional longer text
            group: Optional group reference
            is_settle_up: True when this records a repayment

        Returns:
            The stored expense

        Raises:
            InvalidSplitError: If the split policy rejects the input
        """
        total = to_money(amount)
        expense_split_type = parse_split_type(split_type)
        shares = self._compute_shares(total, participants, expense_split_type, split_details)

        expense = Expense(
            title=title,
            description=description,
            amount=total,
            payer=payer,
            participants=list(participants),
            shares=shares,
            split_type=expense_split_type,
            split_details={
                user.user_id: to_money(value)
                for user, value in (split_details or {}).items()
            },
            group=group,
            is_settle_up=is_settle_up,
        )

        self.store.save_expense(expense)
        self.ledger.apply_expense(expense.payer, expense.shares)

        logger.info(
            f"Added expense {expense.expense_id} '{title}': {total} paid by "
            f"{payer.user_id}, {expense_split_type} split over {len(shares)} participants"
        )
        self._notify(ExpenseEvent(kind="added", expense=expense))
        return expense

    def edit_expense(
        self,
        expense_id: str,
        title: str | None = None,
        amount: Decimal | int | float | str | None = None,
        payer: User | None = None,
        participants: Sequence[User] | None = None,
        split_type: SplitType | str | None = None,
        split_details: SplitDetails | None = None,
        description: str | None = None,
        is_settle_up: bool | None = None,
    ) -> Expense:
        """
        Change an expense: reverse its old shares, then apply the new ones.

        Fields left as None keep their current values. Shares are recomputed
        when the amount, participants, split type or details change. The new
        split is validated before the ledger is touched.

        Raises:
            ExpenseNotFoundError: If the expense doesn't exist
            InvalidSplitError: If the new split is invalid (ledger unchanged)
        """
        existing = self.get_expense(expense_id)

        new_payer = payer if payer is not None else existing.payer
        new_participants = (
            list(participants) if participants is not None else existing.participants
        )
        new_amount = to_money(amount) if amount is not None else existing.amount
        new_split_type = (
            parse_split_type(split_type) if split_type is not None else existing.split_type
        )

        if split_details is not None:
            details = {user.user_id: to_money(value) for user, value in split_details.items()}
        elif new_split_type == existing.split_type:
            details = dict(existing.split_details)
        else:
            details = {}

        recompute = (
            amount is not None
            or participants is not None
            or split_type is not None
            or split_details is not None
        )
        if recompute:
            known_users = [new_payer, *new_participants, *existing.participants]
            shares = self._compute_shares(
                new_amount,
                new_participants,
                new_split_type,
                self._resolve_details(details, known_users) if details else None,
            )
        else:
            shares = dict(existing.shares)

        updated = existing.model_copy(
            update={
                "title": title if title is not None else existing.title,
                "description": (
                    description if description is not None else existing.description
                ),
                "amount": new_amount,
                "payer": new_payer,
                "participants": new_participants,
                "shares": shares,
                "split_type": new_split_type,
                "split_details": details,
                "is_settle_up": (
                    is_settle_up if is_settle_up is not None else existing.is_settle_up
                ),
            }
        )

        self.ledger.reverse_expense(existing.payer, existing.shares)
        self.store.save_expense(updated)
        self.ledger.apply_expense(updated.payer, updated.shares)

        logger.info(f"Updated expense {expense_id}")
        self._notify(ExpenseEvent(kind="updated", expense=updated, previous=existing))
        return updated

    def delete_expense(self, expense_id: str) -> Expense:
        """
        Delete an expense and reverse its effect on the ledger.

        Returns:
            The deleted expense

        Raises:
            ExpenseNotFoundError: If the expense doesn't exist
        """
        expense = self.get_expense(expense_id)

        self.ledger.reverse_expense(expense.payer, expense.shares)
        self.store.delete_expense(expense_id)

        logger.info(f"Deleted expense {expense_id}")
        self._notify(ExpenseEvent(kind="deleted", expense=expense))
        return expense

    def record_payment(
        self,
        from_user: User,
        to_user: User,
        amount: Decimal | int | float | str,
        title: str = "Settle up",
        group: str | None = None,
    ) -> Expense:
        """
        Record a repayment: from_user paid to_user.

        Stored as a settle-up expense paid by from_user whose only share
        belongs to to_user, which nets against what from_user owed.
        """
        total = to_money(amount)
        return self.add_expense(
            title=title,
            amount=total,
            payer=from_user,
            participants=[to_user],
            split_type=SplitType.EXACT_AMOUNT,
            split_details={to_user: total},
            group=group,
            is_settle_up=True,
        )

    def record_settlement(self, transaction: SettlementTransaction) -> Expense:
        """Record that a proposed settlement transaction was actually paid."""
        return self.record_payment(
            transaction.from_user, transaction.to_user, transaction.amount
        )

    # ========================================================================
    # Queries
    # ========================================================================

    def get_expense(self, expense_id: str) -> Expense:
        """Get an expense by id, raising if it doesn't exist."""
        expense = self.store.get_expense(expense_id)
        if expense is None:
            raise ExpenseNotFoundError(expense_id)
        return expense

    def list_expenses(self) -> list[Expense]:
        """Get all expenses, oldest first."""
        return self.store.list_expenses()

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _compute_shares(
        total: Decimal,
        participants: Sequence[User],
        split_type: SplitType,
        split_details: SplitDetails | None,
    ) -> dict[User, Decimal]:
        if not participants:
            raise InvalidSplitError(
                "An expense needs at least one participant", split_type=str(split_type)
            )
        params = split_params_for(split_type, split_details)
        return calculate_split(total, participants, params)

    @staticmethod
    def _resolve_details(
        details: Mapping[str, Decimal], users: Sequence[User]
    ) -> dict[User, Decimal]:
        # Users compare by id, so ids outside the known list still resolve and
        # the split policy decides whether they matter
        by_id = {user.user_id: user for user in users}
        return {
            by_id.get(user_id, User(user_id=user_id)): value
            for user_id, value in details.items()
        }
