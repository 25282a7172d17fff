"""Storage interfaces consumed by the ledger, plus an in-memory adapter.

Any persistence technology can back the ledger as long as it provides the
LedgerStore operations. See db.Database for the SQLite adapter.
"""

import threading
from typing import Protocol, runtime_checkable

from .models import Expense, PairwiseBalance, SettlementTransaction, User


@runtime_checkable
class LedgerStore(Protocol):
    """Keyed pairwise balance records and the settlement audit trail."""

    def find_pair(self, debtor: User, creditor: User) -> PairwiseBalance | None:
        """Find the record for exactly this (debtor, creditor) ordering."""
        ...

    def upsert_pair(self, record: PairwiseBalance) -> PairwiseBalance:
        """Insert or replace the record for its (debtor, creditor) ordering."""
        ...

    def delete_pair(self, record: PairwiseBalance) -> None:
        """Delete the record for its (debtor, creditor) ordering."""
        ...

    def find_all_pairs_for_user(self, user: User) -> list[PairwiseBalance]:
        """All records where the user is debtor or creditor."""
        ...

    def find_all_pairs(self) -> list[PairwiseBalance]:
        """Every stored record."""
        ...

    def save_transaction(
        self, transaction: SettlementTransaction
    ) -> SettlementTransaction:
        """Persist an emitted settlement transaction."""
        ...

    def list_transactions(self) -> list[SettlementTransaction]:
        """All persisted settlement transactions, oldest first."""
        ...


@runtime_checkable
class ExpenseStore(Protocol):
    """Persistence for expenses owned by the expense manager."""

    def save_expense(self, expense: Expense) -> None: ...

    def get_expense(self, expense_id: str) -> Expense | None: ...

    def delete_expense(self, expense_id: str) -> bool: ...

    def list_expenses(self) -> list[Expense]: ...


class InMemoryStore:
    """Dict-backed LedgerStore and ExpenseStore for tests and embedding."""

    def __init__(self):
        """Initialize empty tables."""
        self._lock = threading.RLock()
        self._pairs: dict[tuple[str, str], PairwiseBalance] = {}
        self._transactions: list[SettlementTransaction] = []
        self._expenses: dict[str, Expense] = {}

    # ========================================================================
    # Pairwise balances
    # ========================================================================

    def find_pair(self, debtor: User, creditor: User) -> PairwiseBalance | None:
        with self._lock:
            return self._pairs.get((debtor.user_id, creditor.user_id))

    def upsert_pair(self, record: PairwiseBalance) -> PairwiseBalance:
        with self._lock:
            self._pairs[(record.debtor.user_id, record.creditor.user_id)] = record
            return record

    def delete_pair(self, record: PairwiseBalance) -> None:
        with self._lock:
            self._pairs.pop((record.debtor.user_id, record.creditor.user_id), None)

    def find_all_pairs_for_user(self, user: User) -> list[PairwiseBalance]:
        with self._lock:
            return [pair for pair in self._pairs.values() if pair.involves(user)]

    def find_all_pairs(self) -> list[PairwiseBalance]:
        with self._lock:
            return list(self._pairs.values())

    # ========================================================================
    # Settlement transactions
    # ========================================================================

    def save_transaction(
        self, transaction: SettlementTransaction
    ) -> SettlementTransaction:
        with self._lock:
            saved = transaction.model_copy(
                update={"id": len(self._transactions) + 1}
            )
            self._transactions.append(saved)
            return saved

    def list_transactions(self) -> list[SettlementTransaction]:
        with self._lock:
            return list(self._transactions)

    # ========================================================================
    # Expenses
    # ========================================================================

    def save_expense(self, expense: Expense) -> None:
        with self._lock:
            self._expenses[expense.expense_id] = expense

    def get_expense(self, expense_id: str) -> Expense | None:
        with self._lock:
            return self._expenses.get(expense_id)

    def delete_expense(self, expense_id: str) -> bool:
        with self._lock:
            return self._expenses.pop(expense_id, None) is not None

    def list_expenses(self) -> list[Expense]:
        with self._lock:
            return sorted(self._expenses.values(), key=lambda e: e.created_at)
