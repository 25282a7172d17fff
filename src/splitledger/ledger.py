"""Balance ledger that keeps pairwise net debts consistent as expenses change.

Only one direction is ever stored for a pair of users: a debt running the
other way is netted into the existing record, and a record whose amount
falls into the zero band is deleted rather than kept at zero.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from decimal import Decimal

from .exceptions import LedgerInconsistencyError
from .models import (
    BalanceSummary,
    BalanceType,
    CounterpartBalance,
    PairwiseBalance,
    User,
)
from .money import SPLIT_TOLERANCE, ZERO, is_zero, to_money
from .store import LedgerStore

logger = logging.getLogger(__name__)


def balance_type_for(amount: Decimal) -> BalanceType:
    """Label a signed balance from the owner's perspective."""
    if is_zero(amount):
        return "settled"
    return "gets_back" if amount > ZERO else "owes"


class BalanceLedger:
    """
    Tracks who owes whom, backed by a LedgerStore.

    Mutations of a given pair of users are serialized through a per-pair lock;
    mutations of different pairs run concurrently. Callers must reverse an
    expense exactly once before editing or deleting it: the ledger is not
    idempotent against replayed reversals.
    """

    def __init__(self, store: LedgerStore):
        """Initialize the ledger."""
        self.store = store
        self._pair_locks: dict[frozenset[str], threading.Lock] = {}
        self._pair_locks_guard = threading.Lock()

    def _pair_lock(self, u1: User, u2: User) -> threading.Lock:
        key = frozenset((u1.user_id, u2.user_id))
        with self._pair_locks_guard:
            lock = self._pair_locks.get(key)
            if lock is None:
                lock = self._pair_locks[key] = threading.Lock()
            return lock

    # ========================================================================
    # Mutations
    # ========================================================================

    def apply_expense(self, payer: User, shares: Mapping[User, Decimal]):
        """
        Record that every participant owes the payer their share.

        Args:
            payer: The user who paid
            shares: Each participant's owed amount (the payer's own share is ignored)
        """
        touched = 0
        for participant, share in shares.items():
            if participant == payer:
                continue
            self._adjust(participant, payer, to_money(share))
            touched += 1

        logger.info(f"Applied expense paid by {payer.user_id} ({touched} pairs)")

    def reverse_expense(self, payer: User, shares: Mapping[User, Decimal]):
        """
        Undo a previously applied expense.

        Args:
            payer: The user who paid
            shares: The same shares that were passed to apply_expense
        """
        touched = 0
        for participant, share in shares.items():
            if participant == payer:
                continue
            self._adjust(participant, payer, -to_money(share))
            touched += 1

        logger.info(f"Reversed expense paid by {payer.user_id} ({touched} pairs)")

    def _adjust(self, debtor: User, creditor: User, delta: Decimal):
        """Add delta to what debtor owes creditor, netting against the reverse record."""
        with self._pair_lock(debtor, creditor):
            forward = self.store.find_pair(debtor, creditor)
            backward = self.store.find_pair(creditor, debtor)

            current = (forward.amount if forward else ZERO) - (
                backward.amount if backward else ZERO
            )
            updated = current + delta

            if is_zero(updated):
                for record in (forward, backward):
                    if record is not None:
                        self.store.delete_pair(record)
                logger.debug(
                    f"Pair {debtor.user_id}/{creditor.user_id} settled, record removed"
                )
                return

            if updated > ZERO:
                owes, owed, existing, stale = debtor, creditor, forward, backward
                amount = updated
            else:
                owes, owed, existing, stale = creditor, debtor, backward, forward
                amount = -updated

            if stale is not None:
                self.store.delete_pair(stale)

            if existing is not None:
                record = existing.model_copy(update={"amount": amount})
            else:
                record = PairwiseBalance(debtor=owes, creditor=owed, amount=amount)
            self.store.upsert_pair(record)

            logger.debug(f"{owes.user_id} now owes {owed.user_id} {amount}")

    # ========================================================================
    # Queries
    # ========================================================================

    def get_balance(self, u1: User, u2: User) -> Decimal:
        """
        Get the signed balance between two users from u1's perspective.

        Returns:
            Positive if u2 owes u1, negative if u1 owes u2, 0 if no record
        """
        owed_to_u1 = self.store.find_pair(u2, u1)
        owed_by_u1 = self.store.find_pair(u1, u2)
        return (owed_to_u1.amount if owed_to_u1 else ZERO) - (
            owed_by_u1.amount if owed_by_u1 else ZERO
        )

    def get_total_balance(self, user: User) -> Decimal:
        """Get the user's overall position: positive = owed money, negative = owes."""
        total = ZERO
        for pair in self.store.find_all_pairs_for_user(user):
            if pair.debtor == user:
                total -= pair.amount  # Money owed by the user
            elif pair.creditor == user:
                total += pair.amount  # Money owed to the user
        return total

    def get_all_pairwise_balances(self) -> list[PairwiseBalance]:
        """Get a snapshot of every stored pairwise record."""
        return self.store.find_all_pairs()

    def get_balance_summary(self, user: User) -> BalanceSummary:
        """
        Get the user's balance with each counterpart plus the overall total.

        Counterparts are ordered by user_id; balances inside the zero band are
        left out.
        """
        counterparts: list[CounterpartBalance] = []
        for pair in self.store.find_all_pairs_for_user(user):
            if pair.debtor == user:
                other, balance = pair.creditor, -pair.amount
            else:
                other, balance = pair.debtor, pair.amount

            if is_zero(balance):
                continue
            counterparts.append(
                CounterpartBalance(
                    counterpart=other,
                    balance=balance,
                    balance_type=balance_type_for(balance),
                )
            )

        counterparts.sort(key=lambda entry: entry.counterpart.user_id)
        total = sum((entry.balance for entry in counterparts), ZERO)
        return BalanceSummary(
            user=user,
            counterparts=counterparts,
            total=total,
            balance_type=balance_type_for(total),
        )

    def check_conservation(self, users: Iterable[User] | None = None) -> Decimal:
        """
        Verify that every debt has an equal and opposite credit.

        Args:
            users: Users to include (defaults to everyone in the ledger)

        Returns:
            The (near-zero) sum of all total balances

        Raises:
            LedgerInconsistencyError: If the sum exceeds the tolerance
        """
        if users is None:
            members: set[User] = set()
            for pair in self.store.find_all_pairs():
                members.update((pair.debtor, pair.creditor))
            users = members

        imbalance = sum((self.get_total_balance(user) for user in users), ZERO)
        if abs(imbalance) > SPLIT_TOLERANCE:
            logger.error(f"Conservation check failed: imbalance {imbalance}")
            raise LedgerInconsistencyError(imbalance)
        return imbalance
