"""Settlement engine: turns the ledger's debt graph into payments.

Two greedy generators produce a valid settlement in O(n log n):

- simplify_settlements walks sorted debtor and creditor lists with two pointers
- simplify_settlements_by_priority always matches the largest debtor with the
  largest creditor using two heaps

Neither is guaranteed to use the fewest transactions. The exact minimum is
NP-hard in general; minimum_settlement_count finds it by exhaustive search,
which is only practical for small groups and is therefore bounded by a
user limit, a timeout and a cancellation event.
"""

import heapq
import logging
import sys
import threading
import time
from concurrent.futures import Executor, Future
from decimal import Decimal

from .exceptions import (
    LedgerInconsistencyError,
    SettlementSearchCancelledError,
    SettlementSearchTimeoutError,
    SettlementSearchTooLargeError,
)
from .ledger import BalanceLedger
from .models import SettlementTransaction, User
from .money import BALANCE_EPSILON, ZERO, is_zero
from .store import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_SEARCH_USERS = 15


class SettlementEngine:
    """Computes net balances and settlement transactions from a ledger snapshot."""

    def __init__(
        self,
        ledger: BalanceLedger,
        store: LedgerStore | None = None,
        max_search_users: int = DEFAULT_MAX_SEARCH_USERS,
    ):
        """
        Initialize the engine.

        Args:
            ledger: Ledger to read pairwise balances from
            store: Where emitted transactions are persisted (defaults to the ledger's store)
            max_search_users: Largest nonzero-balance group minimum_settlement_count accepts
        """
        self.ledger = ledger
        self.store = store if store is not None else ledger.store
        self.max_search_users = max_search_users

    def compute_net_balances(self) -> dict[User, Decimal]:
        """
        Compute each user's net position across all pairwise records.

        Returns:
            Mapping of user to signed balance (positive = owed money), with
            entries inside the zero band dropped
        """
        return self._net_balances()[0]

    def _net_balances(self) -> tuple[dict[User, Decimal], Decimal]:
        """Nets outside the zero band, plus the total magnitude of the dropped dust."""
        net: dict[User, Decimal] = {}
        for pair in self.ledger.get_all_pairwise_balances():
            net[pair.debtor] = net.get(pair.debtor, ZERO) - pair.amount
            net[pair.creditor] = net.get(pair.creditor, ZERO) + pair.amount

        kept: dict[User, Decimal] = {}
        dust = ZERO
        for user, amount in net.items():
            if is_zero(amount):
                dust += abs(amount)
            else:
                kept[user] = amount
        return kept, dust

    def _settleable_nets(self) -> tuple[dict[User, Decimal], Decimal]:
        """
        Nets to settle, plus the largest leftover they can legitimately leave.

        Dropped dust nets mean the kept nets need not sum to exactly zero, and
        each user advanced past inside the zero band may leave up to one more
        epsilon behind. A leftover within that allowance is accumulated dust,
        not a debt.

        Raises:
            LedgerInconsistencyError: If the kept nets are off by more than the dust
        """
        net, dust = self._net_balances()
        allowance = dust + BALANCE_EPSILON * len(net)

        imbalance = sum(net.values(), ZERO)
        if abs(imbalance) > allowance:
            logger.error(
                f"Net balances sum to {imbalance}, more than the {allowance} "
                f"of accumulated dust"
            )
            raise LedgerInconsistencyError(imbalance)
        return net, allowance

    @staticmethod
    def _log_leftover(leftover: Decimal, strategy: str):
        if leftover:
            logger.debug(f"{strategy} settlement left {leftover} of accumulated dust")

    # ========================================================================
    # Greedy settlement generators
    # ========================================================================

    def simplify_settlements(self, persist: bool = True) -> list[SettlementTransaction]:
        """
        Produce settlement transactions with the two-pointer greedy algorithm.

        Debtors (most indebted first) are matched against creditors (largest
        first); each step transfers the smaller of the two outstanding amounts
        and advances whichever side reaches zero. The result settles everyone
        in at most (nonzero users - 1) transactions but is not guaranteed to be
        the minimum.

        Args:
            persist: Save each emitted transaction through the store

        Returns:
            Emitted transactions in order

        Raises:
            LedgerInconsistencyError: If the nets are off by more than accumulated dust
        """
        net, _ = self._settleable_nets()

        debtors = sorted(
            (user for user, amount in net.items() if amount < ZERO),
            key=lambda user: (net[user], user.user_id),
        )
        creditors = sorted(
            (user for user, amount in net.items() if amount > ZERO),
            key=lambda user: (-net[user], user.user_id),
        )

        transactions: list[SettlementTransaction] = []
        debtor_index = 0
        creditor_index = 0
        while debtor_index < len(debtors) and creditor_index < len(creditors):
            debtor = debtors[debtor_index]
            creditor = creditors[creditor_index]

            transfer = min(-net[debtor], net[creditor])
            transactions.append(
                self._emit(debtor, creditor, transfer, persist)
            )

            net[debtor] += transfer
            net[creditor] -= transfer

            if is_zero(net[debtor]):
                debtor_index += 1
            if is_zero(net[creditor]):
                creditor_index += 1

        leftover = sum(
            (abs(amount) for amount in net.values() if not is_zero(amount)), ZERO
        )
        self._log_leftover(leftover, "Two-pointer")

        logger.info(
            f"Two-pointer settlement: {len(transactions)} transactions "
            f"for {len(debtors) + len(creditors)} users"
        )
        return transactions

    def simplify_settlements_by_priority(
        self, persist: bool = True
    ) -> list[SettlementTransaction]:
        """
        Produce settlement transactions by always pairing the largest debtor
        with the largest creditor.

        Uses two max-heaps; the unsettled remainder of a matched user is pushed
        back. Same complexity class and the same non-optimality caveat as
        simplify_settlements.

        Args:
            persist: Save each emitted transaction through the store

        Returns:
            Emitted transactions in order

        Raises:
            LedgerInconsistencyError: If the nets are off by more than accumulated dust
        """
        net, _ = self._settleable_nets()

        # heapq is a min-heap, so store negated magnitudes; user_id breaks ties
        creditors: list[tuple[Decimal, str, User]] = []
        debtors: list[tuple[Decimal, str, User]] = []
        for user, amount in net.items():
            if amount > ZERO:
                heapq.heappush(creditors, (-amount, user.user_id, user))
            elif amount < ZERO:
                heapq.heappush(debtors, (amount, user.user_id, user))

        transactions: list[SettlementTransaction] = []
        while creditors and debtors:
            credit_neg, _, creditor = heapq.heappop(creditors)
            debt_neg, _, debtor = heapq.heappop(debtors)

            credit = -credit_neg
            debt = -debt_neg
            transfer = min(credit, debt)
            transactions.append(self._emit(debtor, creditor, transfer, persist))

            remaining_credit = credit - transfer
            remaining_debt = debt - transfer
            if not is_zero(remaining_credit):
                heapq.heappush(creditors, (-remaining_credit, creditor.user_id, creditor))
            if not is_zero(remaining_debt):
                heapq.heappush(debtors, (-remaining_debt, debtor.user_id, debtor))

        leftover = sum((abs(entry[0]) for entry in creditors + debtors), ZERO)
        self._log_leftover(leftover, "Priority")

        logger.info(f"Priority settlement: {len(transactions)} transactions")
        return transactions

    def _emit(
        self, debtor: User, creditor: User, amount: Decimal, persist: bool
    ) -> SettlementTransaction:
        transaction = SettlementTransaction(
            from_user=debtor, to_user=creditor, amount=amount
        )
        if persist:
            transaction = self.store.save_transaction(transaction)
        logger.debug(f"{debtor.user_id} pays {creditor.user_id} {amount}")
        return transaction

    # ========================================================================
    # Exact minimum transaction count
    # ========================================================================

    def minimum_settlement_count(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> int:
        """
        Find the exact minimum number of transactions that settles everyone.

        Backtracking search: the first unsettled balance is merged into every
        later balance of opposite sign in turn, recursing on the rest. Runs in
        exponential time, so it refuses groups larger than max_search_users.

        Balances inside the zero band count as settled. This uses the same
        tolerance as the ledger; an exact == 0 test would treat float dust
        such as 1e-9 as a debt still to be paid. Dust nets dropped from the
        search can add up to more than the zero band; a final leftover within
        their total is treated as settled too.

        Args:
            timeout: Seconds before giving up (None = no limit)
            cancel_event: Set by another thread to abort the search

        Returns:
            Minimum number of transactions (0 when everyone is settled)

        Raises:
            SettlementSearchTooLargeError: Too many users with nonzero balances
            SettlementSearchTimeoutError: The timeout elapsed
            SettlementSearchCancelledError: cancel_event was set
            LedgerInconsistencyError: The nets can't be settled even allowing for dust
        """
        net, allowance = self._settleable_nets()
        balances = [net[user] for user in sorted(net, key=lambda user: user.user_id)]

        if len(balances) > self.max_search_users:
            raise SettlementSearchTooLargeError(len(balances), self.max_search_users)

        deadline = time.monotonic() + timeout if timeout is not None else None
        search = _MinimumCountSearch(balances, deadline, cancel_event, allowance)
        count = search.run()

        logger.info(
            f"Minimum settlement count for {len(balances)} users: {count} "
            f"({search.visited} states explored)"
        )
        return count

    def submit_minimum_settlement_count(
        self,
        executor: Executor,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Future:
        """Run minimum_settlement_count on an executor, off the calling thread."""
        return executor.submit(self.minimum_settlement_count, timeout, cancel_event)


class _MinimumCountSearch:
    """State for one exhaustive minimum-transaction search."""

    # Check the clock and cancel flag once every this many visited states
    CHECK_INTERVAL = 1024

    def __init__(
        self,
        balances: list[Decimal],
        deadline: float | None,
        cancel_event: threading.Event | None,
        dust_allowance: Decimal = ZERO,
    ):
        self.balances = balances
        self.deadline = deadline
        self.cancel_event = cancel_event
        self.dust_allowance = dust_allowance
        self.visited = 0

    def run(self) -> int:
        count = self._search(0)
        if count >= sys.maxsize:
            # A nonzero balance with no opposite-sign partner left to absorb it
            raise LedgerInconsistencyError(sum(self.balances, ZERO))
        return count

    def _check_limits(self):
        self.visited += 1
        if self.visited % self.CHECK_INTERVAL:
            return
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.warning(f"Settlement search cancelled after {self.visited} states")
            raise SettlementSearchCancelledError("Minimum settlement search cancelled")
        if self.deadline is not None and time.monotonic() > self.deadline:
            logger.warning(f"Settlement search timed out after {self.visited} states")
            raise SettlementSearchTimeoutError(
                f"Minimum settlement search exceeded its time limit "
                f"after {self.visited} states"
            )

    def _search(self, current: int) -> int:
        self._check_limits()

        balances = self.balances
        n = len(balances)

        # Skip users already settled
        while current < n and is_zero(balances[current]):
            current += 1

        if current == n:
            return 0

        cost = sys.maxsize
        merged = False
        for nxt in range(current + 1, n):
            # Only merge into an opposite-sign balance
            if balances[nxt] * balances[current] < ZERO:
                merged = True
                original = balances[nxt]
                balances[nxt] = original + balances[current]
                cost = min(cost, 1 + self._search(current + 1))
                # Backtrack
                balances[nxt] = original

        if not merged:
            # Everything left has the same sign; it is either dust dropped
            # from the nets or a real imbalance
            leftover = sum((abs(balance) for balance in balances[current:]), ZERO)
            if leftover <= self.dust_allowance:
                return 0

        return cost
