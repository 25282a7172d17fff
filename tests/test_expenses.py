"""Tests for the expense manager."""

import random
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from splitledger.db import Database
from splitledger.exceptions import ExpenseNotFoundError, InvalidSplitError
from splitledger.expenses import ExpenseEvent, ExpenseManager
from splitledger.ledger import BalanceLedger
from splitledger.models import SettlementTransaction, SplitType, User
from splitledger.settlement import SettlementEngine
from splitledger.store import InMemoryStore

A = User(user_id="a", name="Alice")
B = User(user_id="b", name="Bob")
C = User(user_id="c", name="Carol")
D = User(user_id="d", name="Dan")


@pytest.fixture
def store():
    """Create an empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def ledger(store):
    """Create a ledger over the store."""
    return BalanceLedger(store)


@pytest.fixture
def manager(ledger, store):
    """Create an expense manager sharing the ledger's store."""
    return ExpenseManager(ledger, store)


def snapshot(ledger: BalanceLedger) -> dict[tuple[str, str], Decimal]:
    return {
        (pair.debtor.user_id, pair.creditor.user_id): pair.amount
        for pair in ledger.get_all_pairwise_balances()
    }


class TestAddExpense:
    """Tests for adding expenses."""

    def test_equal_split(self, manager, ledger):
        """1200 shared by four: everyone but the payer owes 300."""
        expense = manager.add_expense("Rent", Decimal("1200.0"), A, [A, B, C, D])

        assert expense.shares == {A: 300, B: 300, C: 300, D: 300}
        assert ledger.get_total_balance(A) == Decimal("900")
        for user in (B, C, D):
            assert ledger.get_balance(user, A) == Decimal("-300")

    def test_percentage_split(self, manager, ledger):
        """800 split 50/25/25 with A paying."""
        manager.add_expense(
            "Hotel",
            800,
            A,
            [A, B, C],
            split_type=SplitType.PERCENTAGE,
            split_details={A: 50, B: 25, C: 25},
        )

        assert ledger.get_balance(A, B) == Decimal("200")
        assert ledger.get_balance(A, C) == Decimal("200")

    def test_split_details_stored_by_user_id(self, manager):
        """Raw policy parameters are kept for later edits."""
        expense = manager.add_expense(
            "Gas", 60, B, [A, B], split_type="SHARES", split_details={A: 1, B: 2}
        )

        assert expense.split_type is SplitType.SHARES
        assert expense.split_details == {"a": Decimal("1"), "b": Decimal("2")}
        assert manager.get_expense(expense.expense_id) == expense

    def test_invalid_split_leaves_ledger_untouched(self, manager, ledger, store):
        """A rejected split stores nothing."""
        with pytest.raises(InvalidSplitError):
            manager.add_expense(
                "Bad",
                800,
                A,
                [A, B, C],
                split_type=SplitType.PERCENTAGE,
                split_details={A: 50, B: 25, C: 20},
            )

        assert ledger.get_all_pairwise_balances() == []
        assert store.list_expenses() == []

    def test_unknown_split_type_rejected(self, manager, ledger, store):
        """An unrecognised policy tag is a split error, not a crash."""
        with pytest.raises(InvalidSplitError, match="Unknown split type"):
            manager.add_expense("Bad", 10, A, [A, B], split_type="BOGUS")

        assert ledger.get_all_pairwise_balances() == []
        assert store.list_expenses() == []

    def test_no_participants_rejected(self, manager):
        """An expense must be shared by someone."""
        with pytest.raises(InvalidSplitError, match="participant"):
            manager.add_expense("Nothing", 10, A, [])


class TestEditExpense:
    """Tests for editing expenses."""

    def test_change_amount(self, manager, ledger):
        """Old shares are reversed before the new ones are applied."""
        expense = manager.add_expense("Dinner", 90, A, [A, B, C])

        manager.edit_expense(expense.expense_id, amount=60)

        assert ledger.get_balance(A, B) == Decimal("20")
        assert ledger.get_balance(A, C) == Decimal("20")

    def test_change_payer(self, manager, ledger):
        """Moving the payer moves the debts."""
        expense = manager.add_expense("Taxi", 40, A, [A, B])

        manager.edit_expense(expense.expense_id, payer=B)

        assert ledger.get_balance(B, A) == Decimal("20")
        assert len(ledger.get_all_pairwise_balances()) == 1

    def test_change_split_type(self, manager, ledger):
        """Switching to exact amounts recomputes the shares."""
        expense = manager.add_expense("Groceries", 100, A, [A, B])

        updated = manager.edit_expense(
            expense.expense_id,
            split_type=SplitType.EXACT_AMOUNT,
            split_details={A: 30, B: 70},
        )

        assert updated.shares == {A: Decimal("30"), B: Decimal("70")}
        assert ledger.get_balance(A, B) == Decimal("70")

    def test_change_amount_reuses_stored_details(self, manager, ledger):
        """Percentages stay in force when only the amount changes."""
        expense = manager.add_expense(
            "Utilities",
            200,
            A,
            [A, B],
            split_type=SplitType.PERCENTAGE,
            split_details={A: 75, B: 25},
        )

        manager.edit_expense(expense.expense_id, amount=400)

        assert ledger.get_balance(A, B) == Decimal("100")

    def test_title_only_keeps_shares(self, manager, ledger):
        """Cosmetic edits leave balances unchanged."""
        expense = manager.add_expense("Lunch", 30, A, [A, B, C])
        before = snapshot(ledger)

        updated = manager.edit_expense(expense.expense_id, title="Team lunch")

        assert updated.title == "Team lunch"
        assert snapshot(ledger) == before

    def test_invalid_edit_leaves_ledger_untouched(self, manager, ledger):
        """A rejected new split doesn't reverse the old one."""
        expense = manager.add_expense("Dinner", 90, A, [A, B, C])
        before = snapshot(ledger)

        with pytest.raises(InvalidSplitError):
            manager.edit_expense(
                expense.expense_id,
                split_type=SplitType.EXACT_AMOUNT,
                split_details={A: 10, B: 10, C: 10},
            )

        assert snapshot(ledger) == before
        assert manager.get_expense(expense.expense_id).amount == Decimal("90")

    def test_unknown_split_type_on_edit(self, manager, ledger):
        """A bad tag on edit is a split error and the old shares stay."""
        expense = manager.add_expense("Dinner", 90, A, [A, B, C])
        before = snapshot(ledger)

        with pytest.raises(InvalidSplitError, match="Unknown split type"):
            manager.edit_expense(expense.expense_id, split_type="BOGUS")

        assert snapshot(ledger) == before

    def test_stored_weights_for_outsiders_ignored(self, manager, ledger):
        """Weights for users outside the participants don't block an edit."""
        expense = manager.add_expense(
            "Boat",
            10,
            A,
            [A, B],
            split_type=SplitType.SHARES,
            split_details={A: 1, B: 1, D: 2},
        )
        assert expense.shares == {A: Decimal("5"), B: Decimal("5")}

        updated = manager.edit_expense(expense.expense_id, amount=20)

        assert updated.shares == {A: Decimal("10"), B: Decimal("10")}
        assert ledger.get_balance(A, B) == Decimal("10")
        assert ledger.get_balance(A, D) == Decimal("0")

    def test_adjustment_for_outsider_rejected_on_edit(self, manager, ledger):
        """Edits apply the same non-participant rule as adds."""
        expense = manager.add_expense("Cabin", 60, A, [A, B])
        before = snapshot(ledger)

        with pytest.raises(InvalidSplitError, match="non-participant"):
            manager.edit_expense(
                expense.expense_id,
                split_type=SplitType.ADJUSTMENT,
                split_details={D: 5},
            )

        assert snapshot(ledger) == before

    def test_edit_unknown_expense(self, manager):
        """Editing a missing expense raises."""
        with pytest.raises(ExpenseNotFoundError, match="missing"):
            manager.edit_expense("missing", title="x")


class TestDeleteExpense:
    """Tests for deleting expenses."""

    def test_delete_reverses(self, manager, ledger, store):
        """Deleting the only expense empties the ledger."""
        expense = manager.add_expense("Movie", 36, B, [A, B, C])

        deleted = manager.delete_expense(expense.expense_id)

        assert deleted.expense_id == expense.expense_id
        assert ledger.get_all_pairwise_balances() == []
        assert store.get_expense(expense.expense_id) is None

    def test_delete_twice_raises(self, manager):
        """The second delete finds nothing to reverse."""
        expense = manager.add_expense("Movie", 36, B, [A, B, C])
        manager.delete_expense(expense.expense_id)

        with pytest.raises(ExpenseNotFoundError):
            manager.delete_expense(expense.expense_id)


class TestObservers:
    """Tests for expense event notifications."""

    def test_events_for_each_transition(self, manager):
        """Observers see added, updated and deleted events in order."""
        observer = MagicMock()
        manager.add_observer(observer)

        expense = manager.add_expense("Snacks", 12, A, [A, B])
        updated = manager.edit_expense(expense.expense_id, amount=20)
        manager.delete_expense(expense.expense_id)

        events = [call.args[0] for call in observer.call_args_list]
        assert [event.kind for event in events] == ["added", "updated", "deleted"]
        assert events[1] == ExpenseEvent(kind="updated", expense=updated, previous=expense)

    def test_observer_sees_updated_ledger(self, manager, ledger):
        """Notifications run after the ledger has changed."""
        seen = []
        manager.add_observer(lambda event: seen.append(ledger.get_balance(A, B)))

        manager.add_expense("Snacks", 12, A, [A, B])

        assert seen == [Decimal("6")]

    def test_remove_observer(self, manager):
        """Removed observers stop receiving events."""
        observer = MagicMock()
        manager.add_observer(observer)
        manager.remove_observer(observer)

        manager.add_expense("Snacks", 12, A, [A, B])

        observer.assert_not_called()


class TestPayments:
    """Tests for recording repayments."""

    def test_record_payment_settles_debt(self, manager, ledger):
        """Paying back what you owe settles the pair."""
        manager.add_expense("Dinner", 90, A, [A, B, C])

        payment = manager.record_payment(B, A, 30)

        assert payment.is_settle_up is True
        assert payment.split_type is SplitType.EXACT_AMOUNT
        assert ledger.get_balance(A, B) == 0
        assert ledger.get_balance(A, C) == Decimal("30")

    def test_partial_payment(self, manager, ledger):
        """A partial repayment reduces the debt."""
        manager.add_expense("Dinner", 90, A, [A, B, C])

        manager.record_payment(B, A, "12.50")

        assert ledger.get_balance(A, B) == Decimal("17.50")

    def test_record_settlement_plan_zeroes_nets(self, manager, ledger):
        """Recording every proposed transaction leaves nobody owing overall."""
        manager.add_expense("Cabin", 300, A, [A, B, C])
        manager.add_expense("Food", 120, B, [A, B, C, D])
        manager.add_expense("Fuel", 45, D, [C, D])
        engine = SettlementEngine(ledger)

        for tx in engine.simplify_settlements(persist=False):
            manager.record_settlement(tx)

        assert engine.compute_net_balances() == {}
        for user in (A, B, C, D):
            assert abs(ledger.get_total_balance(user)) < Decimal("0.001")

    def test_record_settlement_uses_transaction_fields(self, manager, ledger):
        """from_user pays to_user the transaction amount."""
        ledger.apply_expense(A, {B: Decimal("8")})

        manager.record_settlement(
            SettlementTransaction(from_user=B, to_user=A, amount=Decimal("8"))
        )

        assert ledger.get_balance(A, B) == 0


class TestLifecycleConservation:
    """Random add, edit and delete sequences keep the ledger consistent."""

    @pytest.mark.parametrize("backend", ["memory", "sqlite"])
    def test_random_lifecycle(self, backend, tmp_path):
        """Deleting everything at the end leaves no balances."""
        store = InMemoryStore() if backend == "memory" else Database(tmp_path / "life.db")
        ledger = BalanceLedger(store)
        manager = ExpenseManager(ledger, store)
        rng = random.Random(99)
        users = [A, B, C, D]

        def random_split(participants):
            kind = rng.choice(list(SplitType))
            if kind is SplitType.EQUAL:
                return kind, None
            if kind is SplitType.PERCENTAGE:
                first = rng.randint(0, 100)
                rest = [Decimal(0)] * (len(participants) - 1)
                if rest:
                    rest[0] = Decimal(100 - first)
                else:
                    first = 100
                return kind, dict(zip(participants, [Decimal(first), *rest]))
            if kind is SplitType.SHARES:
                return kind, {user: rng.randint(1, 5) for user in participants}
            if kind is SplitType.ADJUSTMENT:
                return kind, {participants[0]: Decimal(rng.randint(0, 5))}
            return None

        try:
            for _ in range(40):
                expenses = manager.list_expenses()
                roll = rng.random()
                if expenses and roll < 0.2:
                    manager.delete_expense(rng.choice(expenses).expense_id)
                elif expenses and roll < 0.4:
                    manager.edit_expense(
                        rng.choice(expenses).expense_id,
                        amount=Decimal(rng.randint(1000, 5000)) / 100,
                    )
                else:
                    participants = rng.sample(users, rng.randint(1, len(users)))
                    choice = random_split(participants)
                    split_type, details = choice or (SplitType.EQUAL, None)
                    manager.add_expense(
                        "Random",
                        Decimal(rng.randint(1000, 5000)) / 100,
                        rng.choice(users),
                        participants,
                        split_type=split_type,
                        split_details=details,
                    )
                ledger.check_conservation()

            for expense in manager.list_expenses():
                manager.delete_expense(expense.expense_id)

            assert ledger.get_all_pairwise_balances() == []
        finally:
            if isinstance(store, Database):
                store.close()
