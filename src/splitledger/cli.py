"""CLI for SplitLedger."""

import logging
import sys
from decimal import Decimal, InvalidOperation
from enum import Enum

import typer

from .config import Settings, load_settings
from .db import Database
from .exceptions import SettlementSearchError, SplitLedgerError
from .expenses import ExpenseManager
from .ledger import BalanceLedger
from .models import SplitType, User
from .settlement import SettlementEngine
from .ui import (
    console,
    display_balance_summary,
    display_expenses,
    display_pairwise_balances,
    display_transactions,
    format_money,
)

app = typer.Typer(
    name="splitledger",
    help="Track shared expenses and settle debts with the fewest payments",
)
expense_app = typer.Typer(help="Add, edit and delete expenses")
balance_app = typer.Typer(help="Inspect who owes whom")
settle_app = typer.Typer(help="Compute and record settlements")

app.add_typer(expense_app, name="expense")
app.add_typer(balance_app, name="balance")
app.add_typer(settle_app, name="settle")


class Strategy(str, Enum):
    """Greedy settlement generator."""

    TWO_POINTER = "two-pointer"
    PRIORITY = "priority"


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


class _Session:
    """Database plus the components wired on top of it for one command."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db = Database(settings.database_path)
        self.ledger = BalanceLedger(self.db)
        self.expenses = ExpenseManager(self.ledger, self.db)
        self.engine = SettlementEngine(
            self.ledger, max_search_users=settings.settlement_search_max_users
        )

    def user(self, user_id: str) -> User:
        """Resolve a user id, reusing the stored display name when known."""
        return self.db.get_user(user_id) or User(user_id=user_id)

    def close(self):
        self.db.close()


def _run(command, verbose: bool):
    """Run a command body with the shared error handling."""
    setup_logging(verbose)
    session = None
    try:
        session = _Session(load_settings())
        command(session)
    except SplitLedgerError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        if verbose:
            raise
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if session is not None:
            session.close()


def _parse_params(session: _Session, params: list[str]) -> dict[User, Decimal] | None:
    """Parse repeated USER=VALUE options into split details."""
    if not params:
        return None

    details: dict[User, Decimal] = {}
    for item in params:
        user_id, sep, value = item.partition("=")
        if not sep or not user_id:
            raise typer.BadParameter(f"Expected USER=VALUE, got '{item}'")
        try:
            details[session.user(user_id.strip())] = Decimal(value.strip())
        except InvalidOperation as e:
            raise typer.BadParameter(f"Invalid number in '{item}'") from e
    return details


VERBOSE = typer.Option(False, "--verbose", "-v", help="Verbose output")


# ============================================================================
# Expense commands
# ============================================================================


@expense_app.command("add")
def expense_add(
    title: str = typer.Option(..., "--title", "-t", help="Expense title"),
    amount: float = typer.Option(..., "--amount", "-a", help="Total amount paid"),
    payer: str = typer.Option(..., "--payer", help="User id of the payer"),
    participants: list[str] = typer.Option(
        ..., "--participant", "-p", help="User id sharing the cost (repeatable)"
    ),
    split: SplitType = typer.Option(
        SplitType.EQUAL, "--split", "-s", case_sensitive=False, help="Split policy"
    ),
    params: list[str] = typer.Option(
        [], "--param", help="Policy detail as USER=VALUE (repeatable)"
    ),
    description: str | None = typer.Option(None, "--description", "-d"),
    group: str | None = typer.Option(None, "--group", "-g", help="Group name"),
    verbose: bool = VERBOSE,
):
    """Add an expense and update balances."""

    def command(session: _Session):
        expense = session.expenses.add_expense(
            title=title,
            amount=amount,
            payer=session.user(payer),
            participants=[session.user(p) for p in participants],
            split_type=split,
            split_details=_parse_params(session, params),
            description=description,
            group=group,
        )
        console.print(
            f"[bold green]✓ Added expense {expense.expense_id}[/bold green] "
            f"({format_money(expense.amount)})"
        )

    _run(command, verbose)


@expense_app.command("edit")
def expense_edit(
    expense_id: str = typer.Argument(..., help="Expense to change"),
    title: str | None = typer.Option(None, "--title", "-t"),
    amount: float | None = typer.Option(None, "--amount", "-a"),
    payer: str | None = typer.Option(None, "--payer"),
    participants: list[str] | None = typer.Option(None, "--participant", "-p"),
    split: SplitType | None = typer.Option(None, "--split", "-s", case_sensitive=False),
    params: list[str] | None = typer.Option(None, "--param"),
    description: str | None = typer.Option(None, "--description", "-d"),
    verbose: bool = VERBOSE,
):
    """Edit an expense, reversing its old effect on balances first."""

    def command(session: _Session):
        expense = session.expenses.edit_expense(
            expense_id,
            title=title,
            amount=amount,
            payer=session.user(payer) if payer else None,
            participants=[session.user(p) for p in participants] if participants else None,
            split_type=split,
            split_details=_parse_params(session, params or []),
            description=description,
        )
        console.print(f"[bold green]✓ Updated expense {expense.expense_id}[/bold green]")

    _run(command, verbose)


@expense_app.command("delete")
def expense_delete(
    expense_id: str = typer.Argument(..., help="Expense to delete"),
    verbose: bool = VERBOSE,
):
    """Delete an expense and reverse its effect on balances."""

    def command(session: _Session):
        expense = session.expenses.delete_expense(expense_id)
        console.print(f"[bold green]✓ Deleted expense '{expense.title}'[/bold green]")

    _run(command, verbose)


@expense_app.command("list")
def expense_list(verbose: bool = VERBOSE):
    """List recorded expenses."""
    _run(lambda session: display_expenses(session.expenses.list_expenses()), verbose)


# ============================================================================
# Balance commands
# ============================================================================


@balance_app.command("show")
def balance_show(
    user_id: str = typer.Argument(..., help="User to show balances for"),
    other: str | None = typer.Option(None, "--with", help="Only show the balance with this user"),
    verbose: bool = VERBOSE,
):
    """Show a user's balances."""

    def command(session: _Session):
        user = session.user(user_id)
        if other is None:
            display_balance_summary(session.ledger.get_balance_summary(user))
            return

        counterpart = session.user(other)
        balance = session.ledger.get_balance(user, counterpart)
        if balance > 0:
            console.print(f"{counterpart} owes {user} {format_money(balance)}")
        elif balance < 0:
            console.print(f"{user} owes {counterpart} {format_money(-balance)}")
        else:
            console.print(f"{user} and {counterpart} are settled up")

    _run(command, verbose)


@balance_app.command("all")
def balance_all(verbose: bool = VERBOSE):
    """Show every outstanding pairwise balance."""

    def command(session: _Session):
        display_pairwise_balances(session.ledger.get_all_pairwise_balances())
        session.ledger.check_conservation()

    _run(command, verbose)


# ============================================================================
# Settlement commands
# ============================================================================


@settle_app.command("plan")
def settle_plan(
    strategy: Strategy | None = typer.Option(
        None, "--strategy", help="Greedy algorithm (defaults to configured strategy)"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Don't save the proposed transactions"
    ),
    record: bool = typer.Option(
        False, "--record", help="Mark the proposed transactions as paid"
    ),
    verbose: bool = VERBOSE,
):
    """
    Propose payments that settle all debts.

    Both strategies are greedy: they settle everyone in at most one payment
    fewer than the number of people with a balance, but may not find the
    absolute minimum. Use 'settle count' for the exact minimum.
    """

    def command(session: _Session):
        chosen = strategy.value if strategy else session.settings.settlement_strategy
        persist = session.settings.persist_settlements and not dry_run

        if chosen == Strategy.PRIORITY.value:
            transactions = session.engine.simplify_settlements_by_priority(persist=persist)
        else:
            transactions = session.engine.simplify_settlements(persist=persist)

        display_transactions(transactions, title=f"Proposed Settlement ({chosen})")

        if record:
            for tx in transactions:
                session.expenses.record_settlement(tx)
            console.print(
                f"[bold green]✓ Recorded {len(transactions)} payments[/bold green]"
            )

    _run(command, verbose)


@settle_app.command("count")
def settle_count(
    timeout: float | None = typer.Option(
        None, "--timeout", help="Seconds before giving up (defaults to configured timeout)"
    ),
    verbose: bool = VERBOSE,
):
    """Compute the exact minimum number of payments (exhaustive search)."""

    def command(session: _Session):
        limit = timeout if timeout is not None else session.settings.settlement_search_timeout
        try:
            count = session.engine.minimum_settlement_count(timeout=limit)
        except SettlementSearchError as e:
            console.print(f"[yellow]Search aborted: {e}[/yellow]")
            sys.exit(2)
        console.print(f"Minimum number of payments: [bold]{count}[/bold]")

    _run(command, verbose)


@settle_app.command("pay")
def settle_pay(
    from_user: str = typer.Argument(..., help="User who paid"),
    to_user: str = typer.Argument(..., help="User who received the money"),
    amount: float = typer.Argument(..., help="Amount paid"),
    verbose: bool = VERBOSE,
):
    """Record a repayment between two users."""

    def command(session: _Session):
        payer = session.user(from_user)
        payee = session.user(to_user)
        session.expenses.record_payment(payer, payee, amount)
        console.print(
            f"[bold green]✓ Recorded {payer} paying {payee} "
            f"{format_money(Decimal(str(amount)))}[/bold green]"
        )

    _run(command, verbose)


@settle_app.command("history")
def settle_history(verbose: bool = VERBOSE):
    """Show previously proposed settlement transactions."""
    _run(
        lambda session: display_transactions(
            session.db.list_transactions(), title="Settlement History"
        ),
        verbose,
    )


if __name__ == "__main__":
    app()
