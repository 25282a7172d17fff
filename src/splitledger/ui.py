"""Rich rendering helpers for the SplitLedger CLI."""

from decimal import Decimal

from rich.console import Console
from rich.table import Table

from .models import BalanceSummary, Expense, PairwiseBalance, SettlementTransaction
from .money import quantize_cents

console = Console()

_BALANCE_LABELS = {
    "gets_back": "[green]gets back[/green]",
    "owes": "[red]owes[/red]",
    "settled": "[dim]settled up[/dim]",
}


def format_money(amount: Decimal, use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: ($85.02)
    Positive amounts have spaces:      $85.02
    The spaces ensure decimal points align in tables.
    """
    abs_amount = quantize_cents(abs(amount))
    if amount < 0:
        if use_color:
            formatted = f"($[red]{abs_amount:,.2f}[/red])"
        else:
            formatted = f"(${abs_amount:,.2f})"
    else:
        if use_color:
            formatted = f" [green]${abs_amount:,.2f}[/green] "
        else:
            formatted = f" ${abs_amount:,.2f} "
    return formatted


def display_balance_summary(summary: BalanceSummary):
    """Show one user's balance with each counterpart."""
    console.print(f"\n[bold]Balances for {summary.user.display_name}:[/bold]")

    if not summary.counterparts:
        console.print("  [dim]All settled up[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("With", style="cyan")
    table.add_column("Status")
    table.add_column("Amount", justify="right", width=14)

    for entry in summary.counterparts:
        table.add_row(
            entry.counterpart.display_name,
            _BALANCE_LABELS[entry.balance_type],
            format_money(entry.balance),
        )

    console.print(table)
    console.print(
        f"  Overall: {format_money(summary.total)} "
        f"({_BALANCE_LABELS[summary.balance_type]})"
    )


def display_pairwise_balances(pairs: list[PairwiseBalance]):
    """Show every stored debt."""
    if not pairs:
        console.print("[dim]No outstanding balances.[/dim]")
        return

    table = Table(title="Outstanding Balances", show_header=True, header_style="bold magenta")
    table.add_column("Debtor", style="red")
    table.add_column("Creditor", style="green")
    table.add_column("Amount", justify="right", width=14)

    for pair in sorted(pairs, key=lambda p: (p.debtor.user_id, p.creditor.user_id)):
        table.add_row(
            pair.debtor.display_name,
            pair.creditor.display_name,
            format_money(pair.amount, use_color=False),
        )

    console.print(table)


def display_transactions(transactions: list[SettlementTransaction], title: str):
    """Show settlement transactions."""
    if not transactions:
        console.print("[green]Everyone is settled up.[/green]")
        return

    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("From", style="red")
    table.add_column("To", style="green")
    table.add_column("Amount", justify="right", width=14)
    table.add_column("Created", style="dim")

    for idx, tx in enumerate(transactions, start=1):
        table.add_row(
            str(tx.id if tx.id is not None else idx),
            tx.from_user.display_name,
            tx.to_user.display_name,
            format_money(tx.amount, use_color=False),
            tx.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


def display_expenses(expenses: list[Expense]):
    """Show stored expenses."""
    if not expenses:
        console.print("[dim]No expenses recorded.[/dim]")
        return

    table = Table(title="Expenses", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="cyan", width=30)
    table.add_column("Paid by")
    table.add_column("Split", style="yellow")
    table.add_column("Amount", justify="right", width=14)

    for expense in expenses:
        title = expense.title
        if expense.is_settle_up:
            title = f"💸 {title}"
        table.add_row(
            expense.expense_id,
            title[:30] + "..." if len(title) > 30 else title,
            expense.payer.display_name,
            str(expense.split_type),
            format_money(expense.amount, use_color=False),
        )

    console.print(table)
