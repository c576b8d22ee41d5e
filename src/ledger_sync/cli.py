"""CLI for ledger-sync using Typer."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import date, datetime

import typer
from rich.console import Console
from rich.table import Table

from .balances import SETTLED_EPSILON
from .clients import create_store
from .config import Settings, load_settings
from .exceptions import ConfigurationError
from .insights import monthly_summary, search_transactions, spending_by_category
from .models import (
    Category,
    Expense,
    ExpenseDraft,
    Group,
    NotificationPreferences,
    SettlementDraft,
    SplitMethod,
    Transaction,
    User,
)
from .notifications import ConsoleNotifier, Notifier
from .service import LedgerService
from .ui import confirm_action, select_member_interactive, select_members_interactive

app = typer.Typer(
    name="ledger-sync",
    help="Track shared expenses in groups and see who owes whom",
)

console = Console()

UserOption = typer.Option(
    None, "--user", "-u", help="Act as this user id (default: CURRENT_USER_ID)"
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose output")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def run_command(main: Callable[[], Awaitable[None]], verbose: bool) -> None:
    """Run an async command body with uniform error reporting."""
    setup_logging(verbose)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)


@asynccontextmanager
async def open_session(
    user_id: str | None, notifier: Notifier | None = None
) -> AsyncIterator[tuple[LedgerService, Settings]]:
    """Start a synced session and close every subscription on exit."""
    settings = load_settings()
    session_user = user_id or settings.current_user_id
    if not session_user:
        raise ConfigurationError("No user given: pass --user or set CURRENT_USER_ID")

    store = create_store(settings)
    service = LedgerService(
        store, notifier=notifier, currency_symbol=settings.currency_symbol
    )
    try:
        service.start_session(session_user)
        await service.wait_until_synced(timeout=settings.sync_timeout_seconds)
        yield service, settings
    finally:
        service.end_session()
        await store.aclose()


# ============================================================================
# Formatting
# ============================================================================


def format_money(amount: float, symbol: str = "₹", use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: (₹85.02)
    Positive amounts have spaces:      ₹85.02
    """
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"({symbol}[red]{abs_amount:,.2f}[/red])"
        return f"({symbol}{abs_amount:,.2f})"
    if use_color:
        return f" [green]{symbol}{abs_amount:,.2f}[/green] "
    return f" {symbol}{abs_amount:,.2f} "


def describe_transaction(transaction: Transaction, names: dict[str, str]) -> str:
    """One-line human description of a transaction."""
    if isinstance(transaction, Expense):
        payer = names.get(transaction.paid_by_id, "Someone")
        return f"{transaction.description} (paid by {payer})"
    payer = names.get(transaction.from_id, "Someone")
    receiver = names.get(transaction.to_id, "someone")
    return f"{payer} paid {receiver}"


def display_transactions(
    transactions: list[Transaction], group: Group, symbol: str, title: str
):
    """Display a transaction list as a table."""
    names = {member.id: member.name for member in group.members}
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=22)
    table.add_column("Date", width=10)
    table.add_column("Description", style="cyan")
    table.add_column("Category", style="yellow")
    table.add_column("Amount", justify="right", width=14)

    for transaction in transactions:
        category = (
            transaction.category.value if isinstance(transaction, Expense) else "Settle up"
        )
        table.add_row(
            transaction.id,
            transaction.date.date().isoformat(),
            describe_transaction(transaction, names),
            category,
            format_money(transaction.amount, symbol, use_color=False),
        )

    console.print(table)


def _resolve_member(group: Group, ref: str) -> str:
    """Resolve a member reference (id, email or name) to a member id."""
    needle = ref.strip().lower()
    for member in group.members:
        if needle in (member.id.lower(), member.email.lower(), member.name.lower()):
            return member.id
    raise typer.BadParameter(f"'{ref}' is not a member of {group.name}")


def _parse_share(group: Group, raw: str) -> tuple[str, float]:
    ref, sep, weight = raw.rpartition("=")
    if not sep:
        raise typer.BadParameter(f"Share must look like MEMBER=WEIGHT, got '{raw}'")
    try:
        return _resolve_member(group, ref), float(weight)
    except ValueError as e:
        raise typer.BadParameter(f"Invalid weight in '{raw}'") from e


# ============================================================================
# Profile commands
# ============================================================================


@app.command()
def signup(
    user_id: str = typer.Argument(..., help="Identity of the new user"),
    name: str = typer.Option(..., "--name", help="Display name"),
    email: str = typer.Option(..., "--email", help="Email address"),
    avatar_url: str | None = typer.Option(None, "--avatar", help="Avatar URL"),
    verbose: bool = VerboseOption,
):
    """Create a user profile if it does not exist yet."""

    async def main():
        settings = load_settings()
        store = create_store(settings)
        try:
            service = LedgerService(store)
            user = await service.ensure_user_profile(user_id, name, email, avatar_url)
        finally:
            await store.aclose()
        console.print(f"[green]✓ Profile ready:[/green] {user.name} <{user.email}>")

    run_command(main, verbose)


@app.command("find-user")
def find_user(
    email: str = typer.Argument(..., help="Email to look up"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Find a friend by email."""

    async def main():
        async with open_session(user) as (service, _settings):
            found = await service.find_user_by_email(email)
        if found is None:
            console.print(
                "[yellow]No user found with that email. "
                "Ask them to sign up first![/yellow]"
            )
            return
        console.print(f"[green]{found.name}[/green] is here (id: {found.id})")

    run_command(main, verbose)


@app.command("set-limit")
def set_limit(
    amount: float = typer.Argument(..., help="Monthly spending limit (0 to clear)"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Set your monthly spending limit."""

    async def main():
        async with open_session(user) as (service, settings):
            current = service.current_user
            if current is None:
                raise ConfigurationError("Your profile was not found, run signup first")
            await service.update_user_limit(current.id, amount)
        console.print(
            f"[green]✓ Monthly limit set to "
            f"{format_money(amount, settings.currency_symbol, use_color=False).strip()}"
            f"[/green]"
        )

    run_command(main, verbose)


@app.command()
def prefs(
    added: bool | None = typer.Option(
        None, "--added/--no-added", help="Notify when added to a transaction"
    ),
    group_expense: bool | None = typer.Option(
        None, "--group-expense/--no-group-expense", help="Notify on group expenses"
    ),
    settlement: bool | None = typer.Option(
        None, "--settlement/--no-settlement", help="Notify when someone pays you"
    ),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Show or change notification preferences."""

    async def main():
        async with open_session(user) as (service, _settings):
            current = service.current_user
            if current is None:
                raise ConfigurationError("Your profile was not found, run signup first")

            preferences = current.preferences
            updates = {
                key: value
                for key, value in (
                    ("on_added_to_transaction", added),
                    ("on_group_expense_added", group_expense),
                    ("on_settlement", settlement),
                )
                if value is not None
            }
            if updates:
                preferences = preferences.model_copy(update=updates)
                await service.update_notification_preferences(current.id, preferences)
                console.print("[green]✓ Preferences updated[/green]")

        display_preferences(preferences)

    run_command(main, verbose)


def display_preferences(preferences: NotificationPreferences):
    """Display notification preferences."""
    table = Table(title="Notifications", show_header=False)
    table.add_column("Event", style="cyan")
    table.add_column("Enabled", justify="center")
    for label, enabled in (
        ("Added to a transaction", preferences.on_added_to_transaction),
        ("Group expense added", preferences.on_group_expense_added),
        ("Someone paid you", preferences.on_settlement),
    ):
        table.add_row(label, "[green]on[/green]" if enabled else "[dim]off[/dim]")
    console.print(table)


# ============================================================================
# Group commands
# ============================================================================


@app.command()
def groups(user: str | None = UserOption, verbose: bool = VerboseOption):
    """List your groups with your balance in each."""

    async def main():
        async with open_session(user) as (service, settings):
            user_id = service.coordinator.current_user_id
            rows = []
            for current in service.groups:
                mine = next(
                    (
                        balance.amount
                        for balance in service.group_balances(current.id)
                        if balance.user.id == user_id
                    ),
                    0.0,
                )
                rows.append(
                    (
                        current.id,
                        current.name,
                        ", ".join(member.name for member in current.members),
                        format_money(mine, settings.currency_symbol),
                    )
                )

        if not rows:
            console.print("[yellow]You are not in any group yet.[/yellow]")
            return

        table = Table(title="Groups", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Members")
        table.add_column("Your balance", justify="right")
        for row in rows:
            table.add_row(*row)
        console.print(table)

    run_command(main, verbose)


@app.command()
def group(
    group_id: str = typer.Argument(..., help="Group ID"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Show balances and recent transactions of a group."""

    async def main():
        async with open_session(user) as (service, settings):
            current = service.get_group(group_id)
            balances = service.group_balances(group_id)

        console.print(f"\n[bold]{current.name}[/bold]\n")
        table = Table(title="Balances", show_header=True, header_style="bold magenta")
        table.add_column("Member", style="cyan")
        table.add_column("Balance", justify="right")
        table.add_column("Status")
        for balance in balances:
            if balance.amount > SETTLED_EPSILON:
                status = "[green]gets back[/green]"
            elif balance.amount < -SETTLED_EPSILON:
                status = "[red]owes[/red]"
            else:
                status = "[dim]settled up[/dim]"
            table.add_row(
                balance.user.name,
                format_money(balance.amount, settings.currency_symbol),
                status,
            )
        console.print(table)

        recent = search_transactions(current, "")[:10]
        if recent:
            display_transactions(
                recent, current, settings.currency_symbol, "Recent transactions"
            )

    run_command(main, verbose)


@app.command()
def history(
    group_id: str = typer.Argument(..., help="Group ID"),
    search: str = typer.Option("", "--search", "-s", help="Filter by text"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Show the full transaction history of a group, newest first."""

    async def main():
        async with open_session(user) as (service, settings):
            current = service.get_group(group_id)

        matches = search_transactions(current, search)
        if not matches:
            console.print("[yellow]No transactions found.[/yellow]")
            return
        display_transactions(matches, current, settings.currency_symbol, current.name)

    run_command(main, verbose)


@app.command("create-group")
def create_group(
    name: str = typer.Argument(..., help="Group name"),
    members: list[str] = typer.Option(
        [], "--member", "-m", help="Email of a member to add (repeatable)"
    ),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Create a group with yourself and the given members."""

    async def main():
        async with open_session(user) as (service, _settings):
            member_ids = []
            for email in members:
                found = await service.find_user_by_email(email)
                if found is None:
                    raise typer.BadParameter(f"No user found with email {email}")
                member_ids.append(found.id)
            group_id = await service.add_group(name, member_ids)
        console.print(f"[green]✓ Created group {name}[/green] (id: {group_id})")

    run_command(main, verbose)


@app.command("delete-group")
def delete_group(
    group_id: str = typer.Argument(..., help="Group ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Delete a group and all of its transactions."""

    async def main():
        async with open_session(user) as (service, _settings):
            current = service.get_group(group_id)
            if not yes and not confirm_action(
                f"Delete {current.name} and its {len(current.transactions)} transactions?"
            ):
                console.print("[yellow]Cancelled.[/yellow]")
                return
            await service.delete_group(group_id)
        console.print(f"[green]✓ Deleted {current.name}[/green]")

    run_command(main, verbose)


# ============================================================================
# Transaction commands
# ============================================================================


def _select_payer(group: Group, paid_by: str | None, user_id: str) -> str:
    if paid_by:
        return _resolve_member(group, paid_by)
    payer = select_member_interactive(group.members, "Paid by", default_id=user_id)
    if payer is None:
        raise typer.Abort()
    return payer


def _select_participants(group: Group, split_with: list[str]) -> list[str]:
    if split_with:
        return [_resolve_member(group, ref) for ref in split_with]
    chosen = select_members_interactive(group.members, "Split between")
    return chosen or [member.id for member in group.members]


@app.command("add-expense")
def add_expense(
    group_id: str = typer.Argument(..., help="Group ID"),
    amount: float = typer.Argument(..., help="Amount paid"),
    description: str = typer.Argument(..., help="What it was for"),
    paid_by: str | None = typer.Option(
        None, "--paid-by", "-p", help="Payer id, email or name (prompted if omitted)"
    ),
    split_with: list[str] = typer.Option(
        [], "--split-with", "-w", help="Participant (repeatable, prompted if omitted)"
    ),
    shares: list[str] = typer.Option(
        [], "--share", help="Split by shares: MEMBER=WEIGHT (repeatable)"
    ),
    category: Category = typer.Option(Category.OTHER, "--category", "-c"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Add an expense to a group."""

    async def main():
        async with open_session(user) as (service, settings):
            current = service.get_group(group_id)
            user_id = service.coordinator.current_user_id or ""
            payer = _select_payer(current, paid_by, user_id)

            if shares:
                weights = dict(_parse_share(current, raw) for raw in shares)
                draft = ExpenseDraft(
                    group_id=group_id,
                    description=description,
                    amount=amount,
                    paid_by_id=payer,
                    split_method=SplitMethod.SHARES,
                    split_between=list(weights),
                    split_shares=weights,
                    category=category,
                )
            else:
                draft = ExpenseDraft(
                    group_id=group_id,
                    description=description,
                    amount=amount,
                    paid_by_id=payer,
                    split_between=_select_participants(current, split_with),
                    category=category,
                )

            transaction_id = await service.add_expense(draft)

        console.print(
            f"[green]✓ Added {description}[/green] "
            f"{format_money(amount, settings.currency_symbol)} (id: {transaction_id})"
        )

    run_command(main, verbose)


@app.command("edit-expense")
def edit_expense(
    group_id: str = typer.Argument(..., help="Group ID"),
    transaction_id: str = typer.Argument(..., help="Expense ID"),
    amount: float | None = typer.Option(None, "--amount", "-a"),
    description: str | None = typer.Option(None, "--description", "-d"),
    category: Category | None = typer.Option(None, "--category", "-c"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Change the amount, description or category of an expense."""

    async def main():
        async with open_session(user) as (service, _settings):
            current = service.get_group(group_id)
            expense = next(
                (
                    tx
                    for tx in current.transactions
                    if tx.id == transaction_id and isinstance(tx, Expense)
                ),
                None,
            )
            if expense is None:
                raise typer.BadParameter(f"No expense {transaction_id} in {current.name}")

            updates = {
                key: value
                for key, value in (
                    ("amount", amount),
                    ("description", description),
                    ("category", category),
                )
                if value is not None
            }
            await service.edit_transaction(expense.model_copy(update=updates))
        console.print(f"[green]✓ Updated expense {transaction_id}[/green]")

    run_command(main, verbose)


@app.command()
def settle(
    group_id: str = typer.Argument(..., help="Group ID"),
    amount: float = typer.Argument(..., help="Amount paid"),
    to: str = typer.Option(..., "--to", help="Receiver id, email or name"),
    from_: str | None = typer.Option(
        None, "--from", help="Payer id, email or name (default: you)"
    ),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Record a payment between two members."""

    async def main():
        async with open_session(user) as (service, settings):
            current = service.get_group(group_id)
            payer = (
                _resolve_member(current, from_)
                if from_
                else service.coordinator.current_user_id or ""
            )
            await service.settle_up(
                SettlementDraft(
                    group_id=group_id,
                    from_id=payer,
                    to_id=_resolve_member(current, to),
                    amount=amount,
                )
            )
        console.print(
            f"[green]✓ Recorded payment of "
            f"{format_money(amount, settings.currency_symbol, use_color=False).strip()}"
            f"[/green]"
        )

    run_command(main, verbose)


@app.command("delete-transaction")
def delete_transaction(
    group_id: str = typer.Argument(..., help="Group ID"),
    transaction_id: str = typer.Argument(..., help="Transaction ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Delete one transaction. This cannot be undone."""

    async def main():
        async with open_session(user) as (service, _settings):
            if not yes and not confirm_action("Delete this transaction?"):
                console.print("[yellow]Cancelled.[/yellow]")
                return
            await service.delete_transaction(group_id, transaction_id)
        console.print(f"[green]✓ Deleted {transaction_id}[/green]")

    run_command(main, verbose)


# ============================================================================
# Balances and insights
# ============================================================================


@app.command()
def balances(user: str | None = UserOption, verbose: bool = VerboseOption):
    """Show who owes whom, netted across all your groups."""

    async def main():
        async with open_session(user) as (service, settings):
            netted = service.global_balances()

        if not netted:
            console.print("[green]You are all settled up![/green]")
            return

        table = Table(title="Simplified debts", show_header=True, header_style="bold magenta")
        table.add_column("Who", style="cyan")
        table.add_column("Amount", justify="right")
        for balance in netted:
            text = (
                f"{balance.user.name} owes you"
                if balance.amount > 0
                else f"You owe {balance.user.name}"
            )
            table.add_row(text, format_money(balance.amount, settings.currency_symbol))
        console.print(table)

    run_command(main, verbose)


@app.command()
def insights(
    month: str | None = typer.Option(
        None, "--month", "-m", help="Month as YYYY-MM (default: current month)"
    ),
    user: str | None = UserOption,
    verbose: bool = VerboseOption,
):
    """Show your spending share per category and against your monthly limit."""

    async def main():
        selected = (
            datetime.strptime(month, "%Y-%m").date() if month else date.today()
        )
        async with open_session(user) as (service, settings):
            current: User | None = service.current_user
            if current is None:
                raise ConfigurationError("Your profile was not found, run signup first")
            by_category = spending_by_category(service.groups, current.id)
            summary = monthly_summary(current, service.groups, selected)

        symbol = settings.currency_symbol
        table = Table(title="Your share by category", show_header=True)
        table.add_column("Category", style="yellow")
        table.add_column("Spent", justify="right")
        total = sum(by_category.values())
        for category, spent in sorted(by_category.items(), key=lambda kv: -kv[1]):
            pct = spent / total * 100 if total else 0.0
            table.add_row(category.value, f"{format_money(spent, symbol)} ({pct:.0f}%)")
        console.print(table)

        console.print(f"\n[bold]{summary.month:%B %Y}[/bold]")
        console.print(f"  Spent: {format_money(summary.spent, symbol)}")
        if summary.limit is None:
            console.print("  Limit: [dim]not set[/dim]")
        elif summary.over_limit:
            console.print(
                f"  [red]Over your limit of {symbol}{summary.limit:,.2f} by "
                f"{symbol}{-(summary.remaining or 0.0):,.2f}[/red]"
            )
        else:
            console.print(
                f"  Remaining: {format_money(summary.remaining or 0.0, symbol)} "
                f"of {symbol}{summary.limit:,.2f}"
            )

    run_command(main, verbose)


@app.command()
def watch(user: str | None = UserOption, verbose: bool = VerboseOption):
    """
    Stay connected and print notifications for new activity.

    Needs the firestore backend to see changes made by other people.
    """

    async def main():
        async with open_session(user, notifier=ConsoleNotifier(console)) as (
            service,
            _settings,
        ):
            console.print(
                f"[bold blue]Watching {len(service.groups)} groups. "
                f"Press Ctrl+C to stop.[/bold blue]"
            )
            while True:
                await asyncio.sleep(3600)

    run_command(main, verbose)


if __name__ == "__main__":
    app()
