"""Command-line interface for refcredit."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from refcredit.auth.local import auth_service
from refcredit.auth.reset import reset_controller
from refcredit.logging_config import configure_logging, get_logger
from refcredit.referral.service import referral_service
from refcredit.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="refcredit",
    help="ReferralCredit - referral codes, purchase credits and password resets",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("cleanup-tokens")
def cleanup_tokens() -> None:
    """Delete used and expired password-reset tokens."""
    removed = reset_controller.cleanup_expired_tokens()
    console.print(f"[bold green]✓[/bold green] Removed {removed} reset token(s)")


@app.command("user")
def show_user(
    email: Annotated[str, typer.Argument(help="Account email")],
) -> None:
    """Show a user's credit balance and referral statistics."""
    user = auth_service.get_user_by_email(email)
    if not user:
        console.print(f"[bold red]✗[/bold red] No account for {email}")
        raise typer.Exit(1)

    stats = referral_service.get_referral_stats(user.id)

    table = Table(title=f"{user.full_name} <{user.email}>")
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("User ID", str(user.id))
    table.add_row("Credits", str(user.credits))
    table.add_row("Referral Code", stats["code"])
    table.add_row("Referral Link", stats["link"])
    table.add_row("Referrals", str(stats["total_referrals"]))
    table.add_row("Completed", str(stats["completed_referrals"]))
    table.add_row("Pending", str(stats["pending_referrals"]))
    table.add_row("Credits From Referrals", str(stats["credits_earned"]))
    table.add_row("Conversion Rate", f"{stats['conversion_rate']}%")

    console.print(table)


if __name__ == "__main__":
    app()
