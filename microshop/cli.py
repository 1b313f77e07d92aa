"""microshop: serve the API and manage accounts from the terminal."""

import asyncio
import os
import subprocess
import sys

import typer
from rich.console import Console
from rich.prompt import Prompt

from . import __version__, database
from .auth import hash_password
from .migrations import migrate_admin_role
from .permissions import Permission, Role
from .services.user_service import build_user_document
from .utils import normalize_email

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="microshop",
    help="Users and Products services for the microshop demo.",
    no_args_is_help=True,
    add_completion=False,
)


@app.command()
def serve(
    service: str = typer.Option("all", "--service", "-s", help="Routes to mount: all, users or products"),
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Run the API with uvicorn."""
    if service not in ("all", "users", "products"):
        err_console.print(f"[red]Unknown service:[/red] {service} (expected all, users or products)")
        raise typer.Exit(1)

    env = os.environ.copy()
    env["SERVICE_NAME"] = service

    command = [
        sys.executable,
        "-m",
        "uvicorn",
        "microshop.main:app",
        "--host",
        host,
        "--port",
        str(port),
    ]
    if reload:
        command.append("--reload")

    console.print(f"Running [bold]{service}[/bold] service on {host}:{port}")
    console.print("[dim]Ctrl+C to stop[/dim]")

    try:
        subprocess.run(command, env=env)
    except KeyboardInterrupt:
        pass
    except FileNotFoundError:
        err_console.print(
            "[red]uvicorn not found.[/red] Install it: [bold]pip install uvicorn[/bold]"
        )
        raise typer.Exit(1)


async def create_admin_account(users, counters, email: str, password: str,
                               first_name: str = None, last_name: str = None) -> dict:
    """Insert a verified admin. Returns None when the email is taken."""
    email = normalize_email(email)
    if await users.find_one({"email": email}):
        return None

    user_doc = build_user_document(
        await database.next_sequence(counters, "users"),
        email,
        hash_password(password),
        first_name=first_name,
        last_name=last_name,
        role=Role.ADMIN,
        permissions=Permission.ALL,
        email_verified=True
    )
    await users.insert_one(user_doc)
    return user_doc


@app.command("create-admin")
def create_admin(
    email: str = typer.Argument(help="Email address of the new admin"),
    password: str = typer.Option("", "--password", help="Password (prompted when omitted)"),
    first_name: str = typer.Option(None, "--first-name", help="First name"),
    last_name: str = typer.Option(None, "--last-name", help="Last name"),
):
    """Create a verified admin account with every permission."""
    if not password:
        password = Prompt.ask("Password", password=True)
    if len(password) < 6:
        err_console.print("[red]Password must be at least 6 characters.[/red]")
        raise typer.Exit(1)

    user = asyncio.run(create_admin_account(
        database.users_collection,
        database.counters_collection,
        email,
        password,
        first_name,
        last_name
    ))
    if user is None:
        err_console.print(f"[red]Email already registered:[/red] {email}")
        raise typer.Exit(1)

    console.print(f"Created admin [bold]{user['email']}[/bold] (id {user['_id']})")


@app.command("promote-first-user")
def promote_first_user():
    """Make the earliest user an admin if no admin exists."""
    promoted = asyncio.run(migrate_admin_role(database.client))
    if promoted:
        console.print("[green]Promoted the earliest user to admin.[/green]")
    else:
        console.print("[dim]Nothing to do: an admin already exists or there are no users.[/dim]")


@app.command()
def version():
    """Show microshop version."""
    typer.echo(f"microshop {__version__}")


if __name__ == "__main__":
    app()
