import asyncio
import typer
import logging
import sys
if sys.platform == "win32":
    # asyncpg needs the selector loop on Windows
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
from typing import Optional

from lead_magnet_client.config import get_settings
from lead_magnet_client import create_data_client
from lead_magnet_client.exceptions import DataClientError
from lead_magnet_client.logging import configure as configure_logging
from lead_magnet_client.utils.cli_utils import get_rich_console

from lead_magnet_client.db.base import Base
from sqlalchemy.ext.asyncio import create_async_engine


app = typer.Typer(help="CLI for lead-magnet-client management.")
logger = logging.getLogger(__name__)
console = get_rich_console()


@app.callback()
def main(log_level: Optional[str] = typer.Option(None, "--log-level", help="Overrides LOG_LEVEL.")):
    configure_logging(log_level)


@app.command()
def init():
    """
    Initializes all necessary services: creates DB tables and prepares blob storage.
    """
    console.rule("[bold cyan]Service Initialization[/bold cyan]")

    with console.status("Creating database tables...", spinner="dots"):
        async def _create_tables():
            settings = get_settings()
            engine = create_async_engine(settings.postgres.get_pg_dsn())
            try:
                async with engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            finally:
                await engine.dispose()

        try:
            asyncio.run(_create_tables())
        except Exception as e:
            console.print(f"[bold red]✖[/bold red] Database initialization FAILED: {e}")
            raise typer.Exit(code=1)
        console.print("[bold green]✔[/bold green] Database tables created successfully.")

    with console.status("Initializing blob storage...", spinner="dots"):
        async def _init_storage():
            client = create_data_client()
            try:
                await client.storage.check_connection()
                return client.storage.location
            finally:
                await client.aclose()

        try:
            location = asyncio.run(_init_storage())
        except DataClientError as e:
            console.print(f"[bold red]✖[/bold red] Storage initialization FAILED: {e}")
            raise typer.Exit(code=1)
        console.print(f"[bold green]✔[/bold green] Storage is ready ({location}).")

    console.print("\n[bold green]All services initialized successfully![/bold green]")


@app.command()
def check():
    """Checks connectivity to the database and the blob storage."""
    console.rule("[bold cyan]Connection Check[/bold cyan]")

    async def _check():
        client = create_data_client()
        try:
            return await client.check_connections(), client.storage.location
        finally:
            await client.aclose()

    statuses, location = asyncio.run(_check())

    pg_status = statuses.get("postgres", "unknown error")
    if pg_status == "ok":
        console.print("[bold green]✔[/bold green] Database connection: OK")
    else:
        console.print(f"[bold red]✖[/bold red] Database connection: FAILED ({pg_status})")

    storage_status = statuses.get("storage", "unknown error")
    if storage_status == "ok":
        console.print(f"[bold green]✔[/bold green] Storage connection: OK ({location})")
    else:
        console.print(f"[bold red]✖[/bold red] Storage connection: FAILED ({storage_status})")

    if pg_status != "ok" or storage_status != "ok":
        raise typer.Exit(code=1)


@app.command("create-user")
def create_user(
    email: str = typer.Argument(..., help="Email of the new creator."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name."),
):
    """Creates a creator account."""
    async def _create():
        client = create_data_client()
        try:
            user = await client.create_user(email, name)
            return user.id, user.email
        finally:
            await client.aclose()

    try:
        user_id, user_email = asyncio.run(_create())
    except DataClientError as e:
        console.print(f"[bold red]✖[/bold red] {e}")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✔[/bold green] Created user {user_id} <{user_email}>")


@app.command("issue-token")
def issue_token(user_id: int = typer.Argument(..., help="Id of the user the token is issued for.")):
    """Prints a bearer token for the user."""
    from lead_magnet_client.server.auth import create_access_token

    async def _exists():
        client = create_data_client()
        try:
            return await client.get_user_by_id(user_id) is not None
        finally:
            await client.aclose()

    if not asyncio.run(_exists()):
        console.print(f"[bold red]✖[/bold red] User {user_id} not found")
        raise typer.Exit(code=1)
    typer.echo(create_access_token(user_id, get_settings().auth))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Runs the HTTP API."""
    import uvicorn
    from lead_magnet_client.server import create_app

    console.print(f"Serving on http://{host}:{port}")
    uvicorn.run(create_app(), host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
