"""Service entrypoint and credential management commands."""

from __future__ import annotations

import logging
from uuid import uuid4

import typer
import uvicorn

from curriculum_import.application.drive_source import DriveCredentialKind
from curriculum_import.infrastructure.factory import create_default_import_services
from curriculum_import.infrastructure.logging_config import configure_logging
from curriculum_import.infrastructure.security.keyring_store import (
    KeyringDriveCredentialStore,
    KeyringStoreError,
)
from curriculum_import.presentation.http.app import create_app

LOGGER = logging.getLogger(__name__)

HOST_ENV_VAR = "CURRICULUM_IMPORT_HOST"
PORT_ENV_VAR = "CURRICULUM_IMPORT_PORT"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000

cli = typer.Typer(add_completion=False, help="Curriculum Drive import commands")
credentials_cli = typer.Typer(
    add_completion=False,
    help="Manage Drive credentials in the OS keyring",
)
cli.add_typer(credentials_cli, name="credentials")


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Run the HTTP service when no command is given."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, envvar=HOST_ENV_VAR, help="Interface to bind"),
    port: int = typer.Option(DEFAULT_PORT, envvar=PORT_ENV_VAR, help="Port to listen on"),
) -> None:
    """Run the HTTP service."""
    configure_logging()
    correlation_id = str(uuid4())
    try:
        app = create_app(create_default_import_services())
    except Exception:
        LOGGER.exception("event=app_start_failed correlation_id=%s", correlation_id)
        raise typer.Exit(code=1) from None

    LOGGER.info(
        "event=app_start correlation_id=%s host=%s port=%s",
        correlation_id,
        host,
        port,
    )
    uvicorn.run(app, host=host, port=port, log_config=None)
    LOGGER.info("event=app_exit correlation_id=%s", correlation_id)


@credentials_cli.command("set")
def set_credential(
    kind: DriveCredentialKind = typer.Argument(..., help="Credential to store"),
    secret: str = typer.Option(
        ...,
        prompt=True,
        hide_input=True,
        help="Access token or API key; prompted when omitted",
    ),
) -> None:
    """Store a Drive access token or API key."""
    try:
        KeyringDriveCredentialStore().set_credential(kind, secret)
    except (KeyringStoreError, ValueError) as exc:
        typer.echo(f"Could not store Drive {kind.value}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    LOGGER.info("event=drive_credential_stored kind=%s", kind.value)
    typer.echo(f"Stored Drive {kind.value}.")


@credentials_cli.command("delete")
def delete_credential(
    kind: DriveCredentialKind = typer.Argument(..., help="Credential to remove"),
) -> None:
    """Remove a stored Drive credential."""
    try:
        KeyringDriveCredentialStore().delete_credential(kind)
    except KeyringStoreError as exc:
        typer.echo(f"Could not delete Drive {kind.value}: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    LOGGER.info("event=drive_credential_deleted kind=%s", kind.value)
    typer.echo(f"Deleted Drive {kind.value}.")


if __name__ == "__main__":
    cli()
