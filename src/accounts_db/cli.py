"""accounts-db: CLI for accounts store migrations."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import NoReturn

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from accounts_db.engine import build_engine
from accounts_db.errors import LockAcquisitionFailure, MigrationError
from accounts_db.logging import setup_logging
from accounts_db.migrations.catalog import CATALOG
from accounts_db.migrations.lock import MigrationLock
from accounts_db.migrations.reconcile import fix_role_ids, reconcile_workspace_roles
from accounts_db.migrations.runner import MigrationRunner
from accounts_db.migrations.steps.indexes import resolve_alias_duplicates
from accounts_db.settings import Settings, reload_settings
from accounts_db.store import DocumentStore

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="Accounts store CLI (migrate, status, steps, unlock, resolve-aliases, reconcile).",
)

COLLECTIONS_WITH_ALIASES = ("workspace", "user")


@app.callback()
def _main(
    ctx: typer.Context,
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Load ACCOUNTS_* variables from this file (existing env wins).",
    ),
) -> None:
    if env_file is not None:
        if not env_file.exists():
            typer.echo(f"error: env file not found: {env_file}", err=True)
            raise typer.Exit(code=1)
        load_dotenv(env_file, override=False)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _load_settings() -> Settings:
    try:
        return reload_settings()
    except ValidationError as exc:
        typer.echo(f"error: invalid settings: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _open_store(settings: Settings) -> tuple[Engine, DocumentStore]:
    try:
        engine = build_engine(settings)
    except ValueError as exc:
        _fail(exc)
    store = DocumentStore.from_settings(engine, settings)
    try:
        store.ensure_schema()
    except SQLAlchemyError as exc:
        engine.dispose()
        _fail(LockAcquisitionFailure(f"store unreachable: {exc}"))
    return engine, store


def _fail(exc: Exception) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(code=1) from exc


@contextmanager
def _locked(store: DocumentStore, settings: Settings) -> Iterator[DocumentStore]:
    """Hold the migration lock so operator writes never interleave with a run."""

    lock = MigrationLock(
        store.engine,
        owner=settings.migration_owner,
        lease_seconds=settings.migration_lease_seconds,
    )
    lock.acquire()
    try:
        yield store.with_heartbeat(lock.renew)
    finally:
        lock.release()


@app.command(name="migrate", help="Apply every pending step under the migration lock.")
def migrate() -> None:
    settings = _load_settings()
    setup_logging(settings)
    engine, store = _open_store(settings)
    try:
        runner = MigrationRunner(
            store,
            owner=settings.migration_owner,
            lease_seconds=settings.migration_lease_seconds,
        )
        report = runner.run(CATALOG)
    except (MigrationError, SQLAlchemyError) as exc:
        _fail(exc)
    finally:
        engine.dispose()

    if not report.applied:
        typer.echo(f"up to date at {report.current_key}")
        return
    for step in report.applied:
        typer.echo(f"applied {step.key} {step.name}")
    typer.echo(f"migrated {report.previous_key} -> {report.current_key}")


@app.command(name="status", help="Show the progress marker, lock holder and pending steps.")
def status() -> None:
    settings = _load_settings()
    setup_logging(settings)
    engine, store = _open_store(settings)
    try:
        current = MigrationRunner(store, owner=settings.migration_owner).status(CATALOG)
    except (MigrationError, SQLAlchemyError) as exc:
        _fail(exc)
    finally:
        engine.dispose()

    progress = current.progress
    typer.echo(f"current key: {progress.current_key}")
    if progress.locked:
        expires = progress.lease_expires_at.isoformat() if progress.lease_expires_at else "never"
        typer.echo(f"locked by: {progress.lock_owner or '-'} (lease expires: {expires})")
    else:
        typer.echo("locked: no")
    typer.echo(f"pending: {len(current.pending)}")
    for step in current.pending:
        typer.echo(f"  {step.key} {step.name}")


@app.command(name="steps", help="List the step catalog.")
def steps() -> None:
    for step in CATALOG:
        line = f"{step.key} {step.name}"
        if step.description:
            line = f"{line}  {step.description}"
        typer.echo(line)


@app.command(name="unlock", help="Clear the migration lock left behind by a crashed runner.")
def unlock(
    yes: bool = typer.Option(False, "--yes", help="Confirm clearing a lock you do not own."),
) -> None:
    if not yes:
        typer.echo("error: unlock requires --yes", err=True)
        raise typer.Exit(code=1)

    settings = _load_settings()
    setup_logging(settings)
    engine, _store = _open_store(settings)
    try:
        previous = MigrationLock(engine, owner=settings.migration_owner).force_unlock()
    except SQLAlchemyError as exc:
        _fail(exc)
    finally:
        engine.dispose()
    typer.echo(f"unlocked (previous owner: {previous or '-'})")


@app.command(name="resolve-aliases", help="Rename case-insensitive duplicate aliases.")
def resolve_aliases(
    collection: str = typer.Argument(..., help="Collection to fix: workspace or user."),
    with_members_hash: bool = typer.Option(
        False,
        "--with-members-hash",
        help="Only treat workspaces as duplicates when their members_hash also matches.",
    ),
) -> None:
    if collection not in COLLECTIONS_WITH_ALIASES:
        allowed = ", ".join(COLLECTIONS_WITH_ALIASES)
        typer.echo(f"error: collection must be one of: {allowed}", err=True)
        raise typer.Exit(code=1)
    if with_members_hash and collection != "workspace":
        typer.echo("error: --with-members-hash only applies to workspace", err=True)
        raise typer.Exit(code=1)

    settings = _load_settings()
    setup_logging(settings)
    engine, store = _open_store(settings)
    try:
        with _locked(store, settings) as locked_store:
            assignments = resolve_alias_duplicates(
                locked_store.collection(collection),
                with_members_hash=with_members_hash,
            )
    except (MigrationError, SQLAlchemyError) as exc:
        _fail(exc)
    finally:
        engine.dispose()

    for assignment in assignments:
        typer.echo(f"{assignment.record_id} -> {assignment.alias}")
    typer.echo(f"renamed {len(assignments)} record(s)")


@app.command(name="reconcile", help="Rebuild permittable role ids from workspace membership.")
def reconcile() -> None:
    settings = _load_settings()
    setup_logging(settings)
    engine, store = _open_store(settings)
    try:
        with _locked(store, settings) as locked_store:
            fixed = fix_role_ids(locked_store)
            result = reconcile_workspace_roles(locked_store)
    except (MigrationError, SQLAlchemyError) as exc:
        _fail(exc)
    finally:
        engine.dispose()

    typer.echo(f"role_ids fixed: {fixed}")
    typer.echo(
        f"workspace_roles updated: {result.updated}, created: {result.created}, "
        f"unchanged: {result.unchanged}, unresolved roles: {result.skipped_roles}"
    )


if __name__ == "__main__":
    app()
