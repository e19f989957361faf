# ruff: noqa: I001
"""CLI for the ``bank_import`` package.

A Typer console interface over :mod:`bank_import.api`. Environment variables
(``BANK_IMPORT_*``, ``DATABASE_URL``) are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Human-readable output uses
``rich``; ``--json`` prints the machine-readable report instead.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import ArgumentInfo

from .errors import BankImportError
from .logging_setup import configure_logging

console = Console()
err_console = Console(stderr=True)


# ---- Helpers -----------------------------------------------------------------


def _fail(message: str, *, stage: str | None = None) -> typer.Exit:
    where = f" ({stage})" if stage else ""
    err_console.print(f"[red]Error{where}:[/red] {message}", highlight=False)
    return typer.Exit(1)


def _render_summary(result, *, committed: int | None) -> None:
    s = result.summary
    title = f"{result.detected_format} (confidence {result.confidence:.2f})"
    if not s.format_recognized:
        title += " [yellow]unrecognized[/yellow]"
    table = Table(title=title, show_header=False)
    table.add_column("metric", style="cyan")
    table.add_column("value", justify="right")
    table.add_row("encoding", s.encoding)
    table.add_row("delimiter", repr(s.delimiter))
    table.add_row("rows read", str(s.rows_read))
    table.add_row("rows rejected", str(s.rows_rejected))
    table.add_row("accepted", str(s.accepted))
    table.add_row("exact duplicates", str(s.exact_duplicate_count))
    table.add_row("probable duplicates", str(len(s.probable_duplicates)))
    if committed is not None:
        table.add_row("written to store", str(committed))
    console.print(table)

    for warning in s.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}", highlight=False)
    for e in s.rejected:
        console.print(f"[red]line {e.line_number}[/red] {e.kind}: {e.reason}", highlight=False)
    for d in s.exact_duplicates:
        console.print(
            f"[dim]line {d.transaction.line_number}[/dim] skipped: exact duplicate "
            f"of {d.origin} transaction",
            highlight=False,
        )
    for p in s.probable_duplicates:
        console.print(
            f"[magenta]line {p.transaction.line_number}[/magenta] probable duplicate of "
            f"{p.origin} {p.matched.date.isoformat()} {p.matched.description!r} "
            f"(score {p.score:.2f})",
            highlight=False,
        )


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank CSV exports: detect the bank format, normalize rows and flag "
        "duplicates. Loads BANK_IMPORT_* settings from a local .env before running."
    ),
)

# Module-level argument object to satisfy ruff B008 (no calls in parameter defaults).
CSV_PATH_ARGUMENT: ArgumentInfo = typer.Argument(
    ...,
    help="Path to a bank CSV export",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files itself
)


@app.command("import")
def import_cmd(
    csv_path: Annotated[Path, CSV_PATH_ARGUMENT],
    *,
    database_url: str | None = typer.Option(
        None, help="Override BANK_IMPORT_DATABASE_URL / DATABASE_URL."
    ),
    account: str | None = typer.Option(
        None, help="Source account the fingerprints are scoped to."
    ),
    commit: bool = typer.Option(
        False, help="Write accepted transactions to the database."
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the JSON report."),
) -> None:
    """Import one CSV; with a database, check duplicates against stored rows."""

    # Deferred imports to keep CLI startup fast
    from .api import import_path
    from .config import ImportSettings
    from .models import ImportReport

    try:
        settings = ImportSettings.from_env()
    except ValueError as e:
        raise _fail(f"invalid settings: {e}") from e

    use_store = commit or database_url is not None
    committed: int | None = None
    try:
        if use_store:
            from sqlalchemy.exc import SQLAlchemyError

            from .db.client import create_schema, session_scope
            from .persistence import commit_import, load_fingerprint_snapshot

            try:
                create_schema(database_url=database_url)
                with session_scope(database_url=database_url) as session:
                    snapshot = load_fingerprint_snapshot(session, source_account=account)
                    result = import_path(csv_path, fingerprints=snapshot, settings=settings)
                    if commit:
                        committed = commit_import(
                            session, result, source_account=account, filename=csv_path.name
                        )
            except (RuntimeError, SQLAlchemyError) as e:
                raise _fail(f"database: {e}") from e
        else:
            result = import_path(csv_path, settings=settings)
    except BankImportError as e:
        raise _fail(e.message, stage=e.stage) from e

    if as_json:
        typer.echo(ImportReport.from_result(result).model_dump_json(indent=2))
    else:
        _render_summary(result, committed=committed)


@app.command("formats")
def formats_cmd(
    country: str | None = typer.Option(None, help="Only list banks of this country code."),
) -> None:
    """List the known bank formats."""

    from .catalog import default_catalog

    catalog = default_catalog()
    descriptors = catalog.by_country(country) if country else list(catalog)
    if not descriptors:
        raise _fail(f"no formats for country {country!r}")

    table = Table(title=f"{len(descriptors)} bank formats")
    for col in ("key", "institution", "country", "currency", "date", "delimiter"):
        table.add_column(col)
    for d in descriptors:
        table.add_row(d.key, d.institution, d.country, d.currency, d.date_format, repr(d.delimiter))
    console.print(table)


@app.command("sniff")
def sniff_cmd(csv_path: Annotated[Path, CSV_PATH_ARGUMENT]) -> None:
    """Show the sniffed dialect and the best matching formats without importing."""

    from .api import detect_format

    try:
        data = csv_path.read_bytes()
    except OSError as e:
        raise _fail(f"cannot read {csv_path}: {e.strerror or e}") from e

    sniff, detection = detect_format(data, filename_hint=csv_path.name)
    console.print(
        f"encoding={sniff.encoding} delimiter={sniff.delimiter!r} header={sniff.has_header} "
        f"fields={sniff.field_count} consistent={sniff.consistent} "
        f"preamble={sniff.preamble_lines}",
        highlight=False,
    )
    table = Table(title=f"detected: {detection.descriptor.key}")
    table.add_column("format")
    table.add_column("score", justify="right")
    table.add_column("confidence", justify="right")
    for scored in detection.ranking:
        table.add_row(scored.key, f"{scored.score:g}", f"{scored.confidence:.2f}")
    console.print(table)


@app.command("merchant")
def merchant_cmd(
    name: Annotated[str, typer.Argument(help="Merchant text as printed on a statement.")],
    country: Annotated[str | None, typer.Option(help="Country code to scope the lookup.")] = None,
    limit: Annotated[int, typer.Option(min=1, help="How many suggestions to list.")] = 5,
) -> None:
    """Look a merchant up in the directory and list close alternatives."""

    from .config import ImportSettings
    from .merchants import default_directory, display_name

    try:
        settings = ImportSettings.from_env()
    except ValueError as e:
        raise _fail(f"invalid settings: {e}") from e
    directory = default_directory()
    found = directory.match(name, country, threshold=settings.merchant_match_threshold)
    if found is None:
        console.print(f"no match; displayed as {display_name(name)!r}", highlight=False)
    else:
        console.print(
            f"{found.standard_name} ({found.entry.category}/{found.entry.subcategory}) "
            f"method={found.method} confidence={found.confidence:.2f}",
            highlight=False,
        )

    suggestions = directory.suggestions(name, country, limit=limit)
    if not suggestions:
        return
    table = Table(title="suggestions")
    table.add_column("merchant")
    table.add_column("category")
    table.add_column("similarity", justify="right")
    for s in suggestions:
        table.add_row(s.standard_name, s.category, f"{s.confidence:.2f}")
    console.print(table)


@app.callback()
def _root() -> None:
    """Loads ``.env`` from the current working directory (without overriding
    already-set environment variables) and configures package logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    try:
        configure_logging()
    except ValueError as e:
        raise _fail(f"invalid settings: {e}") from e


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
