# ruff: noqa: I001
"""CLI for the ``statement_pipeline`` package.

A Typer console interface over the upload services and job runtime.
Environment variables (``DATABASE_URL``, ``OPENAI_API_KEY``,
``INNGEST_EVENT_KEY`` ...) are loaded from a local ``.env`` using
``python-dotenv`` before any command runs. Business logic lives in
``statement_pipeline.submission`` and ``statement_pipeline.jobs``.

PDF extraction failures exit with status 2 and print the error kind, so
scripts can tell "needs a password" apart from other errors.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv

from .logging_setup import configure_logging

_PDF_FAILURE_EXIT = 2

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Turn bank statement PDFs into categorized transactions. "
        "Loads DATABASE_URL, OPENAI_API_KEY and INNGEST_EVENT_KEY from a local .env."
    ),
)

UserIdOption = Annotated[str, typer.Option("--user-id", help="Owning user id.")]
DatabaseUrlOption = Annotated[
    str | None, typer.Option("--database-url", help="Override DATABASE_URL (falls back to env var).")
]
PasswordOption = Annotated[
    str | None, typer.Option("--password", help="Password for an encrypted PDF.")
]


def _apply_database_url(database_url: str | None) -> None:
    if database_url:
        import os

        os.environ["DATABASE_URL"] = database_url


def _fail(message: str, code: int = 1) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(code)


def _wait_for(dispatch: Any) -> None:
    """Block on an inline run so the process does not exit mid-job."""

    if dispatch is None or dispatch.future is None:
        return
    try:
        dispatch.future.result()
    except Exception as e:  # noqa: BLE001 - reported, status is in the database
        typer.echo(f"Inline job failed: {e}", err=True)


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


@app.command("init-db")
def init_db_cmd(database_url: DatabaseUrlOption = None) -> None:
    """Create all tables directly from the ORM metadata (dev/test databases).

    Production databases should be migrated with Alembic (``libs/db/alembic``).
    """

    from db import metadata
    from db.client import get_engine

    _apply_database_url(database_url)
    metadata.create_all(get_engine())
    typer.echo("Database schema created.")


@app.command("extract-text")
def extract_text_cmd(
    pdf_path: Annotated[Path, typer.Argument(exists=True, dir_okay=False, readable=True)],
    password: PasswordOption = None,
) -> None:
    """Print the cleaned text of a statement PDF."""

    from .pdf_extract import PdfExtractionFailure, extract_pdf_text

    result = extract_pdf_text(pdf_path.read_bytes(), password)
    if isinstance(result, PdfExtractionFailure):
        raise _fail(f"{result.kind}: {result.message}", _PDF_FAILURE_EXIT)
    typer.echo(result.text)


@app.command("parse-text")
def parse_text_cmd(
    text_path: Annotated[Path, typer.Argument(exists=True, dir_okay=False, readable=True)],
    table: Annotated[bool, typer.Option("--table", help="Render a table instead of JSON.")] = False,
) -> None:
    """Run AI extraction on statement text and print the candidates."""

    from .ai_extract import extract_transactions
    from .errors import PipelineError

    try:
        candidates, tokens = extract_transactions(text_path.read_text(encoding="utf-8"))
    except PipelineError as e:
        raise _fail(str(e)) from e
    if table:
        _print_candidates(candidates, tokens)
        return
    out = [c.model_dump(mode="json") for c in candidates]
    typer.echo(json.dumps(out, ensure_ascii=False, indent=2))
    typer.echo(f"tokens={tokens}", err=True)


def _print_candidates(candidates: list[Any], tokens: int) -> None:
    from rich.console import Console
    from rich.table import Table

    grid = Table(title=f"{len(candidates)} transactions ({tokens} tokens)")
    grid.add_column("Date")
    grid.add_column("Merchant", style="cyan")
    grid.add_column("Description")
    grid.add_column("Amount", justify="right")
    grid.add_column("Currency")
    for c in candidates:
        grid.add_row(
            c.date.isoformat() if c.date else "-",
            c.merchant,
            c.description,
            f"{c.amount:.2f}",
            c.currency,
        )
    Console().print(grid)


@app.command("upload")
def upload_cmd(
    pdf_path: Annotated[Path, typer.Argument(exists=True, dir_okay=False, readable=True)],
    user_id: UserIdOption,
    card_id: Annotated[str, typer.Option("--card-id", help="Card the statement belongs to.")],
    password: PasswordOption = None,
    database_url: DatabaseUrlOption = None,
    wait: Annotated[
        bool, typer.Option(help="Wait for an inline run when the job queue is unavailable.")
    ] = True,
) -> None:
    """Extract a statement PDF, create the statement, and queue processing."""

    from .events import HttpEventSender
    from .pdf_extract import PdfExtractionFailure
    from .submission import submit_statement

    _apply_database_url(database_url)
    result = submit_statement(
        user_id=user_id,
        card_id=card_id,
        file_name=pdf_path.name,
        data=pdf_path.read_bytes(),
        password=password,
        sender=HttpEventSender(),
    )
    if isinstance(result, PdfExtractionFailure):
        raise _fail(f"{result.kind}: {result.message}", _PDF_FAILURE_EXIT)
    typer.echo(f"statement_id={result.statement_id} inline={result.inline}")
    if wait:
        _wait_for(result.dispatch)


@app.command("process-statement")
def process_statement_cmd(
    text_path: Annotated[Path, typer.Argument(exists=True, dir_okay=False, readable=True)],
    statement_id: Annotated[str, typer.Option("--statement-id")],
    user_id: UserIdOption,
    card_id: Annotated[str, typer.Option("--card-id")],
    database_url: DatabaseUrlOption = None,
) -> None:
    """Run the statement job in this process (worker-style, with retries)."""

    from .events import StatementProcessEvent
    from .jobs import run_job
    from .jobs.process_statement import process_statement_function

    _apply_database_url(database_url)
    payload = StatementProcessEvent(
        statement_id=statement_id,
        user_id=user_id,
        card_id=card_id,
        file_name=text_path.name,
        extracted_text=text_path.read_text(encoding="utf-8"),
    )
    try:
        result = run_job(process_statement_function, payload)
    except Exception as e:  # noqa: BLE001 - status already recorded by the job
        raise _fail(f"{e.__class__.__name__}: {e}") from e
    typer.echo(
        f"inserted={result.transactions_inserted} categorized={result.categorized_count}"
    )


@app.command("run-event")
def run_event_cmd(
    name: Annotated[str, typer.Argument(help="Event name, e.g. statement/process.")],
    data_path: Annotated[
        Path, typer.Option("--data", exists=True, dir_okay=False, help="JSON payload file.")
    ],
    database_url: DatabaseUrlOption = None,
) -> None:
    """Handle one wire event as a queue worker would."""

    from .jobs import handle_event

    _apply_database_url(database_url)
    data = json.loads(data_path.read_text(encoding="utf-8"))
    try:
        result = handle_event(name, data)
    except KeyError as e:
        raise _fail(f"unknown event {name!r}") from e
    except Exception as e:  # noqa: BLE001 - status already recorded by the job
        raise _fail(f"{e.__class__.__name__}: {e}") from e
    typer.echo(repr(result))


@app.command("add-keyword")
def add_keyword_cmd(
    user_id: UserIdOption,
    category_id: Annotated[str, typer.Option("--category-id")],
    keyword: Annotated[str, typer.Option("--keyword")],
    database_url: DatabaseUrlOption = None,
) -> None:
    """Create a keyword rule and categorize matching uncategorized transactions."""

    from .errors import PipelineError
    from .events import HttpEventSender
    from .submission import create_keyword

    _apply_database_url(database_url)
    try:
        sub = create_keyword(
            user_id=user_id, category_id=category_id, keyword=keyword, sender=HttpEventSender()
        )
    except (ValueError, PipelineError) as e:
        raise _fail(str(e)) from e
    typer.echo(f"keyword_id={sub.keyword_id} status={sub.status}")
    _wait_for(sub.dispatch)


@app.command("reassign-keyword")
def reassign_keyword_cmd(
    user_id: UserIdOption,
    keyword_id: Annotated[str, typer.Option("--keyword-id")],
    category_id: Annotated[str, typer.Option("--category-id", help="New category id.")],
    database_url: DatabaseUrlOption = None,
) -> None:
    """Move a keyword (and every matching transaction) to another category."""

    from .errors import PipelineError
    from .events import HttpEventSender
    from .submission import reassign_keyword

    _apply_database_url(database_url)
    try:
        sub = reassign_keyword(
            user_id=user_id,
            keyword_id=keyword_id,
            new_category_id=category_id,
            sender=HttpEventSender(),
        )
    except (ValueError, PipelineError) as e:
        raise _fail(str(e)) from e
    typer.echo(f"keyword_id={sub.keyword_id} status={sub.status}")
    _wait_for(sub.dispatch)


@app.command("retry-keyword")
def retry_keyword_cmd(
    user_id: UserIdOption,
    keyword_id: Annotated[str, typer.Option("--keyword-id")],
    database_url: DatabaseUrlOption = None,
) -> None:
    """Re-run categorization for a failed keyword."""

    from .errors import PipelineError
    from .events import HttpEventSender
    from .submission import retry_keyword

    _apply_database_url(database_url)
    try:
        sub = retry_keyword(user_id=user_id, keyword_id=keyword_id, sender=HttpEventSender())
    except (ValueError, PipelineError) as e:
        raise _fail(str(e)) from e
    typer.echo(f"keyword_id={sub.keyword_id} status={sub.status}")
    _wait_for(sub.dispatch)


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m statement_pipeline.cli`
    app()
