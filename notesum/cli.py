"""
CLI interface for notesum.

Usage:
    notesum add "Call the plumber about the sink"
    notesum process
    notesum get <id>
"""

import json
import shutil
import sys
from pathlib import Path
from typing import NoReturn, Optional

import typer
from typing_extensions import Annotated

from .api import NoteSum
from .errors import NoteNotFoundError, NoteSumError
from .logging_config import configure_quiet_mode, enable_debug_mode, is_verbose
from .types import Note, WriteOutcome


# Configure quiet mode by default (suppress verbose library output)
# Set NOTESUM_VERBOSE=1 to enable debug mode via environment
if is_verbose():
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from . import __version__
        print(f"notesum {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="notesum",
    help="Notes with asynchronous, idempotent summarization.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


def _output_width() -> int:
    """Terminal width for summary truncation. Use generous default when not a TTY."""
    if not sys.stdout.isatty():
        return 200
    return shutil.get_terminal_size((120, 24)).columns


def _one_line(text: str, width: int) -> str:
    text = " ".join(text.split())
    if len(text) <= width:
        return text
    return text[:max(width - 3, 0)] + "..."


def _format_note(note: Note) -> str:
    """Full rendering of one note."""
    lines = [
        f"id: {note.id}",
        f"created: {note.created_at}",
        f"updated: {note.updated_at}",
        f"summary: {note.summary if note.has_summary else '(pending)'}",
        "",
        note.content,
    ]
    return "\n".join(lines)


def _format_note_line(note: Note, id_width: int = 0) -> str:
    """One-line rendering: id, then summary (or content while pending)."""
    text = note.summary if note.has_summary else f"(pending) {note.content}"
    prefix = f"{note.id.ljust(id_width)}  "
    return prefix + _one_line(text, max(_output_width() - len(prefix), 20))


def _format_write(outcome: WriteOutcome) -> str:
    if _get_json_output():
        return json.dumps(outcome.to_dict(), indent=2)
    verb = "Created" if outcome.created else "Updated"
    if outcome.publish.published:
        status = "queued for summarization"
    elif outcome.publish.publish_failed:
        status = f"not queued ({outcome.publish.error}); run 'notesum sweep' to recover"
    else:
        status = "content unchanged, summary kept"
    return f"{verb} {outcome.note.id}: {status}"


def _read_content(content: str) -> str:
    """Content argument, or stdin when given as '-'."""
    if content == "-":
        return sys.stdin.read()
    return content


def _fail(message: str) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _get_notesum(store: Optional[Path]) -> NoteSum:
    """Open the store, handling errors gracefully."""
    import atexit

    actual_store = store if store is not None else _get_store_override()
    try:
        ns = NoteSum(actual_store)
    except Exception as e:
        from .errors import log_exception
        log_exception(e, context="notesum CLI: open store", store_path=actual_store)
        _fail(str(e))
    atexit.register(ns.close)
    return ns


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="NOTESUM_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Notes with asynchronous, idempotent summarization."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        help="Path to the store directory (default: ~/.notesum/)"
    )
]


LimitOption = Annotated[
    int,
    typer.Option(
        "--limit", "-n",
        help="Maximum results to return"
    )
]


# -----------------------------------------------------------------------------
# Notes
# -----------------------------------------------------------------------------

@app.command()
def add(
    content: Annotated[str, typer.Argument(
        help="Note text, or '-' to read from stdin"
    )],
    id: Annotated[Optional[str], typer.Option(
        "--id", "-i",
        help="Use this id instead of a generated one"
    )] = None,
    store: StoreOption = None,
):
    """
    Create a note and queue it for summarization.

    \b
    Examples:
        notesum add "Call the plumber about the sink"
        echo "Long note" | notesum add -
    """
    ns = _get_notesum(store)
    try:
        outcome = ns.add(_read_content(content), id=id)
    except NoteSumError as e:
        _fail(str(e))
    typer.echo(_format_write(outcome))


@app.command()
def update(
    id: Annotated[str, typer.Argument(help="Note id")],
    content: Annotated[str, typer.Argument(
        help="New note text, or '-' to read from stdin"
    )],
    store: StoreOption = None,
):
    """
    Replace a note's content.

    Re-queues summarization only if the content actually changed.
    """
    ns = _get_notesum(store)
    try:
        outcome = ns.update(id, _read_content(content))
    except NoteSumError as e:
        _fail(str(e))
    typer.echo(_format_write(outcome))


@app.command()
def get(
    id: Annotated[str, typer.Argument(help="Note id")],
    store: StoreOption = None,
):
    """Show a note with its summary."""
    ns = _get_notesum(store)
    note = ns.get(id)
    if note is None:
        _fail(str(NoteNotFoundError(id)))
    if _get_json_output():
        typer.echo(json.dumps(note.to_dict(), indent=2))
    else:
        typer.echo(_format_note(note))


@app.command("list")
def list_notes(
    search: Annotated[Optional[str], typer.Option(
        "--search", "-q",
        help="Case-insensitive substring match on content or summary"
    )] = None,
    sort_by: Annotated[str, typer.Option(
        "--sort-by",
        help="Sort column: created_at, updated_at or content"
    )] = "created_at",
    order: Annotated[str, typer.Option(
        "--order",
        help="Sort order: asc or desc"
    )] = "desc",
    limit: LimitOption = 20,
    store: StoreOption = None,
):
    """
    List notes, newest first.

    \b
    Examples:
        notesum list
        notesum list --search plumber
        notesum list --sort-by updated_at --order asc
    """
    ns = _get_notesum(store)
    notes = ns.list_notes(search, sort_by, order, limit)

    if _get_json_output():
        typer.echo(json.dumps([n.to_dict() for n in notes], indent=2))
        return
    if not notes:
        typer.echo("No notes found.")
        return
    id_width = max(len(n.id) for n in notes)
    for note in notes:
        typer.echo(_format_note_line(note, id_width))


@app.command()
def delete(
    id: Annotated[str, typer.Argument(help="Note id")],
    store: StoreOption = None,
):
    """Delete a note. Events already in flight for it become no-ops."""
    ns = _get_notesum(store)
    if not ns.delete(id):
        _fail(str(NoteNotFoundError(id)))
    if _get_json_output():
        typer.echo(json.dumps({"deleted": id}))
    else:
        typer.echo(f"Deleted {id}")


@app.command()
def regenerate(
    id: Annotated[str, typer.Argument(help="Note id")],
    store: StoreOption = None,
):
    """
    Summarize a note now and overwrite any existing summary.

    Runs in the foreground and bypasses the queue.
    """
    ns = _get_notesum(store)
    try:
        note = ns.regenerate(id)
    except (NoteSumError, RuntimeError) as e:
        _fail(str(e))
    if note is None:
        _fail(str(NoteNotFoundError(id)))
    if _get_json_output():
        typer.echo(json.dumps(note.to_dict(), indent=2))
    else:
        typer.echo(note.summary)


# -----------------------------------------------------------------------------
# Pipeline
# -----------------------------------------------------------------------------

def _format_batch(result: dict) -> str:
    line = f"{result['processed']} summarized, {result['skipped']} skipped, {result['failed']} failed"
    if result["dead_lettered"]:
        line += f", {result['dead_lettered']} dead-lettered"
    return line


@app.command()
def process(
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n",
        help="Maximum events to process (default: pipeline.batch_size)"
    )] = None,
    watch: Annotated[bool, typer.Option(
        "--watch", "-w",
        help="Keep polling for new events until interrupted"
    )] = False,
    store: StoreOption = None,
):
    """
    Run the summarization worker.

    Without --watch, processes one batch of queued events and exits.
    """
    ns = _get_notesum(store)
    try:
        if watch:
            typer.echo("Watching for events (Ctrl-C to stop)...", err=True)
            try:
                result = ns.run_worker()
            except KeyboardInterrupt:
                typer.echo("Stopped.", err=True)
                return
        else:
            result = ns.process_pending(limit=limit)
    except (NoteSumError, ValueError, RuntimeError) as e:
        _fail(str(e))

    if _get_json_output():
        typer.echo(json.dumps(result, indent=2))
        return
    typer.echo(_format_batch(result))
    for error in result["errors"][:5]:
        typer.echo(f"  {error}", err=True)
    if len(result["errors"]) > 5:
        typer.echo(f"  ... and {len(result['errors']) - 5} more", err=True)


@app.command()
def sweep(
    limit: LimitOption = 100,
    store: StoreOption = None,
):
    """
    Re-queue notes that still have no summary.

    Recovers notes whose summarization event was never published.
    """
    ns = _get_notesum(store)
    result = ns.sweep(limit=limit)
    if _get_json_output():
        typer.echo(json.dumps(result, indent=2))
        return
    if result["found"] == 0:
        typer.echo("Nothing to sweep.")
        return
    typer.echo(f"Queued {result['published']} of {result['found']} unsummarized notes.")
    for error in result["errors"]:
        typer.echo(f"  {error}", err=True)
    if result["failed"]:
        raise typer.Exit(1)


@app.command()
def failed(
    store: StoreOption = None,
):
    """List events that exhausted their deliveries."""
    ns = _get_notesum(store)
    letters = ns.list_failed()
    if _get_json_output():
        typer.echo(json.dumps([d.to_dict() for d in letters], indent=2))
        return
    if not letters:
        typer.echo("No failed events.")
        return
    for letter in letters:
        typer.echo(
            f"{letter.message_id}  deliveries={letter.deliveries}  "
            f"failed={letter.failed_at}  {letter.last_error or 'unknown'}"
        )


@app.command("retry-failed")
def retry_failed(
    store: StoreOption = None,
):
    """Move failed events back onto the queue with a fresh delivery count."""
    ns = _get_notesum(store)
    n = ns.retry_failed()
    if _get_json_output():
        typer.echo(json.dumps({"requeued": n}))
    elif n:
        typer.echo(f"Requeued {n} failed events.")
    else:
        typer.echo("No failed events to retry.")


@app.command()
def status(
    store: StoreOption = None,
):
    """Show store, queue and failure counts."""
    ns = _get_notesum(store)
    info = ns.status()
    if _get_json_output():
        typer.echo(json.dumps(info, indent=2))
        return
    queue = info["queue"]
    typer.echo(f"Store: {info['store_path']}")
    typer.echo(f"Provider: {info['provider']}")
    typer.echo(f"Notes: {info['notes']} ({info['unsummarized']} without summary)")
    typer.echo(
        f"Queue: {queue['ready']} ready, {queue['inflight']} in flight, "
        f"{queue['dead']} failed"
    )


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="notesum CLI", store_path=_get_store_override())
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
