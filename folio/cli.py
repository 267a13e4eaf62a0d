"""
CLI interface for the folio taxonomy engine.

Usage:
    folio health
    folio propose programming/rust "Rust" --definition "Systems language"
    folio similar "memory-safe systems programming"
    folio context notes/meeting.md
    folio backfill
"""

import json
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import Folio
from .curator import format_concepts_for_prompt
from .errors import FolioError, log_exception
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import BatchProgress, CurationOutcome, ProposedConcept


# Set FOLIO_VERBOSE=1 to enable debug mode via environment
if os.environ.get("FOLIO_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"folio {version('folio-taxonomy')}")
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


def _store_callback(value: Optional[Path]):
    global _store_override
    _store_override = value


app = typer.Typer(
    name="folio",
    help="Batched embedding and concept deduplication for a knowledge taxonomy.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


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
        envvar="FOLIO_STORE_PATH",
        help="Path to the store directory (default: ~/.folio/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Batched embedding and concept deduplication for a knowledge taxonomy."""


def _get_folio() -> Folio:
    """Open the store, turning setup failures into a one-line error."""
    import atexit

    try:
        folio = Folio(_store_override)
    except (FolioError, OSError, ValueError, RuntimeError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(folio.close)
    return folio


def _fail(e: Exception, command: str) -> None:
    """Report an operation failure: full traceback to the error log, one line to the user."""
    log_path = log_exception(e, context=f"folio {command}")
    typer.echo(f"Error: {e}", err=True)
    typer.echo(f"Details logged to {log_path}", err=True)
    raise typer.Exit(1)


def _echo_progress(progress: BatchProgress) -> None:
    typer.echo(
        f"  batch {progress.batch_index}/{progress.total_batches}: "
        f"{progress.items_processed}/{progress.items_total} ({progress.percent}%)",
        err=True,
    )


def _format_outcome(outcome: CurationOutcome) -> str:
    status = "accepted" if outcome.accepted else "rejected"
    line = f"{status} {outcome.concept_id} ({outcome.reason})"
    if outcome.collided_with and outcome.reason == "duplicate":
        line += f" ~ {outcome.collided_with} {outcome.score:.3f}"
    return line


def _outcome_to_dict(outcome: CurationOutcome) -> dict:
    return {
        "id": outcome.concept_id,
        "accepted": outcome.accepted,
        "reason": outcome.reason,
        "collided_with": outcome.collided_with,
        "score": outcome.score,
        "verdict": outcome.verdict.value if outcome.verdict else None,
    }


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def health():
    """Check the embedding service and show store status."""
    folio = _get_folio()
    try:
        status = folio.health()
    except FolioError as e:
        _fail(e, "health")

    if _json_output:
        typer.echo(json.dumps(status, indent=2))
        return
    for key, value in status.items():
        typer.echo(f"{key}: {value}")


@app.command()
def propose(
    id: Annotated[str, typer.Argument(help="Concept id, e.g. programming/rust")],
    label: Annotated[str, typer.Argument(help="Preferred label")],
    definition: Annotated[Optional[str], typer.Option(
        "--definition", "-d",
        help="Short definition",
    )] = None,
    alt: Annotated[Optional[list[str]], typer.Option(
        "--alt", "-a",
        help="Alternate label (repeatable)",
    )] = None,
):
    """Propose a concept; it is stored unless it duplicates an existing one."""
    proposal = ProposedConcept(
        id=id,
        label=label,
        alt_labels=tuple(alt or ()),
        definition=definition,
    )
    folio = _get_folio()
    try:
        report = folio.propose([proposal])
    except FolioError as e:
        _fail(e, "propose")

    if _json_output:
        typer.echo(json.dumps([_outcome_to_dict(o) for o in report.outcomes], indent=2))
    else:
        for outcome in report.outcomes:
            typer.echo(_format_outcome(outcome))


@app.command()
def similar(
    text: Annotated[str, typer.Argument(help="Text to compare against the taxonomy")],
    threshold: Annotated[Optional[float], typer.Option(
        "--threshold", "-t",
        min=0.0, max=1.0,
        help="Minimum similarity (default: [dedup] threshold)",
    )] = None,
    limit: Annotated[int, typer.Option(
        "--limit", "-n",
        help="Maximum results to return",
    )] = 10,
):
    """Find existing concepts similar to some text."""
    folio = _get_folio()
    try:
        found = folio.similar(text, threshold=threshold, limit=limit)
    except FolioError as e:
        _fail(e, "similar")

    if _json_output:
        typer.echo(json.dumps(
            [{"id": c.concept.id, "label": c.concept.label, "score": round(c.score, 4)}
             for c in found],
            indent=2,
        ))
        return
    if not found:
        typer.echo("No similar concepts.", err=True)
        return
    for c in found:
        typer.echo(f"{c.score:.3f} {c.concept.id} {c.concept.label}")


@app.command()
def concepts():
    """List every concept in the taxonomy."""
    folio = _get_folio()
    items = folio.list_concepts()
    if _json_output:
        typer.echo(json.dumps(
            [{
                "id": c.id,
                "label": c.label,
                "alt_labels": list(c.alt_labels),
                "definition": c.definition,
                "created_at": c.created_at,
            } for c in items],
            indent=2,
        ))
        return
    for c in items:
        typer.echo(f"{c.id} {c.label}")


@app.command()
def context(
    file: Annotated[typer.FileText, typer.Argument(help="Document to find related concepts for (- for stdin)")],
):
    """Print the taxonomy concepts related to a document."""
    folio = _get_folio()
    content = file.read()
    try:
        related = folio.related_concepts(content)
    except FolioError as e:
        _fail(e, "context")

    if _json_output:
        typer.echo(json.dumps(
            [{"id": c.id, "label": c.label, "alt_labels": list(c.alt_labels)} for c in related],
            indent=2,
        ))
        return
    typer.echo(format_concepts_for_prompt(related))


@app.command()
def backfill(
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n",
        help="Embed at most this many concepts",
    )] = None,
):
    """Generate embeddings for concepts that have none."""
    folio = _get_folio()
    try:
        stats = folio.backfill(limit=limit, on_progress=_echo_progress)
    except FolioError as e:
        _fail(e, "backfill")

    if _json_output:
        typer.echo(json.dumps(stats, indent=2))
    else:
        typer.echo(f"Embedded {stats['embedded']} of {stats['pending']} concepts.")


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        log_path = log_exception(e, context="folio CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
