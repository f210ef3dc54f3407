"""Command line interface for MusicSheet."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from musicsheet.config import LibrarySettings
from musicsheet.errors import LibraryError
from musicsheet.index.search import sort_entries
from musicsheet.library import DocumentStore
from musicsheet.models import SORT_FIELDS, CatalogEntry, DocumentRecord
from musicsheet.utils.files import iter_pdf_paths

console = Console()
app = typer.Typer(help="MusicSheet - a personal library for PDF sheet music")

ROOT_OPTION = typer.Option(None, "--root", help="Library root directory")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Verbose logging")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


@contextmanager
def _open_library(root: Optional[Path], verbose: bool) -> Iterator[DocumentStore]:
    """Yield a library for one command, reporting library errors and exiting 1."""
    _setup_logging(verbose)
    settings = LibrarySettings(root=root)
    try:
        with DocumentStore.from_settings(settings, Path.cwd()) as library:
            yield library
    except LibraryError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc


def _entries_table(entries: List[CatalogEntry], scores: Optional[List[int]] = None) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    if scores is not None:
        table.add_column("Score")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Composer")
    table.add_column("Instrument")
    table.add_column("Last opened")
    for position, entry in enumerate(entries):
        row = [entry.id, entry.title, entry.composer, entry.instrument, entry.last_accessed]
        if scores is not None:
            row.insert(0, str(scores[position]))
        table.add_row(*row)
    return table


def _print_record(record: DocumentRecord) -> None:
    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in record.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def init(root: Path = ROOT_OPTION, verbose: bool = VERBOSE_OPTION) -> None:
    """Create the library directories, catalog and preferences."""
    with _open_library(root, verbose) as library:
        library.initialize()
        console.print(f"Library ready at [bold]{library.paths.root}[/bold]")


@app.command()
def upload(
    inputs: List[Path] = typer.Argument(..., help="PDF files or folders to upload.", resolve_path=True),
    root: Path = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Upload one or more PDF files into the library."""
    pdf_paths = list(iter_pdf_paths(inputs))
    if not pdf_paths:
        console.print("[yellow]No PDFs found.[/yellow]")
        return

    with _open_library(root, verbose) as library:
        library.initialize()
        for path in pdf_paths:
            record = library.upload(path.read_bytes(), path.name)
            console.print(f"Uploaded [bold]{record.title}[/bold] as {record.id}")


@app.command("list")
def list_documents(
    sort: Optional[str] = typer.Option(None, "--sort", help=f"One of: {', '.join(SORT_FIELDS)}"),
    descending: Optional[bool] = typer.Option(None, "--desc/--asc", help="Sort direction"),
    root: Path = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """List the catalog, ordered by the saved or given sort preference.

    A sort field or direction given on the command line becomes the saved preference.
    """
    if sort is not None and sort not in SORT_FIELDS:
        raise typer.BadParameter(f"Unknown sort field: {sort}")
    with _open_library(root, verbose) as library:
        config = library.preferences.load()
        sort_by = sort or config.sort_by
        if descending is None:
            direction = config.sort_direction
        else:
            direction = "desc" if descending else "asc"
        if (sort_by, direction) != (config.sort_by, config.sort_direction):
            library.preferences.set_sort(sort_by, direction)

        entries = library.list()
        if not entries:
            console.print("[yellow]The library is empty.[/yellow]")
            return
        console.print(_entries_table(sort_entries(entries, sort_by, direction)))


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    limit: int = typer.Option(10, help="Number of results to display"),
    root: Path = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Search titles, composers and instruments."""
    with _open_library(root, verbose) as library:
        results = library.search(query, limit=limit)
        if not results:
            console.print("[yellow]No matches found.[/yellow]")
            return
        console.print(
            _entries_table([result.entry for result in results], [result.score for result in results])
        )


@app.command()
def show(
    document_id: str = typer.Argument(..., help="Document ID"),
    root: Path = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Show the full metadata record of a document."""
    with _open_library(root, verbose) as library:
        _print_record(library.get(document_id))


@app.command()
def edit(
    document_id: str = typer.Argument(..., help="Document ID"),
    title: Optional[str] = typer.Option(None, help="New title"),
    composer: Optional[str] = typer.Option(None, help="New composer"),
    instrument: Optional[str] = typer.Option(None, help="New instrument"),
    sort_order: Optional[int] = typer.Option(None, "--sort-order", help="Manual sort position"),
    side_by_side: Optional[bool] = typer.Option(
        None, "--side-by-side/--single-page", help="Show two pages at once"
    ),
    page_offset: Optional[bool] = typer.Option(
        None, "--page-offset/--no-page-offset", help="Pair pages as 1, 2-3, 4-5"
    ),
    root: Path = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Change metadata fields of a document."""
    changes = {
        "title": title,
        "composer": composer,
        "instrument": instrument,
        "sort_order": sort_order,
        "side_by_side": side_by_side,
        "page_offset": page_offset,
    }
    changes = {key: value for key, value in changes.items() if value is not None}
    if not changes:
        console.print("[yellow]Nothing to change.[/yellow]")
        return
    with _open_library(root, verbose) as library:
        _print_record(library.edit(document_id, changes))


@app.command("open")
def open_document(
    document_id: str = typer.Argument(..., help="Document ID"),
    root: Path = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Mark a document as opened and print the path of its PDF."""
    with _open_library(root, verbose) as library:
        library.open(document_id)
        console.print(str(library.pdf_file(document_id)))


@app.command()
def delete(
    document_id: str = typer.Argument(..., help="Document ID"),
    root: Path = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Delete a document and its catalog entry."""
    with _open_library(root, verbose) as library:
        if library.remove(document_id):
            console.print(f"Deleted {document_id}.")
        else:
            console.print(f"[yellow]{document_id} was not in the library.[/yellow]")


@app.command()
def reconcile(root: Path = ROOT_OPTION, verbose: bool = VERBOSE_OPTION) -> None:
    """Repair the catalog from the metadata records on disk."""
    with _open_library(root, verbose) as library:
        report = library.reconcile()
        if not report.changed and not report.corrupt:
            console.print("[green]The catalog is consistent.[/green]")
            return
        console.print(
            f"Added: {len(report.added)}, refreshed: {len(report.refreshed)}, "
            f"removed: {len(report.removed)}, corrupt: {len(report.corrupt)}"
        )
        for document_id in report.corrupt:
            console.print(f"[red]Corrupt record: {document_id}[/red]")


@app.command()
def thumbnail(
    document_id: str = typer.Argument(..., help="Document ID"),
    refresh: bool = typer.Option(False, "--refresh", help="Render again even if one exists"),
    root: Path = ROOT_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Render (or locate) the thumbnail of a document."""
    with _open_library(root, verbose) as library:
        path = library.thumbnail(document_id, refresh=refresh)
        if path is None:
            console.print("[yellow]Thumbnail could not be generated.[/yellow]")
            raise typer.Exit(code=1)
        console.print(str(path))


@app.command()
def recent(root: Path = ROOT_OPTION, verbose: bool = VERBOSE_OPTION) -> None:
    """List the most recently opened documents."""
    with _open_library(root, verbose) as library:
        config = library.preferences.load()
        if not config.recent_documents:
            console.print("[yellow]No recent documents.[/yellow]")
            return
        for document_id in config.recent_documents:
            entry = library.catalog.get(document_id)
            label = entry.title if entry is not None else "(missing)"
            console.print(f"{document_id}  {label}")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    root: Path = ROOT_OPTION,
) -> None:
    """Start the HTTP API."""
    import uvicorn

    from musicsheet.web.app import app as web_app, configure

    settings = LibrarySettings(root=root)
    resolved_root = settings.resolve_root(Path.cwd())
    configure(settings)
    console.print(f"Starting web interface on http://{host}:{port} (library: {resolved_root})")
    uvicorn.run(
        web_app,
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
