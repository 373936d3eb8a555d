"""
Command-line interface for mailrag.

Commands:
    serve   - Start the FastAPI server
    ingest  - Ingest an email from a JSON file
    resume  - Finish a partially ingested email
    search  - Search an address's email chunks
    show    - Print a stored email and its chunks
    delete  - Delete an email and its chunks
    version - Show version information
"""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from mailrag.config import settings
from mailrag.errors import IngestionError, MailRagError, ValidationError
from mailrag.logging_setup import setup_logging

app = typer.Typer(
    name="mailrag",
    help="Embedding search over stored email",
    add_completion=False,
)
console = Console()


@app.callback()
def main(
    log_level: str = typer.Option(settings.log_level, "--log-level", help="Logging level"),
) -> None:
    """Configure logging for every command."""
    setup_logging(log_level.upper())


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, help="Host to bind"),
    port: int = typer.Option(settings.api_port, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """Start the FastAPI server."""
    import uvicorn

    console.print(f"[green]Starting mailrag server on {host}:{port}[/green]")

    uvicorn.run(
        "mailrag.api.main:app",
        host=host,
        port=port,
        reload=reload,
        workers=1,  # One process owns the SQLite-backed index
    )


@app.command()
def ingest(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with the email"),
) -> None:
    """Ingest an email: {subject, sender, recipient[], cc[]?, bcc[]?, body}."""
    from mailrag.retrieval.resources import get_ingestion_orchestrator

    try:
        fields = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Not valid JSON: {e}[/red]")
        raise typer.Exit(1)

    try:
        with console.status("[bold green]Chunking and embedding..."):
            result = get_ingestion_orchestrator().ingest(fields)
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        for error in e.errors:
            location = ".".join(str(part) for part in error.get("loc", []))
            console.print(f"  • {location}: {error.get('msg', '')}")
        raise typer.Exit(1)
    except IngestionError as e:
        console.print(f"[red]{e}[/red]")
        console.print(f"[yellow]Resume with: mailrag resume {e.email_id}[/yellow]")
        raise typer.Exit(1)

    console.print(
        f"[green]✓ Stored email {result.email_id} with {result.chunk_count} chunks[/green]"
    )


@app.command()
def resume(
    email_id: int = typer.Argument(..., help="Email id to finish"),
) -> None:
    """Embed and store the chunks a failed ingestion did not reach."""
    from mailrag.retrieval.resources import get_ingestion_orchestrator

    try:
        with console.status("[bold green]Resuming..."):
            result = get_ingestion_orchestrator().resume(email_id)
    except MailRagError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[green]✓ Email {result.email_id}: wrote {result.chunks_written} of "
        f"{result.chunk_count} chunks[/green]"
    )


@app.command()
def search(
    query: str = typer.Argument(..., help="Text to search for"),
    identity: str = typer.Option(..., "--identity", "-i", help="Sender or recipient address"),
    threshold: float = typer.Option(settings.similarity_threshold, help="Minimum similarity (exclusive)"),
    limit: int = typer.Option(settings.retrieval_limit, help="Maximum matches"),
) -> None:
    """Search the chunks of emails an address sent or received."""
    from mailrag.retrieval.resources import get_retrieval_engine

    try:
        with console.status("[bold green]Searching..."):
            results = get_retrieval_engine().search_text(
                query, threshold=threshold, limit=limit, identity=identity
            )
    except MailRagError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not results:
        console.print("[yellow]No matching chunks.[/yellow]")
        return

    table = Table(title=f"Matches for {identity}")
    table.add_column("Similarity", style="green")
    table.add_column("Email", style="cyan")
    table.add_column("Chunk", style="cyan")
    table.add_column("Content")

    for r in results:
        preview = r.content if len(r.content) <= 80 else f"{r.content[:77]}..."
        table.add_row(f"{r.similarity:.3f}", str(r.email_id), str(r.chunk_id), preview)

    console.print(table)


@app.command()
def show(
    email_id: int = typer.Argument(..., help="Email id"),
) -> None:
    """Print a stored email and its chunks."""
    from mailrag.retrieval.resources import get_document_store

    store = get_document_store()
    email = store.get_email(email_id)
    if email is None:
        console.print(f"[red]Email {email_id} not found[/red]")
        raise typer.Exit(1)

    console.print(f"[blue]Subject:[/blue] {email.subject}")
    console.print(f"[blue]From:[/blue] {email.sender}")
    console.print(f"[blue]To:[/blue] {', '.join(email.recipients)}")
    if email.cc:
        console.print(f"[blue]Cc:[/blue] {', '.join(email.cc)}")
    console.print(f"[dim]Stored {email.created_at.isoformat()}[/dim]\n")

    for chunk in store.get_chunks(email_id):
        console.print(f"[cyan]#{chunk.order_index}[/cyan] ({len(chunk.content)} chars)")
        console.print(chunk.content)
        console.print()


@app.command()
def delete(
    email_id: int = typer.Argument(..., help="Email id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete an email, its chunks and their vectors."""
    from mailrag.retrieval.resources import get_document_store

    if not yes:
        typer.confirm(f"Delete email {email_id} and all its chunks?", abort=True)

    if not get_document_store().delete_email(email_id):
        console.print(f"[red]Email {email_id} not found[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓ Deleted email {email_id}[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    from mailrag import __version__

    console.print(f"mailrag v{__version__}")


if __name__ == "__main__":
    app()
