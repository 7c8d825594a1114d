"""
CLI Main - Typer-based command-line interface.

Usage:
    switchyard ask "What is 2+2?"
    switchyard ask "Write a haiku about rain" --stream --priority quality
    switchyard route "My SSN is 123-45-6789, help me file taxes"
    switchyard validate "What is the capital of France?" "Paris."
    switchyard serve
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from switchyard.domains.orchestration import ChunkMeta, OrchestrationResult, Query
from switchyard.domains.routing import (
    ComplexityScore,
    OrchestrationDecision,
    Preferences,
    Priority,
    PrivacyLevel,
    Strategy,
)
from switchyard.interfaces.api.deps import (
    build_orchestrator,
    cleanup_services,
    get_orchestrator,
    get_sqlite_repository,
)

app = typer.Typer(
    name="switchyard",
    help="Switchyard - Local-first LLM orchestration",
    add_completion=False,
)
console = Console()


def _preferences(
    priority: Priority,
    privacy: PrivacyLevel,
    strategy: Strategy | None,
    max_cost: float | None,
) -> Preferences:
    return Preferences(
        priority=priority,
        privacy_level=privacy,
        strategy_override=strategy,
        max_cost_per_query=max_cost,
    )


@app.command()
def ask(
    query: str = typer.Argument(..., help="Query text"),
    stream: bool = typer.Option(False, "--stream", "-s", help="Print chunks as they arrive"),
    priority: Priority = typer.Option(Priority.BALANCED, "--priority", "-p", help="What to optimise"),
    privacy: PrivacyLevel = typer.Option(PrivacyLevel.MODERATE, "--privacy", help="Privacy level"),
    strategy: Strategy | None = typer.Option(None, "--strategy", help="Force a strategy"),
    max_cost: float | None = typer.Option(None, "--max-cost", help="Cost cap per query (USD)"),
) -> None:
    """Answer a query through the orchestrator."""
    prefs = _preferences(priority, privacy, strategy, max_cost)
    asyncio.run(_ask_async(query, prefs, stream))


async def _ask_async(query: str, prefs: Preferences, stream: bool) -> None:
    """Async answer implementation."""
    orchestrator = await build_orchestrator()

    try:
        if stream:
            result = await orchestrator.stream(Query(text=query), prefs, on_chunk=_print_chunk)
            console.print()
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task("Thinking...", total=None)
                result = await orchestrator.run(Query(text=query), prefs)

            if result.ok:
                console.print(Panel(result.text, title=f"Answer ({result.backend})"))
    finally:
        await cleanup_services()

    if not result.ok:
        console.print(f"[red]Error:[/red] {result.system_message}")
        raise typer.Exit(1)

    _print_summary(result)


def _print_chunk(text: str, meta: ChunkMeta) -> None:
    style = "dim" if meta.kind != "content" else None
    console.print(text, end="", style=style, markup=False, highlight=False)


def _print_summary(result: OrchestrationResult) -> None:
    table = Table(title="Orchestration Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    if result.decision is not None:
        table.add_row("Strategy", result.decision.strategy.value)
    table.add_row("Backend", result.backend or "-")
    table.add_row("Cache Hit", "yes" if result.cache_hit else "no")
    table.add_row("Escalated", "yes" if result.escalated else "no")
    if result.quality is not None:
        table.add_row("Quality", f"{result.quality.overall:.2f} ({result.quality.recommendation.value})")
    for point in result.switch_points:
        table.add_row("Switch", f"{point.from_backend} -> {point.to_backend} at chunk {point.chunk_index} ({point.reason})")
    table.add_row("Latency", f"{result.latency_ms:.0f} ms")
    table.add_row("Cost", f"${result.cost:.4f}")

    console.print(table)


@app.command()
def route(
    query: str = typer.Argument(..., help="Query text"),
    priority: Priority = typer.Option(Priority.BALANCED, "--priority", "-p", help="What to optimise"),
    privacy: PrivacyLevel = typer.Option(PrivacyLevel.MODERATE, "--privacy", help="Privacy level"),
    strategy: Strategy | None = typer.Option(None, "--strategy", help="Force a strategy"),
    max_cost: float | None = typer.Option(None, "--max-cost", help="Cost cap per query (USD)"),
) -> None:
    """Show the complexity estimate and routing decision without calling a backend."""
    prefs = _preferences(priority, privacy, strategy, max_cost)
    asyncio.run(_route_async(query, prefs))


async def _route_async(query: str, prefs: Preferences) -> None:
    orchestrator = get_orchestrator()
    try:
        complexity, decision = await orchestrator.plan(Query(text=query), prefs)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    finally:
        await cleanup_services()

    _print_complexity(complexity)
    _print_decision(decision)


def _print_complexity(complexity: ComplexityScore) -> None:
    table = Table(title="Complexity")
    table.add_column("Factor", style="cyan")
    table.add_column("Score", style="green")

    for name, value in complexity.factors.model_dump().items():
        table.add_row(name.replace("_", " "), f"{value:.2f}")
    table.add_row("[bold]overall[/bold]", f"[bold]{complexity.score:.2f}[/bold]")
    table.add_row("category", complexity.task_category.value)
    if complexity.contains_sensitive_data:
        table.add_row("[red]sensitive[/red]", ", ".join(complexity.sensitive_kinds))

    console.print(table)


def _print_decision(decision: OrchestrationDecision) -> None:
    fallback = decision.fallback_backend or "none"
    console.print(
        Panel(
            f"[bold]Strategy:[/bold] {decision.strategy.value}\n"
            f"[bold]Target:[/bold] {decision.target_backend} (fallback: {fallback})\n"
            f"[bold]Confidence:[/bold] {decision.confidence:.0%}\n"
            f"[bold]Estimated:[/bold] {decision.estimated_latency_ms:.0f} ms, ${decision.estimated_cost:.4f}\n"
            f"[dim]{decision.reasoning}[/dim]",
            title=f"Decision ({decision.source})",
        )
    )


@app.command()
def validate(
    query: str = typer.Argument(..., help="The question"),
    answer: str = typer.Argument(..., help="Candidate answer to score"),
) -> None:
    """Score an answer against the quality gate."""
    result = get_orchestrator().validator.validate(answer, query)

    table = Table(title="Quality Gate")
    table.add_column("Dimension", style="cyan")
    table.add_column("Score", style="green")
    for name, value in result.scores.model_dump().items():
        marker = " [red]x[/red]" if name in {d.value for d in result.failed_dimensions} else ""
        table.add_row(name, f"{value:.2f}{marker}")
    table.add_row("[bold]overall[/bold]", f"[bold]{result.overall:.2f}[/bold]")
    console.print(table)

    verdict = "[green]PASSED[/green]" if result.passed else "[red]FAILED[/red]"
    console.print(f"\n{verdict} recommendation: {result.recommendation.value}")
    if result.reasoning:
        console.print(f"[dim]{result.reasoning}[/dim]")


@app.command("cache-stats")
def cache_stats() -> None:
    """Show response cache statistics."""
    asyncio.run(_cache_stats_async())


async def _cache_stats_async() -> None:
    orchestrator = await build_orchestrator()
    try:
        stats = await orchestrator.cache.stats()
    finally:
        await cleanup_services()

    table = Table(title="Response Cache")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Entries", f"{stats.size} / {stats.capacity}")
    table.add_row("Entry Hits", str(stats.total_entry_hits))
    for backend, count in sorted(stats.by_backend.items()):
        table.add_row(f"  {backend}", str(count))
    console.print(table)


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of decisions"),
) -> None:
    """Show recent routing decisions from the audit log."""
    asyncio.run(_history_async(limit))


async def _history_async(limit: int) -> None:
    from switchyard.adapters.sqlite import SQLiteAuditLog

    repository = get_sqlite_repository()
    await repository.initialize()
    try:
        audit = SQLiteAuditLog(repository)
        records = await audit.recent(limit)
        counts = await audit.counts_by_strategy()
    finally:
        await repository.close()

    if not records:
        console.print("[yellow]No decisions recorded yet.[/yellow]")
        return

    table = Table(title="Recent Decisions")
    table.add_column("Time", style="dim")
    table.add_column("Strategy", style="cyan")
    table.add_column("Backend", style="green")
    table.add_column("Outcome")
    for record in records:
        outcome = record.result.get("status", "-")
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            record.decision.strategy.value,
            record.result.get("backend") or record.decision.target_backend,
            str(outcome),
        )
    console.print(table)
    console.print(
        "[dim]" + ", ".join(f"{name}: {count}" for name, count in sorted(counts.items())) + "[/dim]"
    )


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Host to bind (default: API_HOST)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind (default: API_PORT)"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload"),
) -> None:
    """Start the API server."""
    import uvicorn

    from switchyard.config import get_settings

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port

    console.print("\n[green]Starting Switchyard API server[/green]")
    console.print(f"[dim]http://{host}:{port}[/dim]\n")

    uvicorn.run(
        "switchyard.interfaces.api:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


@app.command()
def version() -> None:
    """Show version information."""
    from switchyard import __version__

    console.print(f"Switchyard v{__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
