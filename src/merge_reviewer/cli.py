"""Command-line interface for Merge Reviewer."""

import asyncio
import dataclasses
import json
import logging
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import click
import uvicorn
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from merge_reviewer import __version__
from merge_reviewer.app import build_application
from merge_reviewer.config import Config, load_config, validate_config
from merge_reviewer.errors import NotEligibleError, ReviewEngineError
from merge_reviewer.github.formatter import ReviewFormatter
from merge_reviewer.models.review import ReviewResult

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_valid_config(config_path: str | None) -> Config:
    config = load_config(Path(config_path) if config_path else None)
    errors = validate_config(config)
    if errors:
        for error in errors:
            console.print(f"[red]Config error:[/red] {error}")
        sys.exit(1)
    return config


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def format_result_as_json(result: ReviewResult) -> str:
    return json.dumps(dataclasses.asdict(result), indent=2, default=_json_default)


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """Merge Reviewer - AI pull request review and merge scoring."""
    setup_logging(verbose)


@cli.command("review-pr")
@click.argument("repo")
@click.argument("pr_number", type=int)
@click.option("--installation", "installation_id", type=int, required=True, help="GitHub App installation id")
@click.option("--output", type=click.Choice(["github", "json", "markdown"]), default="github")
@click.option("--dry-run", is_flag=True, help="Don't post to GitHub")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def review_pr(
    repo: str,
    pr_number: int,
    installation_id: int,
    output: str,
    dry_run: bool,
    config_path: str | None,
) -> None:
    """Analyze one pull request now, bypassing the job queue."""
    config = _load_valid_config(config_path)
    asyncio.run(
        review_pr_async(
            config,
            repo=repo,
            pr_number=pr_number,
            installation_id=installation_id,
            output=output,
            dry_run=dry_run,
        )
    )


async def review_pr_async(
    config: Config,
    repo: str,
    pr_number: int,
    installation_id: int,
    output: str = "github",
    dry_run: bool = False,
) -> None:
    """Async implementation of a single PR review."""
    application = build_application(config)
    if dry_run or output != "github":
        application.orchestrator.source_control = None

    console.print(f"🔍 Reviewing PR #{pr_number} in [bold]{repo}[/bold]...")
    try:
        pr = await application.source_control.get_pull_request(installation_id, repo, pr_number)
        result = await application.orchestrator.analyze(pr)
    except NotEligibleError as e:
        console.print(f"[yellow]Skipped:[/yellow] {e}")
        return
    except ReviewEngineError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        await application.shutdown()

    console.print(
        f"✅ Merge score [bold]{result.merge_score}[/bold]/100 ({result.recommendation}) "
        f"in {result.processing_time_ms / 1000:.1f}s"
    )

    if output == "json":
        print(format_result_as_json(result))
    elif output == "markdown" or dry_run:
        if dry_run and output == "github":
            console.print("\n[yellow]Dry run - not posting to GitHub[/yellow]")
        print(ReviewFormatter().format_review(result))
    else:
        console.print("📝 Posted review to GitHub")


@cli.group("config")
def config_group() -> None:
    """Configuration commands."""
    pass


@config_group.command("validate")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def config_validate(config_path: str | None) -> None:
    """Validate configuration file."""
    try:
        config = load_config(Path(config_path) if config_path else None)
        errors = validate_config(config)

        if errors:
            console.print("[red]Configuration is invalid:[/red]")
            for error in errors:
                console.print(f"  • {error}")
            sys.exit(1)
        else:
            console.print("[green]✓ Configuration is valid[/green]")
    except Exception as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        sys.exit(1)


@config_group.command("show")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def config_show(config_path: str | None) -> None:
    """Show current configuration."""
    config = load_config(Path(config_path) if config_path else None)

    console.print("\n[bold]Current Configuration[/bold]\n")

    table = Table(title="Job Limits")
    table.add_column("Kind")
    table.add_column("Concurrency")
    table.add_column("Retries")
    table.add_column("Retry Delay")
    table.add_column("Timeout")

    for name in ("pr_analysis", "repository_indexing"):
        kind = getattr(config.jobs, name)
        table.add_row(
            name,
            str(kind.max_concurrent),
            str(kind.max_retries),
            f"{kind.retry_delay_seconds}s",
            f"{kind.timeout_seconds}s",
        )

    console.print(table)

    ctx = config.intelligent_context
    console.print(f"\n[bold]AI API:[/bold] {config.ai.base_url} ({config.ai.model})")
    console.print(f"[bold]Intelligent context:[/bold] {'enabled' if ctx.enabled else 'disabled'}")
    console.print(f"[bold]Workflow timeout:[/bold] {config.orchestrator.workflow_timeout_seconds}s")
    console.print(
        f"[bold]Graceful degradation:[/bold] "
        f"{'on' if config.orchestrator.graceful_degradation else 'off'}"
    )
    console.print(f"[bold]Store:[/bold] {config.store.backend}")


@cli.command("serve")
@click.option("--port", default=None, type=int, help="Port to listen on")
@click.option("--host", default=None, help="Host to bind to")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def serve(port: int | None, host: str | None, config_path: str | None) -> None:
    """Start the webhook server and job scheduler."""
    config = _load_valid_config(config_path)
    application = build_application(config)
    app = application.webhook_app()

    host = host or config.server.host
    port = port or config.server.port
    console.print(f"🚀 Starting webhook server on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
