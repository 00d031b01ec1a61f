"""Interactive CLI for the verification pipeline using Typer and Rich."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from terra_verify.config.logging import configure_logging, get_logger
from terra_verify.config.settings import settings
from terra_verify.data_management.quest_store import QuestStore, load_quests
from terra_verify.data_management.schemas import (
    Quest,
    StepStatus,
    Submission,
    SubmissionCreate,
    VerificationPipeline,
)
from terra_verify.intake.submission_service import SubmissionService
from terra_verify.utils.logging import configure_structured_logging

app = typer.Typer(
    help="Terra verification CLI - run and inspect submission verification pipelines",
    add_completion=False,
)

console = Console()

logger = get_logger("cli")

_STATUS_STYLE = {
    StepStatus.PENDING: "dim",
    StepStatus.RUNNING: "yellow",
    StepStatus.COMPLETED: "green",
    StepStatus.FAILED: "bold red",
}


@app.callback()
def configure(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override TERRA_LOG_LEVEL"),
) -> None:
    """Terra verification CLI."""
    if log_level:
        configure_logging(log_level=log_level)
        configure_structured_logging(log_level=log_level)


@app.command()
def status() -> None:
    """
    Display verification configuration.

    Shows thresholds, upload limits, the image analysis backend and logging settings.
    """
    logger.info("Displaying system status")

    table = Table(title="Terra Verification Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", width=22)
    table.add_column("Status", style="green", width=15)
    table.add_column("Details", style="yellow")

    python_version = f"Python {sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    table.add_row("Environment", "✓ Ready", python_version)

    table.add_row(
        "Decision thresholds",
        "✓ Loaded",
        f"auto-pass {settings.auto_pass_threshold}, review {settings.review_threshold}, "
        f"duplicate {settings.phash_duplicate_threshold}",
    )
    table.add_row(
        "Uploads",
        "✓ Loaded",
        f"max {settings.max_file_size_mb} MB, {', '.join(settings.allowed_image_types)}, "
        f"max age {settings.max_image_age_days}d",
    )

    if settings.image_analysis_url:
        analysis_status, analysis_details = "✓ Remote", (
            f"{settings.image_analysis_url} (step timeout {settings.image_analysis_timeout_seconds}s, "
            f"{settings.image_analysis_max_retries} x {settings.image_analysis_request_timeout_seconds}s attempts, "
            "stub fallback)"
        )
    else:
        analysis_status, analysis_details = "⚠ Stub", "Deterministic stand-in analyzer"
    table.add_row("Image analysis", analysis_status, analysis_details)

    if settings.quests_path:
        table.add_row("Quest catalog", "✓ Configured", settings.quests_path)
    else:
        table.add_row("Quest catalog", "⚠ None", "serve --quests FILE or TERRA_QUESTS_PATH")

    table.add_row("Logging", "✓ Active", f"Level: {settings.log_level}, Format: {settings.log_format}")

    console.print(table)


def render_pipeline(pipeline: VerificationPipeline) -> Table:
    """Step table for a pipeline snapshot."""
    table = Table(
        title=f"Pipeline {pipeline.pipeline_id} [{pipeline.overall_status.value}]",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("#", width=3)
    table.add_column("Step", style="cyan", width=22)
    table.add_column("Status", width=10)
    table.add_column("ms", justify="right", width=8)
    table.add_column("Issues / error")

    for index, step in enumerate(pipeline.steps, start=1):
        style = _STATUS_STYLE[step.status]
        if step.error:
            detail = f"[red]{step.error}[/red]"
        elif step.result is not None:
            detail = ", ".join(step.result.issues) or "-"
        else:
            detail = ""
        duration = f"{step.duration_ms:.1f}" if step.duration_ms is not None else ""
        table.add_row(
            str(index), step.name.value, f"[{style}]{step.status.value}[/{style}]", duration, detail
        )
    return table


def render_submission(submission: Submission) -> Panel:
    report = submission.verification_report
    lines = [
        f"[bold]Status:[/bold] {submission.status.value}",
        f"[bold]Points:[/bold] {submission.points_awarded}",
    ]
    if report is not None:
        lines += [
            f"[bold]Decision:[/bold] {report.decision.value}",
            f"[bold]Confidence:[/bold] {report.confidence:.3f}",
            f"[bold]Labels:[/bold] {', '.join(report.labels) or '-'}",
            f"[bold]Issues:[/bold] {', '.join(report.issues) or '-'}",
        ]
    if submission.verification_error:
        lines.append(f"[bold red]Verification error:[/bold red] {submission.verification_error}")
    return Panel("\n".join(lines), title=f"Submission {submission.id}", border_style="cyan")


async def _verify(quest: Quest, payload: SubmissionCreate) -> tuple[Submission, VerificationPipeline]:
    service = SubmissionService(quest_store=QuestStore([quest]))
    _, handle = await service.create_submission(payload)
    submission = await handle.wait()
    pipeline = await service.orchestrator.get_pipeline_status(handle.pipeline_id)
    return submission, pipeline


@app.command()
def verify(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with 'quest' and 'submission'"),
    as_json: bool = typer.Option(False, "--json", help="Print the final pipeline as JSON"),
) -> None:
    """
    Run one submission through the verification pipeline.

    The file holds {"quest": {...}, "submission": {...}} using the API's camelCase fields.
    """
    logger.info(f"Verify command invoked: {path}")

    try:
        data = json.loads(path.read_text())
        quest = Quest.model_validate(data["quest"])
        payload = SubmissionCreate.model_validate({"questId": quest.id, **data["submission"]})
    except (json.JSONDecodeError, KeyError, ValidationError) as e:
        console.print(f"[bold red]Invalid input file:[/bold red] {e}")
        raise typer.Exit(code=2)

    submission, pipeline = asyncio.run(_verify(quest, payload))

    if as_json:
        console.print_json(pipeline.model_dump_json(by_alias=True))
        return

    console.print(render_pipeline(pipeline))
    console.print(render_submission(submission))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    quests_file: Optional[Path] = typer.Option(
        None,
        "--quests",
        exists=True,
        dir_okay=False,
        help="JSON list of quests to accept submissions for (defaults to TERRA_QUESTS_PATH)",
    ),
) -> None:
    """Run the verification API with uvicorn."""
    import uvicorn

    from terra_verify.api.main import create_app

    quests_path = quests_file or settings.quests_path
    quests = None
    if quests_path:
        try:
            quests = load_quests(quests_path)
        except (OSError, ValidationError) as e:
            console.print(f"[bold red]Invalid quest catalog:[/bold red] {e}")
            raise typer.Exit(code=2)
    else:
        console.print("[yellow]No quests loaded; submissions will fail with QUEST_NOT_FOUND[/yellow]")

    logger.info(f"Starting API on {host}:{port} with {len(quests or [])} quests")
    uvicorn.run(create_app(quests=quests), host=host, port=port)


def main() -> None:
    """Entry point for CLI execution."""
    app()


if __name__ == "__main__":
    main()
