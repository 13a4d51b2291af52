"""CLI commands for talkpipe using Typer and Rich.

Implements:
- run: Run the full pipeline for a concept, offering resume on failure
- stages: Show the stage sequence
"""

import asyncio
import logging
import mimetypes
import posixpath
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from talkpipe import validate_settings
from talkpipe.config import settings
from talkpipe.errors import PipelineValidationError
from talkpipe.orchestrator.pipeline import MachineOrchestrator
from talkpipe.orchestrator.state import DONE, FAILED, PIPELINE_STATES, STAGE_ORDER, can_resume
from talkpipe.schemas.machine import Avatar, ReferenceImage, Run, RunInputs, ScriptTone, Voice
from talkpipe.services.machine_client import close_machine_client, get_machine_client

app = typer.Typer(name="talkpipe", help="Concept-to-talking-avatar generation pipeline")
console = Console()

_STAGE_LABELS = {
    "prompts": "Generate Prompts",
    "assets": "Generate Images",
    "script": "Write Script",
    "speech": "Text-to-Speech",
    "video": "Lipsync Video",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_reference(path: Path) -> ReferenceImage:
    content_type = mimetypes.guess_type(path.name)[0] or "image/png"
    return ReferenceImage(filename=path.name, content=path.read_bytes(), content_type=content_type)


@app.command()
def run(
    concept: str = typer.Argument(..., help="Concept for the video, e.g. 'Halloween'"),
    avatar_url: str = typer.Option(..., "--avatar-url", "-a", help="Avatar image URL or server path"),
    voice_id: str = typer.Option(..., "--voice-id", "-v", help="Voice ID for text-to-speech"),
    count: int = typer.Option(settings.limits.prompt_count_default, "--count", "-n", help="Number of image prompts"),
    duration: int = typer.Option(30, "--duration", "-d", help="Script duration in seconds"),
    tone: ScriptTone = typer.Option(ScriptTone.ENERGETIC, "--tone", "-t", help="Script tone"),
    ref: Optional[list[Path]] = typer.Option(
        None, "--ref", "-r", exists=True, dir_okay=False, help="Reference image (repeatable)",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Run the pipeline: prompts, images, script, speech, and lipsync video."""
    _configure_logging(verbose)

    # Fail-fast configuration validation
    try:
        validate_settings()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    refs = ref or []
    if len(refs) > settings.limits.max_reference_images:
        console.print(
            f"[yellow]Only the first {settings.limits.max_reference_images} reference images are used[/yellow]"
        )
        refs = refs[:settings.limits.max_reference_images]

    avatar_name = posixpath.basename(urlparse(avatar_url).path) or "avatar.png"
    inputs = RunInputs(
        concept=concept,
        prompt_count=count,
        reference_images=tuple(_load_reference(p) for p in refs),
        script_duration=duration,
        script_tone=tone,
        voice=Voice(id=voice_id, name=voice_id),
        avatar=Avatar(name=avatar_name, filename=avatar_name, url=avatar_url),
    )

    try:
        final = asyncio.run(_run_async(inputs))
    except PipelineValidationError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print()
        console.print("[yellow]Run interrupted.[/yellow]")
        raise typer.Exit(code=130)

    _print_summary(final)
    if final.current_stage != DONE:
        raise typer.Exit(code=1)


async def _run_async(inputs: RunInputs) -> Run:
    """Async implementation of run command."""
    client = await get_machine_client()
    orchestrator = MachineOrchestrator(client)

    seen = {"stage": None, "completed": -1}

    def render(state: Run) -> None:
        if state.current_stage != seen["stage"]:
            seen["stage"] = state.current_stage
            label = _STAGE_LABELS.get(state.current_stage)
            if label:
                console.print(f"[bold cyan]▶[/bold cyan] {label}")
        job = state.asset_job
        if job is not None and job.completed != seen["completed"] and state.current_stage in STAGE_ORDER:
            seen["completed"] = job.completed
            console.print(f"  images {job.completed}/{job.total} ({job.status.value})")

    orchestrator.subscribe(render)
    try:
        state = await orchestrator.run(inputs)
        while can_resume(state.current_stage, state.failed_stage):
            console.print()
            console.print(
                f"[red]✗ {_STAGE_LABELS[state.failed_stage]} failed:[/red] {state.error.message}"
            )
            if not typer.confirm(f"Resume from {_STAGE_LABELS[state.failed_stage]}?", default=True):
                break
            seen["stage"] = None
            state = await orchestrator.run(resume_from=state.failed_stage)
    finally:
        await close_machine_client()
    return state


def _print_summary(state: Run) -> None:
    table = Table(title=f"Run {state.id[:8]}")
    table.add_column("Stage", style="cyan")
    table.add_column("Output")
    table.add_column("Time", justify="right")

    job = state.asset_job
    outputs = {
        "prompts": f"{len(state.prompts)} prompts" if state.prompts else "",
        "assets": f"{job.completed}/{job.total} images ({job.status.value})" if job else "",
        "script": f"{len(state.script.split())} words" if state.script else "",
        "speech": state.speech_url or "",
        "video": state.video_url or "",
    }
    for stage in STAGE_ORDER:
        timing = state.stage_timings.get(stage)
        table.add_row(
            _STAGE_LABELS[stage],
            outputs[stage] or "[dim]-[/dim]",
            f"{timing:.1f}s" if timing is not None else "",
        )

    console.print()
    console.print(table)
    if state.current_stage == DONE:
        console.print(f"[green]✓[/green] Video ready: {state.video_url}")
    elif state.current_stage == FAILED and state.error:
        console.print(f"[red]✗ Stopped at {state.failed_stage}:[/red] {state.error.message}")


@app.command()
def stages():
    """List pipeline stages in execution order."""
    table = Table(title="Pipeline stages")
    table.add_column("#", justify="right")
    table.add_column("Stage", style="cyan")
    table.add_column("Description")
    for i, stage in enumerate(STAGE_ORDER, start=1):
        table.add_row(str(i), stage, PIPELINE_STATES[stage])
    console.print(table)


if __name__ == "__main__":
    app()
