"""State machine constants and transition logic for the pipeline orchestrator.

Defines the ordered stage sequence that governs a run, with resume
permitted only at the stage that failed last.
"""

from typing import Optional

from talkpipe.errors import InvalidResumeError

IDLE = "idle"
PROMPTS = "prompts"
ASSETS = "assets"
SCRIPT = "script"
SPEECH = "speech"
VIDEO = "video"
DONE = "done"
FAILED = "failed"

# Run states, active stages in execution order
PIPELINE_STATES = {
    IDLE: "No run in progress",
    PROMPTS: "Generating image prompts from the concept",
    ASSETS: "Generating the image batch",
    SCRIPT: "Writing the voiceover script",
    SPEECH: "Synthesizing the voiceover",
    VIDEO: "Rendering the talking-avatar video",
    DONE: "Run finished successfully",
    FAILED: "Run stopped at a failed stage",
}

STAGE_ORDER: tuple[str, ...] = (PROMPTS, ASSETS, SCRIPT, SPEECH, VIDEO)

# Run field written by each stage
STAGE_OUTPUTS = {
    PROMPTS: "prompts",
    ASSETS: "asset_job",
    SCRIPT: "script",
    SPEECH: "speech_url",
    VIDEO: "video_url",
}


def stage_index(stage: str) -> int:
    """Position of a stage in STAGE_ORDER.

    Raises:
        ValueError: If the name is not an executable stage.
    """
    try:
        return STAGE_ORDER.index(stage)
    except ValueError:
        raise ValueError(f"Unknown stage: {stage!r}. Stages: {list(STAGE_ORDER)}") from None


def stages_from(stage: str) -> tuple[str, ...]:
    """Stages to execute when starting at the given stage."""
    return STAGE_ORDER[stage_index(stage):]


def can_resume(current_stage: str, failed_stage: Optional[str]) -> bool:
    """Check if a run can resume.

    Only a failed run that remembers its failed stage is resumable.
    """
    return current_stage == FAILED and failed_stage in STAGE_ORDER


def get_resume_step(
    current_stage: str,
    failed_stage: Optional[str],
    resume_from: Optional[str],
) -> str:
    """Determine which stage a run starts at.

    Args:
        current_stage: The run's current stage before the new attempt.
        failed_stage: Last stage that failed, if any.
        resume_from: Requested resume point, or None for a fresh run.

    Returns:
        The first stage to execute.

    Raises:
        InvalidResumeError: If resume_from is not exactly the failed stage.

    Examples:
        >>> get_resume_step("done", None, None)
        'prompts'
        >>> get_resume_step("failed", "video", "video")
        'video'
    """
    if resume_from is None:
        return STAGE_ORDER[0]

    if not can_resume(current_stage, failed_stage):
        raise InvalidResumeError(
            f"Cannot resume from {resume_from!r}: run is {current_stage!r}, not failed"
        )
    if resume_from != failed_stage:
        raise InvalidResumeError(
            f"Cannot resume from {resume_from!r}: last failed stage is {failed_stage!r}"
        )
    return resume_from
