"""Voiceover script stage."""

import logging

from talkpipe.errors import PipelineError, PipelineValidationError
from talkpipe.pipeline.context import StageContext
from talkpipe.schemas.machine import Run

logger = logging.getLogger(__name__)


async def generate_script(ctx: StageContext, run: Run, epoch: int) -> str:
    """Write a voiceover script for the concept at the requested duration and tone."""
    inputs = run.inputs
    concept = inputs.concept.strip()
    if not concept:
        raise PipelineValidationError("Enter a concept to get started")
    if len(concept) > ctx.limits.script_concept_max_length:
        raise PipelineValidationError(
            f"Concept too long (max {ctx.limits.script_concept_max_length} characters)"
        )

    lo, hi = ctx.limits.script_duration_min, ctx.limits.script_duration_max
    if not lo <= inputs.script_duration <= hi:
        raise PipelineValidationError(f"Duration must be between {lo} and {hi} seconds")

    response = await ctx.client.generate_script(concept, inputs.script_duration, inputs.script_tone)
    ctx.cancellation.check(epoch)

    script = response.script.strip()
    if not script:
        raise PipelineError("Script generation returned empty result")

    words = response.word_count or len(script.split())
    logger.info(f"Script ready: {words} words for a {inputs.script_duration}s voiceover")
    return script
