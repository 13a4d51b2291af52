"""Prompt synthesis stage.

Sends the concept to the prompt service and returns the generated image
prompts. The requested count is clamped to the configured bounds.
"""

import logging

from talkpipe.errors import PipelineError, PipelineValidationError
from talkpipe.pipeline.context import StageContext
from talkpipe.schemas.machine import GeneratedPrompt, Run

logger = logging.getLogger(__name__)


def clamp_prompt_count(count: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, count))


async def generate_prompts(ctx: StageContext, run: Run, epoch: int) -> list[GeneratedPrompt]:
    """Generate image prompts for the run's concept.

    Raises:
        PipelineValidationError: If the concept is empty or too long.
        PipelineError: If the service returns no prompts.
    """
    concept = run.inputs.concept.strip()
    if not concept:
        raise PipelineValidationError("Enter a concept to get started")
    if len(concept) > ctx.limits.concept_max_length:
        raise PipelineValidationError(
            f"Concept is too long (max {ctx.limits.concept_max_length} characters)"
        )

    count = clamp_prompt_count(
        run.inputs.prompt_count,
        ctx.limits.prompt_count_min,
        ctx.limits.prompt_count_max,
    )
    if count != run.inputs.prompt_count:
        logger.info(f"Prompt count {run.inputs.prompt_count} clamped to {count}")

    prompts = await ctx.client.generate_prompts(concept, count)
    ctx.cancellation.check(epoch)

    if not prompts:
        raise PipelineError("Prompt generation returned no prompts")

    logger.info(f"Generated {len(prompts)} prompts for {concept!r}")
    return list(prompts)
