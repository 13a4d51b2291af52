"""Batched asset (image) generation stage.

Fetches the selected avatar as binary, submits it together with the user's
reference images and the generated prompts as one multipart batch request,
then long-polls the batch job until it reaches a terminal status.

The avatar is always the first reference image; user references follow,
capped at the configured maximum.
"""

import logging

from talkpipe.errors import JobFailedError, PipelineValidationError
from talkpipe.pipeline.context import StageContext
from talkpipe.schemas.machine import BatchJob, JobStatus, Run

logger = logging.getLogger(__name__)


async def generate_assets(ctx: StageContext, run: Run, epoch: int) -> BatchJob:
    """Submit the image batch and wait for it to finish.

    Returns:
        The terminal BatchJob snapshot (status completed).

    Raises:
        PipelineValidationError: If no avatar is selected or no prompts exist.
        JobFailedError: If the batch job reports failed.
        LostConnectionError: If status polling loses the server.
    """
    inputs = run.inputs
    if inputs.avatar is None or not inputs.avatar.url:
        raise PipelineValidationError("Select an avatar for the video")
    if not run.prompts:
        raise PipelineValidationError("Generate prompts before generating images")

    avatar_image = await ctx.client.fetch_asset(inputs.avatar.url)
    ctx.cancellation.check(epoch)

    max_refs = ctx.limits.max_reference_images
    user_refs = list(inputs.reference_images[:max_refs])
    if len(inputs.reference_images) > max_refs:
        logger.warning(
            f"Dropping {len(inputs.reference_images) - max_refs} reference image(s) "
            f"over the limit of {max_refs}"
        )

    submitted = await ctx.client.submit_batch(
        concept=inputs.concept.strip(),
        prompts=run.prompts,
        reference_images=[avatar_image, *user_refs],
        aspect_ratio=ctx.pipeline.aspect_ratio,
        resolution=ctx.pipeline.resolution,
        output_format=ctx.pipeline.output_format,
        images_per_prompt=ctx.pipeline.images_per_prompt,
    )
    ctx.cancellation.check(epoch)

    job = submitted.to_job()
    ctx.publish_batch(job)

    result = await ctx.poller.poll(
        job.job_id,
        epoch,
        initial=job,
        on_progress=ctx.publish_batch,
    )
    if result.status == JobStatus.FAILED:
        raise JobFailedError(result.job_id)

    logger.info(f"Batch {result.job_id}: {result.completed}/{result.total} images ready")
    return result
