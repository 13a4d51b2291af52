"""Talking-avatar (lipsync) video stage.

One call of this executor is one attempt; the orchestrator wraps it in
the video RetryPolicy.
"""

import logging

from talkpipe.errors import PipelineError, PipelineValidationError
from talkpipe.pipeline.context import StageContext
from talkpipe.schemas.machine import Run

logger = logging.getLogger(__name__)


async def create_video(ctx: StageContext, run: Run, epoch: int) -> str:
    """Lipsync the avatar image to the synthesized speech.

    Returns:
        The local output path when the service saved one, else the remote video URL.
    """
    avatar = run.inputs.avatar
    if avatar is None or not avatar.url:
        raise PipelineValidationError("Select an avatar for the video")
    if not run.speech_url:
        raise PipelineValidationError("Audio URL is required")

    ctx.cancellation.check(epoch)
    response = await ctx.client.create_lipsync(avatar.url, run.speech_url)
    ctx.cancellation.check(epoch)

    video_url = response.local_path if response.success and response.local_path else response.video_url
    if not video_url:
        raise PipelineError("Lipsync video failed")

    logger.info(f"Video ready: {video_url}")
    return video_url
