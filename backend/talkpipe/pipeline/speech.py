"""Text-to-speech stage."""

import logging
import re

from talkpipe.errors import PipelineError, PipelineValidationError
from talkpipe.pipeline.context import StageContext
from talkpipe.schemas.machine import Run

logger = logging.getLogger(__name__)

_VOICE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_voice_id(voice_id: str, max_length: int) -> None:
    if not voice_id:
        raise PipelineValidationError("Select a voice for the voiceover")
    if len(voice_id) > max_length or not _VOICE_ID_PATTERN.match(voice_id):
        raise PipelineValidationError("Invalid voice ID format")


async def synthesize_speech(ctx: StageContext, run: Run, epoch: int) -> str:
    """Voice the run's script; returns the audio URL."""
    voice = run.inputs.voice
    validate_voice_id(voice.id if voice else "", ctx.limits.voice_id_max_length)

    text = run.script
    if not text:
        raise PipelineValidationError("Script is required before text-to-speech")
    if len(text) > ctx.limits.max_speech_chars:
        raise PipelineValidationError(
            f"Text too long (max {ctx.limits.max_speech_chars} characters)"
        )

    response = await ctx.client.synthesize_speech(text, voice.id)
    ctx.cancellation.check(epoch)

    if not response.audio_url:
        raise PipelineError("TTS failed")

    logger.info(f"Speech ready: {response.audio_url}")
    return response.audio_url
