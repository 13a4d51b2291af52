"""Shared fixtures: an in-memory stand-in for the generation API.

FakeClient implements the MachineClient surface the stage executors use.
Each method returns the next outcome from its queue (the last outcome is
sticky); an outcome that is an exception is raised instead of returned.
Hooks run before the outcome is produced, which lets a test cancel the
run mid-request or block a request until it is aborted.
"""

import asyncio
from typing import Any, Awaitable, Callable

import pytest

from talkpipe.config import PipelineConfig, Settings
from talkpipe.schemas.machine import (
    Avatar,
    BatchJob,
    BatchSubmitResponse,
    GeneratedPrompt,
    JobStatus,
    LipsyncResponse,
    ReferenceImage,
    RunInputs,
    ScriptResponse,
    SpeechResponse,
    Voice,
)

Hook = Callable[[int], Awaitable[None]]


def completed_job(job_id: str = "job-1", total: int = 6) -> BatchJob:
    return BatchJob(job_id=job_id, status=JobStatus.COMPLETED, total=total, completed=total, progress=100)


class FakeClient:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.hooks: dict[str, Hook] = {}
        self.outcomes: dict[str, list[Any]] = {
            "generate_prompts": [[GeneratedPrompt(style=f"look {i}") for i in range(6)]],
            "fetch_asset": [ReferenceImage(filename="avatar.png", content=b"\x89PNG", content_type="image/png")],
            "submit_batch": [BatchSubmitResponse(job_id="job-1", status=JobStatus.QUEUED, total_images=6)],
            "get_batch_status": [
                BatchJob(job_id="job-1", status=JobStatus.RUNNING, total=6, completed=3, progress=50),
                completed_job(),
            ],
            "generate_script": [ScriptResponse(script="Boo! Welcome to Halloween night.", word_count=5)],
            "synthesize_speech": [SpeechResponse(audio_url="/audio/voiceover.mp3")],
            "create_lipsync": [LipsyncResponse(success=True, local_path="/videos/halloween.mp4")],
        }
        self.requests: dict[str, list[dict[str, Any]]] = {}

    def set(self, name: str, *outcomes: Any) -> None:
        self.outcomes[name] = list(outcomes)

    def count(self, name: str) -> int:
        return self.calls.count(name)

    async def _call(self, name: str, **kwargs: Any) -> Any:
        self.calls.append(name)
        self.requests.setdefault(name, []).append(kwargs)
        hook = self.hooks.get(name)
        if hook is not None:
            await hook(self.count(name))
        queue = self.outcomes[name]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def generate_prompts(self, concept, count):
        return await self._call("generate_prompts", concept=concept, count=count)

    async def fetch_asset(self, url):
        return await self._call("fetch_asset", url=url)

    async def submit_batch(self, **kwargs):
        return await self._call("submit_batch", **kwargs)

    async def get_batch_status(self, job_id):
        return await self._call("get_batch_status", job_id=job_id)

    async def generate_script(self, concept, duration, tone):
        return await self._call("generate_script", concept=concept, duration=duration, tone=tone)

    async def synthesize_speech(self, text, voice_id):
        return await self._call("synthesize_speech", text=text, voice_id=voice_id)

    async def create_lipsync(self, image_url, audio_url):
        return await self._call("create_lipsync", image_url=image_url, audio_url=audio_url)


async def block_forever(_: int) -> None:
    await asyncio.Event().wait()


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with no poll interval and no retry backoff."""
    return Settings(pipeline=PipelineConfig(poll_interval=0, video_retry_backoff=0))


@pytest.fixture
def halloween_inputs() -> RunInputs:
    return RunInputs(
        concept="Halloween",
        prompt_count=6,
        script_duration=30,
        voice=Voice(id="rachel_01", name="Rachel"),
        avatar=Avatar(name="Maya", filename="maya.png", url="/avatars/maya.png"),
    )
