"""Main pipeline orchestrator with resumable stage execution.

Coordinates the five generation stages with:
- Forward-only stage transitions published through RunStateStore
- Resume from exactly the stage that failed, keeping earlier outputs
- Speculative script/speech generation while the image batch runs
- Epoch-based cancellation of everything belonging to an older run
- Bounded retry of the video stage only
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from talkpipe.config import Settings
from talkpipe.errors import (
    PipelineCancelled,
    PipelineValidationError,
    error_info_from_exception,
)
from talkpipe.orchestrator.cancellation import CancellationController
from talkpipe.orchestrator.poller import JobPoller
from talkpipe.orchestrator.retry import RetryPolicy
from talkpipe.orchestrator.run_state import RunStateStore
from talkpipe.orchestrator.state import (
    ASSETS,
    FAILED,
    PROMPTS,
    SCRIPT,
    SPEECH,
    VIDEO,
    get_resume_step,
    stages_from,
)
from talkpipe.pipeline.assets import generate_assets
from talkpipe.pipeline.context import StageContext, StageExecutor
from talkpipe.pipeline.prompts import generate_prompts
from talkpipe.pipeline.script import generate_script
from talkpipe.pipeline.speech import synthesize_speech
from talkpipe.pipeline.video import create_video
from talkpipe.schemas.machine import Run, RunInputs

logger = logging.getLogger(__name__)

STAGE_EXECUTORS: dict[str, StageExecutor] = {
    PROMPTS: generate_prompts,
    ASSETS: generate_assets,
    SCRIPT: generate_script,
    SPEECH: synthesize_speech,
    VIDEO: create_video,
}


def validate_inputs(inputs: RunInputs) -> None:
    """Reject a run before any network call is made.

    Raises:
        PipelineValidationError: With the first problem found.
    """
    if not inputs.concept.strip():
        raise PipelineValidationError("Enter a concept to get started")
    if inputs.avatar is None or not inputs.avatar.url:
        raise PipelineValidationError("Select an avatar for the video")
    if inputs.voice is None or not inputs.voice.id:
        raise PipelineValidationError("Select a voice for the voiceover")


def _discard(task: asyncio.Task) -> None:
    """Abort a speculative task the run no longer needs."""
    if not task.done():
        task.cancel()
        return
    if not task.cancelled():
        # Mark the exception retrieved; it belongs to an abandoned stage
        task.exception()


class MachineOrchestrator:
    """Sequences the stage executors over one observable run.

    Usage:
        orchestrator = MachineOrchestrator(client)
        orchestrator.subscribe(render)
        await orchestrator.run(inputs)
        if orchestrator.state.current_stage == "failed":
            await orchestrator.run(inputs, resume_from=orchestrator.state.failed_stage)
    """

    def __init__(
        self,
        client,
        *,
        app_settings: Optional[Settings] = None,
        store: Optional[RunStateStore] = None,
        cancellation: Optional[CancellationController] = None,
        executors: Optional[dict[str, StageExecutor]] = None,
    ):
        if app_settings is None:
            from talkpipe.config import settings as app_settings

        self.client = client
        self.store = store or RunStateStore()
        self.cancellation = cancellation or CancellationController()
        self.executors = {**STAGE_EXECUTORS, **(executors or {})}
        self.video_retry = RetryPolicy(
            app_settings.pipeline.video_max_attempts,
            app_settings.pipeline.video_retry_backoff,
            name=VIDEO,
        )
        self.context = StageContext(
            client=client,
            cancellation=self.cancellation,
            poller=JobPoller(client, self.cancellation, interval=app_settings.pipeline.poll_interval),
            limits=app_settings.limits,
            pipeline=app_settings.pipeline,
            publish_batch=self.store.publish_batch,
        )
        self._task: Optional[asyncio.Task] = None

    # -- observation -------------------------------------------------------

    @property
    def state(self) -> Run:
        return self.store.snapshot()

    def subscribe(self, callback: Callable[[Run], None]) -> Callable[[], None]:
        return self.store.subscribe(callback)

    # -- control -----------------------------------------------------------

    def start(self, inputs: Optional[RunInputs] = None, resume_from: Optional[str] = None) -> asyncio.Task:
        """Begin a run in the background and return its task.

        Without resume_from every previous output is discarded. With it, the
        value must equal the last failed stage; outputs before it are kept.

        Raises:
            InvalidResumeError: If resume_from is not the last failed stage.
            PipelineValidationError: If inputs are incomplete (run stays idle).
        """
        current = self.store.run
        first_stage = get_resume_step(current.current_stage, current.failed_stage, resume_from)

        if inputs is None:
            inputs = current.inputs
        if inputs is None:
            raise ValueError("No inputs to run with")

        try:
            validate_inputs(inputs)
        except PipelineValidationError as e:
            logger.info(f"Run rejected: {e}")
            self.store.set_error(error_info_from_exception(e))
            raise

        epoch = self.cancellation.bump()
        self.store.start(inputs, epoch, first_stage, resume=resume_from is not None)
        logger.info(f"Run {self.store.run.id} (epoch {epoch}) starting at {first_stage}")

        self._task = self.cancellation.spawn(
            self._execute(epoch, first_stage), epoch, name=f"machine-run-{epoch}",
        )
        return self._task

    async def run(self, inputs: Optional[RunInputs] = None, resume_from: Optional[str] = None) -> Run:
        """Start a run and wait until it finishes, fails or is superseded."""
        task = self.start(inputs, resume_from)
        await asyncio.wait({task})
        if not task.cancelled():
            task.result()
        return self.store.snapshot()

    def resume(self, stage: Optional[str] = None) -> asyncio.Task:
        """Restart the last run from its failed stage with the same inputs."""
        return self.start(None, stage or self.store.run.failed_stage)

    def cancel(self) -> None:
        """Abort the current run and return to idle with outputs cleared."""
        epoch = self.cancellation.bump()
        self.store.clear(epoch, keep_inputs=True)
        logger.info(f"Run cancelled (epoch now {epoch})")

    def reset(self) -> None:
        """Cancel and forget inputs, error and failed stage."""
        epoch = self.cancellation.bump()
        self.store.clear(epoch, keep_inputs=False)

    def dismiss_error(self) -> None:
        self.store.dismiss_error()

    # -- execution ---------------------------------------------------------

    async def _run_stage(self, stage: str, epoch: int, view: Optional[Run] = None):
        executor = self.executors[stage]
        run = view if view is not None else self.store.snapshot()
        if stage == VIDEO:
            return await self.video_retry.call(executor, self.context, run, epoch)
        return await executor(self.context, run, epoch)

    async def _speculative_speech(self, script_task: asyncio.Task, epoch: int) -> str:
        script = await script_task
        self.cancellation.check(epoch)
        view = self.store.run.model_copy(update={"script": script})
        return await self._run_stage(SPEECH, epoch, view)

    def _start_speculative(self, epoch: int, first_stage: str) -> dict[str, asyncio.Task]:
        """Launch script and speech ahead of the asset batch.

        Results are joined only when the run reaches those stages, so a
        failure is attributed to the stage that produced it.
        """
        if self.store.run.script or first_stage == SCRIPT:
            return {}
        script_task = self.cancellation.spawn(
            self._run_stage(SCRIPT, epoch), epoch, name=f"machine-script-{epoch}",
        )
        speech_task = self.cancellation.spawn(
            self._speculative_speech(script_task, epoch), epoch, name=f"machine-speech-{epoch}",
        )
        logger.info("Script and speech started ahead of the image batch")
        return {SCRIPT: script_task, SPEECH: speech_task}

    async def _execute(self, epoch: int, first_stage: str) -> None:
        """Run stages from first_stage to the end of the pipeline.

        Stage failures are recorded on the run and never re-raised; a
        superseded epoch ends the run silently.
        """
        speculative: dict[str, asyncio.Task] = {}
        stage = first_stage
        pipeline_start = time.monotonic()

        try:
            for stage in stages_from(first_stage):
                self.cancellation.check(epoch)
                self.store.begin_stage(stage)
                step_start = time.monotonic()
                logger.info(f"Starting {stage} stage")

                if stage == ASSETS:
                    speculative = self._start_speculative(epoch, first_stage)

                if stage in speculative:
                    output = await speculative.pop(stage)
                else:
                    output = await self._run_stage(stage, epoch)
                self.cancellation.check(epoch)

                step_duration = time.monotonic() - step_start
                self.store.record_output(stage, output, step_duration)
                logger.info(f"{stage} stage completed in {step_duration:.2f}s")

            self.store.finish()
            logger.info(f"Run completed successfully in {time.monotonic() - pipeline_start:.2f}s")

        except PipelineCancelled:
            logger.info(f"Run superseded during {stage} stage (epoch {epoch})")

        except Exception as e:
            if not self.cancellation.is_current(epoch):
                logger.info(f"Discarding {stage} failure from superseded epoch {epoch}: {e}")
                return
            logger.error(f"Run failed at {stage} stage: {type(e).__name__}: {e}")
            self.store.fail(stage, error_info_from_exception(e, stage))

        finally:
            for task in speculative.values():
                _discard(task)

    @property
    def is_failed(self) -> bool:
        return self.store.run.current_stage == FAILED
