"""Observable run state owned by the orchestrator.

The store holds the single live Run and exposes narrow mutators. Every
mutation notifies subscribers with a deep-copied snapshot, so observers
(CLI, API, tests) can never mutate the orchestrator's state.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from talkpipe.orchestrator.state import (
    DONE,
    FAILED,
    STAGE_OUTPUTS,
    stages_from,
)
from talkpipe.schemas.machine import BatchJob, ErrorInfo, Run, RunInputs

logger = logging.getLogger(__name__)

Subscriber = Callable[[Run], None]


def _empty_output(field: str) -> Any:
    """Fresh default value for a stage output field."""
    return Run.model_fields[field].get_default(call_default_factory=True)


class RunStateStore:
    """Single mutable Run plus subscriber notification."""

    def __init__(self) -> None:
        self._run = Run()
        self._subscribers: list[Subscriber] = []

    @property
    def run(self) -> Run:
        """Read view of the live run. Callers must not mutate it."""
        return self._run

    def snapshot(self) -> Run:
        return self._run.model_copy(deep=True)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback for every change; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            callback(snapshot)

    # -- run lifecycle -----------------------------------------------------

    def start(self, inputs: RunInputs, epoch: int, first_stage: str, *, resume: bool = False) -> None:
        """Prepare the run for execution starting at first_stage.

        A fresh run gets a new id and loses every output; a resume keeps the
        id and the outputs of stages before first_stage.
        """
        run = self._run
        if not resume:
            run = Run(inputs=inputs, started_at=datetime.now(timezone.utc))
        else:
            for stage in stages_from(first_stage):
                setattr(run, STAGE_OUTPUTS[stage], _empty_output(STAGE_OUTPUTS[stage]))
                run.stage_timings.pop(stage, None)
            run.inputs = inputs
        run.cancellation_epoch = epoch
        run.current_stage = first_stage
        run.error = None
        self._run = run
        self._publish()

    def begin_stage(self, stage: str) -> None:
        self._run.current_stage = stage
        self._publish()

    def record_output(self, stage: str, value: Any, duration: Optional[float] = None) -> None:
        """Write the output owned by stage, replacing any earlier value wholesale."""
        setattr(self._run, STAGE_OUTPUTS[stage], value)
        if duration is not None:
            self._run.stage_timings[stage] = duration
        self._publish()

    def publish_batch(self, job: BatchJob) -> None:
        """Intermediate asset job snapshot, visible before the stage completes."""
        self._run.asset_job = job
        self._publish()

    def fail(self, stage: str, error: ErrorInfo) -> None:
        self._run.failed_stage = stage
        self._run.current_stage = FAILED
        self._run.error = error
        self._publish()

    def finish(self) -> None:
        self._run.current_stage = DONE
        self._publish()

    def set_error(self, error: Optional[ErrorInfo]) -> None:
        self._run.error = error
        self._publish()

    def dismiss_error(self) -> None:
        self.set_error(None)

    def clear(self, epoch: int, *, keep_inputs: bool = True) -> None:
        """Return to Idle with every stage output cleared."""
        previous = self._run
        run = Run(cancellation_epoch=epoch)
        if keep_inputs:
            run.inputs = previous.inputs
            run.failed_stage = previous.failed_stage
            run.error = previous.error
        self._run = run
        logger.debug(f"Run state cleared (epoch {epoch}, keep_inputs={keep_inputs})")
        self._publish()