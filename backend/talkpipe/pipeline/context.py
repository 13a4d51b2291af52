"""Shared context handed to every stage executor.

Executors receive a read view of the run plus this context; the only state
they can write directly is the asset job progress snapshot.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from talkpipe.config import LimitsConfig, PipelineConfig
from talkpipe.orchestrator.cancellation import CancellationController
from talkpipe.orchestrator.poller import JobPoller
from talkpipe.schemas.machine import BatchJob, Run


@dataclass
class StageContext:
    client: Any
    cancellation: CancellationController
    poller: JobPoller
    limits: LimitsConfig
    pipeline: PipelineConfig
    publish_batch: Callable[[BatchJob], None]


class StageExecutor(Protocol):
    """Turns run state into a request and the response into stage output."""

    def __call__(self, ctx: StageContext, run: Run, epoch: int) -> Awaitable[Any]:
        ...
