"""Long-poll driver for the asynchronous image batch job.

Queries the job status endpoint on a fixed interval until the job reaches
a terminal status, the run is cancelled, or the transport fails three
times in a row. Every successful poll publishes a progress snapshot.
"""

import asyncio
import logging
from typing import Callable, Optional

from talkpipe.errors import ConnectivityError, LostConnectionError, ServiceError
from talkpipe.orchestrator.cancellation import CancellationController
from talkpipe.schemas.machine import BatchJob

logger = logging.getLogger(__name__)

# Fixed fault tolerance for status reads
MAX_CONSECUTIVE_FAILURES = 3

ProgressCallback = Callable[[BatchJob], None]


class JobPoller:
    """Polls a batch job to a terminal status.

    Only transport-level failures (non-2xx responses and connection errors)
    count toward the limit; a successful read resets the counter.
    """

    def __init__(
        self,
        client,
        cancellation: CancellationController,
        *,
        interval: float = 2.0,
    ):
        self.client = client
        self.cancellation = cancellation
        self.interval = interval

    async def poll(
        self,
        job_id: str,
        epoch: int,
        *,
        initial: Optional[BatchJob] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchJob:
        """Poll until the job is completed or failed.

        Args:
            job_id: Batch job identifier returned by the submit call.
            epoch: Cancellation epoch captured by the calling stage.
            initial: Snapshot from the submit response, merged into later ones.
            on_progress: Called with every merged snapshot.

        Returns:
            The terminal BatchJob snapshot.

        Raises:
            PipelineCancelled: If the epoch advances while polling.
            LostConnectionError: After MAX_CONSECUTIVE_FAILURES failed reads in a row.
        """
        latest = initial
        failures = 0
        polls = 0

        while True:
            self.cancellation.check(epoch)
            polls += 1
            try:
                snapshot = await self.client.get_batch_status(job_id)
            except (ServiceError, ConnectivityError) as e:
                self.cancellation.check(epoch)
                failures += 1
                logger.warning(
                    "Job %s: status poll %d failed (%d/%d consecutive): %s",
                    job_id, polls, failures, MAX_CONSECUTIVE_FAILURES, e,
                )
                if failures >= MAX_CONSECUTIVE_FAILURES:
                    raise LostConnectionError(job_id, failures) from e
            else:
                self.cancellation.check(epoch)
                failures = 0
                latest = snapshot if latest is None else latest.merge(snapshot)
                logger.debug(
                    "Job %s: poll %d status=%s %d/%d",
                    job_id, polls, latest.status.value, latest.completed, latest.total,
                )
                if on_progress is not None:
                    on_progress(latest)
                if latest.status.is_terminal:
                    logger.info(
                        f"Job {job_id}: {latest.status.value} after {polls} polls "
                        f"({latest.completed}/{latest.total} images)"
                    )
                    return latest

            await asyncio.sleep(self.interval)
