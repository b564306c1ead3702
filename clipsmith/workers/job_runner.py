"""Background job runner using asyncio."""
import asyncio
import logging
import traceback
from typing import Dict

logger = logging.getLogger(__name__)


class JobRunner:
    """Runs each job's orchestrator loop as its own asyncio task."""

    def __init__(self, orchestrator):
        self.orchestrator = orchestrator
        self._running_jobs: Dict[str, asyncio.Task] = {}

    async def start_job(self, job_id: str) -> bool:
        """
        Start processing a job in the background.

        Args:
            job_id: Database ID of the job

        Returns:
            True if a new task was started, False if the job is already running
        """
        if job_id in self._running_jobs:
            logger.warning(f"Job {job_id} is already running")
            return False

        task = asyncio.create_task(self._run_job(job_id))
        self._running_jobs[job_id] = task
        return True

    async def _run_job(self, job_id: str):
        """Run a job to completion."""
        try:
            job = await self.orchestrator.run(job_id)
            logger.info(f"Job {job_id} finished with status {job.status.value}")

        except asyncio.CancelledError:
            # Left queued/processing; resumed on the next startup
            logger.info(f"Job {job_id} interrupted by shutdown")
            raise

        except Exception as e:
            # The orchestrator records stage failures itself; this is a
            # failure to reach the database at all
            logger.error(f"Job {job_id} runner crashed: {e}\n{traceback.format_exc()}")

        finally:
            self._running_jobs.pop(job_id, None)

    async def cancel_job(self, job_id: str) -> bool:
        """Request cancellation; the job stops at its next stage boundary."""
        cancelled = await self.orchestrator.cancel(job_id)
        if cancelled and not self.is_job_running(job_id):
            # Nothing is driving it, so run it once to record the cancellation
            await self.start_job(job_id)
        return cancelled

    def is_job_running(self, job_id: str) -> bool:
        """Check if a job is currently running."""
        return job_id in self._running_jobs

    async def shutdown(self):
        """Cancel all running jobs."""
        for task in self._running_jobs.values():
            task.cancel()

        if self._running_jobs:
            await asyncio.gather(
                *self._running_jobs.values(),
                return_exceptions=True
            )

        self._running_jobs.clear()
