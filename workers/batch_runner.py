"""
Sequential batch downloader.

- BatchRunner.load()   parses an identifier list into pending jobs.
- BatchRunner.run()    drives the gateway for each job, one at a time, with a
                       fixed pacing delay between jobs.
- BatchRunner.clear()  discards the whole job set.

Observer signature (optional, awaited after every job transition):
    async def on_update(job: Job) -> None

The gateway is anything with an ``async fetch_document(identifier)`` that
returns a DocumentPayload or raises GatewayError: DocumentGateway in-process,
or ProxyClient against a running gateway.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional

from gateway.upstream import DocumentPayload, GatewayError
from models.identifier import parse_identifiers
from models.job import (
    BatchSummary,
    Job,
    mark_completed,
    mark_downloading,
    mark_error,
)

logger = logging.getLogger(__name__)

DOWNLOAD_DIR: str = os.getenv("DOWNLOAD_DIR", "downloads")
BATCH_DELAY_SECONDS: float = int(os.getenv("BATCH_DELAY_MS", "800")) / 1000

Observer = Callable[[Job], Awaitable[None]]


class BatchError(Exception):
    """Base class for batch-level refusals."""

    message = "batch error"

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class BatchBusy(BatchError):
    """Raised when an operation needs the runner idle but a batch is processing."""

    message = "batch in progress"


class NoValidIdentifiers(BatchError):
    message = "no valid identifiers"


def save_document(payload: DocumentPayload, download_dir: Path) -> Path:
    download_dir.mkdir(parents=True, exist_ok=True)
    path = download_dir / payload.filename
    path.write_bytes(payload.content)
    return path


class BatchRunner:
    """
    Owns one job set and processes it strictly in submission order.

    Only the runner's own loop mutates the job list, and only one batch can
    be processing per instance, so no locking is needed. A started batch
    runs to completion; there is no cancellation.
    """

    def __init__(
        self,
        gateway,
        download_dir: Optional[Path] = None,
        delay: float = BATCH_DELAY_SECONDS,
        on_update: Optional[Observer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.gateway = gateway
        self.download_dir = Path(download_dir or DOWNLOAD_DIR)
        self.delay = delay
        self.on_update = on_update
        self._sleep = sleep
        self._jobs: list[Job] = []
        self._processing = False

    @property
    def jobs(self) -> list[Job]:
        return list(self._jobs)

    @property
    def processing(self) -> bool:
        return self._processing

    def summary(self) -> BatchSummary:
        return BatchSummary.from_jobs(self._jobs, self._processing)

    # ── Job set ──────────────────────────────────────────────────────────────

    def load(self, text: str) -> list[Job]:
        """Replace the job set with one pending job per valid identifier in *text*."""
        if self._processing:
            raise BatchBusy()

        identifiers = parse_identifiers(text)
        if not identifiers:
            raise NoValidIdentifiers()

        self._jobs = [Job.create(identifier) for identifier in identifiers]
        logger.info("Batch loaded", extra={"jobs": len(self._jobs)})
        return self.jobs

    def clear(self) -> None:
        if self._processing:
            raise BatchBusy()
        self._jobs = []
        logger.info("Batch cleared")

    # ── Processing ───────────────────────────────────────────────────────────

    def begin(self) -> None:
        """Claim the runner for a batch; process() must follow."""
        if self._processing:
            raise BatchBusy()
        self._processing = True

    async def run(self) -> BatchSummary:
        self.begin()
        return await self.process()

    async def process(self) -> BatchSummary:
        """Work through the job set claimed by begin()."""
        if not self._processing:
            raise RuntimeError("process() called without begin()")
        logger.info("Batch started", extra={"jobs": len(self._jobs)})
        try:
            last = len(self._jobs) - 1
            for index in range(len(self._jobs)):
                await self._process_job(index)
                if index < last:
                    await self._sleep(self.delay)
        finally:
            self._processing = False

        summary = self.summary()
        logger.info(
            "Batch finished",
            extra={"completed": summary.completed, "error": summary.error},
        )
        return summary

    async def start(self, text: str) -> BatchSummary:
        self.load(text)
        return await self.run()

    async def _process_job(self, index: int) -> None:
        job = await self._transition(index, mark_downloading(self._jobs[index]))

        try:
            payload = await self.gateway.fetch_document(job.identifier)
        except GatewayError as exc:
            logger.warning(
                "Job failed",
                extra={"job_id": job.id, "identifier": job.identifier, "error": str(exc)},
            )
            await self._transition(index, mark_error(job, str(exc)))
            return
        except Exception as exc:
            logger.error(
                "Job crashed",
                extra={"job_id": job.id, "identifier": job.identifier, "error": str(exc)},
                exc_info=True,
            )
            await self._transition(index, mark_error(job, "unexpected error"))
            return

        try:
            path = save_document(payload, self.download_dir)
        except OSError as exc:
            logger.error(
                "Could not save document",
                extra={"job_id": job.id, "identifier": job.identifier, "error": str(exc)},
            )
            await self._transition(index, mark_error(job, "could not save file"))
            return

        logger.info(
            "Job completed",
            extra={"job_id": job.id, "identifier": job.identifier, "path": str(path)},
        )
        await self._transition(index, mark_completed(job, str(path)))

    async def _transition(self, index: int, job: Job) -> Job:
        self._jobs[index] = job
        await self._fire(job)
        return job

    async def _fire(self, job: Job) -> None:
        if self.on_update is None:
            return
        try:
            await self.on_update(job)
        except Exception as exc:
            logger.error("Observer error", extra={"job_id": job.id, "error": str(exc)})
