"""In-process queue that runs the document pipeline outside the request.

Upload and reprocess handlers enqueue a document id and return at once.
A single worker task started in the app lifespan drains the queue,
retrying a job that raised unexpectedly up to ``max_attempts`` times.
A job waiting out its retry delay still counts as unfinished, so
``join`` only returns once it has run again.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeflow.ai.processor import DocumentProcessor
from tradeflow.models.document import Document, DocumentStatus
from tradeflow.workflow.errors import NotFoundError

logger = logging.getLogger("tradeflow.worker")


@dataclass
class ProcessingJob:
    document_id: uuid.UUID
    reprocess: bool = False
    attempts: int = 0


class DocumentProcessingQueue:
    def __init__(
        self,
        processor: DocumentProcessor,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
    ):
        self.processor = processor
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._queue: asyncio.Queue[ProcessingJob] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._retry_handles: set[asyncio.TimerHandle] = set()
        self.stats = {"enqueued": 0, "succeeded": 0, "failed": 0, "retried": 0}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="document-processing-worker")
            logger.info("Document processing worker started")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        for handle in self._retry_handles:
            handle.cancel()
            self._queue.task_done()
        if self._retry_handles:
            logger.info("Dropped %d pending retries", len(self._retry_handles))
        self._retry_handles.clear()
        logger.info("Document processing worker stopped")

    def enqueue(self, document_id: uuid.UUID, reprocess: bool = False) -> None:
        self._queue.put_nowait(ProcessingJob(document_id=document_id, reprocess=reprocess))
        self.stats["enqueued"] += 1
        logger.info("Queued document %s (reprocess=%s)", document_id, reprocess)

    async def join(self) -> None:
        """Wait until every queued job, including scheduled retries, has been handled."""
        await self._queue.join()

    def status(self) -> dict:
        return {
            "running": self.running,
            "pending": self._queue.qsize(),
            "retrying": len(self._retry_handles),
            **self.stats,
        }

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                retry = await self.handle(job)
            except BaseException:
                self._queue.task_done()
                raise
            if retry:
                self._schedule_retry(job)
            else:
                self._queue.task_done()

    async def handle(self, job: ProcessingJob) -> bool:
        """Run one job. Returns True when it failed and should be retried."""
        job.attempts += 1
        try:
            async with self.session_factory() as session:
                if job.reprocess:
                    await self.processor.reprocess_document(session, job.document_id)
                else:
                    await self.processor.process_document(session, job.document_id)
            self.stats["succeeded"] += 1
        except NotFoundError:
            self.stats["failed"] += 1
            logger.warning("Document %s no longer exists, dropping job", job.document_id)
        except Exception as e:
            if job.attempts < self.max_attempts:
                self.stats["retried"] += 1
                logger.warning(
                    "Processing %s failed (attempt %d/%d): %s",
                    job.document_id, job.attempts, self.max_attempts, e,
                )
                return True
            self.stats["failed"] += 1
            logger.error("Processing %s failed after %d attempts: %s", job.document_id, job.attempts, e)
            await self._mark_error(job.document_id, str(e))
        return False

    def _schedule_retry(self, job: ProcessingJob) -> None:
        """Put ``job`` back after a back-off, then settle the task_done owed for its last run."""
        delay = self.retry_delay_seconds * job.attempts
        if delay <= 0:
            self._queue.put_nowait(job)
            self._queue.task_done()
            return

        handle: asyncio.TimerHandle | None = None

        def release() -> None:
            self._retry_handles.discard(handle)
            self._queue.put_nowait(job)
            self._queue.task_done()

        handle = asyncio.get_running_loop().call_later(delay, release)
        self._retry_handles.add(handle)

    async def _mark_error(self, document_id: uuid.UUID, message: str) -> None:
        try:
            async with self.session_factory() as session:
                document = await session.get(Document, document_id)
                if document is not None:
                    document.status = DocumentStatus.ERROR
                    document.processing_error = message
                    await session.commit()
        except Exception as e:
            logger.error("Could not record processing error for %s: %s", document_id, e)
