# pii_detection/service/worker.py

"""Asynchronous worker that runs detection pipelines on a thread pool.

Each document gets its own pipeline over the shared components. Progress
events cross from the worker thread to the event loop through a bounded
queue that drops the oldest event when full.
"""

import os
import asyncio
import logging
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional, Sequence, Union

from pii_detection.core.domain import DetectionResult
from pii_detection.core.exceptions import DetectionCancelled, PipelineError, ValidationError
from pii_detection.service.config import settings
from pii_detection.service.pipeline import CancellationToken, DetectionPipeline, DetectionService

logger = logging.getLogger(__name__)


class ProgressEvent(NamedTuple):
    document_id: Optional[str]
    percent: int
    stage: str


ProgressHandler = Callable[[ProgressEvent], Union[None, Awaitable[None]]]

# Marks the end of a document's progress stream
_END_OF_STREAM = None


class DetectionWorker:
    """Dispatches documents to a thread pool and awaits their results.

    Pool size and progress queue capacity default to the PII_MAX_WORKERS
    and PII_PROGRESS_QUEUE_SIZE settings. Usable as an async context
    manager; the pool is shut down on exit.
    """

    def __init__(
        self,
        pipeline_factory: Optional[Callable[[], DetectionPipeline]] = None,
        max_workers: Optional[int] = None,
        progress_queue_size: Optional[int] = None,
    ):
        self.pipeline_factory = pipeline_factory or DetectionService.create_pipeline
        self.max_workers = max_workers or settings.max_workers or os.cpu_count() or 1
        self.progress_queue_size = progress_queue_size or settings.progress_queue_size
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="detection")

    async def __aenter__(self) -> "DetectionWorker":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.shutdown()

    async def detect(
        self,
        text: str,
        document_id: Optional[str] = None,
        language: Optional[str] = None,
        on_progress: Optional[ProgressHandler] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DetectionResult:
        """Runs detection for one document on the worker pool.

        Args:
            text: Raw document text
            document_id: Identifier attached to progress events and metadata
            language: Optional language hint
            on_progress: Sync or async handler receiving ProgressEvent
            cancel_token: Token the caller may trip to stop between passes

        Returns:
            DetectionResult of the pipeline

        Raises:
            DetectionCancelled: If cancel_token was tripped
            PipelineError: If the pipeline raised unexpectedly
        """
        loop = asyncio.get_running_loop()
        token = cancel_token or CancellationToken()
        queue: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue(maxsize=self.progress_queue_size)

        def publish(percent: int, stage: str) -> None:
            # Runs on the worker thread
            event = ProgressEvent(document_id, percent, stage)
            loop.call_soon_threadsafe(self._offer, queue, event)

        consumer = None
        if on_progress is not None:
            consumer = asyncio.ensure_future(self._consume(queue, on_progress))

        pipeline = self.pipeline_factory()
        call = functools.partial(
            pipeline.process,
            text,
            document_id=document_id,
            language=language,
            progress=publish if on_progress is not None else None,
            cancel_token=token,
        )

        try:
            return await loop.run_in_executor(self._executor, call)
        except asyncio.CancelledError:
            # The running pass finishes; the next boundary check stops the thread
            token.cancel()
            logger.info("Detection task cancelled", extra={"document_id": document_id})
            raise
        except DetectionCancelled:
            raise
        except Exception as e:
            logger.error("Detection worker failed", exc_info=True, extra={"document_id": document_id})
            raise PipelineError(f"Detection failed for document {document_id}: {e}") from e
        finally:
            if consumer is not None:
                self._offer(queue, _END_OF_STREAM)
                await asyncio.shield(consumer)

    async def detect_many(
        self,
        texts: Sequence[str],
        document_ids: Optional[Sequence[str]] = None,
        language: Optional[str] = None,
        on_progress: Optional[ProgressHandler] = None,
    ) -> List[DetectionResult]:
        """Detects PII in several documents concurrently.

        Raises:
            ValidationError: If document_ids does not match texts in length.
        """
        if document_ids is None:
            document_ids = [f"doc-{i}" for i in range(len(texts))]
        elif len(document_ids) != len(texts):
            raise ValidationError("document_ids must have one entry per text")

        logger.info(f"Dispatching {len(texts)} documents", extra={"max_workers": self.max_workers})
        return list(
            await asyncio.gather(
                *(
                    self.detect(text, document_id=doc_id, language=language, on_progress=on_progress)
                    for text, doc_id in zip(texts, document_ids)
                )
            )
        )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    @staticmethod
    def _offer(queue: asyncio.Queue, event: Optional[ProgressEvent]) -> None:
        """Enqueues an event, dropping the oldest one when the queue is full."""
        if queue.full():
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        queue.put_nowait(event)

    @staticmethod
    async def _consume(queue: asyncio.Queue, handler: ProgressHandler) -> None:
        while True:
            event = await queue.get()
            if event is _END_OF_STREAM:
                return
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.warning("Progress handler failed", exc_info=True)
