"""Tests for pii_detection/service/worker.py."""
import asyncio

import pytest

from pii_detection.core.exceptions import DetectionCancelled, PipelineError, ValidationError
from pii_detection.service import worker as worker_module
from pii_detection.service.config import Settings
from pii_detection.service.pipeline import CancellationToken
from pii_detection.service.worker import DetectionWorker, ProgressEvent


AVS_EMAIL_TEXT = "AVS: 756.1234.5678.97, contact test@example.com"


class ExplodingPipeline:
    def process(self, text, **kwargs):
        raise KeyError("corrupt state")


@pytest.fixture
def worker(make_pipeline):
    worker = DetectionWorker(pipeline_factory=make_pipeline, max_workers=2)
    yield worker
    worker.shutdown()


@pytest.mark.asyncio
async def test_detect_returns_pipeline_result(worker):
    result = await worker.detect(AVS_EMAIL_TEXT, document_id="doc-1")
    assert len(result.entities) == 2
    assert result.metadata["document_id"] == "doc-1"


@pytest.mark.asyncio
async def test_progress_events_are_delivered_in_order(worker):
    events = []
    await worker.detect(AVS_EMAIL_TEXT, document_id="doc-1", on_progress=events.append)

    assert all(isinstance(e, ProgressEvent) for e in events)
    assert [e.percent for e in events] == sorted(e.percent for e in events)
    assert events[-1] == ProgressEvent("doc-1", 100, "sort")


@pytest.mark.asyncio
async def test_async_progress_handler(worker):
    stages = []

    async def handler(event):
        await asyncio.sleep(0)
        stages.append(event.stage)

    await worker.detect(AVS_EMAIL_TEXT, on_progress=handler)
    assert stages[-1] == "sort"


@pytest.mark.asyncio
async def test_detect_many_runs_concurrently(worker):
    texts = [AVS_EMAIL_TEXT, "Tel. +41 79 123 45 67", "Nothing to see here."]

    results = await worker.detect_many(texts)

    assert [r.metadata["document_id"] for r in results] == ["doc-0", "doc-1", "doc-2"]
    assert [len(r.entities) for r in results] == [2, 1, 0]


@pytest.mark.asyncio
async def test_detect_many_rejects_mismatched_ids(worker):
    with pytest.raises(ValidationError):
        await worker.detect_many(["a", "b"], document_ids=["only-one"])


@pytest.mark.asyncio
async def test_tripped_token_raises_cancelled(worker):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(DetectionCancelled):
        await worker.detect(AVS_EMAIL_TEXT, cancel_token=token)


@pytest.mark.asyncio
async def test_unexpected_errors_become_pipeline_errors():
    async with DetectionWorker(pipeline_factory=ExplodingPipeline, max_workers=1) as worker:
        with pytest.raises(PipelineError):
            await worker.detect(AVS_EMAIL_TEXT, document_id="bad")


class TestOffer:
    def test_full_queue_drops_oldest(self):
        queue = asyncio.Queue(maxsize=2)
        for percent in (11, 22, 33):
            DetectionWorker._offer(queue, ProgressEvent("d", percent, "stage"))

        assert queue.get_nowait().percent == 22
        assert queue.get_nowait().percent == 33


class TestSizing:
    def test_defaults_come_from_settings(self, monkeypatch, make_pipeline):
        monkeypatch.setattr(
            worker_module, "settings", Settings(_env_file=None, max_workers=3, progress_queue_size=7)
        )
        worker = DetectionWorker(pipeline_factory=make_pipeline)
        try:
            assert (worker.max_workers, worker.progress_queue_size) == (3, 7)
        finally:
            worker.shutdown()

    def test_explicit_arguments_win(self, monkeypatch, make_pipeline):
        monkeypatch.setattr(
            worker_module, "settings", Settings(_env_file=None, max_workers=3, progress_queue_size=7)
        )
        worker = DetectionWorker(pipeline_factory=make_pipeline, max_workers=2, progress_queue_size=5)
        try:
            assert (worker.max_workers, worker.progress_queue_size) == (2, 5)
        finally:
            worker.shutdown()

    def test_unset_pool_size_uses_cpu_count(self, monkeypatch, make_pipeline):
        monkeypatch.setattr(worker_module, "settings", Settings(_env_file=None, max_workers=None))
        monkeypatch.setattr(worker_module.os, "cpu_count", lambda: 6)
        worker = DetectionWorker(pipeline_factory=make_pipeline)
        try:
            assert worker.max_workers == 6
        finally:
            worker.shutdown()
