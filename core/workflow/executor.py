"""
Job executor: dispatch image/video jobs, report progress, notify callback
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from core.config import Config, get_config
from core.constants import (
    IMAGE_CONTENT_TYPE,
    PROGRESS_DONE,
    PROGRESS_IMAGE_COMPOSITED,
    PROGRESS_IMAGE_UPLOADED,
    PROGRESS_PIPELINE_STARTED,
    PROGRESS_STARTED,
    PROGRESS_VIDEO_JOINED,
    VIDEO_CONTENT_TYPE,
    JobType,
)
from core.errors import JobValidationError, UnsupportedJobType
from core.models import Job, WatermarkSpec
from core.utils.logging import get_logger
from core.workflow.callback import CallbackNotifier
from processors.image.compositor import ImageCompositor
from processors.image.overlay import OverlayRenderer
from processors.video.watermark import StreamingTranscodePipeline
from storage.base import BlobStore
from storage.manager import create_blob_store

logger = get_logger(__name__)

ProgressReporter = Callable[[int], Awaitable[None]]


async def log_progress(percent: int) -> None:
    logger.debug(f"Progress {percent}%")


class JobExecutor:
    def __init__(
        self,
        store: BlobStore,
        pipeline: Optional[StreamingTranscodePipeline] = None,
        compositor: Optional[ImageCompositor] = None,
        notifier: Optional[CallbackNotifier] = None,
        read_url_ttl: int = 3600,
    ):
        self.store = store
        self.pipeline = pipeline or StreamingTranscodePipeline()
        self.compositor = compositor or ImageCompositor()
        self.notifier = notifier or CallbackNotifier()
        self.read_url_ttl = read_url_ttl

    @classmethod
    def from_config(cls, cfg: Config = None) -> "JobExecutor":
        cfg = cfg or get_config()
        renderer = OverlayRenderer(font_path=cfg.overlay.font_path)
        return cls(
            store=create_blob_store(cfg),
            pipeline=StreamingTranscodePipeline.from_config(cfg, renderer=renderer),
            compositor=ImageCompositor(renderer=renderer),
            notifier=CallbackNotifier(timeout=cfg.callback.timeout),
            read_url_ttl=cfg.storage.read_url_ttl,
        )

    async def execute(self, job: Job, report_progress: Optional[ProgressReporter] = None) -> None:
        """Run one job to completion; every failure propagates to the caller."""
        progress = report_progress or log_progress
        try:
            job_type = JobType(job.type)
        except ValueError:
            raise UnsupportedJobType(job.type) from None
        try:
            spec = WatermarkSpec(job.watermark_text)
        except ValueError as e:
            raise JobValidationError(f"Job {job.job_id}: {e}") from e

        start = time.time()
        logger.info(f"[JOB:{job.job_id}] Starting {job_type.value} processing")
        await progress(PROGRESS_STARTED)

        if job_type is JobType.IMAGE:
            await self._image(job, spec, progress)
        elif job_type is JobType.VIDEO:
            await self._video(job, spec, progress)

        await self.notifier.notify(job)
        await progress(PROGRESS_DONE)
        logger.info(f"[JOB:{job.job_id}] Completed in {time.time() - start:.1f}s")

    async def _image(self, job: Job, spec: WatermarkSpec, progress: ProgressReporter):
        loop = asyncio.get_running_loop()
        source = await loop.run_in_executor(None, self.store.download, job.container, job.job_id)
        logger.info(f"[JOB:{job.job_id}] Downloaded {len(source) / 1024:.1f} KB")

        output = await loop.run_in_executor(None, self.compositor.watermark, source, spec)
        await progress(PROGRESS_IMAGE_COMPOSITED)

        await loop.run_in_executor(
            None, self.store.upload, job.container, job.job_id, output, IMAGE_CONTENT_TYPE
        )
        await progress(PROGRESS_IMAGE_UPLOADED)

    async def _video(self, job: Job, spec: WatermarkSpec, progress: ProgressReporter):
        read_url = self.store.temporary_read_url(job.container, job.job_id, self.read_url_ttl)
        sink = self.store.streaming_upload_sink(job.container, job.job_id, VIDEO_CONTENT_TYPE)

        await progress(PROGRESS_PIPELINE_STARTED)
        outcome = await self.pipeline.watermark(read_url, spec, sink, label=f"[JOB:{job.job_id}]")
        outcome.raise_for_outcome()
        await progress(PROGRESS_VIDEO_JOINED)
