"""
Sequential worker: one job at a time (transcoding is CPU bound)
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, TextIO

from core.errors import JobValidationError
from core.models import Job
from core.utils.logging import get_logger
from core.workflow.executor import JobExecutor

logger = get_logger(__name__)


@dataclass
class JobResult:
    job_id: Optional[str]
    success: bool
    error: Optional[str] = None
    duration: float = 0.0


def read_job_records(stream: TextIO) -> Iterator[Dict[str, Any]]:
    """Yield job records from JSON lines, or from one JSON object/array."""
    text = stream.read()
    stripped = text.strip()
    if not stripped:
        return
    if stripped.startswith("["):
        for record in json.loads(stripped):
            yield record
        return
    try:
        yield json.loads(stripped)
        return
    except json.JSONDecodeError:
        pass
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError as e:
            raise JobValidationError(f"Line {lineno}: invalid JSON ({e.msg})") from e


def load_job_file(path: Path) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        return list(read_job_records(f))


class Worker:
    def __init__(self, executor: JobExecutor):
        self.executor = executor

    def run(self, records: Iterable[Dict[str, Any]]) -> List[JobResult]:
        return asyncio.run(self.run_async(records))

    async def run_async(self, records: Iterable[Dict[str, Any]]) -> List[JobResult]:
        results = []
        for record in records:
            results.append(await self.process(record))
        done = sum(1 for r in results if r.success)
        logger.info(f"Worker finished: {done}/{len(results)} job(s) succeeded")
        return results

    async def process(self, record: Dict[str, Any]) -> JobResult:
        loop = asyncio.get_running_loop()
        start = loop.time()
        job_id = record.get("jobId") if isinstance(record, dict) else None
        try:
            job = Job.from_dict(record)

            async def report(percent: int) -> None:
                logger.info(f"[JOB:{job.job_id}] Progress {percent}%")

            await self.executor.execute(job, report)
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}")
            return JobResult(job_id, False, str(e), loop.time() - start)
        logger.info(f"Job {job_id} done")
        return JobResult(job_id, True, None, loop.time() - start)
