"""
Job completion callback (requests)
"""

import asyncio

import requests

from core.errors import CallbackFailed
from core.models import Job
from core.utils.logging import get_logger

logger = get_logger(__name__)


class CallbackNotifier:
    def __init__(self, timeout: float = 30.0, session: requests.Session = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, job: Job) -> requests.Response:
        return self.session.post(job.response_url, json=job.callback_payload(), timeout=self.timeout)

    async def notify(self, job: Job) -> None:
        """POST ``{jobId, interaction, filename}``; any non-2xx is a failure."""
        logger.info(f"[JOB:{job.job_id}] Sending callback to: {job.response_url}")
        loop = asyncio.get_running_loop()
        try:
            r = await loop.run_in_executor(None, self._post, job)
        except requests.RequestException as e:
            logger.error(f"[JOB:{job.job_id}] Callback failed: {e}")
            raise CallbackFailed(None, e) from e

        logger.info(f"[JOB:{job.job_id}] Callback response: {r.status_code}")
        if not 200 <= r.status_code < 300:
            raise CallbackFailed(r.status_code)
