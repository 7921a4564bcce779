"""
Worker Client - submits admitted jobs to the external scraping worker platform
"""
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlencode
import logging
import uuid

import httpx

from ..db.models import Job

logger = logging.getLogger(__name__)


class WorkerClientError(Exception):
    """Job submission failed"""
    pass


class WorkerClient(ABC):
    """Abstract base class for the external worker platform"""

    @abstractmethod
    def submit(self, job: Job) -> str:
        """
        Start a worker run for the job

        Returns:
            Worker run id

        Raises:
            WorkerClientError: If the platform did not accept the run
        """
        pass


class LoggingWorkerClient(WorkerClient):
    """Development client - logs the submission and returns a synthetic run id"""

    def submit(self, job: Job) -> str:
        run_id = f"local-{uuid.uuid4().hex[:12]}"
        logger.info(f"[DEV] Would submit job {job.id} (keyword={job.keyword!r}, limit={job.ads_requested}) as run {run_id}")
        return run_id


class HttpWorkerClient(WorkerClient):
    """Starts actor runs over the worker platform's HTTP API"""

    def __init__(
        self,
        api_base: str,
        api_token: str,
        actor_id: str,
        webhook_base_url: str,
        timeout: float = 15.0,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Initialize HTTP worker client

        Args:
            api_base: Worker platform API base URL
            api_token: API token
            actor_id: Scraper actor to run
            webhook_base_url: Public base URL of this service for completion callbacks
            timeout: Request timeout in seconds
            http_client: Optional preconfigured httpx client
        """
        self.api_base = api_base.rstrip("/")
        self.api_token = api_token
        self.actor_id = actor_id
        self.webhook_base_url = webhook_base_url.rstrip("/")
        self.timeout = timeout
        self.http_client = http_client

    def _completion_webhook_url(self, job: Job) -> str:
        return f"{self.webhook_base_url}/v1/webhooks/worker?{urlencode({'jobId': job.id})}"

    def submit(self, job: Job) -> str:
        url = f"{self.api_base}/v2/acts/{self.actor_id}/runs"
        body = {
            "searchTerms": [job.keyword],
            "maxItems": job.ads_requested,
            "jobId": job.id,
            "orgId": job.org_id,
            "webhookUrl": self._completion_webhook_url(job),
        }
        headers = {"Authorization": f"Bearer {self.api_token}"}

        client = self.http_client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(url, json=body, headers=headers)
            response.raise_for_status()
            payload = response.json()
            data = payload.get("data") if isinstance(payload, dict) else None
            run_id = data.get("id") if isinstance(data, dict) else None
        except (httpx.HTTPError, ValueError) as e:
            raise WorkerClientError(f"Worker submission failed for job {job.id}: {e}") from e
        finally:
            if self.http_client is None:
                client.close()

        if not run_id:
            raise WorkerClientError(f"Worker platform returned no run id for job {job.id}")
        logger.info(f"Submitted job {job.id} as worker run {run_id}")
        return run_id


def get_worker_client(config) -> WorkerClient:
    """
    Factory for the worker client

    Uses the HTTP client when the platform is configured, otherwise the
    logging client.
    """
    if config.WORKER_API_BASE and config.WORKER_API_TOKEN and config.WORKER_ACTOR_ID:
        return HttpWorkerClient(
            api_base=config.WORKER_API_BASE,
            api_token=config.WORKER_API_TOKEN,
            actor_id=config.WORKER_ACTOR_ID,
            webhook_base_url=config.API_BASE_URL,
            timeout=config.WORKER_SUBMIT_TIMEOUT,
        )
    if config.ENV in ("staging", "prod"):
        logger.warning("Worker platform not configured; jobs will only be logged")
    return LoggingWorkerClient()
