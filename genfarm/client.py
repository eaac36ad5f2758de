"""
Client for the blog API: queue a blog, then poll until it finishes.

Polling mirrors the web form: check the status every few seconds and stop
at the first terminal status.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Optional

import httpx

from genfarm.models import TaskAccepted, TaskStatus, TaskStatusResponse

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


class BlogClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._owns_client = client is None
        self._http = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> "BlogClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def generate(self, seo_phrase: str) -> uuid.UUID:
        resp = await self._http.post("/api/blog/generate", json={"seoPhrase": seo_phrase})
        resp.raise_for_status()
        return TaskAccepted.model_validate(resp.json()).task_id

    async def status(self, task_id: uuid.UUID) -> TaskStatus:
        resp = await self._http.get(f"/api/blog/status/{task_id}")
        resp.raise_for_status()
        return TaskStatusResponse.model_validate(resp.json()).status

    async def wait_for_completion(
        self,
        task_id: uuid.UUID,
        interval: float = DEFAULT_POLL_INTERVAL,
        timeout: Optional[float] = None,
    ) -> TaskStatus:
        """Poll until the task is Completed or Failed and return that status."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            status = await self.status(task_id)
            if status.is_terminal:
                logger.info("Task %s finished: %s", task_id, status.value)
                return status
            if deadline is not None and time.monotonic() + interval > deadline:
                raise TimeoutError(f"Task {task_id} still {status.value} after {timeout}s")
            await asyncio.sleep(interval)
