"""
WordPress publisher: posts generated blogs as drafts via the REST API.

Authentication uses a WordPress application password over HTTP Basic auth.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """WordPress rejected the post."""

    def __init__(self, status_code: int, reason: str) -> None:
        super().__init__(f"Failed to send blog post to WordPress: {status_code} {reason}")
        self.status_code = status_code
        self.reason = reason


class WordPressPublisher:
    def __init__(
        self,
        base_url: str,
        username: str,
        app_password: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._posts_url = base_url.rstrip("/") + "/wp-json/wp/v2/posts"
        self._auth = httpx.BasicAuth(username, app_password)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def publish(self, title: str, content: str) -> int:
        """Create a draft post and return its WordPress id."""
        payload = {"title": title, "content": content, "status": "draft"}
        resp = await self._client.post(self._posts_url, json=payload, auth=self._auth)
        if not resp.is_success:
            raise PublishError(resp.status_code, resp.reason_phrase)
        post_id = resp.json().get("id")
        logger.info("Published draft post %s: %s", post_id, title)
        return post_id

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
