"""
GenFarm: FastAPI application for background blog generation.

Request handlers never do the slow work themselves. A blog request is
turned into a BlogJob, submitted to the bounded TaskQueue and answered
with a task id right away; the single QueueWorker runs jobs in order and
the client polls the status route until it sees Completed or Failed.

The queue, worker and builder are built once in the lifespan hook and
kept on ``app.state``.

Usage:
    export ANTHROPIC_API_KEY=sk-ant-...
    export WORDPRESS_USERNAME=... WORDPRESS_APP_PASSWORD=...
    uvicorn genfarm.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Optional

import anthropic
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse

from genfarm.blog_builder import BlogBuilder
from genfarm.config import Settings
from genfarm.models import BlogRequest, TaskAccepted, TaskStatusResponse
from genfarm.task_queue import QueueClosedError, TaskQueue
from genfarm.wordpress import WordPressPublisher
from genfarm.worker import QueueWorker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

static_dir = os.path.join(os.path.dirname(__file__), "static")

BuilderFactory = Callable[[Settings, TaskQueue], BlogBuilder]


def default_builder(settings: Settings, queue: TaskQueue) -> BlogBuilder:
    if not settings.anthropic_api_key:
        logger.warning(
            "ANTHROPIC_API_KEY not set. Blog runs will fail unless the "
            "anthropic library finds credentials elsewhere."
        )
    client = anthropic.AsyncAnthropic(
        api_key=settings.anthropic_api_key,
        max_retries=settings.anthropic_max_retries,
    )
    publisher = WordPressPublisher(
        base_url=settings.wordpress_url,
        username=settings.wordpress_username,
        app_password=settings.wordpress_app_password,
    )
    return BlogBuilder(
        client=client,
        publisher=publisher,
        queue=queue,
        model=settings.claude_model,
        brand_name=settings.brand_name,
        brand_url=settings.brand_url,
        community_url=settings.community_url,
    )


def create_app(
    settings: Optional[Settings] = None,
    builder_factory: BuilderFactory = default_builder,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        queue = TaskQueue(cfg.queue_capacity, status_ttl=cfg.status_ttl_seconds)
        worker = QueueWorker(queue, item_timeout=cfg.task_timeout_seconds)
        builder = builder_factory(cfg, queue)

        app.state.settings = cfg
        app.state.task_queue = queue
        app.state.worker = worker
        app.state.blog_builder = builder

        worker.start()
        logger.info(
            "Initialized task queue (capacity=%d, model=%s)",
            cfg.queue_capacity, cfg.claude_model,
        )
        try:
            yield
        finally:
            await worker.stop()
            await builder.aclose()

    app = FastAPI(
        title="GenFarm",
        description=(
            "Queue SEO blog posts for background generation with Claude and "
            "poll their status until they are published to WordPress."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # ── Frontend Route ───────────────────────────────────────────────────

    @app.get("/", response_class=HTMLResponse)
    async def index():
        """Serve the blog generation form."""
        index_path = os.path.join(static_dir, "index.html")
        with open(index_path) as f:
            return HTMLResponse(content=f.read())

    # ── Blog Routes ──────────────────────────────────────────────────────

    @app.post("/api/blog/generate", status_code=202, response_model=TaskAccepted)
    async def generate_blog(req: BlogRequest, request: Request):
        """
        Queue a blog for background generation.

        Returns as soon as the job is in the queue; waits only if the queue
        is full.
        """
        if not req.seo_phrase or not req.seo_phrase.strip():
            raise HTTPException(status_code=400, detail="SEO phrase is required.")
        builder: BlogBuilder = request.app.state.blog_builder
        try:
            task_id = await builder.queue_blog_generation(req.seo_phrase.strip())
        except QueueClosedError:
            raise HTTPException(status_code=503, detail="Task queue is shutting down.")
        return TaskAccepted(task_id=task_id)

    @app.get("/api/blog/status/{task_id}", response_model=TaskStatusResponse)
    async def task_status(task_id: uuid.UUID, request: Request):
        """Current status of a queued blog; ``Unknown`` for ids never submitted."""
        queue: TaskQueue = request.app.state.task_queue
        return TaskStatusResponse(task_id=task_id, status=queue.get_status(task_id))

    @app.get("/health")
    async def health(request: Request):
        queue: TaskQueue = request.app.state.task_queue
        return {
            "status": "ok",
            "pending": queue.pending_count,
            "capacity": queue.capacity,
            "worker_running": request.app.state.worker.running,
        }

    return app


app = create_app()
