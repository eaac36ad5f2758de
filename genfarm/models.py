"""
Models for the blog generation queue.

- TaskStatus is the value polled by clients; its string values are the wire
  format, so the form's status checks compare against them directly.
- QueuedWorkItem is what travels through the bounded channel.
- BlogJob captures one blog request so it can run without the HTTP layer.
- The pydantic bodies describe the public API.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from genfarm.blog_builder import BlogBuilder


class TaskStatus(str, Enum):
    QUEUED = "Queued"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    # Returned for ids that were never submitted. Never stored.
    UNKNOWN = "Unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


# A work item receives the shutdown event and must observe it cooperatively.
WorkItem = Callable[[asyncio.Event], Awaitable[None]]


@dataclass(frozen=True)
class QueuedWorkItem:
    """A work item tagged with the id its status is tracked under."""

    task_id: uuid.UUID
    work: WorkItem


@dataclass(frozen=True)
class BlogJob:
    """Everything one blog run needs, bound to the builder that runs it."""

    builder: BlogBuilder
    seo_phrase: str
    task_id: uuid.UUID

    async def __call__(self, shutdown: asyncio.Event) -> None:
        await self.builder.build_blog(self.seo_phrase, self.task_id, shutdown)


# ── API bodies ───────────────────────────────────────────────────────────


class BlogRequest(BaseModel):
    """Form submission: the SEO phrase the post is written around."""

    seo_phrase: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("seoPhrase", "SEOPhrase", "seo_phrase"),
    )


class TaskAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: uuid.UUID = Field(alias="taskId")


class TaskStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: uuid.UUID = Field(alias="taskId")
    status: TaskStatus
