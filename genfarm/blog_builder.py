"""
Blog Builder: the content-generation workflow run by the queue worker.

One blog run is a single conversation with Claude, so every step sees the
output of the steps before it:

1. Ask for three sub-headers, each with a short writing prompt
2. Append a fixed Conclusion section
3. Write every section in order
4. Write an opening paragraph and prepend it as the Introduction
5. Format the whole post as HTML and append a brand call to action
6. Publish the result to WordPress as a draft

Request handlers never run this directly: queue_blog_generation() mints a
task id and submits a BlogJob to the TaskQueue.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

import anthropic

from genfarm.models import BlogJob
from genfarm.task_queue import TaskQueue
from genfarm.wordpress import WordPressPublisher

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a blog writing assistant. You write clear, engaging posts for a \
trading audience and follow formatting instructions exactly.
"""

HEADERS_PROMPT = (
    "Generate 3 sub-headers for a blog post about {seo_phrase}, and provide a "
    "brief prompt for each header. Format the output exactly as "
    "'{{header}}:{{prompt}}' with no spaces around the colon. Leave out the "
    "curly braces. Ensure each header and prompt pair is on a new line. Only "
    "return the headers and respective prompts in your response."
)

CONCLUSION_PROMPT = (
    "Summarize the main points discussed in the blog and provide a final "
    "thought for readers."
)

SECTION_PROMPT = """\
Write a concise and engaging blog section with the following header: '{header}'.
Focus on: {prompt}.
Deliver the information in a simplified manner, using bullet points, short \
paragraphs, and clear, direct language.
Ensure the content is easy to read and makes trading concepts feel \
straightforward and approachable.
Do not include a conclusion section; instead, end the content naturally as \
part of the discussion.
Do not return content in JSON format; structure it like a regular blog post \
with paragraphs, lists, and subheaders as needed."""

FORMAT_PROMPT = (
    "Format the following content into a blog using appropriate HTML tags like "
    "<h2>, <p>, <h3>, <ul>, <li>, and <strong>. Do not include overarching tags "
    "like <html>, <head>, or <body>. Ensure the content starts with headers and "
    "uses paragraphs and lists as needed:"
)

CTA_PROMPT = """\
Generate a call to action for the end of this blog as HTML. Include a catchy \
<h2> header and our brand name '{brand_name}', and mention our AI tools like \
market analysis, stock sentiment, and trade ideas. Link to our website \
<a href='{brand_url}' target='_new' rel='noopener'>{brand_name}</a> and to our \
<a href='{community_url}' target='_new' rel='noopener'>community</a>."""


class AssistantError(Exception):
    """The assistant returned no usable content."""


class WorkflowCancelled(Exception):
    """Shutdown was requested while a blog was being built."""


def parse_headers_and_prompts(content: str) -> dict[str, str]:
    """
    Parse ``header:prompt`` lines into an ordered mapping.

    Lines without a colon are ignored and the first occurrence of a header
    wins.
    """
    headers: dict[str, str] = {}
    for line in content.splitlines():
        header, sep, prompt = line.partition(":")
        if not sep:
            continue
        header = header.strip()
        if header and header not in headers:
            headers[header] = prompt.strip()
    return headers


def _strip_fences(text: str) -> str:
    return text.strip("`\n")


class Conversation:
    """A running message history standing in for an assistant thread."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        model: str,
        max_tokens: int = 2048,
    ) -> None:
        self._client = client
        self._model = model
        self._max_tokens = max_tokens
        self.messages: list[dict] = []

    async def ask(self, prompt: str) -> str:
        self.messages.append({"role": "user", "content": prompt})
        response = await self._client.messages.create(
            model=self._model,
            max_tokens=self._max_tokens,
            system=SYSTEM_PROMPT,
            messages=list(self.messages),
        )
        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        if not text.strip():
            self.messages.pop()
            raise AssistantError("The response from the assistant was empty.")
        self.messages.append({"role": "assistant", "content": text})
        return text


class BlogBuilder:
    """Builds a blog post for an SEO phrase and publishes it as a draft."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        publisher: WordPressPublisher,
        queue: TaskQueue,
        model: str = "claude-sonnet-4-20250514",
        brand_name: str = "Zentrix",
        brand_url: str = "https://zentrix.ai",
        community_url: str = "https://discord.gg/zentrix",
    ) -> None:
        self._client = client
        self._publisher = publisher
        self._queue = queue
        self._model = model
        self._brand_name = brand_name
        self._brand_url = brand_url
        self._community_url = community_url

    async def queue_blog_generation(self, seo_phrase: str) -> uuid.UUID:
        """Submit a blog run and return its task id for status polling."""
        task_id = uuid.uuid4()
        await self._queue.submit(BlogJob(self, seo_phrase, task_id), task_id)
        return task_id

    async def aclose(self) -> None:
        await self._publisher.aclose()
        await self._client.close()

    async def build_blog(
        self,
        seo_phrase: str,
        task_id: uuid.UUID,
        shutdown: Optional[asyncio.Event] = None,
    ) -> int:
        shutdown = shutdown or asyncio.Event()
        logger.info("Task %s: building blog for %r", task_id, seo_phrase)
        conversation = Conversation(self._client, self._model)

        _check(shutdown)
        sections = await self.generate_headers(conversation, seo_phrase)
        sections["Conclusion"] = CONCLUSION_PROMPT

        contents: dict[str, str] = {}
        for header, prompt in sections.items():
            _check(shutdown)
            contents[header] = await conversation.ask(
                SECTION_PROMPT.format(header=header, prompt=prompt)
            )
        logger.info("Task %s: wrote %d sections", task_id, len(contents))

        _check(shutdown)
        opening = await self.generate_opening_paragraph(conversation, list(contents))
        contents = {"Introduction": opening, **contents}

        _check(shutdown)
        html = await self.compile_and_format(conversation, contents)

        _check(shutdown)
        post_id = await self._publisher.publish(seo_phrase, html)
        logger.info("Task %s: published post %s", task_id, post_id)
        return post_id

    async def generate_headers(
        self, conversation: Conversation, seo_phrase: str
    ) -> dict[str, str]:
        reply = await conversation.ask(HEADERS_PROMPT.format(seo_phrase=seo_phrase))
        headers = parse_headers_and_prompts(reply)
        if not headers:
            raise AssistantError("The assistant returned no headers.")
        return headers

    async def generate_opening_paragraph(
        self, conversation: Conversation, headers: list[str]
    ) -> str:
        lines = [
            "Generate an engaging opening paragraph that introduces the "
            "following topics and headers:"
        ]
        lines.extend(f"- {header}" for header in headers)
        reply = await conversation.ask("\n".join(lines))
        return _strip_fences(reply)

    async def compile_and_format(
        self, conversation: Conversation, contents: dict[str, str]
    ) -> str:
        lines = [FORMAT_PROMPT]
        for header, content in contents.items():
            lines.append(f"Header: {header}")
            lines.append(f"Content: {content}")
        formatted = await conversation.ask("\n".join(lines))

        cta = await conversation.ask(
            CTA_PROMPT.format(
                brand_name=self._brand_name,
                brand_url=self._brand_url,
                community_url=self._community_url,
            )
        )
        return _strip_fences(formatted) + cta


def _check(shutdown: asyncio.Event) -> None:
    if shutdown.is_set():
        raise WorkflowCancelled("Shutdown requested")
