"""Timed, incremental rendering of generated pages.

A page is written to a sink region by region: header markup, the title one
character at a time, the body one word at a time, each related-link title one
character at a time, then the footer. After every unit the sink is flushed
and the streamer sleeps for the region's per-unit delay with up to +/-30%
uniform jitter, so the page appears to be typed live.

Any write or flush failure (or task cancellation) stops the stream at the
next unit boundary and propagates to the caller.
"""

import asyncio
import html
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, BinaryIO, Callable, Dict, List, Optional

import numpy as np

from endless.errors import SinkClosedError
from endless.story import GeneratedPage

logger = logging.getLogger(__name__)

UNIT_CHAR = "char"
UNIT_WORD = "word"

Sleep = Callable[[float], Awaitable[Any]]

PAGE_HEADER = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>
        body {{ font-family: Georgia, serif; max-width: 720px; margin: 40px auto; padding: 0 20px; color: #222; line-height: 1.6; }}
        h1 {{ font-size: 2rem; line-height: 1.2; }}
        .meta {{ color: #888; font-size: 0.85rem; }}
        .related {{ margin-top: 40px; border-top: 1px solid #ddd; padding-top: 16px; }}
        a {{ color: #0645ad; }}
    </style>
</head>
<body>
    <nav><a href="/">Endless</a></nav>
    <article>
        <h1>"""

PAGE_BODY_OPEN = """</h1>
        <p class="meta">By {author} &middot; <time datetime="{iso}">{date}</time></p>
        <div class="content"><p>"""

PAGE_LINKS_OPEN = """</p></div>
        <div class="related">
            <h3>Related</h3>
            <ul>"""

LINK_OPEN = """
                <li><a href="{url}">"""

LINK_CLOSE = "</a></li>"

PAGE_FOOTER = """
            </ul>
        </div>
    </article>
</body>
</html>
"""


class PageSink(ABC):
    """Output channel supporting partial writes and explicit flushes."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write ``data``; raise if the channel is gone."""

    @abstractmethod
    async def flush(self) -> None:
        """Push everything written so far to the client."""


class QueueSink(PageSink):
    """Sink feeding an HTTP streaming response through an asyncio queue.

    ``flush`` waits until the consumer has taken every queued chunk, which
    ties the renderer's pace to the transport.
    """

    def __init__(self):
        self._queue: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise SinkClosedError("Write to closed sink")
        self._queue.put_nowait(data)

    async def flush(self) -> None:
        if self._closed:
            raise SinkClosedError("Flush of closed sink")
        await self._queue.join()

    def close(self) -> None:
        """Mark the sink closed and wake the consumer."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def chunks(self) -> AsyncIterator[bytes]:
        """Yield written chunks until the sink is closed."""
        while True:
            chunk = await self._queue.get()
            try:
                if chunk is None:
                    return
                yield chunk
            finally:
                self._queue.task_done()


class TextStreamSink(PageSink):
    """Sink writing to a binary file object such as ``sys.stdout.buffer``."""

    def __init__(self, stream: BinaryIO):
        self.stream = stream

    async def write(self, data: bytes) -> None:
        try:
            self.stream.write(data)
        except (BrokenPipeError, ValueError) as e:
            raise SinkClosedError(str(e)) from e

    async def flush(self) -> None:
        try:
            self.stream.flush()
        except (BrokenPipeError, ValueError) as e:
            raise SinkClosedError(str(e)) from e


def split_units(text: str, unit: str) -> List[str]:
    """Split ``text`` into emission units.

    Characters are emitted as-is; words keep a leading space after the first
    so the concatenated units reproduce single-spaced text.
    """
    if unit == UNIT_CHAR:
        return list(text)
    if unit == UNIT_WORD:
        words = text.split()
        return [word if i == 0 else f" {word}" for i, word in enumerate(words)]
    raise ValueError(f"Unknown unit: {unit!r}")


class PageStreamer:
    """Streams generated pages with jittered per-unit pacing."""

    def __init__(
        self,
        title_seconds: float = 2.0,
        body_seconds: float = 12.0,
        link_seconds: float = 1.0,
        jitter: float = 0.3,
        rng: Optional[np.random.Generator] = None,
        sleep: Optional[Sleep] = None,
    ):
        """Initialize streamer.

        Args:
            title_seconds: Target duration of the title region
            body_seconds: Target duration of the body region
            link_seconds: Target duration of each related-link title
            jitter: Maximum relative deviation of each delay (0.3 = +/-30%)
            rng: Jitter source; a fresh unseeded generator by default
            sleep: Coroutine used to wait, ``asyncio.sleep`` by default
        """
        if not 0 <= jitter < 1:
            raise ValueError(f"jitter must be in [0, 1), got {jitter}")
        self.title_seconds = title_seconds
        self.body_seconds = body_seconds
        self.link_seconds = link_seconds
        self.jitter = jitter
        self.rng = rng if rng is not None else np.random.default_rng()
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(cls, config: Dict[str, Any], **kwargs) -> "PageStreamer":
        """Build a streamer from the ``streaming`` config section."""
        return cls(
            title_seconds=float(config.get("title_seconds", 2.0)),
            body_seconds=float(config.get("body_seconds", 12.0)),
            link_seconds=float(config.get("link_seconds", 1.0)),
            jitter=float(config.get("jitter", 0.3)),
            **kwargs,
        )

    def jittered(self, delay: float) -> float:
        """Return ``delay`` scaled by a uniform factor in [1 - jitter, 1 + jitter]."""
        if self.jitter == 0:
            return delay
        return delay * (1.0 + float(self.rng.uniform(-self.jitter, self.jitter)))

    async def _emit(self, data: str, sink: PageSink) -> None:
        await sink.write(data.encode("utf-8"))
        await sink.flush()

    async def stream_region(
        self,
        text: str,
        target_seconds: float,
        sink: PageSink,
        unit: str = UNIT_CHAR,
    ) -> int:
        """Emit ``text`` unit by unit over roughly ``target_seconds``.

        Every unit is HTML-escaped, written, flushed, and followed by a
        jittered delay of ``target_seconds / units``.

        Returns:
            Number of units emitted
        """
        units = split_units(text, unit)
        if not units:
            return 0

        delay = max(target_seconds, 0.0) / len(units)
        for piece in units:
            await self._emit(html.escape(piece), sink)
            await self._sleep(self.jittered(delay))
        return len(units)

    async def stream_page(self, page: GeneratedPage, sink: PageSink) -> None:
        """Stream a full page: header, title, body, related links, footer."""
        title = html.escape(page.link.title)
        await self._emit(PAGE_HEADER.format(title=title), sink)
        await self.stream_region(page.link.title, self.title_seconds, sink, UNIT_CHAR)

        await self._emit(
            PAGE_BODY_OPEN.format(
                author=html.escape(page.author),
                iso=page.last_updated.isoformat(),
                date=page.last_updated.strftime("%B %d, %Y"),
            ),
            sink,
        )
        await self.stream_region(page.content, self.body_seconds, sink, UNIT_WORD)

        await self._emit(PAGE_LINKS_OPEN, sink)
        for link in page.links:
            await self._emit(LINK_OPEN.format(url=html.escape(link.url, quote=True)), sink)
            await self.stream_region(link.title, self.link_seconds, sink, UNIT_CHAR)
            await self._emit(LINK_CLOSE, sink)

        await self._emit(PAGE_FOOTER, sink)

    def target_duration(self, page: GeneratedPage) -> float:
        """Soft target for the total stream duration of ``page``."""
        return self.title_seconds + self.body_seconds + self.link_seconds * len(page.links)


async def stream_page_chunks(streamer: PageStreamer, page: GeneratedPage) -> AsyncIterator[bytes]:
    """Run ``streamer`` for ``page`` as a task and yield its output chunks.

    If the consumer stops early (client disconnect) the render task is
    cancelled instead of playing out the remaining regions.
    """
    sink = QueueSink()
    task = asyncio.ensure_future(streamer.stream_page(page, sink))
    task.add_done_callback(lambda _: sink.close())
    try:
        async for chunk in sink.chunks():
            yield chunk
    finally:
        sink.close()
        if not task.done():
            task.cancel()
            logger.info(f"Stream for seed {page.link.seed} aborted by client")
        elif not task.cancelled() and task.exception() is not None:
            logger.error(f"Stream for seed {page.link.seed} failed: {task.exception()}")
