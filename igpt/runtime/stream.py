"""
Incremental decoder for streamed ``data: <json>`` responses.

The API streams one JSON document per ``data:`` line. Lines can be split
across network chunks at any byte, so undecoded text is carried over in a
StreamFrameBuffer until its newline arrives.
"""

from __future__ import annotations

import codecs
import json
from typing import Any, AsyncIterator, Protocol, runtime_checkable

from loguru import logger

from .errors import NormalizedError

FRAME_MARKER = "data:"
FRAME_DELIMITER = "\n"

# Returned by parse_frame for lines that carry no value
SKIP = object()


@runtime_checkable
class ByteSource(Protocol):
    """The part of httpx.Response the decoder relies on."""

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Yield the body in chunks as they arrive."""
        ...

    async def aclose(self) -> None:
        """Release the underlying connection."""
        ...


class StreamFrameBuffer:
    """Holds the text tail that has not yet formed a complete line.

    After every push() the buffer contains no delimiter: complete lines are
    handed back to the caller and only the trailing partial line stays.
    """

    def __init__(self) -> None:
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def push(self, text: str) -> list[str]:
        """Append decoded text and take out every complete line.

        Args:
            text: Newly decoded text.

        Returns:
            Complete lines in arrival order, without their delimiter.
        """
        *lines, self._pending = (self._pending + text).split(FRAME_DELIMITER)
        return lines


def parse_frame(line: str) -> Any:
    """Decode one line of the stream.

    Args:
        line: A complete line, delimiter removed.

    Returns:
        The decoded JSON value, or SKIP for keep-alives, non-data lines,
        empty frames and malformed JSON.
    """
    line = line.strip()
    if not line.startswith(FRAME_MARKER):
        return SKIP

    payload = line[len(FRAME_MARKER):].strip()
    if not payload:
        return SKIP

    try:
        return json.loads(payload)
    except (ValueError, RecursionError):
        logger.debug(f"Dropping malformed frame: {payload[:200]!r}")
        return SKIP


class StreamParser:
    """Async iterable of the JSON values carried by a streamed response.

    Iterate it once. A transport failure mid-stream ends the iteration with
    one NormalizedError of kind network_error instead of raising. The byte
    source is released exactly once however iteration ends, including when
    the consumer stops early and closes the iterator.

    Example:
        async with await client.recall.ask(input="...", stream=True) as events:
            async for event in events:
                if is_error(event):
                    break
                print(event)
    """

    def __init__(self, source: ByteSource):
        """Initialize the parser.

        Args:
            source: An open streaming response (httpx.Response or equivalent).
        """
        self._source = source
        self._buffer = StreamFrameBuffer()
        self._started = False
        self._released = False

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._events()

    async def __aenter__(self) -> "StreamParser":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    @property
    def released(self) -> bool:
        return self._released

    async def aclose(self) -> None:
        """Release the byte source. Later calls do nothing."""
        if self._released:
            return
        self._released = True
        await self._source.aclose()

    async def _events(self) -> AsyncIterator[Any]:
        if self._started or self._released:
            return
        self._started = True

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            chunks = self._source.aiter_bytes()
            while True:
                try:
                    chunk = await anext(chunks)
                except StopAsyncIteration:
                    break
                except Exception as e:
                    logger.warning(f"Stream interrupted: {type(e).__name__}: {e}")
                    yield NormalizedError.network_error(f"{type(e).__name__}: {e}")
                    break

                for line in self._buffer.push(decoder.decode(chunk)):
                    value = parse_frame(line)
                    if value is not SKIP:
                        yield value
        finally:
            await self.aclose()
