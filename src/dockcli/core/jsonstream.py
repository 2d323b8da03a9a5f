"""Streamed JSON progress responses."""

import asyncio
import codecs
import json
import logging
from typing import AsyncIterator, Callable, Optional, TextIO

import aiohttp

from ..exceptions import EngineConnectionError, RemoteOperationError, RequestCancelledError
from .types import JSONMessage

logger = logging.getLogger(__name__)


class JSONMessageStream:
    """Lazy, finite, non-restartable sequence of progress records.

    Wraps an engine response whose body is a sequence of JSON objects. The
    underlying connection is released once iteration ends, whatever the
    reason. When the surrounding task is cancelled and ``cancelled`` is set,
    iteration stops quietly and :attr:`was_cancelled` reports it.
    """

    def __init__(
        self,
        response: aiohttp.ClientResponse,
        cancelled: Optional[asyncio.Event] = None,
    ) -> None:
        self._response = response
        self._cancelled = cancelled
        self._consumed = False
        self.was_cancelled = False

    @property
    def headers(self):
        return self._response.headers

    async def __aenter__(self) -> "JSONMessageStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __aiter__(self) -> AsyncIterator[JSONMessage]:
        if self._consumed:
            raise RuntimeError("progress stream can only be consumed once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[JSONMessage]:
        decoder = json.JSONDecoder()
        text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        try:
            async for chunk in self._response.content.iter_any():
                buffer += text_decoder.decode(chunk)
                while True:
                    buffer = buffer.lstrip()
                    if not buffer:
                        break
                    try:
                        data, end = decoder.raw_decode(buffer)
                    except json.JSONDecodeError:
                        # Incomplete object, wait for more data
                        break
                    buffer = buffer[end:]
                    yield JSONMessage.from_api(data)

            buffer = (buffer + text_decoder.decode(b"", final=True)).strip()
            if buffer:
                raise RemoteOperationError(f"invalid progress record: {buffer[:80]!r}")
        except asyncio.CancelledError:
            if self._cancelled is None or not self._cancelled.is_set():
                raise
            logger.debug("progress stream from %s cancelled", self._response.url)
            self.was_cancelled = True
        except aiohttp.ClientError as e:
            raise EngineConnectionError(f"error reading progress stream: {e}") from e
        finally:
            self.close()

    def close(self) -> None:
        """Release the underlying connection."""
        self._response.close()


def format_message(msg: JSONMessage) -> str:
    if msg.stream:
        return msg.stream.rstrip("\n")
    text = msg.status
    if msg.progress:
        text = f"{text} {msg.progress}"
    if msg.id:
        text = f"{msg.id}: {text}"
    return text


async def display_json_messages(
    stream: AsyncIterator[JSONMessage],
    out: Optional[TextIO],
    aux_callback: Optional[Callable[[JSONMessage], None]] = None,
) -> None:
    """Render a progress stream incrementally.

    Args:
        stream: Progress records
        out: Destination; None drains the stream without rendering
        aux_callback: Receives records carrying an ``aux`` payload

    Raises:
        RemoteOperationError: If a record reports an error
        RequestCancelledError: If the stream stopped because of cancellation
    """
    async for msg in stream:
        if msg.error:
            raise RemoteOperationError(msg.error)
        if msg.aux is not None:
            if aux_callback is not None:
                aux_callback(msg)
            continue
        if out is None:
            continue
        line = format_message(msg)
        if line:
            out.write(line + "\n")
            out.flush()

    if getattr(stream, "was_cancelled", False):
        raise RequestCancelledError("context canceled")
