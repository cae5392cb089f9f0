"""Provider adapter base class and the per-call stream handle.

Every backend is reached through direct httpx calls (no vendor SDK). An
adapter owns the translation between canonical messages and its wire
format; the shared machinery here owns transport, credentials and the
lazy stream / deferred result pairing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

import httpx

from helium.auth import CredentialProvider
from helium.config import Settings
from helium.errors import ConfigError
from helium.messages import Message, MessageResponse, StreamDelta
from helium.providers.catalog import DEFAULT_MODELS, SMALL_MODELS, Provider
from helium.tools.base import ToolDefinition

logger = logging.getLogger(__name__)


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Yield the JSON payload of every ``data:`` line of an SSE response.

    ``event:`` lines are skipped naturally; the OpenAI-style ``[DONE]``
    terminator is dropped.
    """
    async for line in response.aiter_lines():
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if not payload or payload == "[DONE]":
            continue
        yield json.loads(payload)


class StreamAccumulator(ABC):
    """Turns backend stream events into deltas and the final message.

    One instance per call. ``feed`` is called for every decoded event in
    order; ``finish`` is called once after the transport is exhausted.
    """

    @abstractmethod
    def feed(self, event: dict[str, Any]) -> list[StreamDelta]: ...

    @abstractmethod
    def finish(self) -> MessageResponse: ...


class _StreamFailed:
    def __init__(self, error: BaseException) -> None:
        self.error = error


_END = object()


class StreamHandle:
    """Single-consumer delta channel plus deferred full message of one call.

    One background task pumps the transport into a queue and resolves the
    future once the transport finished. The task starts on first access to
    either side, so a caller that only awaits ``full_message()`` still gets
    the result without a second network call.
    """

    def __init__(
        self,
        source: Callable[[], AsyncIterator[StreamDelta]],
        finish: Callable[[], MessageResponse],
    ) -> None:
        self._source = source
        self._finish = finish
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._result: asyncio.Future[MessageResponse] | None = None
        self._task: asyncio.Task[None] | None = None
        self._consumed = False

    def _ensure_started(self) -> asyncio.Future[MessageResponse]:
        if self._result is None:
            self._result = asyncio.get_running_loop().create_future()
            self._task = asyncio.create_task(self._pump(), name="provider-stream")
        return self._result

    async def _pump(self) -> None:
        assert self._result is not None
        try:
            async for delta in self._source():
                self._queue.put_nowait(delta)
            response = self._finish()
        except asyncio.CancelledError:
            self._result.cancel()
            self._queue.put_nowait(_StreamFailed(asyncio.CancelledError()))
            raise
        except Exception as e:
            self._result.set_exception(e)
            self._queue.put_nowait(_StreamFailed(e))
            return
        self._result.set_result(response)
        self._queue.put_nowait(_END)

    def deltas(self) -> AsyncIterator[StreamDelta]:
        """Return the delta iterator. Can be called only once."""
        if self._consumed:
            raise RuntimeError("Stream deltas can only be consumed once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamDelta]:
        result = self._ensure_started()
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, _StreamFailed):
                if result.done() and not result.cancelled():
                    result.exception()  # mark retrieved; raised below instead
                raise item.error
            yield item

    async def full_message(self) -> MessageResponse:
        """Wait for the transport to finish and return the accumulated result."""
        return await asyncio.shield(self._ensure_started())

    async def aclose(self) -> None:
        """Abort the underlying transport if it is still running."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        # Cancelled before the task ever ran
        if self._result is not None and not self._result.done():
            self._result.cancel()
            self._queue.put_nowait(_StreamFailed(asyncio.CancelledError()))


class ProviderAdapter(ABC):
    """Canonical protocol over one backend family.

    Subclasses implement the payload/response translation; transport
    errors propagate unmodified and nothing is retried here.
    """

    provider: Provider
    display_name: str = ""

    def __init__(
        self,
        credentials: CredentialProvider,
        settings: Settings,
        tools: Sequence[ToolDefinition] = (),
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._credentials = credentials
        self._settings = settings
        self._tools = list(tools)
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=settings.api_timeout_connect,
                read=settings.api_timeout_read,
                write=10.0,
                pool=10.0,
            ),
        )

    @property
    def default_model(self) -> str:
        return DEFAULT_MODELS[self.provider]

    @property
    def small_model(self) -> str:
        return SMALL_MODELS[self.provider]

    def api_key(self) -> str:
        """Resolve the credential or raise ConfigError before any I/O."""
        key = self._credentials.get(self.provider.value)
        if not key:
            raise ConfigError(f"{self.display_name} API key is required")
        return key

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def prompt(
        self,
        messages: Sequence[Message],
        model: str | None = None,
        system_prompt: str | None = None,
    ) -> MessageResponse:
        """Single non-streaming round trip."""
        api_key = self.api_key()
        model = model or self.default_model
        url, headers = self._endpoint(model, api_key, stream=False)
        payload = self._build_payload(messages, model, system_prompt, stream=False)
        response = await self._http.post(url, json=payload, headers=headers)
        response.raise_for_status()
        return self._parse_response(response.json())

    def stream(
        self,
        messages: Sequence[Message],
        system_prompt: str | None = None,
        model: str | None = None,
    ) -> StreamHandle:
        """Start a streaming round trip.

        The credential is checked here, synchronously; the request itself
        is only sent once the returned handle is consumed.
        """
        api_key = self.api_key()
        model = model or self.default_model
        url, headers = self._endpoint(model, api_key, stream=True)
        payload = self._build_payload(messages, model, system_prompt, stream=True)
        accumulator = self._new_accumulator()

        async def source() -> AsyncIterator[StreamDelta]:
            async with self._http.stream("POST", url, json=payload, headers=headers) as response:
                if response.is_error:
                    await response.aread()
                    response.raise_for_status()
                async for event in iter_sse_data(response):
                    for delta in accumulator.feed(event):
                        yield delta

        logger.debug("Streaming %s request (model=%s, messages=%d)", self.provider, model, len(messages))
        return StreamHandle(source, accumulator.finish)

    async def summarize(self, text: str) -> str:
        """Prompt the provider's small model and return its first text block."""
        response = await self.prompt([Message.user_text(text)], model=self.small_model)
        return response.message.first_text() or ""

    # ------------------------------------------------------------------
    # Backend specific
    # ------------------------------------------------------------------

    @abstractmethod
    def _endpoint(self, model: str, api_key: str, stream: bool) -> tuple[str, dict[str, str]]:
        """Return (url, headers) for a request."""

    @abstractmethod
    def _build_payload(
        self,
        messages: Sequence[Message],
        model: str,
        system_prompt: str | None,
        stream: bool,
    ) -> dict[str, Any]: ...

    @abstractmethod
    def _parse_response(self, data: dict[str, Any]) -> MessageResponse: ...

    @abstractmethod
    def _new_accumulator(self) -> StreamAccumulator: ...
