"""
Planner client: the async face of the Bedrock transport.

Adds what the transport leaves out: a per-request timeout with a cancellation token,
bounded exponential-backoff retries, and incremental streaming to an optional sink.
"""

import asyncio
import logging
import queue
import threading
import time
from functools import partial
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from bedrock_service import BedrockService, GenerationConfig, PlannerError, PlannerResponse
from config import app_config, model_config
from tools import TOOL_DEFINITIONS

logger = logging.getLogger(__name__)

# Receives each text delta; None means "discard what you have received so far"
StreamSink = Callable[[Optional[str]], Awaitable[None]]

MAX_RETRY_DELAY_MS = 10000

_DONE = object()


def retry_delay_ms(attempt: int) -> int:
    """Backoff before the next attempt, `attempt` being the 0-based failed attempt."""
    return min(1000 * 2 ** attempt, MAX_RETRY_DELAY_MS)


def split_system(messages: List[Dict[str, Any]]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Pull system-role turns out of a message list (Bedrock takes the system prompt separately)."""
    system_parts = [m["content"] for m in messages if m.get("role") == "system"]
    turns = [m for m in messages if m.get("role") != "system"]
    return ("\n\n".join(system_parts) if system_parts else None), turns


class PlannerClient:
    """Issues chat requests to the planner endpoint on behalf of the agent loop."""

    def __init__(
        self,
        service: BedrockService,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        enable_streaming: Optional[bool] = None,
        tool_negotiation: Optional[bool] = None,
        generation_config: Optional[GenerationConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.service = service
        self.timeout = timeout if timeout is not None else app_config.planner_timeout
        self.max_retries = max_retries if max_retries is not None else app_config.planner_max_retries
        self.enable_streaming = app_config.enable_streaming if enable_streaming is None else enable_streaming
        self.tool_negotiation = app_config.tool_negotiation if tool_negotiation is None else tool_negotiation
        self.generation_config = generation_config or GenerationConfig(
            max_tokens=model_config.max_tokens,
            temperature=model_config.temperature,
            throughput_mode=model_config.throughput_mode,
        )
        self._sleep = sleep
        self._cancel_event: Optional[threading.Event] = None
        self._stream_queue: Optional[queue.Queue] = None
        self._cancel_waiter: Optional[Tuple[asyncio.AbstractEventLoop, asyncio.Event]] = None
        self._cancelled = False

    def cancel(self) -> None:
        """Abort the in-flight request; the current call raises a non-retryable PlannerError.

        Safe to call from any thread. A cancel with no request in flight is forgotten
        when the next request starts.
        """
        self._cancelled = True
        if self._cancel_event is not None:
            self._cancel_event.set()
        if self._stream_queue is not None:
            # Wake the reader blocked on the queue
            self._stream_queue.put(_DONE)
        if self._cancel_waiter is not None:
            loop, waiter = self._cancel_waiter
            loop.call_soon_threadsafe(waiter.set)

    # ------------------------------------------------------------------
    # Single attempts
    # ------------------------------------------------------------------

    async def stream(self, messages: List[Dict[str, Any]]) -> AsyncIterator[str]:
        """One streaming attempt: yields text deltas as they arrive.

        The whole read is bounded by the client timeout. On expiry the producer
        thread is told to stop and a retryable PlannerError is raised.
        """
        system_prompt, turns = split_system(messages)
        loop = asyncio.get_running_loop()
        cancel_event = threading.Event()
        self._cancel_event = cancel_event
        cq: queue.Queue = queue.Queue()
        self._stream_queue = cq

        def _producer():
            try:
                for delta in self.service.generate_stream(
                    turns,
                    system_prompt=system_prompt,
                    config=self.generation_config,
                    cancel_event=cancel_event,
                ):
                    cq.put(delta)
                cq.put(_DONE)
            except Exception as exc:
                cq.put(exc)

        t = threading.Thread(target=_producer, daemon=True)
        t.start()
        deadline = time.monotonic() + self.timeout

        try:
            while True:
                if self._cancelled:
                    raise PlannerError("Planner request cancelled", code="cancelled")
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise _timeout_error(self.timeout)
                try:
                    item = await asyncio.wait_for(loop.run_in_executor(None, cq.get), remaining)
                except asyncio.TimeoutError:
                    raise _timeout_error(self.timeout)
                if item is _DONE:
                    if cancel_event.is_set():
                        raise PlannerError("Planner request cancelled", code="cancelled")
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            cancel_event.set()
            # Release an executor thread still blocked on cq.get
            cq.put(_DONE)
            self._cancel_event = None
            self._stream_queue = None

    async def _generate(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> PlannerResponse:
        """One non-streaming attempt bounded by the client timeout and interruptible by cancel()."""
        if self._cancelled:
            raise PlannerError("Planner request cancelled", code="cancelled")
        system_prompt, turns = split_system(messages)
        loop = asyncio.get_running_loop()
        call = partial(
            self.service.generate,
            turns,
            system_prompt=system_prompt,
            config=self.generation_config,
            tools=tools,
        )
        waiter = asyncio.Event()
        self._cancel_waiter = (loop, waiter)
        request = loop.run_in_executor(None, call)
        cancelled = asyncio.ensure_future(waiter.wait())
        try:
            done, _ = await asyncio.wait(
                {request, cancelled}, timeout=self.timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            self._cancel_waiter = None
            cancelled.cancel()
            if not request.done():
                request.cancel()

        if request in done:
            return request.result()
        if cancelled in done:
            logger.info("Planner request cancelled while in flight")
            raise PlannerError("Planner request cancelled", code="cancelled")
        raise _timeout_error(self.timeout)

    # ------------------------------------------------------------------
    # Retrying entry points
    # ------------------------------------------------------------------

    async def ask(self, messages: List[Dict[str, Any]], stream_sink: Optional[StreamSink] = None) -> str:
        """Full planner text for `messages`.

        With a sink and streaming enabled, deltas are forwarded as they arrive. A failed
        attempt that already delivered deltas is followed by stream_sink(None).
        """
        use_stream = stream_sink is not None and self.enable_streaming
        self._cancelled = False

        attempt = 0
        while True:
            delivered = False
            try:
                if use_stream:
                    parts: List[str] = []
                    async for delta in self.stream(messages):
                        parts.append(delta)
                        delivered = True
                        await stream_sink(delta)
                    return "".join(parts)
                response = await self._generate(messages)
                return response.text
            except PlannerError as e:
                if delivered:
                    await stream_sink(None)
                await self._before_retry(e, attempt)
            attempt += 1

    async def negotiate(self, messages: List[Dict[str, Any]]) -> PlannerResponse:
        """Offer the operation catalog as tools; the answer is never streamed."""
        self._cancelled = False
        attempt = 0
        while True:
            try:
                return await self._generate(messages, tools=TOOL_DEFINITIONS)
            except PlannerError as e:
                await self._before_retry(e, attempt)
            attempt += 1

    async def next_response(
        self,
        messages: List[Dict[str, Any]],
        stream_sink: Optional[StreamSink] = None,
    ) -> PlannerResponse:
        """One planner round: either catalog negotiation or (optionally streamed) free text."""
        if self.tool_negotiation:
            return await self.negotiate(messages)
        text = await self.ask(messages, stream_sink=stream_sink)
        return PlannerResponse(kind="text", text=text)

    async def _before_retry(self, error: PlannerError, attempt: int) -> None:
        """Re-raise when the error is final, otherwise back off."""
        if not error.retryable:
            logger.error(f"Planner request failed (not retryable): {error}")
            raise error
        if attempt >= self.max_retries:
            logger.error(f"Planner request failed after {attempt + 1} attempts: {error}")
            raise error
        delay = retry_delay_ms(attempt)
        logger.warning(
            f"Planner attempt {attempt + 1}/{self.max_retries + 1} failed: {error}. "
            f"Retrying in {delay}ms"
        )
        await self._sleep(delay / 1000)


def _timeout_error(timeout: float) -> PlannerError:
    return PlannerError(f"Planner request timed out after {timeout}s", code="timeout", retryable=True)
