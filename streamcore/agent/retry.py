"""
Caller-side retries and timeouts around `StreamingProvider.stream`.

The provider and the adapters never retry. `stream_with_retry` re-runs a turn
that failed before any text reached the caller, backing off exponentially
between attempts, and rewrites every `on_error` hook with the attempt number
and whether another attempt follows.

Timeouts are cancellations: the request limit fires once for the whole call,
the chunk limit fires when the next chunk takes too long. Either way the
stream ends without an error and `token.reason` says which limit was hit.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from contextlib import aclosing
from typing import AsyncIterator, Optional

from streamcore.agent.callbacks import ErrorHook, StreamCallbacks, invoke_callback
from streamcore.agent.provider import StreamingProvider
from streamcore.cancellation import CancellationToken
from streamcore.config import RetryPolicy, TimeoutPolicy
from streamcore.models.base import Message, StreamConfig

logger = logging.getLogger(__name__)


class ChunkWatchdog:
    """Cancels the token unless `disarm()` follows `arm()` within the timeout."""

    def __init__(self, token: CancellationToken, timeout: Optional[float]):
        self.token = token
        self.timeout = timeout
        self._timer: Optional[asyncio.TimerHandle] = None

    def arm(self) -> None:
        self.disarm()
        if self.timeout is None or self.token.cancelled:
            return
        self._timer = asyncio.get_running_loop().call_later(
            self.timeout, self.token.cancel, f"timed out waiting {self.timeout}s for a chunk"
        )

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


async def _backoff(token: CancellationToken, delay: float) -> bool:
    """Sleep for `delay` seconds. False when the token fires first."""
    if delay <= 0:
        return not token.cancelled
    try:
        await asyncio.wait_for(token.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return True
    return False


async def stream_with_retry(
    provider: StreamingProvider,
    messages: list[Message],
    config: Optional[StreamConfig] = None,
    retry: Optional[RetryPolicy] = None,
    timeouts: Optional[TimeoutPolicy] = None,
) -> AsyncIterator[str]:
    """
    Yield the text of one turn, retrying failed attempts that produced nothing.
    The last error is raised once the policy gives up.
    """
    config = config or StreamConfig()
    retry = retry or RetryPolicy()
    timeouts = timeouts or TimeoutPolicy()
    callbacks = config.callbacks or StreamCallbacks()
    token = config.cancellation or CancellationToken()
    watchdog = ChunkWatchdog(token, timeouts.chunk_timeout)

    deadline: Optional[asyncio.TimerHandle] = None
    if timeouts.request_timeout is not None:
        deadline = asyncio.get_running_loop().call_later(
            timeouts.request_timeout, token.cancel, f"timed out after {timeouts.request_timeout}s"
        )

    attempt = 0
    try:
        while True:
            produced = False

            async def report(hook: ErrorHook):
                await invoke_callback(callbacks.on_error, hook.model_copy(update={
                    "attempt_number": attempt,
                    "recoverable": not produced and retry.allows(hook.error, attempt),
                }))

            attempt_config = config.model_copy(update={
                "cancellation": token,
                "callbacks": dataclasses.replace(callbacks, on_error=report),
            })
            try:
                watchdog.arm()
                async with aclosing(provider.stream(messages, attempt_config)) as chunks:
                    async for chunk in chunks:
                        watchdog.disarm()
                        produced = True
                        yield chunk
                        watchdog.arm()
                return
            except Exception as exc:
                if produced or token.cancelled or not retry.allows(exc, attempt):
                    raise
                delay = retry.delay_for(attempt)
                logger.warning(
                    "%s attempt %d failed, retrying in %.1fs: %s", provider.name, attempt + 1, delay, exc
                )
            finally:
                watchdog.disarm()

            attempt += 1
            if not await _backoff(token, delay):
                logger.info("%s retry abandoned: %s", provider.name, token.reason)
                return
    finally:
        if deadline is not None:
            deadline.cancel()
