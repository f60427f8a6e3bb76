"""
Error taxonomy for the streaming layer.

Configuration errors are raised before an adapter exists. Everything else is
raised inside an adapter and surfaced to the caller as an `error` StreamEvent.
Cancellation is not an error and has no exception here.
"""
from __future__ import annotations

# Status codes the caller may reasonably retry on
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})


class StreamCoreError(Exception):
    """Base class for every error raised by streamcore."""


class ConfigurationError(StreamCoreError):
    """Missing credential, missing model, unknown provider, unreadable config."""


class UnsupportedInputError(StreamCoreError):
    """Input the vendor request cannot carry (attachment type, system placement)."""


class TransportError(StreamCoreError):
    """Network failure or non-2xx response while talking to a vendor."""

    def __init__(self, message: str, status_code: int | None = None, connection_failed: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.connection_failed = connection_failed

    @property
    def retryable(self) -> bool:
        if self.connection_failed:
            return True
        return self.status_code in RETRYABLE_STATUS_CODES


class ProtocolError(StreamCoreError):
    """The vendor stream did something the protocol does not allow."""


class UnexpectedStopReason(ProtocolError):
    def __init__(self, provider: str, stop_reason: str):
        super().__init__(f"{provider}: unexpected stop reason '{stop_reason}'")
        self.provider = provider
        self.stop_reason = stop_reason
