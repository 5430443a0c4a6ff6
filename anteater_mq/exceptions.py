"""Exceptions raised by anteater_mq."""

from __future__ import annotations

__all__ = [
    'BrokerError',
    'ConfigurationError',
    'DecodeError',
    'MessageFormatError',
    'MessageQueueError',
    'UnknownActionError',
]


class MessageQueueError(Exception):
    pass


class ConfigurationError(MessageQueueError, ValueError):
    """Missing or malformed action attribute, always raised before the broker is contacted."""


class BrokerError(MessageQueueError):
    """Failure reported by the queue manager, or while talking to it."""

    comp: int | None
    reason: int | None

    def __init__(self, message: str, *, comp: int | None = None, reason: int | None = None) -> None:
        super().__init__(message)
        self.comp = comp
        self.reason = reason


class MessageFormatError(BrokerError):
    """Message body is malformed, or can not be read in the requested shape."""


class DecodeError(MessageQueueError):
    pass


class UnknownActionError(MessageQueueError):
    pass
