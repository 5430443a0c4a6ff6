"""Queue operations, each performed against an open session and a resolved queue.

| Request   | Result                                                                               |
| --------- | ------------------------------------------------------------------------------------ |
| `Send`    | `None`, one persistent text message per payload string, in order                     |
| `Receive` | decoded body of one consumed message, `None` if none arrived within the timeout      |
| `Browse`  | decoded bodies of all messages currently on the queue, `None` if the queue was empty |
| `Count`   | number of messages currently on the queue                                            |

`Receive` waits in slices of `SLICE` milliseconds, and `Receive`, `Browse` and `Count` check the cancellation event
between units of work. A cancelled operation returns what it has so far, it is not an error.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from itertools import repeat
from threading import Event
from time import perf_counter as time
from typing import TYPE_CHECKING, Any, Protocol

from .codec import decode
from .exceptions import ConfigurationError, MessageFormatError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterator
    from contextlib import AbstractContextManager

    from .message import Message
    from .parameters import ConnectionParameters

__all__ = [
    'SLICE',
    'Browse',
    'Count',
    'OperationRequest',
    'Receive',
    'Send',
    'browse',
    'count',
    'receive',
    'run_operation',
    'send',
    'wait_slices',
]

logger = logging.getLogger(__name__)

SLICE = 100


class Receiver(Protocol):
    def receive(self, timeout: int) -> Message | None: ...


class Sender(Protocol):
    def send(self, message: Message) -> None: ...


class Browser(Protocol):
    def __iter__(self) -> Iterator[Message]: ...


class Destination(Protocol):
    name: str


class Session(Protocol):
    def create_text_message(self, text: str) -> Message: ...

    def receiver(self, destination: Any) -> AbstractContextManager[Receiver]: ...

    def sender(self, destination: Any) -> AbstractContextManager[Sender]: ...

    def browser(self, destination: Any) -> AbstractContextManager[Browser]: ...


@dataclass(frozen=True)
class Send:
    payload: str | Sequence[str]

    def __post_init__(self) -> None:
        if isinstance(self.payload, str):
            return

        if isinstance(self.payload, Sequence) and all(isinstance(value, str) for value in self.payload):
            return

        message = f'payload must be a string or a sequence of strings, not {type(self.payload).__name__}'
        raise ConfigurationError(message)

    @property
    def messages(self) -> list[str]:
        if isinstance(self.payload, str):
            return [self.payload]

        return list(self.payload)


@dataclass(frozen=True)
class Receive:
    timeout: int = field(default=0)
    type_hint: str | None = field(default=None)

    def __post_init__(self) -> None:
        if self.timeout < 0:
            message = f'timeout must be zero or more milliseconds, not {self.timeout}'
            raise ConfigurationError(message)


@dataclass(frozen=True)
class Browse:
    type_hint: str | None = field(default=None)


@dataclass(frozen=True)
class Count:
    pass


OperationRequest = Send | Receive | Browse | Count


def wait_slices(timeout: int) -> Iterator[int]:
    """Wait intervals, in milliseconds, a receive with `timeout` is split into.

    `0` waits forever in slices of `SLICE`. A timeout shorter than `SLICE` is one slice of `timeout`, otherwise
    `timeout // SLICE` slices of `SLICE`.
    """
    if timeout < 0:
        message = f'timeout must be zero or more milliseconds, not {timeout}'
        raise ConfigurationError(message)

    if timeout == 0:
        return repeat(SLICE)

    if timeout < SLICE:
        return repeat(timeout, 1)

    return repeat(SLICE, max(timeout // SLICE, 1))


def send(session: Session, queue: Destination, payload: str | Sequence[str]) -> None:
    messages = Send(payload).messages

    with session.sender(queue) as sender:
        for index, text in enumerate(messages, start=1):
            message = session.create_text_message(text)
            message.persistent = True
            sender.send(message)
            logger.debug('sent message %d of %d to %s', index, len(messages), queue.name)

    logger.info('sent %d messages to %s', len(messages), queue.name)


def receive(session: Session, queue: Destination, timeout: int, type_hint: str | None, cancel: Event) -> Any:
    with session.receiver(queue) as receiver:
        message: Message | None = None
        slices = 0
        start = time()

        for interval in wait_slices(timeout):
            slices += 1

            # a message that can not be read is consumed all the same
            try:
                message = receiver.receive(interval)
            except MessageFormatError:
                logger.exception('failed to read message received from %s', queue.name)
                return None

            if message is not None:
                break

            if cancel.is_set():
                logger.debug('receive from %s cancelled after %d slices', queue.name, slices)
                break

        delta = int((time() - start) * 1000)

        if message is None:
            logger.info('no message on %s after %d ms', queue.name, delta)
            return None

        logger.info('received message from %s after %d ms', queue.name, delta)

        try:
            return decode(message, type_hint)
        except MessageFormatError:
            logger.exception('failed to decode message received from %s', queue.name)
            return None


def browse(session: Session, queue: Destination, type_hint: str | None, cancel: Event) -> list[Any] | None:
    result: list[Any] = []

    with session.browser(queue) as browser:
        for message in browser:
            if cancel.is_set():
                logger.debug('browse of %s cancelled after %d messages', queue.name, len(result))
                break

            result.append(decode(message, type_hint))

    logger.info('browsed %d messages on %s', len(result), queue.name)

    return result if len(result) > 0 else None


def count(session: Session, queue: Destination, cancel: Event) -> int:
    result = 0

    with session.browser(queue) as browser:
        for _ in browser:
            if cancel.is_set():
                logger.debug('count of %s cancelled after %d messages', queue.name, result)
                break

            result += 1

    logger.info('%d messages on %s', result, queue.name)

    return result


def _create_operation(request: OperationRequest, cancel: Event) -> Callable[[Any, Any], Any]:
    match request:
        case Send(payload=payload):
            return lambda session, queue: send(session, queue, payload)
        case Receive(timeout=timeout, type_hint=type_hint):
            return lambda session, queue: receive(session, queue, timeout, type_hint, cancel)
        case Browse(type_hint=type_hint):
            return lambda session, queue: browse(session, queue, type_hint, cancel)
        case Count():
            return lambda session, queue: count(session, queue, cancel)
        case _:
            message = f'{type(request).__name__} is not a queue operation'
            raise ConfigurationError(message)


def run_operation(
    parameters: ConnectionParameters,
    request: OperationRequest,
    cancel: Event | None = None,
    *,
    runner: Callable[[ConnectionParameters, Callable[[Any, Any], Any]], Any] | None = None,
) -> Any:
    """Perform `request` on the queue described by `parameters`, within its own connection and session."""
    operation = _create_operation(request, cancel if cancel is not None else Event())

    if runner is None:
        from .session import with_queue_session as runner  # noqa: PLC0415

    return runner(parameters, operation)
