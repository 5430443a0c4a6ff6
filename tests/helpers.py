"""Helpers used by the unit tests."""

from __future__ import annotations

from abc import ABCMeta
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from anteater_mq.message import Message

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Generator, Iterator

    from anteater_mq.parameters import ConnectionParameters


def ANY(*cls: type, message: str | None = None) -> object:  # noqa: N802
    """Compare equal to everything, as long as it is of the same type."""

    class WrappedAny(metaclass=ABCMeta):  # noqa: B024
        def __eq__(self, other: object) -> bool:
            if len(cls) < 1:
                return True

            return isinstance(other, cls) and (message is None or (message is not None and message in str(other)))

        def __ne__(self, other: object) -> bool:
            return not self.__eq__(other)

        def __repr__(self) -> str:
            c = cls[0] if len(cls) == 1 else cls
            representation: list[str] = [f'<ANY({c})', '>']

            if message is not None:
                representation.insert(-1, f", message='{message}'")

            return ''.join(representation)

        def __hash__(self) -> int:
            return id(self)

    for c in cls:
        WrappedAny.register(c)

    return WrappedAny()


class FakeQueue:
    def __init__(self, name: str) -> None:
        self.name = name


class FakeReceiver:
    def __init__(self, session: FakeSession) -> None:
        self.session = session

    def receive(self, timeout: int) -> Message | None:
        self.session.slices.append(timeout)

        if self.session.on_slice is not None:
            self.session.on_slice(len(self.session.slices))

        if len(self.session.slices) > self.session.deliver_after and len(self.session.messages) > 0:
            return self.session.messages.pop(0)

        return None


class FakeSender:
    def __init__(self, session: FakeSession) -> None:
        self.session = session

    def send(self, message: Message) -> None:
        self.session.sent.append(message)
        self.session.messages.append(message)


class FakeBrowser:
    def __init__(self, session: FakeSession) -> None:
        self.session = session

    def __iter__(self) -> Iterator[Message]:
        for index, message in enumerate(list(self.session.messages), start=1):
            if self.session.on_browse is not None:
                self.session.on_browse(index)

            yield message


class FakeSession:
    """In-memory session, records what operations do with it."""

    messages: list[Message]
    sent: list[Message]
    slices: list[int]
    opened: list[str]
    released: list[str]
    deliver_after: int
    on_slice: Callable[[int], None] | None
    on_browse: Callable[[int], None] | None

    def __init__(self, messages: list[Message] | None = None, *, deliver_after: int = 0) -> None:
        self.messages = list(messages or [])
        self.sent = []
        self.slices = []
        self.opened = []
        self.released = []
        self.deliver_after = deliver_after
        self.on_slice = None
        self.on_browse = None

    def create_text_message(self, text: str) -> Message:
        return Message.text(text)

    @contextmanager
    def _scoped(self, kind: str, handle: Any) -> Generator[Any, None, None]:
        self.opened.append(kind)
        try:
            yield handle
        finally:
            self.released.append(kind)

    def receiver(self, _destination: Any) -> Any:
        return self._scoped('receiver', FakeReceiver(self))

    def sender(self, _destination: Any) -> Any:
        return self._scoped('sender', FakeSender(self))

    def browser(self, _destination: Any) -> Any:
        return self._scoped('browser', FakeBrowser(self))


class FakeRunner:
    """Stands in for `with_queue_session`, runs operations against one `FakeSession`."""

    def __init__(self, session: FakeSession | None = None) -> None:
        self.session = session if session is not None else FakeSession()
        self.parameters: list[ConnectionParameters] = []

    def __call__(self, parameters: ConnectionParameters, operation: Callable[[Any, Any], Any]) -> Any:
        self.parameters.append(parameters)

        return operation(self.session, FakeQueue(parameters.queue_name))
