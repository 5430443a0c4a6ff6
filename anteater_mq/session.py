"""Connection and session lifecycle for one queue operation on an IBM MQ queue manager.

Each operation gets its own connection and exactly one session. The session is non-transacted with automatic
acknowledge, every get and put is done outside of syncpoint. Queue handles, the session and the connection are released
on every exit path, innermost first. If releasing fails while an error is already on its way out, the release failure
is logged and the original error is the one that propagates.

!!! warning

    Native IBM MQ client libraries, and the extra `mq` package, must be installed for this module to be importable.

    ```plain
    pip3 install anteater-mq[mq]
    ```
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from os import environ
from threading import Lock
from time import perf_counter as time
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

import pymqi

from .exceptions import BrokerError
from .message import Message
from .parameters import TARGET_CLIENT_JMS, TARGET_CLIENT_MQ, TRANSPORT_BINDINGS, ConnectionParameters
from .rfh2 import Rfh2Encoder

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Generator, Iterator

__all__ = [
    'QueueConnection',
    'QueueDestination',
    'QueueSession',
    'connect',
    'queue_session',
    'with_queue_session',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')

MQ_APPL_NAME_LENGTH = 28

_application_name_lock = Lock()


class Closeable(Protocol):
    def close(self) -> None: ...


C = TypeVar('C', bound=Closeable)


def _broker_error(action: str, error: pymqi.Error) -> BrokerError:
    return BrokerError(
        f'{action}: {error}',
        comp=getattr(error, 'comp', None),
        reason=getattr(error, 'reason', None),
    )


@contextmanager
def _scoped(resource: C, description: str) -> Generator[C, None, None]:
    try:
        yield resource
    except BaseException:
        try:
            resource.close()
        except Exception:
            logger.warning('failed to release %s while handling another error', description, exc_info=True)
        raise
    else:
        resource.close()


@contextmanager
def _application_name(name: str) -> Generator[None, None, None]:
    # the MQ client reads the application name of a connection from MQAPPLNAME, which is process wide
    with _application_name_lock:
        previous = environ.get('MQAPPLNAME', None)
        environ['MQAPPLNAME'] = name[:MQ_APPL_NAME_LENGTH]

        try:
            yield
        finally:
            if previous is None:
                environ.pop('MQAPPLNAME', None)
            else:
                environ['MQAPPLNAME'] = previous


class QueueDestination:
    name: str
    target_client: int

    def __init__(self, name: str, target_client: int = TARGET_CLIENT_JMS) -> None:
        self.name = name
        self.target_client = target_client

    def __repr__(self) -> str:
        return f'queue:///{self.name}?targetClient={self.target_client}'


class _QueueHandle:
    _session: QueueSession
    _queue: pymqi.Queue | None
    destination: QueueDestination

    def __init__(self, session: QueueSession, destination: QueueDestination, open_options: int) -> None:
        if session.closed:
            message = 'session is closed'
            raise BrokerError(message)

        self._session = session
        self.destination = destination

        try:
            self._queue = pymqi.Queue(session.connection.qmgr, destination.name, open_options | pymqi.CMQC.MQOO_FAIL_IF_QUIESCING)
        except pymqi.Error as e:
            raise _broker_error(f'failed to open {destination.name}', e) from e

        session.track(self)

    @property
    def queue(self) -> pymqi.Queue:
        if self._queue is None:
            message = f'{self.destination.name} is closed'
            raise BrokerError(message)

        return self._queue

    @property
    def closed(self) -> bool:
        return self._queue is None

    def close(self) -> None:
        if self._queue is None:
            return

        queue, self._queue = self._queue, None
        self._session.untrack(self)

        try:
            queue.close()
        except pymqi.Error as e:
            raise _broker_error(f'failed to close {self.destination.name}', e) from e


class QueueReceiver(_QueueHandle):
    def __init__(self, session: QueueSession, destination: QueueDestination) -> None:
        super().__init__(session, destination, pymqi.CMQC.MQOO_INPUT_AS_Q_DEF)

    def receive(self, timeout: int) -> Message | None:
        """Wait at most `timeout` milliseconds for a message, `None` if there was none."""
        if not self._session.connection.started:
            message = 'connection is not started'
            raise BrokerError(message)

        md = pymqi.MD()
        gmo = pymqi.GMO(
            Options=pymqi.CMQC.MQGMO_WAIT | pymqi.CMQC.MQGMO_NO_SYNCPOINT | pymqi.CMQC.MQGMO_FAIL_IF_QUIESCING,
            WaitInterval=timeout,
        )

        try:
            raw = self.queue.get(None, md, gmo)
        except pymqi.MQMIError as e:
            if e.comp == pymqi.CMQC.MQCC_FAILED and e.reason == pymqi.CMQC.MQRC_NO_MSG_AVAILABLE:
                return None

            raise _broker_error(f'failed to get message from {self.destination.name}', e) from e
        except pymqi.Error as e:
            raise _broker_error(f'failed to get message from {self.destination.name}', e) from e

        return Message.from_mq(raw, md.get())


class QueueSender(_QueueHandle):
    def __init__(self, session: QueueSession, destination: QueueDestination) -> None:
        super().__init__(session, destination, pymqi.CMQC.MQOO_OUTPUT)

    def _create_md(self, message: Message) -> tuple[pymqi.MD, bytes]:
        md = pymqi.MD()
        md.Persistence = pymqi.CMQC.MQPER_PERSISTENT if message.persistent else pymqi.CMQC.MQPER_NOT_PERSISTENT
        md.CodedCharSetId = Rfh2Encoder.CCSID

        if self.destination.target_client == TARGET_CLIENT_MQ:
            md.Format = pymqi.CMQC.MQFMT_STRING if message.body_type == 'text' else pymqi.CMQC.MQFMT_NONE
            return md, message.payload

        encoder = Rfh2Encoder(
            message.payload,
            queue_name=self.destination.name,
            message_type=f'jms_{message.body_type}' if message.body_type is not None else 'jms_none',
            persistent=message.persistent,
            properties={key: str(value) for key, value in message.properties.items()},
        )

        md.Format = pymqi.CMQC.MQFMT_RF_HEADER_2
        md.Encoding = Rfh2Encoder.ENCODING

        return md, encoder.get_message()

    def send(self, message: Message) -> None:
        md, buffer = self._create_md(message)
        pmo = pymqi.PMO(Options=pymqi.CMQC.MQPMO_NO_SYNCPOINT | pymqi.CMQC.MQPMO_NEW_MSG_ID | pymqi.CMQC.MQPMO_FAIL_IF_QUIESCING)

        try:
            self.queue.put(buffer, md, pmo)
        except pymqi.Error as e:
            raise _broker_error(f'failed to put message on {self.destination.name}', e) from e

        message.metadata = md.get()


class QueueBrowser(_QueueHandle):
    def __init__(self, session: QueueSession, destination: QueueDestination) -> None:
        super().__init__(session, destination, pymqi.CMQC.MQOO_BROWSE)

    def __iter__(self) -> Iterator[Message]:
        browse_option = pymqi.CMQC.MQGMO_BROWSE_FIRST

        while True:
            md = pymqi.MD()
            gmo = pymqi.GMO(Options=browse_option | pymqi.CMQC.MQGMO_NO_WAIT | pymqi.CMQC.MQGMO_FAIL_IF_QUIESCING)

            try:
                raw = self.queue.get(None, md, gmo)
            except pymqi.MQMIError as e:
                if e.comp == pymqi.CMQC.MQCC_FAILED and e.reason == pymqi.CMQC.MQRC_NO_MSG_AVAILABLE:
                    return

                raise _broker_error(f'failed to browse {self.destination.name}', e) from e
            except pymqi.Error as e:
                raise _broker_error(f'failed to browse {self.destination.name}', e) from e

            yield Message.from_mq(raw, md.get())

            browse_option = pymqi.CMQC.MQGMO_BROWSE_NEXT


class QueueSession:
    connection: QueueConnection
    _handles: list[_QueueHandle]
    _closed: bool

    def __init__(self, connection: QueueConnection) -> None:
        self.connection = connection
        self._handles = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def track(self, handle: _QueueHandle) -> None:
        self._handles.append(handle)

    def untrack(self, handle: _QueueHandle) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    def create_queue(self, name: str) -> QueueDestination:
        return QueueDestination(name)

    def create_text_message(self, text: str) -> Message:
        return Message.text(text)

    @contextmanager
    def receiver(self, destination: QueueDestination) -> Generator[QueueReceiver, None, None]:
        with _scoped(QueueReceiver(self, destination), f'receiver for {destination.name}') as receiver:
            yield receiver

    @contextmanager
    def sender(self, destination: QueueDestination) -> Generator[QueueSender, None, None]:
        with _scoped(QueueSender(self, destination), f'sender for {destination.name}') as sender:
            yield sender

    @contextmanager
    def browser(self, destination: QueueDestination) -> Generator[QueueBrowser, None, None]:
        with _scoped(QueueBrowser(self, destination), f'browser for {destination.name}') as browser:
            yield browser

    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        errors: list[BrokerError] = []

        for handle in list(self._handles):
            try:
                handle.close()
            except BrokerError as e:
                errors.append(e)

        self._handles.clear()

        if len(errors) > 0:
            raise errors[0]


class QueueConnection:
    qmgr: pymqi.QueueManager
    parameters: ConnectionParameters
    started: bool
    _session: QueueSession | None
    _closed: bool

    def __init__(self, qmgr: pymqi.QueueManager, parameters: ConnectionParameters) -> None:
        self.qmgr = qmgr
        self.parameters = parameters
        self.started = False
        self._session = None
        self._closed = False

    def create_session(self) -> QueueSession:
        if self._session is not None:
            message = 'connection already has a session'
            raise BrokerError(message)

        self._session = QueueSession(self)

        return self._session

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.started = False

    def close(self) -> None:
        if self._closed:
            return

        self._closed = True
        self.started = False

        logger.debug('closing connection to %s', self.parameters.queue_manager)

        try:
            self.qmgr.disconnect()
        except pymqi.Error as e:
            raise _broker_error(f'failed to disconnect from {self.parameters.queue_manager}', e) from e


def connect(parameters: ConnectionParameters) -> QueueConnection:
    application_id = parameters.application_id or parameters.get_application_id(None)
    qmgr = pymqi.QueueManager(None)
    start = time()

    try:
        with _application_name(application_id):
            if parameters.transport_type == TRANSPORT_BINDINGS:
                qmgr.connect(parameters.queue_manager)
            else:
                cd = pymqi.CD(
                    ChannelName=parameters.channel.encode(),
                    ConnectionName=parameters.connection_name.encode(),
                    ChannelType=pymqi.CMQC.MQCHT_CLNTCONN,
                    TransportType=pymqi.CMQC.MQXPT_TCP,
                    HeartbeatInterval=parameters.heartbeat_interval,
                )

                if parameters.cipher_suite is not None:
                    cd['SSLCipherSpec'] = parameters.cipher_suite.encode()

                if parameters.key_file is not None:
                    cert_label = parameters.cert_label or parameters.user
                    sco = pymqi.SCO(
                        KeyRepository=parameters.key_file.encode(),
                        CertificateLabel=cert_label.encode() if cert_label is not None else None,
                    )
                else:
                    sco = pymqi.SCO()

                kwargs: dict[str, Any] = {}
                if parameters.user is not None:
                    kwargs.update({
                        'user': parameters.user.encode(),
                        'password': (parameters.password or '').encode(),
                    })

                qmgr.connect_with_options(parameters.queue_manager, cd=cd, sco=sco, **kwargs)
    except pymqi.Error as e:
        raise _broker_error(f'failed to connect to {parameters.queue_manager} on {parameters.connection_name}', e) from e

    delta = int((time() - start) * 1000)
    logger.info('connected to %s on %s as %s, took %d ms', parameters.queue_manager, parameters.connection_name, application_id, delta)

    return QueueConnection(qmgr, parameters)


@contextmanager
def queue_session(parameters: ConnectionParameters) -> Generator[tuple[QueueSession, QueueDestination], None, None]:
    with _scoped(connect(parameters), f'connection to {parameters.queue_manager}') as connection:  # noqa: SIM117
        with _scoped(connection.create_session(), f'session on {parameters.queue_manager}') as session:
            queue = session.create_queue(parameters.queue_name)
            if parameters.target_client is not None:
                queue.target_client = parameters.target_client

            connection.start()
            yield session, queue
            connection.stop()


def with_queue_session(parameters: ConnectionParameters, operation: Callable[[QueueSession, QueueDestination], T]) -> T:
    with queue_session(parameters) as (session, queue):
        return operation(session, queue)
