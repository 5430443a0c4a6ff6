"""Parameters needed to connect to a queue on an IBM MQ queue manager."""

from __future__ import annotations

from dataclasses import dataclass, field

from .exceptions import ConfigurationError

__all__ = [
    'TARGET_CLIENT_JMS',
    'TARGET_CLIENT_MQ',
    'TRANSPORT_BINDINGS',
    'TRANSPORT_CLIENT',
    'ConnectionParameters',
]

TRANSPORT_BINDINGS = 0
TRANSPORT_CLIENT = 1

TARGET_CLIENT_JMS = 0
TARGET_CLIENT_MQ = 1

APPLICATION_ID_FORMAT = 'Anteater({user})'

MQ_Q_NAME_LENGTH = 48


@dataclass
class ConnectionParameters:
    host: str
    port: int
    queue_manager: str
    channel: str
    queue_name: str
    user: str | None = field(default=None)
    password: str | None = field(default=None, repr=False)
    cipher_suite: str | None = field(default=None)
    key_file: str | None = field(default=None)
    cert_label: str | None = field(default=None)
    transport_type: int = field(default=TRANSPORT_CLIENT)
    application_id: str | None = field(default=None)
    target_client: int | None = field(default=None)
    heartbeat_interval: int = field(default=300)

    def __post_init__(self) -> None:
        for name in ('host', 'queue_manager', 'channel', 'queue_name'):
            if not getattr(self, name, None):
                message = f'{name} is required'
                raise ConfigurationError(message)

        if not 0 < self.port < 65536:
            message = f'port {self.port} is out of range'
            raise ConfigurationError(message)

        if self.transport_type not in (TRANSPORT_BINDINGS, TRANSPORT_CLIENT):
            message = f'transport type {self.transport_type} is not supported'
            raise ConfigurationError(message)

        if self.target_client is not None and self.target_client not in (TARGET_CLIENT_JMS, TARGET_CLIENT_MQ):
            message = f'target client {self.target_client} is not supported'
            raise ConfigurationError(message)

        if self.heartbeat_interval < 0:
            message = f'heartbeat interval {self.heartbeat_interval} is negative'
            raise ConfigurationError(message)

        if len(self.queue_name) > MQ_Q_NAME_LENGTH:
            message = f'queue name {self.queue_name} is longer than {MQ_Q_NAME_LENGTH} characters'
            raise ConfigurationError(message)

    @property
    def connection_name(self) -> str:
        return f'{self.host}({self.port})'

    def get_application_id(self, user_name: str | None) -> str:
        if self.application_id is not None:
            return self.application_id

        return APPLICATION_ID_FORMAT.format(user=user_name)
