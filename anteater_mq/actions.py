"""Execute queue actions and publish their result in a variable store.

An action is a name and a set of attributes, as parsed from an action description such as:

```xml
<ReceiveMessage name="response" queue="DEV.QUEUE.1" host="mq.example.com" port="1414" manager="QM1"
                channel="DEV.APP.SVRCONN" user="app" password="secret" timeout="5s" type="map"/>
```

## Actions

| Action           | Alias     | Result published in `name`                                  |
| ---------------- | --------- | ----------------------------------------------------------- |
| `SendMessage`    | `send`    | _nothing_, `name` is the payload to send                    |
| `ReceiveMessage` | `receive` | body of one consumed message, `None` on timeout             |
| `BrowseMessages` | `browse`  | list of message bodies, `None` if the queue is empty        |
| `MQSize`         | `count`   | number of messages on the queue                             |

## Attributes

| Name            | Type       | Description                                                                       | Default              |
| --------------- | ---------- | --------------------------------------------------------------------------------- | -------------------- |
| `name`          | _str_      | variable to publish the result in, for `SendMessage` the payload                  | _required_           |
| `queue`         | _str_      | name of the queue                                                                 | _required_           |
| `host`          | _str_      | hostname of the MQ server                                                         | _required_           |
| `port`          | _int_      | port on the MQ server                                                             | _required_           |
| `manager`       | _str_      | name of the queue manager                                                         | _required_           |
| `channel`       | _str_      | name of the channel to connect to                                                 | _required_           |
| `user`          | _str_      | username to authenticate with                                                     | `None`               |
| `password`      | _str_      | password to authenticate with                                                     | `None`               |
| `cipherSuite`   | _str_      | TLS cipher to use for the channel                                                 | `None`               |
| `keyFile`       | _str_      | path to the key repository with certificates needed to connect over TLS           | `None`               |
| `certLabel`     | _str_      | label of certificate in the key repository                                        | `user`               |
| `transportType` | _int_      | `1` connects as a client over TCP, `0` in bindings mode                           | `1`                  |
| `appId`         | _str_      | application name of the connection                                                | `Anteater(USER_NAME)`|
| `targetClient`  | _int_      | `0` sends JMS messages (MQRFH2 header), `1` plain MQ messages                     | `0`                  |
| `heartbeat`     | _int_      | number of seconds between heartbeats on the channel                               | `300`                |
| `timeout`       | _duration_ | how long `ReceiveMessage` waits for a message, `0` waits until cancelled          | `0`                  |
| `type`          | _str_      | how message bodies are decoded, see `anteater_mq.codec`                           | `text`               |
| `attr-map`      | _str_      | name of a variable with a mapping of attributes, explicit attributes take precedence | `None`            |

Durations are milliseconds, or a number with one of the units `ms`, `s`, `m` or `h`. Attribute values that contain
Jinja2 templates are rendered with the variable store, e.g. `queue="{{ queue_name }}"`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from os import environ
from threading import Event
from time import perf_counter as time
from typing import TYPE_CHECKING, Any, Protocol

from jinja2 import DebugUndefined, Environment

from .exceptions import ConfigurationError, UnknownActionError
from .operations import Browse, Count, OperationRequest, Receive, Send, run_operation
from .parameters import TRANSPORT_CLIENT, ConnectionParameters
from .utils import parse_duration

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable

__all__ = [
    'Attributes',
    'VariableStore',
    'Variables',
    'execute',
]

logger = logging.getLogger(__name__)

ATTRIBUTE_MAP = 'attr-map'

REDACTED_ATTRIBUTES = ('password',)


class VariableStore(Protocol):
    def get_variable_value(self, name: str) -> Any: ...

    def get_variable_string(self, name: str) -> str | None: ...

    def set_variable_value(self, name: str, value: Any) -> None: ...


class Variables(dict):
    """Variable store backed by a dictionary."""

    def get_variable_value(self, name: str) -> Any:
        return self.get(name, None)

    def get_variable_string(self, name: str) -> str | None:
        value = self.get(name, None)

        return str(value) if value is not None else None

    def set_variable_value(self, name: str, value: Any) -> None:
        self[name] = value


def jinja2_environment_factory() -> Environment:
    return Environment(autoescape=False, undefined=DebugUndefined)


def has_template(text: str) -> bool:
    """Check if given text contains any jinja2 templates."""
    return '{{' in text and '}}' in text


class Attributes:
    _attributes: dict[str, Any]
    _variables: VariableStore
    _environment: Environment

    def __init__(self, attributes: Mapping[str, Any], variables: VariableStore, environment: Environment | None = None) -> None:
        self._variables = variables
        self._environment = environment if environment is not None else jinja2_environment_factory()
        self._attributes = {}

        attribute_map_name = attributes.get(ATTRIBUTE_MAP, None)
        if attribute_map_name is not None:
            attribute_map = variables.get_variable_value(self._render(attribute_map_name))
            if not isinstance(attribute_map, Mapping):
                message = f'{ATTRIBUTE_MAP} "{attribute_map_name}" is not a variable with a mapping of attributes'
                raise ConfigurationError(message)

            self._attributes.update(attribute_map)

        self._attributes.update({key: value for key, value in attributes.items() if key != ATTRIBUTE_MAP})

    def __repr__(self) -> str:
        safe = {key: ('***' if key in REDACTED_ATTRIBUTES else value) for key, value in self._attributes.items()}

        return f'{self.__class__.__name__}({safe!r})'

    def _render(self, value: str) -> str:
        if not has_template(value):
            return value

        context = dict(self._variables) if isinstance(self._variables, Mapping) else {}

        return self._environment.from_string(value).render(**context)

    def get(self, name: str, default: str | None = None) -> str | None:
        value = self._attributes.get(name, None)
        if value is None:
            return default

        return self._render(str(value))

    def require(self, name: str) -> str:
        value = self.get(name)
        if value is None or len(value.strip()) < 1:
            message = f'attribute "{name}" is required'
            raise ConfigurationError(message)

        return value

    def get_int(self, name: str, default: int | None = None) -> int | None:
        value = self.get(name)
        if value is None:
            return default

        try:
            return int(value)
        except ValueError as e:
            message = f'attribute "{name}" is not an integer: "{value}"'
            raise ConfigurationError(message) from e

    def get_duration(self, name: str, default: int = 0) -> int:
        value = self.get(name)
        if value is None:
            return default

        try:
            return parse_duration(value)
        except ValueError as e:
            message = f'attribute "{name}" is not a duration: "{value}"'
            raise ConfigurationError(message) from e

    def get_value(self, name: str) -> Any:
        """Value of the variable the attribute refers to, the attribute value itself if there is no such variable."""
        value = self._attributes.get(name, None)

        if isinstance(value, str):
            variable_value = self._variables.get_variable_value(value)
            if variable_value is not None:
                return variable_value

            return self._render(value)

        if isinstance(value, Sequence):
            return [self._render(str(item)) for item in value]

        return value


def _ambient_user(variables: VariableStore) -> str | None:
    return variables.get_variable_string('USER_NAME') or environ.get('USER', environ.get('USERNAME', None))


def connection_parameters(attributes: Attributes, variables: VariableStore) -> ConnectionParameters:
    port = attributes.get_int('port')
    if port is None:
        message = 'attribute "port" is required'
        raise ConfigurationError(message)

    parameters = ConnectionParameters(
        host=attributes.require('host'),
        port=port,
        queue_manager=attributes.require('manager'),
        channel=attributes.require('channel'),
        queue_name=attributes.require('queue'),
        user=attributes.get('user'),
        password=attributes.get('password'),
        cipher_suite=attributes.get('cipherSuite'),
        key_file=attributes.get('keyFile'),
        cert_label=attributes.get('certLabel'),
        transport_type=attributes.get_int('transportType', TRANSPORT_CLIENT) or 0,
        application_id=attributes.get('appId'),
        target_client=attributes.get_int('targetClient'),
        heartbeat_interval=attributes.get_int('heartbeat', 300) or 0,
    )

    parameters.application_id = parameters.get_application_id(_ambient_user(variables))

    return parameters


@dataclass
class ActionContext:
    action: str
    attributes: Attributes
    variables: VariableStore
    cancel: Event = field(default_factory=Event)
    runner: Callable[[ConnectionParameters, Callable[[Any, Any], Any]], Any] | None = field(default=None, repr=False)

    def run(self, request: OperationRequest) -> Any:
        parameters = connection_parameters(self.attributes, self.variables)

        logger.info('executing %s on %s@%s', self.action, parameters.queue_name, parameters.queue_manager)

        return run_operation(parameters, request, self.cancel, runner=self.runner)


handlers: dict[str, Callable[[ActionContext], None]] = {}


def register(handlers: dict[str, Callable[[ActionContext], None]], action: str, *actions: str) -> Callable[[Callable[[ActionContext], None]], Callable[[ActionContext], None]]:
    def decorator(func: Callable[[ActionContext], None]) -> Callable[[ActionContext], None]:
        for a in (action, *actions):
            if a in handlers:
                continue

            handlers.update({a: func})

        return func

    return decorator


@register(handlers, 'SendMessage', 'send')
def send_message(context: ActionContext) -> None:
    payload = context.attributes.get_value('name')
    if payload is None:
        message = 'attribute "name" is required'
        raise ConfigurationError(message)

    context.run(Send(payload))


@register(handlers, 'ReceiveMessage', 'receive')
def receive_message(context: ActionContext) -> None:
    name = context.attributes.require('name')
    request = Receive(
        timeout=context.attributes.get_duration('timeout', 0),
        type_hint=context.attributes.get('type'),
    )

    context.variables.set_variable_value(name, context.run(request))


@register(handlers, 'BrowseMessages', 'browse')
def browse_messages(context: ActionContext) -> None:
    name = context.attributes.require('name')

    context.variables.set_variable_value(name, context.run(Browse(type_hint=context.attributes.get('type'))))


@register(handlers, 'MQSize', 'count')
def mq_size(context: ActionContext) -> None:
    name = context.attributes.require('name')

    context.variables.set_variable_value(name, context.run(Count()))


def execute(
    action: str,
    attributes: Mapping[str, Any],
    variables: VariableStore,
    cancel: Event | None = None,
    *,
    runner: Callable[[ConnectionParameters, Callable[[Any, Any], Any]], Any] | None = None,
) -> None:
    """Execute `action` described by `attributes`, the result is published in `variables`.

    `cancel` is checked between units of work by operations that wait or iterate, it is never cleared by this function.
    """
    handler = handlers.get(action, None)
    if handler is None:
        message = f'no implementation for {action}'
        raise UnknownActionError(message)

    start_time = time()

    try:
        context = ActionContext(
            action=action,
            attributes=Attributes(attributes, variables),
            variables=variables,
            cancel=cancel if cancel is not None else Event(),
            runner=runner,
        )

        logger.debug('handling %s, attributes=%r', action, context.attributes)

        handler(context)
    except Exception as e:
        logger.error('%s: %s="%s"', action, e.__class__.__name__, str(e))  # noqa: TRY400
        raise
    finally:
        total_time = int((time() - start_time) * 1000)
        logger.debug('handled %s in %d ms', action, total_time)
