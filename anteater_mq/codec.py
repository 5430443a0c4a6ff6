"""Normalize message bodies to plain Python values.

The type hint of an action decides how the body of a message is decoded:

| Type hint | Result                                                     |
| --------- | ---------------------------------------------------------- |
| `text`    | `str`, default when no type hint is given                  |
| `object`  | the body in the shape of the message                       |
| `map`     | `dict`                                                     |
| `bytes`   | `bytes`                                                    |
| _other_   | result of the decoder registered with that name            |

Type hints are case insensitive. Additional decoders can be registered by the host application:

```python
from json import loads as jsonloads

from anteater_mq.codec import register_decoder


@register_decoder('json')
def decode_json(message: Message) -> Any:
    return jsonloads(message.get_text())
```

A type hint that no decoder is registered for is logged and decodes to `None`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .exceptions import DecodeError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable

    from .message import Message

__all__ = [
    'decode',
    'get_decoder',
    'register_decoder',
]

logger = logging.getLogger(__name__)

DEFAULT_TYPE_HINT = 'text'

decoders: dict[str, Callable[[Message], Any]] = {}


def register_decoder(name: str, *names: str) -> Callable[[Callable[[Message], Any]], Callable[[Message], Any]]:
    def decorator(func: Callable[[Message], Any]) -> Callable[[Message], Any]:
        for n in (name, *names):
            key = n.lower()
            if key in decoders:
                continue

            decoders.update({key: func})

        return func

    return decorator


@register_decoder('text')
def _decode_text(message: Message) -> Any:
    return message.get_body('text')


@register_decoder('object')
def _decode_object(message: Message) -> Any:
    return message.get_body('object')


@register_decoder('map')
def _decode_map(message: Message) -> Any:
    return message.get_body('map')


@register_decoder('bytes')
def _decode_bytes(message: Message) -> Any:
    return message.get_body('bytes')


def get_decoder(type_hint: str | None) -> Callable[[Message], Any]:
    key = (type_hint or DEFAULT_TYPE_HINT).strip().lower() or DEFAULT_TYPE_HINT

    decoder = decoders.get(key, None)
    if decoder is None:
        message = f'no decoder for type "{type_hint}"'
        raise DecodeError(message)

    return decoder


def decode(message: Message, type_hint: str | None = None) -> Any:
    """Decode the body of `message` according to `type_hint`.

    `MessageFormatError` is raised if the body can not be read in the requested shape.
    """
    try:
        decoder = get_decoder(type_hint)
    except DecodeError:
        logger.exception('incorrect type attribute: %s', type_hint)
        return None

    return decoder(message)
