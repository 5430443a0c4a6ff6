"""Broker agnostic representation of a JMS style message stored on an IBM MQ queue.

A message has a body of one shape:

| Shape    | MQRFH2 `mcd.Msd` | Body in Python                        |
| -------- | ---------------- | ------------------------------------- |
| `text`   | `jms_text`       | `str`                                 |
| `map`    | `jms_map`        | `dict`                                |
| `bytes`  | `jms_bytes`      | `bytes`                               |
| `object` | `jms_object`     | `bytes`, the serialized object as is  |
| `stream` | `jms_stream`     | `bytes`, not decoded                  |
| `None`   | `jms_none`       | no body                               |

Messages without an MQRFH2 header are `text` if the message descriptor format is `MQSTR`, otherwise `bytes`.

Map bodies use the XML representation IBM MQ classes for JMS use:

```xml
<map><elt name="k1">v1</elt><elt name="k2" dt="i4">2</elt></map>
```
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from lxml import etree as XML

from .exceptions import MessageFormatError
from .rfh2 import MQFMT_RF_HEADER_2, MQFMT_STRING, Rfh2Decoder
from .utils import tohex

__all__ = [
    'BODY_TYPES',
    'Message',
    'decode_map',
    'encode_map',
]

logger = logging.getLogger(__name__)

BODY_TYPES = ('text', 'map', 'object', 'bytes')

MQPER_NOT_PERSISTENT = 0
MQPER_PERSISTENT = 1

_MESSAGE_TYPES: dict[str, str | None] = {
    'jms_text': 'text',
    'jms_map': 'map',
    'jms_object': 'object',
    'jms_bytes': 'bytes',
    'jms_stream': 'stream',
    'jms_none': None,
}

_CHARSETS = {
    37: 'cp037',
    437: 'cp437',
    500: 'cp500',
    819: 'latin-1',
    850: 'cp850',
    1208: 'utf-8',
    1252: 'cp1252',
}

_MAP_PARSER = XML.XMLParser(remove_blank_text=True, resolve_entities=False)

_I4_RANGE = range(-(2**31), 2**31)


def _format_name(value: str | bytes | None) -> str:
    if value is None:
        return ''

    if isinstance(value, bytes):
        value = value.decode('ascii', errors='replace')

    return value.strip()


def _charset(ccsid: int | None) -> str:
    if ccsid is None:
        return 'utf-8'

    return _CHARSETS.get(ccsid, 'utf-8')


def _encode_value(value: Any) -> tuple[str | None, str]:
    if isinstance(value, bool):
        return 'boolean', '1' if value else '0'

    if isinstance(value, int):
        return ('i4' if value in _I4_RANGE else 'i8'), str(value)

    if isinstance(value, float):
        return 'r8', repr(value)

    if isinstance(value, (bytes, bytearray)):
        return 'bin.hex', tohex(value)

    if isinstance(value, str):
        return None, value

    message = f'{type(value).__name__} is not a supported map value'
    raise MessageFormatError(message)


def _decode_value(dt: str | None, text: str | None) -> Any:
    text = text or ''

    if dt is None or dt in ('string', 'char'):
        return text

    if dt == 'boolean':
        return text.strip().lower() in ('1', 'true')

    if dt in ('i1', 'i2', 'i4', 'i8'):
        return int(text)

    if dt in ('r4', 'r8'):
        return float(text)

    if dt == 'bin.hex':
        return bytes.fromhex(text)

    message = f'unsupported map value type "{dt}"'
    raise MessageFormatError(message)


def encode_map(values: Mapping[str, Any]) -> bytes:
    root = XML.Element('map')

    for key, value in values.items():
        dt, text = _encode_value(value)
        element = XML.SubElement(root, 'elt', name=str(key))
        if dt is not None:
            element.set('dt', dt)
        element.text = text

    return XML.tostring(root, encoding='utf-8', xml_declaration=False)


def decode_map(payload: bytes) -> dict[str, Any]:
    try:
        document = XML.fromstring(payload, parser=_MAP_PARSER)
    except XML.XMLSyntaxError as e:
        message = f'map body is not valid XML: {e}'
        raise MessageFormatError(message) from e

    values: dict[str, Any] = {}

    # enumeration order follows the body, which is decided by the sending client
    for element in document.iter('elt'):
        name = element.get('name', None)
        if name is None:
            message = 'map entry without a name'
            raise MessageFormatError(message)

        try:
            values[name] = _decode_value(element.get('dt', None), element.text)
        except ValueError as e:
            message = f'map entry "{name}" has an invalid value: {e}'
            raise MessageFormatError(message) from e

    return values


class Message:
    body_type: str | None
    payload: bytes
    metadata: dict[str, Any]
    properties: dict[str, Any]
    persistent: bool
    charset: str

    def __init__(
        self,
        body_type: str | None,
        payload: bytes = b'',
        *,
        metadata: dict[str, Any] | None = None,
        properties: dict[str, Any] | None = None,
        persistent: bool = False,
        charset: str = 'utf-8',
    ) -> None:
        self.body_type = body_type
        self.payload = payload
        self.metadata = metadata or {}
        self.properties = properties or {}
        self.persistent = persistent
        self.charset = charset

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} body_type={self.body_type!r} length={len(self.payload)}>'

    @classmethod
    def text(cls, text: str, *, persistent: bool = False) -> Message:
        return cls('text', text.encode('utf-8'), persistent=persistent)

    @classmethod
    def map(cls, values: Mapping[str, Any], *, persistent: bool = False) -> Message:
        return cls('map', encode_map(values), persistent=persistent)

    @classmethod
    def from_mq(cls, raw: bytes, metadata: dict[str, Any]) -> Message:
        """Create a message from a buffer and the message descriptor (`pymqi.MD.get()`) it was received with."""
        message_format = _format_name(metadata.get('Format', None))
        properties: dict[str, Any] = {}

        try:
            if message_format == MQFMT_RF_HEADER_2.strip() or Rfh2Decoder.is_rfh2(raw):
                decoder = Rfh2Decoder(raw)
                payload = decoder.get_payload()
                properties.update(decoder.get_properties('jms'))
                properties.update(decoder.get_properties('usr'))
                charset = _charset(decoder.charset)
                message_type = decoder.get_message_type()

                if message_type is None:
                    body_type = 'text' if _format_name(decoder.format) == MQFMT_STRING.strip() else 'bytes'
                else:
                    body_type = _MESSAGE_TYPES.get(message_type, message_type)
            else:
                payload = raw
                charset = _charset(metadata.get('CodedCharSetId', None))
                body_type = 'text' if message_format == MQFMT_STRING.strip() else 'bytes'
        except (ValueError, OSError) as e:
            message = f'failed to read message: {e}'
            raise MessageFormatError(message) from e

        safe_metadata = dict(metadata)
        for key in ('MsgId', 'CorrelId'):
            if key in safe_metadata:
                safe_metadata[key] = tohex(safe_metadata[key])

        return cls(
            body_type,
            payload,
            metadata=safe_metadata,
            properties=properties,
            persistent=metadata.get('Persistence', MQPER_NOT_PERSISTENT) == MQPER_PERSISTENT,
            charset=charset,
        )

    def get_text(self) -> str:
        try:
            return self.payload.decode(self.charset)
        except UnicodeDecodeError as e:
            message = f'text body is not valid {self.charset}'
            raise MessageFormatError(message) from e

    def get_map(self) -> dict[str, Any]:
        return decode_map(self.payload)

    def get_body(self, shape: str) -> Any:
        """Get the message body as `shape`.

        `object` returns the body in the shape of the message, any other shape must match the shape of the message or
        `MessageFormatError` is raised. A message without a body returns `None` for every shape.
        """
        if self.body_type is None:
            return None

        if shape != 'object' and shape != self.body_type:
            message = f'{self.body_type} message body can not be read as {shape}'
            raise MessageFormatError(message)

        if self.body_type == 'text':
            return self.get_text()

        if self.body_type == 'map':
            return self.get_map()

        return self.payload
