from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import pytest

from anteater_mq import codec
from anteater_mq.codec import decode, get_decoder, register_decoder
from anteater_mq.exceptions import DecodeError, MessageFormatError
from anteater_mq.message import Message

if TYPE_CHECKING:  # pragma: no cover
    from pytest_mock import MockerFixture


def test_register_decoder(mocker: MockerFixture) -> None:
    mocker.patch.dict(codec.decoders, clear=False)

    @register_decoder('Reverse', 'backwards')
    def decode_reverse(message: Message) -> Any:
        return message.get_text()[::-1]

    assert codec.decoders['reverse'] is decode_reverse
    assert codec.decoders['backwards'] is decode_reverse

    # first registration wins
    @register_decoder('reverse')
    def decode_other(message: Message) -> Any:
        return message.get_text()

    assert codec.decoders['reverse'] is decode_reverse
    assert decode(Message.text('hello'), 'REVERSE') == 'olleh'


def test_get_decoder() -> None:
    assert get_decoder(None) is codec.decoders['text']
    assert get_decoder('') is codec.decoders['text']
    assert get_decoder(' Map ') is codec.decoders['map']

    with pytest.raises(DecodeError, match='no decoder for type "foo"'):
        get_decoder('foo')


def test_decode(caplog: pytest.LogCaptureFixture) -> None:
    text_message = Message.text('hello world')
    map_message = Message.map({'k1': 'v1', 'k2': 2})

    assert decode(text_message) == 'hello world'
    assert decode(text_message, 'text') == 'hello world'
    assert decode(text_message, 'object') == 'hello world'
    assert decode(map_message, 'map') == {'k1': 'v1', 'k2': 2}
    assert decode(Message('bytes', b'\x00'), 'bytes') == b'\x00'
    assert decode(Message(None), 'text') is None

    # same message decodes to equal values every time
    assert decode(map_message, 'map') == decode(map_message, 'map')

    with caplog.at_level(logging.ERROR):
        assert decode(text_message, 'json') is None

    assert 'incorrect type attribute: json' in caplog.text

    with pytest.raises(MessageFormatError):
        decode(text_message, 'map')
