"""Utilities used by anteater_mq."""

from __future__ import annotations

import re
from typing import Any

__all__ = [
    'parse_duration',
    'tohex',
]

_DURATION_UNITS = {
    'ms': 1,
    's': 1000,
    'm': 60 * 1000,
    'h': 60 * 60 * 1000,
}

_DURATION_PATTERN = re.compile(r'^(?P<value>\d+(\.\d+)?)\s*(?P<unit>ms|s|m|h)?$')


def tohex(value: int | str | bytes | bytearray | Any) -> str:
    if isinstance(value, str):
        return ''.join(f'{ord(c):02x}' for c in value)

    if isinstance(value, (bytes, bytearray)):
        return value.hex()

    if isinstance(value, int):
        return hex(value)[2:]

    message = f'{value} has an unsupported type {type(value)}'
    raise ValueError(message)


def parse_duration(duration: str | int) -> int:
    """Parse a duration (e.g. `1500`, `250ms`, `2s`, `1m`) to milliseconds, a value without unit is milliseconds."""
    if isinstance(duration, int):
        if duration < 0:
            message = f'invalid duration: {duration}'
            raise ValueError(message)

        return duration

    match = _DURATION_PATTERN.match(duration.strip())
    if match is None:
        message = f'invalid duration: {duration}'
        raise ValueError(message)

    unit = match.group('unit') or 'ms'

    return int(float(match.group('value')) * _DURATION_UNITS[unit])
