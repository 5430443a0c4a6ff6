"""MQRFH2 support, the header JMS clients put in front of the message body on IBM MQ.

The header carries the JMS message type (`mcd` folder), JMS header fields (`jms` folder) and application properties
(`usr` folder). Payloads with `usr.ContentEncoding` set to `gzip` are decompressed when decoded.

See https://www.ibm.com/docs/en/ibm-mq/9.3?topic=mqi-mqrfh2-rules-formatting-header-2
"""

from __future__ import annotations

import gzip
import time
import xml.etree.ElementTree as ET
import zlib
from struct import pack, unpack

__all__ = [
    'Rfh2Decoder',
    'Rfh2Encoder',
]

RFH2_STRUC_ID = 'RFH '
RFH2_VERSION = 2
RFH2_HEADER_LENGTH = 36

MQFMT_NONE = ' ' * 8
MQFMT_STRING = 'MQSTR   '
MQFMT_RF_HEADER_2 = 'MQHRF2  '


class Rfh2Decoder:
    @classmethod
    def is_rfh2(cls, message: bytes) -> bool:
        try:
            parts = unpack('<4c l', message[0:8])
            struc_id = b''.join(list(parts[0:4])).decode('ascii')
            version = parts[4]
        except Exception:
            return False

        return struc_id == RFH2_STRUC_ID and version == RFH2_VERSION

    def __init__(self, message: bytes) -> None:
        self._parse_header(message)
        self._parse_name_values()

    def _parse_header(self, message: bytes) -> None:
        try:
            parts = unpack('<4c l l l l 8s l l', message[0:RFH2_HEADER_LENGTH])
            struc_length = parts[5]
            self.encoding = parts[6]
            self.charset = parts[7]
            self.format = parts[8].decode('ascii')
            self.name_values = message[RFH2_HEADER_LENGTH:struc_length]
            self.payload = message[RFH2_HEADER_LENGTH + len(self.name_values) :]
        except Exception as e:
            msg = 'Failed to parse RFH2 header'
            raise ValueError(msg, e) from e

    def _parse_name_values(self) -> None:
        self.name_value_parts: list[ET.Element] = []
        pos = 0
        maxpos = len(self.name_values) - 1
        if maxpos == -1:
            return

        try:
            while pos <= maxpos:
                part_length = unpack('<l', self.name_values[pos : pos + 4])[0]
                pos += 4
                part = self.name_values[pos : pos + part_length].decode('utf-8')
                self.name_value_parts.append(ET.fromstring(part))  # noqa: S314
                pos += part_length
        except Exception as e:
            msg = 'Failed to parse RFH2 name values'
            raise ValueError(msg, e) from e

    def get_folder(self, name: str) -> ET.Element | None:
        for part in self.name_value_parts:
            if part.tag == name:
                return part

        return None

    def get_properties(self, name: str) -> dict[str, str | None]:
        folder = self.get_folder(name)
        if folder is None:
            return {}

        return {element.tag: element.text for element in folder}

    def get_message_type(self) -> str | None:
        """Value of `mcd.Msd`, e.g. `jms_text`, or `None` if the header does not say."""
        folder = self.get_folder('mcd')
        if folder is None:
            return None

        msd = folder.find('Msd')
        if msd is None or not msd.text:
            return None

        return msd.text.strip()

    def _get_usr_encoding(self) -> str | None:
        return self.get_properties('usr').get('ContentEncoding', None)

    def get_payload(self) -> bytes:
        content_encoding = self._get_usr_encoding()
        if content_encoding == 'gzip':
            try:
                return gzip.decompress(self.payload)
            except (OSError, EOFError, zlib.error) as e:
                msg = 'Failed to decompress RFH2 payload'
                raise ValueError(msg, e) from e

        return self.payload


class Rfh2Encoder:
    CCSID = 1208
    ENCODING = 546
    PADDING_MULTIPLE = 4
    FLAGS = 0

    def __init__(
        self,
        payload: bytes,
        queue_name: str,
        *,
        message_type: str = 'jms_text',
        persistent: bool = True,
        tstamp: str | None = None,
        properties: dict[str, str] | None = None,
    ) -> None:
        self.payload = payload
        self.queue_name = queue_name
        self.message_type = message_type
        self.persistent = persistent
        self.tstamp = tstamp
        self.properties = properties or {}

        self._build_name_values()
        self._build_header()

    def _build_folders(self) -> list[ET.Element]:
        tstamp = self.tstamp if self.tstamp is not None else str(round(time.time() * 1000))

        mcd = ET.Element('mcd')
        ET.SubElement(mcd, 'Msd').text = self.message_type

        jms = ET.Element('jms')
        ET.SubElement(jms, 'Dst').text = f'queue:///{self.queue_name}'
        ET.SubElement(jms, 'Tms').text = tstamp
        ET.SubElement(jms, 'Dlv').text = '2' if self.persistent else '1'

        folders = [mcd, jms]

        if len(self.properties) > 0:
            usr = ET.Element('usr')
            for key, value in self.properties.items():
                ET.SubElement(usr, key).text = value
            folders.append(usr)

        return folders

    def _build_name_values(self) -> None:
        padding_multiple = Rfh2Encoder.PADDING_MULTIPLE
        self.name_values = bytearray()

        for folder in self._build_folders():
            value = ET.tostring(folder, encoding='unicode')
            value_len = len(value.encode())

            # folder length must be a multiple of 4, pad with spaces
            if value_len % padding_multiple != 0:
                value = value + ' ' * (padding_multiple - value_len % padding_multiple)

            name_value = value.encode()
            self.name_values.extend(pack('<l', len(name_value)))
            self.name_values.extend(name_value)

    def _build_header(self) -> None:
        struc_length = RFH2_HEADER_LENGTH + len(self.name_values)
        fmt = MQFMT_STRING if self.message_type == 'jms_text' else MQFMT_NONE
        self.header = pack(
            '<4s l l l l 8s l l',
            RFH2_STRUC_ID.encode(),
            RFH2_VERSION,
            struc_length,
            Rfh2Encoder.ENCODING,
            Rfh2Encoder.CCSID,
            fmt.encode(),
            Rfh2Encoder.FLAGS,
            Rfh2Encoder.CCSID,
        )

    def get_message(self) -> bytes:
        message = bytearray()
        message.extend(self.header)
        message.extend(self.name_values)
        message.extend(self.payload)
        return bytes(message)
