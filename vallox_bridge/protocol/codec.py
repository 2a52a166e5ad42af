"""Fixed-width integer decoding for the Vallox binary protocol.

Byte order is a keyword argument on every helper. The metadata header and
the sensor records both use little-endian words.
"""

from __future__ import annotations

import struct
from typing import Sequence, Union

from ..errors import OutOfRange

Buffer = Union[bytes, bytearray, memoryview]

_UNSIGNED_FORMATS = {1: "B", 2: "H", 4: "I", 8: "Q"}
_SIGNED_FORMATS = {1: "b", 2: "h", 4: "i", 8: "q"}


def _unpack(
    formats: dict[int, str], buf: Buffer, offset: int, width: int, big_endian: bool
) -> int:
    code = formats.get(width)
    if code is None:
        raise ValueError(f"Unsupported field width: {width} bytes")
    if offset < 0 or offset + width > len(buf):
        raise OutOfRange(
            f"Cannot read {width} bytes at offset {offset} from a {len(buf)}-byte buffer"
        )
    prefix = ">" if big_endian else "<"
    return struct.unpack_from(prefix + code, buf, offset)[0]


def decode_uint(
    buf: Buffer, offset: int, width: int, *, big_endian: bool = False
) -> int:
    """Decode an unsigned integer of ``width`` bytes (1, 2, 4 or 8)."""

    return _unpack(_UNSIGNED_FORMATS, buf, offset, width, big_endian)


def decode_int(
    buf: Buffer, offset: int, width: int, *, big_endian: bool = False
) -> int:
    """Decode a two's complement signed integer of ``width`` bytes."""

    return _unpack(_SIGNED_FORMATS, buf, offset, width, big_endian)


def decode_int16_le(buf: Buffer, offset: int) -> int:
    return decode_int(buf, offset, 2, big_endian=False)


def checksum_16(data: Union[Buffer, Sequence[int]]) -> int:
    """Sum little-endian byte pairs modulo 0x10000.

    A trailing odd byte is not part of any pair and is ignored. The poll
    pipeline does not gate frames on this value.
    """

    total = 0
    for index in range(len(data) // 2):
        total += (data[index * 2 + 1] << 8) + data[index * 2]
    return total & 0xFFFF
