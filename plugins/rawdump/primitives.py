"""
Byte-level primitives for the record stream format.

All framing in a stream file is built from these encodings:
- unsigned varint: 7 bits per byte, least significant group first, high bit
  set on every byte except the last (used for sizes and counts)
- varint / varlong: signed 32/64-bit values written as the unsigned varint of
  their two's-complement bit pattern, so small positive values stay short
- int32 / int64: fixed-width big-endian
- double: 8-byte big-endian IEEE 754
- string: unsigned varint UTF-8 byte length followed by the UTF-8 bytes
"""

import codecs
import struct
from typing import BinaryIO

from rawdump.errors import ProtocolError

INT32_MIN = -(1 << 31)
INT32_MAX = (1 << 31) - 1
INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

_UINT32_MASK = (1 << 32) - 1
_UINT64_MASK = (1 << 64) - 1

_INT32 = struct.Struct('>i')
_INT64 = struct.Struct('>q')
_DOUBLE = struct.Struct('>d')

# Precomputed single-byte varints (most sizes, tags and counts)
_SMALL_VARINTS = [bytes([n]) for n in range(128)]


def encode_uvarint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned varint."""
    if value < 0:
        raise ValueError(f"Unsigned varint cannot encode negative value {value}")
    if value < 128:
        return _SMALL_VARINTS[value]
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


class BinaryOutput:
    """
    Append-only writer of stream primitives over a binary file object.

    The underlying file is not closed by this class unless close() is
    called; callers that own the file should close it themselves.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream

    def write_byte(self, value: int) -> None:
        self._stream.write(bytes((value & 0xFF,)))

    def write_bytes(self, data: bytes) -> None:
        self._stream.write(data)

    def write_uvarint(self, value: int) -> None:
        self._stream.write(encode_uvarint(value))

    def write_varint(self, value: int) -> None:
        """Write a signed 32-bit integer as a varint (1-5 bytes)."""
        if not INT32_MIN <= value <= INT32_MAX:
            raise OverflowError(f"{value} does not fit in 32 bits")
        self._stream.write(encode_uvarint(value & _UINT32_MASK))

    def write_varlong(self, value: int) -> None:
        """Write a signed 64-bit integer as a varint (1-10 bytes)."""
        if not INT64_MIN <= value <= INT64_MAX:
            raise OverflowError(f"{value} does not fit in 64 bits")
        self._stream.write(encode_uvarint(value & _UINT64_MASK))

    def write_int32(self, value: int) -> None:
        self._stream.write(_INT32.pack(value))

    def write_int64(self, value: int) -> None:
        self._stream.write(_INT64.pack(value))

    def write_double(self, value: float) -> None:
        self._stream.write(_DOUBLE.pack(value))

    def write_string(self, value: str) -> None:
        data = value.encode('utf-8')
        self._stream.write(encode_uvarint(len(data)))
        self._stream.write(data)

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        self._stream.close()


class BinaryInput:
    """
    Sequential reader of stream primitives over a binary file object.

    Every read either returns a complete value or raises ProtocolError;
    a short read is always reported as a truncated stream.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream

    def read_bytes(self, size: int) -> bytes:
        if size < 0:
            raise ProtocolError(f"Negative length {size}")
        data = self._stream.read(size)
        if data is None or len(data) != size:
            got = 0 if data is None else len(data)
            raise ProtocolError(f"Truncated stream: expected {size} bytes, got {got}")
        return data

    def read_byte(self) -> int:
        return self.read_bytes(1)[0]

    def read_uvarint(self) -> int:
        result = 0
        shift = 0
        while True:
            byte = self.read_byte()
            result |= (byte & 0x7F) << shift
            if byte < 0x80:
                return result
            shift += 7
            if shift > 63:
                raise ProtocolError("Varint too long")

    def read_varint(self) -> int:
        value = self.read_uvarint()
        if value > _UINT32_MASK:
            raise ProtocolError(f"Varint {value} exceeds 32 bits")
        return value - (1 << 32) if value > INT32_MAX else value

    def read_varlong(self) -> int:
        value = self.read_uvarint()
        if value > _UINT64_MASK:
            raise ProtocolError(f"Varlong {value} exceeds 64 bits")
        return value - (1 << 64) if value > INT64_MAX else value

    def read_int32(self) -> int:
        return _INT32.unpack(self.read_bytes(4))[0]

    def read_int64(self) -> int:
        return _INT64.unpack(self.read_bytes(8))[0]

    def read_double(self) -> float:
        return _DOUBLE.unpack(self.read_bytes(8))[0]

    def read_string(self) -> str:
        size = self.read_uvarint()
        try:
            return self.read_bytes(size).decode('utf-8')
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Invalid UTF-8 string: {e}") from e

    def read_chars(self, count: int) -> str:
        """
        Read exactly `count` UTF-8 encoded characters (code points).

        Never reads past the last character: each pending character needs at
        least one more byte, so requesting `count - decoded` bytes at a time
        cannot overshoot.
        """
        decoder = codecs.getincrementaldecoder('utf-8')()
        parts = []
        decoded = 0
        while decoded < count:
            try:
                text = decoder.decode(self.read_bytes(count - decoded))
            except UnicodeDecodeError as e:
                raise ProtocolError(f"Invalid UTF-8 text: {e}") from e
            parts.append(text)
            decoded += len(text)
        return ''.join(parts)