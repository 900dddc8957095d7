"""
Value Serializers for the Record Stream Format

Each column is encoded by the serializer of its resolved SerializerKind.
A column-typed value is one null marker byte (NULL=0 / NOT_NULL=1) followed,
when not null, by the kind's payload:

- STRING: length-prefixed UTF-8 string
- INTEGER / LONG: signed varint / varlong
- DOUBLE: 8-byte IEEE 754
- TIME / DATE / TIMESTAMP: 8-byte signed epoch milliseconds (UTC, zone dropped)
- DECIMAL: unscaled two's-complement magnitude + fixed 4-byte scale
- BLOB: unsigned varint byte length + raw bytes
- CLOB: unsigned varint character count + UTF-8 text
- ARRAY: element type name + count + self-described elements
- STRUCT: type name + count + self-described attributes

Struct attributes and array elements have no outer schema, so they use the
self-describing encoding: a ValueTag byte followed by that kind's payload.
"""

from datetime import date, datetime, time as dt_time, timedelta, timezone
from decimal import Decimal
from enum import IntEnum
from typing import Any, Callable, Dict

from rawdump.errors import ProtocolError
from rawdump.primitives import (
    BinaryInput,
    BinaryOutput,
    INT32_MAX,
    INT32_MIN,
    INT64_MAX,
    INT64_MIN,
)
from rawdump.type_mapping import SerializerKind
from rawdump.values import Array, Struct, ValueFactory, as_array, as_struct, read_lob

# Column-typed null markers
NULL = 0
NOT_NULL = 1

# Struct/array nesting guard, checked on both write and read
MAX_NESTING_DEPTH = 32

# LOB lengths must stay below the signed 32-bit maximum
MAX_LOB_LENGTH = INT32_MAX

# Canonical decimal zero returned when both magnitude and scale are zero
DECIMAL_ZERO = Decimal(0)

_EPOCH = datetime(1970, 1, 1)
_EPOCH_DATE = date(1970, 1, 1)
_ONE_MILLI = timedelta(milliseconds=1)
_MILLIS_PER_DAY = 86_400_000

# Encoded BigInteger zero: length 2 (one byte + 1), magnitude byte 0
_ZERO_MAGNITUDE = b'\x02\x00'
_MAGNITUDE_CONSTANTS = (0, 1, 10)


class ValueTag(IntEnum):
    """Kind tags of the self-describing encoding."""

    NULL = 0
    INT32 = 2
    INT64 = 3
    STRING = 4
    DOUBLE = 5
    DECIMAL = 6
    BLOB = 7
    CLOB = 8
    STRUCT = 32
    ARRAY = 33


# ---------------------------------------------------------------------------
# Temporal conversions
# ---------------------------------------------------------------------------

def to_epoch_millis(value: Any) -> int:
    """
    Convert a date or datetime to epoch milliseconds.

    Naive datetimes are taken as UTC; aware datetimes are converted to UTC
    and the offset is discarded. Sub-millisecond precision is truncated.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return (value - _EPOCH) // _ONE_MILLI
    if isinstance(value, date):
        return (value - _EPOCH_DATE).days * _MILLIS_PER_DAY
    raise TypeError(f"Cannot convert {type(value).__name__} to epoch milliseconds")


def time_to_millis(value: Any) -> int:
    """Milliseconds since midnight for a time (or a driver timedelta)."""
    if isinstance(value, timedelta):
        return value // _ONE_MILLI
    if isinstance(value, dt_time):
        seconds = (value.hour * 60 + value.minute) * 60 + value.second
        return seconds * 1000 + value.microsecond // 1000
    if isinstance(value, datetime):
        return to_epoch_millis(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to a time of day")


def millis_to_time(millis: int) -> dt_time:
    return (datetime.min + timedelta(milliseconds=millis % _MILLIS_PER_DAY)).time()


def millis_to_date(millis: int) -> date:
    return _EPOCH_DATE + timedelta(days=millis // _MILLIS_PER_DAY)


def millis_to_datetime(millis: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)


# ---------------------------------------------------------------------------
# Decimal payload
# ---------------------------------------------------------------------------

def _write_big_integer(output: BinaryOutput, value: int) -> None:
    if value == 0:
        output.write_bytes(_ZERO_MAGNITUDE)
        return
    # Minimal two's-complement length, same as java.math.BigInteger.toByteArray()
    bits = value.bit_length() if value >= 0 else (~value).bit_length()
    data = value.to_bytes(bits // 8 + 1, 'big', signed=True)
    output.write_uvarint(len(data) + 1)
    output.write_bytes(data)


def _read_big_integer(input: BinaryInput) -> int:
    length = input.read_uvarint()
    if length < 2:
        raise ProtocolError(f"Invalid decimal magnitude length {length}")
    data = input.read_bytes(length - 1)
    if length == 2 and data[0] in _MAGNITUDE_CONSTANTS:
        return data[0]
    return int.from_bytes(data, 'big', signed=True)


def write_decimal(output: BinaryOutput, value: Any) -> None:
    """Write a decimal as unscaled magnitude followed by a 4-byte scale."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if not value.is_finite():
        raise ValueError(f"Cannot encode non-finite decimal {value}")

    sign, digits, exponent = value.as_tuple()
    unscaled = int(''.join(str(d) for d in digits))
    if sign:
        unscaled = -unscaled

    _write_big_integer(output, unscaled)
    output.write_int32(-exponent)


def read_decimal(input: BinaryInput) -> Decimal:
    unscaled = _read_big_integer(input)
    scale = input.read_int32()
    if unscaled == 0 and scale == 0:
        return DECIMAL_ZERO
    digits = tuple(int(d) for d in str(abs(unscaled)))
    return Decimal((1 if unscaled < 0 else 0, digits, -scale))


# ---------------------------------------------------------------------------
# Payload codecs (write: output, value, depth / read: input, factory, depth)
# ---------------------------------------------------------------------------

def _write_string(output: BinaryOutput, value: Any, depth: int) -> None:
    output.write_string(value if isinstance(value, str) else str(value))


def _read_string(input: BinaryInput, factory: ValueFactory, depth: int) -> str:
    return input.read_string()


def _exact_int(value: Any) -> int:
    # Driver Decimal/float values must not lose a fractional part
    number = int(value)
    if isinstance(value, (Decimal, float)) and number != value:
        raise ValueError(f"{value!r} is not an integral value")
    return number


def _write_integer(output: BinaryOutput, value: Any, depth: int) -> None:
    output.write_varint(_exact_int(value))


def _read_integer(input: BinaryInput, factory: ValueFactory, depth: int) -> int:
    return input.read_varint()


def _write_long(output: BinaryOutput, value: Any, depth: int) -> None:
    output.write_varlong(_exact_int(value))


def _read_long(input: BinaryInput, factory: ValueFactory, depth: int) -> int:
    return input.read_varlong()


def _write_double(output: BinaryOutput, value: Any, depth: int) -> None:
    output.write_double(float(value))


def _read_double(input: BinaryInput, factory: ValueFactory, depth: int) -> float:
    return input.read_double()


def _write_time(output: BinaryOutput, value: Any, depth: int) -> None:
    output.write_int64(time_to_millis(value))


def _read_time(input: BinaryInput, factory: ValueFactory, depth: int) -> dt_time:
    return millis_to_time(input.read_int64())


def _write_date(output: BinaryOutput, value: Any, depth: int) -> None:
    output.write_int64(to_epoch_millis(value))


def _read_date(input: BinaryInput, factory: ValueFactory, depth: int) -> date:
    return millis_to_date(input.read_int64())


def _write_timestamp(output: BinaryOutput, value: Any, depth: int) -> None:
    output.write_int64(to_epoch_millis(value))


def _read_timestamp(input: BinaryInput, factory: ValueFactory, depth: int) -> datetime:
    return millis_to_datetime(input.read_int64())


def _write_decimal(output: BinaryOutput, value: Any, depth: int) -> None:
    write_decimal(output, value)


def _read_decimal(input: BinaryInput, factory: ValueFactory, depth: int) -> Decimal:
    return read_decimal(input)


def _write_blob(output: BinaryOutput, value: Any, depth: int) -> None:
    data = read_lob(value)
    if isinstance(data, str):
        raise TypeError("BLOB value must be bytes, got str")
    data = bytes(data)
    if len(data) >= MAX_LOB_LENGTH:
        raise ValueError(f"BLOB of {len(data)} bytes exceeds the {MAX_LOB_LENGTH} byte limit")
    output.write_uvarint(len(data))
    output.write_bytes(data)


def _read_blob(input: BinaryInput, factory: ValueFactory, depth: int) -> bytes:
    length = input.read_uvarint()
    if length >= MAX_LOB_LENGTH:
        raise ProtocolError(f"BLOB length {length} exceeds the {MAX_LOB_LENGTH} byte limit")
    return input.read_bytes(length)


def _write_clob(output: BinaryOutput, value: Any, depth: int) -> None:
    text = read_lob(value)
    if not isinstance(text, str):
        raise TypeError(f"CLOB value must be str, got {type(text).__name__}")
    if len(text) >= MAX_LOB_LENGTH:
        raise ValueError(f"CLOB of {len(text)} characters exceeds the {MAX_LOB_LENGTH} limit")
    output.write_uvarint(len(text))
    output.write_bytes(text.encode('utf-8'))


def _read_clob(input: BinaryInput, factory: ValueFactory, depth: int) -> str:
    length = input.read_uvarint()
    if length >= MAX_LOB_LENGTH:
        raise ProtocolError(f"CLOB length {length} exceeds the {MAX_LOB_LENGTH} limit")
    return input.read_chars(length)


def _check_depth(depth: int) -> None:
    if depth > MAX_NESTING_DEPTH:
        raise ProtocolError(f"Nested value exceeds maximum depth of {MAX_NESTING_DEPTH}")


def _write_struct(output: BinaryOutput, value: Any, depth: int) -> None:
    _check_depth(depth)
    struct_value = as_struct(value)
    output.write_string(struct_value.type_name)
    output.write_uvarint(len(struct_value.attributes))
    for attribute in struct_value.attributes:
        TAGGED_CODEC.write(output, attribute, depth + 1)


def _read_struct(input: BinaryInput, factory: ValueFactory, depth: int) -> Any:
    _check_depth(depth)
    type_name = input.read_string()
    count = input.read_uvarint()
    attributes = [TAGGED_CODEC.read(input, factory, depth + 1) for _ in range(count)]
    return factory.create_struct(type_name, attributes)


def _write_array(output: BinaryOutput, value: Any, depth: int) -> None:
    _check_depth(depth)
    array_value = as_array(value)
    output.write_string(array_value.type_name)
    output.write_uvarint(len(array_value.elements))
    for element in array_value.elements:
        TAGGED_CODEC.write(output, element, depth + 1)


def _read_array(input: BinaryInput, factory: ValueFactory, depth: int) -> Any:
    _check_depth(depth)
    type_name = input.read_string()
    count = input.read_uvarint()
    elements = [TAGGED_CODEC.read(input, factory, depth + 1) for _ in range(count)]
    return factory.create_array(type_name, elements)


PayloadWriter = Callable[[BinaryOutput, Any, int], None]
PayloadReader = Callable[[BinaryInput, ValueFactory, int], Any]


class Serializer:
    """
    Column-typed codec for one SerializerKind.

    None is the only null signal: 0, 0.0, '' and b'' are encoded as
    non-null values.
    """

    def __init__(self, kind: SerializerKind, write_payload: PayloadWriter, read_payload: PayloadReader):
        self.kind = kind
        self._write_payload = write_payload
        self._read_payload = read_payload

    def serialize(self, output: BinaryOutput, value: Any) -> None:
        if value is None:
            output.write_byte(NULL)
        else:
            output.write_byte(NOT_NULL)
            self._write_payload(output, value, 0)

    def deserialize(self, input: BinaryInput, factory: ValueFactory) -> Any:
        marker = input.read_byte()
        if marker == NULL:
            return None
        if marker != NOT_NULL:
            raise ProtocolError(f"Invalid null marker {marker} for {self.kind.value} value")
        return self._read_payload(input, factory, 0)

    def __repr__(self) -> str:
        return f"Serializer({self.kind.value})"


SERIALIZERS: Dict[SerializerKind, Serializer] = {
    kind: Serializer(kind, writer, reader)
    for kind, writer, reader in (
        (SerializerKind.TIME, _write_time, _read_time),
        (SerializerKind.DATE, _write_date, _read_date),
        (SerializerKind.TIMESTAMP, _write_timestamp, _read_timestamp),
        (SerializerKind.STRING, _write_string, _read_string),
        (SerializerKind.DOUBLE, _write_double, _read_double),
        (SerializerKind.INTEGER, _write_integer, _read_integer),
        (SerializerKind.LONG, _write_long, _read_long),
        (SerializerKind.DECIMAL, _write_decimal, _read_decimal),
        (SerializerKind.BLOB, _write_blob, _read_blob),
        (SerializerKind.CLOB, _write_clob, _read_clob),
        (SerializerKind.ARRAY, _write_array, _read_array),
        (SerializerKind.STRUCT, _write_struct, _read_struct),
    )
}


def get_serializer(kind: SerializerKind) -> Serializer:
    return SERIALIZERS[kind]


class TaggedValueCodec:
    """
    Self-describing encoding for struct attributes and array elements.

    The concrete kind is inferred from the Python value on write and carried
    as a ValueTag byte in front of the payload.
    """

    _READERS: Dict[int, PayloadReader] = {
        ValueTag.INT32: _read_integer,
        ValueTag.INT64: _read_long,
        ValueTag.STRING: _read_string,
        ValueTag.DOUBLE: _read_double,
        ValueTag.DECIMAL: _read_decimal,
        ValueTag.BLOB: _read_blob,
        ValueTag.CLOB: _read_clob,
        ValueTag.STRUCT: _read_struct,
        ValueTag.ARRAY: _read_array,
    }

    def write(self, output: BinaryOutput, value: Any, depth: int = 0) -> None:
        _check_depth(depth)
        tag, writer, value = self._classify(value)
        output.write_byte(tag)
        if writer is not None:
            writer(output, value, depth)

    def read(self, input: BinaryInput, factory: ValueFactory, depth: int = 0) -> Any:
        _check_depth(depth)
        tag = input.read_byte()
        if tag == ValueTag.NULL:
            return None
        reader = self._READERS.get(tag)
        if reader is None:
            raise ProtocolError(f"Invalid type tag {tag}")
        return reader(input, factory, depth)

    def _classify(self, value: Any):
        if value is None:
            return ValueTag.NULL, None, None
        if isinstance(value, (bool, int)):
            number = int(value)
            if INT32_MIN <= number <= INT32_MAX:
                return ValueTag.INT32, _write_integer, number
            if INT64_MIN <= number <= INT64_MAX:
                return ValueTag.INT64, _write_long, number
            return ValueTag.DECIMAL, _write_decimal, Decimal(number)
        if isinstance(value, float):
            return ValueTag.DOUBLE, _write_double, value
        if isinstance(value, str):
            return ValueTag.STRING, _write_string, value
        if isinstance(value, Decimal):
            return ValueTag.DECIMAL, _write_decimal, value
        if isinstance(value, (bytes, bytearray, memoryview)):
            return ValueTag.BLOB, _write_blob, value
        if isinstance(value, Struct):
            return ValueTag.STRUCT, _write_struct, value
        if isinstance(value, Array):
            return ValueTag.ARRAY, _write_array, value

        # Driver objects: LOB locators, object types and collections
        if callable(getattr(value, 'read', None)):
            content = value.read()
            if isinstance(content, str):
                return ValueTag.CLOB, _write_clob, content
            return ValueTag.BLOB, _write_blob, content
        if getattr(getattr(value, 'type', None), 'iscollection', False):
            return ValueTag.ARRAY, _write_array, as_array(value)
        if isinstance(value, list) or (isinstance(value, tuple) and not hasattr(value, '_fields')):
            return ValueTag.ARRAY, _write_array, as_array(value)
        try:
            return ValueTag.STRUCT, _write_struct, as_struct(value)
        except TypeError:
            raise TypeError(f"{value!r} ({type(value).__name__}) not serializable") from None


TAGGED_CODEC = TaggedValueCodec()
