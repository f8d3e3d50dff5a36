"""Wire format of the Wayland protocol: arguments, headers and event readers."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, NamedTuple

from wlturbo.fdpass import get_next_fd

HEADER_SIZE = 8
MAX_MESSAGE_SIZE = 0xFFFF

_UINT32 = struct.Struct("<I")
_INT32 = struct.Struct("<i")
_HEADER = struct.Struct("<II")

_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1
_UINT32_MAX = (1 << 32) - 1


def _padding(length: int) -> int:
    return (4 - length % 4) % 4


def _check_int32(value: int, what: str) -> int:
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError(f"{what} out of int32 range: {value}")
    return value


class Fixed(int):
    """A signed 24.8 fixed-point number stored as its raw 32-bit value."""

    def __new__(cls, raw: int = 0) -> Fixed:
        return super().__new__(cls, _check_int32(int(raw), "fixed value"))

    @classmethod
    def from_float(cls, value: float) -> Fixed:
        """Convert a float, truncating towards zero."""
        return cls(int(value * 256.0))

    def to_float(self) -> float:
        """Return the value as a float."""
        return int(self) / 256.0

    def __repr__(self) -> str:
        return f"Fixed({self.to_float()!r})"


class Int32(int):
    """An integer argument sent as a signed 32-bit value."""

    def __new__(cls, value: int = 0) -> Int32:
        return super().__new__(cls, _check_int32(int(value), "int32 value"))


@dataclass(frozen=True)
class Fd:
    """A file descriptor argument.

    The descriptor itself travels out of band. When ``in_body`` is true a
    zero placeholder word is also written into the message body.
    """

    fd: int
    in_body: bool = True


@dataclass(frozen=True)
class ObjectRef:
    """A reference to a protocol object known only by its id."""

    id: int


class Header(NamedTuple):
    """A decoded message header."""

    object_id: int
    size: int
    opcode: int


def encode_arg(arg: Any) -> bytes:
    """Encode one request argument in wire format.

    Plain non-negative ints are unsigned 32-bit; negative ints, :class:`Int32`
    and :class:`Fixed` are signed. Strings are NUL-terminated, byte strings are
    arrays, ``None`` is the null object and anything with an integer ``id``
    attribute is an object reference.
    """
    if arg is None:
        return _UINT32.pack(0)
    if isinstance(arg, bool):
        raise TypeError(f"unsupported argument type: {type(arg).__name__}")
    if isinstance(arg, (Fixed, Int32)):
        return _INT32.pack(int(arg))
    if isinstance(arg, Fd):
        return _UINT32.pack(0) if arg.in_body else b""
    if isinstance(arg, str):
        encoded = arg.encode("utf-8") + b"\0"
        if len(encoded) > _UINT32_MAX:
            raise ValueError(f"string too long: {len(encoded)} bytes")
        return _UINT32.pack(len(encoded)) + encoded + b"\0" * _padding(len(encoded))
    if isinstance(arg, (bytes, bytearray, memoryview)):
        payload = bytes(arg)
        if len(payload) > _UINT32_MAX:
            raise ValueError(f"array too long: {len(payload)} bytes")
        return _UINT32.pack(len(payload)) + payload + b"\0" * _padding(len(payload))
    if isinstance(arg, int):
        if 0 <= arg <= _UINT32_MAX:
            return _UINT32.pack(arg)
        return _INT32.pack(_check_int32(arg, "integer argument"))
    object_id = getattr(arg, "id", None)
    if isinstance(object_id, int) and not isinstance(object_id, bool):
        if not 0 <= object_id <= _UINT32_MAX:
            raise ValueError(f"object id out of range: {object_id}")
        return _UINT32.pack(object_id)
    raise TypeError(f"unsupported argument type: {type(arg).__name__}")


def encode_header(object_id: int, size: int, opcode: int) -> bytes:
    """Encode the 8-byte header: object id, then size in the upper 16 bits and opcode in the lower."""
    if not 0 <= object_id <= _UINT32_MAX:
        raise ValueError(f"object id out of range: {object_id}")
    if not 0 <= size <= MAX_MESSAGE_SIZE:
        raise ValueError(f"message size out of range: {size}")
    if not 0 <= opcode <= 0xFFFF:
        raise ValueError(f"invalid opcode: {opcode}")
    return _HEADER.pack(object_id, (size << 16) | opcode)


def decode_header(data: bytes) -> Header:
    """Decode the first 8 bytes of ``data`` as a message header."""
    if len(data) < HEADER_SIZE:
        raise ValueError(f"incomplete header: got {len(data)} bytes")
    object_id, size_opcode = _HEADER.unpack_from(data)
    return Header(object_id, size_opcode >> 16, size_opcode & 0xFFFF)


def encode_message(object_id: int, opcode: int, args: Any = ()) -> bytes:
    """Encode a complete request: header followed by its arguments."""
    body = b"".join(encode_arg(arg) for arg in args)
    size = HEADER_SIZE + len(body)
    if size > MAX_MESSAGE_SIZE:
        raise ValueError(f"message too large: {size} bytes")
    return encode_header(object_id, size, opcode) + body


@dataclass
class Event:
    """An incoming event whose arguments are read in order.

    Reads past the end of the data yield empty values instead of raising.
    """

    proxy_id: int
    opcode: int
    data: bytes = b""
    offset: int = 0

    def _remaining(self, count: int) -> bool:
        return self.offset + count <= len(self.data)

    def uint32(self) -> int:
        """Read an unsigned 32-bit value, or 0 past the end."""
        if not self._remaining(4):
            return 0
        (value,) = _UINT32.unpack_from(self.data, self.offset)
        self.offset += 4
        return value

    def int32(self) -> int:
        """Read a signed 32-bit value, or 0 past the end."""
        value = self.uint32()
        return value - (1 << 32) if value > _INT32_MAX else value

    def fixed(self) -> Fixed:
        """Read a 24.8 fixed-point value."""
        return Fixed(self.int32())

    def string(self) -> str:
        """Read a NUL-terminated, padded string, or "" when absent or truncated."""
        if not self._remaining(4):
            return ""
        length = self.uint32()
        if length == 0 or not self._remaining(length):
            return ""
        raw = bytes(self.data[self.offset : self.offset + length - 1])
        self.offset += length + _padding(length)
        return raw.decode("utf-8", errors="replace")

    def array(self) -> bytes:
        """Read a padded byte array, or b"" when absent or truncated."""
        if not self._remaining(4):
            return b""
        length = self.uint32()
        if length == 0 or not self._remaining(length):
            return b""
        payload = bytes(self.data[self.offset : self.offset + length])
        self.offset += length + _padding(length)
        return payload

    def fd(self) -> int | None:
        """Take the next descriptor received out of band.

        When none is queued, a placeholder word is consumed and None returned.
        """
        fd = get_next_fd()
        if fd is not None:
            return fd
        self.uint32()
        return None

    def new_id(self) -> ObjectRef:
        """Read the id of an object the compositor has created."""
        return ObjectRef(self.uint32())

    def proxy(self) -> ObjectRef:
        """Read a reference to an existing object."""
        return ObjectRef(self.uint32())