"""Byte strings with typed markers, used as property values."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, Optional

CELL_SIZE = 4

_CHUNK_SIZE = 4096


class MarkerType(enum.Enum):
    """Kinds of annotation that can be attached to an offset in a value."""

    TYPE_NONE = enum.auto()
    REF_PHANDLE = enum.auto()
    REF_PATH = enum.auto()
    LABEL = enum.auto()
    TYPE_UINT8 = enum.auto()
    TYPE_UINT16 = enum.auto()
    TYPE_UINT32 = enum.auto()
    TYPE_UINT64 = enum.auto()
    TYPE_STRING = enum.auto()


@dataclass
class Marker:
    """An annotation at a byte offset, optionally naming a reference."""

    offset: int
    type: MarkerType
    ref: Optional[str] = None


@dataclass
class Data:
    """A mutable byte value together with its ordered list of markers.

    The mutating methods change the value in place and return it, so
    calls can be chained.
    """

    val: bytearray = field(default_factory=bytearray)
    markers: list[Marker] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.val = bytearray(self.val)

    def __len__(self) -> int:
        return len(self.val)

    def __bytes__(self) -> bytes:
        return bytes(self.val)

    def append(self, raw: bytes) -> "Data":
        """Append raw bytes."""
        self.val += raw
        return self

    def _index_of(self, marker: Marker) -> int:
        for index, candidate in enumerate(self.markers):
            if candidate is marker:
                return index
        raise ValueError("marker does not belong to this data")

    def insert_at_marker(self, marker: Marker, raw: bytes) -> "Data":
        """Insert bytes at a marker's offset, shifting all later markers."""
        index = self._index_of(marker)
        if marker.offset > len(self.val):
            raise ValueError("marker offset lies beyond the end of the data")
        self.val[marker.offset:marker.offset] = raw
        for later in self.markers[index + 1:]:
            later.offset += len(raw)
        return self

    def merge(self, other: "Data") -> "Data":
        """Append another value, carrying over its markers."""
        base = len(self.val)
        self.val += other.val
        self.markers.extend(
            Marker(m.offset + base, m.type, m.ref) for m in other.markers
        )
        return self

    def append_integer(self, value: int, bits: int) -> "Data":
        """Append a big-endian integer of 8, 16, 32 or 64 bits."""
        if bits not in (8, 16, 32, 64):
            raise ValueError(f"Invalid literal size ({bits})")
        masked = value & ((1 << bits) - 1)
        return self.append(masked.to_bytes(bits // 8, "big"))

    def append_re(self, address: int, size: int) -> "Data":
        """Append a memory reservation entry (two 64-bit words)."""
        self.append_integer(address, 64)
        return self.append_integer(size, 64)

    def append_cell(self, word: int) -> "Data":
        """Append one 32-bit cell."""
        return self.append_integer(word, 32)

    def append_addr(self, addr: int) -> "Data":
        """Append one 64-bit address."""
        return self.append_integer(addr, 64)

    def append_byte(self, byte: int) -> "Data":
        """Append a single byte."""
        return self.append_integer(byte, 8)

    def append_zeroes(self, count: int) -> "Data":
        """Append a run of zero bytes."""
        self.val += bytes(count)
        return self

    def append_align(self, align: int) -> "Data":
        """Pad with zeroes up to the next multiple of a power-of-two alignment."""
        length = len(self.val)
        newlen = (length + align - 1) & ~(align - 1)
        return self.append_zeroes(newlen - length)

    def add_marker(self, type: MarkerType, ref: Optional[str] = None) -> "Data":
        """Attach a marker at the current end of the data."""
        self.markers.append(Marker(len(self.val), type, ref))
        return self

    def markers_of_type(self, type: MarkerType) -> Iterator[Marker]:
        """Yield the markers of the given type, in order."""
        return (m for m in self.markers if m.type is type)

    def is_one_string(self) -> bool:
        """True if the value is exactly one NUL-terminated string."""
        if not self.val:
            return False
        return self.val[-1] == 0 and 0 not in self.val[:-1]

    @classmethod
    def from_file(cls, stream: BinaryIO, maxlen: Optional[int] = None) -> "Data":
        """Read a binary stream, up to maxlen bytes if given."""
        data = cls().add_marker(MarkerType.TYPE_NONE)
        while maxlen is None or len(data.val) < maxlen:
            want = _CHUNK_SIZE if maxlen is None else maxlen - len(data.val)
            chunk = stream.read(want)
            if not chunk:
                break
            data.val += chunk
        return data