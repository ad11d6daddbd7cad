"""
Structure Decoder — raw sector bytes → immutable typed records.

A ``Layout`` lists the fields of one on-disk structure (name, offset,
kind); ``decode`` reads them in a chosen byte order and returns a
namedtuple.  Byte order is an argument, never module state: formats
whose order depends on the machine that wrote them go through
``decode_either``, which decodes once per candidate order and keeps the
first record its ``accept`` predicate likes.  The winning order is
carried on the record itself (``record.endian``).

Field kinds
  u8 u16 u32 u64 i8 i16 i32 i64    integers (``count`` > 1 → tuple)
  raw     fixed-width byte array, verbatim
  cstr    zero-terminated string inside a fixed-width field (bytes)
  pstr    length-prefixed ("Pascal") string; first byte is the length
  ident   128-bit identifier (16 bytes, verbatim)

``Split64`` derives ``hi * 2**32 + lo`` from two already-decoded 32-bit
halves, for layouts that grew 64-bit counters by appending high words
elsewhere in the structure.

Decoding copies exactly one structure-sized slice out of the source
buffer; records never reference the sector data they came from.
"""

import struct
from collections import namedtuple
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import MalformedStructure

# Byte orders (struct prefixes, plus PDP-11 middle-endian)
LITTLE = "<"
BIG = ">"
PDP = "pdp"

ENDIAN_NAMES = {LITTLE: "little-endian", BIG: "big-endian", PDP: "PDP-endian"}

_INT_CODES = {
    "u8": "B", "u16": "H", "u32": "I", "u64": "Q",
    "i8": "b", "i16": "h", "i32": "i", "i64": "q",
}
_BYTE_KINDS = ("raw", "cstr", "pstr")
IDENT_SIZE = 16


@dataclass(frozen=True)
class Field:
    name: str
    offset: int
    kind: str
    length: int = 0     # byte width for raw / cstr / pstr
    count: int = 1      # element count for integer arrays

    def __post_init__(self):
        if self.kind not in _INT_CODES and self.kind not in _BYTE_KINDS and self.kind != "ident":
            raise ValueError(f"unknown field kind {self.kind!r}")
        if self.kind in _BYTE_KINDS and self.length <= 0:
            raise ValueError(f"field {self.name} needs a length")

    @property
    def size(self) -> int:
        if self.kind in _INT_CODES:
            return struct.calcsize("<" + _INT_CODES[self.kind]) * self.count
        if self.kind == "ident":
            return IDENT_SIZE
        return self.length


@dataclass(frozen=True)
class Split64:
    """A 64-bit value stored as two 32-bit halves in separate fields."""
    name: str
    hi: str
    lo: str

    def combine(self, values: dict) -> int:
        hi = values[self.hi] & 0xFFFFFFFF
        lo = values[self.lo] & 0xFFFFFFFF
        return hi * 2 ** 32 + lo


class Layout:
    """Field map for one on-disk structure."""

    def __init__(self, name: str, fields, size: Optional[int] = None, derived=()):
        self.name = name
        self.fields = tuple(fields)
        self.derived = tuple(derived)
        end = max(f.offset + f.size for f in self.fields)
        if size is not None and end > size:
            raise ValueError(f"{name}: fields run to {end}, past declared size {size}")
        self.size = size if size is not None else end

        names = [f.name for f in self.fields] + [d.name for d in self.derived]
        if len(set(names)) != len(names) or "endian" in names:
            raise ValueError(f"{name}: duplicate or reserved field name")
        self.record_type = namedtuple(name, names + ["endian"])

    def __repr__(self):
        return f"Layout({self.name!r}, size=0x{self.size:X}, fields={len(self.fields)})"


def _int(view: bytes, offset: int, kind: str, endian: str) -> int:
    if endian != PDP:
        return struct.unpack_from(endian + _INT_CODES[kind], view, offset)[0]

    # PDP-11: 16-bit words are little-endian, multi-word values high word first
    width = struct.calcsize("<" + _INT_CODES[kind])
    if width <= 2:
        return struct.unpack_from("<" + _INT_CODES[kind], view, offset)[0]
    value = 0
    for word in struct.unpack_from("<%dH" % (width // 2), view, offset):
        value = (value << 16) | word
    if kind.startswith("i") and value >= 1 << (width * 8 - 1):
        value -= 1 << (width * 8)
    return value


def _read_field(view: bytes, f: Field, endian: str):
    if f.kind in _INT_CODES:
        if f.count == 1:
            return _int(view, f.offset, f.kind, endian)
        step = f.size // f.count
        return tuple(_int(view, f.offset + i * step, f.kind, endian) for i in range(f.count))

    if f.kind == "ident":
        return view[f.offset:f.offset + IDENT_SIZE]

    chunk = view[f.offset:f.offset + f.length]
    if f.kind == "raw":
        return chunk
    if f.kind == "cstr":
        return chunk.split(b"\x00", 1)[0]

    # pstr
    n = chunk[0]
    if n > f.length - 1:
        raise MalformedStructure(f"{f.name}: length byte {n} exceeds field width {f.length - 1}")
    return chunk[1:1 + n]


def decode(buf, layout: Layout, endian: str, offset: int = 0):
    """Decode ``layout`` from ``buf`` at ``offset`` in the given byte order."""
    if endian not in ENDIAN_NAMES:
        raise ValueError(f"unknown byte order {endian!r}")
    end = offset + layout.size
    if offset < 0 or len(buf) < end:
        raise MalformedStructure(
            f"{layout.name}: need {layout.size} bytes at 0x{offset:X}, "
            f"buffer holds {max(0, len(buf) - offset)}"
        )

    view = bytes(buf[offset:end])
    values = {f.name: _read_field(view, f, endian) for f in layout.fields}
    for d in layout.derived:
        values[d.name] = d.combine(values)
    return layout.record_type(endian=endian, **values)


def decode_either(
    buf,
    layout: Layout,
    accept: Callable[[tuple], bool],
    orders: tuple[str, ...] = (LITTLE, BIG),
    offset: int = 0,
):
    """
    Try each byte order in turn; return the first record ``accept`` likes.

    Returns None when no order produces an acceptable record.
    """
    for order in orders:
        record = decode(buf, layout, order, offset)
        if accept(record):
            return record
    return None


def text(raw: bytes, encoding: str = "ascii") -> str:
    """Bytes from a string field → str, dropping trailing NUL padding."""
    return raw.rstrip(b"\x00").decode(encoding, errors="replace")
