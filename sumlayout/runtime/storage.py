"""Byte-level storage for layout-eligible payloads.

The overlapping block is a fixed-capacity buffer that holds exactly one
interpretation at a time: the type written last. PayloadCodec converts
between host values and the little-endian byte layout computed by
TypeSizing, padding included, so a value occupies exactly ``size_of(type)``
bytes of the block.

Format characters per primitive:

    i8 b   u8 B   bool ?   i16 h   u16 H   char H (UTF-16 code unit)
    i32 i  u32 I  f32 f    i64 q   u64 Q   f64 d
    isize/usize/pointers follow the configured pointer size

f32 payloads are stored in single precision, so a Python float written
through an f32 case reads back rounded to the nearest f32 value
(1.1 becomes 1.100000023841858).
"""
from __future__ import annotations

import struct
from collections import namedtuple
from typing import Any, Dict, Iterator, Mapping, Optional

from sumlayout.backend.sizing import TypeSizing
from sumlayout.internals.errors import EncodingError, InvalidState, raise_internal_error
from sumlayout.semantics.typesys import (
    Type, Primitive, PrimitiveKind, PointerType, EnumType, UserValueType,
)

_FORMAT_CHARS = {
    PrimitiveKind.I8: "b", PrimitiveKind.U8: "B", PrimitiveKind.BOOL: "?",
    PrimitiveKind.I16: "h", PrimitiveKind.U16: "H", PrimitiveKind.CHAR: "H",
    PrimitiveKind.I32: "i", PrimitiveKind.U32: "I", PrimitiveKind.F32: "f",
    PrimitiveKind.I64: "q", PrimitiveKind.U64: "Q", PrimitiveKind.F64: "d",
}


class OverlappingBlock:
    """A fixed-capacity byte block; only the last written type may be read."""

    __slots__ = ("_buffer", "_held")

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"block capacity must be positive, got {capacity}")
        self._buffer = bytearray(capacity)
        self._held: Optional[Type] = None

    @property
    def capacity(self) -> int:
        return len(self._buffer)

    @property
    def held(self) -> Optional[Type]:
        return self._held

    def write(self, ty: Type, data: bytes) -> None:
        if len(data) > len(self._buffer):
            raise_internal_error("SL0003", size=len(data), capacity=len(self._buffer))
        self._buffer[:] = bytes(len(self._buffer))
        self._buffer[:len(data)] = data
        self._held = ty

    def read(self, ty: Type) -> bytes:
        if self._held != ty:
            raise InvalidState("SL3006", held="nothing" if self._held is None else self._held, wanted=ty)
        return bytes(self._buffer)


class PayloadCodec:
    """Encode and decode layout-eligible values with the struct module."""

    def __init__(self, sizing: Optional[TypeSizing] = None):
        self.sizing = sizing or TypeSizing()
        self._formats: Dict[Type, struct.Struct] = {}
        self._records: Dict[UserValueType, type] = {}

    def layout(self, ty: Type) -> struct.Struct:
        """Compiled little-endian layout of ``ty``; its size equals ``size_of(ty)``."""
        compiled = self._formats.get(ty)
        if compiled is None:
            compiled = struct.Struct("<" + self._format(ty))
            self._formats[ty] = compiled
        return compiled

    def encode(self, ty: Type, value: Any) -> bytes:
        """Pack ``value`` as ``ty``; f32 fields are narrowed to single precision."""
        items: list[Any] = []
        self._flatten(ty, value, items)
        try:
            return self.layout(ty).pack(*items)
        except struct.error as e:
            raise EncodingError(value, str(ty), str(e)) from None

    def decode(self, ty: Type, data: bytes) -> Any:
        compiled = self.layout(ty)
        items = iter(compiled.unpack(data[:compiled.size]))
        return self._rebuild(ty, items)

    def zero_value(self, ty: Type) -> Any:
        """The value whose bytes are all zero."""
        return self.decode(ty, bytes(self.layout(ty).size))

    def _format(self, ty: Type) -> str:
        match ty:
            case Primitive(kind=PrimitiveKind.ISIZE):
                return "q" if self.sizing.pointer_size == 8 else "i"
            case Primitive(kind=PrimitiveKind.USIZE) | PointerType():
                return "Q" if self.sizing.pointer_size == 8 else "I"
            case Primitive(kind=kind):
                return _FORMAT_CHARS[kind]
            case EnumType(underlying=underlying):
                return self._format(underlying)
            case UserValueType():
                layout = self.sizing.struct_layout(ty)
                parts = []
                position = 0
                for slot in layout.slots:
                    if slot.offset > position:
                        parts.append(f"{slot.offset - position}x")
                    parts.append(self._format(slot.type))
                    position = slot.offset + self.sizing.size_of(slot.type)
                if layout.size > position:
                    parts.append(f"{layout.size - position}x")
                return "".join(parts)
            case _:
                raise_internal_error("SL0001", type=str(ty))

    def _flatten(self, ty: Type, value: Any, out: list[Any]) -> None:
        match ty:
            case Primitive(kind=PrimitiveKind.CHAR):
                if not isinstance(value, str) or len(value) != 1:
                    raise EncodingError(value, str(ty), "expected a single character")
                out.append(ord(value))
            case EnumType():
                try:
                    out.append(int(value))
                except (TypeError, ValueError) as e:
                    raise EncodingError(value, str(ty), str(e)) from None
            case UserValueType():
                for name, field_type in ty.fields:
                    self._flatten(field_type, _field_value(ty, value, name), out)
            case _:
                out.append(value)

    def _rebuild(self, ty: Type, items: Iterator[Any]) -> Any:
        match ty:
            case Primitive(kind=PrimitiveKind.CHAR):
                return chr(next(items))
            case EnumType(factory=factory):
                raw = next(items)
                return factory(raw) if factory is not None else raw
            case UserValueType():
                values = {name: self._rebuild(field_type, items) for name, field_type in ty.fields}
                if ty.factory is not None:
                    return ty.factory(**values)
                return self._record_type(ty)(**values)
            case _:
                return next(items)

    def _record_type(self, ty: UserValueType) -> type:
        record = self._records.get(ty)
        if record is None:
            record = namedtuple(ty.name, [name for name, _ in ty.fields])
            self._records[ty] = record
        return record


def _field_value(ty: UserValueType, value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        if name not in value:
            raise EncodingError(value, str(ty), f"missing field '{name}'")
        return value[name]
    try:
        return getattr(value, name)
    except AttributeError:
        raise EncodingError(value, str(ty), f"missing field '{name}'") from None
