"""Type size and alignment calculation for layout-eligible types.

Sizes follow the natural x86-64 / AArch64 C layout rules: primitives are
aligned to their own width, structs are padded so that every field sits at
a multiple of its alignment and the total is a multiple of the largest
field alignment.
"""
from __future__ import annotations
from dataclasses import dataclass

from sumlayout.internals.errors import raise_internal_error
from sumlayout.semantics.typesys import (
    Type, Primitive, PrimitiveKind, PointerType, EnumType, UserValueType,
)

DEFAULT_POINTER_SIZE = 8

_FIXED_SIZES = {
    PrimitiveKind.I8: 1, PrimitiveKind.U8: 1, PrimitiveKind.BOOL: 1,
    PrimitiveKind.I16: 2, PrimitiveKind.U16: 2, PrimitiveKind.CHAR: 2,
    PrimitiveKind.I32: 4, PrimitiveKind.U32: 4, PrimitiveKind.F32: 4,
    PrimitiveKind.I64: 8, PrimitiveKind.U64: 8, PrimitiveKind.F64: 8,
}


@dataclass(frozen=True)
class FieldSlot:
    """One field of a struct layout: name, byte offset and type."""
    name: str
    offset: int
    type: Type


@dataclass(frozen=True)
class StructLayout:
    name: str
    slots: tuple[FieldSlot, ...]
    size: int
    alignment: int


class TypeSizing:
    """Calculate sizes and alignments for layout-eligible types."""

    def __init__(self, pointer_size: int = DEFAULT_POINTER_SIZE):
        if pointer_size not in (4, 8):
            raise ValueError(f"pointer size must be 4 or 8, got {pointer_size}")
        self.pointer_size = pointer_size

    def size_of(self, ty: Type) -> int:
        """Size in bytes of a layout-eligible concrete type.

        Raises:
            RuntimeError: If the type has no fixed byte layout (references,
                arrays, interfaces, unbound generic parameters).
        """
        match ty:
            case Primitive(kind=kind):
                if kind in (PrimitiveKind.ISIZE, PrimitiveKind.USIZE):
                    return self.pointer_size
                return _FIXED_SIZES[kind]
            case PointerType():
                return self.pointer_size
            case EnumType(underlying=underlying):
                return self.size_of(underlying)
            case UserValueType():
                return self.struct_layout(ty).size
            case _:
                raise_internal_error("SL0001", type=str(ty))

    def alignment_of(self, ty: Type) -> int:
        match ty:
            case UserValueType():
                return self.struct_layout(ty).alignment
            case _:
                # Primitives, pointers and enums are aligned to their width
                return self.size_of(ty)

    def struct_layout(self, struct_type: UserValueType) -> StructLayout:
        """Field offsets and padded size of a value type."""
        offset = 0
        max_align = 1
        slots = []

        for field_name, field_type in struct_type.fields:
            field_size = self.size_of(field_type)
            field_align = self.alignment_of(field_type)
            max_align = max(max_align, field_align)

            if offset % field_align != 0:
                offset += field_align - (offset % field_align)

            slots.append(FieldSlot(field_name, offset, field_type))
            offset += field_size

        # Tail padding so arrays of the struct stay aligned
        if offset % max_align != 0:
            offset += max_align - (offset % max_align)

        # An empty struct still occupies one byte
        return StructLayout(struct_type.name, tuple(slots), max(offset, 1), max_align)
