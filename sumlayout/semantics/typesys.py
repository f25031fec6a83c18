"""Closed type model for union payloads.

Every payload type is one of a fixed set of variants; classification and
sizing dispatch on the variant instead of inspecting arbitrary objects.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Union


class PrimitiveKind(Enum):
    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    ISIZE = "isize"
    USIZE = "usize"
    F32 = "f32"
    F64 = "f64"
    BOOL = "bool"
    CHAR = "char"

    def __str__(self) -> str:
        return self.value

    @property
    def is_integral(self) -> bool:
        return self not in (PrimitiveKind.F32, PrimitiveKind.F64, PrimitiveKind.BOOL, PrimitiveKind.CHAR)

    @property
    def is_signed(self) -> bool:
        return self in (PrimitiveKind.I8, PrimitiveKind.I16, PrimitiveKind.I32,
                        PrimitiveKind.I64, PrimitiveKind.ISIZE)


class Constraint(Enum):
    """Constraints a generic parameter may carry."""
    UNMANAGED = "unmanaged"   # layout-fixed value type
    STRUCT = "struct"         # any value type
    CLASS = "class"           # any reference type

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Primitive:
    kind: PrimitiveKind

    def __str__(self) -> str:
        return str(self.kind)


@dataclass(frozen=True)
class PointerType:
    pointee: "Type"

    def __str__(self) -> str:
        return f"{self.pointee}*"


@dataclass(frozen=True)
class EnumType:
    """An enumeration stored as its underlying integral primitive.

    ``factory`` optionally rebuilds the host value (e.g. an ``IntEnum``)
    from the stored integer; it takes no part in type identity.
    """
    name: str
    underlying: Primitive = Primitive(PrimitiveKind.I32)
    factory: Optional[Callable[[int], Any]] = field(default=None, compare=False, hash=False, repr=False)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class UserValueType:
    """A user-defined value type (struct).

    ``in_unit`` is False for types declared outside the compilation unit of
    the union; their field layout is not trusted for static sizing.
    ``factory`` optionally rebuilds the host value from keyword field values.
    """
    name: str
    fields: tuple[tuple[str, "Type"], ...] = ()
    in_unit: bool = True
    factory: Optional[Callable[..., Any]] = field(default=None, compare=False, hash=False, repr=False)

    def __str__(self) -> str:
        return self.name

    def get_field_type(self, field_name: str) -> Optional["Type"]:
        for name, ty in self.fields:
            if name == field_name:
                return ty
        return None


@dataclass(frozen=True)
class UserReferenceType:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class InterfaceType:
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ArrayType:
    element: "Type"

    def __str__(self) -> str:
        return f"{self.element}[]"


@dataclass(frozen=True)
class GenericParameter:
    name: str
    constraints: frozenset[Constraint] = frozenset()

    def __str__(self) -> str:
        return self.name

    @property
    def is_always_value_type(self) -> bool:
        return Constraint.UNMANAGED in self.constraints or Constraint.STRUCT in self.constraints

    @property
    def is_always_reference_type(self) -> bool:
        return Constraint.CLASS in self.constraints


Type = Union[
    Primitive, PointerType, EnumType, UserValueType, UserReferenceType,
    InterfaceType, ArrayType, GenericParameter,
]


# Built-in names understood by the front-end.
STRING = UserReferenceType("string")
OBJECT = UserReferenceType("object")

PRIMITIVES: Mapping[str, Primitive] = {kind.value: Primitive(kind) for kind in PrimitiveKind}

BUILTIN_TYPES: Mapping[str, Type] = {
    **PRIMITIVES,
    "string": STRING,
    "object": OBJECT,
}


def is_generic(ty: Type) -> bool:
    """True if ``ty`` mentions a generic parameter anywhere."""
    match ty:
        case GenericParameter():
            return True
        case PointerType(pointee=inner) | ArrayType(element=inner):
            return is_generic(inner)
        case UserValueType():
            return any(is_generic(field_type) for _, field_type in ty.fields)
        case _:
            return False


def generic_parameters(ty: Type) -> list[GenericParameter]:
    """Generic parameters mentioned by ``ty``, in first-seen order."""
    found: list[GenericParameter] = []

    def walk(t: Type) -> None:
        match t:
            case GenericParameter():
                if t not in found:
                    found.append(t)
            case PointerType(pointee=inner) | ArrayType(element=inner):
                walk(inner)
            case UserValueType():
                for _, field_type in t.fields:
                    walk(field_type)

    walk(ty)
    return found


def substitute(ty: Type, bindings: Mapping[str, Type]) -> Type:
    """Replace generic parameters named in ``bindings`` with concrete types."""
    match ty:
        case GenericParameter(name=name):
            return bindings.get(name, ty)
        case PointerType(pointee=inner):
            return PointerType(substitute(inner, bindings))
        case ArrayType(element=inner):
            return ArrayType(substitute(inner, bindings))
        case UserValueType() if is_generic(ty):
            return UserValueType(
                name=ty.name,
                fields=tuple((n, substitute(t, bindings)) for n, t in ty.fields),
                in_unit=ty.in_unit,
                factory=ty.factory,
            )
        case _:
            return ty
