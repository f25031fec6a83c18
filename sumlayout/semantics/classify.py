"""Type eligibility classification.

A payload type is *layout-eligible* ("unmanaged") when it has a fixed,
provable byte layout with no indirections to managed objects, which makes
it safe to share the union's overlapping byte block with other such types.

Rules:
- primitives, pointers and enums are always eligible and statically sized;
- value types declared in the unit are eligible iff every field is;
- value types from outside the unit are never trusted unless a case
  asserts eligibility, and never have a static size;
- generic parameters are eligible only under the ``unmanaged`` constraint
  or an explicit assertion, and never have a static size;
- reference types, arrays and interfaces are never eligible.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sumlayout.backend.sizing import TypeSizing
from sumlayout.semantics.typesys import (
    Type, Primitive, PointerType, EnumType, UserValueType, UserReferenceType,
    InterfaceType, ArrayType, GenericParameter, Constraint, is_generic,
)


class TypeKind(Enum):
    CONCRETE_VALUE_TYPE = "value"
    CONCRETE_REFERENCE_TYPE = "reference"
    ARRAY_TYPE = "array"
    GENERIC_PARAMETER = "generic"
    INTERFACE = "interface"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TypeDescriptor:
    type: Type
    kind: TypeKind
    recursively_unmanaged: bool
    static_size: Optional[int]
    is_value_type: bool

    @property
    def display_name(self) -> str:
        return str(self.type)

    @property
    def is_generic(self) -> bool:
        return is_generic(self.type)

    @property
    def can_be_unmanaged(self) -> bool:
        """False for kinds that no assertion can make layout-eligible."""
        return self.kind in (TypeKind.CONCRETE_VALUE_TYPE, TypeKind.GENERIC_PARAMETER)


def classify(ty: Type, unmanaged_override: Optional[bool] = None,
             sizing: Optional[TypeSizing] = None) -> TypeDescriptor:
    """Classify a payload type.

    Args:
        ty: The payload type.
        unmanaged_override: A case's explicit eligibility assertion; None
            lets the rules decide. Ignored for kinds that can never be
            eligible (the planner rejects such assertions).
        sizing: Size calculator; defaults to 64-bit pointers.
    """
    sizing = sizing or TypeSizing()

    match ty:
        case GenericParameter():
            kind = TypeKind.GENERIC_PARAMETER
            value_type = ty.is_always_value_type
        case UserReferenceType():
            kind, value_type = TypeKind.CONCRETE_REFERENCE_TYPE, False
        case InterfaceType():
            kind, value_type = TypeKind.INTERFACE, False
        case ArrayType():
            kind, value_type = TypeKind.ARRAY_TYPE, False
        case _:
            kind, value_type = TypeKind.CONCRETE_VALUE_TYPE, True

    unmanaged = is_unmanaged(ty)
    if unmanaged_override is not None and kind in (TypeKind.CONCRETE_VALUE_TYPE, TypeKind.GENERIC_PARAMETER):
        unmanaged = unmanaged_override
        if unmanaged and kind is TypeKind.GENERIC_PARAMETER:
            value_type = True

    return TypeDescriptor(
        type=ty,
        kind=kind,
        recursively_unmanaged=unmanaged,
        static_size=static_size(ty, sizing),
        is_value_type=value_type,
    )


def is_unmanaged(ty: Type) -> bool:
    """Layout eligibility by the rules alone, without case assertions."""
    match ty:
        case Primitive() | PointerType() | EnumType():
            return True
        case GenericParameter():
            return Constraint.UNMANAGED in ty.constraints
        case UserValueType(in_unit=True):
            return all(is_unmanaged(field_type) for _, field_type in ty.fields)
        case _:
            # Foreign value types, references, arrays and interfaces
            return False


def managed_member(ty: Type, prefix: str = "") -> Optional[tuple[str, Type]]:
    """First field, as a dotted path, that holds a reference, array or interface.

    Only value types have members; any other type yields None.
    """
    if not isinstance(ty, UserValueType):
        return None
    for name, field_type in ty.fields:
        path = f"{prefix or ty.name}.{name}"
        if isinstance(field_type, (UserReferenceType, ArrayType, InterfaceType)):
            return path, field_type
        nested = managed_member(field_type, path)
        if nested is not None:
            return nested
    return None


def static_size(ty: Type, sizing: TypeSizing) -> Optional[int]:
    """Byte size provable before instantiation, or None."""
    match ty:
        case Primitive() | PointerType() | EnumType():
            return sizing.size_of(ty)
        case UserValueType(in_unit=True):
            if all(static_size(field_type, sizing) is not None for _, field_type in ty.fields):
                return sizing.size_of(ty)
            return None
        case _:
            return None
