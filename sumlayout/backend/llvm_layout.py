"""LLVM struct types for planned unions.

A plan lowers to a literal struct: the discriminant integer first, then one
element per plan field in plan order.

    SharedObject          -> i8*
    OverlappingBlock(n)   -> [n x i8]
    Dedicated(t)          -> LLVM type of t

Payload types map as follows: integers to iN of their width, bool to i8,
char to i16, f32/f64 to float/double, enums to their underlying integer,
value types to literal structs of their fields, and references, arrays and
interfaces to i8* handles.
"""
from __future__ import annotations

from typing import Mapping, Optional

from llvmlite import ir

from sumlayout.backend.sizing import DEFAULT_POINTER_SIZE
from sumlayout.internals.errors import raise_internal_error
from sumlayout.semantics.model import UnionDefinition
from sumlayout.semantics.planner import FieldKind, StoragePlan
from sumlayout.semantics.typesys import (
    Type, Primitive, PrimitiveKind, PointerType, EnumType, UserValueType,
    UserReferenceType, InterfaceType, ArrayType, substitute,
)

TAG_BITS = (8, 16, 32, 64)
DEFAULT_TAG_BITS = 32


class TypeCache:
    """Cache for lowered value-type and union LLVM types."""

    def __init__(self):
        self._struct_cache: dict[UserValueType, ir.LiteralStructType] = {}
        self._union_cache: dict[str, ir.LiteralStructType] = {}

    def get_struct(self, struct_type: UserValueType) -> ir.LiteralStructType | None:
        return self._struct_cache.get(struct_type)

    def cache_struct(self, struct_type: UserValueType, llvm_type: ir.LiteralStructType):
        self._struct_cache[struct_type] = llvm_type

    def get_union(self, union_key: str) -> ir.LiteralStructType | None:
        """Get cached union type.

        Args:
            union_key: Union name, with type arguments for instantiations.

        Returns:
            Cached LLVM struct type or None if not cached.
        """
        return self._union_cache.get(union_key)

    def cache_union(self, union_key: str, llvm_type: ir.LiteralStructType):
        self._union_cache[union_key] = llvm_type

    def clear(self):
        self._struct_cache.clear()
        self._union_cache.clear()


class LayoutLowering:
    """Maps payload types and storage plans to llvmlite types."""

    def __init__(self, tag_bits: int = DEFAULT_TAG_BITS, pointer_size: int = DEFAULT_POINTER_SIZE,
                 cache: Optional[TypeCache] = None):
        if tag_bits not in TAG_BITS:
            raise ValueError(f"tag width must be one of {TAG_BITS}, got {tag_bits}")
        self.cache = cache or TypeCache()
        self.tag: ir.IntType = ir.IntType(tag_bits)
        self.i8: ir.IntType = ir.IntType(8)
        self.handle: ir.PointerType = self.i8.as_pointer()
        self.word: ir.IntType = ir.IntType(pointer_size * 8)

        self._primitive_map: dict[PrimitiveKind, ir.Type] = {
            PrimitiveKind.I8: self.i8,
            PrimitiveKind.U8: self.i8,
            PrimitiveKind.BOOL: self.i8,
            PrimitiveKind.I16: ir.IntType(16),
            PrimitiveKind.U16: ir.IntType(16),
            PrimitiveKind.CHAR: ir.IntType(16),
            PrimitiveKind.I32: ir.IntType(32),
            PrimitiveKind.U32: ir.IntType(32),
            PrimitiveKind.I64: ir.IntType(64),
            PrimitiveKind.U64: ir.IntType(64),
            PrimitiveKind.ISIZE: self.word,
            PrimitiveKind.USIZE: self.word,
            PrimitiveKind.F32: ir.FloatType(),
            PrimitiveKind.F64: ir.DoubleType(),
        }

    def ll_type(self, t: Type) -> ir.Type:
        """Map a concrete payload type to its LLVM type.

        Raises:
            RuntimeError: For unbound generic parameters.
        """
        match t:
            case Primitive(kind=kind):
                return self._primitive_map[kind]
            case PointerType(pointee=pointee):
                if isinstance(pointee, (UserReferenceType, InterfaceType, ArrayType)):
                    return self.handle.as_pointer()
                return self.ll_type(pointee).as_pointer()
            case EnumType(underlying=underlying):
                return self.ll_type(underlying)
            case UserValueType():
                return self._get_struct_type(t)
            case UserReferenceType() | InterfaceType() | ArrayType():
                return self.handle
            case _:
                raise_internal_error("SL0002", type=str(t))

    def _get_struct_type(self, t: UserValueType) -> ir.LiteralStructType:
        cached = self.cache.get_struct(t)
        if cached is not None:
            return cached
        # An empty value type still occupies one byte
        elements = [self.ll_type(field_type) for _, field_type in t.fields] or [self.i8]
        llvm_type = ir.LiteralStructType(elements)
        self.cache.cache_struct(t, llvm_type)
        return llvm_type

    def lower(self, plan: StoragePlan, definition: UnionDefinition,
              bindings: Optional[Mapping[str, Type]] = None) -> ir.LiteralStructType:
        """Lower a plan to ``{tag, field0, field1, ...}``."""
        bindings = dict(bindings or {})
        key = definition.name
        if bindings:
            key += "<" + ", ".join(f"{k}={v}" for k, v in sorted(bindings.items())) + ">"
        cached = self.cache.get_union(key)
        if cached is not None:
            return cached

        elements: list[ir.Type] = [self.tag]
        for spec in plan.fields:
            if spec.kind is FieldKind.SHARED_OBJECT:
                elements.append(self.handle)
            elif spec.kind is FieldKind.OVERLAPPING_BLOCK:
                elements.append(ir.ArrayType(self.i8, spec.capacity))
            else:
                elements.append(self.ll_type(substitute(spec.type, bindings)))

        llvm_type = ir.LiteralStructType(elements)
        self.cache.cache_union(key, llvm_type)
        return llvm_type


def lower_plan(plan: StoragePlan, definition: UnionDefinition, tag_bits: int = DEFAULT_TAG_BITS,
               pointer_size: int = DEFAULT_POINTER_SIZE,
               bindings: Optional[Mapping[str, Type]] = None) -> ir.LiteralStructType:
    return LayoutLowering(tag_bits, pointer_size).lower(plan, definition, bindings)


def build_module(lowered: Mapping[str, ir.LiteralStructType], name: str = "sumlayout") -> ir.Module:
    """A module declaring one identified struct type per lowered union."""
    module = ir.Module(name=name, context=ir.Context())
    for union_name, llvm_type in lowered.items():
        identified = module.context.get_identified_type(union_name)
        identified.set_body(*llvm_type.elements)
    return module
