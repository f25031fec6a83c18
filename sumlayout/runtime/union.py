"""Runtime instances of planned unions.

A UnionType is built from a UnionDefinition and the StoragePlan computed
for it. Instances hold only the discriminant and the plan-assigned field of
their active case; the other fields stay empty and are never read::

    Shape = build_union(define_union("Shape", [
        case("Circle", PRIMITIVES["f64"]),
        case("Label", STRING),
        case("Empty"),
    ]))
    Shape.Circle(1.5).match(Circle=lambda r: r * 2, _=lambda: 0.0)   # 3.0
    Shape.Empty                                                      # singleton

Case names that collide with UnionType attributes (``name``, ``plan``,
``case`` ...) are only reachable through :meth:`UnionType.create`.
"""
from __future__ import annotations

import logging
import math
import threading
from typing import Any, Callable, Dict, Mapping, Optional, Union

from sumlayout.backend.sizing import TypeSizing
from sumlayout.internals.errors import InvalidState, MatchFailure, format_names
from sumlayout.semantics.classify import is_unmanaged
from sumlayout.semantics.model import CaseSpec, UnionDefinition
from sumlayout.semantics.planner import FieldKind, PlanCache, StoragePlan
from sumlayout.semantics.typesys import (
    Type, Constraint, InterfaceType, generic_parameters, is_generic, substitute,
)
from sumlayout.runtime.capacity import CapacityRegistry
from sumlayout.runtime.storage import OverlappingBlock, PayloadCodec

logger = logging.getLogger(__name__)

CaseRef = Union[str, int]

DEFAULT_HANDLER = "_"

_MISSING = object()


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


class UnionRuntime:
    """Owns the plan cache, the capacity registry and the payload codec.

    Every UnionType built through the same runtime shares these, so plans
    are computed once per definition and capacity checks once per
    (union, concrete payload type).
    """

    def __init__(self, sizing: Optional[TypeSizing] = None):
        self.sizing = sizing or TypeSizing()
        self.plans = PlanCache(self.sizing)
        self.capacity = CapacityRegistry()
        self.codec = PayloadCodec(self.sizing)
        self._types: Dict[UnionDefinition, "UnionType"] = {}
        self._lock = threading.Lock()

    def union_type(self, definition: UnionDefinition) -> "UnionType":
        with self._lock:
            union = self._types.get(definition)
            if union is None:
                union = UnionType(definition, self)
                self._types[definition] = union
            return union


_default_runtime = UnionRuntime()


def build_union(definition: UnionDefinition, runtime: Optional[UnionRuntime] = None) -> "UnionType":
    """Plan ``definition`` and return its runtime type.

    Raises:
        PlanningError: If the definition cannot be planned.
    """
    return (runtime or _default_runtime).union_type(definition)


class UnionType:
    """Factory and metadata for the instances of one union.

    Payload-bearing cases are exposed as constructors and payload-less cases
    as singleton constants, both as attributes named after the case::

        Shape.Circle(1.5)
        Shape.Empty
    """

    def __init__(self, definition: UnionDefinition, runtime: UnionRuntime,
                 bindings: Optional[Mapping[str, Type]] = None):
        self.definition = definition
        self.runtime = runtime
        self.bindings: Dict[str, Type] = dict(bindings or {})
        self.plan: StoragePlan = runtime.plans.get(definition)
        self._key = (definition, tuple(sorted(self.bindings.items(), key=lambda item: item[0])))
        self._singletons = {
            spec.index: UnionValue(self, spec.index, (None,) * len(self.plan.fields))
            for spec in definition.cases if spec.payload is None
        }

    @property
    def name(self) -> str:
        if not self.definition.type_params:
            return self.definition.name
        args = [str(self.bindings.get(p.name, p.name)) for p in self.definition.type_params]
        return f"{self.definition.name}<{', '.join(args)}>"

    def __repr__(self) -> str:
        return f"<union {self.name}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnionType):
            return NotImplemented
        return self._key == other._key

    def __hash__(self) -> int:
        return hash(self._key)

    def __getattr__(self, name: str) -> Any:
        # Only reached for names that are not regular attributes
        definition = self.__dict__.get("definition")
        spec = definition.get_case(name) if definition is not None else None
        if spec is None:
            raise AttributeError(name)
        if spec.payload is None:
            return self._singletons[spec.index]
        return lambda value: self.create(spec.index, value)

    def __iter__(self):
        return iter(self.definition.cases)

    def __len__(self) -> int:
        return len(self.definition.cases)

    def case(self, ref: CaseRef) -> CaseSpec:
        """Resolve a case by name or index.

        Raises:
            InvalidState: SL3007 if no such case exists.
        """
        if isinstance(ref, int):
            if 0 <= ref < len(self.definition.cases):
                return self.definition.cases[ref]
            raise InvalidState("SL3007", union=self.name, name=ref)
        spec = self.definition.get_case(ref)
        if spec is None:
            raise InvalidState("SL3007", union=self.name, name=f"'{ref}'")
        return spec

    def payload_type(self, ref: CaseRef) -> Optional[Type]:
        """Concrete payload type of a case under the current bindings."""
        spec = self.case(ref)
        if spec.payload is None:
            return None
        ty = substitute(spec.payload, self.bindings)
        if is_generic(ty):
            param = generic_parameters(ty)[0]
            raise InvalidState("SL3005", union=self.name, param=param.name, case=spec.name)
        return ty

    def create(self, ref: CaseRef, value: Any = _MISSING) -> "UnionValue":
        """Construct an instance holding case ``ref``.

        Raises:
            InvalidState: If the case is unknown, takes no payload, or its
                payload type is still an unbound type parameter.
            RuntimeCapacityError: If the concrete payload type does not fit
                the overlapping block; raised before any byte is written.
        """
        spec = self.case(ref)
        if spec.payload is None:
            if value is not _MISSING:
                raise InvalidState("SL3008", case=spec.name, union=self.name, reason="takes no payload")
            return self._singletons[spec.index]
        if value is _MISSING:
            raise InvalidState("SL3008", case=spec.name, union=self.name, reason="requires a payload")

        ty = self.payload_type(spec.index)
        field_id = self.plan.per_case_field[spec.index]
        field_spec = self.plan.fields[field_id]
        fields: list[Any] = [None] * len(self.plan.fields)

        if field_spec.kind is FieldKind.OVERLAPPING_BLOCK:
            self.runtime.capacity.check(self.definition, ty, field_spec.capacity,
                                        self.runtime.sizing.size_of)
            block = OverlappingBlock(field_spec.capacity)
            block.write(ty, self.runtime.codec.encode(ty, value))
            fields[field_id] = block
        else:
            fields[field_id] = value

        return UnionValue(self, spec.index, tuple(fields))

    def singleton(self, ref: CaseRef) -> "UnionValue":
        spec = self.case(ref)
        if spec.payload is not None:
            raise InvalidState("SL3008", case=spec.name, union=self.name, reason="requires a payload")
        return self._singletons[spec.index]

    def from_payload(self, ty: Type, value: Any) -> "UnionValue":
        """Build the instance of the only case whose payload type is ``ty``.

        Raises:
            InvalidState: SL3004 if no case or several cases carry ``ty``,
                or if ``ty`` is an interface.
        """
        if isinstance(ty, InterfaceType):
            raise InvalidState("SL3004", union=self.name, type=ty, reason="interfaces do not convert")
        matches = [spec.index for spec in self.definition.cases
                   if spec.payload is not None and substitute(spec.payload, self.bindings) == ty]
        if not matches:
            raise InvalidState("SL3004", union=self.name, type=ty, reason="no case carries this type")
        if len(matches) > 1:
            names = [self.definition.cases[i].name for i in matches]
            raise InvalidState("SL3004", union=self.name, type=ty,
                               reason=f"cases {format_names(names)} all carry this type")
        return self.create(matches[0], value)

    def instantiate(self, **bindings: Type) -> "UnionType":
        """Bind type parameters, returning the concrete union type.

        The instantiation shares the generic definition's plan; payload
        types that reach the overlapping block are capacity-checked on
        first construction.

        Raises:
            InvalidState: SL3009 for unknown parameters, generic arguments,
                or arguments that violate a parameter constraint.
        """
        declared = {p.name: p for p in self.definition.type_params}
        for name, ty in bindings.items():
            param = declared.get(name)
            if param is None:
                raise InvalidState("SL3009", union=self.name, reason=f"no type parameter '{name}'")
            if is_generic(ty):
                raise InvalidState("SL3009", union=self.name, reason=f"'{ty}' is not a concrete type")
            if Constraint.UNMANAGED in param.constraints and not is_unmanaged(ty):
                raise InvalidState("SL3009", union=self.name,
                                   reason=f"'{ty}' does not satisfy the unmanaged constraint of '{name}'")

        merged = {**self.bindings, **bindings}
        for spec in self.definition.payload_cases():
            field_spec = self.plan.field_for(spec.index)
            ty = substitute(spec.payload, merged)
            if field_spec.kind is FieldKind.OVERLAPPING_BLOCK and not is_generic(ty) and not is_unmanaged(ty):
                raise InvalidState("SL3009", union=self.name,
                                   reason=f"case '{spec.name}' stores '{ty}' in the overlapping block "
                                          f"but it is not layout-eligible")

        logger.debug("instantiated %s with %s", self.definition.name,
                     ", ".join(f"{k}={v}" for k, v in merged.items()))
        return UnionType(self.definition, self.runtime, merged)


class UnionValue:
    """An immutable union instance: discriminant plus one populated field."""

    __slots__ = ("_union", "_index", "_fields")

    def __init__(self, union: UnionType, index: int, fields: tuple):
        self._union = union
        self._index = index
        self._fields = fields

    @property
    def union(self) -> UnionType:
        return self._union

    @property
    def index(self) -> int:
        return self._index

    @property
    def case_name(self) -> str:
        return self._union.definition.cases[self._index].name

    @property
    def value(self) -> Any:
        """Payload of the active case, None for payload-less cases."""
        return self._read(self._index)

    def _read(self, index: int) -> Any:
        plan = self._union.plan
        field_id = plan.per_case_field[index]
        if field_id is None:
            return None
        stored = self._fields[field_id]
        if plan.fields[field_id].kind is FieldKind.OVERLAPPING_BLOCK:
            ty = self._union.payload_type(index)
            return self._union.runtime.codec.decode(ty, stored.read(ty))
        return stored

    def is_case(self, ref: CaseRef) -> bool:
        return self._union.case(ref).index == self._index

    def as_case(self, ref: CaseRef) -> Any:
        """Payload of case ``ref``.

        Raises:
            InvalidState: SL3001 if the instance holds another case.
        """
        spec = self._union.case(ref)
        if spec.index != self._index:
            raise InvalidState("SL3001", case=spec.name, index=spec.index, union=self._union.name,
                               active=self.case_name, active_index=self._index)
        return self._read(spec.index)

    def as_case_or_default(self, ref: CaseRef) -> Any:
        """Payload of case ``ref``, or the zero value of its payload type."""
        spec = self._union.case(ref)
        if spec.index == self._index:
            return self._read(spec.index)
        return self._default_for(spec)

    def as_case_or(self, ref: CaseRef, default: Any) -> Any:
        spec = self._union.case(ref)
        return self._read(spec.index) if spec.index == self._index else default

    def as_case_or_else(self, ref: CaseRef, factory: Callable[[], Any]) -> Any:
        spec = self._union.case(ref)
        return self._read(spec.index) if spec.index == self._index else factory()

    def _default_for(self, spec: CaseSpec) -> Any:
        if spec.payload is None:
            return None
        ty = self._union.payload_type(spec.index)
        if not is_unmanaged(ty):
            return None
        return self._union.runtime.codec.zero_value(ty)

    def switch(self, *handlers: Callable, **named: Callable) -> None:
        """Invoke the handler of the active case for its side effects.

        Raises:
            MatchFailure: If no handler and no default (``_``) covers the case.
        """
        self.match(*handlers, **named)

    def match(self, *handlers: Callable, **named: Callable) -> Any:
        """Invoke the handler of the active case and return its result.

        Handlers bind by position (case index) or by case name; ``_`` is the
        default handler and is called without arguments. Payload-less cases
        call their handler without arguments.

        Raises:
            InvalidState: If a handler names no case or a case is bound twice.
            MatchFailure: If no handler and no default (``_``) covers the case.
        """
        union = self._union
        bound: Dict[int, Callable] = {}
        for position, handler in enumerate(handlers):
            bound[union.case(position).index] = handler

        default = named.pop(DEFAULT_HANDLER, None)
        for name, handler in named.items():
            spec = union.case(name)
            if spec.index in bound:
                raise InvalidState("SL3011", case=spec.name, union=union.name)
            bound[spec.index] = handler

        handler = bound.get(self._index)
        if handler is None:
            if default is None:
                raise MatchFailure(self.case_name, union.name)
            return default()
        return self._call(handler)

    def if_case(self, ref: CaseRef, handler: Callable) -> None:
        if self.is_case(ref):
            self._call(handler)

    def if_case_else(self, ref: CaseRef, handler: Callable, or_else: Callable[[], Any]) -> Any:
        """Call ``handler`` with the payload if the case is active, else ``or_else()``."""
        if self.is_case(ref):
            return self._call(handler)
        return or_else()

    def if_case_else_value(self, ref: CaseRef, handler: Callable, else_value: Any) -> Any:
        if self.is_case(ref):
            return self._call(handler)
        return else_value

    def _call(self, handler: Callable) -> Any:
        if self._union.plan.per_case_field[self._index] is None:
            return handler()
        return handler(self._read(self._index))

    def _stored(self) -> Any:
        """The active payload as compared for equality.

        Overlapping blocks compare by their raw bytes, so a NaN payload equals
        itself the same way every other bit pattern does.
        """
        plan = self._union.plan
        field_id = plan.per_case_field[self._index]
        if field_id is None:
            return None
        if plan.fields[field_id].kind is FieldKind.OVERLAPPING_BLOCK:
            return self._fields[field_id].read(self._union.payload_type(self._index))
        return self._fields[field_id]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnionValue):
            return NotImplemented
        if self._union != other._union or self._index != other._index:
            return False
        mine, theirs = self._stored(), other._stored()
        return mine is theirs or mine == theirs or (_is_nan(mine) and _is_nan(theirs))

    def __hash__(self) -> int:
        stored = self._stored()
        if _is_nan(stored):
            return hash((self._index, "nan"))
        return hash((self._index, stored))

    def __repr__(self) -> str:
        if self._union.plan.per_case_field[self._index] is None:
            return f"{self._union.name}.{self.case_name}"
        return f"{self._union.name}.{self.case_name}({self._read(self._index)!r})"

    def __str__(self) -> str:
        shown = "(empty)" if self._union.plan.per_case_field[self._index] is None else self._read(self._index)
        return f"{{ Index = {self._index}, Value = {shown} }}"
