"""Storage layout planner.

Turns a union definition into a StoragePlan: the list of data fields an
instance carries next to its discriminant, and which field each
payload-bearing case writes to.

Three field kinds exist:
- SharedObject: one boxed slot shared by every case stored as an object;
- Dedicated(type): a slot of exactly one concrete type, shared only by
  cases carrying that same type;
- OverlappingBlock(capacity): one fixed-size byte block shared by every
  layout-eligible case, interpreted according to the discriminant.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from sumlayout.backend.sizing import TypeSizing
from sumlayout.internals.errors import PlanningError
from sumlayout.semantics.classify import TypeDescriptor, classify, managed_member
from sumlayout.semantics.model import CaseSpec, CaseStorage, StorageStrategy, UnionDefinition
from sumlayout.semantics.typesys import Type, is_generic

logger = logging.getLogger(__name__)


class FieldKind(Enum):
    SHARED_OBJECT = "SharedObject"
    DEDICATED = "Dedicated"
    OVERLAPPING_BLOCK = "OverlappingBlock"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class FieldSpec:
    kind: FieldKind
    type: Optional[Type] = None      # Dedicated only
    capacity: Optional[int] = None   # OverlappingBlock only

    def __str__(self) -> str:
        if self.kind is FieldKind.DEDICATED:
            return f"Dedicated({self.type})"
        if self.kind is FieldKind.OVERLAPPING_BLOCK:
            return f"OverlappingBlock({self.capacity})"
        return "SharedObject"

    @classmethod
    def shared_object(cls) -> "FieldSpec":
        return cls(FieldKind.SHARED_OBJECT)

    @classmethod
    def dedicated(cls, ty: Type) -> "FieldSpec":
        return cls(FieldKind.DEDICATED, type=ty)

    @classmethod
    def overlapping_block(cls, capacity: int) -> "FieldSpec":
        return cls(FieldKind.OVERLAPPING_BLOCK, capacity=capacity)


@dataclass(frozen=True)
class Shortfall:
    """A case whose known size exceeds an explicit union capacity."""
    case_name: str
    type_name: str
    required: int


@dataclass(frozen=True)
class StoragePlan:
    """Immutable field plan of one union definition.

    ``per_case_field[i]`` is the index into ``fields`` used by case ``i``,
    or None for payload-less cases.
    """
    union_name: str
    fields: tuple[FieldSpec, ...]
    per_case_field: tuple[Optional[int], ...]
    uniform: bool = False
    shortfalls: tuple[Shortfall, ...] = ()

    def field_for(self, case_index: int) -> Optional[FieldSpec]:
        field_id = self.per_case_field[case_index]
        return None if field_id is None else self.fields[field_id]

    @property
    def overlapping_block(self) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.kind is FieldKind.OVERLAPPING_BLOCK:
                return spec
        return None

    def describe(self, definition: UnionDefinition) -> list[str]:
        """Human-readable plan lines, one per field and one per case."""
        lines = [f"plan {definition}" + (" (uniform)" if self.uniform else "")]
        for field_id, spec in enumerate(self.fields):
            lines.append(f"  field {field_id}: {spec}")
        for case, field_id in zip(definition.cases, self.per_case_field):
            target = "-" if field_id is None else f"field {field_id}"
            lines.append(f"  case {case.index} {case.name}: {target}")
        return lines


def plan_storage(definition: UnionDefinition, capacity_override: Optional[int] = None,
                 sizing: Optional[TypeSizing] = None) -> StoragePlan:
    """Compute the storage plan of a union definition.

    Args:
        definition: The validated union definition.
        capacity_override: Explicit overlapping-block capacity; defaults to
            the definition's own ``capacity_override``.
        sizing: Size calculator; defaults to 64-bit pointers.

    Raises:
        PlanningError: If an override is invalid or a layout-eligible payload
            has no determinable size and no capacity is declared.
    """
    sizing = sizing or TypeSizing()
    capacity = capacity_override if capacity_override is not None else definition.capacity_override
    if capacity is not None and capacity <= 0:
        raise PlanningError("SL1103", definition.name, None, size=capacity)

    payload_cases = definition.payload_cases()
    descriptors: Dict[int, TypeDescriptor] = {}
    for case in payload_cases:
        descriptors[case.index] = _classify_case(definition, case, sizing)

    if not payload_cases:
        logger.debug("%s: no payload-bearing cases, discriminant only", definition)
        return StoragePlan(definition.name, (), (None,) * len(definition.cases))

    uniform = _uniform_payload(payload_cases)
    if uniform is not None:
        logger.debug("%s: every payload is %s, using one dedicated field", definition, uniform)
        return StoragePlan(
            union_name=definition.name,
            fields=(FieldSpec.dedicated(uniform),),
            per_case_field=tuple(None if c.payload is None else 0 for c in definition.cases),
            uniform=True,
        )

    fields: list[FieldSpec] = []
    per_case: list[Optional[int]] = [None] * len(definition.cases)
    shared_id: Optional[int] = None
    block_id: Optional[int] = None
    dedicated_ids: Dict[Type, int] = {}
    required = 0
    known_sizes: list[tuple[CaseSpec, TypeDescriptor, int]] = []

    for case in payload_cases:
        desc = descriptors[case.index]

        if not _routes_inline(definition.strategy, case, desc):
            if shared_id is None:
                shared_id = len(fields)
                fields.append(FieldSpec.shared_object())
            per_case[case.index] = shared_id
            logger.debug("%s.%s: %s -> SharedObject", definition.name, case.name, desc.display_name)
            continue

        if desc.recursively_unmanaged:
            size = _required_size(definition, case, desc, capacity)
            if size is not None:
                required = max(required, size)
                known_sizes.append((case, desc, size))
            if block_id is None:
                block_id = len(fields)
                fields.append(FieldSpec.overlapping_block(0))
            per_case[case.index] = block_id
            logger.debug("%s.%s: %s -> OverlappingBlock (needs %s bytes)",
                         definition.name, case.name, desc.display_name,
                         "?" if size is None else size)
            continue

        ty = case.payload
        if ty not in dedicated_ids:
            dedicated_ids[ty] = len(fields)
            fields.append(FieldSpec.dedicated(ty))
        per_case[case.index] = dedicated_ids[ty]
        logger.debug("%s.%s: %s -> Dedicated", definition.name, case.name, desc.display_name)

    shortfalls: list[Shortfall] = []
    if block_id is not None:
        block_capacity = capacity if capacity is not None else required
        fields[block_id] = FieldSpec.overlapping_block(block_capacity)
        for case, desc, size in known_sizes:
            if size > block_capacity:
                # Construction of this case fails on first use
                shortfalls.append(Shortfall(case.name, desc.display_name, size))
                logger.warning("%s.%s: %s needs %d bytes but the capacity is %d",
                               definition.name, case.name, desc.display_name, size, block_capacity)

    return StoragePlan(
        union_name=definition.name,
        fields=tuple(fields),
        per_case_field=tuple(per_case),
        shortfalls=tuple(shortfalls),
    )


def _classify_case(definition: UnionDefinition, case: CaseSpec, sizing: TypeSizing) -> TypeDescriptor:
    if case.size_override is not None and case.size_override <= 0:
        raise PlanningError("SL1102", definition.name, case.name, size=case.size_override)

    desc = classify(case.payload, case.effective_unmanaged_override, sizing)
    if case.effective_unmanaged_override:
        if not desc.can_be_unmanaged:
            raise PlanningError("SL1104", definition.name, case.name,
                                kind=desc.kind, type=desc.display_name, detail="")
        member = managed_member(case.payload)
        if member is not None:
            path, field_type = member
            raise PlanningError("SL1104", definition.name, case.name, kind=desc.kind,
                                type=desc.display_name, detail=f" (field '{path}' is {field_type})")
    return desc


def _uniform_payload(payload_cases: list[CaseSpec]) -> Optional[Type]:
    """The single shared concrete payload type, if the shortcut applies."""
    types = {case.payload for case in payload_cases}
    if len(types) != 1:
        return None
    if any(case.storage is CaseStorage.AS_SHARED_OBJECT for case in payload_cases):
        return None
    (ty,) = types
    return None if is_generic(ty) else ty


def _routes_inline(strategy: StorageStrategy, case: CaseSpec, desc: TypeDescriptor) -> bool:
    if case.storage is CaseStorage.AS_SHARED_OBJECT:
        return False
    if case.storage is CaseStorage.INLINE:
        return True
    if strategy is StorageStrategy.ONE_OBJECT:
        return False
    return desc.is_value_type


def _required_size(definition: UnionDefinition, case: CaseSpec, desc: TypeDescriptor,
                   capacity: Optional[int]) -> Optional[int]:
    """Bytes a layout-eligible case needs, or None when only a capacity bounds it."""
    sizes = [s for s in (case.size_override, desc.static_size) if s is not None]
    if sizes:
        return max(sizes)
    if capacity is None:
        raise PlanningError("SL1101", definition.name, case.name, type=desc.display_name)
    return None


class PlanCache:
    """Plans keyed by definition; each definition is planned exactly once."""

    def __init__(self, sizing: Optional[TypeSizing] = None):
        self.sizing = sizing or TypeSizing()
        self._plans: Dict[UnionDefinition, StoragePlan] = {}
        self._lock = threading.Lock()

    def get(self, definition: UnionDefinition) -> StoragePlan:
        with self._lock:
            plan = self._plans.get(definition)
            if plan is None:
                plan = plan_storage(definition, sizing=self.sizing)
                self._plans[definition] = plan
            return plan

    def __contains__(self, definition: UnionDefinition) -> bool:
        return definition in self._plans

    def __len__(self) -> int:
        return len(self._plans)

    def clear(self) -> None:
        with self._lock:
            self._plans.clear()
