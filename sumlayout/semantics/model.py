"""Case model: the immutable declarative input of the planner."""

from __future__ import annotations
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional

from sumlayout.internals.errors import UnionDefinitionError
from sumlayout.semantics.typesys import GenericParameter, Type, generic_parameters


class StorageStrategy(Enum):
    """Global storage policy of a union."""
    INLINE_VALUE_TYPES = "InlineValueTypes"
    ONE_OBJECT = "OneObject"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> "StorageStrategy":
        for member in cls:
            if member.value.lower() == text.lower() or member.name.lower() == text.lower():
                return member
        raise ValueError(f"unknown storage strategy '{text}'")


class CaseStorage(Enum):
    """Per-case storage request; DEFAULT defers to the union's strategy."""
    DEFAULT = "default"
    AS_SHARED_OBJECT = "object"
    INLINE = "inline"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> "CaseStorage":
        for member in cls:
            if member.value == text.lower() or member.name.lower() == text.lower():
                return member
        raise ValueError(f"unknown case storage '{text}'")


@dataclass(frozen=True)
class CaseSpec:
    index: int
    name: str
    payload: Optional[Type] = None
    storage: CaseStorage = CaseStorage.DEFAULT
    unmanaged_override: Optional[bool] = None
    size_override: Optional[int] = None

    @property
    def has_payload(self) -> bool:
        return self.payload is not None

    @property
    def effective_unmanaged_override(self) -> Optional[bool]:
        """An explicit size implies the type is asserted layout-eligible."""
        if self.size_override is not None:
            return True
        return self.unmanaged_override


@dataclass(frozen=True)
class UnionDefinition:
    """A tagged union: name, type parameters, ordered cases and storage policy.

    Construction validates the case invariants: at least one case, unique
    names, indices contiguous from 0 in declaration order.
    """
    name: str
    cases: tuple[CaseSpec, ...]
    type_params: tuple[GenericParameter, ...] = ()
    strategy: StorageStrategy = StorageStrategy.INLINE_VALUE_TYPES
    capacity_override: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.cases:
            raise UnionDefinitionError("SL1003", self.name)

        seen_params: set[str] = set()
        for param in self.type_params:
            if param.name in seen_params:
                raise UnionDefinitionError("SL1004", self.name, name=param.name)
            seen_params.add(param.name)

        seen: set[str] = set()
        for expected, case in enumerate(self.cases):
            if case.name in seen:
                raise UnionDefinitionError("SL1001", self.name, name=case.name)
            seen.add(case.name)
            if case.index != expected:
                raise UnionDefinitionError("SL1002", self.name, name=case.name,
                                           index=case.index, expected=expected)
            if case.payload is None:
                _check_payloadless_options(self.name, case)
                continue
            for param in generic_parameters(case.payload):
                if param.name not in seen_params:
                    raise UnionDefinitionError("SL1005", self.name, name=case.name, param=param.name)

    def __str__(self) -> str:
        if self.type_params:
            return f"{self.name}<{', '.join(p.name for p in self.type_params)}>"
        return self.name

    @property
    def is_generic(self) -> bool:
        return bool(self.type_params)

    @property
    def case_names(self) -> tuple[str, ...]:
        return tuple(case.name for case in self.cases)

    def get_case(self, name: str) -> Optional[CaseSpec]:
        for case in self.cases:
            if case.name == name:
                return case
        return None

    def payload_cases(self) -> list[CaseSpec]:
        return [case for case in self.cases if case.payload is not None]


def _check_payloadless_options(union_name: str, case: CaseSpec) -> None:
    if case.storage is not CaseStorage.DEFAULT:
        raise UnionDefinitionError("SL1006", union_name, name=case.name, option="a storage mode")
    if case.unmanaged_override is not None:
        raise UnionDefinitionError("SL1006", union_name, name=case.name, option="a layout override")
    if case.size_override is not None:
        raise UnionDefinitionError("SL1006", union_name, name=case.name, option="a size override")


def case(name: str, payload: Optional[Type] = None, *,
         storage: CaseStorage = CaseStorage.DEFAULT,
         unmanaged: Optional[bool] = None,
         size: Optional[int] = None) -> CaseSpec:
    """Declare a case; its index is assigned by :func:`define_union`."""
    return CaseSpec(index=-1, name=name, payload=payload, storage=storage,
                    unmanaged_override=unmanaged, size_override=size)


def define_union(name: str, cases: Iterable[CaseSpec], *,
                 type_params: Iterable[GenericParameter] = (),
                 strategy: StorageStrategy = StorageStrategy.INLINE_VALUE_TYPES,
                 capacity: Optional[int] = None) -> UnionDefinition:
    """Build a UnionDefinition, numbering cases in declaration order."""
    indexed = tuple(replace(spec, index=i) for i, spec in enumerate(cases))
    return UnionDefinition(
        name=name,
        cases=indexed,
        type_params=tuple(type_params),
        strategy=strategy,
        capacity_override=capacity,
    )
