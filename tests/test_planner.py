"""Tests for the storage layout planner."""

import logging
import threading

import pytest

from sumlayout.internals.errors import PlanningError
from sumlayout.semantics.model import CaseStorage, StorageStrategy, case, define_union
from sumlayout.semantics.planner import FieldKind, FieldSpec, PlanCache, plan_storage
from sumlayout.semantics.typesys import (
    PRIMITIVES, STRING, ArrayType, Constraint, GenericParameter, InterfaceType, UserValueType,
)

I32 = PRIMITIVES["i32"]
I64 = PRIMITIVES["i64"]
F64 = PRIMITIVES["f64"]

UNMANAGED_T = GenericParameter("T", frozenset({Constraint.UNMANAGED}))


def test_uniform_payload_gets_one_dedicated_field() -> None:
    plan = plan_storage(define_union("U", [case("A", I32), case("B", I32), case("C")]))
    assert plan.uniform
    assert plan.fields == (FieldSpec.dedicated(I32),)
    assert plan.per_case_field == (0, 0, None)


def test_two_distinct_payload_types_never_take_the_shortcut() -> None:
    plan = plan_storage(define_union("U", [case("A", I32), case("B", I64)]))
    assert not plan.uniform
    assert plan.fields == (FieldSpec.overlapping_block(8),)
    assert plan.per_case_field == (0, 0)


def test_value_reference_and_empty_cases() -> None:
    plan = plan_storage(define_union("U", [case("Case0", I32), case("Case1", STRING), case("Case2")]))
    assert plan.fields == (FieldSpec.overlapping_block(4), FieldSpec.shared_object())
    assert plan.per_case_field == (0, 1, None)
    assert plan.overlapping_block.capacity == 4


def test_block_is_sized_to_the_largest_requirement(point_type) -> None:
    plan = plan_storage(define_union("U", [
        case("Small", PRIMITIVES["u8"]),
        case("Big", F64),
        case("Pt", point_type),
    ]))
    assert plan.fields == (FieldSpec.overlapping_block(8),)


def test_shared_object_is_a_single_field() -> None:
    plan = plan_storage(define_union("U", [
        case("Name", STRING),
        case("Items", ArrayType(I32)),
        case("Shape", InterfaceType("IShape")),
    ]))
    assert plan.fields == (FieldSpec.shared_object(),)
    assert plan.per_case_field == (0, 0, 0)


def test_managed_value_types_get_dedicated_fields_shared_by_type() -> None:
    named = UserValueType("Named", (("id", I32), ("name", STRING)))
    other = UserValueType("Other", (("label", STRING),))
    plan = plan_storage(define_union("U", [
        case("A", named),
        case("B", named),
        case("C", other),
        case("D", I32),
    ]))
    assert plan.fields == (
        FieldSpec.dedicated(named),
        FieldSpec.dedicated(other),
        FieldSpec.overlapping_block(4),
    )
    assert plan.per_case_field == (0, 0, 1, 2)


def test_as_shared_object_disables_uniform_shortcut() -> None:
    plan = plan_storage(define_union("U", [
        case("A", I32),
        case("B", I32, storage=CaseStorage.AS_SHARED_OBJECT),
    ]))
    assert not plan.uniform
    assert plan.fields == (FieldSpec.overlapping_block(4), FieldSpec.shared_object())
    assert plan.per_case_field == (0, 1)


def test_one_object_strategy_boxes_everything_not_inline() -> None:
    plan = plan_storage(define_union("U", [
        case("A", I32),
        case("B", F64, storage=CaseStorage.INLINE),
        case("C", STRING),
    ], strategy=StorageStrategy.ONE_OBJECT))
    assert plan.fields == (FieldSpec.shared_object(), FieldSpec.overlapping_block(8))
    assert plan.per_case_field == (0, 1, 0)


def test_inline_reference_type_gets_a_dedicated_field() -> None:
    plan = plan_storage(define_union("U", [
        case("A", STRING, storage=CaseStorage.INLINE),
        case("B", I32),
    ]))
    assert plan.fields == (FieldSpec.dedicated(STRING), FieldSpec.overlapping_block(4))


def test_optional_under_one_object_uses_shared_object() -> None:
    t = GenericParameter("T")
    definition = define_union("Optional", [case("Some", t), case("None")],
                              type_params=[t], strategy=StorageStrategy.ONE_OBJECT)
    plan = plan_storage(definition)
    assert plan.fields == (FieldSpec.shared_object(),)
    assert plan.per_case_field == (0, None)


def test_unconstrained_generic_is_boxed_by_default() -> None:
    t = GenericParameter("T")
    plan = plan_storage(define_union("Optional", [case("Some", t), case("None")], type_params=[t]))
    assert not plan.uniform
    assert plan.fields == (FieldSpec.shared_object(),)


def test_struct_constrained_generic_gets_a_dedicated_field() -> None:
    t = GenericParameter("T", frozenset({Constraint.STRUCT}))
    plan = plan_storage(define_union("Optional", [case("Some", t), case("None")], type_params=[t]))
    assert plan.fields == (FieldSpec.dedicated(t),)


def test_unmanaged_generic_with_size_override(optional_unmanaged) -> None:
    plan = plan_storage(optional_unmanaged)
    assert plan.fields == (FieldSpec.overlapping_block(8),)
    assert plan.per_case_field == (0, None)


def test_unmanaged_generic_with_capacity() -> None:
    definition = define_union("Optional", [case("Some", UNMANAGED_T), case("None")],
                              type_params=[UNMANAGED_T], capacity=16)
    plan = plan_storage(definition)
    assert plan.fields == (FieldSpec.overlapping_block(16),)
    assert plan.shortfalls == ()


def test_unmanaged_generic_without_size_is_an_error() -> None:
    definition = define_union("Optional", [case("Some", UNMANAGED_T), case("None")],
                              type_params=[UNMANAGED_T])
    with pytest.raises(PlanningError) as exc_info:
        plan_storage(definition)
    err = exc_info.value
    assert err.code == "SL1101"
    assert err.union_name == "Optional"
    assert err.case_name == "Some"
    assert "size override" in err.reason


def test_foreign_struct_asserted_unmanaged_needs_a_size() -> None:
    handle = UserValueType("Handle", (("raw", I64),), in_unit=False)
    with pytest.raises(PlanningError, match="SL1101"):
        plan_storage(define_union("U", [case("H", handle, unmanaged=True), case("N", I32)]))

    plan = plan_storage(define_union("U", [case("H", handle, size=8), case("N", I32)]))
    assert plan.fields == (FieldSpec.overlapping_block(8),)


def test_size_override_raises_requirement() -> None:
    plan = plan_storage(define_union("U", [case("A", I32, size=12), case("B", F64)]))
    assert plan.fields == (FieldSpec.overlapping_block(12),)


def test_non_positive_size_override() -> None:
    with pytest.raises(PlanningError) as exc_info:
        plan_storage(define_union("U", [case("A", I32, size=0), case("B", F64)]))
    assert exc_info.value.code == "SL1102"


def test_non_positive_capacity_override() -> None:
    with pytest.raises(PlanningError) as exc_info:
        plan_storage(define_union("U", [case("A", I32), case("B", F64)], capacity=0))
    assert exc_info.value.code == "SL1103"
    assert exc_info.value.case_name is None


@pytest.mark.parametrize("payload", [STRING, ArrayType(I32), InterfaceType("IShape")])
def test_asserting_eligibility_on_reference_like_types(payload) -> None:
    with pytest.raises(PlanningError) as exc_info:
        plan_storage(define_union("U", [case("A", payload, unmanaged=True), case("B", I32)]))
    assert exc_info.value.code == "SL1104"


def test_asserting_eligibility_on_struct_holding_a_reference() -> None:
    inner = UserValueType("Inner", (("tag", I32), ("items", ArrayType(I32))))
    outer = UserValueType("Outer", (("id", I64), ("inner", inner)))
    with pytest.raises(PlanningError) as exc_info:
        plan_storage(define_union("R", [case("A", outer, unmanaged=True), case("B", I32)], capacity=16))
    assert exc_info.value.code == "SL1104"
    assert "Outer.inner.items" in exc_info.value.reason

    labelled = UserValueType("S", (("s", STRING),))
    with pytest.raises(PlanningError, match="field 'S.s' is string"):
        plan_storage(define_union("R", [case("A", labelled, unmanaged=True), case("B", I32)], capacity=16))


def test_capacity_override_wins_over_requirement() -> None:
    plan = plan_storage(define_union("U", [case("A", I32), case("B", PRIMITIVES["u8"])], capacity=32))
    assert plan.fields == (FieldSpec.overlapping_block(32),)


def test_capacity_argument_overrides_definition() -> None:
    definition = define_union("U", [case("A", I32), case("B", F64)], capacity=32)
    plan = plan_storage(definition, capacity_override=8)
    assert plan.overlapping_block.capacity == 8


def test_concrete_shortfall_is_recorded_and_logged(caplog) -> None:
    definition = define_union("U", [case("A", I32), case("B", I64)], capacity=4)
    with caplog.at_level(logging.WARNING, logger="sumlayout.semantics.planner"):
        plan = plan_storage(definition)
    assert plan.overlapping_block.capacity == 4
    assert len(plan.shortfalls) == 1
    shortfall = plan.shortfalls[0]
    assert (shortfall.case_name, shortfall.type_name, shortfall.required) == ("B", "i64", 8)
    assert "needs 8 bytes" in caplog.text


def test_payloadless_union_has_no_fields() -> None:
    plan = plan_storage(define_union("Color", [case("Red"), case("Green")]))
    assert plan.fields == ()
    assert plan.per_case_field == (None, None)
    assert plan.overlapping_block is None


def test_field_for_and_describe(shape) -> None:
    plan = plan_storage(shape)
    assert plan.field_for(0).kind is FieldKind.OVERLAPPING_BLOCK
    assert plan.field_for(1).kind is FieldKind.SHARED_OBJECT
    assert plan.field_for(3) is None
    lines = plan.describe(shape)
    assert lines[0] == "plan Shape"
    assert "  field 0: OverlappingBlock(8)" in lines
    assert "  field 1: SharedObject" in lines
    assert "  case 3 Empty: -" in lines


def test_plan_cache_plans_each_definition_once(shape) -> None:
    cache = PlanCache()
    first = cache.get(shape)
    assert cache.get(shape) is first
    assert shape in cache
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


def test_plan_cache_is_thread_safe(shape) -> None:
    cache = PlanCache()
    results = []

    def worker():
        results.append(cache.get(shape))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(results) == 8
    assert all(plan is results[0] for plan in results)
