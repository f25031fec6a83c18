"""Tests for union instances: construction, access, dispatch and capacity checks."""

import enum
import math
import threading
from collections import namedtuple

import pytest

from sumlayout.backend.sizing import TypeSizing
from sumlayout.internals.errors import (
    EncodingError, InvalidState, MatchFailure, RuntimeCapacityError,
)
from sumlayout.runtime.capacity import CapacityRegistry
from sumlayout.runtime.storage import OverlappingBlock, PayloadCodec
from sumlayout.runtime.union import UnionRuntime, build_union
from sumlayout.semantics.model import StorageStrategy, case, define_union
from sumlayout.semantics.typesys import (
    PRIMITIVES, STRING, Constraint, EnumType, GenericParameter, InterfaceType, UserValueType,
)

I32 = PRIMITIVES["i32"]
I64 = PRIMITIVES["i64"]
F64 = PRIMITIVES["f64"]


class Color(enum.IntEnum):
    RED = 1
    GREEN = 2


# ---- construction and access ----

def test_round_trip_through_every_field_kind(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    circle = Shape.Circle(1.5)
    label = Shape.Label("hello")
    corner = Shape.Corner({"x": 3, "y": -4})

    assert circle.as_case("Circle") == 1.5
    assert label.as_case("Label") == "hello"
    assert corner.as_case("Corner") == (3, -4)
    assert corner.value.x == 3
    assert Shape.Empty.value is None


def test_payloadless_cases_are_singletons(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    assert Shape.Empty is Shape.Empty
    assert Shape.create("Empty") is Shape.Empty
    assert Shape.singleton(3) is Shape.Empty


def test_create_by_index_and_name(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    assert Shape.create(0, 2.0) == Shape.create("Circle", 2.0)
    assert Shape.create(0, 2.0).case_name == "Circle"
    assert len(Shape) == 4
    assert [spec.name for spec in Shape] == ["Circle", "Label", "Corner", "Empty"]


def test_create_payload_mismatch(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    with pytest.raises(InvalidState, match="takes no payload"):
        Shape.create("Empty", 1)
    with pytest.raises(InvalidState, match="requires a payload"):
        Shape.create("Circle")
    with pytest.raises(InvalidState, match="SL3007"):
        Shape.create("Triangle", 1)
    with pytest.raises(AttributeError):
        Shape.Triangle


def test_as_case_on_wrong_case_raises_invalid_state(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    with pytest.raises(InvalidState) as exc_info:
        Shape.Circle(1.0).as_case("Label")
    assert exc_info.value.code == "SL3001"
    assert "active case is 'Circle'" in str(exc_info.value)


def test_as_case_fallbacks(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    label = Shape.Label("x")
    assert label.as_case_or_default("Circle") == 0.0
    assert label.as_case_or_default("Corner") == (0, 0)
    assert Shape.Circle(1.0).as_case_or_default("Label") is None
    assert label.as_case_or("Circle", 9.5) == 9.5
    assert label.as_case_or("Label", "other") == "x"
    assert label.as_case_or_else("Circle", lambda: 7.0) == 7.0
    assert label.is_case("Label")
    assert not label.is_case(0)


# ---- equality ----

def test_equality_and_hash(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    a = Shape.Circle(2.5)
    b = Shape.Circle(2.5)
    assert a == a
    assert a == b and b == a
    assert hash(a) == hash(b)
    assert a != Shape.Circle(3.0)
    assert a != Shape.Label("2.5")
    assert Shape.Empty == Shape.Empty
    assert len({a, b, Shape.Empty}) == 2


def test_nan_payload_equals_itself(runtime) -> None:
    inline = build_union(define_union("N", [case("A", F64), case("B", I32)]), runtime)
    x = inline.A(math.nan)
    assert x == x
    assert inline.A(float("nan")) == inline.A(float("nan"))
    assert hash(inline.A(float("nan"))) == hash(inline.A(float("nan")))
    assert inline.A(math.nan) != inline.A(1.0)

    boxed = build_union(define_union("M", [case("A", F64), case("B", STRING)],
                                     strategy=StorageStrategy.ONE_OBJECT), runtime)
    assert boxed.A(float("nan")) == boxed.A(float("nan"))
    assert len({boxed.A(float("nan")), boxed.A(float("nan"))}) == 1


def test_values_of_different_unions_are_unequal(runtime) -> None:
    left = build_union(define_union("L", [case("A", I32), case("B", F64)]), runtime)
    right = build_union(define_union("R", [case("A", I32), case("B", F64)]), runtime)
    assert left.A(1) != right.A(1)


def test_repr_and_str(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    assert repr(Shape.Circle(1.5)) == "Shape.Circle(1.5)"
    assert repr(Shape.Empty) == "Shape.Empty"
    assert str(Shape.Circle(2.5)) == "{ Index = 0, Value = 2.5 }"
    assert str(Shape.Empty) == "{ Index = 3, Value = (empty) }"


# ---- dispatch ----

def test_match_by_name_and_default(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    assert Shape.Circle(1.5).match(Circle=lambda r: r * 2, _=lambda: 0.0) == 3.0
    assert Shape.Label("a").match(Circle=lambda r: r * 2, _=lambda: 0.0) == 0.0
    assert Shape.Empty.match(Empty=lambda: "empty", _=lambda: "other") == "empty"


def test_match_by_position(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    result = Shape.Label("abc").match(
        lambda r: "circle",
        lambda text: text.upper(),
        lambda pt: "corner",
        lambda: "empty",
    )
    assert result == "ABC"


def test_match_without_handler_raises_match_failure(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    with pytest.raises(MatchFailure) as exc_info:
        Shape.Label("a").match(Circle=lambda r: r)
    assert exc_info.value.case_name == "Label"
    assert exc_info.value.code == "SL3002"


def test_match_rejects_bad_handlers(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    value = Shape.Circle(1.0)
    with pytest.raises(InvalidState, match="SL3011"):
        value.match(lambda r: r, Circle=lambda r: r)
    with pytest.raises(InvalidState, match="SL3007"):
        value.match(Triangle=lambda r: r)
    with pytest.raises(InvalidState, match="SL3007"):
        value.match(*([lambda: None] * 5))


def test_switch_runs_handler_for_side_effects(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    seen = []
    Shape.Circle(4.0).switch(Circle=seen.append, _=lambda: seen.append("default"))
    Shape.Empty.switch(Circle=seen.append, _=lambda: seen.append("default"))
    assert seen == [4.0, "default"]
    with pytest.raises(MatchFailure):
        Shape.Empty.switch(Circle=seen.append)


def test_if_case_variants(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    seen = []
    circle = Shape.Circle(1.0)
    circle.if_case("Circle", seen.append)
    circle.if_case("Label", seen.append)
    assert seen == [1.0]
    assert circle.if_case_else("Circle", lambda r: r + 1, lambda: -1) == 2.0
    assert circle.if_case_else("Label", len, lambda: -1) == -1
    assert circle.if_case_else_value("Label", len, 0) == 0
    assert Shape.Empty.if_case_else_value("Empty", lambda: "yes", "no") == "yes"


# ---- conversion ----

def test_from_payload_picks_the_single_carrier(shape, runtime) -> None:
    Shape = build_union(shape, runtime)
    assert Shape.from_payload(STRING, "hi") == Shape.Label("hi")


def test_from_payload_errors(runtime) -> None:
    union = build_union(define_union("U", [
        case("A", I32), case("B", I32, size=8), case("C", InterfaceType("IShape")),
    ]), runtime)
    with pytest.raises(InvalidState, match="all carry this type"):
        union.from_payload(I32, 1)
    with pytest.raises(InvalidState, match="no case carries"):
        union.from_payload(F64, 1.0)
    with pytest.raises(InvalidState, match="interfaces do not convert"):
        union.from_payload(InterfaceType("IShape"), object())


# ---- capacity ----

def test_capacity_large_enough_round_trips(runtime) -> None:
    union = build_union(define_union("U", [case("A", I64), case("B", I32)], capacity=8), runtime)
    assert union.A(2 ** 40).as_case("A") == 2 ** 40
    assert union.B(-7).as_case("B") == -7


def test_capacity_shortfall_fails_on_first_use(runtime) -> None:
    union = build_union(define_union("U", [case("A", I64), case("B", I32)], capacity=4), runtime)
    assert union.B(1).as_case("B") == 1
    with pytest.raises(RuntimeCapacityError) as exc_info:
        union.A(5)
    err = exc_info.value
    assert (err.type_name, err.required_bytes, err.available_bytes) == ("i64", 8, 4)
    assert "requires 8 bytes" in str(err)

    # The outcome is memoized and stays the same
    with pytest.raises(RuntimeCapacityError):
        union.A(6)
    assert runtime.capacity.computations == 2


def test_generic_instantiation_checks_capacity_per_type(runtime) -> None:
    t = GenericParameter("T", frozenset({Constraint.UNMANAGED}))
    definition = define_union("Optional", [case("Some", t), case("None")], type_params=[t], capacity=4)
    Optional = build_union(definition, runtime)

    small = Optional.instantiate(T=I32)
    assert small.name == "Optional<i32>"
    assert small.Some(3).as_case("Some") == 3
    assert small.create("None").case_name == "None"

    big = Optional.instantiate(T=F64)
    with pytest.raises(RuntimeCapacityError):
        big.Some(1.0)
    assert runtime.capacity.is_checked(definition, I32)
    assert runtime.capacity.is_checked(definition, F64)


def test_optional_instantiate_with_size_override(optional_unmanaged, runtime) -> None:
    Optional = build_union(optional_unmanaged, runtime)
    with pytest.raises(InvalidState, match="SL3005"):
        Optional.Some(1)
    concrete = Optional.instantiate(T=I32)
    some = concrete.Some(42)
    assert some.as_case("Some") == 42
    with pytest.raises(InvalidState, match="SL3001"):
        some.as_case("None")
    assert concrete == Optional.instantiate(T=I32)
    assert concrete != Optional


def test_instantiate_rejects_bad_bindings(optional_unmanaged, runtime) -> None:
    Optional = build_union(optional_unmanaged, runtime)
    with pytest.raises(InvalidState, match="no type parameter 'U'"):
        Optional.instantiate(U=I32)
    with pytest.raises(InvalidState, match="unmanaged constraint"):
        Optional.instantiate(T=STRING)
    with pytest.raises(InvalidState, match="not a concrete type"):
        Optional.instantiate(T=GenericParameter("X"))


def test_one_object_optional_stores_any_payload(runtime) -> None:
    t = GenericParameter("T")
    definition = define_union("Optional", [case("Some", t), case("None")],
                              type_params=[t], strategy=StorageStrategy.ONE_OBJECT)
    Optional = build_union(definition, runtime).instantiate(T=STRING)
    assert Optional.Some("text").as_case("Some") == "text"
    assert Optional.create("None").value is None


def test_concurrent_first_use_computes_once(runtime) -> None:
    union = build_union(define_union("U", [case("A", I64), case("B", I32)], capacity=4), runtime)
    outcomes = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        try:
            union.A(1)
            outcomes.append("ok")
        except RuntimeCapacityError:
            outcomes.append("fail")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert outcomes == ["fail"] * 8
    assert runtime.capacity.computations == 1


def test_capacity_registry_directly() -> None:
    registry = CapacityRegistry()
    sizing = TypeSizing()
    definition = define_union("U", [case("A", I32), case("B", F64)])
    registry.check(definition, I32, 4, sizing.size_of)
    registry.check(definition, I32, 4, sizing.size_of)
    assert registry.computations == 1
    assert len(registry) == 1
    registry.clear()
    assert not registry.is_checked(definition, I32)


@pytest.mark.parametrize("first_capacity, second_capacity", [(4, 16), (16, 4)])
def test_same_named_unions_are_checked_separately(runtime, first_capacity, second_capacity) -> None:
    first = build_union(define_union("U", [case("A", I64), case("B", I32)], capacity=first_capacity), runtime)
    second = build_union(define_union("U", [case("A", I64), case("B", I32)], capacity=second_capacity), runtime)
    for union in (first, second):
        capacity = union.definition.capacity_override
        if capacity < 8:
            with pytest.raises(RuntimeCapacityError) as exc_info:
                union.A(7)
            assert exc_info.value.available_bytes == capacity
        else:
            assert union.A(7).as_case("A") == 7
    assert runtime.capacity.computations == 2


def test_default_runtime_keeps_same_named_unions_apart() -> None:
    small = build_union(define_union("Cell", [case("A", I64), case("B", I32)], capacity=4))
    large = build_union(define_union("Cell", [case("A", I64), case("B", I32)], capacity=24))
    assert large.A(1).value == 1
    with pytest.raises(RuntimeCapacityError):
        small.A(1)
    assert large.A(2).value == 2


# ---- byte storage ----

def test_overlapping_block_rejects_stale_reads() -> None:
    block = OverlappingBlock(8)
    block.write(I32, b"\x01\x00\x00\x00")
    assert block.read(I32)[:4] == b"\x01\x00\x00\x00"
    with pytest.raises(InvalidState, match="SL3006"):
        block.read(F64)
    block.write(F64, bytes(8))
    assert block.held == F64


def test_overlapping_block_write_beyond_capacity_is_internal_error() -> None:
    with pytest.raises(RuntimeError, match="SL0003"):
        OverlappingBlock(2).write(I32, bytes(4))


def test_codec_struct_padding_and_factories() -> None:
    codec = PayloadCodec()
    mixed = UserValueType("Mixed", (("a", PRIMITIVES["i8"]), ("b", I32)))
    assert codec.layout(mixed).size == TypeSizing().size_of(mixed) == 8
    Record = namedtuple("Record", "a b")
    built = UserValueType("Mixed", mixed.fields, factory=Record)
    assert codec.decode(built, codec.encode(built, Record(1, 2))) == Record(1, 2)

    color = EnumType("Color", PRIMITIVES["u8"], factory=Color)
    assert codec.decode(color, codec.encode(color, Color.GREEN)) is Color.GREEN
    assert codec.decode(PRIMITIVES["char"], codec.encode(PRIMITIVES["char"], "z")) == "z"


def test_f32_payloads_are_narrowed(runtime) -> None:
    f32 = PRIMITIVES["f32"]
    union = build_union(define_union("Opt", [case("Some", f32), case("Wide", F64)]), runtime)
    assert union.Some(1.1).value == 1.100000023841858
    assert union.Some(0.5).value == 0.5
    assert union.Wide(1.1).value == 1.1


def test_codec_encoding_errors(runtime) -> None:
    codec = PayloadCodec()
    with pytest.raises(EncodingError, match="SL3010"):
        codec.encode(PRIMITIVES["u8"], 300)
    with pytest.raises(EncodingError, match="missing field 'y'"):
        codec.encode(UserValueType("P", (("x", I32), ("y", I32))), {"x": 1})
    with pytest.raises(EncodingError, match="single character"):
        codec.encode(PRIMITIVES["char"], "ab")


def test_build_union_reuses_types_per_runtime(shape, runtime) -> None:
    assert build_union(shape, runtime) is build_union(shape, runtime)
    assert build_union(shape, UnionRuntime()) == build_union(shape, runtime)
