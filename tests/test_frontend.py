"""Tests for the declaration parser and the union/call-site builder."""

import pytest
from lark import Tree

from sumlayout.internals.parser import get_parser, parse_source
from sumlayout.internals.report import Reporter
from sumlayout.semantics.declarations import build_declarations
from sumlayout.semantics.model import CaseStorage, StorageStrategy
from sumlayout.semantics.typesys import (
    PRIMITIVES, STRING, ArrayType, Constraint, EnumType, GenericParameter, InterfaceType,
    PointerType, UserReferenceType, UserValueType,
)

FULL_SOURCE = """\
# shapes
strategy InlineValueTypes
struct Point { x: i32, y: i32 }
extern struct Handle { raw: u64 }
class Widget
interface IShape
enum Color : u8

union Shape [capacity=16] {
    Circle(f64)
    Rect(Point) [storage=inline]
    Raw(Handle) [unmanaged=true, size=8]
    Items(i32[])
    Owner(Widget*)
    Empty
}

union Optional<T: unmanaged> {
    Some(T) [size=8]
    None
}

match Shape(Circle: on_circle, _: fallback)
switch Optional(a, b)
"""


def build(src):
    reporter = Reporter(source=src)
    tree = parse_source(src, reporter)
    unit = build_declarations(tree, reporter) if tree is not None else None
    return unit, reporter


def test_parser_is_cached() -> None:
    assert get_parser() is get_parser()


def test_full_declaration_file() -> None:
    unit, reporter = build(FULL_SOURCE)
    assert reporter.items == []
    assert unit.default_strategy is StorageStrategy.INLINE_VALUE_TYPES

    assert unit.types["Point"] == UserValueType("Point", (("x", PRIMITIVES["i32"]), ("y", PRIMITIVES["i32"])))
    assert unit.types["Handle"].in_unit is False
    assert unit.types["Widget"] == UserReferenceType("Widget")
    assert unit.types["IShape"] == InterfaceType("IShape")
    assert unit.types["Color"] == EnumType("Color", PRIMITIVES["u8"])

    shape = unit.unions["Shape"]
    assert shape.capacity_override == 16
    assert shape.case_names == ("Circle", "Rect", "Raw", "Items", "Owner", "Empty")
    assert shape.get_case("Rect").storage is CaseStorage.INLINE
    raw = shape.get_case("Raw")
    assert raw.unmanaged_override is True
    assert raw.size_override == 8
    assert shape.get_case("Items").payload == ArrayType(PRIMITIVES["i32"])
    assert shape.get_case("Owner").payload == PointerType(UserReferenceType("Widget"))
    assert shape.get_case("Empty").payload is None

    optional = unit.unions["Optional"]
    t = GenericParameter("T", frozenset({Constraint.UNMANAGED}))
    assert optional.type_params == (t,)
    assert optional.get_case("Some").payload == t


def test_call_sites_keep_binding_style_and_span() -> None:
    unit, _ = build(FULL_SOURCE)
    match_site, switch_site = unit.call_sites
    assert match_site.kind == "match"
    assert match_site.union_name == "Shape"
    assert [a.name for a in match_site.arguments] == ["Circle", "_"]
    assert switch_site.kind == "switch"
    assert [a.is_named for a in switch_site.arguments] == [False, False]
    assert match_site.span.line == 23


def test_types_may_be_used_before_declaration() -> None:
    unit, reporter = build("union U { A(Later) B(string) }\nstruct Later { v: f32 }\n")
    assert reporter.items == []
    assert unit.unions["U"].get_case("A").payload == unit.types["Later"]
    assert unit.unions["U"].get_case("B").payload == STRING


def test_union_can_carry_another_union() -> None:
    unit, reporter = build("union Inner { A(i32) B }\nunion Outer { X(Inner) Y(i64) }\n")
    assert reporter.items == []
    assert unit.unions["Outer"].get_case("X").payload == UserReferenceType("Inner")


def test_syntax_error_is_reported() -> None:
    unit, reporter = build("union U { A(i32 }")
    assert unit is None
    assert reporter.codes() == ["SL4001"]
    assert reporter.items[0].span is not None


def test_builder_rejects_trees_not_from_the_parser() -> None:
    with pytest.raises(RuntimeError, match="SL0004: expected a parse tree rooted at 'start', got union_decl"):
        build_declarations(Tree("union_decl", []), Reporter())


@pytest.mark.parametrize("src, code", [
    ("union U { A(Missing) }", "SL4002"),
    ("struct P { x: i32 }\nclass P", "SL4003"),
    ("union i32 { A }", "SL4003"),
    ("struct P { x: i32, x: i64 }", "SL4003"),
    ("match Nowhere(a)", "SL4004"),
    ("union U [strategy=Packed] { A(i32) }", "SL4005"),
    ("union U [size=4] { A(i32) }", "SL4005"),
    ("union U { A(i32) [unmanaged=maybe] }", "SL4005"),
    ("union U { A(i32) [size=big] }", "SL4005"),
    ("union U<T: fancy> { A(T) }", "SL4005"),
    ("enum E : f32", "SL4005"),
    ("enum E : Nope", "SL4002"),
    ("struct A { b: B }\nstruct B { a: A }", "SL4006"),
    ("union U { A A }", "SL1001"),
    ("union U { }", "SL1003"),
    ("union U<T, T> { A(T) }", "SL1004"),
    ("union U { A [storage=inline] }", "SL1006"),
])
def test_declaration_errors(src, code) -> None:
    _, reporter = build(src)
    assert reporter.codes() == [code]


def test_call_site_on_failed_union_is_not_reported_twice() -> None:
    _, reporter = build("union U { A A }\nmatch U(A: f)")
    assert reporter.codes() == ["SL1001"]


def test_struct_cycle_reported_once() -> None:
    _, reporter = build("struct Node { next: Node }\nunion U { A(Node) B(i32) }")
    assert reporter.codes() == ["SL4006"]


def test_strategy_default_from_caller() -> None:
    reporter = Reporter()
    tree = parse_source("union U { A(i32) B(string) }", reporter)
    unit = build_declarations(tree, reporter, StorageStrategy.ONE_OBJECT)
    assert unit.unions["U"].strategy is StorageStrategy.ONE_OBJECT


def test_union_option_overrides_file_strategy() -> None:
    unit, _ = build("strategy OneObject\nunion U [strategy=InlineValueTypes] { A(i32) }\nunion V { B(i32) }")
    assert unit.unions["U"].strategy is StorageStrategy.INLINE_VALUE_TYPES
    assert unit.unions["V"].strategy is StorageStrategy.ONE_OBJECT
