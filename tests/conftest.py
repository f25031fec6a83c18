"""Pytest configuration and shared fixtures."""

import pytest

from sumlayout.backend.sizing import TypeSizing
from sumlayout.internals.log import LoggerSetup
from sumlayout.runtime.union import UnionRuntime
from sumlayout.semantics.model import case, define_union
from sumlayout.semantics.typesys import PRIMITIVES, STRING, Constraint, GenericParameter, UserValueType

I32 = PRIMITIVES["i32"]
F64 = PRIMITIVES["f64"]


@pytest.fixture
def sizing() -> TypeSizing:
    return TypeSizing()


@pytest.fixture
def runtime() -> UnionRuntime:
    """A fresh runtime so plan and capacity caches do not leak between tests."""
    return UnionRuntime()


@pytest.fixture
def point_type() -> UserValueType:
    return UserValueType("Point", (("x", I32), ("y", I32)))


@pytest.fixture
def shape(point_type):
    """Circle(f64), Label(string), Corner(Point), Empty."""
    return define_union("Shape", [
        case("Circle", F64),
        case("Label", STRING),
        case("Corner", point_type),
        case("Empty"),
    ])


@pytest.fixture
def optional_unmanaged():
    """Optional<T: unmanaged> with an explicit 8-byte size for T."""
    t = GenericParameter("T", frozenset({Constraint.UNMANAGED}))
    return define_union("Optional", [case("Some", t, size=8), case("None")], type_params=[t])


@pytest.fixture
def source_file(tmp_path):
    """Write a declaration file into tmp_path and return its path."""
    def _write(text: str, name: str = "input.sum"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    LoggerSetup.reset()
