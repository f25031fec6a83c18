"""Binary plan artifact (.slplan).

Storage plans are written once and read back by emitters without
re-planning. The file combines a fixed header with a MessagePack body.

File format (version 1):

    ┌─────────────────────────────────────────────────────────────┐
    │ MAGIC (8 bytes): SLPLAN\\x00\\x01                             │
    ├─────────────────────────────────────────────────────────────┤
    │ VERSION (4 bytes): uint32 LE                                │
    ├─────────────────────────────────────────────────────────────┤
    │ SPARE (4 bytes): uint32 LE (reserved)                       │
    ├─────────────────────────────────────────────────────────────┤
    │ BODY_LENGTH (8 bytes): uint64 LE                            │
    ├─────────────────────────────────────────────────────────────┤
    │ BODY (N bytes): MessagePack {"generator": str, "plans": []} │
    └─────────────────────────────────────────────────────────────┘

Each plan entry is ``{"union", "uniform", "fields", "cases", "shortfalls"}``;
``cases`` maps case index to field index (nil for payload-less cases).
"""
from __future__ import annotations

import struct
from pathlib import Path
from typing import Any, BinaryIO, Iterable

import msgpack

from sumlayout import __version__
from sumlayout.internals.errors import PlanFormatError
from sumlayout.semantics.planner import FieldKind, FieldSpec, Shortfall, StoragePlan
from sumlayout.semantics.typesys import (
    Type, Primitive, PrimitiveKind, PointerType, EnumType, UserValueType,
    UserReferenceType, InterfaceType, ArrayType, GenericParameter, Constraint,
)


def _read_bytes(f: BinaryIO, size: int, path: str, section: str) -> bytes:
    data = f.read(size)
    if len(data) != size:
        raise PlanFormatError("SL4021", path=path, section=section)
    return data


def encode_type(ty: Type) -> dict:
    match ty:
        case Primitive(kind=kind):
            return {"k": "prim", "name": kind.value}
        case PointerType(pointee=pointee):
            return {"k": "ptr", "to": encode_type(pointee)}
        case EnumType():
            return {"k": "enum", "name": ty.name, "underlying": ty.underlying.kind.value}
        case UserValueType():
            return {"k": "struct", "name": ty.name, "in_unit": ty.in_unit,
                    "fields": [[name, encode_type(t)] for name, t in ty.fields]}
        case UserReferenceType(name=name):
            return {"k": "class", "name": name}
        case InterfaceType(name=name):
            return {"k": "interface", "name": name}
        case ArrayType(element=element):
            return {"k": "array", "of": encode_type(element)}
        case GenericParameter():
            return {"k": "generic", "name": ty.name,
                    "constraints": sorted(c.value for c in ty.constraints)}
    raise TypeError(f"cannot encode type {ty!r}")


def decode_type(data: dict) -> Type:
    kind = data["k"]
    if kind == "prim":
        return Primitive(PrimitiveKind(data["name"]))
    if kind == "ptr":
        return PointerType(decode_type(data["to"]))
    if kind == "enum":
        return EnumType(data["name"], Primitive(PrimitiveKind(data["underlying"])))
    if kind == "struct":
        fields = tuple((name, decode_type(t)) for name, t in data["fields"])
        return UserValueType(data["name"], fields, in_unit=data["in_unit"])
    if kind == "class":
        return UserReferenceType(data["name"])
    if kind == "interface":
        return InterfaceType(data["name"])
    if kind == "array":
        return ArrayType(decode_type(data["of"]))
    if kind == "generic":
        return GenericParameter(data["name"], frozenset(Constraint(c) for c in data["constraints"]))
    raise ValueError(f"unknown type kind '{kind}'")


def encode_plan(plan: StoragePlan) -> dict:
    fields = []
    for spec in plan.fields:
        entry: dict[str, Any] = {"kind": spec.kind.value}
        if spec.kind is FieldKind.DEDICATED:
            entry["type"] = encode_type(spec.type)
        elif spec.kind is FieldKind.OVERLAPPING_BLOCK:
            entry["capacity"] = spec.capacity
        fields.append(entry)
    return {
        "union": plan.union_name,
        "uniform": plan.uniform,
        "fields": fields,
        "cases": list(plan.per_case_field),
        "shortfalls": [[s.case_name, s.type_name, s.required] for s in plan.shortfalls],
    }


def decode_plan(data: dict) -> StoragePlan:
    fields = []
    for entry in data["fields"]:
        kind = FieldKind(entry["kind"])
        if kind is FieldKind.DEDICATED:
            fields.append(FieldSpec.dedicated(decode_type(entry["type"])))
        elif kind is FieldKind.OVERLAPPING_BLOCK:
            fields.append(FieldSpec.overlapping_block(entry["capacity"]))
        else:
            fields.append(FieldSpec.shared_object())
    for field_id in data["cases"]:
        if field_id is not None and not 0 <= field_id < len(fields):
            raise ValueError(f"case refers to missing field {field_id}")
    return StoragePlan(
        union_name=data["union"],
        fields=tuple(fields),
        per_case_field=tuple(data["cases"]),
        uniform=data["uniform"],
        shortfalls=tuple(Shortfall(c, t, r) for c, t, r in data.get("shortfalls", [])),
    )


class PlanFormat:
    """Binary format reader/writer for .slplan files."""

    MAGIC = b"SLPLAN\x00\x01"
    VERSION = 1
    FIXED_HEADER_SIZE = 24  # 8 (magic) + 4 (version) + 4 (spare) + 8 (body_len)

    @staticmethod
    def write(output_path: Path, plans: Iterable[StoragePlan]) -> None:
        body = msgpack.packb({
            "generator": f"sumlayout {__version__}",
            "plans": [encode_plan(plan) for plan in plans],
        }, use_bin_type=True)

        with open(output_path, "wb") as f:
            f.write(PlanFormat.MAGIC)
            f.write(struct.pack("<I", PlanFormat.VERSION))
            f.write(struct.pack("<I", 0))  # SPARE
            f.write(struct.pack("<Q", len(body)))
            f.write(body)

    @staticmethod
    def read(plan_path: Path) -> list[StoragePlan]:
        """Read every plan from a .slplan file.

        Raises:
            PlanFormatError: SL4020-SL4023 for foreign, truncated, incompatible
                or malformed files.
        """
        path = str(plan_path)

        with open(plan_path, "rb") as f:
            magic = _read_bytes(f, len(PlanFormat.MAGIC), path, "header")
            if magic != PlanFormat.MAGIC:
                raise PlanFormatError("SL4020", path=path)

            version, _spare = struct.unpack("<II", _read_bytes(f, 8, path, "header"))
            if version != PlanFormat.VERSION:
                raise PlanFormatError("SL4022", path=path, version=version, supported=PlanFormat.VERSION)

            body_len = struct.unpack("<Q", _read_bytes(f, 8, path, "header"))[0]
            body = _read_bytes(f, body_len, path, "plans")

        try:
            document = msgpack.unpackb(body, raw=False)
            return [decode_plan(entry) for entry in document["plans"]]
        except Exception as e:
            raise PlanFormatError("SL4023", path=path, reason=str(e)) from None
