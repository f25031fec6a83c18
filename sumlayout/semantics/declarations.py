"""Build union definitions and call sites from a declaration parse tree.

Declarations are processed in passes so that types may be used before they
are declared:

1. collect every declared name (duplicates are reported once);
2. resolve enums and value types, rejecting value-type cycles;
3. build union definitions;
4. build dispatch call sites.

Every problem is reported through the Reporter; the unit contains only the
declarations that were built successfully.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from lark import Token, Tree

from sumlayout.internals import errors as er
from sumlayout.internals.report import Reporter, Span, span_of
from sumlayout.semantics.exhaustiveness import CallSite, CallSiteArgument
from sumlayout.semantics.model import (
    CaseSpec, CaseStorage, StorageStrategy, UnionDefinition, case, define_union,
)
from sumlayout.semantics.typesys import (
    BUILTIN_TYPES, PRIMITIVES, Type, Constraint, EnumType, GenericParameter, InterfaceType,
    PointerType, ArrayType, UserReferenceType, UserValueType,
)

logger = logging.getLogger(__name__)


@dataclass
class DeclarationUnit:
    """Everything declared in one file."""
    types: Dict[str, Type] = field(default_factory=dict)
    unions: Dict[str, UnionDefinition] = field(default_factory=dict)
    union_spans: Dict[str, Optional[Span]] = field(default_factory=dict)
    call_sites: List[CallSite] = field(default_factory=list)
    default_strategy: Optional[StorageStrategy] = None


def _tokens(node: Tree, type_name: str) -> List[Token]:
    return [ch for ch in node.children if isinstance(ch, Token) and ch.type == type_name]


def _first_tree(node: Tree, data: str) -> Optional[Tree]:
    for ch in node.children:
        if isinstance(ch, Tree) and ch.data == data:
            return ch
    return None


def _trees(node: Tree, data: str) -> List[Tree]:
    return [ch for ch in node.children if isinstance(ch, Tree) and ch.data == data]


class DeclarationBuilder:
    """Turns a parse tree into a DeclarationUnit, reporting SL4xxx/SL1xxx errors."""

    def __init__(self, reporter: Reporter, default_strategy: StorageStrategy = StorageStrategy.INLINE_VALUE_TYPES):
        self.reporter = reporter
        self.default_strategy = default_strategy
        self.unit = DeclarationUnit()
        self._struct_nodes: Dict[str, Tree] = {}
        self._resolving: List[str] = []
        self._failed: set[str] = set()
        self._union_names: set[str] = set()

    def build(self, tree: Tree) -> DeclarationUnit:
        if not isinstance(tree, Tree) or tree.data != "start":
            er.raise_internal_error("SL0004", node=getattr(tree, "data", type(tree).__name__))
        declared: Dict[str, Tree] = {}

        for node in tree.children:
            if node.data == "strategy_decl":
                self._strategy_decl(node)
            elif node.data in ("struct_decl", "class_decl", "interface_decl", "enum_decl", "union_decl"):
                name_tok = _tokens(node, "NAME")[0]
                if name_tok in BUILTIN_TYPES or name_tok in declared:
                    er.emit(self.reporter, er.ERR.SL4003, span_of(name_tok), name=str(name_tok))
                    continue
                declared[str(name_tok)] = node

        # Reference-like declarations first so value types may mention them
        for name, node in declared.items():
            if node.data == "union_decl":
                self._union_names.add(name)
                self.unit.types[name] = UserReferenceType(name)
            elif node.data == "class_decl":
                self.unit.types[name] = UserReferenceType(name)
            elif node.data == "interface_decl":
                self.unit.types[name] = InterfaceType(name)
            elif node.data == "enum_decl":
                self._enum_decl(name, node)
            elif node.data == "struct_decl":
                self._struct_nodes[name] = node

        for name in list(self._struct_nodes):
            self._resolve_struct(name)

        for name, node in declared.items():
            if node.data == "union_decl":
                self._union_decl(name, node)

        for node in tree.children:
            if node.data == "call_site":
                self._call_site(node)

        logger.debug("built %d type(s), %d union(s), %d call site(s)",
                     len(self.unit.types), len(self.unit.unions), len(self.unit.call_sites))
        return self.unit

    # ---- types ----

    def _strategy_decl(self, node: Tree) -> None:
        value = _tokens(node, "NAME")[0]
        try:
            strategy = StorageStrategy.parse(str(value))
        except ValueError as e:
            er.emit(self.reporter, er.ERR.SL4005, span_of(value), option="strategy", reason=str(e))
            return
        self.default_strategy = strategy
        self.unit.default_strategy = strategy

    def _enum_decl(self, name: str, node: Tree) -> None:
        names = _tokens(node, "NAME")
        underlying = PRIMITIVES["i32"]
        if len(names) > 1:
            tok = names[1]
            prim = PRIMITIVES.get(str(tok))
            if prim is None:
                er.emit(self.reporter, er.ERR.SL4002, span_of(tok), name=str(tok))
                return
            if not prim.kind.is_integral:
                er.emit(self.reporter, er.ERR.SL4005, span_of(tok), option="underlying type",
                        reason=f"'{tok}' is not an integral type")
                return
            underlying = prim
        self.unit.types[name] = EnumType(name, underlying)

    def _resolve_struct(self, name: str) -> Optional[Type]:
        if name in self.unit.types:
            return self.unit.types[name]
        if name in self._failed:
            return None
        node = self._struct_nodes[name]
        if name in self._resolving:
            path = " -> ".join(self._resolving[self._resolving.index(name):] + [name])
            er.emit(self.reporter, er.ERR.SL4006, span_of(_tokens(node, "NAME")[0]), name=name, path=path)
            self._failed.add(name)
            return None

        self._resolving.append(name)
        try:
            fields = self._struct_fields(name, node)
        finally:
            self._resolving.pop()
        if fields is None:
            self._failed.add(name)
            return None

        in_unit = not _tokens(node, "EXTERN")
        struct_type = UserValueType(name, tuple(fields), in_unit=in_unit)
        self.unit.types[name] = struct_type
        return struct_type

    def _struct_fields(self, name: str, node: Tree) -> Optional[List[tuple[str, Type]]]:
        fields = []
        seen = set()
        field_list = _first_tree(node, "field_list")
        for field_node in (field_list.children if field_list is not None else []):
            field_name = _tokens(field_node, "NAME")[0]
            if field_name in seen:
                er.emit(self.reporter, er.ERR.SL4003, span_of(field_name), name=f"{name}.{field_name}")
                return None
            seen.add(str(field_name))
            field_type = self._type_ref(_first_tree(field_node, "type_ref"), {})
            if field_type is None:
                return None
            fields.append((str(field_name), field_type))
        return fields

    def _type_ref(self, node: Tree, params: Dict[str, GenericParameter]) -> Optional[Type]:
        name_tok = _tokens(node, "NAME")[0]
        name = str(name_tok)
        ty: Optional[Type]
        if name in params:
            ty = params[name]
        elif name in BUILTIN_TYPES:
            ty = BUILTIN_TYPES[name]
        elif name in self._struct_nodes:
            ty = self._resolve_struct(name)
            if ty is None:
                return None
        else:
            ty = self.unit.types.get(name)
        if ty is None:
            er.emit(self.reporter, er.ERR.SL4002, span_of(name_tok), name=name)
            return None

        for suffix in _trees(node, "type_suffix"):
            tok = suffix.children[0]
            ty = PointerType(ty) if tok.type == "STAR" else ArrayType(ty)
        return ty

    # ---- unions ----

    def _union_decl(self, name: str, node: Tree) -> None:
        params: Dict[str, GenericParameter] = {}
        param_list: List[GenericParameter] = []
        type_params = _first_tree(node, "type_params")
        for param_node in (type_params.children if type_params is not None else []):
            names = _tokens(param_node, "NAME")
            constraints = set()
            for tok in names[1:]:
                try:
                    constraints.add(Constraint(str(tok)))
                except ValueError:
                    er.emit(self.reporter, er.ERR.SL4005, span_of(tok), option=f"constraint '{tok}'",
                            reason="expected unmanaged, struct or class")
                    return
            param = GenericParameter(str(names[0]), frozenset(constraints))
            params.setdefault(param.name, param)
            param_list.append(param)

        strategy = self.default_strategy
        capacity = None
        for key, value_tok in self._options(_first_tree(node, "options")):
            if key == "strategy":
                try:
                    strategy = StorageStrategy.parse(str(value_tok))
                except ValueError as e:
                    er.emit(self.reporter, er.ERR.SL4005, span_of(value_tok), option="strategy", reason=str(e))
                    return
            elif key == "capacity":
                capacity = self._int_option(key, value_tok)
                if capacity is None:
                    return
            else:
                er.emit(self.reporter, er.ERR.SL4005, span_of(value_tok), option=key,
                        reason="unions accept strategy and capacity")
                return

        cases: List[CaseSpec] = []
        for case_node in _trees(node, "case_decl"):
            spec = self._case_decl(case_node, params)
            if spec is None:
                return
            cases.append(spec)

        span = span_of(_tokens(node, "NAME")[0])
        try:
            definition = define_union(name, cases, type_params=param_list, strategy=strategy, capacity=capacity)
        except er.UnionDefinitionError as e:
            er.emit(self.reporter, er.ERR[e.code], span, **e.params)
            return
        self.unit.unions[name] = definition
        self.unit.union_spans[name] = span

    def _case_decl(self, node: Tree, params: Dict[str, GenericParameter]) -> Optional[CaseSpec]:
        name = str(_tokens(node, "NAME")[0])
        payload = None
        type_node = _first_tree(node, "type_ref")
        if type_node is not None:
            payload = self._type_ref(type_node, params)
            if payload is None:
                return None

        storage = CaseStorage.DEFAULT
        unmanaged = None
        size = None
        for key, value_tok in self._options(_first_tree(node, "options")):
            if key == "storage":
                try:
                    storage = CaseStorage.parse(str(value_tok))
                except ValueError as e:
                    er.emit(self.reporter, er.ERR.SL4005, span_of(value_tok), option=key, reason=str(e))
                    return None
            elif key == "unmanaged":
                if str(value_tok) not in ("true", "false"):
                    er.emit(self.reporter, er.ERR.SL4005, span_of(value_tok), option=key,
                            reason="expected true or false")
                    return None
                unmanaged = str(value_tok) == "true"
            elif key == "size":
                size = self._int_option(key, value_tok)
                if size is None:
                    return None
            else:
                er.emit(self.reporter, er.ERR.SL4005, span_of(value_tok), option=key,
                        reason="cases accept storage, unmanaged and size")
                return None
        return case(name, payload, storage=storage, unmanaged=unmanaged, size=size)

    def _options(self, node: Optional[Tree]) -> List[tuple[str, Token]]:
        if node is None:
            return []
        pairs = []
        for option in _trees(node, "option"):
            key_tok, value_tok = option.children
            pairs.append((str(key_tok), value_tok))
        return pairs

    def _int_option(self, key: str, tok: Token) -> Optional[int]:
        if tok.type != "INT":
            er.emit(self.reporter, er.ERR.SL4005, span_of(tok), option=key, reason="expected a number")
            return None
        return int(tok)

    # ---- call sites ----

    def _call_site(self, node: Tree) -> None:
        kind_tok, union_tok = node.children[0], node.children[1]
        if str(union_tok) not in self.unit.unions:
            # Unions that failed to build were already reported
            if str(union_tok) not in self._union_names:
                er.emit(self.reporter, er.ERR.SL4004, span_of(union_tok), name=str(union_tok))
            return

        arguments = []
        arg_list = _first_tree(node, "arguments")
        for arg in (arg_list.children if arg_list is not None else []):
            if arg.data == "named_argument":
                arguments.append(CallSiteArgument(str(arg.children[0]), span_of(arg)))
            else:
                arguments.append(CallSiteArgument(None, span_of(arg)))
        self.unit.call_sites.append(CallSite(str(union_tok), tuple(arguments), str(kind_tok), span_of(node)))


def build_declarations(tree: Tree, reporter: Reporter,
                       default_strategy: StorageStrategy = StorageStrategy.INLINE_VALUE_TYPES) -> DeclarationUnit:
    return DeclarationBuilder(reporter, default_strategy).build(tree)
