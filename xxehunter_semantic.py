"""
Lightweight semantic model over one compilation (a project or directory).

Answers the four questions the rules ask: what does this node refer to, what
is its static type, does a type derive from another, and which overloads can
a call select.  Every query fails soft and returns ``None`` (or an empty
result) when the answer is not known.

The model is built once, before any member is analyzed, and is read-only
afterwards.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from xxehunter_catalog import CATALOG, NULL_TYPE, Overload
from xxehunter_model import (
    ACCESSOR, ASSIGN, BASE, BLOCK, CAST, CATCH, CONDITIONAL, CONSTRUCTOR, FIELD,
    INVOKE, LAMBDA, LITERAL, LOCAL, LOCAL_FUNCTION, LOOP, MEMBER, METHOD, NAME, NEW, PARAMETER,
    PROPERTY, SCOPE, THIS, TYPE, CompilationUnit, Node, Span, Symbol,
    SymbolKind, initializer_of, iter_analysis_units, iter_types, new_parts, simple_type_name,
)

logger = logging.getLogger(__name__)

_LITERAL_TYPES = {'string': 'String', 'char': 'Char', 'int': 'Int32', 'real': 'Double',
                  'bool': 'Boolean', 'null': NULL_TYPE}
_SCOPE_KINDS = {BLOCK, LAMBDA, LOCAL_FUNCTION, LOOP, CATCH, SCOPE, METHOD, CONSTRUCTOR, ACCESSOR}
_MAX_DEPTH = 32


@dataclass
class TypeInfo:
    """A user-declared type; partial declarations are merged."""
    name: str
    declarations: List[Node] = field(default_factory=list)
    bases: List[str] = field(default_factory=list)
    members: Dict[str, List[Symbol]] = field(default_factory=dict)
    constructors: List[Node] = field(default_factory=list)
    kind: str = 'class'


@dataclass
class _Owner:
    type_name: Optional[str]
    member: Node


class SemanticModel:
    """Symbol and type resolution for a set of compilation units of one language."""

    def __init__(self, units: Sequence[CompilationUnit]):
        self.units = list(units)
        self.ignore_case = any(u.language == 'vb' for u in self.units)
        self._types: Dict[str, TypeInfo] = {}
        self._owners: Dict[Node, _Owner] = {}
        self._locals: Dict[Node, List[Symbol]] = {}
        self._declared: Dict[Node, Symbol] = {}
        self._initializer_targets: Dict[Node, Node] = {}
        for unit in self.units:
            self._index_types(unit.root)
        for unit in self.units:
            for type_node, member in iter_analysis_units(unit.root):
                type_name = self._key_name(type_node.name) if type_node is not None else None
                self._index_member(type_name, member)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def _key(self, name: Optional[str]) -> str:
        if name is None:
            return ''
        return name.lower() if self.ignore_case else name

    def _key_name(self, name: Optional[str]) -> Optional[str]:
        """Canonical spelling of a user type name (first declaration wins)."""
        info = self._types.get(self._key(name))
        return info.name if info else name

    def _index_types(self, root: Node):
        for type_node in iter_types(root):
            key = self._key(type_node.name)
            info = self._types.get(key)
            if info is None:
                info = TypeInfo(type_node.name, kind=type_node.attr('type_kind', 'class'))
                self._types[key] = info
            info.declarations.append(type_node)
            for base in type_node.attr('bases', ()):
                simple = simple_type_name(base)
                if simple and simple not in info.bases:
                    info.bases.append(simple)
            for child in type_node.children:
                symbol = self._member_symbol(info.name, child)
                if symbol is not None:
                    info.members.setdefault(self._key(symbol.name), []).append(symbol)
                    self._declared[child] = symbol
                if child.kind == CONSTRUCTOR:
                    info.constructors.append(child)

    def _member_symbol(self, type_name: str, node: Node) -> Optional[Symbol]:
        kinds = {FIELD: SymbolKind.FIELD, PROPERTY: SymbolKind.PROPERTY, METHOD: SymbolKind.METHOD}
        kind = kinds.get(node.kind)
        if kind is None or not node.name:
            return None
        modifiers = frozenset(m.lower() for m in node.attr('modifiers', ()))
        return Symbol(kind, node.name, simple_type_name(node.attr('type')), type_name,
                      declaration=node, is_static=bool(modifiers & {'static', 'shared'}),
                      modifiers=modifiers)

    def _index_member(self, type_name: Optional[str], member: Node):
        declared: List[Symbol] = []
        self._locals[member] = declared
        if member.kind == ACCESSOR and member.name in ('set', 'init') and not member.all(PARAMETER):
            declared.append(Symbol(SymbolKind.PARAMETER, 'value', simple_type_name(member.attr('type')),
                                   declaration=member, scope=member.span))
        self._walk_scopes(type_name, member, member, member.span, declared)

    def _walk_scopes(self, type_name, member, node, scope: Span, declared: List[Symbol]):
        pending: List[Tuple[Node, Span]] = []
        stack = [(node, scope)]
        while stack:
            current, current_scope = stack.pop()
            self._owners[current] = _Owner(type_name, member)
            inner = current.span if current.kind in _SCOPE_KINDS else current_scope
            if current.kind in (PARAMETER, LOCAL, LOCAL_FUNCTION):
                pending.append((current, current_scope))
            elif current.kind == NEW:
                _, init = new_parts(current)
                if init is not None:
                    for item in init.children:
                        if item.kind == ASSIGN and item.children[0].kind == NAME:
                            self._initializer_targets[item.children[0]] = current
            # Reversed push keeps declarations in source order
            for child in reversed(current.children):
                stack.append((child, inner))

        # Symbols are created after every owner is known so that `var x = y`
        # can be typed through the earlier declaration of y.
        for decl, decl_scope in pending:
            if decl.kind == LOCAL:
                inferred = simple_type_name(decl.attr('type'))
                init = initializer_of(decl)
                if inferred is None and init is not None:
                    inferred = self.type_of(init)
                symbol = Symbol(SymbolKind.LOCAL, decl.name or '', self.canonical_type(inferred),
                                declaration=decl, scope=decl_scope)
            elif decl.kind == PARAMETER:
                symbol = Symbol(SymbolKind.PARAMETER, decl.name or '',
                                self.canonical_type(simple_type_name(decl.attr('type'))),
                                declaration=decl, scope=decl_scope)
            else:
                symbol = Symbol(SymbolKind.METHOD, decl.name or '',
                                simple_type_name(decl.attr('type')), declaration=decl,
                                scope=decl_scope)
            declared.append(symbol)
            self._declared[decl] = symbol

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def user_type(self, name: Optional[str]) -> Optional[TypeInfo]:
        if not name:
            return None
        return self._types.get(self._key(name))

    def user_types(self) -> Iterable[TypeInfo]:
        return self._types.values()

    def canonical_type(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        info = self.user_type(name)
        if info is not None:
            return info.name
        return CATALOG.canonical(name) or name

    def owner_type(self, node: Node) -> Optional[str]:
        owner = self._owners.get(node)
        return owner.type_name if owner else None

    def owner_member(self, node: Node) -> Optional[Node]:
        owner = self._owners.get(node)
        return owner.member if owner else None

    def declared_symbol(self, node: Node) -> Optional[Symbol]:
        return self._declared.get(node)

    def initializer_target_of(self, node: Node) -> Optional[Node]:
        """The creation expression whose object initializer assigns ``node``."""
        return self._initializer_targets.get(node)

    def base_type(self, type_name: Optional[str]) -> Optional[str]:
        """Base class of a type (interfaces in a C# base list are skipped)."""
        info = self.user_type(type_name)
        if info is not None:
            for base in info.bases:
                user = self.user_type(base)
                if user is not None and user.kind != 'interface':
                    return user.name
                known = CATALOG.get(base)
                if known is not None and not known.is_interface:
                    return known.name
                if user is None and known is None and not _looks_like_interface(base):
                    return base
            return 'Object'
        known = CATALOG.get(type_name)
        return known.base if known is not None else None

    def _supertypes(self, type_name: str) -> List[str]:
        info = self.user_type(type_name)
        if info is not None:
            return [self.canonical_type(b) for b in info.bases]
        known = CATALOG.get(type_name)
        if known is None:
            return []
        result = list(known.interfaces)
        if known.base:
            result.insert(0, known.base)
        return result

    def is_derived_from(self, type_name: Optional[str], base_name: str) -> bool:
        """True when ``type_name`` is ``base_name`` or inherits from it."""
        if not type_name or type_name == NULL_TYPE:
            return False
        target = base_name.lower()
        seen: Set[str] = set()
        pending = [type_name]
        while pending:
            current = pending.pop()
            lowered = current.lower()
            if lowered == target:
                return True
            if lowered in seen or len(seen) > _MAX_DEPTH:
                continue
            seen.add(lowered)
            pending.extend(self._supertypes(current))
        return False

    def is_strictly_derived_from(self, type_name: Optional[str], base_name: str) -> bool:
        return (bool(type_name) and type_name.lower() != base_name.lower()
                and self.is_derived_from(type_name, base_name))

    def lookup_member(self, type_name: Optional[str], name: str) -> Optional[Symbol]:
        """Find a member on a type or its bases.

        A member the type declares itself hides inherited ones; an ``override``
        resolves to the inherited declaration it overrides.
        """
        current = type_name
        seen: Set[str] = set()
        overriding: Optional[Symbol] = None
        while current and current.lower() not in seen and len(seen) < _MAX_DEPTH:
            seen.add(current.lower())
            info = self.user_type(current)
            if info is not None:
                symbols = info.members.get(self._key(name))
                if symbols:
                    symbol = symbols[0]
                    if not symbol.overrides:
                        return symbol
                    overriding = overriding or symbol
            else:
                symbol = CATALOG.declared_member(current, name)
                if symbol is not None:
                    return symbol
            current = self.base_type(current)
        return overriding

    def resolve_symbol(self, node: Node) -> Optional[Symbol]:
        try:
            return self._resolve(node, 0)
        except RecursionError:
            logger.debug("Recursion while resolving %r", node)
            return None

    def type_of(self, node: Node) -> Optional[str]:
        try:
            return self._type_of(node, 0)
        except RecursionError:
            logger.debug("Recursion while typing %r", node)
            return None

    def select_overloads(self, overloads: Sequence[Overload],
                         arguments: Sequence[Node]) -> List[Overload]:
        """Overloads compatible with the argument list (unknown arguments match anything)."""
        arg_types = [self.type_of(a) for a in arguments]
        return [o for o in overloads
                if len(o.params) == len(arg_types)
                and all(self.is_assignable(a, p) for a, p in zip(arg_types, o.params))]

    def is_assignable(self, arg_type: Optional[str], param_type: str) -> bool:
        if arg_type is None:
            return True
        if arg_type == NULL_TYPE:
            return CATALOG.is_reference_type(param_type)
        if param_type == 'Object':
            return True
        if arg_type == 'Int32' and param_type == 'Int64':
            return True
        return self.is_derived_from(arg_type, param_type)

    # ------------------------------------------------------------------
    # Resolution internals
    # ------------------------------------------------------------------

    def _resolve(self, node: Node, depth: int) -> Optional[Symbol]:
        if depth > _MAX_DEPTH:
            return None
        kind = node.kind
        if node in self._declared:
            return self._declared[node]
        if kind == NAME:
            return self._resolve_name(node, depth)
        if kind == MEMBER:
            return self._resolve_member(node, depth)
        if kind == INVOKE:
            return self._resolve(node.children[0], depth + 1)
        if kind == NEW:
            type_name = self._type_of(node, depth + 1)
            return self._type_symbol(type_name)
        if kind in (THIS, BASE):
            owner = self.owner_type(node)
            return self._type_symbol(owner if kind == THIS else self.base_type(owner))
        return None

    def _type_symbol(self, name: Optional[str]) -> Optional[Symbol]:
        if not name:
            return None
        info = self.user_type(name)
        if info is not None:
            return Symbol(SymbolKind.TYPE, info.name, info.name, declaration=info.declarations[0])
        return CATALOG.type_symbol(name)

    def _resolve_name(self, node: Node, depth: int) -> Optional[Symbol]:
        name = node.name or ''
        target = self._initializer_targets.get(node)
        if target is not None:
            return self.lookup_member(self._type_of(target, depth + 1), name)
        owner = self._owners.get(node)
        if owner is not None:
            best: Optional[Symbol] = None
            for symbol in self._locals.get(owner.member, ()):
                if self._key(symbol.name) != self._key(name) or symbol.scope is None:
                    continue
                if not symbol.scope.contains(node.span):
                    continue
                if best is None or symbol.scope.size() <= best.scope.size():
                    best = symbol
            if best is not None:
                return best
            if owner.type_name:
                symbol = self.lookup_member(owner.type_name, name)
                if symbol is not None:
                    return symbol
        return self._type_symbol(name) if (self.user_type(name) or CATALOG.get(name)) else None

    def _resolve_member(self, node: Node, depth: int) -> Optional[Symbol]:
        receiver = node.children[0]
        name = node.name or ''
        if receiver.kind == THIS:
            return self.lookup_member(self.owner_type(receiver) or self.owner_type(node), name)
        if receiver.kind == BASE:
            owner = self.owner_type(receiver) or self.owner_type(node)
            return self.lookup_member(self.base_type(owner), name)
        receiver_symbol = self._resolve(receiver, depth + 1)
        if receiver_symbol is not None and receiver_symbol.kind == SymbolKind.TYPE:
            return self.lookup_member(receiver_symbol.name, name)
        receiver_type = self._type_of(receiver, depth + 1)
        if receiver_type is not None:
            return self.lookup_member(receiver_type, name)
        if receiver_symbol is None and (self.user_type(name) or CATALOG.get(name)):
            # Namespace-qualified type such as System.Xml.XmlReader
            return self._type_symbol(name)
        return None

    def _type_of(self, node: Node, depth: int) -> Optional[str]:
        if depth > _MAX_DEPTH:
            return None
        kind = node.kind
        if kind == LITERAL:
            return _LITERAL_TYPES.get(node.attr('literal'))
        if kind == NEW:
            written = node.name or node.attr('target_type')
            return self.canonical_type(simple_type_name(written))
        if kind == CAST:
            return self.canonical_type(simple_type_name(node.name))
        if kind == THIS:
            return self.owner_type(node)
        if kind == BASE:
            return self.base_type(self.owner_type(node))
        if kind == CONDITIONAL:
            left = self._type_of(node.children[1], depth + 1)
            right = self._type_of(node.children[2], depth + 1)
            if left == right or right == NULL_TYPE:
                return left
            return right if left == NULL_TYPE else None
        if kind == ASSIGN:
            return self._type_of(node.children[1], depth + 1)
        if kind == INVOKE:
            return self._invocation_type(node, depth)
        if kind in (NAME, MEMBER):
            symbol = self._resolve(node, depth + 1)
            if symbol is None:
                return None
            if symbol.kind == SymbolKind.TYPE:
                return None
            return self.canonical_type(symbol.type)
        return None

    def _invocation_type(self, node: Node, depth: int) -> Optional[str]:
        callee, arguments = node.children[0], node.children[1:]
        symbol = self._resolve(callee, depth + 1)
        if symbol is None or symbol.kind != SymbolKind.METHOD:
            return None
        if symbol.type:
            return self.canonical_type(symbol.type)
        if symbol.declaration is None and symbol.containing_type:
            overloads = self.select_overloads(
                CATALOG.overloads(symbol.containing_type, symbol.name), arguments)
            returns = {o.returns for o in overloads}
            if len(returns) == 1:
                return returns.pop()
        return None


def _looks_like_interface(name: str) -> bool:
    return len(name) > 1 and name[0] == 'I' and name[1].isupper()
