"""
Structural model shared by the C# and Visual Basic front ends.

Both front ends lower their syntax trees into the same immutable ``Node``
tree, so every rule in ``xxehunter_rules`` is written once.  Node kinds are
plain strings (the same way tree-sitter names its node types); the role of
each child is fixed per kind and read through the helpers at the bottom of
this module rather than by index at call sites.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Iterator, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# ============================================================================
# Node kinds
# ============================================================================

# Declarations
UNIT = 'unit'
NAMESPACE = 'namespace'
TYPE = 'type'
FIELD = 'field'
PROPERTY = 'property'
ACCESSOR = 'accessor'
METHOD = 'method'
CONSTRUCTOR = 'constructor'
LOCAL_FUNCTION = 'local_function'
PARAMETER = 'parameter'
ATTRIBUTE = 'attribute'

# Statements
BLOCK = 'block'
LOCAL = 'local'
EXPR_STMT = 'expr_stmt'
BRANCH = 'branch'
LOOP = 'loop'
TRY = 'try'
CATCH = 'catch'
FINALLY = 'finally'
SCOPE = 'scope'
RETURN = 'return'
THROW = 'throw'
STMT = 'stmt'

# Expressions
ASSIGN = 'assign'
INVOKE = 'invoke'
NEW = 'new'
INITIALIZER = 'initializer'
MEMBER = 'member'
NAME = 'name'
THIS = 'this'
BASE = 'base'
LITERAL = 'literal'
LAMBDA = 'lambda'
CAST = 'cast'
CONDITIONAL = 'conditional'
EXPR = 'expr'

ERROR = 'error'

STATEMENT_KINDS = frozenset({
    BLOCK, LOCAL, EXPR_STMT, BRANCH, LOOP, TRY, CATCH, FINALLY, SCOPE,
    RETURN, THROW, STMT, LOCAL_FUNCTION,
})

# Nodes that own a body and are analyzed as one unit
MEMBER_KINDS = frozenset({METHOD, CONSTRUCTOR, ACCESSOR, FIELD, PROPERTY})

TOP_LEVEL_MEMBER = '<Main>$'

_EMPTY: Mapping[str, object] = MappingProxyType({})


# ============================================================================
# Data classes
# ============================================================================

@dataclass(frozen=True)
class Span:
    """1-based source range; the end column points just past the last character."""
    start_line: int
    start_column: int
    end_line: int
    end_column: int

    def contains(self, other: 'Span') -> bool:
        return ((self.start_line, self.start_column) <= (other.start_line, other.start_column)
                and (other.end_line, other.end_column) <= (self.end_line, self.end_column))

    def size(self) -> Tuple[int, int]:
        return (self.end_line - self.start_line, self.end_column - self.start_column)


@dataclass(frozen=True, eq=False)
class Node:
    """Immutable structural unit.  Identity matters: nodes are dict keys."""
    kind: str
    span: Span
    name: Optional[str] = None
    children: Tuple['Node', ...] = ()
    name_span: Optional[Span] = None
    text: str = ''
    attrs: Mapping[str, object] = field(default_factory=lambda: _EMPTY)

    def attr(self, key: str, default=None):
        return self.attrs.get(key, default)

    def first(self, kind: str) -> Optional['Node']:
        for child in self.children:
            if child.kind == kind:
                return child
        return None

    def all(self, kind: str) -> List['Node']:
        return [child for child in self.children if child.kind == kind]

    def __repr__(self):
        label = f" {self.name!r}" if self.name else ''
        return f"<Node {self.kind}{label} @{self.span.start_line}:{self.span.start_column}>"


def make_node(kind: str, span: Span, name: Optional[str] = None,
              children=(), name_span: Optional[Span] = None, text: str = '',
              **attrs) -> Node:
    """Build a Node, freezing children and attributes."""
    return Node(
        kind=kind,
        span=span,
        name=name,
        children=tuple(c for c in children if c is not None),
        name_span=name_span,
        text=text,
        attrs=MappingProxyType(attrs) if attrs else _EMPTY,
    )


def span_between(first: Span, last: Span) -> Span:
    return Span(first.start_line, first.start_column, last.end_line, last.end_column)


class SymbolKind(Enum):
    TYPE = "type"
    FIELD = "field"
    PROPERTY = "property"
    METHOD = "method"
    PARAMETER = "parameter"
    LOCAL = "local"


@dataclass(frozen=True, eq=False)
class Symbol:
    """Resolved identity of a declaration.  Compared by identity."""
    kind: SymbolKind
    name: str
    type: Optional[str] = None
    containing_type: Optional[str] = None
    declaration: Optional[Node] = None
    is_static: bool = False
    modifiers: FrozenSet[str] = frozenset()
    scope: Optional[Span] = None

    @property
    def overrides(self) -> bool:
        return bool(self.modifiers & {'override', 'overrides'})

    def __repr__(self):
        owner = f"{self.containing_type}." if self.containing_type else ''
        return f"<Symbol {self.kind.value} {owner}{self.name}>"


@dataclass
class CompilationUnit:
    """One parsed source file."""
    path: str
    language: str  # 'csharp' or 'vb'
    root: Node
    source: str

    @property
    def lines(self) -> List[str]:
        return self.source.splitlines()

    def line(self, lineno: int) -> str:
        lines = self.lines
        if 1 <= lineno <= len(lines):
            return lines[lineno - 1]
        return ''


# ============================================================================
# Traversal
# ============================================================================

def visit(root: Node) -> Iterator[Node]:
    """Lazy pre-order traversal that skips malformed subtrees."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node.kind == ERROR:
            continue
        yield node
        stack.extend(reversed(node.children))


def iter_types(root: Node) -> Iterator[Node]:
    """All type declarations, nested ones included."""
    for node in visit(root):
        if node.kind == TYPE:
            yield node


def iter_members(type_node: Node) -> Iterator[Node]:
    """Analysis units declared directly in a type.

    Accessors are yielded individually; fields and properties only when they
    carry an initializer.
    """
    for child in type_node.children:
        if child.kind in (METHOD, CONSTRUCTOR):
            if body_of(child) is not None:
                yield child
        elif child.kind == PROPERTY:
            for accessor in child.all(ACCESSOR):
                if body_of(accessor) is not None:
                    yield accessor
            if initializer_of(child) is not None:
                yield child
        elif child.kind == FIELD and initializer_of(child) is not None:
            yield child


def iter_analysis_units(root: Node) -> Iterator[Tuple[Optional[Node], Node]]:
    """(enclosing type, member) for every analysis unit in a compilation unit."""
    for child in root.children:
        if child.kind == METHOD and child.name == TOP_LEVEL_MEMBER:
            yield None, child
    for type_node in iter_types(root):
        for member in iter_members(type_node):
            yield type_node, member


def unit_roots(member: Node) -> List[Node]:
    """Subtrees to traverse when analyzing ``member``."""
    if member.kind == PROPERTY:
        init = initializer_of(member)
        return [init] if init is not None else []
    return [member]


# ============================================================================
# Role accessors
# ============================================================================

def body_of(node: Node) -> Optional[Node]:
    """Body block of a method-like node or lambda (an expression for expression lambdas)."""
    if node.kind == LAMBDA:
        return node.children[-1] if node.children and node.children[-1].kind != PARAMETER else None
    for child in reversed(node.children):
        if child.kind == BLOCK:
            return child
    return None


def params_of(node: Node) -> List[Node]:
    return node.all(PARAMETER)


def initializer_of(node: Node) -> Optional[Node]:
    """Initializer expression of a field, property or local declaration."""
    for child in node.children:
        if child.kind not in (ACCESSOR, PARAMETER, ATTRIBUTE):
            return child
    return None


def invoke_parts(node: Node) -> Tuple[Node, Tuple[Node, ...]]:
    return node.children[0], node.children[1:]


def new_parts(node: Node) -> Tuple[Tuple[Node, ...], Optional[Node]]:
    """(arguments, object initializer) of a creation expression."""
    if node.children and node.children[-1].kind == INITIALIZER:
        return node.children[:-1], node.children[-1]
    return node.children, None


def assign_parts(node: Node) -> Tuple[Node, Node]:
    return node.children[0], node.children[1]


def receiver_of(node: Node) -> Optional[Node]:
    """Receiver of a member access, ``None`` for a bare name."""
    if node.kind == MEMBER and node.children:
        return node.children[0]
    return None


def is_self_reference(node: Node) -> bool:
    """True for a bare name or a name qualified by ``this``/``base`` (``Me``/``MyBase``)."""
    if node.kind == NAME:
        return True
    receiver = receiver_of(node)
    return receiver is not None and receiver.kind in (THIS, BASE)


def member_display_name(member: Node) -> str:
    """Simple name used as a message argument for a member."""
    if member.kind == ACCESSOR:
        return member.attr('property') or member.name or ''
    return member.name or ''


# ============================================================================
# Type names
# ============================================================================

_PREDEFINED = MappingProxyType({
    'string': 'String', 'object': 'Object', 'bool': 'Boolean', 'boolean': 'Boolean',
    'int': 'Int32', 'integer': 'Int32', 'int32': 'Int32', 'uint': 'UInt32',
    'long': 'Int64', 'int64': 'Int64', 'ulong': 'UInt64', 'short': 'Int16',
    'byte': 'Byte', 'sbyte': 'SByte', 'char': 'Char', 'double': 'Double',
    'float': 'Single', 'single': 'Single', 'decimal': 'Decimal', 'void': 'Void',
    'date': 'DateTime',
})

_GENERIC_ARGS = re.compile(r'<[^<>]*>|\(\s*of\b[^()]*\)', re.IGNORECASE)


def simple_type_name(text: Optional[str]) -> Optional[str]:
    """Reduce a written type to its simple name.

    ``global::System.Xml.XmlDocument`` -> ``XmlDocument``,
    ``List(Of String)`` -> ``List``, ``int`` -> ``Int32``.
    """
    if not text:
        return None
    name = text.strip()
    if name.lower() in ('var', 'dynamic'):
        return None
    previous = None
    while previous != name:
        previous = name
        name = _GENERIC_ARGS.sub('', name)
    name = name.replace('global::', '').split('::')[-1]
    name = re.sub(r'(\[[,\s]*\]|\(\s*,*\s*\)|\?)+$', '', name).strip()
    name = name.split('.')[-1].strip('[] ')
    if not name:
        return None
    return _PREDEFINED.get(name.lower(), name)
