"""
Per-member dataflow tracking for XML resolver and reader configuration.

The tracker runs one forward abstract interpretation over a member's
structured statements and records the abstract value reaching every
expression.  Rules then ask ``provenance(expr)`` or ``object_state(expr)``.
Flow never leaves the member: parameters, fields and call results start as
Unknown.

Objects of the tracked XML types (see ``TRACKED_TYPES``) are modelled on an
abstract heap keyed by their creation expression, so configuring an object
through one alias is visible through another.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Union

from xxehunter_catalog import (
    ASSIGNMENT_SINKS, DEFAULT_SINKS, GATE, NULL_TYPE, RESOLVER_BASE, SECURE_RESOLVER_TYPES,
    TRACKED_TYPES,
    FrameworkVersion, VersionGate,
)
from xxehunter_model import (
    ACCESSOR, ASSIGN, BASE, BLOCK, BRANCH, CAST, CATCH, CONDITIONAL, CONSTRUCTOR, FIELD, FINALLY,
    INVOKE, LAMBDA, LITERAL, LOCAL, LOCAL_FUNCTION, LOOP, MEMBER, METHOD, NAME, NEW, RETURN,
    SCOPE, STATEMENT_KINDS, THIS, THROW, TRY, Node, Symbol, SymbolKind, body_of,
    initializer_of, new_parts, unit_roots,
)
from xxehunter_semantic import SemanticModel

logger = logging.getLogger(__name__)


class Provenance(Enum):
    SAFE = "safe"
    UNSAFE = "unsafe"
    UNKNOWN = "unknown"

    def join(self, other: 'Provenance') -> 'Provenance':
        return self if self is other else Provenance.UNKNOWN


SAFE, UNSAFE, UNKNOWN = Provenance.SAFE, Provenance.UNSAFE, Provenance.UNKNOWN

_NO_CONSTANT = object()


@dataclass(frozen=True)
class Scalar:
    """A value that is not a tracked object."""
    provenance: Provenance = UNKNOWN
    type_name: Optional[str] = None
    constant: object = _NO_CONSTANT

    @property
    def has_constant(self) -> bool:
        return self.constant is not _NO_CONSTANT


@dataclass(frozen=True)
class Ref:
    """Reference to an abstract object on the heap."""
    key: object


Value = Union[Scalar, Ref]
UNKNOWN_VALUE = Scalar()


@dataclass(frozen=True)
class PropState:
    provenance: Provenance
    explicit: bool = False

    def join(self, other: 'PropState') -> 'PropState':
        if self == other:
            return self
        provenance = self.provenance.join(other.provenance)
        return PropState(provenance, self.explicit or other.explicit)


@dataclass(frozen=True)
class ObjectState:
    """Configuration of one tracked object at a program point."""
    type_name: str
    origin: object
    constructed_here: bool
    props: Mapping[str, PropState]
    initializer_insecure: bool = False

    def prop(self, name: str) -> PropState:
        return self.props.get(name, PropState(UNKNOWN))

    def with_prop(self, name: str, state: PropState) -> 'ObjectState':
        props = dict(self.props)
        props[name] = state
        return replace(self, props=props)

    def join(self, other: 'ObjectState') -> 'ObjectState':
        names = set(self.props) | set(other.props)
        props = {n: self.prop(n).join(other.prop(n)) for n in names}
        return replace(self, props=props,
                       initializer_insecure=self.initializer_insecure or other.initializer_insecure)


def join_values(a: Value, b: Value) -> Value:
    if a == b:
        return a
    if isinstance(a, Scalar) and isinstance(b, Scalar):
        return Scalar(a.provenance.join(b.provenance),
                      a.type_name if a.type_name == b.type_name else None,
                      a.constant if a.constant == b.constant else _NO_CONSTANT)
    return UNKNOWN_VALUE


class FlowState:
    """Variable bindings and heap at one program point."""

    __slots__ = ('vars', 'heap', 'dead')

    def __init__(self, variables=None, heap=None, dead=False):
        self.vars: Dict[Symbol, Value] = dict(variables or {})
        self.heap: Dict[object, ObjectState] = dict(heap or {})
        self.dead = dead

    def copy(self) -> 'FlowState':
        return FlowState(self.vars, self.heap, self.dead)

    def join(self, other: 'FlowState') -> 'FlowState':
        if self.dead:
            return other.copy()
        if other.dead:
            return self.copy()
        variables = {}
        for symbol in set(self.vars) | set(other.vars):
            left = self.vars.get(symbol, UNKNOWN_VALUE)
            right = other.vars.get(symbol, UNKNOWN_VALUE)
            variables[symbol] = join_values(left, right)
        heap = dict(self.heap)
        for key, obj in other.heap.items():
            heap[key] = heap[key].join(obj) if key in heap else obj
        return FlowState(variables, heap)

    def replace_with(self, other: 'FlowState'):
        self.vars, self.heap, self.dead = other.vars, other.heap, other.dead


def join_all(states: List[FlowState]) -> FlowState:
    live = [s for s in states if not s.dead]
    if not live:
        return FlowState(dead=True)
    result = live[0].copy()
    for state in live[1:]:
        result = result.join(state)
    return result


class DataflowTracker:
    """Forward reaching-value analysis over one member."""

    def __init__(self, member: Node, model: SemanticModel,
                 version: Optional[FrameworkVersion] = None, gate: VersionGate = GATE):
        self.member = member
        self.model = model
        self.version = version
        self.gate = gate
        self._values: Dict[Node, Value] = {}
        self._snapshots: Dict[Node, ObjectState] = {}
        self._exit_collectors: List[List[FlowState]] = []
        self._final: Optional[FlowState] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def run(self) -> FlowState:
        if self._final is None:
            self._final = self._run_body(unit_roots(self.member), FlowState())
        return self._final

    def value_of(self, expr: Node) -> Value:
        self.run()
        return self._values.get(expr, UNKNOWN_VALUE)

    def provenance(self, expr: Node) -> Provenance:
        """Safety of the value reaching ``expr``."""
        value = self.value_of(expr)
        if isinstance(value, Ref):
            state = self._snapshots.get(expr)
            return object_verdict(state) if state is not None else UNKNOWN
        return value.provenance

    def object_state(self, expr: Node) -> Optional[ObjectState]:
        """Configuration of the tracked object ``expr`` evaluates to, if any."""
        self.run()
        if isinstance(self._values.get(expr), Ref):
            return self._snapshots.get(expr)
        return None

    def allocations(self) -> Iterator[ObjectState]:
        """Objects created in this member, as configured at member exit."""
        final = self.run()
        for key, obj in final.heap.items():
            if obj.constructed_here:
                yield obj

    def classify(self, owner: str, prop: str, expr: Node) -> Provenance:
        """Safety of assigning ``expr`` to ``owner.prop``."""
        return classify_value(owner, prop, self.value_of(expr))

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def _run_body(self, roots, state: FlowState) -> FlowState:
        collector: List[FlowState] = []
        self._exit_collectors.append(collector)
        try:
            for root in roots:
                if root.kind in STATEMENT_KINDS:
                    state = self._exec(root, state)
                elif root.kind in (METHOD, CONSTRUCTOR, ACCESSOR):
                    body = body_of(root)
                    if body is not None:
                        state = self._exec(body, state)
                elif root.kind == FIELD:
                    init = initializer_of(root)
                    if init is not None:
                        self._eval(init, state)
                else:
                    self._eval(root, state)
        finally:
            self._exit_collectors.pop()
        return join_all(collector + [state])

    def _exec(self, node: Node, state: FlowState) -> FlowState:
        if state.dead:
            return state
        kind = node.kind
        if kind in (BLOCK, SCOPE):
            for child in node.children:
                state = self._step(child, state)
            return state
        if kind == LOCAL:
            init = initializer_of(node)
            value = self._eval(init, state) if init is not None else UNKNOWN_VALUE
            symbol = self.model.declared_symbol(node)
            if symbol is not None:
                state.vars[symbol] = value
            return state
        if kind == BRANCH:
            arms = []
            for child in node.children:
                if child.kind == BLOCK:
                    arms.append(self._exec(child, state.copy()))
                else:
                    self._eval(child, state)
            if not node.attr('exhaustive', False):
                arms.append(state)
            return join_all(arms)
        if kind == LOOP:
            body = None
            for child in node.children:
                if child.kind == BLOCK:
                    body = child
                else:
                    state = self._step(child, state)
            if body is None:
                return state
            first = self._exec(body, state.copy())
            second = self._exec(body, state.join(first))
            return state.join(second)
        if kind == TRY:
            return self._exec_try(node, state)
        if kind in (RETURN, THROW):
            for child in node.children:
                self._eval(child, state)
            if self._exit_collectors:
                self._exit_collectors[-1].append(state.copy())
            return FlowState(dead=True)
        if kind == LOCAL_FUNCTION:
            return self._exec_deferred(node, state)
        for child in node.children:
            state = self._step(child, state)
        return state

    def _step(self, node: Node, state: FlowState) -> FlowState:
        if node.kind in STATEMENT_KINDS:
            return self._exec(node, state)
        self._eval(node, state)
        return state

    def _exec_try(self, node: Node, state: FlowState) -> FlowState:
        try_block = node.first(BLOCK)
        before = state.copy()
        after_try = self._exec(try_block, state.copy()) if try_block is not None else state
        handler_entry = before.join(after_try)
        outcomes = [after_try]
        for catch in node.all(CATCH):
            block = catch.first(BLOCK)
            if block is not None:
                outcomes.append(self._exec(block, handler_entry.copy()))
        result = join_all(outcomes)
        finally_node = node.first(FINALLY)
        if finally_node is not None and finally_node.first(BLOCK) is not None:
            if result.dead:
                self._exec(finally_node.first(BLOCK), handler_entry.copy())
                return result
            result = self._exec(finally_node.first(BLOCK), result)
        return result

    def _exec_deferred(self, node: Node, state: FlowState) -> FlowState:
        """Lambda and local-function bodies may run zero or more times."""
        body = body_of(node)
        if body is None:
            return state
        if body.kind == BLOCK:
            after = self._run_body([body], state.copy())
        else:
            inner = state.copy()
            self._eval(body, inner)
            after = inner
        return state.join(after)

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _eval(self, node: Node, state: FlowState) -> Value:
        value = self._evaluate(node, state)
        self._values[node] = value
        if isinstance(value, Ref) and value.key in state.heap:
            self._snapshots[node] = state.heap[value.key]
        return value

    def _evaluate(self, node: Node, state: FlowState) -> Value:
        kind = node.kind
        if kind == LITERAL:
            return literal_value(node)
        if kind in (NAME, MEMBER):
            return self._eval_reference(node, state)
        if kind == NEW:
            return self._eval_new(node, state)
        if kind == ASSIGN:
            return self._eval_assign(node, state)
        if kind == INVOKE:
            callee, arguments = node.children[0], node.children[1:]
            if callee.kind == MEMBER:
                self._eval(callee.children[0], state)
            elif callee.kind != NAME:
                self._eval(callee, state)
            for argument in arguments:
                self._eval(argument, state)
            return self._typed_unknown(self.model.type_of(node))
        if kind == CAST:
            inner = self._eval(node.children[0], state)
            type_name = self.model.type_of(node)
            if isinstance(inner, Scalar):
                if inner.type_name == NULL_TYPE:
                    return inner
                typed = self._typed_unknown(type_name)
                if typed.provenance is not UNKNOWN:
                    return typed
                return Scalar(inner.provenance, type_name, inner.constant)
            return inner
        if kind == CONDITIONAL:
            self._eval(node.children[0], state)
            left_state, right_state = state.copy(), state.copy()
            left = self._eval(node.children[1], left_state)
            right = self._eval(node.children[2], right_state)
            state.replace_with(left_state.join(right_state))
            return join_values(left, right)
        if kind == LAMBDA:
            state.replace_with(self._exec_deferred(node, state))
            return UNKNOWN_VALUE
        if kind == LOCAL:
            self._exec(node, state)
            return UNKNOWN_VALUE
        if kind in STATEMENT_KINDS:
            state.replace_with(self._exec(node, state))
            return UNKNOWN_VALUE
        for child in node.children:
            self._eval(child, state)
        if kind in (THIS, BASE):
            return Scalar(UNKNOWN, self.model.type_of(node))
        return UNKNOWN_VALUE

    def _typed_unknown(self, type_name: Optional[str]) -> Scalar:
        """A value known only by its static type."""
        if type_name and any(self.model.is_derived_from(type_name, t) for t in SECURE_RESOLVER_TYPES):
            return Scalar(SAFE, type_name)
        return Scalar(UNKNOWN, type_name)

    def _eval_reference(self, node: Node, state: FlowState) -> Value:
        symbol = self.model.resolve_symbol(node)
        receiver = node.children[0] if node.kind == MEMBER else None
        if receiver is not None and receiver.kind not in (THIS, BASE):
            self._eval(receiver, state)
        if symbol is None:
            return UNKNOWN_VALUE
        if symbol.kind in (SymbolKind.LOCAL, SymbolKind.PARAMETER) or self._is_variable(symbol, receiver):
            if symbol in state.vars:
                return state.vars[symbol]
            return self._typed_unknown(self.model.canonical_type(symbol.type))
        owner = symbol.containing_type
        if symbol.is_static and owner and symbol.kind == SymbolKind.FIELD and symbol.declaration is None:
            # Enum member such as DtdProcessing.Parse
            return Scalar(UNKNOWN, owner, symbol.name)
        if owner == 'XsltSettings' and symbol.is_static:
            return Scalar(SAFE if symbol.name == 'Default' else UNSAFE, 'XsltSettings')
        return self._typed_unknown(self.model.canonical_type(symbol.type))

    def _is_variable(self, symbol: Symbol, receiver: Optional[Node]) -> bool:
        """Fields and auto-properties of the member's own type, read through this or unqualified."""
        if symbol.declaration is None or symbol.kind not in (SymbolKind.FIELD, SymbolKind.PROPERTY):
            return False
        return receiver is None or receiver.kind in (THIS, BASE)

    def _eval_new(self, node: Node, state: FlowState) -> Value:
        arguments, initializer = new_parts(node)
        arg_values = [self._eval(a, state) for a in arguments]
        type_name = self.model.type_of(node)
        if type_name and self.model.is_derived_from(type_name, RESOLVER_BASE):
            if initializer is not None:
                self._eval(initializer, state)
            secure = any(self.model.is_derived_from(type_name, t) for t in SECURE_RESOLVER_TYPES)
            return Scalar(SAFE if secure else UNSAFE, type_name)
        if type_name not in TRACKED_TYPES:
            if initializer is not None:
                self._eval(initializer, state)
            return self._typed_unknown(type_name)

        obj = ObjectState(type_name, node, True, self._defaults(type_name))
        if type_name == 'XsltSettings' and len(arg_values) == 2:
            obj = obj.with_prop('EnableDocumentFunction', PropState(
                classify_value(type_name, 'EnableDocumentFunction', arg_values[0]), True))
            obj = obj.with_prop('EnableScript', PropState(
                classify_value(type_name, 'EnableScript', arg_values[1]), True))
        if initializer is not None:
            for item in initializer.children:
                if item.kind != ASSIGN or item.children[0].kind != NAME:
                    self._eval(item, state)
                    continue
                target, value_node = item.children
                value = self._eval(value_node, state)
                self._values[item] = value
                prop = _property_name(target.name)
                if prop is None:
                    continue
                prop_state = PropState(classify_value(type_name, prop, value), True)
                obj = _apply(obj, prop, prop_state)
                signature = ASSIGNMENT_SINKS.get((type_name, prop))
                if prop_state.provenance is UNSAFE or (
                        prop_state.provenance is UNKNOWN and signature is not None
                        and signature.unknown_is_unsafe):
                    obj = replace(obj, initializer_insecure=True)
        state.heap[node] = obj
        return Ref(node)

    def _defaults(self, type_name: str) -> Dict[str, PropState]:
        defaults = {}
        for (owner, prop), signature in DEFAULT_SINKS.items():
            if owner == type_name:
                unsafe = self.gate.is_unsafe_for_version(signature, self.version)
                defaults[prop] = PropState(UNSAFE if unsafe else SAFE)
        return defaults

    def _eval_assign(self, node: Node, state: FlowState) -> Value:
        target, value_node = node.children
        value = self._eval(value_node, state)
        if node.attr('op', '=') != '=':
            value = UNKNOWN_VALUE
        if self.model.initializer_target_of(target) is not None:
            return value
        symbol = self.model.resolve_symbol(target)
        receiver = target.children[0] if target.kind == MEMBER else None
        if symbol is None:
            if receiver is not None:
                self._eval(receiver, state)
            return value
        if symbol.kind in (SymbolKind.LOCAL, SymbolKind.PARAMETER) or self._is_variable(symbol, receiver):
            state.vars[symbol] = value
            self._values[target] = value
            return value
        if receiver is not None and receiver.kind not in (THIS, BASE) and symbol.declaration is None:
            self._assign_property(receiver, symbol, value, state)
        return value

    def _assign_property(self, receiver: Node, symbol: Symbol, value: Value, state: FlowState):
        """``receiver.Prop = value`` where Prop is a framework property."""
        receiver_value = self._eval(receiver, state)
        prop = _property_name(symbol.name)
        if prop is None:
            return
        if not isinstance(receiver_value, Ref):
            receiver_symbol = self.model.resolve_symbol(receiver)
            receiver_type = self.model.type_of(receiver)
            if (receiver_symbol is None or receiver_type not in TRACKED_TYPES
                    or receiver_symbol.kind == SymbolKind.TYPE):
                return
            # Settings received from outside: nothing is known about them yet
            obj = ObjectState(receiver_type, receiver_symbol, False,
                              {p: PropState(UNKNOWN) for p in self._defaults(receiver_type)})
            state.heap[receiver_symbol] = obj
            state.vars[receiver_symbol] = Ref(receiver_symbol)
            receiver_value = Ref(receiver_symbol)
        obj = state.heap.get(receiver_value.key)
        if obj is None:
            return
        prop_state = PropState(classify_value(obj.type_name, prop, value), True)
        state.heap[receiver_value.key] = _apply(obj, prop, prop_state)


def _property_name(name: Optional[str]) -> Optional[str]:
    """Canonical spelling of a tracked property name."""
    if not name:
        return None
    for candidate in ('XmlResolver', 'DtdProcessing', 'ProhibitDtd', 'MaxCharactersFromEntities',
                      'EnableScript', 'EnableDocumentFunction'):
        if candidate.lower() == name.lower():
            return candidate
    return None


def _apply(obj: ObjectState, prop: str, state: PropState) -> ObjectState:
    if prop == 'ProhibitDtd':
        return obj.with_prop('DtdProcessing', state)
    return obj.with_prop(prop, state)


def literal_value(node: Node) -> Scalar:
    literal = node.attr('literal')
    text = (node.text or '').strip()
    if literal == 'null':
        return Scalar(SAFE, NULL_TYPE)
    if literal == 'bool':
        return Scalar(UNKNOWN, 'Boolean', text.lower() == 'true')
    if literal == 'int':
        digits = text.rstrip('lLuUsS%&')
        try:
            number = int(digits[2:], 16) if digits.lower().startswith(('0x', '&h')) else int(digits)
        except ValueError:
            return Scalar(UNKNOWN, 'Int32')
        return Scalar(UNKNOWN, 'Int32', number)
    if literal == 'string':
        return Scalar(UNKNOWN, 'String')
    return UNKNOWN_VALUE


def classify_value(owner: str, prop: str, value: Value) -> Provenance:
    """Safety of a value stored into a tracked property."""
    if isinstance(value, Ref):
        return UNKNOWN
    if prop == 'XmlResolver':
        return value.provenance
    if prop == 'DtdProcessing':
        if value.has_constant and isinstance(value.constant, str):
            return UNSAFE if value.constant.lower() == 'parse' else SAFE
        return UNKNOWN
    if prop == 'ProhibitDtd':
        if value.has_constant and isinstance(value.constant, bool):
            return SAFE if value.constant else UNSAFE
        return UNKNOWN
    if prop == 'MaxCharactersFromEntities':
        if value.has_constant and isinstance(value.constant, int) and not isinstance(value.constant, bool):
            return UNSAFE if value.constant == 0 else SAFE
        return UNKNOWN
    if prop in ('EnableScript', 'EnableDocumentFunction'):
        if value.has_constant and isinstance(value.constant, bool):
            return UNSAFE if value.constant else SAFE
        return UNKNOWN
    return UNKNOWN


def object_verdict(obj: ObjectState) -> Provenance:
    """Overall safety of a tracked object's configuration."""
    if obj.type_name == 'XmlReaderSettings':
        return reader_settings_verdict(obj)
    if obj.type_name == 'XsltSettings':
        return xslt_settings_verdict(obj)
    if obj.type_name == 'XmlTextReader':
        resolver, dtd = obj.prop('XmlResolver').provenance, obj.prop('DtdProcessing').provenance
        if UNSAFE in (resolver, dtd):
            return UNSAFE
        return SAFE if resolver is SAFE and dtd is SAFE else UNKNOWN
    return obj.prop('XmlResolver').provenance


def reader_settings_verdict(obj: ObjectState) -> Provenance:
    """Unsafe when DTD parsing is enabled without a secure resolver and an entity limit."""
    dtd = obj.prop('DtdProcessing').provenance
    if dtd is SAFE:
        return SAFE
    resolver = obj.prop('XmlResolver').provenance
    limit = obj.prop('MaxCharactersFromEntities').provenance
    if resolver is SAFE and limit is SAFE:
        return SAFE
    if dtd is UNSAFE and UNSAFE in (resolver, limit):
        return UNSAFE
    return UNKNOWN


def xslt_settings_verdict(obj: ObjectState) -> Provenance:
    """Script and document() must both be provably disabled."""
    states = [obj.prop('EnableScript').provenance, obj.prop('EnableDocumentFunction').provenance]
    if all(s is SAFE for s in states):
        return SAFE
    return UNSAFE
