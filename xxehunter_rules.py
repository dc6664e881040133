"""
Pattern matchers for insecure XML processing.

Each rule family is one ``Matcher`` variant: the node kinds it inspects, a
``match`` function called for every such node of the member being analyzed,
and an optional ``finish`` hook that runs once the member's traversal is
complete.  ``analyze_member`` is the single traversal driver; adding a rule
means adding a variant to ``MATCHERS`` and, where needed, a catalog entry.

Constructor-family rules for derived types look at a whole type and run in
``analyze_type`` after the type's members, using only their summary facts.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from xxehunter_catalog import (
    ASSIGNMENT_SINKS, CATALOG, CTOR, DEFAULT_SINKS, GATE, OVERLOAD_SINKS, READER_CREATE_SINK,
    RULES, XSLT_LOAD_SINK, FrameworkVersion, RuleDescriptor, SinkSignature,
)
from xxehunter_flow import (
    SAFE, UNKNOWN, UNSAFE, DataflowTracker, Provenance, reader_settings_verdict,
    xslt_settings_verdict,
)
from xxehunter_model import (
    ASSIGN, BASE, CONSTRUCTOR, EXPR_STMT, INVOKE, METHOD, NEW, THIS, CompilationUnit, Node, Span,
    Symbol, SymbolKind, assign_parts, body_of, invoke_parts, is_self_reference,
    member_display_name, new_parts, receiver_of, unit_roots, visit,
)
from xxehunter_semantic import SemanticModel, TypeInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Violation:
    """A confirmed rule match, anchored at one node."""
    key: str
    anchor: Node
    span: Span
    arguments: Tuple[str, ...] = ()
    signature: Optional[SinkSignature] = None

    @property
    def rule(self) -> RuleDescriptor:
        return RULES[self.key]


@dataclass
class MemberFacts:
    """What a member did that type-level rules need to know."""
    unsafe_document_assignment: bool = False
    unsafe_reader_assignment: bool = False


class MemberContext:
    """Per-member analysis state; never shared between members."""

    def __init__(self, unit: CompilationUnit, model: SemanticModel, member: Node,
                 type_node: Optional[Node], version: Optional[FrameworkVersion]):
        self.unit = unit
        self.model = model
        self.member = member
        self.type_node = type_node
        self.version = version
        self.type_name = model.canonical_type(type_node.name) if type_node is not None else None
        self.member_name = member_display_name(member)
        self.tracker = DataflowTracker(member, model, version)
        self.facts = MemberFacts()
        self.scratch: Dict[str, list] = defaultdict(list)

    @property
    def is_constructor(self) -> bool:
        return self.member.kind == CONSTRUCTOR

    def derives_from(self, base: str) -> bool:
        return self.model.is_strictly_derived_from(self.type_name, base)


@dataclass(frozen=True)
class Matcher:
    tag: str
    kinds: FrozenSet[str]
    match: Callable[[Node, MemberContext], Iterable[Violation]]
    finish: Optional[Callable[[MemberContext], Iterable[Violation]]] = None


@dataclass
class MemberResult:
    unit: CompilationUnit
    member: Node
    type_name: Optional[str]
    violations: List[Violation] = field(default_factory=list)
    facts: MemberFacts = field(default_factory=MemberFacts)


# ============================================================================
# Helpers
# ============================================================================

def _framework_member(ctx: MemberContext, node: Node, kind: SymbolKind) -> Optional[Symbol]:
    """Symbol of ``node`` when it is a catalogued framework member of ``kind``."""
    symbol = ctx.model.resolve_symbol(node)
    if symbol is None or symbol.kind != kind or symbol.declaration is not None:
        return None
    return symbol


def _is_property(symbol: Optional[Symbol], owner: str, *names: str) -> bool:
    return (symbol is not None and symbol.containing_type == owner
            and symbol.name in names)


def _has_external_receiver(ctx: MemberContext, target: Node) -> bool:
    """Assignment through a variable or an object initializer, not through this/base."""
    if ctx.model.initializer_target_of(target) is not None:
        return True
    receiver = receiver_of(target)
    return receiver is not None and receiver.kind not in (THIS, BASE)


def _is_inherited_target(ctx: MemberContext, target: Node) -> bool:
    """Implicit, this- or base-qualified reference outside any object initializer."""
    return ctx.model.initializer_target_of(target) is None and is_self_reference(target)


def _is_insecure(signature: SinkSignature, provenance: Provenance) -> bool:
    if provenance is UNSAFE:
        return True
    return provenance is UNKNOWN and signature.unknown_is_unsafe


def _assignment_insecure(ctx: MemberContext, owner: str, prop: str, value: Node) -> bool:
    signature = ASSIGNMENT_SINKS[(owner, prop)]
    if prop == 'XmlResolver':
        return _is_insecure(signature, ctx.tracker.provenance(value))
    return _is_insecure(signature, ctx.tracker.classify(owner, prop, value))


def _single_argument_for(ctx: MemberContext, signature: SinkSignature, arguments,
                         param_type: str) -> Optional[Node]:
    """The argument bound to ``param_type`` when every candidate overload fits the sink's shape
    and agrees on the position."""
    overloads = CATALOG.overloads(signature.owner, signature.member)
    candidates = ctx.model.select_overloads(overloads, arguments)
    if not candidates or not all(signature.shape(o) for o in candidates):
        return None
    positions = {o.params.index(param_type) for o in candidates}
    if len(positions) != 1:
        return None
    return arguments[positions.pop()]


# ============================================================================
# CA3075: insecure DTD processing
# ============================================================================

def match_dtd_overload(node: Node, ctx: MemberContext) -> Iterable[Violation]:
    """Load/Read/Deserialize overloads that parse without an XmlReader."""
    model = ctx.model
    if node.kind == INVOKE:
        callee, arguments = invoke_parts(node)
        symbol = _framework_member(ctx, callee, SymbolKind.METHOD)
        if symbol is None:
            return
        signature = OVERLOAD_SINKS.get((symbol.containing_type, symbol.name))
        if signature is None:
            return
        overloads = CATALOG.overloads(symbol.containing_type, symbol.name)
        argument = symbol.name
    else:
        type_name = model.type_of(node)
        if type_name is None:
            return
        owners = [owner for (owner, member) in OVERLOAD_SINKS
                  if member == CTOR and model.is_derived_from(type_name, owner)]
        if not owners:
            return
        signature = OVERLOAD_SINKS[(owners[0], CTOR)]
        arguments, _ = new_parts(node)
        overloads = CATALOG.overloads(owners[0], CTOR)
        argument = type_name

    candidates = model.select_overloads(overloads, arguments)
    if candidates and all(signature.shape(o) for o in candidates):
        yield Violation('DoNotUseDtdProcessingOverloads', node, node.span, (argument,), signature)


def match_document_resolver(node: Node, ctx: MemberContext) -> Iterable[Violation]:
    """XmlResolver assigned an insecure value on an XmlDocument variable."""
    target, value = assign_parts(node)
    symbol = _framework_member(ctx, target, SymbolKind.PROPERTY)
    if not _is_property(symbol, 'XmlDocument', 'XmlResolver'):
        return
    if not _has_external_receiver(ctx, target):
        return
    if _assignment_insecure(ctx, 'XmlDocument', 'XmlResolver', value):
        yield Violation('XmlDocumentWithNoSecureResolver', node, node.span, (),
                        ASSIGNMENT_SINKS[('XmlDocument', 'XmlResolver')])


def finish_document_resolver(ctx: MemberContext) -> Iterable[Violation]:
    """XmlDocument instances left with the insecure default resolver."""
    signature = DEFAULT_SINKS[('XmlDocument', 'XmlResolver')]
    for obj in ctx.tracker.allocations():
        if obj.type_name != 'XmlDocument':
            continue
        state = obj.prop('XmlResolver')
        if state.provenance is UNSAFE and not state.explicit:
            yield Violation('XmlDocumentWithNoSecureResolver', obj.origin, obj.origin.span, (),
                            signature)


def match_text_reader_settings(node: Node, ctx: MemberContext) -> Iterable[Violation]:
    """Explicit insecure XmlResolver or DtdProcessing on an XmlTextReader."""
    if node.kind == NEW:
        if ctx.model.type_of(node) != 'XmlTextReader':
            return
        obj = ctx.tracker.object_state(node)
        if obj is not None and obj.initializer_insecure:
            yield Violation('XmlTextReaderSetInsecureResolution', node, node.span, (),
                            ASSIGNMENT_SINKS[('XmlTextReader', 'DtdProcessing')])
        return
    target, value = assign_parts(node)
    if ctx.model.initializer_target_of(target) is not None:
        return
    symbol = _framework_member(ctx, target, SymbolKind.PROPERTY)
    if not _is_property(symbol, 'XmlTextReader', 'XmlResolver', 'DtdProcessing', 'ProhibitDtd'):
        return
    if not _has_external_receiver(ctx, target):
        return
    if _assignment_insecure(ctx, 'XmlTextReader', symbol.name, value):
        yield Violation('XmlTextReaderSetInsecureResolution', node, node.span, (),
                        ASSIGNMENT_SINKS[('XmlTextReader', symbol.name)])


def finish_text_reader(ctx: MemberContext) -> Iterable[Violation]:
    """XmlTextReader instances that keep an insecure default."""
    for obj in ctx.tracker.allocations():
        if obj.type_name != 'XmlTextReader' or obj.initializer_insecure:
            continue
        for prop in ('DtdProcessing', 'XmlResolver'):
            state = obj.prop(prop)
            if state.provenance is UNSAFE and not state.explicit:
                yield Violation('XmlTextReaderConstructedWithNoSecureResolution', obj.origin,
                                obj.origin.span, (), DEFAULT_SINKS[('XmlTextReader', prop)])
                break


def match_reader_create(node: Node, ctx: MemberContext) -> Iterable[Violation]:
    """XmlReader.Create with settings that enable DTD parsing insecurely."""
    callee, arguments = invoke_parts(node)
    symbol = _framework_member(ctx, callee, SymbolKind.METHOD)
    if symbol is None or (symbol.containing_type, symbol.name) != ('XmlReader', 'Create'):
        return
    settings = _single_argument_for(ctx, READER_CREATE_SINK, arguments, 'XmlReaderSettings')
    if settings is None:
        return
    obj = ctx.tracker.object_state(settings)
    if obj is None or reader_settings_verdict(obj) is not UNSAFE:
        return
    key = 'XmlReaderCreateInsecureConstructed' if obj.constructed_here else 'XmlReaderCreateInsecureInput'
    yield Violation(key, node, node.span, (), READER_CREATE_SINK)


def match_informational_setter(node: Node, ctx: MemberContext) -> Iterable[Violation]:
    """InnerXml and DataViewSettingCollectionString setters parse XML."""
    target, _ = assign_parts(node)
    symbol = _framework_member(ctx, target, SymbolKind.PROPERTY)
    if symbol is None or not _has_external_receiver(ctx, target):
        return
    if _is_property(symbol, 'XmlDocument', 'InnerXml'):
        yield Violation('DoNotUseSetInnerXml', node, node.span, (),
                        ASSIGNMENT_SINKS[('XmlDocument', 'InnerXml')])
    elif _is_property(symbol, 'DataViewManager', 'DataViewSettingCollectionString'):
        yield Violation('ReviewDtdProcessingProperties', node, node.span, (),
                        ASSIGNMENT_SINKS[('DataViewManager', 'DataViewSettingCollectionString')])


# ============================================================================
# CA3076: insecure XSLT processing
# ============================================================================

def match_xslt_load(node: Node, ctx: MemberContext) -> Iterable[Violation]:
    """XslCompiledTransform.Load with script-enabling settings and an insecure resolver."""
    callee, arguments = invoke_parts(node)
    symbol = _framework_member(ctx, callee, SymbolKind.METHOD)
    if symbol is None or (symbol.containing_type, symbol.name) != ('XslCompiledTransform', 'Load'):
        return
    overloads = [o for o in ctx.model.select_overloads(
        CATALOG.overloads('XslCompiledTransform', 'Load'), arguments) if XSLT_LOAD_SINK.shape(o)]
    if not overloads:
        return
    settings_arg = arguments[overloads[0].params.index('XsltSettings')]
    resolver_arg = arguments[overloads[0].params.index('XmlResolver')]
    if ctx.tracker.provenance(resolver_arg) is SAFE:
        return
    obj = ctx.tracker.object_state(settings_arg)
    if obj is not None:
        if xslt_settings_verdict(obj) is SAFE:
            return
        constructed = obj.constructed_here
    else:
        provenance = ctx.tracker.provenance(settings_arg)
        if provenance is SAFE:
            return
        # Settings passed in from outside are assumed to allow scripts
        constructed = provenance is UNSAFE
    key = ('XslCompiledTransformLoadInsecureConstructed' if constructed
           else 'XslCompiledTransformLoadInsecureInput')
    yield Violation(key, node, node.span, (ctx.member_name,), XSLT_LOAD_SINK)


# ============================================================================
# CA3077: derived types
# ============================================================================

def match_derived_document_method(node: Node, ctx: MemberContext) -> Iterable[Violation]:
    """A member of an XmlDocument subclass assigns an insecure inherited XmlResolver."""
    if ctx.is_constructor or not ctx.derives_from('XmlDocument'):
        return
    target, value = assign_parts(node)
    if not _is_inherited_target(ctx, target):
        return
    symbol = _framework_member(ctx, target, SymbolKind.PROPERTY)
    if not _is_property(symbol, 'XmlDocument', 'XmlResolver'):
        return
    if _assignment_insecure(ctx, 'XmlDocument', 'XmlResolver', value):
        ctx.facts.unsafe_document_assignment = True
        yield Violation('XmlDocumentDerivedClassSetInsecureXmlResolverInMethod', node, node.span,
                        (ctx.member_name,), ASSIGNMENT_SINKS[('XmlDocument', 'XmlResolver')])


def match_derived_reader_method(node: Node, ctx: MemberContext) -> Iterable[Violation]:
    if ctx.is_constructor or not ctx.derives_from('XmlTextReader'):
        return ()
    target, value = assign_parts(node)
    if not _is_inherited_target(ctx, target):
        return ()
    symbol = _framework_member(ctx, target, SymbolKind.PROPERTY)
    if not _is_property(symbol, 'XmlTextReader', 'XmlResolver', 'DtdProcessing', 'ProhibitDtd'):
        return ()
    insecure = _assignment_insecure(ctx, 'XmlTextReader', symbol.name, value)
    ctx.scratch['reader-assignments'].append((node, insecure))
    return ()


def finish_derived_reader_method(ctx: MemberContext) -> Iterable[Violation]:
    """Fires only when every settings assignment in the member is insecure."""
    assignments = ctx.scratch.get('reader-assignments')
    if not assignments or not all(insecure for _, insecure in assignments):
        return
    ctx.facts.unsafe_reader_assignment = True
    first = assignments[0][0]
    yield Violation('XmlTextReaderDerivedClassSetInsecureSettingsInMethod', first, first.span,
                    (ctx.member_name,), ASSIGNMENT_SINKS[('XmlTextReader', 'XmlResolver')])


MATCHERS: Tuple[Matcher, ...] = (
    Matcher('dtd-overload', frozenset({INVOKE, NEW}), match_dtd_overload),
    Matcher('document-resolver', frozenset({ASSIGN}), match_document_resolver,
            finish_document_resolver),
    Matcher('text-reader', frozenset({ASSIGN, NEW}), match_text_reader_settings,
            finish_text_reader),
    Matcher('reader-create', frozenset({INVOKE}), match_reader_create),
    Matcher('informational-setter', frozenset({ASSIGN}), match_informational_setter),
    Matcher('xslt-load', frozenset({INVOKE}), match_xslt_load),
    Matcher('derived-document-method', frozenset({ASSIGN}), match_derived_document_method),
    Matcher('derived-reader-method', frozenset({ASSIGN}), match_derived_reader_method,
            finish_derived_reader_method),
)


def _dispatch_table(matchers) -> Dict[str, Tuple[Matcher, ...]]:
    table: Dict[str, List[Matcher]] = defaultdict(list)
    for matcher in matchers:
        for kind in matcher.kinds:
            table[kind].append(matcher)
    return {kind: tuple(items) for kind, items in table.items()}


_DISPATCH = _dispatch_table(MATCHERS)


# ============================================================================
# Drivers
# ============================================================================

def analyze_member(unit: CompilationUnit, model: SemanticModel, type_node: Optional[Node],
                   member: Node, version: Optional[FrameworkVersion]) -> MemberResult:
    """Run every matcher over one member.

    The member is traversed once; violations anchored outside the member are
    dropped, since no member may report on another's code.
    """
    ctx = MemberContext(unit, model, member, type_node, version)
    violations: List[Violation] = []
    for root in unit_roots(member):
        for node in visit(root):
            for matcher in _DISPATCH.get(node.kind, ()):
                violations.extend(matcher.match(node, ctx))
    for matcher in MATCHERS:
        if matcher.finish is not None:
            violations.extend(matcher.finish(ctx))
    contained = [v for v in violations if member.span.contains(v.span)]
    if len(contained) != len(violations):
        logger.warning("Dropped %d violation(s) anchored outside %s in %s",
                       len(violations) - len(contained), ctx.member_name, unit.path)
    return MemberResult(unit, member, ctx.type_name, contained, ctx.facts)


@dataclass
class _TypeFamily:
    base: str
    fact: str
    no_constructor_key: str
    constructor_key: str
    settings: Tuple[str, ...]


_TYPE_FAMILIES = (
    _TypeFamily('XmlDocument', 'unsafe_document_assignment', 'XmlDocumentDerivedClassNoConstructor',
                'XmlDocumentDerivedClassConstructorNoSecureXmlResolver', ('XmlResolver',)),
    _TypeFamily('XmlTextReader', 'unsafe_reader_assignment', 'XmlTextReaderDerivedClassNoConstructor',
                'XmlTextReaderDerivedClassConstructorNoSecureSettings',
                ('XmlResolver', 'DtdProcessing')),
)


def analyze_type(model: SemanticModel, info: TypeInfo, results: Iterable[MemberResult],
                 version: Optional[FrameworkVersion]) -> List[Tuple[Node, Violation]]:
    """Constructor-family rules for one type, as (declaration, violation) pairs.

    The type's declaration node is the analysis unit for these rules.
    """
    facts = [r.facts for r in results if r.member.kind != CONSTRUCTOR]
    found: List[Tuple[Node, Violation]] = []
    for family in _TYPE_FAMILIES:
        if not model.is_strictly_derived_from(info.name, family.base):
            continue
        signature = DEFAULT_SINKS[(family.base, 'XmlResolver')]
        if not GATE.is_unsafe_for_version(signature, version):
            continue
        if not any(getattr(f, family.fact) for f in facts):
            continue
        constructors = [(decl, c) for decl in info.declarations for c in decl.children
                        if c.kind == CONSTRUCTOR and not _is_static(c)]
        if not constructors:
            decl = info.declarations[0]
            found.append((decl, Violation(family.no_constructor_key, decl,
                                          decl.name_span or decl.span, (info.name,), signature)))
            continue
        for decl, ctor in constructors:
            if not _constructor_secures(model, info, ctor, family, version):
                found.append((decl, Violation(family.constructor_key, ctor,
                                              ctor.name_span or ctor.span, (info.name,), signature)))
    return found


def _is_static(member: Node) -> bool:
    return bool({m.lower() for m in member.attr('modifiers', ())} & {'static', 'shared'})


def _constructor_secures(model: SemanticModel, info: TypeInfo, ctor: Node, family: _TypeFamily,
                         version: Optional[FrameworkVersion]) -> bool:
    """True when the constructor's own top-level statements secure the inherited settings
    before any insecure assignment to them."""
    if ctor.attr('chain') == 'this':
        return True
    body = body_of(ctor)
    if body is None:
        return False
    type_node = next((d for d in info.declarations if d.span.contains(ctor.span)), None)
    ctx = MemberContext(_NO_UNIT, model, ctor, type_node, version)
    secured = set()
    for statement in body.children:
        if statement.kind != EXPR_STMT or not statement.children or statement.children[0].kind != ASSIGN:
            continue
        target, value = assign_parts(statement.children[0])
        if not _is_inherited_target(ctx, target):
            continue
        symbol = _framework_member(ctx, target, SymbolKind.PROPERTY)
        if symbol is None or symbol.containing_type != family.base:
            continue
        prop = 'DtdProcessing' if symbol.name == 'ProhibitDtd' else symbol.name
        if prop not in family.settings:
            continue
        if _assignment_insecure(ctx, family.base, symbol.name, value):
            return False
        if prop != 'XmlResolver' and ctx.tracker.classify(family.base, symbol.name, value) is not SAFE:
            continue
        secured.add(prop)
        if secured.issuperset(family.settings):
            return True
    return False


_NO_UNIT = CompilationUnit('<type>', '', None, '')
