#!/usr/bin/env python3
"""
C# Front End (Tree-sitter)
==========================
Parses C# with tree-sitter and lowers the concrete syntax tree into the
structural model of ``xxehunter_model``.

Covered constructs:
- namespaces (block and file-scoped), classes, structs, records, interfaces
- fields, properties (accessors, expression bodies, initializers), indexers
- methods, constructors (with this/base chaining), operators, local functions
- statements: if/else, switch, loops, try/catch/finally, using, lock, return, throw
- expressions: assignments, invocations, object creation with initializers,
  target-typed new(), member and conditional access, lambdas, anonymous methods,
  casts, conditionals, literals
- top-level statements and assembly-level attributes

Syntax errors cost only the broken subtree: declarations and statements the
parser still recognized inside an ERROR node are lowered as usual.

Tree-sitter reports UTF-8 byte columns; the model uses 1-based character
columns, so every position is converted on the way out.
"""

import logging
from typing import Dict, List, Optional, Tuple

import tree_sitter_c_sharp as tscs
from tree_sitter import Language, Parser
from tree_sitter import Node as TSNode

from xxehunter_model import (
    ACCESSOR, ASSIGN, ATTRIBUTE, BASE, BLOCK, BRANCH, CAST, CATCH, CONDITIONAL, CONSTRUCTOR,
    ERROR, EXPR, EXPR_STMT, FIELD, FINALLY, INITIALIZER, INVOKE, LAMBDA, LITERAL, LOCAL,
    LOCAL_FUNCTION, LOOP, MEMBER, METHOD, NAME, NAMESPACE, NEW, PARAMETER, PROPERTY, RETURN,
    SCOPE, STMT, THIS, THROW, TOP_LEVEL_MEMBER, TRY, TYPE, UNIT, CompilationUnit, Node, Span,
    make_node,
)

logger = logging.getLogger(__name__)

CSHARP_LANG = Language(tscs.language())

# ============================================================================
# Node type tables
# ============================================================================

TYPE_DECLARATIONS = {
    'class_declaration': 'class',
    'struct_declaration': 'struct',
    'interface_declaration': 'interface',
    'record_declaration': 'class',
    'record_struct_declaration': 'struct',
    'enum_declaration': 'enum',
}

METHOD_LIKE = {'method_declaration', 'operator_declaration', 'conversion_operator_declaration',
               'destructor_declaration'}

MEMBER_DECLARATIONS = METHOD_LIKE | {'constructor_declaration', 'property_declaration',
                                     'indexer_declaration', 'field_declaration',
                                     'event_field_declaration'}

# Header keywords of a type declaration the parser could not close
TYPE_KEYWORDS = {'class': 'class', 'record': 'class', 'struct': 'struct', 'interface': 'interface'}

LITERAL_KINDS = {
    'string_literal': 'string',
    'verbatim_string_literal': 'string',
    'raw_string_literal': 'string',
    'interpolated_string_expression': 'string',
    'character_literal': 'char',
    'integer_literal': 'int',
    'real_literal': 'real',
    'boolean_literal': 'bool',
    'null_literal': 'null',
}

SCOPE_STATEMENTS = {'lock_statement', 'checked_statement', 'unsafe_statement', 'fixed_statement'}

# Child nodes that never carry values
SKIPPED = {'predefined_type', 'array_type', 'nullable_type', 'pointer_type', 'tuple_type',
           'type_argument_list', 'type_parameter_list', 'type_parameter_constraints_clause',
           'attribute_list', 'modifier', 'comment', 'name_colon', 'name_equals',
           'preprocessor_call', 'interpolation_format_clause'}

THIS_NODES = {'this_expression', 'this'}
BASE_NODES = {'base_expression', 'base'}


# ============================================================================
# Helpers
# ============================================================================

def node_text(node: Optional[TSNode]) -> str:
    """Get the source text of a node."""
    if node is None or node.text is None:
        return ""
    return node.text.decode('utf-8', errors='replace')


def get_child_by_type(node: TSNode, *type_names: str) -> Optional[TSNode]:
    """Get first direct child of one of the given types."""
    for child in node.children:
        if child.type in type_names:
            return child
    return None


def get_children_by_type(node: TSNode, type_name: str) -> List[TSNode]:
    """Get all direct children of a given type."""
    return [c for c in node.children if c.type == type_name]


def field_or_type(node: TSNode, field_name: str, *type_names: str) -> Optional[TSNode]:
    """Child by field name, falling back to the first child of a matching type.

    Field names differ between grammar releases; node types are steadier.
    """
    child = node.child_by_field_name(field_name)
    if child is not None:
        return child
    return get_child_by_type(node, *type_names) if type_names else None


def is_statement(node: TSNode) -> bool:
    return node.type.endswith('_statement') or node.type == 'block'


def unquote(text: str) -> str:
    text = text.strip()
    if text.startswith('@'):
        text = text[1:]
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1]
    return text


# ============================================================================
# Lowering
# ============================================================================

class CSharpFrontEnd:
    """Lowers one C# source file into a ``CompilationUnit``."""

    def __init__(self, source_code: str, file_path: str):
        self.source_code = source_code
        self.file_path = file_path
        self.source_bytes = source_code.encode('utf-8')
        self._line_bytes = self.source_bytes.split(b'\n')
        self._column_cache: Dict[Tuple[int, int], int] = {}
        self.error_count = 0

        parser = Parser(CSHARP_LANG)
        self.tree = parser.parse(self.source_bytes)
        self.root = self.tree.root_node

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def _column(self, row: int, byte_column: int) -> int:
        key = (row, byte_column)
        cached = self._column_cache.get(key)
        if cached is None:
            line = self._line_bytes[row] if row < len(self._line_bytes) else b''
            cached = len(line[:byte_column].decode('utf-8', errors='replace')) + 1
            self._column_cache[key] = cached
        return cached

    def span(self, node: TSNode) -> Span:
        (start_row, start_col), (end_row, end_col) = node.start_point, node.end_point
        return Span(start_row + 1, self._column(start_row, start_col),
                    end_row + 1, self._column(end_row, end_col))

    def span_of(self, first: TSNode, last: TSNode) -> Span:
        start, end = self.span(first), self.span(last)
        return Span(start.start_line, start.start_column, end.end_line, end.end_column)

    def error(self, node: TSNode) -> Node:
        self.error_count += 1
        return make_node(ERROR, self.span(node), text=node_text(node))

    # ------------------------------------------------------------------
    # Error recovery
    # ------------------------------------------------------------------

    def _salvage(self, node: TSNode, wanted) -> List[Tuple[Optional[list], TSNode]]:
        """Well-formed nodes accepted by ``wanted`` inside the ERROR parts of ``node``.

        Each is paired with the last unclosed type header (``class Name : Base``)
        seen before it within the error, or None.
        """
        found = []
        header = None
        after_keyword = None
        stack = [(node, node.type == 'ERROR')]
        while stack:
            current, in_error = stack.pop()
            if in_error and wanted(current) and not current.has_error:
                found.append((header, current))
                after_keyword = None
                continue
            if in_error:
                if after_keyword and current.type == 'identifier':
                    header = [current, TYPE_KEYWORDS[after_keyword], []]
                elif header is not None and current.type == 'base_list':
                    header[2].extend(node_text(b) for b in current.named_children
                                     if b.type not in ('argument_list', 'comment'))
                after_keyword = current.type if current.type in TYPE_KEYWORDS else None
            if current.has_error:
                stack.extend((c, in_error or c.type == 'ERROR') for c in reversed(current.children))
        return found

    def recover_declarations(self, node: TSNode) -> List[Node]:
        """Types and members the parser still recognized inside a broken declaration."""
        recovered: List[Node] = []
        headers: Dict[int, list] = {}
        members: Dict[int, List[Node]] = {}
        last: Dict[int, TSNode] = {}
        for header, found in self._salvage(
                node, lambda n: n.type in TYPE_DECLARATIONS or n.type in MEMBER_DECLARATIONS):
            if found.type in TYPE_DECLARATIONS:
                recovered.append(self.type_declaration(found))
            elif header is not None:
                key = header[0].start_byte
                headers[key] = header
                members.setdefault(key, []).extend(self.member(found, node_text(header[0])))
                last[key] = found
        for key, (name, type_kind, bases) in headers.items():
            recovered.append(make_node(TYPE, self.span_of(name, last[key]), node_text(name), members[key],
                                       name_span=self.span(name), bases=tuple(bases),
                                       type_kind=type_kind, modifiers=()))
        if recovered:
            logger.debug("%s: recovered %d declaration(s) from a syntax error at line %d",
                         self.file_path, len(recovered), node.start_point[0] + 1)
        return recovered

    def recover_members(self, node: TSNode, type_name: str) -> List[Node]:
        recovered: List[Node] = []
        for _, found in self._salvage(
                node, lambda n: n.type in MEMBER_DECLARATIONS or n.type in TYPE_DECLARATIONS):
            recovered.extend(self.member(found, type_name))
        return recovered

    def recover_statements(self, node: TSNode) -> List[Node]:
        recovered = (self.statement(found) for _, found in self._salvage(node, is_statement))
        return [s for s in recovered if s is not None]

    # ------------------------------------------------------------------
    # Compilation unit and declarations
    # ------------------------------------------------------------------

    def lower(self) -> CompilationUnit:
        children: List[Node] = []
        top_level: List[TSNode] = []
        for child in self.root.children:
            if child.type == 'global_statement':
                top_level.extend(c for c in child.named_children if c.type != 'comment')
            else:
                children.extend(self.declaration(child))
        if top_level:
            statements = [s for s in (self.statement(s) for s in top_level) if s is not None]
            span = self.span_of(top_level[0], top_level[-1])
            body = make_node(BLOCK, span, children=statements)
            children.append(make_node(METHOD, span, TOP_LEVEL_MEMBER, [body], name_span=span,
                                      modifiers=('static',)))
        root = make_node(UNIT, self.span(self.root), children=children)
        if self.root.has_error:
            logger.debug("%s: syntax errors, %d subtree(s) skipped", self.file_path, self.error_count)
        return CompilationUnit(self.file_path, 'csharp', root, self.source_code)

    def declaration(self, node: TSNode) -> List[Node]:
        kind = node.type
        if kind == 'ERROR' or node.is_missing:
            return [self.error(node)] + self.recover_declarations(node)
        if kind in ('namespace_declaration', 'file_scoped_namespace_declaration'):
            return [self.namespace(node)]
        if kind == 'declaration_list':
            return [d for child in node.named_children for d in self.declaration(child)]
        if kind in TYPE_DECLARATIONS:
            return [self.type_declaration(node)]
        if kind.startswith('global_attribute'):
            return self.global_attributes(node)
        return []

    def namespace(self, node: TSNode) -> Node:
        children: List[Node] = []
        for child in node.named_children:
            children.extend(self.declaration(child))
        name = node.child_by_field_name('name')
        return make_node(NAMESPACE, self.span(node), node_text(name), children)

    def global_attributes(self, node: TSNode) -> List[Node]:
        target = get_child_by_type(node, 'attribute_target_specifier')
        target_text = node_text(target).rstrip(':').strip() if target is not None else ''
        if not target_text:
            # Newer grammars expose the target as a bare keyword child
            for child in node.children:
                if child.type in ('assembly', 'module'):
                    target_text = child.type
        attributes = []
        for attribute in self._descendants(node, 'attribute'):
            name = field_or_type(attribute, 'name', 'identifier', 'qualified_name')
            arguments = []
            argument_list = get_child_by_type(attribute, 'attribute_argument_list')
            if argument_list is not None:
                for argument in get_children_by_type(argument_list, 'attribute_argument'):
                    values = [c for c in argument.named_children
                              if c.type not in ('name_equals', 'name_colon')]
                    if values:
                        arguments.append(unquote(node_text(values[-1])))
            attributes.append(make_node(ATTRIBUTE, self.span(attribute), node_text(name),
                                        target=target_text.lower(), arguments=tuple(arguments)))
        return attributes

    def _descendants(self, node: TSNode, type_name: str) -> List[TSNode]:
        found, stack = [], [node]
        while stack:
            current = stack.pop()
            if current.type == type_name:
                found.append(current)
                continue
            stack.extend(reversed(current.children))
        return found

    def type_declaration(self, node: TSNode) -> Node:
        name = node.child_by_field_name('name')
        bases = []
        base_list = get_child_by_type(node, 'base_list')
        if base_list is not None:
            for base in base_list.named_children:
                if base.type == 'primary_constructor_base_type':
                    base = base.named_children[0] if base.named_children else base
                if base.type not in ('argument_list', 'comment'):
                    bases.append(node_text(base))
        children: List[Node] = []
        body = field_or_type(node, 'body', 'declaration_list', 'enum_member_declaration_list')
        if body is not None:
            for member in body.named_children:
                children.extend(self.member(member, node_text(name)))
        return make_node(TYPE, self.span(node), node_text(name), children,
                         name_span=self.span(name) if name is not None else None,
                         bases=tuple(bases), type_kind=TYPE_DECLARATIONS[node.type],
                         modifiers=self.modifiers(node))

    def modifiers(self, node: TSNode) -> Tuple[str, ...]:
        found = []
        for child in node.children:
            if child.type == 'modifier':
                found.append(node_text(child))
            elif child.type == 'modifiers':
                found.extend(node_text(c) for c in child.children)
        return tuple(found)

    def member(self, node: TSNode, type_name: str) -> List[Node]:
        lowered = self._member(node, type_name)
        if node.has_error and node.type not in TYPE_DECLARATIONS:
            lowered.extend(self.recover_members(node, type_name))
        return lowered

    def _member(self, node: TSNode, type_name: str) -> List[Node]:
        kind = node.type
        if kind == 'ERROR' or node.is_missing:
            return [self.error(node)]
        if kind in TYPE_DECLARATIONS:
            return [self.type_declaration(node)]
        if kind in ('field_declaration', 'event_field_declaration'):
            return self.fields(node)
        if kind == 'property_declaration':
            return [self.property(node)]
        if kind == 'indexer_declaration':
            return [self.property(node, name='this[]')]
        if kind in METHOD_LIKE:
            return [self.method(node)]
        if kind == 'constructor_declaration':
            return [self.constructor(node, type_name)]
        return []

    def fields(self, node: TSNode) -> List[Node]:
        declaration = get_child_by_type(node, 'variable_declaration')
        if declaration is None:
            return []
        type_text = node_text(declaration.child_by_field_name('type'))
        modifiers = self.modifiers(node)
        fields = []
        for declarator in get_children_by_type(declaration, 'variable_declarator'):
            name, value = self.declarator_parts(declarator)
            init = self.expression(value, target_type=type_text) if value is not None else None
            fields.append(make_node(FIELD, self.span(declarator), node_text(name), [init],
                                    name_span=self.span(name) if name is not None else None,
                                    type=type_text, modifiers=modifiers))
        return fields

    def declarator_parts(self, declarator: TSNode) -> Tuple[Optional[TSNode], Optional[TSNode]]:
        name = field_or_type(declarator, 'name', 'identifier')
        equals = get_child_by_type(declarator, 'equals_value_clause')
        if equals is not None:
            return name, equals.named_children[0] if equals.named_children else None
        seen_equals = False
        for child in declarator.children:
            if child.type == '=':
                seen_equals = True
            elif seen_equals and child.is_named:
                return name, child
        return name, None

    def property(self, node: TSNode, name: Optional[str] = None) -> Node:
        name_node = node.child_by_field_name('name')
        prop_name = name or node_text(name_node)
        type_text = node_text(node.child_by_field_name('type'))
        children: List[Node] = list(self.parameters(node))
        accessors = field_or_type(node, 'accessors', 'accessor_list')
        if accessors is not None:
            for accessor in get_children_by_type(accessors, 'accessor_declaration'):
                children.append(self.accessor(accessor, prop_name, type_text))
        arrow = get_child_by_type(node, 'arrow_expression_clause')
        if arrow is not None:
            body = self.expression_body(arrow, returns=True)
            children.append(make_node(ACCESSOR, self.span(arrow), 'get', [body],
                                      name_span=self.span(arrow), property=prop_name,
                                      type=type_text))
        value = node.child_by_field_name('value')
        if value is None:
            equals = get_child_by_type(node, 'equals_value_clause')
            if equals is not None and equals.named_children:
                value = equals.named_children[0]
        if value is not None:
            children.append(self.expression(value, target_type=type_text))
        return make_node(PROPERTY, self.span(node), prop_name, children,
                         name_span=self.span(name_node) if name_node is not None else None,
                         type=type_text, modifiers=self.modifiers(node))

    def accessor(self, node: TSNode, prop_name: str, type_text: str) -> Node:
        keyword = node.child_by_field_name('name')
        if keyword is None:
            keyword = get_child_by_type(node, 'get', 'set', 'init', 'add', 'remove')
        body = self.method_body(node, returns=node_text(keyword) == 'get')
        return make_node(ACCESSOR, self.span(node), node_text(keyword) or 'get', [body],
                         name_span=self.span(keyword) if keyword is not None else None,
                         property=prop_name, type=type_text, modifiers=self.modifiers(node))

    def method_body(self, node: TSNode, returns: bool) -> Optional[Node]:
        body = field_or_type(node, 'body', 'block', 'arrow_expression_clause')
        if body is None:
            return None
        if body.type == 'arrow_expression_clause':
            return self.expression_body(body, returns)
        if body.type == 'block':
            return self.block(body)
        return None

    def expression_body(self, arrow: TSNode, returns: bool) -> Node:
        """``=> expr`` becomes a block holding one return or expression statement."""
        expression = self.expression(arrow.named_children[0]) if arrow.named_children else None
        statement = make_node(RETURN if returns else EXPR_STMT, self.span(arrow), children=[expression])
        return make_node(BLOCK, self.span(arrow), children=[statement])

    def parameters(self, node: TSNode) -> List[Node]:
        parameter_list = field_or_type(node, 'parameters', 'parameter_list', 'bracketed_parameter_list')
        if parameter_list is None:
            return []
        params = []
        for parameter in parameter_list.named_children:
            if parameter.type != 'parameter':
                continue
            name = parameter.child_by_field_name('name')
            params.append(make_node(PARAMETER, self.span(parameter), node_text(name),
                                    name_span=self.span(name) if name is not None else None,
                                    type=node_text(parameter.child_by_field_name('type'))))
        return params

    def method(self, node: TSNode) -> Node:
        name = node.child_by_field_name('name')
        returns = node.child_by_field_name('returns') or node.child_by_field_name('type')
        return_text = node_text(returns)
        if node.type == 'destructor_declaration':
            method_name = 'Finalize'
        elif name is not None:
            method_name = node_text(name)
        else:
            method_name = 'operator'
        body = self.method_body(node, returns=return_text not in ('', 'void'))
        children = self.parameters(node) + [body]
        return make_node(METHOD, self.span(node), method_name, children,
                         name_span=self.span(name) if name is not None else self.span(node),
                         type=return_text, modifiers=self.modifiers(node))

    def constructor(self, node: TSNode, type_name: str) -> Node:
        name = node.child_by_field_name('name')
        children: List[Node] = self.parameters(node)
        chain = None
        initializer = get_child_by_type(node, 'constructor_initializer')
        if initializer is not None:
            for child in initializer.children:
                if child.type in ('this', 'base'):
                    chain = child.type
            arguments = get_child_by_type(initializer, 'argument_list')
            if arguments is not None:
                for argument in self.arguments(arguments):
                    children.append(make_node(EXPR_STMT, argument.span, children=[argument]))
        children.append(self.method_body(node, returns=False))
        return make_node(CONSTRUCTOR, self.span(node), node_text(name) or type_name, children,
                         name_span=self.span(name) if name is not None else None,
                         modifiers=self.modifiers(node), chain=chain)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def block(self, node: TSNode) -> Node:
        statements = []
        for child in node.named_children:
            lowered = self.statement(child)
            if lowered is not None:
                statements.append(lowered)
            if child.type == 'ERROR':
                statements.extend(self.recover_statements(child))
        return make_node(BLOCK, self.span(node), children=statements)

    def arm(self, node: Optional[TSNode]) -> Optional[Node]:
        """A branch or loop body, always a block."""
        if node is None:
            return None
        if node.type == 'block':
            return self.block(node)
        lowered = self.statement(node)
        return make_node(BLOCK, self.span(node), children=[lowered])

    def statement(self, node: TSNode) -> Optional[Node]:
        kind = node.type
        span = self.span(node)
        if kind == 'comment':
            return None
        if kind == 'ERROR' or node.is_missing:
            return self.error(node)
        if kind == 'block':
            return self.block(node)
        if kind == 'local_declaration_statement':
            return self.local_declaration(node)
        if kind == 'expression_statement':
            inner = node.named_children[0] if node.named_children else None
            return make_node(EXPR_STMT, span, children=[self.expression(inner)])
        if kind == 'if_statement':
            return self.if_chain(node)
        if kind == 'switch_statement':
            return self.switch(node)
        if kind in ('while_statement', 'do_statement', 'for_statement', 'foreach_statement'):
            return self.loop(node)
        if kind == 'try_statement':
            return self.try_statement(node)
        if kind == 'using_statement':
            return self.using(node)
        if kind in SCOPE_STATEMENTS:
            children = [self.expression(c) if not is_statement(c) else self.statement(c)
                        for c in node.named_children if c.type not in SKIPPED]
            return make_node(SCOPE, span, children=children)
        if kind == 'return_statement':
            return make_node(RETURN, span, children=[self.expression(c) for c in node.named_children])
        if kind == 'throw_statement':
            return make_node(THROW, span, children=[self.expression(c) for c in node.named_children])
        if kind == 'yield_statement':
            return make_node(EXPR_STMT, span, children=[self.expression(c) for c in node.named_children])
        if kind == 'local_function_statement':
            return self.local_function(node)
        if kind == 'labeled_statement':
            inner = [c for c in node.named_children if is_statement(c)]
            return self.statement(inner[0]) if inner else make_node(STMT, span)
        return make_node(STMT, span)

    def local_declaration(self, node: TSNode) -> Node:
        declaration = get_child_by_type(node, 'variable_declaration')
        if declaration is None:
            return make_node(STMT, self.span(node))
        locals_ = self.variable_declaration(declaration)
        if len(locals_) == 1:
            return locals_[0]
        return make_node(STMT, self.span(node), children=locals_)

    def variable_declaration(self, declaration: TSNode) -> List[Node]:
        type_text = node_text(declaration.child_by_field_name('type'))
        locals_ = []
        for declarator in get_children_by_type(declaration, 'variable_declarator'):
            name, value = self.declarator_parts(declarator)
            init = self.expression(value, target_type=type_text) if value is not None else None
            locals_.append(make_node(LOCAL, self.span(declarator), node_text(name), [init],
                                     name_span=self.span(name) if name is not None else None,
                                     type=type_text))
        return locals_

    def if_chain(self, node: TSNode) -> Node:
        """if / else if / else flattened into one branch."""
        children: List[Node] = []
        exhaustive = False
        current: Optional[TSNode] = node
        while current is not None:
            children.append(self.expression(current.child_by_field_name('condition')))
            children.append(self.arm(current.child_by_field_name('consequence')))
            alternative = current.child_by_field_name('alternative')
            if alternative is not None and alternative.type == 'else_clause':
                alternative = alternative.named_children[0] if alternative.named_children else None
            if alternative is None:
                current = None
            elif alternative.type == 'if_statement':
                current = alternative
            else:
                children.append(self.arm(alternative))
                exhaustive = True
                current = None
        return make_node(BRANCH, self.span(node), children=children, exhaustive=exhaustive)

    def switch(self, node: TSNode) -> Node:
        children: List[Node] = [self.expression(node.child_by_field_name('value'))]
        exhaustive = False
        body = field_or_type(node, 'body', 'switch_body')
        sections = get_children_by_type(body, 'switch_section') if body is not None else []
        for section in sections:
            statements = []
            for child in section.children:
                if child.type in ('default', 'default_switch_label'):
                    exhaustive = True
                elif child.is_named and (is_statement(child) or child.type == 'ERROR'):
                    lowered = self.statement(child)
                    if lowered is not None:
                        statements.append(lowered)
            children.append(make_node(BLOCK, self.span(section), children=statements))
        return make_node(BRANCH, self.span(node), children=children, exhaustive=exhaustive)

    def loop(self, node: TSNode) -> Node:
        headers: List[Node] = []
        body = node.child_by_field_name('body')
        if node.type == 'foreach_statement':
            headers.append(self.expression(node.child_by_field_name('right')))
            left = node.child_by_field_name('left')
            if left is not None:
                headers.append(make_node(LOCAL, self.span(left), node_text(left),
                                         name_span=self.span(left),
                                         type=node_text(node.child_by_field_name('type'))))
        else:
            for child in node.named_children:
                if child == body or child.type in SKIPPED:
                    continue
                if child.type == 'variable_declaration':
                    headers.extend(self.variable_declaration(child))
                elif not is_statement(child):
                    headers.append(self.expression(child))
        if body is None:
            statements = [c for c in node.named_children if is_statement(c)]
            body = statements[0] if statements else None
        return make_node(LOOP, self.span(node), children=headers + [self.arm(body)])

    def try_statement(self, node: TSNode) -> Node:
        body = field_or_type(node, 'body', 'block')
        children: List[Node] = [self.block(body)] if body is not None else []
        for clause in node.named_children:
            if clause.type == 'catch_clause':
                parts: List[Node] = []
                declaration = get_child_by_type(clause, 'catch_declaration')
                if declaration is not None:
                    name = declaration.child_by_field_name('name')
                    if name is not None:
                        parts.append(make_node(LOCAL, self.span(declaration), node_text(name),
                                               name_span=self.span(name),
                                               type=node_text(declaration.child_by_field_name('type'))))
                filter_clause = get_child_by_type(clause, 'catch_filter_clause')
                if filter_clause is not None and filter_clause.named_children:
                    parts.append(self.expression(filter_clause.named_children[0]))
                block = field_or_type(clause, 'body', 'block')
                if block is not None:
                    parts.append(self.block(block))
                children.append(make_node(CATCH, self.span(clause), children=parts))
            elif clause.type == 'finally_clause':
                block = get_child_by_type(clause, 'block')
                children.append(make_node(FINALLY, self.span(clause),
                                          children=[self.block(block)] if block is not None else []))
        return make_node(TRY, self.span(node), children=children)

    def using(self, node: TSNode) -> Node:
        children: List[Node] = []
        body = node.child_by_field_name('body')
        for child in node.named_children:
            if child == body or child.type in SKIPPED:
                continue
            if child.type == 'variable_declaration':
                children.extend(self.variable_declaration(child))
            elif not is_statement(child):
                children.append(self.expression(child))
        if body is None:
            statements = [c for c in node.named_children if is_statement(c)]
            body = statements[-1] if statements else None
        if body is not None:
            children.append(self.arm(body))
        return make_node(SCOPE, self.span(node), children=children)

    def local_function(self, node: TSNode) -> Node:
        name = node.child_by_field_name('name')
        returns = node.child_by_field_name('returns') or node.child_by_field_name('type')
        body = self.method_body(node, returns=node_text(returns) not in ('', 'void'))
        return make_node(LOCAL_FUNCTION, self.span(node), node_text(name),
                         self.parameters(node) + [body],
                         name_span=self.span(name) if name is not None else None,
                         type=node_text(returns), modifiers=self.modifiers(node))

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def expression(self, node: Optional[TSNode], target_type: Optional[str] = None) -> Optional[Node]:
        if node is None:
            return None
        kind = node.type
        span = self.span(node)
        if kind == 'ERROR' or node.is_missing:
            return self.error(node)
        if kind in ('parenthesized_expression', 'ref_expression', 'checked_expression',
                    'postfix_unary_expression') and len(node.named_children) == 1:
            return self.expression(node.named_children[0], target_type)
        if kind in ('identifier', 'generic_name'):
            identifier = node if kind == 'identifier' else get_child_by_type(node, 'identifier')
            return make_node(NAME, span, node_text(identifier), name_span=span)
        if kind in THIS_NODES:
            return make_node(THIS, span)
        if kind in BASE_NODES:
            return make_node(BASE, span)
        if kind in LITERAL_KINDS:
            return make_node(LITERAL, span, text=node_text(node), literal=LITERAL_KINDS[kind])
        if kind == 'member_access_expression':
            return self.member_access(node)
        if kind == 'conditional_access_expression':
            return self.conditional_access(node)
        if kind == 'qualified_name':
            return self.qualified_name(node)
        if kind == 'assignment_expression':
            return self.assignment(node)
        if kind == 'invocation_expression':
            callee = self.expression(field_or_type(node, 'function')) or make_node(EXPR, span)
            arguments = field_or_type(node, 'arguments', 'argument_list')
            args = self.arguments(arguments) if arguments is not None else []
            return make_node(INVOKE, span, children=[callee] + args,
                             arg_names=self.argument_names(arguments))
        if kind in ('object_creation_expression', 'implicit_object_creation_expression'):
            return self.creation(node, target_type)
        if kind in ('lambda_expression', 'anonymous_method_expression'):
            return self.lambda_expression(node)
        if kind == 'cast_expression':
            type_node = node.child_by_field_name('type')
            value = node.child_by_field_name('value')
            return make_node(CAST, span, node_text(type_node), [self.expression(value)])
        if kind == 'as_expression':
            named = node.named_children
            if len(named) == 2:
                return make_node(CAST, span, node_text(named[1]), [self.expression(named[0])])
        if kind == 'conditional_expression':
            return make_node(CONDITIONAL, span, children=[
                self.expression(node.child_by_field_name('condition')),
                self.expression(node.child_by_field_name('consequence'), target_type),
                self.expression(node.child_by_field_name('alternative'), target_type),
            ])
        if kind == 'declaration_expression':
            name = node.child_by_field_name('name')
            return make_node(LOCAL, span, node_text(name),
                             name_span=self.span(name) if name is not None else None,
                             type=node_text(node.child_by_field_name('type')))
        children = [self.expression(c) for c in node.named_children if c.type not in SKIPPED]
        return make_node(EXPR, span, children=children, text=node_text(node)[:80])

    def member_access(self, node: TSNode) -> Node:
        receiver = field_or_type(node, 'expression')
        name = node.child_by_field_name('name')
        if name is not None and name.type == 'generic_name':
            name = get_child_by_type(name, 'identifier') or name
        if receiver is None:
            return make_node(NAME, self.span(node), node_text(name), name_span=self.span(node))
        return make_node(MEMBER, self.span(node), node_text(name), [self.expression(receiver)],
                         name_span=self.span(name) if name is not None else None)

    def qualified_name(self, node: TSNode) -> Node:
        qualifier = node.child_by_field_name('qualifier')
        name = node.child_by_field_name('name')
        if qualifier is None or name is None:
            named = node.named_children
            qualifier, name = (named[0], named[-1]) if len(named) >= 2 else (None, node)
        if qualifier is None:
            return make_node(NAME, self.span(node), node_text(name), name_span=self.span(node))
        return make_node(MEMBER, self.span(node), node_text(name), [self.expression(qualifier)],
                         name_span=self.span(name))

    def conditional_access(self, node: TSNode) -> Node:
        named = node.named_children
        if len(named) == 2 and named[1].type == 'member_binding_expression':
            name = named[1].child_by_field_name('name') or get_child_by_type(named[1], 'identifier')
            return make_node(MEMBER, self.span(node), node_text(name), [self.expression(named[0])],
                             name_span=self.span(name) if name is not None else None)
        return make_node(EXPR, self.span(node), children=[self.expression(c) for c in named
                                                           if c.type not in SKIPPED])

    def assignment(self, node: TSNode) -> Node:
        left = node.child_by_field_name('left')
        right = node.child_by_field_name('right')
        if left is None or right is None:
            named = node.named_children
            left, right = named[0], named[-1]
        operator = self.source_bytes[left.end_byte:right.start_byte].decode('utf-8', errors='replace')
        return make_node(ASSIGN, self.span(node), children=[self.expression(left), self.expression(right)],
                         op=operator.strip() or '=')

    def arguments(self, argument_list: TSNode) -> List[Node]:
        args = []
        for argument in argument_list.named_children:
            if argument.type != 'argument':
                continue
            values = [c for c in argument.named_children if c.type not in SKIPPED]
            if values:
                args.append(self.expression(values[-1]))
        return args

    def argument_names(self, argument_list: Optional[TSNode]) -> Tuple[Optional[str], ...]:
        if argument_list is None:
            return ()
        names = []
        for argument in get_children_by_type(argument_list, 'argument'):
            colon = get_child_by_type(argument, 'name_colon')
            names.append(node_text(colon).rstrip(':').strip() if colon is not None else None)
        return tuple(names)

    def creation(self, node: TSNode, target_type: Optional[str]) -> Node:
        type_node = node.child_by_field_name('type')
        arguments = field_or_type(node, 'arguments', 'argument_list')
        initializer = field_or_type(node, 'initializer', 'initializer_expression')
        children: List[Node] = self.arguments(arguments) if arguments is not None else []
        if initializer is not None:
            children.append(self.object_initializer(initializer))
        attrs = {}
        if type_node is None and target_type:
            attrs['target_type'] = target_type
        return make_node(NEW, self.span(node), node_text(type_node) or None, children,
                         name_span=self.span(type_node) if type_node is not None else None,
                         **attrs)

    def object_initializer(self, node: TSNode) -> Node:
        items = []
        for child in node.named_children:
            if child.type == 'assignment_expression':
                left = child.child_by_field_name('left') or child.named_children[0]
                if left.type == 'identifier':
                    right = child.child_by_field_name('right') or child.named_children[-1]
                    target = make_node(NAME, self.span(left), node_text(left), name_span=self.span(left))
                    items.append(make_node(ASSIGN, self.span(child),
                                           children=[target, self.expression(right)], op='='))
                    continue
            if child.type not in SKIPPED:
                items.append(self.expression(child))
        return make_node(INITIALIZER, self.span(node), children=items)

    def lambda_expression(self, node: TSNode) -> Node:
        children: List[Node] = []
        parameters = field_or_type(node, 'parameters', 'parameter_list', 'implicit_parameter')
        if parameters is not None:
            if parameters.type in ('identifier', 'implicit_parameter'):
                children.append(make_node(PARAMETER, self.span(parameters), node_text(parameters),
                                          name_span=self.span(parameters)))
            else:
                children.extend(self.parameters(node))
        body = field_or_type(node, 'body', 'block')
        if body is not None:
            children.append(self.block(body) if body.type == 'block' else self.expression(body))
        return make_node(LAMBDA, self.span(node), children=children,
                         modifiers=self.modifiers(node))


def parse_csharp(source_code: str, file_path: str = '<source>') -> CompilationUnit:
    """Parse C# source into a compilation unit."""
    return CSharpFrontEnd(source_code, file_path).lower()
