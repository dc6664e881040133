#!/usr/bin/env python3
"""
Visual Basic Front End
======================
Tokenizer and recursive-descent parser for the Visual Basic subset the
detector needs, lowering straight into the structural model of
``xxehunter_model``.

Covered constructs:
- Imports/Option, Namespace, Class/Module/Structure/Interface, Inherits/Implements
- fields, auto and Get/Set properties, Sub/Function/Sub New, Operator
- Dim/Static/Const with As, As New and With {...} / From {...} initializers
- If/ElseIf/Else (block and single line), Select Case, For/For Each/While/Do
- Try/Catch/Finally, Using, SyncLock, With blocks (.Member inside With)
- single- and multi-line lambdas, Call, Me/MyBase/MyClass, Nothing
- CType/DirectCast/TryCast and the C* conversions, If(...), AddressOf, Await
- explicit " _" and implicit line continuation
- <Assembly: ...> attributes

A ``With`` block is lowered to a scope that declares a synthetic local
holding the With target; ``.Member`` inside the block reads through it.
A statement the parser cannot read becomes an ``error`` node and parsing
resumes on the next line.
"""

import logging
import re
from typing import List, NamedTuple, Optional, Tuple

from xxehunter_model import (
    ACCESSOR, ASSIGN, ATTRIBUTE, BASE, BLOCK, BRANCH, CAST, CATCH, CONDITIONAL, CONSTRUCTOR,
    ERROR, EXPR, EXPR_STMT, FIELD, FINALLY, INITIALIZER, INVOKE, LAMBDA, LITERAL, LOCAL, LOOP,
    MEMBER, METHOD, NAME, NAMESPACE, NEW, PARAMETER, PROPERTY, RETURN, SCOPE, STMT, THIS, THROW,
    TRY, TYPE, UNIT, CompilationUnit, Node, Span, make_node, span_between,
)

logger = logging.getLogger(__name__)


class VbSyntaxError(Exception):
    """Raised inside the parser; never escapes ``parse_vb``."""

    def __init__(self, message: str, token: 'Token'):
        super().__init__(f"{message} at {token.line}:{token.column} ({token.value!r})")
        self.token = token


# ============================================================================
# Tokenizer
# ============================================================================

class Token(NamedTuple):
    kind: str  # ident, name (bracketed), string, char, int, real, date, op, nl, eof
    value: str
    line: int
    column: int
    end_column: int

    @property
    def lower(self) -> str:
        return self.value.lower() if self.kind in ('ident', 'op') else ''

    @property
    def span(self) -> Span:
        return Span(self.line, self.column, self.line, self.end_column)


_IDENT = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')
_NUMBER = re.compile(r'\d[\d_]*(?:\.\d+)?(?:[eE][+-]?\d+)?[A-Za-z@!#%&]*|\.\d+(?:[eE][+-]?\d+)?[A-Za-z@!#]*')
_RADIX = re.compile(r'&[hHoObB][0-9A-Fa-f_]+[A-Za-z%&]*')
_OPERATORS = ('<<=', '>>=', ':=', '<>', '<=', '>=', '+=', '-=', '*=', '/=', '\\=', '^=', '&=',
              '<<', '>>', '?.', '(', ')', '{', '}', ',', '.', '=', '<', '>', '+', '-', '*', '/',
              '\\', '^', '&', ':', '?', '!', '@')
_REAL_SUFFIX = re.compile(r'[dDfFrR@!#]$')


def _is_continuation(text: str, pos: int) -> bool:
    """`` _`` at the end of a line, optionally followed by a comment."""
    if pos > 0 and text[pos - 1] not in ' \t':
        return False
    rest = text[pos + 1:].lstrip()
    return rest == '' or rest.startswith("'")


def _scan_string(text: str, pos: int) -> int:
    """Index just past the closing quote of the string starting at ``pos``."""
    i = pos + 1
    while i < len(text):
        if text[i] == '"':
            if i + 1 < len(text) and text[i + 1] == '"':
                i += 2
                continue
            return i + 1
        i += 1
    return len(text)


def tokenize(source: str) -> List[Token]:
    tokens: List[Token] = []
    for line_number, text in enumerate(source.splitlines(), start=1):
        if text.lstrip().startswith('#'):
            # Preprocessor directives (#Region, #If, #Disable Warning ...)
            continue
        continued = False
        emitted = False
        pos = 0
        while pos < len(text):
            ch = text[pos]
            if ch in ' \t\f\v ':
                pos += 1
                continue
            if ch in "'‘’":
                break
            if ch == '_' and _is_continuation(text, pos):
                continued = True
                break
            start = pos
            kind = None
            if ch == '"' or (ch == '$' and text[pos + 1:pos + 2] == '"'):
                pos = _scan_string(text, pos + (1 if ch == '$' else 0))
                kind = 'string'
                if pos < len(text) and text[pos] in 'cC' and not _IDENT.match(text, pos + 1):
                    pos += 1
                    kind = 'char'
            elif ch == '#':
                end = text.find('#', pos + 1)
                pos = end + 1 if end > 0 else len(text)
                kind = 'date'
            elif ch == '[':
                end = text.find(']', pos + 1)
                if end > pos + 1 and _IDENT.fullmatch(text[pos + 1:end]):
                    tokens.append(Token('name', text[pos + 1:end], line_number, pos + 1, end + 2))
                    emitted = True
                    pos = end + 1
                    continue
                pos += 1
                kind = 'op'
            elif ch.isdigit() or (ch == '.' and text[pos + 1:pos + 2].isdigit()):
                match = _NUMBER.match(text, pos)
                pos = match.end()
                literal = match.group()
                kind = 'real' if ('.' in literal or 'e' in literal.lower().rstrip('@!#%&')
                                  and not literal.lower().startswith('&')
                                  or _REAL_SUFFIX.search(literal)) else 'int'
            elif ch == '&' and _RADIX.match(text, pos):
                pos = _RADIX.match(text, pos).end()
                kind = 'int'
            elif ch.isalpha() or ch == '_':
                match = _IDENT.match(text, pos)
                word = match.group()
                if word.lower() == 'rem':
                    break
                pos = match.end()
                kind = 'ident'
            else:
                for op in _OPERATORS:
                    if text.startswith(op, pos):
                        pos += len(op)
                        break
                else:
                    pos += 1
                kind = 'op'
            tokens.append(Token(kind, text[start:pos], line_number, start + 1, pos + 1))
            emitted = True
        if emitted and not continued:
            tokens.append(Token('nl', '\n', line_number, len(text) + 1, len(text) + 1))
    last_line = source.count('\n') + 1
    tokens.append(Token('eof', '', last_line, 1, 1))
    return tokens


# ============================================================================
# Keyword tables
# ============================================================================

MODIFIERS = {
    'public', 'private', 'protected', 'friend', 'partial', 'mustinherit', 'notinheritable',
    'shared', 'shadows', 'overridable', 'overrides', 'notoverridable', 'mustoverride',
    'overloads', 'readonly', 'writeonly', 'default', 'widening', 'narrowing', 'async',
    'iterator', 'withevents',
}

TYPE_KEYWORDS = {'class': 'class', 'module': 'module', 'structure': 'struct',
                 'interface': 'interface', 'enum': 'enum'}

BLOCK_KEYWORDS = {'sub', 'function', 'property', 'get', 'set', 'if', 'select', 'try', 'while',
                  'using', 'synclock', 'with', 'class', 'module', 'structure', 'namespace',
                  'interface', 'enum', 'event', 'operator', 'addhandler', 'removehandler',
                  'raiseevent'}

RESERVED = {
    'and', 'andalso', 'as', 'case', 'catch', 'dim', 'do', 'each', 'else', 'elseif', 'end',
    'finally', 'for', 'from', 'handles', 'implements', 'in', 'inherits', 'is', 'isnot', 'like',
    'loop', 'mod', 'next', 'not', 'of', 'or', 'orelse', 'select', 'step', 'then', 'to', 'try',
    'until', 'when', 'while', 'with', 'xor', 'using', 'synclock', 'return', 'throw', 'imports',
}

SIMPLE_STATEMENTS = {'exit', 'continue', 'goto', 'stop', 'redim', 'erase', 'resume', 'on',
                     'raiseevent', 'error', 'yield'}

CONVERSIONS = {
    'cbool': 'Boolean', 'cbyte': 'Byte', 'cchar': 'Char', 'cdate': 'Date', 'cdbl': 'Double',
    'cdec': 'Decimal', 'cint': 'Integer', 'clng': 'Long', 'cobj': 'Object', 'csbyte': 'SByte',
    'cshort': 'Short', 'csng': 'Single', 'cstr': 'String', 'cuint': 'UInteger',
    'culng': 'ULong', 'cushort': 'UShort',
}

_BINARY_LEVELS = (
    {'or', 'orelse', 'xor'},
    {'and', 'andalso'},
    'not',
    {'=', '<>', '<', '>', '<=', '>=', 'is', 'isnot', 'like'},
    {'&'},
    {'<<', '>>'},
    {'+', '-'},
    {'mod'},
    {'\\'},
    {'*', '/'},
)

ASSIGNMENT_OPERATORS = {'=', '+=', '-=', '*=', '/=', '\\=', '^=', '&=', '<<=', '>>='}


# ============================================================================
# Parser
# ============================================================================

class VbParser:
    """Recursive-descent parser producing model nodes directly."""

    def __init__(self, tokens: List[Token], file_path: str = '<source>'):
        self.tokens = tokens
        self.file_path = file_path
        self.pos = 0
        self.last = tokens[0]
        self.error_count = 0
        self._with_stack: List[str] = []
        self._with_counter = 0

    # ------------------------------------------------------------------
    # Token plumbing
    # ------------------------------------------------------------------

    @property
    def tok(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 1) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.tok
        if token.kind != 'eof':
            self.pos += 1
            if token.kind != 'nl':
                self.last = token
        return token

    def at(self, *words: str) -> bool:
        for offset, word in enumerate(words):
            token = self.peek(offset)
            if token.kind in ('nl', 'eof') or token.lower != word:
                return False
        return True

    def accept(self, *words: str) -> bool:
        if not self.at(*words):
            return False
        for _ in words:
            self.advance()
        return True

    def expect(self, *words: str) -> Token:
        first = self.tok
        if not self.accept(*words):
            raise VbSyntaxError(f"expected {' '.join(words)!r}", self.tok)
        return first

    def at_eof(self) -> bool:
        return self.tok.kind == 'eof'

    def at_line_end(self) -> bool:
        return self.tok.kind in ('nl', 'eof')

    def at_end_of_statement(self) -> bool:
        return self.at_line_end() or (self.tok.kind == 'op' and self.tok.value == ':')

    def skip_newlines(self):
        while self.tok.kind == 'nl':
            self.advance()

    def skip_separators(self):
        while self.tok.kind == 'nl' or (self.tok.kind == 'op' and self.tok.value == ':'):
            self.advance()

    def skip_to_end_of_statement(self):
        while not self.at_end_of_statement():
            self.advance()

    def end_statement(self):
        if self.at_eof():
            return
        if not self.at_end_of_statement():
            raise VbSyntaxError("expected end of statement", self.tok)
        self.advance()

    def ident(self) -> Token:
        token = self.tok
        if token.kind == 'name' or (token.kind == 'ident' and token.lower not in RESERVED):
            return self.advance()
        raise VbSyntaxError("expected identifier", token)

    def any_word(self) -> Token:
        """Identifier after a dot, where keywords are allowed (``.New``, ``.Select``)."""
        if self.tok.kind in ('ident', 'name'):
            return self.advance()
        raise VbSyntaxError("expected member name", self.tok)

    def span_from(self, start: Token) -> Span:
        end = self.last
        if (end.line, end.column) < (start.line, start.column):
            end = start
        return Span(start.line, start.column, end.line, end.end_column)

    def span_after(self, first: Span) -> Span:
        return Span(first.start_line, first.start_column, self.last.line, self.last.end_column)

    def skip_balanced(self, opening: str, closing: str):
        self.expect(opening)
        depth = 1
        while depth and not self.at_eof():
            token = self.advance()
            if token.kind == 'nl':
                continue
            if token.value == opening:
                depth += 1
            elif token.value == closing:
                depth -= 1

    def capture_balanced(self) -> str:
        start = self.pos
        self.skip_balanced('(', ')')
        return ' '.join(t.value for t in self.tokens[start:self.pos] if t.kind != 'nl')

    def recover(self, start: Token, error: VbSyntaxError) -> Node:
        self.error_count += 1
        logger.debug("%s: %s", self.file_path, error)
        if self.tok is start and not self.at_eof():
            self.advance()
        while not self.at_line_end():
            self.advance()
        return make_node(ERROR, self.span_from(start), text=str(error))

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def parse_unit(self) -> List[Node]:
        children: List[Node] = []
        while True:
            self.skip_separators()
            if self.at_eof():
                break
            start = self.tok
            try:
                children.extend(self.parse_declaration())
            except VbSyntaxError as error:
                children.append(self.recover(start, error))
        return children

    def parse_declaration(self) -> List[Node]:
        start = self.tok
        if self.at('imports') or self.at('option'):
            self.skip_to_end_of_statement()
            return []
        if self.at('<'):
            return self.parse_attribute_block()
        if self.at('namespace'):
            return [self.parse_namespace()]
        modifiers = self.parse_modifiers()
        if self.tok.lower in TYPE_KEYWORDS:
            return [self.parse_type(modifiers, start)]
        raise VbSyntaxError("expected a declaration", self.tok)

    def parse_modifiers(self) -> Tuple[str, ...]:
        found = []
        while self.tok.kind == 'ident' and self.tok.lower in MODIFIERS:
            found.append(self.advance().value)
        return tuple(found)

    def parse_attribute_block(self) -> List[Node]:
        """``<Assembly: Name(args), ...>``; attributes on other targets are dropped."""
        self.expect('<')
        attributes = []
        while not self.at_eof():
            self.skip_newlines()
            start = self.tok
            target = ''
            if self.tok.kind == 'ident' and self.peek().value == ':':
                target = self.advance().lower
                self.advance()
            name = self.parse_type_name()
            arguments: List[str] = []
            if self.at('('):
                args, _ = self.parse_arguments()
                arguments = [_unquote(a.text) for a in args if a.kind == LITERAL]
            if target == 'assembly':
                attributes.append(make_node(ATTRIBUTE, self.span_from(start), name,
                                            target=target, arguments=tuple(arguments)))
            self.skip_newlines()
            if not self.accept(','):
                break
        self.expect('>')
        return attributes

    def parse_namespace(self) -> Node:
        start = self.expect('namespace')
        name = self.parse_type_name()
        self.end_statement()
        children: List[Node] = []
        while True:
            self.skip_separators()
            if self.at_eof() or self.at('end', 'namespace'):
                break
            member_start = self.tok
            try:
                children.extend(self.parse_declaration())
            except VbSyntaxError as error:
                children.append(self.recover(member_start, error))
        self.expect('end', 'namespace')
        return make_node(NAMESPACE, self.span_from(start), name, children)

    def parse_type(self, modifiers: Tuple[str, ...], start: Token) -> Node:
        keyword = self.advance().lower
        name_token = self.ident()
        if self.at('(', 'of'):
            self.skip_balanced('(', ')')
        self.end_statement()
        end_words = ('end', keyword)
        bases: List[str] = []
        children: List[Node] = []
        if keyword == 'enum':
            while not self.at_eof() and not self.at(*end_words):
                self.advance()
        while True:
            self.skip_separators()
            if self.at_eof() or self.at(*end_words):
                break
            member_start = self.tok
            try:
                if self.accept('inherits') or self.accept('implements'):
                    bases.append(self.parse_type_name())
                    while self.accept(','):
                        bases.append(self.parse_type_name())
                    continue
                children.extend(self.parse_member(name_token.value, keyword))
            except VbSyntaxError as error:
                children.append(self.recover(member_start, error))
        self.expect(*end_words)
        return make_node(TYPE, self.span_from(start), name_token.value, children,
                         name_span=name_token.span, bases=tuple(bases),
                         type_kind=TYPE_KEYWORDS[keyword], modifiers=modifiers)

    def parse_member(self, type_name: str, container: str) -> List[Node]:
        start = self.tok
        if self.at('<'):
            self.skip_balanced('<', '>')
            return []
        modifiers = self.parse_modifiers()
        if container == 'module':
            modifiers += ('Shared',)
        word = self.tok.lower
        if word in TYPE_KEYWORDS:
            return [self.parse_type(modifiers, start)]
        if word in ('sub', 'function', 'operator'):
            return [self.parse_method(word, modifiers, start, type_name, container)]
        if word == 'property':
            return [self.parse_property(modifiers, start, container)]
        if self.at('custom', 'event'):
            self.skip_until('end', 'event')
            return []
        if word in ('event', 'declare', 'delegate'):
            self.skip_to_end_of_statement()
            return []
        if word in ('dim', 'const'):
            self.advance()
        if self.tok.kind in ('ident', 'name'):
            return self.parse_declarators(FIELD, modifiers)
        raise VbSyntaxError("expected a member declaration", self.tok)

    def skip_until(self, *words: str):
        while not self.at_eof() and not self.at(*words):
            self.advance()
        self.expect(*words)

    def parse_method(self, kind: str, modifiers: Tuple[str, ...], start: Token,
                     type_name: str, container: str) -> Node:
        self.advance()
        if kind == 'operator':
            name_token = self.advance()
        else:
            name_token = self.any_word()
        if self.at('(', 'of'):
            self.skip_balanced('(', ')')
        params = self.parse_parameters() if self.at('(') else []
        return_type = None
        if self.accept('as'):
            while self.at('<'):
                self.skip_balanced('<', '>')
            return_type = self.parse_type_name()
        # Handles / Implements clauses
        self.skip_to_end_of_statement()
        lowered = {m.lower() for m in modifiers}
        body = None
        if container != 'interface' and 'mustoverride' not in lowered:
            self.end_statement()
            body = self.parse_block(('end', kind))
            self.expect('end', kind)
        if kind == 'sub' and name_token.lower == 'new':
            return make_node(CONSTRUCTOR, self.span_from(start), type_name, params + [body],
                             name_span=name_token.span, modifiers=modifiers,
                             chain=_constructor_chain(body))
        return make_node(METHOD, self.span_from(start), name_token.value, params + [body],
                         name_span=name_token.span, type=return_type, modifiers=modifiers)

    def parse_parameters(self) -> List[Node]:
        self.expect('(')
        self.skip_newlines()
        params = []
        while not self.at(')') and not self.at_eof():
            while self.at('<'):
                self.skip_balanced('<', '>')
            while self.tok.lower in ('byval', 'byref', 'optional', 'paramarray'):
                self.advance()
            start = self.tok
            name_token = self.ident()
            self._skip_array_suffix()
            type_text = self.parse_type_name() if self.accept('as') else None
            if self.accept('='):
                self.parse_expression()
            params.append(make_node(PARAMETER, self.span_from(start), name_token.value,
                                    name_span=name_token.span, type=type_text))
            self.skip_newlines()
            if not self.accept(','):
                break
            self.skip_newlines()
        self.skip_newlines()
        self.expect(')')
        return params

    def _skip_array_suffix(self):
        if self.at('?'):
            self.advance()
        while self.at('(') and self.peek().kind == 'op' and self.peek().value in (')', ','):
            self.skip_balanced('(', ')')

    def parse_property(self, modifiers: Tuple[str, ...], start: Token, container: str) -> Node:
        self.expect('property')
        name_token = self.ident()
        children: List[Node] = self.parse_parameters() if self.at('(') else []
        type_text = None
        init = None
        if self.accept('as'):
            if self.at('new'):
                init = self.parse_new()
                type_text = init.name
            else:
                type_text = self.parse_type_name()
        if self.accept('='):
            self.skip_newlines()
            init = self.parse_expression()
        self.skip_to_end_of_statement()
        lowered = {m.lower() for m in modifiers}
        if container != 'interface' and 'mustoverride' not in lowered and self._accessor_follows():
            while True:
                self.skip_separators()
                if self.at_eof() or self.at('end', 'property'):
                    break
                children.append(self.parse_accessor(name_token.value, type_text))
            self.expect('end', 'property')
        if init is not None:
            children.append(init)
        return make_node(PROPERTY, self.span_from(start), name_token.value, children,
                         name_span=name_token.span, type=type_text, modifiers=modifiers)

    def _accessor_follows(self) -> bool:
        index = self.pos
        while self.tokens[index].kind == 'nl' or self.tokens[index].value == ':':
            index += 1
        while self.tokens[index].kind == 'ident' and self.tokens[index].lower in MODIFIERS:
            index += 1
        return self.tokens[index].lower in ('get', 'set')

    def parse_accessor(self, prop_name: str, type_text: Optional[str]) -> Node:
        start = self.tok
        modifiers = self.parse_modifiers()
        if not (self.at('get') or self.at('set')):
            raise VbSyntaxError("expected Get or Set", self.tok)
        keyword = self.advance()
        params = self.parse_parameters() if self.at('(') else []
        self.end_statement()
        body = self.parse_block(('end', keyword.lower))
        self.expect('end', keyword.lower)
        return make_node(ACCESSOR, self.span_from(start), keyword.lower, params + [body],
                         name_span=keyword.span, property=prop_name, type=type_text,
                         modifiers=modifiers)

    def parse_declarators(self, kind: str, modifiers: Tuple[str, ...] = ()) -> List[Node]:
        """``a, b As T = x, c As New T(...)`` as one LOCAL or FIELD per name."""
        nodes: List[Node] = []
        pending: List[Token] = []
        while True:
            pending.append(self.ident())
            self._skip_array_suffix()
            type_text = None
            init = None
            if self.accept('as'):
                if self.at('new'):
                    init = self.parse_new()
                    type_text = init.name
                else:
                    type_text = self.parse_type_name()
            if self.accept('='):
                self.skip_newlines()
                init = self.parse_expression()
            if type_text is None and init is None and self.at(','):
                self.advance()
                continue
            for name_token in pending:
                value = init if name_token is pending[-1] else None
                nodes.append(make_node(kind, self.span_from(name_token), name_token.value,
                                       [value], name_span=name_token.span, type=type_text,
                                       modifiers=modifiers))
            pending = []
            if not self.accept(','):
                break
        return nodes

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def parse_block(self, *terminators: Tuple[str, ...]) -> Node:
        start = self.tok
        statements: List[Node] = []
        while True:
            self.skip_separators()
            if self.at_eof() or any(self.at(*t) for t in terminators):
                break
            if self.at('end') and self.peek().lower in BLOCK_KEYWORDS:
                break
            statement_start = self.tok
            try:
                statement = self.parse_statement()
                if not self.at_end_of_statement():
                    raise VbSyntaxError("unexpected token", self.tok)
            except VbSyntaxError as error:
                statement = self.recover(statement_start, error)
            if statement is not None:
                statements.append(statement)
        return self._block(statements, start)

    def _block(self, statements: List[Node], start: Token) -> Node:
        if statements:
            span = span_between(statements[0].span, statements[-1].span)
        else:
            span = Span(start.line, start.column, start.line, start.column)
        return make_node(BLOCK, span, children=statements)

    def parse_statement(self) -> Optional[Node]:
        start = self.tok
        word = start.lower if start.kind == 'ident' else ''
        if word in ('dim', 'static', 'const'):
            self.advance()
            while self.tok.lower in ('shared', 'readonly'):
                self.advance()
            declared = self.parse_declarators(LOCAL)
            if len(declared) == 1:
                return declared[0]
            return make_node(STMT, self.span_from(start), children=declared)
        if word == 'if':
            return self.parse_if()
        if word == 'select':
            return self.parse_select()
        if word == 'for':
            return self.parse_for()
        if word in ('while', 'do'):
            return self.parse_while() if word == 'while' else self.parse_do()
        if word == 'try':
            return self.parse_try()
        if word == 'using':
            return self.parse_using()
        if word == 'synclock':
            self.advance()
            target = self.parse_expression()
            body = self.parse_block(('end', 'synclock'))
            self.expect('end', 'synclock')
            return make_node(SCOPE, self.span_from(start), children=[target, body])
        if word == 'with':
            return self.parse_with()
        if word in ('return', 'throw'):
            self.advance()
            value = None if self.at_end_of_statement() else self.parse_expression()
            return make_node(RETURN if word == 'return' else THROW, self.span_from(start),
                             children=[value])
        if word == 'await':
            expression = self.parse_expression()
            return make_node(EXPR_STMT, self.span_from(start), children=[expression])
        if word == 'call':
            self.advance()
            expression = self.parse_expression()
            return make_node(EXPR_STMT, self.span_from(start), children=[_as_call(expression)])
        if word in ('addhandler', 'removehandler'):
            self.advance()
            parts = [self.parse_expression()]
            if self.accept(','):
                self.skip_newlines()
                parts.append(self.parse_expression())
            return make_node(EXPR_STMT, self.span_from(start),
                             children=[make_node(EXPR, self.span_from(start), children=parts)])
        if word in SIMPLE_STATEMENTS:
            self.skip_to_end_of_statement()
            return make_node(STMT, self.span_from(start))
        if word == 'end':
            if self.peek().kind in ('nl', 'eof'):
                self.advance()
                return make_node(STMT, self.span_from(start))
            raise VbSyntaxError("unexpected block end", start)

        target = self.parse_postfix()
        if self.tok.kind == 'op' and self.tok.value in ASSIGNMENT_OPERATORS:
            operator = self.advance().value
            self.skip_newlines()
            value = self.parse_expression()
            assign = make_node(ASSIGN, self.span_from(start), children=[target, value], op=operator)
            return make_node(EXPR_STMT, assign.span, children=[assign])
        return make_node(EXPR_STMT, self.span_from(start), children=[_as_call(target)])

    def parse_inline_statements(self) -> List[Node]:
        """Statements of a single-line If, up to the line end or Else."""
        statements = []
        while not self.at_line_end() and not self.at('else'):
            statement = self.parse_statement()
            if statement is not None:
                statements.append(statement)
            if not self.accept(':'):
                break
        return statements

    def parse_if(self) -> Node:
        start = self.expect('if')
        condition = self.parse_expression()
        self.accept('then')
        if not self.at_line_end():
            then_start = self.tok
            children = [condition, self._block(self.parse_inline_statements(), then_start)]
            exhaustive = False
            if self.accept('else'):
                else_start = self.tok
                children.append(self._block(self.parse_inline_statements(), else_start))
                exhaustive = True
            return make_node(BRANCH, self.span_from(start), children=children, exhaustive=exhaustive)

        arm_ends = (('elseif',), ('else',), ('end', 'if'))
        children = [condition, self.parse_block(*arm_ends)]
        exhaustive = False
        while True:
            if self.accept('elseif') or self.accept('else', 'if'):
                children.append(self.parse_expression())
                self.accept('then')
                children.append(self.parse_block(*arm_ends))
            elif self.accept('else'):
                children.append(self.parse_block(('end', 'if')))
                exhaustive = True
            else:
                break
        self.expect('end', 'if')
        return make_node(BRANCH, self.span_from(start), children=children, exhaustive=exhaustive)

    def parse_select(self) -> Node:
        start = self.expect('select')
        self.accept('case')
        children: List[Node] = [self.parse_expression()]
        exhaustive = False
        self.skip_separators()
        while self.accept('case'):
            if self.accept('else'):
                exhaustive = True
            else:
                while True:
                    if self.accept('is'):
                        self.advance()
                    children.append(self.parse_expression())
                    if self.accept('to'):
                        children.append(self.parse_expression())
                    if not self.accept(','):
                        break
            children.append(self.parse_block(('case',), ('end', 'select')))
        self.expect('end', 'select')
        return make_node(BRANCH, self.span_from(start), children=children, exhaustive=exhaustive)

    def parse_for(self) -> Node:
        start = self.expect('for')
        headers: List[Node] = []
        if self.accept('each'):
            name_token = self.ident()
            type_text = self.parse_type_name() if self.accept('as') else None
            self.expect('in')
            headers.append(self.parse_expression())
            headers.append(make_node(LOCAL, name_token.span, name_token.value,
                                     name_span=name_token.span, type=type_text))
        else:
            name_token = self.ident()
            type_text = self.parse_type_name() if self.accept('as') else None
            self.expect('=')
            initial = self.parse_expression()
            headers.append(make_node(LOCAL, self.span_from(name_token), name_token.value,
                                     [initial], name_span=name_token.span, type=type_text))
            self.expect('to')
            headers.append(self.parse_expression())
            if self.accept('step'):
                headers.append(self.parse_expression())
        body = self.parse_block(('next',))
        self.expect('next')
        while not self.at_end_of_statement():
            self.advance()
        return make_node(LOOP, self.span_from(start), children=headers + [body])

    def parse_while(self) -> Node:
        start = self.expect('while')
        condition = self.parse_expression()
        body = self.parse_block(('end', 'while'))
        self.expect('end', 'while')
        return make_node(LOOP, self.span_from(start), children=[condition, body])

    def parse_do(self) -> Node:
        start = self.expect('do')
        headers: List[Node] = []
        if self.accept('while') or self.accept('until'):
            headers.append(self.parse_expression())
        body = self.parse_block(('loop',))
        self.expect('loop')
        if self.accept('while') or self.accept('until'):
            headers.append(self.parse_expression())
        return make_node(LOOP, self.span_from(start), children=headers + [body])

    def parse_try(self) -> Node:
        start = self.expect('try')
        clause_ends = (('catch',), ('finally',), ('end', 'try'))
        children: List[Node] = [self.parse_block(*clause_ends)]
        while self.at('catch'):
            catch_start = self.advance()
            parts: List[Node] = []
            if not self.at_end_of_statement() and not self.at('when'):
                name_token = self.ident()
                type_text = self.parse_type_name() if self.accept('as') else None
                parts.append(make_node(LOCAL, self.span_from(name_token), name_token.value,
                                       name_span=name_token.span, type=type_text))
            if self.accept('when'):
                parts.append(self.parse_expression())
            parts.append(self.parse_block(*clause_ends))
            children.append(make_node(CATCH, self.span_from(catch_start), children=parts))
        if self.at('finally'):
            finally_start = self.advance()
            block = self.parse_block(('end', 'try'))
            children.append(make_node(FINALLY, self.span_from(finally_start), children=[block]))
        self.expect('end', 'try')
        return make_node(TRY, self.span_from(start), children=children)

    def parse_using(self) -> Node:
        start = self.expect('using')
        if self.tok.kind in ('ident', 'name') and self.peek().lower in ('as', '='):
            headers = self.parse_declarators(LOCAL)
        else:
            headers = [self.parse_expression()]
        body = self.parse_block(('end', 'using'))
        self.expect('end', 'using')
        return make_node(SCOPE, self.span_from(start), children=headers + [body])

    def parse_with(self) -> Node:
        start = self.expect('with')
        target = self.parse_expression()
        self._with_counter += 1
        name = f'$with{self._with_counter}'
        holder = make_node(LOCAL, target.span, name, [target], name_span=target.span)
        self._with_stack.append(name)
        try:
            body = self.parse_block(('end', 'with'))
        finally:
            self._with_stack.pop()
        self.expect('end', 'with')
        return make_node(SCOPE, self.span_from(start), children=[holder, body])

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def parse_expression(self) -> Node:
        return self.parse_binary(0)

    def parse_binary(self, level: int) -> Node:
        if level == len(_BINARY_LEVELS):
            return self.parse_unary()
        operators = _BINARY_LEVELS[level]
        if operators == 'not':
            if self.at('not'):
                start = self.advance()
                operand = self.parse_binary(level)
                return make_node(EXPR, self.span_from(start), children=[operand], text='Not')
            return self.parse_binary(level + 1)
        left = self.parse_binary(level + 1)
        while self.tok.kind in ('ident', 'op') and self.tok.lower in operators:
            operator = self.advance().value
            self.skip_newlines()
            right = self.parse_binary(level + 1)
            left = make_node(EXPR, span_between(left.span, right.span), children=[left, right],
                             text=operator)
        return left

    def parse_unary(self) -> Node:
        start = self.tok
        if start.kind == 'op' and start.value in ('-', '+'):
            self.advance()
            operand = self.parse_unary()
            return make_node(EXPR, self.span_from(start), children=[operand], text=start.value)
        if start.lower in ('await', 'addressof'):
            self.advance()
            operand = self.parse_unary()
            return make_node(EXPR, self.span_from(start), children=[operand], text=start.value)
        if start.lower == 'typeof':
            self.advance()
            operand = self.parse_postfix()
            if self.accept('is') or self.accept('isnot'):
                self.parse_type_name()
            return make_node(EXPR, self.span_from(start), children=[operand], text='TypeOf')
        operand = self.parse_postfix()
        while self.at('^'):
            self.advance()
            right = self.parse_unary()
            operand = make_node(EXPR, span_between(operand.span, right.span),
                                children=[operand, right], text='^')
        return operand

    def parse_postfix(self) -> Node:
        node = self.parse_primary()
        while True:
            if self.at('.') or self.at('?.'):
                self.advance()
                self.skip_newlines()
                name_token = self.any_word()
                node = make_node(MEMBER, self.span_after(node.span), name_token.value, [node],
                                 name_span=name_token.span)
            elif self.at('(', 'of'):
                self.skip_balanced('(', ')')
            elif self.at('('):
                arguments, names = self.parse_arguments()
                node = make_node(INVOKE, self.span_after(node.span), children=[node] + arguments,
                                 arg_names=names)
            elif self.at('!') and self.peek().kind in ('ident', 'name'):
                self.advance()
                key = self.advance()
                node = make_node(EXPR, self.span_after(node.span), children=[node], text=key.value)
            else:
                return node

    def parse_arguments(self) -> Tuple[List[Node], Tuple[Optional[str], ...]]:
        self.expect('(')
        self.skip_newlines()
        arguments: List[Node] = []
        names: List[Optional[str]] = []
        while not self.at(')') and not self.at_eof():
            name = None
            if self.tok.kind in ('ident', 'name') and self.peek().value == ':=':
                name = self.advance().value
                self.advance()
                self.skip_newlines()
            arguments.append(self.parse_expression())
            names.append(name)
            self.skip_newlines()
            if not self.accept(','):
                break
            self.skip_newlines()
        self.skip_newlines()
        self.expect(')')
        return arguments, tuple(names)

    def parse_primary(self) -> Node:
        start = self.tok
        kind = start.kind
        if kind in ('string', 'char', 'int', 'real', 'date'):
            self.advance()
            return make_node(LITERAL, start.span, text=start.value, literal=kind)
        if kind == 'name':
            self.advance()
            return make_node(NAME, start.span, start.value, name_span=start.span)
        if kind == 'op':
            if start.value == '(':
                self.advance()
                self.skip_newlines()
                inner = self.parse_expression()
                self.skip_newlines()
                self.expect(')')
                return inner
            if start.value == '{':
                return self.parse_array_literal()
            if start.value == '.' and self._with_stack:
                self.advance()
                name_token = self.any_word()
                holder = make_node(NAME, start.span, self._with_stack[-1], name_span=start.span)
                return make_node(MEMBER, self.span_from(start), name_token.value, [holder],
                                 name_span=name_token.span)
            raise VbSyntaxError("unexpected operator", start)
        if kind != 'ident':
            raise VbSyntaxError("unexpected token", start)

        word = start.lower
        if word == 'nothing':
            self.advance()
            return make_node(LITERAL, start.span, text=start.value, literal='null')
        if word in ('true', 'false'):
            self.advance()
            return make_node(LITERAL, start.span, text=start.value, literal='bool')
        if word in ('me', 'myclass'):
            self.advance()
            return make_node(THIS, start.span)
        if word == 'mybase':
            self.advance()
            return make_node(BASE, start.span)
        if word == 'new':
            return self.parse_new()
        if word in ('ctype', 'directcast', 'trycast'):
            self.advance()
            self.expect('(')
            self.skip_newlines()
            operand = self.parse_expression()
            self.expect(',')
            self.skip_newlines()
            type_text = self.parse_type_name()
            self.skip_newlines()
            self.expect(')')
            return make_node(CAST, self.span_from(start), type_text, [operand])
        if word in CONVERSIONS and self.peek().value == '(':
            self.advance()
            arguments, _ = self.parse_arguments()
            return make_node(CAST, self.span_from(start), CONVERSIONS[word], arguments[:1])
        if word == 'if' and self.peek().value == '(':
            self.advance()
            arguments, _ = self.parse_arguments()
            if len(arguments) == 3:
                return make_node(CONDITIONAL, self.span_from(start), children=arguments)
            return make_node(EXPR, self.span_from(start), children=arguments, text='If')
        if word in ('gettype', 'nameof') and self.peek().value == '(':
            self.advance()
            self.skip_balanced('(', ')')
            if word == 'nameof':
                return make_node(LITERAL, self.span_from(start), text='""', literal='string')
            return make_node(EXPR, self.span_from(start), text='GetType')
        if word in ('function', 'sub') or (word in ('async', 'iterator')
                                           and self.peek().lower in ('function', 'sub')):
            return self.parse_lambda()
        if word in RESERVED or word in ('from', 'aggregate'):
            raise VbSyntaxError("unexpected keyword", start)
        self.advance()
        return make_node(NAME, start.span, start.value, name_span=start.span)

    def parse_array_literal(self) -> Node:
        start = self.expect('{')
        items = []
        self.skip_newlines()
        while not self.at('}') and not self.at_eof():
            items.append(self.parse_expression())
            self.skip_newlines()
            if not self.accept(','):
                break
            self.skip_newlines()
        self.skip_newlines()
        self.expect('}')
        return make_node(EXPR, self.span_from(start), children=items, text='{}')

    def parse_new(self) -> Node:
        start = self.expect('new')
        if self.accept('with'):
            initializer = self.parse_object_initializer()
            return make_node(EXPR, self.span_from(start), children=[initializer], text='New With')
        type_start = self.tok
        type_text = self.parse_type_name(allow_array=False)
        type_span = self.span_from(type_start)
        arguments: List[Node] = []
        names: Tuple[Optional[str], ...] = ()
        if self.at('('):
            arguments, names = self.parse_arguments()
        if self.at('{'):
            items = self.parse_array_literal()
            return make_node(EXPR, self.span_from(start), children=arguments + [items], text='New []')
        initializer = None
        if self.accept('with'):
            initializer = self.parse_object_initializer()
        elif self.accept('from'):
            items = self.parse_array_literal()
            initializer = make_node(INITIALIZER, items.span, children=items.children)
        return make_node(NEW, self.span_from(start), type_text, arguments + [initializer],
                         name_span=type_span, arg_names=names)

    def parse_object_initializer(self) -> Node:
        start = self.expect('{')
        items: List[Node] = []
        self.skip_newlines()
        while not self.at('}') and not self.at_eof():
            item_start = self.tok
            self.accept('key')
            self.expect('.')
            name_token = self.any_word()
            target = make_node(NAME, name_token.span, name_token.value, name_span=name_token.span)
            self.expect('=')
            self.skip_newlines()
            value = self.parse_expression()
            items.append(make_node(ASSIGN, self.span_from(item_start), children=[target, value], op='='))
            self.skip_newlines()
            if not self.accept(','):
                break
            self.skip_newlines()
        self.skip_newlines()
        self.expect('}')
        return make_node(INITIALIZER, self.span_from(start), children=items)

    def parse_lambda(self) -> Node:
        start = self.tok
        modifiers = []
        while self.tok.lower in ('async', 'iterator'):
            modifiers.append(self.advance().value)
        kind = self.advance().lower
        children: List[Node] = self.parse_parameters() if self.at('(') else []
        if self.accept('as'):
            self.parse_type_name()
        if self.at_line_end():
            body = self.parse_block(('end', kind))
            self.expect('end', kind)
        elif kind == 'function':
            body = self.parse_expression()
        else:
            statement_start = self.tok
            body = self._block([self.parse_statement()], statement_start)
        return make_node(LAMBDA, self.span_from(start), children=children + [body],
                         modifiers=tuple(modifiers))

    def parse_type_name(self, allow_array: bool = True) -> str:
        parts = [self.any_word().value]
        while self.at('.') and self.peek().kind in ('ident', 'name'):
            self.advance()
            parts.append(self.any_word().value)
        text = '.'.join(parts)
        if self.at('(', 'of'):
            text += self.capture_balanced()
        if allow_array:
            while self.at('(') and self.peek().kind == 'op' and self.peek().value in (')', ','):
                self.skip_balanced('(', ')')
                text += '()'
        if self.at('?'):
            self.advance()
            text += '?'
        return text


# ============================================================================
# Helpers
# ============================================================================

def _unquote(text: str) -> str:
    text = text.strip()
    if text.startswith('$'):
        text = text[1:]
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1].replace('""', '"')
    return text


def _as_call(node: Node) -> Node:
    """A bare name or member access used as a statement is a call without parentheses."""
    if node.kind in (NAME, MEMBER):
        return make_node(INVOKE, node.span, children=[node], arg_names=())
    return node


def _constructor_chain(body: Optional[Node]) -> Optional[str]:
    """'this' or 'base' when the constructor starts with Me.New / MyBase.New."""
    if body is None or not body.children:
        return None
    first = body.children[0]
    if first.kind != EXPR_STMT or not first.children or first.children[0].kind != INVOKE:
        return None
    callee = first.children[0].children[0]
    if callee.kind != MEMBER or (callee.name or '').lower() != 'new' or not callee.children:
        return None
    receiver = callee.children[0]
    if receiver.kind == THIS:
        return 'this'
    if receiver.kind == BASE:
        return 'base'
    return None


def parse_vb(source_code: str, file_path: str = '<source>') -> CompilationUnit:
    """Parse Visual Basic source into a compilation unit."""
    parser = VbParser(tokenize(source_code), file_path)
    children = parser.parse_unit()
    line_count = max(1, source_code.count('\n') + 1)
    root = make_node(UNIT, Span(1, 1, line_count + 1, 1), children=children)
    if parser.error_count:
        logger.debug("%s: %d statement(s) could not be parsed", file_path, parser.error_count)
    return CompilationUnit(file_path, 'vb', root, source_code)
