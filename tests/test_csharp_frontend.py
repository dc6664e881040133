"""Lowering of C# sources into the structural model."""

import textwrap

from csharp_treesitter import parse_csharp
from xxehunter_model import (
    ASSIGN, ATTRIBUTE, BRANCH, CONSTRUCTOR, ERROR, EXPR_STMT, INITIALIZER, INVOKE, LAMBDA, LOCAL,
    MEMBER, METHOD, NAME, NEW, PROPERTY, TOP_LEVEL_MEMBER, TRY, TYPE, iter_analysis_units,
    iter_types, simple_type_name, visit,
)


def parse(source):
    return parse_csharp(textwrap.dedent(source).lstrip('\n'), 'Sample.cs')


def first(root, kind):
    return next(n for n in visit(root) if n.kind == kind)


class TestDeclarations:

    def test_types_and_members(self):
        unit = parse("""
            using System.Xml;
            namespace App
            {
                public class Loader : XmlDocument, IDisposable
                {
                    private XmlResolver resolver = null;
                    public Loader() : base() { }
                    public XmlNode Root { get { return DocumentElement; } }
                    public void Load(string path) { }
                    public abstract void Declared();
                }
            }
        """)
        assert unit.language == 'csharp'
        types = list(iter_types(unit.root))
        assert [t.name for t in types] == ['Loader']
        assert types[0].attr('bases') == ('XmlDocument', 'IDisposable')

        units = [(t.name, m.kind, m.name) for t, m in iter_analysis_units(unit.root)]
        assert ('Loader', 'field', 'resolver') in units
        assert ('Loader', CONSTRUCTOR, 'Loader') in units
        assert ('Loader', 'accessor', 'get') in units
        assert ('Loader', METHOD, 'Load') in units
        # no body, nothing to analyze
        assert all(name != 'Declared' for _, _, name in units)

    def test_constructor_chain(self):
        unit = parse("""
            class A : XmlDocument
            {
                public A() : this(null) { }
                public A(XmlResolver r) : base() { XmlResolver = r; }
            }
        """)
        chains = [c.attr('chain') for c in visit(unit.root) if c.kind == CONSTRUCTOR]
        assert chains == ['this', 'base']

    def test_expression_bodied_property(self):
        unit = parse("""
            class A
            {
                public XmlDocument Doc => new XmlDocument();
            }
        """)
        prop = first(unit.root, PROPERTY)
        assert prop.name == 'Doc'
        assert any(n.kind == NEW and n.name == 'XmlDocument' for n in visit(prop))

    def test_top_level_statements(self):
        unit = parse("""
            using System.Xml;
            var doc = new XmlDocument();
            doc.LoadXml("<a/>");
        """)
        members = list(iter_analysis_units(unit.root))
        assert len(members) == 1
        type_node, member = members[0]
        assert type_node is None
        assert member.name == TOP_LEVEL_MEMBER

    def test_assembly_attribute(self):
        unit = parse("""
            using System.Runtime.Versioning;
            [assembly: TargetFramework(".NETFramework,Version=v4.5.2", FrameworkDisplayName = "4.5.2")]
            class A { }
        """)
        attribute = first(unit.root, ATTRIBUTE)
        assert attribute.attr('target') == 'assembly'
        assert simple_type_name(attribute.name) == 'TargetFramework'
        assert attribute.attr('arguments')[0] == '.NETFramework,Version=v4.5.2'


class TestStatements:

    def test_local_with_creation_and_initializer(self):
        unit = parse("""
            class A
            {
                void M()
                {
                    var settings = new XmlReaderSettings { DtdProcessing = DtdProcessing.Parse };
                }
            }
        """)
        local = first(unit.root, LOCAL)
        assert local.name == 'settings'
        creation = local.children[0]
        assert creation.kind == NEW and creation.name == 'XmlReaderSettings'
        initializer = creation.children[-1]
        assert initializer.kind == INITIALIZER
        item = initializer.children[0]
        assert item.kind == ASSIGN
        assert item.children[0].kind == NAME and item.children[0].name == 'DtdProcessing'
        assert item.children[1].kind == MEMBER and item.children[1].name == 'Parse'

    def test_target_typed_new(self):
        unit = parse("""
            class A
            {
                void M()
                {
                    XmlDocument doc = new();
                }
            }
        """)
        creation = first(unit.root, NEW)
        assert creation.name is None
        assert creation.attr('target_type') == 'XmlDocument'

    def test_assignment_statement(self):
        unit = parse("""
            class A
            {
                void M(XmlDocument doc)
                {
                    doc.XmlResolver = null;
                }
            }
        """)
        statement = first(unit.root, EXPR_STMT)
        assign = statement.children[0]
        assert assign.kind == ASSIGN and assign.attr('op') == '='
        target = assign.children[0]
        assert target.kind == MEMBER and target.name == 'XmlResolver'
        assert target.children[0].name == 'doc'

    def test_if_else_is_exhaustive_branch(self):
        unit = parse("""
            class A
            {
                void M(bool b)
                {
                    if (b) { Run(); } else if (!b) { Stop(); } else { Wait(); }
                    if (b) Run();
                }
            }
        """)
        branches = [n for n in visit(unit.root) if n.kind == BRANCH]
        assert [b.attr('exhaustive') for b in branches] == [True, False]

    def test_try_catch_finally(self):
        unit = parse("""
            class A
            {
                void M()
                {
                    try { Run(); }
                    catch (IOException e) when (e != null) { }
                    finally { Stop(); }
                }
            }
        """)
        node = first(unit.root, TRY)
        assert [c.kind for c in node.children] == ['block', 'catch', 'finally']

    def test_lambda_and_invocation(self):
        unit = parse("""
            class A
            {
                void M()
                {
                    Func<Task> f = async () => { await Task.Yield(); };
                    Action g = delegate { Run(); };
                }
            }
        """)
        lambdas = [n for n in visit(unit.root) if n.kind == LAMBDA]
        assert len(lambdas) == 2
        assert any(n.kind == INVOKE for n in visit(lambdas[1]))

    def test_spans_are_one_based(self):
        unit = parse("""
            class A
            {
                void M() { var d = new XmlDocument(); }
            }
        """)
        creation = first(unit.root, NEW)
        assert creation.span.start_line == 3
        line = unit.line(3)
        assert line[creation.span.start_column - 1:creation.span.end_column - 1] == 'new XmlDocument()'


class TestMalformedInput:

    def test_syntax_error_does_not_raise(self):
        unit = parse("""
            class A
            {
                void M()
                {
                    var doc = new XmlDocument(;
                }
                void N() { var ok = new XmlDocument(); }
            }
        """)
        assert unit.root is not None
        names = [m.name for _, m in iter_analysis_units(unit.root)]
        assert 'N' in names

    def test_members_after_unclosed_parameter_list(self):
        unit = parse("""
            class Sample : Base
            {
                void M(
                void N() { var x = new XmlDocument(); x.Load("a"); }
            }
        """)
        recovered = [(t.name, m.name) for t, m in iter_analysis_units(unit.root)]
        assert ('Sample', 'N') in recovered
        body = next(m for _, m in iter_analysis_units(unit.root) if m.name == 'N')
        assert [n.name for n in visit(body) if n.kind == NEW] == ['XmlDocument']

    def test_error_nodes_are_not_visited(self):
        unit = parse("class { ??? }")
        assert all(n.kind != ERROR for n in visit(unit.root))

    def test_empty_source(self):
        unit = parse("")
        assert list(iter_types(unit.root)) == []
        assert [n.kind for n in visit(unit.root)] == ['unit']

    def test_type_kind(self):
        unit = parse("interface IReader { } struct S { }")
        assert [t.attr('type_kind') for t in visit(unit.root) if t.kind == TYPE] == ['interface', 'struct']
