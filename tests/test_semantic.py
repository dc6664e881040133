"""Symbol resolution, inheritance and overload selection."""

import textwrap

from csharp_treesitter import parse_csharp
from vbnet_syntax import parse_vb
from xxehunter_catalog import CATALOG, NULL_TYPE
from xxehunter_model import INVOKE, MEMBER, NAME, NEW, SymbolKind, invoke_parts, visit
from xxehunter_semantic import SemanticModel


def model_for(source, language='csharp'):
    source = textwrap.dedent(source).lstrip('\n')
    unit = parse_csharp(source, 'Sample.cs') if language == 'csharp' else parse_vb(source, 'Sample.vb')
    return SemanticModel([unit]), unit


def nodes(unit, kind, name=None):
    return [n for n in visit(unit.root) if n.kind == kind and (name is None or n.name == name)]


class TestInheritance:

    SOURCE = """
        class Base : XmlDocument { }
        class Derived : Base, IDisposable { }
        interface IThing { }
    """

    def test_is_derived_from(self):
        model, _ = model_for(self.SOURCE)
        assert model.is_derived_from('Derived', 'XmlDocument')
        assert model.is_derived_from('Derived', 'XmlNode')
        assert model.is_derived_from('XmlDocument', 'XmlDocument')
        assert not model.is_strictly_derived_from('XmlDocument', 'XmlDocument')
        assert not model.is_derived_from('Base', 'XmlTextReader')

    def test_base_type_skips_interfaces(self):
        model, _ = model_for(self.SOURCE)
        assert model.base_type('Derived') == 'Base'
        assert model.base_type('Base') == 'XmlDocument'

    def test_cycles_terminate(self):
        model, _ = model_for("class A : B { } class B : A { }")
        assert not model.is_derived_from('A', 'XmlDocument')


class TestLookup:

    def test_inherited_framework_member(self):
        model, _ = model_for("class MyDoc : XmlDocument { }")
        symbol = model.lookup_member('MyDoc', 'XmlResolver')
        assert symbol.containing_type == 'XmlDocument'
        assert symbol.declaration is None

    def test_hiding_member_wins(self):
        model, _ = model_for("""
            class MyDoc : XmlDocument
            {
                public new XmlResolver XmlResolver { get; set; }
            }
        """)
        symbol = model.lookup_member('MyDoc', 'XmlResolver')
        assert symbol.containing_type == 'MyDoc'
        assert symbol.declaration is not None

    def test_vb_lookup_ignores_case(self):
        model, _ = model_for("""
            Class MyDoc
                Inherits XmlDocument
            End Class
        """, 'vb')
        assert model.lookup_member('mydoc', 'xmlresolver').name == 'XmlResolver'


class TestResolution:

    def test_var_inference(self):
        model, unit = model_for("""
            class Sample
            {
                void Run()
                {
                    var doc = new XmlDocument();
                    Use(doc);
                }
            }
        """)
        use = nodes(unit, NAME, 'doc')[-1]
        assert model.type_of(use) == 'XmlDocument'
        assert model.resolve_symbol(use).kind == SymbolKind.LOCAL

    def test_member_access_on_parameter(self):
        model, unit = model_for("""
            class Sample
            {
                void Run(XmlReaderSettings settings) { settings.DtdProcessing = DtdProcessing.Parse; }
            }
        """)
        target = nodes(unit, MEMBER, 'DtdProcessing')[0]
        symbol = model.resolve_symbol(target)
        assert (symbol.containing_type, symbol.name) == ('XmlReaderSettings', 'DtdProcessing')

    def test_unqualified_inherited_property(self):
        model, unit = model_for("""
            class MyDoc : XmlDocument
            {
                void Run() { XmlResolver = null; }
            }
        """)
        symbol = model.resolve_symbol(nodes(unit, NAME, 'XmlResolver')[0])
        assert symbol.kind == SymbolKind.PROPERTY
        assert symbol.containing_type == 'XmlDocument'

    def test_creation_type(self):
        model, unit = model_for("""
            class Sample
            {
                void Run() { var r = new System.Xml.XmlTextReader("a"); }
            }
        """)
        assert model.type_of(nodes(unit, NEW)[0]) == 'XmlTextReader'

    def test_unresolved_name(self):
        model, unit = model_for("class Sample { void Run() { Use(mystery); } }")
        assert model.resolve_symbol(nodes(unit, NAME, 'mystery')[0]) is None


class TestOverloads:

    def test_select_by_argument_type(self):
        model, unit = model_for("""
            class Sample
            {
                void Run(XmlDocument doc, XmlReader reader, string path)
                {
                    doc.Load(reader);
                    doc.Load(path);
                }
            }
        """)
        overloads = CATALOG.overloads('XmlDocument', 'Load')
        first, second = nodes(unit, INVOKE)
        _, reader_args = invoke_parts(first)
        _, path_args = invoke_parts(second)
        assert [o.params for o in model.select_overloads(overloads, reader_args)] == [('XmlReader',)]
        assert [o.params for o in model.select_overloads(overloads, path_args)] == [('String',)]

    def test_null_matches_reference_parameters(self):
        model, _ = model_for("class Sample { }")
        assert model.is_assignable(NULL_TYPE, 'XmlReader')
        assert not model.is_assignable(NULL_TYPE, 'Boolean')
        assert model.is_assignable(None, 'Stream')
        assert model.is_assignable('XmlTextReader', 'XmlReader')
