"""End-to-end rule behaviour on C# snippets."""

import pytest

from xxehunter_catalog import Severity


def kinds(diagnostics):
    return [d.kind for d in diagnostics]


def wrap(body, params=''):
    """A C# class with one method holding ``body``."""
    lines = '\n'.join('        ' + line for line in body.strip().splitlines())
    return (
        "using System;\nusing System.IO;\nusing System.Xml;\nusing System.Xml.Xsl;\n"
        "class Sample\n{\n"
        f"    void Run({params})\n    {{\n{lines}\n    }}\n"
        "}\n"
    )


# Line of the first body statement produced by wrap()
BODY_LINE = 9


class TestXmlDocumentResolver:

    def test_default_resolver_reported_when_version_unknown(self, scan_cs):
        diagnostics = scan_cs(wrap("var doc = new XmlDocument();"))
        assert kinds(diagnostics) == ['XmlDocumentWithNoSecureResolver']
        d = diagnostics[0]
        assert d.rule_id == 'CA3075'
        assert d.severity is Severity.WARNING
        assert d.line == BODY_LINE
        assert d.anchor_kind == 'new'

    @pytest.mark.parametrize("framework, expected", [
        ('net40', 1), ('net45', 1), ('net451', 1),
        ('net452', 0), ('net472', 0), ('net6.0', 0), ('netcoreapp3.1', 0),
    ])
    def test_default_resolver_depends_on_version(self, scan_cs, framework, expected):
        assert len(scan_cs(wrap("var doc = new XmlDocument();"), framework)) == expected

    def test_null_resolver_is_secure(self, scan_cs):
        source = wrap("""
var doc = new XmlDocument();
doc.XmlResolver = null;
""")
        assert scan_cs(source) == []

    def test_secure_resolver_is_secure(self, scan_cs):
        source = wrap("""
var doc = new XmlDocument();
doc.XmlResolver = new XmlSecureResolver(new XmlUrlResolver(), "http://example.com/");
""")
        assert scan_cs(source) == []

    def test_url_resolver_assignment_reported(self, scan_cs):
        source = wrap("""
var doc = new XmlDocument();
doc.XmlResolver = new XmlUrlResolver();
""")
        diagnostics = scan_cs(source, 'net472')
        assert kinds(diagnostics) == ['XmlDocumentWithNoSecureResolver']
        assert diagnostics[0].line == BODY_LINE + 1
        assert diagnostics[0].anchor_kind == 'assign'

    def test_explicit_insecure_assignment_reported_once(self, scan_cs):
        source = wrap("""
var doc = new XmlDocument();
doc.XmlResolver = new XmlUrlResolver();
""")
        assert len(scan_cs(source)) == 1

    def test_resolver_from_parameter_is_insecure(self, scan_cs):
        source = wrap("""
var doc = new XmlDocument();
doc.XmlResolver = resolver;
""", params='XmlResolver resolver')
        assert kinds(scan_cs(source, 'net472')) == ['XmlDocumentWithNoSecureResolver']

    def test_secure_resolver_parameter_is_secure(self, scan_cs):
        source = wrap("""
var doc = new XmlDocument();
doc.XmlResolver = resolver;
""", params='XmlSecureResolver resolver')
        assert scan_cs(source, 'net472') == []

    def test_object_initializer(self, scan_cs):
        assert scan_cs(wrap("var doc = new XmlDocument { XmlResolver = null };")) == []
        diagnostics = scan_cs(wrap("var doc = new XmlDocument { XmlResolver = new XmlUrlResolver() };"),
                              'net472')
        assert kinds(diagnostics) == ['XmlDocumentWithNoSecureResolver']

    def test_alias_shares_configuration(self, scan_cs):
        source = wrap("""
var doc = new XmlDocument();
var other = doc;
other.XmlResolver = null;
""")
        assert scan_cs(source) == []

    def test_conditionally_secured_is_not_reported(self, scan_cs):
        source = wrap("""
var doc = new XmlDocument();
if (secure)
{
    doc.XmlResolver = null;
}
""", params='bool secure')
        assert scan_cs(source) == []

    def test_secured_on_every_path(self, scan_cs):
        source = wrap("""
var doc = new XmlDocument();
if (secure)
{
    doc.XmlResolver = null;
}
else
{
    doc.XmlResolver = new XmlSecureResolver(new XmlUrlResolver(), "http://example.com/");
}
""", params='bool secure')
        assert scan_cs(source) == []

    def test_securing_in_another_member_does_not_count(self, scan_cs):
        source = """
            using System.Xml;
            class Sample
            {
                XmlDocument doc;
                void Create()
                {
                    doc = new XmlDocument();
                }
                void Secure()
                {
                    doc.XmlResolver = null;
                }
            }
        """
        diagnostics = scan_cs(source)
        assert kinds(diagnostics) == ['XmlDocumentWithNoSecureResolver']
        assert diagnostics[0].line == 7

    def test_top_level_statements(self, scan_cs):
        source = """
            using System.Xml;
            var doc = new XmlDocument();
            doc.LoadXml("<root/>");
        """
        assert kinds(scan_cs(source)) == ['XmlDocumentWithNoSecureResolver', 'DoNotUseDtdProcessingOverloads']


class TestSecuredInNestedContexts:
    """Allocation and securing in the same nested context."""

    CONTEXTS = {
        'try': "try\n{\nBODY\n}\ncatch (Exception)\n{\n}",
        'catch': "try\n{\n}\ncatch (Exception)\n{\nBODY\n}",
        'finally': "try\n{\n}\nfinally\n{\nBODY\n}",
        'async-lambda': "Func<System.Threading.Tasks.Task> f = async () =>\n{\nBODY\n"
                        "await System.Threading.Tasks.Task.Yield();\n};",
        'delegate': "Action a = delegate\n{\nBODY\n};",
        'local-function': "void Inner()\n{\nBODY\n}\nInner();",
    }

    @pytest.mark.parametrize("context", sorted(CONTEXTS))
    def test_unsecured_is_reported(self, scan_cs, context):
        body = self.CONTEXTS[context].replace('BODY', "var doc = new XmlDocument();")
        assert kinds(scan_cs(wrap(body))) == ['XmlDocumentWithNoSecureResolver']

    @pytest.mark.parametrize("context", sorted(CONTEXTS))
    def test_secured_is_not_reported(self, scan_cs, context):
        body = self.CONTEXTS[context].replace(
            'BODY', "var doc = new XmlDocument();\ndoc.XmlResolver = null;")
        assert scan_cs(wrap(body)) == []

    def test_property_accessor(self, scan_cs):
        source = """
            using System.Xml;
            class Sample
            {
                public XmlDocument Secure
                {
                    get
                    {
                        var doc = new XmlDocument();
                        doc.XmlResolver = null;
                        return doc;
                    }
                }
                public XmlDocument Insecure
                {
                    get { return new XmlDocument(); }
                }
            }
        """
        diagnostics = scan_cs(source)
        assert kinds(diagnostics) == ['XmlDocumentWithNoSecureResolver']
        assert diagnostics[0].line == 15


class TestDtdProcessingOverloads:

    @pytest.mark.parametrize("call, argument", [
        ("doc.Load(path);", 'Load'),
        ("doc.LoadXml(path);", 'LoadXml'),
        ("new DataSet().ReadXml(path);", 'ReadXml'),
        ("new System.Xml.XPath.XPathDocument(path);", 'XPathDocument'),
        ("XmlSchema.Read(stream, null);", 'Read'),
        ("new XmlSerializer(typeof(string)).Deserialize(stream);", 'Deserialize'),
    ])
    def test_reported(self, scan_cs, call, argument):
        source = wrap(call, params='XmlDocument doc, string path, Stream stream')
        diagnostics = scan_cs(source, 'net472')
        assert kinds(diagnostics) == ['DoNotUseDtdProcessingOverloads']
        assert diagnostics[0].arguments == (argument,)
        assert f"'{argument}'" in diagnostics[0].message

    @pytest.mark.parametrize("call", [
        "doc.Load(reader);",
        "new System.Xml.XPath.XPathDocument(reader);",
        "new XmlSerializer(typeof(string)).Deserialize(reader);",
        "doc.Save(path);",
    ])
    def test_xml_reader_overloads_not_reported(self, scan_cs, call):
        source = wrap(call, params='XmlDocument doc, string path, XmlReader reader')
        assert scan_cs(source, 'net472') == []

    def test_unknown_argument_type_is_not_reported(self, scan_cs):
        source = wrap("doc.Load(Open());", params='XmlDocument doc')
        assert scan_cs(source, 'net472') == []

    def test_user_method_with_same_name_is_ignored(self, scan_cs):
        source = """
            class Store
            {
                public void Load(string path) { }
            }
            class Sample
            {
                void Run(Store store) { store.Load("a.xml"); }
            }
        """
        assert scan_cs(source) == []


class TestXmlTextReader:

    def test_default_reader_reported(self, scan_cs):
        diagnostics = scan_cs(wrap("var reader = new XmlTextReader(path);", 'string path'), 'net472')
        assert kinds(diagnostics) == ['XmlTextReaderConstructedWithNoSecureResolution']
        assert diagnostics[0].line == BODY_LINE

    def test_prohibited_dtd_is_secure_on_new_frameworks(self, scan_cs):
        source = wrap("""
var reader = new XmlTextReader(path);
reader.DtdProcessing = DtdProcessing.Prohibit;
""", 'string path')
        assert scan_cs(source, 'net472') == []
        # the resolver default is still unsafe on old frameworks
        assert kinds(scan_cs(source, 'net40')) == ['XmlTextReaderConstructedWithNoSecureResolution']

    def test_fully_secured_reader(self, scan_cs):
        source = wrap("""
var reader = new XmlTextReader(path);
reader.DtdProcessing = DtdProcessing.Prohibit;
reader.XmlResolver = null;
""", 'string path')
        assert scan_cs(source) == []

    def test_prohibit_dtd_property(self, scan_cs):
        source = wrap("""
var reader = new XmlTextReader(path);
reader.ProhibitDtd = true;
""", 'string path')
        assert scan_cs(source, 'net472') == []

    def test_enabling_dtd_parsing_reported(self, scan_cs):
        source = wrap("""
var reader = new XmlTextReader(path);
reader.DtdProcessing = DtdProcessing.Parse;
""", 'string path')
        diagnostics = scan_cs(source, 'net472')
        assert kinds(diagnostics) == ['XmlTextReaderSetInsecureResolution']
        assert diagnostics[0].line == BODY_LINE + 1

    def test_insecure_initializer_reported_at_creation(self, scan_cs):
        source = wrap("var reader = new XmlTextReader(path) { DtdProcessing = DtdProcessing.Parse };",
                      'string path')
        diagnostics = scan_cs(source, 'net472')
        assert kinds(diagnostics) == ['XmlTextReaderSetInsecureResolution']
        assert diagnostics[0].anchor_kind == 'new'

    def test_insecure_resolver_on_parameter(self, scan_cs):
        source = wrap("reader.XmlResolver = new XmlUrlResolver();", 'XmlTextReader reader')
        assert kinds(scan_cs(source, 'net472')) == ['XmlTextReaderSetInsecureResolution']


class TestXmlReaderCreate:

    def test_constructed_settings_with_dtd_parsing(self, scan_cs):
        source = wrap("""
var settings = new XmlReaderSettings();
settings.DtdProcessing = DtdProcessing.Parse;
var reader = XmlReader.Create(path, settings);
""", 'string path')
        diagnostics = scan_cs(source)
        assert kinds(diagnostics) == ['XmlReaderCreateInsecureConstructed']
        assert diagnostics[0].line == BODY_LINE + 2
        # secure resolver and entity limit are the defaults from 4.5.2 on
        assert scan_cs(source, 'net472') == []

    def test_insecure_resolver_with_dtd_parsing(self, scan_cs):
        source = wrap("""
var settings = new XmlReaderSettings
{
    DtdProcessing = DtdProcessing.Parse,
    XmlResolver = new XmlUrlResolver()
};
var reader = XmlReader.Create(path, settings);
""", 'string path')
        assert kinds(scan_cs(source, 'net472')) == ['XmlReaderCreateInsecureConstructed']

    def test_limits_make_dtd_parsing_acceptable(self, scan_cs):
        source = wrap("""
var settings = new XmlReaderSettings();
settings.DtdProcessing = DtdProcessing.Parse;
settings.XmlResolver = null;
settings.MaxCharactersFromEntities = 1024;
var reader = XmlReader.Create(path, settings);
""", 'string path')
        assert scan_cs(source) == []

    def test_default_settings_are_secure(self, scan_cs):
        source = wrap("""
var settings = new XmlReaderSettings();
var reader = XmlReader.Create(path, settings);
""", 'string path')
        assert scan_cs(source) == []

    def test_settings_from_caller_configured_here(self, scan_cs):
        source = wrap("""
settings.DtdProcessing = DtdProcessing.Parse;
settings.XmlResolver = new XmlUrlResolver();
var reader = XmlReader.Create(path, settings);
""", 'string path, XmlReaderSettings settings')
        assert kinds(scan_cs(source, 'net472')) == ['XmlReaderCreateInsecureInput']

    def test_untouched_settings_from_caller_not_reported(self, scan_cs):
        source = wrap("var reader = XmlReader.Create(path, settings);",
                      'string path, XmlReaderSettings settings')
        assert scan_cs(source) == []

    def test_overload_without_settings_not_reported(self, scan_cs):
        source = wrap("""
var settings = new XmlReaderSettings();
settings.DtdProcessing = DtdProcessing.Parse;
var reader = XmlReader.Create(path);
""", 'string path')
        assert scan_cs(source) == []


class TestXslCompiledTransform:

    def test_trusted_settings_with_url_resolver(self, scan_cs):
        source = wrap("""
var xslt = new XslCompiledTransform();
xslt.Load(path, XsltSettings.TrustedXslt, new XmlUrlResolver());
""", 'string path')
        diagnostics = scan_cs(source, 'net472')
        assert kinds(diagnostics) == ['XslCompiledTransformLoadInsecureConstructed']
        assert diagnostics[0].rule_id == 'CA3076'
        assert diagnostics[0].arguments == ('Run',)

    def test_scripts_enabled_by_constructor(self, scan_cs):
        source = wrap("""
var settings = new XsltSettings(true, true);
var xslt = new XslCompiledTransform();
xslt.Load(path, settings, new XmlUrlResolver());
""", 'string path')
        assert kinds(scan_cs(source)) == ['XslCompiledTransformLoadInsecureConstructed']

    @pytest.mark.parametrize("settings, resolver", [
        ('XsltSettings.Default', 'new XmlUrlResolver()'),
        ('new XsltSettings()', 'new XmlUrlResolver()'),
        ('new XsltSettings(false, false)', 'new XmlUrlResolver()'),
        ('XsltSettings.TrustedXslt', 'null'),
    ])
    def test_secure_combinations(self, scan_cs, settings, resolver):
        source = wrap(f"""
var xslt = new XslCompiledTransform();
xslt.Load(path, {settings}, {resolver});
""", 'string path')
        assert scan_cs(source) == []

    def test_settings_from_caller(self, scan_cs):
        source = wrap("""
var xslt = new XslCompiledTransform();
xslt.Load(path, settings, new XmlUrlResolver());
""", 'string path, XsltSettings settings')
        assert kinds(scan_cs(source)) == ['XslCompiledTransformLoadInsecureInput']

    def test_script_enabled_after_construction(self, scan_cs):
        source = wrap("""
var settings = new XsltSettings();
settings.EnableScript = true;
var xslt = new XslCompiledTransform();
xslt.Load(path, settings, new XmlUrlResolver());
""", 'string path')
        assert kinds(scan_cs(source)) == ['XslCompiledTransformLoadInsecureConstructed']


class TestInformationalSetters:

    def test_inner_xml(self, scan_cs):
        diagnostics = scan_cs(wrap("doc.InnerXml = xml;", 'XmlDocument doc, string xml'), 'net472')
        assert kinds(diagnostics) == ['DoNotUseSetInnerXml']
        assert diagnostics[0].severity is Severity.INFO

    def test_data_view_settings(self, scan_cs):
        source = wrap("""
var manager = new System.Data.DataViewManager();
manager.DataViewSettingCollectionString = text;
""", 'string text')
        diagnostics = scan_cs(source)
        assert kinds(diagnostics) == ['ReviewDtdProcessingProperties']
        assert diagnostics[0].severity is Severity.INFO

    def test_inner_xml_of_user_type_ignored(self, scan_cs):
        source = """
            class Holder { public string InnerXml { get; set; } }
            class Sample
            {
                void Run(Holder h) { h.InnerXml = "<a/>"; }
            }
        """
        assert scan_cs(source) == []


class TestXmlDocumentSubclass:

    def test_no_constructor_framework_unknown(self, scan_cs):
        # Unknown framework: the inherited resolver default counts as insecure too
        source = """
            using System.Xml;
            class MyDoc : XmlDocument
            {
                public void Configure()
                {
                    XmlResolver = new XmlUrlResolver();
                }
            }
        """
        diagnostics = scan_cs(source)
        assert kinds(diagnostics) == ['XmlDocumentDerivedClassNoConstructor',
                                      'XmlDocumentDerivedClassSetInsecureXmlResolverInMethod']
        assert diagnostics[0].arguments == ('MyDoc',)
        assert diagnostics[0].line == 2
        assert diagnostics[1].arguments == ('Configure',)
        assert diagnostics[1].rule_id == 'CA3077'

    def test_no_constructor_secure_framework_reports_only_the_method(self, scan_cs):
        # From 4.5.2 on the inherited default is secure; only the explicit assignment remains
        source = """
            using System.Xml;
            class MyDoc : XmlDocument
            {
                public void Configure() { XmlResolver = new XmlUrlResolver(); }
            }
        """
        assert kinds(scan_cs(source, 'net472')) == ['XmlDocumentDerivedClassSetInsecureXmlResolverInMethod']

    def test_constructor_without_secure_resolver(self, scan_cs):
        source = """
            using System.Xml;
            class MyDoc : XmlDocument
            {
                public MyDoc() { }
                public void Configure() { XmlResolver = new XmlUrlResolver(); }
            }
        """
        diagnostics = scan_cs(source)
        assert kinds(diagnostics) == ['XmlDocumentDerivedClassConstructorNoSecureXmlResolver',
                                      'XmlDocumentDerivedClassSetInsecureXmlResolverInMethod']
        assert diagnostics[0].line == 4

    def test_secure_constructor(self, scan_cs):
        source = """
            using System.Xml;
            class MyDoc : XmlDocument
            {
                public MyDoc() { XmlResolver = null; }
                public MyDoc(string name) : this() { }
                public void Configure() { XmlResolver = new XmlUrlResolver(); }
            }
        """
        assert kinds(scan_cs(source)) == ['XmlDocumentDerivedClassSetInsecureXmlResolverInMethod']

    @pytest.mark.parametrize("target", ['XmlResolver', 'this.XmlResolver', 'base.XmlResolver'])
    def test_qualifiers_are_equivalent(self, scan_cs, target):
        source = f"""
            using System.Xml;
            class MyDoc : XmlDocument
            {{
                public MyDoc() {{ XmlResolver = null; }}
                public void Configure() {{ {target} = new XmlUrlResolver(); }}
            }}
        """
        assert kinds(scan_cs(source, 'net472')) == ['XmlDocumentDerivedClassSetInsecureXmlResolverInMethod']

    def test_hiding_member_is_not_the_inherited_setting(self, scan_cs):
        source = """
            using System.Xml;
            class MyDoc : XmlDocument
            {
                public new XmlResolver XmlResolver { get; set; }
                public void Configure() { XmlResolver = new XmlUrlResolver(); }
            }
        """
        assert scan_cs(source) == []

    def test_subclass_without_assignments(self, scan_cs):
        source = """
            using System.Xml;
            class MyDoc : XmlDocument
            {
                public void Configure() { PreserveWhitespace = true; }
            }
        """
        assert scan_cs(source) == []

    def test_indirect_subclass(self, scan_cs):
        source = """
            using System.Xml;
            class BaseDoc : XmlDocument
            {
                public BaseDoc() { XmlResolver = null; }
            }
            class MyDoc : BaseDoc
            {
                public void Configure() { XmlResolver = new XmlUrlResolver(); }
            }
        """
        assert kinds(scan_cs(source, 'net472')) == ['XmlDocumentDerivedClassSetInsecureXmlResolverInMethod']


class TestXmlTextReaderSubclass:

    SOURCE = """
        using System.Xml;
        class MyReader : XmlTextReader
        {
            public MyReader(string url) : base(url) { }
            public void Open()
            {
                DtdProcessing = DtdProcessing.Parse;
                EXTRA
            }
        }
    """

    def test_insecure_method_and_constructor(self, scan_cs):
        diagnostics = scan_cs(self.SOURCE.replace('EXTRA', ''))
        assert kinds(diagnostics) == ['XmlTextReaderDerivedClassConstructorNoSecureSettings',
                                      'XmlTextReaderDerivedClassSetInsecureSettingsInMethod']
        assert diagnostics[0].arguments == ('MyReader',)
        assert diagnostics[1].arguments == ('Open',)

    def test_new_frameworks_only_report_the_method(self, scan_cs):
        diagnostics = scan_cs(self.SOURCE.replace('EXTRA', ''), 'net472')
        assert kinds(diagnostics) == ['XmlTextReaderDerivedClassSetInsecureSettingsInMethod']

    def test_mixed_assignments_not_reported(self, scan_cs):
        assert scan_cs(self.SOURCE.replace('EXTRA', 'XmlResolver = null;')) == []

    def test_secure_constructor(self, scan_cs):
        source = """
            using System.Xml;
            class MyReader : XmlTextReader
            {
                public MyReader(string url) : base(url)
                {
                    DtdProcessing = DtdProcessing.Prohibit;
                    XmlResolver = null;
                }
                public void Open() { XmlResolver = new XmlUrlResolver(); }
            }
        """
        assert kinds(scan_cs(source)) == ['XmlTextReaderDerivedClassSetInsecureSettingsInMethod']

    def test_no_constructor(self, scan_cs):
        source = """
            using System.Xml;
            class MyReader : XmlTextReader
            {
                public void Open() { DtdProcessing = DtdProcessing.Parse; }
            }
        """
        assert kinds(scan_cs(source)) == ['XmlTextReaderDerivedClassNoConstructor',
                                          'XmlTextReaderDerivedClassSetInsecureSettingsInMethod']


class TestDiagnosticsOrdering:

    def test_sorted_by_position(self, scan_cs):
        source = wrap("""
doc.LoadXml(xml);
var other = new XmlDocument();
doc.InnerXml = xml;
""", 'XmlDocument doc, string xml')
        diagnostics = scan_cs(source)
        assert [d.line for d in diagnostics] == [BODY_LINE, BODY_LINE + 1, BODY_LINE + 2]
        assert kinds(diagnostics) == ['DoNotUseDtdProcessingOverloads',
                                      'XmlDocumentWithNoSecureResolver', 'DoNotUseSetInnerXml']

    def test_deterministic(self, scan_cs):
        source = wrap("""
var a = new XmlDocument();
var b = new XmlTextReader(path);
a.Load(path);
""", 'string path')
        assert scan_cs(source) == scan_cs(source)


class TestSyntaxErrors:

    def test_sibling_of_broken_method_still_analyzed(self, scan_cs):
        source = """
            using System.Xml;
            class Sample
            {
                void M(
                void N() { var x = new XmlDocument(); x.Load("a"); }
            }
        """
        found = kinds(scan_cs(source))
        assert 'XmlDocumentWithNoSecureResolver' in found
        assert 'DoNotUseDtdProcessingOverloads' in found

    def test_broken_statement_keeps_later_members(self, scan_cs):
        source = """
            using System.Xml;
            class Sample
            {
                void M() { var doc = new XmlDocument(; }
                void N(XmlDocument doc, string xml) { doc.LoadXml(xml); }
            }
        """
        assert 'DoNotUseDtdProcessingOverloads' in kinds(scan_cs(source))
