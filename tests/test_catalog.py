"""Framework versions, the type catalog, sink signatures and the version gate."""

import pytest

from xxehunter_catalog import (
    ASSIGNMENT_SINKS, CATALOG, CTOR, DEFAULT_SINKS, GATE, OVERLOAD_SINKS, READER_CREATE_SINK, RULES,
    SECURE_DEFAULTS_VERSION, XSLT_LOAD_SINK, FrameworkVersion, Severity, SinkSignature, format_message,
    lacks_xml_reader, parse_target_framework,
)


class TestParseTargetFramework:

    @pytest.mark.parametrize("text, expected", [
        ('net45', FrameworkVersion(4, 5, 0)),
        ('net452', FrameworkVersion(4, 5, 2)),
        ('net472', FrameworkVersion(4, 7, 2)),
        ('NET48', FrameworkVersion(4, 8, 0)),
        ('net6.0', FrameworkVersion(6, 0)),
        ('net8.0-windows', FrameworkVersion(8, 0)),
        ('netcoreapp3.1', FrameworkVersion(5, 0, 0)),
        ('netstandard2.0', FrameworkVersion(4, 6, 1)),
        ('netstandard2.1', FrameworkVersion(5, 0, 0)),
        ('v4.5.2', FrameworkVersion(4, 5, 2)),
        ('4.0', FrameworkVersion(4, 0, 0)),
        ('.NETFramework,Version=v4.7.2', FrameworkVersion(4, 7, 2)),
        ('.NETFramework, Version=v4.5', FrameworkVersion(4, 5, 0)),
        ('.NETCoreApp,Version=v3.1', FrameworkVersion(5, 0, 0)),
        ('.NETStandard,Version=v1.3', FrameworkVersion(4, 6, 0)),
    ])
    def test_known_monikers(self, text, expected):
        assert parse_target_framework(text) == expected

    @pytest.mark.parametrize("text", [None, '', 'garbage', 'net4', 'Silverlight,Version=v5.0'])
    def test_unrecognised_is_none(self, text):
        assert parse_target_framework(text) is None

    def test_versions_order(self):
        ordered = [parse_target_framework(t) for t in ('net40', 'net45', 'net452', 'net472', 'net6.0')]
        assert ordered == sorted(ordered)

    def test_str(self):
        assert str(FrameworkVersion(4, 5, 2)) == '4.5.2'


class TestVersionGate:

    def test_unknown_version_is_unsafe(self):
        signature = DEFAULT_SINKS[('XmlDocument', 'XmlResolver')]
        assert GATE.is_unsafe_for_version(signature, None)

    @pytest.mark.parametrize("version, unsafe", [
        (FrameworkVersion(4, 0), True),
        (FrameworkVersion(4, 5, 1), True),
        (SECURE_DEFAULTS_VERSION, False),
        (FrameworkVersion(4, 8), False),
        (FrameworkVersion(6, 0), False),
    ])
    def test_document_resolver_default(self, version, unsafe):
        signature = DEFAULT_SINKS[('XmlDocument', 'XmlResolver')]
        assert GATE.is_unsafe_for_version(signature, version) is unsafe

    def test_monotonic_in_version(self):
        versions = sorted(FrameworkVersion(4, minor, build) for minor in range(9) for build in range(3))
        for signature in DEFAULT_SINKS.values():
            verdicts = [GATE.is_unsafe_for_version(signature, v) for v in versions]
            # once safe, later versions stay safe
            assert verdicts == sorted(verdicts, reverse=True)

    def test_ungated_default_stays_unsafe(self):
        signature = DEFAULT_SINKS[('XmlTextReader', 'DtdProcessing')]
        assert GATE.is_unsafe_for_version(signature, FrameworkVersion(8, 0))

    def test_safe_default_never_unsafe(self):
        signature = DEFAULT_SINKS[('XmlReaderSettings', 'DtdProcessing')]
        assert not GATE.is_unsafe_for_version(signature, None)
        assert not GATE.is_unsafe_for_version(SinkSignature('x', 'A', 'B', unsafe_by_default=False),
                                              FrameworkVersion(1, 0))


class TestCatalog:

    def test_lookup_is_case_insensitive(self):
        assert CATALOG.canonical('xmldocument') == 'XmlDocument'
        assert CATALOG.get('XMLREADERSETTINGS').name == 'XmlReaderSettings'
        assert CATALOG.get('NoSuchType') is None

    def test_declared_member(self):
        symbol = CATALOG.declared_member('XmlDocument', 'xmlresolver')
        assert symbol.name == 'XmlResolver'
        assert symbol.type == 'XmlResolver'
        assert symbol.containing_type == 'XmlDocument'
        # no walk into bases
        assert CATALOG.declared_member('XmlDataDocument', 'XmlResolver') is None

    def test_enum_members_are_static_fields(self):
        symbol = CATALOG.declared_member('DtdProcessing', 'Parse')
        assert symbol.is_static
        assert symbol.type == 'DtdProcessing'

    def test_overloads(self):
        loads = CATALOG.overloads('XmlDocument', 'Load')
        assert [o.params for o in loads] == [('String',), ('Stream',), ('TextReader',), ('XmlReader',)]
        assert len(CATALOG.overloads('XPathDocument', CTOR)) == 6
        assert CATALOG.overloads('Unknown', 'Load') == ()

    def test_reference_types(self):
        assert CATALOG.is_reference_type('XmlResolver')
        assert CATALOG.is_reference_type('SomethingUnknown')
        assert not CATALOG.is_reference_type('Boolean')


class TestSinks:

    def test_overload_sinks_reject_xml_reader(self):
        assert ('XmlDocument', 'Load') in OVERLOAD_SINKS
        reader_overload = CATALOG.overloads('XmlDocument', 'Load')[-1]
        assert not lacks_xml_reader(reader_overload)

    def test_resolver_assignments_treat_unknown_as_unsafe(self):
        assert ASSIGNMENT_SINKS[('XmlDocument', 'XmlResolver')].unknown_is_unsafe
        assert not ASSIGNMENT_SINKS[('XmlReaderSettings', 'DtdProcessing')].unknown_is_unsafe

    def test_reader_create_shape_requires_settings(self):
        shaped = [o.params for o in CATALOG.overloads('XmlReader', 'Create') if READER_CREATE_SINK.shape(o)]
        assert shaped
        assert all('XmlReaderSettings' in params for params in shaped)
        assert ('String',) not in shaped

    def test_xslt_load_shape_requires_settings_and_resolver(self):
        shaped = [o.params for o in CATALOG.overloads('XslCompiledTransform', 'Load') if XSLT_LOAD_SINK.shape(o)]
        assert shaped
        assert all({'XsltSettings', 'XmlResolver'} <= set(params) for params in shaped)


class TestRules:

    def test_descriptor_table(self):
        assert len(RULES) == 16
        assert {r.rule_id for r in RULES.values()} == {'CA3075', 'CA3076', 'CA3077'}

    def test_informational_rules(self):
        for key in ('DoNotUseSetInnerXml', 'ReviewDtdProcessingProperties'):
            assert RULES[key].severity is Severity.INFO
            assert not RULES[key].fixable

    def test_titles(self):
        assert RULES['XslCompiledTransformLoadInsecureInput'].title == "Insecure XSLT script processing"

    def test_format_message(self):
        message = format_message('DoNotUseDtdProcessingOverloads', ('LoadXml',))
        assert "'LoadXml'" in message

    @pytest.mark.parametrize("text, expected", [
        ('info', Severity.INFO), ('Warning', Severity.WARNING), (' ERROR ', Severity.ERROR),
    ])
    def test_severity_parse(self, text, expected):
        assert Severity.parse(text) is expected

    def test_severity_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            Severity.parse('critical')
