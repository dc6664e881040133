"""Diagnostic construction, fix classes and report rendering."""

import json

import pytest

from xxehunter_catalog import DEFAULT_SINKS, FrameworkVersion, Severity
from xxehunter_model import ASSIGN, METHOD, NEW, Span, make_node
from xxehunter_report import (
    Diagnostic, DiagnosticReporter, EditClass, FixAdvisor, ScanStats, build_json_report,
    format_text_report, get_summary, meets_severity,
)
from xxehunter_rules import Violation

SPAN = Span(5, 19, 5, 36)
MEMBER = make_node(METHOD, Span(3, 5, 7, 6), 'Run')


def violation(key='XmlDocumentWithNoSecureResolver', anchor_kind=NEW, span=SPAN, arguments=(),
              signature=None):
    return Violation(key, make_node(anchor_kind, span), span, arguments, signature)


def diagnostic(kind='XmlDocumentWithNoSecureResolver', severity=Severity.WARNING, line=5,
               anchor_kind=NEW, file='Sample.cs', rule_id='CA3075'):
    return Diagnostic(rule_id, kind, severity, file, Span(line, 9, line, 27), 'message',
                      anchor_kind=anchor_kind)


class TestDiagnosticReporter:

    def _reporter(self, overrides=None):
        emitted = []
        return DiagnosticReporter('Sample.cs', emitted.append, overrides), emitted

    def test_report_builds_diagnostic(self):
        reporter, emitted = self._reporter()
        d = reporter.report(violation(), member=MEMBER)
        assert emitted == [d]
        assert (d.rule_id, d.kind, d.severity) == ('CA3075', 'XmlDocumentWithNoSecureResolver',
                                                   Severity.WARNING)
        assert d.file == 'Sample.cs'
        assert d.span == SPAN
        assert d.anchor_kind == NEW
        assert d.message.startswith('Unsafe DTD processing')

    def test_anchor_outside_member_is_dropped(self):
        reporter, emitted = self._reporter()
        assert reporter.report(violation(span=Span(20, 1, 20, 5)), member=MEMBER) is None
        assert emitted == []

    def test_gated_signature(self):
        signature = DEFAULT_SINKS[('XmlDocument', 'XmlResolver')]
        reporter, emitted = self._reporter()
        assert reporter.report(violation(signature=signature), version=FrameworkVersion(4, 7, 2)) is None
        assert reporter.report(violation(signature=signature), version=FrameworkVersion(4, 5)) is not None
        assert reporter.report(violation(signature=signature), version=None) is not None
        assert len(emitted) == 2

    @pytest.mark.parametrize("key", ['XmlDocumentWithNoSecureResolver', 'CA3075'])
    def test_severity_override(self, key):
        reporter, _ = self._reporter({key: Severity.ERROR})
        assert reporter.report(violation()).severity is Severity.ERROR

    def test_explicit_severity_wins(self):
        reporter, _ = self._reporter({'CA3075': Severity.ERROR})
        assert reporter.report(violation(), severity=Severity.INFO).severity is Severity.INFO

    def test_to_dict(self):
        reporter, _ = self._reporter()
        data = reporter.report(violation(key='DoNotUseDtdProcessingOverloads', anchor_kind='invoke',
                                         arguments=('Load',))).to_dict()
        assert data['ruleId'] == 'CA3075'
        assert data['kind'] == 'DoNotUseDtdProcessingOverloads'
        assert data['severity'] == 'Warning'
        assert (data['startLine'], data['startColumn'], data['endLine'], data['endColumn']) == (5, 19, 5, 36)
        assert data['arguments'] == ['Load']
        assert "'Load'" in data['message']


class TestFixAdvisor:

    def test_insert_after_construction(self):
        fix = FixAdvisor().suggest(diagnostic(anchor_kind=NEW))
        assert fix.edit_class is EditClass.INSERT_SECURE_RESOLVER_ASSIGNMENT
        assert (fix.anchor_line, fix.anchor_column) == (5, 27)

    def test_replace_at_assignment(self):
        fix = FixAdvisor().suggest(diagnostic(anchor_kind=ASSIGN))
        assert fix.edit_class is EditClass.REPLACE_WITH_SECURE_RESOLVER
        assert (fix.anchor_line, fix.anchor_column) == (5, 9)

    @pytest.mark.parametrize("kind, edit", [
        ('DoNotUseDtdProcessingOverloads', EditClass.USE_XML_READER_OVERLOAD),
        ('XmlTextReaderConstructedWithNoSecureResolution', EditClass.PROHIBIT_DTD_PROCESSING),
        ('XmlReaderCreateInsecureInput', EditClass.PROHIBIT_DTD_PROCESSING),
        ('XslCompiledTransformLoadInsecureConstructed', EditClass.USE_DEFAULT_XSLT_SETTINGS),
        ('XmlDocumentDerivedClassNoConstructor', EditClass.ADD_SECURE_CONSTRUCTOR),
        ('XmlTextReaderDerivedClassConstructorNoSecureSettings', EditClass.SECURE_CONSTRUCTOR),
    ])
    def test_edit_classes(self, kind, edit):
        assert FixAdvisor().suggest(diagnostic(kind=kind)).edit_class is edit

    @pytest.mark.parametrize("kind", ['DoNotUseSetInnerXml', 'ReviewDtdProcessingProperties', 'Unknown'])
    def test_no_fix(self, kind):
        assert FixAdvisor().suggest(diagnostic(kind=kind, severity=Severity.INFO)) is None


class TestReports:

    DIAGNOSTICS = [
        diagnostic(),
        diagnostic(kind='DoNotUseSetInnerXml', severity=Severity.INFO, line=9),
        diagnostic(kind='XslCompiledTransformLoadInsecureInput', rule_id='CA3076', line=3,
                   file='Other.cs'),
    ]

    def test_summary(self):
        summary = get_summary(self.DIAGNOSTICS)
        assert summary['by_severity'] == {'Warning': 2, 'Info': 1}
        assert summary['by_rule'] == {'CA3075': 2, 'CA3076': 1}
        assert summary['by_kind']['DoNotUseSetInnerXml'] == 1

    def test_json_report(self):
        fixes = [FixAdvisor().suggest(self.DIAGNOSTICS[0])]
        stats = ScanStats(files_scanned=2, suppressed=1)
        report = build_json_report(self.DIAGNOSTICS, fixes, stats, 'net472')
        # must be serializable as is
        data = json.loads(json.dumps(report))
        assert data['target_framework'] == 'net472'
        assert data['files_scanned'] == 2
        assert data['suppressed'] == 1
        assert data['total_diagnostics'] == 3
        assert data['fixes'][0]['editClass'] == 'InsertSecureResolverAssignment'

    def test_text_report(self):
        fixes = [FixAdvisor().suggest(self.DIAGNOSTICS[0])]
        text = format_text_report(self.DIAGNOSTICS, fixes, ScanStats(files_scanned=2))
        assert 'Files Scanned: 2' in text
        assert 'FILE: Other.cs' in text and 'FILE: Sample.cs' in text
        assert text.index('FILE: Other.cs') < text.index('FILE: Sample.cs')
        assert 'Fix: Set XmlResolver to null' in text
        assert 'CA3076' in text

    def test_empty_text_report(self):
        assert 'No insecure XML processing found.' in format_text_report([], [], ScanStats())

    @pytest.mark.parametrize("severity, minimum, expected", [
        (Severity.INFO, Severity.INFO, True),
        (Severity.INFO, Severity.WARNING, False),
        (Severity.WARNING, Severity.WARNING, True),
        (Severity.ERROR, Severity.WARNING, True),
        (Severity.WARNING, Severity.ERROR, False),
    ])
    def test_meets_severity(self, severity, minimum, expected):
        assert meets_severity(diagnostic(severity=severity), minimum) is expected
