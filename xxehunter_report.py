"""
Diagnostic Reporter and Fix Advisor
===================================
Turns confirmed violations into diagnostic records, proposes fix classes
for them, and renders reports (rich dashboard, plain text and JSON).

The reporter is the only component that emits: every diagnostic passes
through ``DiagnosticReporter.report`` and lands in the sink callable it was
built with.
"""

import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from rich import box
from rich.align import Align
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from xxehunter_catalog import (
    GATE, RULE_TITLES, RULES, SEVERITY_ORDER, FrameworkVersion, Severity, format_message,
)
from xxehunter_model import NEW, Node, Span
from xxehunter_rules import Violation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Diagnostic:
    rule_id: str
    kind: str
    severity: Severity
    file: str
    span: Span
    message: str
    arguments: Tuple[str, ...] = ()
    anchor_kind: str = field(default='', compare=False)

    @property
    def line(self) -> int:
        return self.span.start_line

    @property
    def column(self) -> int:
        return self.span.start_column

    def sort_key(self):
        return (self.file, self.span.start_line, self.span.start_column, self.rule_id, self.kind)

    def to_dict(self) -> dict:
        return {
            'ruleId': self.rule_id,
            'kind': self.kind,
            'severity': self.severity.value,
            'file': self.file,
            'startLine': self.span.start_line,
            'startColumn': self.span.start_column,
            'endLine': self.span.end_line,
            'endColumn': self.span.end_column,
            'message': self.message,
            'arguments': list(self.arguments),
        }


class DiagnosticReporter:
    """Builds diagnostics for one file and hands them to ``emit``."""

    def __init__(self, file_path: str, emit: Callable[[Diagnostic], None],
                 severity_overrides: Optional[Mapping[str, Severity]] = None):
        self.file_path = file_path
        self.emit = emit
        self.severity_overrides = dict(severity_overrides or {})

    def severity_for(self, violation: Violation) -> Severity:
        rule = violation.rule
        for key in (rule.key, rule.rule_id):
            if key in self.severity_overrides:
                return self.severity_overrides[key]
        return rule.severity

    def report(self, violation: Violation, severity: Optional[Severity] = None,
               version: Optional[FrameworkVersion] = None,
               member: Optional[Node] = None) -> Optional[Diagnostic]:
        if member is not None and not member.span.contains(violation.span):
            logger.warning("%s: dropping %s anchored outside its member at %d:%d",
                           self.file_path, violation.key, violation.span.start_line,
                           violation.span.start_column)
            return None
        signature = violation.signature
        if (signature is not None and signature.min_safe_version is not None
                and not GATE.is_unsafe_for_version(signature, version)):
            logger.debug("%s: %s gated off for %s", self.file_path, violation.key, version)
            return None
        rule = violation.rule
        diagnostic = Diagnostic(
            rule_id=rule.rule_id,
            kind=rule.key,
            severity=severity or self.severity_for(violation),
            file=self.file_path,
            span=violation.span,
            message=format_message(rule.key, violation.arguments),
            arguments=tuple(violation.arguments),
            anchor_kind=violation.anchor.kind,
        )
        self.emit(diagnostic)
        return diagnostic


# ============================================================================
# Fix Advisor
# ============================================================================

class EditClass(Enum):
    INSERT_SECURE_RESOLVER_ASSIGNMENT = "InsertSecureResolverAssignment"
    REPLACE_WITH_SECURE_RESOLVER = "ReplaceWithSecureResolver"
    USE_XML_READER_OVERLOAD = "UseXmlReaderOverload"
    PROHIBIT_DTD_PROCESSING = "ProhibitDtdProcessing"
    ADD_SECURE_CONSTRUCTOR = "AddSecureConstructor"
    SECURE_CONSTRUCTOR = "SecureConstructor"
    USE_DEFAULT_XSLT_SETTINGS = "UseDefaultXsltSettings"


@dataclass(frozen=True)
class FixSuggestion:
    diagnostic: Diagnostic
    edit_class: EditClass
    anchor_line: int
    anchor_column: int

    def to_dict(self) -> dict:
        return {
            'ruleId': self.diagnostic.rule_id,
            'kind': self.diagnostic.kind,
            'editClass': self.edit_class.value,
            'anchorLine': self.anchor_line,
            'anchorColumn': self.anchor_column,
        }


_EDIT_CLASSES: Mapping[str, EditClass] = {
    'XmlTextReaderConstructedWithNoSecureResolution': EditClass.PROHIBIT_DTD_PROCESSING,
    'XmlTextReaderSetInsecureResolution': EditClass.REPLACE_WITH_SECURE_RESOLVER,
    'DoNotUseDtdProcessingOverloads': EditClass.USE_XML_READER_OVERLOAD,
    'XmlReaderCreateInsecureConstructed': EditClass.PROHIBIT_DTD_PROCESSING,
    'XmlReaderCreateInsecureInput': EditClass.PROHIBIT_DTD_PROCESSING,
    'XslCompiledTransformLoadInsecureConstructed': EditClass.USE_DEFAULT_XSLT_SETTINGS,
    'XslCompiledTransformLoadInsecureInput': EditClass.USE_DEFAULT_XSLT_SETTINGS,
    'XmlDocumentDerivedClassConstructorNoSecureXmlResolver': EditClass.SECURE_CONSTRUCTOR,
    'XmlDocumentDerivedClassNoConstructor': EditClass.ADD_SECURE_CONSTRUCTOR,
    'XmlDocumentDerivedClassSetInsecureXmlResolverInMethod': EditClass.REPLACE_WITH_SECURE_RESOLVER,
    'XmlTextReaderDerivedClassConstructorNoSecureSettings': EditClass.SECURE_CONSTRUCTOR,
    'XmlTextReaderDerivedClassNoConstructor': EditClass.ADD_SECURE_CONSTRUCTOR,
    'XmlTextReaderDerivedClassSetInsecureSettingsInMethod': EditClass.REPLACE_WITH_SECURE_RESOLVER,
}


class FixAdvisor:
    """Proposes an edit class per diagnostic; never rewrites text."""

    def suggest(self, diagnostic: Diagnostic) -> Optional[FixSuggestion]:
        rule = RULES.get(diagnostic.kind)
        if rule is None or not rule.fixable:
            return None
        if diagnostic.kind == 'XmlDocumentWithNoSecureResolver':
            if diagnostic.anchor_kind == NEW:
                edit = EditClass.INSERT_SECURE_RESOLVER_ASSIGNMENT
            else:
                edit = EditClass.REPLACE_WITH_SECURE_RESOLVER
        else:
            edit = _EDIT_CLASSES.get(diagnostic.kind)
            if edit is None:
                return None
        if edit is EditClass.INSERT_SECURE_RESOLVER_ASSIGNMENT:
            # The new statement goes after the construction
            return FixSuggestion(diagnostic, edit, diagnostic.span.end_line, diagnostic.span.end_column)
        return FixSuggestion(diagnostic, edit, diagnostic.span.start_line, diagnostic.span.start_column)


FIX_DESCRIPTIONS = {
    EditClass.INSERT_SECURE_RESOLVER_ASSIGNMENT: "Set XmlResolver to null (Nothing) right after construction.",
    EditClass.REPLACE_WITH_SECURE_RESOLVER: "Assign null (Nothing) or an XmlSecureResolver instead.",
    EditClass.USE_XML_READER_OVERLOAD: "Call the overload that takes an XmlReader created with secure settings.",
    EditClass.PROHIBIT_DTD_PROCESSING: "Set DtdProcessing to Prohibit and use a secure XmlResolver.",
    EditClass.ADD_SECURE_CONSTRUCTOR: "Add a constructor that sets the inherited settings to secure values.",
    EditClass.SECURE_CONSTRUCTOR: "Secure the inherited settings at the start of this constructor.",
    EditClass.USE_DEFAULT_XSLT_SETTINGS: "Use XsltSettings.Default or pass a null XmlResolver.",
}


# ============================================================================
# Summaries and plain reports
# ============================================================================

@dataclass
class ScanStats:
    files_scanned: int = 0
    parse_errors: int = 0
    members_analyzed: int = 0
    suppressed: int = 0
    elapsed: float = 0.0


def get_summary(diagnostics: List[Diagnostic]) -> dict:
    summary = {
        'by_severity': defaultdict(int),
        'by_rule': defaultdict(int),
        'by_kind': defaultdict(int),
    }
    for d in diagnostics:
        summary['by_severity'][d.severity.value] += 1
        summary['by_rule'][d.rule_id] += 1
        summary['by_kind'][d.kind] += 1
    return {key: dict(value) for key, value in summary.items()}


def build_json_report(diagnostics: List[Diagnostic], fixes: List[FixSuggestion],
                      stats: ScanStats, target_framework: Optional[str] = None) -> dict:
    return {
        'scan_date': datetime.now().isoformat(),
        'target_framework': target_framework,
        'files_scanned': stats.files_scanned,
        'parse_errors': stats.parse_errors,
        'suppressed': stats.suppressed,
        'total_diagnostics': len(diagnostics),
        'diagnostics': [d.to_dict() for d in diagnostics],
        'fixes': [f.to_dict() for f in fixes],
        'summary': get_summary(diagnostics),
    }


def format_text_report(diagnostics: List[Diagnostic], fixes: List[FixSuggestion],
                       stats: ScanStats) -> str:
    """Plain-text report, as written by ``-o``."""
    lines = []
    lines.append("=" * 80)
    lines.append("XML PROCESSING SECURITY REPORT")
    lines.append("=" * 80)
    lines.append(f"Scan Date: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append(f"Files Scanned: {stats.files_scanned}")
    lines.append(f"Parse Errors: {stats.parse_errors}")
    lines.append(f"Total Diagnostics: {len(diagnostics)}")
    lines.append("")

    summary = get_summary(diagnostics)
    lines.append("Summary by Severity:")
    for sev in (Severity.ERROR, Severity.WARNING, Severity.INFO):
        count = summary['by_severity'].get(sev.value, 0)
        if count > 0:
            lines.append(f"  {sev.value:10}: {count}")
    lines.append("")
    lines.append("Summary by Rule:")
    for rule_id, count in sorted(summary['by_rule'].items()):
        lines.append(f"  {rule_id:10}: {count}  ({RULE_TITLES[rule_id]})")
    lines.append("")
    lines.append("=" * 80)
    lines.append("")

    fix_by_diagnostic = {id(f.diagnostic): f for f in fixes}
    by_file = defaultdict(list)
    for d in diagnostics:
        by_file[d.file].append(d)

    for file_path, file_diagnostics in sorted(by_file.items()):
        lines.append(f"FILE: {file_path}")
        lines.append("-" * 80)
        for d in sorted(file_diagnostics, key=Diagnostic.sort_key):
            lines.append(f"[{d.severity.value}] {d.rule_id} {d.kind}")
            lines.append(f"  Line {d.line}, Col {d.column}: {d.message}")
            fix = fix_by_diagnostic.get(id(d))
            if fix is not None:
                lines.append(f"  Fix: {FIX_DESCRIPTIONS[fix.edit_class]}")
            lines.append("")
        lines.append("")

    if not diagnostics:
        lines.append("No insecure XML processing found.")
        lines.append("")
    return '\n'.join(lines)


def meets_severity(diagnostic: Diagnostic, minimum: Severity) -> bool:
    return SEVERITY_ORDER[diagnostic.severity] >= SEVERITY_ORDER[minimum]


# ============================================================================
# Rich dashboard
# ============================================================================

_SEVERITY_STYLES = {
    Severity.ERROR: ('bold red', 'bold white on red'),
    Severity.WARNING: ('yellow', 'bold yellow'),
    Severity.INFO: ('dim white', 'dim'),
}


def print_banner(console: Console):
    banner_lines = [
        " _  __ _  __ ______   __                __",
        "| |/_/| |/_// __/ /  / /_ _____  ____  / /____ ____",
        ">  < _>  < / _// _ \\/ // / _ \\/ __/ / __/ -_) __/",
        "/_/|_/_/|_|/___/_//_/\\_,_/_//_/_/    \\__/\\__/_/",
    ]
    title_content = Text()
    title_content.append('\n'.join(banner_lines), style="bold red")
    title_content.append("\n\n")
    title_content.append("XML External Entity Detector for .NET\n", style="bold white")
    title_content.append("C# | Visual Basic | Dataflow-Aware", style="dim")

    console.print()
    console.print(Panel(
        Align.center(title_content),
        border_style="red",
        box=box.DOUBLE,
        padding=(1, 2),
    ))
    console.print()


def build_stats_panel(stats: ScanStats, diagnostics: List[Diagnostic]) -> Panel:
    table = Table(show_header=False, box=None, padding=(0, 1), expand=True)
    table.add_column("key", style="bold cyan", no_wrap=True, ratio=3)
    table.add_column("value", style="white", ratio=1)

    table.add_row("Files Scanned", str(stats.files_scanned))
    table.add_row("Members Analyzed", str(stats.members_analyzed))
    table.add_row("Parse Errors", str(stats.parse_errors))
    table.add_row("Suppressed", str(stats.suppressed))
    table.add_row("Total Diagnostics", str(len(diagnostics)))
    table.add_row("Scan Time", f"{stats.elapsed:.2f}s")
    table.add_row("", "")

    summary = get_summary(diagnostics)
    for sev in (Severity.ERROR, Severity.WARNING, Severity.INFO):
        count = summary['by_severity'].get(sev.value, 0)
        if count > 0:
            table.add_row(Text(sev.value, style=_SEVERITY_STYLES[sev][0]), str(count))
    table.add_row("", "")
    for kind, count in sorted(summary['by_kind'].items(), key=lambda x: -x[1]):
        table.add_row(Text(kind, style="cyan"), str(count))

    return Panel(
        table,
        title="[bold white]Scan Statistics[/bold white]",
        border_style="cyan",
        box=box.ROUNDED,
        padding=(1, 1),
    )


def build_diagnostic_panel(d: Diagnostic, fix: Optional[FixSuggestion] = None,
                           source_code: Optional[str] = None) -> Panel:
    border_style, badge_style = _SEVERITY_STYLES.get(d.severity, ('white', 'white'))

    title = Text()
    title.append(f" {d.severity.value} ", style=badge_style)
    title.append(f" {d.rule_id} ", style="bold white")
    title.append(f" {d.kind} ", style="dim")

    location = Text()
    location.append("Location: ", style="bold cyan")
    location.append(f"Line {d.line}", style="white")
    location.append(f", Col {d.column}", style="dim")
    rule_text = Text()
    rule_text.append("Rule: ", style="bold magenta")
    rule_text.append(RULE_TITLES.get(d.rule_id, d.rule_id), style="white")

    parts = [Columns([location, rule_text], padding=(0, 4))]
    parts.append(Text(f"\n{d.message}", style="italic white"))

    if fix is not None:
        fix_text = Text()
        fix_text.append("\nSuggested fix: ", style="bold green")
        fix_text.append(FIX_DESCRIPTIONS[fix.edit_class], style="green")
        parts.append(fix_text)

    if source_code:
        lexer = 'vbnet' if os.path.splitext(d.file)[1].lower() == '.vb' else 'csharp'
        src_lines = source_code.split('\n')
        start = max(0, d.line - 3)
        end = min(len(src_lines), d.line + 2)
        parts.append(Text(""))
        parts.append(Syntax(
            '\n'.join(src_lines[start:end]), lexer, theme="monokai",
            line_numbers=True, start_line=start + 1, highlight_lines={d.line},
        ))

    return Panel(
        Group(*parts),
        title=title,
        border_style=border_style,
        box=box.ROUNDED,
        padding=(1, 2),
    )


def fixes_by_diagnostic(fixes: List[FixSuggestion]) -> Dict[int, FixSuggestion]:
    return {id(f.diagnostic): f for f in fixes}
