#!/usr/bin/env python3
"""
xxehunter - Insecure XML Processing Detector for .NET
=====================================================
Static analysis for C# and Visual Basic sources that finds XML parsers and
readers configured to expand DTDs or resolve external entities.

Provides:
- Structural analysis over tree-sitter (C#) and a native parser (VB)
- Per-member dataflow tracking of resolver and reader settings
- Target-framework aware defaults (project files, assembly attributes)
- Fix suggestions for each finding

Rules:
- CA3075 - Insecure DTD processing in XML
- CA3076 - Insecure XSLT script processing
- CA3077 - Insecure processing in API design (XmlDocument/XmlTextReader subclasses)
"""

import argparse
import json
import logging
import os
import re
import sys
import textwrap
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rich import box
from rich.align import Align
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.rule import Rule
from rich.text import Text

from csharp_treesitter import parse_csharp
from vbnet_syntax import parse_vb
from xxehunter_catalog import SEVERITY_ORDER, FrameworkVersion, Severity
from xxehunter_config import ConfigError, XxeHunterConfig, load_config
from xxehunter_model import CompilationUnit, Node, iter_analysis_units, iter_types
from xxehunter_project import ProjectFileError, effective_version, group_compilations
from xxehunter_report import (
    Diagnostic, DiagnosticReporter, FixAdvisor, FixSuggestion, ScanStats, build_diagnostic_panel,
    build_json_report, build_stats_panel, fixes_by_diagnostic, format_text_report, meets_severity,
    print_banner,
)
from xxehunter_rules import MemberResult, Violation, analyze_member, analyze_type
from xxehunter_semantic import SemanticModel

console = Console()
logger = logging.getLogger('xxehunter')

LANGUAGE_ALIASES = {'csharp': 'csharp', 'cs': 'csharp', 'c#': 'csharp',
                    'vb': 'vb', 'vbnet': 'vb', 'visualbasic': 'vb'}
PARSERS = {'csharp': parse_csharp, 'vb': parse_vb}


# ============================================================================
# Inline suppression
# ============================================================================

_CS_PRAGMA = re.compile(r'^\s*#\s*pragma\s+warning\s+(disable|restore)\b(.*)$', re.IGNORECASE)
_VB_PRAGMA = re.compile(r'^\s*#\s*(disable|enable)\s+warning\b(.*)$', re.IGNORECASE)
_ALL_RULES = '*'


class SuppressionIndex:
    """Line markers and pragma ranges of one source file."""

    def __init__(self, source: str, language: str, keyword: str = 'nosec'):
        self.language = language
        comment = r"//|/\*" if language == 'csharp' else r"'|\bREM\b"
        self._marker = re.compile(rf"(?:{comment})\s*{re.escape(keyword)}\b|xxehunter:ignore",
                                  re.IGNORECASE)
        self.lines = source.splitlines()
        self.ranges: Dict[str, List[Tuple[int, int]]] = defaultdict(list)
        self._scan_pragmas()

    def _scan_pragmas(self):
        pattern = _CS_PRAGMA if self.language == 'csharp' else _VB_PRAGMA
        open_at: Dict[str, int] = {}
        for lineno, text in enumerate(self.lines, start=1):
            match = pattern.match(text)
            if not match:
                continue
            action = match.group(1).lower()
            ids = [i for i in re.split(r'[\s,]+', match.group(2).split('//')[0].split("'")[0]) if i]
            if action == 'disable':
                for rule in ids or [_ALL_RULES]:
                    open_at.setdefault(rule, lineno)
            else:
                for rule in (ids or list(open_at)):
                    start = open_at.pop(rule, None)
                    if start is not None:
                        self.ranges[rule].append((start, lineno))
        end = len(self.lines) + 1
        for rule, start in open_at.items():
            self.ranges[rule].append((start, end))

    def has_marker(self, lineno: int) -> bool:
        if 1 <= lineno <= len(self.lines):
            return bool(self._marker.search(self.lines[lineno - 1]))
        return False

    def is_suppressed(self, diagnostic: Diagnostic) -> bool:
        if self.has_marker(diagnostic.line):
            return True
        for rule in (diagnostic.rule_id, diagnostic.kind, _ALL_RULES):
            for start, end in self.ranges.get(rule, ()):
                if start < diagnostic.line < end:
                    return True
        return False


# ============================================================================
# Scanner
# ============================================================================

class XxeScanner:
    """Main scanner class that orchestrates parsing, analysis and reporting."""

    SUPPORTED_EXTENSIONS = {
        '.cs': 'csharp',
        '.vb': 'vb',
    }

    # Directories to exclude by default
    DEFAULT_EXCLUDES = {
        'bin', 'obj', '.git', '.vs', '.idea', 'packages', 'node_modules', 'TestResults',
        '.nuget', 'artifacts',
    }

    # Generated files carry no hand-written XML handling
    DEFAULT_FILE_EXCLUDES = ('.designer.cs', '.designer.vb', '.g.cs', '.g.i.cs', 'assemblyattributes.cs')

    def __init__(self, config: Optional[XxeHunterConfig] = None, target_framework: Optional[str] = None,
                 workers: Optional[int] = None, scan_all: bool = False, show_progress: bool = False):
        self.config = config or XxeHunterConfig()
        self.target_framework = target_framework or self.config.target_framework
        self.workers = workers or self.config.workers
        self.scan_all = scan_all
        self.show_progress = show_progress
        self.cancel_event = threading.Event()
        self.stats = ScanStats()
        self.all_diagnostics: List[Diagnostic] = []
        self.fixes: List[FixSuggestion] = []
        self.sources: Dict[str, str] = {}
        self.frameworks: Dict[str, Optional[str]] = {}
        self.advisor = FixAdvisor()

    def cancel(self):
        """Stop starting new members; members already running finish and are discarded."""
        self.cancel_event.set()

    def should_scan_file(self, file_path: Path) -> bool:
        """Check if file should be scanned."""
        if file_path.suffix.lower() not in self.SUPPORTED_EXTENSIONS:
            return False
        if self.config.should_exclude(str(file_path)):
            return False
        if self.scan_all:
            return True
        if any(part in self.DEFAULT_EXCLUDES for part in file_path.parts[:-1]):
            return False
        return not file_path.name.lower().endswith(self.DEFAULT_FILE_EXCLUDES)

    def _collect_scannable_files(self, directory: Path) -> List[Path]:
        """Collect all files that should be scanned from a directory."""
        scannable = []
        for root, dirs, files in os.walk(directory):
            if not self.scan_all:
                dirs[:] = sorted(d for d in dirs if d not in self.DEFAULT_EXCLUDES)
            for file in sorted(files):
                file_path = Path(root) / file
                if self.should_scan_file(file_path):
                    scannable.append(file_path)
        return scannable

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def parse_source(self, source_code: str, language: str, file_path: str) -> Optional[CompilationUnit]:
        try:
            unit = PARSERS[language](source_code, file_path)
        except (ValueError, RecursionError) as e:
            logger.warning("Cannot parse %s: %s", file_path, e)
            self.stats.parse_errors += 1
            return None
        self.sources[file_path] = source_code
        self.stats.files_scanned += 1
        return unit

    def parse_file(self, file_path: Path) -> Optional[CompilationUnit]:
        try:
            source_code = file_path.read_text(encoding='utf-8-sig', errors='replace')
        except OSError as e:
            logger.warning("Error reading %s: %s", file_path, e)
            self.stats.parse_errors += 1
            return None
        language = self.SUPPORTED_EXTENSIONS[file_path.suffix.lower()]
        logger.debug("Parsing %s (%s)", file_path, language)
        return self.parse_source(source_code, language, str(file_path))

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def _analyze_one(self, unit: CompilationUnit, model: SemanticModel, type_node: Optional[Node],
                     member: Node, version: Optional[FrameworkVersion]) -> Optional[MemberResult]:
        if self.cancel_event.is_set():
            return None
        try:
            result = analyze_member(unit, model, type_node, member, version)
        except Exception:
            logger.exception("Analysis failed for %s in %s", member.name, unit.path)
            return None
        if self.cancel_event.is_set():
            return None
        return result

    def analyze_units(self, units: List[CompilationUnit], version: Optional[FrameworkVersion],
                      progress: Optional[Progress] = None, task=None) -> List[Diagnostic]:
        """Analyze one language's share of a compilation."""
        model = SemanticModel(units)
        jobs = [(unit, type_node, member) for unit in units
                for type_node, member in iter_analysis_units(unit.root)]
        results: List[MemberResult] = []
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            futures = [pool.submit(self._analyze_one, unit, model, type_node, member, version)
                       for unit, type_node, member in jobs]
            for future in futures:
                result = future.result()
                if progress is not None:
                    progress.advance(task)
                if result is not None:
                    results.append(result)
        self.stats.members_analyzed += len(results)
        if self.cancel_event.is_set():
            return []

        collected: List[Diagnostic] = []
        reporters = {unit.path: DiagnosticReporter(unit.path, collected.append,
                                                   self.config.severity_overrides)
                     for unit in units}
        for result in results:
            for violation in result.violations:
                reporters[result.unit.path].report(violation, version=version, member=result.member)

        decl_units = {decl: unit for unit in units for decl in iter_types(unit.root)}
        by_type: Dict[str, List[MemberResult]] = defaultdict(list)
        for result in results:
            if result.type_name is not None:
                by_type[result.type_name].append(result)
        for info in model.user_types():
            pairs: List[Tuple[Node, Violation]] = analyze_type(model, info, by_type.get(info.name, ()), version)
            for decl, violation in pairs:
                unit = decl_units.get(decl)
                if unit is not None:
                    reporters[unit.path].report(violation, version=version, member=decl)
        return collected

    def _finalize(self, diagnostics: List[Diagnostic], units: List[CompilationUnit]) -> List[Diagnostic]:
        """Drop suppressed and disabled diagnostics; deterministic order."""
        indexes = {u.path: SuppressionIndex(u.source, u.language, self.config.suppression_keyword)
                   for u in units}
        kept = []
        for d in diagnostics:
            if not self.config.is_rule_enabled(d.rule_id, d.kind):
                continue
            index = indexes.get(d.file)
            if index is not None and index.is_suppressed(d):
                self.stats.suppressed += 1
                continue
            kept.append(d)
        unique = {(d.file, d.span, d.kind): d for d in kept}
        return sorted(unique.values(), key=Diagnostic.sort_key)

    def analyze_compilation(self, units: List[CompilationUnit], project_file: Optional[Path] = None,
                            key: str = '<memory>', progress: Optional[Progress] = None,
                            task=None) -> List[Diagnostic]:
        try:
            version, framework_text = effective_version(self.target_framework, units, project_file)
        except ProjectFileError as e:
            logger.warning("Unreadable project file: %s", e)
            self.stats.parse_errors += 1
            version, framework_text = None, None
        self.frameworks[key] = framework_text
        if version is None:
            logger.debug("%s: target framework unknown, assuming unsafe defaults", key)

        diagnostics: List[Diagnostic] = []
        by_language: Dict[str, List[CompilationUnit]] = defaultdict(list)
        for unit in units:
            by_language[unit.language].append(unit)
        for language in sorted(by_language):
            diagnostics.extend(self.analyze_units(by_language[language], version, progress, task))
        return self._finalize(diagnostics, units)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def scan_source(self, source_code: str, language: str, file_path: str = '<source>') -> List[Diagnostic]:
        language = LANGUAGE_ALIASES.get(language.lower().replace(' ', ''), language)
        if language not in PARSERS:
            raise ValueError(f"unsupported language {language!r}")
        unit = self.parse_source(source_code, language, file_path)
        if unit is None:
            return []
        diagnostics = self.analyze_compilation([unit], key=file_path)
        self._record(diagnostics)
        return diagnostics

    def scan(self, target: str) -> List[Diagnostic]:
        """Scan a file or directory."""
        target_path = Path(target)
        if not target_path.exists():
            console.print(f"[bold red]Error:[/bold red] {target} does not exist")
            return []

        start = time.time()
        if target_path.is_file():
            files = [target_path] if target_path.suffix.lower() in self.SUPPORTED_EXTENSIONS else []
            root = target_path.resolve().parent
        else:
            files = self._collect_scannable_files(target_path)
            root = target_path.resolve()

        diagnostics: List[Diagnostic] = []
        if files:
            with Progress(
                SpinnerColumn("moon"),
                TextColumn("[bold cyan]{task.description}"),
                BarColumn(bar_width=30, style="cyan", complete_style="green"),
                MofNCompleteColumn(),
                TextColumn("[dim]{task.fields[current]}[/dim]"),
                console=console,
                transient=True,
                disable=not self.show_progress,
            ) as progress:
                for compilation in group_compilations(files, root):
                    if self.cancel_event.is_set():
                        break
                    parse_task = progress.add_task("Parsing", total=len(compilation.files), current="")
                    units = []
                    for file_path in compilation.files:
                        progress.update(parse_task, current=file_path.name)
                        unit = self.parse_file(file_path)
                        if unit is not None:
                            units.append(unit)
                        progress.advance(parse_task)
                    progress.remove_task(parse_task)
                    if not units:
                        continue
                    members = sum(1 for u in units for _ in iter_analysis_units(u.root))
                    name = compilation.project_file.name if compilation.project_file else compilation.key
                    analyze_task = progress.add_task("Analyzing", total=members, current=name)
                    diagnostics.extend(self.analyze_compilation(
                        units, compilation.project_file, compilation.key, progress, analyze_task))
                    progress.remove_task(analyze_task)

        self.stats.elapsed = time.time() - start
        diagnostics.sort(key=Diagnostic.sort_key)
        self._record(diagnostics)
        return diagnostics

    def _record(self, diagnostics: List[Diagnostic]):
        self.all_diagnostics.extend(diagnostics)
        self.fixes.extend(f for f in map(self.advisor.suggest, diagnostics) if f is not None)

    def apply_min_severity(self, minimum: Severity):
        self.all_diagnostics = [d for d in self.all_diagnostics if meets_severity(d, minimum)]
        kept = {id(d) for d in self.all_diagnostics}
        self.fixes = [f for f in self.fixes if id(f.diagnostic) in kept]

    def print_report(self, output_format: str = 'text', output_file: Optional[str] = None):
        """Print or save the plain report."""
        if output_format == 'json':
            frameworks = sorted({f for f in self.frameworks.values() if f})
            report = build_json_report(self.all_diagnostics, self.fixes, self.stats,
                                       ', '.join(frameworks) or None)
            output = json.dumps(report, indent=2)
        else:
            output = format_text_report(self.all_diagnostics, self.fixes, self.stats)

        if output_file:
            with open(output_file, 'w', encoding='utf-8') as f:
                f.write(output)
            console.print(f"\n[bold green]Report saved to {output_file}[/bold green]")
        else:
            print(output)


# ============================================================================
# Public API
# ============================================================================

def scan_source(source: str, language: str, file_path: str = '<source>',
                target_framework: Optional[str] = None,
                config: Optional[XxeHunterConfig] = None) -> List[Diagnostic]:
    """Analyze one in-memory source file."""
    scanner = XxeScanner(config=config, target_framework=target_framework, workers=1)
    return scanner.scan_source(source, language, file_path)


def scan_path(path: str, config: Optional[XxeHunterConfig] = None) -> List[Diagnostic]:
    """Analyze a file or directory tree."""
    scanner = XxeScanner(config=config if config is not None else load_config(path))
    return scanner.scan(path)


# ============================================================================
# CLI
# ============================================================================

def setup_logging(verbose: bool = False):
    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)


def _print_dashboard(scanner: XxeScanner, target: str, min_severity: Severity, show_fixes: bool):
    scan_date = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    frameworks = sorted({f for f in scanner.frameworks.values() if f}) or ['unknown']
    header_text = Text()
    header_text.append("Target: ", style="bold cyan")
    header_text.append(f"{target}  ", style="white")
    header_text.append("Date: ", style="bold cyan")
    header_text.append(f"{scan_date}  ", style="white")
    header_text.append("Framework: ", style="bold cyan")
    header_text.append(f"{', '.join(frameworks)}  ", style="white")
    header_text.append("Severity: ", style="bold cyan")
    header_text.append(f">= {min_severity.value}", style="white")

    console.print(Panel(
        Align.center(header_text),
        title="[bold white]Scan Info[/bold white]",
        border_style="blue",
        box=box.ROUNDED,
    ))
    console.print()
    console.print(build_stats_panel(scanner.stats, scanner.all_diagnostics))
    console.print()

    diagnostics = scanner.all_diagnostics
    if not diagnostics:
        console.print(Panel(
            Align.center(Text("No insecure XML processing found.", style="bold green")),
            border_style="green",
            box=box.ROUNDED,
            padding=(1, 4),
        ))
        return

    console.print(Rule("[bold white]Diagnostics[/bold white]", style="red"))
    console.print()
    fixes = fixes_by_diagnostic(scanner.fixes) if show_fixes else {}
    by_file = defaultdict(list)
    for d in diagnostics:
        by_file[d.file].append(d)
    for file_path, file_diagnostics in sorted(by_file.items()):
        console.print(Text(f"FILE: {file_path}", style="bold underline cyan"))
        console.print()
        source = scanner.sources.get(file_path)
        for d in file_diagnostics:
            console.print(build_diagnostic_panel(d, fixes.get(id(d)), source_code=source))
            console.print()


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description='xxehunter - Insecure XML/DTD processing detector for C# and Visual Basic',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent('''
            Examples:
              xxehunter /path/to/solution
              xxehunter Service.cs --target-framework net452
              xxehunter /path/to/solution --output json -o report.json
              xxehunter /path/to/solution --min-severity warning
        ''')
    )

    parser.add_argument('target', help='File or directory to scan')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--output', choices=['text', 'json'], default='text',
                        help='Output format (default: text)')
    parser.add_argument('-o', '--output-file', help='Save report to file')
    parser.add_argument('--target-framework', help='Override the target framework (e.g. net472, v4.5.2)')
    parser.add_argument('--min-severity', choices=['info', 'warning', 'error'],
                        help='Minimum severity to report (default: config value or info)')
    parser.add_argument('--workers', type=int, help='Worker threads for member analysis')
    parser.add_argument('--scan-all', action='store_true',
                        help='Also scan bin/obj and generated files')
    parser.add_argument('--config', help='Path to .xxehunter.yml config file')
    parser.add_argument('--no-fixes', action='store_true', help='Do not show fix suggestions')

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = load_config(args.target, args.config)
        if args.workers is not None and args.workers < 1:
            raise ConfigError('workers', "must be a positive integer")
        min_severity = Severity.parse(args.min_severity) if args.min_severity else config.min_severity
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(2)

    if args.output == 'text':
        print_banner(console)

    scanner = XxeScanner(config=config, target_framework=args.target_framework,
                         workers=args.workers, scan_all=args.scan_all,
                         show_progress=args.output == 'text')
    try:
        scanner.scan(args.target)
    except KeyboardInterrupt:
        scanner.cancel()
        console.print("[bold yellow]Scan cancelled.[/bold yellow]")
        sys.exit(130)
    scanner.apply_min_severity(min_severity)
    if args.no_fixes:
        scanner.fixes = []

    # JSON output bypasses Rich dashboard
    if args.output == 'json':
        scanner.print_report(output_format='json', output_file=args.output_file)
    else:
        _print_dashboard(scanner, args.target, min_severity, not args.no_fixes)
        if args.output_file:
            scanner.print_report(output_format='text', output_file=args.output_file)

    # Exit with error code if warnings or errors remain
    blocking = sum(1 for d in scanner.all_diagnostics
                   if SEVERITY_ORDER[d.severity] >= SEVERITY_ORDER[Severity.WARNING])
    sys.exit(1 if blocking > 0 else 0)


if __name__ == '__main__':
    main()
