"""Project discovery and target-framework resolution.

Source files are grouped into compilations by their nearest ``*.csproj`` or
``*.vbproj`` (or by directory when there is none).  Each compilation gets one
effective framework version, taken from the first of:

    1. an explicit override (CLI flag or config)
    2. an assembly-level TargetFramework attribute in its sources
    3. the project file: TargetFramework, the lowest of TargetFrameworks,
       then TargetFrameworkVersion
    4. nothing (unknown, treated as unsafe defaults)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from defusedxml import ElementTree
from defusedxml.common import DefusedXmlException

from xxehunter_catalog import FrameworkVersion, parse_target_framework
from xxehunter_model import ATTRIBUTE, CompilationUnit, simple_type_name, visit

logger = logging.getLogger(__name__)

PROJECT_EXTENSIONS = ('.csproj', '.vbproj')
_FRAMEWORK_ATTRIBUTES = ('TargetFramework', 'TargetFrameworkAttribute')


class ProjectFileError(Exception):
    """A project file that could not be read or parsed."""


@dataclass
class Compilation:
    """Source files analyzed together, sharing one framework version."""
    key: str
    project_file: Optional[Path] = None
    files: List[Path] = field(default_factory=list)


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def read_project_framework(project_file: Path) -> Optional[str]:
    """Target framework text declared by an MSBuild project file.

    Raises ProjectFileError when the file cannot be parsed.
    """
    try:
        tree = ElementTree.parse(str(project_file))
    except (ElementTree.ParseError, DefusedXmlException, OSError) as e:
        raise ProjectFileError(f"{project_file}: {e}") from e

    values: Dict[str, List[str]] = {}
    for element in tree.getroot().iter():
        name = _local_name(element.tag)
        if name in ('TargetFramework', 'TargetFrameworks', 'TargetFrameworkVersion') and element.text:
            values.setdefault(name, []).append(element.text.strip())

    if values.get('TargetFramework'):
        return values['TargetFramework'][0]
    if values.get('TargetFrameworks'):
        return lowest_framework(values['TargetFrameworks'][0].split(';'))
    if values.get('TargetFrameworkVersion'):
        return values['TargetFrameworkVersion'][0]
    return None


def lowest_framework(monikers: Iterable[str]) -> Optional[str]:
    """The moniker with the lowest parsed version; unparseable ones count as lowest."""
    candidates = [m.strip() for m in monikers if m.strip()]
    if not candidates:
        return None
    for moniker in candidates:
        if parse_target_framework(moniker) is None:
            return moniker
    return min(candidates, key=parse_target_framework)


def find_project_file(source: Path, root: Optional[Path] = None) -> Optional[Path]:
    """Nearest project file in ``source``'s directory or above, not leaving ``root``."""
    directory = source.resolve().parent
    stop = root.resolve() if root is not None else None
    while True:
        try:
            candidates = sorted(p for p in directory.iterdir()
                                if p.is_file() and p.suffix.lower() in PROJECT_EXTENSIONS)
        except OSError as e:
            logger.debug("Cannot list %s: %s", directory, e)
            candidates = []
        if candidates:
            return candidates[0]
        if directory == stop or directory.parent == directory:
            return None
        if stop is not None and stop not in directory.parents:
            return None
        directory = directory.parent


def group_compilations(files: Iterable[Path], root: Optional[Path] = None) -> List[Compilation]:
    groups: Dict[str, Compilation] = {}
    for path in files:
        project = find_project_file(path, root)
        key = str(project) if project is not None else str(path.resolve().parent)
        if key not in groups:
            groups[key] = Compilation(key, project)
        groups[key].files.append(path)
    return [groups[k] for k in sorted(groups)]


def assembly_target_framework(units: Iterable[CompilationUnit]) -> Optional[str]:
    """First ``[assembly: TargetFramework("...")]`` value found in ``units``."""
    for unit in units:
        if unit.root is None:
            continue
        for node in visit(unit.root):
            if node.kind != ATTRIBUTE or node.attr('target') != 'assembly':
                continue
            name = simple_type_name(node.name)
            arguments = node.attr('arguments', ())
            if name in _FRAMEWORK_ATTRIBUTES and arguments:
                return arguments[0]
    return None


def effective_version(override: Optional[str], units: Iterable[CompilationUnit],
                      project_file: Optional[Path] = None
                      ) -> Tuple[Optional[FrameworkVersion], Optional[str]]:
    """(version, text it came from).  ProjectFileError propagates to the caller."""
    if override:
        return parse_target_framework(override), override
    text = assembly_target_framework(units)
    if text:
        return parse_target_framework(text), text
    if project_file is not None:
        text = read_project_framework(project_file)
        if text:
            return parse_target_framework(text), text
    return None, None
