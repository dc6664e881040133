import textwrap

import pytest

from xxehunter import scan_source


def _clean(source: str) -> str:
    return textwrap.dedent(source).lstrip('\n')


@pytest.fixture
def scan_cs():
    """Scan a C# snippet; returns the diagnostics."""
    def scan(source, target_framework=None, config=None, file_path='Sample.cs'):
        return scan_source(_clean(source), 'csharp', file_path, target_framework, config)
    return scan


@pytest.fixture
def scan_vb():
    """Scan a Visual Basic snippet; returns the diagnostics."""
    def scan(source, target_framework=None, config=None, file_path='Sample.vb'):
        return scan_source(_clean(source), 'vb', file_path, target_framework, config)
    return scan