"""Configuration file support for xxehunter.

Loads .xxehunter.yml from the project root (or a given path) and provides
the target framework, path exclusions, suppression and severity settings.

Config format example:

    target_framework: net472

    exclude_paths:
      - "obj/"
      - "bin/"
      - "**/*.Designer.cs"

    suppression_keyword: "nosec"
    min_severity: "warning"

    disabled_rules:
      - CA3076
      - DoNotUseSetInnerXml

    severity_overrides:
      CA3077: error
      ReviewDtdProcessingProperties: warning

    workers: 4
"""

import fnmatch
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import yaml

from xxehunter_catalog import RULES, Severity

CONFIG_NAMES = ('.xxehunter.yml', '.xxehunter.yaml')
_RULE_NAMES = {r.rule_id for r in RULES.values()} | set(RULES)


class ConfigError(ValueError):
    """An invalid configuration value; ``key`` names the offending setting."""

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


@dataclass
class XxeHunterConfig:
    """Parsed configuration from .xxehunter.yml."""
    target_framework: Optional[str] = None
    exclude_paths: List[str] = field(default_factory=list)
    suppression_keyword: str = "nosec"
    min_severity: Severity = Severity.INFO
    disabled_rules: List[str] = field(default_factory=list)
    severity_overrides: Dict[str, Severity] = field(default_factory=dict)
    workers: int = 4
    source: Optional[str] = None

    def should_exclude(self, file_path: str) -> bool:
        """Check if a file path matches any exclusion pattern."""
        for pattern in self.exclude_paths:
            if fnmatch.fnmatch(file_path, pattern):
                return True
            # A trailing slash names a directory anywhere in the path
            if pattern.endswith('/') and pattern.rstrip('/') in file_path.replace('\\', '/').split('/'):
                return True
        return False

    def is_rule_enabled(self, rule_id: str, kind: str) -> bool:
        return rule_id not in self.disabled_rules and kind not in self.disabled_rules


def load_config(target_path: str, config_path: str = None) -> XxeHunterConfig:
    """Load xxehunter configuration.

    Args:
        target_path: The scan target path (used to find .xxehunter.yml)
        config_path: Explicit config path (overrides auto-discovery)

    Returns:
        The parsed config, or defaults when no file is found.

    Raises:
        ConfigError: the file holds an invalid value, or ``config_path`` is missing.
    """
    if config_path:
        if not os.path.isfile(config_path):
            raise ConfigError('config', f"no such file {config_path!r}")
        return _parse_config(config_path)

    # Walk up from target_path to find .xxehunter.yml
    search_dir = os.path.abspath(target_path)
    if os.path.isfile(search_dir):
        search_dir = os.path.dirname(search_dir)

    while True:
        for name in CONFIG_NAMES:
            candidate = os.path.join(search_dir, name)
            if os.path.isfile(candidate):
                return _parse_config(candidate)
        parent = os.path.dirname(search_dir)
        if parent == search_dir:
            break  # Reached filesystem root
        search_dir = parent

    return XxeHunterConfig()


def _parse_severity(key: str, value) -> Severity:
    try:
        return Severity.parse(value)
    except ValueError as e:
        raise ConfigError(key, str(e)) from e


def _string_list(key: str, value) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(key, "expected a list")
    return [str(v) for v in value]


def _parse_config(config_path: str) -> XxeHunterConfig:
    """Parse a .xxehunter.yml file into an XxeHunterConfig."""
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError('config', f"invalid YAML in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError('config', "top level must be a mapping")
    return parse_config_data(data, source=config_path)


def parse_config_data(data: dict, source: Optional[str] = None) -> XxeHunterConfig:
    config = XxeHunterConfig(source=source)

    framework = data.get('target_framework')
    if framework is not None:
        config.target_framework = str(framework)

    config.exclude_paths = _string_list('exclude_paths', data.get('exclude_paths'))
    config.suppression_keyword = str(data.get('suppression_keyword', 'nosec'))
    if not config.suppression_keyword.strip():
        raise ConfigError('suppression_keyword', "must not be empty")

    if 'min_severity' in data:
        config.min_severity = _parse_severity('min_severity', data['min_severity'])

    config.disabled_rules = _string_list('disabled_rules', data.get('disabled_rules'))
    for rule in config.disabled_rules:
        if rule not in _RULE_NAMES:
            raise ConfigError('disabled_rules', f"unknown rule {rule!r}")

    overrides = data.get('severity_overrides') or {}
    if not isinstance(overrides, dict):
        raise ConfigError('severity_overrides', "expected a mapping")
    for rule, level in overrides.items():
        if str(rule) not in _RULE_NAMES:
            raise ConfigError('severity_overrides', f"unknown rule {rule!r}")
        config.severity_overrides[str(rule)] = _parse_severity(f'severity_overrides.{rule}', level)

    if 'workers' in data:
        workers = data['workers']
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ConfigError('workers', "must be a positive integer")
        config.workers = workers

    return config
