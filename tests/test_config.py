"""Loading and validating .xxehunter.yml."""

import pytest

from xxehunter_catalog import Severity
from xxehunter_config import ConfigError, XxeHunterConfig, load_config, parse_config_data


class TestLoadConfig:

    def test_defaults_when_missing(self, tmp_path):
        config = load_config(str(tmp_path))
        assert config == XxeHunterConfig()
        assert config.suppression_keyword == 'nosec'
        assert config.min_severity is Severity.INFO

    def test_found_in_parent_directory(self, tmp_path):
        (tmp_path / '.xxehunter.yml').write_text(
            "target_framework: net472\n"
            "exclude_paths:\n  - 'generated/'\n"
            "min_severity: warning\n"
            "disabled_rules: [CA3076]\n"
            "severity_overrides:\n  CA3077: error\n"
            "workers: 2\n"
        )
        nested = tmp_path / 'src' / 'App'
        nested.mkdir(parents=True)
        config = load_config(str(nested))
        assert config.target_framework == 'net472'
        assert config.exclude_paths == ['generated/']
        assert config.min_severity is Severity.WARNING
        assert config.disabled_rules == ['CA3076']
        assert config.severity_overrides == {'CA3077': Severity.ERROR}
        assert config.workers == 2
        assert config.source == str(tmp_path / '.xxehunter.yml')

    def test_target_file_uses_its_directory(self, tmp_path):
        (tmp_path / '.xxehunter.yaml').write_text("suppression_keyword: xxe-ok\n")
        source = tmp_path / 'Program.cs'
        source.write_text("class A { }")
        assert load_config(str(source)).suppression_keyword == 'xxe-ok'

    def test_explicit_path(self, tmp_path):
        path = tmp_path / 'custom.yml'
        path.write_text("target_framework: v4.5\n")
        assert load_config(str(tmp_path), str(path)).target_framework == 'v4.5'

    def test_explicit_missing_path(self, tmp_path):
        with pytest.raises(ConfigError) as excinfo:
            load_config(str(tmp_path), str(tmp_path / 'nope.yml'))
        assert excinfo.value.key == 'config'

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / '.xxehunter.yml').write_text("exclude_paths: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(str(tmp_path))

    def test_top_level_must_be_mapping(self, tmp_path):
        (tmp_path / '.xxehunter.yml').write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(str(tmp_path))

    def test_empty_file(self, tmp_path):
        (tmp_path / '.xxehunter.yml').write_text("")
        assert load_config(str(tmp_path)).workers == 4


class TestValidation:

    @pytest.mark.parametrize("data, key", [
        ({'disabled_rules': ['CA9999']}, 'disabled_rules'),
        ({'disabled_rules': 'CA3075'}, 'disabled_rules'),
        ({'severity_overrides': {'CA3075': 'critical'}}, 'severity_overrides.CA3075'),
        ({'severity_overrides': {'Bogus': 'error'}}, 'severity_overrides'),
        ({'severity_overrides': ['CA3075']}, 'severity_overrides'),
        ({'min_severity': 'loud'}, 'min_severity'),
        ({'workers': 0}, 'workers'),
        ({'workers': 'four'}, 'workers'),
        ({'workers': True}, 'workers'),
        ({'suppression_keyword': '  '}, 'suppression_keyword'),
        ({'exclude_paths': 'bin/'}, 'exclude_paths'),
    ])
    def test_rejected(self, data, key):
        with pytest.raises(ConfigError) as excinfo:
            parse_config_data(data)
        assert excinfo.value.key == key

    def test_rule_names_accept_kinds(self):
        config = parse_config_data({'disabled_rules': ['DoNotUseSetInnerXml'],
                                    'severity_overrides': {'ReviewDtdProcessingProperties': 'warning'}})
        assert not config.is_rule_enabled('CA3075', 'DoNotUseSetInnerXml')
        assert config.is_rule_enabled('CA3075', 'XmlDocumentWithNoSecureResolver')
        assert config.severity_overrides['ReviewDtdProcessingProperties'] is Severity.WARNING

    def test_numeric_framework_is_text(self):
        assert parse_config_data({'target_framework': 4.8}).target_framework == '4.8'


class TestExclusion:

    @pytest.mark.parametrize("path, excluded", [
        ('src/generated/Api.cs', True),
        ('src/App/Form1.Designer.cs', True),
        ('src\\generated\\Api.cs', True),
        ('src/App/Program.cs', False),
        ('src/regenerated/Api.cs', False),
    ])
    def test_should_exclude(self, path, excluded):
        config = XxeHunterConfig(exclude_paths=['generated/', '*.Designer.cs'])
        assert config.should_exclude(path) is excluded
