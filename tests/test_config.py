"""
Configuration Tests

Tests for loading and validating fuel_reconciliation.yaml.
"""

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from fuel_import.config import CONFIG_FILENAME, FuelImportConfig, config_from_dict, load_config
from fuel_import.errors import ConfigurationError


class TestLoadConfig:
    """Tests for load_config()."""

    def test_shipped_config(self, config_dir):
        """Test the shipped YAML loads with its documented values."""
        config = load_config(config_dir)

        assert config.matching.odometer_tolerance == 500
        assert config.matching.max_odometer_confidence == 0.95
        assert config.classification.confidence_threshold == 0.8
        assert "GENERATOR" in config.classification.non_vehicle_keywords
        assert config.anomaly_checks.enabled is True
        assert config.import_settings.create_expense_transactions is False

    def test_missing_file_uses_defaults(self, tmp_path):
        """Test a directory without the file gives code defaults."""
        config = load_config(tmp_path)

        assert config == FuelImportConfig()
        assert config.anomaly_checks.enabled is False

    def test_partial_file(self, tmp_path):
        """Test omitted sections keep their defaults."""
        (tmp_path / CONFIG_FILENAME).write_text("matching:\n  odometer_tolerance: 250\n")

        config = load_config(tmp_path)

        assert config.matching.odometer_tolerance == 250
        assert config.classification.confidence_threshold == 0.8

    def test_invalid_yaml(self, tmp_path):
        """Test malformed YAML raises ConfigurationError."""
        (tmp_path / CONFIG_FILENAME).write_text("matching: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(tmp_path)


class TestConfigValidation:
    """Tests for config_from_dict() validation."""

    def test_unknown_key(self):
        """Test typos are reported rather than ignored."""
        with pytest.raises(ConfigurationError, match="odometer_tolerence"):
            config_from_dict({"matching": {"odometer_tolerence": 300}})

    def test_non_positive_tolerance(self):
        """Test tolerance must be positive."""
        with pytest.raises(ConfigurationError):
            config_from_dict({"matching": {"odometer_tolerance": 0}})

    @pytest.mark.parametrize("cap", [0, 1.0, 1.5])
    def test_confidence_cap_below_one(self, cap):
        """Test odometer confidence can never reach a direct match."""
        with pytest.raises(ConfigurationError):
            config_from_dict({"matching": {"max_odometer_confidence": cap}})

    def test_invalid_pattern(self):
        """Test broken regular expressions are rejected."""
        with pytest.raises(ConfigurationError, match="vehicle_id_pattern"):
            config_from_dict({"classification": {"vehicle_id_pattern": "([A-Z"}})

    def test_section_must_be_mapping(self):
        """Test sections must be mappings."""
        with pytest.raises(ConfigurationError, match="mapping"):
            config_from_dict({"matching": [1, 2]})

    def test_import_section(self):
        """Test the import section maps to import_settings."""
        config = config_from_dict({"import": {"create_expense_transactions": True}})

        assert config.import_settings.create_expense_transactions is True
