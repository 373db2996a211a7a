"""
Fuel Import Configuration

Loads matching, classification and anomaly-check settings from
config/fuel_reconciliation.yaml.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "fuel_reconciliation.yaml"

DEFAULT_CONFIG_DIR = Path(
    os.getenv("FUEL_IMPORT_CONFIG_DIR", Path(__file__).parent.parent.parent / "config")
)


@dataclass
class MatchingConfig:
    """Vehicle matching settings."""

    odometer_tolerance: int = 500  # miles either side of the last known reading
    max_odometer_confidence: float = 0.95


@dataclass
class ClassificationConfig:
    """Transaction classification settings."""

    confidence_threshold: float = 0.8
    # At least one digit, alphanumeric segments joined by '-', ' ', '_' or '/'
    vehicle_id_pattern: str = r"^(?=.*\d)[A-Z0-9]+(?:[-_ /][A-Z0-9]+)*$"
    non_vehicle_keywords: list[str] = field(default_factory=lambda: [
        "GENERATOR", "EQUIPMENT", "EQUIP", "TANK", "MOWER", "PUMP", "SVC",
    ])


@dataclass
class AnomalyConfig:
    """Anomaly checks applied to otherwise clean fleet transactions."""

    enabled: bool = False
    flag_weekends: bool = True
    business_hours_start: int = 6
    business_hours_end: int = 19
    high_cost_multiplier: float = 1.5
    high_gallons_multiplier: float = 1.5
    min_mpg: float = 5.0
    max_mpg: float = 50.0
    history_size: int = 10
    allowlisted_employees: list[str] = field(default_factory=list)


@dataclass
class ImportConfig:
    """Commit settings."""

    create_expense_transactions: bool = False


@dataclass
class FuelImportConfig:
    """Complete configuration for the fuel import pipeline."""

    matching: MatchingConfig = field(default_factory=MatchingConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    anomaly_checks: AnomalyConfig = field(default_factory=AnomalyConfig)
    import_settings: ImportConfig = field(default_factory=ImportConfig)

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigurationError: If a setting is out of range
        """
        if self.matching.odometer_tolerance <= 0:
            raise ConfigurationError("matching.odometer_tolerance must be positive")

        # Odometer matches must never look like direct matches
        if not 0 < self.matching.max_odometer_confidence < 1:
            raise ConfigurationError(
                "matching.max_odometer_confidence must be between 0 and 1 (exclusive)"
            )

        if not 0 <= self.classification.confidence_threshold <= 1:
            raise ConfigurationError("classification.confidence_threshold must be between 0 and 1")

        try:
            re.compile(self.classification.vehicle_id_pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid classification.vehicle_id_pattern: {e}")

        anomaly = self.anomaly_checks
        if not 0 <= anomaly.business_hours_start <= anomaly.business_hours_end <= 23:
            raise ConfigurationError("anomaly_checks business hours must satisfy 0 <= start <= end <= 23")
        if anomaly.min_mpg >= anomaly.max_mpg:
            raise ConfigurationError("anomaly_checks.min_mpg must be below max_mpg")


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
    return section


def _build(cls, values: dict, section_name: str):
    known = cls.__dataclass_fields__
    unknown = set(values) - set(known)
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in '{section_name}': {', '.join(sorted(unknown))}"
        )
    return cls(**values)


def config_from_dict(data: dict) -> FuelImportConfig:
    """Build a validated configuration from a parsed YAML mapping.

    Args:
        data: Mapping with optional matching/classification/anomaly_checks/import sections

    Returns:
        FuelImportConfig

    Raises:
        ConfigurationError: If keys are unknown or values invalid
    """
    config = FuelImportConfig(
        matching=_build(MatchingConfig, _section(data, "matching"), "matching"),
        classification=_build(
            ClassificationConfig, _section(data, "classification"), "classification"
        ),
        anomaly_checks=_build(AnomalyConfig, _section(data, "anomaly_checks"), "anomaly_checks"),
        import_settings=_build(ImportConfig, _section(data, "import"), "import"),
    )
    config.validate()
    return config


def load_config(config_dir: Path | str | None = None) -> FuelImportConfig:
    """Load configuration from the config directory.

    Args:
        config_dir: Directory containing fuel_reconciliation.yaml

    Returns:
        FuelImportConfig (defaults when the file does not exist)
    """
    config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
    config_file = config_dir / CONFIG_FILENAME

    if not config_file.exists():
        logger.info(f"No {CONFIG_FILENAME} in {config_dir}, using defaults")
        return FuelImportConfig()

    try:
        with open(config_file) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_file}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_file} must contain a mapping")

    return config_from_dict(data)
