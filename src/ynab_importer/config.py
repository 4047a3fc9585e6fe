"""
Configuration management.

This module defines ALL file/env configuration for the importer.
Budget/account mappings and the personal access token written by setup
tooling live in the ledger's configuration table; the token there is used
when neither the YAML file nor the environment provides one.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .ynab_client.client import DEFAULT_BASE_URL

DEFAULT_FILE_EXTENSIONS = (".csv", ".qfx", ".ofx")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid configuration: " + "; ".join(errors))


@dataclass
class YnabConfig:
    """YNAB API configuration."""

    base_url: str = DEFAULT_BASE_URL
    token: str = ""
    timeout_seconds: int = 30
    # Retries for read requests; writes are retried by re-running the file
    max_retries: int = 3
    backoff_factor: float = 0.5


@dataclass
class ImporterConfig:
    """Import engine settings."""

    # Watched directory: <transaction_dir>/<budget>/<account>/<file>
    transaction_dir: Path | None = None
    # Re-reconciliations after losing a commit race
    max_conflict_retries: int = 3
    file_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_FILE_EXTENSIONS))


@dataclass
class Config:
    """Application configuration."""

    ynab: YnabConfig = field(default_factory=YnabConfig)
    importer: ImporterConfig = field(default_factory=ImporterConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/ledger.sqlite3"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.ynab.base_url:
            errors.append("ynab.base_url is required")
        if self.ynab.timeout_seconds <= 0:
            errors.append("ynab.timeout_seconds must be > 0")
        if self.ynab.max_retries < 0:
            errors.append("ynab.max_retries must be >= 0")
        if self.importer.max_conflict_retries < 0:
            errors.append("importer.max_conflict_retries must be >= 0")
        for ext in self.importer.file_extensions:
            if not ext.startswith("."):
                errors.append(f"importer.file_extensions entry '{ext}' must start with '.'")

        return errors


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigValidationError([f"{name} must be an integer, got '{value}'"]) from None


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    A missing file yields the defaults. Environment variables override
    config values:
    - YNAB_URL
    - YNAB_TOKEN
    - YNAB_IMPORTER_DB (ledger path)
    - YNAB_TRANSACTION_DIR
    - YNAB_MAX_CONFLICT_RETRIES

    Raises:
        ConfigValidationError: If the resulting configuration is invalid
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    ynab_data = data.get("ynab", {}) or {}
    ynab = YnabConfig(
        base_url=os.environ.get("YNAB_URL", ynab_data.get("base_url", DEFAULT_BASE_URL)),
        token=os.environ.get("YNAB_TOKEN", ynab_data.get("token") or ""),
        timeout_seconds=int(ynab_data.get("timeout_seconds", 30)),
        max_retries=int(ynab_data.get("max_retries", 3)),
        backoff_factor=float(ynab_data.get("backoff_factor", 0.5)),
    )

    importer_data = data.get("importer", {}) or {}
    transaction_dir = os.environ.get(
        "YNAB_TRANSACTION_DIR", importer_data.get("transaction_dir")
    )
    importer = ImporterConfig(
        transaction_dir=Path(transaction_dir) if transaction_dir else None,
        max_conflict_retries=_int_env(
            "YNAB_MAX_CONFLICT_RETRIES", int(importer_data.get("max_conflict_retries", 3))
        ),
        file_extensions=[
            ext.lower() for ext in importer_data.get("file_extensions", DEFAULT_FILE_EXTENSIONS)
        ],
    )

    state_db = os.environ.get(
        "YNAB_IMPORTER_DB", data.get("state_db_path", "data/ledger.sqlite3")
    )

    config = Config(ynab=ynab, importer=importer, state_db_path=Path(state_db))

    errors = config.validate()
    if errors:
        raise ConfigValidationError(errors)

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Bank export -> YNAB importer configuration
#
# Budgets and accounts are mapped by setup tooling and stored in the ledger.
# Export files are expected at <transaction_dir>/<budget>/<account>/<file>.

ynab:
  base_url: "https://api.ynab.com/v1"
  token: null                 # Falls back to the token stored by setup
  timeout_seconds: 30
  max_retries: 3              # Retries for read requests
  backoff_factor: 0.5

importer:
  transaction_dir: null       # Watched directory
  max_conflict_retries: 3     # Re-reconciliations after a lost commit race
  file_extensions: [".csv", ".qfx", ".ofx"]

# Local ledger path
state_db_path: "data/ledger.sqlite3"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
