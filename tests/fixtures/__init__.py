"""
Test fixtures for export files.

- sample_export.csv: normalized CSV export with one repeated line
- tangerine.qfx: OFX 1.02 credit card statement with four debits
"""

from pathlib import Path

FIXTURES_DIR = Path(__file__).parent


def fixture_path(name: str) -> Path:
    """Path of a fixture file."""
    return FIXTURES_DIR / name


def load_fixture(name: str) -> str:
    """Load a fixture file as string."""
    return fixture_path(name).read_text(encoding="utf-8")


def load_fixture_bytes(name: str) -> bytes:
    """Load a fixture file as raw bytes."""
    return fixture_path(name).read_bytes()
