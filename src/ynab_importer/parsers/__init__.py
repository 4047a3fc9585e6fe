"""
Parsers turning export files into NormalizedTransactions.

The parser for a file is picked by its extension from PARSERS; any
callable with the Parser signature can be plugged into the file import
service instead.
"""

from .base import Parser, ParseError
from .normalized_csv import load_normalized_csv, parse_normalized_csv
from .ofx import OFX_EXTENSIONS, load_ofx, parse_ofx

PARSERS: dict[str, Parser] = {
    ".csv": load_normalized_csv,
    **{ext: load_ofx for ext in OFX_EXTENSIONS},
}

__all__ = [
    "OFX_EXTENSIONS",
    "PARSERS",
    "Parser",
    "ParseError",
    "load_normalized_csv",
    "load_ofx",
    "parse_normalized_csv",
    "parse_ofx",
]
