"""
Parser contract.
"""

from collections.abc import Callable
from pathlib import Path

from ..schemas.transaction import NormalizedTransaction

# (path, account_id) -> records in file order
Parser = Callable[[Path, int], list[NormalizedTransaction]]


class ParseError(Exception):
    """Malformed input file. The file is left in place for the operator."""

    def __init__(self, message: str, file_name: str | None = None, line: int | None = None):
        self.file_name = file_name
        self.line = line
        location = file_name or "<input>"
        if line is not None:
            location = f"{location}:{line}"
        super().__init__(f"{location}: {message}")
