"""
Reader for exports already in the normalized CSV shape.

Expected header (case-insensitive, extra columns ignored):

    date,amount[,payee][,memo]

- date: YYYY-MM-DD
- amount: signed decimal in currency units ("-15.00", "1,234.50")
"""

import csv
import io
from datetime import date
from pathlib import Path

from ..schemas.transaction import NormalizedTransaction, to_milliunits
from .base import ParseError

REQUIRED_COLUMNS = ("date", "amount")


def parse_normalized_csv(
    content: str,
    account_id: int,
    file_name: str | None = None,
) -> list[NormalizedTransaction]:
    """
    Parse normalized CSV content.

    Args:
        content: CSV text including the header row
        account_id: Local account the transactions belong to
        file_name: Used in error messages

    Returns:
        Records in file order (repeats are kept; dedup is the engine's job)

    Raises:
        ParseError: On a missing header column or a malformed row
    """
    reader = csv.DictReader(io.StringIO(content))
    if reader.fieldnames is None:
        return []

    columns = {name.strip().lower(): name for name in reader.fieldnames if name}
    missing = [c for c in REQUIRED_COLUMNS if c not in columns]
    if missing:
        raise ParseError(f"missing column(s): {', '.join(missing)}", file_name, 1)

    records = []
    for row in reader:
        line = reader.line_num
        raw_date = (row.get(columns["date"]) or "").strip()
        raw_amount = (row.get(columns["amount"]) or "").strip()
        if not raw_date and not raw_amount:
            continue

        try:
            date_posted = date.fromisoformat(raw_date)
        except ValueError as e:
            raise ParseError(f"invalid date {raw_date!r}", file_name, line) from e

        try:
            amount = to_milliunits(raw_amount)
        except ValueError as e:
            raise ParseError(f"invalid amount {raw_amount!r}", file_name, line) from e

        payee = row.get(columns["payee"]) if "payee" in columns else None
        memo = row.get(columns["memo"]) if "memo" in columns else None

        records.append(
            NormalizedTransaction(
                account_id=account_id,
                amount=amount,
                date_posted=date_posted,
                payee=(payee or "").strip() or None,
                memo=(memo or "").strip() or None,
            )
        )

    return records


def load_normalized_csv(path: Path, account_id: int) -> list[NormalizedTransaction]:
    """Read and parse a normalized CSV file."""
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError("file is not valid UTF-8", path.name) from e
    except OSError as e:
        raise ParseError(f"cannot read file: {e.strerror or e}", path.name) from e
    return parse_normalized_csv(content, account_id, file_name=path.name)
