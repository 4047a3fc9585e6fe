"""
OFX/QFX statement reader.

Banks export statements as OFX 1.x (SGML) or OFX 2.x (XML); Quicken's
QFX is the same format. Parsing is delegated to ofxparse; this module
only maps each STMTTRN onto a NormalizedTransaction:

- TRNAMT -> amount in milliunits
- DTPOSTED -> date_posted (time of day dropped)
- NAME -> payee, MEMO -> memo
"""

import io
import logging
from pathlib import Path

from ofxparse import OfxParser

from ..schemas.transaction import NormalizedTransaction, to_milliunits
from .base import ParseError

logger = logging.getLogger(__name__)

OFX_EXTENSIONS = (".ofx", ".qfx")


def _clean(value) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def parse_ofx(
    content: bytes | str,
    account_id: int,
    file_name: str | None = None,
) -> list[NormalizedTransaction]:
    """
    Parse an OFX/QFX statement.

    Transactions of every statement in the file are returned in file
    order. The file's own account numbers are ignored; the target
    account comes from the caller.

    Args:
        content: Raw file content. The OFX header's CHARSET decides how
            bytes are decoded.
        account_id: Local account the records belong to
        file_name: Used in error messages only

    Raises:
        ParseError: If ofxparse rejects the file or a transaction lacks
            a date or a valid amount
    """
    if isinstance(content, str):
        content = content.encode("utf-8")

    try:
        ofx = OfxParser.parse(io.BytesIO(content))
    except Exception as e:
        # ofxparse raises a mix of its own and builtin exceptions
        raise ParseError(f"not a readable OFX statement: {e}", file_name) from e

    records: list[NormalizedTransaction] = []
    for ofx_account in ofx.accounts:
        statement = getattr(ofx_account, "statement", None)
        if statement is None:
            continue

        for index, t in enumerate(statement.transactions, start=1):
            if t.date is None:
                raise ParseError(f"transaction {index} has no DTPOSTED", file_name)
            try:
                amount = to_milliunits(str(t.amount))
            except ValueError as e:
                raise ParseError(f"transaction {index}: {e}", file_name) from e

            records.append(
                NormalizedTransaction(
                    account_id=account_id,
                    amount=amount,
                    date_posted=t.date.date(),
                    payee=_clean(t.payee),
                    memo=_clean(t.memo),
                )
            )

    logger.debug("Parsed %d transaction(s) from %s", len(records), file_name or "<input>")
    return records


def load_ofx(path: Path, account_id: int) -> list[NormalizedTransaction]:
    """Read and parse an OFX/QFX file."""
    path = Path(path)
    try:
        content = path.read_bytes()
    except OSError as e:
        raise ParseError(f"cannot read file: {e.strerror or e}", path.name) from e
    return parse_ofx(content, account_id, file_name=path.name)
