"""
Fingerprint generation (CRITICAL).

This module defines THE deterministic dedup key for imported transactions.
It is the ONLY place where transaction identity is derived.

Identity is (amount, date_posted, account_id). Memo and payee are never
part of it; successive bank exports may describe the same transaction
differently.

Derived formats:
1. Canonical string: {account_id}|{amount}|{YYYY-MM-DD}
2. Hex digest: SHA256(canonical string), used in logs and batch tokens
3. YNAB import id: YNAB:{amount}:{YYYY-MM-DD}:1
   - Same scheme as YNAB's own file importer, so the remote side rejects
     a re-submitted transaction as a duplicate instead of creating it twice

The fingerprint must be:
- Total: every valid record has one
- Stable: same inputs always produce the same key
- Free of false negatives: equal (amount, date, account) => equal key

Collisions between distinct real transactions with equal amount, date and
account are an accepted consequence of the identity policy.
"""

import hashlib
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from .transaction import NormalizedTransaction

# ============================================================================
# Constants
# ============================================================================

FINGERPRINT_SEPARATOR = "|"

IMPORT_ID_PREFIX = "YNAB"

# YNAB rejects import ids longer than this
IMPORT_ID_MAX_LENGTH = 36

TOKEN_LENGTH = 32


@dataclass(frozen=True, order=True)
class Fingerprint:
    """Dedup key of a transaction. Hashable and usable as a set member."""

    account_id: int
    amount: int
    date_posted: date

    @property
    def canonical(self) -> str:
        return FINGERPRINT_SEPARATOR.join(
            [str(self.account_id), str(self.amount), self.date_posted.isoformat()]
        )

    def hexdigest(self) -> str:
        """SHA256 of the canonical string."""
        return hashlib.sha256(self.canonical.encode("utf-8")).hexdigest()

    def import_id(self, occurrence: int = 1) -> str:
        """YNAB import id for this transaction."""
        import_id = f"{IMPORT_ID_PREFIX}:{self.amount}:{self.date_posted.isoformat()}:{occurrence}"
        if len(import_id) > IMPORT_ID_MAX_LENGTH:
            raise ValueError(f"import_id exceeds {IMPORT_ID_MAX_LENGTH} characters: {import_id}")
        return import_id

    def __str__(self) -> str:
        return self.canonical


def fingerprint(amount: int, date_posted: date, account_id: int) -> Fingerprint:
    """
    Compute the fingerprint of a transaction.

    Args:
        amount: Signed amount in milliunits
        date_posted: Posting date
        account_id: Local account surrogate key

    Returns:
        Fingerprint value object
    """
    return Fingerprint(account_id=account_id, amount=amount, date_posted=date_posted)


def fingerprint_of(record: NormalizedTransaction) -> Fingerprint:
    """Fingerprint of a normalized transaction."""
    return fingerprint(record.amount, record.date_posted, record.account_id)


def idempotency_token(
    source_file_name: str,
    account_remote_id: str,
    fingerprints: Iterable[Fingerprint],
) -> str:
    """
    Derive the idempotency token for one remote submission.

    The token depends on the file, the account and the exact set of
    transactions being submitted, so re-submitting the same logical batch
    yields the same token while a smaller retry batch gets its own.
    """
    digests = sorted(fp.hexdigest() for fp in fingerprints)
    content = "\n".join([source_file_name, account_remote_id, *digests])
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:TOKEN_LENGTH]
