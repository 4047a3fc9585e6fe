"""
Schemas for the import pipeline.

- NormalizedTransaction: canonical shape every parser must produce
- Fingerprint: dedup key derived from (amount, date, account)
"""

from .fingerprint import Fingerprint, fingerprint, fingerprint_of, idempotency_token
from .transaction import NormalizedTransaction, to_milliunits

__all__ = [
    "Fingerprint",
    "NormalizedTransaction",
    "fingerprint",
    "fingerprint_of",
    "idempotency_token",
    "to_milliunits",
]
