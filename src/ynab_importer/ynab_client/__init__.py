"""
YNAB API Client.

Provides:
- Budget and account lookup
- Bulk transaction creation (POST /budgets/{id}/transactions)
- Account transaction listing

Treats YNAB errors as loud failures with actionable messages.
"""

from .client import (
    BulkCreateResult,
    YnabAccount,
    YnabAPIError,
    YnabBudget,
    YnabClient,
    YnabConnectionError,
    YnabError,
    YnabTransaction,
)

__all__ = [
    "BulkCreateResult",
    "YnabAccount",
    "YnabAPIError",
    "YnabBudget",
    "YnabClient",
    "YnabConnectionError",
    "YnabError",
    "YnabTransaction",
]
