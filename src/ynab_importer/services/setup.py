"""Account setup.

Mirrors the YNAB budgets and accounts visible to a token into the local
ledger and lays out the watched directory so that every account has a
folder to drop exports into:

    <transaction_dir>/<budget name>/<account name>/

Running setup again is safe. Existing folders are kept, and budgets or
accounts renamed in YNAB are renamed locally.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from ..state_store import CONFIG_ACCESS_TOKEN, CONFIG_TRANSACTION_DIR, CONFIG_USER_ID

if TYPE_CHECKING:
    from ..state_store import StateStore
    from ..ynab_client import YnabClient

logger = logging.getLogger(__name__)


class SetupError(Exception):
    """Setup cannot proceed with the given arguments."""

    pass


@dataclass
class SetupResult:
    """What one setup run stored and created."""

    transaction_dir: Path
    budgets: list[str] = field(default_factory=list)
    accounts: int = 0
    created_dirs: list[Path] = field(default_factory=list)
    skipped_names: list[str] = field(default_factory=list)


def _is_directory_name(name: str) -> bool:
    return bool(name) and name not in (".", "..") and "/" not in name and "\\" not in name


def run_setup(
    store: StateStore,
    client: YnabClient,
    transaction_dir: Path,
    budget_name: str | None = None,
    access_token: str | None = None,
    user_id: str | None = None,
) -> SetupResult:
    """
    Store budgets and accounts and create their export folders.

    Args:
        store: Local ledger
        client: YNAB client for the token being set up
        transaction_dir: Existing watched directory
        budget_name: Only set up this budget; all budgets when None
        access_token: Saved in the ledger for later runs when given
        user_id: Saved in the ledger when given

    Returns:
        SetupResult

    Raises:
        SetupError: If transaction_dir does not exist or the budget is unknown
        YnabError: If YNAB cannot be queried
    """
    transaction_dir = Path(transaction_dir).expanduser()
    if not transaction_dir.is_dir():
        raise SetupError(f"Transaction directory {transaction_dir} does not exist")
    transaction_dir = transaction_dir.resolve()

    budgets = client.get_budgets()
    if budget_name is not None:
        budgets = [b for b in budgets if b.name == budget_name]
        if not budgets:
            raise SetupError(f"No budget named '{budget_name}' is visible to this token")

    result = SetupResult(transaction_dir=transaction_dir)

    for budget in budgets:
        budget_id = store.get_or_create_budget(budget.id, budget.name)
        accounts = client.get_accounts(budget.id)
        store.upsert_accounts(budget_id, [(a.id, a.name) for a in accounts])
        result.budgets.append(budget.name)
        result.accounts += len(accounts)
        logger.info("Budget %s: %d account(s)", budget.name, len(accounts))

        if not _is_directory_name(budget.name):
            logger.warning("Budget name %r cannot be a folder name", budget.name)
            result.skipped_names.append(budget.name)
            continue

        for account in accounts:
            if not _is_directory_name(account.name):
                logger.warning("Account name %r cannot be a folder name", account.name)
                result.skipped_names.append(f"{budget.name}/{account.name}")
                continue

            target = transaction_dir / budget.name / account.name
            if not target.is_dir():
                target.mkdir(parents=True, exist_ok=True)
                result.created_dirs.append(target)
                logger.debug("Created %s", target)

    store.set_config(CONFIG_TRANSACTION_DIR, str(transaction_dir))
    if access_token:
        store.set_config(CONFIG_ACCESS_TOKEN, access_token.strip())
    if user_id:
        store.set_config(CONFIG_USER_ID, user_id)

    return result
