"""File import service.

Glue between an export file on disk and the reconciliation engine. The
watched directory is laid out by budget and account:

    <transaction_dir>/<budget name>/<account name>/<export file>

A file that fails to parse or to import is never moved or modified, so the
same file can simply be processed again.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from ..parsers import PARSERS

if TYPE_CHECKING:
    from ..parsers import Parser
    from ..state_store import AccountRecord, StateStore
    from .reconciliation import ImportReconciler, ImportResult

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = tuple(PARSERS)


class AccountResolutionError(Exception):
    """The file cannot be mapped to a known budget and account."""

    pass


def resolve_budget_and_account(base_dir: Path, path: Path) -> tuple[str, str]:
    """
    Derive (budget name, account name) from a file's location.

    Raises:
        AccountResolutionError: If the file is not at least two directory
            levels below base_dir
    """
    base = Path(base_dir).resolve()
    target = Path(path).resolve()
    try:
        parts = target.relative_to(base).parts
    except ValueError as e:
        raise AccountResolutionError(f"{path} is not inside {base_dir}") from e

    if len(parts) < 3:
        raise AccountResolutionError(
            f"{path} must be located at <budget>/<account>/<file> below {base_dir}"
        )
    return parts[0], parts[1]


class FileImportService:
    """Runs one export file through parsing and reconciliation.

    The parser is chosen by file extension. Only extensions listed in
    ``extensions`` that also have a parser are imported.
    """

    def __init__(
        self,
        store: StateStore,
        reconciler: ImportReconciler,
        parsers: Mapping[str, Parser] = PARSERS,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.parsers = {ext.lower(): parser for ext, parser in parsers.items()}
        self.extensions = tuple(ext.lower() for ext in extensions)

        for ext in self.extensions:
            if ext not in self.parsers:
                logger.warning("No parser for %s files; they will be ignored", ext)

    def parser_for(self, path: Path) -> Parser | None:
        """Parser for the file's extension, None if the type is not imported."""
        suffix = Path(path).suffix.lower()
        if suffix not in self.extensions:
            return None
        return self.parsers.get(suffix)

    def resolve_account(self, budget_name: str, account_name: str) -> AccountRecord:
        """Look up an account by budget and account display names."""
        budget = self.store.get_budget_by_name(budget_name)
        if budget is None:
            raise AccountResolutionError(f"Unknown budget '{budget_name}'")
        account = self.store.get_account_by_name(budget.id, account_name)
        if account is None:
            raise AccountResolutionError(
                f"Unknown account '{account_name}' in budget '{budget_name}'"
            )
        return account

    def import_file(
        self,
        path: Path,
        base_dir: Path | None = None,
        account: AccountRecord | None = None,
    ) -> ImportResult | None:
        """
        Import one export file.

        Args:
            path: Export file
            base_dir: Watched directory, used to resolve the account from
                the file's location when no account is given
            account: Explicit target account

        Returns:
            ImportResult, or None if the file type is not handled

        Raises:
            AccountResolutionError: If no account can be determined
            ParseError: If the file is malformed or cannot be read
        """
        path = Path(path)
        parser = self.parser_for(path)
        if parser is None:
            logger.info("Ignoring unsupported file %s", path)
            return None

        if account is None:
            if base_dir is None:
                raise AccountResolutionError(f"No account given for {path} and no base directory")
            budget_name, account_name = resolve_budget_and_account(base_dir, path)
            account = self.resolve_account(budget_name, account_name)

        logger.info("Importing %s into account %s", path.name, account.name)
        records = parser(path, account.id)
        return self.reconciler.reconcile(account, records, path.name)
