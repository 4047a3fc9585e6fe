"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..parsers import ParseError
from ..services import (
    AccountResolutionError,
    FileImportService,
    ImportReconciler,
    SetupError,
    YnabSyncAdapter,
    run_setup,
)
from ..state_store import (
    CONFIG_ACCESS_TOKEN,
    CONFIG_TRANSACTION_DIR,
    BatchNotFoundError,
    StateStore,
    StoreError,
)
from ..ynab_client import YnabClient, YnabError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ynab-importer",
        description="Import bank export files into YNAB exactly once",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # import command
    import_parser = subparsers.add_parser("import", help="Import one export file into YNAB")
    import_parser.add_argument("file", type=Path, help="Export file to import")
    import_parser.add_argument(
        "--budget",
        type=str,
        help="Budget name (default: derived from the file's directory)",
    )
    import_parser.add_argument(
        "--account",
        type=str,
        help="Account name (default: derived from the file's directory)",
    )

    # status command
    subparsers.add_parser("status", help="Show ledger statistics")

    # batches command
    batches_parser = subparsers.add_parser("batches", help="List recent import batches")
    batches_parser.add_argument(
        "--account",
        type=str,
        help="Only show batches of this account (name)",
    )
    batches_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum batches to show (default: 20)",
    )

    # undo command
    undo_parser = subparsers.add_parser(
        "undo", help="Forget an import batch locally (YNAB is not changed)"
    )
    undo_parser.add_argument("batch_id", type=int, help="Import batch id")

    # accounts command
    subparsers.add_parser("accounts", help="List known budget/account mappings")

    # setup command
    setup_parser = subparsers.add_parser(
        "setup", help="Fetch budgets and accounts from YNAB and create export folders"
    )
    setup_parser.add_argument(
        "--transaction-dir",
        type=Path,
        help="Existing watched directory (default: importer.transaction_dir)",
    )
    setup_parser.add_argument(
        "--budget",
        type=str,
        help="Only set up this budget (name)",
    )
    setup_parser.add_argument(
        "--access-token-file",
        type=Path,
        help="File holding the YNAB personal access token (default: configured token)",
    )
    setup_parser.add_argument(
        "--user-id",
        type=str,
        help="Identifier of the YNAB user, stored for reference",
    )

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def build_client(config: Config, token: str) -> YnabClient:
    """YNAB client for a token, using the configured connection settings."""
    return YnabClient(
        token=token.strip(),
        base_url=config.ynab.base_url,
        timeout=config.ynab.timeout_seconds,
        max_retries=config.ynab.max_retries,
        backoff_factor=config.ynab.backoff_factor,
    )


def build_import_service(config: Config, store: StateStore) -> FileImportService | None:
    """Wire the YNAB client, adapter and reconciler. None if no token is available."""
    token = config.ynab.token or store.get_config(CONFIG_ACCESS_TOKEN)
    if not token:
        return None

    client = build_client(config, token)
    adapter = YnabSyncAdapter(client, budget_lookup=store.get_budget_uuid_for_account)
    reconciler = ImportReconciler(
        store, adapter, max_conflict_retries=config.importer.max_conflict_retries
    )
    return FileImportService(store, reconciler, extensions=config.importer.file_extensions)


def cmd_import(
    config: Config,
    file: Path,
    budget: str | None = None,
    account: str | None = None,
) -> int:
    """Import one export file."""
    if (budget is None) != (account is None):
        print("❌ --budget and --account must be given together")
        return 1

    try:
        store = StateStore(config.state_db_path)
        service = build_import_service(config, store)
        if service is None:
            print("❌ No YNAB access token configured (ynab.token, YNAB_TOKEN or setup)")
            return 1

        target = service.resolve_account(budget, account) if budget and account else None
        base_dir = config.importer.transaction_dir
        if base_dir is None:
            stored_dir = store.get_config(CONFIG_TRANSACTION_DIR)
            base_dir = Path(stored_dir) if stored_dir else None

        result = service.import_file(file, base_dir=base_dir, account=target)
    except AccountResolutionError as e:
        print(f"❌ {e}")
        return 1
    except ParseError as e:
        print(f"❌ Could not read export: {e}")
        return 1
    except StoreError as e:
        print(f"❌ Ledger unavailable, retry later: {e}")
        return 1
    except OSError as e:
        print(f"❌ Could not read export {file}: {e}")
        return 1

    if result is None:
        print(f"⏭ Ignored {file} (unsupported file type)")
        return 0

    print(f"\n📊 Import of {result.source_file_name}")
    print("=" * 40)
    print(f"  Status:                   {result.state.value}")
    print(f"  New:                      {result.new}")
    print(f"  Skipped (in-file dupes):  {result.skipped_duplicate}")
    print(f"  Skipped (already done):   {result.skipped_already_imported}")
    print(f"  Failed:                   {result.failed}")
    if result.batch_id is not None:
        print(f"  Import batch:             {result.batch_id}")
    print()

    if result.errors:
        print("⚠️  Errors encountered:")
        for error in result.errors:
            print(f"   - {error}")

    if result.success:
        print("✓ Import completed")
        return 0
    if result.retry_later:
        print("❌ Import failed; the file was left untouched and can be imported again")
    else:
        print("❌ Import rejected; fix the export and import it again")
    return 1


def cmd_setup(
    config: Config,
    transaction_dir: Path | None = None,
    budget: str | None = None,
    access_token_file: Path | None = None,
    user_id: str | None = None,
) -> int:
    """Store budgets and accounts from YNAB and create their export folders."""
    store = StateStore(config.state_db_path)

    if access_token_file is not None:
        try:
            token = access_token_file.read_text(encoding="utf-8").strip()
        except OSError as e:
            print(f"❌ Could not read access token file {access_token_file}: {e}")
            return 1
    else:
        token = (config.ynab.token or store.get_config(CONFIG_ACCESS_TOKEN) or "").strip()
    if not token:
        print("❌ No YNAB access token (--access-token-file, ynab.token or YNAB_TOKEN)")
        return 1

    transaction_dir = transaction_dir or config.importer.transaction_dir
    if transaction_dir is None:
        print("❌ No transaction directory (--transaction-dir or importer.transaction_dir)")
        return 1

    client = build_client(config, token)
    try:
        result = run_setup(
            store,
            client,
            transaction_dir,
            budget_name=budget,
            access_token=token,
            user_id=user_id,
        )
    except SetupError as e:
        print(f"❌ {e}")
        return 1
    except YnabError as e:
        print(f"❌ Could not fetch budgets from YNAB: {e}")
        return 1
    except OSError as e:
        print(f"❌ Could not create export folders: {e}")
        return 1

    print(f"\n📊 Setup of {result.transaction_dir}")
    print("=" * 40)
    print(f"  Budgets:                {len(result.budgets)}")
    print(f"  Accounts:               {result.accounts}")
    print(f"  Folders created:        {len(result.created_dirs)}")
    print()

    for name in result.skipped_names:
        print(f"⚠️  No folder for '{name}'; import it with --budget/--account")

    print("✓ Setup completed")
    return 0


def cmd_status(config: Config) -> int:
    """Show ledger status."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Ledger Status")
    print("=" * 40)
    print(f"  Budgets:                {stats['budgets']}")
    print(f"  Accounts:               {stats['accounts']}")
    print(f"  Transactions imported:  {stats['transactions_imported']}")
    print(f"  Import batches:         {stats['import_batches']}")
    print(f"  Last import:            {stats['last_import'] or '-'}")
    print()

    return 0


def cmd_batches(config: Config, limit: int, account: str | None = None) -> int:
    """List recent import batches."""
    store = StateStore(config.state_db_path)

    account_id = None
    if account:
        matches = [a for _, a in store.list_accounts() if a.name == account]
        if not matches:
            print(f"❌ Unknown account '{account}'")
            return 1
        if len(matches) > 1:
            print(f"❌ Account name '{account}' exists in several budgets")
            return 1
        account_id = matches[0].id

    batches = store.list_batches(account_id=account_id, limit=limit)

    if not batches:
        print("No import batches")
        return 0

    for batch in batches:
        batch_account = store.get_account(batch.account_id)
        account_name = batch_account.name if batch_account else f"#{batch.account_id}"
        print(
            f"  [{batch.id}] {batch.insert_datetime}  {account_name:<20} "
            f"{batch.file_name} ({len(batch.transaction_ids)} transaction(s))"
        )
    return 0


def cmd_undo(config: Config, batch_id: int) -> int:
    """Forget an import batch locally."""
    store = StateStore(config.state_db_path)
    try:
        removed = store.undo_batch(batch_id)
    except BatchNotFoundError as e:
        print(f"❌ {e}")
        return 1

    print(f"✓ Removed batch {batch_id} ({removed} transaction(s)) from the local ledger")
    print("  The transactions still exist in YNAB; delete them there if needed.")
    return 0


def cmd_accounts(config: Config) -> int:
    """List known budget/account mappings."""
    store = StateStore(config.state_db_path)
    mappings = store.list_accounts()

    if not mappings:
        print("No accounts configured; run setup first")
        return 0

    for budget, account in mappings:
        print(f"  {budget.name} / {account.name}  (account {account.uuid})")
    return 0


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file unless one exists."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    try:
        config = load_config(parsed.config)
    except (ConfigValidationError, OSError, ValueError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    try:
        if parsed.command == "import":
            return cmd_import(config, parsed.file, parsed.budget, parsed.account)
        elif parsed.command == "status":
            return cmd_status(config)
        elif parsed.command == "batches":
            return cmd_batches(config, parsed.limit, parsed.account)
        elif parsed.command == "undo":
            return cmd_undo(config, parsed.batch_id)
        elif parsed.command == "accounts":
            return cmd_accounts(config)
        elif parsed.command == "setup":
            return cmd_setup(
                config,
                parsed.transaction_dir,
                parsed.budget,
                parsed.access_token_file,
                parsed.user_id,
            )
    except StoreError as e:
        print(f"❌ Ledger unavailable: {e}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
