"""Tests for export parsing and the file import service."""

import shutil
from datetime import date

import pytest
from conftest import make_tx
from fixtures import fixture_path, load_fixture, load_fixture_bytes

from ynab_importer.parsers import (
    ParseError,
    load_normalized_csv,
    load_ofx,
    parse_normalized_csv,
    parse_ofx,
)
from ynab_importer.services import (
    AccountResolutionError,
    FileImportService,
    ImportReconciler,
    ImportState,
)
from ynab_importer.services.file_import import resolve_budget_and_account


@pytest.fixture
def service(store, adapter):
    return FileImportService(store, ImportReconciler(store, adapter))


@pytest.fixture
def transaction_dir(tmp_path, account):
    """Watched directory with the sample export under Household/Checking."""
    base = tmp_path / "transactions"
    target = base / "Household" / "Checking"
    target.mkdir(parents=True)
    shutil.copy(fixture_path("sample_export.csv"), target / "jan.csv")
    return base


class TestNormalizedCsv:
    """Tests for the normalized CSV reader."""

    def test_parse_sample_export(self):
        records = parse_normalized_csv(load_fixture("sample_export.csv"), account_id=7)

        assert [r.amount for r in records] == [-1500, -1500, 2000, -1234560]
        assert records[0].date_posted == date(2024, 1, 5)
        assert records[2].payee == "REFUND"
        assert all(r.account_id == 7 for r in records)

    def test_header_case_and_optional_columns(self):
        records = parse_normalized_csv("DATE,AMOUNT\n2024-01-05,-7.88\n", account_id=1)

        assert records[0].amount == -7880
        assert records[0].payee is None
        assert records[0].memo is None

    def test_blank_rows_skipped(self):
        records = parse_normalized_csv("date,amount\n2024-01-05,1\n,\n2024-01-06,2\n", 1)

        assert len(records) == 2

    def test_empty_content(self):
        assert parse_normalized_csv("", 1) == []

    def test_missing_column(self):
        with pytest.raises(ParseError) as exc_info:
            parse_normalized_csv("date,payee\n2024-01-05,X\n", 1, file_name="bad.csv")

        assert "amount" in str(exc_info.value)
        assert exc_info.value.line == 1

    def test_invalid_amount_reports_line(self):
        with pytest.raises(ParseError) as exc_info:
            parse_normalized_csv("date,amount\n2024-01-05,1.00\n2024-01-06,abc\n", 1, "bad.csv")

        assert exc_info.value.line == 3
        assert str(exc_info.value).startswith("bad.csv:3:")

    def test_invalid_date(self):
        with pytest.raises(ParseError):
            parse_normalized_csv("date,amount\n05/01/2024,1.00\n", 1)

    def test_load_strips_bom(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_bytes("\ufeffdate,amount\n2024-01-05,1.00\n".encode("utf-8"))

        records = load_normalized_csv(path, 1)

        assert records[0].amount == 1000

    def test_decimal_comma_amount_rejected(self):
        with pytest.raises(ParseError) as exc_info:
            parse_normalized_csv('date,amount\n2024-01-05,"-7,88"\n', 1, "comma.csv")

        assert exc_info.value.line == 2

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ParseError) as exc_info:
            load_normalized_csv(tmp_path / "gone.csv", 1)

        assert exc_info.value.file_name == "gone.csv"
        assert "cannot read file" in str(exc_info.value)


class TestOfx:
    """Tests for the OFX/QFX statement reader."""

    def test_parse_tangerine_statement(self):
        records = parse_ofx(load_fixture_bytes("tangerine.qfx"), account_id=3)

        assert [r.amount for r in records] == [-500, -7880, -7350, -8910]
        assert [r.date_posted for r in records] == [
            date(2024, 11, 15),
            date(2024, 11, 16),
            date(2024, 11, 16),
            date(2024, 11, 12),
        ]
        assert records[0].payee == "PARKING PAY MACHINE"
        assert records[0].memo is None
        assert records[1].payee == "SQ ICECREAM"
        assert records[1].memo == "Rewards earned: 0.04 ~ Category: Other"
        assert all(r.account_id == 3 for r in records)

    def test_load_from_path(self):
        records = load_ofx(fixture_path("tangerine.qfx"), 1)

        assert len(records) == 4

    def test_garbage_rejected(self):
        with pytest.raises(ParseError) as exc_info:
            parse_ofx(b"this is not a statement", 1, file_name="junk.qfx")

        assert exc_info.value.file_name == "junk.qfx"

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ParseError) as exc_info:
            load_ofx(tmp_path / "gone.qfx", 1)

        assert exc_info.value.file_name == "gone.qfx"


class TestResolveBudgetAndAccount:
    def test_resolves_from_layout(self, tmp_path):
        path = tmp_path / "Household" / "Checking" / "jan.csv"

        assert resolve_budget_and_account(tmp_path, path) == ("Household", "Checking")

    def test_nested_subdirectories_use_first_two_levels(self, tmp_path):
        path = tmp_path / "Household" / "Checking" / "2024" / "jan.csv"

        assert resolve_budget_and_account(tmp_path, path) == ("Household", "Checking")

    def test_too_shallow(self, tmp_path):
        with pytest.raises(AccountResolutionError):
            resolve_budget_and_account(tmp_path, tmp_path / "Household" / "jan.csv")

    def test_outside_base(self, tmp_path):
        with pytest.raises(AccountResolutionError):
            resolve_budget_and_account(tmp_path / "a", tmp_path / "b" / "c" / "d.csv")


class TestFileImportService:
    def test_import_from_directory_layout(self, service, store, adapter, transaction_dir, account):
        path = transaction_dir / "Household" / "Checking" / "jan.csv"

        result = service.import_file(path, base_dir=transaction_dir)

        assert result.state == ImportState.COMPLETED
        assert result.source_file_name == "jan.csv"
        assert result.new == 3
        assert result.skipped_duplicate == 1
        assert store.count_imported(account.id) == 3
        # File is left in place
        assert path.exists()

    def test_reimport_is_noop(self, service, adapter, transaction_dir):
        path = transaction_dir / "Household" / "Checking" / "jan.csv"
        service.import_file(path, base_dir=transaction_dir)

        result = service.import_file(path, base_dir=transaction_dir)

        assert result.new == 0
        assert result.skipped_already_imported == 3
        assert len(adapter.calls) == 1

    def test_explicit_account(self, service, tmp_path, account):
        path = tmp_path / "anywhere.csv"
        path.write_text("date,amount\n2024-01-05,1.00\n")

        result = service.import_file(path, account=account)

        assert result.new == 1

    def test_resolve_account_unknown(self, service, account):
        with pytest.raises(AccountResolutionError):
            service.resolve_account("Household", "Savings")
        with pytest.raises(AccountResolutionError):
            service.resolve_account("Business", "Checking")

    def test_unknown_account_directory(self, service, transaction_dir):
        path = transaction_dir / "Household" / "Savings" / "jan.csv"
        path.parent.mkdir()
        path.write_text("date,amount\n2024-01-05,1.00\n")

        with pytest.raises(AccountResolutionError):
            service.import_file(path, base_dir=transaction_dir)

    def test_no_account_and_no_base_dir(self, service, tmp_path):
        path = tmp_path / "jan.csv"
        path.write_text("date,amount\n")

        with pytest.raises(AccountResolutionError):
            service.import_file(path)

    def test_unsupported_extension_ignored(self, service, adapter, tmp_path, account):
        path = tmp_path / "statement.pdf"
        path.write_bytes(b"%PDF-1.4")

        assert service.import_file(path, account=account) is None
        assert adapter.calls == []

    def test_parse_error_leaves_ledger_untouched(self, service, store, adapter, tmp_path, account):
        path = tmp_path / "broken.csv"
        path.write_text("date,amount\n2024-01-05,1.00\n2024-01-06,not-a-number\n")

        with pytest.raises(ParseError):
            service.import_file(path, account=account)

        assert store.count_imported() == 0
        assert adapter.calls == []
        assert path.exists()

    def test_qfx_picked_by_extension(self, service, store, adapter, transaction_dir, account):
        path = transaction_dir / "Household" / "Checking" / "nov.QFX"
        shutil.copy(fixture_path("tangerine.qfx"), path)

        result = service.import_file(path, base_dir=transaction_dir)

        assert result.state == ImportState.COMPLETED
        assert result.new == 4
        assert sorted(r.amount for r in adapter.calls[0][2]) == [-8910, -7880, -7350, -500]

    def test_missing_file_is_parse_error(self, service, store, adapter, transaction_dir):
        path = transaction_dir / "Household" / "Checking" / "gone.csv"

        with pytest.raises(ParseError):
            service.import_file(path, base_dir=transaction_dir)

        assert store.count_imported() == 0
        assert adapter.calls == []

    def test_disabled_extension_ignored(self, store, adapter, tmp_path, account):
        service = FileImportService(store, ImportReconciler(store, adapter), extensions=[".csv"])
        path = tmp_path / "nov.qfx"
        shutil.copy(fixture_path("tangerine.qfx"), path)

        assert service.import_file(path, account=account) is None
        assert adapter.calls == []

    def test_custom_parser(self, store, adapter, tmp_path, account):
        def parser(path, account_id):
            return [make_tx(account, -100, "2024-05-01")]

        service = FileImportService(
            store,
            ImportReconciler(store, adapter),
            parsers={".TXT": parser},
            extensions=[".txt"],
        )
        path = tmp_path / "export.txt"
        path.write_text("anything")

        result = service.import_file(path, account=account)

        assert result.new == 1
