from __future__ import annotations

import json
import re
from pathlib import Path

import pytest

from lottery_ops.cli.main import EXIT_FATAL, EXIT_REJECTED, EXIT_SUCCESS, main
from lottery_ops.csvio.game_schema import TEMPLATE_HEADERS
from lottery_ops.db.catalog_store import CatalogStoreError
from lottery_ops.logging.init import reset_logging

TOKEN_RE = re.compile(r"validation_token=(\S+)")


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    yield
    reset_logging()


def _write_csv(workdir: Path, text: str, name: str = "games.csv") -> Path:
    path = workdir / "data" / name
    path.write_text(text, encoding="utf-8")
    return path


def _run(argv: list[str], capsys) -> tuple[int, str]:
    reset_logging()
    code = main(argv)
    return code, capsys.readouterr().out


def test_template_needs_no_config(temp_workdir, capsys):
    code, out = _run(["--config", "missing.yml", "import-template"], capsys)
    assert code == EXIT_SUCCESS
    assert out.splitlines()[0] == ",".join(TEMPLATE_HEADERS)


def test_validate_then_commit(cli_fakes, temp_workdir, capsys):
    store = cli_fakes
    store.add_game("0002", name="Old Name")
    csv_path = _write_csv(
        temp_workdir,
        "game_code,name,price\n0001,Lucky 7s,5\n0002,Cash Blast,10\n0003,,2\n",
    )

    code, out = _run(["import-validate", str(csv_path), "--state-id", "state-ga", "--user-id", "u1"], capsys)
    assert code == EXIT_SUCCESS
    assert "SUMMARY rows=3 valid=1 errors=1 duplicates=1 create=1 update=0" in out
    token = TOKEN_RE.search(out).group(1)

    log_files = list((temp_workdir / "logs").glob("import-errors-*.log"))
    assert len(log_files) == 1
    record = json.loads(log_files[0].read_text(encoding="utf-8").splitlines()[0])
    assert record["file"] == "games.csv"
    assert record["row"] == 3
    assert record["error_type"] == "VALIDATION"

    code, out = _run(["import-commit", token, "--user-id", "u1"], capsys)
    assert code == EXIT_SUCCESS
    assert re.search(r"^SUMMARY created=1 updated=0 skipped=2 failed=0 elapsed_sec=\S+$", out, re.M)
    assert "0001" in store.games_by_code()

    code, out = _run(["import-status", token], capsys)
    assert code == EXIT_SUCCESS
    assert "committed=True" in out
    assert "result=created:1,updated:0,skipped:2,failed:0" in out

    code, out = _run(["import-commit", token, "--user-id", "u1"], capsys)
    assert code == EXIT_REJECTED
    assert "ERROR This import has already been committed" in out
    assert "SUMMARY" not in out


def test_validate_update_existing_counts_updates(cli_fakes, temp_workdir, capsys):
    cli_fakes.add_game("0002")
    csv_path = _write_csv(temp_workdir, "game_code,name,price\n0002,Cash Blast,10\n")
    code, out = _run(
        ["import-validate", str(csv_path), "--state-id", "state-ga", "--user-id", "u1", "--update-existing"],
        capsys,
    )
    assert code == EXIT_SUCCESS
    assert "create=0 update=1" in out


def test_validate_rejected_file_writes_file_level_error(cli_fakes, temp_workdir, capsys):
    csv_path = _write_csv(temp_workdir, "game_code,name\n0001,Lucky\n")
    code, out = _run(["import-validate", str(csv_path), "--state-id", "state-ga", "--user-id", "u1"], capsys)
    assert code == EXIT_REJECTED
    assert "ERROR" in out
    assert "SUMMARY rows=0 valid=0" in out
    log_file = next((temp_workdir / "logs").glob("import-errors-*.log"))
    record = json.loads(log_file.read_text(encoding="utf-8").splitlines()[0])
    assert record["row"] == 0
    assert "price" in record["message"]


def test_validate_unknown_state(cli_fakes, temp_workdir, capsys):
    csv_path = _write_csv(temp_workdir, "game_code,name,price\n0001,Lucky,5\n")
    code, out = _run(["import-validate", str(csv_path), "--state-id", "nope", "--user-id", "u1"], capsys)
    assert code == EXIT_REJECTED
    assert "ERROR Invalid state ID. State not found." in out


def test_validate_missing_file(cli_fakes, temp_workdir, capsys):
    code, out = _run(["import-validate", "data/none.csv", "--state-id", "state-ga", "--user-id", "u1"], capsys)
    assert code == EXIT_FATAL
    assert "ERROR file not found" in out


def test_status_unknown_token(cli_fakes, capsys):
    code, out = _run(["import-status", "nope"], capsys)
    assert code == EXIT_REJECTED
    assert "ERROR Invalid validation token" in out


def test_history_empty_and_cleanup(cli_fakes, capsys):
    code, out = _run(["import-history", "--user-id", "u9"], capsys)
    assert code == EXIT_SUCCESS
    assert "no imports for user=u9" in out
    code, _ = _run(["import-cleanup"], capsys)
    assert code == EXIT_SUCCESS


def test_upc_generate_prints_codes(temp_workdir, capsys):
    code, out = _run(
        ["upc-generate", "--game-code", "0033", "--pack-number", "5633005", "--tickets-per-pack", "3"],
        capsys,
    )
    assert code == EXIT_SUCCESS
    upcs = [line for line in out.splitlines() if line.isdigit()]
    assert len(upcs) == 3
    assert upcs[0] == "056330050000"


def test_upc_generate_rejects_bad_game_code(temp_workdir, capsys):
    code, out = _run(
        ["upc-generate", "--game-code", "33", "--pack-number", "5633005", "--tickets-per-pack", "3"],
        capsys,
    )
    assert code == EXIT_REJECTED
    assert "ERROR upc:" in out


def test_pack_activate_and_deactivate(cli_fakes, cache_backend, temp_workdir, capsys):
    gateway = temp_workdir / "gateway"
    cli_fakes.add_integration(xml_gateway_path=str(gateway))
    code, out = _run(
        [
            "pack-activate",
            "--pack-id", "pack-1",
            "--store-id", "store-1",
            "--game-code", "0033",
            "--game-name", "Lucky 7s",
            "--pack-number", "5633005",
            "--tickets-per-pack", "15",
            "--ticket-price", "20.00",
        ],
        capsys,
    )
    assert code == EXIT_SUCCESS
    assert "pack=pack-1 upcs=15 first=056330050000 last=056330050147 cached=True pos_exported=True" in out
    assert "pos file:" in out
    assert len(list((gateway / "BOInbox").glob("*.xml"))) == 1

    code, out = _run(["pack-deactivate", "--pack-id", "pack-1", "--store-id", "store-1"], capsys)
    assert code == EXIT_SUCCESS
    assert "pack=pack-1 upcs=15 cache_deleted=True pos_removed=True" in out
    assert cache_backend.data == {}


def test_bad_ticket_price_is_usage_error(temp_workdir):
    with pytest.raises(SystemExit) as e:
        main(
            [
                "pack-activate",
                "--pack-id", "p",
                "--store-id", "s",
                "--game-code", "0033",
                "--game-name", "n",
                "--pack-number", "5633005",
                "--tickets-per-pack", "15",
                "--ticket-price", "abc",
            ]
        )
    assert e.value.code == 2


def test_database_error_is_fatal(cli_fakes, monkeypatch, capsys):
    def boom(token):
        raise CatalogStoreError("connection refused")

    monkeypatch.setattr(cli_fakes, "find_pending_import_by_token", boom)
    code, out = _run(["import-status", "tok"], capsys)
    assert code == EXIT_FATAL
    assert "ERROR database: connection refused" in out


def test_unexpected_error_is_fatal(cli_fakes, monkeypatch, capsys):
    def boom(user_id, limit):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(cli_fakes, "list_pending_imports_by_user", boom)
    code, out = _run(["import-history", "--user-id", "u1"], capsys)
    assert code == EXIT_FATAL
    assert "ERROR unexpected: RuntimeError: disk on fire" in out


def test_upc_verify(temp_workdir, capsys):
    code, out = _run(["upc-verify", "056330050147"], capsys)
    assert code == EXIT_SUCCESS
    assert "upc=056330050147 game_prefix=0 pack=5633005 serial=014" in out

    code, out = _run(["upc-verify", "056330050148"], capsys)
    assert code == EXIT_REJECTED
    assert "ERROR upc: invalid 056330050148" in out


def test_pack_activate_warns_when_cache_unreachable(cli_fakes, cache_backend, temp_workdir, capsys):
    cache_backend.reachable = False
    code, out = _run(
        [
            "pack-activate",
            "--pack-id", "pack-1",
            "--store-id", "store-1",
            "--game-code", "0033",
            "--game-name", "Lucky 7s",
            "--pack-number", "5633005",
            "--tickets-per-pack", "15",
            "--ticket-price", "20.00",
        ],
        capsys,
    )
    assert code == EXIT_SUCCESS
    assert "WARN cache unreachable: redis ping failed" in out


def test_audit_failure_is_reported_but_not_fatal(cli_fakes, temp_workdir, capsys):
    cli_fakes.fail_audit = True
    code, out = _run(
        [
            "pack-activate",
            "--pack-id", "pack-1",
            "--store-id", "store-1",
            "--game-code", "0033",
            "--game-name", "Lucky 7s",
            "--pack-number", "5633005",
            "--tickets-per-pack", "15",
            "--ticket-price", "20.00",
        ],
        capsys,
    )
    assert code == EXIT_SUCCESS
    assert "WARN audit log write failed pack=pack-1" in out

    code, out = _run(["pack-deactivate", "--pack-id", "pack-1", "--store-id", "store-1"], capsys)
    assert code == EXIT_SUCCESS
    assert "WARN audit log write failed pack=pack-1" in out

    csv_path = _write_csv(temp_workdir, "game_code,name,price\n0001,Lucky 7s,5\n")
    code, out = _run(["import-validate", str(csv_path), "--state-id", "state-ga", "--user-id", "u1"], capsys)
    token = TOKEN_RE.search(out).group(1)
    code, out = _run(["import-commit", token, "--user-id", "u1"], capsys)
    assert code == EXIT_SUCCESS
    assert "WARN audit log write failed for import commit" in out
    assert "SUMMARY created=1" in out
