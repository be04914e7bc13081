from __future__ import annotations

import pytest

from lottery_ops.cli.main import main
from lottery_ops.logging.init import reset_logging

"""Exit code contract: 0 success / 1 fatal / 2 rejected."""


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    yield
    reset_logging()


def _csv(workdir, text):
    path = workdir / "data" / "games.csv"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_exit_code_config_error(temp_workdir, capsys):
    code = main(["--config", "config/not_exists.yml", "import-status", "tok"])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_invalid_config(write_config, capsys):
    write_config.write_text("import:\n  max_rows: 0\n", encoding="utf-8")
    code = main(["--config", str(write_config), "import-cleanup"])
    assert code == 1
    assert "ERROR config: config validation failed" in capsys.readouterr().out


def test_exit_code_success(cli_fakes, temp_workdir):
    path = _csv(temp_workdir, "game_code,name,price\n0001,Lucky 7s,5\n")
    assert main(["import-validate", path, "--state-id", "state-ga", "--user-id", "u1"]) == 0


def test_exit_code_rejected_when_no_valid_rows(cli_fakes, temp_workdir):
    path = _csv(temp_workdir, "game_code,name,price\n12A,Lucky 7s,5\n")
    assert main(["import-validate", path, "--state-id", "state-ga", "--user-id", "u1"]) == 2


def test_exit_code_rejected_for_unknown_token(cli_fakes):
    assert main(["import-commit", "no-such-token", "--user-id", "u1"]) == 2


def test_exit_code_rejected_when_rows_fail(cli_fakes, temp_workdir):
    path = _csv(temp_workdir, "game_code,name,price\n0001,Lucky 7s,5\n")
    assert main(["import-validate", path, "--state-id", "state-ga", "--user-id", "u1"]) == 0
    token = next(iter(cli_fakes.imports.values())).validation_token
    cli_fakes.race_codes.add("0001")
    reset_logging()
    assert main(["import-commit", token, "--user-id", "u1"]) == 2
