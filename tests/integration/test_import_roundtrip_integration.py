from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest
from conftest import make_csv

from lottery_ops.models.import_models import (
    CommitImportParams,
    CommitOptions,
    ErrorRow,
    ImportOptions,
    ValidateImportParams,
)
from lottery_ops.services.import_commit import ImportCommitter
from lottery_ops.services.import_validation import (
    ImportValidator,
    cleanup_expired_imports,
    get_import_status,
    get_user_import_history,
)

"""Integration: generated CSV -> validate -> commit against the in-memory store.

Accounting must hold for every commit: created + updated + skipped + failed == total_rows.
"""

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "gen_import_dataset.py"


@pytest.fixture(scope="module")
def dataset():
    spec = importlib.util.spec_from_file_location("gen_import_dataset", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _validate(store, clock, payload: bytes, update_existing: bool = False):
    return ImportValidator(store, clock=clock).validate(
        ValidateImportParams(
            file_buffer=payload,
            state_id="state-ga",
            user_id="u1",
            options=ImportOptions(update_existing=update_existing),
        )
    )


def test_generated_file_roundtrip(dataset, store, clock, tmp_path: Path):
    df = dataset.generate_game_frame(60, seed=7, error_rows=7, duplicate_rows=4)
    path = tmp_path / "games.csv"
    dataset.write_import_csv(df, path, delimiter=";", bom=True)
    store.add_game(df.at[0, "game_code"], name="Already Listed")

    result = _validate(store, clock, path.read_bytes())
    assert result.success is True
    assert "UTF-8 byte order mark removed" in result.warnings
    preview = result.preview
    assert preview.total_rows == 60
    assert preview.error_rows == 11
    assert preview.duplicate_rows == 1
    assert preview.valid_rows == 48
    assert preview.games_to_create == 48
    assert preview.games_to_update == 0
    assert sum(isinstance(r, ErrorRow) for r in result.rows) == 11

    commit = ImportCommitter(store, clock=clock).commit(
        CommitImportParams(
            validation_token=result.validation_token,
            user_id="u1",
            options=CommitOptions(skip_errors=True, update_duplicates=True),
        )
    )
    s = commit.summary
    assert commit.success is True
    assert (s.created, s.updated, s.skipped, s.failed) == (48, 1, 11, 0)
    assert s.created + s.updated + s.skipped + s.failed == preview.total_rows
    assert len(store.games_by_code()) == 49
    assert store.games_by_code()[df.at[0, "game_code"]]["name"] == df.at[0, "name"]

    status = get_import_status(store, result.validation_token, clock)
    assert status.is_committed is True
    assert status.commit_result == s.to_dict()


def test_update_existing_roundtrip(dataset, store, clock, tmp_path: Path):
    df = dataset.generate_game_frame(20, seed=3)
    for code in df["game_code"][:5]:
        store.add_game(code)
    path = tmp_path / "games.csv"
    dataset.write_import_csv(df, path, delimiter="\t")

    result = _validate(store, clock, path.read_bytes(), update_existing=True)
    assert result.preview.games_to_update == 5
    assert result.preview.games_to_create == 15

    commit = ImportCommitter(store, clock=clock).commit(
        CommitImportParams(validation_token=result.validation_token, user_id="u1")
    )
    assert (commit.summary.created, commit.summary.updated) == (15, 5)
    assert len(store.games_by_code()) == 20


def test_race_rows_fail_without_aborting(dataset, store, clock, tmp_path: Path):
    df = dataset.generate_game_frame(10, seed=11)
    path = tmp_path / "games.csv"
    dataset.write_import_csv(df, path)

    result = _validate(store, clock, path.read_bytes())
    store.race_codes.update(df["game_code"][:2])
    commit = ImportCommitter(store, clock=clock).commit(
        CommitImportParams(validation_token=result.validation_token, user_id="u1")
    )
    assert commit.success is False
    assert commit.summary.failed == 2
    assert commit.summary.created == 8
    assert {e.kind for e in commit.errors} == {"CONSTRAINT_RACE"}
    # 失敗行があってもトランザクションは確定する
    assert store.rollbacks == 0
    assert get_import_status(store, result.validation_token, clock).is_committed is True


def test_expired_token_then_cleanup(store, clock):
    result = _validate(store, clock, make_csv(["0001,Lucky 7s,5"]))
    clock.advance(minutes=15)
    commit = ImportCommitter(store, clock=clock).commit(
        CommitImportParams(validation_token=result.validation_token, user_id="u1")
    )
    assert commit.error_code == "EXPIRED_TOKEN"
    assert store.games == {}

    assert len(get_user_import_history(store, "u1", 10)) == 1
    clock.advance(seconds=1)
    assert cleanup_expired_imports(store, clock) == 1
    assert get_user_import_history(store, "u1", 10) == []
