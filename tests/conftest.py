# Shared pytest fixtures: in-memory collaborators, fixed clock, temp workdir
from __future__ import annotations

import copy
import json
import tempfile
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from lottery_ops.db.catalog_store import CatalogStoreError, UniqueConstraintError
from lottery_ops.models.import_models import GameRecord, GameValues, PendingImport, StateRecord
from lottery_ops.models.pack_models import PosIntegration
from lottery_ops.models.snapshot import dump_validated_rows, load_validated_rows

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
STATE_ID = "state-ga"


class FixedClock:
    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeCatalogStore:
    """In-memory CatalogStore.

    transaction() snapshots games / imports and restores them when the block
    raises. Pending imports go through the JSON snapshot round-trip like the
    JSONB column does.
    """

    def __init__(self) -> None:
        self.states: dict[str, StateRecord] = {}
        self.games: dict[str, dict] = {}
        self.imports: dict[str, PendingImport] = {}
        self.integrations: dict[str, PosIntegration] = {}
        self.audit: list = []
        self.fail_audit = False
        self.fail_integration_lookup = False
        self.race_codes: set[str] = set()  # create_game は一意制約違反を起こす
        self.lose_commit_race = False
        self.transactions = 0
        self.rollbacks = 0
        self._seq = 0

    def _next(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    # --- fixtures helpers -------------------------------------------

    def add_state(self, state_id=STATE_ID, code="GA", name="Georgia", is_active=True, lottery_enabled=True):
        self.states[state_id] = StateRecord(state_id, code, name, is_active, lottery_enabled)
        return self.states[state_id]

    def add_game(self, game_code, name="Existing Game", price="5.00", status="ACTIVE", state_id=STATE_ID):
        game_id = self._next("game")
        self.games[game_id] = {
            "game_id": game_id,
            "state_id": state_id,
            "game_code": game_code,
            "name": name,
            "description": None,
            "price": Decimal(price),
            "pack_value": Decimal("300.00"),
            "tickets_per_pack": 60,
            "status": status,
        }
        return self._record(game_id)

    def add_integration(self, store_id="store-1", **kwargs) -> PosIntegration:
        values = {
            "pos_type": "GILBARCO_PASSPORT",
            "is_active": True,
            "connection_mode": "FILE_EXCHANGE",
            "xml_gateway_path": None,
            "naxml_version": None,
            "store_location_id": None,
        }
        values.update(kwargs)
        self.integrations[store_id] = PosIntegration(store_id=store_id, **values)
        return self.integrations[store_id]

    def games_by_code(self, state_id=STATE_ID) -> dict[str, dict]:
        return {g["game_code"]: g for g in self.games.values() if g["state_id"] == state_id}

    def _record(self, game_id: str) -> GameRecord:
        g = self.games[game_id]
        return GameRecord(g["game_id"], g["game_code"], g["name"], g["price"], g["status"])

    # --- CatalogStore -----------------------------------------------

    def find_state_by_id(self, state_id):
        return self.states.get(state_id)

    def list_active_games_by_state(self, state_id):
        return [
            self._record(gid)
            for gid, g in self.games.items()
            if g["state_id"] == state_id and g["status"] != "DISCONTINUED"
        ]

    def find_pos_integration(self, store_id):
        if self.fail_integration_lookup:
            raise CatalogStoreError("connection lost")
        return self.integrations.get(store_id)

    @contextmanager
    def transaction(self):
        self.transactions += 1
        saved = (copy.deepcopy(self.games), dict(self.imports))
        try:
            yield "tx"
        except BaseException:
            self.games, self.imports = saved
            self.rollbacks += 1
            raise

    def create_game(self, tx, state_id, values: GameValues, user_id):
        assert tx == "tx"
        taken = any(
            g["state_id"] == state_id and g["game_code"] == values.game_code for g in self.games.values()
        )
        if taken or values.game_code in self.race_codes:
            raise UniqueConstraintError(f"game_code {values.game_code} already exists")
        game_id = self._next("game")
        self.games[game_id] = {
            "game_id": game_id,
            "state_id": state_id,
            "created_by_user_id": user_id,
            **values.__dict__,
        }
        return self._record(game_id)

    def update_game(self, tx, game_id, values: GameValues):
        assert tx == "tx"
        self.games[game_id].update(values.__dict__)
        return self._record(game_id)

    def mark_pending_import_committed(self, tx, import_id, committed_at, commit_result):
        assert tx == "tx"
        pending = self.imports[import_id]
        if self.lose_commit_race or pending.committed_at is not None:
            return False
        self.imports[import_id] = replace(
            pending, committed_at=committed_at, commit_result=dict(commit_result)
        )
        return True

    def create_pending_import(self, **kw):
        import_id = self._next("import")
        snapshot = json.loads(json.dumps(dump_validated_rows(kw.pop("validated_rows"))))
        pending = PendingImport(
            import_id=import_id,
            validated_rows=load_validated_rows(snapshot),
            created_at=FIXED_NOW + timedelta(seconds=self._seq),
            **kw,
        )
        self.imports[import_id] = pending
        return pending

    def find_pending_import_by_token(self, token):
        for p in self.imports.values():
            if p.validation_token == token:
                return p
        return None

    def delete_expired_pending_imports(self, now):
        expired = [
            k for k, p in self.imports.items() if p.expires_at < now and p.committed_at is None
        ]
        for k in expired:
            del self.imports[k]
        return len(expired)

    def list_pending_imports_by_user(self, user_id, limit):
        mine = [p for p in self.imports.values() if p.created_by_user_id == user_id]
        mine.sort(key=lambda p: p.created_at, reverse=True)
        return mine[:limit]

    def write_audit_log_entry(self, entry):
        if self.fail_audit:
            raise CatalogStoreError("audit table unavailable")
        self.audit.append(entry)

    def audit_actions(self) -> list[str]:
        return [e.action for e in self.audit]


class FakeCacheStore:
    """In-memory CacheStore with switchable failures."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.fail_set = False
        self.fail_delete = False
        self.reachable = True

    def set(self, key, value, ttl_seconds=None):
        if self.fail_set:
            return False
        self.data[key] = value
        self.ttls[key] = ttl_seconds
        return True

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        if self.fail_delete:
            return False
        self.data.pop(key, None)
        return True

    def ping(self):
        return self.reachable


def make_csv(rows: list[str], header: str = "game_code,name,price") -> bytes:
    return ("\n".join([header, *rows]) + "\n").encode("utf-8")


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def store() -> FakeCatalogStore:
    s = FakeCatalogStore()
    s.add_state()
    return s


@pytest.fixture()
def cache_backend() -> FakeCacheStore:
    return FakeCacheStore()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """database:
  host: localhost
  port: 5432
  user: lottery
  password: secret
  database: lottery
cache:
  host: localhost
  port: 6379
  retry_window_seconds: 3600
import:
  max_rows: 1000
  token_ttl_minutes: 15
  default_pack_value: "300.00"
pos_sync:
  naxml_version: "3.4"
upc:
  game_prefix_digits: 1
  serial_digits: 3
  check_digit: true
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "lottery_ops.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def cli_fakes(monkeypatch, temp_workdir, store, cache_backend):
    """Route the CLI's store / cache factories to the in-memory fakes."""

    @contextmanager
    def open_store(cfg):
        yield store

    monkeypatch.setattr("lottery_ops.cli.main._open_store", open_store)
    monkeypatch.setattr("lottery_ops.cli.main._open_cache_backend", lambda cfg: cache_backend)
    return store
