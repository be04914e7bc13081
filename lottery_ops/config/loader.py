from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from lottery_ops.models.csv_models import DEFAULT_MAX_FILE_SIZE, DEFAULT_MAX_ROWS
from lottery_ops.models.pack_models import UpcLayout

"""Configuration loader.

Responsibilities:
- Load YAML (default config/lottery_ops.yml)
- Validate against the packaged config_schema.json (unknown keys rejected)
- Apply defaults per section
- Resolve connection settings with environment overrides (.env is loaded by the CLI)
"""

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_FILE_EXCHANGE_POS_TYPES",
    "AppConfig",
    "CacheConfig",
    "ConfigError",
    "config_from_dict",
    "DatabaseConfig",
    "ImportSettings",
    "PosSyncSettings",
    "load_config",
    "resolve_dsn",
    "resolve_redis_url",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/lottery_ops.yml")

DEFAULT_FILE_EXCHANGE_POS_TYPES = (
    "GILBARCO_PASSPORT",
    "GILBARCO_NAXML",
    "GILBARCO_COMMANDER",
    "VERIFONE_RUBY2",
    "VERIFONE_COMMANDER",
    "VERIFONE_SAPPHIRE",
)


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    """Fallback connection settings. Environment variables take precedence."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class CacheConfig:
    url: str | None = None
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str | None = None
    retry_window_seconds: int = 3600  # 1h
    key_prefix: str = "lottery:pack_upcs"


@dataclass(frozen=True)
class ImportSettings:
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE
    max_rows: int = DEFAULT_MAX_ROWS
    token_ttl_minutes: int = 15
    default_pack_value: Decimal = Decimal("300.00")
    history_limit: int = 20


@dataclass(frozen=True)
class PosSyncSettings:
    department_code: str = "LOTTERY"
    tax_rate_code: str = "NOTAX"
    naxml_version: str = "3.4"
    file_exchange_pos_types: tuple[str, ...] = DEFAULT_FILE_EXCHANGE_POS_TYPES
    short_description_length: int = 20
    inbox_dir_name: str = "BOInbox"


@dataclass(frozen=True)
class AppConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    imports: ImportSettings = field(default_factory=ImportSettings)
    pos_sync: PosSyncSettings = field(default_factory=PosSyncSettings)
    upc: UpcLayout = field(default_factory=UpcLayout)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the packaged JSON schema.

    Raises:
        ConfigError: schema file missing or unreadable, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = ".".join(str(p) for p in e.absolute_path)
        prefix = f"{where}: " if where else ""
        raise ConfigError(f"config validation failed: {prefix}{e.message}") from e


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    return data.get(name) or {}


def config_from_dict(data: dict[str, Any]) -> AppConfig:
    """Build an AppConfig from already-parsed data (validated + defaults applied)."""
    _validate_config_schema(data)

    db_raw = _section(data, "database")
    database = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )

    cache_raw = _section(data, "cache")
    cache_defaults = CacheConfig()
    cache = CacheConfig(
        url=cache_raw.get("url"),
        host=cache_raw.get("host", cache_defaults.host),
        port=cache_raw.get("port", cache_defaults.port),
        db=cache_raw.get("db", cache_defaults.db),
        password=cache_raw.get("password"),
        retry_window_seconds=cache_raw.get(
            "retry_window_seconds", cache_defaults.retry_window_seconds
        ),
        key_prefix=cache_raw.get("key_prefix", cache_defaults.key_prefix),
    )

    imp_raw = _section(data, "import")
    imp_defaults = ImportSettings()
    imports = ImportSettings(
        max_file_size_bytes=imp_raw.get("max_file_size_bytes", imp_defaults.max_file_size_bytes),
        max_rows=imp_raw.get("max_rows", imp_defaults.max_rows),
        token_ttl_minutes=imp_raw.get("token_ttl_minutes", imp_defaults.token_ttl_minutes),
        default_pack_value=Decimal(
            str(imp_raw.get("default_pack_value", imp_defaults.default_pack_value))
        ),
        history_limit=imp_raw.get("history_limit", imp_defaults.history_limit),
    )

    pos_raw = _section(data, "pos_sync")
    pos_defaults = PosSyncSettings()
    pos_sync = PosSyncSettings(
        department_code=pos_raw.get("department_code", pos_defaults.department_code),
        tax_rate_code=pos_raw.get("tax_rate_code", pos_defaults.tax_rate_code),
        naxml_version=pos_raw.get("naxml_version", pos_defaults.naxml_version),
        file_exchange_pos_types=tuple(
            pos_raw.get("file_exchange_pos_types", pos_defaults.file_exchange_pos_types)
        ),
        short_description_length=pos_raw.get(
            "short_description_length", pos_defaults.short_description_length
        ),
        inbox_dir_name=pos_raw.get("inbox_dir_name", pos_defaults.inbox_dir_name),
    )

    upc_raw = _section(data, "upc")
    upc_defaults = UpcLayout()
    try:
        upc = UpcLayout(
            game_prefix_digits=upc_raw.get("game_prefix_digits", upc_defaults.game_prefix_digits),
            serial_digits=upc_raw.get("serial_digits", upc_defaults.serial_digits),
            check_digit=upc_raw.get("check_digit", upc_defaults.check_digit),
        )
    except ValueError as e:
        raise ConfigError(f"config validation failed: upc: {e}") from e

    return AppConfig(
        database=database,
        cache=cache,
        imports=imports,
        pos_sync=pos_sync,
        upc=upc,
    )


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")
    return config_from_dict(data)


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    """Resolve the PostgreSQL DSN.

    優先順位:
        1. DATABASE_URL / PGDSN (DSN 全体)
        2. config の database.dsn
        3. 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE, 不足分は config
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def resolve_redis_url(cache_cfg: CacheConfig) -> str | None:
    """REDIS_URL overrides the cache section. None means connect by host/port."""
    return os.getenv("REDIS_URL") or cache_cfg.url
