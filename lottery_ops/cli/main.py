from __future__ import annotations

import argparse
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from lottery_ops.cache.pack_upc_cache import PackUpcCache
from lottery_ops.cache.store import CacheStore, RedisCacheStore
from lottery_ops.config.loader import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    ConfigError,
    load_config,
    resolve_dsn,
)
from lottery_ops.csvio.game_schema import generate_import_template
from lottery_ops.db.catalog_store import CatalogStore, CatalogStoreError, PostgresCatalogStore
from lottery_ops.logging.error_log import ErrorLogBuffer
from lottery_ops.logging.init import log_summary, setup_logging
from lottery_ops.models.error_record import ErrorRecord
from lottery_ops.models.import_models import (
    CommitImportParams,
    CommitOptions,
    ErrorRow,
    ImportOptions,
    ImportStatus,
    ValidateImportParams,
)
from lottery_ops.models.outcome import ErrorKind
from lottery_ops.models.pack_models import PackActivationInput, UpcGenerationInput
from lottery_ops.models.snapshot import SnapshotSchemaError
from lottery_ops.services.import_commit import MSG_TOKEN_NOT_FOUND, ImportCommitter
from lottery_ops.services.import_validation import (
    ImportValidator,
    cleanup_expired_imports,
    get_import_status,
    get_user_import_history,
    row_error_kind,
)
from lottery_ops.services.pack_pos_sync import PackPosSync
from lottery_ops.services.pos_export import PriceBookExporter
from lottery_ops.services.summary import render_commit_summary, render_preview_summary
from lottery_ops.services.upc_generator import UpcGenerator

"""CLI entrypoint.

Subcommands drive the two back-office pipelines:

    import-validate / import-commit / import-status / import-history /
    import-cleanup / import-template
    pack-activate / pack-deactivate / upc-generate / upc-verify

Exit codes:
    0  success
    1  fatal (config, connection, unexpected error)
    2  rejected (validation failure, token guard, failed rows)
"""

__all__ = [
    "EXIT_FATAL",
    "EXIT_REJECTED",
    "EXIT_SUCCESS",
    "main",
]

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_REJECTED = 2

_SUMMARY_PREFIX = "SUMMARY "


@contextmanager
def _open_store(cfg: AppConfig) -> Iterator[CatalogStore]:  # pragma: no cover (thin wrapper)
    """psycopg2 connection wrapped as a CatalogStore.

    接続情報の優先順位は resolve_dsn() を参照 (.env は main() 冒頭で上書き読込済み)。
    """
    conn = psycopg2.connect(resolve_dsn(cfg.database))
    conn.autocommit = False  # トランザクション境界は store 側で管理
    try:
        yield PostgresCatalogStore(conn)
    finally:
        conn.close()


def _open_cache_backend(cfg: AppConfig) -> CacheStore:  # pragma: no cover (thin wrapper)
    return RedisCacheStore.from_config(cfg.cache)


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; its values win over the existing environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _resolve_config(path: Path | None) -> AppConfig:
    """Explicit --config must exist; a missing default file means built-in defaults."""
    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return AppConfig()
        path = DEFAULT_CONFIG_PATH
    return load_config(path)


def _emit_summary(line: str) -> None:
    # log_summary が "SUMMARY " ラベルを付与するため本文のみ渡す
    log_summary(line[len(_SUMMARY_PREFIX):] if line.startswith(_SUMMARY_PREFIX) else line)


def _decimal_arg(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"invalid amount: {value}") from e


def _pack_sync(cfg: AppConfig, store: CatalogStore, logger) -> PackPosSync:
    generator = UpcGenerator(cfg.upc)
    backend = _open_cache_backend(cfg)
    # Redis 不通でも POS 連携は続行する (cache 結果は result で返る)
    if not backend.ping():
        logger.warning("cache unreachable: redis ping failed")
    cache = PackUpcCache(
        backend,
        retry_window=timedelta(seconds=cfg.cache.retry_window_seconds),
        key_prefix=cfg.cache.key_prefix,
    )
    exporter = PriceBookExporter(cfg.pos_sync, generator.serial_of)
    return PackPosSync(generator, cache, store, exporter, cfg.pos_sync)


def _describe_status(status: ImportStatus) -> str:
    text = (
        f"import={status.import_id} state={status.state_id} rows={status.total_rows} "
        f"valid={status.valid_rows} errors={status.error_rows} "
        f"duplicates={status.duplicate_rows} expires_at={status.expires_at.isoformat()} "
        f"expired={status.is_expired} committed={status.is_committed}"
    )
    if status.commit_result:
        text += " result=" + ",".join(f"{k}:{v}" for k, v in status.commit_result.items())
    return text


# --- import commands ----------------------------------------------------

def _cmd_import_validate(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    path = Path(args.file)
    if not path.is_file():
        logger.error(f"file not found: {path}")
        return EXIT_FATAL

    params = ValidateImportParams(
        file_buffer=path.read_bytes(),
        state_id=args.state_id,
        user_id=args.user_id,
        options=ImportOptions(update_existing=args.update_existing),
    )
    with _open_store(cfg) as store:
        result = ImportValidator(store, cfg.imports).validate(params)

    for warning in result.warnings:
        logger.warning(warning)

    errors = ErrorLogBuffer()
    for row in result.rows:
        logger.debug(f"row {row.row_number}: {row.status} action={row.action}")
        if isinstance(row, ErrorRow):
            kind = row_error_kind(row).value
            errors.extend(
                [ErrorRecord.create(path.name, row.row_number, kind, msg) for msg in row.errors]
            )
    for msg in result.errors:
        logger.error(msg)
        errors.append(
            ErrorRecord.create(path.name, 0, result.error_code or ErrorKind.UNEXPECTED.value, msg)
        )
    log_path = errors.flush()
    if log_path is not None:
        logger.info(f"error log: {log_path}")

    _emit_summary(render_preview_summary(result.preview))
    if not result.success:
        return EXIT_REJECTED
    logger.info(
        f"validation_token={result.validation_token} expires_at={result.expires_at.isoformat()}"
    )
    return EXIT_SUCCESS


def _cmd_import_commit(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    params = CommitImportParams(
        validation_token=args.token,
        user_id=args.user_id,
        options=CommitOptions(
            skip_errors=not args.no_skip_errors,
            update_duplicates=args.update_duplicates,
        ),
    )
    start = time.perf_counter()
    with _open_store(cfg) as store:
        result = ImportCommitter(store, cfg.imports).commit(params)
    elapsed = time.perf_counter() - start

    for err in result.errors:
        logger.error(f"row {err.row_number}: {err.error}" if err.row_number else err.error)
    errors = ErrorLogBuffer()
    errors.extend(
        [
            ErrorRecord.create(
                args.token, err.row_number, err.kind or ErrorKind.UNEXPECTED.value, err.error
            )
            for err in result.errors
        ]
    )
    log_path = errors.flush()
    if log_path is not None:
        logger.info(f"error log: {log_path}")

    if result.error_code is not None:
        return EXIT_REJECTED
    if not result.audit_logged:
        logger.warning("audit log write failed for import commit")
    for game in result.created_games:
        logger.debug(f"created game={game.game_code} id={game.game_id} row={game.row_number}")
    _emit_summary(render_commit_summary(result.summary, elapsed))
    return EXIT_SUCCESS if result.success else EXIT_REJECTED


def _cmd_import_status(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    with _open_store(cfg) as store:
        status = get_import_status(store, args.token)
    if status is None:
        logger.error(MSG_TOKEN_NOT_FOUND)
        return EXIT_REJECTED
    logger.info(_describe_status(status))
    return EXIT_SUCCESS


def _cmd_import_history(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    limit = args.limit if args.limit is not None else cfg.imports.history_limit
    with _open_store(cfg) as store:
        history = get_user_import_history(store, args.user_id, limit)
    if not history:
        logger.info(f"no imports for user={args.user_id}")
    for status in history:
        logger.info(_describe_status(status))
    return EXIT_SUCCESS


def _cmd_import_cleanup(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    with _open_store(cfg) as store:
        cleanup_expired_imports(store)
    return EXIT_SUCCESS


def _cmd_import_template(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    sys.stdout.write(generate_import_template())
    return EXIT_SUCCESS


# --- pack commands ------------------------------------------------------

def _cmd_pack_activate(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    req = PackActivationInput(
        pack_id=args.pack_id,
        store_id=args.store_id,
        game_code=args.game_code,
        game_name=args.game_name,
        pack_number=args.pack_number,
        tickets_per_pack=args.tickets_per_pack,
        ticket_price=args.ticket_price,
        starting_serial=args.starting_serial,
        user_id=args.user_id,
    )
    with _open_store(cfg) as store:
        result = _pack_sync(cfg, store, logger).sync_pack_activation(req)

    if not result.success:
        logger.error(f"activation: {result.error}")
        return EXIT_REJECTED
    if result.error:
        logger.warning(result.error)
    if not result.audit_logged:
        logger.warning(f"audit log write failed pack={req.pack_id}")
    details = result.details
    logger.info(
        f"pack={req.pack_id} upcs={result.upc_count} first={details.first_upc} "
        f"last={details.last_upc} cached={result.redis_stored} pos_exported={result.pos_exported}"
    )
    if details.file_path:
        logger.info(f"pos file: {details.file_path}")
    return EXIT_SUCCESS


def _cmd_pack_deactivate(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    with _open_store(cfg) as store:
        result = _pack_sync(cfg, store, logger).sync_pack_deactivation(
            args.pack_id, args.store_id, args.user_id
        )
    if result.error:
        logger.warning(result.error)
    if not result.audit_logged:
        logger.warning(f"audit log write failed pack={args.pack_id}")
    logger.info(
        f"pack={args.pack_id} upcs={result.upc_count} cache_deleted={result.redis_deleted} "
        f"pos_removed={result.pos_removed}"
    )
    return EXIT_SUCCESS


def _cmd_upc_generate(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    gen = UpcGenerator(cfg.upc).generate(
        UpcGenerationInput(
            game_code=args.game_code,
            pack_number=args.pack_number,
            tickets_per_pack=args.tickets_per_pack,
            starting_serial=args.starting_serial,
        )
    )
    if not gen.success:
        logger.error(f"upc: {gen.error}")
        return EXIT_REJECTED
    for upc in gen.upcs:
        print(upc)
    return EXIT_SUCCESS


def _cmd_upc_verify(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    generator = UpcGenerator(cfg.upc)
    if not generator.is_valid_upc(args.upc):
        logger.error(f"upc: invalid {args.upc}")
        return EXIT_REJECTED
    parsed = generator.parse_upc(args.upc)
    logger.info(
        f"upc={args.upc} game_prefix={parsed.game_code_prefix} pack={parsed.pack_number} "
        f"serial={parsed.ticket_number}"
    )
    return EXIT_SUCCESS


# --- argument parsing ---------------------------------------------------

def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="lottery-ops", description="Lottery back-office operations")
    p.add_argument("--config", type=Path, default=None, help=f"Config file (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--debug", "--verbose", dest="debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("import-validate", help="Validate a game CSV and issue a commit token")
    s.add_argument("file")
    s.add_argument("--state-id", required=True)
    s.add_argument("--user-id", required=True)
    s.add_argument("--update-existing", action="store_true", help="Update games already in the catalog")
    s.set_defaults(handler=_cmd_import_validate)

    s = sub.add_parser("import-commit", help="Apply a validated import")
    s.add_argument("token")
    s.add_argument("--user-id", required=True)
    s.add_argument("--no-skip-errors", action="store_true", help="Reject the commit if any row has errors")
    s.add_argument("--update-duplicates", action="store_true", help="Update rows flagged as duplicates")
    s.set_defaults(handler=_cmd_import_commit)

    s = sub.add_parser("import-status", help="Show a pending import")
    s.add_argument("token")
    s.set_defaults(handler=_cmd_import_status)

    s = sub.add_parser("import-history", help="List a user's recent imports")
    s.add_argument("--user-id", required=True)
    s.add_argument("--limit", type=int, default=None)
    s.set_defaults(handler=_cmd_import_history)

    s = sub.add_parser("import-cleanup", help="Delete expired uncommitted imports")
    s.set_defaults(handler=_cmd_import_cleanup)

    s = sub.add_parser("import-template", help="Print the CSV import template")
    s.set_defaults(handler=_cmd_import_template, needs_config=False)

    s = sub.add_parser("pack-activate", help="Generate pack UPCs and push them to the POS")
    s.add_argument("--pack-id", required=True)
    s.add_argument("--store-id", required=True)
    s.add_argument("--game-code", required=True)
    s.add_argument("--game-name", required=True)
    s.add_argument("--pack-number", required=True)
    s.add_argument("--tickets-per-pack", type=int, required=True)
    s.add_argument("--ticket-price", type=_decimal_arg, required=True)
    s.add_argument("--starting-serial", type=int, default=0)
    s.add_argument("--user-id", default=None)
    s.set_defaults(handler=_cmd_pack_activate)

    s = sub.add_parser("pack-deactivate", help="Remove pack UPCs from the cache and the POS")
    s.add_argument("--pack-id", required=True)
    s.add_argument("--store-id", required=True)
    s.add_argument("--user-id", default=None)
    s.set_defaults(handler=_cmd_pack_deactivate)

    s = sub.add_parser("upc-generate", help="Print the UPCs of one pack")
    s.add_argument("--game-code", required=True)
    s.add_argument("--pack-number", required=True)
    s.add_argument("--tickets-per-pack", type=int, required=True)
    s.add_argument("--starting-serial", type=int, default=0)
    s.set_defaults(handler=_cmd_upc_generate)

    s = sub.add_parser("upc-verify", help="Check the layout and check digit of one UPC")
    s.add_argument("upc")
    s.set_defaults(handler=_cmd_upc_verify)

    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    # 空リスト [] はそのまま使う (None のときのみ sys.argv を読む)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(verbose=args.debug)
    logger.debug("debug mode enabled")

    # .env を最優先で読み込む (DB / Redis 接続情報)
    _load_env_file(Path(".env"), override=True)

    if getattr(args, "needs_config", True):
        try:
            cfg = _resolve_config(args.config)
        except ConfigError as e:
            logger.error(f"config: {e}")
            return EXIT_FATAL
    else:
        cfg = AppConfig()

    try:
        return args.handler(args, cfg, logger)
    except (CatalogStoreError, psycopg2.Error) as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL
    except SnapshotSchemaError as e:
        logger.error(f"snapshot: {e}")
        return EXIT_FATAL
    except Exception as e:  # 想定外の例外も exit 1 (commit はロールバック済み)
        logger.error(f"unexpected: {type(e).__name__}: {e}")
        return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
