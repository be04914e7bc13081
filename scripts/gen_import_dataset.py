#!/usr/bin/env python3
"""Synthetic lottery game import CSV generator.

Generates game catalog files in the import format (game_code, name, price,
description, pack_value, tickets_per_pack, status) for manual testing and the
perf tests. Broken rows, in-file duplicates, a UTF-8 BOM and alternative
delimiters can be injected to exercise the validation phase.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

COLUMNS = ["game_code", "name", "price", "description", "pack_value", "tickets_per_pack", "status"]
PRICES = [1, 2, 3, 5, 10, 20, 25, 30, 50]
PACK_VALUES = [150, 300, 600]
STATUSES = ["ACTIVE", "ACTIVE", "ACTIVE", "INACTIVE"]
THEMES = ["Lucky", "Gold", "Cash", "Diamond", "Jackpot", "Wild", "Bingo", "Crossword", "Mega", "Triple"]
SUFFIXES = ["7s", "Rush", "Blast", "Bonus", "Spectacular", "Fortune", "Millions", "Doubler"]
DELIMITERS = {"comma": ",", "semicolon": ";", "tab": "\t", "pipe": "|"}

# 壊れた行として注入する値 (列 -> 不正値)
BROKEN_VALUES = [
    ("game_code", "12A"),
    ("game_code", "12345"),
    ("price", "-5"),
    ("price", "abc"),
    ("name", ""),
    ("tickets_per_pack", "1000"),
    ("status", "PAUSED"),
]


def generate_game_frame(
    rows: int,
    seed: int = 42,
    error_rows: int = 0,
    duplicate_rows: int = 0,
) -> pd.DataFrame:
    """Build a frame of import rows (all cells as strings).

    Args:
        rows: Number of data rows (at most 9999, game codes are unique 4-digit values)
        seed: Random seed for reproducible data
        error_rows: Rows overwritten with one invalid cell each
        duplicate_rows: Rows whose game_code repeats an earlier row

    Returns:
        DataFrame with the import columns in template order
    """
    if rows > 9999:
        raise ValueError("rows cannot exceed 9999 (4-digit game codes)")
    if error_rows + duplicate_rows > rows - 1:
        raise ValueError("error_rows + duplicate_rows must leave the first row intact")
    np.random.seed(seed)

    codes = np.random.choice(np.arange(1, 10000), rows, replace=False)
    prices = np.random.choice(PRICES, rows)
    pack_values = np.random.choice(PACK_VALUES, rows)
    names = [
        f"{np.random.choice(THEMES)} {np.random.choice(SUFFIXES)} {i + 1}" for i in range(rows)
    ]
    # tickets_per_pack は半分ほど空欄にして pack_value / price から導出させる
    explicit_tickets = np.random.random(rows) < 0.5

    df = pd.DataFrame(
        {
            "game_code": [f"{c:04d}" for c in codes],
            "name": names,
            "price": [f"{p:.2f}" for p in prices],
            "description": [f"${p} instant ticket" for p in prices],
            "pack_value": [f"{v:.2f}" for v in pack_values],
            "tickets_per_pack": [
                str(int(v // p)) if explicit else ""
                for v, p, explicit in zip(pack_values, prices, explicit_tickets)
            ],
            "status": np.random.choice(STATUSES, rows),
        },
        columns=COLUMNS,
    )

    # 先頭行は duplicate / error の対象外 (参照元として残す)
    targets = np.random.permutation(np.arange(1, rows))
    dup_idx = np.sort(targets[:duplicate_rows])
    err_idx = targets[duplicate_rows : duplicate_rows + error_rows]

    broken = set(err_idx.tolist())
    for n, idx in enumerate(err_idx):
        column, value = BROKEN_VALUES[n % len(BROKEN_VALUES)]
        df.at[idx, column] = value
    for idx in dup_idx:
        # 参照元は壊れていない前方の行 (行 0 は常に候補)。昇順なので参照元の値は確定済み
        sources = [i for i in range(idx) if i not in broken]
        df.at[idx, "game_code"] = df.at[int(np.random.choice(sources)), "game_code"]
    return df


def write_import_csv(df: pd.DataFrame, output_path: Path, delimiter: str = ",", bom: bool = False) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(
        output_path,
        sep=delimiter,
        index=False,
        encoding="utf-8-sig" if bom else "utf-8",
        lineterminator="\n",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Generate synthetic lottery game import CSV files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 500 clean rows
  %(prog)s games.csv --rows 500

  # Semicolon file with a BOM, 10 broken rows and 5 in-file duplicates
  %(prog)s messy.csv --rows 200 --delimiter semicolon --bom --error-rows 10 --duplicate-rows 5
        """,
    )
    parser.add_argument("output", type=Path, help="Output CSV path")
    parser.add_argument("--rows", type=int, default=1000, help="Number of data rows (default: 1000)")
    parser.add_argument("--error-rows", type=int, default=0, help="Rows with one invalid cell")
    parser.add_argument("--duplicate-rows", type=int, default=0, help="Rows repeating an earlier game_code")
    parser.add_argument("--delimiter", choices=sorted(DELIMITERS), default="comma")
    parser.add_argument("--bom", action="store_true", help="Prefix the file with a UTF-8 BOM")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args(argv)

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    try:
        df = generate_game_frame(args.rows, args.seed, args.error_rows, args.duplicate_rows)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    write_import_csv(df, args.output, DELIMITERS[args.delimiter], args.bom)
    print(f"Created import file: {args.output}")
    print(f"  Rows: {args.rows:,} (errors={args.error_rows}, duplicates={args.duplicate_rows})")
    print(f"  Delimiter: {args.delimiter}  BOM: {'yes' if args.bom else 'no'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
