from __future__ import annotations

from lottery_ops.models.import_models import CommitSummary, PreviewSummary

"""SUMMARY line rendering for the import CLI.

Formats:
    SUMMARY rows=<n> valid=<n> errors=<n> duplicates=<n> create=<n> update=<n>
    SUMMARY created=<n> updated=<n> skipped=<n> failed=<n> elapsed_sec=<x>
"""

__all__ = [
    "format_elapsed",
    "render_commit_summary",
    "render_preview_summary",
]


def format_elapsed(seconds: float) -> str:
    """Integral values without a fraction; tiny values without scientific notation."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_preview_summary(preview: PreviewSummary) -> str:
    return (
        f"SUMMARY rows={preview.total_rows} "
        f"valid={preview.valid_rows} "
        f"errors={preview.error_rows} "
        f"duplicates={preview.duplicate_rows} "
        f"create={preview.games_to_create} "
        f"update={preview.games_to_update}"
    )


def render_commit_summary(summary: CommitSummary, elapsed_seconds: float) -> str:
    return (
        f"SUMMARY created={summary.created} "
        f"updated={summary.updated} "
        f"skipped={summary.skipped} "
        f"failed={summary.failed} "
        f"elapsed_sec={format_elapsed(elapsed_seconds)}"
    )
