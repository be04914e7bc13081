"""Domain models for lottery-ops.

Import models cover the two-phase CSV game import, pack models cover UPC
generation and POS synchronization, and outcome types are shared by both.
"""

from .csv_models import CsvParseOptions, CsvParseResult, ParsedRow, ParseIssue
from .import_models import (
    CommitImportParams,
    CommitImportResult,
    CommitOptions,
    CommitSummary,
    DuplicateRow,
    ErrorRow,
    ImportOptions,
    PendingImport,
    PreviewSummary,
    ValidatedRow,
    ValidateImportParams,
    ValidateImportResult,
    ValidRow,
)
from .outcome import AuditEntry, ErrorKind, SideEffectResult
from .pack_models import (
    CachedPackUpcs,
    PackActivationInput,
    PackActivationResult,
    PackDeactivationResult,
    PosIntegration,
    UpcGenerationInput,
    UpcGenerationResult,
    UpcLayout,
)

__all__ = [
    # CSV
    "CsvParseOptions",
    "CsvParseResult",
    "ParseIssue",
    "ParsedRow",
    # Import
    "CommitImportParams",
    "CommitImportResult",
    "CommitOptions",
    "CommitSummary",
    "DuplicateRow",
    "ErrorRow",
    "ImportOptions",
    "PendingImport",
    "PreviewSummary",
    "ValidRow",
    "ValidateImportParams",
    "ValidateImportResult",
    "ValidatedRow",
    # Pack / POS
    "CachedPackUpcs",
    "PackActivationInput",
    "PackActivationResult",
    "PackDeactivationResult",
    "PosIntegration",
    "UpcGenerationInput",
    "UpcGenerationResult",
    "UpcLayout",
    # Outcomes
    "AuditEntry",
    "ErrorKind",
    "SideEffectResult",
]
