"""Transaction normalisation, aggregation and export pipeline for inventory_dash."""
from __future__ import annotations

from .canonicalizer import Canonicalizer, canonicalize, to_rows
from .logging_setup import configure_logging
from .models import ExportFormat, ExportRequest, Scope, Status, TransactionKind

__all__ = [
    "Canonicalizer",
    "canonicalize",
    "to_rows",
    "configure_logging",
    "ExportFormat",
    "ExportRequest",
    "Scope",
    "Status",
    "TransactionKind",
]
