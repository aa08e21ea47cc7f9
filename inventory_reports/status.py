"""Lifecycle status derivation for canonical transactions.

The status of a transaction is never stored.  It is recomputed from the line
items every time it is needed:

1. no line items            -> ``draft``
2. any expiry before as-of  -> ``expired`` (takes precedence)
3. otherwise                -> ``completed``

Because rule 2 compares against an *as-of* instant, classifying the same
record twice can give different answers if an expiry date passes in between.
Callers therefore pass ``as_of`` explicitly; ``None`` means "now" and should be
reserved for entrypoints.
"""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Iterable, Optional

from .models import Status, TransactionRecord


def classify(record: TransactionRecord, as_of: Optional[datetime | date] = None) -> Status:
    """Return the :class:`Status` of *record* evaluated at *as_of*."""

    if not record.line_items:
        return Status.DRAFT

    reference = datetime.now() if as_of is None else as_of
    for item in record.line_items:
        if item.expiration_date is not None and _is_before(item.expiration_date, reference):
            return Status.EXPIRED
    return Status.COMPLETED


def status_counts(
    records: Iterable[TransactionRecord],
    as_of: Optional[datetime | date] = None,
) -> dict[str, int]:
    """Tally statuses in first-encounter order."""

    counts: dict[str, int] = {}
    for record in records:
        status = classify(record, as_of)
        counts[status.value] = counts.get(status.value, 0) + 1
    return counts


def _is_before(expiry: date, reference: datetime | date) -> bool:
    # An expiry date means midnight at the start of that day, so against a
    # datetime reference an item expiring today counts as expired.
    if isinstance(reference, datetime):
        return datetime.combine(expiry, time.min) < reference.replace(tzinfo=None)
    return expiry < reference


__all__ = ["classify", "status_counts"]
