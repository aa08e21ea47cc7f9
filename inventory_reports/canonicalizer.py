"""Canonicalise raw import and sales payloads from the upstream provider.

The provider is untrusted and inconsistent: depending on the endpoint and the
page it wraps transactions in different envelopes, names the same attribute
several ways and nests line items under different keys.  The canonicaliser
performs three tasks:

1. Unwrap the envelope into a plain list of raw transaction mappings.
2. Resolve every canonical field through an ordered resolver table (first
   present, non-blank value wins) so the fallback order stays auditable.
3. Return :class:`~inventory_reports.models.TransactionRecord` instances,
   which :func:`to_rows` flattens into :class:`CanonicalRow` objects.

Nothing in this module performs I/O and nothing raises on an unexpected
payload shape; unknown shapes produce an empty result and a warning.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from dateutil import parser as date_parser

from .errors import SchemaMismatchError
from .models import CanonicalRow, DateRange, LineItem, TransactionKind, TransactionRecord
from .status import classify

logger = logging.getLogger(__name__)

Resolver = Callable[[Mapping[str, Any]], Any]

UNKNOWN_STAFF = "Unknown Staff"
# The provider writes this placeholder into the staff column of some imports.
DEFECTIVE_STAFF_VALUES = frozenset({"Import from"})


# ---------------------------------------------------------------------------
# Resolver building blocks
# ---------------------------------------------------------------------------

def key(name: str) -> Resolver:
    """Read a flat key."""

    return lambda raw: raw.get(name)


def nested(*path: str) -> Resolver:
    """Read a value through nested mappings, e.g. ``supplier.supplier``."""

    def resolve(raw: Mapping[str, Any]) -> Any:
        current: Any = raw
        for part in path:
            if not isinstance(current, Mapping):
                return None
            current = current.get(part)
        return current

    return resolve


def text_key(name: str) -> Resolver:
    """Read a flat key only when it holds a plain string.

    ``supplier`` is sometimes the display name and sometimes the nested
    supplier object, which :func:`nested` handles separately.
    """

    def resolve(raw: Mapping[str, Any]) -> Any:
        value = raw.get(name)
        return value if isinstance(value, str) else None

    return resolve


def template(pattern: str, name: str) -> Resolver:
    """Synthesise a value from another key, e.g. ``"Staff {staff_id}"``."""

    def resolve(raw: Mapping[str, Any]) -> Any:
        value = raw.get(name)
        if _is_blank(value):
            return None
        return pattern.format(value)

    return resolve


def resolve_field(
    raw: Mapping[str, Any],
    resolvers: Sequence[Resolver],
    default: Any = None,
    reject: Iterable[str] = (),
) -> Any:
    """Return the first usable value produced by *resolvers*.

    A value is usable when it is not ``None``, not a blank string and not one
    of the *reject* literals.
    """

    rejected = frozenset(reject)
    for resolver in resolvers:
        value = resolver(raw)
        if _is_blank(value):
            continue
        if isinstance(value, str) and value.strip() in rejected:
            continue
        return value
    return default


# ---------------------------------------------------------------------------
# Resolver tables
# ---------------------------------------------------------------------------

ID_RESOLVERS: tuple[Resolver, ...] = (key("id"), key("order_id"), key("import_id"))
DATE_RESOLVERS: tuple[Resolver, ...] = (
    key("imp_date"),
    key("ord_date"),
    key("order_date"),
    key("created_at"),
)
COUNTERPARTY_RESOLVERS: dict[TransactionKind, tuple[Resolver, ...]] = {
    TransactionKind.IMPORT: (
        nested("supplier", "supplier"),
        nested("supplier", "name"),
        key("supplier_name"),
        text_key("supplier"),
    ),
    TransactionKind.SALE: (
        nested("customer", "name"),
        key("cus_name"),
        key("customer_name"),
        text_key("customer"),
    ),
}
STAFF_RESOLVERS: tuple[Resolver, ...] = (
    nested("staff", "full_name"),
    nested("staff", "name"),
    key("staff_name"),
    key("full_name"),
    template("Staff {}", "staff_id"),
)
LINE_ITEM_RESOLVERS: tuple[Resolver, ...] = (
    key("import_details"),
    key("importDetails"),
    key("order_details"),
    key("orderDetails"),
)
TOTAL_RESOLVERS: tuple[Resolver, ...] = (key("total_amount"), key("total"), key("amount"))
TOTAL_QUANTITY_RESOLVERS: tuple[Resolver, ...] = (key("total_quantity"), key("qty"), key("quantity"))
PAYMENT_STATUS_RESOLVERS: tuple[Resolver, ...] = (key("payment_status"),)

PRODUCT_RESOLVERS: tuple[Resolver, ...] = (
    key("pro_name"),
    nested("product", "pro_name"),
    nested("product", "name"),
    key("product_name"),
)
QUANTITY_RESOLVERS: tuple[Resolver, ...] = (key("qty"), key("quantity"))
AMOUNT_RESOLVERS: tuple[Resolver, ...] = (key("amount"), key("price"), key("total"))
UNIT_AMOUNT_RESOLVERS: tuple[Resolver, ...] = (key("price"), key("unit_price"))
BATCH_RESOLVERS: tuple[Resolver, ...] = (key("batch_number"), key("batchNumber"), key("batch"))
EXPIRATION_RESOLVERS: tuple[Resolver, ...] = (
    key("expiration_date"),
    key("expirationDate"),
    key("expiry"),
)
CATEGORY_RESOLVERS: tuple[Resolver, ...] = (
    nested("category", "name"),
    key("category_name"),
    nested("product", "category", "name"),
    nested("product", "category_name"),
    text_key("category"),
)

_IMPORT_MARKERS = ("imp_date", "import_details", "importDetails", "supplier", "supplier_name")
_SALE_MARKERS = ("ord_date", "order_date", "order_details", "orderDetails", "customer", "cus_name", "customer_name")


# ---------------------------------------------------------------------------
# Canonicaliser
# ---------------------------------------------------------------------------

class Canonicalizer:
    """Turn provider payloads into :class:`TransactionRecord` objects.

    Warnings about recovered problems (unknown envelopes, skipped entries,
    duplicate ids) are logged and also collected in :attr:`warnings` so a
    caller can surface them next to the result.
    """

    def __init__(self) -> None:
        self.warnings: list[str] = []

    def canonicalize(self, raw_payload: Any, kind: Optional[TransactionKind | str] = None) -> list[TransactionRecord]:
        try:
            entries = unwrap_envelope(raw_payload)
        except SchemaMismatchError as exc:
            self._warn(exc.message)
            return []

        forced_kind = TransactionKind.parse(kind) if kind is not None else None
        records: list[TransactionRecord] = []
        seen_ids: set[str] = set()
        for index, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                self._warn(f"Skipping entry {index}: expected an object, got {type(entry).__name__}")
                continue
            record = self._build_record(entry, index, forced_kind or infer_kind(entry))
            if record.id in seen_ids:
                self._warn(f"Skipping duplicate transaction id {record.id}")
                continue
            seen_ids.add(record.id)
            records.append(record)
        return records

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def _build_record(self, raw: Mapping[str, Any], index: int, kind: TransactionKind) -> TransactionRecord:
        identifier = resolve_field(raw, ID_RESOLVERS)
        raw_date = resolve_field(raw, DATE_RESOLVERS)
        details = resolve_field(raw, LINE_ITEM_RESOLVERS, default=[])
        if not isinstance(details, list):
            details = []
        line_items = [
            self._build_line_item(detail)
            for detail in details
            if isinstance(detail, Mapping)
        ]

        total = _parse_decimal(resolve_field(raw, TOTAL_RESOLVERS))
        if total is None:
            total = sum(item.amount for item in line_items)
        total_quantity = _parse_decimal(resolve_field(raw, TOTAL_QUANTITY_RESOLVERS))

        payment_status = None
        if kind is TransactionKind.SALE:
            payment_status = _clean_string(resolve_field(raw, PAYMENT_STATUS_RESOLVERS, default="Unpaid"))

        return TransactionRecord(
            id=_clean_string(identifier) if identifier is not None else f"unknown-{index + 1}",
            kind=kind,
            date=_parse_date(raw_date),
            raw_date=_clean_string(raw_date) or None,
            counterparty_name=_clean_string(resolve_field(raw, COUNTERPARTY_RESOLVERS[kind], default="N/A")),
            staff_name=_clean_string(
                resolve_field(raw, STAFF_RESOLVERS, default=UNKNOWN_STAFF, reject=DEFECTIVE_STAFF_VALUES)
            ),
            total_amount=_non_negative(total),
            line_items=line_items,
            total_quantity=_non_negative_int(total_quantity) if total_quantity is not None else None,
            payment_status=payment_status,
        )

    def _build_line_item(self, raw: Mapping[str, Any]) -> LineItem:
        quantity = _non_negative_int(_parse_decimal(resolve_field(raw, QUANTITY_RESOLVERS)) or 0)
        amount = _non_negative(_parse_decimal(resolve_field(raw, AMOUNT_RESOLVERS)) or 0.0)
        unit_amount = _parse_decimal(resolve_field(raw, UNIT_AMOUNT_RESOLVERS))
        if unit_amount is None:
            unit_amount = amount / quantity if quantity else amount
        raw_expiration = resolve_field(raw, EXPIRATION_RESOLVERS)
        batch = resolve_field(raw, BATCH_RESOLVERS)

        return LineItem(
            product_name=_clean_string(resolve_field(raw, PRODUCT_RESOLVERS, default="Unknown Product")),
            quantity=quantity,
            unit_amount=_non_negative(unit_amount),
            amount=amount,
            batch_number=_clean_string(batch) if batch is not None else None,
            expiration_date=_parse_date(raw_expiration),
            raw_expiration=_clean_string(raw_expiration) or None,
            category=_clean_string(resolve_field(raw, CATEGORY_RESOLVERS, default="Unknown")),
        )


def canonicalize(raw_payload: Any, kind: Optional[TransactionKind | str] = None) -> list[TransactionRecord]:
    """Canonicalise *raw_payload* with a throwaway :class:`Canonicalizer`."""

    return Canonicalizer().canonicalize(raw_payload, kind)


def unwrap_envelope(payload: Any) -> list[Any]:
    """Return the transaction list inside *payload*.

    Accepted shapes, in priority order: a bare list, ``{"data": [...]}``,
    ``{"data": {"data": [...]}}`` and a single transaction object.
    """

    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        if "data" not in payload:
            return [payload]
        inner = payload["data"]
        if isinstance(inner, list):
            return inner
        if isinstance(inner, Mapping) and isinstance(inner.get("data"), list):
            return inner["data"]
        raise SchemaMismatchError(
            f"Unrecognised envelope: 'data' holds {type(inner).__name__}, expected a list"
        )
    raise SchemaMismatchError(f"Unrecognised payload type {type(payload).__name__}; treating as empty")


def infer_kind(raw: Mapping[str, Any]) -> TransactionKind:
    if any(marker in raw for marker in _SALE_MARKERS) and not any(marker in raw for marker in _IMPORT_MARKERS):
        return TransactionKind.SALE
    return TransactionKind.IMPORT


# ---------------------------------------------------------------------------
# Flattening and filtering
# ---------------------------------------------------------------------------

def to_rows(
    records: Iterable[TransactionRecord],
    *,
    include_details: bool = True,
    as_of: Optional[datetime | date] = None,
) -> list[CanonicalRow]:
    """Flatten *records* into canonical rows.

    With details, every line item becomes one row and an aggregate-only record
    becomes a single general row, so N records yield
    ``sum(max(1, len(line_items)))`` rows.  Without details every record is
    collapsed into one summary row.
    """

    rows: list[CanonicalRow] = []
    for record in records:
        status = classify(record, as_of)
        if not record.line_items:
            rows.append(_general_row(record, status))
        elif include_details:
            rows.extend(_detail_row(record, item, status) for item in record.line_items)
        else:
            rows.append(_summary_row(record, status))
    return rows


def filter_by_date(records: Iterable[TransactionRecord], date_range: Optional[DateRange]) -> list[TransactionRecord]:
    """Keep records inside *date_range*; undated records are always kept."""

    if date_range is None:
        return list(records)
    return [record for record in records if date_range.contains(record.date)]


def filter_by_fields(records: Iterable[TransactionRecord], filters: Mapping[str, str]) -> list[TransactionRecord]:
    """Apply case-insensitive ``staff`` / ``counterparty`` equality filters."""

    staff = (filters.get("staff") or "").strip().lower()
    counterparty = (filters.get("counterparty") or "").strip().lower()
    result = []
    for record in records:
        if staff and record.staff_name.lower() != staff:
            continue
        if counterparty and record.counterparty_name.lower() != counterparty:
            continue
        result.append(record)
    return result


def _base_row(record: TransactionRecord, status) -> dict[str, Any]:
    return {
        "transaction_id": record.id,
        "kind": record.kind,
        "date": record.date,
        "raw_date": record.raw_date,
        "counterparty_name": record.counterparty_name,
        "staff_name": record.staff_name,
        "payment_status": record.payment_status,
        "status": status,
    }


def _general_row(record: TransactionRecord, status) -> CanonicalRow:
    return CanonicalRow(
        **_base_row(record, status),
        product_name=record.kind.general_product,
        quantity=record.total_quantity or 0,
        amount=record.total_amount,
    )


def _detail_row(record: TransactionRecord, item: LineItem, status) -> CanonicalRow:
    return CanonicalRow(
        **_base_row(record, status),
        product_name=item.product_name,
        quantity=item.quantity,
        amount=item.amount,
        unit_amount=item.unit_amount,
        batch_number=item.batch_number,
        expiration_date=item.expiration_date,
        raw_expiration=item.raw_expiration,
        category=item.category,
    )


def _summary_row(record: TransactionRecord, status) -> CanonicalRow:
    count = len(record.line_items)
    return CanonicalRow(
        **_base_row(record, status),
        product_name=f"{count} product" if count == 1 else f"{count} products",
        quantity=sum(item.quantity for item in record.line_items),
        amount=record.total_amount,
    )


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def _clean_string(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_decimal(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    stringified = str(value).strip()
    if not stringified:
        return None
    normalised = stringified.replace("$", "").replace(",", "").replace(" ", "")
    try:
        return float(Decimal(normalised))
    except (InvalidOperation, ValueError):
        return None


def _parse_date(value: object) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    stringified = str(value).strip()
    if not stringified or stringified.upper() in {"N/A", "NAT", "NAN", "NULL"}:
        return None
    try:
        return date_parser.parse(stringified).date()
    except (ValueError, OverflowError):
        return None


def _non_negative(value: float) -> float:
    return value if value > 0 else 0.0


def _non_negative_int(value: float) -> int:
    return int(round(value)) if value > 0 else 0


__all__ = [
    "Canonicalizer",
    "canonicalize",
    "unwrap_envelope",
    "infer_kind",
    "resolve_field",
    "to_rows",
    "filter_by_date",
    "filter_by_fields",
]
