from __future__ import annotations

from datetime import date

import pytest

from conftest import AS_OF, import_payload, order_payload
from inventory_reports.canonicalizer import (
    Canonicalizer,
    canonicalize,
    filter_by_date,
    filter_by_fields,
    infer_kind,
    resolve_field,
    to_rows,
    unwrap_envelope,
)
from inventory_reports.models import DateRange, Status, TransactionKind


# ---- Envelopes ---------------------------------------------------------------


SINGLE = {"id": 1, "imp_date": "2025-05-01", "total": 10}


@pytest.mark.parametrize(
    "payload",
    [
        [SINGLE],
        {"data": [SINGLE]},
        {"data": {"data": [SINGLE]}},
        SINGLE,
    ],
    ids=["bare-list", "data-list", "nested-data-list", "single-object"],
)
def test_every_known_envelope_yields_the_record(payload):
    records = canonicalize(payload)

    assert [record.id for record in records] == ["1"]
    assert records[0].total_amount == 10


@pytest.mark.parametrize("payload", [None, "oops", 42, {"data": "oops"}, {"data": {"items": []}}])
def test_unknown_envelopes_become_empty_with_a_warning(payload):
    canonicalizer = Canonicalizer()

    assert canonicalizer.canonicalize(payload) == []
    assert canonicalizer.warnings


def test_unwrap_envelope_prefers_the_outer_list():
    assert unwrap_envelope({"data": [1, 2]}) == [1, 2]
    assert unwrap_envelope([]) == []


def test_non_object_entries_are_skipped():
    canonicalizer = Canonicalizer()

    records = canonicalizer.canonicalize([SINGLE, "junk", None, 3])

    assert len(records) == 1
    assert len(canonicalizer.warnings) == 3


def test_duplicate_ids_keep_the_first_occurrence():
    first = {"id": 9, "imp_date": "2025-05-01", "total": 10}
    second = {"id": 9, "imp_date": "2025-05-02", "total": 99}
    canonicalizer = Canonicalizer()

    records = canonicalizer.canonicalize([first, second])

    assert len(records) == 1
    assert records[0].total_amount == 10
    assert "duplicate" in canonicalizer.warnings[0]


# ---- Field resolution --------------------------------------------------------


def test_import_fields_resolve_through_aliases(import_records):
    first, second, third = import_records

    assert first.counterparty_name == "Acme Pharma"
    assert first.staff_name == "Dana Reyes"
    assert first.date == date(2025, 5, 10)
    assert [item.product_name for item in first.line_items] == ["Paracetamol", "Amoxicillin"]
    assert first.line_items[1].quantity == 5
    assert first.line_items[1].batch_number == "B-002"
    assert first.line_items[1].category == "Antibiotics"

    assert second.counterparty_name == "Acme Pharma"
    assert second.line_items[0].batch_number == "B-003"
    assert second.line_items[0].expiration_date == date(2025, 1, 15)

    assert third.counterparty_name == "Beta Supplies"
    assert third.staff_name == "Staff 7"
    assert third.line_items == []


def test_defective_staff_literal_falls_back_to_unknown_staff():
    record = canonicalize([{"id": 1, "staff_name": "Import from", "imp_date": "2025-05-01"}])[0]

    assert record.staff_name == "Unknown Staff"


def test_defective_staff_literal_is_skipped_in_favour_of_later_aliases():
    raw = {"id": 1, "staff": {"full_name": "Import from"}, "full_name": "Kim Lee"}

    assert canonicalize([raw], TransactionKind.IMPORT)[0].staff_name == "Kim Lee"


def test_resolve_field_skips_blank_values():
    from inventory_reports.canonicalizer import key

    resolvers = (key("a"), key("b"), key("c"))

    assert resolve_field({"a": "  ", "b": None, "c": "x"}, resolvers) == "x"
    assert resolve_field({}, resolvers, default="N/A") == "N/A"


def test_missing_counterparty_defaults_to_na():
    record = canonicalize([{"id": 1, "imp_date": "2025-05-01"}])[0]

    assert record.counterparty_name == "N/A"
    assert record.staff_name == "Unknown Staff"


def test_sale_fields_and_payment_status_default():
    records = canonicalize(order_payload(), TransactionKind.SALE)

    assert [record.id for record in records] == ["S-1", "S-2", "S-0"]
    assert records[0].counterparty_name == "Alice"
    assert records[0].staff_name == "Sam"
    assert records[0].payment_status == "Paid"
    assert records[1].counterparty_name == "Bob"
    assert records[1].payment_status == "Unpaid"
    assert records[0].line_items[1].product_name == "Vitamin C"
    assert records[0].line_items[1].category == "Supplements"


def test_kind_is_inferred_from_keys():
    assert infer_kind({"ord_date": "2025-01-01", "cus_name": "A"}) is TransactionKind.SALE
    assert infer_kind({"imp_date": "2025-01-01"}) is TransactionKind.IMPORT
    assert infer_kind({"id": 1}) is TransactionKind.IMPORT


def test_numbers_tolerate_symbols_and_clamp_negatives():
    raw = {
        "id": 1,
        "imp_date": "2025-05-01",
        "total": "$1,234.50",
        "import_details": [
            {"pro_name": "A", "qty": "-3", "amount": "-10"},
            {"pro_name": "B", "qty": "2", "amount": "abc"},
        ],
    }

    record = canonicalize([raw])[0]

    assert record.total_amount == pytest.approx(1234.5)
    assert [item.quantity for item in record.line_items] == [0, 2]
    assert [item.amount for item in record.line_items] == [0.0, 0.0]


def test_total_falls_back_to_sum_of_line_amounts():
    raw = {"id": 1, "import_details": [{"amount": 40}, {"amount": "2.5"}]}

    assert canonicalize([raw])[0].total_amount == pytest.approx(42.5)


def test_unit_amount_is_derived_when_no_price_is_given():
    raw = {"id": 1, "import_details": [{"pro_name": "A", "qty": 10, "amount": 150}]}

    item = canonicalize([raw])[0].line_items[0]

    assert item.unit_amount == pytest.approx(15.0)
    assert item.product_name == "A"


def test_malformed_dates_are_kept_and_survive_date_filters():
    raw = [
        {"id": 1, "imp_date": "not a date", "total": 5},
        {"id": 2, "imp_date": "2025-01-01", "total": 5},
    ]
    records = canonicalize(raw)

    assert records[0].date is None
    assert records[0].raw_date == "not a date"

    kept = filter_by_date(records, DateRange(date(2025, 5, 1), date(2025, 5, 31)))
    assert [record.id for record in kept] == ["1"]


def test_filter_by_fields_is_case_insensitive(import_records):
    kept = filter_by_fields(import_records, {"counterparty": "acme pharma"})

    assert [record.id for record in kept] == ["101", "102"]


# ---- Rows --------------------------------------------------------------------


def test_three_import_scenario_rows(import_records):
    rows = to_rows(import_records, as_of=AS_OF)

    assert len(rows) == 4
    assert sum(row.amount for row in rows) == pytest.approx(600.0, abs=0.01)
    assert sum(row.quantity for row in rows) == 23

    general = rows[-1]
    assert general.product_name == "General Import"
    assert general.quantity == 0
    assert general.amount == 75

    statuses = {row.transaction_id: row.status for row in rows}
    assert statuses == {"101": Status.COMPLETED, "102": Status.EXPIRED, "103": Status.DRAFT}


@pytest.mark.parametrize("detail_counts", [[0], [1, 0, 3], [2, 2, 2, 0, 0], []])
def test_row_count_matches_line_items(detail_counts):
    raw = [
        {"id": index, "total": 1, "import_details": [{"pro_name": "P", "qty": 1, "amount": 1}] * count}
        for index, count in enumerate(detail_counts)
    ]

    rows = to_rows(canonicalize(raw), as_of=AS_OF)

    assert len(rows) == sum(max(1, count) for count in detail_counts)


def test_general_row_uses_top_level_quantity_when_present():
    raw = [{"order_id": 5, "ord_date": "2025-05-01", "total_amount": 30, "total_quantity": 3}]

    row = to_rows(canonicalize(raw), as_of=AS_OF)[0]

    assert row.product_name == "General Order"
    assert row.quantity == 3


def test_rows_without_details_collapse_per_transaction(import_records):
    rows = to_rows(import_records, include_details=False, as_of=AS_OF)

    assert [row.product_name for row in rows] == ["2 products", "1 product", "General Import"]
    assert rows[0].quantity == 15
    assert rows[0].amount == 450
