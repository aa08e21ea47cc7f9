"""Summary statistics over canonical rows.

All grouping is done with :mod:`pandas`.  ``groupby(sort=False)`` keeps entity
encounter order and rankings use a stable sort, so ties never reorder between
runs.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence

import pandas as pd

from .errors import InvalidExportRequestError
from .models import (
    CanonicalRow,
    DateRange,
    EntityStats,
    PeriodBucket,
    RankedItem,
    SummaryReport,
    TransactionKind,
    TransactionRecord,
)
from .status import status_counts as tally_statuses

logger = logging.getLogger(__name__)

BREAKDOWN_COLUMNS = {
    "counterparty": "counterparty_name",
    "staff": "staff_name",
    "category": "category",
    "product": "product_name",
}
RANK_METRICS = {"quantity": "quantity", "revenue": "value"}
PERIODS = ("day", "week", "month")

_FRAME_COLUMNS = ["transaction_id", "date", *BREAKDOWN_COLUMNS.values(), "quantity", "amount"]


def rows_frame(rows: Iterable[CanonicalRow]) -> pd.DataFrame:
    """Return a :class:`~pandas.DataFrame` with one line per canonical row."""

    frame = pd.DataFrame(
        [
            {
                "transaction_id": row.transaction_id,
                "date": row.date,
                "counterparty_name": row.counterparty_name,
                "staff_name": row.staff_name,
                "category": row.category,
                "product_name": row.product_name,
                "quantity": row.quantity,
                "amount": row.amount,
            }
            for row in rows
        ],
        columns=_FRAME_COLUMNS,
    )
    frame["quantity"] = pd.to_numeric(frame["quantity"]).fillna(0).astype("int64")
    frame["amount"] = pd.to_numeric(frame["amount"]).fillna(0.0).astype("float64")
    return frame


def aggregate(
    rows: Sequence[CanonicalRow],
    records: Optional[Sequence[TransactionRecord]] = None,
    *,
    kind: Optional[TransactionKind] = None,
    breakdown: str = "counterparty",
    rank_by: str = "quantity",
    rank_dimension: str = "product",
    top_n: Optional[int] = None,
    previous_total: Optional[float] = None,
    cost: Optional[float] = None,
    as_of: Optional[datetime | date] = None,
) -> SummaryReport:
    """Build a :class:`SummaryReport` for *rows*.

    ``records`` is only needed for the status tally.  ``previous_total`` turns
    on growth and ``cost`` turns on profit and margin.
    """

    frame = rows_frame(rows)
    if kind is None and rows:
        kind = rows[0].kind

    record_count = int(frame["transaction_id"].nunique())
    total_amount = float(frame["amount"].sum())
    total_quantity = int(frame["quantity"].sum())

    by_entity = entity_breakdown(frame, breakdown)
    ranked = rank(entity_breakdown(frame, rank_dimension), metric=rank_by, top_n=top_n)

    growth_percent = growth(total_amount, previous_total) if previous_total is not None else None
    profit = margin = None
    if cost is not None:
        profit, margin = profit_and_margin(total_amount, cost)

    counts = tally_statuses(records, as_of) if records is not None else {}
    return SummaryReport(
        kind=kind,
        record_count=record_count,
        total_amount=total_amount,
        total_quantity=total_quantity,
        breakdown=breakdown,
        by_entity=MappingProxyType(by_entity),
        top_ranked=ranked,
        growth_percent=growth_percent,
        profit=profit,
        margin_percent=margin,
        status_counts=MappingProxyType(counts),
        average_order_value=total_amount / record_count if record_count else 0.0,
    )


def entity_breakdown(frame: pd.DataFrame, dimension: str) -> dict[str, EntityStats]:
    """Group *frame* by *dimension* into ``{name: EntityStats}``.

    ``count`` is the number of distinct transactions per entity; blank names
    are reported as ``"Unknown"``.
    """

    try:
        column = BREAKDOWN_COLUMNS[dimension]
    except KeyError:
        raise InvalidExportRequestError(
            f"Unknown breakdown {dimension!r}; expected one of {', '.join(BREAKDOWN_COLUMNS)}"
        ) from None
    if frame.empty:
        return {}

    keys = frame[column].fillna("").astype(str).str.strip().replace("", "Unknown")
    grouped = frame.assign(entity=keys).groupby("entity", sort=False).agg(
        count=("transaction_id", "nunique"),
        value=("amount", "sum"),
        quantity=("quantity", "sum"),
    )
    return {
        str(name): EntityStats(count=int(stats["count"]), value=float(stats["value"]), quantity=int(stats["quantity"]))
        for name, stats in grouped.iterrows()
    }


def rank(stats: Mapping[str, EntityStats], metric: str = "quantity", top_n: Optional[int] = None) -> tuple[RankedItem, ...]:
    """Rank entities descending by *metric* (``quantity`` or ``revenue``)."""

    try:
        attribute = RANK_METRICS[metric]
    except KeyError:
        raise InvalidExportRequestError(f"Unknown ranking metric {metric!r}; expected quantity or revenue") from None

    # sorted() is stable, so equal values keep encounter order.
    ordered = sorted(stats.items(), key=lambda item: getattr(item[1], attribute), reverse=True)
    if top_n is not None:
        ordered = ordered[:top_n]
    tiers = performance_tiers([getattr(entity, attribute) for _, entity in ordered])
    return tuple(
        RankedItem(
            rank=position,
            name=name,
            quantity=entity.quantity,
            revenue=entity.value,
            count=entity.count,
            tier=tier,
        )
        for position, ((name, entity), tier) in enumerate(zip(ordered, tiers), start=1)
    )


def performance_tiers(values: Sequence[float]) -> list[str]:
    """Split ``[min, max]`` into three equal bands: High, Medium and Low."""

    if not values:
        return []
    low, high = min(values), max(values)
    if high == low:
        return ["High"] * len(values)
    width = (high - low) / 3
    tiers = []
    for value in values:
        offset = value - low
        if offset >= 2 * width:
            tiers.append("High")
        elif offset >= width:
            tiers.append("Medium")
        else:
            tiers.append("Low")
    return tiers


def share_percent(count: float, total: float) -> int:
    """Whole-number percentage, rounded half up, 0 when *total* is 0."""

    if not total:
        return 0
    share = Decimal(str(count)) * 100 / Decimal(str(total))
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def distribution(by_entity: Mapping[str, EntityStats], metric: str = "count") -> dict[str, int]:
    """Percentage share of every entity for ``count``, ``value`` or ``quantity``."""

    total = sum(getattr(stats, metric) for stats in by_entity.values())
    return {name: share_percent(getattr(stats, metric), total) for name, stats in by_entity.items()}


def growth(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def format_growth(value: float) -> str:
    """Render growth with one decimal and an explicit sign, e.g. ``+50.0%``."""

    return f"{value:+.1f}%"


def profit_and_margin(revenue: float, cost: float) -> tuple[float, float]:
    profit = revenue - cost
    margin = profit / revenue * 100 if revenue else 0.0
    return profit, margin


def compare_periods(
    current_rows: Sequence[CanonicalRow],
    previous_rows: Sequence[CanonicalRow],
    current_window: DateRange,
    previous_window: DateRange,
    **kwargs,
) -> SummaryReport:
    """Summarise *current_rows* with growth against the previous window.

    The caller chooses both windows; they must have the same length and the
    previous one must end before the current one starts.
    """

    if current_window.days != previous_window.days:
        raise InvalidExportRequestError(
            f"Comparison windows differ in length: {current_window.days} vs {previous_window.days} days"
        )
    if current_window.overlaps(previous_window) or previous_window.end >= current_window.start:
        raise InvalidExportRequestError("The previous window must end before the current window starts")

    previous_total = float(sum(row.amount for row in previous_rows))
    return aggregate(current_rows, previous_total=previous_total, **kwargs)


def group_by_period(rows: Iterable[CanonicalRow], period: str = "day") -> list[PeriodBucket]:
    """Bucket amounts by day, week (starting Sunday) or month, oldest first.

    Rows without a date are left out of the trend.
    """

    if period not in PERIODS:
        raise InvalidExportRequestError(f"Unknown period {period!r}; expected day, week or month")

    frame = rows_frame(rows).dropna(subset=["date"])
    if frame.empty:
        return []

    dates = pd.to_datetime(frame["date"])
    if period == "week":
        starts = dates - pd.to_timedelta((dates.dt.dayofweek + 1) % 7, unit="D")
    elif period == "month":
        starts = dates.dt.to_period("M").dt.start_time
    else:
        starts = dates
    grouped = frame.assign(bucket=starts.dt.normalize()).groupby("bucket").agg(
        value=("amount", "sum"),
        count=("transaction_id", "nunique"),
    )
    return [
        PeriodBucket(period=bucket.date(), value=float(stats["value"]), count=int(stats["count"]))
        for bucket, stats in grouped.iterrows()
    ]


__all__ = [
    "aggregate",
    "entity_breakdown",
    "rank",
    "performance_tiers",
    "share_percent",
    "distribution",
    "growth",
    "format_growth",
    "profit_and_margin",
    "compare_periods",
    "group_by_period",
    "rows_frame",
]
