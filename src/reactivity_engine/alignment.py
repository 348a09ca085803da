"""Alignment of independently sourced daily series onto one date axis."""
from __future__ import annotations

import datetime as dt
from collections import OrderedDict
from typing import Iterable, Sequence

from .records import AlignedSeries, DailyPoint

MERGE_SUM = "sum"
MERGE_LATEST = "latest"


def to_date(value: dt.date | dt.datetime | str) -> dt.date:
    """Normalise a date-like value to a calendar date.

    Datetimes are converted to UTC first so callers never see timezone drift;
    naive datetimes are taken as UTC already.
    """

    if isinstance(value, dt.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(dt.timezone.utc)
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value)[:10])


def date_range(start: dt.date, end: dt.date) -> list[dt.date]:
    """Return every calendar day from ``start`` to ``end`` inclusive."""

    start = to_date(start)
    end = to_date(end)
    if end < start:
        raise ValueError(f"end date {end.isoformat()} precedes start date {start.isoformat()}")
    days = (end - start).days
    return [start + dt.timedelta(days=offset) for offset in range(days + 1)]


def collapse_by_date(points: Iterable[DailyPoint], how: str = MERGE_SUM) -> list[DailyPoint]:
    """Merge points sharing a date, keeping first-seen date order.

    ``how="sum"`` adds the non-null values of a day (all-null stays null);
    ``how="latest"`` keeps the last point provided for the day.
    """

    if how not in (MERGE_SUM, MERGE_LATEST):
        raise ValueError(f"Unsupported merge policy '{how}'")

    merged: OrderedDict[dt.date, float | None] = OrderedDict()
    for point in points:
        day = to_date(point.date)
        if how == MERGE_LATEST or day not in merged:
            merged[day] = point.value
            continue
        current = merged[day]
        if point.value is None:
            continue
        merged[day] = point.value if current is None else current + point.value
    return [DailyPoint(date=day, value=value) for day, value in merged.items()]


def _index(series: Sequence[DailyPoint]) -> dict[dt.date, float | None]:
    lookup: dict[dt.date, float | None] = {}
    for point in series:
        lookup[to_date(point.date)] = point.value
    return lookup


def align(
    series_a: Sequence[DailyPoint],
    series_b: Sequence[DailyPoint],
    start: dt.date,
    end: dt.date,
) -> AlignedSeries:
    """Lay both series over the inclusive ``start``..``end`` daily axis.

    Days missing from a series become ``None``; values are never carried
    forward from a previous day.
    """

    axis = date_range(start, end)
    lookup_a = _index(series_a)
    lookup_b = _index(series_b)
    return AlignedSeries(
        dates=tuple(axis),
        first=tuple(lookup_a.get(day) for day in axis),
        second=tuple(lookup_b.get(day) for day in axis),
    )


__all__ = ["MERGE_LATEST", "MERGE_SUM", "align", "collapse_by_date", "date_range", "to_date"]
