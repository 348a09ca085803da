"""Artist-level weekly aggregation with an account-level fallback."""
from __future__ import annotations

from typing import Iterable

from .collaborators import MetricsSource
from .logging_setup import get_logger
from .records import Region, WeeklyMetric, WeeklyMetricComparison

LOGGER = get_logger(__name__)

SOURCE_TRACK = "track"
SOURCE_ACCOUNT = "account"
SOURCE_EMPTY = "empty"


def percent_change(this_week: float, last_week: float) -> float | None:
    """Relative change from last week; undefined (``None``) on a zero base."""

    if last_week == 0:
        return None
    return (this_week - last_week) / last_week


def _value(number: float | None) -> float:
    return 0.0 if number is None else float(number)


class Aggregator:
    """Sum per-song weekly metrics into an artist total.

    When the summed track figures are zero for both weeks, the artist-level
    record for the account is used verbatim instead. The two sources are
    never blended.
    """

    def __init__(self, metrics: MetricsSource) -> None:
        self.metrics = metrics

    async def aggregate(
        self,
        unified_song_ids: Iterable[int],
        region: Region,
        *,
        account_id: int | None = None,
    ) -> WeeklyMetricComparison:
        song_ids = list(dict.fromkeys(int(song_id) for song_id in unified_song_ids))
        rows: list[WeeklyMetric] = []
        if song_ids:
            rows = list(await self.metrics.fetch_weekly_metrics_by_ids(song_ids, region))

        this_week = sum(_value(row.this_week) for row in rows)
        last_week = sum(_value(row.last_week) for row in rows)

        if len(rows) < len(song_ids):
            LOGGER.info(
                "aggregation.partial_coverage",
                region=region.value,
                requested=len(song_ids),
                returned=len(rows),
            )

        if this_week != 0 or last_week != 0:
            return WeeklyMetricComparison(
                this_week=this_week,
                last_week=last_week,
                percent_change=percent_change(this_week, last_week),
                source=SOURCE_TRACK,
                rows_returned=len(rows),
                rows_requested=len(song_ids),
            )

        # Zero streams and missing mappings look the same here.
        fallback: WeeklyMetric | None = None
        if account_id is not None:
            fallback = await self.metrics.fetch_weekly_metrics_by_account(account_id, region)

        if fallback is None:
            LOGGER.info(
                "aggregation.no_signal",
                region=region.value,
                account_id=account_id,
                requested=len(song_ids),
            )
            return WeeklyMetricComparison(
                this_week=0.0,
                last_week=0.0,
                percent_change=None,
                source=SOURCE_EMPTY,
                rows_returned=len(rows),
                rows_requested=len(song_ids),
            )

        this_week = _value(fallback.this_week)
        last_week = _value(fallback.last_week)
        LOGGER.info(
            "aggregation.account_fallback",
            region=region.value,
            account_id=account_id,
            requested=len(song_ids),
            returned=len(rows),
        )
        return WeeklyMetricComparison(
            this_week=this_week,
            last_week=last_week,
            percent_change=percent_change(this_week, last_week),
            source=SOURCE_ACCOUNT,
            rows_returned=len(rows),
            rows_requested=len(song_ids),
        )


__all__ = ["Aggregator", "SOURCE_ACCOUNT", "SOURCE_EMPTY", "SOURCE_TRACK", "percent_change"]
