"""Correlation-based reactivity scoring between streaming and social series."""
from __future__ import annotations

import datetime as dt
import math
import warnings
from dataclasses import dataclass
from typing import Sequence

from scipy.stats import pearsonr

from .alignment import align
from .config import ReactivityConfig
from .logging_setup import get_logger
from .records import DailyPoint, ReactivityGrade, ReactivityResult

LOGGER = get_logger(__name__)

MIN_PAIRED_SAMPLES = 2


@dataclass(frozen=True, slots=True)
class GradeThresholds:
    """Exclusive lower bounds for grades A, B and C."""

    a: float = 0.9
    b: float = 0.8
    c: float = 0.7

    def __post_init__(self) -> None:
        if not self.a > self.b > self.c:
            raise ValueError("grade thresholds must be strictly decreasing")

    @classmethod
    def from_config(cls, config: ReactivityConfig) -> "GradeThresholds":
        return cls(a=config.grade_a, b=config.grade_b, c=config.grade_c)

    def grade_for(self, correlation: float | None) -> ReactivityGrade:
        if correlation is None:
            return ReactivityGrade.NOT_AVAILABLE
        if correlation > self.a:
            return ReactivityGrade.A
        if correlation > self.b:
            return ReactivityGrade.B
        if correlation > self.c:
            return ReactivityGrade.C
        return ReactivityGrade.D


def pearson_correlation(values_a: Sequence[float], values_b: Sequence[float]) -> float:
    """Sample Pearson coefficient; flat or degenerate input yields ``0.0``."""

    if len(values_a) != len(values_b):
        raise ValueError("correlation inputs must have equal length")
    if len(values_a) < MIN_PAIRED_SAMPLES:
        return 0.0
    if len(set(values_a)) < 2 or len(set(values_b)) < 2:
        return 0.0

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        result = pearsonr(values_a, values_b)
    rho = float(result.statistic)
    if not math.isfinite(rho):
        return 0.0
    return max(min(rho, 1.0), -1.0)


class ReactivityScorer:
    """Align two daily series, pair the shared days and grade their correlation."""

    def __init__(
        self,
        thresholds: GradeThresholds | None = None,
        *,
        min_pairs: int = MIN_PAIRED_SAMPLES,
    ) -> None:
        if min_pairs < MIN_PAIRED_SAMPLES:
            raise ValueError(f"min_pairs must be at least {MIN_PAIRED_SAMPLES}")
        self.thresholds = thresholds or GradeThresholds()
        self.min_pairs = min_pairs

    @classmethod
    def from_config(cls, config: ReactivityConfig) -> "ReactivityScorer":
        return cls(GradeThresholds.from_config(config), min_pairs=config.min_pairs)

    def score(
        self,
        streaming: Sequence[DailyPoint],
        social: Sequence[DailyPoint],
        start: dt.date,
        end: dt.date,
    ) -> ReactivityResult:
        aligned = align(streaming, social, start, end)
        pairs = aligned.paired()

        if len(pairs) < self.min_pairs:
            LOGGER.info(
                "reactivity.insufficient_pairs",
                paired=len(pairs),
                days=len(aligned),
                required=self.min_pairs,
            )
            return ReactivityResult(
                correlation=None,
                grade=ReactivityGrade.NOT_AVAILABLE,
                paired_samples=len(pairs),
            )

        streaming_values = [float(a) for a, _ in pairs]
        social_values = [float(b) for _, b in pairs]
        correlation = pearson_correlation(streaming_values, social_values)
        if correlation == 0.0 and (len(set(streaming_values)) < 2 or len(set(social_values)) < 2):
            LOGGER.info("reactivity.flat_series", paired=len(pairs))

        grade = self.thresholds.grade_for(correlation)
        LOGGER.debug(
            "reactivity.scored",
            paired=len(pairs),
            days=len(aligned),
            correlation=correlation,
            grade=grade.value,
        )
        return ReactivityResult(correlation=correlation, grade=grade, paired_samples=len(pairs))


__all__ = ["GradeThresholds", "MIN_PAIRED_SAMPLES", "ReactivityScorer", "pearson_correlation"]
