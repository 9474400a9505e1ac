"""Time-windowed, resampled chart queries over a wallet's balance history"""

import bisect
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Sequence, TypeVar

from wallet_monitor.core.config import CHART_POINT_CAP
from wallet_monitor.core.errors import ValidationError
from wallet_monitor.core.logger import logger
from wallet_monitor.core.models import BalanceSnapshot, ChartPoint, utcnow

T = TypeVar("T")


class Metric(str, Enum):
    SOL = "sol"
    WSOL = "wsol"
    TOTAL = "total"

    def value_of(self, point: BalanceSnapshot) -> float:
        if self is Metric.SOL:
            return point.sol_balance
        if self is Metric.WSOL:
            return point.wsol_balance
        return point.total_balance

    @classmethod
    def parse(cls, token: str) -> "Metric":
        try:
            return cls(token.lower())
        except ValueError:
            raise ValidationError(f"Unknown data type '{token}'") from None


class TimeWindow(str, Enum):
    M5 = "5M"
    M10 = "10M"
    M30 = "30M"
    H1 = "1H"
    H2 = "2H"
    H4 = "4H"
    H8 = "8H"
    H12 = "12H"
    D1 = "1D"
    W1 = "1W"
    ALL = "ALL"

    @property
    def span(self) -> timedelta | None:
        return WINDOW_SPANS[self]

    def start(self, now: datetime) -> datetime | None:
        if self.span is None:
            return None
        return now - self.span

    @classmethod
    def parse(cls, token: str) -> "TimeWindow":
        try:
            return cls(token.upper())
        except ValueError:
            raise ValidationError(f"Unknown interval '{token}'") from None


WINDOW_SPANS = {
    TimeWindow.M5: timedelta(minutes=5),
    TimeWindow.M10: timedelta(minutes=10),
    TimeWindow.M30: timedelta(minutes=30),
    TimeWindow.H1: timedelta(hours=1),
    TimeWindow.H2: timedelta(hours=2),
    TimeWindow.H4: timedelta(hours=4),
    TimeWindow.H8: timedelta(hours=8),
    TimeWindow.H12: timedelta(hours=12),
    TimeWindow.D1: timedelta(days=1),
    TimeWindow.W1: timedelta(weeks=1),
    TimeWindow.ALL: None,
}


def dedupe_by_time(items: Sequence[T], key: Callable[[T], int]) -> list[T]:
    """Keep the first item of each run of equal timestamps (input must be sorted)"""
    result: list[T] = []
    last = None
    for item in items:
        t = key(item)
        if result and t == last:
            continue
        result.append(item)
        last = t
    return result


def resample(items: Sequence[T], cap: int, key: Callable[[T], int]) -> list[T]:
    """Down-sample time-ascending items to at most `cap` evenly spaced points.

    Picks, for each of `cap` target times spread over [first, last], the item
    nearest to it (the earlier one on a tie), then drops repeated picks.
    Items already within the cap, or spanning zero time, come back unchanged.
    """
    if len(items) <= cap:
        return list(items)

    times = [key(item) for item in items]
    start, end = times[0], times[-1]
    span = end - start
    if span <= 0:
        return list(items)
    if cap == 1:
        return [items[0]]

    picked = []
    for i in range(cap):
        target = start + (i * span) // (cap - 1)
        idx = bisect.bisect_left(times, target)
        if idx >= len(times):
            idx = len(times) - 1
        elif idx > 0 and target - times[idx - 1] <= times[idx] - target:
            idx -= 1
        # The earliest of equal timestamps
        idx = bisect.bisect_left(times, times[idx])
        picked.append(idx)

    picked = sorted(set(picked))
    return [items[i] for i in picked]


def build_chart(
    history: Sequence[BalanceSnapshot],
    metric: Metric,
    window: TimeWindow,
    now: datetime | None = None,
    cap: int = CHART_POINT_CAP,
) -> list[ChartPoint]:
    now = now or utcnow()
    start = window.start(now)

    points = [p for p in history if start is None or p.timestamp >= start]
    points.sort(key=lambda p: p.timestamp)

    chart = []
    for point in points:
        value = metric.value_of(point)
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            continue
        chart.append(ChartPoint(time=int(point.timestamp.timestamp()), value=float(value)))

    chart = dedupe_by_time(chart, key=lambda p: p.time)
    if len(chart) <= cap:
        logger.debug(f"Chart needs no resampling: {len(chart)} points (cap {cap})")
        return chart

    sampled = resample(chart, cap, key=lambda p: p.time)
    logger.debug(
        f"Chart resampled: {len(chart)} -> {len(sampled)} points "
        f"(span {chart[-1].time - chart[0].time}s)"
    )
    return sampled


async def chart_data(
    store,
    address: str,
    metric: Metric | str,
    window: TimeWindow | str,
    now: datetime | None = None,
    cap: int = CHART_POINT_CAP,
) -> list[ChartPoint]:
    """Chart points for one wallet. Raises WalletNotFoundError for unknown wallets."""
    if isinstance(metric, str) and not isinstance(metric, Metric):
        metric = Metric.parse(metric)
    if isinstance(window, str) and not isinstance(window, TimeWindow):
        window = TimeWindow.parse(window)

    history = await store.history(address)
    chart = build_chart(history, metric, window, now=now, cap=cap)
    logger.info(f"Chart ready: {len(chart)} points ({metric.value}, {window.value})")
    return chart
