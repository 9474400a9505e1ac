from datetime import datetime, timedelta, timezone

import pytest

from wallet_monitor.core.charts import (
    Metric,
    TimeWindow,
    build_chart,
    chart_data,
    dedupe_by_time,
    resample,
)
from wallet_monitor.core.errors import ValidationError, WalletNotFoundError
from wallet_monitor.core.models import BalanceSnapshot

T0 = datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


def point(seconds, sol=1.0, wsol=0.0):
    return BalanceSnapshot(
        timestamp=T0 + timedelta(seconds=seconds),
        sol_balance=sol,
        wsol_balance=wsol,
        total_balance=sol + wsol,
    )


def test_parse_tokens():
    assert Metric.parse("SOL") is Metric.SOL
    assert Metric.parse("total") is Metric.TOTAL
    assert TimeWindow.parse("1h") is TimeWindow.H1
    assert TimeWindow.parse("all") is TimeWindow.ALL
    assert TimeWindow.ALL.span is None
    assert TimeWindow.W1.span == timedelta(weeks=1)


def test_parse_rejects_unknown_tokens():
    with pytest.raises(ValidationError):
        Metric.parse("usd")
    with pytest.raises(ValidationError):
        TimeWindow.parse("3D")


def test_window_filters_old_points():
    now = T0 + timedelta(minutes=10)
    history = [point(0), point(5 * 60, sol=2.0), point(8 * 60, sol=3.0), point(10 * 60, sol=4.0)]

    chart = build_chart(history, Metric.SOL, TimeWindow.M5, now=now)

    # Cutoff is inclusive
    assert [p.value for p in chart] == [2.0, 3.0, 4.0]
    assert len(build_chart(history, Metric.SOL, TimeWindow.ALL, now=now)) == 4


def test_metric_selection():
    history = [point(0, sol=1.0, wsol=0.5)]

    assert build_chart(history, Metric.SOL, TimeWindow.ALL)[0].value == 1.0
    assert build_chart(history, Metric.WSOL, TimeWindow.ALL)[0].value == 0.5
    assert build_chart(history, Metric.TOTAL, TimeWindow.ALL)[0].value == 1.5


def test_non_finite_values_dropped():
    history = [point(0), point(1, sol=float("nan")), point(2, sol=float("inf")), point(3)]

    chart = build_chart(history, Metric.SOL, TimeWindow.ALL)

    assert [p.time for p in chart] == [int(T0.timestamp()), int(T0.timestamp()) + 3]


def test_same_second_keeps_first_point():
    history = [point(0.1, sol=1.0), point(0.6, sol=2.0), point(1.2, sol=3.0)]

    chart = build_chart(history, Metric.SOL, TimeWindow.ALL)

    assert [p.value for p in chart] == [1.0, 3.0]


def test_unsorted_history_comes_back_ascending():
    history = [point(30), point(10), point(20)]

    chart = build_chart(history, Metric.TOTAL, TimeWindow.ALL)

    assert [p.time for p in chart] == sorted(p.time for p in chart)


def test_resample_2000_points_over_1000_seconds():
    history = [point(i * 1000 / 1999, sol=float(i)) for i in range(2000)]

    chart = build_chart(history, Metric.TOTAL, TimeWindow.ALL)

    assert len(chart) == 1000
    assert chart[0].time == int(T0.timestamp())
    assert chart[-1].time == int(T0.timestamp()) + 1000
    assert all(a.time < b.time for a, b in zip(chart, chart[1:]))


def test_resample_bounds():
    items = list(range(2000))

    for cap in (1, 2, 7, 100, 1999):
        sampled = resample(items, cap, key=lambda t: t)
        assert 0 < len(sampled) <= cap
        assert sampled == sorted(sampled)
        assert sampled[0] == 0

    sampled = resample(items, 1000, key=lambda t: t)
    assert len(sampled) == 1000
    assert sampled[-1] == 1999


def test_resample_leaves_small_or_flat_input_alone():
    assert resample([1, 2, 3], 10, key=lambda t: t) == [1, 2, 3]
    assert resample([5, 5, 5, 5], 2, key=lambda t: t) == [5, 5, 5, 5]


def test_dedupe_by_time():
    items = [(0, "a"), (0, "b"), (1, "c"), (2, "d"), (2, "e")]

    assert dedupe_by_time(items, key=lambda i: i[0]) == [(0, "a"), (1, "c"), (2, "d")]


@pytest.mark.asyncio
async def test_chart_data_from_store(store):
    await store.add_wallet("A", "alice")
    await store.update_sol("A", 1_000_000_000)
    await store.initialize_wsol("A", 0.25)

    chart = await chart_data(store, "A", "total", "1h")

    assert len(chart) == 1
    assert chart[0].value == 1.25
    assert chart[0].to_dict() == {"time": chart[0].time, "value": 1.25}


@pytest.mark.asyncio
async def test_chart_data_unknown_wallet(store):
    with pytest.raises(WalletNotFoundError):
        await chart_data(store, "missing", Metric.SOL, TimeWindow.ALL)
