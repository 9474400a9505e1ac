import asyncio
from unittest.mock import AsyncMock

import pytest

from helpers import WALLET_A, FakeSource, FakeStream, wait_for_condition
from wallet_monitor.core.errors import TransportError
from wallet_monitor.core.ingestion import BalanceSink, IngestionLoop, IngestionState
from wallet_monitor.core.models import SolBalanceEvent, WsolBalanceEvent


async def tracked_store(store, address=WALLET_A):
    await store.add_wallet(address, "alice")
    await store.update_sol(address, 1_000_000_000)
    await store.initialize_wsol(address, 0.0)
    return store


def create_loop(store, streams):
    history_log = AsyncMock()
    sink = BalanceSink(store, history_log, epsilon=1e-6)
    source = FakeSource(streams)
    return IngestionLoop(store, sink, source, reconnect_delay=0), history_log, source


async def stop_loop(loop, task):
    loop.stop()
    await asyncio.wait_for(task, timeout=2)
    assert loop.state == IngestionState.DISCONNECTED


@pytest.mark.asyncio
async def test_sink_persists_meaningful_change(store):
    await tracked_store(store)
    history_log = AsyncMock()
    sink = BalanceSink(store, history_log, epsilon=1e-6)

    change = await sink.apply(WsolBalanceEvent(WALLET_A, 0.25))

    assert change.delta == 0.25
    history_log.append.assert_awaited_once_with(change.record)
    assert change.record.total_balance == 1.25


@pytest.mark.asyncio
async def test_sink_skips_tiny_change(store):
    await tracked_store(store)
    history_log = AsyncMock()
    sink = BalanceSink(store, history_log, epsilon=1e-6)

    # 100 lamports = 1e-7 SOL
    change = await sink.apply(SolBalanceEvent(WALLET_A, 1_000_000_100))

    assert change is not None
    history_log.append.assert_not_awaited()
    # Memory still takes the new value
    assert (await store.summary(WALLET_A)).sol_balance == pytest.approx(1.0000001)


@pytest.mark.asyncio
async def test_sink_ignores_untracked_wallet(store):
    history_log = AsyncMock()
    sink = BalanceSink(store, history_log)

    assert await sink.apply(SolBalanceEvent("unknown", 5)) is None
    history_log.append.assert_not_awaited()


@pytest.mark.asyncio
async def test_sink_rejects_unknown_event(store):
    sink = BalanceSink(store, AsyncMock())

    with pytest.raises(TypeError):
        await sink.apply("not an event")


@pytest.mark.asyncio
async def test_stream_events_reach_store(store):
    await tracked_store(store)
    stream = FakeStream()
    loop, history_log, _ = create_loop(store, [stream])
    task = asyncio.create_task(loop.run())

    await wait_for_condition(lambda: loop.subscriptions == 1)
    assert stream.subscribed[0].wallets == [WALLET_A]
    assert len(stream.subscribed[0].atas) == 1

    stream.push([SolBalanceEvent(WALLET_A, 2_000_000_000)])
    await wait_for_condition(lambda: history_log.append.await_count == 1)

    assert (await store.summary(WALLET_A)).total_balance == 2.0
    assert loop.state == IngestionState.STREAMING
    await stop_loop(loop, task)


@pytest.mark.asyncio
async def test_undecodable_message_is_dropped(store):
    await tracked_store(store)
    stream = FakeStream()
    loop, history_log, _ = create_loop(store, [stream])
    task = asyncio.create_task(loop.run())
    await wait_for_condition(lambda: loop.subscriptions == 1)

    stream.push("bad")
    stream.push([WsolBalanceEvent(WALLET_A, 0.5)])
    await wait_for_condition(lambda: history_log.append.await_count == 1)

    assert loop.connections == 1
    assert (await store.summary(WALLET_A)).wsol_balance == 0.5
    await stop_loop(loop, task)


@pytest.mark.asyncio
async def test_resubscribe_keeps_connection(store):
    await tracked_store(store)
    stream = FakeStream()
    loop, _, source = create_loop(store, [stream])
    task = asyncio.create_task(loop.run())
    await wait_for_condition(lambda: loop.subscriptions == 1)

    await store.remove_wallet(WALLET_A)
    loop.request_resubscribe()
    await wait_for_condition(lambda: loop.subscriptions == 2)

    assert loop.connections == 1
    assert source.opened == 1
    assert stream.subscribed[1].wallets == []
    await stop_loop(loop, task)


@pytest.mark.asyncio
async def test_stream_failure_reconnects(store):
    await tracked_store(store)
    first, second = FakeStream(), FakeStream()
    loop, history_log, source = create_loop(store, [first, second])
    task = asyncio.create_task(loop.run())
    await wait_for_condition(lambda: loop.subscriptions == 1)

    first.push(TransportError("connection reset"))
    await wait_for_condition(lambda: loop.connections == 2 and loop.subscriptions == 2)

    assert source.opened == 2
    second.push([WsolBalanceEvent(WALLET_A, 0.75)])
    await wait_for_condition(lambda: history_log.append.await_count == 1)
    await stop_loop(loop, task)


@pytest.mark.asyncio
async def test_stop_during_backoff(store):
    stream = FakeStream()
    loop, _, _ = create_loop(store, [stream])
    loop.reconnect_delay = 60
    task = asyncio.create_task(loop.run())
    await wait_for_condition(lambda: loop.subscriptions == 1)

    stream.push(TransportError("gone"))
    await wait_for_condition(lambda: loop.state == IngestionState.DISCONNECTED)

    # Returns well before the 60s delay
    await stop_loop(loop, task)


@pytest.mark.asyncio
async def test_reconnect_waits_for_backoff(store):
    await tracked_store(store)
    first, second = FakeStream(), FakeStream()
    loop, _, source = create_loop(store, [first, second])
    loop.reconnect_delay = 0.3
    task = asyncio.create_task(loop.run())
    await wait_for_condition(lambda: loop.subscriptions == 1)

    first.push(TransportError("connection reset"))
    await wait_for_condition(lambda: loop.state == IngestionState.DISCONNECTED)
    await asyncio.sleep(0.1)

    assert source.opened == 1
    assert loop.connections == 1

    await wait_for_condition(lambda: loop.connections == 2 and loop.subscriptions == 2)
    assert source.opened == 2
    await stop_loop(loop, task)
