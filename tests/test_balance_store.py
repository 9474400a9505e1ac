import pytest

from wallet_monitor.core.balance_store import BalanceStore
from wallet_monitor.core.errors import (
    ConflictError,
    DuplicateNameError,
    DuplicateWalletError,
    WalletNotFoundError,
)
from wallet_monitor.core.models import HistoryRecord, utcnow


async def add_initialized(store, address="A", name="alice", lamports=1_000_000_000, wsol=0.0):
    await store.add_wallet(address, name)
    await store.update_sol(address, lamports)
    await store.initialize_wsol(address, wsol)


@pytest.mark.asyncio
async def test_add_fetch_initialize_records_first_point(store):
    """Untracked wallet added, then (1.0, 0.0) fetched"""
    await add_initialized(store)

    summary = await store.summary("A")
    assert summary.total_balance == 1.0
    assert len(await store.history("A")) == 1


@pytest.mark.asyncio
async def test_wsol_change_appends_point(store):
    await add_initialized(store)

    change = await store.update_wsol("A", 0.25)

    summary = await store.summary("A")
    history = await store.history("A")
    assert summary.total_balance == 1.25
    assert len(history) == 2
    assert history[-1].wsol_balance == 0.25
    assert history[-1].total_balance == 1.25
    assert change.previous == 0.0
    assert change.delta == 0.25


@pytest.mark.asyncio
async def test_total_ignores_wsol_until_initialized(store):
    await store.add_wallet("A", "alice")
    await store.update_sol("A", 2_000_000_000)

    summary = await store.summary("A")
    assert summary.total_balance == 2.0
    assert summary.wsol_balance == 0.0
    # No history before WSOL is known
    assert await store.history("A") == []
    assert await store.record("A") is None

    await store.initialize_wsol("A", 0.5)
    summary = await store.summary("A")
    assert summary.total_balance == 2.5
    assert (await store.record("A")).total_balance == 2.5


@pytest.mark.asyncio
async def test_total_matches_parts_over_update_sequence(store):
    await store.add_wallet("A", "alice")
    steps = [
        ("sol", 1_000_000_000),
        ("sol", 3_000_000_000),
        ("init", 0.1),
        ("wsol", 0.7),
        ("sol", 500_000_000),
        ("wsol", 0.0),
    ]

    for kind, value in steps:
        if kind == "sol":
            await store.update_sol("A", value)
        elif kind == "wsol":
            await store.update_wsol("A", value)
        else:
            await store.initialize_wsol("A", value)

        summary = await store.summary("A")
        assert summary.total_balance == pytest.approx(summary.sol_balance + summary.wsol_balance)
        for point in await store.history("A"):
            assert point.total_balance == pytest.approx(point.sol_balance + point.wsol_balance)


@pytest.mark.asyncio
async def test_history_is_capped_oldest_first():
    store = BalanceStore(history_cap=5)
    await add_initialized(store)

    for i in range(1, 10):
        await store.update_wsol("A", float(i))

    history = await store.history("A")
    assert len(history) == 5
    assert [p.wsol_balance for p in history] == [5.0, 6.0, 7.0, 8.0, 9.0]


@pytest.mark.asyncio
async def test_first_point_can_be_disabled():
    store = BalanceStore(record_first_point=False)
    await add_initialized(store)

    assert await store.history("A") == []


@pytest.mark.asyncio
async def test_initialize_does_not_duplicate_loaded_history(store):
    await store.add_wallet("A", "alice")
    record = HistoryRecord(utcnow(), "A", 1.0, 0.0, 1.0)
    await store.load_history("A", [record])

    await store.update_sol("A", 1_000_000_000)
    await store.initialize_wsol("A", 0.0)

    assert len(await store.history("A")) == 1


@pytest.mark.asyncio
async def test_duplicate_address_rejected_without_state_change(store):
    await add_initialized(store)
    history_before = await store.history("A")

    with pytest.raises(DuplicateWalletError):
        await store.add_wallet("A", "someone-else")

    summary = await store.summary("A")
    assert summary.name == "alice"
    assert summary.total_balance == 1.0
    assert await store.history("A") == history_before
    assert len(store) == 1


@pytest.mark.asyncio
async def test_duplicate_name_rejected(store):
    await store.add_wallet("A", "alice")

    with pytest.raises(DuplicateNameError) as exc_info:
        await store.add_wallet("B", "alice")

    assert isinstance(exc_info.value, ConflictError)
    assert not await store.contains("B")


@pytest.mark.asyncio
async def test_remove_wallet(store):
    await add_initialized(store)

    assert await store.remove_wallet("A") == "alice"
    assert not await store.contains("A")
    assert "A" not in await store.live_view()

    with pytest.raises(WalletNotFoundError):
        await store.remove_wallet("A")
    with pytest.raises(WalletNotFoundError):
        await store.history("A")


@pytest.mark.asyncio
async def test_updates_for_untracked_wallet_are_ignored(store):
    assert await store.update_sol("X", 1) is None
    assert await store.update_wsol("X", 1.0) is None
    assert await store.initialize_wsol("X", 1.0) is None
    assert await store.record("X") is None


@pytest.mark.asyncio
async def test_summary_history_is_sampled():
    store = BalanceStore(summary_points=10)
    await add_initialized(store)
    for i in range(50):
        await store.update_wsol("A", float(i))

    summaries = await store.list_summaries()
    assert len(summaries) == 1
    assert len(summaries[0].sampled_history) <= 10


@pytest.mark.asyncio
async def test_live_view_entry(store):
    await add_initialized(store, wsol=0.5)

    view = await store.live_view()
    update = view["A"].to_update()

    assert update["type"] == "update"
    assert update["wallet"]["name"] == "alice"
    assert update["wallet"]["total_balance"] == 1.5
    assert update["wallet"]["latest_data"]["wsol_balance"] == 0.5


@pytest.mark.asyncio
async def test_names_keep_insertion_order(store):
    await store.add_wallet("B", "bob")
    await store.add_wallet("A", "alice")
    assert await store.contains("A")

    assert list(await store.names()) == ["B", "A"]
    assert await store.names() == {"A": "alice", "B": "bob"}
