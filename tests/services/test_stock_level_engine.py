# tests/services/test_stock_level_engine.py
import asyncio
import uuid

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from app.core.errors import ConflictError, InternalError, ValidationError
from app.domain.stock_level import QUANTITY_MAX, StockAdjustment
from app.services.stock_level_engine import StockLevelEngine

pytestmark = pytest.mark.asyncio


async def _apply(maker, engine: StockLevelEngine, v, w, delta, **kw):
    async with maker() as s:
        return await engine.apply(s, StockAdjustment(v, w, delta), **kw)


async def _read(maker, engine: StockLevelEngine, v, w):
    async with maker() as s:
        return await engine.get(s, v, w)


async def test_first_adjustment_creates_row_with_version_1(async_session_maker, stock_engine, pair):
    v, w = pair
    level = await _apply(async_session_maker, stock_engine, v, w, 7)

    assert level.quantity == 7
    assert level.version == 1
    assert level.variant_id == v and level.warehouse_id == w

    stored = await _read(async_session_maker, stock_engine, v, w)
    assert stored is not None
    assert (stored.id, stored.quantity, stored.version) == (level.id, 7, 1)


async def test_scenario_add_remove_then_reject_negative(async_session_maker, stock_engine, pair):
    """+5 ⇒ {5, v1}；-5 ⇒ {0, v2}；-1 ⇒ ValidationError，状态保持 {0, v2}。"""
    v, w = pair

    a = await _apply(async_session_maker, stock_engine, v, w, 5)
    assert (a.quantity, a.version) == (5, 1)

    b = await _apply(async_session_maker, stock_engine, v, w, -5)
    assert (b.quantity, b.version) == (0, 2)
    assert b.id == a.id

    with pytest.raises(ValidationError):
        await _apply(async_session_maker, stock_engine, v, w, -1)

    stored = await _read(async_session_maker, stock_engine, v, w)
    assert (stored.quantity, stored.version) == (0, 2)


async def test_negative_initial_delta_is_rejected_without_creating_row(
    async_session_maker, stock_engine, pair
):
    v, w = pair
    with pytest.raises(ValidationError) as ei:
        await _apply(async_session_maker, stock_engine, v, w, -3)
    assert "negative" in ei.value.message

    assert await _read(async_session_maker, stock_engine, v, w) is None


async def test_version_counts_successful_adjustments(async_session_maker, stock_engine, pair):
    v, w = pair
    deltas = [4, -1, 6, -9, 2]
    for d in deltas:
        await _apply(async_session_maker, stock_engine, v, w, d)

    # 中途被拒的调整不计入
    with pytest.raises(ValidationError):
        await _apply(async_session_maker, stock_engine, v, w, -100)

    stored = await _read(async_session_maker, stock_engine, v, w)
    assert stored.quantity == sum(deltas)
    assert stored.version == len(deltas)


async def test_updated_at_moves_and_created_at_stays(async_session_maker, pair):
    from datetime import datetime, timedelta, timezone

    ticks = iter(
        datetime(2025, 12, 9, 12, 0, tzinfo=timezone.utc) + timedelta(minutes=i) for i in range(10)
    )
    engine = StockLevelEngine(sink=None, utc_now=lambda: next(ticks))
    v, w = pair

    first = await _apply(async_session_maker, engine, v, w, 1)
    second = await _apply(async_session_maker, engine, v, w, 1)

    assert second.created_at == first.created_at
    assert second.updated_at > first.updated_at


async def test_stale_version_write_conflicts_and_reissue_succeeds(
    async_session_maker, stock_engine, pair
):
    """
    两个写者读到同一个 version：先提交者成功，后写者的版本谓词命中 0 行 → ConflictError；
    基于最新状态重放同一 delta 成功。
    """
    v, w = pair
    await _apply(async_session_maker, stock_engine, v, w, 5)

    observed = await _read(async_session_maker, stock_engine, v, w)
    assert observed.version == 1

    # 竞争者先提交
    await _apply(async_session_maker, stock_engine, v, w, 3)

    async with async_session_maker() as s:
        with pytest.raises(ConflictError):
            async with s.begin():
                await stock_engine._compare_and_swap(s, observed, -2)

    # 失败的写入没有落任何东西
    stored = await _read(async_session_maker, stock_engine, v, w)
    assert (stored.quantity, stored.version) == (8, 2)

    again = await _apply(async_session_maker, stock_engine, v, w, -2)
    assert (again.quantity, again.version) == (6, 3)


async def test_concurrent_first_insert_loser_conflicts_then_retry(
    async_session_maker, stock_engine, pair
):
    """两个调用方都看到"无行"：一方插入成功，另一方撞唯一约束 → ConflictError；重试得到 {20, v2}。"""
    v, w = pair

    async with async_session_maker() as s:
        async with s.begin():
            assert await stock_engine._lock_row(s, v, w) is None

    winner = await _apply(async_session_maker, stock_engine, v, w, 10)
    assert (winner.quantity, winner.version) == (10, 1)

    async with async_session_maker() as s:
        with pytest.raises(ConflictError):
            async with s.begin():
                await stock_engine._insert_initial(s, StockAdjustment(v, w, 10))

    retried = await _apply(async_session_maker, stock_engine, v, w, 10)
    assert (retried.quantity, retried.version) == (20, 2)


async def test_conflict_through_apply_rolls_back_everything(
    async_session_maker, pair, recording_sink, monkeypatch
):
    """
    模拟隔离级别被调弱：加锁读之后另一写者"溜进来"改了版本号。
    版本谓词拦下写入，整个事务回滚（包括溜进来的那次修改）。
    """
    engine = StockLevelEngine(sink=recording_sink)
    v, w = pair
    await _apply(async_session_maker, engine, v, w, 5)

    real_lock_row = engine._lock_row

    async def _lock_then_race(session, variant_id, warehouse_id):
        observed = await real_lock_row(session, variant_id, warehouse_id)
        await session.execute(
            text("UPDATE stock_levels SET version = version + 1, quantity = quantity + 100")
        )
        return observed

    monkeypatch.setattr(engine, "_lock_row", _lock_then_race)

    with pytest.raises(ConflictError):
        await _apply(async_session_maker, engine, v, w, 1)

    monkeypatch.undo()
    stored = await _read(async_session_maker, engine, v, w)
    assert (stored.quantity, stored.version) == (5, 1)
    assert recording_sink.names[-2:] == ["attempt", "conflict"]


async def test_deadline_exceeded_rolls_back_and_surfaces_internal_error(
    async_session_maker, stock_engine, pair, monkeypatch
):
    v, w = pair
    await _apply(async_session_maker, stock_engine, v, w, 5)

    real_lock_row = stock_engine._lock_row

    async def _slow_lock(session, variant_id, warehouse_id):
        observed = await real_lock_row(session, variant_id, warehouse_id)
        await asyncio.sleep(2)
        return observed

    monkeypatch.setattr(stock_engine, "_lock_row", _slow_lock)

    with pytest.raises(InternalError) as ei:
        await _apply(async_session_maker, stock_engine, v, w, -2, timeout=0.05)
    assert isinstance(ei.value.__cause__, asyncio.TimeoutError)
    assert "deadline" in ei.value.message

    monkeypatch.undo()
    stored = await _read(async_session_maker, stock_engine, v, w)
    assert (stored.quantity, stored.version) == (5, 1)


async def test_storage_failure_surfaces_internal_error_with_cause(
    async_session_maker, stock_engine, pair, monkeypatch
):
    v, w = pair
    boom = OperationalError("SELECT ... FOR UPDATE", {}, Exception("connection lost"))

    async def _broken_lock(session, variant_id, warehouse_id):
        raise boom

    monkeypatch.setattr(stock_engine, "_lock_row", _broken_lock)

    with pytest.raises(InternalError) as ei:
        await _apply(async_session_maker, stock_engine, v, w, 1)
    assert ei.value.__cause__ is boom
    assert "(DB)" in ei.value.message


async def test_sink_failure_never_breaks_adjustment(async_session_maker, pair):
    class _BrokenSink:
        def emit(self, event, **fields):
            raise RuntimeError("collector unreachable")

    engine = StockLevelEngine(sink=_BrokenSink())
    v, w = pair

    level = await _apply(async_session_maker, engine, v, w, 3)
    assert (level.quantity, level.version) == (3, 1)


async def test_events_for_success_and_rejection(async_session_maker, pair, recording_sink):
    engine = StockLevelEngine(sink=recording_sink)
    v, w = pair

    await _apply(async_session_maker, engine, v, w, 2)
    with pytest.raises(ValidationError):
        await _apply(async_session_maker, engine, v, w, -5)

    assert recording_sink.names == ["attempt", "success", "attempt", "rejected"]
    _, success = recording_sink.events[1]
    assert success["quantity"] == 2 and success["version"] == 1
    assert success["variant_id"] == str(v)
    assert success["elapsed"] >= 0


async def test_get_missing_pair_returns_none(session, stock_engine):
    assert await stock_engine.get(session, uuid.uuid4(), uuid.uuid4()) is None


async def test_same_session_can_read_then_adjust(session, stock_engine, pair):
    v, w = pair
    assert await stock_engine.get(session, v, w) is None
    level = await stock_engine.apply(session, StockAdjustment(v, w, 4))
    assert level.version == 1
    assert (await stock_engine.get(session, v, w)).quantity == 4


async def test_quantity_beyond_column_range_is_rejected(async_session_maker, stock_engine, pair):
    v, w = pair

    with pytest.raises(ValidationError):
        await _apply(async_session_maker, stock_engine, v, w, 2**70)
    assert await _read(async_session_maker, stock_engine, v, w) is None

    top = await _apply(async_session_maker, stock_engine, v, w, QUANTITY_MAX)
    assert (top.quantity, top.version) == (QUANTITY_MAX, 1)

    with pytest.raises(ValidationError) as ei:
        await _apply(async_session_maker, stock_engine, v, w, 1)
    assert "overflow" in ei.value.message

    stored = await _read(async_session_maker, stock_engine, v, w)
    assert (stored.quantity, stored.version) == (QUANTITY_MAX, 1)


async def test_untyped_failure_surfaces_internal_error_and_failure_event(
    async_session_maker, pair, recording_sink, monkeypatch
):
    engine = StockLevelEngine(sink=recording_sink)
    v, w = pair
    boom = OverflowError("Python int too large to convert to SQLite INTEGER")

    async def _broken_lock(session, variant_id, warehouse_id):
        raise boom

    monkeypatch.setattr(engine, "_lock_row", _broken_lock)

    with pytest.raises(InternalError) as ei:
        await _apply(async_session_maker, engine, v, w, 1)

    assert ei.value.__cause__ is boom
    assert recording_sink.names == ["attempt", "failure"]
    _, failure = recording_sink.events[1]
    assert failure["elapsed"] >= 0


async def test_unlocked_read_does_not_wait_for_writer(async_session_maker, stock_engine, pair):
    """写者持锁期间，无锁读立即返回已提交状态。"""
    v, w = pair
    await _apply(async_session_maker, stock_engine, v, w, 5)

    async with async_session_maker() as writer:
        async with writer.begin():
            locked = await stock_engine._lock_row(writer, v, w)
            assert locked.version == 1

            async with async_session_maker() as reader:
                level = await asyncio.wait_for(stock_engine.get(reader, v, w), timeout=1.0)
                assert (level.quantity, level.version) == (5, 1)
                assert not reader.in_transaction()
