# app/services/stock_level_engine.py
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AppError, ConflictError, InternalError, ValidationError, db_error
from app.core.tx import tx_commit
from app.db.engine import READ_ONLY_TX
from app.domain.ports import StockEventSink
from app.domain.stock_level import QUANTITY_MAX, StockAdjustment, StockLevelSnapshot
from app.models.stock_level import StockLevel
from app.obs.stock_events import MetricsStockEventSink

log = logging.getLogger("stockledger.engine")

UTC = timezone.utc

_tbl = StockLevel.__table__
_COLUMNS = (
    _tbl.c.id,
    _tbl.c.variant_id,
    _tbl.c.warehouse_id,
    _tbl.c.quantity,
    _tbl.c.version,
    _tbl.c.created_at,
    _tbl.c.updated_at,
)


class StockLevelEngine:
    """
    库存调整内核：对单个 (variant_id, warehouse_id) 原子地应用一次带符号 delta。

    协议（同一事务内）：
      1) SELECT ... FOR UPDATE 锁定该组合的行（同组合串行，不同组合互不阻塞）
      2) 无行：delta < 0 或超出 QUANTITY_MAX → ValidationError；否则插入 {quantity=delta, version=1}
         并发插入输给唯一约束的一方 → ConflictError
      3) 有行：new = quantity + delta；new < 0 或 > QUANTITY_MAX → ValidationError；
         否则 UPDATE ... WHERE version = 读到的 version；影响 0 行 → ConflictError
      4) 其它任何失败（连接中断、超时、驱动异常）→ InternalError（__cause__ 为原始异常）

    行锁 + 版本谓词是双保险：即便隔离级别被调弱，版本谓词仍能拦住丢失更新。
    引擎内不做重试，ConflictError 原样交给调用方。
    """

    def __init__(
        self,
        *,
        sink: Optional[StockEventSink] = None,
        utc_now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._sink = sink if sink is not None else MetricsStockEventSink()
        self._utc_now = utc_now

    # ------------------------------------------------------------------
    # 对外入口
    # ------------------------------------------------------------------

    async def apply(
        self,
        session: AsyncSession,
        adjustment: StockAdjustment,
        *,
        timeout: Optional[float] = None,
    ) -> StockLevelSnapshot:
        """
        应用一次调整并提交。timeout（秒）覆盖等锁 + 写入 + 提交的全过程，
        到期则整笔回滚并抛 InternalError。
        """
        fields = adjustment.log_fields()
        log.debug("stock adjust start", extra=fields)
        self._emit("attempt", **fields)
        started = time.perf_counter()

        try:
            if timeout is None:
                level = await self._apply_in_tx(session, adjustment)
            else:
                level = await asyncio.wait_for(self._apply_in_tx(session, adjustment), timeout)
        except ValidationError as e:
            log.warning("stock adjust rejected: %s", e.message, extra=fields)
            self._emit("rejected", error=e.message, elapsed=time.perf_counter() - started, **fields)
            raise
        except ConflictError as e:
            log.warning("stock adjust conflict: %s", e.message, extra=fields)
            self._emit("conflict", error=e.message, elapsed=time.perf_counter() - started, **fields)
            raise
        except asyncio.TimeoutError as e:
            err = InternalError(f"stock adjust deadline exceeded after {timeout}s", cause=e)
            self._fail(err, started, fields)
            raise err from e
        except AppError as e:
            self._fail(e, started, fields)
            raise
        except SQLAlchemyError as e:
            err = db_error("failed to adjust stock level", e)
            self._fail(err, started, fields)
            raise err from e
        except Exception as e:
            err = InternalError(f"unexpected failure while adjusting stock: {e!r}", cause=e)
            self._fail(err, started, fields)
            raise err from e

        log.info(
            "stock adjusted",
            extra={**fields, "new_quantity": level.quantity, "new_version": level.version},
        )
        self._emit(
            "success",
            quantity=level.quantity,
            version=level.version,
            elapsed=time.perf_counter() - started,
            **fields,
        )
        return level

    async def get(
        self,
        session: AsyncSession,
        variant_id: uuid.UUID,
        warehouse_id: uuid.UUID,
    ) -> Optional[StockLevelSnapshot]:
        """
        无锁读取当前余额（可能落后于进行中的调整）。不存在返回 None。
        调用方已开事务则在其中读；否则开一个只读短事务（SQLite 上不抢写锁），
        读完即回滚，session 可继续用于 apply。
        """
        stmt = sa.select(*_COLUMNS).where(
            _tbl.c.variant_id == variant_id,
            _tbl.c.warehouse_id == warehouse_id,
        )
        try:
            if session.in_transaction():
                row = (await session.execute(stmt)).mappings().first()
            else:
                try:
                    await session.connection(execution_options={READ_ONLY_TX: True})
                    row = (await session.execute(stmt)).mappings().first()
                finally:
                    await session.rollback()
        except SQLAlchemyError as e:
            log.error("failed to read stock level: %s", e)
            raise db_error("failed to read stock level", e) from e
        return StockLevelSnapshot.from_row(row) if row is not None else None

    # ------------------------------------------------------------------
    # 事务内步骤
    # ------------------------------------------------------------------

    async def _apply_in_tx(
        self, session: AsyncSession, adjustment: StockAdjustment
    ) -> StockLevelSnapshot:
        async with tx_commit(session):
            current = await self._lock_row(session, adjustment.variant_id, adjustment.warehouse_id)
            if current is None:
                return await self._insert_initial(session, adjustment)
            return await self._compare_and_swap(session, current, adjustment.delta)

    async def _lock_row(
        self,
        session: AsyncSession,
        variant_id: uuid.UUID,
        warehouse_id: uuid.UUID,
    ) -> Optional[StockLevelSnapshot]:
        """加锁读取：行锁持有到事务结束。"""
        row = (
            (
                await session.execute(
                    sa.select(*_COLUMNS)
                    .where(
                        _tbl.c.variant_id == variant_id,
                        _tbl.c.warehouse_id == warehouse_id,
                    )
                    .with_for_update()
                )
            )
            .mappings()
            .first()
        )
        return StockLevelSnapshot.from_row(row) if row is not None else None

    async def _insert_initial(
        self, session: AsyncSession, adjustment: StockAdjustment
    ) -> StockLevelSnapshot:
        if adjustment.delta < 0:
            raise ValidationError("cannot initialize negative stock")
        if adjustment.delta > QUANTITY_MAX:
            raise ValidationError(f"stock quantity out of range: {adjustment.delta}")

        now = self._utc_now()
        level = StockLevelSnapshot(
            id=uuid.uuid4(),
            variant_id=adjustment.variant_id,
            warehouse_id=adjustment.warehouse_id,
            quantity=int(adjustment.delta),
            version=1,
            created_at=now,
            updated_at=now,
        )
        try:
            await session.execute(
                sa.insert(_tbl).values(
                    id=level.id,
                    variant_id=level.variant_id,
                    warehouse_id=level.warehouse_id,
                    quantity=level.quantity,
                    version=level.version,
                    created_at=now,
                    updated_at=now,
                )
            )
        except IntegrityError as e:
            # 另一事务抢先建了同一组合的行
            raise ConflictError("stock modified concurrently") from e
        return level

    async def _compare_and_swap(
        self, session: AsyncSession, current: StockLevelSnapshot, delta: int
    ) -> StockLevelSnapshot:
        new_qty = current.quantity + int(delta)
        if new_qty < 0:
            raise ValidationError(
                f"adjustment would make stock negative: before={current.quantity}, delta={delta}"
            )
        if new_qty > QUANTITY_MAX:
            raise ValidationError(
                f"adjustment would overflow stock quantity: before={current.quantity}, delta={delta}"
            )

        updated = current.applied(delta, at=self._utc_now())
        result = await session.execute(
            sa.update(_tbl)
            .where(
                _tbl.c.variant_id == current.variant_id,
                _tbl.c.warehouse_id == current.warehouse_id,
                _tbl.c.version == current.version,
            )
            .values(
                quantity=updated.quantity,
                version=updated.version,
                updated_at=updated.updated_at,
            )
        )
        if result.rowcount == 0:
            log.warning(
                "optimistic version check failed",
                extra={
                    "variant_id": str(current.variant_id),
                    "warehouse_id": str(current.warehouse_id),
                    "expected_version": current.version,
                },
            )
            raise ConflictError("stock modified concurrently")
        return updated

    # ------------------------------------------------------------------
    # 可观测性
    # ------------------------------------------------------------------

    def _fail(self, err: AppError, started: float, fields: dict[str, Any]) -> None:
        log.error("stock adjust failed: %s", err.message, extra=fields, exc_info=err.__cause__)
        self._emit("failure", error=err.message, elapsed=time.perf_counter() - started, **fields)

    def _emit(self, event: str, **fields: Any) -> None:
        try:
            self._sink.emit(event, **fields)
        except Exception as e:
            log.warning("stock event sink failed (%s): %s", event, e)
