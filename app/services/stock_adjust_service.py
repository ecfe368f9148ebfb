# app/services/stock_adjust_service.py
"""
库存调整服务（Adjustment Service）

职责：
  - 零 delta 直接拒绝（不为 no-op 付出一次事务 + 行锁）
  - |delta| 超出库存列取值范围同样直接拒绝
  - 合法请求转交 StockLevelEngine
  - 引擎错误一对一映射到进程级错误分类，语义与 HTTP 严重级别保持不变：
        ValidationError → ValidationError (400)
        ConflictError   → ConflictError   (409)
        其它            → InternalError   (500)
  - 请求级状态机：RECEIVED → VALIDATED → ENGINE_APPLIED → 终态；跨请求不保留任何状态

不做重试：ConflictError 由调用方决定是否基于最新状态重放同一个 delta。
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    AppError,
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from app.domain.stock_level import (
    QUANTITY_MAX,
    AdjustOutcome,
    StockAdjustment,
    StockLevelSnapshot,
)
from app.services.stock_level_engine import StockLevelEngine

log = logging.getLogger("stockledger.service")


class StockAdjustService:
    def __init__(
        self,
        engine: Optional[StockLevelEngine] = None,
        *,
        default_timeout: Optional[float] = None,
    ) -> None:
        self.engine = engine or StockLevelEngine()
        self.default_timeout = default_timeout

    async def adjust_stock(
        self,
        session: AsyncSession,
        adjustment: StockAdjustment,
        *,
        timeout: Optional[float] = None,
    ) -> StockLevelSnapshot:
        fields = adjustment.log_fields()
        log.debug("adjust_stock received", extra=fields)

        if adjustment.delta == 0:
            self._finish(AdjustOutcome.INVALID, fields)
            raise ValidationError("stock adjustment delta must not be zero")
        if abs(adjustment.delta) > QUANTITY_MAX:
            self._finish(AdjustOutcome.INVALID, fields)
            raise ValidationError(
                f"stock adjustment delta out of range: |delta| must be <= {QUANTITY_MAX}"
            )

        try:
            level = await self.engine.apply(
                session,
                adjustment,
                timeout=timeout if timeout is not None else self.default_timeout,
            )
        except ConflictError as e:
            self._finish(AdjustOutcome.CONFLICT, fields)
            raise ConflictError(f"concurrency failure: {e.message}") from e
        except ValidationError as e:
            self._finish(AdjustOutcome.INVALID, fields)
            raise ValidationError(f"stock validation: {e.message}") from e
        except InternalError:
            self._finish(AdjustOutcome.FAILED, fields)
            raise
        except Exception as e:
            self._finish(AdjustOutcome.FAILED, fields)
            raise InternalError("internal failure while adjusting stock", cause=e) from e

        self._finish(
            AdjustOutcome.SUCCEEDED,
            {**fields, "new_quantity": level.quantity, "new_version": level.version},
        )
        return level

    async def get_stock_level(
        self,
        session: AsyncSession,
        variant_id: uuid.UUID,
        warehouse_id: uuid.UUID,
    ) -> StockLevelSnapshot:
        try:
            level = await self.engine.get(session, variant_id, warehouse_id)
        except AppError:
            raise
        except Exception as e:
            raise InternalError("internal failure while reading stock", cause=e) from e
        if level is None:
            raise NotFoundError(
                f"stock for variant {variant_id} in warehouse {warehouse_id} not found"
            )
        return level

    @staticmethod
    def _finish(outcome: AdjustOutcome, fields: dict) -> None:
        level = logging.INFO if outcome is AdjustOutcome.SUCCEEDED else logging.WARNING
        if outcome is AdjustOutcome.FAILED:
            level = logging.ERROR
        log.log(level, "adjust_stock %s", outcome.value, extra={**fields, "outcome": outcome.value})
