# app/schemas/stock.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from app.domain.stock_level import StockAdjustment, StockLevelSnapshot


# ========= 通用基类 =========
class _Base(BaseModel):
    """允许从 dataclass / ORM 取属性、忽略多余字段"""

    model_config = ConfigDict(from_attributes=True, extra="ignore")


# ========= 库存调整（Adjust） =========
class StockAdjustmentRequest(_Base):
    """
    库存调整入参：delta 正数=入库，负数=出库。
    delta=0 在这里不拦，交给 StockAdjustService 统一按 VALIDATION_ERROR 拒绝。
    """

    variant_id: uuid.UUID
    warehouse_id: uuid.UUID
    delta: Annotated[int, Field(description="库存变动量；正数入库，负数出库，不能为 0")]

    def to_domain(self) -> StockAdjustment:
        return StockAdjustment(
            variant_id=self.variant_id,
            warehouse_id=self.warehouse_id,
            delta=int(self.delta),
        )


# ========= 库存余额（Out） =========
class StockLevelOut(_Base):
    """库存余额（version 为乐观并发控制版本号，只增不减）"""

    id: uuid.UUID
    variant_id: uuid.UUID
    warehouse_id: uuid.UUID
    quantity: int
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_snapshot(cls, level: StockLevelSnapshot) -> "StockLevelOut":
        return cls.model_validate(level)
