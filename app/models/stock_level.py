# app/models/stock_level.py
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class StockLevel(Base):
    """
    库存余额：维度 (variant_id, warehouse_id)，每个组合恰好一行

    - quantity 永不为负（CHECK 约束兜底）
    - version 从 1 开始，每次成功提交 +1，只增不减（乐观并发控制令牌）
    - 首次成功调整时惰性创建；本服务从不删除
    - 只有库存引擎可以写本表，其它模块只读
    """

    __tablename__ = "stock_levels"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    variant_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False)
    warehouse_id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, nullable=False, index=True)

    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    version: Mapped[int] = mapped_column(
        sa.Integer, nullable=False, default=1, server_default=sa.text("1")
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )

    __table_args__ = (
        UniqueConstraint("variant_id", "warehouse_id", name="uq_stock_levels_variant_warehouse"),
        CheckConstraint("quantity >= 0", name="ck_stock_levels_quantity_non_negative"),
        CheckConstraint("version >= 1", name="ck_stock_levels_version_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<StockLevel variant={self.variant_id} wh={self.warehouse_id} "
            f"qty={self.quantity} v={self.version}>"
        )
