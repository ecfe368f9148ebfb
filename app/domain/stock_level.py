# app/domain/stock_level.py
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping


# stock_levels.quantity 是 32 位 Integer
QUANTITY_MAX = 2**31 - 1


def _as_utc(ts: datetime) -> datetime:
    # SQLite 不存时区，读回来是 naive；库里一律按 UTC 写入
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


class AdjustOutcome(str, Enum):
    """单次调整请求的终态（请求级状态机：RECEIVED → VALIDATED → ENGINE_APPLIED → 终态）。"""

    SUCCEEDED = "SUCCEEDED"
    CONFLICT = "CONFLICT"  # 版本号不匹配 / 唯一约束竞争
    INVALID = "INVALID"  # 零 delta / 负库存
    FAILED = "FAILED"  # 基础设施失败 / 超时


@dataclass(frozen=True)
class StockAdjustment:
    """一次库存调整请求（瞬态，不落库）。delta 为带符号的增量。"""

    variant_id: uuid.UUID
    warehouse_id: uuid.UUID
    delta: int

    def log_fields(self) -> Dict[str, Any]:
        return {
            "variant_id": str(self.variant_id),
            "warehouse_id": str(self.warehouse_id),
            "delta": self.delta,
        }


@dataclass(frozen=True)
class StockLevelSnapshot:
    """已提交的库存余额快照（引擎的返回值；与 ORM 身份映射无关）。"""

    id: uuid.UUID
    variant_id: uuid.UUID
    warehouse_id: uuid.UUID
    quantity: int
    version: int
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError(f"stock quantity must be >= 0, got {self.quantity}")
        if self.version < 1:
            raise ValueError(f"stock version must be >= 1, got {self.version}")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StockLevelSnapshot":
        return cls(
            id=row["id"],
            variant_id=row["variant_id"],
            warehouse_id=row["warehouse_id"],
            quantity=int(row["quantity"]),
            version=int(row["version"]),
            created_at=_as_utc(row["created_at"]),
            updated_at=_as_utc(row["updated_at"]),
        )

    def applied(self, delta: int, *, at: datetime) -> "StockLevelSnapshot":
        """在本快照上应用一次 delta：quantity += delta, version += 1。负库存直接 ValueError。"""
        return StockLevelSnapshot(
            id=self.id,
            variant_id=self.variant_id,
            warehouse_id=self.warehouse_id,
            quantity=self.quantity + int(delta),
            version=self.version + 1,
            created_at=self.created_at,
            updated_at=at,
        )

