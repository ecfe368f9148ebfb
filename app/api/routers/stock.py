# app/api/routers/stock.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session, get_stock_adjust_service
from app.schemas.stock import StockAdjustmentRequest, StockLevelOut
from app.services.stock_adjust_service import StockAdjustService

router = APIRouter(prefix="/v1/stock", tags=["stock"])


@router.post("/update", response_model=StockLevelOut, status_code=status.HTTP_200_OK)
async def adjust_stock(
    req: StockAdjustmentRequest,
    session: AsyncSession = Depends(get_session),
    svc: StockAdjustService = Depends(get_stock_adjust_service),
) -> StockLevelOut:
    """
    对 (variant_id, warehouse_id) 应用一次带符号 delta。

    - 400 VALIDATION_ERROR：delta=0，或调整后库存为负
    - 409 CONFLICT：并发修改（可基于最新状态重放同一个 delta）
    - 500 INTERNAL_ERROR：存储失败 / 超时
    """
    level = await svc.adjust_stock(session, req.to_domain())
    return StockLevelOut.from_snapshot(level)


@router.get("/{variant_id}/{warehouse_id}", response_model=StockLevelOut)
async def get_stock_level(
    variant_id: uuid.UUID,
    warehouse_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    svc: StockAdjustService = Depends(get_stock_adjust_service),
) -> StockLevelOut:
    """无锁读取当前余额；不存在时 404 NOT_FOUND。"""
    level = await svc.get_stock_level(session, variant_id, warehouse_id)
    return StockLevelOut.from_snapshot(level)
