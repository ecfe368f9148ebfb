# app/core/tx.py
from __future__ import annotations

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def tx_commit(session: AsyncSession):
    """
    Commit 事务：正常 begin/commit；块内抛异常（含取消 / 超时）则整笔回滚。
    调用方不得在同一 session 上预先开启事务。
    """
    async with session.begin():
        yield session
