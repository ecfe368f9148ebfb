# app/db/engine.py
# 统一引擎工厂：DSN 归一 + 按后端注入差异（PG: pool_pre_ping；SQLite: IMMEDIATE 事务）
from __future__ import annotations

import re
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

__all__ = ["READ_ONLY_TX", "create_async_engine_safe", "normalize_async_dsn"]

# 连接级 execution option：只读事务在 SQLite 上以普通 BEGIN 开启，不抢写锁
READ_ONLY_TX = "stockledger_read_only"


def normalize_async_dsn(url: str) -> str:
    """
    把各种写法统一到 async 驱动：
      - postgres:// / postgresql:// / postgresql+asyncpg:// → postgresql+psycopg://
      - sqlite:/// → sqlite+aiosqlite:///
    两侧多余的引号一并剥掉（部分 .env 会把值写成 '"postgresql://..."'）。
    """
    url = (url or "").strip()
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    if not url:
        raise ValueError("DATABASE_URL is empty")

    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite://" + url[len("sqlite:///") - 1 :]
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _install_sqlite_immediate_tx(engine: AsyncEngine) -> None:
    """
    SQLite 没有行锁，SELECT ... FOR UPDATE 会被方言忽略。
    这里接管 BEGIN：所有事务以 BEGIN IMMEDIATE 开启，写者在事务起点即串行化，
    作为本地/测试环境下行锁的替身（粒度为整库）。
    带 READ_ONLY_TX 的连接走 deferred BEGIN，读者不排在写者后面。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        # 关掉 pysqlite 的隐式 BEGIN，由下面的 begin 钩子显式发出
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(READ_ONLY_TX):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_async_engine_safe(url_str: str, *, echo: bool = False, **extra: Any) -> AsyncEngine:
    """Async 引擎（'postgresql+psycopg' 或 'sqlite+aiosqlite'）。"""
    url_str = normalize_async_dsn(url_str)
    backend = make_url(url_str).get_backend_name()

    kwargs: dict[str, Any] = {"echo": echo}
    if backend.startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    kwargs.update(extra)

    engine = create_async_engine(url_str, **kwargs)
    if backend.startswith("sqlite"):
        _install_sqlite_immediate_tx(engine)
    return engine
