# alembic/env.py — stock_levels 迁移入口（列注释差异静音）

from __future__ import annotations

import os
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection
from sqlalchemy.pool import NullPool

# Alembic 基本配置
config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# 延迟加载模型（避免导入时机引发的问题）
from app.db.base import Base, init_models  # noqa: E402
from app.db.engine import normalize_async_dsn  # noqa: E402


def include_object(
    obj: Any, name: str | None, type_: str, reflected: bool, compare_to: Any
) -> bool:
    """
    控制 autogenerate / check 时哪些对象参与 diff：
    DB 有而模型里没有的对象不参与比较（不自动生成 drop）。
    """
    if reflected and compare_to is None:
        return False
    return True


def get_url() -> str:
    """
    单一真相：显式使用环境变量里的 DSN。

    优先级：
      1. DATABASE_URL
      2. alembic.ini 里的 sqlalchemy.url
    迁移走同步驱动：psycopg 同步 / 标准 sqlite。
    """
    url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError(
            "Alembic 无法确定数据库 URL：\n"
            "请设置 DATABASE_URL，或在 alembic.ini 里配置 sqlalchemy.url"
        )
    url = normalize_async_dsn(url)
    if url.startswith("sqlite+aiosqlite://"):
        url = url.replace("sqlite+aiosqlite://", "sqlite://", 1)
    return url


try:
    from alembic.operations.ops import ModifyColumnCommentOp  # type: ignore[attr-defined]
except ImportError:  # 老版本 Alembic 没这个类型
    ModifyColumnCommentOp = None


def strip_comment_ops(context, revision, directives):
    """autogenerate 时静音所有 ModifyColumnCommentOp。"""
    if not directives or ModifyColumnCommentOp is None:
        return

    script = directives[0]

    if hasattr(script, "upgrade_ops") and script.upgrade_ops:
        script.upgrade_ops.ops = [
            op for op in script.upgrade_ops.ops if not isinstance(op, ModifyColumnCommentOp)
        ]

    if hasattr(script, "downgrade_ops") and script.downgrade_ops:
        script.downgrade_ops.ops = [
            op for op in script.downgrade_ops.ops if not isinstance(op, ModifyColumnCommentOp)
        ]


def run_migrations_offline() -> None:
    """Offline 模式：不真实连库，只生成 SQL。"""
    init_models()

    context.configure(
        url=get_url(),
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=False,
        include_object=include_object,
        process_revision_directives=strip_comment_ops,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Online 模式：真实连库执行迁移。"""
    init_models()

    engine = create_engine(get_url(), poolclass=NullPool, future=True)

    with engine.connect() as connection:  # type: Connection
        context.configure(
            connection=connection,
            target_metadata=Base.metadata,
            compare_type=True,
            compare_server_default=False,
            include_object=include_object,
            render_as_batch=connection.dialect.name == "sqlite",
            process_revision_directives=strip_comment_ops,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
