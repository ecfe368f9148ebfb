# app/db/base.py
from __future__ import annotations

import importlib
import logging
from typing import Iterable, List

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("stockledger.models")


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    pass


_INITIALIZED: bool = False  # 防重复初始化

MODEL_MODULES = [
    "app.models.stock_level",
]


def init_models(*, extra_modules: Iterable[str] | None = None, force: bool = False) -> None:
    """
    集中导入模型并固化映射：
      1) 导入 MODEL_MODULES（保证 Base.metadata 完整）
      2) 再导入 extra_modules
      3) 最后统一 configure_mappers()
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        log.debug("init_models() called again; already initialized, skipping.")
        return

    loaded: List[str] = []
    for mod in [*MODEL_MODULES, *(extra_modules or [])]:
        if mod in loaded:
            continue
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))
