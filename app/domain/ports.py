# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Any, Protocol


class StockEventSink(Protocol):
    """
    可观测性协作方：接收库存调整的结构化事件。
    event ∈ {"attempt", "success", "rejected", "conflict", "failure"}

    引擎的正确性不依赖它：emit 抛出的异常由引擎记录后丢弃。
    """

    def emit(self, event: str, **fields: Any) -> None: ...
