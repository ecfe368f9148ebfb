# app/obs/stock_events.py
from __future__ import annotations

import logging
from typing import Any

from app.obs.metrics import stock_adjust_duration, stock_adjust_events_total

log = logging.getLogger("stockledger.events")

_OUTCOME_BY_EVENT = {
    "success": "SUCCEEDED",
    "rejected": "INVALID",
    "conflict": "CONFLICT",
    "failure": "FAILED",
}


class MetricsStockEventSink:
    """
    默认事件出口：Prometheus 计数 + 耗时直方图，并以 debug 级别落一条结构化日志。
    fields 中的 elapsed（秒）只在终态事件上出现。
    """

    def emit(self, event: str, **fields: Any) -> None:
        stock_adjust_events_total.labels(event).inc()
        outcome = _OUTCOME_BY_EVENT.get(event)
        elapsed = fields.get("elapsed")
        if outcome is not None and elapsed is not None:
            stock_adjust_duration.labels(outcome).observe(float(elapsed))
        log.debug("stock event %s", event, extra={"event": event, **fields})


class NullStockEventSink:
    def emit(self, event: str, **fields: Any) -> None:
        return None
