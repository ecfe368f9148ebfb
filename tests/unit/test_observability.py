# tests/unit/test_observability.py
import json
import logging

from prometheus_client import REGISTRY

from app.core.logging import JsonFormatter
from app.obs.stock_events import MetricsStockEventSink


def _sample(name: str, labels: dict) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_metrics_sink_counts_events_and_observes_terminal_durations():
    sink = MetricsStockEventSink()
    before_attempt = _sample("stock_adjust_events_total", {"event": "attempt"})
    before_conflict = _sample("stock_adjust_events_total", {"event": "conflict"})
    before_obs = _sample("stock_adjust_duration_seconds_count", {"outcome": "CONFLICT"})

    sink.emit("attempt", variant_id="v", warehouse_id="w", delta=1)
    sink.emit("conflict", variant_id="v", warehouse_id="w", delta=1, elapsed=0.01)

    assert _sample("stock_adjust_events_total", {"event": "attempt"}) == before_attempt + 1
    assert _sample("stock_adjust_events_total", {"event": "conflict"}) == before_conflict + 1
    assert (
        _sample("stock_adjust_duration_seconds_count", {"outcome": "CONFLICT"}) == before_obs + 1
    )


def test_json_formatter_emits_extra_fields():
    record = logging.makeLogRecord(
        {
            "name": "stockledger.engine",
            "levelname": "INFO",
            "levelno": logging.INFO,
            "msg": "stock adjusted",
            "variant_id": "v-1",
            "new_version": 3,
        }
    )
    out = json.loads(JsonFormatter().format(record))

    assert out["level"] == "INFO"
    assert out["logger"] == "stockledger.engine"
    assert out["message"] == "stock adjusted"
    assert out["fields"] == {"variant_id": "v-1", "new_version": 3}
