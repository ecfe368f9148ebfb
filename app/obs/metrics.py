# app/obs/metrics.py
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# 库存调整：attempt / success / rejected / conflict / failure 各自计数
stock_adjust_events_total = Counter(
    "stock_adjust_events_total", "Stock adjustment events", ["event"]
)
# 单次调整耗时（含等锁），按终态分桶
stock_adjust_duration = Histogram(
    "stock_adjust_duration_seconds", "Stock adjustment duration seconds", ["outcome"]
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        http_requests_total.labels(
            request.method, request.url.path, str(response.status_code)
        ).inc()
        http_request_duration.labels(request.method, request.url.path).observe(elapsed)
        return response
