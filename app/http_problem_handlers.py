# app/http_problem_handlers.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.problem import make_problem
from app.core.errors import AppError, map_to_http_status

logger = logging.getLogger("stockledger.http")


def _new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def _ctx(req: Request) -> Dict[str, Any]:
    return {"path": getattr(req.url, "path", ""), "method": req.method}


def register_exception_handlers(app: FastAPI) -> None:
    """
    统一错误出口（Problem 形状）：
    - AppError               → 按分类映射（400 / 404 / 409 / 500），error_code = category
    - RequestValidationError → 422 request_validation_error
    - HTTPException          → 原状态码，error_code = http_error
    - 其它                   → 500 UNKNOWN_ERROR
    """

    @app.exception_handler(AppError)
    async def _app_error(req: Request, exc: AppError):
        status, category, message = map_to_http_status(exc)
        trace_id = _new_trace_id()
        if status >= 500:
            logger.error("APP_ERROR[%s] %s: %s", trace_id, category, exc, exc_info=exc.__cause__)
        else:
            logger.debug("request rejected [%s] status=%d category=%s", trace_id, status, category)
        content = make_problem(
            status_code=status,
            error_code=category,
            message=message,
            context=_ctx(req),
            trace_id=trace_id,
        )
        return JSONResponse(status_code=status, content=content)

    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = _new_trace_id()
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        status, category, message = map_to_http_status(exc)
        content = make_problem(
            status_code=status,
            error_code=category,
            message=message,
            context=_ctx(req),
            trace_id=trace_id,
        )
        return JSONResponse(status_code=status, content=content)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        details: List[Dict[str, Any]] = []
        for e in exc.errors():
            if not isinstance(e, dict):
                continue
            loc = e.get("loc") or ()
            details.append(
                {
                    "type": "validation",
                    "path": ".".join(str(p) for p in loc),
                    "reason": str(e.get("msg") or e.get("type") or "invalid"),
                }
            )
        content = make_problem(
            status_code=422,
            error_code="request_validation_error",
            message="invalid request payload",
            context=_ctx(req),
            details=details,
            trace_id=_new_trace_id(),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        status_code = int(exc.status_code)
        content = make_problem(
            status_code=status_code,
            error_code="http_error",
            message=str(exc.detail) if exc.detail is not None else "request rejected",
            context=_ctx(req),
            trace_id=_new_trace_id(),
        )
        return JSONResponse(status_code=status_code, content=content)
