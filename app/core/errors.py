# app/core/errors.py
"""
进程级错误分类（error taxonomy）

每个业务/基础设施错误都带：
  - category   ：稳定的机器可读分类（对外 Problem.error_code）
  - http_status：建议的 HTTP 状态码
  - message    ：人类可读说明
InternalError 额外通过 __cause__ 携带底层异常（驱动错误、超时等）。
"""

from __future__ import annotations

from typing import Optional, Tuple


class AppError(Exception):
    category = "APP_ERROR"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.category}: {self.message}"


class ValidationError(AppError):
    """入参不合法，或调整会导致负库存。调用方必须修正请求，不可自动重试。"""

    category = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(AppError):
    category = "NOT_FOUND"
    http_status = 404


class ConflictError(AppError):
    """
    并发冲突（版本号不匹配 / 唯一约束竞争）。
    可以针对最新状态重放同一个 delta；不能重放旧的绝对数量。
    """

    category = "CONFLICT"
    http_status = 409


class InternalError(AppError):
    """存储不可用、超过截止时间、事务失败。原始异常见 __cause__。"""

    category = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


def db_error(message: str, exc: BaseException) -> InternalError:
    """存储层失败的快捷构造：消息里带上驱动错误摘要。"""
    return InternalError(f"{message} (DB): {exc}", cause=exc)


UNKNOWN_ERROR = "UNKNOWN_ERROR"


def map_to_http_status(exc: BaseException) -> Tuple[int, str, str]:
    """
    错误 → (http_status, category, message)。
    未分类异常一律按 500 UNKNOWN_ERROR 处理，不泄露内部细节。
    """
    if isinstance(exc, AppError):
        return exc.http_status, exc.category, exc.message
    return 500, UNKNOWN_ERROR, "an unexpected error occurred"
