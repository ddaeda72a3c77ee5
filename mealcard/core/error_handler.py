"""
统一错误处理模块
提供标准化的错误响应格式和异常处理器

主要功能：
- 统一的错误响应格式
- 按异常类别映射HTTP状态码
- 未知异常记录到日志
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .exceptions import (
    AuthenticationError,
    BaseApplicationError,
    CardLockedError,
    ConcurrencyConflictError,
    InsufficientBalanceError,
    InsufficientCapacityError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ErrorResponse:
    """标准错误响应格式"""

    def __init__(self, error_code: str, message: str,
                 details: Optional[Dict[str, Any]] = None,
                 http_status: int = 400):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }

    def to_json_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.http_status, content=self.to_dict())


class ErrorHandler:
    """全局错误处理器"""

    # 异常类别到HTTP状态码的映射，按顺序匹配
    ERROR_CLASS_STATUS_MAP = (
        (NotFoundError, 404),
        (InvalidStateError, 409),
        (InsufficientCapacityError, 409),
        (InsufficientBalanceError, 400),
        (ValidationError, 400),
        (ConcurrencyConflictError, 409),
        (AuthenticationError, 401),
        (PermissionDeniedError, 403),
        (CardLockedError, 423),
        (StorageError, 500),
    )

    @classmethod
    def status_for(cls, error: BaseApplicationError) -> int:
        for error_class, status in cls.ERROR_CLASS_STATUS_MAP:
            if isinstance(error, error_class):
                return status
        return 400

    @classmethod
    def handle_application_error(cls, error: BaseApplicationError) -> ErrorResponse:
        """处理应用业务异常"""
        http_status = cls.status_for(error)
        if http_status >= 500:
            logger.error("storage failure: %s", error.message)
        else:
            logger.warning("request rejected: %s %s", error.error_code, error.message)
        return ErrorResponse(
            error_code=error.error_code,
            message=error.message,
            details=error.details,
            http_status=http_status
        )

    @classmethod
    def handle_http_exception(cls, error: HTTPException) -> ErrorResponse:
        return ErrorResponse(
            error_code="HTTP_ERROR",
            message=str(error.detail),
            details={"status_code": error.status_code},
            http_status=error.status_code
        )

    @classmethod
    def handle_validation_error(cls, error: RequestValidationError) -> ErrorResponse:
        """处理请求体验证错误"""
        return ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="请求参数验证失败",
            details={"validation_errors": str(error.errors())},
            http_status=422
        )

    @classmethod
    def handle_unknown_error(cls, error: Exception) -> ErrorResponse:
        logger.exception("unhandled error: %s", type(error).__name__)
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="系统内部错误",
            details={"error_type": type(error).__name__},
            http_status=500
        )


async def application_error_handler(request: Request, exc: BaseApplicationError) -> JSONResponse:
    return ErrorHandler.handle_application_error(exc).to_json_response()


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return ErrorHandler.handle_http_exception(exc).to_json_response()


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return ErrorHandler.handle_validation_error(exc).to_json_response()


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return ErrorHandler.handle_unknown_error(exc).to_json_response()