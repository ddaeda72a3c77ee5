"""
通用响应模式
"""

from typing import Any, Dict

from pydantic import BaseModel, Field


class ErrorEnvelope(BaseModel):
    """错误响应格式，与 core.error_handler 输出一致"""
    success: bool = Field(False, description="请求失败")
    error_code: str = Field(description="错误码")
    message: str = Field(description="错误消息")
    details: Dict[str, Any] = Field(default_factory=dict, description="错误详情")

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "error_code": "INSUFFICIENT_BALANCE",
                "message": "meal钱包余额不足",
                "details": {"wallet": "meal", "requested": "20.00", "available": "5.00"}
            }
        }
    }


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str


ERROR_RESPONSES = {
    status: {"model": ErrorEnvelope}
    for status in (400, 401, 403, 404, 409, 423, 500)
}
