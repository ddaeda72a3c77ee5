"""
自定义异常类
账本核心的错误分类，业务错误与存储错误严格区分
"""

from typing import Any, Dict, Optional


class BaseApplicationError(Exception):
    """应用基础异常类"""

    default_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(self.message)


# ---- NotFound ----

class NotFoundError(BaseApplicationError):
    """引用的对象不存在或不在调用方的权限范围内"""
    default_code = "RESOURCE_NOT_FOUND"


class SubscriptionNotFoundError(NotFoundError):
    default_code = "SUBSCRIPTION_NOT_FOUND"

    def __init__(self, subscription_id: Any = None):
        super().__init__("订阅不存在", details={"subscription_id": subscription_id})


class StudentNotFoundError(NotFoundError):
    default_code = "STUDENT_NOT_FOUND"

    def __init__(self, student_id: Any = None):
        super().__init__("学生不存在", details={"student_id": student_id})


class RecipientNotFoundError(NotFoundError):
    """接收方不存在或不是学生"""
    default_code = "RECIPIENT_NOT_FOUND"

    def __init__(self, recipient_id: Any = None):
        super().__init__("接收方学生不存在", details={"recipient_id": recipient_id})


class RestaurantNotFoundError(NotFoundError):
    default_code = "RESTAURANT_NOT_FOUND"

    def __init__(self, restaurant_id: Any = None):
        super().__init__("餐厅不存在", details={"restaurant_id": restaurant_id})


class PlanNotFoundError(NotFoundError):
    default_code = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: Any = None):
        super().__init__("套餐不存在或已下架", details={"plan_id": plan_id})


class OrderNotFoundError(NotFoundError):
    default_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: Any = None):
        super().__init__("订单不存在", details={"order_id": order_id})


class TransactionNotFoundError(NotFoundError):
    default_code = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: Any = None):
        super().__init__("交易记录不存在", details={"transaction_id": transaction_id})


# ---- InvalidState ----

class InvalidStateError(BaseApplicationError):
    """对象当前状态不允许该操作"""
    default_code = "INVALID_STATE"


class SubscriptionExpiredError(InvalidStateError):
    default_code = "SUBSCRIPTION_EXPIRED"

    def __init__(self, subscription_id: Any = None):
        super().__init__("订阅已过期", details={"subscription_id": subscription_id})


class SubscriptionInactiveError(InvalidStateError):
    default_code = "SUBSCRIPTION_INACTIVE"

    def __init__(self, subscription_id: Any = None, status: str = None):
        super().__init__(
            f"订阅状态为{status}，无法操作",
            details={"subscription_id": subscription_id, "status": status}
        )


class OrderStatusError(InvalidStateError):
    default_code = "ORDER_STATUS_TRANSITION_INVALID"

    def __init__(self, current: str, target: str):
        super().__init__(
            f"订单状态无法从{current}变更为{target}",
            details={"current": current, "target": target}
        )


# ---- InsufficientCapacity ----

class InsufficientCapacityError(BaseApplicationError):
    """请求的餐数超过剩余餐数"""
    default_code = "INSUFFICIENT_PLATES"

    def __init__(self, requested: int, remaining: int, message: str = "剩余餐数不足"):
        super().__init__(message, details={"requested": requested, "remaining": remaining})


class InsufficientUnusedPlatesError(InsufficientCapacityError):
    default_code = "INSUFFICIENT_UNUSED_PLATES"

    def __init__(self, requested: int, remaining: int):
        super().__init__(requested, remaining, message="未使用的餐数不足以转赠")


class SubscriptionDepletedError(InvalidStateError, InsufficientCapacityError):
    """订阅餐次已用完：既是状态错误，也是剩余餐数不足"""
    default_code = "SUBSCRIPTION_DEPLETED"

    def __init__(self, subscription_id: Any = None, requested: int = 0):
        BaseApplicationError.__init__(
            self,
            "订阅餐次已用完",
            details={"subscription_id": subscription_id, "requested": requested, "remaining": 0}
        )


# ---- InsufficientBalance ----

class InsufficientBalanceError(BaseApplicationError):
    """钱包余额不足"""
    default_code = "INSUFFICIENT_BALANCE"

    def __init__(self, wallet: str, requested: Any, available: Any):
        super().__init__(
            f"{wallet}钱包余额不足",
            details={"wallet": wallet, "requested": str(requested), "available": str(available)}
        )


# ---- Validation ----

class ValidationError(BaseApplicationError):
    """数据验证异常"""
    default_code = "VALIDATION_ERROR"


# ---- Concurrency / Storage ----

class ConcurrencyConflictError(BaseApplicationError):
    """乐观更新失败，调用方可重试"""
    default_code = "CONCURRENCY_CONFLICT"


class StorageError(BaseApplicationError):
    """存储层异常，与业务规则错误区分"""
    default_code = "STORAGE_ERROR"


# ---- HTTP 协作层 ----

class AuthenticationError(BaseApplicationError):
    """认证相关异常"""
    default_code = "AUTHENTICATION_REQUIRED"


class PermissionDeniedError(BaseApplicationError):
    """权限拒绝错误"""
    default_code = "PERMISSION_DENIED"


class CardLockedError(BaseApplicationError):
    """餐卡已锁定"""
    default_code = "CARD_LOCKED"

    def __init__(self, student_id: Any = None):
        super().__init__("餐卡已锁定，请先解锁", details={"student_id": student_id})
