"""
订单相关数据模型
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Set

from pydantic import Field

from .base import BaseEntity, TimestampMixin


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PENDING = "pending"     # 待处理
    APPROVED = "approved"   # 已接单
    REJECTED = "rejected"   # 已拒绝（终态，退款）
    SERVED = "served"       # 已出餐（终态，扣餐）


ORDER_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.APPROVED, OrderStatus.REJECTED, OrderStatus.SERVED},
    OrderStatus.APPROVED: {OrderStatus.REJECTED, OrderStatus.SERVED},
    OrderStatus.REJECTED: set(),
    OrderStatus.SERVED: set(),
}

OPEN_ORDER_STATUSES = (OrderStatus.PENDING.value, OrderStatus.APPROVED.value)


class Order(BaseEntity, TimestampMixin):
    """订单完整模型"""
    id: int = Field(..., description="订单ID")
    student_id: int = Field(..., description="学生ID")
    restaurant_id: int = Field(..., description="餐厅ID")
    subscription_id: Optional[int] = Field(None, description="关联订阅ID")
    plates: int = Field(..., gt=0, description="餐数")
    amount: Decimal = Field(Decimal("0"), description="已扣餐费")
    status: OrderStatus = Field(..., description="订单状态")
    updated_at: Optional[datetime] = None
