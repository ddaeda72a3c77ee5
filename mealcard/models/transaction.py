"""
资金流水数据模型
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import Field

from .base import BaseEntity, TimestampMixin


class TransactionType(str, Enum):
    """流水类型枚举"""
    TOPUP = "topup"                                # 充值
    SUBSCRIPTION_PAYMENT = "subscription_payment"  # 订阅付款
    TRANSFER = "transfer"                          # 转赠 / 钱包互转
    ORDER_PAYMENT = "order_payment"                # 点餐扣费
    REFUND = "refund"                              # 退款


class TransactionStatus(str, Enum):
    """流水状态枚举"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(BaseEntity, TimestampMixin):
    """流水记录"""
    id: int = Field(..., description="流水ID")
    user_id: int = Field(..., description="用户ID")
    amount: Decimal = Field(..., description="金额")
    type: TransactionType = Field(..., description="类型")
    method: Optional[str] = Field(None, description="支付方式")
    status: TransactionStatus = Field(..., description="状态")
    reference_id: Optional[str] = Field(None, description="关联引用")
