"""
订阅账本相关数据模型
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .base import BaseEntity, TimestampMixin


class SubscriptionStatus(str, Enum):
    """订阅状态枚举"""
    ACTIVE = "Active"        # 可用
    DEPLETED = "Depleted"    # 餐数用完（终态）
    EXPIRED = "Expired"      # 已过期（终态，读取时惰性计算）
    TRANSFER = "Transfer"    # 转赠来源标记，当前转赠生成的订阅以 Active 保存


TRANSFER_PAYMENT_METHOD = "transfer"


class Subscription(BaseEntity):
    """订阅完整模型

    status 为读取时的有效状态：已存为 Active 但 expiry_date 已过的订阅
    会显示为 Expired。
    """
    id: int = Field(..., description="订阅ID")
    student_id: int = Field(..., description="学生ID")
    restaurant_id: int = Field(..., description="餐厅ID")
    plan_id: Optional[int] = Field(None, description="套餐ID")
    start_date: datetime = Field(..., description="开始时间")
    expiry_date: datetime = Field(..., description="过期时间")
    duration_days: int = Field(..., description="有效天数")
    total_plates: int = Field(..., ge=0, description="总餐数（转赠后可降至已用餐数）")
    used_plates: int = Field(0, ge=0, description="已用餐数")
    price_paid: Decimal = Field(Decimal("0"), ge=0, description="实付金额")
    payment_method: Optional[str] = Field(None, description="支付方式")
    payment_phone: Optional[str] = Field(None, description="支付手机号")
    status: SubscriptionStatus = Field(..., description="状态")
    used_meals: List[int] = Field(default_factory=list, description="已消费的餐序号")

    @property
    def remaining_plates(self) -> int:
        """剩余餐数"""
        return self.total_plates - self.used_plates

    @property
    def is_transfer(self) -> bool:
        """是否由转赠生成"""
        return self.payment_method == TRANSFER_PAYMENT_METHOD


class MealUsageLogEntry(BaseEntity, TimestampMixin):
    """单餐消费记录（只追加）"""
    id: int
    subscription_id: int
    student_id: int
    restaurant_id: int
    meal_index: int = Field(..., ge=0, description="第几餐（从0开始）")


class ConsumeResult(BaseModel):
    """扣餐结果"""
    subscription_id: int
    used_plates: int
    total_plates: int
    status: SubscriptionStatus
    meal_indices: List[int] = Field(..., description="本次新增的餐序号")

