"""
订单相关的请求/响应模式
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ..models.order import OrderStatus


class OrderCreateRequest(BaseModel):
    """下单请求"""
    restaurant_id: int = Field(..., description="餐厅ID")
    subscription_id: Optional[int] = Field(None, description="使用的订阅ID")
    plates: int = Field(1, description="餐数")


class OrderStatusUpdateRequest(BaseModel):
    """餐厅更新订单状态"""
    status: OrderStatus = Field(..., description="目标状态")


class OrderResponse(BaseModel):
    """订单响应"""
    order_id: int = Field(..., description="订单ID")
    status: OrderStatus = Field(..., description="订单状态")
    plates: int = Field(..., description="餐数")
    amount: Decimal = Field(..., description="已扣餐费")
    meal_balance: Optional[Decimal] = Field(None, description="餐费钱包余额")
