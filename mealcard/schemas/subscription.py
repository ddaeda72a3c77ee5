"""
订阅相关的请求/响应模式
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.account import StudentProfile
from ..models.subscription import Subscription


class SubscribeRequest(BaseModel):
    """订阅套餐请求"""
    plan_id: int = Field(..., description="套餐ID")
    payment_method: str = Field("mobile_money", description="支付方式")
    payment_phone: Optional[str] = Field(None, description="支付手机号")


class SubscribeResponse(BaseModel):
    subscription_id: int = Field(..., description="新订阅ID")


class RedeemRequest(BaseModel):
    """核销一餐"""
    subscription_id: int = Field(..., description="订阅ID")


class ShareRequest(BaseModel):
    """转赠请求，接收方可以是学生ID或手机号"""
    subscription_id: int = Field(..., description="转出的订阅ID")
    recipient: str = Field(..., description="接收方学生ID或手机号")
    meals: int = Field(..., description="转赠餐数")


class ShareResponse(BaseModel):
    recipient_subscription_id: int = Field(..., description="接收方的新订阅ID")


class SubscriberSearchRequest(BaseModel):
    query: str = Field(..., description="学生ID或手机号")


class DashboardResponse(BaseModel):
    """学生首页"""
    profile: StudentProfile
    subscriptions: List[Subscription]
