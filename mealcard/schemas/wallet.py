"""
钱包相关的请求模式
金额不在这里做正数校验，由钱包服务统一返回 VALIDATION_ERROR
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ..models.account import WalletName


class TopupRequest(BaseModel):
    wallet: WalletName = Field(..., description="目标钱包")
    amount: Decimal = Field(..., description="充值金额")
    method: str = Field("mobile_money", description="支付方式")
    reference_id: Optional[str] = Field(None, description="外部支付参考号")


class ExchangeRequest(BaseModel):
    from_wallet: WalletName = Field(..., description="源钱包")
    to_wallet: WalletName = Field(..., description="目标钱包")
    amount: Decimal = Field(..., description="互转金额")


class CardLockRequest(BaseModel):
    locked: bool = Field(..., description="是否锁定餐卡")
