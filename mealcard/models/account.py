"""
账户相关数据模型：用户、学生档案、餐厅、套餐
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .base import BaseEntity, TimestampMixin


class UserRole(str, Enum):
    """用户角色枚举"""
    STUDENT = "student"
    RESTAURANT = "restaurant"
    SUPER_ADMIN = "super_admin"


class WalletName(str, Enum):
    """学生钱包"""
    MEAL = "meal"        # 餐费钱包
    FLEXIE = "flexie"    # 通用钱包

    @property
    def column(self) -> str:
        return f"{self.value}_wallet_balance"


class RestaurantStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"


class User(BaseEntity, TimestampMixin):
    """用户"""
    id: int = Field(..., description="用户ID")
    username: str = Field(..., description="用户名")
    email: Optional[str] = Field(None, description="邮箱")
    phone: Optional[str] = Field(None, description="手机号")
    role: UserRole = Field(..., description="角色")


class StudentProfile(BaseEntity):
    """学生档案，钱包余额的唯一来源"""
    student_id: int = Field(..., description="学生用户ID")
    meal_wallet_balance: Decimal = Field(Decimal("0"), ge=0, description="餐费钱包余额")
    flexie_wallet_balance: Decimal = Field(Decimal("0"), ge=0, description="通用钱包余额")
    card_locked: bool = Field(False, description="餐卡是否锁定")

    def balance_of(self, wallet: WalletName) -> Decimal:
        return getattr(self, WalletName(wallet).column)


class Restaurant(BaseEntity, TimestampMixin):
    """合作餐厅"""
    id: int
    owner_user_id: int
    name: str
    status: RestaurantStatus = RestaurantStatus.APPROVED


class MealPlan(BaseEntity):
    """餐厅套餐"""
    id: int
    restaurant_id: int
    name: str
    price: Decimal = Field(..., ge=0)
    total_plates: int = Field(..., gt=0)
    duration_days: int = Field(..., gt=0)
    is_active: bool = True


class Balances(BaseModel):
    """两个钱包的余额快照"""
    meal: Decimal
    flexie: Decimal
