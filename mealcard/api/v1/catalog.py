"""
餐厅与套餐浏览路由（只读）
学生通过这里找到订阅所需的 plan_id
"""

from typing import List

from fastapi import APIRouter, Depends

from ...core.security import CurrentUser, get_current_user
from ...models.account import MealPlan, Restaurant
from ...services import AccountService
from ..deps import get_accounts

router = APIRouter()


@router.get("", response_model=List[Restaurant])
def list_restaurants(user: CurrentUser = Depends(get_current_user),
                     accounts: AccountService = Depends(get_accounts)):
    return accounts.list_restaurants()


@router.get("/{restaurant_id}/plans", response_model=List[MealPlan])
def list_restaurant_plans(restaurant_id: int,
                          user: CurrentUser = Depends(get_current_user),
                          accounts: AccountService = Depends(get_accounts)):
    """餐厅当前可订阅的套餐"""
    accounts.get_restaurant(restaurant_id)
    return accounts.list_plans(restaurant_id, active_only=True)
