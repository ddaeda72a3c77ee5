"""
餐厅端路由
订阅用户查询、协助核销、订单处理
"""

from typing import List

from fastapi import APIRouter, Depends

from ...models.account import Restaurant
from ...models.order import Order
from ...models.subscription import ConsumeResult, Subscription
from ...schemas.order import OrderResponse, OrderStatusUpdateRequest
from ...schemas.subscription import RedeemRequest, SubscriberSearchRequest
from ...services import OrderService, SubscriptionLedger
from ..deps import get_current_restaurant, get_ledger, get_orders

router = APIRouter()


@router.get("/subscribers", response_model=List[Subscription])
def list_subscribers(active_only: bool = False,
                     restaurant: Restaurant = Depends(get_current_restaurant),
                     ledger: SubscriptionLedger = Depends(get_ledger)):
    return ledger.list_restaurant_subscribers(restaurant.id, active_only=active_only)


@router.post("/subscribers/search", response_model=Subscription)
def search_subscriber(req: SubscriberSearchRequest,
                      restaurant: Restaurant = Depends(get_current_restaurant),
                      ledger: SubscriptionLedger = Depends(get_ledger)):
    """按学生ID或手机号查找该餐厅下可用的订阅"""
    return ledger.find_active_subscription(restaurant.id, req.query)


@router.post("/subscribers/use-meal", response_model=ConsumeResult)
def use_meal(req: RedeemRequest, restaurant: Restaurant = Depends(get_current_restaurant),
             ledger: SubscriptionLedger = Depends(get_ledger)):
    return ledger.redeem_at_restaurant(restaurant.id, req.subscription_id)


@router.get("/orders", response_model=List[Order])
def list_orders(restaurant: Restaurant = Depends(get_current_restaurant),
                orders: OrderService = Depends(get_orders)):
    return orders.list_restaurant_orders(restaurant.id)


@router.patch("/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(order_id: int, req: OrderStatusUpdateRequest,
                        restaurant: Restaurant = Depends(get_current_restaurant),
                        orders: OrderService = Depends(get_orders)):
    """接单 / 拒单（退款） / 出餐（扣餐）"""
    order = orders.update_order_status(order_id, restaurant.id, req.status)
    return OrderResponse(order_id=order.id, status=order.status, plates=order.plates,
                         amount=order.amount)
