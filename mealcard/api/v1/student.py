"""
学生端路由
首页、订阅、核销、转赠、点餐、钱包与餐卡锁定
"""

from fastapi import APIRouter, Depends

from ...core.exceptions import RecipientNotFoundError
from ...core.security import CurrentUser, require_student
from ...models.account import Balances, StudentProfile
from ...models.subscription import ConsumeResult
from ...schemas.order import OrderCreateRequest, OrderResponse
from ...schemas.subscription import (
    DashboardResponse,
    RedeemRequest,
    ShareRequest,
    ShareResponse,
    SubscribeRequest,
    SubscribeResponse,
)
from ...schemas.wallet import CardLockRequest, ExchangeRequest, TopupRequest
from ...services import AccountService, OrderService, SubscriptionLedger, WalletManager
from ..deps import get_accounts, get_ledger, get_orders, get_wallets, require_unlocked_card

router = APIRouter()


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(user: CurrentUser = Depends(require_student),
                  accounts: AccountService = Depends(get_accounts),
                  ledger: SubscriptionLedger = Depends(get_ledger)):
    """学生首页：钱包余额与可用订阅（附已用餐序号）"""
    return DashboardResponse(
        profile=accounts.get_student_profile(user.user_id),
        subscriptions=ledger.list_student_subscriptions(user.user_id, active_only=True),
    )


@router.post("/subscribe", response_model=SubscribeResponse)
def subscribe(req: SubscribeRequest, user: CurrentUser = Depends(require_student),
              ledger: SubscriptionLedger = Depends(get_ledger)):
    subscription_id = ledger.subscribe_to_plan(
        user.user_id, req.plan_id, req.payment_method, req.payment_phone
    )
    return SubscribeResponse(subscription_id=subscription_id)


@router.post("/redeem", response_model=ConsumeResult)
def redeem_meal(req: RedeemRequest, user: CurrentUser = Depends(require_student),
                ledger: SubscriptionLedger = Depends(get_ledger)):
    """学生自助核销一餐"""
    return ledger.redeem_for_student(user.user_id, req.subscription_id)


@router.post("/share", response_model=ShareResponse)
def share_meals(req: ShareRequest, user: CurrentUser = Depends(require_student),
                accounts: AccountService = Depends(get_accounts),
                ledger: SubscriptionLedger = Depends(get_ledger)):
    """把未使用的餐数转赠给另一名学生"""
    recipient = accounts.find_student(req.recipient)
    if recipient is None:
        raise RecipientNotFoundError(req.recipient)
    new_id = ledger.share_meals(req.subscription_id, user.user_id, recipient.id, req.meals)
    return ShareResponse(recipient_subscription_id=new_id)


@router.post("/orders", response_model=OrderResponse)
def place_order(req: OrderCreateRequest, user: CurrentUser = Depends(require_unlocked_card),
                orders: OrderService = Depends(get_orders)):
    order = orders.place_order(user.user_id, req.restaurant_id, req.subscription_id, req.plates)
    balances = orders.wallets.get_balances(user.user_id)
    return OrderResponse(
        order_id=order.id,
        status=order.status,
        plates=order.plates,
        amount=order.amount,
        meal_balance=balances.meal,
    )


@router.post("/wallet/topup", response_model=Balances)
def topup_wallet(req: TopupRequest, user: CurrentUser = Depends(require_unlocked_card),
                 wallets: WalletManager = Depends(get_wallets)):
    return wallets.credit_wallet(user.user_id, req.wallet, req.amount,
                                 method=req.method, reference_id=req.reference_id)


@router.post("/wallet/exchange", response_model=Balances)
def exchange_wallets(req: ExchangeRequest, user: CurrentUser = Depends(require_unlocked_card),
                     wallets: WalletManager = Depends(get_wallets)):
    return wallets.exchange_wallets(user.user_id, req.from_wallet, req.to_wallet, req.amount)


@router.patch("/card-lock", response_model=StudentProfile)
def set_card_lock(req: CardLockRequest, user: CurrentUser = Depends(require_student),
                  accounts: AccountService = Depends(get_accounts)):
    return accounts.set_card_lock(user.user_id, req.locked, actor_id=user.user_id)
