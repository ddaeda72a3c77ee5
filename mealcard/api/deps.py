"""
路由层依赖：按请求构造服务，并在钱包类操作前校验餐卡锁定
"""

from fastapi import Depends

from ..core.database import DatabaseManager, get_db
from ..core.exceptions import CardLockedError, PermissionDeniedError
from ..core.security import CurrentUser, require_restaurant, require_student
from ..models.account import Restaurant
from ..services import (
    AccountService,
    ConsistencyService,
    OrderService,
    SubscriptionLedger,
    TransactionJournal,
    WalletManager,
)


def get_accounts(db: DatabaseManager = Depends(get_db)) -> AccountService:
    return AccountService(db)


def get_journal(db: DatabaseManager = Depends(get_db)) -> TransactionJournal:
    return TransactionJournal(db)


def get_ledger(db: DatabaseManager = Depends(get_db)) -> SubscriptionLedger:
    return SubscriptionLedger(db)


def get_wallets(db: DatabaseManager = Depends(get_db)) -> WalletManager:
    return WalletManager(db)


def get_orders(db: DatabaseManager = Depends(get_db)) -> OrderService:
    return OrderService(db)


def get_consistency(db: DatabaseManager = Depends(get_db)) -> ConsistencyService:
    return ConsistencyService(db)


def require_unlocked_card(user: CurrentUser = Depends(require_student),
                          accounts: AccountService = Depends(get_accounts)) -> CurrentUser:
    """餐卡锁定时拒绝充值、互转和下单"""
    profile = accounts.get_student_profile(user.user_id)
    if profile.card_locked:
        raise CardLockedError(user.user_id)
    return user


def get_current_restaurant(user: CurrentUser = Depends(require_restaurant),
                           accounts: AccountService = Depends(get_accounts)) -> Restaurant:
    restaurant = accounts.get_restaurant_by_owner(user.user_id)
    if restaurant is None:
        raise PermissionDeniedError("该账号没有关联餐厅", details={"user_id": user.user_id})
    return restaurant
