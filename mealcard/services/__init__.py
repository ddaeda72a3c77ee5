"""
Business logic services.
Contains service layer implementations for the subscription ledger and wallets.
"""

from .account_service import AccountService
from .consistency_service import ConsistencyService
from .journal_service import TransactionJournal
from .ledger_service import SubscriptionLedger
from .order_service import OrderService
from .usage_service import MealUsageRecorder
from .wallet_service import WalletManager

__all__ = [
    "AccountService",
    "ConsistencyService",
    "MealUsageRecorder",
    "OrderService",
    "SubscriptionLedger",
    "TransactionJournal",
    "WalletManager",
]
