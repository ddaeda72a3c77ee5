"""
钱包服务
每个学生有 meal / flexie 两个钱包，所有余额变动都与流水在同一事务中提交

业务规则：
- 余额在任何已提交的操作之后都不能为负
- 钱包互转是一个事务内的扣减+增加，中途失败整体回滚
- 餐卡锁定状态由调用方检查，钱包服务不关心
"""

import logging
from decimal import Decimal
from typing import Optional

from ..config.settings import settings
from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import (
    ConcurrencyConflictError,
    InsufficientBalanceError,
    StudentNotFoundError,
    ValidationError,
)
from ..core.locks import entity_locks, profile_key
from ..core.retry import retry_on_conflict
from ..models.account import Balances, StudentProfile, WalletName
from ..models.transaction import TransactionType
from .account_service import AccountService
from .journal_service import TransactionJournal, parse_money
from .oplog import record_operation

logger = logging.getLogger(__name__)


def parse_amount(amount) -> Decimal:
    """金额必须为正数，最多两位小数"""
    return parse_money(amount)


def parse_wallet(wallet) -> WalletName:
    try:
        return WalletName(wallet)
    except ValueError:
        raise ValidationError("钱包名称无效", details={"wallet": str(wallet)})


class WalletManager:
    """钱包服务"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 journal: Optional[TransactionJournal] = None,
                 accounts: Optional[AccountService] = None):
        self.db = db or db_manager
        self.journal = journal or TransactionJournal(self.db)
        self.accounts = accounts or AccountService(self.db)

    def get_balances(self, student_id: int) -> Balances:
        profile = self.accounts.get_student_profile(student_id)
        return Balances(meal=profile.meal_wallet_balance, flexie=profile.flexie_wallet_balance)

    @retry_on_conflict()
    def credit_wallet(self, student_id: int, wallet, amount, method: str = "mobile_money",
                      reference_id: Optional[str] = None) -> Balances:
        """
        充值到指定钱包

        Args:
            student_id: 学生ID
            wallet: meal 或 flexie
            amount: 充值金额（>0）
            method: 支付方式
            reference_id: 外部支付参考号

        Returns:
            Balances: 充值后的余额
        """
        wallet = parse_wallet(wallet)
        amount = parse_amount(amount)

        with entity_locks(profile_key(student_id)):
            with self.db.transaction() as con:
                self.require_profile(con, student_id)
                self.apply_credit(con, student_id, wallet, amount)
                txn_id = self.journal.record(
                    con, student_id, amount, TransactionType.TOPUP, method,
                    reference_id=reference_id,
                )
                record_operation(con, "wallet_credit", student_id, student_id, {
                    "wallet": wallet.value, "amount": amount, "transaction_id": txn_id,
                })

        logger.info("credited %s to %s wallet of student %s", amount, wallet.value, student_id)
        return self.get_balances(student_id)

    @retry_on_conflict()
    def debit_wallet(self, student_id: int, wallet, amount,
                     txn_type: TransactionType = TransactionType.ORDER_PAYMENT,
                     method: str = "wallet", reference_id: Optional[str] = None) -> Balances:
        """
        从指定钱包扣款

        Raises:
            InsufficientBalanceError: 余额不足，余额保持不变
        """
        wallet = parse_wallet(wallet)
        amount = parse_amount(amount)

        with entity_locks(profile_key(student_id)):
            with self.db.transaction() as con:
                self.debit_in_transaction(con, student_id, wallet, amount, txn_type, method,
                                          reference_id)

        logger.info("debited %s from %s wallet of student %s", amount, wallet.value, student_id)
        return self.get_balances(student_id)

    def debit_in_transaction(self, con, student_id: int, wallet: WalletName, amount: Decimal,
                             txn_type: TransactionType, method: str,
                             reference_id: Optional[str] = None) -> int:
        """调用方已持有钱包锁并开启事务时使用；返回流水ID"""
        profile = self.require_profile(con, student_id)
        self._check_funds(profile, wallet, amount)
        self.apply_debit(con, student_id, wallet, amount)
        txn_id = self.journal.record(con, student_id, amount, txn_type, method,
                                     reference_id=reference_id)
        record_operation(con, "wallet_debit", student_id, student_id, {
            "wallet": wallet.value, "amount": amount, "transaction_id": txn_id,
        })
        return txn_id

    def credit_in_transaction(self, con, student_id: int, wallet: WalletName, amount: Decimal,
                              txn_type: TransactionType, method: str,
                              reference_id: Optional[str] = None) -> int:
        """调用方已持有钱包锁并开启事务时使用；返回流水ID"""
        self.require_profile(con, student_id)
        self.apply_credit(con, student_id, wallet, amount)
        txn_id = self.journal.record(con, student_id, amount, txn_type, method,
                                     reference_id=reference_id)
        record_operation(con, "wallet_credit", student_id, student_id, {
            "wallet": wallet.value, "amount": amount, "transaction_id": txn_id,
        })
        return txn_id

    @retry_on_conflict()
    def exchange_wallets(self, student_id: int, from_wallet, to_wallet, amount) -> Balances:
        """
        同一学生两个钱包之间互转

        Raises:
            ValidationError: 源钱包与目标钱包相同，或金额非正
            InsufficientBalanceError: 源钱包余额不足
        """
        from_wallet = parse_wallet(from_wallet)
        to_wallet = parse_wallet(to_wallet)
        amount = parse_amount(amount)
        if from_wallet == to_wallet:
            raise ValidationError("不能在同一个钱包之间互转", details={"wallet": from_wallet.value})

        with entity_locks(profile_key(student_id)):
            with self.db.transaction() as con:
                profile = self.require_profile(con, student_id)
                self._check_funds(profile, from_wallet, amount)
                self.apply_debit(con, student_id, from_wallet, amount)
                self.apply_credit(con, student_id, to_wallet, amount)
                txn_id = self.journal.record(
                    con, student_id, amount, TransactionType.TRANSFER, "wallet_exchange",
                    reference_id=f"exchange_{from_wallet.value}_{to_wallet.value}",
                )
                record_operation(con, "wallet_exchange", student_id, student_id, {
                    "from": from_wallet.value, "to": to_wallet.value,
                    "amount": amount, "transaction_id": txn_id,
                })

        logger.info("student %s exchanged %s from %s to %s",
                    student_id, amount, from_wallet.value, to_wallet.value)
        return self.get_balances(student_id)

    # ---- 内部步骤 ----

    def require_profile(self, con, student_id: int) -> StudentProfile:
        profile = self.accounts.load_profile(con, student_id)
        if profile is None:
            raise StudentNotFoundError(student_id)
        return profile

    def _check_funds(self, profile: StudentProfile, wallet: WalletName, amount: Decimal):
        available = profile.balance_of(wallet)
        if available < amount:
            raise InsufficientBalanceError(wallet.value, amount, available)

    def apply_debit(self, con, student_id: int, wallet: WalletName, amount: Decimal):
        column = wallet.column
        row = con.execute(
            f"UPDATE student_profiles SET {column} = {column} - ? "
            f"WHERE user_id=? AND {column} >= ? RETURNING {column}",
            [amount, student_id, amount],
        ).fetchone()
        if row is None:
            raise ConcurrencyConflictError("钱包余额已被并发修改", details={"student_id": student_id})

    def apply_credit(self, con, student_id: int, wallet: WalletName, amount: Decimal):
        column = wallet.column
        row = con.execute(
            f"UPDATE student_profiles SET {column} = {column} + ? "
            f"WHERE user_id=? AND {column} + ? <= ? RETURNING {column}",
            [amount, student_id, amount, settings.max_amount],
        ).fetchone()
        if row is None:
            if self.accounts.load_profile(con, student_id) is None:
                raise StudentNotFoundError(student_id)
            raise ValidationError("钱包余额超出上限", details={
                "wallet": wallet.value, "amount": str(amount), "max": str(settings.max_amount),
            })
