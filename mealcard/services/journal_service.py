"""
资金流水服务
只追加的资金变动记录，与账本操作在同一事务中写入

业务规则：
- 每次资金变动写一行流水
- 创建后不可修改，唯一例外是 pending -> completed/failed 的状态定稿
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from ..config.settings import settings
from ..core.database import DatabaseManager, db_manager, fetch_one_dict, rows_to_dicts
from ..core.exceptions import InvalidStateError, TransactionNotFoundError, ValidationError
from ..models.transaction import Transaction, TransactionStatus, TransactionType

logger = logging.getLogger(__name__)

_COLUMNS = "id, user_id, amount, type, method, status, reference_id, created_at"


def parse_money(value, field: str = "amount", allow_zero: bool = False) -> Decimal:
    """
    校验金额并规范到分

    精度超过 currency_quantum 或超过 max_amount 的金额直接拒绝，不做截断。
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("金额格式无效", details={field: str(value)})
    if not amount.is_finite():
        raise ValidationError("金额格式无效", details={field: str(value)})
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError("金额必须大于0", details={field: str(value)})
    if amount > settings.max_amount:
        raise ValidationError("金额超出上限", details={field: str(value), "max": str(settings.max_amount)})
    quantized = amount.quantize(settings.currency_quantum)
    if quantized != amount:
        raise ValidationError("金额精度超出范围", details={field: str(value)})
    return quantized


class TransactionJournal:
    """流水服务"""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager

    def append(self, user_id: int, amount, txn_type: TransactionType, method: Optional[str],
               status: TransactionStatus = TransactionStatus.COMPLETED,
               reference_id: Optional[str] = None) -> int:
        """单独写入一条流水（自带事务）"""
        with self.db.transaction() as con:
            return self.record(con, user_id, amount, txn_type, method, status, reference_id)

    def record(self, con, user_id: int, amount, txn_type: TransactionType, method: Optional[str],
               status: TransactionStatus = TransactionStatus.COMPLETED,
               reference_id: Optional[str] = None) -> int:
        """
        在调用方的事务内追加流水

        只校验必填字段，不做业务校验。

        Returns:
            int: 流水ID
        """
        if user_id is None:
            raise ValidationError("流水缺少用户ID")
        if amount is None:
            raise ValidationError("流水缺少金额")
        try:
            txn_type = TransactionType(txn_type)
            status = TransactionStatus(status)
        except ValueError as e:
            raise ValidationError(f"流水类型或状态无效: {e}")

        return con.execute(
            "INSERT INTO transactions(user_id, amount, type, method, status, reference_id) "
            "VALUES (?,?,?,?,?,?) RETURNING id",
            [user_id, Decimal(str(amount)), txn_type.value, method, status.value, reference_id],
        ).fetchone()[0]

    def finalize(self, transaction_id: int, status: TransactionStatus) -> Transaction:
        """把 pending 流水定稿为 completed 或 failed"""
        status = TransactionStatus(status)
        if status == TransactionStatus.PENDING:
            raise ValidationError("流水只能定稿为 completed 或 failed")

        with self.db.transaction() as con:
            current = con.execute(
                "SELECT status FROM transactions WHERE id=?", [transaction_id]
            ).fetchone()
            if not current:
                raise TransactionNotFoundError(transaction_id)
            if current[0] != TransactionStatus.PENDING.value:
                raise InvalidStateError(
                    "流水已定稿，不可修改",
                    details={"transaction_id": transaction_id, "status": current[0]},
                )
            con.execute(
                "UPDATE transactions SET status=? WHERE id=? AND status='pending'",
                [status.value, transaction_id],
            )
        logger.info("transaction %s finalized as %s", transaction_id, status.value)
        return self.get(transaction_id)

    def get(self, transaction_id: int) -> Transaction:
        row = fetch_one_dict(self.db.get_connection().execute(
            f"SELECT {_COLUMNS} FROM transactions WHERE id=?", [transaction_id]
        ))
        if not row:
            raise TransactionNotFoundError(transaction_id)
        return Transaction(**row)

    def list_for_user(self, user_id: int, limit: int = 50, offset: int = 0) -> List[Transaction]:
        """用户自己的流水，按时间倒序"""
        cursor = self.db.get_connection().execute(
            f"SELECT {_COLUMNS} FROM transactions WHERE user_id=? "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            [user_id, limit, offset],
        )
        return [Transaction(**row) for row in rows_to_dicts(cursor)]

    def list_all(self, limit: int = 100, offset: int = 0) -> List[Transaction]:
        """管理员审计用，全部流水按时间倒序"""
        cursor = self.db.get_connection().execute(
            f"SELECT {_COLUMNS} FROM transactions ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            [limit, offset],
        )
        return [Transaction(**row) for row in rows_to_dicts(cursor)]
