"""
订单服务模块
学生向餐厅点餐、餐厅处理订单；订单与订阅账本、钱包在这里耦合

主要功能：
- 下单：校验订阅可用和剩余餐数，按餐分摊从餐费钱包扣款
- 接单 / 拒单（退款） / 出餐（扣餐）
- 订单查询

业务规则：
- 下单时不扣餐，出餐(served)时才调用账本扣餐
- 下单可用餐数 = 剩余餐数 - 未完结订单（pending/approved）已占用的餐数
- 扣款金额 = price_paid / total_plates * plates，四舍五入到分
- served 与 rejected 为终态
- 所需的实体锁一次性通过 entity_locks 按固定顺序获取
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from ..config.settings import settings
from ..core.database import DatabaseManager, db_manager, fetch_one_dict, rows_to_dicts
from ..core.exceptions import (
    ConcurrencyConflictError,
    InsufficientCapacityError,
    OrderNotFoundError,
    OrderStatusError,
    SubscriptionNotFoundError,
    ValidationError,
)
from ..core.locks import entity_locks, order_key, profile_key, subscription_key
from ..core.retry import retry_on_conflict
from ..models.account import WalletName
from ..models.order import ORDER_TRANSITIONS, Order, OrderStatus
from ..models.transaction import TransactionType
from .ledger_service import SubscriptionLedger
from .oplog import record_operation
from .wallet_service import WalletManager

logger = logging.getLogger(__name__)

_ORDER_COLUMNS = "id, student_id, restaurant_id, subscription_id, plates, amount, status, created_at, updated_at"


def prorate_cost(price_paid: Decimal, total_plates: int, plates: int) -> Decimal:
    """按餐分摊订阅实付金额"""
    if total_plates <= 0:
        return Decimal("0")
    cost = Decimal(price_paid) / Decimal(total_plates) * Decimal(plates)
    return cost.quantize(settings.currency_quantum, rounding=ROUND_HALF_UP)


class OrderService:
    """订单服务类，封装所有订单相关的业务逻辑"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 ledger: Optional[SubscriptionLedger] = None,
                 wallets: Optional[WalletManager] = None):
        self.db = db or db_manager
        self.ledger = ledger or SubscriptionLedger(self.db)
        self.wallets = wallets or WalletManager(self.db, journal=self.ledger.journal,
                                                accounts=self.ledger.accounts)

    @retry_on_conflict()
    def place_order(self, student_id: int, restaurant_id: int, subscription_id: Optional[int],
                    plates: int) -> Order:
        """
        学生下单

        Args:
            student_id: 学生ID
            restaurant_id: 餐厅ID
            subscription_id: 关联订阅ID（可为空，为空时不扣款）
            plates: 餐数

        Returns:
            Order: 新建的 pending 订单

        Raises:
            SubscriptionNotFoundError: 订阅不存在、不属于该学生或不属于该餐厅
            InvalidStateError: 订阅已过期或已用完
            InsufficientCapacityError: 可用餐数不足
            InsufficientBalanceError: 餐费钱包余额不足
        """
        if isinstance(plates, bool) or not isinstance(plates, int) or plates <= 0:
            raise ValidationError("餐数必须为正整数", details={"plates": plates})

        with entity_locks(subscription_key(subscription_id), profile_key(student_id)):
            with self.db.transaction() as con:
                amount = Decimal("0")
                if subscription_id is not None:
                    amount = self._reserve_plates(con, student_id, restaurant_id, subscription_id, plates)
                else:
                    self.wallets.require_profile(con, student_id)

                order_id = con.execute(
                    "INSERT INTO orders(student_id, restaurant_id, subscription_id, plates, amount, status) "
                    "VALUES (?,?,?,?,?,?) RETURNING id",
                    [student_id, restaurant_id, subscription_id, plates, amount,
                     OrderStatus.PENDING.value],
                ).fetchone()[0]

                txn_id = None
                if amount > 0:
                    txn_id = self.wallets.debit_in_transaction(
                        con, student_id, WalletName.MEAL, amount, TransactionType.ORDER_PAYMENT,
                        "meal_wallet", reference_id=f"order_{order_id}",
                    )

                record_operation(con, "order_place", student_id, student_id, {
                    "order_id": order_id,
                    "restaurant_id": restaurant_id,
                    "subscription_id": subscription_id,
                    "plates": plates,
                    "amount": amount,
                    "transaction_id": txn_id,
                })

        logger.info("order %s placed by student %s (%s plates, %s charged)",
                    order_id, student_id, plates, amount)
        return self.get_order(order_id)

    def _reserve_plates(self, con, student_id: int, restaurant_id: int, subscription_id: int,
                        plates: int) -> Decimal:
        """校验订阅可用餐数，返回应扣金额"""
        row = self.ledger.load_scoped(con, subscription_id, student_id=student_id,
                                       restaurant_id=restaurant_id)
        if row is None:
            raise SubscriptionNotFoundError(subscription_id)
        self.ledger.check_consumable(row, self.ledger.clock(), requested=plates)

        available = self.ledger.available_plates(con, row)
        if plates > available:
            raise InsufficientCapacityError(plates, available)

        return prorate_cost(row["price_paid"], row["total_plates"], plates)

    @retry_on_conflict()
    def update_order_status(self, order_id: int, restaurant_id: int, status) -> Order:
        """
        餐厅更新订单状态

        served 时在同一事务内扣餐；rejected 时把已扣金额退回餐费钱包。
        """
        try:
            target = OrderStatus(status)
        except ValueError:
            raise ValidationError("订单状态无效", details={"status": str(status)})

        # 订单的学生和订阅不会变化，可以在加锁前读取以确定锁范围
        existing = self._load_order(self.db.get_connection(), order_id, restaurant_id)
        if existing is None:
            raise OrderNotFoundError(order_id)

        with entity_locks(order_key(order_id), subscription_key(existing.subscription_id),
                          profile_key(existing.student_id)):
            with self.db.transaction() as con:
                order = self._load_order(con, order_id, restaurant_id)
                current = OrderStatus(order.status)
                if target not in ORDER_TRANSITIONS[current]:
                    raise OrderStatusError(current.value, target.value)

                updated = con.execute(
                    "UPDATE orders SET status=?, updated_at=now() WHERE id=? AND status=? RETURNING id",
                    [target.value, order_id, current.value],
                ).fetchone()
                if updated is None:
                    raise ConcurrencyConflictError("订单已被并发修改", details={"order_id": order_id})

                detail = {"order_id": order_id, "from": current.value, "to": target.value}
                # 订单状态已先改为 served，扣餐时本单不再计入占用
                if target == OrderStatus.SERVED and order.subscription_id is not None:
                    consumed = self.ledger.consume_in_transaction(
                        con, order.subscription_id, order.plates,
                        student_id=order.student_id, restaurant_id=restaurant_id,
                    )
                    detail["meal_indices"] = consumed.meal_indices
                elif target == OrderStatus.REJECTED and order.amount > 0:
                    detail["refund_transaction_id"] = self.wallets.credit_in_transaction(
                        con, order.student_id, WalletName.MEAL, order.amount, TransactionType.REFUND,
                        "order_reject", reference_id=f"order_{order_id}",
                    )

                record_operation(con, "order_status", order.student_id, restaurant_id, detail)

        logger.info("order %s moved from %s to %s", order_id, current.value, target.value)
        return self.get_order(order_id)

    def get_order(self, order_id: int) -> Order:
        order = self._load_order(self.db.get_connection(), order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def list_restaurant_orders(self, restaurant_id: int) -> List[Order]:
        cursor = self.db.get_connection().execute(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE restaurant_id=? ORDER BY created_at DESC, id DESC",
            [restaurant_id],
        )
        return [Order(**row) for row in rows_to_dicts(cursor)]

    def list_student_orders(self, student_id: int) -> List[Order]:
        cursor = self.db.get_connection().execute(
            f"SELECT {_ORDER_COLUMNS} FROM orders WHERE student_id=? ORDER BY created_at DESC, id DESC",
            [student_id],
        )
        return [Order(**row) for row in rows_to_dicts(cursor)]

    def _load_order(self, con, order_id: int, restaurant_id: Optional[int] = None) -> Optional[Order]:
        sql = f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id=?"
        params: list = [order_id]
        if restaurant_id is not None:
            sql += " AND restaurant_id=?"
            params.append(restaurant_id)
        row = fetch_one_dict(con.execute(sql, params))
        return Order(**row) if row else None
