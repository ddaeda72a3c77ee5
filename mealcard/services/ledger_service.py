"""
订阅账本服务
管理订阅的创建、扣餐、转赠以及状态流转，是整个系统唯一权威的餐数校验点

主要功能：
- 创建订阅（同时写入订阅付款流水）
- 扣餐（追加用餐记录，用完自动转为 Depleted）
- 学生之间转赠未使用的餐数
- 过期状态在读取/扣餐时惰性计算，没有后台清扫任务

业务规则：
- 0 <= used_plates <= total_plates 始终成立
- 同一订阅的读-改-写必须串行：先取实体锁再开事务，更新语句再带条件兜底
- 订阅付款不经过任何钱包，钱包只用于按餐分摊的点餐扣费
- 任一步骤失败整体回滚，不留中间状态
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Any, List, Optional

from ..core.database import DatabaseManager, db_manager, fetch_one_dict, rows_to_dicts
from ..core.exceptions import (
    ConcurrencyConflictError,
    InsufficientCapacityError,
    InsufficientUnusedPlatesError,
    RecipientNotFoundError,
    RestaurantNotFoundError,
    StudentNotFoundError,
    SubscriptionDepletedError,
    SubscriptionExpiredError,
    SubscriptionInactiveError,
    SubscriptionNotFoundError,
    ValidationError,
)
from ..core.locks import entity_locks, subscription_key
from ..core.retry import retry_on_conflict
from ..models.subscription import (
    ConsumeResult,
    Subscription,
    SubscriptionStatus,
    TRANSFER_PAYMENT_METHOD,
)
from ..models.order import OPEN_ORDER_STATUSES
from ..models.transaction import TransactionType
from .account_service import AccountService
from .journal_service import TransactionJournal, parse_money
from .oplog import record_operation
from .usage_service import MealUsageRecorder

logger = logging.getLogger(__name__)

_SUBSCRIPTION_FIELDS = (
    "id", "student_id", "restaurant_id", "plan_id", "start_date", "expiry_date", "duration_days",
    "total_plates", "used_plates", "price_paid", "payment_method", "payment_phone", "status",
)
_SUBSCRIPTION_COLUMNS = ", ".join(_SUBSCRIPTION_FIELDS)


def _positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{name}必须为正整数", details={name: value})
    return value


class SubscriptionLedger:
    """订阅账本"""

    def __init__(self, db: Optional[DatabaseManager] = None,
                 journal: Optional[TransactionJournal] = None,
                 recorder: Optional[MealUsageRecorder] = None,
                 accounts: Optional[AccountService] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.db = db or db_manager
        self.journal = journal or TransactionJournal(self.db)
        self.recorder = recorder or MealUsageRecorder(self.db)
        self.accounts = accounts or AccountService(self.db)
        self.clock = clock or datetime.now

    # ---- 创建 ----

    @retry_on_conflict()
    def create_subscription(self, student_id: int, restaurant_id: int, plan_id: Optional[int],
                            total_plates: int, price_paid, duration_days: int,
                            payment_method: str, payment_phone: Optional[str] = None) -> int:
        """
        创建订阅并记录订阅付款流水

        Args:
            student_id: 学生ID
            restaurant_id: 餐厅ID
            plan_id: 套餐ID
            total_plates: 总餐数（>0）
            price_paid: 实付金额（>=0），支付在钱包之外完成
            duration_days: 有效天数（>0）
            payment_method: 支付方式
            payment_phone: 支付手机号

        Returns:
            int: 新订阅ID
        """
        _positive_int(total_plates, "total_plates")
        _positive_int(duration_days, "duration_days")
        price_paid = parse_money(price_paid, "price_paid", allow_zero=True)

        now = self.clock()
        expiry = now + timedelta(days=duration_days)

        with self.db.transaction() as con:
            if not self.accounts.is_student(con, student_id):
                raise StudentNotFoundError(student_id)
            if not con.execute("SELECT 1 FROM restaurants WHERE id=?", [restaurant_id]).fetchone():
                raise RestaurantNotFoundError(restaurant_id)

            subscription_id = con.execute(
                "INSERT INTO subscriptions(student_id, restaurant_id, plan_id, start_date, expiry_date, "
                "duration_days, total_plates, used_plates, price_paid, payment_method, payment_phone, status) "
                "VALUES (?,?,?,?,?,?,?,0,?,?,?,?) RETURNING id",
                [student_id, restaurant_id, plan_id, now, expiry, duration_days, total_plates,
                 price_paid, payment_method, payment_phone, SubscriptionStatus.ACTIVE.value],
            ).fetchone()[0]

            txn_id = self.journal.record(
                con, student_id, price_paid, TransactionType.SUBSCRIPTION_PAYMENT, payment_method,
                reference_id=f"sub_{subscription_id}",
            )
            record_operation(con, "subscription_create", student_id, student_id, {
                "subscription_id": subscription_id,
                "restaurant_id": restaurant_id,
                "plan_id": plan_id,
                "total_plates": total_plates,
                "price_paid": price_paid,
                "expiry_date": expiry,
                "transaction_id": txn_id,
            })

        logger.info("subscription %s created for student %s (%s plates)",
                    subscription_id, student_id, total_plates)
        return subscription_id

    def subscribe_to_plan(self, student_id: int, plan_id: int, payment_method: str,
                          payment_phone: Optional[str] = None) -> int:
        """按套餐下单订阅，价格、餐数、天数均取自套餐"""
        plan = self.accounts.get_plan(plan_id)
        return self.create_subscription(
            student_id=student_id,
            restaurant_id=plan.restaurant_id,
            plan_id=plan.id,
            total_plates=plan.total_plates,
            price_paid=plan.price,
            duration_days=plan.duration_days,
            payment_method=payment_method,
            payment_phone=payment_phone,
        )

    # ---- 扣餐 ----

    @retry_on_conflict()
    def consume_plates(self, subscription_id: int, count: int, student_id: Optional[int] = None,
                       restaurant_id: Optional[int] = None) -> ConsumeResult:
        """
        扣减餐数

        student_id / restaurant_id 表示调用方的权限范围，至少提供一个。

        Raises:
            SubscriptionNotFoundError: 范围内没有该订阅
            SubscriptionExpiredError / SubscriptionDepletedError: 订阅不可用
            InsufficientCapacityError: 请求餐数超过剩余餐数
        """
        _positive_int(count, "count")
        if student_id is None and restaurant_id is None:
            raise ValidationError("扣餐必须指定学生或餐厅范围")

        with entity_locks(subscription_key(subscription_id)):
            with self.db.transaction() as con:
                result = self.consume_in_transaction(
                    con, subscription_id, count, student_id=student_id, restaurant_id=restaurant_id,
                )

        logger.info("subscription %s consumed %s plate(s), used %s/%s",
                    subscription_id, count, result.used_plates, result.total_plates)
        return result

    def redeem_for_student(self, student_id: int, subscription_id: int) -> ConsumeResult:
        """学生自助核销一餐"""
        return self.consume_plates(subscription_id, 1, student_id=student_id)

    def redeem_at_restaurant(self, restaurant_id: int, subscription_id: int) -> ConsumeResult:
        """餐厅协助核销一餐"""
        return self.consume_plates(subscription_id, 1, restaurant_id=restaurant_id)

    def consume_in_transaction(self, con, subscription_id: int, count: int,
                               student_id: Optional[int] = None,
                               restaurant_id: Optional[int] = None) -> ConsumeResult:
        """
        扣餐的事务内部分

        调用方必须已持有该订阅的实体锁并开启事务；
        用餐记录只能从这里写入。
        未完结订单占用的餐数不可扣减；出餐时订单已先改为 served，不再计入占用。
        """
        row = self.load_scoped(con, subscription_id, student_id=student_id,
                                restaurant_id=restaurant_id)
        if row is None:
            raise SubscriptionNotFoundError(subscription_id)

        now = self.clock()
        self.check_consumable(row, now, requested=count)

        previous_used = row["used_plates"]
        available = self.available_plates(con, row)
        if count > available:
            raise InsufficientCapacityError(count, available)

        updated = con.execute(
            "UPDATE subscriptions SET used_plates = used_plates + ?, "
            "status = CASE WHEN used_plates + ? = total_plates THEN 'Depleted' ELSE status END "
            "WHERE id=? AND status='Active' AND used_plates=? AND used_plates + ? <= total_plates "
            "RETURNING used_plates, total_plates, status",
            [count, count, subscription_id, previous_used, count],
        ).fetchone()
        if updated is None:
            raise ConcurrencyConflictError("订阅已被并发修改", details={"subscription_id": subscription_id})

        indices = []
        for i in range(count):
            meal_index = previous_used + i
            self.recorder.record_usage(con, subscription_id, row["student_id"],
                                       row["restaurant_id"], meal_index)
            indices.append(meal_index)

        record_operation(con, "plates_consume", row["student_id"], student_id, {
            "subscription_id": subscription_id,
            "restaurant_id": row["restaurant_id"],
            "count": count,
            "meal_indices": indices,
            "used_plates_after": updated[0],
        })

        return ConsumeResult(
            subscription_id=subscription_id,
            used_plates=updated[0],
            total_plates=updated[1],
            status=updated[2],
            meal_indices=indices,
        )

    def check_consumable(self, row: Dict[str, Any], now: datetime, requested: int = 0):
        """订阅必须为 Active 且未过期"""
        status = row["status"]
        if status == SubscriptionStatus.DEPLETED.value:
            raise SubscriptionDepletedError(row["id"], requested)
        if status != SubscriptionStatus.ACTIVE.value:
            raise SubscriptionInactiveError(row["id"], status)
        if row["expiry_date"] < now:
            raise SubscriptionExpiredError(row["id"])

    def available_plates(self, con, row: Dict[str, Any]) -> int:
        """剩余餐数减去未完结订单（pending/approved）已占用的餐数"""
        reserved = con.execute(
            "SELECT COALESCE(SUM(plates), 0) FROM orders WHERE subscription_id=? AND status IN (?,?)",
            [row["id"], *OPEN_ORDER_STATUSES],
        ).fetchone()[0]
        return max(row["total_plates"] - row["used_plates"] - int(reserved), 0)

    # ---- 转赠 ----

    @retry_on_conflict()
    def share_meals(self, sender_subscription_id: int, sender_student_id: int,
                    recipient_student_id: int, meals_to_share: int) -> int:
        """
        把未使用的餐数转赠给另一名学生

        发送方的 total_plates 减少（used_plates 不变），接收方获得一个新订阅：
        price_paid=0，payment_method='transfer'，有效期从转赠时刻起按原订阅天数计算。

        Returns:
            int: 接收方的新订阅ID
        """
        _positive_int(meals_to_share, "meals_to_share")
        if recipient_student_id == sender_student_id:
            raise ValidationError("不能把餐转赠给自己")

        with entity_locks(subscription_key(sender_subscription_id)):
            with self.db.transaction() as con:
                sender = self.load_scoped(con, sender_subscription_id,
                                           student_id=sender_student_id)
                if sender is None:
                    raise SubscriptionNotFoundError(sender_subscription_id)

                now = self.clock()
                self.check_consumable(sender, now, requested=meals_to_share)

                unused = self.available_plates(con, sender)
                if meals_to_share > unused:
                    raise InsufficientUnusedPlatesError(meals_to_share, unused)

                if not self.accounts.is_student(con, recipient_student_id):
                    raise RecipientNotFoundError(recipient_student_id)

                new_subscription_id = con.execute(
                    "INSERT INTO subscriptions(student_id, restaurant_id, plan_id, start_date, expiry_date, "
                    "duration_days, total_plates, used_plates, price_paid, payment_method, payment_phone, status) "
                    "VALUES (?,?,?,?,?,?,?,0,0,?,?,?) RETURNING id",
                    [recipient_student_id, sender["restaurant_id"], sender["plan_id"], now,
                     now + timedelta(days=sender["duration_days"]), sender["duration_days"],
                     meals_to_share, TRANSFER_PAYMENT_METHOD, TRANSFER_PAYMENT_METHOD,
                     SubscriptionStatus.ACTIVE.value],
                ).fetchone()[0]

                # 转出后剩余餐数为0时发送方订阅随之用完
                updated = con.execute(
                    "UPDATE subscriptions SET total_plates = total_plates - ?, "
                    "status = CASE WHEN used_plates = total_plates - ? THEN 'Depleted' ELSE status END "
                    "WHERE id=? AND status='Active' AND total_plates=? AND used_plates=? "
                    "RETURNING total_plates",
                    [meals_to_share, meals_to_share, sender_subscription_id,
                     sender["total_plates"], sender["used_plates"]],
                ).fetchone()
                if updated is None:
                    raise ConcurrencyConflictError(
                        "订阅已被并发修改", details={"subscription_id": sender_subscription_id}
                    )

                txn_id = self.journal.record(
                    con, sender_student_id, meals_to_share, TransactionType.TRANSFER, "meal_share",
                    reference_id=f"share_{new_subscription_id}",
                )
                record_operation(con, "meals_share", sender_student_id, sender_student_id, {
                    "sender_subscription_id": sender_subscription_id,
                    "recipient_id": recipient_student_id,
                    "recipient_subscription_id": new_subscription_id,
                    "meals_shared": meals_to_share,
                    "sender_total_plates_after": updated[0],
                    "transaction_id": txn_id,
                })

        logger.info("student %s shared %s meal(s) from subscription %s to student %s",
                    sender_student_id, meals_to_share, sender_subscription_id, recipient_student_id)
        return new_subscription_id

    # ---- 查询 ----

    def get_subscription(self, subscription_id: int, student_id: Optional[int] = None,
                         restaurant_id: Optional[int] = None) -> Subscription:
        """读取订阅，状态为按当前时间计算的有效状态"""
        con = self.db.get_connection()
        row = self.load_scoped(con, subscription_id, student_id=student_id,
                                restaurant_id=restaurant_id)
        if row is None:
            raise SubscriptionNotFoundError(subscription_id)
        return self._to_model(row, self.recorder.used_meal_indices(subscription_id, con))

    def list_student_subscriptions(self, student_id: int, active_only: bool = True) -> List[Subscription]:
        """学生首页：订阅列表，附带已用餐序号"""
        return self._list("student_id", student_id, active_only)

    def list_restaurant_subscribers(self, restaurant_id: int, active_only: bool = False) -> List[Subscription]:
        return self._list("restaurant_id", restaurant_id, active_only)

    def find_active_subscription(self, restaurant_id: int, query) -> Subscription:
        """
        餐厅按学生ID或手机号查找可用订阅

        只返回 Active、未过期、未用完的订阅。
        """
        query = str(query).strip()
        student_id = int(query) if query.isdigit() else -1
        con = self.db.get_connection()
        row = fetch_one_dict(con.execute(
            "SELECT " + ", ".join(f"s.{c}" for c in _SUBSCRIPTION_FIELDS) + " "
            "FROM subscriptions s JOIN users u ON s.student_id = u.id "
            "WHERE s.restaurant_id=? AND (u.id=? OR u.phone=?) AND s.status='Active' "
            "AND s.expiry_date >= ? AND s.used_plates < s.total_plates "
            "ORDER BY s.expiry_date LIMIT 1",
            [restaurant_id, student_id, query, self.clock()],
        ))
        if row is None:
            raise SubscriptionNotFoundError(None)
        return self._to_model(row, self.recorder.used_meal_indices(row["id"], con))

    def effective_status(self, row: Dict[str, Any], now: Optional[datetime] = None) -> str:
        now = now or self.clock()
        if row["status"] == SubscriptionStatus.ACTIVE.value and row["expiry_date"] < now:
            return SubscriptionStatus.EXPIRED.value
        return row["status"]

    # ---- 内部 ----

    def load_scoped(self, con, subscription_id: int, student_id: Optional[int] = None,
                     restaurant_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        sql = f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE id=?"
        params: list = [subscription_id]
        if student_id is not None:
            sql += " AND student_id=?"
            params.append(student_id)
        if restaurant_id is not None:
            sql += " AND restaurant_id=?"
            params.append(restaurant_id)
        return fetch_one_dict(con.execute(sql, params))

    def _list(self, column: str, value: int, active_only: bool) -> List[Subscription]:
        con = self.db.get_connection()
        cursor = con.execute(
            f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE {column}=? ORDER BY id",
            [value],
        )
        now = self.clock()
        rows = rows_to_dicts(cursor)
        if active_only:
            rows = [r for r in rows if self.effective_status(r, now) == SubscriptionStatus.ACTIVE.value]
        used = self.recorder.used_meals_by_subscription([r["id"] for r in rows], con)
        return [self._to_model(r, used[r["id"]], now) for r in rows]

    def _to_model(self, row: Dict[str, Any], used_meals: List[int],
                  now: Optional[datetime] = None) -> Subscription:
        data = dict(row)
        data["status"] = self.effective_status(row, now)
        data["used_meals"] = used_meals
        return Subscription(**data)
