"""
账本一致性检查服务
管理员只读巡检：订阅餐数、用餐记录、钱包余额与资金流水之间的对应关系
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import PermissionDeniedError
from ..models.account import UserRole
from ..models.subscription import TRANSFER_PAYMENT_METHOD
from .oplog import record_operation

logger = logging.getLogger(__name__)


class ConsistencyCheckResult:
    """一致性检查结果"""

    def __init__(self):
        self.issues: List[Dict[str, Any]] = []
        self.warnings: List[Dict[str, Any]] = []
        self.statistics: Dict[str, Any] = {}

    def add_issue(self, issue_type: str, description: str, details: Dict[str, Any] = None):
        self.issues.append({
            'type': issue_type,
            'description': description,
            'details': details or {},
            'severity': 'error',
        })

    def add_warning(self, warning_type: str, description: str, details: Dict[str, Any] = None):
        self.warnings.append({
            'type': warning_type,
            'description': description,
            'details': details or {},
            'severity': 'warning',
        })

    @property
    def healthy(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            'issues': self.issues,
            'warnings': self.warnings,
            'statistics': self.statistics,
            'summary': {
                'total_issues': len(self.issues),
                'total_warnings': len(self.warnings),
                'status': 'healthy' if self.healthy else 'issues_found',
                'checked_at': datetime.now().isoformat(),
            },
        }


class ConsistencyService:
    """账本一致性服务"""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager

    def check_ledger_consistency(self, operator_id: int) -> Dict[str, Any]:
        """
        全面的账本一致性检查

        Args:
            operator_id: 操作员ID，必须是 super_admin

        Returns:
            检查结果字典
        """
        con = self.db.get_connection()
        if not self._is_admin(con, operator_id):
            raise PermissionDeniedError("需要管理员权限", details={"operator_id": operator_id})

        result = ConsistencyCheckResult()
        result.statistics = self._collect_statistics(con)
        self._check_plate_bounds(con, result)
        self._check_usage_logs(con, result)
        self._check_depleted_status(con, result)
        self._check_wallet_balances(con, result)
        self._check_funding_transactions(con, result)
        self._check_order_payments(con, result)

        with self.db.transaction() as tx:
            record_operation(tx, "consistency_check", None, operator_id, {
                "total_issues": len(result.issues),
                "total_warnings": len(result.warnings),
            })

        if result.healthy:
            logger.info("ledger consistency check passed")
        else:
            logger.warning("ledger consistency check found %s issue(s)", len(result.issues))
        return result.to_dict()

    def _collect_statistics(self, con) -> Dict[str, Any]:
        subs = con.execute("""
            SELECT
                COUNT(*),
                COUNT(CASE WHEN status = 'Active' THEN 1 END),
                COUNT(CASE WHEN status = 'Depleted' THEN 1 END),
                COALESCE(SUM(total_plates), 0),
                COALESCE(SUM(used_plates), 0)
            FROM subscriptions
        """).fetchone()
        wallets = con.execute("""
            SELECT COUNT(*), COALESCE(SUM(meal_wallet_balance), 0), COALESCE(SUM(flexie_wallet_balance), 0)
            FROM student_profiles
        """).fetchone()
        txns = con.execute("SELECT COUNT(*) FROM transactions").fetchone()
        usage = con.execute("SELECT COUNT(*) FROM meal_usage_logs").fetchone()

        return {
            'subscriptions': {
                'total': subs[0],
                'active': subs[1],
                'depleted': subs[2],
                'total_plates': subs[3],
                'used_plates': subs[4],
            },
            'wallets': {
                'students': wallets[0],
                'meal_balance': str(wallets[1]),
                'flexie_balance': str(wallets[2]),
            },
            'transactions': txns[0],
            'meal_usage_logs': usage[0],
        }

    def _check_plate_bounds(self, con, result: ConsistencyCheckResult):
        rows = con.execute("""
            SELECT id, total_plates, used_plates FROM subscriptions
            WHERE used_plates < 0 OR used_plates > total_plates
        """).fetchall()
        for sid, total, used in rows:
            result.add_issue(
                'plate_bounds',
                f"订阅 {sid} 已用餐数越界",
                {'subscription_id': sid, 'total_plates': total, 'used_plates': used},
            )

    def _check_usage_logs(self, con, result: ConsistencyCheckResult):
        """用餐记录条数等于 used_plates，且餐序号恰好是 0..used_plates-1"""
        rows = con.execute("""
            SELECT s.id, s.used_plates,
                   COUNT(l.id) AS log_count,
                   COUNT(DISTINCT l.meal_index) AS distinct_count,
                   MIN(l.meal_index) AS min_index,
                   MAX(l.meal_index) AS max_index
            FROM subscriptions s
            LEFT JOIN meal_usage_logs l ON l.subscription_id = s.id
            GROUP BY s.id, s.used_plates
        """).fetchall()
        for sid, used, count, distinct, min_index, max_index in rows:
            if count != used:
                result.add_issue(
                    'usage_count_mismatch',
                    f"订阅 {sid} 的用餐记录数与已用餐数不一致",
                    {'subscription_id': sid, 'used_plates': used, 'log_count': count},
                )
            elif count and (distinct != count or min_index != 0 or max_index != used - 1):
                result.add_issue(
                    'usage_index_gap',
                    f"订阅 {sid} 的餐序号不连续或重复",
                    {'subscription_id': sid, 'min_index': min_index, 'max_index': max_index,
                     'distinct': distinct},
                )

    def _check_depleted_status(self, con, result: ConsistencyCheckResult):
        rows = con.execute("""
            SELECT id, status, total_plates, used_plates FROM subscriptions
            WHERE (status = 'Active' AND used_plates = total_plates)
               OR (status = 'Depleted' AND used_plates < total_plates)
        """).fetchall()
        for sid, status, total, used in rows:
            result.add_issue(
                'status_mismatch',
                f"订阅 {sid} 的状态 {status} 与餐数不符",
                {'subscription_id': sid, 'status': status, 'total_plates': total, 'used_plates': used},
            )

    def _check_wallet_balances(self, con, result: ConsistencyCheckResult):
        rows = con.execute("""
            SELECT user_id, meal_wallet_balance, flexie_wallet_balance FROM student_profiles
            WHERE meal_wallet_balance < 0 OR flexie_wallet_balance < 0
        """).fetchall()
        for user_id, meal, flexie in rows:
            result.add_issue(
                'negative_balance',
                f"学生 {user_id} 钱包余额为负",
                {'student_id': user_id, 'meal': str(meal), 'flexie': str(flexie)},
            )

    def _check_funding_transactions(self, con, result: ConsistencyCheckResult):
        """每个订阅都要有对应的付款或转赠流水"""
        rows = con.execute("""
            SELECT s.id, s.student_id, s.payment_method
            FROM subscriptions s
            LEFT JOIN transactions t ON t.reference_id = CASE
                WHEN s.payment_method = ? THEN 'share_' || CAST(s.id AS VARCHAR)
                ELSE 'sub_' || CAST(s.id AS VARCHAR) END
            WHERE t.id IS NULL
        """, [TRANSFER_PAYMENT_METHOD]).fetchall()
        for sid, student_id, method in rows:
            result.add_issue(
                'missing_funding_transaction',
                f"订阅 {sid} 缺少对应的资金流水",
                {'subscription_id': sid, 'student_id': student_id, 'payment_method': method},
            )

    def _check_order_payments(self, con, result: ConsistencyCheckResult):
        rows = con.execute("""
            SELECT o.id, o.student_id, o.amount
            FROM orders o
            LEFT JOIN transactions t
              ON t.reference_id = 'order_' || CAST(o.id AS VARCHAR) AND t.type = 'order_payment'
            WHERE o.amount > 0 AND t.id IS NULL
        """).fetchall()
        for order_id, student_id, amount in rows:
            result.add_warning(
                'missing_order_payment',
                f"订单 {order_id} 缺少扣款流水",
                {'order_id': order_id, 'student_id': student_id, 'amount': str(amount)},
            )

    def _is_admin(self, con, user_id: int) -> bool:
        row = con.execute("SELECT role FROM users WHERE id = ?", [user_id]).fetchone()
        return bool(row) and row[0] == UserRole.SUPER_ADMIN.value
