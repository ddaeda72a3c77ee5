"""
用餐记录服务
每消费一餐追加一条不可变记录；客户端展示的 usedMeals 即为这里记录的餐序号集合
"""

from typing import List, Optional

from ..core.database import DatabaseManager, db_manager, rows_to_dicts
from ..models.subscription import MealUsageLogEntry


class MealUsageRecorder:
    """用餐记录"""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager

    def record_usage(self, con, subscription_id: int, student_id: int, restaurant_id: int,
                     meal_index: int) -> int:
        """
        追加一条用餐记录

        只能在扣餐事务内部调用（con 为该事务的连接），
        否则无法保证餐序号连续。(subscription_id, meal_index) 唯一索引兜底防止重复。
        """
        return con.execute(
            "INSERT INTO meal_usage_logs(subscription_id, student_id, restaurant_id, meal_index) "
            "VALUES (?,?,?,?) RETURNING id",
            [subscription_id, student_id, restaurant_id, meal_index],
        ).fetchone()[0]

    def used_meal_indices(self, subscription_id: int, con=None) -> List[int]:
        con = con or self.db.get_connection()
        rows = con.execute(
            "SELECT meal_index FROM meal_usage_logs WHERE subscription_id=? ORDER BY meal_index",
            [subscription_id],
        ).fetchall()
        return [r[0] for r in rows]

    def used_meals_by_subscription(self, subscription_ids: List[int], con=None) -> dict:
        """批量读取多个订阅的餐序号"""
        result = {sid: [] for sid in subscription_ids}
        if not subscription_ids:
            return result
        con = con or self.db.get_connection()
        placeholders = ",".join("?" for _ in subscription_ids)
        rows = con.execute(
            f"SELECT subscription_id, meal_index FROM meal_usage_logs "
            f"WHERE subscription_id IN ({placeholders}) ORDER BY subscription_id, meal_index",
            list(subscription_ids),
        ).fetchall()
        for sid, idx in rows:
            result[sid].append(idx)
        return result

    def list_entries(self, subscription_id: int) -> List[MealUsageLogEntry]:
        cursor = self.db.get_connection().execute(
            "SELECT id, subscription_id, student_id, restaurant_id, meal_index, created_at "
            "FROM meal_usage_logs WHERE subscription_id=? ORDER BY meal_index",
            [subscription_id],
        )
        return [MealUsageLogEntry(**row) for row in rows_to_dicts(cursor)]
