"""
账户存储服务
用户、学生档案、合作餐厅和套餐的持久化记录，钱包余额的唯一来源
"""

import logging
from typing import List, Optional

from ..core.database import DatabaseManager, db_manager, fetch_one_dict, rows_to_dicts
from ..core.exceptions import (
    PlanNotFoundError,
    RestaurantNotFoundError,
    StudentNotFoundError,
    ValidationError,
)
from ..core.locks import entity_locks, profile_key
from ..models.account import MealPlan, Restaurant, RestaurantStatus, StudentProfile, User, UserRole
from .journal_service import parse_money
from .oplog import record_operation

logger = logging.getLogger(__name__)


class AccountService:
    """账户服务"""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager

    # ---- 创建 ----

    def create_user(self, username: str, role: UserRole, email: str = None,
                    phone: str = None) -> int:
        """创建用户，学生会同时创建钱包档案"""
        with self.db.transaction() as con:
            return self._insert_user(con, username, role, email, phone)

    def create_student(self, username: str, email: str = None, phone: str = None) -> int:
        return self.create_user(username, UserRole.STUDENT, email=email, phone=phone)

    def create_restaurant_partner(self, owner_username: str, name: str,
                                  email: str = None, phone: str = None) -> int:
        """创建餐厅账号及餐厅，两者同一事务提交，返回餐厅ID"""
        if not name:
            raise ValidationError("餐厅名称不能为空")
        with self.db.transaction() as con:
            owner_id = self._insert_user(con, owner_username, UserRole.RESTAURANT, email, phone)
            return con.execute(
                "INSERT INTO restaurants(owner_user_id, name) VALUES (?,?) RETURNING id",
                [owner_id, name],
            ).fetchone()[0]

    def _insert_user(self, con, username: str, role: UserRole, email: Optional[str],
                     phone: Optional[str]) -> int:
        if not username:
            raise ValidationError("用户名不能为空")
        role = UserRole(role)
        user_id = con.execute(
            "INSERT INTO users(username, email, phone, role) VALUES (?,?,?,?) RETURNING id",
            [username, email, phone, role.value],
        ).fetchone()[0]
        if role == UserRole.STUDENT:
            con.execute("INSERT INTO student_profiles(user_id) VALUES (?)", [user_id])
        return user_id

    def create_meal_plan(self, restaurant_id: int, name: str, price, total_plates: int,
                         duration_days: int) -> int:
        """创建套餐"""
        price = parse_money(price, "price", allow_zero=True)
        if total_plates <= 0 or duration_days <= 0:
            raise ValidationError("套餐餐数和天数必须为正")
        self.get_restaurant(restaurant_id)
        with self.db.transaction() as con:
            return con.execute(
                "INSERT INTO meal_plans(restaurant_id, name, price, total_plates, duration_days) "
                "VALUES (?,?,?,?,?) RETURNING id",
                [restaurant_id, name, price, total_plates, duration_days],
            ).fetchone()[0]

    # ---- 查询 ----

    def get_user(self, user_id: int) -> Optional[User]:
        row = self.db.execute_one(
            "SELECT id, username, email, phone, role, created_at FROM users WHERE id=?", [user_id]
        )
        return User(**row) if row else None

    def get_student_profile(self, student_id: int) -> StudentProfile:
        """获取学生档案（包含两个钱包余额）"""
        profile = self.load_profile(self.db.get_connection(), student_id)
        if profile is None:
            raise StudentNotFoundError(student_id)
        return profile

    def load_profile(self, con, student_id: int) -> Optional[StudentProfile]:
        """在给定连接（通常是当前事务）上读取学生档案"""
        row = fetch_one_dict(con.execute(
            "SELECT user_id AS student_id, meal_wallet_balance, flexie_wallet_balance, card_locked "
            "FROM student_profiles WHERE user_id=?",
            [student_id],
        ))
        return StudentProfile(**row) if row else None

    def is_student(self, con, user_id: int) -> bool:
        row = con.execute("SELECT role FROM users WHERE id=?", [user_id]).fetchone()
        return bool(row) and row[0] == UserRole.STUDENT.value

    def find_student(self, identifier) -> Optional[User]:
        """按学生ID或手机号查找学生"""
        identifier = str(identifier).strip()
        if not identifier:
            return None
        student_id = int(identifier) if identifier.isdigit() else -1
        row = self.db.execute_one(
            "SELECT id, username, email, phone, role, created_at FROM users "
            "WHERE role='student' AND (id=? OR phone=?) ORDER BY id LIMIT 1",
            [student_id, identifier],
        )
        return User(**row) if row else None

    def get_restaurant(self, restaurant_id: int) -> Restaurant:
        row = self.db.execute_one(
            "SELECT id, owner_user_id, name, status, created_at FROM restaurants WHERE id=?",
            [restaurant_id],
        )
        if not row:
            raise RestaurantNotFoundError(restaurant_id)
        return Restaurant(**row)

    def get_restaurant_by_owner(self, owner_user_id: int) -> Optional[Restaurant]:
        row = self.db.execute_one(
            "SELECT id, owner_user_id, name, status, created_at FROM restaurants "
            "WHERE owner_user_id=? ORDER BY id LIMIT 1",
            [owner_user_id],
        )
        return Restaurant(**row) if row else None

    def get_plan(self, plan_id: int, active_only: bool = True) -> MealPlan:
        row = self.db.execute_one(
            "SELECT id, restaurant_id, name, price, total_plates, duration_days, is_active "
            "FROM meal_plans WHERE id=?",
            [plan_id],
        )
        if not row or (active_only and not row["is_active"]):
            raise PlanNotFoundError(plan_id)
        return MealPlan(**row)

    def list_restaurants(self) -> List[Restaurant]:
        """已通过审核的合作餐厅"""
        cursor = self.db.get_connection().execute(
            "SELECT id, owner_user_id, name, status, created_at FROM restaurants "
            "WHERE status=? ORDER BY id",
            [RestaurantStatus.APPROVED.value],
        )
        return [Restaurant(**row) for row in rows_to_dicts(cursor)]

    def list_plans(self, restaurant_id: int, active_only: bool = False) -> List[MealPlan]:
        sql = ("SELECT id, restaurant_id, name, price, total_plates, duration_days, is_active "
               "FROM meal_plans WHERE restaurant_id=?")
        if active_only:
            sql += " AND is_active"
        cursor = self.db.get_connection().execute(sql + " ORDER BY id", [restaurant_id])
        return [MealPlan(**row) for row in rows_to_dicts(cursor)]

    # ---- 餐卡锁定 ----

    def set_card_lock(self, student_id: int, locked: bool, actor_id: int = None) -> StudentProfile:
        """
        切换餐卡锁定状态

        账本本身不检查锁定状态，由调用方（路由层）在钱包操作前校验。
        """
        with entity_locks(profile_key(student_id)):
            with self.db.transaction() as con:
                updated = con.execute(
                    "UPDATE student_profiles SET card_locked=? WHERE user_id=? RETURNING user_id",
                    [bool(locked), student_id],
                ).fetchone()
                if not updated:
                    raise StudentNotFoundError(student_id)
                record_operation(con, "card_lock", student_id, actor_id or student_id,
                                 {"locked": bool(locked)})
        logger.info("card lock for student %s set to %s", student_id, locked)
        return self.get_student_profile(student_id)
