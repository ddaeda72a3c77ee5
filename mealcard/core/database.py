"""
数据库连接和管理模块
负责 DuckDB 数据库的初始化、连接管理、事务和表结构定义

数据库表说明：
- users: 用户基本信息与角色
- student_profiles: 学生钱包余额与餐卡锁定状态
- restaurants / meal_plans: 合作餐厅与其套餐
- subscriptions: 订阅账本（总餐数、已用餐数、状态）
- meal_usage_logs: 每餐消费的只追加审计记录
- orders: 学生向餐厅的点餐单
- transactions: 资金流水
- logs: 系统操作日志
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import duckdb

from .exceptions import BaseApplicationError, ConcurrencyConflictError, StorageError
from ..config.settings import settings

logger = logging.getLogger(__name__)

# 完整的表结构定义
# 使用序列生成自增主键，支持并发插入
SCHEMA_SQL = r"""
CREATE SEQUENCE IF NOT EXISTS users_id_seq;
CREATE TABLE IF NOT EXISTS users (
  id INTEGER DEFAULT nextval('users_id_seq') PRIMARY KEY,
  username TEXT NOT NULL,
  email TEXT,
  phone TEXT,
  role TEXT CHECK(role IN ('student','restaurant','super_admin')) NOT NULL,
  created_at TIMESTAMP DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_users_phone ON users(phone);

CREATE TABLE IF NOT EXISTS student_profiles (
  user_id INTEGER PRIMARY KEY,
  meal_wallet_balance DECIMAL(12,2) NOT NULL DEFAULT 0 CHECK(meal_wallet_balance >= 0),
  flexie_wallet_balance DECIMAL(12,2) NOT NULL DEFAULT 0 CHECK(flexie_wallet_balance >= 0),
  card_locked BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE SEQUENCE IF NOT EXISTS restaurants_id_seq;
CREATE TABLE IF NOT EXISTS restaurants (
  id INTEGER DEFAULT nextval('restaurants_id_seq') PRIMARY KEY,
  owner_user_id INTEGER NOT NULL,
  name TEXT NOT NULL,
  status TEXT CHECK(status IN ('pending','approved','suspended')) NOT NULL DEFAULT 'approved',
  created_at TIMESTAMP DEFAULT now()
);

CREATE SEQUENCE IF NOT EXISTS meal_plans_id_seq;
CREATE TABLE IF NOT EXISTS meal_plans (
  id INTEGER DEFAULT nextval('meal_plans_id_seq') PRIMARY KEY,
  restaurant_id INTEGER NOT NULL,
  name TEXT NOT NULL,
  price DECIMAL(12,2) NOT NULL CHECK(price >= 0),
  total_plates INTEGER NOT NULL CHECK(total_plates > 0),
  duration_days INTEGER NOT NULL CHECK(duration_days > 0),
  is_active BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE SEQUENCE IF NOT EXISTS subscriptions_id_seq;
CREATE TABLE IF NOT EXISTS subscriptions (
  id INTEGER DEFAULT nextval('subscriptions_id_seq') PRIMARY KEY,
  student_id INTEGER NOT NULL,
  restaurant_id INTEGER NOT NULL,
  plan_id INTEGER,
  start_date TIMESTAMP NOT NULL,
  expiry_date TIMESTAMP NOT NULL,
  duration_days INTEGER NOT NULL,
  total_plates INTEGER NOT NULL,
  used_plates INTEGER NOT NULL DEFAULT 0,
  price_paid DECIMAL(12,2) NOT NULL DEFAULT 0 CHECK(price_paid >= 0),
  payment_method TEXT,
  payment_phone TEXT,
  status TEXT CHECK(status IN ('Active','Depleted','Expired','Transfer')) NOT NULL,
  CHECK(used_plates >= 0 AND used_plates <= total_plates)
);

CREATE INDEX IF NOT EXISTS idx_subscriptions_student ON subscriptions(student_id);
CREATE INDEX IF NOT EXISTS idx_subscriptions_restaurant ON subscriptions(restaurant_id);

CREATE SEQUENCE IF NOT EXISTS meal_usage_logs_id_seq;
CREATE TABLE IF NOT EXISTS meal_usage_logs (
  id INTEGER DEFAULT nextval('meal_usage_logs_id_seq') PRIMARY KEY,
  subscription_id INTEGER NOT NULL,
  student_id INTEGER NOT NULL,
  restaurant_id INTEGER NOT NULL,
  meal_index INTEGER NOT NULL CHECK(meal_index >= 0),
  created_at TIMESTAMP DEFAULT now()
);

CREATE UNIQUE INDEX IF NOT EXISTS uniq_usage_sub_index ON meal_usage_logs(subscription_id, meal_index);

CREATE SEQUENCE IF NOT EXISTS orders_id_seq;
CREATE TABLE IF NOT EXISTS orders (
  id INTEGER DEFAULT nextval('orders_id_seq') PRIMARY KEY,
  student_id INTEGER NOT NULL,
  restaurant_id INTEGER NOT NULL,
  subscription_id INTEGER,
  plates INTEGER NOT NULL CHECK(plates > 0),
  amount DECIMAL(12,2) NOT NULL DEFAULT 0,
  status TEXT CHECK(status IN ('pending','approved','rejected','served')) NOT NULL,
  created_at TIMESTAMP DEFAULT now(),
  updated_at TIMESTAMP DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_orders_restaurant ON orders(restaurant_id);

CREATE SEQUENCE IF NOT EXISTS transactions_id_seq;
CREATE TABLE IF NOT EXISTS transactions (
  id INTEGER DEFAULT nextval('transactions_id_seq') PRIMARY KEY,
  user_id INTEGER NOT NULL,
  amount DECIMAL(12,2) NOT NULL,
  type TEXT CHECK(type IN ('topup','subscription_payment','transfer','order_payment','refund')) NOT NULL,
  method TEXT,
  status TEXT CHECK(status IN ('pending','completed','failed')) NOT NULL,
  reference_id TEXT,
  created_at TIMESTAMP DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_transactions_user ON transactions(user_id);

CREATE SEQUENCE IF NOT EXISTS logs_id_seq;
CREATE TABLE IF NOT EXISTS logs (
  log_id INTEGER DEFAULT nextval('logs_id_seq') PRIMARY KEY,
  user_id INTEGER,
  actor_id INTEGER,
  action TEXT,
  detail_json JSON,
  created_at TIMESTAMP DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_logs_action ON logs(action);
"""


def _is_conflict(error: Exception) -> bool:
    if isinstance(error, duckdb.TransactionException):
        return True
    text = str(error).lower()
    return "conflict" in text or "serialization" in text


class DatabaseManager:
    """数据库管理器，封装连接与事务

    每个线程持有自己的游标（同一数据库实例），事务之间可以并发执行。
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or self._get_db_path_from_settings()
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._init_lock = threading.Lock()
        self._local = threading.local()

    def _get_db_path_from_settings(self) -> str:
        """从设置中获取数据库路径"""
        db_url = settings.database_url
        if db_url.startswith("duckdb://"):
            db_url = db_url.replace("duckdb://", "", 1)
        if db_url.startswith("/:memory:"):
            db_url = ":memory:"
        return db_url

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """获取根连接（首次访问时建库建表）"""
        if self._connection is None:
            with self._init_lock:
                if self._connection is None:
                    if self.db_path != ":memory:":
                        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                    conn = duckdb.connect(self.db_path)
                    try:
                        conn.execute(SCHEMA_SQL)
                    except duckdb.Error as e:
                        raise StorageError(f"Failed to initialize schema: {e}") from e
                    self._connection = conn
        return self._connection

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        """获取当前线程的游标"""
        cursor = getattr(self._local, "cursor", None)
        if cursor is None or getattr(self._local, "owner", None) is not self.connection:
            cursor = self.connection.cursor()
            self._local.cursor = cursor
            self._local.owner = self.connection
        return cursor

    def init_database(self):
        """初始化数据库"""
        self.get_connection()

    def close(self):
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    @contextmanager
    def transaction(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        数据库事务上下文管理器

        业务异常原样抛出；事务冲突转换为 ConcurrencyConflictError，
        其他存储异常统一转换为 StorageError。任何异常都会先回滚。
        """
        conn = self.get_connection()
        try:
            conn.execute("BEGIN TRANSACTION")
        except duckdb.Error as e:
            raise StorageError(f"无法开始事务: {e}") from e
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseApplicationError:
            self._rollback(conn)
            raise
        except duckdb.Error as e:
            self._rollback(conn)
            if _is_conflict(e):
                raise ConcurrencyConflictError("系统繁忙，请稍后重试", details={"cause": str(e)}) from e
            raise StorageError(f"数据库操作失败: {e}") from e
        except Exception:
            self._rollback(conn)
            raise

    def _rollback(self, conn: duckdb.DuckDBPyConnection):
        try:
            conn.execute("ROLLBACK")
        except duckdb.Error as e:
            # 提交失败时事务已被中止
            logger.debug("rollback skipped: %s", e)

    def execute_query(self, query: str, params: list = None) -> List[Dict[str, Any]]:
        """执行查询并返回字典列表"""
        try:
            cursor = self.get_connection().execute(query, params or [])
            return rows_to_dicts(cursor)
        except duckdb.Error as e:
            raise StorageError(f"Query execution failed: {e}") from e

    def execute_one(self, query: str, params: list = None) -> Optional[Dict[str, Any]]:
        """执行查询并返回单条结果"""
        rows = self.execute_query(query, params)
        return rows[0] if rows else None


def rows_to_dicts(cursor) -> List[Dict[str, Any]]:
    """把游标结果转换为以列名为键的字典"""
    columns = [d[0] for d in cursor.description or []]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def fetch_one_dict(cursor) -> Optional[Dict[str, Any]]:
    rows = rows_to_dicts(cursor)
    return rows[0] if rows else None


# 全局数据库管理器实例
db_manager = DatabaseManager()


def get_db() -> DatabaseManager:
    """FastAPI 依赖：返回当前的数据库管理器"""
    return db_manager
