"""
测试配置文件
提供测试所需的fixtures和配置：每个测试一个独立的内存数据库
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from ..app import create_app
from ..core.database import DatabaseManager, get_db
from ..core.security import create_access_token
from ..models.account import UserRole
from ..services import (
    AccountService,
    ConsistencyService,
    MealUsageRecorder,
    OrderService,
    SubscriptionLedger,
    TransactionJournal,
    WalletManager,
)


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def test_db():
    """测试数据库"""
    db = DatabaseManager(":memory:")
    db.init_database()
    yield db
    db.close()


@pytest.fixture
def clock():
    # HTTP 层使用系统时钟，测试时钟从当前时间起步
    return FakeClock(datetime.now().replace(microsecond=0))


@pytest.fixture
def accounts(test_db):
    return AccountService(test_db)


@pytest.fixture
def journal(test_db):
    return TransactionJournal(test_db)


@pytest.fixture
def recorder(test_db):
    return MealUsageRecorder(test_db)


@pytest.fixture
def ledger(test_db, journal, recorder, accounts, clock):
    return SubscriptionLedger(test_db, journal=journal, recorder=recorder, accounts=accounts, clock=clock)


@pytest.fixture
def wallets(test_db, journal, accounts):
    return WalletManager(test_db, journal=journal, accounts=accounts)


@pytest.fixture
def orders(test_db, ledger, wallets):
    return OrderService(test_db, ledger=ledger, wallets=wallets)


@pytest.fixture
def consistency(test_db):
    return ConsistencyService(test_db)


@pytest.fixture
def student(accounts):
    """示例学生"""
    return accounts.create_student("alice", email="alice@campus.edu", phone="0241000001")


@pytest.fixture
def other_student(accounts):
    return accounts.create_student("bob", email="bob@campus.edu", phone="0241000002")


@pytest.fixture
def restaurant(accounts):
    """示例餐厅，返回餐厅ID"""
    return accounts.create_restaurant_partner("kitchen_owner", "Night Market Kitchen", phone="0301000001")


@pytest.fixture
def other_restaurant(accounts):
    return accounts.create_restaurant_partner("grill_owner", "Campus Grill")


@pytest.fixture
def admin(accounts):
    return accounts.create_user("root", UserRole.SUPER_ADMIN)


@pytest.fixture
def plan(accounts, restaurant):
    return accounts.create_meal_plan(restaurant, "Monthly 30", Decimal("300.00"), 30, 30)


@pytest.fixture
def make_subscription(ledger, student, restaurant):
    """按需创建订阅"""
    def make(total_plates=5, price_paid="100.00", duration_days=30, student_id=None,
             restaurant_id=None):
        return ledger.create_subscription(
            student_id=student_id or student,
            restaurant_id=restaurant_id or restaurant,
            plan_id=None,
            total_plates=total_plates,
            price_paid=price_paid,
            duration_days=duration_days,
            payment_method="mobile_money",
            payment_phone="0241000001",
        )
    return make


# ---- HTTP ----

@pytest.fixture
def app_instance(test_db):
    """测试应用，数据库依赖替换为测试库"""
    app = create_app()
    app.dependency_overrides[get_db] = lambda: test_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app_instance):
    """测试客户端"""
    return TestClient(app_instance)


def bearer(user_id: int, role: UserRole) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture
def student_headers(student):
    return bearer(student, UserRole.STUDENT)


@pytest.fixture
def restaurant_headers(accounts, restaurant):
    owner_id = accounts.get_restaurant(restaurant).owner_user_id
    return bearer(owner_id, UserRole.RESTAURANT)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin, UserRole.SUPER_ADMIN)
