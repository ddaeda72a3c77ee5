"""
账户服务与日志配置测试
"""

import json
import logging
from decimal import Decimal

import pytest

from ..core.exceptions import PlanNotFoundError, StorageError, StudentNotFoundError, ValidationError
from ..core.log_config import JsonFormatter, setup_logging
from ..models.account import UserRole


class TestAccountService:

    def test_new_student_has_empty_unlocked_profile(self, accounts, student):
        user = accounts.get_user(student)
        assert user.role == UserRole.STUDENT.value
        profile = accounts.get_student_profile(student)
        assert profile.meal_wallet_balance == Decimal("0")
        assert profile.flexie_wallet_balance == Decimal("0")
        assert profile.card_locked is False

    def test_non_student_has_no_profile(self, accounts, admin):
        with pytest.raises(StudentNotFoundError):
            accounts.get_student_profile(admin)

    def test_find_student_by_id_or_phone(self, accounts, student, restaurant):
        assert accounts.find_student(str(student)).id == student
        assert accounts.find_student("0241000001").id == student
        # 餐厅账号不会被当作学生
        assert accounts.find_student("0301000001") is None
        assert accounts.find_student("  ") is None

    def test_restaurant_owner_lookup(self, accounts, restaurant):
        owner_id = accounts.get_restaurant(restaurant).owner_user_id
        assert accounts.get_restaurant_by_owner(owner_id).id == restaurant
        assert accounts.get_user(owner_id).role == UserRole.RESTAURANT.value

    def test_restaurant_partner_is_created_atomically(self, accounts, test_db):
        test_db.get_connection().execute("DROP TABLE restaurants")
        with pytest.raises(StorageError):
            accounts.create_restaurant_partner("orphan_owner", "Orphan Kitchen")
        assert test_db.execute_one("SELECT id FROM users WHERE username='orphan_owner'") is None

    def test_list_restaurants_and_active_plans(self, accounts, test_db, restaurant, plan):
        retired = accounts.create_meal_plan(restaurant, "Retired", "50.00", 5, 7)
        test_db.get_connection().execute("UPDATE meal_plans SET is_active=FALSE WHERE id=?", [retired])

        assert [r.id for r in accounts.list_restaurants()] == [restaurant]
        assert [p.id for p in accounts.list_plans(restaurant)] == [plan, retired]
        assert [p.id for p in accounts.list_plans(restaurant, active_only=True)] == [plan]

    def test_meal_plans(self, accounts, restaurant, plan):
        plans = accounts.list_plans(restaurant)
        assert [p.id for p in plans] == [plan]
        assert plans[0].price == Decimal("300.00")

    def test_inactive_plan_not_found(self, accounts, test_db, plan):
        test_db.get_connection().execute("UPDATE meal_plans SET is_active=FALSE WHERE id=?", [plan])
        with pytest.raises(PlanNotFoundError):
            accounts.get_plan(plan)
        assert accounts.get_plan(plan, active_only=False).id == plan

    @pytest.mark.parametrize("price, plates, days", [("-1", 10, 30), ("9.999", 10, 30), ("10", 0, 30), ("10", 10, 0)])
    def test_invalid_meal_plan(self, accounts, restaurant, price, plates, days):
        with pytest.raises(ValidationError):
            accounts.create_meal_plan(restaurant, "Bad", price, plates, days)

    def test_card_lock_is_audited(self, accounts, test_db, student):
        accounts.set_card_lock(student, True)
        row = test_db.execute_one("SELECT detail_json FROM logs WHERE action='card_lock'")
        assert json.loads(row["detail_json"]) == {"locked": True}

    def test_card_lock_unknown_student(self, accounts):
        with pytest.raises(StudentNotFoundError):
            accounts.set_card_lock(9999, True)


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("mealcard.test", logging.INFO, __file__, 1, "consumed %s", (2,), None)
    record.subscription_id = 7
    data = json.loads(JsonFormatter().format(record))
    assert data["message"] == "consumed 2"
    assert data["level"] == "INFO"
    assert data["subscription_id"] == 7


def test_setup_logging_configures_package_logger():
    logger = setup_logging(level="debug", json_output=True)
    assert logger.name == "mealcard"
    assert logger.level == logging.DEBUG
    assert isinstance(logger.handlers[0].formatter, JsonFormatter)
