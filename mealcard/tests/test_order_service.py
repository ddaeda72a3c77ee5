import pytest
from decimal import Decimal

from ..core.exceptions import (
    InsufficientBalanceError,
    InsufficientCapacityError,
    InsufficientUnusedPlatesError,
    OrderNotFoundError,
    OrderStatusError,
    SubscriptionExpiredError,
    SubscriptionNotFoundError,
    ValidationError,
)
from ..models.order import OrderStatus
from ..models.subscription import SubscriptionStatus
from ..services.order_service import prorate_cost


@pytest.mark.parametrize("price, total, plates, expected", [
    ("300.00", 30, 1, "10.00"),
    ("100.00", 3, 1, "33.33"),
    ("100.00", 3, 2, "66.67"),
    ("0", 5, 2, "0.00"),
])
def test_prorate_cost(price, total, plates, expected):
    assert prorate_cost(Decimal(price), total, plates) == Decimal(expected)


class TestOrderService:
    """订单服务测试"""

    @pytest.fixture
    def funded_subscription(self, wallets, student, make_subscription):
        wallets.credit_wallet(student, "meal", 100)
        return make_subscription(total_plates=10, price_paid="100.00")

    def test_place_order_debits_meal_wallet(self, orders, wallets, journal, ledger, student,
                                            restaurant, funded_subscription):
        order = orders.place_order(student, restaurant, funded_subscription, 2)

        assert order.status == OrderStatus.PENDING.value
        assert order.amount == Decimal("20.00")
        assert wallets.get_balances(student).meal == Decimal("80.00")
        # 下单不扣餐
        assert ledger.get_subscription(funded_subscription).used_plates == 0
        payment = [t for t in journal.list_for_user(student) if t.type == "order_payment"]
        assert payment[0].reference_id == f"order_{order.id}"

    def test_place_order_insufficient_balance(self, orders, wallets, student, restaurant,
                                              make_subscription):
        sid = make_subscription(total_plates=10, price_paid="100.00")
        wallets.credit_wallet(student, "meal", 5)

        with pytest.raises(InsufficientBalanceError):
            orders.place_order(student, restaurant, sid, 1)
        assert orders.list_student_orders(student) == []
        assert wallets.get_balances(student).meal == Decimal("5")

    def test_open_orders_reserve_plates(self, orders, student, restaurant, make_subscription, wallets):
        sid = make_subscription(total_plates=3, price_paid="0")
        orders.place_order(student, restaurant, sid, 2)

        with pytest.raises(InsufficientCapacityError):
            orders.place_order(student, restaurant, sid, 2)
        orders.place_order(student, restaurant, sid, 1)

    def test_place_order_wrong_restaurant(self, orders, student, other_restaurant, funded_subscription):
        with pytest.raises(SubscriptionNotFoundError):
            orders.place_order(student, other_restaurant, funded_subscription, 1)

    def test_place_order_expired_subscription(self, orders, student, restaurant, funded_subscription,
                                              clock):
        clock.advance(days=31)
        with pytest.raises(SubscriptionExpiredError):
            orders.place_order(student, restaurant, funded_subscription, 1)

    def test_place_order_rejects_non_positive_plates(self, orders, student, restaurant,
                                                     funded_subscription):
        with pytest.raises(ValidationError):
            orders.place_order(student, restaurant, funded_subscription, 0)

    def test_served_consumes_plates(self, orders, ledger, student, restaurant, funded_subscription):
        order = orders.place_order(student, restaurant, funded_subscription, 3)
        orders.update_order_status(order.id, restaurant, "approved")

        served = orders.update_order_status(order.id, restaurant, "served")

        assert served.status == OrderStatus.SERVED.value
        sub = ledger.get_subscription(funded_subscription)
        assert sub.used_plates == 3
        assert sub.used_meals == [0, 1, 2]

    def test_rejected_refunds_amount(self, orders, wallets, journal, ledger, student, restaurant,
                                     funded_subscription):
        order = orders.place_order(student, restaurant, funded_subscription, 2)

        rejected = orders.update_order_status(order.id, restaurant, OrderStatus.REJECTED)

        assert rejected.status == OrderStatus.REJECTED.value
        assert wallets.get_balances(student).meal == Decimal("100.00")
        assert ledger.get_subscription(funded_subscription).used_plates == 0
        refunds = [t for t in journal.list_for_user(student) if t.type == "refund"]
        assert len(refunds) == 1
        assert refunds[0].amount == Decimal("20.00")

    def test_terminal_status_cannot_change(self, orders, student, restaurant, funded_subscription):
        order = orders.place_order(student, restaurant, funded_subscription, 1)
        orders.update_order_status(order.id, restaurant, "served")

        with pytest.raises(OrderStatusError):
            orders.update_order_status(order.id, restaurant, "rejected")
        with pytest.raises(OrderStatusError):
            orders.update_order_status(order.id, restaurant, "pending")

    def test_unknown_status_value(self, orders, student, restaurant, funded_subscription):
        order = orders.place_order(student, restaurant, funded_subscription, 1)
        with pytest.raises(ValidationError):
            orders.update_order_status(order.id, restaurant, "cooking")

    def test_other_restaurant_cannot_update(self, orders, student, restaurant, other_restaurant,
                                            funded_subscription):
        order = orders.place_order(student, restaurant, funded_subscription, 1)
        with pytest.raises(OrderNotFoundError):
            orders.update_order_status(order.id, other_restaurant, "approved")

    def test_order_without_subscription(self, orders, wallets, student, restaurant):
        order = orders.place_order(student, restaurant, None, 1)
        assert order.amount == Decimal("0")
        served = orders.update_order_status(order.id, restaurant, "served")
        assert served.status == OrderStatus.SERVED.value
        assert [o.id for o in orders.list_restaurant_orders(restaurant)] == [order.id]

    def test_share_cannot_take_plates_held_by_open_order(self, orders, ledger, student, other_student,
                                                         restaurant, make_subscription):
        sid = make_subscription(total_plates=5, price_paid="0")
        order = orders.place_order(student, restaurant, sid, 5)

        with pytest.raises(InsufficientUnusedPlatesError):
            ledger.share_meals(sid, student, other_student, 5)
        assert ledger.get_subscription(sid).total_plates == 5

        served = orders.update_order_status(order.id, restaurant, "served")
        assert served.status == OrderStatus.SERVED.value
        assert ledger.get_subscription(sid).status == SubscriptionStatus.DEPLETED.value

    def test_redeem_cannot_take_plates_held_by_open_order(self, orders, ledger, student, restaurant,
                                                          make_subscription):
        sid = make_subscription(total_plates=2, price_paid="0")
        order = orders.place_order(student, restaurant, sid, 2)

        with pytest.raises(InsufficientCapacityError):
            ledger.redeem_for_student(student, sid)
        with pytest.raises(InsufficientCapacityError):
            ledger.redeem_at_restaurant(restaurant, sid)

        orders.update_order_status(order.id, restaurant, "served")
        assert ledger.get_subscription(sid).used_meals == [0, 1]

    def test_rejected_order_releases_held_plates(self, orders, ledger, student, other_student,
                                                 restaurant, make_subscription):
        sid = make_subscription(total_plates=3, price_paid="0")
        order = orders.place_order(student, restaurant, sid, 2)
        orders.update_order_status(order.id, restaurant, "rejected")

        ledger.share_meals(sid, student, other_student, 3)
        assert ledger.get_subscription(sid).total_plates == 0

    def test_serving_one_order_keeps_other_holds(self, orders, ledger, student, restaurant,
                                                 make_subscription):
        sid = make_subscription(total_plates=3, price_paid="0")
        first = orders.place_order(student, restaurant, sid, 1)
        orders.place_order(student, restaurant, sid, 2)

        orders.update_order_status(first.id, restaurant, "served")
        with pytest.raises(InsufficientCapacityError):
            ledger.redeem_for_student(student, sid)
