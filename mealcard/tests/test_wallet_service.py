"""
钱包服务测试
"""

import threading
from decimal import Decimal

import pytest

from ..config.settings import settings
from ..core.exceptions import (
    InsufficientBalanceError,
    StudentNotFoundError,
    ValidationError,
)
from ..models.account import WalletName
from ..models.transaction import TransactionType


def test_credit_wallet_updates_balance_and_journal(wallets, journal, student):
    balances = wallets.credit_wallet(student, "meal", "25.50", reference_id="momo-1")

    assert balances.meal == Decimal("25.50")
    assert balances.flexie == Decimal("0")
    txns = journal.list_for_user(student)
    assert [(t.type, t.amount, t.reference_id) for t in txns] == [
        ("topup", Decimal("25.50"), "momo-1")
    ]


@pytest.mark.parametrize("amount", ["0", "-5", "abc", "NaN"])
def test_credit_rejects_invalid_amount(wallets, student, amount):
    with pytest.raises(ValidationError):
        wallets.credit_wallet(student, "meal", amount)


@pytest.mark.parametrize("amount", ["0.004", "10.999", "123456789012.50"])
def test_credit_rejects_unstorable_amount(wallets, journal, student, amount):
    with pytest.raises(ValidationError):
        wallets.credit_wallet(student, "meal", amount)
    assert wallets.get_balances(student).meal == Decimal("0")
    assert journal.list_for_user(student) == []


def test_credit_normalizes_to_cents(wallets, journal, student):
    balances = wallets.credit_wallet(student, "flexie", "7.5")
    assert balances.flexie == Decimal("7.50")
    assert journal.list_for_user(student)[0].amount == Decimal("7.50")


def test_credit_past_balance_cap_is_rejected(wallets, journal, student):
    wallets.credit_wallet(student, "meal", settings.max_amount)

    with pytest.raises(ValidationError):
        wallets.credit_wallet(student, "meal", "0.01")
    assert wallets.get_balances(student).meal == settings.max_amount
    assert len(journal.list_for_user(student)) == 1


def test_credit_rejects_unknown_wallet(wallets, student):
    with pytest.raises(ValidationError):
        wallets.credit_wallet(student, "savings", 10)


def test_credit_unknown_student(wallets):
    with pytest.raises(StudentNotFoundError):
        wallets.credit_wallet(9999, "meal", 10)


def test_debit_more_than_balance_leaves_balance(wallets, journal, student):
    wallets.credit_wallet(student, "meal", 10)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        wallets.debit_wallet(student, "meal", "10.01")

    assert exc_info.value.details["wallet"] == "meal"
    assert wallets.get_balances(student).meal == Decimal("10")
    assert len(journal.list_for_user(student)) == 1


def test_debit_exact_balance(wallets, student):
    wallets.credit_wallet(student, WalletName.FLEXIE, 12)
    balances = wallets.debit_wallet(student, WalletName.FLEXIE, 12, txn_type=TransactionType.ORDER_PAYMENT)
    assert balances.flexie == Decimal("0")


def test_exchange_moves_whole_amount(wallets, journal, student):
    wallets.credit_wallet(student, "meal", 1000)

    balances = wallets.exchange_wallets(student, "meal", "flexie", 1000)

    assert balances.meal == Decimal("0")
    assert balances.flexie == Decimal("1000")
    exchange = [t for t in journal.list_for_user(student) if t.type == "transfer"]
    assert len(exchange) == 1
    assert exchange[0].method == "wallet_exchange"


def test_exchange_rolls_back_when_credit_fails(wallets, journal, student, monkeypatch):
    wallets.credit_wallet(student, "meal", 1000)

    def broken_credit(*args, **kwargs):
        raise StudentNotFoundError(student)

    monkeypatch.setattr(wallets, "apply_credit", broken_credit)
    with pytest.raises(StudentNotFoundError):
        wallets.exchange_wallets(student, "meal", "flexie", 1000)
    monkeypatch.undo()

    balances = wallets.get_balances(student)
    assert balances.meal == Decimal("1000")
    assert balances.flexie == Decimal("0")
    assert [t.type for t in journal.list_for_user(student)] == ["topup"]


def test_exchange_same_wallet_rejected(wallets, student):
    wallets.credit_wallet(student, "meal", 10)
    with pytest.raises(ValidationError):
        wallets.exchange_wallets(student, "meal", "meal", 5)


def test_exchange_insufficient_balance(wallets, student):
    wallets.credit_wallet(student, "flexie", 5)
    with pytest.raises(InsufficientBalanceError):
        wallets.exchange_wallets(student, "flexie", "meal", 6)
    balances = wallets.get_balances(student)
    assert (balances.meal, balances.flexie) == (Decimal("0"), Decimal("5"))


def test_concurrent_debits_never_go_negative(wallets, student):
    wallets.credit_wallet(student, "meal", 50)
    outcomes = []
    lock = threading.Lock()

    def worker():
        try:
            wallets.debit_wallet(student, "meal", 20)
            outcome = "ok"
        except InsufficientBalanceError:
            outcome = "rejected"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 2
    assert wallets.get_balances(student).meal == Decimal("10")


def test_card_lock_toggle(accounts, student):
    assert accounts.set_card_lock(student, True).card_locked is True
    assert accounts.get_student_profile(student).card_locked is True
    assert accounts.set_card_lock(student, False).card_locked is False
