"""
资金流水测试
"""

from decimal import Decimal

import pytest

from ..core.exceptions import InvalidStateError, TransactionNotFoundError, ValidationError
from ..models.transaction import TransactionStatus, TransactionType


def test_append_and_read(journal, student):
    txn_id = journal.append(student, Decimal("12.00"), TransactionType.TOPUP, "card",
                            reference_id="ref-1")
    txn = journal.get(txn_id)
    assert txn.user_id == student
    assert txn.status == "completed"
    assert txn.reference_id == "ref-1"


def test_append_requires_fields(journal, student):
    with pytest.raises(ValidationError):
        journal.append(None, 1, TransactionType.TOPUP, "card")
    with pytest.raises(ValidationError):
        journal.append(student, None, TransactionType.TOPUP, "card")
    with pytest.raises(ValidationError):
        journal.append(student, 1, "gift", "card")


def test_finalize_pending(journal, student):
    txn_id = journal.append(student, 5, TransactionType.TOPUP, "mobile_money",
                            status=TransactionStatus.PENDING)

    txn = journal.finalize(txn_id, TransactionStatus.COMPLETED)
    assert txn.status == "completed"

    with pytest.raises(InvalidStateError):
        journal.finalize(txn_id, TransactionStatus.FAILED)


def test_finalize_rejects_pending_target(journal, student):
    txn_id = journal.append(student, 5, TransactionType.TOPUP, "mobile_money",
                            status=TransactionStatus.PENDING)
    with pytest.raises(ValidationError):
        journal.finalize(txn_id, TransactionStatus.PENDING)


def test_finalize_unknown(journal):
    with pytest.raises(TransactionNotFoundError):
        journal.finalize(424242, TransactionStatus.FAILED)


def test_list_newest_first_with_paging(journal, student, other_student):
    ids = [journal.append(student, i + 1, TransactionType.TOPUP, "card") for i in range(3)]
    journal.append(other_student, 9, TransactionType.TOPUP, "card")

    mine = journal.list_for_user(student)
    assert [t.id for t in mine] == list(reversed(ids))
    assert [t.id for t in journal.list_for_user(student, limit=1, offset=1)] == [ids[1]]
    assert len(journal.list_all()) == 4
