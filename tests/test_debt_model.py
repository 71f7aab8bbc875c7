import pytest
from bson import ObjectId
from pydantic import ValidationError

from app.models.debt import Debt, DebtKind, DebtPayment, DebtStatus, derive_status
from app.models.transaction import TransactionEntry, TransactionKind


def make_debt(**overrides):
    data = {
        "owner_id": "owner-1",
        "kind": DebtKind.LENT,
        "counterparty_name": "Ali",
        "original_amount_cents": 1000,
        "account_id": "acc-1",
    }
    data.update(overrides)
    return Debt(**data)


@pytest.mark.parametrize("paid,current,expected", [
    (0, 1000, DebtStatus.ACTIVE),
    (1, 999, DebtStatus.PARTIAL),
    (1000, 0, DebtStatus.PAID),
])
def test_derive_status(paid, current, expected):
    assert derive_status(paid, current) == expected


def test_new_debt_is_active():
    debt = make_debt()

    assert debt.status == DebtStatus.ACTIVE
    assert debt.paid_amount_cents == 0
    assert debt.current_amount_cents == 1000
    assert debt.version == 1
    assert isinstance(debt.id, ObjectId)


def test_stored_amounts_are_ignored_in_favour_of_payments():
    debt = make_debt(
        payments=[DebtPayment(amount_cents=300)],
        paid_amount_cents=999,
        current_amount_cents=1,
        status="active"
    )

    assert debt.paid_amount_cents == 300
    assert debt.current_amount_cents == 700
    assert debt.status == DebtStatus.PARTIAL


def test_with_payment_rederives_and_keeps_original():
    debt = make_debt()

    paid = debt.with_payment(DebtPayment(amount_cents=1000))

    assert paid.is_paid()
    assert paid.current_amount_cents == 0
    assert debt.payments == []
    assert paid.id == debt.id


@pytest.mark.parametrize("overrides", [
    {"original_amount_cents": 0},
    {"original_amount_cents": -5},
    {"counterparty_name": "  "},
    {"account_id": ""},
    {"kind": "gifted"},
])
def test_invalid_debts_are_rejected(overrides):
    with pytest.raises(ValidationError):
        make_debt(**overrides)


def test_payment_amount_must_be_positive():
    with pytest.raises(ValidationError):
        DebtPayment(amount_cents=0)


def test_document_uses_plain_values():
    doc = make_debt(kind=DebtKind.BORROWED).to_document()

    assert doc["kind"] == "borrowed"
    assert doc["status"] == "active"
    assert isinstance(doc["_id"], ObjectId)
    assert "id" not in doc


def test_json_dump_serializes_object_id():
    debt = make_debt()

    assert debt.model_dump(mode="json", by_alias=True)["_id"] == str(debt.id)


def test_transaction_document_drops_missing_operation_id():
    entry = TransactionEntry(
        owner_id="owner-1",
        amount_cents=100,
        description="Lent to Ali",
        kind=TransactionKind.EXPENSE,
        category="Debt",
        category_icon="person-add-outline",
        account_id="acc-1"
    )

    doc = entry.to_document()

    assert doc["kind"] == "expense"
    assert "operation_id" not in doc
    assert doc["debt_id"] is None
