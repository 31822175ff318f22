"""Tests for bill assembly, persistence, immutability and payment."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from cueclub.models.bill import Bill, BillDiscount, PaymentMethod
from cueclub.services import bill_service
from cueclub.services.bill_service import (
    BillAssembler,
    BillService,
    generate_bill_code,
    persist_bill,
    resolve_manual_discounts,
)
from cueclub.services.errors import ConflictError, InvalidStateError, NotFoundError, ValidationFailure
from cueclub.services.minute_accountant import MinuteResult
from cueclub.services.session_service import SessionService

START = datetime(2026, 10, 12, 10, 0, tzinfo=timezone.utc)
END = datetime(2026, 10, 12, 11, 0, tzinfo=timezone.utc)


@pytest.fixture
def closed(db_session, tables, venue_setting, products):
    """A checked-out session with one beer and a manual discount."""
    service = SessionService(db_session)
    session = service.open_session(tables["P1"].id, start_at=START)
    service.add_item(session.id, products["beer"].id, 1)
    return service.checkout(
        session.id,
        end_at=END,
        discount_lines=[{"name": "Loyalty", "discount_type": "fixed", "value": 1000}],
        paid=False,
    )


class TestBillCode:
    def test_format(self):
        code = generate_bill_code(END)
        assert code.startswith("B20261012-")
        suffix = code.split("-")[1]
        assert len(suffix) == 6
        assert suffix == suffix.upper()


class TestManualDiscounts:
    def test_amount_defaults_to_computed_value(self):
        lines = resolve_manual_discounts([{"name": "Ten", "discount_type": "percent", "value": 10}], 50000)
        assert lines[0].amount == 5000
        assert lines[0].target == "bill"
        assert lines[0].meta == {"source": "manual"}

    def test_explicit_amount_wins(self):
        lines = resolve_manual_discounts([{"name": "Flat", "value": 10, "amount": 1234}], 50000)
        assert lines[0].amount == 1234
        assert lines[0].discount_type == "fixed"

    def test_lines_are_clamped_to_remaining_subtotal(self):
        lines = resolve_manual_discounts(
            [
                {"name": "Regular", "value": 30000},
                {"name": "Comp", "value": 0, "amount": 999999},
                {"name": "Late", "value": 1000},
            ],
            50000,
        )
        assert [line.amount for line in lines] == [30000, 20000, 0]
        assert sum(line.amount for line in lines) == 50000

    def test_non_numeric_value_rejected(self):
        with pytest.raises(ValidationFailure):
            resolve_manual_discounts([{"name": "Bad", "value": "lots"}], 50000)

    def test_negative_value_rejected(self):
        with pytest.raises(ValidationFailure):
            resolve_manual_discounts([{"name": "Bad", "value": -1}], 50000)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationFailure):
            resolve_manual_discounts([{"name": "Bad", "discount_type": "bogo", "value": 1}], 50000)


class TestAssembler:
    def test_totals_and_line_order(self, closed):
        _, bill = closed
        assert [item.kind for item in bill.items] == ["play", "product"]
        assert bill.play_amount == 50000
        assert bill.service_amount == 20000
        assert bill.sub_total == 70000
        assert bill.discount_total == 1000
        assert bill.total == 69000
        assert bill.play_charge.minutes == 60

    def test_assemble_does_not_touch_the_database(self, db_session, tables, venue_setting):
        service = SessionService(db_session)
        session = service.open_session(tables["P1"].id, start_at=START)
        bill = BillAssembler().assemble(session, MinuteResult(60, 60), [], surcharge=500)
        assert bill.code is None
        assert bill.total == 50500
        assert db_session.query(Bill).count() == 0


class TestImmutability:
    def test_figures_cannot_change(self, db_session, closed):
        _, bill = closed
        bill.total = 1
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()

    def test_lines_cannot_change(self, db_session, closed):
        _, bill = closed
        bill.items[0].amount = 1
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()

    def test_discounts_cannot_be_deleted(self, db_session, closed):
        _, bill = closed
        db_session.delete(db_session.get(BillDiscount, bill.discounts[0].id))
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()

    def test_bill_cannot_be_deleted(self, db_session, closed):
        _, bill = closed
        db_session.delete(bill)
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()

    def test_note_is_patchable(self, db_session, closed):
        _, bill = closed
        updated = BillService(db_session).set_note(bill.id, "  regulars  ")
        assert updated.note == "regulars"
        assert updated.total == 69000


class TestPayment:
    def test_pay_marks_bill_paid(self, db_session, closed):
        _, bill = closed
        assert bill.paid is False
        paid = BillService(db_session).pay(bill.id, PaymentMethod.CARD)
        assert paid.paid is True
        assert paid.payment_method == PaymentMethod.CARD
        assert paid.paid_at is not None

    def test_double_payment_conflicts(self, db_session, closed):
        _, bill = closed
        service = BillService(db_session)
        service.pay(bill.id, PaymentMethod.CASH)
        with pytest.raises(ConflictError):
            service.pay(bill.id, PaymentMethod.CASH)

    def test_unknown_bill(self, db_session):
        with pytest.raises(NotFoundError):
            BillService(db_session).pay(9999, PaymentMethod.CASH)


class TestReadSide:
    def test_get_for_session(self, db_session, closed):
        session, bill = closed
        assert BillService(db_session).get_for_session(session.id).id == bill.id

    def test_get_for_session_without_bill(self, db_session):
        with pytest.raises(NotFoundError):
            BillService(db_session).get_for_session(9999)

    def test_list_filters(self, db_session, closed, tables):
        service = BillService(db_session)
        rows, total = service.list(paid=False)
        assert total == 1
        rows, total = service.list(paid=True)
        assert total == 0
        rows, total = service.list(table_id=tables["P2"].id)
        assert total == 0


class TestCodeRetry:
    def test_collision_is_retried_with_fresh_code(self, db_session, closed, tables, monkeypatch):
        _, first = closed
        service = SessionService(db_session)
        session = service.open_session(tables["P2"].id, start_at=START)
        minutes = MinuteResult(60, 60)

        codes = iter([first.code, "B20261012-ABCDEF"])
        monkeypatch.setattr(bill_service, "generate_bill_code", lambda at=None: next(codes))

        bill = persist_bill(
            db_session,
            lambda: BillAssembler().assemble(session, minutes, []),
            at=END,
        )
        assert bill.code == "B20261012-ABCDEF"

    def test_gives_up_after_max_attempts(self, db_session, closed, tables, monkeypatch):
        _, first = closed
        service = SessionService(db_session)
        session = service.open_session(tables["P2"].id, start_at=START)

        monkeypatch.setattr(bill_service, "generate_bill_code", lambda at=None: first.code)
        with pytest.raises(ConflictError):
            persist_bill(db_session, lambda: BillAssembler().assemble(session, MinuteResult(60, 60), []))

    def test_second_bill_for_session_conflicts(self, db_session, closed):
        session, _ = closed
        with pytest.raises(ConflictError):
            persist_bill(db_session, lambda: BillAssembler().assemble(session, MinuteResult(1, 1), []))


def test_discount_value_keeps_decimal(db_session, closed):
    _, bill = closed
    assert Decimal(bill.discounts[0].value) == Decimal("1000")
