"""Tests for the acceptance and payment confirmation handlers."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from dispatch_api import crud, dispute, events
from dispatch_api.exceptions import (
    AcceptFailedError,
    AlreadyTakenError,
    ExpiredError,
    OrderNotFoundError,
    ValidationError,
    WebhookFailedError,
)
from dispatch_api.models import utcnow
from dispatch_api.schemas import OrderStatus, PaymentStatus, PaymentWebhook


class TestAcceptOrder:
    def test_first_agency_wins(self, db, make_order):
        order_id = make_order()

        outcome = dispute.accept_order(db, order_id, "agency_a")

        assert outcome.event_type == events.ORDER_ACCEPTED
        assert outcome.order.status == OrderStatus.CONFIRMED
        assert outcome.order.agency_id == "agency_a"
        assert outcome.order.accepted_at is not None

    def test_second_agency_gets_already_taken(self, db, make_order):
        order_id = make_order()
        dispute.accept_order(db, order_id, "agency_a")

        with pytest.raises(AlreadyTakenError) as exc:
            dispute.accept_order(db, order_id, "agency_b")
        assert exc.value.status_code == 409

        db.expire_all()
        order = crud.get_order(db, order_id)
        assert order.agency_id == "agency_a"

    def test_expired_order_is_rejected_and_unchanged(self, db, make_order):
        order_id = make_order(expires_in=timedelta(minutes=-1))

        with pytest.raises(ExpiredError) as exc:
            dispute.accept_order(db, order_id, "agency_a")
        assert exc.value.status_code == 410

        db.expire_all()
        order = crud.get_order(db, order_id)
        assert order.status == OrderStatus.AWAITING_ACCEPTANCE.value
        assert order.agency_id is None
        assert order.accepted_at is None

    def test_deadline_instant_counts_as_expired(self, db, make_order):
        order_id = make_order()
        deadline = crud.get_order(db, order_id).accept_expires_at

        with pytest.raises(ExpiredError):
            dispute.accept_order(db, order_id, "agency_a", now=deadline)

    def test_accept_just_before_deadline_succeeds(self, db, make_order):
        order_id = make_order()
        deadline = crud.get_order(db, order_id).accept_expires_at

        outcome = dispute.accept_order(db, order_id, "agency_a", now=deadline - timedelta(seconds=1))
        assert outcome.order.agency_id == "agency_a"

    def test_unknown_order_is_never_a_success(self, db):
        for _ in range(3):
            with pytest.raises(OrderNotFoundError) as exc:
                dispute.accept_order(db, "missing-order", "agency_a")
            assert exc.value.status_code == 404

    def test_unpaid_order_cannot_be_accepted(self, db, make_order):
        order_id = make_order(status=OrderStatus.AWAITING_PAYMENT, expires_in=None)

        with pytest.raises(AcceptFailedError) as exc:
            dispute.accept_order(db, order_id, "agency_a")
        assert exc.value.status_code == 400

    def test_canceled_order_cannot_be_accepted(self, db, make_order):
        order_id = make_order(status=OrderStatus.CANCELED)

        with pytest.raises(AcceptFailedError):
            dispute.accept_order(db, order_id, "agency_a")

    def test_missing_agency_is_a_validation_error(self, db, make_order):
        order_id = make_order()

        with pytest.raises(ValidationError) as exc:
            dispute.accept_order(db, order_id, None)
        assert exc.value.status_code == 400

        db.expire_all()
        assert crud.get_order(db, order_id).status == OrderStatus.AWAITING_ACCEPTANCE.value

    def test_store_error_becomes_generic_failure(self, db, make_order, monkeypatch):
        order_id = make_order()

        def broken_update(*args, **kwargs):
            raise OperationalError("UPDATE orders", {}, Exception("connection lost"))

        monkeypatch.setattr(crud, "confirm_order_if_available", broken_update)

        with pytest.raises(AcceptFailedError) as exc:
            dispute.accept_order(db, order_id, "agency_a")
        assert exc.value.status_code == 500

    def test_winner_keeps_order_when_reload_fails(self, db, make_order, monkeypatch):
        order_id = make_order()

        def broken_read(*args, **kwargs):
            raise OperationalError("SELECT orders", {}, Exception("timeout"))

        monkeypatch.setattr(crud, "get_order", broken_read)

        outcome = dispute.accept_order(db, order_id, "agency_a")

        assert outcome.message == "Order confirmed."
        assert outcome.order is None
        assert outcome.event_type == events.ORDER_ACCEPTED

        monkeypatch.undo()
        db.expire_all()
        order = crud.get_order(db, order_id)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.agency_id == "agency_a"

    def test_reads_after_acceptance_are_stable(self, db, make_order):
        order_id = make_order()
        dispute.accept_order(db, order_id, "agency_a")

        snapshots = []
        for _ in range(3):
            db.expire_all()
            order = crud.get_order(db, order_id)
            snapshots.append((order.status, order.agency_id, order.accepted_at))

        assert snapshots[0][:2] == (OrderStatus.CONFIRMED.value, "agency_a")
        assert len(set(snapshots)) == 1


class TestConcurrentDispute:
    @pytest.mark.parametrize("agencies", [2, 8])
    def test_exactly_one_winner(self, session_factory, make_order, agencies):
        order_id = make_order()
        barrier = threading.Barrier(agencies)

        def attempt(index):
            session = session_factory()
            try:
                barrier.wait()
                try:
                    outcome = dispute.accept_order(session, order_id, f"agency_{index}")
                    return ("won", outcome.order.agency_id)
                except AlreadyTakenError:
                    return ("taken", None)
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=agencies) as pool:
            results = list(pool.map(attempt, range(agencies)))

        winners = [agency for result, agency in results if result == "won"]
        assert len(winners) == 1
        assert [result for result, _ in results].count("taken") == agencies - 1

        session = session_factory()
        try:
            order = crud.get_order(session, order_id)
            assert order.status == OrderStatus.CONFIRMED.value
            assert order.agency_id == winners[0]
        finally:
            session.close()


class TestConfirmPayment:
    def test_approved_payment_opens_dispute(self, db, make_order, broadcaster):
        order_id = make_order(status=OrderStatus.AWAITING_PAYMENT, expires_in=None, final_total=440)
        now = utcnow()

        outcome = dispute.confirm_payment(
            db, broadcaster, PaymentWebhook(order_id=order_id, status="approved", payment_id="mp_1"), now=now
        )

        assert outcome.message == "Payment validated and dispute started."
        assert outcome.event_type == events.ORDER_AWAITING_ACCEPTANCE
        assert outcome.order.status == OrderStatus.AWAITING_ACCEPTANCE
        assert outcome.order.accept_expires_at == now + timedelta(minutes=20)

        payments = crud.get_payments(db, order_id)
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.APPROVED.value
        assert float(payments[0].amount) == 440.0
        assert payments[0].external_payment_id == "mp_1"

        assert [order.id for order in broadcaster.published] == [order_id]

    def test_window_is_configurable(self, db, make_order, broadcaster):
        order_id = make_order(status=OrderStatus.AWAITING_PAYMENT, expires_in=None)
        now = utcnow()

        outcome = dispute.confirm_payment(
            db, broadcaster, PaymentWebhook(order_id=order_id, status="approved"), now=now, window_minutes=5
        )
        assert outcome.order.accept_expires_at == now + timedelta(minutes=5)

    def test_missing_payment_id_uses_placeholder(self, db, make_order, broadcaster):
        order_id = make_order(status=OrderStatus.AWAITING_PAYMENT, expires_in=None)

        dispute.confirm_payment(db, broadcaster, PaymentWebhook(order_id=order_id, status="approved"))

        assert crud.get_payments(db, order_id)[0].external_payment_id == "mock_payment"

    def test_duplicate_approval_has_no_side_effects(self, db, make_order, broadcaster):
        order_id = make_order(status=OrderStatus.AWAITING_PAYMENT, expires_in=None)
        payload = PaymentWebhook(order_id=order_id, status="approved")

        first = dispute.confirm_payment(db, broadcaster, payload, now=utcnow())
        second = dispute.confirm_payment(db, broadcaster, payload, now=utcnow() + timedelta(minutes=5))

        assert second.message == "Payment already processed."
        assert second.event_type is None
        db.expire_all()
        assert crud.get_order(db, order_id).accept_expires_at == first.order.accept_expires_at
        assert len(crud.get_payments(db, order_id)) == 1
        assert len(broadcaster.published) == 1

    def test_approval_after_acceptance_does_not_reopen(self, db, make_order, broadcaster):
        order_id = make_order()
        dispute.accept_order(db, order_id, "agency_a")

        outcome = dispute.confirm_payment(db, broadcaster, PaymentWebhook(order_id=order_id, status="approved"))

        assert outcome.message == "Payment already processed."
        db.expire_all()
        assert crud.get_order(db, order_id).status == OrderStatus.CONFIRMED.value
        assert broadcaster.published == []

    def test_rejected_payment_is_recorded_only(self, db, make_order, broadcaster):
        order_id = make_order(status=OrderStatus.AWAITING_PAYMENT, expires_in=None)

        outcome = dispute.confirm_payment(db, broadcaster, PaymentWebhook(order_id=order_id, status="rejected"))

        assert outcome.message == "Payment rejection recorded."
        assert outcome.event_type == events.PAYMENT_REJECTED
        payments = crud.get_payments(db, order_id)
        assert [(p.status, float(p.amount)) for p in payments] == [(PaymentStatus.REJECTED.value, 0.0)]
        db.expire_all()
        order = crud.get_order(db, order_id)
        assert order.status == OrderStatus.AWAITING_PAYMENT.value
        assert order.accept_expires_at is None
        assert broadcaster.published == []

    @pytest.mark.parametrize(
        "payload",
        [
            PaymentWebhook(status="approved"),
            PaymentWebhook(order_id="abc"),
            PaymentWebhook(),
        ],
    )
    def test_missing_fields(self, db, broadcaster, payload):
        with pytest.raises(ValidationError):
            dispute.confirm_payment(db, broadcaster, payload)

    def test_unknown_order(self, db, broadcaster):
        with pytest.raises(OrderNotFoundError):
            dispute.confirm_payment(db, broadcaster, PaymentWebhook(order_id="missing", status="approved"))

    def test_store_error_is_reported(self, db, make_order, broadcaster, monkeypatch):
        order_id = make_order(status=OrderStatus.AWAITING_PAYMENT, expires_in=None)

        def broken_transition(*args, **kwargs):
            raise OperationalError("UPDATE orders", {}, Exception("disk full"))

        monkeypatch.setattr(crud, "mark_awaiting_acceptance", broken_transition)

        with pytest.raises(WebhookFailedError) as exc:
            dispute.confirm_payment(db, broadcaster, PaymentWebhook(order_id=order_id, status="approved"))
        assert exc.value.status_code == 500
        assert broadcaster.published == []
