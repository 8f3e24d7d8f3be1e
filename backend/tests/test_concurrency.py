# Overview: Threaded races against a file-backed SQLite database.

"""
Concurrency tests.

Each worker runs in its own app context (and therefore its own session and
connection). The assertions are about totals: however the races interleave,
stock is never oversold, a credit is never overpaid and a credit limit is
never exceeded.
"""

import threading
from datetime import timedelta

import pytest

from commerce import create_app
from commerce.config import Config
from commerce.errors import AmountExceedsRemaining, CreditLimitExceeded, InsufficientStock, ValidationError
from commerce.extensions import db
from commerce.models import CreditPayment, CreditTransaction, Product, StockReservation, User
from commerce.models.users import ROLE_CUSTOMER, ROLE_OUTLET
from commerce.services import credit_service, inventory_service, order_service
from commerce.time_utils import utcnow


SHIPPING = {
    "address": "1 Race Street",
    "city": "Abuja",
    "state": "FCT",
    "phone_number": "0800000000",
    "postal_code": "900001",
}


@pytest.fixture
def threaded_app(tmp_path):
    class ThreadedConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'concurrency.db'}"
        CONFLICT_RETRY_ATTEMPTS = 5
        CONFLICT_RETRY_BACKOFF = 0.01
        VERIFIED_PAYMENT_METHODS = frozenset()

    app = create_app(ThreadedConfig)
    with app.app_context():
        db.create_all()

        outlet = User(username="race_outlet", email="race_outlet@example.com", name="Race Outlet",
                      password_hash="dummy", role=ROLE_OUTLET, store_name="Race Outlet")
        customer = User(username="race_customer", email="race_customer@example.com", name="Racer",
                        password_hash="dummy", role=ROLE_CUSTOMER, credit_limit_cents=10000)
        db.session.add_all([outlet, customer])
        db.session.commit()

        product = Product(outlet_id=outlet.id, name="Contested Widget", price_cents=5000,
                          available_quantity=5, reorder_point=0, is_active=True)
        db.session.add(product)
        db.session.commit()

        app.config["RACE_IDS"] = {"outlet": outlet.id, "customer": customer.id, "product": product.id}

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


def _race(app, count, work):
    """Run work(i) on count threads at once; return (results, errors)."""
    results, errors = [], []
    lock = threading.Lock()
    start = threading.Barrier(count)

    def worker(i):
        with app.app_context():
            try:
                start.wait()
                value = work(i)
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def test_reservations_never_oversell(threaded_app):
    ids = threaded_app.config["RACE_IDS"]

    results, errors = _race(
        threaded_app, 10,
        lambda i: inventory_service.reserve(ids["product"], 1, checkout_id=f"race-{i}").id,
    )

    assert len(results) == 5
    assert len(errors) == 5
    assert all(isinstance(e, InsufficientStock) for e in errors)

    with threaded_app.app_context():
        assert db.session.get(Product, ids["product"]).available_quantity == 0
        assert db.session.query(StockReservation).count() == 5


def test_concurrent_checkouts_for_last_units(threaded_app):
    ids = threaded_app.config["RACE_IDS"]

    results, errors = _race(
        threaded_app, 6,
        lambda i: order_service.create_order(
            user_id=ids["customer"],
            items=[{"product_id": ids["product"], "quantity": 2}],
            shipping=SHIPPING,
            payment_method="cash",
        ).id,
    )

    assert len(results) == 2
    assert all(isinstance(e, InsufficientStock) for e in errors)
    with threaded_app.app_context():
        assert db.session.get(Product, ids["product"]).available_quantity == 1


def test_concurrent_payments_never_overpay(threaded_app):
    ids = threaded_app.config["RACE_IDS"]
    with threaded_app.app_context():
        order = order_service.create_order(
            user_id=ids["customer"],
            items=[{"product_id": ids["product"], "quantity": 1}],
            shipping=SHIPPING,
            payment_method="cash",
        )
        credit = credit_service.open_credit(ids["customer"], order.id, 5000, utcnow() + timedelta(days=7))
        credit_id = credit.id

    results, errors = _race(
        threaded_app, 10,
        lambda i: credit_service.record_payment(credit_id, 1000, "cash", f"R-{i}").id,
    )

    assert len(results) == 5
    assert all(isinstance(e, AmountExceedsRemaining) for e in errors)
    with threaded_app.app_context():
        credit = db.session.get(CreditTransaction, credit_id)
        assert credit.remaining_amount_cents == 0
        paid = sum(p.amount_cents for p in db.session.query(CreditPayment).filter_by(credit_id=credit_id))
        assert paid == 5000


def test_concurrent_openings_respect_limit(threaded_app):
    ids = threaded_app.config["RACE_IDS"]
    with threaded_app.app_context():
        order_ids = [
            order_service.create_order(
                user_id=ids["customer"],
                items=[{"product_id": ids["product"], "quantity": 1}],
                shipping=SHIPPING,
                payment_method="cash",
            ).id
            for _ in range(4)
        ]
    due = utcnow() + timedelta(days=7)

    results, errors = _race(
        threaded_app, 4,
        lambda i: credit_service.open_credit(ids["customer"], order_ids[i], 5000, due).id,
    )

    assert len(results) == 2
    assert all(isinstance(e, CreditLimitExceeded) for e in errors)
    with threaded_app.app_context():
        assert credit_service.credit_used(ids["customer"]) == 10000


def test_concurrent_openings_on_one_order_land_once(threaded_app):
    ids = threaded_app.config["RACE_IDS"]
    with threaded_app.app_context():
        order_id = order_service.create_order(
            user_id=ids["customer"],
            items=[{"product_id": ids["product"], "quantity": 1}],
            shipping=SHIPPING,
            payment_method="cash",
        ).id
    due = utcnow() + timedelta(days=7)

    results, errors = _race(
        threaded_app, 4,
        lambda i: credit_service.open_credit(ids["customer"], order_id, 2000, due).id,
    )

    assert len(results) == 1
    assert len(errors) == 3
    assert all(isinstance(e, ValidationError) for e in errors)
    with threaded_app.app_context():
        credits = db.session.query(CreditTransaction).filter_by(order_id=order_id).all()
        assert len(credits) == 1
        assert credit_service.credit_used(ids["customer"]) == 2000
