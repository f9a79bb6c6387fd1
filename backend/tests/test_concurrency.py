# Overview: Pytest coverage for bounded retry and for concurrent writers on a shared SQLite file.

import threading

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import OfflineSaleSync, Product, Sale, Shop, Supplier
from shopledger.services import offline_sync_service, payment_service, sales_service
from shopledger.services.concurrency import (
    PendingWorkError, begin_ledger_transaction, is_retryable, run_with_retry,
)
from shopledger.services.errors import Conflict, ExceedsBalance, InsufficientStock, InvalidInput, LedgerError

from conftest import TEST_CONFIG


def _operational_error():
    return OperationalError("UPDATE products", {}, Exception("database is locked"))


class TestRunWithRetry:

    def test_retries_then_succeeds(self, db_session):
        calls = []

        def op():
            calls.append(1)
            if len(calls) < 3:
                raise _operational_error()
            return "done"

        assert run_with_retry(op, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_stale_data_is_retried(self, db_session):
        calls = []

        def op():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("version mismatch")
            return "ok"

        assert run_with_retry(op, attempts=2, backoff_base=0) == "ok"

    def test_exhaustion_raises_conflict(self, db_session):
        def op():
            raise _operational_error()

        with pytest.raises(Conflict) as exc_info:
            run_with_retry(op, attempts=2, backoff_base=0)

        assert exc_info.value.retryable is True
        assert exc_info.value.details == {"attempts": 2}
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert exc_info.value.to_dict()["retryable"] is True

    def test_ledger_errors_are_not_retried(self, db_session):
        calls = []

        def op():
            calls.append(1)
            raise InvalidInput("bad")

        with pytest.raises(InvalidInput):
            run_with_retry(op, attempts=5, backoff_base=0)
        assert len(calls) == 1

    def test_extra_retry_types(self, db_session):
        calls = []

        def op():
            calls.append(1)
            if len(calls) == 1:
                raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
            return "ok"

        assert run_with_retry(op, attempts=2, backoff_base=0, retry_on=(IntegrityError,)) == "ok"

    def test_integrity_error_not_retried_by_default(self, db_session):
        assert not is_retryable(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))

    def test_default_attempts_from_config(self, app, db_session):
        calls = []

        def op():
            calls.append(1)
            raise _operational_error()

        with pytest.raises(Conflict):
            run_with_retry(op, backoff_base=0)
        assert len(calls) == app.config["LEDGER_RETRY_ATTEMPTS"]


class TestPendingWorkGuard:

    def test_unflushed_objects_refused(self, db_session, shop):
        calls = []
        db_session.add(Supplier(shop_id=shop.id, name="Not Yet Saved"))

        with pytest.raises(PendingWorkError):
            run_with_retry(lambda: calls.append(1), attempts=2, backoff_base=0)

        assert calls == []
        db_session.commit()
        assert db_session.query(Supplier).filter_by(name="Not Yet Saved").count() == 1

    def test_flushed_writes_refused(self, db_session, shop, product):
        db_session.add(Supplier(shop_id=shop.id, name="Flushed Only"))
        db_session.flush()

        with pytest.raises(PendingWorkError):
            sales_service.record_sale(shop.id, 1, [{"product_id": product.id, "quantity": 1}])

        db_session.commit()
        assert db_session.query(Supplier).filter_by(name="Flushed Only").count() == 1
        assert db_session.get(Product, product.id).stock == 10

    def test_clean_session_after_commit_allowed(self, db_session, shop, product):
        db_session.add(Supplier(shop_id=shop.id, name="Committed"))
        db_session.commit()

        sale = sales_service.record_sale(shop.id, 1, [{"product_id": product.id, "quantity": 1}])
        assert sale.total_amount_cents == 1000


class TestReplayRace:

    def test_lost_mapping_race_resolves_to_existing(self, db_session, shop, product, monkeypatch):
        winner = sales_service.record_sale(shop.id, 1, [{"product_id": product.id, "quantity": 1}])
        winner_id = winner.id
        real_create = offline_sync_service.create_sale_locked
        calls = []

        def create_after_rival_commits(**kwargs):
            # Another replay of the same entry commits its mapping after our lookup missed
            calls.append(1)
            db.session.rollback()
            db.session.add(OfflineSaleSync(shop_id=shop.id, client_temp_id="till-7-0001", sale_id=winner_id))
            db.session.commit()
            begin_ledger_transaction()
            return real_create(**kwargs)

        monkeypatch.setattr(offline_sync_service, "create_sale_locked", create_after_rival_commits)

        result = offline_sync_service.sync_offline_sale(shop.id, 2, {
            "client_temp_id": "till-7-0001",
            "items": [{"product_id": product.id, "quantity": 3, "price_cents": 1000}],
        })

        assert calls == [1]
        assert result["status"] == "existing"
        assert result["server_id"] == winner_id
        assert db_session.query(Sale).count() == 1
        assert db_session.query(OfflineSaleSync).count() == 1
        assert db_session.get(Product, product.id).stock == 9


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database so threads get their own connections."""
    config = dict(TEST_CONFIG)
    config.update({
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.sqlite3'}",
        'LEDGER_RETRY_ATTEMPTS': 5,
        'LEDGER_SQLITE_BUSY_TIMEOUT': 30.0,
    })
    app = create_app(config)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def _run_threads(app, count, work):
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def runner(index):
        with app.app_context():
            barrier.wait()
            try:
                outcome = work(index)
            except LedgerError as e:
                outcome = e
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=runner, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


class TestConcurrentWriters:

    def test_no_oversell_under_concurrent_checkout(self, file_app):
        with file_app.app_context():
            shop = Shop(name="Busy Shop", code="BUSY")
            db.session.add(shop)
            db.session.flush()
            product = Product(shop_id=shop.id, name="Hot Item", stock=5, price_cents=100)
            db.session.add(product)
            db.session.commit()
            shop_id, product_id = shop.id, product.id

        results = _run_threads(
            file_app, 8,
            lambda i: sales_service.record_sale(shop_id, i, [{"product_id": product_id, "quantity": 1}]).id,
        )

        sold = [r for r in results if isinstance(r, int)]
        refused = [r for r in results if isinstance(r, InsufficientStock)]
        assert len(sold) == 5
        assert len(refused) == 3

        with file_app.app_context():
            assert db.session.get(Product, product_id).stock == 0
            assert db.session.query(Sale).count() == 5

    def test_concurrent_payments_never_overpay(self, file_app):
        with file_app.app_context():
            shop = Shop(name="Layaway Shop", code="LAYAWAY")
            db.session.add(shop)
            db.session.flush()
            product = Product(shop_id=shop.id, name="Sofa", stock=3, price_cents=10000)
            db.session.add(product)
            db.session.commit()
            shop_id = shop.id
            sale = sales_service.record_sale(
                shop_id, 1, [{"product_id": product.id, "quantity": 1}],
                payment={"payment_type": "installment"},
            )
            sale_id = sale.id

        results = _run_threads(
            file_app, 6,
            lambda i: payment_service.apply_payment(shop_id, sale_id, 4000)[1].id,
        )

        applied = [r for r in results if isinstance(r, int)]
        rejected = [r for r in results if isinstance(r, ExceedsBalance)]
        assert len(applied) == 2
        assert len(rejected) == 4

        with file_app.app_context():
            sale = db.session.get(Sale, sale_id)
            assert sale.amount_paid_cents == 8000
            assert sale.outstanding_balance_cents == 2000

    def test_concurrent_replays_of_one_entry_apply_once(self, file_app):
        with file_app.app_context():
            shop = Shop(name="Flaky Wifi Shop", code="FLAKY")
            db.session.add(shop)
            db.session.flush()
            product = Product(shop_id=shop.id, name="Bread", stock=5, price_cents=300)
            db.session.add(product)
            db.session.commit()
            shop_id, product_id = shop.id, product.id

        entry = {
            "client_temp_id": "till-3-0042",
            "items": [{"product_id": product_id, "quantity": 2, "price_cents": 300}],
        }
        results = _run_threads(
            file_app, 6,
            lambda i: offline_sync_service.sync_batch(shop_id, i, [dict(entry)]),
        )

        assert all(r["errors"] == [] for r in results)
        synced = [r["synced"][0] for r in results]
        statuses = sorted(s["status"] for s in synced)
        assert statuses == ["created"] + ["existing"] * 5
        assert len({s["server_id"] for s in synced}) == 1

        with file_app.app_context():
            assert db.session.query(Sale).count() == 1
            assert db.session.query(OfflineSaleSync).count() == 1
            assert db.session.get(Product, product_id).stock == 3
