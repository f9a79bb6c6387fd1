# Overview: Pytest coverage for offline sale replay (idempotency, negative stock, per-item errors).

from datetime import datetime

import pytest

from shopledger.models import Customer, Installment, Notification, OfflineSaleSync, Product, Sale, SaleItem
from shopledger.services import offline_sync_service
from shopledger.services.errors import InvalidInput


def _entry(client_temp_id, product, quantity=1, **extra):
    entry = {
        "client_temp_id": client_temp_id,
        "items": [{"product_id": product.id, "quantity": quantity, "price_cents": product.price_cents}],
    }
    entry.update(extra)
    return entry


class TestReplay:

    def test_first_replay_creates_sale(self, db_session, shop, product):
        result = offline_sync_service.sync_batch(shop.id, 3, [_entry("till-1-0001", product, quantity=2)])

        assert result["errors"] == []
        synced = result["synced"][0]
        assert synced["client_temp_id"] == "till-1-0001"
        assert synced["status"] == "created"

        sale = db_session.get(Sale, synced["server_id"])
        assert sale.order_id == synced["order_id"]
        assert sale.source == "offline_sync"
        assert sale.payment_status == "completed"
        assert sale.amount_paid_cents == sale.total_amount_cents == 2000
        assert db_session.get(Product, product.id).stock == 8

    def test_replay_is_idempotent(self, db_session, shop, product):
        entry = _entry("till-1-0002", product, quantity=3)

        first = offline_sync_service.sync_batch(shop.id, 3, [entry])["synced"][0]
        second = offline_sync_service.sync_batch(shop.id, 3, [entry])["synced"][0]

        assert second["status"] == "existing"
        assert second["server_id"] == first["server_id"]
        assert second["order_id"] == first["order_id"]

        assert db_session.query(Sale).count() == 1
        assert db_session.query(SaleItem).count() == 1
        assert db_session.query(OfflineSaleSync).count() == 1
        assert db_session.get(Product, product.id).stock == 7

    def test_same_id_in_one_batch_applied_once(self, db_session, shop, product):
        entry = _entry("till-1-0003", product)
        result = offline_sync_service.sync_batch(shop.id, 3, [entry, entry])

        assert [s["status"] for s in result["synced"]] == ["created", "existing"]
        assert db_session.get(Product, product.id).stock == 9

    def test_client_ids_scoped_per_shop(self, db_session, shop, other_shop, product, foreign_product):
        offline_sync_service.sync_batch(shop.id, 3, [_entry("shared-id", product)])
        result = offline_sync_service.sync_batch(other_shop.id, 3, [_entry("shared-id", foreign_product)])

        assert result["synced"][0]["status"] == "created"
        assert db_session.query(Sale).count() == 2

    def test_stock_may_go_negative(self, db_session, shop, product):
        result = offline_sync_service.sync_batch(shop.id, 3, [_entry("till-1-0004", product, quantity=15)])

        assert result["errors"] == []
        assert db_session.get(Product, product.id).stock == -5

        alert = db_session.query(Notification).filter_by(type="low_stock").one()
        assert alert.data["stock"] == -5

    def test_client_timestamp_kept_as_sold_at(self, db_session, shop, product):
        result = offline_sync_service.sync_batch(
            shop.id, 3, [_entry("till-1-0005", product, created_at="2024-05-01T10:15:00Z")]
        )
        sale = db_session.get(Sale, result["synced"][0]["server_id"])
        assert sale.sold_at.replace(tzinfo=None) == datetime(2024, 5, 1, 10, 15)

    def test_unknown_customer_dropped(self, db_session, shop, product):
        result = offline_sync_service.sync_batch(shop.id, 3, [_entry("till-1-0006", product, customer_id=424242)])
        sale = db_session.get(Sale, result["synced"][0]["server_id"])
        assert sale.customer_id is None

    def test_known_customer_gets_stats(self, db_session, shop, product, customer):
        offline_sync_service.sync_batch(shop.id, 3, [_entry("till-1-0007", product, customer_id=customer.id)])
        assert db_session.get(Customer, customer.id).visit_count == 1

    def test_total_computed_server_side(self, db_session, shop, product):
        result = offline_sync_service.sync_batch(
            shop.id, 3, [_entry("till-1-0008", product, quantity=2, total_amount_cents=1)]
        )
        sale = db_session.get(Sale, result["synced"][0]["server_id"])
        assert sale.total_amount_cents == 2000

    def test_installment_payment_carried(self, db_session, shop, product):
        result = offline_sync_service.sync_batch(
            shop.id, 3,
            [_entry("till-1-0009", product, quantity=2, payment_type="installment", amount_paid_cents=500)],
        )
        sale = db_session.get(Sale, result["synced"][0]["server_id"])
        assert sale.payment_status == "pending"
        assert sale.outstanding_balance_cents == 1500
        assert [i.amount_cents for i in db_session.query(Installment).filter_by(sale_id=sale.id)] == [500]

    def test_overpayment_capped_not_rejected(self, db_session, shop, product):
        entry = {
            "client_temp_id": "till-1-0011",
            "items": [{"product_id": product.id, "quantity": 2}],
            "amount_paid_cents": 2500,
        }
        result = offline_sync_service.sync_batch(shop.id, 3, [entry])

        assert result["errors"] == []
        sale = db_session.get(Sale, result["synced"][0]["server_id"])
        assert sale.total_amount_cents == 2000
        assert sale.amount_paid_cents == 2000
        assert sale.outstanding_balance_cents == 0
        assert sale.payment_status == "completed"
        assert [i.amount_cents for i in db_session.query(Installment).filter_by(sale_id=sale.id)] == [2000]
        assert db_session.get(Product, product.id).stock == 8

    def test_installment_rows_capped_to_total(self, db_session, shop, product):
        entry = _entry(
            "till-1-0012", product, quantity=2,
            installments=[{"amount_cents": 1500}, {"amount_cents": 1500}, {"amount_cents": 700}],
        )
        result = offline_sync_service.sync_batch(shop.id, 3, [entry])

        sale = db_session.get(Sale, result["synced"][0]["server_id"])
        amounts = [i.amount_cents for i in db_session.query(Installment).filter_by(sale_id=sale.id).order_by(Installment.id)]
        assert amounts == [1500, 500]
        assert sale.amount_paid_cents == sale.total_amount_cents == 2000

    def test_sync_notification(self, db_session, shop, product_b):
        offline_sync_service.sync_batch(shop.id, 3, [_entry("till-1-0010", product_b)])
        assert db_session.query(Notification).filter_by(type="offline_sync").count() == 1


class TestPerItemErrors:

    def test_missing_client_temp_id(self, db_session, shop, product):
        entry = _entry("x", product)
        del entry["client_temp_id"]
        result = offline_sync_service.sync_batch(shop.id, 3, [entry])

        assert result["synced"] == []
        assert result["errors"][0]["code"] == "INVALID_INPUT"

    def test_unknown_product(self, db_session, shop, product):
        bad = {"client_temp_id": "till-1-0100", "items": [{"product_id": 999999, "quantity": 1}]}
        result = offline_sync_service.sync_batch(shop.id, 3, [bad])
        assert result["errors"] == [{"client_temp_id": "till-1-0100", "error": "Product 999999 not found", "code": "NOT_FOUND"}]

    def test_empty_items(self, db_session, shop):
        result = offline_sync_service.sync_batch(shop.id, 3, [{"client_temp_id": "till-1-0101", "items": []}])
        assert result["errors"][0]["code"] == "INVALID_INPUT"

    def test_bad_timestamp(self, db_session, shop, product):
        result = offline_sync_service.sync_batch(
            shop.id, 3, [_entry("till-1-0102", product, created_at="yesterday-ish")]
        )
        assert result["errors"][0]["code"] == "INVALID_INPUT"
        assert db_session.query(Sale).count() == 0

    def test_failure_isolated_from_other_entries(self, db_session, shop, product, product_b):
        batch = [
            _entry("till-1-0200", product, quantity=2),
            {"client_temp_id": "till-1-0201", "items": [{"product_id": 999999, "quantity": 1}]},
            _entry("till-1-0202", product_b, quantity=4),
        ]
        result = offline_sync_service.sync_batch(shop.id, 3, batch)

        assert [s["client_temp_id"] for s in result["synced"]] == ["till-1-0200", "till-1-0202"]
        assert [e["client_temp_id"] for e in result["errors"]] == ["till-1-0201"]
        assert db_session.get(Product, product.id).stock == 8
        assert db_session.get(Product, product_b.id).stock == 96

    def test_failed_entry_can_be_retried(self, db_session, shop, product):
        bad = {"client_temp_id": "till-1-0300", "items": [{"product_id": product.id, "quantity": 0}]}
        assert offline_sync_service.sync_batch(shop.id, 3, [bad])["errors"]

        good = _entry("till-1-0300", product)
        result = offline_sync_service.sync_batch(shop.id, 3, [good])
        assert result["synced"][0]["status"] == "created"

    def test_unexpected_error_reported_per_item(self, db_session, shop, product, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(offline_sync_service, "create_sale_locked", explode)
        result = offline_sync_service.sync_batch(shop.id, 3, [_entry("till-1-0400", product)])

        assert result["errors"] == [{"client_temp_id": "till-1-0400", "error": "Failed to sync sale", "code": "INTERNAL_ERROR"}]


class TestBatchValidation:

    @pytest.mark.parametrize("sales", [None, [], "not-a-list"])
    def test_batch_must_be_non_empty_list(self, db_session, shop, sales):
        with pytest.raises(InvalidInput):
            offline_sync_service.sync_batch(shop.id, 3, sales)
