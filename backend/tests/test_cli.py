# Overview: Pytest coverage for the ledger CLI group and the invariant checks behind `verify`.

from shopledger.models import PurchaseOrder, Sale, Shop
from shopledger.services import purchase_order_service, sales_service
from shopledger.services.ledger_audit import find_violations


class TestVerify:

    def test_clean_ledger_has_no_violations(self, db_session, shop, supplier, product):
        sales_service.record_sale(
            shop.id, 1, [{"product_id": product.id, "quantity": 2}], payment={"payment_type": "installment"}
        )
        po = purchase_order_service.create_purchase_order(
            shop.id, supplier.id, [{"product_id": product.id, "quantity_ordered": 3}]
        )
        purchase_order_service.send_purchase_order(shop.id, po.id)
        purchase_order_service.receive_purchase_order(shop.id, po.id)

        assert find_violations() == []

    def test_detects_installment_mismatch(self, db_session, shop, product):
        sale = sales_service.record_sale(
            shop.id, 1, [{"product_id": product.id, "quantity": 1}], payment={"payment_type": "installment"}
        )
        # Move the balance without an installment row behind it
        row = db_session.get(Sale, sale.id)
        row.amount_paid_cents = 500
        row.outstanding_balance_cents = 500
        db_session.commit()

        checks = {v["check"] for v in find_violations(shop.id)}
        assert checks == {"installments_total"}

    def test_detects_status_without_receipt(self, db_session, shop, supplier, product):
        po = purchase_order_service.create_purchase_order(
            shop.id, supplier.id, [{"product_id": product.id, "quantity_ordered": 3}]
        )
        row = db_session.get(PurchaseOrder, po.id)
        row.status = "received"
        db_session.commit()

        assert [v["check"] for v in find_violations(shop.id)] == ["received_status"]

    def test_verify_command_exit_codes(self, app, db_session, shop, product):
        runner = app.test_cli_runner()

        ok = runner.invoke(args=["ledger", "verify"])
        assert ok.exit_code == 0
        assert "No ledger violations" in ok.output

        sale = sales_service.record_sale(shop.id, 1, [{"product_id": product.id, "quantity": 1}])
        row = db_session.get(Sale, sale.id)
        row.amount_paid_cents = 0
        row.outstanding_balance_cents = row.total_amount_cents
        row.payment_status = "pending"
        db_session.commit()

        failed = runner.invoke(args=["ledger", "verify"])
        assert failed.exit_code == 1
        assert "installments_total" in failed.output


class TestSeedDemo:

    def test_seed_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["ledger", "seed-demo", "--shop-code", "DEMO"])
        assert first.exit_code == 0
        second = runner.invoke(args=["ledger", "seed-demo", "--shop-code", "DEMO"])
        assert "already exists" in second.output

        assert db_session.query(Shop).filter_by(code="DEMO").count() == 1
