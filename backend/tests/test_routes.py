# Overview: Pytest coverage for the HTTP boundary (shop context, JSON payloads, error mapping).

from shopledger.extensions import db
from shopledger.models import Product, Supplier
from shopledger.services import sales_service

from conftest import shop_headers


class TestShopContext:

    def test_missing_headers_rejected(self, client, db_session, shop):
        response = client.get('/api/sales')
        assert response.status_code == 401

    def test_non_integer_shop_rejected(self, client, db_session, shop):
        response = client.get('/api/sales', headers={'X-Shop-Id': 'abc', 'X-Actor-Id': '1'})
        assert response.status_code == 401

    def test_health_needs_no_context(self, client, db_session):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json['status'] == 'healthy'


class TestSalesRoutes:

    def test_record_and_fetch_sale(self, client, db_session, shop, product):
        response = client.post('/api/sales', headers=shop_headers(shop), json={
            'items': [{'product_id': product.id, 'quantity': 2}],
        })
        assert response.status_code == 201
        sale = response.json['sale']
        assert sale['total_amount_cents'] == 2000
        assert sale['payment_status'] == 'completed'
        assert len(sale['items']) == 1
        assert len(sale['installments']) == 1

        by_order_id = client.get(f"/api/sales/{sale['order_id']}", headers=shop_headers(shop))
        assert by_order_id.status_code == 200
        assert by_order_id.json['sale']['id'] == sale['id']

        items = client.get(f"/api/sales/{sale['id']}/items", headers=shop_headers(shop))
        assert items.json['items'][0]['product_id'] == product.id

    def test_insufficient_stock_is_422(self, client, db_session, shop, product):
        response = client.post('/api/sales', headers=shop_headers(shop), json={
            'items': [{'product_id': product.id, 'quantity': 50}],
        })
        assert response.status_code == 422
        assert response.json['code'] == 'INSUFFICIENT_STOCK'
        assert response.json['details']['available'] == 10
        db_session.expire_all()
        assert db_session.get(Product, product.id).stock == 10

    def test_empty_items_is_400(self, client, db_session, shop):
        response = client.post('/api/sales', headers=shop_headers(shop), json={'items': []})
        assert response.status_code == 400
        assert response.json['code'] == 'INVALID_INPUT'

    def test_other_shop_sale_is_404(self, client, db_session, shop, other_shop, product):
        created = client.post('/api/sales', headers=shop_headers(shop), json={
            'items': [{'product_id': product.id, 'quantity': 1}],
        }).json['sale']

        response = client.get(f"/api/sales/{created['id']}", headers=shop_headers(other_shop))
        assert response.status_code == 404
        assert response.json['code'] == 'NOT_FOUND'

    def test_installment_flow(self, client, db_session, shop, product):
        sale = client.post('/api/sales', headers=shop_headers(shop), json={
            'items': [{'product_id': product.id, 'quantity': 5}],
            'payment_type': 'installment',
            'amount_paid_cents': 1000,
        }).json['sale']
        assert sale['outstanding_balance_cents'] == 4000

        paid = client.post(f"/api/sales/{sale['id']}/payments", headers=shop_headers(shop), json={
            'amount_cents': 4000,
            'payment_method': 'transfer',
        })
        assert paid.status_code == 201
        assert paid.json['sale']['payment_status'] == 'completed'
        assert paid.json['installment']['payment_method'] == 'transfer'

        again = client.post(f"/api/sales/{sale['id']}/payments", headers=shop_headers(shop), json={'amount_cents': 1})
        assert again.status_code == 422
        assert again.json['code'] == 'ALREADY_SETTLED'

        history = client.get(f"/api/sales/{sale['id']}/installments", headers=shop_headers(shop))
        assert [i['amount_cents'] for i in history.json['installments']] == [1000, 4000]
        assert history.json['summary']['is_fully_paid'] is True

    def test_overpayment_is_422(self, client, db_session, shop, product):
        sale = client.post('/api/sales', headers=shop_headers(shop), json={
            'items': [{'product_id': product.id, 'quantity': 1}],
            'payment_type': 'installment',
        }).json['sale']

        response = client.post(f"/api/sales/{sale['id']}/payments", headers=shop_headers(shop), json={'amount_cents': 1001})
        assert response.status_code == 422
        assert response.json['code'] == 'EXCEEDS_BALANCE'

    def test_list_sales(self, client, db_session, shop, product_b):
        for _ in range(3):
            client.post('/api/sales', headers=shop_headers(shop), json={
                'items': [{'product_id': product_b.id, 'quantity': 1}],
            })
        response = client.get('/api/sales?limit=2', headers=shop_headers(shop))
        assert response.status_code == 200
        assert response.json['count'] == 2


class TestPurchaseOrderRoutes:

    def _create(self, client, shop, supplier, product):
        return client.post('/api/purchase-orders', headers=shop_headers(shop), json={
            'supplier_id': supplier.id,
            'items': [{'product_id': product.id, 'quantity_ordered': 4, 'unit_cost_cents': 500}],
        })

    def test_full_lifecycle(self, client, db_session, shop, supplier, product):
        created = self._create(client, shop, supplier, product)
        assert created.status_code == 201
        po = created.json['purchase_order']
        assert po['status'] == 'draft'

        sent = client.post(f"/api/purchase-orders/{po['id']}/send", headers=shop_headers(shop))
        assert sent.json['purchase_order']['status'] == 'sent'

        item_id = po['items'][0]['id']
        partial = client.post(f"/api/purchase-orders/{po['id']}/receive", headers=shop_headers(shop), json={
            'items': [{'item_id': item_id, 'quantity_received': 1}],
        })
        assert partial.status_code == 200
        assert partial.json['purchase_order']['status'] == 'partial'

        over = client.post(f"/api/purchase-orders/{po['id']}/receive", headers=shop_headers(shop), json={
            'items': [{'item_id': item_id, 'quantity_received': 4}],
        })
        assert over.status_code == 409
        assert over.json['code'] == 'REMAINING_EXCEEDED'

        rest = client.post(f"/api/purchase-orders/{po['id']}/receive", headers=shop_headers(shop))
        assert rest.json['purchase_order']['status'] == 'received'

        stock = client.get(f"/api/products/{product.id}/stock", headers=shop_headers(shop))
        assert stock.json['stock'] == 14
        assert [m['delta'] for m in stock.json['movements']] == [3, 1]

    def test_receive_draft_is_409(self, client, db_session, shop, supplier, product):
        po = self._create(client, shop, supplier, product).json['purchase_order']
        response = client.post(f"/api/purchase-orders/{po['id']}/receive", headers=shop_headers(shop))
        assert response.status_code == 409
        assert response.json['code'] == 'INVALID_TRANSITION'

    def test_edit_and_cancel(self, client, db_session, shop, supplier, product):
        po = self._create(client, shop, supplier, product).json['purchase_order']

        edited = client.put(f"/api/purchase-orders/{po['id']}", headers=shop_headers(shop), json={'notes': 'call first'})
        assert edited.json['purchase_order']['notes'] == 'call first'

        cancelled = client.post(f"/api/purchase-orders/{po['id']}/cancel", headers=shop_headers(shop), json={'reason': 'duplicate'})
        assert cancelled.json['purchase_order']['status'] == 'cancelled'

        listed = client.get('/api/purchase-orders?status=cancelled', headers=shop_headers(shop))
        assert [p['id'] for p in listed.json['purchase_orders']] == [po['id']]

    def test_missing_supplier_is_400(self, client, db_session, shop, product):
        response = client.post('/api/purchase-orders', headers=shop_headers(shop), json={
            'items': [{'product_id': product.id, 'quantity_ordered': 1}],
        })
        assert response.status_code == 400


class TestPosSyncRoute:

    def test_sync_and_replay(self, client, db_session, shop, product):
        payload = {'sales': [{
            'client_temp_id': 'till-9-0001',
            'items': [{'product_id': product.id, 'quantity': 12, 'price_cents': 1000}],
        }]}

        first = client.post('/api/pos/sync', headers=shop_headers(shop), json=payload)
        assert first.status_code == 200
        assert first.json['synced'][0]['status'] == 'created'

        second = client.post('/api/pos/sync', headers=shop_headers(shop), json=payload)
        assert second.json['synced'][0]['status'] == 'existing'
        assert second.json['synced'][0]['server_id'] == first.json['synced'][0]['server_id']

        db_session.expire_all()
        assert db_session.get(Product, product.id).stock == -2

    def test_empty_batch_is_400(self, client, db_session, shop):
        response = client.post('/api/pos/sync', headers=shop_headers(shop), json={'sales': []})
        assert response.status_code == 400


class TestUnexpectedErrors:

    def test_unexpected_error_is_500_and_rolled_back(self, client, db_session, shop, product, monkeypatch):
        def half_done(*args, **kwargs):
            db.session.add(Supplier(shop_id=shop.id, name="Half Written"))
            raise RuntimeError("lost connection mid-request")

        monkeypatch.setattr(sales_service, "record_sale", half_done)

        response = client.post('/api/sales', headers=shop_headers(shop), json={
            'items': [{'product_id': product.id, 'quantity': 1}],
        })
        assert response.status_code == 500
        assert response.json == {'error': 'Internal server error', 'code': 'INTERNAL_ERROR'}
        assert db_session.query(Supplier).filter_by(name="Half Written").count() == 0
