from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from agrimarket import db
from agrimarket.errors import (InsufficientInventoryError, InvalidTransitionError, NotFoundError,
                               TransientStoreError, ValidationError)
from agrimarket.models import AggregatedProduct, Notification, Order, Payment, Product
from agrimarket.services import orders


def _quantity(product_id):
    return db.session.get(AggregatedProduct, product_id, populate_existing=True).total_quantity


def test_wheat_order_then_oversized_order(ctx, users, make_aggregated):
    wheat = make_aggregated(product_name='Wheat', total_quantity=100, standard_price=25000)

    order_id = orders.place_aggregated_order(users['buyer'], wheat, 30, 'Warehouse 4, Ludhiana')
    order = db.session.get(Order, order_id)
    assert order.total_amount == 750000
    assert order.status == 'pending'
    assert order.product_name == 'Wheat'
    assert order.aggregated_product_id == wheat
    assert _quantity(wheat) == 70

    with pytest.raises(InsufficientInventoryError) as excinfo:
        orders.place_aggregated_order(users['buyer2'], wheat, 80, 'Depot 2, Karnal')
    assert 'exceeds available quantity' in excinfo.value.message
    assert excinfo.value.details['available'] == 70
    assert _quantity(wheat) == 70
    assert Order.query.count() == 1


def test_order_can_take_the_whole_pool(ctx, users, make_aggregated):
    rice = make_aggregated(product_name='Rice', total_quantity=40, standard_price=100)
    orders.place_aggregated_order(users['buyer'], rice, 40, 'Depot 1')
    assert _quantity(rice) == 0


@pytest.mark.parametrize('quantity', ['abc', None, 0, -5, '', float('nan'), True])
def test_invalid_quantity_is_rejected_before_any_mutation(ctx, users, make_aggregated, quantity):
    wheat = make_aggregated()
    with pytest.raises(ValidationError):
        orders.place_aggregated_order(users['buyer'], wheat, quantity, 'Depot 1')
    assert _quantity(wheat) == 100
    assert Order.query.count() == 0


def test_delivery_address_is_required(ctx, users, make_aggregated):
    wheat = make_aggregated()
    with pytest.raises(ValidationError):
        orders.place_aggregated_order(users['buyer'], wheat, 5, '   ')
    assert _quantity(wheat) == 100


def test_unknown_aggregated_product(ctx, users):
    with pytest.raises(NotFoundError):
        orders.place_aggregated_order(users['buyer'], 999, 5, 'Depot 1')


def test_failed_insert_rolls_back_the_decrement(ctx, users, make_aggregated, monkeypatch):
    wheat = make_aggregated()

    def broken_commit():
        raise OperationalError('COMMIT', {}, Exception('database is locked'))

    monkeypatch.setattr(db.session, 'commit', broken_commit)
    with pytest.raises(TransientStoreError):
        orders.place_aggregated_order(users['buyer'], wheat, 10, 'Depot 1')
    monkeypatch.undo()

    assert _quantity(wheat) == 100
    assert Order.query.count() == 0


def test_concurrent_orders_never_oversell(app, users, make_aggregated):
    wheat = make_aggregated(total_quantity=100)

    def attempt(_):
        with app.app_context():
            try:
                orders.place_aggregated_order(users['buyer'], wheat, 30, 'Depot 1')
                return 30
            except (InsufficientInventoryError, TransientStoreError):
                return 0
            finally:
                db.session.remove()

    with ThreadPoolExecutor(max_workers=8) as executor:
        placed = sum(executor.map(attempt, range(8)))

    with app.app_context():
        assert 0 < placed <= 100
        assert _quantity(wheat) == 100 - placed
        assert Order.query.count() * 30 == placed


def test_direct_order_requires_approved_product(ctx, users, make_product):
    pending = make_product(status='pending_review')
    with pytest.raises(NotFoundError):
        orders.place_direct_order(users['buyer'], pending, 5, 'Depot 1')

    approved = make_product(status='approved', quantity_available=50, price_per_unit=40)
    order_id = orders.place_direct_order(users['buyer'], approved, 10, 'Depot 1')
    assert db.session.get(Order, order_id).total_amount == 400
    assert db.session.get(Product, approved, populate_existing=True).quantity_available == 40

    with pytest.raises(InsufficientInventoryError):
        orders.place_direct_order(users['buyer'], approved, 41, 'Depot 1')


def test_order_walks_forward_through_the_status_table(ctx, users, make_aggregated):
    order_id = orders.place_aggregated_order(users['buyer'], make_aggregated(), 5, 'Depot 1')

    for status in ('confirmed', 'processing', 'shipped', 'delivered'):
        assert orders.advance_order_status(order_id, status).status == status

    order = db.session.get(Order, order_id)
    assert order.tracking_id == f'TRK-{order_id:08d}'
    titles = [n.title for n in Notification.query.filter_by(user_id=users['buyer']).all()]
    assert titles == ['Order Status Updated'] * 4


@pytest.mark.parametrize('path, target', [
    (('confirmed',), 'pending'),
    ((), 'shipped'),
    (('confirmed', 'processing', 'shipped', 'delivered'), 'cancelled'),
    (('cancelled',), 'confirmed'),
    (('confirmed',), 'confirmed'),
])
def test_illegal_transitions_are_rejected(ctx, users, make_aggregated, path, target):
    order_id = orders.place_aggregated_order(users['buyer'], make_aggregated(), 5, 'Depot 1')
    for status in path:
        orders.advance_order_status(order_id, status)
    before = db.session.get(Order, order_id).status

    with pytest.raises(InvalidTransitionError):
        orders.advance_order_status(order_id, target)
    assert db.session.get(Order, order_id, populate_existing=True).status == before


def test_cancel_is_allowed_from_shipped(ctx, users, make_aggregated):
    order_id = orders.place_aggregated_order(users['buyer'], make_aggregated(), 5, 'Depot 1')
    for status in ('confirmed', 'processing', 'shipped', 'cancelled'):
        orders.advance_order_status(order_id, status)
    assert db.session.get(Order, order_id).status == 'cancelled'


def test_unknown_status_is_a_validation_error(ctx, users, make_aggregated):
    order_id = orders.place_aggregated_order(users['buyer'], make_aggregated(), 5, 'Depot 1')
    with pytest.raises(ValidationError):
        orders.advance_order_status(order_id, 'lost')


def test_transition_table_can_be_relaxed(app, users, make_aggregated):
    app.config['ENFORCE_ORDER_TRANSITIONS'] = False
    with app.app_context():
        order_id = orders.place_aggregated_order(users['buyer'], make_aggregated(), 5, 'Depot 1')
        assert orders.advance_order_status(order_id, 'delivered').status == 'delivered'
        assert orders.advance_order_status(order_id, 'pending').status == 'pending'


def test_confirming_a_direct_order_opens_a_farmer_payment(ctx, users, make_product):
    product_id = make_product(status='approved', price_per_unit=100)
    order_id = orders.place_direct_order(users['buyer'], product_id, 10, 'Depot 1')

    orders.advance_order_status(order_id, 'confirmed')

    payment = Payment.query.filter_by(order_id=order_id).one()
    assert payment.farmer_id == users['farmer']
    assert payment.buyer_id == users['buyer']
    assert payment.amount == 1000
    assert payment.platform_fee == 150
    assert payment.farmer_amount == 850
    assert payment.status == 'pending'
    assert db.session.get(Order, order_id).payment_status == 'pending'


def test_confirming_an_aggregated_order_opens_no_payment(ctx, users, make_aggregated):
    order_id = orders.place_aggregated_order(users['buyer'], make_aggregated(), 5, 'Depot 1')
    orders.advance_order_status(order_id, 'confirmed')
    assert Payment.query.count() == 0


def test_bulk_status_skips_orders_that_cannot_move(ctx, users, make_aggregated):
    wheat = make_aggregated()
    first = orders.place_aggregated_order(users['buyer'], wheat, 5, 'Depot 1')
    second = orders.place_aggregated_order(users['buyer'], wheat, 5, 'Depot 1')
    done = orders.place_aggregated_order(users['buyer'], wheat, 5, 'Depot 1')
    orders.advance_order_status(done, 'cancelled')
    notified_before = Notification.query.count()

    result = orders.bulk_advance_order_status([first, second, done, 404], 'confirmed')

    assert result == {'updated': [first, second], 'skipped': [done, 404]}
    statuses = {o.id: o.status for o in Order.query.all()}
    assert statuses == {first: 'confirmed', second: 'confirmed', done: 'cancelled'}
    assert Notification.query.count() == notified_before


def test_bulk_ship_assigns_tracking_ids(ctx, users, make_aggregated):
    wheat = make_aggregated()
    ids = [orders.place_aggregated_order(users['buyer'], wheat, 5, 'Depot 1') for _ in range(2)]
    for status in ('confirmed', 'processing', 'shipped'):
        orders.bulk_advance_order_status(ids, status)
    assert sorted(o.tracking_id for o in Order.query.all()) == [f'TRK-{i:08d}' for i in sorted(ids)]


def test_bulk_status_needs_ids(ctx):
    with pytest.raises(ValidationError):
        orders.bulk_advance_order_status([], 'confirmed')


def test_bulk_status_rolls_back_when_an_order_changes_underneath(ctx, users, make_product,
                                                                write_before_update):
    tomatoes = make_product(status='approved')
    ids = [orders.place_direct_order(users['buyer'], tomatoes, 5, 'Depot 1') for _ in range(3)]
    write_before_update(orders, update(Order).where(Order.id == ids[1]).values(status='cancelled'))

    with pytest.raises(InvalidTransitionError):
        orders.bulk_advance_order_status(ids, 'confirmed')

    statuses = {o.id: o.status for o in Order.query.populate_existing().all()}
    assert statuses == {ids[0]: 'pending', ids[1]: 'cancelled', ids[2]: 'pending'}
    assert Payment.query.count() == 0


def test_single_status_change_detects_a_concurrent_update(ctx, users, make_aggregated, write_before_update):
    order_id = orders.place_aggregated_order(users['buyer'], make_aggregated(), 5, 'Depot 1')
    write_before_update(orders, update(Order).where(Order.id == order_id).values(status='cancelled'))

    with pytest.raises(InvalidTransitionError) as excinfo:
        orders.advance_order_status(order_id, 'confirmed')

    assert 'another request' in excinfo.value.message
    assert db.session.get(Order, order_id, populate_existing=True).status == 'cancelled'
    assert Notification.query.count() == 0


def test_delivery_date_and_support_notes(ctx, users, make_aggregated):
    order_id = orders.place_aggregated_order(users['buyer'], make_aggregated(), 5, 'Depot 1')

    order = orders.set_delivery_date(order_id, '2026-11-02')
    assert order.delivery_date.isoformat() == '2026-11-02'
    assert Notification.query.filter_by(user_id=users['buyer'], title='Delivery Date Updated').count() == 1

    orders.add_support_note(order_id, 'Buyer asked for morning delivery')
    order = orders.add_support_note(order_id, 'Confirmed with driver')
    lines = order.notes.split('\n\n')
    assert len(lines) == 2
    assert lines[0].endswith('Admin Support: Buyer asked for morning delivery')

    with pytest.raises(ValidationError):
        orders.add_support_note(order_id, '')
    with pytest.raises(ValidationError):
        orders.set_delivery_date(order_id, '02/11/2026')


def test_http_order_placement(client, app, users, as_user, make_aggregated):
    wheat = make_aggregated()

    response = client.post(f'/marketplace/products/{wheat}/order', headers=as_user('buyer'),
                           json={'quantity': 30, 'delivery_address': 'Warehouse 4', 'phone': '+919800000001'})
    assert response.status_code == 201, response.get_json()
    body = response.get_json()
    assert body['total_amount'] == 750000
    assert body['status'] == 'pending'

    response = client.post(f'/marketplace/products/{wheat}/order', headers=as_user('buyer'),
                           json={'quantity': 80, 'delivery_address': 'Warehouse 4'})
    assert response.status_code == 409
    assert response.get_json()['error']['code'] == 'insufficient_inventory'
    assert response.get_json()['error']['retryable'] is False

    response = client.post(f'/marketplace/products/{wheat}/order', headers=as_user('buyer'),
                           json={'quantity': 'lots', 'delivery_address': 'Warehouse 4'})
    assert response.status_code == 400
    assert response.get_json()['error']['code'] == 'validation_error'

    for body in ([30, 'Warehouse 4'], 'thirty'):
        response = client.post(f'/marketplace/products/{wheat}/order', headers=as_user('buyer'), json=body)
        assert response.status_code == 400
        assert response.get_json()['error'] == {
            'code': 'validation_error', 'message': 'Request body must be a JSON object', 'retryable': False,
        }

    listing = client.get('/marketplace/products').get_json()
    assert listing['products'][0]['total_quantity'] == 70

    mine = client.get('/marketplace/my-orders', headers=as_user('buyer')).get_json()
    assert len(mine['orders']) == 1


def test_http_order_requires_buyer_identity(client, users, as_user, make_aggregated):
    wheat = make_aggregated()
    payload = {'quantity': 1, 'delivery_address': 'Depot 1'}

    assert client.post(f'/marketplace/products/{wheat}/order', json=payload).status_code == 401
    assert client.post(f'/marketplace/products/{wheat}/order', json=payload,
                       headers=as_user('suspended')).status_code == 401
    assert client.post(f'/marketplace/products/{wheat}/order', json=payload,
                       headers=as_user('farmer')).status_code == 403


def test_http_store_outage_is_reported_as_retryable(client, users, as_user, make_aggregated, monkeypatch):
    wheat = make_aggregated()

    def unavailable(**kwargs):
        raise TransientStoreError('Order placement failed: data store unavailable, please retry')

    monkeypatch.setattr(orders, 'place_aggregated_order', unavailable)
    response = client.post(f'/marketplace/products/{wheat}/order', headers=as_user('buyer'),
                           json={'quantity': 1, 'delivery_address': 'Depot 1'})
    assert response.status_code == 503
    assert response.get_json()['error']['retryable'] is True


def test_http_admin_order_status(client, app, users, as_user, make_aggregated):
    wheat = make_aggregated()
    with app.app_context():
        order_id = orders.place_aggregated_order(users['buyer'], wheat, 5, 'Depot 1')

    response = client.post(f'/admin/orders/{order_id}/status', headers=as_user('admin'),
                           json={'status': 'shipped'})
    assert response.status_code == 409
    assert response.get_json()['error']['code'] == 'invalid_transition'

    response = client.post(f'/admin/orders/{order_id}/status', headers=as_user('admin'),
                           json={'status': 'confirmed'})
    assert response.status_code == 200
    assert response.get_json()['status'] == 'confirmed'

    response = client.post('/admin/orders/bulk-status', headers=as_user('admin'),
                           json={'order_ids': [order_id, 9999], 'status': 'processing'})
    assert response.get_json() == {'updated': [order_id], 'skipped': [9999]}
