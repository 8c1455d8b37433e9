"""Order placement and order status workflow."""
import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import select, update

from agrimarket import db
from agrimarket.errors import (InsufficientInventoryError, InvalidTransitionError, NotFoundError,
                               ValidationError, translate_db_errors)
from agrimarket.models import ORDER_STATUSES, AggregatedProduct, Order, Payment, Product
from agrimarket.services import notifications
from agrimarket.services.payments import split_amount
from agrimarket.services.validators import (optional_text, parse_date, parse_id, parse_id_list,
                                            parse_quantity, require_choice, require_text)

log = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    'pending': ('confirmed', 'cancelled'),
    'confirmed': ('processing', 'cancelled'),
    'processing': ('shipped', 'cancelled'),
    'shipped': ('delivered', 'cancelled'),
    'delivered': (),
    'cancelled': (),
}


def _insufficient(available, unit):
    return InsufficientInventoryError(
        f'Requested quantity exceeds available quantity ({available:g} {unit} available)',
        available=available,
    )


def place_aggregated_order(buyer_id, aggregated_product_id, quantity, delivery_address,
                           phone=None, special_instructions=None, preferred_delivery_date=None):
    """Reserve inventory from an aggregated product and open a pending order.

    The decrement is one conditional UPDATE, so concurrent orders cannot take
    more than the pool holds. Returns the new order id.
    """
    quantity = parse_quantity(quantity)
    delivery_address = require_text(delivery_address, 'delivery_address')
    preferred_delivery_date = parse_date(preferred_delivery_date, 'preferred_delivery_date')
    aggregated_product_id = parse_id(aggregated_product_id, 'product_id')

    with translate_db_errors(db.session, 'Order placement'):
        result = db.session.execute(
            update(AggregatedProduct)
            .where(AggregatedProduct.id == aggregated_product_id,
                   AggregatedProduct.total_quantity >= quantity)
            .values(total_quantity=AggregatedProduct.total_quantity - quantity,
                    updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            row = db.session.execute(
                select(AggregatedProduct.total_quantity, AggregatedProduct.quantity_unit)
                .where(AggregatedProduct.id == aggregated_product_id)
            ).first()
            if row is None:
                raise NotFoundError('Product not found')
            raise _insufficient(row.total_quantity, row.quantity_unit)

        product = db.session.get(AggregatedProduct, aggregated_product_id, populate_existing=True)
        order = Order(
            buyer_id=buyer_id,
            aggregated_product_id=product.id,
            product_name=product.product_name,
            quantity_ordered=quantity,
            total_amount=round(quantity * product.standard_price, 2),
            delivery_address=delivery_address,
            phone=optional_text(phone),
            special_instructions=optional_text(special_instructions),
            preferred_delivery_date=preferred_delivery_date,
            status='pending',
        )
        db.session.add(order)
        db.session.flush()
        order_id, total_amount = order.id, order.total_amount
        db.session.commit()

    log.info('order.placed id=%s buyer=%s aggregated_product=%s qty=%g total=%.2f',
             order_id, buyer_id, aggregated_product_id, quantity, total_amount)
    return order_id


def place_direct_order(buyer_id, product_id, quantity, delivery_address,
                       phone=None, special_instructions=None):
    """Order straight from a single farmer's approved product."""
    quantity = parse_quantity(quantity)
    delivery_address = require_text(delivery_address, 'delivery_address')
    product_id = parse_id(product_id, 'product_id')

    with translate_db_errors(db.session, 'Order placement'):
        result = db.session.execute(
            update(Product)
            .where(Product.id == product_id,
                   Product.status == 'approved',
                   Product.quantity_available >= quantity)
            .values(quantity_available=Product.quantity_available - quantity,
                    updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            row = db.session.execute(
                select(Product.status, Product.quantity_available, Product.quantity_unit)
                .where(Product.id == product_id)
            ).first()
            if row is None or row.status != 'approved':
                raise NotFoundError('Product not available')
            raise _insufficient(row.quantity_available, row.quantity_unit)

        product = db.session.get(Product, product_id, populate_existing=True)
        order = Order(
            buyer_id=buyer_id,
            product_id=product.id,
            product_name=product.name,
            quantity_ordered=quantity,
            total_amount=round(quantity * product.price_per_unit, 2),
            delivery_address=delivery_address,
            phone=optional_text(phone),
            special_instructions=optional_text(special_instructions),
            status='pending',
        )
        db.session.add(order)
        db.session.flush()
        order_id, total_amount = order.id, order.total_amount
        db.session.commit()

    log.info('order.placed id=%s buyer=%s product=%s qty=%g total=%.2f',
             order_id, buyer_id, product_id, quantity, total_amount)
    return order_id


def allowed_sources(target):
    """Statuses an order may be in to move to ``target``."""
    if not current_app.config['ENFORCE_ORDER_TRANSITIONS']:
        return tuple(status for status in ORDER_STATUSES if status != target)
    return tuple(source for source, targets in ORDER_TRANSITIONS.items() if target in targets)


def check_transition(current, target):
    if current not in allowed_sources(target):
        raise InvalidTransitionError(f'Cannot move order from {current} to {target}',
                                     current=current, target=target)


def tracking_id_for(order_id):
    return f'TRK-{order_id:08d}'


def get_order(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError('Order not found')
    return order


def _ensure_order_payment(order):
    """Open the pending farmer payment owed for a confirmed order."""
    if order.product_id is None:
        # pooled inventory is settled through collection payments
        log.info('order %s draws on aggregated inventory; no order payment created', order.id)
        return None
    existing = Payment.query.filter_by(order_id=order.id).first()
    if existing is not None:
        return existing
    platform_fee, farmer_amount = split_amount(order.total_amount,
                                               current_app.config['ORDER_PLATFORM_FEE_RATE'])
    payment = Payment(
        order_id=order.id,
        buyer_id=order.buyer_id,
        farmer_id=order.product.farmer_id,
        amount=order.total_amount,
        farmer_amount=farmer_amount,
        platform_fee=platform_fee,
        payment_type='order',
        status='pending',
    )
    db.session.add(payment)
    order.payment_status = 'pending'
    return payment


def advance_order_status(order_id, status):
    """Move one order along the status table and tell the buyer."""
    require_choice(status, ORDER_STATUSES, 'status')

    with translate_db_errors(db.session, 'Order status update'):
        order = get_order(order_id)
        current = order.status
        check_transition(current, status)
        values = {'status': status, 'updated_at': datetime.utcnow()}
        if status == 'shipped' and not order.tracking_id:
            values['tracking_id'] = tracking_id_for(order.id)
        result = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError('Order was modified by another request, reload and retry')
        if status == 'confirmed':
            _ensure_order_payment(order)
        order_id, buyer_id, product_name = order.id, order.buyer_id, order.product_name
        db.session.commit()

    log.info('order.status id=%s %s->%s', order_id, current, status)
    notifications.send_notification(
        buyer_id,
        'Order Status Updated',
        f'Your order for {product_name} has been {status.replace("_", " ")}.',
        'order_update',
        order_id=order_id,
    )
    return order


def bulk_advance_order_status(order_ids, status):
    """Apply one status to many orders in a single guarded statement.

    Orders that cannot legally move to ``status`` are left untouched and
    reported back as skipped. No per-order notifications are sent.
    """
    require_choice(status, ORDER_STATUSES, 'status')
    order_ids = parse_id_list(order_ids, 'order_ids')
    sources = allowed_sources(status)

    with translate_db_errors(db.session, 'Bulk order status update'):
        rows = db.session.execute(
            select(Order.id, Order.status).where(Order.id.in_(order_ids))
        ).all()
        current_status = {row.id: row.status for row in rows}
        eligible = [oid for oid in order_ids if current_status.get(oid) in sources]
        skipped = [oid for oid in order_ids if oid not in eligible]

        if eligible:
            result = db.session.execute(
                update(Order)
                .where(Order.id.in_(eligible), Order.status.in_(sources))
                .values(status=status, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != len(eligible):
                raise InvalidTransitionError('Orders were modified by another request, reload and retry')
            if status in ('shipped', 'confirmed'):
                for order in Order.query.filter(Order.id.in_(eligible)).all():
                    if status == 'shipped' and not order.tracking_id:
                        order.tracking_id = tracking_id_for(order.id)
                    if status == 'confirmed':
                        _ensure_order_payment(order)
        db.session.commit()

    log.info('order.bulk_status target=%s updated=%s skipped=%s', status, eligible, skipped)
    return {'updated': eligible, 'skipped': skipped}


def set_delivery_date(order_id, delivery_date):
    delivery_date = parse_date(delivery_date, 'delivery_date')
    if delivery_date is None:
        raise ValidationError('delivery_date is required', field='delivery_date')
    with translate_db_errors(db.session, 'Delivery date update'):
        order = get_order(order_id)
        if order.status in ('delivered', 'cancelled'):
            raise InvalidTransitionError(f'Cannot schedule delivery for a {order.status} order')
        order.delivery_date = delivery_date
        order_id, buyer_id, product_name = order.id, order.buyer_id, order.product_name
        db.session.commit()

    notifications.send_notification(
        buyer_id,
        'Delivery Date Updated',
        f'Expected delivery date for your order of {product_name} has been set to '
        f'{delivery_date.strftime("%d %b %Y")}.',
        'order_update',
        order_id=order_id,
    )
    return order


def add_support_note(order_id, note):
    """Append a timestamped admin support line to the order notes."""
    note = require_text(note, 'note')
    with translate_db_errors(db.session, 'Support note'):
        order = get_order(order_id)
        line = f'[{datetime.utcnow().strftime("%Y-%m-%d %H:%M")}] Admin Support: {note}'
        order.notes = f'{order.notes}\n\n{line}' if order.notes else line
        db.session.commit()
    return order


def list_buyer_orders(buyer_id):
    return Order.query.filter_by(buyer_id=buyer_id).order_by(
        Order.created_at.desc(), Order.id.desc()
    ).all()


def list_orders(status=None):
    query = Order.query
    if status and status != 'all':
        require_choice(status, ORDER_STATUSES, 'status')
        query = query.filter_by(status=status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()
