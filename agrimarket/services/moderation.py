"""Product submission, admin moderation and collection workflow.

Product status moves ``pending_review -> admin_review -> approved|rejected``
and then ``approved -> scheduled_collection -> collected ->
payment_processed``. Every step that reaches the farmer sends one
notification per product.
"""
import logging
from collections import namedtuple
from datetime import date, datetime

from flask import current_app
from sqlalchemy import select, update

from agrimarket import db
from agrimarket.errors import InvalidTransitionError, NotFoundError, translate_db_errors
from agrimarket.models import PRODUCT_CATEGORIES, PRODUCT_STATUSES, QUALITY_GRADES, Payment, Product
from agrimarket.services import notifications
from agrimarket.services.payments import format_amount, new_transaction_id, split_amount
from agrimarket.services.validators import (optional_text, parse_date, parse_id_list, parse_price,
                                            parse_quantity, require_choice, require_object, require_text)

log = logging.getLogger(__name__)

REVIEWABLE = ('pending_review', 'admin_review')
DEFAULT_APPROVAL_NOTE = 'Product approved by admin'

# What a farmer notification needs, read before the commit expires the row
ProductRef = namedtuple('ProductRef', 'id farmer_id name')


def get_product(product_id):
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError('Product not found')
    return product


def submit_product(farmer_id, data):
    """Create a farmer product awaiting review and alert the admins."""
    data = require_object(data, 'Product data')
    product = Product(
        farmer_id=farmer_id,
        name=require_text(data.get('name'), 'name'),
        category=require_choice(data.get('category'), PRODUCT_CATEGORIES, 'category'),
        description=optional_text(data.get('description')),
        quantity_available=parse_quantity(data.get('quantity_available'), 'quantity_available'),
        quantity_unit=optional_text(data.get('quantity_unit')) or 'kg',
        price_per_unit=parse_price(data.get('price_per_unit'), 'price_per_unit'),
        quality_grade=require_choice(data.get('quality_grade', 'A'), QUALITY_GRADES, 'quality_grade'),
        location=optional_text(data.get('location')),
        organic_certified=bool(data.get('organic_certified', False)),
        harvest_date=parse_date(data.get('harvest_date'), 'harvest_date'),
        status='pending_review',
    )
    with translate_db_errors(db.session, 'Product submission'):
        db.session.add(product)
        db.session.flush()
        ref = ProductRef(product.id, farmer_id, product.name)
        db.session.commit()

    log.info('product.submitted id=%s farmer=%s', ref.id, farmer_id)
    notifications.notify_admins(
        'New Product Submitted',
        f'New product "{ref.name}" submitted for review.',
        product_id=ref.id,
    )
    return product


def list_farmer_products(farmer_id):
    return Product.query.filter_by(farmer_id=farmer_id).order_by(
        Product.created_at.desc(), Product.id.desc()
    ).all()


def list_products(status=None):
    query = Product.query
    if status and status != 'all':
        require_choice(status, PRODUCT_STATUSES, 'status')
        query = query.filter_by(status=status)
    return query.order_by(Product.created_at.desc(), Product.id.desc()).all()


def _transition(product_id, sources, target, operation, **values):
    """Move one product from one of ``sources`` to ``target`` and commit.

    Returns the product and a ``ProductRef`` taken before the commit.
    """
    with translate_db_errors(db.session, operation):
        product = get_product(product_id)
        current = product.status
        if current not in sources:
            raise InvalidTransitionError(f'Cannot move product from {current} to {target}',
                                         current=current, target=target)
        ref = ProductRef(product.id, product.farmer_id, product.name)
        values.update(status=target, updated_at=datetime.utcnow())
        result = db.session.execute(
            update(Product)
            .where(Product.id == product.id, Product.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError('Product was modified by another request, reload and retry')
        db.session.commit()
    log.info('product.status id=%s %s->%s', ref.id, current, target)
    return product, ref


def _bulk_transition(product_ids, sources, target, operation, **values):
    """Move every eligible product in one statement.

    Returns ``(updated_refs, skipped_ids)``.
    """
    product_ids = parse_id_list(product_ids, 'product_ids')
    with translate_db_errors(db.session, operation):
        rows = db.session.execute(
            select(Product.id, Product.status, Product.farmer_id, Product.name)
            .where(Product.id.in_(product_ids))
        ).all()
        by_id = {row.id: row for row in rows}
        eligible = [pid for pid in product_ids if pid in by_id and by_id[pid].status in sources]
        skipped = [pid for pid in product_ids if pid not in eligible]
        if eligible:
            values.update(status=target, updated_at=datetime.utcnow())
            result = db.session.execute(
                update(Product)
                .where(Product.id.in_(eligible), Product.status.in_(sources))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != len(eligible):
                raise InvalidTransitionError('Products were modified by another request, reload and retry')
        db.session.commit()
    log.info('product.bulk_status target=%s updated=%s skipped=%s', target, eligible, skipped)
    refs = [ProductRef(pid, by_id[pid].farmer_id, by_id[pid].name) for pid in eligible]
    return refs, skipped


def start_review(product_id):
    product, _ = _transition(product_id, ('pending_review',), 'admin_review', 'Product review')
    return product


def _approved_message(name):
    return f'Your product "{name}" has been approved and is now live.'


def _rejected_message(name):
    return f'Your product "{name}" needs some changes. Please check admin feedback.'


def approve_product(product_id, notes=None):
    product, ref = _transition(product_id, REVIEWABLE, 'approved', 'Product approval',
                               admin_notes=optional_text(notes) or DEFAULT_APPROVAL_NOTE)
    notifications.send_notification(ref.farmer_id, 'Product Approved!', _approved_message(ref.name),
                                    'admin_message', product_id=ref.id)
    return product


def reject_product(product_id, notes):
    """Reject a product. Feedback for the farmer is mandatory."""
    notes = require_text(notes, 'notes')
    product, ref = _transition(product_id, REVIEWABLE, 'rejected', 'Product rejection', admin_notes=notes)
    notifications.send_notification(ref.farmer_id, 'Product Needs Revision', _rejected_message(ref.name),
                                    'admin_message', product_id=ref.id)
    return product


def _notify_each(refs, title, build_message):
    for ref in refs:
        notifications.send_notification(ref.farmer_id, title, build_message(ref.name),
                                        'admin_message', product_id=ref.id)


def bulk_approve_products(product_ids, notes=None):
    updated, skipped = _bulk_transition(product_ids, REVIEWABLE, 'approved', 'Bulk product approval',
                                        admin_notes=optional_text(notes) or 'Products approved by admin')
    _notify_each(updated, 'Product Approved!', _approved_message)
    return {'updated': [ref.id for ref in updated], 'skipped': skipped}


def bulk_reject_products(product_ids, notes):
    notes = require_text(notes, 'notes')
    updated, skipped = _bulk_transition(product_ids, REVIEWABLE, 'rejected', 'Bulk product rejection',
                                        admin_notes=notes)
    _notify_each(updated, 'Product Needs Revision', _rejected_message)
    return {'updated': [ref.id for ref in updated], 'skipped': skipped}


def start_collection(product_id, collection_date=None):
    collection_date = parse_date(collection_date, 'collection_date') or date.today()
    product, ref = _transition(product_id, ('approved',), 'scheduled_collection', 'Collection scheduling',
                               collection_date=collection_date)
    notifications.send_notification(
        ref.farmer_id, 'Collection Scheduled',
        f'Collection of "{ref.name}" is scheduled for {collection_date.strftime("%d %b %Y")}.',
        'collection', product_id=ref.id,
    )
    return product


def complete_collection(product_id, notes=None, quality_grade=None):
    quality_grade = require_choice(quality_grade or 'A', QUALITY_GRADES, 'quality_grade')
    values = {'quality_grade': quality_grade}
    if optional_text(notes):
        values['admin_notes'] = optional_text(notes)
    product, ref = _transition(product_id, ('scheduled_collection',), 'collected', 'Collection completion',
                               **values)
    notifications.send_notification(
        ref.farmer_id, 'Collection Completed',
        f'Your product "{ref.name}" has been collected (grade {quality_grade}).',
        'collection', product_id=ref.id,
    )
    return product


def process_collection_payment(product_id):
    """Pay the farmer for a collected product outside of any buyer order.

    The status change and the payment row commit together.
    """
    with translate_db_errors(db.session, 'Collection payment'):
        product = get_product(product_id)
        if product.status != 'collected':
            raise InvalidTransitionError(
                f'Cannot pay for a product in {product.status} status',
                current=product.status, target='payment_processed',
            )
        ref = ProductRef(product.id, product.farmer_id, product.name)
        result = db.session.execute(
            update(Product)
            .where(Product.id == product.id, Product.status == 'collected')
            .values(status='payment_processed', updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError('Product was modified by another request, reload and retry')

        amount = round(product.quantity_available * product.price_per_unit, 2)
        platform_fee, farmer_amount = split_amount(amount, current_app.config['COLLECTION_PLATFORM_FEE_RATE'])
        payment = Payment(
            order_id=None,
            buyer_id=None,
            farmer_id=ref.farmer_id,
            amount=amount,
            farmer_amount=farmer_amount,
            platform_fee=platform_fee,
            payment_type='collection',
            payment_method='instant_collection_payment',
            status='paid_to_farmer',
            transaction_id=new_transaction_id(),
            processed_at=datetime.utcnow(),
        )
        db.session.add(payment)
        db.session.flush()
        payment_id = payment.id
        db.session.commit()

    log.info('payment.collection id=%s product=%s farmer=%s amount=%.2f',
             payment_id, ref.id, ref.farmer_id, amount)
    notifications.send_notification(
        ref.farmer_id, 'Payment Processed',
        f'Payment of {format_amount(farmer_amount)} for {ref.name} has been processed '
        f'and sent to your account.',
        'payment', product_id=ref.id,
    )
    return payment
