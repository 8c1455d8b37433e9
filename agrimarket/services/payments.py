"""Farmer settlement: single and bulk payment processing."""
import logging
import secrets
import time
from datetime import datetime

from flask import current_app
from sqlalchemy import String, cast, func, literal, select, update

from agrimarket import db
from agrimarket.errors import (InvalidTransitionError, NotFoundError, PaymentAlreadyProcessedError,
                               translate_db_errors)
from agrimarket.models import PAYMENT_STATUSES, Order, Payment
from agrimarket.services import notifications
from agrimarket.services.validators import parse_id_list, require_choice

log = logging.getLogger(__name__)

BULK_NOTIFY_POLICIES = ('none', 'per_payment')


def split_amount(amount, fee_rate):
    """Return ``(platform_fee, farmer_amount)`` for a buyer-facing amount."""
    platform_fee = round(amount * fee_rate, 2)
    return platform_fee, round(amount - platform_fee, 2)


def format_amount(amount):
    return f'₹{amount:,.2f}'


def _now_ms():
    return int(time.time() * 1000)


def new_transaction_id():
    return f'TXN_{_now_ms()}_{secrets.token_hex(3).upper()}'


def new_batch_id():
    return f'BULK_TXN_{_now_ms()}'


def get_payment(payment_id):
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError('Payment not found')
    return payment


def process_payment(payment_id):
    """Pay a pending payment out to its farmer.

    The update only matches rows still ``pending``; a payment that was already
    settled, by this call or a concurrent one, raises
    ``PaymentAlreadyProcessedError`` and nothing changes.
    """
    with translate_db_errors(db.session, 'Payment processing'):
        payment = get_payment(payment_id)
        if payment.status != 'pending':
            raise PaymentAlreadyProcessedError(
                f'Payment {payment.id} is already {payment.status.replace("_", " ")}',
                transaction_id=payment.transaction_id,
            )
        transaction_id = new_transaction_id()
        result = db.session.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == 'pending')
            .values(status='paid_to_farmer', processed_at=datetime.utcnow(),
                    transaction_id=transaction_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PaymentAlreadyProcessedError(f'Payment {payment.id} was processed by another request')
        if payment.order_id is not None:
            db.session.execute(
                update(Order)
                .where(Order.id == payment.order_id)
                .values(payment_status='paid_to_farmer')
                .execution_options(synchronize_session=False)
            )
        payment_id, farmer_id, order_id = payment.id, payment.farmer_id, payment.order_id
        farmer_amount = payment.farmer_amount
        db.session.commit()

    log.info('payment.processed id=%s farmer=%s txn=%s', payment_id, farmer_id, transaction_id)
    notifications.send_notification(
        farmer_id,
        'Payment Processed',
        f'Your payment of {format_amount(farmer_amount)} has been processed.',
        'payment',
        order_id=order_id,
    )
    return payment


def bulk_process_payments(payment_ids):
    """Settle many payments in one statement under a shared batch id.

    Only ids that are still ``pending`` are updated; the rest come back in
    ``skipped``. Either every eligible row changes or none does.
    """
    payment_ids = parse_id_list(payment_ids, 'payment_ids')
    batch_id = new_batch_id()

    with translate_db_errors(db.session, 'Bulk payment processing'):
        rows = db.session.execute(
            select(Payment.id, Payment.status, Payment.order_id, Payment.farmer_id, Payment.farmer_amount)
            .where(Payment.id.in_(payment_ids))
        ).all()
        pending = [row.id for row in rows if row.status == 'pending']
        pending = [pid for pid in payment_ids if pid in pending]
        skipped = [pid for pid in payment_ids if pid not in pending]
        order_ids = [row.order_id for row in rows if row.id in pending and row.order_id is not None]

        if pending:
            result = db.session.execute(
                update(Payment)
                .where(Payment.id.in_(pending), Payment.status == 'pending')
                .values(status='paid_to_farmer', processed_at=datetime.utcnow(),
                        transaction_id=literal(f'{batch_id}-', String) + cast(Payment.id, String))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != len(pending):
                raise PaymentAlreadyProcessedError(
                    'Some payments were processed by another request, reload and retry'
                )
            if order_ids:
                db.session.execute(
                    update(Order)
                    .where(Order.id.in_(order_ids))
                    .values(payment_status='paid_to_farmer')
                    .execution_options(synchronize_session=False)
                )
        db.session.commit()

    log.info('payment.bulk_processed batch=%s processed=%s skipped=%s', batch_id, pending, skipped)

    policy = current_app.config['BULK_PAYMENT_NOTIFY']
    if policy not in BULK_NOTIFY_POLICIES:
        log.warning('unknown BULK_PAYMENT_NOTIFY policy %r, treating as none', policy)
    elif policy == 'per_payment' and pending:
        for row in rows:
            if row.id not in pending:
                continue
            notifications.send_notification(
                row.farmer_id,
                'Payment Processed',
                f'Your payment of {format_amount(row.farmer_amount)} has been processed.',
                'payment',
                order_id=row.order_id,
            )
    return {'processed': pending, 'skipped': skipped, 'batch_id': batch_id}


def complete_payment(payment_id):
    """Close a payment once the buyer side has settled."""
    with translate_db_errors(db.session, 'Payment completion'):
        payment = get_payment(payment_id)
        if payment.status != 'paid_to_farmer':
            raise InvalidTransitionError(
                f'Only payments paid to the farmer can be completed (payment is {payment.status})'
            )
        result = db.session.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == 'paid_to_farmer')
            .values(status='completed')
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(f'Payment {payment.id} was modified by another request')
        if payment.order_id is not None:
            db.session.execute(
                update(Order)
                .where(Order.id == payment.order_id)
                .values(payment_status='completed')
                .execution_options(synchronize_session=False)
            )
        payment_id = payment.id
        db.session.commit()
    log.info('payment.completed id=%s', payment_id)
    return payment


def list_payments(status=None, farmer_id=None):
    query = Payment.query
    if status and status != 'all':
        require_choice(status, PAYMENT_STATUSES, 'status')
        query = query.filter_by(status=status)
    if farmer_id is not None:
        query = query.filter_by(farmer_id=farmer_id)
    return query.order_by(Payment.created_at.desc(), Payment.id.desc()).all()


def payment_stats():
    """Totals for the buyer-collected and farmer-paid sides of the ledger."""
    buyer_side = Payment.query.filter(Payment.buyer_id.isnot(None))
    settled = ('paid_to_farmer', 'completed')
    return {
        'buyer': {
            'total_amount': db.session.scalar(
                select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.buyer_id.isnot(None))
            ),
            'pending_count': buyer_side.filter(Payment.status == 'pending').count(),
            'completed_count': buyer_side.filter(Payment.status == 'completed').count(),
        },
        'farmer': {
            'total_amount': db.session.scalar(select(func.coalesce(func.sum(Payment.farmer_amount), 0))),
            'pending_count': Payment.query.filter_by(status='pending').count(),
            'settled_count': Payment.query.filter(Payment.status.in_(settled)).count(),
        },
        'platform_fees': db.session.scalar(
            select(func.coalesce(func.sum(Payment.platform_fee), 0)).where(Payment.status.in_(settled))
        ),
    }
