"""
Payment lifecycle state machine for subscription payments.

    pending -> submitted -> verified -> approved
                   |           |
                   +-----------+--> rejected

``approved`` and ``rejected`` are terminal. Approval stages the
subscription change in the same session, and ``apply_transition`` commits
both at once or neither.
"""
import logging
import re
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.payment import SubscriptionPayment
from models.plan import BILLING_CYCLE_MONTHS, PaymentMethod, SubscriptionPlan
from models.subscription import UserSubscription
from services import coupons, subscriptions
from services.errors import InvalidArgument, NotFound, ObligationError, PersistenceFailure, StateViolation
from utils import notifications

logger = logging.getLogger(__name__)

# action -> (allowed origin states, resulting state)
TRANSITIONS = {
    'submit': (('pending',), 'submitted'),
    'verify': (('submitted',), 'verified'),
    'approve': (('submitted', 'verified'), 'approved'),
    'reject': (('submitted', 'verified'), 'rejected'),
}

MIN_REFERENCE_LENGTH = 6

SENDER_NUMBER_PATTERN = re.compile(r'^(\+88)?01[3-9]\d{8}$')


def _transition(payment, action):
    allowed, target = TRANSITIONS[action]
    if payment.status not in allowed:
        raise StateViolation('payment', payment.status, action)
    payment.status = target


def get_payment(payment_id):
    payment = db.session.get(SubscriptionPayment, payment_id)
    if payment is None:
        raise NotFound('payment', payment_id)
    return payment


def normalize_sender_number(sender_number):
    """Strip spaces and check the Bangladeshi mobile format"""
    number = re.sub(r'\s', '', sender_number or '')
    if not number:
        raise InvalidArgument('sender_number is required')
    if not SENDER_NUMBER_PATTERN.match(number):
        raise InvalidArgument('Invalid sender number format')
    return number


def create_payment(user, plan_name, billing_cycle, method_name, transaction_reference,
                   sender_number=None, coupon_code=None, currency='BDT'):
    """Stage a new payment in ``pending``; amounts derive from the plan price and coupon"""
    if billing_cycle not in BILLING_CYCLE_MONTHS:
        raise InvalidArgument(f'Unknown billing cycle: {billing_cycle}')
    reference = (transaction_reference or '').strip()
    if len(reference) < MIN_REFERENCE_LENGTH:
        raise InvalidArgument('Invalid transaction reference format')
    sender = normalize_sender_number(sender_number)

    plan = SubscriptionPlan.query.filter_by(plan_name=plan_name, is_active=True).first()
    if plan is None:
        raise InvalidArgument(f'Invalid subscription plan: {plan_name}')
    method = PaymentMethod.query.filter_by(method_name=method_name, is_active=True).first()
    if method is None:
        raise InvalidArgument(f'Invalid payment method: {method_name}')
    if SubscriptionPayment.query.filter_by(transaction_reference=reference).first() is not None:
        raise InvalidArgument('Transaction reference already exists')

    base_amount = Decimal(plan.price_for(billing_cycle) or 0)
    coupon = coupons.validate_coupon(coupon_code, user) if coupons.normalize_code(coupon_code) else None
    discount = coupons.discount_for(coupon, base_amount) if coupon is not None else Decimal('0')

    payment = SubscriptionPayment(
        user_id=user.id,
        plan_id=plan.id,
        payment_method_id=method.id,
        billing_cycle=billing_cycle,
        base_amount=base_amount,
        discount_amount=discount,
        final_amount=base_amount - discount,
        currency=currency,
        status='pending',
        transaction_reference=reference,
        sender_number=sender,
        coupon_id=coupon.id if coupon is not None else None,
    )
    db.session.add(payment)
    db.session.flush()
    return payment


def submit(payment, now=None):
    _transition(payment, 'submit')
    payment.submitted_at = now or datetime.utcnow()
    return payment


def verify(payment, verifier_id, notes=None, now=None):
    _transition(payment, 'verify')
    payment.verified_at = now or datetime.utcnow()
    payment.verified_by = verifier_id
    if notes:
        payment.admin_notes = notes
    return payment


def approve(payment, verifier_id, notes=None, now=None):
    """Approve and stage the subscription it pays for; returns the subscription"""
    _transition(payment, 'approve')
    payment.approved_at = now or datetime.utcnow()
    payment.verified_by = verifier_id
    if notes:
        payment.admin_notes = notes
    if payment.coupon_id is not None:
        coupons.record_redemption(payment.coupon_id)
    return subscriptions.apply_payment(payment, actor_id=verifier_id, now=payment.approved_at)


def reject(payment, verifier_id, reason=None, notes=None, now=None):
    _transition(payment, 'reject')
    payment.rejected_at = now or datetime.utcnow()
    payment.verified_by = verifier_id
    payment.rejection_reason = (reason or '').strip() or None
    if notes:
        payment.admin_notes = notes
    return payment


def submit_payment(user, **fields):
    """
    Create and submit a payment for the user, then commit.

    Returns:
        The submitted SubscriptionPayment
    """
    try:
        payment = create_payment(user, **fields)
        submit(payment)
        db.session.commit()
    except ObligationError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceFailure('Failed to submit payment. Please try again.', e)

    logger.info("Payment #%s submitted by user #%s", payment.id, user.id)
    notifications.dispatch(payment.user_id, notifications.payment_pending_event(payment), commit=True)
    return payment


def apply_transition(payment_id, action, verifier_id, reason=None, notes=None):
    """
    Apply an admin transition (verify, approve, reject) and commit.

    Approval commits the payment together with its subscription; if
    either write fails both are rolled back and the error propagates.

    Returns:
        (payment, subscription) where subscription is set only for approve
    """
    if action not in ('verify', 'approve', 'reject'):
        raise InvalidArgument(f'Invalid payment action: {action}')
    payment = get_payment(payment_id)
    subscription = None
    try:
        if action == 'verify':
            verify(payment, verifier_id, notes)
        elif action == 'approve':
            subscription = approve(payment, verifier_id, notes)
        else:
            reject(payment, verifier_id, reason, notes)
        db.session.commit()
    except ObligationError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceFailure(f'Could not {action} payment #{payment_id}', e)

    logger.info("Payment #%s %s by admin #%s", payment_id, payment.status, verifier_id)
    if action in ('approve', 'reject'):
        notifications.notify_payment_outcome(payment, subscription)
    return payment, subscription


def delete_payment(payment_id):
    """Admin cleanup: remove a terminal payment that no subscription points at"""
    payment = get_payment(payment_id)
    if not payment.is_terminal:
        raise StateViolation('payment', payment.status, 'delete')
    if UserSubscription.query.filter_by(payment_id=payment.id).first() is not None:
        raise InvalidArgument(f'Payment #{payment_id} is linked to a subscription and cannot be deleted')
    try:
        db.session.delete(payment)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceFailure(f'Could not delete payment #{payment_id}', e)
