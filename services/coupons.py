"""
Discount coupons for subscription payments.

A coupon is checked when the user applies it and again when the payment
is created; the discount is always derived from the stored coupon and the
plan price, never taken from the client.
"""
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.coupon import DISCOUNT_TYPES, Coupon
from models.payment import SubscriptionPayment
from services.errors import InvalidArgument, NotFound, PersistenceFailure

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

# Payment states that count as a redemption against the per-user limit
REDEEMED_STATUSES = ('verified', 'approved')


def normalize_code(code):
    return (code or '').strip().upper()


def _to_decimal(value, field):
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidArgument(f'{field} must be a number')
    if amount < 0:
        raise InvalidArgument(f'{field} must not be negative')
    return amount


def _optional_int(value, field):
    if value in (None, ''):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f'{field} must be a whole number')
    if number < 1:
        raise InvalidArgument(f'{field} must be at least 1')
    return number


def validate_coupon(code, user, now=None):
    """
    Look up a coupon the user may still apply.

    Returns:
        The Coupon
    Raises:
        InvalidArgument with a user-facing reason when it cannot be applied
    """
    code = normalize_code(code)
    if not code:
        raise InvalidArgument('Coupon code is required')
    now = now or datetime.utcnow()

    coupon = Coupon.query.filter_by(code=code, is_active=True).first()
    if coupon is None:
        raise InvalidArgument('Invalid or expired coupon code')
    if coupon.expires_at is not None and coupon.expires_at <= now:
        raise InvalidArgument('Coupon has expired')
    if coupon.max_uses is not None and (coupon.used_count or 0) >= coupon.max_uses:
        raise InvalidArgument('Coupon usage limit exceeded')
    if coupon.max_uses_per_user is not None:
        redeemed = SubscriptionPayment.query.filter(
            SubscriptionPayment.coupon_id == coupon.id,
            SubscriptionPayment.user_id == user.id,
            SubscriptionPayment.status.in_(REDEEMED_STATUSES),
        ).count()
        if redeemed >= coupon.max_uses_per_user:
            raise InvalidArgument('You have already used this coupon')
    return coupon


def discount_for(coupon, base_amount):
    """Discount a coupon grants on ``base_amount``, never more than the amount itself"""
    base_amount = Decimal(base_amount)
    if coupon.minimum_amount is not None and base_amount < coupon.minimum_amount:
        raise InvalidArgument(f'Coupon {coupon.code} needs a minimum amount of {coupon.minimum_amount}')

    value = Decimal(coupon.discount_value)
    if coupon.discount_type == 'percentage':
        discount = (base_amount * value / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        discount = value
    if coupon.max_discount_amount is not None:
        discount = min(discount, Decimal(coupon.max_discount_amount))
    return min(max(discount, Decimal('0')), base_amount)


def record_redemption(coupon_id):
    """Count one use; staged in the caller's transaction"""
    Coupon.query.filter_by(id=coupon_id).update(
        {'used_count': Coupon.used_count + 1}, synchronize_session=False)


def create_coupon(code, discount_type, discount_value, description=None, minimum_amount=None,
                  max_discount_amount=None, max_uses=None, max_uses_per_user=None, expires_at=None):
    code = normalize_code(code)
    if not code:
        raise InvalidArgument('Coupon code is required')
    if discount_type not in DISCOUNT_TYPES:
        raise InvalidArgument(f'Invalid discount type: {discount_type}')
    value = _to_decimal(discount_value, 'discount_value')
    if value == 0:
        raise InvalidArgument('discount_value must be greater than zero')
    if discount_type == 'percentage' and value > 100:
        raise InvalidArgument('A percentage discount cannot exceed 100')
    if isinstance(expires_at, str):
        try:
            expires_at = datetime.fromisoformat(expires_at.strip())
        except ValueError:
            raise InvalidArgument('expires_at must be an ISO date or datetime')

    coupon = Coupon(
        code=code,
        description=(description or '').strip() or None,
        discount_type=discount_type,
        discount_value=value,
        minimum_amount=None if minimum_amount in (None, '') else _to_decimal(minimum_amount, 'minimum_amount'),
        max_discount_amount=None if max_discount_amount in (None, '') else _to_decimal(
            max_discount_amount, 'max_discount_amount'),
        max_uses=_optional_int(max_uses, 'max_uses'),
        max_uses_per_user=_optional_int(max_uses_per_user, 'max_uses_per_user'),
        expires_at=expires_at or None,
    )
    db.session.add(coupon)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidArgument('Coupon code already exists')
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceFailure('Could not create coupon', e)
    logger.info("Coupon %s created (%s %s)", coupon.code, discount_type, value)
    return coupon


def set_active(coupon_id, is_active):
    coupon = db.session.get(Coupon, coupon_id)
    if coupon is None:
        raise NotFound('coupon', coupon_id)
    coupon.is_active = bool(is_active)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceFailure(f'Could not update coupon #{coupon_id}', e)
    return coupon
