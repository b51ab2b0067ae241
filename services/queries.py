"""
Admin read model: subscriptions joined with their user, plan and payment.

The join runs in the database in one query, so callers get each row with
its related entities resolved and the display fields computed.
"""
import math
from datetime import datetime

from sqlalchemy import or_

from models import db
from models.payment import SubscriptionPayment
from models.plan import SubscriptionPlan
from models.subscription import SUBSCRIPTION_STATUSES, UserSubscription
from models.user import User
from services.errors import InvalidArgument

MAX_PAGE_SIZE = 200


def _days_remaining(end_date, now):
    if end_date is None:
        return 0
    return max(0, math.ceil((end_date - now).total_seconds() / 86400))


def serialize_subscription(subscription, user, plan, payment, now=None):
    now = now or datetime.utcnow()
    data = subscription.to_dict()
    data.update({
        'user': {
            'full_name': user.full_name if user else 'Unknown User',
            'email': user.email if user else None,
            'phone_number': user.mobile if user else None,
        },
        'plan': {
            'name': plan.plan_name if plan else 'unknown',
            'display_name': plan.display_name if plan else 'Unknown Plan',
            'price_monthly': float(plan.price_monthly or 0) if plan else 0,
            'price_yearly': float(plan.price_yearly or 0) if plan else 0,
        },
        'payment': {
            'transaction_reference': payment.transaction_reference,
            'final_amount': float(payment.final_amount or 0),
            'payment_date': payment.created_at.isoformat() if payment.created_at else None,
            'payment_status': payment.status,
        } if payment else None,
        'days_remaining': _days_remaining(subscription.end_date, now),
        'is_expired': subscription.end_date is not None and subscription.end_date < now,
    })
    return data


def list_subscriptions(status=None, search=None, limit=50, offset=0, now=None):
    """
    Filtered, paginated subscription listing for the admin dashboard.

    Args:
        status: active, suspended, cancelled, or None/'all'
        search: Free text matched against user name, email, phone,
            plan name and payment reference
        limit: Page size (1..MAX_PAGE_SIZE)
        offset: Rows to skip
    """
    if status and status != 'all' and status not in SUBSCRIPTION_STATUSES:
        raise InvalidArgument(f'Invalid status filter: {status}')
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidArgument(f'limit must be between 1 and {MAX_PAGE_SIZE}')
    if offset < 0:
        raise InvalidArgument('offset must not be negative')

    query = db.session.query(UserSubscription, User, SubscriptionPlan, SubscriptionPayment).join(
        User, User.id == UserSubscription.user_id
    ).outerjoin(
        SubscriptionPlan, SubscriptionPlan.id == UserSubscription.plan_id
    ).outerjoin(
        SubscriptionPayment, SubscriptionPayment.id == UserSubscription.payment_id
    )

    if status and status != 'all':
        query = query.filter(UserSubscription.status == status)
    search = (search or '').strip()
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(
            User.full_name.ilike(pattern),
            User.email.ilike(pattern),
            User.mobile.ilike(pattern),
            SubscriptionPlan.display_name.ilike(pattern),
            SubscriptionPayment.transaction_reference.ilike(pattern),
        ))

    total = query.count()
    rows = query.order_by(UserSubscription.created_at.desc(), UserSubscription.id.desc()).offset(offset).limit(limit).all()

    now = now or datetime.utcnow()
    return {
        'subscriptions': [serialize_subscription(sub, user, plan, payment, now) for sub, user, plan, payment in rows],
        'total': total,
        'has_more': offset + limit < total,
        'pagination': {
            'current_page': offset // limit + 1,
            'per_page': limit,
            'total_pages': math.ceil(total / limit) if total else 0,
        },
    }
