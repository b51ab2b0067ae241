"""
Subscription manager: lifecycle of a user's paid plan.

Every action appends one SubscriptionHistory row. Functions here only stage
changes on the session; ``apply_action`` is the transactional entry point
for admin actions, and payment approval commits through the payment state
machine so approval and subscription changes land together.
"""
import logging
from datetime import datetime

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.plan import BILLING_CYCLE_MONTHS, SubscriptionPlan
from models.subscription import SubscriptionHistory, UserSubscription
from models.user import User
from services.errors import InvalidArgument, NotFound, ObligationError, PersistenceFailure, StateViolation

logger = logging.getLogger(__name__)

ACTIONS = ('activate', 'suspend', 'cancel', 'extend')


def get_subscription(subscription_id):
    subscription = db.session.get(UserSubscription, subscription_id)
    if subscription is None:
        raise NotFound('subscription', subscription_id)
    return subscription


def current_subscription(user):
    """The user's current subscription, or None"""
    if not user.current_subscription_id:
        return None
    return db.session.get(UserSubscription, user.current_subscription_id)


def history_for(subscription_id):
    get_subscription(subscription_id)
    return (SubscriptionHistory.query
            .filter_by(subscription_id=subscription_id)
            .order_by(SubscriptionHistory.id)
            .all())


def _record(subscription, action_type, actor_id=None, request_id=None, now=None):
    entry = SubscriptionHistory(
        subscription_id=subscription.id,
        user_id=subscription.user_id,
        plan_id=subscription.plan_id,
        action_type=action_type,
        effective_date=now or datetime.utcnow(),
        resulting_status=subscription.status,
        resulting_end_date=subscription.end_date,
        actor_id=actor_id,
        request_id=request_id,
    )
    db.session.add(entry)
    return entry


def _ensure_not_cancelled(subscription, action):
    if subscription.status == 'cancelled':
        raise StateViolation('subscription', subscription.status, action)


def _claim_current(subscription):
    """Point the owner's current subscription at ``subscription`` if it has none"""
    user = db.session.get(User, subscription.user_id)
    if user is not None and not user.current_subscription_id:
        user.current_subscription_id = subscription.id


def activate(subscription, actor_id=None, request_id=None, now=None):
    _ensure_not_cancelled(subscription, 'activate')
    subscription.status = 'active'
    _claim_current(subscription)
    _record(subscription, 'activate', actor_id, request_id, now)
    return subscription


def suspend(subscription, actor_id=None, request_id=None, now=None):
    _ensure_not_cancelled(subscription, 'suspend')
    subscription.status = 'suspended'
    _record(subscription, 'suspend', actor_id, request_id, now)
    return subscription


def cancel(subscription, actor_id=None, request_id=None, now=None, action_type='cancel'):
    _ensure_not_cancelled(subscription, 'cancel')
    subscription.status = 'cancelled'
    user = db.session.get(User, subscription.user_id)
    if user is not None and user.current_subscription_id == subscription.id:
        user.current_subscription_id = None
    _record(subscription, action_type, actor_id, request_id, now)
    return subscription


def _validate_months(months):
    if isinstance(months, bool) or not isinstance(months, int) or months < 1:
        raise InvalidArgument('extend_months must be a whole number of at least 1')


def extend(subscription, months, actor_id=None, request_id=None, now=None, action_type='extend'):
    """Push end_date out by ``months`` calendar months and reactivate.

    The new end date counts from the current end date, or from now when the
    subscription has no end date or has already lapsed.
    """
    _validate_months(months)
    _ensure_not_cancelled(subscription, action_type)
    now = now or datetime.utcnow()
    base = subscription.end_date if subscription.end_date and subscription.end_date > now else now
    subscription.end_date = base + relativedelta(months=months)
    subscription.status = 'active'
    _claim_current(subscription)
    _record(subscription, action_type, actor_id, request_id, now)
    return subscription


def create_subscription(user, plan, billing_cycle, payment_id=None, actor_id=None, start=None, months=None):
    """Stage a new active subscription and make it the user's current one.

    A previous current subscription that is still open is cancelled as
    replaced, so a user never has two current subscriptions.
    """
    if billing_cycle not in BILLING_CYCLE_MONTHS:
        raise InvalidArgument(f'Unknown billing cycle: {billing_cycle}')
    if months is not None:
        _validate_months(months)
    start = start or datetime.utcnow()
    months = months or BILLING_CYCLE_MONTHS[billing_cycle]

    previous = current_subscription(user)
    if previous is not None and previous.status != 'cancelled':
        cancel(previous, actor_id=actor_id, now=start, action_type='replace')

    subscription = UserSubscription(
        user_id=user.id,
        plan_id=plan.id,
        billing_cycle=billing_cycle,
        status='active',
        start_date=start,
        end_date=start + relativedelta(months=months),
        payment_id=payment_id,
    )
    db.session.add(subscription)
    db.session.flush()
    user.current_subscription_id = subscription.id
    _record(subscription, 'create', actor_id, now=start)
    return subscription


def apply_payment(payment, actor_id=None, now=None):
    """Create or renew the subscription an approved payment pays for"""
    user = db.session.get(User, payment.user_id)
    plan = db.session.get(SubscriptionPlan, payment.plan_id)
    if user is None:
        raise NotFound('user', payment.user_id)
    if plan is None:
        raise NotFound('plan', payment.plan_id)

    current = current_subscription(user)
    if current is not None and current.status != 'cancelled' and current.plan_id == plan.id:
        current.payment_id = payment.id
        current.billing_cycle = payment.billing_cycle
        return extend(current, BILLING_CYCLE_MONTHS[payment.billing_cycle],
                      actor_id=actor_id, now=now, action_type='renew')

    return create_subscription(user, plan, payment.billing_cycle, payment_id=payment.id,
                               actor_id=actor_id, start=now)


def _find_replay(subscription, request_id):
    if not request_id:
        return None
    entry = SubscriptionHistory.query.filter_by(request_id=request_id).first()
    if entry is not None and entry.subscription_id != subscription.id:
        raise InvalidArgument(f'request_id {request_id} was already used for another subscription')
    return entry


def apply_action(subscription_id, action, extend_months=None, actor_id=None, request_id=None, now=None):
    """
    Apply one admin action to a subscription and commit.

    Args:
        subscription_id: Target subscription ID
        action: activate, suspend, cancel or extend
        extend_months: Required for extend
        actor_id: Admin performing the action
        request_id: Optional idempotency key; a replayed key is a no-op

    Returns:
        The (possibly updated) UserSubscription
    """
    if action not in ACTIONS:
        raise InvalidArgument(f'Invalid action: {action}')
    subscription = get_subscription(subscription_id)
    if action == 'extend':
        _validate_months(extend_months)

    if _find_replay(subscription, request_id) is not None:
        logger.info("Ignoring replayed %s on subscription #%s (request %s)", action, subscription_id, request_id)
        return subscription

    try:
        if action == 'activate':
            activate(subscription, actor_id, request_id, now)
        elif action == 'suspend':
            suspend(subscription, actor_id, request_id, now)
        elif action == 'cancel':
            cancel(subscription, actor_id, request_id, now)
        else:
            extend(subscription, extend_months, actor_id, request_id, now)
        db.session.commit()
    except ObligationError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceFailure(f'Could not {action} subscription #{subscription_id}', e)

    logger.info("Subscription #%s %s by admin #%s", subscription_id, action, actor_id)
    return subscription


def start_subscription(user_id, plan_id, billing_cycle='monthly', months=None, actor_id=None, start=None):
    """Admin-created subscription without a payment"""
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound('user', user_id)
    plan = db.session.get(SubscriptionPlan, plan_id)
    if plan is None:
        raise NotFound('plan', plan_id)
    try:
        subscription = create_subscription(user, plan, billing_cycle, actor_id=actor_id, start=start, months=months)
        db.session.commit()
    except ObligationError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceFailure('Could not start subscription', e)
    return subscription
