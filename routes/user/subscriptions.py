"""
User subscription routes
"""
from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from models.plan import SubscriptionPlan
from services import policy, queries
from services import subscriptions as subscription_service

subscriptions_bp = Blueprint('user_subscriptions', __name__, url_prefix='/user')


@subscriptions_bp.route('/subscription')
@login_required
def my_subscription():
    """The user's current subscription, if any"""
    subscription = subscription_service.current_subscription(current_user)
    if subscription is None:
        return jsonify({'success': True, 'subscription': None})

    policy.require(current_user, 'subscription.view', subscription)
    data = queries.serialize_subscription(subscription, current_user, subscription.plan, subscription.payment)
    return jsonify({'success': True, 'subscription': data})


@subscriptions_bp.route('/subscriptions')
@login_required
def subscription_history():
    """Every subscription the user has held, newest first"""
    rows = sorted(current_user.subscriptions, key=lambda sub: sub.id, reverse=True)
    return jsonify({'success': True, 'subscriptions': [sub.to_dict() for sub in rows]})


@subscriptions_bp.route('/plans')
def plans():
    """Active plans with their prices"""
    active = SubscriptionPlan.query.filter_by(is_active=True).order_by(SubscriptionPlan.price_monthly).all()
    return jsonify({'success': True, 'plans': [plan.to_dict() for plan in active]})
