"""
Admin subscription management routes
"""
from flask import Blueprint, request, jsonify

from routes.admin.auth import admin_required, get_current_admin
from services import policy, queries, subscriptions as subscription_service
from services.errors import InvalidArgument

admin_subscriptions_bp = Blueprint('admin_subscriptions', __name__, url_prefix='/admin')


def _int_or_none(value, field):
    """Accept ints and numeric strings from JSON bodies"""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise InvalidArgument(f'{field} must be a whole number')
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidArgument(f'{field} must be a whole number')


@admin_subscriptions_bp.route('/subscriptions')
@admin_required
def subscriptions():
    """Filtered, paginated subscription list"""
    policy.require(get_current_admin(), 'subscription.view')

    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)
    result = queries.list_subscriptions(
        status=request.args.get('status') or None,
        search=request.args.get('search', ''),
        limit=limit,
        offset=offset,
    )
    result['success'] = True
    return jsonify(result)


@admin_subscriptions_bp.route('/subscriptions/<int:subscription_id>')
@admin_required
def view_subscription(subscription_id):
    """Subscription details with its full history"""
    admin = get_current_admin()
    subscription = subscription_service.get_subscription(subscription_id)
    policy.require(admin, 'subscription.view', subscription)

    data = queries.serialize_subscription(subscription, subscription.user, subscription.plan, subscription.payment)
    data['history'] = [entry.to_dict() for entry in subscription_service.history_for(subscription_id)]
    return jsonify({'success': True, 'subscription': data})


@admin_subscriptions_bp.route('/subscriptions/<int:subscription_id>/action', methods=['POST'])
@admin_required
def subscription_action(subscription_id):
    """Activate, suspend, cancel or extend a subscription - superadmin only"""
    admin = get_current_admin()
    policy.require(admin, 'subscription.manage')

    data = request.get_json(silent=True) or {}
    action = (data.get('action') or '').strip()
    subscription = subscription_service.apply_action(
        subscription_id,
        action,
        extend_months=_int_or_none(data.get('extend_months'), 'extend_months'),
        actor_id=admin.id,
        request_id=(data.get('request_id') or None),
    )
    return jsonify({
        'success': True,
        'message': f'Subscription {action} applied.',
        'subscription': subscription.to_dict(),
    })


@admin_subscriptions_bp.route('/subscriptions/start', methods=['POST'])
@admin_required
def start_subscription():
    """Start a subscription for a user without a payment - superadmin only"""
    admin = get_current_admin()
    policy.require(admin, 'subscription.create')

    data = request.get_json(silent=True) or {}
    user_id = _int_or_none(data.get('user_id'), 'user_id')
    plan_id = _int_or_none(data.get('plan_id'), 'plan_id')
    if user_id is None or plan_id is None:
        raise InvalidArgument('user_id and plan_id are required')

    subscription = subscription_service.start_subscription(
        user_id,
        plan_id,
        billing_cycle=data.get('billing_cycle') or 'monthly',
        months=_int_or_none(data.get('months'), 'months'),
        actor_id=admin.id,
    )
    return jsonify({
        'success': True,
        'message': 'Subscription started successfully.',
        'subscription': subscription.to_dict(),
    }), 201
