"""
Admin payment verification routes
"""
from flask import Blueprint, request, jsonify

from models.coupon import Coupon
from models.payment import PAYMENT_STATUSES, SubscriptionPayment
from routes.admin.auth import admin_required, get_current_admin
from services import coupons as coupon_service
from services import payments as payment_service
from services import policy
from services.errors import InvalidArgument

admin_payments_bp = Blueprint('admin_payments', __name__, url_prefix='/admin')


@admin_payments_bp.route('/payments')
@admin_required
def payments():
    """Payments list, newest first, optionally filtered by status"""
    policy.require(get_current_admin(), 'payment.view')

    status = request.args.get('status', '')
    limit = min(max(request.args.get('limit', 50, type=int), 1), 200)
    offset = max(request.args.get('offset', 0, type=int), 0)

    query = SubscriptionPayment.query
    if status and status != 'all':
        if status not in PAYMENT_STATUSES:
            raise InvalidArgument(f'Invalid status filter: {status}')
        query = query.filter_by(status=status)

    total = query.count()
    rows = query.order_by(SubscriptionPayment.created_at.desc(), SubscriptionPayment.id.desc()).offset(offset).limit(limit).all()
    return jsonify({
        'success': True,
        'payments': [payment.to_dict() for payment in rows],
        'total': total,
        'has_more': offset + limit < total,
    })


def _transition(payment_id, action):
    admin = get_current_admin()
    policy.require(admin, f'payment.{action}')

    data = request.get_json(silent=True) or {}
    payment, subscription = payment_service.apply_transition(
        payment_id,
        action,
        verifier_id=admin.id,
        reason=data.get('reason'),
        notes=data.get('notes'),
    )
    response = {
        'success': True,
        'message': f'Payment #{payment.id} is now {payment.status}.',
        'payment': payment.to_dict(),
    }
    if subscription is not None:
        response['subscription'] = subscription.to_dict()
    return jsonify(response)


@admin_payments_bp.route('/payments/<int:payment_id>/verify', methods=['POST'])
@admin_required
def verify_payment(payment_id):
    return _transition(payment_id, 'verify')


@admin_payments_bp.route('/payments/<int:payment_id>/approve', methods=['POST'])
@admin_required
def approve_payment(payment_id):
    """Approve payment and activate or renew the subscription it pays for"""
    return _transition(payment_id, 'approve')


@admin_payments_bp.route('/payments/<int:payment_id>/reject', methods=['POST'])
@admin_required
def reject_payment(payment_id):
    return _transition(payment_id, 'reject')


@admin_payments_bp.route('/payments/<int:payment_id>', methods=['DELETE'])
@admin_required
def delete_payment(payment_id):
    """Delete a terminal payment - superadmin only"""
    policy.require(get_current_admin(), 'payment.delete')
    payment_service.delete_payment(payment_id)
    return jsonify({'success': True, 'message': f'Payment #{payment_id} deleted.'})


@admin_payments_bp.route('/coupons')
@admin_required
def coupons():
    policy.require(get_current_admin(), 'coupon.view')
    rows = Coupon.query.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()
    return jsonify({'success': True, 'coupons': [coupon.to_dict() for coupon in rows]})


@admin_payments_bp.route('/coupons', methods=['POST'])
@admin_required
def create_coupon():
    """Create a coupon - superadmin only"""
    policy.require(get_current_admin(), 'coupon.manage')

    data = request.get_json(silent=True) or {}
    coupon = coupon_service.create_coupon(
        data.get('code'),
        data.get('discount_type'),
        data.get('discount_value'),
        description=data.get('description'),
        minimum_amount=data.get('minimum_amount'),
        max_discount_amount=data.get('max_discount_amount'),
        max_uses=data.get('max_uses'),
        max_uses_per_user=data.get('max_uses_per_user'),
        expires_at=data.get('expires_at'),
    )
    return jsonify({'success': True, 'coupon': coupon.to_dict()}), 201


@admin_payments_bp.route('/coupons/<int:coupon_id>', methods=['PATCH'])
@admin_required
def update_coupon(coupon_id):
    """Switch a coupon on or off - superadmin only"""
    policy.require(get_current_admin(), 'coupon.manage')

    data = request.get_json(silent=True) or {}
    if 'is_active' not in data:
        raise InvalidArgument('is_active is required')
    coupon = coupon_service.set_active(coupon_id, data['is_active'])
    return jsonify({'success': True, 'coupon': coupon.to_dict()})
