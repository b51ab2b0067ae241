"""
User payment routes
"""
from decimal import Decimal

from flask import request, Blueprint, jsonify
from flask_login import login_required, current_user

from models.payment import SubscriptionPayment
from models.plan import SubscriptionPlan
from services import coupons as coupon_service
from services import payments as payment_service
from services import policy
from services.errors import InvalidArgument

payment_bp = Blueprint('user_payment', __name__, url_prefix='/user')


@payment_bp.route('/payments', methods=['POST'])
@login_required
def submit_payment():
    """Submit a manual payment for a plan; an admin verifies it later"""
    policy.require(current_user, 'payment.submit')

    data = request.get_json(silent=True) or request.form
    payment = payment_service.submit_payment(
        current_user,
        plan_name=(data.get('plan_name') or '').strip(),
        billing_cycle=(data.get('billing_cycle') or 'monthly').strip(),
        method_name=(data.get('payment_method') or '').strip(),
        transaction_reference=data.get('transaction_reference'),
        sender_number=data.get('sender_number'),
        coupon_code=data.get('coupon_code'),
    )
    return jsonify({
        'success': True,
        'message': 'Payment submitted successfully. We will verify it shortly.',
        'payment': payment.to_dict(),
    }), 201


@payment_bp.route('/payments')
@login_required
def payment_history():
    """Current user's payments, newest first"""
    payments = (SubscriptionPayment.query
                .filter_by(user_id=current_user.id)
                .order_by(SubscriptionPayment.created_at.desc(), SubscriptionPayment.id.desc())
                .all())
    return jsonify({'success': True, 'payments': [payment.to_dict() for payment in payments]})


@payment_bp.route('/payments/<int:payment_id>')
@login_required
def payment_detail(payment_id):
    payment = payment_service.get_payment(payment_id)
    policy.require(current_user, 'payment.view', payment)
    return jsonify({'success': True, 'payment': payment.to_dict()})


@payment_bp.route('/coupons/validate', methods=['POST'])
@login_required
def validate_coupon():
    """Check a coupon code and, when a plan is given, price it"""
    policy.require(current_user, 'coupon.validate')

    data = request.get_json(silent=True) or request.form
    try:
        coupon = coupon_service.validate_coupon(data.get('code'), current_user)
    except InvalidArgument as e:
        return jsonify({'success': False, 'is_valid': False, 'message': e.message})

    response = {
        'success': True,
        'is_valid': True,
        'coupon_id': coupon.id,
        'discount_type': coupon.discount_type,
        'discount_value': float(coupon.discount_value),
        'description': coupon.description,
        'message': 'Valid coupon code',
    }
    plan_name = (data.get('plan_name') or '').strip()
    if plan_name:
        plan = SubscriptionPlan.query.filter_by(plan_name=plan_name, is_active=True).first()
        if plan is None:
            raise InvalidArgument(f'Invalid subscription plan: {plan_name}')
        base_amount = Decimal(plan.price_for((data.get('billing_cycle') or 'monthly').strip()) or 0)
        discount = coupon_service.discount_for(coupon, base_amount)
        response.update({
            'base_amount': float(base_amount),
            'discount_amount': float(discount),
            'final_amount': float(base_amount - discount),
        })
    return jsonify(response)
