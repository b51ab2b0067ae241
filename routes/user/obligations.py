"""
User routes for recurring obligations (transactions, SIPs, loan EMIs)
"""
from datetime import datetime

from flask import request, Blueprint, jsonify
from flask_login import login_required, current_user

from models.transaction import Transaction
from services import obligations as obligation_service
from services import policy
from services.errors import InvalidArgument

obligations_bp = Blueprint('user_obligations', __name__, url_prefix='/user/obligations')


def _owned(template_id, action):
    template = obligation_service.get_template(template_id)
    policy.require(current_user, action, template)
    return template


@obligations_bp.route('', methods=['GET'])
@login_required
def list_obligations():
    templates = obligation_service.list_for_user(current_user.id, kind=request.args.get('kind') or None)
    return jsonify({'success': True, 'obligations': [template.to_dict() for template in templates]})


@obligations_bp.route('', methods=['POST'])
@login_required
def create_obligation():
    """Create a recurring template; its first occurrence is the anchor date"""
    policy.require(current_user, 'obligation.create')

    data = request.get_json(silent=True) or {}
    template = obligation_service.create_template(
        current_user,
        kind=data.get('kind') or 'transaction',
        name=data.get('name'),
        amount=data.get('amount'),
        frequency=data.get('frequency'),
        anchor_date=data.get('anchor_date'),
        currency=data.get('currency') or 'BDT',
        end_date=data.get('end_date'),
        tenure=data.get('tenure'),
        auto_debit=data.get('auto_debit', False),
    )
    return jsonify({'success': True, 'message': 'Recurring obligation created.', 'obligation': template.to_dict()}), 201


@obligations_bp.route('/<int:template_id>', methods=['GET'])
@login_required
def view_obligation(template_id):
    template = _owned(template_id, 'obligation.view')
    recent = template.transactions.order_by(Transaction.period_date.desc()).limit(20).all()
    data = template.to_dict()
    data['transactions'] = [entry.to_dict() for entry in recent]
    return jsonify({'success': True, 'obligation': data})


@obligations_bp.route('/<int:template_id>', methods=['PATCH', 'PUT'])
@login_required
def update_obligation(template_id):
    template = _owned(template_id, 'obligation.update')
    data = request.get_json(silent=True) or {}
    if 'tenure' in data:
        data['tenure_remaining'] = data.pop('tenure')
    template = obligation_service.update_template(template, **data)
    return jsonify({'success': True, 'message': 'Recurring obligation updated.', 'obligation': template.to_dict()})


@obligations_bp.route('/<int:template_id>/pause', methods=['POST'])
@login_required
def pause_obligation(template_id):
    template = obligation_service.pause(_owned(template_id, 'obligation.pause'))
    return jsonify({'success': True, 'message': 'Recurring obligation paused.', 'obligation': template.to_dict()})


@obligations_bp.route('/<int:template_id>/resume', methods=['POST'])
@login_required
def resume_obligation(template_id):
    template = obligation_service.resume(_owned(template_id, 'obligation.resume'))
    return jsonify({'success': True, 'message': 'Recurring obligation resumed.', 'obligation': template.to_dict()})


@obligations_bp.route('/<int:template_id>', methods=['DELETE'])
@login_required
def delete_obligation(template_id):
    obligation_service.delete_template(_owned(template_id, 'obligation.delete'))
    return jsonify({'success': True, 'message': 'Recurring obligation deleted.'})


@obligations_bp.route('/preview', methods=['GET', 'POST'])
@login_required
def preview():
    """Upcoming dates for a template that has not been saved yet"""
    policy.require(current_user, 'obligation.preview')
    data = request.args if request.method == 'GET' else (request.get_json(silent=True) or {})
    try:
        count = int(data.get('count', 6))
    except (TypeError, ValueError):
        raise InvalidArgument('count must be a whole number')
    dates = obligation_service.preview(data.get('anchor_date'), data.get('frequency'), count, data.get('end_date'))
    return jsonify({'success': True, 'dates': [d.isoformat() for d in dates]})


@obligations_bp.route('/upcoming')
@login_required
def upcoming():
    """Active obligations falling due within the next ``days`` days"""
    days = request.args.get('days', 30, type=int)
    if days < 0 or days > 366:
        raise InvalidArgument('days must be between 0 and 366')
    templates = obligation_service.upcoming_for_user(current_user.id, datetime.utcnow().date(), days)
    return jsonify({'success': True, 'obligations': [template.to_dict() for template in templates]})
