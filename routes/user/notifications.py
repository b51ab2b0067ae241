"""
User notification routes
"""
from flask import request, Blueprint, jsonify
from flask_login import login_required, current_user

from models import db
from models.notification import Notification
from services import policy
from services.errors import NotFound

notifications_bp = Blueprint('user_notifications', __name__, url_prefix='/user/notifications')


@notifications_bp.route('')
@login_required
def list_notifications():
    query = Notification.query.filter_by(user_id=current_user.id)
    if request.args.get('unread') in ('1', 'true'):
        query = query.filter_by(is_read=False)
    rows = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(100).all()
    unread = Notification.query.filter_by(user_id=current_user.id, is_read=False).count()
    return jsonify({'success': True, 'notifications': [n.to_dict() for n in rows], 'unread_count': unread})


@notifications_bp.route('/<int:notification_id>/read', methods=['POST'])
@login_required
def mark_read(notification_id):
    notification = db.session.get(Notification, notification_id)
    if notification is None:
        raise NotFound('notification', notification_id)
    policy.require(current_user, 'notification.read', notification)
    notification.is_read = True
    db.session.commit()
    return jsonify({'success': True, 'notification': notification.to_dict()})


@notifications_bp.route('/read-all', methods=['POST'])
@login_required
def mark_all_read():
    updated = Notification.query.filter_by(user_id=current_user.id, is_read=False).update(
        {'is_read': True}, synchronize_session=False)
    db.session.commit()
    return jsonify({'success': True, 'updated': updated})
