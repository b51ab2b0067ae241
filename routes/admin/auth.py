"""
Admin authentication routes
"""
from datetime import datetime
from functools import wraps

from flask import request, jsonify, Blueprint, session
from sqlalchemy import func

from models import db
from models.admin import Admin

admin_auth_bp = Blueprint('admin_auth', __name__, url_prefix='/admin')

def get_current_admin():
    """Helper function to get current admin from session"""
    if 'admin_id' not in session:
        return None
    return db.session.get(Admin, session.get('admin_id'))

def admin_required(f):
    """Decorator to require admin login and validate admin exists"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'admin_id' not in session:
            return jsonify({'success': False, 'message': 'Please log in to access the admin panel.'}), 401

        # Validate admin still exists and is active
        admin = get_current_admin()
        if not admin:
            session.clear()
            return jsonify({'success': False, 'message': 'Admin account not found. Please log in again.'}), 401

        if not admin.is_active:
            session.clear()
            return jsonify({'success': False, 'message': 'Your admin account is inactive. Please contact support.'}), 403

        return f(*args, **kwargs)
    return decorated_function

@admin_auth_bp.route('/login', methods=['POST'])
def login():
    """Admin login with email or username"""
    data = request.get_json(silent=True) or request.form
    login_id = (data.get('email') or '').strip()  # Can be email or username
    password = data.get('password') or ''

    if not login_id or not password:
        return jsonify({'success': False, 'message': 'Please enter both email/username and password.'}), 400

    # Find admin: try email first (case-insensitive), then username (case-insensitive)
    admin = None
    if '@' in login_id:
        admin = Admin.query.filter(func.lower(Admin.email) == login_id.lower()).first()
    if not admin:
        admin = Admin.query.filter(func.lower(Admin.username) == login_id.lower()).first()

    if not admin or not admin.check_password(password):
        return jsonify({'success': False, 'message': 'Invalid email or password.'}), 401
    if not admin.is_active:
        return jsonify({'success': False, 'message': 'Your admin account is inactive. Please contact support.'}), 403

    admin.last_login_at = datetime.utcnow()
    db.session.commit()

    session['admin_id'] = admin.id
    session['admin_role'] = admin.role
    session.permanent = True

    return jsonify({
        'success': True,
        'message': f'Welcome back, {admin.username}!',
        'admin': admin.to_dict(),
    })

@admin_auth_bp.route('/logout', methods=['POST'])
def logout():
    """Admin logout"""
    session.pop('admin_id', None)
    session.pop('admin_role', None)
    return jsonify({'success': True, 'message': 'You have been logged out successfully.'})
