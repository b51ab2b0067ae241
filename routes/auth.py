"""
User session routes: login and logout (session identity for the user API)
"""
from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from models.user import User

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')

@auth_bp.route('/login', methods=['POST'])
def login():
    """User login - accepts mobile or email"""
    data = request.get_json(silent=True) or request.form
    identifier = (data.get('identifier') or '').strip()
    password = data.get('password') or ''

    if not identifier or not password:
        return jsonify({'success': False, 'message': 'Please enter both mobile/email and password.'}), 400

    # Normalize identifier: lowercase for email, digits only for mobile
    identifier_digits = ''.join(filter(str.isdigit, identifier))
    user = None
    if identifier_digits and '@' not in identifier:
        user = User.query.filter_by(mobile=identifier_digits).first()
    if not user:
        user = User.query.filter_by(email=identifier.lower()).first()

    if not user or not user.check_password(password):
        return jsonify({'success': False, 'message': 'Invalid credentials.'}), 401
    if not user.is_active:
        return jsonify({'success': False, 'message': 'Your account is inactive. Please contact support.'}), 403

    login_user(user, remember=True)
    return jsonify({'success': True, 'message': f'Welcome back, {user.full_name}!', 'user': user.to_dict()})

@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """User logout"""
    logout_user()
    return jsonify({'success': True, 'message': 'You have been logged out successfully.'})

@auth_bp.route('/me')
@login_required
def me():
    return jsonify({'success': True, 'user': current_user.to_dict()})
