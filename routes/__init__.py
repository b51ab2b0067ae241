"""
Routes package for the fintrack application
"""
# Export blueprints for registration in app.py
from routes.auth import auth_bp
from routes.user.subscriptions import subscriptions_bp as user_subscriptions_bp
from routes.user.payment import payment_bp as user_payment_bp
from routes.user.obligations import obligations_bp as user_obligations_bp
from routes.user.notifications import notifications_bp as user_notifications_bp
from routes.admin.auth import admin_auth_bp
from routes.admin.subscriptions import admin_subscriptions_bp
from routes.admin.payments import admin_payments_bp
from routes.admin.cron import admin_cron_bp

__all__ = [
    'auth_bp',
    'user_subscriptions_bp',
    'user_payment_bp',
    'user_obligations_bp',
    'user_notifications_bp',
    'admin_auth_bp',
    'admin_subscriptions_bp',
    'admin_payments_bp',
    'admin_cron_bp',
]
