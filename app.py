"""
Main Flask application entry point for fintrack
"""
import logging
import os
from flask import Flask, jsonify
from flask_login import LoginManager
from config import Config
from models import db
from models.user import User
from services.errors import ObligationError
from utils.mail import mail

logger = logging.getLogger(__name__)

# Initialize login manager (no DB access at import time)
login_manager = LoginManager()
login_manager.login_message = "Please log in to access this page."


@login_manager.user_loader
def load_user(user_id):
    """Load user for Flask-Login (runs in request context)."""
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"success": False, "message": login_manager.login_message, "error": "unauthorized"}), 401


def create_app(config_class=Config):
    """Application factory pattern. DB init runs inside app_context; non-fatal on failure."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    db.init_app(app)
    login_manager.init_app(app)
    mail.init_app(app)

    @app.errorhandler(ObligationError)
    def handle_obligation_error(e):
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def handle_404_error(e):
        return jsonify({"success": False, "message": "Not found.", "error": "not_found"}), 404

    @app.errorhandler(500)
    def handle_500_error(e):
        db.session.rollback()
        app.logger.error("Unhandled error: %s", getattr(e, "original_exception", None) or e, exc_info=True)
        return jsonify({"success": False, "message": "Internal server error. Please try again later."}), 500

    # Create tables and seed only inside app context; do not crash if DB temporarily unavailable
    with app.app_context():
        try:
            db.create_all()
            seed_plans()
            seed_payment_methods()
            seed_admin()
            seed_scheduled_jobs(app)
        except Exception as e:
            db.session.rollback()
            logger.warning("Database init/seed skipped (non-fatal): %s", e)

    # Register blueprints
    from routes import (
        auth_bp,
        user_subscriptions_bp,
        user_payment_bp,
        user_obligations_bp,
        user_notifications_bp,
        admin_auth_bp,
        admin_subscriptions_bp,
        admin_payments_bp,
        admin_cron_bp,
    )

    app.register_blueprint(auth_bp)
    app.register_blueprint(user_subscriptions_bp)
    app.register_blueprint(user_payment_bp)
    app.register_blueprint(user_obligations_bp)
    app.register_blueprint(user_notifications_bp)

    # Register admin blueprints
    app.register_blueprint(admin_auth_bp)
    app.register_blueprint(admin_subscriptions_bp)
    app.register_blueprint(admin_payments_bp)
    app.register_blueprint(admin_cron_bp)

    if app.config.get("SCHEDULER_ENABLED"):
        start_time_trigger(app)

    return app


def start_time_trigger(app):
    """Run the recurring job in-process on its crontab"""
    from services.triggers import TimeTrigger

    trigger = TimeTrigger(app)
    trigger.start()
    app.extensions["time_trigger"] = trigger
    return trigger


def seed_plans():
    """Seed initial subscription plans if none exist"""
    from models.plan import SubscriptionPlan

    if SubscriptionPlan.query.count() > 0:
        return

    plans_data = [
        {"plan_name": "pro", "display_name": "Pro", "price_monthly": 299, "price_yearly": 2990},
        {"plan_name": "max", "display_name": "Max", "price_monthly": 599, "price_yearly": 5990},
    ]
    for plan_data in plans_data:
        db.session.add(SubscriptionPlan(**plan_data, is_active=True))

    try:
        db.session.commit()
        logger.info("Initial subscription plans seeded")
    except Exception as e:
        db.session.rollback()
        logger.error("Error seeding plans: %s", e)


def seed_payment_methods():
    """Seed the manual payment methods if none exist"""
    from models.plan import PaymentMethod

    if PaymentMethod.query.count() > 0:
        return

    for method_name, display_name in (("bkash", "bKash"), ("nagad", "Nagad"), ("rocket", "Rocket"), ("bank", "Bank Transfer")):
        db.session.add(PaymentMethod(method_name=method_name, display_name=display_name, is_active=True))

    try:
        db.session.commit()
        logger.info("Payment methods seeded")
    except Exception as e:
        db.session.rollback()
        logger.error("Error seeding payment methods: %s", e)


def seed_admin():
    """Ensure the default superadmin exists and its password matches the environment."""
    from models.admin import Admin

    seed_email = os.environ.get("SEED_ADMIN_EMAIL", "superadmin@fintrack.app").strip().lower()
    seed_password = os.environ.get("SEED_ADMIN_PASSWORD")
    if not seed_password:
        logger.info("SEED_ADMIN_PASSWORD not set; superadmin seeding skipped")
        return
    seed_username = (os.environ.get("SEED_ADMIN_USERNAME") or (seed_email.split("@")[0] if "@" in seed_email else "superadmin")).strip()

    admin = Admin.query.filter(Admin.email.ilike(seed_email)).first()
    if not admin:
        admin = Admin(
            username=seed_username,
            email=seed_email,
            role="superadmin",
            is_active=True,
        )
        db.session.add(admin)
    else:
        admin.username = seed_username
        admin.role = "superadmin"
        admin.is_active = True

    admin.set_password(seed_password)

    try:
        db.session.commit()
        logger.info("Superadmin ready: %s", seed_email)
    except Exception as e:
        db.session.rollback()
        logger.error("Error seeding superadmin: %s", e)


def seed_scheduled_jobs(app):
    """Register the declared jobs with their schedules"""
    from services import audit

    audit.sync_scheduled_jobs({
        app.config["RECURRING_JOB_NAME"]: (app.config["RECURRING_JOB_SCHEDULE"], True),
    })


# WSGI entry point: gunicorn app:app
app = create_app()
application = app

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "false").lower() in ("true", "1"))
