"""
Shared fixtures: an app on in-memory SQLite with its context pushed for the
whole test, plus small factories for users, admins and obligation templates.
"""
import os
from datetime import date
from decimal import Decimal

import pytest

# app.py builds a module-level app from Config at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

from app import create_app  # noqa: E402
from config import Config  # noqa: E402
from models import db  # noqa: E402
from models.admin import Admin  # noqa: E402
from models.obligation import RecurringObligationTemplate  # noqa: E402
from models.plan import PaymentMethod, SubscriptionPlan  # noqa: E402
from models.user import User  # noqa: E402


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SCHEDULER_ENABLED = False
    NOTIFICATION_EMAILS_ENABLED = False
    MAIL_SUPPRESS_SEND = True
    RECURRING_JOB_NAME = "process-recurring-obligations"
    RECURRING_JOB_SCHEDULE = "0 9 * * *"
    CRON_MAX_RUN_SECONDS = 3600
    EMI_REMINDER_LEAD_DAYS = 3
    SCHEDULER_MAX_WORKERS = 1


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def file_app(tmp_path):
    """Same as ``app`` but on a SQLite file, so worker threads get connections of their own"""
    class FileConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'engine.db'}"

    app = create_app(FileConfig)
    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(full_name="Rahim Uddin", password="secret123", is_active=True):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            full_name=full_name,
            email=f"user{n}@example.com",
            mobile=f"0171100000{n}",
            is_active=is_active,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def make_admin(app):
    def _make(username, role="admin", password="adminpass"):
        admin = Admin(username=username, email=f"{username}@fintrack.app", role=role, is_active=True)
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        return admin

    return _make


@pytest.fixture
def superadmin(make_admin):
    return make_admin("root", role="superadmin")


@pytest.fixture
def staff_admin(make_admin):
    return make_admin("staff", role="admin")


@pytest.fixture
def pro_plan(app):
    return SubscriptionPlan.query.filter_by(plan_name="pro").one()


@pytest.fixture
def max_plan(app):
    return SubscriptionPlan.query.filter_by(plan_name="max").one()


@pytest.fixture
def bkash(app):
    return PaymentMethod.query.filter_by(method_name="bkash").one()


@pytest.fixture
def make_template(app):
    def _make(user, kind="transaction", frequency="monthly", anchor=date(2024, 1, 31),
              amount="1500.00", tenure=None, end_date=None, auto_debit=False, name=None):
        template = RecurringObligationTemplate(
            user_id=user.id,
            kind=kind,
            name=name or f"{kind} {frequency}",
            amount=Decimal(amount),
            currency="BDT",
            frequency=frequency,
            anchor_date=anchor,
            next_execution_date=anchor,
            is_active=True,
            executed_count=0,
            end_date=end_date,
            tenure_remaining=tenure,
            auto_debit=auto_debit,
        )
        db.session.add(template)
        db.session.commit()
        return template

    return _make


@pytest.fixture
def login_as(client):
    """Put a user or admin identity into the test client's session"""
    def _login(actor):
        with client.session_transaction() as sess:
            if isinstance(actor, Admin):
                sess["admin_id"] = actor.id
                sess["admin_role"] = actor.role
            else:
                sess["_user_id"] = str(actor.id)
                sess["_fresh"] = True
        return client

    return _login
