"""
Models package for the Fintrack obligation engine
"""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Import all models here to ensure they're registered
from models.user import User
from models.admin import Admin
from models.plan import SubscriptionPlan, PaymentMethod
from models.coupon import Coupon
from models.payment import SubscriptionPayment
from models.subscription import UserSubscription, SubscriptionHistory
from models.obligation import RecurringObligationTemplate
from models.transaction import Transaction
from models.cron_job import CronJobLog, ScheduledJob
from models.notification import Notification

__all__ = [
    'db',
    'User',
    'Admin',
    'SubscriptionPlan',
    'PaymentMethod',
    'Coupon',
    'SubscriptionPayment',
    'UserSubscription',
    'SubscriptionHistory',
    'RecurringObligationTemplate',
    'Transaction',
    'CronJobLog',
    'ScheduledJob',
    'Notification',
]
