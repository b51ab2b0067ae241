"""
Subscription plan and payment method models
"""
from models import db
from datetime import datetime

BILLING_CYCLE_MONTHS = {
    'monthly': 1,
    'yearly': 12,
}


class SubscriptionPlan(db.Model):
    """Paid plan a user can subscribe to"""
    __tablename__ = 'subscription_plans'

    id = db.Column(db.Integer, primary_key=True)
    plan_name = db.Column(db.String(50), unique=True, nullable=False)
    display_name = db.Column(db.String(100), nullable=False)
    price_monthly = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    price_yearly = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def price_for(self, billing_cycle):
        """Base price for a billing cycle"""
        return self.price_yearly if billing_cycle == 'yearly' else self.price_monthly

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.plan_name,
            'display_name': self.display_name,
            'price_monthly': float(self.price_monthly or 0),
            'price_yearly': float(self.price_yearly or 0),
        }

    def __repr__(self):
        return f'<SubscriptionPlan {self.plan_name}>'


class PaymentMethod(db.Model):
    """Manual payment channel (bKash, Nagad, bank transfer, ...)"""
    __tablename__ = 'payment_methods'

    id = db.Column(db.Integer, primary_key=True)
    method_name = db.Column(db.String(50), unique=True, nullable=False)
    display_name = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, default=True)

    def __repr__(self):
        return f'<PaymentMethod {self.method_name}>'
