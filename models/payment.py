"""
Subscription payment model definition
"""
from models import db
from datetime import datetime

PAYMENT_STATUSES = ('pending', 'submitted', 'verified', 'approved', 'rejected')


class SubscriptionPayment(db.Model):
    """A user's manual payment for a plan, moved through the payment lifecycle"""
    __tablename__ = 'subscription_payments'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey('subscription_plans.id'), nullable=False)
    payment_method_id = db.Column(db.Integer, db.ForeignKey('payment_methods.id'), nullable=False)
    billing_cycle = db.Column(db.String(20), nullable=False, default='monthly')  # monthly, yearly
    base_amount = db.Column(db.Numeric(10, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    final_amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='BDT')
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, submitted, verified, approved, rejected
    transaction_reference = db.Column(db.String(100), unique=True, nullable=False)
    sender_number = db.Column(db.String(20), nullable=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey('coupons.id'), nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    verified_by = db.Column(db.Integer, db.ForeignKey('admins.id'), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    plan = db.relationship('SubscriptionPlan', lazy=True)
    payment_method = db.relationship('PaymentMethod', lazy=True)
    coupon = db.relationship('Coupon', lazy=True)

    @property
    def is_terminal(self):
        return self.status in ('approved', 'rejected')

    def to_dict(self):
        def _iso(value):
            return value.isoformat() if value else None

        return {
            'id': self.id,
            'user_id': self.user_id,
            'plan_id': self.plan_id,
            'payment_method_id': self.payment_method_id,
            'billing_cycle': self.billing_cycle,
            'base_amount': float(self.base_amount or 0),
            'discount_amount': float(self.discount_amount or 0),
            'final_amount': float(self.final_amount or 0),
            'currency': self.currency,
            'status': self.status,
            'transaction_reference': self.transaction_reference,
            'sender_number': self.sender_number,
            'coupon_id': self.coupon_id,
            'submitted_at': _iso(self.submitted_at),
            'verified_at': _iso(self.verified_at),
            'approved_at': _iso(self.approved_at),
            'rejected_at': _iso(self.rejected_at),
            'verified_by': self.verified_by,
            'rejection_reason': self.rejection_reason,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<SubscriptionPayment {self.id} {self.status}>'
