"""
User subscription and subscription history models
"""
from models import db
from datetime import datetime
from sqlalchemy import event

SUBSCRIPTION_STATUSES = ('active', 'suspended', 'cancelled')


class UserSubscription(db.Model):
    """A user's paid plan over a date range"""
    __tablename__ = 'user_subscriptions'
    
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey('subscription_plans.id'), nullable=False)
    billing_cycle = db.Column(db.String(20), nullable=False, default='monthly')
    status = db.Column(db.String(20), nullable=False, default='active')  # active, suspended, cancelled
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=True)
    payment_id = db.Column(db.Integer, db.ForeignKey('subscription_payments.id'), nullable=True)  # null when started by an admin
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    plan = db.relationship('SubscriptionPlan', lazy=True)
    payment = db.relationship('SubscriptionPayment', lazy=True)
    history = db.relationship('SubscriptionHistory', backref='subscription', lazy=True,
                              order_by='SubscriptionHistory.id')

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'plan_id': self.plan_id,
            'billing_cycle': self.billing_cycle,
            'status': self.status,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'payment_id': self.payment_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
    
    def __repr__(self):
        return f'<UserSubscription {self.id}>'


class SubscriptionHistory(db.Model):
    """Append-only log of every action applied to a subscription"""
    __tablename__ = 'subscription_history'

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(db.Integer, db.ForeignKey('user_subscriptions.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    plan_id = db.Column(db.Integer, db.ForeignKey('subscription_plans.id'), nullable=False)
    action_type = db.Column(db.String(30), nullable=False)  # create, renew, activate, suspend, cancel, extend, replace
    effective_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    resulting_status = db.Column(db.String(20), nullable=False)
    resulting_end_date = db.Column(db.DateTime, nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)
    request_id = db.Column(db.String(64), unique=True, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'subscription_id': self.subscription_id,
            'plan_id': self.plan_id,
            'action_type': self.action_type,
            'effective_date': self.effective_date.isoformat() if self.effective_date else None,
            'resulting_status': self.resulting_status,
            'resulting_end_date': self.resulting_end_date.isoformat() if self.resulting_end_date else None,
            'actor_id': self.actor_id,
        }

    def __repr__(self):
        return f'<SubscriptionHistory {self.id}: {self.action_type}>'


@event.listens_for(SubscriptionHistory, 'before_update')
def _refuse_history_update(mapper, connection, target):
    raise ValueError(f'Subscription history entry #{target.id} is immutable')


@event.listens_for(SubscriptionHistory, 'before_delete')
def _refuse_history_delete(mapper, connection, target):
    raise ValueError(f'Subscription history entry #{target.id} cannot be deleted')
