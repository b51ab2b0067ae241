"""
User model definition
"""
from models import db
from datetime import datetime
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

class User(UserMixin, db.Model):
    """User model for dashboard accounts"""
    __tablename__ = 'users'
    
    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(100), nullable=False)
    mobile = db.Column(db.String(20), unique=True, nullable=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    is_active = db.Column(db.Boolean, default=True)
    # Denormalized pointer, maintained in the same transaction that creates or cancels a subscription
    current_subscription_id = db.Column(db.Integer, nullable=True)

    # Relationships
    subscriptions = db.relationship('UserSubscription', backref='user', lazy=True)
    payments = db.relationship('SubscriptionPayment', backref='user', lazy=True)
    obligations = db.relationship('RecurringObligationTemplate', backref='user', lazy=True)
    
    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return bool(self.password_hash) and check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'full_name': self.full_name,
            'email': self.email,
            'mobile': self.mobile,
        }

    def __repr__(self):
        return f'<User {self.full_name}>'
