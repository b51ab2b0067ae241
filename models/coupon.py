"""
Discount coupon model definition
"""
from models import db
from datetime import datetime

DISCOUNT_TYPES = ('percentage', 'fixed')


class Coupon(db.Model):
    """Discount code a user may apply when paying for a plan"""
    __tablename__ = 'coupons'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False)  # stored upper-case
    description = db.Column(db.String(255), nullable=True)
    discount_type = db.Column(db.String(20), nullable=False, default='percentage')
    discount_value = db.Column(db.Numeric(10, 2), nullable=False)
    minimum_amount = db.Column(db.Numeric(10, 2), nullable=True)
    max_discount_amount = db.Column(db.Numeric(10, 2), nullable=True)
    max_uses = db.Column(db.Integer, nullable=True)
    max_uses_per_user = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    expires_at = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        def _amount(value):
            return float(value) if value is not None else None

        return {
            'id': self.id,
            'code': self.code,
            'description': self.description,
            'discount_type': self.discount_type,
            'discount_value': float(self.discount_value or 0),
            'minimum_amount': _amount(self.minimum_amount),
            'max_discount_amount': _amount(self.max_discount_amount),
            'max_uses': self.max_uses,
            'max_uses_per_user': self.max_uses_per_user,
            'used_count': self.used_count,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'is_active': self.is_active,
        }

    def __repr__(self):
        return f'<Coupon {self.code}>'
