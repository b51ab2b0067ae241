"""
Recurring obligation template model definition
"""
from models import db
from datetime import datetime

OBLIGATION_KINDS = ('transaction', 'sip', 'loan_emi')
FREQUENCIES = ('weekly', 'biweekly', 'monthly', 'quarterly', 'yearly')


class RecurringObligationTemplate(db.Model):
    """Recurring transaction, SIP contribution or loan EMI definition"""
    __tablename__ = 'obligation_templates'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    kind = db.Column(db.String(20), nullable=False)  # transaction, sip, loan_emi
    name = db.Column(db.String(120), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='BDT')
    frequency = db.Column(db.String(20), nullable=False, default='monthly')
    anchor_date = db.Column(db.Date, nullable=False)
    next_execution_date = db.Column(db.Date, nullable=True, index=True)  # null once exhausted
    last_executed_date = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    executed_count = db.Column(db.Integer, nullable=False, default=0)
    end_date = db.Column(db.Date, nullable=True)
    tenure_remaining = db.Column(db.Integer, nullable=True)  # installments left, loan EMIs
    auto_debit = db.Column(db.Boolean, nullable=False, default=False)  # loan EMIs: book as paid instead of reminding
    reminded_for_date = db.Column(db.Date, nullable=True)  # due date an upcoming-EMI reminder was sent for
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    transactions = db.relationship('Transaction', backref='template', lazy='dynamic')

    @property
    def is_exhausted(self):
        return self.next_execution_date is None

    def to_dict(self):
        def _iso(value):
            return value.isoformat() if value else None

        return {
            'id': self.id,
            'user_id': self.user_id,
            'kind': self.kind,
            'name': self.name,
            'amount': float(self.amount or 0),
            'currency': self.currency,
            'frequency': self.frequency,
            'anchor_date': _iso(self.anchor_date),
            'next_execution_date': _iso(self.next_execution_date),
            'last_executed_date': _iso(self.last_executed_date),
            'is_active': self.is_active,
            'executed_count': self.executed_count,
            'end_date': _iso(self.end_date),
            'tenure_remaining': self.tenure_remaining,
            'auto_debit': self.auto_debit,
        }

    def __repr__(self):
        return f'<RecurringObligationTemplate {self.id} {self.kind}/{self.frequency}>'
