"""
Ledger transaction model definition
"""
from models import db
from datetime import datetime

class Transaction(db.Model):
    """Ledger row materialized from one occurrence of an obligation template"""
    __tablename__ = 'transactions'
    __table_args__ = (
        # At most one ledger row per template occurrence
        db.UniqueConstraint('template_id', 'period_date', name='uq_transactions_template_period'),
    )
    
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    template_id = db.Column(db.Integer, db.ForeignKey('obligation_templates.id'), nullable=True)
    kind = db.Column(db.String(20), nullable=False)  # transaction, sip, emi_payment, emi_due
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='BDT')
    period_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.String(255))
    status = db.Column(db.String(20), default='completed')  # completed, due
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'template_id': self.template_id,
            'kind': self.kind,
            'amount': float(self.amount or 0),
            'currency': self.currency,
            'period_date': self.period_date.isoformat() if self.period_date else None,
            'description': self.description,
            'status': self.status,
        }
    
    def __repr__(self):
        return f'<Transaction {self.id}>'
