"""
Notification model definition
"""
from models import db
from datetime import datetime

NOTIFICATION_TYPES = ('budget', 'emi', 'lending', 'subscription', 'system')


class Notification(db.Model):
    """In-app notification produced by the notification dispatcher"""
    __tablename__ = 'notifications'
    
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)  # null for admin-wide notices
    type = db.Column(db.String(30), nullable=False)  # budget, emi, lending, subscription, system
    title = db.Column(db.String(200), nullable=False)
    body = db.Column(db.Text, nullable=False)
    target_url = db.Column(db.String(255), nullable=True)
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    
    def __repr__(self):
        return f'<Notification {self.id}: {self.type}>'
    
    def to_dict(self):
        """Convert notification to dictionary for JSON responses"""
        return {
            'id': self.id,
            'type': self.type,
            'title': self.title,
            'body': self.body,
            'target_url': self.target_url,
            'is_read': self.is_read,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
