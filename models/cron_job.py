"""
Cron job audit log and scheduled job models
"""
from models import db
from datetime import datetime
from sqlalchemy import event, select

RUN_STATUSES = ('running', 'completed', 'completed_with_errors', 'failed')


class CronJobLog(db.Model):
    """One row per scheduler invocation, scheduled or manual"""
    __tablename__ = 'cron_job_logs'

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), nullable=False, index=True)
    trigger = db.Column(db.String(20), nullable=False, default='scheduled')  # scheduled, manual
    status = db.Column(db.String(30), nullable=False, default='running')
    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
    duration_seconds = db.Column(db.Float, nullable=True)
    payments_processed = db.Column(db.Integer, nullable=False, default=0)
    reminders_created = db.Column(db.Integer, nullable=False, default=0)
    errors_count = db.Column(db.Integer, nullable=False, default=0)
    message = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'job_name': self.job_name,
            'trigger': self.trigger,
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
            'payments_processed': self.payments_processed,
            'reminders_created': self.reminders_created,
            'errors_count': self.errors_count,
            'message': self.message,
        }

    def __repr__(self):
        return f'<CronJobLog {self.id}: {self.job_name} {self.status}>'


@event.listens_for(CronJobLog, 'before_update')
def _refuse_closed_run_update(mapper, connection, target):
    # Checked against the stored row, not the in-memory attribute history
    stored = connection.scalar(
        select(CronJobLog.__table__.c.completed_at).where(CronJobLog.__table__.c.id == target.id))
    if stored is not None:
        raise ValueError(f'Cron job log #{target.id} is closed and cannot be modified')


@event.listens_for(CronJobLog, 'before_delete')
def _refuse_log_delete(mapper, connection, target):
    raise ValueError(f'Cron job log #{target.id} cannot be deleted')


class ScheduledJob(db.Model):
    """Declared schedule of a batch job; also holds its advisory lock"""
    __tablename__ = 'scheduled_jobs'

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False)
    schedule = db.Column(db.String(100), nullable=False)  # crontab expression
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    locked_at = db.Column(db.DateTime, nullable=True)
    locked_by_log_id = db.Column(db.Integer, nullable=True)
    last_run_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self):
        return f'<ScheduledJob {self.job_name}>'
