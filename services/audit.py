"""
Cron job audit log: one CronJobLog row per scheduler invocation, plus the
per-job advisory lock kept on ScheduledJob and the monitoring read side.
"""
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError

from models import db
from models.cron_job import CronJobLog, ScheduledJob

logger = logging.getLogger(__name__)

STALE_RUN_MESSAGE = 'Run exceeded the maximum run duration and was marked failed'


def ensure_job(job_name, schedule, is_active=True):
    """Make sure a ScheduledJob row exists for ``job_name``"""
    job = ScheduledJob.query.filter_by(job_name=job_name).first()
    if job is not None:
        return job
    job = ScheduledJob(job_name=job_name, schedule=schedule, is_active=is_active)
    db.session.add(job)
    try:
        db.session.commit()
    except IntegrityError:
        # Another process declared it first
        db.session.rollback()
        job = ScheduledJob.query.filter_by(job_name=job_name).first()
    return job


def sync_scheduled_jobs(jobs):
    """Declare jobs from configuration: ``{job_name: (schedule, is_active)}``"""
    for job_name, (schedule, is_active) in jobs.items():
        job = ensure_job(job_name, schedule, is_active)
        job.schedule = schedule
        job.is_active = is_active
    db.session.commit()


def open_run(job_name, trigger='scheduled', now=None):
    entry = CronJobLog(
        job_name=job_name,
        trigger=trigger,
        status='running',
        started_at=now or datetime.utcnow(),
    )
    db.session.add(entry)
    db.session.commit()
    return entry


def close_run(entry, status, payments_processed=0, reminders_created=0, errors_count=0, message=None, now=None):
    """Close a ``running`` entry with its final counters.

    The update only applies while the row is still ``running``; an entry
    already failed as stale keeps its stale verdict. Returns True when
    this call closed the entry.
    """
    now = now or datetime.utcnow()
    entry_id = entry.id
    started_at = entry.started_at
    updated = CronJobLog.query.filter(
        CronJobLog.id == entry_id,
        CronJobLog.status == 'running',
    ).update({
        'status': status,
        'completed_at': now,
        'duration_seconds': round(max((now - started_at).total_seconds(), 0.0), 3),
        'payments_processed': payments_processed,
        'reminders_created': reminders_created,
        'errors_count': errors_count,
        'message': message,
    }, synchronize_session=False)
    db.session.commit()
    if updated != 1:
        logger.warning("Run #%s finished as %s after it was already closed; keeping the stored result",
                       entry_id, status)
    return updated == 1


def close_stale_runs(job_name, max_age_seconds, now=None):
    """Fail ``running`` entries older than the maximum run duration"""
    now = now or datetime.utcnow()
    cutoff = now - timedelta(seconds=max_age_seconds)
    stale = [(entry.id, entry.started_at) for entry in CronJobLog.query.filter(
        CronJobLog.job_name == job_name,
        CronJobLog.status == 'running',
        CronJobLog.started_at < cutoff,
    ).all()]
    closed = 0
    for entry_id, started_at in stale:
        closed += CronJobLog.query.filter(
            CronJobLog.id == entry_id,
            CronJobLog.status == 'running',
        ).update({
            'status': 'failed',
            'completed_at': now,
            'duration_seconds': round((now - started_at).total_seconds(), 3),
            'message': STALE_RUN_MESSAGE,
        }, synchronize_session=False)
        logger.warning("Closed stale run #%s of %s started at %s", entry_id, job_name, started_at)
    if stale:
        db.session.commit()
    return closed


def acquire_lock(job_name, log_id, max_age_seconds, now=None):
    """Take the per-job lock with a single conditional update.

    A lock older than the maximum run duration belongs to a dead run and
    may be taken over.
    """
    now = now or datetime.utcnow()
    cutoff = now - timedelta(seconds=max_age_seconds)
    updated = ScheduledJob.query.filter(
        ScheduledJob.job_name == job_name,
        or_(ScheduledJob.locked_at.is_(None), ScheduledJob.locked_at < cutoff),
    ).update({'locked_at': now, 'locked_by_log_id': log_id}, synchronize_session=False)
    db.session.commit()
    return updated == 1


def release_lock(job_name, log_id, now=None):
    updated = ScheduledJob.query.filter_by(job_name=job_name, locked_by_log_id=log_id).update(
        {'locked_at': None, 'locked_by_log_id': None, 'last_run_at': now or datetime.utcnow()},
        synchronize_session=False)
    db.session.commit()
    return updated == 1


def recent_runs(limit=10, job_name=None):
    query = CronJobLog.query
    if job_name:
        query = query.filter_by(job_name=job_name)
    return query.order_by(CronJobLog.started_at.desc(), CronJobLog.id.desc()).limit(limit).all()


def stats_by_job(window_days=30, now=None):
    """Aggregate runs per job over the last ``window_days`` days"""
    now = now or datetime.utcnow()
    since = now - timedelta(days=window_days)
    rows = db.session.query(
        CronJobLog.job_name,
        func.count(CronJobLog.id),
        func.sum(case((CronJobLog.status == 'completed', 1), else_=0)),
        func.sum(case((CronJobLog.status == 'completed_with_errors', 1), else_=0)),
        func.sum(case((CronJobLog.status == 'failed', 1), else_=0)),
        func.coalesce(func.sum(CronJobLog.payments_processed), 0),
        func.coalesce(func.sum(CronJobLog.reminders_created), 0),
        func.coalesce(func.sum(CronJobLog.errors_count), 0),
        func.avg(CronJobLog.duration_seconds),
        func.max(CronJobLog.started_at),
    ).filter(
        CronJobLog.started_at >= since
    ).group_by(CronJobLog.job_name).order_by(CronJobLog.job_name).all()

    stats = []
    for (job_name, total, completed, partial, failed, payments,
         reminders, errors, avg_duration, last_run) in rows:
        total = int(total or 0)
        completed = int(completed or 0)
        stats.append({
            'job_name': job_name,
            'total_runs': total,
            'successful_runs': completed,
            'partial_runs': int(partial or 0),
            'failed_runs': int(failed or 0),
            'success_rate': round(completed / total * 100, 1) if total else 0.0,
            'total_payments_processed': int(payments),
            'total_reminders_created': int(reminders),
            'total_errors': int(errors),
            'avg_duration_seconds': round(float(avg_duration), 3) if avg_duration is not None else None,
            'last_run_at': last_run.isoformat() if last_run else None,
            'window_days': window_days,
        })
    return stats


def next_run_time(schedule, now=None, tz='UTC'):
    """Next fire time (naive UTC) of a crontab expression, or None if it does not parse"""
    now = now or datetime.utcnow()
    try:
        trigger = CronTrigger.from_crontab(schedule, timezone=tz)
    except ValueError:
        logger.warning("Invalid crontab expression: %r", schedule)
        return None
    fire_time = trigger.get_next_fire_time(None, now.replace(tzinfo=timezone.utc))
    if fire_time is None:
        return None
    return fire_time.astimezone(timezone.utc).replace(tzinfo=None)


def status_of_scheduled_jobs(now=None, tz='UTC'):
    """Declared schedule, active flag, last and next run for each job"""
    now = now or datetime.utcnow()
    statuses = []
    for job in ScheduledJob.query.order_by(ScheduledJob.job_name).all():
        last_run = job.last_run_at
        if last_run is None:
            latest = recent_runs(limit=1, job_name=job.job_name)
            last_run = latest[0].started_at if latest else None
        next_run = next_run_time(job.schedule, now, tz) if job.is_active else None
        statuses.append({
            'job_name': job.job_name,
            'schedule': job.schedule,
            'active': job.is_active,
            'running': job.locked_at is not None,
            'last_run': last_run.isoformat() if last_run else None,
            'next_run': next_run.isoformat() if next_run else None,
        })
    return statuses
