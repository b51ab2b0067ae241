"""
Recurring execution scheduler.

One ``run_once`` call is one batch: it opens an audit entry, takes the
per-job lock, executes every due obligation template exactly once, and
closes the audit entry with counters whatever happens. Items fail
independently; a failed item stays due and the next run picks it up.
"""
import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.obligation import RecurringObligationTemplate
from models.transaction import Transaction
from services import audit
from services.errors import RunAbort
from services.schedule import is_due, next_occurrence
from utils import notifications

logger = logging.getLogger(__name__)

MAX_ERRORS_IN_MESSAGE = 20

LEDGER_KINDS = {
    'transaction': 'transaction',
    'sip': 'sip',
}


@dataclass
class ItemOutcome:
    template_id: int
    payments: int = 0
    reminders: int = 0
    skipped: bool = False
    error: str = None


@dataclass
class RunResult:
    job_name: str
    trigger: str
    log_id: int = None
    status: str = 'running'
    payments_processed: int = 0
    reminders_created: int = 0
    skipped: int = 0
    errors: list = field(default_factory=list)
    abort_reason: str = None

    @property
    def errors_count(self):
        return len(self.errors)

    @property
    def success(self):
        return self.status in ('completed', 'completed_with_errors')

    def add(self, outcome):
        if outcome.error:
            self.errors.append(outcome.error)
        elif outcome.skipped:
            self.skipped += 1
        else:
            self.payments_processed += outcome.payments
            self.reminders_created += outcome.reminders

    @property
    def message(self):
        if self.abort_reason:
            text = self.abort_reason
        else:
            text = f'Processed {self.payments_processed} payments and created {self.reminders_created} reminders'
        if self.errors:
            shown = self.errors[:MAX_ERRORS_IN_MESSAGE]
            text += f'; {len(self.errors)} errors: ' + '; '.join(shown)
            if len(self.errors) > len(shown):
                text += f'; ... {len(self.errors) - len(shown)} more'
        return text

    def to_dict(self):
        data = {
            'success': self.success,
            'log_id': self.log_id,
            'job_name': self.job_name,
            'trigger': self.trigger,
            'status': self.status,
            'payments_processed': self.payments_processed,
            'reminders_created': self.reminders_created,
            'errors_count': self.errors_count,
            'message': self.message,
        }
        if not self.success:
            data['error'] = self.abort_reason or self.message
        return data


class RecurringExecutionScheduler:
    """Batch engine materializing due obligation templates"""

    def __init__(self, job_name=None, schedule=None, max_run_seconds=None, reminder_lead_days=None,
                 max_workers=None, clock=None):
        config = current_app.config
        self.job_name = job_name or config['RECURRING_JOB_NAME']
        self.schedule = schedule or config['RECURRING_JOB_SCHEDULE']
        self.max_run_seconds = max_run_seconds or config['CRON_MAX_RUN_SECONDS']
        self.reminder_lead_days = config['EMI_REMINDER_LEAD_DAYS'] if reminder_lead_days is None else reminder_lead_days
        self.max_workers = max_workers or config.get('SCHEDULER_MAX_WORKERS', 1)
        self.clock = clock or datetime.utcnow

    def run_once(self, trigger='scheduled'):
        """Run one batch and return its RunResult; never raises for item failures"""
        started = self.clock()
        audit.close_stale_runs(self.job_name, self.max_run_seconds, now=started)
        entry = audit.open_run(self.job_name, trigger, now=started)
        result = RunResult(job_name=self.job_name, trigger=trigger, log_id=entry.id)
        locked = False
        logger.info("Run #%s of %s started (%s)", entry.id, self.job_name, trigger)

        try:
            job = audit.ensure_job(self.job_name, self.schedule)
            if not job.is_active:
                raise RunAbort(f'{self.job_name} is disabled')
            if not audit.acquire_lock(self.job_name, entry.id, self.max_run_seconds, now=started):
                raise RunAbort(f'{self.job_name} is already running')
            locked = True

            as_of = started.date()
            due = self._load_due(as_of)
            for outcome in self._execute_all(due, as_of):
                result.add(outcome)
            for outcome in self._send_upcoming_reminders(as_of):
                result.add(outcome)
            result.status = 'completed_with_errors' if result.errors else 'completed'
        except RunAbort as e:
            result.status = 'failed'
            result.abort_reason = e.message
            logger.warning("Run #%s of %s aborted: %s", entry.id, self.job_name, e.message)
        except Exception as e:
            db.session.rollback()
            result.status = 'failed'
            result.abort_reason = f'Run failed: {e}'
            logger.error("Run #%s of %s failed", entry.id, self.job_name, exc_info=True)
        finally:
            self._finish(entry, result, locked)

        return result

    def _finish(self, entry, result, locked):
        finished = self.clock()
        try:
            if not audit.close_run(entry, result.status,
                                   payments_processed=result.payments_processed,
                                   reminders_created=result.reminders_created,
                                   errors_count=result.errors_count,
                                   message=result.message,
                                   now=finished):
                result.status = 'failed'
                result.abort_reason = audit.STALE_RUN_MESSAGE
        finally:
            if locked:
                # A failed close may leave the session mid-transaction
                db.session.rollback()
                audit.release_lock(self.job_name, entry.id, now=finished)
        logger.info("Run #%s of %s %s: %s", entry.id, self.job_name, result.status, result.message)

    def _load_due(self, as_of):
        """Snapshot (id, owner, due date) of every due template across kinds and owners"""
        try:
            templates = RecurringObligationTemplate.query.filter(
                RecurringObligationTemplate.is_active.is_(True),
                RecurringObligationTemplate.next_execution_date.isnot(None),
                RecurringObligationTemplate.next_execution_date <= as_of,
            ).order_by(
                RecurringObligationTemplate.next_execution_date,
                RecurringObligationTemplate.id,
            ).all()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise RunAbort(f'Could not read due obligations: {e}')
        return [(t.id, t.user_id, t.next_execution_date) for t in templates if is_due(t, as_of)]

    def _execute_all(self, due, as_of):
        if self.max_workers <= 1 or len(due) < 2:
            return [self.execute_item(template_id, due_date, as_of) for template_id, _, due_date in due]

        # Templates of one owner stay on one worker; owners run in parallel
        by_owner = defaultdict(list)
        for template_id, user_id, due_date in due:
            by_owner[user_id].append((template_id, due_date))

        app = current_app._get_current_object()

        def run_owner(items):
            with app.app_context():
                return [self.execute_item(template_id, due_date, as_of) for template_id, due_date in items]

        outcomes = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for owner_outcomes in pool.map(run_owner, by_owner.values()):
                outcomes.extend(owner_outcomes)
        return outcomes

    def execute_item(self, template_id, expected_date, as_of):
        """Execute one occurrence of one template and commit it atomically.

        The template row is advanced with a conditional update keyed on the
        due date that was read; if another worker advanced it first the item
        is skipped, so an occurrence is never booked twice.
        """
        try:
            template = db.session.get(RecurringObligationTemplate, template_id)
            if template is None or not is_due(template, as_of) or template.next_execution_date != expected_date:
                return ItemOutcome(template_id, skipped=True)

            period = template.next_execution_date
            tenure = template.tenure_remaining - 1 if template.tenure_remaining is not None else None
            following = next_occurrence(period, template.frequency)
            exhausted = (tenure is not None and tenure <= 0) or (
                template.end_date is not None and following > template.end_date)

            updated = RecurringObligationTemplate.query.filter(
                RecurringObligationTemplate.id == template_id,
                RecurringObligationTemplate.next_execution_date == expected_date,
                RecurringObligationTemplate.is_active.is_(True),
            ).update({
                'next_execution_date': None if exhausted else following,
                'last_executed_date': period,
                'executed_count': RecurringObligationTemplate.executed_count + 1,
                'tenure_remaining': tenure,
                'is_active': not exhausted,
                'updated_at': self.clock(),
            }, synchronize_session=False)
            if updated != 1:
                db.session.rollback()
                return ItemOutcome(template_id, skipped=True)

            outcome = self._book(template, period)
            db.session.commit()
            if exhausted:
                logger.info("Obligation template #%s exhausted after %s", template_id, period)
            return outcome
        except Exception as e:
            db.session.rollback()
            logger.error("Failed to execute obligation template #%s due %s: %s",
                         template_id, expected_date, e, exc_info=True)
            return ItemOutcome(template_id, error=f'template #{template_id} ({expected_date}): {e}')

    def _book(self, template, period):
        """Stage the ledger row (and reminder) for one occurrence"""
        outcome = ItemOutcome(template.id)
        if template.kind == 'loan_emi':
            if template.auto_debit:
                kind, status, description = 'emi_payment', 'completed', f'EMI payment: {template.name}'
                outcome.payments = 1
            else:
                kind, status, description = 'emi_due', 'due', f'EMI due: {template.name}'
                notifications.dispatch(template.user_id, notifications.emi_due_event(template, period))
                outcome.reminders = 1
        elif template.kind in LEDGER_KINDS:
            kind, status = LEDGER_KINDS[template.kind], 'completed'
            description = f'SIP contribution: {template.name}' if template.kind == 'sip' else template.name
            outcome.payments = 1
        else:
            raise ValueError(f'Unknown obligation kind: {template.kind}')

        db.session.add(Transaction(
            user_id=template.user_id,
            template_id=template.id,
            kind=kind,
            amount=template.amount,
            currency=template.currency,
            period_date=period,
            description=description,
            status=status,
        ))
        return outcome

    def _send_upcoming_reminders(self, as_of):
        """Remind owners of loan EMIs falling due within the lead window, once per due date"""
        if self.reminder_lead_days <= 0:
            return []
        horizon = as_of + timedelta(days=self.reminder_lead_days)
        try:
            candidates = [(t.id, t.next_execution_date) for t in RecurringObligationTemplate.query.filter(
                RecurringObligationTemplate.kind == 'loan_emi',
                RecurringObligationTemplate.is_active.is_(True),
                RecurringObligationTemplate.next_execution_date > as_of,
                RecurringObligationTemplate.next_execution_date <= horizon,
                or_(RecurringObligationTemplate.reminded_for_date.is_(None),
                    RecurringObligationTemplate.reminded_for_date != RecurringObligationTemplate.next_execution_date),
            ).all()]
        except SQLAlchemyError as e:
            db.session.rollback()
            return [ItemOutcome(None, error=f'could not read upcoming EMIs: {e}')]

        outcomes = []
        for template_id, due_date in candidates:
            try:
                claimed = RecurringObligationTemplate.query.filter(
                    RecurringObligationTemplate.id == template_id,
                    RecurringObligationTemplate.next_execution_date == due_date,
                    or_(RecurringObligationTemplate.reminded_for_date.is_(None),
                        RecurringObligationTemplate.reminded_for_date != due_date),
                ).update({'reminded_for_date': due_date}, synchronize_session=False)
                if claimed != 1:
                    db.session.rollback()
                    continue
                template = db.session.get(RecurringObligationTemplate, template_id)
                notifications.dispatch(template.user_id, notifications.emi_upcoming_event(template, due_date))
                db.session.commit()
                outcomes.append(ItemOutcome(template_id, reminders=1))
            except Exception as e:
                db.session.rollback()
                logger.error("Failed to send EMI reminder for template #%s: %s", template_id, e, exc_info=True)
                outcomes.append(ItemOutcome(template_id, error=f'reminder for template #{template_id}: {e}'))
        return outcomes
