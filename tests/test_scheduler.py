"""
Tests for the recurring execution scheduler and its triggers.
"""
import threading
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from flask import current_app

from models import db
from models.cron_job import CronJobLog, ScheduledJob
from models.notification import Notification
from models.obligation import RecurringObligationTemplate
from models.transaction import Transaction
from models.user import User
from services import audit
from services.scheduler import RecurringExecutionScheduler
from services.triggers import ManualTrigger

JOB = "process-recurring-obligations"


def scheduler_at(moment, **kwargs):
    return RecurringExecutionScheduler(clock=lambda: moment, **kwargs)


def reload(template):
    return db.session.get(RecurringObligationTemplate, template.id)


class FlakyScheduler(RecurringExecutionScheduler):
    """Fails to book one specific template"""

    def __init__(self, failing_id, **kwargs):
        super().__init__(**kwargs)
        self.failing_id = failing_id

    def _book(self, template, period):
        if template.id == self.failing_id:
            raise RuntimeError("ledger unavailable")
        return super()._book(template, period)


class TestExecution:
    """Tests for executing due templates."""

    def test_month_end_template_advances_with_clamping(self, user, make_template):
        template = make_template(user, frequency="monthly", anchor=date(2024, 1, 31))

        result = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()

        assert result.status == "completed"
        assert result.payments_processed == 1
        entry = Transaction.query.filter_by(template_id=template.id).one()
        assert entry.period_date == date(2024, 1, 31)
        assert entry.kind == "transaction"
        template = reload(template)
        assert template.next_execution_date == date(2024, 2, 29)
        assert template.last_executed_date == date(2024, 1, 31)
        assert template.executed_count == 1

    def test_second_run_same_day_books_nothing(self, user, make_template):
        make_template(user, anchor=date(2024, 1, 31))
        moment = datetime(2024, 1, 31, 9, 0)

        scheduler_at(moment).run_once()
        result = scheduler_at(moment + timedelta(minutes=5)).run_once()

        assert result.status == "completed"
        assert result.payments_processed == 0
        assert Transaction.query.count() == 1

    def test_future_and_paused_templates_are_not_due(self, user, make_template):
        make_template(user, anchor=date(2024, 2, 1))
        paused = make_template(user, anchor=date(2024, 1, 1))
        paused.is_active = False
        db.session.commit()

        result = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()
        assert result.payments_processed == 0
        assert Transaction.query.count() == 0

    def test_long_outage_advances_one_period_per_run(self, user, make_template):
        template = make_template(user, frequency="weekly", anchor=date(2024, 1, 1))

        scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()
        assert reload(template).next_execution_date == date(2024, 1, 8)
        scheduler_at(datetime(2024, 1, 31, 9, 1)).run_once()
        assert reload(template).next_execution_date == date(2024, 1, 15)
        assert [t.period_date for t in Transaction.query.order_by(Transaction.period_date)] == [
            date(2024, 1, 1), date(2024, 1, 8)]

    def test_all_kinds_and_owners_in_one_run(self, make_user, make_template):
        first, second = make_user("A"), make_user("B")
        make_template(first, kind="transaction")
        make_template(first, kind="sip")
        make_template(second, kind="loan_emi", auto_debit=True)

        result = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()
        assert result.payments_processed == 3
        kinds = sorted(t.kind for t in Transaction.query.all())
        assert kinds == ["emi_payment", "sip", "transaction"]

    def test_one_failing_item_does_not_stop_the_batch(self, user, make_template):
        templates = [make_template(user, name=f"bill {i}") for i in range(5)]
        failing = templates[2]

        result = FlakyScheduler(failing.id, clock=lambda: datetime(2024, 1, 31, 9, 0)).run_once()

        assert result.status == "completed_with_errors"
        assert result.errors_count == 1
        assert result.payments_processed == 4
        assert "ledger unavailable" in result.message
        assert reload(failing).next_execution_date == date(2024, 1, 31)
        assert reload(failing).executed_count == 0
        assert Transaction.query.filter_by(template_id=failing.id).count() == 0

        log = db.session.get(CronJobLog, result.log_id)
        assert log.status == "completed_with_errors"
        assert log.errors_count == 1
        assert log.payments_processed == 4

    def test_failed_item_is_retried_next_run(self, user, make_template):
        template = make_template(user)
        FlakyScheduler(template.id, clock=lambda: datetime(2024, 1, 31, 9, 0)).run_once()

        result = scheduler_at(datetime(2024, 1, 31, 10, 0)).run_once()
        assert result.payments_processed == 1
        assert reload(template).next_execution_date == date(2024, 2, 29)

    def test_existing_ledger_row_blocks_double_booking(self, user, make_template):
        template = make_template(user)
        db.session.add(Transaction(user_id=user.id, template_id=template.id, kind="transaction",
                                   amount=template.amount, period_date=date(2024, 1, 31)))
        db.session.commit()

        result = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()
        assert result.errors_count == 1
        assert Transaction.query.filter_by(template_id=template.id).count() == 1
        assert reload(template).next_execution_date == date(2024, 1, 31)

    def test_monthly_chain_from_month_end(self, user, make_template):
        template = make_template(user, frequency="monthly", anchor=date(2024, 1, 31))

        for day in (date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 29)):
            result = scheduler_at(datetime.combine(day, datetime.min.time())).run_once()
            assert result.payments_processed == 1

        template = reload(template)
        assert template.executed_count == 3
        assert template.last_executed_date == date(2024, 3, 29)
        assert template.next_execution_date == date(2024, 4, 29)
        assert [t.period_date for t in Transaction.query.order_by(Transaction.period_date)] == [
            date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 29)]


class TestExhaustion:
    """Tests for tenure and end date limits."""

    def test_tenure_runs_out(self, user, make_template):
        template = make_template(user, kind="loan_emi", frequency="weekly", anchor=date(2024, 1, 1),
                                 tenure=2, auto_debit=True)

        scheduler_at(datetime(2024, 1, 1, 9, 0)).run_once()
        assert reload(template).tenure_remaining == 1
        assert reload(template).is_active is True

        scheduler_at(datetime(2024, 1, 8, 9, 0)).run_once()
        template = reload(template)
        assert template.tenure_remaining == 0
        assert template.next_execution_date is None
        assert template.is_active is False

        result = scheduler_at(datetime(2024, 1, 15, 9, 0)).run_once()
        assert result.payments_processed == 0
        assert Transaction.query.filter_by(template_id=template.id).count() == 2

    def test_end_date_stops_schedule(self, user, make_template):
        template = make_template(user, frequency="monthly", anchor=date(2024, 1, 15), end_date=date(2024, 2, 1))

        scheduler_at(datetime(2024, 1, 15, 9, 0)).run_once()
        template = reload(template)
        assert template.next_execution_date is None
        assert template.is_active is False
        assert template.executed_count == 1


class TestEmiReminders:
    """Tests for EMI due and upcoming reminders."""

    def test_emi_without_auto_debit_books_due_and_notifies(self, user, make_template):
        template = make_template(user, kind="loan_emi", anchor=date(2024, 1, 31), name="Car loan")

        result = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()
        assert result.payments_processed == 0
        assert result.reminders_created == 1
        entry = Transaction.query.filter_by(template_id=template.id).one()
        assert entry.kind == "emi_due"
        assert entry.status == "due"
        notification = Notification.query.filter_by(user_id=user.id).one()
        assert notification.type == "emi"
        assert notification.title == "EMI Due"

    def test_upcoming_emi_reminded_once(self, user, make_template):
        template = make_template(user, kind="loan_emi", anchor=date(2024, 2, 2), name="Home loan")

        first = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()
        second = scheduler_at(datetime(2024, 2, 1, 9, 0)).run_once()

        assert first.reminders_created == 1
        assert second.reminders_created == 0
        assert reload(template).reminded_for_date == date(2024, 2, 2)
        titles = [n.title for n in Notification.query.filter_by(user_id=user.id)]
        assert titles == ["Upcoming EMI"]

    def test_emi_outside_lead_window_not_reminded(self, user, make_template):
        make_template(user, kind="loan_emi", anchor=date(2024, 2, 10))
        result = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()
        assert result.reminders_created == 0


class TestLockingAndAudit:
    """Tests for the per-job lock and audit entries."""

    def test_every_run_is_audited(self, user, make_template):
        make_template(user)
        result = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once(trigger="manual")

        log = db.session.get(CronJobLog, result.log_id)
        assert log.job_name == JOB
        assert log.trigger == "manual"
        assert log.status == "completed"
        assert log.completed_at is not None
        assert log.payments_processed == 1
        job = ScheduledJob.query.filter_by(job_name=JOB).one()
        assert job.locked_at is None
        assert job.last_run_at == datetime(2024, 1, 31, 9, 0)

    def test_busy_lock_fails_the_run(self, user, make_template):
        template = make_template(user)
        moment = datetime(2024, 1, 31, 9, 0)
        audit.ensure_job(JOB, "0 9 * * *")
        job = ScheduledJob.query.filter_by(job_name=JOB).one()
        job.locked_at = moment - timedelta(minutes=10)
        job.locked_by_log_id = 999
        db.session.commit()

        result = scheduler_at(moment).run_once()

        assert result.status == "failed"
        assert not result.success
        assert "already running" in result.to_dict()["error"]
        assert db.session.get(CronJobLog, result.log_id).status == "failed"
        assert reload(template).next_execution_date == date(2024, 1, 31)
        assert ScheduledJob.query.filter_by(job_name=JOB).one().locked_by_log_id == 999

    def test_expired_lock_is_taken_over(self, user, make_template):
        make_template(user)
        moment = datetime(2024, 1, 31, 9, 0)
        audit.ensure_job(JOB, "0 9 * * *")
        job = ScheduledJob.query.filter_by(job_name=JOB).one()
        job.locked_at = moment - timedelta(hours=2)
        job.locked_by_log_id = 999
        db.session.commit()

        result = scheduler_at(moment).run_once()
        assert result.status == "completed"
        assert result.payments_processed == 1

    def test_stale_running_entry_is_closed_as_failed(self, app):
        moment = datetime(2024, 1, 31, 9, 0)
        stale = CronJobLog(job_name=JOB, trigger="scheduled", status="running",
                           started_at=moment - timedelta(hours=2))
        db.session.add(stale)
        db.session.commit()

        scheduler_at(moment).run_once()

        stale = db.session.get(CronJobLog, stale.id)
        assert stale.status == "failed"
        assert stale.completed_at == moment
        assert stale.message == audit.STALE_RUN_MESSAGE

    def test_closed_entries_are_immutable(self, app):
        result = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()
        log = db.session.get(CronJobLog, result.log_id)
        log.message = "rewritten"
        with pytest.raises(ValueError):
            db.session.commit()
        db.session.rollback()

    def test_run_outliving_its_stale_close_keeps_the_failure(self, user, make_template):
        template = make_template(user)

        class OverrunScheduler(RecurringExecutionScheduler):
            def _load_due(self, as_of):
                # A later run already gave this one up for dead
                audit.close_stale_runs(self.job_name, self.max_run_seconds, now=datetime(2024, 1, 31, 11, 0))
                return super()._load_due(as_of)

        result = OverrunScheduler(clock=lambda: datetime(2024, 1, 31, 9, 0)).run_once()

        assert result.status == "failed"
        log = db.session.get(CronJobLog, result.log_id)
        assert log.status == "failed"
        assert log.message == audit.STALE_RUN_MESSAGE
        assert log.completed_at == datetime(2024, 1, 31, 11, 0)
        assert log.payments_processed == 0
        assert ScheduledJob.query.filter_by(job_name=JOB).one().locked_at is None
        assert reload(template).executed_count == 1

    def test_disabled_job_does_not_run(self, user, make_template):
        template = make_template(user)
        job = ScheduledJob.query.filter_by(job_name=JOB).one()
        job.is_active = False
        db.session.commit()

        result = scheduler_at(datetime(2024, 1, 31, 9, 0)).run_once()

        assert result.status == "failed"
        assert "disabled" in result.to_dict()["error"]
        assert db.session.get(CronJobLog, result.log_id).status == "failed"
        assert reload(template).next_execution_date == date(2024, 1, 31)
        job = ScheduledJob.query.filter_by(job_name=JOB).one()
        assert job.locked_at is None
        assert job.last_run_at is None


class TestTriggers:
    """Tests for trigger entry points."""

    def test_manual_trigger_runs_scheduler(self, app, user, make_template):
        make_template(user, anchor=datetime.utcnow().date() - timedelta(days=1))
        result = ManualTrigger(app).fire()
        assert result.trigger == "manual"
        assert result.status == "completed"
        assert result.payments_processed == 1

    def test_scheduled_runs_share_the_lock_with_manual_runs(self, app):
        # Both trigger kinds go through the same job row
        ManualTrigger(app).fire()
        assert ScheduledJob.query.filter_by(job_name=JOB).count() == 1
        assert CronJobLog.query.filter_by(job_name=JOB, trigger="manual").count() == 1

    def test_time_trigger_registers_cron_job(self, app):
        from services.triggers import TimeTrigger

        trigger = TimeTrigger(app, schedule="0 9 * * *", timezone="UTC")
        trigger.start()
        try:
            assert trigger.running
            job = trigger._scheduler.get_job(JOB)
            assert job is not None
            assert job.max_instances == 1
        finally:
            trigger.shutdown()
        assert not trigger.running

    def test_time_trigger_survives_a_crashing_run(self, app):
        from services.triggers import TimeTrigger

        class Exploding:
            def run_once(self, trigger=None):
                raise RuntimeError("database gone")

        trigger = TimeTrigger(app, scheduler_factory=Exploding)
        assert trigger.fire() is None


class TestParallelExecution:
    """Tests for spreading due items over a worker pool."""

    def test_owners_are_split_across_workers(self, file_app):
        owners = []
        for n in range(4):
            owner = User(full_name=f"Owner {n}", email=f"owner{n}@example.com",
                         mobile=f"0181100000{n}", is_active=True)
            owner.set_password("secret123")
            db.session.add(owner)
            owners.append(owner)
        db.session.commit()

        templates = []
        for owner in owners:
            for kind in ("transaction", "sip", "transaction"):
                template = RecurringObligationTemplate(
                    user_id=owner.id, kind=kind, name=f"{kind} of {owner.full_name}",
                    amount=Decimal("750.00"), currency="BDT", frequency="monthly",
                    anchor_date=date(2024, 1, 31), next_execution_date=date(2024, 1, 31),
                    is_active=True, executed_count=0)
                db.session.add(template)
                templates.append(template)
        db.session.commit()
        owner_of = {t.id: t.user_id for t in templates}
        main_thread = threading.get_ident()

        class RecordingScheduler(RecurringExecutionScheduler):
            """Serializes items so SQLite sees one writer at a time"""
            guard = threading.Lock()
            seen = []

            def execute_item(self, template_id, expected_date, as_of):
                with self.guard:
                    self.seen.append((template_id, threading.get_ident(), current_app._get_current_object()))
                    return super().execute_item(template_id, expected_date, as_of)

        scheduler = RecordingScheduler(max_workers=4, clock=lambda: datetime(2024, 1, 31, 9, 0))
        result = scheduler.run_once()

        assert result.status == "completed"
        assert result.errors == []
        assert result.payments_processed == 12
        assert Transaction.query.count() == 12
        assert sorted(template_id for template_id, _, _ in scheduler.seen) == sorted(owner_of)

        threads_by_owner = {}
        for template_id, thread_id, worker_app in scheduler.seen:
            assert thread_id != main_thread
            assert worker_app is file_app
            threads_by_owner.setdefault(owner_of[template_id], set()).add(thread_id)
        assert all(len(threads) == 1 for threads in threads_by_owner.values())

        for template_id in owner_of:
            template = db.session.get(RecurringObligationTemplate, template_id)
            assert template.executed_count == 1
            assert template.next_execution_date == date(2024, 2, 29)
