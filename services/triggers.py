"""
Triggers funnel into the same locked ``RecurringExecutionScheduler.run_once``.

``TimeTrigger`` fires on the declared crontab through APScheduler's
background scheduler; ``ManualTrigger`` fires on demand (admin endpoint,
``run_scheduler.py`` from a system cron).
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from flask import has_app_context

from services.scheduler import RecurringExecutionScheduler

logger = logging.getLogger(__name__)


class Trigger:
    """Runs the recurring execution scheduler inside an app context"""
    trigger_name = None

    def __init__(self, app, scheduler_factory=RecurringExecutionScheduler):
        self.app = app
        self.scheduler_factory = scheduler_factory

    def _run(self):
        return self.scheduler_factory().run_once(trigger=self.trigger_name)

    def fire(self):
        if has_app_context():
            return self._run()
        with self.app.app_context():
            return self._run()


class ManualTrigger(Trigger):
    trigger_name = 'manual'


class TimeTrigger(Trigger):
    trigger_name = 'scheduled'

    def __init__(self, app, schedule=None, timezone=None, scheduler_factory=RecurringExecutionScheduler):
        super().__init__(app, scheduler_factory)
        self.schedule = schedule or app.config['RECURRING_JOB_SCHEDULE']
        self.timezone = timezone or app.config.get('SCHEDULER_TIMEZONE', 'UTC')
        self.job_id = app.config['RECURRING_JOB_NAME']
        self._scheduler = BackgroundScheduler(timezone=self.timezone)

    @property
    def running(self):
        return self._scheduler.running

    def fire(self):
        try:
            result = super().fire()
            logger.info("Scheduled run of %s finished: %s", self.job_id, result.status)
            return result
        except Exception:
            # Keep the background scheduler alive for the next tick
            logger.error("Scheduled run of %s crashed", self.job_id, exc_info=True)
            return None

    def start(self):
        self._scheduler.add_job(
            self.fire,
            CronTrigger.from_crontab(self.schedule, timezone=self.timezone),
            id=self.job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Time trigger started for %s (%s %s)", self.job_id, self.schedule, self.timezone)

    def shutdown(self, wait=False):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Time trigger for %s stopped", self.job_id)
