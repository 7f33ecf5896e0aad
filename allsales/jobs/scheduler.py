"""
Background Jobs - periodic catalog reconciliation
"""
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from allsales.constants import RUN_KIND_UPDATE_ALL
from allsales.exceptions import RunInProgressError, ValidationException
from allsales.services import get_services

logger = logging.getLogger('main')

SCHEDULER_EXTENSION_KEY = 'allsales_scheduler'


def run_update_job(app, trigger='schedule'):
    """
    Full catalog update, skipped when another guarded run is in progress.
    Failures are logged; the next tick tries again.
    """
    services = get_services(app)
    with app.app_context():
        try:
            return services.updates.run_exclusive(RUN_KIND_UPDATE_ALL, trigger)
        except RunInProgressError:
            logger.info(f"Catalog update already in progress, skipping {trigger} trigger.")
            return None
        except Exception as e:
            logger.error(f"Error during catalog update job: {e}", exc_info=True)
            return None


class JobScheduler:
    """Owns the APScheduler instance running catalog updates"""

    def __init__(self, update_settings):
        self.cron_schedule = update_settings['cron_schedule']
        self.run_on_startup = update_settings['run_on_startup']
        self.scheduler = BackgroundScheduler(timezone=timezone.utc)
        self._jobs_registered = False

    def init_app(self, app, start=True):
        """Register jobs for the Flask app and start the scheduler"""
        self._register_jobs(app)
        app.extensions[SCHEDULER_EXTENSION_KEY] = self
        if start:
            self.scheduler.start()
            logger.info("Job scheduler initialized")

    def _register_jobs(self, app):
        if self._jobs_registered:
            return

        try:
            cron_trigger = CronTrigger.from_crontab(self.cron_schedule, timezone=timezone.utc)
        except ValueError as e:
            raise ValidationException(f"Invalid update cron schedule {self.cron_schedule!r}: {e}")

        # Recurring full update (every 2 hours by default)
        self.scheduler.add_job(
            func=run_update_job,
            trigger=cron_trigger,
            id='update_catalog',
            name='Update Catalog',
            args=[app, 'schedule'],
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        # One immediate run, without holding up startup
        if self.run_on_startup:
            self.scheduler.add_job(
                func=run_update_job,
                trigger=DateTrigger(run_date=datetime.now(timezone.utc)),
                id='startup_update',
                name='Startup Catalog Update',
                args=[app, 'startup'],
                max_instances=1,
                replace_existing=True,
            )

        self._jobs_registered = True
        logger.info(f"Background jobs registered (schedule: {self.cron_schedule})")

    def get_jobs(self):
        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run_time': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    def shutdown(self):
        """Stop the scheduler without waiting for a running update"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Job scheduler shutdown")
