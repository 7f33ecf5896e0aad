"""
Tests for the background job scheduler
"""
import copy

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from allsales.exceptions import UpstreamError, ValidationException
from allsales.jobs.scheduler import JobScheduler, run_update_job
from allsales.models import SyncRun
from allsales.services import get_services


@pytest.fixture
def update_settings(test_settings):
    return copy.deepcopy(test_settings["update"])


class TestJobRegistration:

    def test_registers_cron_and_startup_jobs(self, app, update_settings):
        job_scheduler = JobScheduler(update_settings)
        job_scheduler.init_app(app, start=False)

        jobs = {job.id: job for job in job_scheduler.scheduler.get_jobs()}

        assert set(jobs) == {"update_catalog", "startup_update"}
        assert isinstance(jobs["update_catalog"].trigger, CronTrigger)
        assert isinstance(jobs["startup_update"].trigger, DateTrigger)
        assert jobs["update_catalog"].max_instances == 1
        assert jobs["update_catalog"].coalesce is True
        assert jobs["update_catalog"].args == (app, "schedule")
        assert app.extensions["allsales_scheduler"] is job_scheduler

    def test_startup_run_can_be_disabled(self, app, update_settings):
        update_settings["run_on_startup"] = False
        job_scheduler = JobScheduler(update_settings)
        job_scheduler.init_app(app, start=False)

        assert [job["id"] for job in job_scheduler.get_jobs()] == ["update_catalog"]

    def test_invalid_cron_is_rejected(self, app, update_settings):
        update_settings["cron_schedule"] = "every two hours"

        with pytest.raises(ValidationException):
            JobScheduler(update_settings).init_app(app, start=False)

    def test_shutdown_when_not_started(self, update_settings):
        JobScheduler(update_settings).shutdown()


class TestRunUpdateJob:

    def test_runs_full_update(self, app, steam, payload):
        steam.set_catalog((2, "Real Game"))
        steam.set_detail(2, payload("Real Game"))

        result = run_update_job(app, "startup")

        assert result["sync"]["added"] == 1
        assert result["processed"] == 1
        with app.app_context():
            assert SyncRun.query.filter_by(kind="update_all", trigger="startup").count() == 1

    def test_overlapping_trigger_is_skipped(self, app, steam):
        with get_services(app).updates.guard.hold("update_all"):
            assert run_update_job(app, "schedule") is None

        assert steam.catalog_calls == 0

    def test_failed_run_is_logged_not_raised(self, app, steam):
        steam.catalog_error = UpstreamError("Steam is down")

        assert run_update_job(app) is None
        assert get_services(app).updates.guard.running is None
