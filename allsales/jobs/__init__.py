"""
Jobs package - background scheduling of catalog reconciliation
"""
from allsales.jobs.scheduler import JobScheduler, run_update_job

__all__ = ["JobScheduler", "run_update_job"]
