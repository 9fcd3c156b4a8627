"""
Models package.

Import all models here so they are registered with SQLAlchemy.
"""

from review_worker.models.job import Job, JobStatus, JobType, TERMINAL_STATUSES

__all__ = [
    "Job",
    "JobStatus",
    "JobType",
    "TERMINAL_STATUSES",
]
