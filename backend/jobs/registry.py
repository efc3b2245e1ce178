"""Named scheduled jobs shared by the cron endpoint and ``scripts/run_jobs.py``."""

from typing import Awaitable, Callable

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from backend.billing.trial_notifier import send_trial_expiration_emails
from backend.documents.expiry import run_document_expiry
from backend.performance.reminders import run_review_reminders

JobFn = Callable[[AsyncSession], Awaitable[BaseModel]]

JOBS: dict[str, JobFn] = {
    "trial-expiration-emails": send_trial_expiration_emails,
    "document-expiry": run_document_expiry,
    "performance-reminders": run_review_reminders,
}
