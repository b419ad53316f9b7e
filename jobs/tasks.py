"""
jobs/tasks.py -- Celery tasks.

send_email delivers one message through notifications.mailer. SMTP and socket
failures are retried with exponential backoff (2s, 4s, ...) for three attempts
in total; anything else fails the job at once.
"""

import asyncio
import logging

import aiosmtplib
from celery import shared_task

from core.config import get_settings
from notifications.mailer import Mailer

logger = logging.getLogger("starterapi.jobs")


@shared_task(
    bind=True,
    name="jobs.tasks.send_email",
    autoretry_for=(aiosmtplib.SMTPException, OSError),
    retry_backoff=2,
    retry_jitter=False,
    max_retries=2,
)
def send_email(self, to, subject, text=None, html=None, cc=None, bcc=None):
    """Send one email. Arguments mirror Mailer.build_message()."""
    mailer = Mailer.from_settings(get_settings())
    message, recipients = mailer.build_message(to, subject, text=text, html_body=html, cc=cc, bcc=bcc)
    if self.request.retries:
        logger.info("Retrying email %r (attempt %d)", subject, self.request.retries + 1)
    asyncio.run(mailer.deliver(message, recipients))
    return {"recipients": recipients, "subject": subject}
