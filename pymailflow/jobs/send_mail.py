# pymailflow/jobs/send_mail.py
import logging
from typing import Optional

from pymailflow.common.job import Job

logger = logging.getLogger(__name__)

SEND_MAIL = "send_mail"


class SendMailHandler:
    """Worker-side handler for ``send_mail`` jobs."""

    def __init__(self, mailer):
        self.mailer = mailer

    def __call__(self, job: Job) -> Optional[str]:
        payload = job.payload
        logger.debug(f"Sending job {job.id} to {payload.to} (attempt {job.attempts})")
        return self.mailer.send_payload(payload)
