# pymailflow/mail/mailer.py
import email.utils
import logging
import time
from typing import Any, Iterable, Optional

from pymailflow.common.events import EventSink, NullEventSink, MessageQueued
from pymailflow.common.exceptions import RateLimitExceeded
from pymailflow.common.job import MailPayload
from pymailflow.config import FromAddress
from pymailflow.mail.attachments import Attachment, AttachmentResolver, attachment_spec
from pymailflow.mail.message import Message, CONTENT_TYPE_HTML
from pymailflow.mail.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def _to_spec(attachment: Any) -> dict:
    """Turns a path, spec dict or in-memory Attachment into a JSON-safe spec."""
    if isinstance(attachment, dict):
        return dict(attachment)
    if isinstance(attachment, Attachment):
        return attachment_spec(content=attachment.content, name=attachment.filename, mime_type=attachment.mime_type)
    return attachment_spec(path=str(attachment))


def validate_recipient(to: str) -> str:
    _, address = email.utils.parseaddr(to)
    local, _, domain = address.rpartition("@")
    if not local or "." not in domain:
        raise ValueError(f"Invalid recipient address: {to!r}")
    return to


class Mailer:
    """
    Front door for sending mail, either right away or through the queue.

    ``transport`` is any object with ``send(message)``; ``client`` is the queue
    Client used by ``queue()``.
    """

    def __init__(
        self,
        transport,
        client=None,
        rate_limiter: Optional[RateLimiter] = None,
        resolver: Optional[AttachmentResolver] = None,
        from_: Optional[FromAddress] = None,
        events: Optional[EventSink] = None,
    ):
        self.transport = transport
        self.client = client
        self.rate_limiter = rate_limiter
        self.resolver = resolver or AttachmentResolver()
        self.from_ = from_
        self.events = events or NullEventSink()

    def build_message(
        self,
        to: str,
        subject: str,
        content: str,
        content_type: str = CONTENT_TYPE_HTML,
        attachments: Iterable[Any] = (),
    ) -> Message:
        return Message(
            to=validate_recipient(to),
            subject=subject,
            content=content,
            content_type=content_type,
            attachments=self.resolver.resolve_all(attachments),
            from_=self.from_,
        )

    def send(
        self,
        to: str,
        subject: str,
        content: str,
        content_type: str = CONTENT_TYPE_HTML,
        attachments: Iterable[Any] = (),
    ) -> Optional[str]:
        """Sends immediately. Returns the transport's message id, if any."""
        if self.rate_limiter is not None and not self.rate_limiter.allow():
            raise RateLimitExceeded("Rate limit exceeded for sending emails. Please try again later.")

        started = time.monotonic()
        message = self.build_message(to, subject, content, content_type, attachments)
        try:
            message_id = self.transport.send(message)
        except Exception as e:
            logger.warning(
                f"Email to {to} failed after {(time.monotonic() - started) * 1000:.2f}ms "
                f"via {type(self.transport).__name__}: {e}"
            )
            raise
        logger.info(
            f"Email sent to {to} in {(time.monotonic() - started) * 1000:.2f}ms "
            f"via {type(self.transport).__name__}"
        )
        return message_id

    def send_payload(self, payload: MailPayload) -> Optional[str]:
        return self.send(
            payload.to,
            payload.subject,
            payload.content,
            payload.content_type,
            payload.attachments,
        )

    def queue(
        self,
        to: str,
        subject: str,
        content: str,
        content_type: str = CONTENT_TYPE_HTML,
        attachments: Iterable[Any] = (),
        queue: Optional[str] = None,
    ) -> str:
        """Enqueues the mail for a worker and returns the job id."""
        if self.client is None:
            raise RuntimeError("Mailer has no queue client configured")
        payload = MailPayload(
            to=validate_recipient(to),
            subject=subject,
            content=content,
            content_type=content_type,
            attachments=[_to_spec(a) for a in attachments],
        )
        job_id = self.client.enqueue(payload, queue=queue)
        self.events.emit(MessageQueued(job_id=job_id, queue=queue or self.client.default_queue))
        logger.info(f"Email to {to} queued as job {job_id}")
        return job_id
