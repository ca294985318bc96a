# pymailflow/transport/null.py
import logging
from typing import Optional

from .base import Transport
from pymailflow.mail.message import Message

logger = logging.getLogger(__name__)


class NullTransport(Transport):
    """Accepts every message and delivers none. Useful in development."""

    kind = "null"

    def send(self, message: Message) -> Optional[str]:
        logger.debug(f"Null transport dropped message {message.message_id} to {message.to}")
        return None
