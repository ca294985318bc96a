# pymailflow/transport/base.py
from abc import ABC, abstractmethod
from typing import Optional

from pymailflow.mail.dkim import DkimSigner, LOCAL_TRANSPORTS
from pymailflow.mail.message import Message


class Transport(ABC):
    """Delivers a built Message. Implementations raise TransportError on failure."""

    kind = "base"

    def __init__(self, signer: Optional[DkimSigner] = None):
        self.signer = signer

    @property
    def is_local(self) -> bool:
        return self.kind in LOCAL_TRANSPORTS

    @abstractmethod
    def send(self, message: Message) -> Optional[str]:
        """Sends the message and returns a provider id when there is one."""

    def render(self, message: Message) -> bytes:
        """Serializes the message for the wire, signature first when signing."""
        raw = message.as_bytes()
        if self.signer is None:
            return raw
        _, _, body = raw.partition(b"\r\n\r\n")
        signature = self.signer.sign(message.headers(), body)
        return signature.encode("ascii") + b"\r\n" + raw
