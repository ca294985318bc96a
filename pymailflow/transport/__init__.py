from .base import Transport
from .null import NullTransport
from .smtp import SmtpTransport
from .mailgun import MailgunTransport
from .factory import make_transport

__all__ = ["Transport", "NullTransport", "SmtpTransport", "MailgunTransport", "make_transport"]
