from .attachments import Attachment, AttachmentResolver
from .dkim import DkimSigner, generate_keys, dns_record, should_sign
from .message import Message
from .mailer import Mailer
from .rate_limiter import RateLimiter

__all__ = [
    "Attachment",
    "AttachmentResolver",
    "DkimSigner",
    "generate_keys",
    "dns_record",
    "should_sign",
    "Message",
    "Mailer",
    "RateLimiter",
]
