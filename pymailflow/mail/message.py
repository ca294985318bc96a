# pymailflow/mail/message.py
import email.utils
import socket
from email import encoders, policy
from email.header import Header
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, List, Optional, Sequence

from pymailflow.config import FromAddress
from pymailflow.mail.attachments import Attachment

CONTENT_TYPE_TEXT = "text/plain"
CONTENT_TYPE_HTML = "text/html"

# Headers are kept exactly as rendered by headers(), never refolded, so the
# bytes on the wire match what was signed.
WIRE_POLICY = policy.compat32.clone(linesep="\r\n", max_line_length=0)


def _encode_header(value: str) -> str:
    if value.isascii():
        return value
    return Header(value, "utf-8").encode(maxlinelen=0)


class Message:
    """
    One outgoing mail.

    ``headers()`` is the ordered From/To/Subject/Date/Message-ID mapping that
    is both written to the wire and signed.
    """

    def __init__(
        self,
        to: str,
        subject: str,
        content: str = "",
        content_type: str = CONTENT_TYPE_TEXT,
        attachments: Sequence[Attachment] = (),
        from_: Optional[FromAddress] = None,
        message_id: Optional[str] = None,
        date: Optional[str] = None,
    ):
        self.to = to
        self.subject = subject
        self.content = content
        self.content_type = content_type
        self.attachments: List[Attachment] = list(attachments)
        self.from_ = from_
        self.message_id = message_id or email.utils.make_msgid(domain=self._id_domain())
        self.date = date or email.utils.formatdate(localtime=True)

    def _id_domain(self) -> str:
        if self.from_ and "@" in self.from_.address:
            return self.from_.address.rsplit("@", 1)[1]
        return socket.gethostname() or "localhost"

    @property
    def from_header(self) -> str:
        if self.from_ is None:
            return ""
        return email.utils.formataddr((self.from_.name, self.from_.address), charset="utf-8")

    def headers(self) -> Dict[str, str]:
        headers = {
            "From": self.from_header,
            "To": self.to,
            "Subject": _encode_header(self.subject),
            "Date": self.date,
            "Message-ID": self.message_id,
        }
        return {name: value for name, value in headers.items() if value}

    def _text_part(self) -> MIMEText:
        subtype = "html" if self.content_type == CONTENT_TYPE_HTML else "plain"
        return MIMEText(self.content, subtype, "utf-8")

    def to_mime(self):
        if self.attachments:
            root = MIMEMultipart("mixed")
            root.attach(self._text_part())
            for attachment in self.attachments:
                part = MIMEBase(attachment.maintype, attachment.subtype)
                part.set_payload(attachment.content)
                encoders.encode_base64(part)
                part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
                root.attach(part)
        else:
            root = self._text_part()

        for name, value in self.headers().items():
            root[name] = value
        return root

    def as_bytes(self) -> bytes:
        return self.to_mime().as_bytes(policy=WIRE_POLICY)
