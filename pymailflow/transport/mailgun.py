# pymailflow/transport/mailgun.py
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .base import Transport
from pymailflow.config import MailgunConfig
from pymailflow.common.exceptions import ConfigurationError, TransportError
from pymailflow.mail.dkim import DkimSigner
from pymailflow.mail.message import Message, CONTENT_TYPE_TEXT

logger = logging.getLogger(__name__)

USER_AGENT = "pymailflow/0.1"

# Headers Mailgun sends as given; it rewrites Date and Message-ID.
_SIGNED_FIELDS = ("From", "To", "Subject")

_ERRORS = {
    400: "Bad Request: {message}",
    401: "Unauthorized: Invalid API key or domain",
    402: "Payment Required: {message}",
    404: "Not Found: Domain not found or not configured",
    413: "Request Entity Too Large: {message}",
    429: "Rate Limited: {message}",
    500: "Internal Server Error: {message}",
    502: "Service Unavailable: {message}",
    503: "Service Unavailable: {message}",
    504: "Service Unavailable: {message}",
}


def error_message(status_code: int, message: str) -> str:
    template = _ERRORS.get(status_code, "Mailgun API Error (HTTP {status}): {message}")
    return template.format(status=status_code, message=message)


class MailgunTransport(Transport):
    """Sends through the Mailgun HTTP API.

    Mailgun assembles the MIME message itself and stamps its own Date and
    Message-ID, so a configured signer covers only From, To and Subject.
    The body hash is taken over the raw content; receivers verify it only
    when Mailgun's rendered body canonicalizes to the same bytes. Domains
    that need dependable signatures should enable DKIM in Mailgun instead.
    """

    kind = "mailgun"

    def __init__(
        self,
        config: MailgunConfig,
        signer: Optional[DkimSigner] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        super().__init__(signer)
        if not config.api_key or not config.domain or config.from_ is None:
            raise ConfigurationError("Mailgun transport needs an API key, a domain and a from address")
        self.config = config
        self.endpoint = config.endpoint
        self.http_client = http_client or httpx.Client(
            timeout=httpx.Timeout(config.timeout, connect=config.connect_timeout),
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )

    def build_payload(self, message: Message) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "from": message.from_header,
            "to": message.to,
            "subject": message.subject,
        }
        if message.content_type == CONTENT_TYPE_TEXT:
            data["text"] = message.content
        else:
            data["html"] = message.content

        if self.signer is not None:
            headers = {
                name: value for name, value in message.headers().items() if name in _SIGNED_FIELDS
            }
            signature = self.signer.sign(headers, message.content)
            data["h:DKIM-Signature"] = signature.split(":", 1)[1].strip()

        cfg = self.config
        if cfg.tracking_clicks is not None:
            data["o:tracking-clicks"] = "yes" if cfg.tracking_clicks else "no"
        if cfg.tracking_opens is not None:
            data["o:tracking-opens"] = "yes" if cfg.tracking_opens else "no"
        if cfg.delivery_time:
            data["o:deliverytime"] = cfg.delivery_time
        if cfg.tags:
            data["o:tag"] = list(cfg.tags)
        for key, value in cfg.variables.items():
            data[f"v:{key}"] = str(value)
        return data

    def build_files(self, message: Message) -> List[Tuple[str, Tuple[str, bytes, str]]]:
        return [
            ("attachment", (a.filename, a.content, a.mime_type)) for a in message.attachments
        ]

    def send(self, message: Message) -> Optional[str]:
        if message.from_ is None:
            message.from_ = self.config.from_
        started = time.monotonic()
        data = self.build_payload(message)
        files = self.build_files(message)
        try:
            response = self.http_client.post(
                self.endpoint,
                data=data,
                files=files or None,
                auth=("api", self.config.api_key),
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Mailgun request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            try:
                provider_message = response.json().get("message", "Unknown error")
            except ValueError:
                provider_message = response.text or "Unknown error"
            raise TransportError(error_message(response.status_code, provider_message))

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON response from Mailgun API: {e}") from e

        logger.info(
            f"Mailgun accepted message to {message.to} in {(time.monotonic() - started) * 1000:.2f}ms "
            f"(id={body.get('id')})"
        )
        return body.get("id")
