# pymailflow/transport/factory.py
import logging
from typing import Optional

import httpx

from .base import Transport
from .mailgun import MailgunTransport
from .null import NullTransport
from .smtp import SmtpTransport
from pymailflow.config import MailConfig
from pymailflow.common.exceptions import ConfigurationError
from pymailflow.mail.dkim import DkimSigner, should_sign

logger = logging.getLogger(__name__)


def make_transport(config: MailConfig, http_client: Optional[httpx.Client] = None) -> Transport:
    """Builds the configured transport, signing with DKIM when it applies."""
    signer = None
    if should_sign(config.driver, config.dkim):
        signer = DkimSigner.from_config(config.dkim)
        logger.info(f"DKIM signing enabled for d={config.dkim.domain} s={config.dkim.selector}")

    if config.driver == "null":
        return NullTransport()
    if config.driver == "smtp":
        return SmtpTransport(config.smtp, signer=signer)
    if config.driver == "mailgun":
        return MailgunTransport(config.mailgun, signer=signer, http_client=http_client)
    raise ConfigurationError(f"Unknown mail driver: {config.driver!r}")
