# pymailflow/transport/smtp.py
import logging
import smtplib
import ssl
import time
from typing import Optional

from .base import Transport
from pymailflow.config import SmtpConfig
from pymailflow.common.exceptions import ConfigurationError, TransportError
from pymailflow.mail.dkim import DkimSigner
from pymailflow.mail.message import Message

logger = logging.getLogger(__name__)


class SmtpTransport(Transport):
    kind = "smtp"

    def __init__(self, config: SmtpConfig, signer: Optional[DkimSigner] = None):
        super().__init__(signer)
        if config.from_ is None or not config.host:
            raise ConfigurationError("SMTP transport needs a host and a from address")
        self.config = config

    def _connect(self) -> smtplib.SMTP:
        cfg = self.config
        if cfg.encryption == "ssl":
            # Implicit TLS (port 465)
            return smtplib.SMTP_SSL(
                cfg.host,
                cfg.port,
                local_hostname=cfg.local_hostname,
                timeout=cfg.timeout,
                context=ssl.create_default_context(),
            )
        server = smtplib.SMTP(cfg.host, cfg.port, local_hostname=cfg.local_hostname, timeout=cfg.timeout)
        if cfg.encryption == "tls":
            server.starttls(context=ssl.create_default_context())
        return server

    def send(self, message: Message) -> Optional[str]:
        if message.from_ is None:
            message.from_ = self.config.from_
        raw = self.render(message)
        started = time.monotonic()
        try:
            server = self._connect()
            try:
                if self.config.username and self.config.password:
                    server.login(self.config.username, self.config.password)
                server.sendmail(message.from_.address, [message.to], raw)
            finally:
                try:
                    server.quit()
                except (smtplib.SMTPException, OSError):
                    server.close()
        except smtplib.SMTPException as e:
            raise TransportError(f"SMTP error: {e}") from e
        except OSError as e:
            raise TransportError(f"Connection error: {e}") from e

        logger.info(
            f"SMTP delivered {message.message_id} to {message.to} via {self.config.host}:{self.config.port} "
            f"in {(time.monotonic() - started) * 1000:.2f}ms"
        )
        return message.message_id
