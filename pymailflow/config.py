# pymailflow/config.py
"""
Validated configuration objects.

Every object is a frozen dataclass checked in ``__post_init__`` so an invalid
value fails at construction instead of deep inside a worker. The ``from_env``
constructors read the variables used by existing deployments.
"""
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pymailflow.common.exceptions import ConfigurationError

ENCRYPTIONS = ("tls", "ssl", "none")
MAILGUN_REGIONS = ("us", "eu")
DRIVERS = ("null", "smtp", "mailgun")


def _raise_if(errors: List[str], what: str) -> None:
    if errors:
        raise ConfigurationError(f"Invalid {what}: " + "; ".join(errors))


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(environ: Mapping[str, str], name: str, default: Optional[bool]) -> Optional[bool]:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _normalize_encryption(value: Optional[str]) -> str:
    if value is None or value.strip().lower() in ("", "null"):
        return "none"
    return value.strip().lower()


@dataclass(frozen=True)
class ConnectionConfig:
    host: str = "127.0.0.1"
    port: int = 6379
    password: Optional[str] = None
    database: int = 0
    timeout: float = 30

    def __post_init__(self):
        errors = []
        if not self.host:
            errors.append("host must not be empty")
        if not 0 < self.port <= 65535:
            errors.append(f"port must be in (0, 65535], got {self.port}")
        if self.database < 0:
            errors.append(f"database must be >= 0, got {self.database}")
        if self.timeout <= 0:
            errors.append(f"timeout must be > 0, got {self.timeout}")
        _raise_if(errors, "connection config")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "ConnectionConfig":
        return cls(
            host=environ.get("REDIS_HOST", "127.0.0.1"),
            port=_env_int(environ, "REDIS_PORT", 6379),
            password=environ.get("REDIS_PASSWORD") or None,
            database=_env_int(environ, "REDIS_DB", 0),
            timeout=_env_int(environ, "REDIS_TIMEOUT", 30),
        )


@dataclass(frozen=True)
class QueueConfig:
    default_queue: str = "emails"
    key_prefix: str = "queue:"
    failed_jobs_key: str = "queue:failed"
    # Lease length of a reservation; an expired lease can be reclaimed.
    reservation_timeout: float = 90

    def __post_init__(self):
        errors = []
        if not self.default_queue:
            errors.append("default_queue must not be empty")
        if not self.failed_jobs_key:
            errors.append("failed_jobs_key must not be empty")
        elif self.failed_jobs_key == f"{self.key_prefix}queues" or self.failed_jobs_key.startswith(
            f"{self.key_prefix}job:"
        ):
            errors.append(
                f"failed_jobs_key {self.failed_jobs_key!r} collides with the queue set or job keys"
            )
        if ":" in self.default_queue:
            errors.append(f"default_queue must not contain ':', got {self.default_queue!r}")
        elif self.failed_jobs_key in (
            f"{self.key_prefix}{self.default_queue}",
            f"{self.key_prefix}{self.default_queue}:reserved",
        ):
            errors.append(f"default_queue {self.default_queue!r} collides with failed_jobs_key")
        if self.reservation_timeout <= 0:
            errors.append(
                f"reservation_timeout must be > 0, got {self.reservation_timeout}"
            )
        _raise_if(errors, "queue config")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "QueueConfig":
        prefix = environ.get("QUEUE_PREFIX", "queue:")
        return cls(
            default_queue=environ.get("QUEUE_DEFAULT", "emails"),
            key_prefix=prefix,
            failed_jobs_key=environ.get("QUEUE_FAILED_KEY", f"{prefix}failed"),
            reservation_timeout=_env_int(environ, "QUEUE_RESERVATION_TIMEOUT", 90),
        )


@dataclass(frozen=True)
class WorkerConfig:
    sleep: float = 3
    max_tries: int = 3
    memory: int = 128  # MB
    timeout: float = 60  # seconds per job
    retry_delay: float = 5
    max_retry_delay: float = 300

    def __post_init__(self):
        errors = []
        if self.sleep < 0:
            errors.append(f"sleep must be >= 0, got {self.sleep}")
        if self.max_tries <= 0:
            errors.append(f"max_tries must be > 0, got {self.max_tries}")
        if self.memory <= 0:
            errors.append(f"memory must be > 0, got {self.memory}")
        if self.timeout <= 0:
            errors.append(f"timeout must be > 0, got {self.timeout}")
        if self.retry_delay <= 0:
            errors.append(f"retry_delay must be > 0, got {self.retry_delay}")
        if self.max_retry_delay < self.retry_delay:
            errors.append("max_retry_delay must be >= retry_delay")
        _raise_if(errors, "worker config")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "WorkerConfig":
        return cls(
            sleep=_env_int(environ, "QUEUE_SLEEP", 3),
            max_tries=_env_int(environ, "QUEUE_MAX_TRIES", 3),
            memory=_env_int(environ, "QUEUE_MEMORY", 128),
            timeout=_env_int(environ, "QUEUE_TIMEOUT", 60),
            retry_delay=_env_int(environ, "QUEUE_RETRY_DELAY", 5),
            max_retry_delay=_env_int(environ, "QUEUE_MAX_RETRY_DELAY", 300),
        )


@dataclass(frozen=True)
class FromAddress:
    address: str
    name: str = ""

    def __post_init__(self):
        if not self.address or "@" not in self.address:
            raise ConfigurationError(f"Invalid from address: {self.address!r}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "FromAddress":
        return cls(
            address=environ.get("MAIL_FROM_ADDRESS", "noreply@example.com"),
            name=environ.get("MAIL_FROM_NAME", ""),
        )


@dataclass(frozen=True)
class DkimConfig:
    private_key: str = ""
    selector: str = ""
    domain: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.private_key and self.selector and self.domain)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "DkimConfig":
        return cls(
            private_key=environ.get("MAIL_DKIM_PRIVATE_KEY", ""),
            selector=environ.get("MAIL_DKIM_SELECTOR", "default"),
            domain=environ.get("MAIL_DKIM_DOMAIN", ""),
        )


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int = 587
    encryption: str = "tls"
    username: str = ""
    password: str = ""
    timeout: float = 30
    from_: Optional[FromAddress] = None
    local_hostname: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "encryption", _normalize_encryption(self.encryption))
        errors = []
        if not self.host:
            errors.append("host must not be empty")
        if not 0 < self.port <= 65535:
            errors.append(f"port must be in (0, 65535], got {self.port}")
        if self.encryption not in ENCRYPTIONS:
            errors.append(f"unsupported encryption {self.encryption!r}")
        if self.timeout <= 0:
            errors.append(f"timeout must be > 0, got {self.timeout}")
        if bool(self.username) != bool(self.password):
            errors.append("username and password must be set together")
        if self.from_ is None:
            errors.append("from address is required")
        _raise_if(errors, "SMTP config")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "SmtpConfig":
        return cls(
            host=environ.get("MAIL_HOST", ""),
            port=_env_int(environ, "MAIL_PORT", 587),
            encryption=environ.get("MAIL_ENCRYPTION", "tls"),
            username=environ.get("MAIL_USERNAME", ""),
            password=environ.get("MAIL_PASSWORD", ""),
            timeout=_env_int(environ, "MAIL_TIMEOUT", 30),
            from_=FromAddress.from_env(environ),
        )


@dataclass(frozen=True)
class MailgunConfig:
    api_key: str
    domain: str
    region: str = "us"
    timeout: float = 30
    connect_timeout: float = 10
    tracking_clicks: Optional[bool] = None
    tracking_opens: Optional[bool] = None
    delivery_time: Optional[str] = None
    tags: Tuple[str, ...] = ()
    variables: Dict[str, Any] = field(default_factory=dict)
    from_: Optional[FromAddress] = None

    def __post_init__(self):
        errors = []
        missing = [name for name in ("api_key", "domain") if not getattr(self, name)]
        if missing:
            errors.append("missing " + ", ".join(missing))
        if self.region not in MAILGUN_REGIONS:
            errors.append(
                f"region must be one of {', '.join(MAILGUN_REGIONS)}, got {self.region!r}"
            )
        if self.timeout < 1:
            errors.append("timeout must be a positive number")
        if self.connect_timeout < 1:
            errors.append("connect_timeout must be a positive number")
        if self.from_ is None:
            errors.append("from address is required")
        _raise_if(errors, "Mailgun config")

    @property
    def endpoint(self) -> str:
        base = "https://api.eu.mailgun.net" if self.region == "eu" else "https://api.mailgun.net"
        return f"{base}/v3/{self.domain}/messages"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "MailgunConfig":
        tags = tuple(t for t in environ.get("MAILGUN_TAGS", "").split(",") if t.strip())
        return cls(
            api_key=environ.get("MAILGUN_API_KEY", ""),
            domain=environ.get("MAILGUN_DOMAIN", ""),
            region=environ.get("MAILGUN_REGION", "us"),
            timeout=_env_int(environ, "MAILGUN_TIMEOUT", 30),
            connect_timeout=_env_int(environ, "MAILGUN_CONNECT_TIMEOUT", 10),
            tracking_clicks=_env_bool(environ, "MAILGUN_TRACK_CLICKS", None),
            tracking_opens=_env_bool(environ, "MAILGUN_TRACK_OPENS", None),
            delivery_time=environ.get("MAILGUN_DELIVERY_TIME") or None,
            tags=tags,
            from_=FromAddress.from_env(environ),
        )


@dataclass(frozen=True)
class RateLimitConfig:
    key: str = "mail"
    limit: int = 100
    seconds: float = 60

    def __post_init__(self):
        errors = []
        if not self.key:
            errors.append("key must not be empty")
        if self.limit <= 0:
            errors.append(f"limit must be > 0, got {self.limit}")
        if self.seconds <= 0:
            errors.append(f"seconds must be > 0, got {self.seconds}")
        _raise_if(errors, "rate limit config")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "RateLimitConfig":
        return cls(
            key=environ.get("RATE_LIMITER_KEY", "mail"),
            limit=_env_int(environ, "RATE_LIMITER_LIMIT", 100),
            seconds=_env_int(environ, "RATE_LIMITER_SECONDS", 60),
        )


@dataclass(frozen=True)
class MailConfig:
    driver: str = "null"
    from_: Optional[FromAddress] = None
    smtp: Optional[SmtpConfig] = None
    mailgun: Optional[MailgunConfig] = None
    dkim: DkimConfig = field(default_factory=DkimConfig)
    rate_limit: Optional[RateLimitConfig] = None

    def __post_init__(self):
        errors = []
        if self.driver not in DRIVERS:
            errors.append(f"driver must be one of {', '.join(DRIVERS)}, got {self.driver!r}")
        elif self.driver == "smtp" and self.smtp is None:
            errors.append("driver 'smtp' needs an SMTP config")
        elif self.driver == "mailgun" and self.mailgun is None:
            errors.append("driver 'mailgun' needs a Mailgun config")
        _raise_if(errors, "mail config")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "MailConfig":
        driver = environ.get("MAIL_DRIVER", "null").strip().lower()
        return cls(
            driver=driver,
            from_=FromAddress.from_env(environ),
            smtp=SmtpConfig.from_env(environ) if driver == "smtp" else None,
            mailgun=MailgunConfig.from_env(environ) if driver == "mailgun" else None,
            dkim=DkimConfig.from_env(environ),
            rate_limit=RateLimitConfig.from_env(environ),
        )
