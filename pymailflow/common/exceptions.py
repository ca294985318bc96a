# pymailflow/common/exceptions.py


class PyMailFlowException(Exception):
    """Base exception for the PyMailFlow library."""

    pass


class ConfigurationError(PyMailFlowException, ValueError):
    """Raised when a configuration object is constructed with invalid values."""

    pass


class StoreConnectionError(PyMailFlowException):
    """Raised when the queue store cannot be reached."""

    pass


class JobLoadError(PyMailFlowException):
    """Raised when a job's handler cannot be found."""

    pass


class JobTimeoutError(PyMailFlowException):
    """Raised when a job exceeds its execution budget."""

    pass


class TransportError(PyMailFlowException):
    """Raised when a message cannot be delivered by a transport."""

    pass


class DkimSigningError(PyMailFlowException):
    pass


class AttachmentError(PyMailFlowException):
    pass


class RateLimitExceeded(PyMailFlowException):
    pass
