"""Exception hierarchy shared by ingestion, sync and the HTTP surface."""


class SignalEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(SignalEngineError):
    """A request was malformed and was rejected before touching the store."""


class AuthenticationError(SignalEngineError):
    """A signature or secret did not match. Never retried."""


class IntegrationNotFoundError(SignalEngineError):
    """No active partner integration exists for the requested partner."""


class PartnerAPIError(SignalEngineError):
    """A partner API call failed after exhausting its retries."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
