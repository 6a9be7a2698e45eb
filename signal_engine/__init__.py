"""
Talent Signals Engine core types.

Shared by collectors, storage, workflows, connectors and the API.
"""

from signal_engine.config import EngineConfig
from signal_engine.errors import (
    AuthenticationError,
    IntegrationNotFoundError,
    PartnerAPIError,
    SignalEngineError,
    ValidationError,
)
from signal_engine.models import (
    BucketType,
    PartnerType,
    RawFundingEvent,
    RawPosting,
    Signal,
    SignalType,
)

__all__ = [
    "EngineConfig",
    "SignalEngineError",
    "ValidationError",
    "AuthenticationError",
    "IntegrationNotFoundError",
    "PartnerAPIError",
    "BucketType",
    "PartnerType",
    "RawFundingEvent",
    "RawPosting",
    "Signal",
    "SignalType",
]

__version__ = "1.0.0"
