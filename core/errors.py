"""
Error taxonomy for the event cache.

Per-event admission failures are returned as values (see models.Rejected);
only the stream boundary raises.
"""

from enum import Enum


class MalformedEvent(ValueError):
    """A raw payload that cannot be turned into a canonical Event."""


class TransportError(ConnectionError):
    """Connection-level failure reported by the inbound event feed."""


class ClockBound(Enum):
    """Direction of a clamped clock position."""
    UNDERFLOW = "underflow"  # below minDate
    OVERFLOW = "overflow"    # beyond wall-clock now
