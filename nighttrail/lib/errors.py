"""
Error types raised by the session-processing pipeline
"""


class NightTrailError(Exception):
    """Base class for all NightTrail errors"""


class MalformedInput(NightTrailError, ValueError):
    """
    A fix or timestamp violated the ingestion contract

    Raised for out-of-order timestamps, non-finite or out-of-range coordinates
    and timestamps without timezone information. The offending fix is rejected;
    the session that received it stays usable.
    """


class InsufficientData(NightTrailError):
    """There is not enough data to produce the requested output"""
