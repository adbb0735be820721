"""Exception types shared across the ingest and signal paths."""
from __future__ import annotations


class RaceSignalsError(Exception):
    """Base class for errors raised by race_signals."""


class ConfigurationError(RaceSignalsError):
    """Raised when required configuration (credentials, paths) is missing."""


class FeedError(RaceSignalsError):
    """Raised when the upstream price feed cannot be fetched this cycle."""


class FeedPayloadError(FeedError):
    """Raised when the upstream feed answers with a payload we cannot read."""


class InvalidPriceError(ValueError):
    """Raised for a price that is unparsable or not strictly positive."""


class FusionReadError(RaceSignalsError):
    """Raised when one of the fusion engine's bulk reads fails."""
