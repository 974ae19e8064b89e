from __future__ import annotations


class NwcastError(Exception):
    """Base class for errors raised by the forecasting core."""


class ValidationError(NwcastError, ValueError):
    """Bad input: dates, layouts, bounds, or an unsupported directive scope."""


class ParseError(ValidationError):
    """A date string could not be parsed."""


class ConfigurationError(NwcastError):
    """The configuration cannot support the requested run."""
