class PulseError(Exception):
    """Base error for the draw clock and telemetry cache."""


class ConfigError(PulseError, ValueError):
    """Invalid configuration. Raised at startup, never retried."""


class PayloadError(PulseError):
    """A data source answered, but the payload failed validation."""
