class ProbeConfigError(ValueError):
    """Raised when a probe run cannot be scheduled with the given settings."""


class RelaysError(Exception):
    """Raised when the relay list cannot be read or parsed."""


class LocationError(Exception):
    """Raised when the caller's location cannot be determined."""
