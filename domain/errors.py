class CallerIdError(Exception):
    """Base class for every error raised by the caller-id gateway."""


class DeviceUnavailable(CallerIdError):
    """The modem port could not be opened or configured."""

    def __init__(self, port: str, reason: str):
        super().__init__(f"{port}: {reason}")
        self.port = port
        self.reason = reason


class DeviceWriteFailure(CallerIdError):
    """Writing to the modem failed (init commands or mid-session)."""


class ReverseLookupError(CallerIdError):
    """Transport-level failure while talking to the reverse-lookup provider."""


class ConfigurationError(CallerIdError):
    """Required settings are missing or invalid."""
