from typing import Optional


class MarhamError(Exception):
    """Base class for acquisition errors."""


class ConfigurationError(MarhamError):
    """Run input could not be validated. Fatal: nothing has been fetched yet."""


class TransientFetchError(MarhamError):
    def __init__(self, url: str, reason: str, status: Optional[int] = None) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class MalformedPayloadError(MarhamError):
    """A JSON, XML or HTML payload could not be parsed."""


class MissingIdentityError(MarhamError):
    """A merged record has no name."""
