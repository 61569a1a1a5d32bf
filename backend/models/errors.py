class ChatError(Exception):
    """Base class for failures surfaced by the completion pipeline."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigError(ChatError):
    """Deployment defect: no credential (or no key archive) is configured."""


class ValidationError(ChatError):
    """Malformed request body, rejected before any network call."""

    status_code = 400


class UpstreamError(ChatError):
    """The model endpoint answered with a non-success status or an empty completion."""

    def __init__(self, message: str, upstream_status: int | None = None, body: str = ""):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.body = body


class TransportError(ChatError):
    """Network failure or a stream that was cut off before its end marker."""
