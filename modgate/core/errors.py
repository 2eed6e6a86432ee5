"""Project error hierarchy."""


class ModGateError(Exception):
    """Base error."""


class RequestBodyUnreadable(ModGateError):
    """Raised when the inbound request body cannot be read."""


class MalformedRequest(ModGateError):
    """Raised when a request body is not a valid chat request document."""


class ModerationError(ModGateError):
    """Base for failures talking to the moderation service."""


class ModerationUnavailable(ModerationError):
    """Raised on transport errors or non-success status from the moderation service."""


class MalformedModerationResponse(ModerationError):
    """Raised when the moderation response does not match the results schema."""


class ForwardingFailure(ModGateError):
    """Raised when the downstream completion API cannot be reached."""


class LogWriteFailure(ModGateError):
    """Raised when a flagged entry cannot be appended to the flag log."""
