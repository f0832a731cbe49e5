class RemixerError(Exception):
    """Base error; ``status_code`` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RemixerError):
    status_code = 400


class PathRejectedError(ValidationError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Unsafe path rejected ({reason})")
        self.path = path
        self.reason = reason


class NotFoundError(RemixerError):
    status_code = 404


class LimitExceededError(RemixerError):
    status_code = 400


class JobInProgressError(RemixerError):
    status_code = 409


class UnsupportedMediaError(RemixerError):
    status_code = 415


class PayloadTooLargeError(RemixerError):
    status_code = 413


class RangeNotSatisfiableError(RemixerError):
    status_code = 416

    def __init__(self, message: str, file_size: int):
        super().__init__(message)
        self.file_size = file_size


class ExternalToolError(RemixerError):
    """A tool subprocess failed. Recorded on the track, never sent to a client."""
