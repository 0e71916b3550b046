class RecordingServiceError(Exception):
    """Base error. Carries the HTTP status and the short `error` tag of the response body."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str, error: str | None = None):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ClientInputError(RecordingServiceError):
    status_code = 400
    error = "Bad request"


class InvalidFilenameError(ClientInputError):
    error = "Invalid filename"

    def __init__(self, message: str = "Filename contains invalid characters"):
        super().__init__(message)


class UnsupportedMediaTypeError(ClientInputError):
    status_code = 415
    error = "Invalid file type"


class PayloadTooLargeError(ClientInputError):
    status_code = 413
    error = "File too large"


class NotFoundError(RecordingServiceError):
    status_code = 404
    error = "File not found"


class StorageError(RecordingServiceError):
    error = "Storage error"


class LedgerError(StorageError):
    error = "Ledger error"


class TranscodeError(StorageError):
    error = "Failed to save recording"


class StartupError(RecordingServiceError):
    error = "Startup failed"
