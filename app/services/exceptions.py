"""
Domain errors raised by services and translated to HTTP responses by the API layer
"""


class ExamPlatformError(Exception):
    """Base class for domain errors"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AttemptNotFoundError(ExamPlatformError):
    """Attempt or question is missing, or not owned by the caller"""

    status_code = 404

    def __init__(self, message: str = "Attempt not found"):
        super().__init__(message)


class InvalidAttemptStateError(ExamPlatformError):
    """Operation not allowed in the attempt's current status"""

    status_code = 400


class UploadRejectedError(ExamPlatformError):
    """Uploaded file has a disallowed type or is too large"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class UpstreamGradingError(ExamPlatformError):
    """AI grader or transcription call failed"""

    status_code = 502


class AudioStorageError(ExamPlatformError):
    """Recording could not be moved into permanent storage"""

    status_code = 500
