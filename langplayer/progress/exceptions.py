"""Progress tracking errors.

Every error carries a machine-readable ``code`` that the HTTP layer maps to a
status code (see ``dependencies.handle_progress_error``).
"""


class ProgressError(Exception):
    """Base progress error."""

    def __init__(self, message: str, code: str = "progress_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotInitializedError(ProgressError):
    """No progress document exists for the user yet."""

    def __init__(self, message: str = "Progress tracking not initialized for user"):
        super().__init__(message, "not_initialized")


class InvalidInputError(ProgressError):
    """Telemetry that cannot be applied (bad duration, empty path, ...)."""

    def __init__(self, message: str = "Invalid progress input"):
        super().__init__(message, "invalid_input")


class StoreUnavailableError(ProgressError):
    """The document store could not be reached or timed out."""

    def __init__(self, message: str = "Progress store unavailable"):
        super().__init__(message, "store_unavailable")


class ConcurrentUpdateError(ProgressError):
    """Optimistic write kept losing to concurrent writers."""

    def __init__(self, message: str = "Progress was modified concurrently, retry"):
        super().__init__(message, "concurrent_update")


class CorruptDocumentError(ProgressError):
    """The stored document no longer validates against the progress models."""

    def __init__(self, message: str = "Stored progress document is unreadable"):
        super().__init__(message, "corrupt_document")
