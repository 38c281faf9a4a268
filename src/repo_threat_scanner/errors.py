"""Exception taxonomy for the threat scanner.

Acquisition errors are fatal to a scan session. Read errors are per file:
the session records them as error strings and moves on. Parse failures are
not exceptions at all, see ``ast_parser.ParseResult``.
"""


class ScannerError(Exception):
    """Base class for all scanner errors."""


class AcquisitionError(ScannerError):
    """The source tree could not be obtained."""

    category = "clone_failed"


class InvalidRepositoryUrlError(AcquisitionError):
    category = "invalid_url"


class AuthenticationRequiredError(AcquisitionError):
    category = "auth_required"


class RepositoryNotFoundError(AcquisitionError):
    category = "not_found"


class CloneTimeoutError(AcquisitionError):
    category = "timeout"


class ReadError(ScannerError):
    """A single file could not be read."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class InitialMemoryTooHighError(ReadError):
    """Memory was already above the ceiling before the read started."""

    def __init__(self, used: int, limit: int, path: str | None = None):
        super().__init__(f"Initial memory usage too high: {used} bytes (limit {limit})", path)
        self.used = used
        self.limit = limit


class MemoryLimitExceededError(ReadError):
    """Memory crossed the ceiling while a file was being streamed."""

    def __init__(self, used: int, limit: int, path: str | None = None):
        super().__init__(f"Memory usage limit exceeded: {used} bytes (limit {limit})", path)
        self.used = used
        self.limit = limit


class FileReadError(ReadError):
    """Underlying I/O failure."""
