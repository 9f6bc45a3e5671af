"""
Error types and classification for analysis failures.

Library code raises these; the CLI entry point classifies them to pick an
exit code and log level.
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """Error category classification"""
    USAGE = "usage"
    INPUT = "input"
    INTERNAL = "internal"


EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_USAGE = 2
EXIT_INTERNAL = 3


class LayerwiseError(Exception):
    """Base class for all expected analysis errors"""

    category = ErrorCategory.INPUT


class DockerfileParseError(LayerwiseError):
    """Dockerfile could not be parsed"""

    def __init__(self, message: str, line: Optional[int] = None, path: Optional[str] = None):
        self.line = line
        self.path = path
        location = path or "Dockerfile"
        if line is not None:
            location = f"{location}:{line}"
        super().__init__(f"{location}: {message}")
        self.reason = message


class IgnoreFileError(LayerwiseError):
    """Ignore file contains an invalid pattern"""

    def __init__(self, message: str, pattern: Optional[str] = None):
        self.pattern = pattern
        super().__init__(message)


class BuildContextError(LayerwiseError):
    """Build context directory is missing or unreadable"""


class ManifestError(LayerwiseError):
    """Cache manifest could not be written or has an unsupported format"""


class ConfigurationError(LayerwiseError):
    """Invalid settings or command-line options"""

    category = ErrorCategory.USAGE


def classify_error(exception: BaseException) -> ErrorCategory:
    """
    Classify an exception into an error category.

    Args:
        exception: The exception to classify

    Returns:
        ErrorCategory driving the exit code
    """
    if isinstance(exception, LayerwiseError):
        return exception.category

    # Missing files and permissions are the user's input, not our bug
    if isinstance(exception, (FileNotFoundError, PermissionError, NotADirectoryError, IsADirectoryError)):
        return ErrorCategory.INPUT

    if isinstance(exception, UnicodeDecodeError):
        return ErrorCategory.INPUT

    return ErrorCategory.INTERNAL


def exit_code_for(exception: BaseException) -> int:
    """
    Map an exception to a process exit code.

    Args:
        exception: The exception that aborted the command

    Returns:
        Exit code (2 for usage and input errors, 3 for internal errors)
    """
    category = classify_error(exception)
    if category == ErrorCategory.INTERNAL:
        return EXIT_INTERNAL
    return EXIT_USAGE
