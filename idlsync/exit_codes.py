"""
Standard exit codes for idlsync commands.

Following Unix/POSIX conventions for command-line tools.
"""
from typing import Optional

# Standard POSIX exit codes
SUCCESS = 0              # Successful termination
GENERAL_ERROR = 1        # General errors

# Application-specific exit codes (64-113 are typically available)
NO_SOURCES_AVAILABLE = 64  # No remote source could be refreshed
CONFIG_ERROR = 66        # Configuration file error
DATA_ERROR = 70          # Data integrity error (e.g. escalated collisions)
PARTIAL_SUCCESS = 71     # Some sources succeeded, some failed
INTERRUPTED = 130        # Terminated by Ctrl+C (SIGINT)


class CommandError(Exception):
    """
    Exception that commands can raise to indicate specific exit codes.
    """
    def __init__(self, message: str, exit_code: int = GENERAL_ERROR):
        super().__init__(message)
        self.exit_code = exit_code


class ConfigError(CommandError):
    """Raised when there's a configuration error."""
    def __init__(self, message: str):
        super().__init__(message, CONFIG_ERROR)


class NoSourcesAvailableError(CommandError):
    """Raised when every configured remote failed to refresh."""
    def __init__(self, message: str = "No remote sources available"):
        super().__init__(message, NO_SOURCES_AVAILABLE)


class PublishError(CommandError):
    """Raised when the working repository cannot be committed or pushed."""
    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        super().__init__(message, GENERAL_ERROR)
        self.stdout = stdout
        self.stderr = stderr


class CollisionError(CommandError):
    """Raised when collisions are escalated to a failure."""
    def __init__(self, message: str, names: Optional[list] = None):
        super().__init__(message, DATA_ERROR)
        self.names = names or []


class PartialSuccessError(CommandError):
    """Raised when some operations succeed and some fail."""
    def __init__(self, message: str, succeeded: int = 0, failed: int = 0):
        super().__init__(message, PARTIAL_SUCCESS)
        self.succeeded = succeeded
        self.failed = failed
