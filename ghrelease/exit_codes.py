"""
Standard exit codes for ghrelease commands.

Following Unix/POSIX conventions for command-line tools.
"""

# Standard POSIX exit codes
SUCCESS = 0              # Successful termination
GENERAL_ERROR = 1        # General errors
USAGE_ERROR = 2          # Misuse of shell command (wrong arguments, etc.)

# Application-specific exit codes (64-113 are typically available)
RESOLUTION_ERROR = 64    # Tag or release could not be resolved
API_ERROR = 65           # Release registry call failed permanently
CONFIG_ERROR = 66        # Configuration file error
PERMISSION_ERROR = 67    # Extraction or install failed locally (unsafe archive, permissions)
NETWORK_ERROR = 68       # Network connection failed after retries
AUTH_ERROR = 69          # Authentication/authorization failed
DATA_ERROR = 70          # Data format or validation error
PARTIAL_SUCCESS = 71     # Some targets succeeded, some failed
MATCH_ERROR = 72         # No asset (or more than one) matched the target
FALLBACK_ERROR = 73      # Source installation fallback failed
VERIFICATION_ERROR = 74  # Signature or checksum verification failed
INTERRUPTED = 130        # Terminated by Ctrl+C (SIGINT)

# Exit code mappings for common exceptions
EXCEPTION_EXIT_CODES = {
    'FileNotFoundError': GENERAL_ERROR,
    'PermissionError': PERMISSION_ERROR,
    'ConnectionError': NETWORK_ERROR,
    'TimeoutError': NETWORK_ERROR,
    'ValueError': DATA_ERROR,
    'KeyError': DATA_ERROR,
    'JSONDecodeError': DATA_ERROR,
    'KeyboardInterrupt': INTERRUPTED,
}


def get_exit_code_for_exception(exc: BaseException) -> int:
    """
    Get the appropriate exit code for an exception.

    Exceptions carrying their own ``exit_code`` (CommandError and
    subclasses) win over the name-based table.

    Args:
        exc: The exception that occurred

    Returns:
        Appropriate exit code
    """
    code = getattr(exc, 'exit_code', None)
    if isinstance(code, int):
        return code
    exc_name = exc.__class__.__name__
    return EXCEPTION_EXIT_CODES.get(exc_name, GENERAL_ERROR)


class CommandError(Exception):
    """
    Exception that commands can raise to indicate specific exit codes.
    """
    def __init__(self, message: str, exit_code: int = GENERAL_ERROR):
        super().__init__(message)
        self.exit_code = exit_code
