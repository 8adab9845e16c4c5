# ----------------------------------------------------------------
# Custom Exceptions
# ----------------------------------------------------------------
class SetupError(Exception):
    """Base exception for setup errors."""

    pass


class PrivilegeError(SetupError):
    """Raised when the process is not running as root."""

    pass


class EnvironmentCheckError(SetupError):
    """Raised when the host is unsupported or another instance holds the lock."""

    pass


class ExecutionError(SetupError):
    """Raised when command execution fails."""

    def __init__(self, message: str, returncode: int = 1) -> None:
        super().__init__(message)
        self.returncode = returncode


class DownloadError(SetupError):
    """Raised when a download fails or returns an empty payload."""

    pass


class VerificationError(SetupError):
    """Raised when a post-apply check does not confirm the desired state."""

    pass
