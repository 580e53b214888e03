class RolloutError(Exception):
    """Base class for every error raised while driving a rollout."""
    pass


class CommandFailed(RolloutError):
    """A single kubectl invocation failed. Retried by the gateway."""

    def __init__(self, command: str, returncode: int | None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed (rc={returncode}): {command}\nstderr: {stderr}")


class FatalQueryError(RolloutError):
    """A query kept failing after every attempt and nobody handled it."""

    def __init__(self, label: str, attempts: int, last_error: Exception | None = None):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")


class ParseMismatch(RolloutError):
    """Expected pattern (usually a build tag) missing from a successful query."""
    pass
