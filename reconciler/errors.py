"""Exception taxonomy for archive reconciliation."""


class ReconcileError(Exception):
    """Base class for errors raised before any store mutation happens.

    Args:
        message: Human-readable description.
        problems: Every offending item (file names, keys, ...), so callers can
            report all of them at once instead of the first only.
    """

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems: list[str] = list(problems or [])


class ValidationError(ReconcileError):
    """Missing archive members, malformed JSON or a malformed config."""


class IntegrityError(ReconcileError):
    """Manifest checksums do not match the archive contents."""


class IncompatibilityError(ReconcileError):
    """Manifest version is not supported."""


class StoreUnavailableError(Exception):
    """Raised by a store when a commit cannot reach the backend."""
