"""Exception types raised by the PlanPocket managers."""


class NotFoundError(LookupError):
    """Raised when a record does not exist or belongs to another user."""


class AuthenticationError(Exception):
    """Raised when credentials are missing, wrong, or expired."""


class ConcurrentModificationError(RuntimeError):
    """Raised when a record changed between read and write."""
